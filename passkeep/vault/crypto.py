"""
Vault Crypto Core — Key derivation, envelope encryption and encoding.

Implements the client-side cryptography of the vault:
- KeyDerivation: PBKDF2-HMAC(password, salt || purpose) → 256-bit key
- Envelope: AEAD (AES-256-GCM by default) with a fresh random nonce per call
- Payload: orjson-serialized ``SecretPayload`` sealed into an envelope

Both the authentication secret and the vault key are derived from the same
password and account salt, separated by purpose ("auth" / "vault"), so the
secret handed to the identity provider never equals the encryption key.

Security Note:
    Never log passwords, derived keys, plaintext or ciphertext values.
"""
import os
import base64
import binascii
from typing import Optional, Union

import orjson
from pydantic import ValidationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .errors import InvalidInput, DecryptionFailed
from .models import (
    SALT_SIZE,
    KEY_SIZE,
    LEGACY_KDF_ITERATIONS,
    AccountParams,
    SecretPayload,
)

MIN_ITERATIONS = 1000
TAG_SIZE = 16  # AEAD authentication tag

AUTH_PURPOSE = "auth"
VAULT_PURPOSE = "vault"

_HASHES = {
    "sha256": hashes.SHA256,
    "sha512": hashes.SHA512,
}

# nonce size per AEAD backend
_NONCE_SIZES = {
    AESGCM: 16,
    ChaCha20Poly1305: 12,
}


def _get_cipher_cls() -> type:
    """Return the AEAD cipher class based on PASSKEEP_CIPHER_BACKEND env var."""
    backend = os.environ.get("PASSKEEP_CIPHER_BACKEND", "aesgcm").lower()
    if backend == "chacha20":
        return ChaCha20Poly1305
    return AESGCM


# Resolved once at import; later changes to the env var have no effect.
CIPHER_CLS = _get_cipher_cls()
NONCE_SIZE = _NONCE_SIZES[CIPHER_CLS]
CIPHER_BACKEND = "chacha20" if CIPHER_CLS is ChaCha20Poly1305 else "aesgcm"


def _to_bytes(value: Union[str, bytes, bytearray], name: str) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise InvalidInput(f"{name} must be str or bytes, got {type(value).__name__}")


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Generate a fresh random 128-bit account salt."""
    return os.urandom(SALT_SIZE)


def derive(
    password: Union[str, bytes],
    salt: bytes,
    iterations: int = LEGACY_KDF_ITERATIONS,
    output_bits: int = KEY_SIZE * 8,
    *,
    algorithm: str = "sha256",
    purpose: Optional[str] = None,
) -> bytes:
    """Derive key material from a password using PBKDF2-HMAC.

    Deterministic: identical inputs always yield identical output. Running
    time grows linearly with ``iterations``.

    Args:
        password: Password, str (UTF-8 encoded) or bytes. Must be non-empty.
        salt: Exactly 16 bytes.
        iterations: PBKDF2 iteration count (minimum 1000).
        output_bits: Output length in bits, a positive multiple of 8.
        algorithm: HMAC hash, "sha256" or "sha512".
        purpose: Optional domain-separation label appended to the salt.

    Returns:
        ``output_bits // 8`` bytes of key material.

    Raises:
        InvalidInput: If any argument is malformed.
    """
    password_bytes = _to_bytes(password, "password")
    if not password_bytes:
        raise InvalidInput("password cannot be empty")
    if not isinstance(salt, (bytes, bytearray)) or len(salt) != SALT_SIZE:
        raise InvalidInput(f"salt must be exactly {SALT_SIZE} bytes")
    if isinstance(iterations, bool) or not isinstance(iterations, int):
        raise InvalidInput("iterations must be an integer")
    if iterations < MIN_ITERATIONS:
        raise InvalidInput(f"iterations must be at least {MIN_ITERATIONS}")
    if (
        isinstance(output_bits, bool)
        or not isinstance(output_bits, int)
        or output_bits <= 0
        or output_bits % 8
    ):
        raise InvalidInput("output_bits must be a positive multiple of 8")
    hash_cls = _HASHES.get(algorithm)
    if hash_cls is None:
        raise InvalidInput(f"Unsupported KDF algorithm: {algorithm}")

    effective_salt = bytes(salt)
    if purpose:
        effective_salt += purpose.encode("utf-8")

    kdf = PBKDF2HMAC(
        algorithm=hash_cls(),
        length=output_bits // 8,
        salt=effective_salt,
        iterations=iterations,
    )
    return kdf.derive(password_bytes)


def _derive_for(password: Union[str, bytes], params: AccountParams, purpose: str) -> bytes:
    return derive(
        password,
        params.salt,
        params.kdf.iterations,
        KEY_SIZE * 8,
        algorithm=params.kdf.algorithm,
        purpose=purpose,
    )


def derive_auth_secret(password: Union[str, bytes], params: AccountParams) -> bytes:
    """Derive the credential submitted to the identity provider."""
    return _derive_for(password, params, AUTH_PURPOSE)


def derive_vault_key(password: Union[str, bytes], params: AccountParams) -> bytes:
    """Derive the vault encryption key. Never leaves the process."""
    return _derive_for(password, params, VAULT_PURPOSE)


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def generate_nonce() -> bytes:
    """Return a fresh random nonce sized for the active cipher backend."""
    return os.urandom(NONCE_SIZE)


def _check_key(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise InvalidInput(f"key must be exactly {KEY_SIZE} bytes")
    return bytes(key)


def encrypt(
    plaintext: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> tuple[bytes, bytes]:
    """Encrypt a payload under a 256-bit key.

    A new random nonce is generated on every call; it is not secret and
    must be stored next to the ciphertext.

    Args:
        plaintext: Bytes to encrypt.
        key: 32-byte key.
        associated_data: Optional clear data authenticated with the payload.

    Returns:
        Tuple of (ciphertext including tag, nonce).

    Raises:
        InvalidInput: If the key or plaintext is malformed.
    """
    if not isinstance(plaintext, (bytes, bytearray)):
        raise InvalidInput("plaintext must be bytes")
    cipher = CIPHER_CLS(_check_key(key))
    nonce = generate_nonce()
    ct = cipher.encrypt(nonce, bytes(plaintext), associated_data)
    return ct, nonce


def decrypt(
    ciphertext: bytes,
    nonce: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> bytes:
    """Decrypt and authenticate an envelope.

    Raises:
        InvalidInput: If the key is malformed.
        DecryptionFailed: If the nonce or ciphertext is malformed, the key
            is wrong, or the data was tampered with.
    """
    cipher = CIPHER_CLS(_check_key(key))
    if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != NONCE_SIZE:
        raise DecryptionFailed(
            f"nonce must be exactly {NONCE_SIZE} bytes"
        )
    if not isinstance(ciphertext, (bytes, bytearray)) or len(ciphertext) < TAG_SIZE:
        raise DecryptionFailed("ciphertext too short")
    try:
        return cipher.decrypt(bytes(nonce), bytes(ciphertext), associated_data)
    except InvalidTag as err:
        raise DecryptionFailed("ciphertext failed authentication") from err


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------

def serialize_payload(payload: SecretPayload) -> bytes:
    """Serialize a secret payload to compact JSON bytes."""
    return orjson.dumps(
        {"username": payload.username, "password": payload.password}
    )


def deserialize_payload(data: bytes) -> SecretPayload:
    """Parse decrypted bytes back into a payload.

    Raises:
        DecryptionFailed: If the bytes are not a valid payload document.
    """
    try:
        return SecretPayload.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise DecryptionFailed("decrypted payload is not valid") from err


def seal_payload(
    payload: SecretPayload,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> tuple[bytes, bytes]:
    """Serialize and encrypt a payload. Returns (ciphertext, nonce)."""
    return encrypt(serialize_payload(payload), key, associated_data)


def open_payload(
    ciphertext: bytes,
    nonce: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None,
) -> SecretPayload:
    """Decrypt and parse a payload; any failure is ``DecryptionFailed``."""
    return deserialize_payload(decrypt(ciphertext, nonce, key, associated_data))


# ---------------------------------------------------------------------------
# Text encoding
# ---------------------------------------------------------------------------

def encode_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_b64(text: str) -> bytes:
    """Decode strict base64 text.

    Raises:
        InvalidInput: If the text is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, TypeError, ValueError) as err:
        raise InvalidInput(f"invalid base64 data: {err}") from err


def encode_hex(data: bytes) -> str:
    return bytes(data).hex()


def decode_hex(text: str) -> bytes:
    """Decode hex text.

    Raises:
        InvalidInput: If the text is not valid hex.
    """
    try:
        return bytes.fromhex(text)
    except (TypeError, ValueError) as err:
        raise InvalidInput(f"invalid hex data: {err}") from err
