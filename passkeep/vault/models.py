"""
Vault Models — Validated value types crossing the vault core boundary.

Only ``AccountParams`` and ``VaultItem`` are ever persisted, and both hold
public data only: the account salt with its KDF parameters, and the
ciphertext/nonce pair of each item next to its clear-text site metadata.
"""
from datetime import datetime
from typing import Any, Mapping, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import CorruptAccount

SALT_SIZE = 16  # 128-bit account salt
KEY_SIZE = 32  # 256-bit derived keys

KDF_VERSION = 1
LEGACY_KDF_ITERATIONS = 1000
SUPPORTED_KDF_ALGORITHMS = ("sha256", "sha512")

SALT_METADATA_KEY = "encryption_salt"
KDF_METADATA_KEY = "kdf"


class KdfParams(BaseModel):
    """Versioned key-derivation parameters, stored per account.

    Accounts enrolled before parameters were stored carry none and
    resolve to the defaults (version 1, PBKDF2-SHA256, 1000 iterations).
    """

    version: int = Field(default=KDF_VERSION, ge=1)
    algorithm: str = Field(default="sha256")
    iterations: int = Field(default=LEGACY_KDF_ITERATIONS, ge=1000)

    model_config = {"frozen": True}

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        """Reject derivation schemes newer than this client knows."""
        if v > KDF_VERSION:
            raise ValueError(f"Unsupported KDF version: {v}")
        return v

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        if v not in SUPPORTED_KDF_ALGORITHMS:
            raise ValueError(f"Unsupported KDF algorithm: {v}")
        return v


class AccountParams(BaseModel):
    """Public per-account derivation input: the salt and its KDF parameters."""

    salt: bytes
    kdf: KdfParams = Field(default_factory=KdfParams)

    model_config = {"frozen": True}

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: bytes) -> bytes:
        if len(v) != SALT_SIZE:
            raise ValueError(
                f"salt must be exactly {SALT_SIZE} bytes, got {len(v)}"
            )
        return v

    @property
    def salt_hex(self) -> str:
        return self.salt.hex()

    def to_metadata(self) -> dict[str, Any]:
        """Return the account metadata published to the identity provider."""
        return {
            SALT_METADATA_KEY: self.salt.hex(),
            KDF_METADATA_KEY: self.kdf.model_dump(),
        }

    @classmethod
    def from_metadata(cls, metadata: Optional[Mapping[str, Any]]) -> "AccountParams":
        """Rebuild account parameters from identity-provider metadata.

        Raises:
            CorruptAccount: If the salt is missing or the metadata is malformed.
        """
        metadata = metadata or {}
        raw_salt = metadata.get(SALT_METADATA_KEY)
        if not raw_salt:
            raise CorruptAccount("Encryption salt missing from account metadata")
        try:
            salt = bytes.fromhex(raw_salt)
            kdf = KdfParams(**(metadata.get(KDF_METADATA_KEY) or {}))
            return cls(salt=salt, kdf=kdf)
        except (TypeError, ValueError, ValidationError) as err:
            raise CorruptAccount(
                f"Malformed encryption parameters in account metadata: {err}"
            ) from err


class SecretPayload(BaseModel):
    """Plaintext secret of one vault item. Exists only transiently."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"SecretPayload(username={self.username!r}, password='***')"

    __str__ = __repr__


class VaultItem(BaseModel):
    """Stored vault record: clear site metadata plus ciphertext and nonce.

    ``ciphertext`` is base64 text and ``nonce`` is hex text.
    """

    id: Optional[str] = None
    site_label: str = Field(min_length=1)
    site_url: str = ""
    ciphertext: str
    nonce: str
    created_at: Optional[datetime] = None

    def associated_data(self) -> bytes:
        return item_associated_data(self.site_label, self.site_url)

    def to_record(self) -> dict[str, str]:
        """Outbound record for the storage collaborator."""
        return {
            "site_label": self.site_label,
            "site_url": self.site_url,
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
        }


def item_associated_data(site_label: str, site_url: str) -> bytes:
    """Canonical bytes binding the clear metadata to an item's ciphertext."""
    return orjson.dumps(
        {"site_label": site_label, "site_url": site_url},
        option=orjson.OPT_SORT_KEYS,
    )
