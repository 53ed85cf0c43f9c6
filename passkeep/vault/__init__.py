"""Vault Core — Client-side key derivation and envelope encryption.

Security Note (Threat Model):
    The storage backend and identity provider only ever observe the
    derived authentication secret, public salts, nonces and ciphertext.
    The vault key and decrypted secrets live in process memory during the
    session; a compromised client runtime (memory dump) can expose them.
    This is an accepted limitation and is out of scope.
"""

from .config import VaultConfig
from .errors import (
    VaultError,
    InvalidInput,
    DecryptionFailed,
    NoActiveSession,
    CorruptAccount,
    AuthenticationFailed,
    IdentityProviderError,
    StorageError,
)
from .models import AccountParams, KdfParams, SecretPayload, VaultItem
from .session import VaultSession, SessionState
from .lifecycle import SessionKeyLifecycle
from .password_vault import PasswordVault, RevealResult
from .providers import (
    IdentityProvider,
    IdentitySession,
    VaultStore,
    MemoryIdentityProvider,
    MemoryVaultStore,
)

__all__ = [
    "VaultConfig",
    "VaultError",
    "InvalidInput",
    "DecryptionFailed",
    "NoActiveSession",
    "CorruptAccount",
    "AuthenticationFailed",
    "IdentityProviderError",
    "StorageError",
    "AccountParams",
    "KdfParams",
    "SecretPayload",
    "VaultItem",
    "VaultSession",
    "SessionState",
    "SessionKeyLifecycle",
    "PasswordVault",
    "RevealResult",
    "IdentityProvider",
    "IdentitySession",
    "VaultStore",
    "MemoryIdentityProvider",
    "MemoryVaultStore",
]
