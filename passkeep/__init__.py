"""PassKeep.

Zero-knowledge credential vault: client-side key derivation and
per-item envelope encryption of stored secrets.
"""
from .version import __version__
from .vault import (
    VaultConfig,
    SessionKeyLifecycle,
    VaultSession,
    PasswordVault,
)

__all__ = [
    "__version__",
    "VaultConfig",
    "SessionKeyLifecycle",
    "VaultSession",
    "PasswordVault",
]
