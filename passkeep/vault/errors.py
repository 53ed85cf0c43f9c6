"""
Vault Errors — Failure taxonomy of the client-side vault core.

Recoverable conditions (``InvalidInput``, ``DecryptionFailed``,
``AuthenticationFailed``) are expected during normal use and are reported
to the user. ``NoActiveSession`` is a precondition violation of the calling
layer. ``CorruptAccount`` is fatal and must not be retried.
"""


class VaultError(Exception):
    """Base class for all errors raised by the vault core."""


class InvalidInput(VaultError, ValueError):
    """Malformed argument to key derivation, encryption or encoding."""


class DecryptionFailed(VaultError):
    """Wrong key, wrong nonce, corrupted or tampered ciphertext."""


class NoActiveSession(VaultError, RuntimeError):
    """An operation needed the vault key but no unlocked session exists."""


class CorruptAccount(VaultError):
    """The account exists but its public encryption salt is missing."""


class AuthenticationFailed(VaultError):
    """The identity provider rejected the credentials."""


class IdentityProviderError(VaultError):
    """The identity provider could not be reached or answered unexpectedly."""


class StorageError(VaultError):
    """The vault item store could not be reached or answered unexpectedly."""
