"""
Vault Collaborators — Identity provider and item store boundaries.

The vault core never talks to a backend directly. It hands the
authentication secret to an ``IdentityProvider`` and ciphertext records to
a ``VaultStore``. In-memory implementations are provided for tests and
offline use; ``passkeep.vault.supabase`` implements both over HTTP.
"""
import hmac
import uuid
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import AuthenticationFailed, StorageError
from .models import VaultItem

logger = logging.getLogger("passkeep.vault")


@dataclass
class IdentitySession:
    """Remote session returned by an identity provider on sign-in."""

    user_id: str
    email: str
    access_token: str = field(repr=False)
    metadata: dict[str, Any] = field(default_factory=dict)
    refresh_token: Optional[str] = field(default=None, repr=False)


class IdentityProvider(ABC):
    """Remote identity service. Receives only the derived auth secret."""

    @abstractmethod
    async def lookup_account(self, email: str) -> Optional[dict[str, Any]]:
        """Return the public account metadata for ``email``, or None."""

    @abstractmethod
    async def sign_up(self, email: str, auth_secret: str, metadata: dict[str, Any]) -> None:
        """Register an account using ``auth_secret`` as its credential."""

    @abstractmethod
    async def sign_in(self, email: str, auth_secret: str) -> IdentitySession:
        """Verify the credential.

        Raises:
            AuthenticationFailed: If the credential is rejected.
        """

    @abstractmethod
    async def sign_out(self, session: IdentitySession) -> None:
        """Terminate the remote session."""

    @abstractmethod
    async def is_valid(self, session: IdentitySession) -> bool:
        """Whether the remote session is still valid."""


class VaultStore(ABC):
    """Remote storage of encrypted vault items."""

    @abstractmethod
    async def list_items(self, identity: Optional[IdentitySession]) -> list[VaultItem]:
        """Return the caller's items, newest first."""

    @abstractmethod
    async def insert_item(
        self, item: VaultItem, identity: Optional[IdentitySession]
    ) -> VaultItem:
        """Persist an item and return it with its assigned id."""

    @abstractmethod
    async def delete_item(self, item_id: str, identity: Optional[IdentitySession]) -> None:
        """Delete an item by id."""


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class MemoryIdentityProvider(IdentityProvider):
    """Identity provider kept in process memory."""

    def __init__(self) -> None:
        self.accounts: dict[str, dict[str, Any]] = {}
        self._tokens: dict[str, str] = {}  # access token -> email

    async def lookup_account(self, email: str) -> Optional[dict[str, Any]]:
        account = self.accounts.get(email)
        if account is None:
            return None
        return dict(account["metadata"])

    async def sign_up(self, email: str, auth_secret: str, metadata: dict[str, Any]) -> None:
        if email in self.accounts:
            raise AuthenticationFailed("User already registered")
        self.accounts[email] = {
            "user_id": uuid.uuid4().hex,
            "credential": auth_secret,
            "metadata": dict(metadata),
        }
        logger.debug("Memory IdP: registered %s", email)

    async def sign_in(self, email: str, auth_secret: str) -> IdentitySession:
        account = self.accounts.get(email)
        if account is None or not hmac.compare_digest(
            account["credential"].encode("utf-8"), auth_secret.encode("utf-8")
        ):
            raise AuthenticationFailed("Invalid login credentials")
        token = secrets.token_urlsafe(32)
        self._tokens[token] = email
        return IdentitySession(
            user_id=account["user_id"],
            email=email,
            access_token=token,
            metadata=dict(account["metadata"]),
        )

    async def sign_out(self, session: IdentitySession) -> None:
        self._tokens.pop(session.access_token, None)

    async def is_valid(self, session: IdentitySession) -> bool:
        return session.access_token in self._tokens

    def expire(self, session: IdentitySession) -> None:
        """Invalidate a remote session, as a server-side timeout would."""
        self._tokens.pop(session.access_token, None)


class MemoryVaultStore(VaultStore):
    """Item store kept in process memory, partitioned by user id."""

    def __init__(self) -> None:
        self.rows: dict[str, list[VaultItem]] = {}

    @staticmethod
    def _owner(identity: Optional[IdentitySession]) -> str:
        if identity is None:
            raise StorageError("An identity session is required")
        return identity.user_id

    async def list_items(self, identity: Optional[IdentitySession]) -> list[VaultItem]:
        rows = self.rows.get(self._owner(identity), [])
        return sorted(rows, key=lambda item: item.created_at, reverse=True)

    async def insert_item(
        self, item: VaultItem, identity: Optional[IdentitySession]
    ) -> VaultItem:
        stored = item.model_copy(update={
            "id": uuid.uuid4().hex,
            "created_at": datetime.now(timezone.utc),
        })
        self.rows.setdefault(self._owner(identity), []).append(stored)
        return stored

    async def delete_item(self, item_id: str, identity: Optional[IdentitySession]) -> None:
        owner = self._owner(identity)
        self.rows[owner] = [
            item for item in self.rows.get(owner, []) if item.id != item_id
        ]
