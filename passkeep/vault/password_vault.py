"""
PasswordVault — Encrypted credential items bound to an unlocked session.

Provides the item-level API on top of a ``VaultSession``:
- ``add(...)``: encrypt a {username, password} payload and store it
- ``items(search)``: list stored items (clear metadata only)
- ``reveal(item)`` / ``reveal_all(search)``: decrypt into tagged results
- ``delete(item_id)``: remove an item

Each item's payload is encrypted under the vault key with its site label
and URL as associated data, so a backend swapping blobs between items is
detected as a decryption failure.

Security Note:
    Never log plaintext or ciphertext values. Only log item ids, labels and
    identities. A failed item never aborts a listing.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from . import crypto
from .errors import VaultError, DecryptionFailed, NoActiveSession, InvalidInput
from .models import SecretPayload, VaultItem, item_associated_data
from .providers import VaultStore
from .session import VaultSession

logger = logging.getLogger("passkeep.vault")

USERNAME_PLACEHOLDER = "???"
PASSWORD_PLACEHOLDER = "Decryption Failed"


@dataclass(frozen=True)
class RevealResult:
    """Outcome of decrypting one item: a payload or the error it raised."""

    item: VaultItem
    payload: Optional[SecretPayload] = None
    error: Optional[VaultError] = None

    @property
    def ok(self) -> bool:
        return self.payload is not None

    @property
    def username(self) -> str:
        return self.payload.username if self.payload is not None else USERNAME_PLACEHOLDER

    @property
    def password(self) -> str:
        return self.payload.password if self.payload is not None else PASSWORD_PLACEHOLDER


class PasswordVault:
    """Credential items of one unlocked session, stored as ciphertext."""

    def __init__(self, session: VaultSession, store: VaultStore) -> None:
        self._session = session
        self._store = store

    @property
    def session(self) -> VaultSession:
        return self._session

    def _require_unlocked(self) -> None:
        if not self._session.is_unlocked:
            raise NoActiveSession("Vault is locked; log in to unlock it")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(
        self,
        site_label: str,
        site_url: str,
        username: str,
        password: str,
    ) -> VaultItem:
        """Encrypt and store a credential.

        Raises:
            InvalidInput: If the site label or password is empty.
            NoActiveSession: If the vault is locked.
        """
        self._require_unlocked()
        if not site_label or not password:
            raise InvalidInput("Please fill in all fields")
        key = self._session.snapshot_key()
        payload = SecretPayload(username=username, password=password)
        ciphertext, nonce = crypto.seal_payload(
            payload, key, item_associated_data(site_label, site_url),
        )
        item = VaultItem(
            site_label=site_label,
            site_url=site_url,
            ciphertext=crypto.encode_b64(ciphertext),
            nonce=crypto.encode_hex(nonce),
        )
        stored = await self._store.insert_item(item, self._session.identity_session)
        logger.debug(
            "Vault add: identity=%s item=%s", self._session.identity, stored.id,
        )
        return stored

    async def items(self, search: Optional[str] = None) -> list[VaultItem]:
        """List stored items, optionally filtered by site label (case-insensitive)."""
        self._require_unlocked()
        items = await self._store.list_items(self._session.identity_session)
        if search:
            needle = search.lower()
            items = [item for item in items if needle in item.site_label.lower()]
        return items

    def reveal(self, item: VaultItem) -> RevealResult:
        """Decrypt one item.

        Expected failures (wrong key, tampering, malformed encoding) are
        returned in the result rather than raised.

        Raises:
            NoActiveSession: If the vault is locked.
        """
        key = self._session.snapshot_key()
        try:
            payload = crypto.open_payload(
                crypto.decode_b64(item.ciphertext),
                crypto.decode_hex(item.nonce),
                key,
                item.associated_data(),
            )
        except (InvalidInput, DecryptionFailed) as err:
            logger.warning("Failed to decrypt vault item=%s: %s", item.id, err)
            return RevealResult(item=item, error=err)
        return RevealResult(item=item, payload=payload)

    async def reveal_all(self, search: Optional[str] = None) -> list[RevealResult]:
        """List and decrypt items; each item's failure is isolated."""
        return [self.reveal(item) for item in await self.items(search)]

    async def delete(self, item_id: str) -> None:
        """Delete an item by id."""
        self._require_unlocked()
        if not item_id:
            raise InvalidInput("Item id cannot be empty")
        await self._store.delete_item(item_id, self._session.identity_session)
        logger.debug(
            "Vault delete: identity=%s item=%s", self._session.identity, item_id,
        )
