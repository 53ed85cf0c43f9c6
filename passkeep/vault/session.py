"""
VaultSession — The explicit, process-local holder of the vault key.

A session is passed by reference to whatever needs the key; there is no
global. The key slot has a single writer (the login flow through
``unlock`` and every exit path through ``clear``) and any number of readers,
which take a snapshot of the key at the start of each operation.

Security Note:
    The key is kept in a ``bytearray`` so it can be zeroed on clear.
    Snapshots handed to the cipher are immutable copies living only for one
    operation; a memory dump of the process is outside the threat model.
"""
import enum
import time
import uuid
import logging
import threading
from typing import Any, Optional

from . import crypto
from .errors import NoActiveSession, InvalidInput
from .models import KEY_SIZE, AccountParams

logger = logging.getLogger("passkeep.vault")


class SessionState(str, enum.Enum):
    LOGGED_OUT = "logged_out"
    AUTHENTICATING = "authenticating"
    UNLOCKED = "unlocked"


class VaultSession:
    """Unlocked-vault session bound to one account identity.

    Persistable, non-secret attributes (id, identity, timestamps, account
    params) are exposed through ``session_data()``. The vault key and the
    identity provider's session token are in-memory only.
    """

    def __init__(
        self,
        identity: Optional[str] = None,
        max_age: Optional[int] = None,
        id: Optional[str] = None,
    ) -> None:
        self._id_ = id or uuid.uuid4().hex
        self._identity = identity
        self._max_age = max_age
        self._lock = threading.Lock()
        self._key: Optional[bytearray] = None
        self._state = SessionState.LOGGED_OUT
        self._created: Optional[float] = None
        self._account: Optional[AccountParams] = None
        self._objects: dict[str, Any] = {}
        self._attempt = 0

    def __repr__(self) -> str:
        return (
            f'<Vault-Session [{self._id_}] identity={self._identity!r} '
            f'state={self._state.value}>'
        )

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def created(self) -> Optional[float]:
        return self._created

    @property
    def account(self) -> Optional[AccountParams]:
        return self._account

    @property
    def max_age(self) -> Optional[int]:
        return self._max_age

    @max_age.setter
    def max_age(self, value: Optional[int]) -> None:
        self._max_age = value

    @property
    def expired(self) -> bool:
        if self._created is None or self._max_age is None:
            return False
        return time.monotonic() - self._created > self._max_age

    @property
    def is_unlocked(self) -> bool:
        return self._state is SessionState.UNLOCKED and not self.expired

    @property
    def attempt(self) -> int:
        """Counter of the current login attempt; bumped by every clear."""
        return self._attempt

    @property
    def identity_session(self) -> Any:
        """In-memory handle of the identity provider session, if any."""
        return self._objects.get("identity_session")

    def session_data(self) -> dict:
        """Return only persistable, non-secret data."""
        data = {
            "session_id": self._id_,
            "identity": self._identity,
            "state": self._state.value,
        }
        if self._account is not None:
            data["account"] = self._account.to_metadata()
        return data

    # --- Lifecycle transitions ---

    def begin(self, identity: str) -> int:
        """Enter AUTHENTICATING for ``identity``, dropping any previous key.

        Returns:
            The attempt token that ``unlock`` must be called with.
        """
        self.clear()
        with self._lock:
            self._identity = identity
            self._state = SessionState.AUTHENTICATING
            return self._attempt

    def unlock(
        self,
        vault_key: bytes,
        account: AccountParams,
        identity_session: Any = None,
        *,
        attempt: int,
    ) -> None:
        """Install a freshly derived vault key and enter UNLOCKED.

        Raises:
            InvalidInput: If the key is not 32 bytes.
            NoActiveSession: If the session was cleared since ``begin``
                returned ``attempt``.
        """
        if len(vault_key) != KEY_SIZE:
            raise InvalidInput(f"vault key must be exactly {KEY_SIZE} bytes")
        with self._lock:
            if self._state is not SessionState.AUTHENTICATING or attempt != self._attempt:
                raise NoActiveSession("Session was cleared while logging in")
            self._key = bytearray(vault_key)
            self._account = account
            self._created = time.monotonic()
            if identity_session is not None:
                self._objects["identity_session"] = identity_session
            self._state = SessionState.UNLOCKED
        logger.info("Vault unlocked: identity=%s session=%s", self._identity, self._id_)

    def clear(self) -> None:
        """Wipe the vault key and return to LOGGED_OUT. Idempotent."""
        with self._lock:
            key, self._key = self._key, None
            if key is not None:
                for i in range(len(key)):
                    key[i] = 0
            self._objects = {}
            self._account = None
            self._created = None
            self._attempt += 1
            was = self._state
            self._state = SessionState.LOGGED_OUT
        if was is not SessionState.LOGGED_OUT:
            logger.info("Vault locked: identity=%s session=%s", self._identity, self._id_)

    invalidate = clear

    # --- Key access ---

    def snapshot_key(self) -> bytes:
        """Capture the vault key for one operation.

        Raises:
            NoActiveSession: If the session is not unlocked or has expired.
                An expired session is cleared before raising.
        """
        if self.expired:
            logger.info("Vault session expired: session=%s", self._id_)
            self.clear()
        with self._lock:
            if self._state is not SessionState.UNLOCKED or self._key is None:
                raise NoActiveSession("Vault is locked; log in to unlock it")
            return bytes(self._key)

    def encrypt(
        self,
        plaintext: bytes,
        associated_data: Optional[bytes] = None,
    ) -> tuple[bytes, bytes]:
        """Encrypt under the session's vault key. Returns (ciphertext, nonce)."""
        return crypto.encrypt(plaintext, self.snapshot_key(), associated_data)

    def decrypt(
        self,
        ciphertext: bytes,
        nonce: bytes,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """Decrypt under the session's vault key."""
        return crypto.decrypt(ciphertext, nonce, self.snapshot_key(), associated_data)
