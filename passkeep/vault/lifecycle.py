"""
SessionKeyLifecycle — Enrollment, login and logout around a VaultSession.

Flow:
- enroll: fresh salt → AuthSecret → identity provider sign-up (salt and
  KDF params published as public account metadata). Stays logged out.
- login: public account metadata by e-mail → AuthSecret → sign-in →
  VaultKey derived and installed in the session (UNLOCKED).
- logout / remote expiry: the key is wiped first, unconditionally.

Security Note:
    The raw password is only ever passed to the KDF. The identity provider
    receives the hex AuthSecret; the VaultKey never leaves the session.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from . import crypto
from .config import VaultConfig
from .errors import AuthenticationFailed, CorruptAccount, InvalidInput, NoActiveSession
from .models import AccountParams
from .providers import IdentityProvider
from .session import VaultSession, SessionState

logger = logging.getLogger("passkeep.vault")


def _check_credentials(email: str, password: str) -> None:
    if not email or not password:
        raise InvalidInput("Please enter both email and password")


class SessionKeyLifecycle:
    """Creates, uses and destroys the vault key of one user context.

    At most one session is active per lifecycle; logging in again clears
    the previous session first.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        config: Optional[VaultConfig] = None,
    ) -> None:
        self._idp = identity_provider
        self._config = config or VaultConfig()
        self._session = VaultSession(max_age=self._config.session_ttl)
        if self._config.cipher_backend != crypto.CIPHER_BACKEND:
            logger.warning(
                "Configured cipher backend %s differs from active backend %s",
                self._config.cipher_backend, crypto.CIPHER_BACKEND,
            )

    @property
    def session(self) -> VaultSession:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def enroll(self, email: str, password: str) -> AccountParams:
        """Register a new account. Does not unlock the vault.

        Returns:
            The public account parameters published at sign-up.
        """
        _check_credentials(email, password)
        account = AccountParams(
            salt=crypto.generate_salt(),
            kdf=self._config.kdf_params(),
        )
        auth_secret = await asyncio.to_thread(
            crypto.derive_auth_secret, password, account,
        )
        await self._idp.sign_up(email, auth_secret.hex(), account.to_metadata())
        logger.info(
            "Account enrolled: email=%s kdf=%s/%d",
            email, account.kdf.algorithm, account.kdf.iterations,
        )
        return account

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> VaultSession:
        """Authenticate and unlock the vault.

        Raises:
            InvalidInput: If e-mail or password is empty.
            AuthenticationFailed: If the account is unknown or the
                credential is rejected.
            CorruptAccount: If the account's salt is missing or malformed.
            NoActiveSession: If the session was cleared (logout, expiry
                check) before the login completed.
        """
        _check_credentials(email, password)
        session = self._session
        attempt = session.begin(email)
        identity = None
        try:
            metadata = await self._idp.lookup_account(email)
            if metadata is None:
                raise AuthenticationFailed("Invalid login credentials")
            account = AccountParams.from_metadata(metadata)

            auth_secret = await asyncio.to_thread(
                crypto.derive_auth_secret, password, account,
            )
            identity = await self._idp.sign_in(email, auth_secret.hex())

            verified = AccountParams.from_metadata(identity.metadata)
            if verified != account:
                raise CorruptAccount(
                    "Account encryption parameters changed during login"
                )

            vault_key = await asyncio.to_thread(
                crypto.derive_vault_key, password, verified,
            )
            session.unlock(
                vault_key, verified, identity_session=identity, attempt=attempt,
            )
        except CorruptAccount:
            logger.error("Corrupt account: email=%s requires manual repair", email)
            raise
        except AuthenticationFailed:
            logger.info("Login rejected: email=%s", email)
            raise
        except NoActiveSession:
            logger.info("Login abandoned, session cleared meanwhile: email=%s", email)
            if identity is not None:
                await self._sign_out(identity)
            raise
        finally:
            # only the current attempt may clear; a newer login owns the session
            if session.attempt == attempt and session.state is not SessionState.UNLOCKED:
                session.clear()
        return session

    async def logout(self) -> None:
        """Wipe the vault key, then end the remote session."""
        identity = self._session.identity_session
        self._session.clear()
        if identity is not None:
            await self._sign_out(identity)

    async def _sign_out(self, identity) -> None:
        try:
            await self._idp.sign_out(identity)
        except Exception as err:
            logger.warning(
                "Remote sign-out failed for %s: %s", identity.email, err,
            )

    async def verify(self) -> bool:
        """Check the remote session; clear the vault if it is no longer valid.

        Returns:
            True if the vault remains unlocked.
        """
        session = self._session
        if not session.is_unlocked:
            session.clear()
            return False
        identity = session.identity_session
        try:
            valid = identity is not None and await self._idp.is_valid(identity)
        except BaseException:
            session.clear()
            raise
        if not valid:
            logger.info("Remote session invalid; locking vault: email=%s", session.identity)
            session.clear()
        return valid

    @asynccontextmanager
    async def unlocked(self, email: str, password: str) -> AsyncIterator[VaultSession]:
        """Scope an unlocked session; the key is wiped on every exit path."""
        session = await self.login(email, password)
        try:
            yield session
        finally:
            await self.logout()
