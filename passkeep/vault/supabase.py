"""
Supabase Collaborators — Identity provider and item store over HTTP.

- ``SupabaseIdentityProvider``: GoTrue auth endpoints (``/auth/v1``) plus
  the public ``get_account_params`` RPC used to fetch the account salt
  before sign-in.
- ``SupabaseVaultStore``: the ``vault_items`` table through PostgREST
  (``/rest/v1``), protected by row-level security on the caller's token.

Security Note:
    Only the hex AuthSecret and ciphertext records are ever sent. Never log
    access tokens or request bodies.
"""
import asyncio
import logging
from typing import Any, Optional

import aiohttp

from .config import VaultConfig
from .errors import (
    AuthenticationFailed,
    IdentityProviderError,
    StorageError,
    VaultError,
)
from .models import VaultItem
from .providers import IdentityProvider, IdentitySession, VaultStore

logger = logging.getLogger("passkeep.vault")

DEFAULT_TIMEOUT = 10.0

VAULT_ITEMS_TABLE = "vault_items"
ACCOUNT_PARAMS_RPC = "get_account_params"


def _error_message(body: Any, status: int) -> str:
    """Extract the human-readable message of a GoTrue/PostgREST error body."""
    if isinstance(body, dict):
        for field in ("msg", "error_description", "message", "error"):
            value = body.get(field)
            if value:
                return str(value)
    if isinstance(body, str) and body:
        return body
    return f"HTTP {status}"


class SupabaseClient:
    """Shared HTTP plumbing for the Supabase collaborators."""

    def __init__(
        self,
        url: str,
        api_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not url or not api_key:
            raise ValueError("Supabase url and api key are required")
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not config.supabase_url or not config.supabase_key:
            raise ValueError(
                "PASSKEEP_SUPABASE_URL and PASSKEEP_SUPABASE_KEY must be set"
            )
        return cls(config.supabase_url, config.supabase_key, session=session)

    @property
    def base_url(self) -> str:
        return self._url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create a reusable aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self, token: Optional[str] = None) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token or self._api_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        error_cls: type[VaultError],
        token: Optional[str] = None,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> tuple[int, Any]:
        """Send one request; return (status, decoded body).

        Raises:
            error_cls: On connection failures and timeouts.
        """
        request_headers = self._headers(token)
        if headers:
            request_headers.update(headers)
        session = await self._get_session()
        try:
            async with session.request(
                method,
                f"{self._url}{path}",
                params=params,
                json=json,
                headers=request_headers,
                timeout=self._timeout,
            ) as resp:
                if resp.content_type == "application/json":
                    body = await resp.json()
                else:
                    body = await resp.text()
                return resp.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.error("Supabase request failed: %s %s: %s", method, path, err)
            raise error_cls(f"Backend unreachable: {err}") from err


class SupabaseIdentityProvider(SupabaseClient, IdentityProvider):
    """Identity provider backed by Supabase Auth (GoTrue)."""

    async def lookup_account(self, email: str) -> Optional[dict[str, Any]]:
        status, body = await self._request(
            "POST",
            f"/rest/v1/rpc/{ACCOUNT_PARAMS_RPC}",
            json={"p_email": email},
            error_cls=IdentityProviderError,
        )
        if status != 200:
            raise IdentityProviderError(
                f"Account lookup failed: {_error_message(body, status)}"
            )
        if isinstance(body, list):
            body = body[0] if body else None
        if body is None or isinstance(body, dict):
            return body
        raise IdentityProviderError("Account lookup returned an unexpected body")

    async def sign_up(self, email: str, auth_secret: str, metadata: dict[str, Any]) -> None:
        status, body = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": auth_secret, "data": metadata},
            error_cls=IdentityProviderError,
        )
        if status in (200, 201):
            return
        message = _error_message(body, status)
        if "already registered" in message.lower():
            raise AuthenticationFailed("User already registered")
        raise IdentityProviderError(f"Sign-up failed: {message}")

    async def sign_in(self, email: str, auth_secret: str) -> IdentitySession:
        status, body = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": auth_secret},
            error_cls=IdentityProviderError,
        )
        if status in (400, 401):
            raise AuthenticationFailed(_error_message(body, status))
        if status != 200 or not isinstance(body, dict):
            raise IdentityProviderError(
                f"Sign-in failed: {_error_message(body, status)}"
            )
        user = body.get("user") or {}
        return IdentitySession(
            user_id=str(user.get("id", "")),
            email=user.get("email", email),
            access_token=body.get("access_token", ""),
            refresh_token=body.get("refresh_token"),
            metadata=dict(user.get("user_metadata") or {}),
        )

    async def sign_out(self, session: IdentitySession) -> None:
        status, body = await self._request(
            "POST",
            "/auth/v1/logout",
            token=session.access_token,
            error_cls=IdentityProviderError,
        )
        # an already-expired token has nothing left to sign out
        if status not in (200, 204, 401, 403):
            raise IdentityProviderError(
                f"Sign-out failed: {_error_message(body, status)}"
            )

    async def is_valid(self, session: IdentitySession) -> bool:
        status, body = await self._request(
            "GET",
            "/auth/v1/user",
            token=session.access_token,
            error_cls=IdentityProviderError,
        )
        if status == 200:
            return True
        if status in (401, 403):
            return False
        raise IdentityProviderError(
            f"Session check failed: {_error_message(body, status)}"
        )


class SupabaseVaultStore(SupabaseClient, VaultStore):
    """Item store backed by the ``vault_items`` table."""

    _PATH = f"/rest/v1/{VAULT_ITEMS_TABLE}"
    # model field -> table column
    _COLUMNS = {
        "site_label": "site_name",
        "site_url": "site_url",
        "ciphertext": "encrypted_blob",
        "nonce": "iv",
    }

    @staticmethod
    def _token(identity: Optional[IdentitySession]) -> str:
        if identity is None:
            raise StorageError("An identity session is required")
        return identity.access_token

    @staticmethod
    def _to_item(row: dict[str, Any]) -> VaultItem:
        return VaultItem(
            id=str(row["id"]) if row.get("id") is not None else None,
            site_label=row["site_name"],
            site_url=row.get("site_url") or "",
            ciphertext=row["encrypted_blob"],
            nonce=row["iv"],
            created_at=row.get("created_at"),
        )

    @classmethod
    def _to_row(cls, item: VaultItem) -> dict[str, str]:
        return {cls._COLUMNS[k]: v for k, v in item.to_record().items()}

    async def list_items(self, identity: Optional[IdentitySession]) -> list[VaultItem]:
        status, body = await self._request(
            "GET",
            self._PATH,
            token=self._token(identity),
            params={"select": "*", "order": "created_at.desc"},
            error_cls=StorageError,
        )
        if status != 200 or not isinstance(body, list):
            raise StorageError(
                f"Failed to load vault: {_error_message(body, status)}"
            )
        items = []
        for row in body:
            try:
                items.append(self._to_item(row))
            except (KeyError, TypeError, ValueError) as err:
                logger.error("Skipping malformed vault row id=%s: %s", row.get("id"), err)
        return items

    async def insert_item(
        self, item: VaultItem, identity: Optional[IdentitySession]
    ) -> VaultItem:
        status, body = await self._request(
            "POST",
            self._PATH,
            token=self._token(identity),
            json=self._to_row(item),
            headers={"Prefer": "return=representation"},
            error_cls=StorageError,
        )
        if status not in (200, 201):
            raise StorageError(
                f"Failed to save item: {_error_message(body, status)}"
            )
        if isinstance(body, list) and body:
            return self._to_item(body[0])
        return item

    async def delete_item(self, item_id: str, identity: Optional[IdentitySession]) -> None:
        status, body = await self._request(
            "DELETE",
            self._PATH,
            token=self._token(identity),
            params={"id": f"eq.{item_id}"},
            error_cls=StorageError,
        )
        if status not in (200, 204):
            raise StorageError(
                f"Failed to delete item: {_error_message(body, status)}"
            )
