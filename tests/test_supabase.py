"""
Tests for the Supabase collaborators against a local fake backend.

Tests cover:
- GoTrue sign-up, sign-in, sign-out and session checks
- The account-parameter RPC used before sign-in
- vault_items listing, insert and delete over PostgREST
- A complete enroll/login/add/reveal/logout flow
- Error mapping for rejected, failing and unreachable backends
"""
import uuid
import secrets
from datetime import datetime, timezone

import pytest
from aiohttp import web

from passkeep.vault import crypto
from passkeep.vault.config import VaultConfig
from passkeep.vault.errors import (
    AuthenticationFailed,
    IdentityProviderError,
    StorageError,
)
from passkeep.vault.lifecycle import SessionKeyLifecycle
from passkeep.vault.models import VaultItem
from passkeep.vault.password_vault import PasswordVault
from passkeep.vault.providers import IdentitySession
from passkeep.vault.supabase import (
    SupabaseClient,
    SupabaseIdentityProvider,
    SupabaseVaultStore,
    _error_message,
)

API_KEY = "anon-test-key"
EMAIL = "operative@passkeep.com"
PASSWORD = "Secret123"


class FakeSupabase:
    """Just enough of GoTrue and PostgREST to exercise the adapters."""

    def __init__(self):
        self.users = {}   # email -> {id, password, metadata}
        self.tokens = {}  # access token -> email
        self.rows = []

    def _user(self, request):
        token = request.headers.get("Authorization", "")[len("Bearer "):]
        email = self.tokens.get(token)
        return self.users.get(email) if email else None

    @web.middleware
    async def require_apikey(self, request, handler):
        if request.headers.get("apikey") != API_KEY:
            return web.json_response({"message": "Invalid API key"}, status=401)
        return await handler(request)

    async def signup(self, request):
        body = await request.json()
        if body["email"] in self.users:
            return web.json_response(
                {"code": 422, "msg": "User already registered"}, status=422
            )
        self.users[body["email"]] = {
            "id": str(uuid.uuid4()),
            "email": body["email"],
            "password": body["password"],
            "metadata": body.get("data") or {},
        }
        return web.json_response({"id": self.users[body["email"]]["id"]})

    async def token(self, request):
        assert request.query.get("grant_type") == "password"
        body = await request.json()
        user = self.users.get(body["email"])
        if user is None or user["password"] != body["password"]:
            return web.json_response(
                {
                    "error": "invalid_grant",
                    "error_description": "Invalid login credentials",
                },
                status=400,
            )
        access_token = secrets.token_hex(16)
        self.tokens[access_token] = user["email"]
        return web.json_response({
            "access_token": access_token,
            "refresh_token": "refresh",
            "user": {
                "id": user["id"],
                "email": user["email"],
                "user_metadata": user["metadata"],
            },
        })

    async def logout(self, request):
        token = request.headers.get("Authorization", "")[len("Bearer "):]
        self.tokens.pop(token, None)
        return web.Response(status=204)

    async def user(self, request):
        user = self._user(request)
        if user is None:
            return web.json_response({"msg": "invalid JWT"}, status=401)
        return web.json_response({"id": user["id"], "email": user["email"]})

    async def account_params(self, request):
        body = await request.json()
        user = self.users.get(body["p_email"])
        return web.json_response(user["metadata"] if user else None)

    async def list_items(self, request):
        user = self._user(request)
        if user is None:
            return web.json_response({"message": "JWT expired"}, status=401)
        assert request.query.get("order") == "created_at.desc"
        rows = [row for row in self.rows if row["user_id"] == user["id"]]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        return web.json_response(rows)

    async def insert_item(self, request):
        user = self._user(request)
        assert request.headers.get("Prefer") == "return=representation"
        row = await request.json()
        row.update(
            id=str(uuid.uuid4()),
            user_id=user["id"],
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.rows.append(row)
        return web.json_response([row], status=201)

    async def delete_item(self, request):
        item_id = request.query["id"].removeprefix("eq.")
        self.rows = [row for row in self.rows if row["id"] != item_id]
        return web.Response(status=204)

    def app(self):
        app = web.Application(middlewares=[self.require_apikey])
        app.router.add_post("/auth/v1/signup", self.signup)
        app.router.add_post("/auth/v1/token", self.token)
        app.router.add_post("/auth/v1/logout", self.logout)
        app.router.add_get("/auth/v1/user", self.user)
        app.router.add_post("/rest/v1/rpc/get_account_params", self.account_params)
        app.router.add_get("/rest/v1/vault_items", self.list_items)
        app.router.add_post("/rest/v1/vault_items", self.insert_item)
        app.router.add_delete("/rest/v1/vault_items", self.delete_item)
        return app


@pytest.fixture
def fake():
    return FakeSupabase()


@pytest.fixture
async def base_url(aiohttp_server, fake):
    server = await aiohttp_server(fake.app())
    return str(server.make_url("/"))


@pytest.fixture
async def supabase_idp(base_url):
    idp = SupabaseIdentityProvider(base_url, API_KEY)
    yield idp
    await idp.close()


@pytest.fixture
async def supabase_store(base_url):
    store = SupabaseVaultStore(base_url, API_KEY)
    yield store
    await store.close()


@pytest.fixture
def supabase_lifecycle(supabase_idp, config):
    return SessionKeyLifecycle(supabase_idp, config)


@pytest.fixture
async def failing_url(aiohttp_server):
    async def fail(request):
        return web.json_response({"message": "internal error"}, status=500)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fail)
    server = await aiohttp_server(app)
    return str(server.make_url("/"))


# --- Test Client ---

class TestClient:
    """Tests for the shared HTTP plumbing."""

    def test_requires_url_and_key(self):
        """Test construction without credentials fails."""
        with pytest.raises(ValueError):
            SupabaseClient("", API_KEY)
        with pytest.raises(ValueError):
            SupabaseClient("http://localhost", "")

    def test_from_config(self):
        """Test construction from VaultConfig."""
        config = VaultConfig(supabase_url="http://localhost:54321/", supabase_key=API_KEY)
        client = SupabaseIdentityProvider.from_config(config)
        assert client.base_url == "http://localhost:54321"

    def test_from_config_unset(self):
        """Test an unconfigured backend is reported."""
        with pytest.raises(ValueError, match="PASSKEEP_SUPABASE_URL"):
            SupabaseVaultStore.from_config(VaultConfig())

    def test_error_message(self):
        """Test error bodies are reduced to their message."""
        assert _error_message({"msg": "User already registered"}, 422) == "User already registered"
        assert _error_message({"error_description": "bad"}, 400) == "bad"
        assert _error_message("plain text", 500) == "plain text"
        assert _error_message(None, 503) == "HTTP 503"

    async def test_context_manager_closes(self, base_url):
        """Test the owned HTTP session is closed on exit."""
        async with SupabaseIdentityProvider(base_url, API_KEY) as idp:
            assert await idp.lookup_account(EMAIL) is None
            session = idp._session
        assert session.closed


# --- Test Identity Provider ---

class TestIdentityProvider:
    """Tests for the GoTrue adapter."""

    async def test_sign_up_and_lookup(self, supabase_idp, fake):
        """Test sign-up publishes metadata readable before sign-in."""
        metadata = {"encryption_salt": "00" * 16}
        await supabase_idp.sign_up(EMAIL, "ab" * 32, metadata)
        assert fake.users[EMAIL]["password"] == "ab" * 32
        assert await supabase_idp.lookup_account(EMAIL) == metadata
        assert await supabase_idp.lookup_account("nobody@example.com") is None

    async def test_duplicate_sign_up(self, supabase_idp):
        """Test an existing account maps to AuthenticationFailed."""
        await supabase_idp.sign_up(EMAIL, "ab" * 32, {})
        with pytest.raises(AuthenticationFailed, match="already registered"):
            await supabase_idp.sign_up(EMAIL, "ab" * 32, {})

    async def test_sign_in(self, supabase_idp):
        """Test sign-in returns the remote session with user metadata."""
        await supabase_idp.sign_up(EMAIL, "ab" * 32, {"encryption_salt": "11" * 16})
        identity = await supabase_idp.sign_in(EMAIL, "ab" * 32)
        assert identity.email == EMAIL
        assert identity.user_id
        assert identity.access_token
        assert identity.refresh_token == "refresh"
        assert identity.metadata == {"encryption_salt": "11" * 16}
        assert identity.access_token not in repr(identity)

    async def test_sign_in_rejected(self, supabase_idp):
        """Test invalid_grant maps to AuthenticationFailed."""
        await supabase_idp.sign_up(EMAIL, "ab" * 32, {})
        with pytest.raises(AuthenticationFailed, match="Invalid login credentials"):
            await supabase_idp.sign_in(EMAIL, "cd" * 32)

    async def test_sign_out_and_is_valid(self, supabase_idp):
        """Test a signed-out session is no longer valid."""
        await supabase_idp.sign_up(EMAIL, "ab" * 32, {})
        identity = await supabase_idp.sign_in(EMAIL, "ab" * 32)
        assert await supabase_idp.is_valid(identity) is True
        await supabase_idp.sign_out(identity)
        assert await supabase_idp.is_valid(identity) is False
        # signing out an expired token is not an error
        await supabase_idp.sign_out(identity)

    async def test_wrong_api_key(self, base_url):
        """Test a rejected API key surfaces as a provider error."""
        async with SupabaseIdentityProvider(base_url, "wrong-key") as idp:
            with pytest.raises(IdentityProviderError, match="Invalid API key"):
                await idp.lookup_account(EMAIL)

    async def test_server_error(self, failing_url):
        """Test 5xx answers map to IdentityProviderError."""
        async with SupabaseIdentityProvider(failing_url, API_KEY) as idp:
            with pytest.raises(IdentityProviderError):
                await idp.sign_up(EMAIL, "ab" * 32, {})
            with pytest.raises(IdentityProviderError):
                await idp.sign_in(EMAIL, "ab" * 32)
            with pytest.raises(IdentityProviderError):
                await idp.lookup_account(EMAIL)

    async def test_unreachable(self, unused_tcp_port):
        """Test connection failures map to IdentityProviderError."""
        url = f"http://127.0.0.1:{unused_tcp_port}"
        async with SupabaseIdentityProvider(url, API_KEY) as idp:
            with pytest.raises(IdentityProviderError, match="unreachable"):
                await idp.lookup_account(EMAIL)


# --- Test Vault Store ---

class TestVaultStore:
    """Tests for the vault_items adapter."""

    @pytest.fixture
    async def identity(self, supabase_idp):
        await supabase_idp.sign_up(EMAIL, "ab" * 32, {})
        return await supabase_idp.sign_in(EMAIL, "ab" * 32)

    async def test_insert_list_delete(self, supabase_store, identity, fake):
        """Test rows round-trip through the table column names."""
        item = VaultItem(
            site_label="GitHub",
            site_url="https://github.com",
            ciphertext="Y2lwaGVy",
            nonce="00" * 16,
        )
        stored = await supabase_store.insert_item(item, identity)
        assert stored.id
        assert stored.created_at is not None
        row = fake.rows[0]
        assert row["site_name"] == "GitHub"
        assert row["encrypted_blob"] == "Y2lwaGVy"
        assert row["iv"] == "00" * 16

        (listed,) = await supabase_store.list_items(identity)
        assert listed.id == stored.id
        assert listed.site_label == "GitHub"

        await supabase_store.delete_item(stored.id, identity)
        assert await supabase_store.list_items(identity) == []

    async def test_malformed_rows_skipped(self, supabase_store, identity, fake):
        """Test a row missing columns does not break the listing."""
        fake.rows.append({
            "id": "broken",
            "user_id": identity.user_id,
            "site_name": "Broken",
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        assert await supabase_store.list_items(identity) == []

    async def test_requires_identity(self, supabase_store):
        """Test storage calls need a signed-in identity."""
        with pytest.raises(StorageError):
            await supabase_store.list_items(None)

    async def test_expired_token(self, supabase_store):
        """Test an unauthorized listing maps to StorageError."""
        identity = IdentitySession(user_id="u", email=EMAIL, access_token="stale")
        with pytest.raises(StorageError, match="JWT expired"):
            await supabase_store.list_items(identity)

    async def test_server_error(self, failing_url):
        """Test 5xx answers map to StorageError."""
        identity = IdentitySession(user_id="u", email=EMAIL, access_token="t")
        async with SupabaseVaultStore(failing_url, API_KEY) as store:
            with pytest.raises(StorageError):
                await store.list_items(identity)
            with pytest.raises(StorageError):
                await store.delete_item("x", identity)


# --- Test End To End ---

class TestFlow:
    """Tests for the vault core running over the HTTP collaborators."""

    async def test_full_flow(self, supabase_lifecycle, supabase_store, fake):
        """Test enroll, login, add, reveal, logout against the fake backend."""
        account = await supabase_lifecycle.enroll(EMAIL, PASSWORD)
        assert fake.users[EMAIL]["password"] == crypto.derive_auth_secret(
            PASSWORD, account
        ).hex()
        assert fake.users[EMAIL]["password"] != PASSWORD

        session = await supabase_lifecycle.login(EMAIL, PASSWORD)
        vault = PasswordVault(session, supabase_store)
        await vault.add("GitHub", "https://github.com", "bob", "pw1")
        assert "pw1" not in repr(fake.rows)

        (result,) = await vault.reveal_all()
        assert result.username == "bob"
        assert result.password == "pw1"

        await supabase_lifecycle.logout()
        assert fake.tokens == {}

    async def test_login_rejected(self, supabase_lifecycle):
        """Test a wrong password is rejected by the backend."""
        await supabase_lifecycle.enroll(EMAIL, PASSWORD)
        with pytest.raises(AuthenticationFailed):
            await supabase_lifecycle.login(EMAIL, "wrong")
        with pytest.raises(AuthenticationFailed):
            await supabase_lifecycle.login("nobody@example.com", PASSWORD)

    async def test_remote_logout_locks_vault(self, supabase_lifecycle, fake):
        """Test a revoked token locks the vault on the next check."""
        await supabase_lifecycle.enroll(EMAIL, PASSWORD)
        await supabase_lifecycle.login(EMAIL, PASSWORD)
        fake.tokens.clear()
        assert await supabase_lifecycle.verify() is False
        assert not supabase_lifecycle.session.is_unlocked
