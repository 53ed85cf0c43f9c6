"""
Shared pytest fixtures for the vault test suite.

Key derivation runs with the minimum 1000 iterations so the suite stays
fast; production defaults are exercised in test_config.py.
"""
import pytest

from passkeep.vault import (
    VaultConfig,
    SessionKeyLifecycle,
    MemoryIdentityProvider,
    MemoryVaultStore,
    PasswordVault,
)

EMAIL = "operative@passkeep.com"
PASSWORD = "Secret123"


@pytest.fixture
def config():
    """Fast, valid configuration."""
    return VaultConfig(kdf_iterations=1000, session_ttl=300)


@pytest.fixture
def idp():
    """In-memory identity provider."""
    return MemoryIdentityProvider()


@pytest.fixture
def store():
    """In-memory vault item store."""
    return MemoryVaultStore()


@pytest.fixture
def lifecycle(idp, config):
    """Lifecycle bound to the in-memory identity provider."""
    return SessionKeyLifecycle(idp, config)


@pytest.fixture
async def enrolled(lifecycle):
    """Lifecycle with one enrolled (still logged out) account."""
    await lifecycle.enroll(EMAIL, PASSWORD)
    return lifecycle


@pytest.fixture
async def vault(enrolled, store):
    """Password vault over an unlocked session."""
    session = await enrolled.login(EMAIL, PASSWORD)
    return PasswordVault(session, store)
