"""
Vault Configuration — Validated client settings.

Reads settings from environment variables:
    PASSKEEP_KDF_ALGORITHM = sha256 | sha512
    PASSKEEP_KDF_ITERATIONS = <integer, >= 1000>
    PASSKEEP_CIPHER_BACKEND = aesgcm | chacha20
    PASSKEEP_SESSION_TTL = <seconds, >= 60>
    PASSKEEP_SUPABASE_URL / PASSKEEP_SUPABASE_KEY = identity/storage backend

Security Note:
    The Supabase key is a public (anon) API key. Never place passwords or
    derived key material in configuration.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .models import KdfParams, SUPPORTED_KDF_ALGORITHMS

logger = logging.getLogger("passkeep.vault")

DEFAULT_KDF_ITERATIONS = 600_000  # OWASP 2023 guidance for PBKDF2-SHA256
DEFAULT_SESSION_TTL = 1800


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable.

    Raises:
        ValueError: If the value is not a valid integer.
    """
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class VaultConfig(BaseModel):
    """Validated vault client configuration."""

    kdf_algorithm: str = Field(default="sha256")
    kdf_iterations: int = Field(default=DEFAULT_KDF_ITERATIONS, ge=1000)
    cipher_backend: str = Field(default="aesgcm")
    session_ttl: int = Field(default=DEFAULT_SESSION_TTL, ge=60)
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    @field_validator("kdf_algorithm")
    @classmethod
    def validate_kdf_algorithm(cls, v: str) -> str:
        """Validate KDF hash is supported."""
        v = v.lower()
        if v not in SUPPORTED_KDF_ALGORITHMS:
            raise ValueError(f"Unsupported KDF algorithm: {v}")
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    def kdf_params(self) -> KdfParams:
        """KDF parameters stored with newly enrolled accounts."""
        return KdfParams(
            algorithm=self.kdf_algorithm,
            iterations=self.kdf_iterations,
        )

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        config = cls(
            kdf_algorithm=os.environ.get("PASSKEEP_KDF_ALGORITHM", "sha256"),
            kdf_iterations=_env_int(
                "PASSKEEP_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS
            ),
            cipher_backend=os.environ.get("PASSKEEP_CIPHER_BACKEND", "aesgcm"),
            session_ttl=_env_int("PASSKEEP_SESSION_TTL", DEFAULT_SESSION_TTL),
            supabase_url=os.environ.get("PASSKEEP_SUPABASE_URL") or None,
            supabase_key=os.environ.get("PASSKEEP_SUPABASE_KEY") or None,
        )
        logger.debug(
            "Vault config loaded: kdf=%s/%d cipher=%s ttl=%ds",
            config.kdf_algorithm, config.kdf_iterations,
            config.cipher_backend, config.session_ttl,
        )
        return config
