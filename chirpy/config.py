from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from chirpy.logging import get_logger

logger = get_logger(__name__)

_MIN_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _load_or_create_token_secret(fs_root: Path) -> str:
    """Return the signing secret kept in ``<fs_root>/.token_secret``.

    A missing or too-short file is replaced by a fresh 256-bit hex secret, so
    access tokens keep verifying across restarts of a deployment that never
    set ``TOKEN_SECRET``.
    """
    secret_path = fs_root / ".token_secret"
    try:
        if secret_path.is_file():
            persisted = secret_path.read_text().strip()
            if len(persisted) >= _MIN_SECRET_LENGTH:
                return persisted
            logger.warning("token_secret_file_ignored", path=str(secret_path))

        fs_root.mkdir(parents=True, exist_ok=True)
        generated = secrets.token_hex(32)
        fd, tmp_path = tempfile.mkstemp(dir=fs_root, prefix=".token_secret.")
        with os.fdopen(fd, "w") as handle:
            handle.write(generated)
        os.replace(tmp_path, secret_path)
    except OSError as exc:
        raise ValueError(
            f"cannot persist token secret under {fs_root}; set TOKEN_SECRET"
        ) from exc
    logger.info("token_secret_generated", path=str(secret_path))
    return generated


class Settings(BaseModel):
    """Process-wide configuration, read once at startup."""

    database_url: str = env_field(
        "postgresql://localhost:5432/chirpy", "DB_URL"
    )
    shared_fs_root: str = env_field("/srv/chirpy", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow runtime resets between tests",
    )
    jwt_secret: str = env_field(None, "TOKEN_SECRET", validate_default=True)
    jwt_issuer: str = env_field("chirpy", "JWT_ISSUER")
    polka_key: str | None = env_field(
        None, "POLKA_KEY", description="API key expected from the Polka webhook"
    )
    access_token_max_ttl_seconds: int = env_field(
        3600,
        "ACCESS_TOKEN_MAX_TTL_SECONDS",
        description="Ceiling (and default) for access tokens minted at login",
    )
    refresh_access_token_ttl_seconds: int = env_field(
        3600,
        "REFRESH_ACCESS_TOKEN_TTL_SECONDS",
        description="Lifetime of access tokens minted from a refresh token",
    )
    refresh_token_ttl_days: int = env_field(60, "REFRESH_TOKEN_TTL_DAYS")
    token_leeway_seconds: int = env_field(
        0,
        "TOKEN_LEEWAY_SECONDS",
        description="Clock skew allowance applied to access token expiry",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator(
        "access_token_max_ttl_seconds", "refresh_access_token_ttl_seconds"
    )
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token TTL must be positive")
        return value

    @field_validator("refresh_token_ttl_days")
    @classmethod
    def _positive_days(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("refresh token TTL must be positive")
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _resolve_token_secret(cls, value: str | None, info: ValidationInfo) -> str:
        if not value:
            fs_root = info.data.get("shared_fs_root") or "/srv/chirpy"
            return _load_or_create_token_secret(Path(fs_root))
        if len(value) < _MIN_SECRET_LENGTH:
            logger.warning("token_secret_short", length=len(value))
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
