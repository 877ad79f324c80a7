from __future__ import annotations

import logging
import os
import secrets
import tempfile

from pydantic import BaseModel, Field

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "ats", "ats.sqlite3")
LOGGER = logging.getLogger("ats.config")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc


class Settings(BaseModel):
    database_path: str = DEFAULT_DB_PATH
    redis_url: str | None = None
    redis_timeout_seconds: float = Field(default=5.0, gt=0)
    jwt_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(32), min_length=1)
    refresh_token_secret: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        min_length=1,
    )
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(default=60, ge=1)
    refresh_token_expire_days: int = Field(default=7, ge=1)
    password_hash_rounds: int = Field(default=12, ge=4, le=31)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        values: dict[str, object] = {
            "database_path": os.getenv("ATS_DB_PATH", DEFAULT_DB_PATH),
            "redis_url": os.getenv("REDIS_URL", "").strip() or None,
            "redis_timeout_seconds": float(os.getenv("REDIS_TIMEOUT_SECONDS", "5") or 5),
            "access_token_expire_minutes": _env_int("JWT_EXPIRE_MINUTES", 60),
            "refresh_token_expire_days": _env_int("JWT_REFRESH_EXPIRE_DAYS", 7),
            "password_hash_rounds": _env_int("PASSWORD_HASH_ROUNDS", 12),
            "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        }
        for env_name, field_name in (
            ("JWT_SECRET", "jwt_secret"),
            ("REFRESH_TOKEN_SECRET", "refresh_token_secret"),
        ):
            secret = os.getenv(env_name, "").strip()
            if secret:
                values[field_name] = secret
            else:
                LOGGER.warning(
                    "%s is not set; using a random secret, tokens will not survive a restart",
                    env_name,
                )
        return cls(**values)
