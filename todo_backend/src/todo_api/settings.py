from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'memory' (default) or 'sqlite'
    - SQLITE_DB_PATH: path to sqlite db file. Default './data/todos.db'
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - JWT_SECRET: HMAC secret used to sign bearer tokens
    - JWT_ALGORITHM: signing algorithm (default: HS256)
    - JWT_EXPIRES_MINUTES: token lifetime in minutes (default: 60)
    - BCRYPT_ROUNDS: bcrypt cost factor for password hashing (default: 12)
    - ENABLE_SCHEDULER: 'true' (default) to run the recurrence and cleanup workers
    - RECURRENCE_INTERVAL_MINUTES: period of the recurrence generator (default: 60)
    - CLEANUP_HOUR_UTC: hour of day (UTC) the cleanup sweeper runs (default: 0)
    - LOG_LEVEL: logging level name (default: INFO)
    - APP_ENV: 'development' exposes internal error messages in responses
    """

    persistence_backend: str
    sqlite_db_path: str
    cors_allow_origins: List[str]
    jwt_secret: str
    jwt_algorithm: str
    jwt_expires_minutes: int
    bcrypt_rounds: int
    enable_scheduler: bool
    recurrence_interval_minutes: int
    cleanup_hour_utc: int
    log_level: str
    environment: str

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_bool(value: str, default: bool = False) -> bool:
    v = value.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str, default: int, minimum: int = 0, maximum: Optional[int] = None) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    if parsed < minimum or (maximum is not None and parsed > maximum):
        return default
    return parsed


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "memory").strip().lower()
    if backend not in {"memory", "sqlite"}:
        backend = "memory"

    return Settings(
        persistence_backend=backend,
        sqlite_db_path=_get_env("SQLITE_DB_PATH", "./data/todos.db").strip(),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        jwt_secret=_get_env("JWT_SECRET", "change-me-in-production"),
        jwt_algorithm=_get_env("JWT_ALGORITHM", "HS256").strip().upper(),
        jwt_expires_minutes=_parse_int(_get_env("JWT_EXPIRES_MINUTES", "60"), 60, minimum=1),
        bcrypt_rounds=_parse_int(_get_env("BCRYPT_ROUNDS", "12"), 12, minimum=4, maximum=31),
        enable_scheduler=_parse_bool(_get_env("ENABLE_SCHEDULER", "true"), True),
        recurrence_interval_minutes=_parse_int(
            _get_env("RECURRENCE_INTERVAL_MINUTES", "60"), 60, minimum=1
        ),
        cleanup_hour_utc=_parse_int(_get_env("CLEANUP_HOUR_UTC", "0"), 0, minimum=0, maximum=23),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        environment=_get_env("APP_ENV", "production").strip().lower(),
    )
