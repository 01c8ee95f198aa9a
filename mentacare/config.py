from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

_ENV_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(_ENV_PATH)

DEFAULT_CLIENT_ORIGIN = "http://localhost:5173"

# Cache regions (seconds)
TTL_LIST = 5 * 60
TTL_DETAIL = 5 * 60
TTL_SUMMARY = 10 * 60
TTL_ANALYTICS = 15 * 60
TTL_SPECIALIZATIONS = 30 * 60


@dataclass(frozen=True)
class AppConfig:
    jwt_secret: str
    jwt_refresh_secret: str
    access_token_ttl_s: int = 60 * 60
    refresh_token_ttl_s: int = 7 * 24 * 60 * 60
    env: str = "production"
    client_url: Optional[str] = None
    store_backend: str = "firestore"
    firebase_credentials: Optional[str] = None
    firebase_project_id: Optional[str] = None
    cache_max_entries: int = 1024
    bcrypt_log_rounds: int = 12
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = field(default=(DEFAULT_CLIENT_ORIGIN,))

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def secure_cookies(self) -> bool:
        return not self.is_development


def _read_env(*keys: str) -> Optional[str]:
    for key in keys:
        val = os.getenv(key)
        if val:
            return val.strip()
    return None


def _read_int(key: str, default: int) -> int:
    raw = _read_env(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_config() -> AppConfig:
    jwt_secret = _read_env("JWT_SECRET")
    refresh_secret = _read_env("JWT_REFRESH_SECRET")
    if not jwt_secret:
        raise RuntimeError("Missing required env var: JWT_SECRET")
    if not refresh_secret:
        raise RuntimeError("Missing required env var: JWT_REFRESH_SECRET")

    client_url = _read_env("CLIENT_URL")
    origins = tuple(o for o in (client_url, DEFAULT_CLIENT_ORIGIN) if o)

    return AppConfig(
        jwt_secret=jwt_secret,
        jwt_refresh_secret=refresh_secret,
        access_token_ttl_s=_read_int("ACCESS_TOKEN_TTL_S", 60 * 60),
        refresh_token_ttl_s=_read_int("REFRESH_TOKEN_TTL_S", 7 * 24 * 60 * 60),
        env=(_read_env("APP_ENV", "NODE_ENV") or "production").lower(),
        client_url=client_url,
        store_backend=(_read_env("STORE_BACKEND") or "firestore").lower(),
        firebase_credentials=_read_env("FIREBASE_CREDENTIALS", "GOOGLE_APPLICATION_CREDENTIALS"),
        firebase_project_id=_read_env("FIREBASE_PROJECT_ID", "GOOGLE_CLOUD_PROJECT"),
        cache_max_entries=_read_int("CACHE_MAX_ENTRIES", 1024),
        bcrypt_log_rounds=_read_int("BCRYPT_LOG_ROUNDS", 12),
        log_level=(_read_env("LOG_LEVEL") or "INFO").upper(),
        cors_origins=origins,
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
