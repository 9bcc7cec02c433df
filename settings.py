from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_PATH_ENV = "TELEMETRY_STORE_PATH"
_CACHE_PATH_ENV = "LOCAL_CACHE_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_LOAD_TIMEOUT_ENV = "INITIAL_LOAD_TIMEOUT"
_POLL_INTERVAL_ENV = "FEED_POLL_INTERVAL"
_TOKEN_TTL_ENV = "RECOVERY_TOKEN_TTL_MINUTES"
_TIMEZONE_ENV = "DASHBOARD_TIMEZONE"
_ADMIN_PASSWORD_ENV = "DEFAULT_ADMIN_PASSWORD"


@dataclass(frozen=True)
class Settings:
    store_path: Optional[str]
    cache_path: Optional[str]
    log_level: str
    initial_load_timeout: float
    feed_poll_interval: float
    recovery_token_ttl_minutes: int
    timezone: Optional[str]
    default_admin_password: Optional[str]


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/telemetry_store.json"),
        cache_path=_read_optional_env(_CACHE_PATH_ENV, "./tmp/local_cache.json"),
        log_level=_read_log_level("INFO"),
        initial_load_timeout=_read_positive_float(_LOAD_TIMEOUT_ENV, 10.0),
        feed_poll_interval=_read_positive_float(_POLL_INTERVAL_ENV, 2.0),
        recovery_token_ttl_minutes=_read_positive_int(_TOKEN_TTL_ENV, 60),
        timezone=_read_optional_env(_TIMEZONE_ENV, None),
        default_admin_password=_read_optional_env(_ADMIN_PASSWORD_ENV, None),
    )
