from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_url: str
    booking_api_key: str
    admin_api_key: str
    log_level: str
    slot_granularity_minutes: int
    booking_isolation_level: str


def _clean(value: str) -> str:
    return value.strip().strip('"').strip("'")


def _get_required_env(name: str) -> str:
    value = _clean(os.getenv(name, ""))
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _get_int_env(name: str, default: int) -> int:
    raw = _clean(os.getenv(name, ""))
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise RuntimeError(f"Environment variable {name} must be positive, got {value}")
    return value


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name="Facility Booking API",
        app_version="1.0.0",
        database_url=_get_required_env("DATABASE_URL"),
        booking_api_key=_get_required_env("BOOKING_API_KEY"),
        admin_api_key=_get_required_env("ADMIN_API_KEY"),
        log_level=_clean(os.getenv("LOG_LEVEL", "")) or "INFO",
        slot_granularity_minutes=_get_int_env("SLOT_GRANULARITY_MINUTES", 30),
        booking_isolation_level=_clean(os.getenv("BOOKING_ISOLATION_LEVEL", "")) or "SERIALIZABLE",
    )
