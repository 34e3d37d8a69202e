"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path


DEFAULT_SHARED_CAPACITY_SLOTS = "08:00=0.5,08:30=0.5"

DEFAULT_SEED_CHANNELS: tuple[tuple[str, str, str], ...] = (
    ("ch-email", "E-mail", "500000"),
    ("ch-sms", "SMS", "200000"),
    ("ch-push", "Push", "300000"),
    ("ch-whatsapp", "WhatsApp", "100000"),
)

DEFAULT_SEED_TIME_SLOTS: tuple[str, ...] = (
    "08:00",
    "08:30",
    "09:00",
    "09:30",
    "10:00",
    "11:00",
    "12:00",
    "14:00",
    "15:00",
    "16:00",
    "17:00",
    "18:00",
    "19:00",
    "20:00",
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_shared_capacity_slots(raw: str) -> dict[str, Decimal]:
    """Parse ``"08:00=0.5,08:30=0.5"`` into a slot -> multiplier table."""
    table: dict[str, Decimal] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        label, separator, multiplier = chunk.partition("=")
        if not separator:
            raise ValueError(f"shared capacity entry '{chunk}' must follow HH:MM=multiplier")
        try:
            table[label.strip()] = Decimal(multiplier.strip())
        except InvalidOperation as exc:
            raise ValueError(f"invalid shared capacity multiplier in '{chunk}'") from exc
    return table


@dataclass(frozen=True)
class Settings:
    app_name: str = "Channel Capacity Scheduler"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    log_format: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    database_path: Path = Path("data/scheduling.db")
    admin_token: str | None = None
    admin_session_ttl_seconds: int = 8 * 60 * 60
    slot_label_regex: str = r"^([01]?\d|2[0-3]):[0-5]\d(:[0-5]\d)?$"
    shared_capacity_slots: dict[str, Decimal] = field(
        default_factory=lambda: parse_shared_capacity_slots(DEFAULT_SHARED_CAPACITY_SLOTS)
    )
    allocation_apply_shared_capacity: bool = True
    availability_apply_shared_capacity: bool = True
    seed_channels: tuple[tuple[str, str, str], ...] = DEFAULT_SEED_CHANNELS
    seed_time_slots: tuple[str, ...] = DEFAULT_SEED_TIME_SLOTS


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment variables."""
    return Settings(
        app_name=os.getenv("APP_NAME", Settings.app_name),
        app_version=os.getenv("APP_VERSION", Settings.app_version),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level),
        log_format=os.getenv("LOG_FORMAT", Settings.log_format),
        database_path=Path(os.getenv("DATABASE_PATH", str(Settings.database_path))),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        admin_session_ttl_seconds=int(
            os.getenv("ADMIN_SESSION_TTL_SECONDS", str(Settings.admin_session_ttl_seconds))
        ),
        shared_capacity_slots=parse_shared_capacity_slots(
            os.getenv("SHARED_CAPACITY_SLOTS", DEFAULT_SHARED_CAPACITY_SLOTS)
        ),
        allocation_apply_shared_capacity=_env_bool(
            "ALLOCATION_APPLY_SHARED_CAPACITY",
            Settings.allocation_apply_shared_capacity,
        ),
        availability_apply_shared_capacity=_env_bool(
            "AVAILABILITY_APPLY_SHARED_CAPACITY",
            Settings.availability_apply_shared_capacity,
        ),
    )
