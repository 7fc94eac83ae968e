"""Runtime settings for the Orders domain, read from the environment.

Values are read on every call so tests can monkeypatch the environment.
"""

import os
from decimal import Decimal, InvalidOperation

DEFAULT_PLATFORM_FEE_PERCENTAGE = Decimal("10")
DEFAULT_LOCK_TIMEOUT_SECONDS = 30


def get_environment() -> str:
    return os.getenv("PROTEAN_ENV", "development").lower()


def is_production() -> bool:
    return get_environment() == "production"


def get_platform_fee_percentage() -> Decimal:
    """Marketplace cut as a percentage of the items subtotal (10 means 10%)."""
    raw = os.getenv("PLATFORM_FEE_PERCENTAGE")
    if raw is None or not raw.strip():
        return DEFAULT_PLATFORM_FEE_PERCENTAGE
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"PLATFORM_FEE_PERCENTAGE must be numeric, got {raw!r}") from exc
    if not value.is_finite() or value < 0 or value > 100:
        raise ValueError(f"PLATFORM_FEE_PERCENTAGE must be between 0 and 100, got {raw!r}")
    return value


def get_lock_backend() -> str:
    """Per-order refund lock backend: ``memory`` (single process) or ``redis``."""
    return os.getenv("ORDER_LOCK_BACKEND", "memory").lower()


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def get_lock_timeout_seconds() -> int:
    return int(os.getenv("ORDER_LOCK_TIMEOUT_SECONDS", str(DEFAULT_LOCK_TIMEOUT_SECONDS)))
