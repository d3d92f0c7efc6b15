"""Small helpers shared by the billing services."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from databases without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe unix timestamp to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def to_major_units(amount_minor: Optional[int]) -> Decimal:
    """Convert an amount in minor units (cents) to a two-decimal amount."""
    return (Decimal(amount_minor or 0) / Decimal(100)).quantize(Decimal("0.01"))


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1")))
