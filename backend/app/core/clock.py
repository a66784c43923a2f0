# app/core/clock.py
from datetime import datetime, timezone

# All timestamps are stored as naive UTC (DATETIME columns).


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: datetime) -> datetime:
    """Normalize an incoming datetime to naive UTC. Naive input is taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
