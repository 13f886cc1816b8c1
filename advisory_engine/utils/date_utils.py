"""
Date utilities
Timezone-aware helpers shared by the cache, checkpoint and session layers
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union


def get_current_utc() -> datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Coerce an ISO string or datetime into a timezone-aware UTC datetime.

    Naive datetimes are assumed to already be UTC. Unparseable strings
    return None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip().replace("Z", "+00:00")
        if not raw:
            return None
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def expires_in(seconds: float, now: Optional[datetime] = None) -> datetime:
    return (now or get_current_utc()) + timedelta(seconds=seconds)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return ensure_utc(expires_at) <= (now or get_current_utc())
