"""
Time utilities for event timestamps and catalog time windows.

All datetimes handled by the engine are naive UTC, matching how they are
stored in the database.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into a naive UTC datetime.
    
    Accepts a trailing "Z" as well as explicit offsets; values without an
    offset are taken to be UTC already.
    
    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Timestamp must be a non-empty ISO-8601 string")
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid ISO-8601 timestamp: {value}")
    
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def within_window(start: Optional[datetime], end: Optional[datetime], now: datetime) -> bool:
    """Check that now falls inside [start, end]; a missing bound is unbounded."""
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True
