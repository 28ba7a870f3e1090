# File: app/utils/timezone_utils.py
from datetime import datetime, timezone
from typing import Optional


def utcnow():
    """Get current datetime in UTC (for database storage)."""
    return datetime.now(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialise a stored timestamp for JSON. SQLite hands back naive values, which are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()
