from datetime import datetime, timezone
from typing import Optional


class Clock:
    """Wall clock used by the auth components, always timezone-aware UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from stores without tz support"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Global clock instance
system_clock = Clock()
