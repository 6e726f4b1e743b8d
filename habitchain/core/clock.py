"""Local wall-clock time in the configured time zone.

The engine works with naive local datetimes; adapters attach the zone
when they hand times to the platform.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo


def local_zone() -> ZoneInfo:
    from habitchain.config import settings

    return ZoneInfo(settings.TIMEZONE)


def local_now() -> datetime:
    """Current local time, naive, truncated to the second."""
    return datetime.now(local_zone()).replace(tzinfo=None, microsecond=0)
