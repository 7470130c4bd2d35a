from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from spotcheck.settings import settings

logger = logging.getLogger(__name__)

WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def now_ms() -> int:
    return int(time.time() * 1000)


def resolve_zone(tz: Optional[str]) -> ZoneInfo:
    """Return the zone for an IANA name; unset → default zone, invalid → UTC."""
    name = (tz or "").strip() or settings.default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        logger.warning("Unknown timezone %r (%s); falling back to UTC", name, exc)
        return ZoneInfo("UTC")


def local_datetime(epoch_ms: int, tz: Optional[str]) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).astimezone(resolve_zone(tz))


def civil_time(epoch_ms: int, tz: Optional[str]) -> Tuple[str, int]:
    """Weekday key and minutes since local midnight for an instant in a zone."""
    local = local_datetime(epoch_ms, tz)
    return WEEKDAY_KEYS[local.weekday()], local.hour * 60 + local.minute


def format_hhmm(epoch_ms: int, tz: Optional[str]) -> str:
    return local_datetime(epoch_ms, tz).strftime("%H:%M")
