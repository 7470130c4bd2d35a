"""Quiet-window schedule resolution.

A policy row stores its schedule in one of two shapes: a per-weekday JSON map
(``quiet_days``) or the older single window (``quiet_start``/``quiet_end``).
``schedule_from_policy`` turns the row into exactly one variant of
``Schedule`` so that callers never read the legacy columns once a weekday map
exists. Everything here fails open: malformed stored data yields "no window"
rather than an exception.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from spotcheck.clock import WEEKDAY_KEYS, civil_time, resolve_zone

logger = logging.getLogger(__name__)

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass(frozen=True)
class Window:
    start: str
    end: str


@dataclass(frozen=True)
class PerWeekday:
    days: Dict[str, Window] = field(default_factory=dict)


@dataclass(frozen=True)
class Legacy:
    window: Window


@dataclass(frozen=True)
class NoSchedule:
    pass


Schedule = Union[PerWeekday, Legacy, NoSchedule]


@dataclass(frozen=True)
class ActiveWindow:
    start: str
    end: str
    tz: str

    def as_dict(self) -> Dict[str, str]:
        return {"start": self.start, "end": self.end, "tz": self.tz}


@dataclass(frozen=True)
class ScheduleVerdict:
    has_schedule: bool
    in_window: bool
    active_window: Optional[ActiveWindow]
    day_key: str
    minute_of_day: int


def parse_hhmm(value: Any) -> Optional[int]:
    """Minutes since midnight for ``H:MM``/``HH:MM``, or None when unparsable."""
    if value is None:
        return None
    m = _HHMM_RE.match(str(value).strip())
    if not m:
        return None
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        return None
    return hh * 60 + mm


def is_within(start_min: int, end_min: int, now_min: int) -> bool:
    # start == end means the window is disabled, not 24h.
    if start_min == end_min:
        return False
    if start_min < end_min:
        return start_min <= now_min < end_min
    return now_min >= start_min or now_min < end_min


def parse_quiet_days(raw: Any) -> Optional[Dict[str, Window]]:
    """Decode the stored ``quiet_days`` JSON text. Non-objects decode to None."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        obj = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            obj = json.loads(text)
        except ValueError:
            logger.warning("Ignoring malformed quiet_days value")
            return None
    if not isinstance(obj, dict):
        return None

    days: Dict[str, Window] = {}
    for key, entry in obj.items():
        if key not in WEEKDAY_KEYS or not isinstance(entry, dict):
            continue
        start, end = entry.get("start"), entry.get("end")
        if not start or not end:
            continue
        days[key] = Window(start=str(start), end=str(end))
    return days


def schedule_from_policy(policy) -> Schedule:
    if policy is None:
        return NoSchedule()
    days = parse_quiet_days(policy.quiet_days)
    if days is not None:
        return PerWeekday(days=days)
    if policy.quiet_start and policy.quiet_end:
        return Legacy(window=Window(start=policy.quiet_start, end=policy.quiet_end))
    return NoSchedule()


def window_for_day(schedule: Schedule, day_key: str) -> Optional[Window]:
    if isinstance(schedule, PerWeekday):
        return schedule.days.get(day_key)
    if isinstance(schedule, Legacy):
        return schedule.window
    return None


def resolve(schedule: Schedule, tz: Optional[str], now_ms: int) -> ScheduleVerdict:
    """Decide whether ``now_ms`` falls in today's quiet window in zone ``tz``.

    With no window today the verdict is ``has_schedule=False, in_window=True``:
    toggles alone mean "always on".
    """
    day_key, minute = civil_time(now_ms, tz)
    window = window_for_day(schedule, day_key)
    if window is None:
        return ScheduleVerdict(False, True, None, day_key, minute)

    active = ActiveWindow(start=window.start, end=window.end, tz=resolve_zone(tz).key)
    start_min, end_min = parse_hhmm(window.start), parse_hhmm(window.end)
    if start_min is None or end_min is None:
        return ScheduleVerdict(True, False, active, day_key, minute)
    return ScheduleVerdict(True, is_within(start_min, end_min, minute), active, day_key, minute)


def quiet_days_payload(schedule: Schedule) -> Optional[Dict[str, Dict[str, str]]]:
    if not isinstance(schedule, PerWeekday):
        return None
    return {key: {"start": w.start, "end": w.end} for key, w in schedule.days.items()}
