import json
import uuid
from typing import Optional

from sqlalchemy import BigInteger, Boolean, String, exists, insert, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud
from spotcheck.models import DeviceEvent
from spotcheck.settings import settings

HEARTBEAT_TRIGGER = "policy_fetch"
HEARTBEAT_ACTIONS = ["fetch_policy"]


def is_stale(last_event_ts: Optional[int], gap_threshold_ms: int, now_ms: int, should_be_running: bool) -> bool:
    """True when a device that should be enforcing has not reported within the gap."""
    if not should_be_running:
        return False
    if last_event_ts is None:
        return True
    return now_ms - int(last_event_ts) > gap_threshold_ms


async def last_heartbeat_ts(db: AsyncSession, device_id: str) -> Optional[int]:
    result = await db.execute(
        select(DeviceEvent.ts)
        .where(DeviceEvent.device_id == device_id, DeviceEvent.trigger == HEARTBEAT_TRIGGER)
        .order_by(DeviceEvent.ts.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def should_log_heartbeat(db: AsyncSession, device_id: str, now_ms: int) -> bool:
    """Throttle policy-fetch heartbeats to one per dedupe window, using the event log."""
    last = await last_heartbeat_ts(db, device_id)
    return last is None or now_ms - int(last) > settings.heartbeat_dedupe_ms


async def record_heartbeat(
    db: AsyncSession,
    device_id: str,
    now_ms: int,
    shortcut_version: Optional[str] = None,
) -> bool:
    """Append a ``policy_fetch`` event unless one landed within the dedupe window.

    The insert re-checks the window in the same statement while the device row
    is locked, so concurrent fetches write at most one heartbeat. Commits, and
    returns True when a row was written.
    """
    if not await should_log_heartbeat(db, device_id, now_ms):
        return False

    await crud.lock_device(db, device_id)
    recent = (
        select(DeviceEvent.id)
        .where(
            DeviceEvent.device_id == device_id,
            DeviceEvent.trigger == HEARTBEAT_TRIGGER,
            DeviceEvent.ts >= now_ms - settings.heartbeat_dedupe_ms,
        )
    )
    row = select(
        literal(str(uuid.uuid4()), String),
        literal(device_id, String),
        literal(now_ms, BigInteger),
        literal(HEARTBEAT_TRIGGER, String),
        literal(shortcut_version, String),
        literal(json.dumps(HEARTBEAT_ACTIONS), String),
        literal(True, Boolean),
        literal(json.dumps([]), String),
    ).where(~exists(recent))
    result = await db.execute(
        insert(DeviceEvent).from_select(
            [
                DeviceEvent.id,
                DeviceEvent.device_id,
                DeviceEvent.ts,
                DeviceEvent.trigger,
                DeviceEvent.shortcut_version,
                DeviceEvent.actions_attempted,
                DeviceEvent.result_ok,
                DeviceEvent.result_errors,
            ],
            row,
        )
    )
    await db.commit()
    return result.rowcount == 1
