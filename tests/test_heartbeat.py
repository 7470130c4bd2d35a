import asyncio
import json

import pytest
from sqlalchemy import func, select

from spotcheck import crud
from spotcheck.heartbeat import (
    HEARTBEAT_TRIGGER,
    is_stale,
    last_heartbeat_ts,
    record_heartbeat,
    should_log_heartbeat,
)
from spotcheck.models import DeviceEvent

NOW = 1_700_000_000_000
TWO_HOURS = 2 * 60 * 60 * 1000


async def _heartbeats(db, device_id):
    result = await db.execute(
        select(func.count()).select_from(DeviceEvent).where(
            DeviceEvent.device_id == device_id, DeviceEvent.trigger == HEARTBEAT_TRIGGER
        )
    )
    return result.scalar_one()


def test_not_stale_when_not_expected_to_run():
    assert is_stale(None, TWO_HOURS, NOW, should_be_running=False) is False
    assert is_stale(NOW - 10 * TWO_HOURS, TWO_HOURS, NOW, should_be_running=False) is False


def test_never_reported_is_stale():
    assert is_stale(None, TWO_HOURS, NOW, should_be_running=True) is True


def test_gap_threshold_is_exclusive():
    assert is_stale(NOW - TWO_HOURS, TWO_HOURS, NOW, True) is False
    assert is_stale(NOW - TWO_HOURS - 1, TWO_HOURS, NOW, True) is True


@pytest.mark.asyncio
async def test_heartbeat_dedupe_uses_latest_policy_fetch(session):
    device = await crud.create_device(session, "Tablet")
    assert await should_log_heartbeat(session, device.id, NOW) is True

    crud.add_device_event(session, device.id, HEARTBEAT_TRIGGER, NOW - 30_000, ["fetch_policy"])
    # Other triggers don't count as heartbeats.
    crud.add_device_event(session, device.id, "automation", NOW - 120_000, ["set_hotspot_off"])
    await session.commit()

    assert await last_heartbeat_ts(session, device.id) == NOW - 30_000
    assert await should_log_heartbeat(session, device.id, NOW) is False
    assert await should_log_heartbeat(session, device.id, NOW + 31_000) is True


@pytest.mark.asyncio
async def test_record_heartbeat_writes_once_per_window(session):
    device = await crud.create_device(session, "Phone")

    assert await record_heartbeat(session, device.id, NOW, "2.3") is True
    assert await record_heartbeat(session, device.id, NOW + 59_000) is False
    assert await record_heartbeat(session, device.id, NOW + 60_001) is True
    assert await _heartbeats(session, device.id) == 2

    event = (await session.execute(
        select(DeviceEvent).where(DeviceEvent.device_id == device.id).order_by(DeviceEvent.ts)
    )).scalars().first()
    assert event.ts == NOW
    assert event.shortcut_version == "2.3"
    assert json.loads(event.actions_attempted) == ["fetch_policy"]
    assert event.result_ok is True


@pytest.mark.asyncio
async def test_concurrent_policy_fetches_write_one_heartbeat(session_factory):
    async with session_factory() as db:
        device = await crud.create_device(db, "Phone")

    async def fetch():
        async with session_factory() as db:
            return await record_heartbeat(db, device.id, NOW)

    written = await asyncio.gather(*(fetch() for _ in range(6)))

    assert sum(written) == 1
    async with session_factory() as db:
        assert await _heartbeats(db, device.id) == 1
