"""Assemble what a device should be doing right now.

Loads the policy and ledger rows for one device and runs them through the
schedule resolver, the evaluator and the status narrator. Shared by the
device ``GET /policy`` endpoint and the parent dashboard so both always agree.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud, extra_time
from spotcheck.clock import resolve_zone
from spotcheck.evaluator import ActionSet, Evaluation, evaluate
from spotcheck.heartbeat import is_stale
from spotcheck.models import Device, DevicePolicy, ExtraTimeRequest
from spotcheck.schedule import Schedule, ScheduleVerdict, quiet_days_payload, resolve, schedule_from_policy
from spotcheck.settings import settings
from spotcheck.status import build_status_message


@dataclass
class DeviceState:
    policy: Optional[DevicePolicy]
    tz: str
    schedule: Schedule
    verdict: ScheduleVerdict
    evaluation: Evaluation
    active_extra_time: Optional[ExtraTimeRequest]
    pending_extra_time: Optional[ExtraTimeRequest]
    status_message: str

    @property
    def gap_ms(self) -> int:
        if self.policy is None or self.policy.gap_ms is None:
            return settings.default_gap_ms
        return int(self.policy.gap_ms)


async def load_device_state(db: AsyncSession, device_id: str, now_ms: int) -> DeviceState:
    policy = await crud.get_policy(db, device_id)
    tz = resolve_zone(policy.tz if policy is not None else None).key
    schedule = schedule_from_policy(policy)
    verdict = resolve(schedule, tz, now_ms)
    active = await extra_time.active_window_for(db, device_id, now_ms)
    pending = await extra_time.pending_for(db, device_id)
    evaluation = evaluate(ActionSet.from_policy(policy), verdict, active)
    message = build_status_message(verdict, evaluation, active, pending, tz)
    return DeviceState(policy, tz, schedule, verdict, evaluation, active, pending, message)


def _schedule_fields(state: DeviceState) -> Dict[str, Any]:
    window = state.verdict.active_window
    return {
        "quietDays": quiet_days_payload(state.schedule),
        "quietDay": state.verdict.day_key,
        "quietHours": window.as_dict() if window is not None else None,
    }


def policy_payload(state: DeviceState) -> Dict[str, Any]:
    """Body of ``GET /policy``."""
    actions = state.evaluation.actions.as_payload()
    return {
        "enforce": state.evaluation.enforce,
        "actions": actions,
        "activateProtection": actions["activateProtection"],
        **_schedule_fields(state),
        "isQuietHours": state.evaluation.is_quiet_hours,
        "statusMessage": state.status_message,
        "activeExtraTime": extra_time.active_payload(state.active_extra_time),
        "pendingExtraTime": extra_time.pending_payload(state.pending_extra_time),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def dashboard_entry(device: Device, state: DeviceState, last_event_ts: Optional[int], now_ms: int) -> Dict[str, Any]:
    should_be_running = state.evaluation.enforce
    return {
        "id": device.id,
        "name": device.name,
        "icon": device.icon,
        "device_token": device.device_token,
        "created_at": _iso(device.created_at),
        "last_seen_at": _iso(device.last_seen_at),
        "last_event_ts": last_event_ts,
        "last_event_at": (
            datetime.fromtimestamp(last_event_ts / 1000, tz=timezone.utc).isoformat()
            if last_event_ts is not None
            else None
        ),
        "enforce": state.evaluation.enforce,
        "actions": state.evaluation.actions.as_payload(),
        **_schedule_fields(state),
        "inQuietHours": state.evaluation.is_quiet_hours,
        "statusMessage": state.status_message,
        "activeExtraTime": extra_time.active_payload(state.active_extra_time),
        "pendingExtraTime": extra_time.pending_payload(state.pending_extra_time),
        "shouldBeRunning": should_be_running,
        "gapMs": state.gap_ms,
        "gap": is_stale(last_event_ts, state.gap_ms, now_ms, should_be_running),
    }
