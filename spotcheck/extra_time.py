"""Extra-time ledger.

Rows move ``pending -> approved`` or ``pending -> denied``. Approved rows carry
a ``[starts_at, ends_at)`` window in epoch milliseconds. Whenever a new window
is approved (decision or direct grant), every approved window of the same
device that is still live is first clamped to end *now*; clamp and write run
in one transaction holding the device row lock, so at most one approved window
per device contains any instant.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud
from spotcheck.errors import ConflictFailure, NotFound, ValidationFailure
from spotcheck.models import Device, ExtraTimeRequest

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
DENIED = "denied"
STATUSES = (PENDING, APPROVED, DENIED)

MIN_REQUEST_MINUTES = 1
MAX_MINUTES = 240
MAX_REASON_LENGTH = 300
MANUAL_GRANT_REASON = "manual_grant"
LIST_LIMIT = 500


def _check_minutes(field: str, minutes: int, minimum: int) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationFailure(field, "must be an integer")
    if minutes < minimum or minutes > MAX_MINUTES:
        raise ValidationFailure(field, f"must be between {minimum} and {MAX_MINUTES}")
    return minutes


def _clean_reason(reason: Optional[str]) -> Optional[str]:
    if reason is None:
        return None
    reason = reason.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationFailure("reason", f"must be at most {MAX_REASON_LENGTH} characters")
    return reason or None


async def _collapse_live_windows(db: AsyncSession, device_id: str, now_ms: int) -> int:
    result = await db.execute(
        update(ExtraTimeRequest)
        .where(
            ExtraTimeRequest.device_id == device_id,
            ExtraTimeRequest.status == APPROVED,
            ExtraTimeRequest.starts_at.is_not(None),
            ExtraTimeRequest.ends_at.is_not(None),
            ExtraTimeRequest.starts_at <= now_ms,
            ExtraTimeRequest.ends_at > now_ms,
        )
        .values(ends_at=now_ms)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def request_extra_time(
    db: AsyncSession,
    device_id: str,
    minutes: int,
    reason: Optional[str],
    now_ms: int,
) -> ExtraTimeRequest:
    """Child-side request; lands as ``pending``."""
    minutes = _check_minutes("minutes", minutes, MIN_REQUEST_MINUTES)
    row = ExtraTimeRequest(
        device_id=device_id,
        requested_minutes=minutes,
        reason=_clean_reason(reason),
        status=PENDING,
        requested_at=now_ms,
    )
    db.add(row)
    crud.add_device_event(db, device_id, "extra_time_requested", now_ms, ["request_extra_time"])
    await db.commit()
    logger.info("Extra time requested device=%s minutes=%d request=%s", device_id, minutes, row.id)
    return row


async def decide(
    db: AsyncSession,
    request_id: str,
    approve: bool,
    granted_minutes: Optional[int],
    resolved_by: str,
    now_ms: int,
    parent_id: Optional[str] = None,
) -> ExtraTimeRequest:
    """Approve or deny a pending request.

    Raises ``NotFound`` for unknown (or foreign) requests and
    ``ConflictFailure('already_resolved')`` when the row left ``pending``
    already; in that case nothing is written.
    """
    if granted_minutes is not None:
        granted_minutes = _check_minutes("grantedMinutes", granted_minutes, 0)

    stmt = select(ExtraTimeRequest).where(ExtraTimeRequest.id == request_id)
    if parent_id is not None:
        stmt = stmt.join(Device, Device.id == ExtraTimeRequest.device_id).where(Device.parent_id == parent_id)
    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        raise NotFound()
    if row.status != PENDING:
        raise ConflictFailure("already_resolved")

    try:
        await crud.lock_device(db, row.device_id)
        if approve:
            minutes = granted_minutes if granted_minutes is not None else int(row.requested_minutes)
            await _collapse_live_windows(db, row.device_id, now_ms)
            values = dict(
                status=APPROVED,
                resolved_at=now_ms,
                resolved_by=resolved_by,
                granted_minutes=minutes,
                starts_at=now_ms,
                ends_at=now_ms + minutes * 60_000,
            )
            trigger, action = "extra_time_applied", "approve_extra_time"
        else:
            values = dict(
                status=DENIED,
                resolved_at=now_ms,
                resolved_by=resolved_by,
                granted_minutes=None,
                starts_at=None,
                ends_at=None,
            )
            trigger, action = "extra_time_denied", "deny_extra_time"

        # Conditional on still being pending so concurrent decisions can't both win.
        result = await db.execute(
            update(ExtraTimeRequest)
            .where(ExtraTimeRequest.id == row.id, ExtraTimeRequest.status == PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictFailure("already_resolved")

        crud.add_device_event(db, row.device_id, trigger, now_ms, [action])
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(row)
    logger.info("Extra time %s request=%s device=%s", row.status, row.id, row.device_id)
    return row


async def grant_direct(
    db: AsyncSession,
    device_id: str,
    minutes: int,
    reason: Optional[str],
    resolved_by: str,
    now_ms: int,
) -> ExtraTimeRequest:
    """Parent grant without a prior request. ``minutes=0`` cancels active extra time now."""
    minutes = _check_minutes("minutes", minutes, 0)
    try:
        await crud.lock_device(db, device_id)
        await _collapse_live_windows(db, device_id, now_ms)
        row = ExtraTimeRequest(
            device_id=device_id,
            requested_minutes=minutes,
            reason=_clean_reason(reason) or MANUAL_GRANT_REASON,
            status=APPROVED,
            requested_at=now_ms,
            resolved_at=now_ms,
            resolved_by=resolved_by,
            granted_minutes=minutes,
            starts_at=now_ms,
            ends_at=now_ms + minutes * 60_000,
        )
        db.add(row)
        crud.add_device_event(db, device_id, "extra_time_applied", now_ms, ["grant_extra_time"])
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Extra time granted device=%s minutes=%d", device_id, minutes)
    return row


async def active_window_for(db: AsyncSession, device_id: str, now_ms: int) -> Optional[ExtraTimeRequest]:
    result = await db.execute(
        select(ExtraTimeRequest)
        .where(
            ExtraTimeRequest.device_id == device_id,
            ExtraTimeRequest.status == APPROVED,
            ExtraTimeRequest.starts_at.is_not(None),
            ExtraTimeRequest.ends_at.is_not(None),
            ExtraTimeRequest.starts_at <= now_ms,
            ExtraTimeRequest.ends_at > now_ms,
        )
        .order_by(ExtraTimeRequest.starts_at.desc(), ExtraTimeRequest.ends_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def pending_for(db: AsyncSession, device_id: str) -> Optional[ExtraTimeRequest]:
    result = await db.execute(
        select(ExtraTimeRequest)
        .where(ExtraTimeRequest.device_id == device_id, ExtraTimeRequest.status == PENDING)
        .order_by(ExtraTimeRequest.requested_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_requests(
    db: AsyncSession,
    parent_id: Optional[str] = None,
    status: Optional[str] = None,
    device_id: Optional[str] = None,
) -> List[dict]:
    stmt = select(ExtraTimeRequest, Device.name).join(Device, Device.id == ExtraTimeRequest.device_id)
    if parent_id is not None:
        stmt = stmt.where(Device.parent_id == parent_id)
    if device_id:
        stmt = stmt.where(ExtraTimeRequest.device_id == device_id)
    if status and status != "all":
        stmt = stmt.where(ExtraTimeRequest.status == status)
    stmt = stmt.order_by(ExtraTimeRequest.requested_at.desc()).limit(LIST_LIMIT)

    rows: Sequence = (await db.execute(stmt)).all()
    return [request_row_payload(r, name) for r, name in rows]


def request_row_payload(row: ExtraTimeRequest, device_name: str) -> dict:
    return {
        "id": row.id,
        "deviceId": row.device_id,
        "deviceName": device_name,
        "requestedMinutes": int(row.requested_minutes),
        "reason": row.reason or None,
        "status": row.status,
        "requestedAt": int(row.requested_at),
        "resolvedAt": int(row.resolved_at) if row.resolved_at is not None else None,
        "resolvedBy": row.resolved_by or None,
        "grantedMinutes": int(row.granted_minutes) if row.granted_minutes is not None else None,
        "startsAt": int(row.starts_at) if row.starts_at is not None else None,
        "endsAt": int(row.ends_at) if row.ends_at is not None else None,
    }


def active_payload(row: Optional[ExtraTimeRequest]) -> Optional[dict]:
    if row is None:
        return None
    return {
        "requestId": row.id,
        "startsAt": int(row.starts_at),
        "endsAt": int(row.ends_at),
        "grantedMinutes": int(row.granted_minutes or row.requested_minutes or 0),
    }


def pending_payload(row: Optional[ExtraTimeRequest]) -> Optional[dict]:
    if row is None:
        return None
    return {
        "requestId": row.id,
        "requestedMinutes": int(row.requested_minutes),
        "requestedAt": int(row.requested_at),
    }
