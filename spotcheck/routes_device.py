"""Child-device endpoints.

Mounted at the root (no API prefix): legacy Shortcut clients sign the bare
path, so moving these would invalidate their signatures.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud, extra_time, schemas
from spotcheck.auth import require_device
from spotcheck.clock import now_ms
from spotcheck.database import get_db
from spotcheck.device_state import load_device_state, policy_payload
from spotcheck.heartbeat import record_heartbeat
from spotcheck.limits import limiter
from spotcheck.metrics import metrics
from spotcheck.models import Device
from spotcheck.notifications import enqueue_parent_notification, extra_time_request_message
from spotcheck.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["device"])


def _shortcut_version(request: Request):
    raw = request.headers.get("X-Shortcut-Version") or request.headers.get("X-SpotCheck-Shortcut-Version") or ""
    return raw.strip()[:50] or None


@router.get("/policy")
async def get_policy(
    request: Request,
    device: Device = Depends(require_device),
    db: AsyncSession = Depends(get_db),
):
    """Current enforcement decision for the calling device."""
    now = now_ms()
    await crud.update_device_last_seen(db, device.id)
    await db.commit()

    # Policy fetches double as the heartbeat; losing one must not fail the fetch.
    try:
        await record_heartbeat(db, device.id, now, _shortcut_version(request))
    except SQLAlchemyError:
        logger.exception("Failed to record heartbeat for device %s", device.id)
        await db.rollback()

    with metrics.timed("policy_eval_ms"):
        state = await load_device_state(db, device.id, now)
    metrics.increment("policy_fetches")
    return policy_payload(state)


@router.post("/events", status_code=status.HTTP_201_CREATED, response_model=schemas.OkResponse)
async def create_event(
    event: schemas.EventIn,
    device: Device = Depends(require_device),
    db: AsyncSession = Depends(get_db),
):
    await crud.update_device_last_seen(db, device.id)
    crud.add_device_event(
        db,
        device.id,
        event.trigger,
        event.ts,
        event.actionsAttempted,
        result_ok=event.result.ok,
        result_errors=event.result.errors,
        shortcut_version=event.shortcutVersion,
    )
    await db.commit()
    return {"ok": True}


@router.post(
    "/extra-time/request",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.ExtraTimeRequestCreated,
)
@limiter.limit(settings.extra_time_rate_limit)
async def request_extra_time(
    request: Request,
    body: schemas.ExtraTimeRequestIn,
    background_tasks: BackgroundTasks,
    device: Device = Depends(require_device),
    db: AsyncSession = Depends(get_db),
):
    """Child asks for a pause; the parent is notified out of band."""
    row = await extra_time.request_extra_time(db, device.id, body.minutes, body.reason, now_ms())
    metrics.increment("extra_time_requests")

    if device.parent_id:
        background_tasks.add_task(
            enqueue_parent_notification,
            extra_time_request_message(
                parent_id=device.parent_id,
                device_id=device.id,
                device_name=device.name,
                request_id=row.id,
                requested_minutes=row.requested_minutes,
                reason=row.reason,
            ),
        )
    else:
        logger.info("Extra time request %s has no parent to notify", row.id)

    return {"ok": True, "requestId": row.id, "status": "pending"}


@router.post("/pair", response_model=schemas.PairOut, tags=["pairing"])
@limiter.limit(settings.pairing_rate_limit)
async def pair(request: Request, body: schemas.PairIn, db: AsyncSession = Depends(get_db)):
    """Redeem a pairing code; credentials are returned exactly once."""
    client_ip = request.client.host if request.client else None
    device = await crud.redeem_pairing_code(db, body.code, client_ip, now_ms())
    logger.info("Pairing code redeemed for device %s", device.id)
    return {
        "deviceId": device.id,
        "name": device.name,
        "deviceToken": device.device_token,
        "deviceSecret": device.device_secret,
    }
