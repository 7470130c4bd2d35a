"""Parent / admin API.

Every route accepts either a parent session token (scoped to that parent's
devices) or the admin token (all devices), except ``/me`` and
``/push/register`` which need a real parent.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud, extra_time, schemas
from spotcheck.auth import ParentContext, require_parent, require_parent_or_admin
from spotcheck.clock import now_ms
from spotcheck.database import get_db
from spotcheck.device_state import dashboard_entry, load_device_state
from spotcheck.errors import BadRequest
from spotcheck.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix=settings.api_base_path, tags=["parent"])


def _iso(value):
    return value.isoformat() if value is not None else None


def _device_summary(device) -> dict:
    return {
        "id": device.id,
        "name": device.name,
        "icon": device.icon,
        "device_token": device.device_token,
        "created_at": _iso(device.created_at),
        "last_seen_at": _iso(device.last_seen_at),
    }


@router.get("/me")
async def me(ctx: ParentContext = Depends(require_parent)):
    parent = ctx.parent
    return {
        "ok": True,
        "parent": {"id": parent.id, "email": parent.email, "created_at": _iso(parent.created_at)},
    }


@router.post("/push/register", response_model=schemas.OkResponse)
async def register_push_token(
    body: schemas.PushRegisterIn,
    ctx: ParentContext = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
):
    await crud.upsert_parent_push_token(db, ctx.parent_id, body.deviceToken.strip(), body.platform)
    logger.info("Registered push token for parent %s", ctx.parent_id)
    return {"ok": True}


@router.get("/dashboard")
async def dashboard(ctx: ParentContext = Depends(require_parent_or_admin), db: AsyncSession = Depends(get_db)):
    """Per-device live state, including whether an enforcing device has gone quiet."""
    now = now_ms()
    entries = []
    for device in await crud.list_devices(db, ctx.scope):
        state = await load_device_state(db, device.id, now)
        last_event_ts = await crud.latest_event_ts(db, device.id)
        entries.append(dashboard_entry(device, state, last_event_ts, now))
    return {"devices": entries}


# Devices

@router.get("/devices", response_model=schemas.DeviceList)
async def list_devices(ctx: ParentContext = Depends(require_parent_or_admin), db: AsyncSession = Depends(get_db)):
    return {"devices": [_device_summary(d) for d in await crud.list_devices(db, ctx.scope)]}


@router.post("/devices", status_code=status.HTTP_201_CREATED, response_model=schemas.DeviceCreated)
async def create_device(
    body: schemas.DeviceCreateIn,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    device = await crud.create_device(db, body.name, ctx.parent_id)
    return {"id": device.id, "name": device.name, "deviceToken": device.device_token, "deviceSecret": device.device_secret}


@router.patch("/devices/{device_id}", response_model=schemas.OkResponse)
async def update_device(
    device_id: str,
    body: schemas.DevicePatchIn,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    device = await crud.require_device_for(db, device_id, ctx.scope)
    icon_set = "icon" in body.model_fields_set
    if body.name is None and not icon_set:
        raise BadRequest("no_fields")
    await crud.update_device(db, device, body.name, body.icon, icon_set)
    return {"ok": True}


@router.delete("/devices/{device_id}", response_model=schemas.OkResponse)
async def delete_device(
    device_id: str,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    device = await crud.require_device_for(db, device_id, ctx.scope)
    await crud.delete_device(db, device)
    return {"ok": True}


@router.post(
    "/devices/{device_id}/pairing-code",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.PairingCodeOut,
)
async def create_pairing_code(
    device_id: str,
    body: Optional[schemas.PairingCodeIn] = None,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    body = body or schemas.PairingCodeIn()
    device = await crud.require_device_for(db, device_id, ctx.scope)
    row = await crud.create_pairing_code(db, device.id, body.ttlMinutes, now_ms())
    return {"code": row.code, "expiresAt": int(row.expires_at), "ttlMinutes": body.ttlMinutes}


@router.patch("/devices/{device_id}/policy", response_model=schemas.OkResponse)
async def update_policy(
    device_id: str,
    patch: schemas.PolicyPatch,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    device = await crud.require_device_for(db, device_id, ctx.scope)
    await crud.apply_policy_patch(db, device.id, patch)
    logger.info("Policy updated for device %s (fields=%s)", device.id, sorted(patch.model_fields_set))
    return {"ok": True}


@router.get("/devices/{device_id}/events")
async def device_events(
    device_id: str,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    device = await crud.require_device_for(db, device_id, ctx.scope)
    events = await crud.list_device_events(db, device.id)
    return {"events": [crud.event_payload(e) for e in events]}


# Extra time

@router.post("/devices/{device_id}/extra-time/grant", response_model=schemas.ExtraTimeWindowOut)
async def grant_extra_time(
    device_id: str,
    body: schemas.ExtraTimeGrantIn,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    device = await crud.require_device_for(db, device_id, ctx.scope)
    row = await extra_time.grant_direct(db, device.id, body.minutes, body.reason, ctx.resolver, now_ms())
    return {
        "ok": True,
        "requestId": row.id,
        "status": row.status,
        "startsAt": row.starts_at,
        "endsAt": row.ends_at,
        "grantedMinutes": row.granted_minutes,
    }


@router.get("/extra-time/requests", response_model=schemas.ExtraTimeRequestList)
async def list_extra_time_requests(
    request_status: Optional[Literal["pending", "approved", "denied", "all"]] = Query(None, alias="status"),
    device_id: Optional[str] = Query(None, alias="deviceId", max_length=36),
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await extra_time.list_requests(db, ctx.scope, request_status, device_id)
    return {"requests": rows}


@router.post("/extra-time/requests/{request_id}/decision", response_model=schemas.ExtraTimeWindowOut)
async def decide_extra_time(
    request_id: str,
    body: schemas.ExtraTimeDecisionIn,
    ctx: ParentContext = Depends(require_parent_or_admin),
    db: AsyncSession = Depends(get_db),
):
    row = await extra_time.decide(
        db,
        request_id,
        approve=body.decision == "approve",
        granted_minutes=body.grantedMinutes,
        resolved_by=ctx.resolver,
        now_ms=now_ms(),
        parent_id=ctx.scope,
    )
    if row.status == extra_time.DENIED:
        return {"ok": True, "requestId": row.id, "status": row.status}
    return {
        "ok": True,
        "requestId": row.id,
        "status": row.status,
        "startsAt": row.starts_at,
        "endsAt": row.ends_at,
        "grantedMinutes": row.granted_minutes,
    }
