import json
import logging
import secrets
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck.errors import ConflictFailure, NotFound
from spotcheck.models import (
    Device,
    DeviceEvent,
    DevicePolicy,
    PairingCode,
    Parent,
    ParentPushToken,
)
from spotcheck.schemas import PolicyPatch
from spotcheck.settings import settings

logger = logging.getLogger(__name__)

PAIRING_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O/1/I
PAIRING_CODE_LENGTH = 4
PAIRING_CODE_ATTEMPTS = 8
EVENT_HISTORY_LIMIT = 200


def generate_device_token() -> str:
    """Non-secret device identifier (16 random bytes, hex)."""
    return secrets.token_hex(16)


def generate_device_secret() -> str:
    """Device credential; 32 random bytes so it can double as a lookup key."""
    return secrets.token_hex(32)


def generate_pairing_code(length: int = PAIRING_CODE_LENGTH) -> str:
    return "".join(secrets.choice(PAIRING_ALPHABET) for _ in range(length))


def normalize_pairing_code(code: str) -> str:
    return (code or "").strip().upper()


# Parents

async def get_parent(db: AsyncSession, parent_id: str, apple_sub: Optional[str] = None) -> Optional[Parent]:
    stmt = select(Parent).where(Parent.id == parent_id)
    if apple_sub is not None:
        stmt = stmt.where(Parent.apple_sub == apple_sub)
    return (await db.execute(stmt)).scalar_one_or_none()


async def ensure_parent(db: AsyncSession, apple_sub: str, email: Optional[str] = None) -> Parent:
    """Return the parent for a federated subject, creating it on first sight."""
    parent = (await db.execute(select(Parent).where(Parent.apple_sub == apple_sub))).scalar_one_or_none()
    if parent:
        if email and parent.email != email:
            parent.email = email
            await db.commit()
        return parent
    parent = Parent(apple_sub=apple_sub, email=email)
    db.add(parent)
    await db.commit()
    await db.refresh(parent)
    return parent


# Devices

async def create_device(db: AsyncSession, name: str, parent_id: Optional[str] = None) -> Device:
    """Enroll a device with fresh credentials and the default policy."""
    device = Device(
        parent_id=parent_id,
        name=name,
        device_token=generate_device_token(),
        device_secret=generate_device_secret(),
        created_at=datetime.now(timezone.utc),
    )
    device.policy = DevicePolicy(
        lock_apps=True,
        hotspot_off=True,
        wifi_off=False,
        mobile_data_off=False,
        rotate_password=True,
        gap_ms=settings.default_gap_ms,
    )
    db.add(device)
    await db.commit()
    await db.refresh(device)
    logger.info("Enrolled device %s (parent=%s)", device.id, parent_id or "admin")
    return device


async def get_device_by_id(db: AsyncSession, device_id: str, parent_id: Optional[str] = None) -> Optional[Device]:
    """Get a device, scoped to a parent when one is given"""
    stmt = select(Device).where(Device.id == device_id)
    if parent_id is not None:
        stmt = stmt.where(Device.parent_id == parent_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def require_device_for(db: AsyncSession, device_id: str, parent_id: Optional[str]) -> Device:
    device = await get_device_by_id(db, device_id, parent_id)
    if device is None:
        raise NotFound()
    return device


async def lock_device(db: AsyncSession, device_id: str) -> None:
    """Serialize per-device writes (row lock on Postgres; SQLite serializes writers)."""
    result = await db.execute(select(Device.id).where(Device.id == device_id).with_for_update())
    if result.scalar_one_or_none() is None:
        raise NotFound()


async def get_device_by_token(db: AsyncSession, device_token: str) -> Optional[Device]:
    result = await db.execute(select(Device).where(Device.device_token == device_token))
    return result.scalar_one_or_none()


async def get_device_by_secret(db: AsyncSession, device_secret: str) -> Optional[Device]:
    result = await db.execute(select(Device).where(Device.device_secret == device_secret))
    return result.scalar_one_or_none()


async def list_devices(db: AsyncSession, parent_id: Optional[str] = None) -> Sequence[Device]:
    stmt = select(Device).order_by(Device.created_at.desc())
    if parent_id is not None:
        stmt = stmt.where(Device.parent_id == parent_id)
    return (await db.execute(stmt)).scalars().all()


async def update_device(db: AsyncSession, device: Device, name: Optional[str], icon: Optional[str], icon_set: bool) -> Device:
    if name is not None:
        device.name = name
    if icon_set:
        device.icon = icon
    await db.commit()
    await db.refresh(device)
    return device


async def delete_device(db: AsyncSession, device: Device) -> None:
    """Delete a device; policy, events, pairing codes and extra-time rows go with it."""
    await db.delete(device)
    await db.commit()
    logger.info("Deleted device %s", device.id)


async def update_device_last_seen(db: AsyncSession, device_id: str) -> None:
    await db.execute(
        update(Device)
        .where(Device.id == device_id)
        .values(last_seen_at=datetime.now(timezone.utc))
    )


# Policy

async def get_policy(db: AsyncSession, device_id: str) -> Optional[DevicePolicy]:
    result = await db.execute(select(DevicePolicy).where(DevicePolicy.device_id == device_id))
    return result.scalar_one_or_none()


async def apply_policy_patch(db: AsyncSession, device_id: str, patch: PolicyPatch) -> DevicePolicy:
    """Apply the fields present in ``patch``; explicit nulls clear schedule fields."""
    policy = await get_policy(db, device_id)
    if policy is None:
        policy = DevicePolicy(device_id=device_id, gap_ms=settings.default_gap_ms)
        db.add(policy)

    sent = patch.model_fields_set
    toggles = {
        "activateProtection": "lock_apps",
        "setHotspotOff": "hotspot_off",
        "setWifiOff": "wifi_off",
        "setMobileDataOff": "mobile_data_off",
        "rotatePassword": "rotate_password",
    }
    for field_name, column in toggles.items():
        value = getattr(patch, field_name)
        if value is not None:
            setattr(policy, column, value)

    if "quietDays" in sent:
        if patch.quietDays is None:
            policy.quiet_days = None
        else:
            policy.quiet_days = json.dumps(
                {day: {"start": w.start, "end": w.end} for day, w in patch.quietDays.items()},
                sort_keys=True,
            )
            # The weekday map is authoritative; never keep both shapes live.
            policy.quiet_start = None
            policy.quiet_end = None
    if "quietStart" in sent:
        policy.quiet_start = patch.quietStart
    if "quietEnd" in sent:
        policy.quiet_end = patch.quietEnd
    if "tz" in sent:
        policy.tz = patch.tz

    if patch.gapMs is not None:
        policy.gap_ms = patch.gapMs
    elif patch.gapMinutes is not None:
        policy.gap_ms = patch.gapMinutes * 60_000

    policy.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(policy)
    return policy


# Events

def add_device_event(
    db: AsyncSession,
    device_id: str,
    trigger: str,
    ts: int,
    actions_attempted: Optional[List[str]] = None,
    result_ok: bool = True,
    result_errors: Optional[List[str]] = None,
    shortcut_version: Optional[str] = None,
) -> DeviceEvent:
    """Stage an event row on the session; the caller owns the commit."""
    event = DeviceEvent(
        device_id=device_id,
        ts=ts,
        trigger=trigger,
        shortcut_version=shortcut_version,
        actions_attempted=json.dumps(actions_attempted or []),
        result_ok=result_ok,
        result_errors=json.dumps(result_errors or []),
    )
    db.add(event)
    return event


def _json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return value if isinstance(value, list) else []


def event_payload(event: DeviceEvent) -> dict:
    return {
        "id": event.id,
        "ts": int(event.ts),
        "trigger": event.trigger,
        "shortcut_version": event.shortcut_version,
        "actions_attempted": _json_list(event.actions_attempted),
        "result_ok": 1 if event.result_ok else 0,
        "result_errors": _json_list(event.result_errors),
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


async def list_device_events(db: AsyncSession, device_id: str, limit: int = EVENT_HISTORY_LIMIT) -> Sequence[DeviceEvent]:
    result = await db.execute(
        select(DeviceEvent)
        .where(DeviceEvent.device_id == device_id)
        .order_by(DeviceEvent.ts.desc())
        .limit(limit)
    )
    return result.scalars().all()


async def latest_event_ts(db: AsyncSession, device_id: str) -> Optional[int]:
    result = await db.execute(select(func.max(DeviceEvent.ts)).where(DeviceEvent.device_id == device_id))
    value = result.scalar_one_or_none()
    return int(value) if value is not None else None


# Pairing

async def create_pairing_code(db: AsyncSession, device_id: str, ttl_minutes: int, now_ms: int) -> PairingCode:
    await db.execute(
        delete(PairingCode).where(
            PairingCode.device_id == device_id,
            (PairingCode.redeemed_at.is_not(None)) | (PairingCode.expires_at < now_ms),
        )
    )
    await db.commit()

    expires_at = now_ms + ttl_minutes * 60_000
    for _ in range(PAIRING_CODE_ATTEMPTS):
        row = PairingCode(code=generate_pairing_code(), device_id=device_id, expires_at=expires_at)
        db.add(row)
        try:
            await db.commit()
        except IntegrityError:
            # 4-char codes collide occasionally; pick another.
            await db.rollback()
            continue
        return row
    raise ConflictFailure("pairing_code_generation_failed", status_code=503)


async def redeem_pairing_code(db: AsyncSession, code: str, client_ip: Optional[str], now_ms: int) -> Device:
    """Exchange a one-time code for the device row; the code is burned atomically."""
    normalized = normalize_pairing_code(code)
    row = (await db.execute(select(PairingCode).where(PairingCode.code == normalized))).scalar_one_or_none()
    if row is None:
        raise NotFound("invalid_code")
    if row.redeemed_at is not None:
        raise ConflictFailure("already_redeemed")
    if int(row.expires_at) < now_ms:
        raise ConflictFailure("expired_code", status_code=410)

    device = await get_device_by_id(db, row.device_id)
    if device is None:
        raise NotFound("invalid_code")

    result = await db.execute(
        update(PairingCode)
        .where(PairingCode.code == normalized, PairingCode.redeemed_at.is_(None))
        .values(redeemed_at=now_ms, redeemed_ip=(client_ip or "")[:64])
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictFailure("already_redeemed")
    await db.commit()
    return device


# Parent push tokens

async def upsert_parent_push_token(db: AsyncSession, parent_id: str, token: str, platform: str) -> None:
    row = await db.get(ParentPushToken, token)
    if row is None:
        db.add(ParentPushToken(token=token, parent_id=parent_id, platform=platform))
    else:
        row.parent_id = parent_id
        row.platform = platform
        row.updated_at = datetime.now(timezone.utc)
    await db.commit()


async def list_parent_push_tokens(db: AsyncSession, parent_id: str) -> List[str]:
    result = await db.execute(
        select(ParentPushToken.token)
        .where(ParentPushToken.parent_id == parent_id)
        .order_by(ParentPushToken.updated_at.desc())
    )
    return [t for t in result.scalars().all() if t and t.strip()]


async def mark_push_token_used(db: AsyncSession, token: str, now_ms: int) -> None:
    await db.execute(update(ParentPushToken).where(ParentPushToken.token == token).values(last_used_at=now_ms))
    await db.commit()


async def delete_push_token(db: AsyncSession, token: str) -> None:
    await db.execute(delete(ParentPushToken).where(ParentPushToken.token == token))
    await db.commit()
