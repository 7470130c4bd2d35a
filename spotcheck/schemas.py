from typing import List, Optional, Dict, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from spotcheck.clock import WEEKDAY_KEYS
from spotcheck.schedule import parse_hhmm


def _check_hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if parse_hhmm(value) is None:
        raise ValueError("must be a 24h time formatted HH:MM")
    return value


# Device-facing payloads

class EventResult(BaseModel):
    ok: bool = True
    errors: List[str] = Field(default_factory=list)

    @field_validator("errors")
    @classmethod
    def _errors_length(cls, value: List[str]) -> List[str]:
        if any(len(e) > 500 for e in value):
            raise ValueError("error strings are limited to 500 characters")
        return value


class EventIn(BaseModel):
    ts: int = Field(..., ge=0)
    trigger: str = Field(..., min_length=1, max_length=100)
    shortcutVersion: Optional[str] = Field(None, max_length=50)
    actionsAttempted: List[str] = Field(default_factory=list)
    result: EventResult = Field(default_factory=EventResult)

    @field_validator("actionsAttempted")
    @classmethod
    def _actions_length(cls, value: List[str]) -> List[str]:
        if any(len(a) > 50 for a in value):
            raise ValueError("action names are limited to 50 characters")
        return value


class ExtraTimeRequestIn(BaseModel):
    minutes: int = Field(..., ge=1, le=240)
    reason: Optional[str] = Field(None, max_length=300)


class ExtraTimeRequestCreated(BaseModel):
    ok: bool = True
    requestId: str
    status: Literal["pending"] = "pending"


class PairIn(BaseModel):
    code: str = Field(..., min_length=4, max_length=4)


class PairOut(BaseModel):
    deviceId: str
    name: str
    deviceToken: str
    deviceSecret: str


# Parent-facing payloads

class DeviceCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)

    @field_validator("name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class DeviceCreated(BaseModel):
    id: str
    name: str
    deviceToken: str
    deviceSecret: str


class DevicePatchIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    icon: Optional[str] = Field(None, min_length=1, max_length=60)


class DeviceSummary(BaseModel):
    id: str
    name: str
    icon: Optional[str] = None
    device_token: str
    created_at: Optional[str] = None
    last_seen_at: Optional[str] = None


class DeviceList(BaseModel):
    devices: List[DeviceSummary]


class PairingCodeIn(BaseModel):
    ttlMinutes: int = Field(10, ge=1, le=60)


class PairingCodeOut(BaseModel):
    code: str
    expiresAt: int
    ttlMinutes: int


class QuietDayWindow(BaseModel):
    # Clients may still send daily-limit fields; they are not stored.
    model_config = ConfigDict(extra="ignore")

    start: str = Field(..., max_length=20)
    end: str = Field(..., max_length=20)

    @field_validator("start", "end")
    @classmethod
    def _times(cls, value: str) -> str:
        return _check_hhmm(value)


class PolicyPatch(BaseModel):
    activateProtection: Optional[bool] = None
    setHotspotOff: Optional[bool] = None
    setWifiOff: Optional[bool] = None
    setMobileDataOff: Optional[bool] = None
    rotatePassword: Optional[bool] = None
    quietStart: Optional[str] = Field(None, max_length=20)
    quietEnd: Optional[str] = Field(None, max_length=20)
    quietDays: Optional[Dict[str, QuietDayWindow]] = None
    tz: Optional[str] = Field(None, max_length=60)
    gapMs: Optional[int] = Field(None, ge=60_000, le=7 * 24 * 60 * 60 * 1000)
    gapMinutes: Optional[int] = Field(None, ge=1, le=7 * 24 * 60)

    @field_validator("quietStart", "quietEnd")
    @classmethod
    def _times(cls, value: Optional[str]) -> Optional[str]:
        return _check_hhmm(value)

    @field_validator("quietDays")
    @classmethod
    def _weekday_keys(cls, value: Optional[Dict[str, QuietDayWindow]]):
        if value is None:
            return None
        unknown = sorted(set(value) - set(WEEKDAY_KEYS))
        if unknown:
            raise ValueError(f"unknown weekday keys: {', '.join(unknown)}; use {', '.join(WEEKDAY_KEYS)}")
        return value

    @field_validator("tz")
    @classmethod
    def _known_zone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown IANA timezone {value!r}")
        return value

    @model_validator(mode="after")
    def _gap_exclusive(self):
        if self.gapMs is not None and self.gapMinutes is not None:
            raise ValueError("send either gapMs or gapMinutes, not both")
        return self


class ExtraTimeGrantIn(BaseModel):
    minutes: int = Field(..., ge=0, le=240)
    reason: Optional[str] = Field(None, max_length=300)


class ExtraTimeDecisionIn(BaseModel):
    decision: Literal["approve", "deny"]
    grantedMinutes: Optional[int] = Field(None, ge=0, le=240)


class ExtraTimeWindowOut(BaseModel):
    ok: bool = True
    requestId: Optional[str] = None
    status: Optional[str] = None
    startsAt: Optional[int] = None
    endsAt: Optional[int] = None
    grantedMinutes: Optional[int] = None


class ExtraTimeRequestRow(BaseModel):
    id: str
    deviceId: str
    deviceName: str
    requestedMinutes: int
    reason: Optional[str] = None
    status: str
    requestedAt: int
    resolvedAt: Optional[int] = None
    resolvedBy: Optional[str] = None
    grantedMinutes: Optional[int] = None
    startsAt: Optional[int] = None
    endsAt: Optional[int] = None


class ExtraTimeRequestList(BaseModel):
    requests: List[ExtraTimeRequestRow]


class PushRegisterIn(BaseModel):
    deviceToken: str = Field(..., min_length=16, max_length=512)
    platform: Literal["ios"] = "ios"


class OkResponse(BaseModel):
    ok: bool = True
