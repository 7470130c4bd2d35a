"""Request authentication for devices (child side) and parents.

Devices authenticate with one of an ordered list of schemes. Each
authenticator looks at the inbound request and either declines (returns
``None``: its headers are absent) or produces a final ``AuthResult``. The first
scheme that applies decides; there is no fallthrough after a rejection.
"""

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud
from spotcheck.clock import now_ms
from spotcheck.database import get_db
from spotcheck.errors import AuthenticationFailure, ServiceMisconfigured
from spotcheck.metrics import metrics
from spotcheck.models import Device, Parent
from spotcheck.settings import settings

logger = logging.getLogger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+", re.IGNORECASE)


@dataclass(frozen=True)
class InboundRequest:
    method: str
    path: str  # without query string
    body: bytes
    headers: Mapping[str, str]
    received_at_ms: int

    def header(self, name: str) -> str:
        value = self.headers.get(name)
        if value is None:
            value = self.headers.get(name.lower())
        return (value or "").strip()


@dataclass(frozen=True)
class AuthResult:
    scheme: str
    device: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return self.device is not None


class DeviceLookup(Protocol):
    async def by_secret(self, device_secret: str) -> Optional[Any]: ...

    async def by_token(self, device_token: str) -> Optional[Any]: ...


class SessionDeviceLookup:
    """DeviceLookup backed by the database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def by_secret(self, device_secret: str) -> Optional[Device]:
        return await crud.get_device_by_secret(self.db, device_secret)

    async def by_token(self, device_token: str) -> Optional[Device]:
        return await crud.get_device_by_token(self.db, device_token)


Authenticator = Callable[[InboundRequest, DeviceLookup], Awaitable[Optional[AuthResult]]]


def _bearer_value(request: InboundRequest) -> str:
    raw = request.header("Authorization")
    if not raw or not _BEARER_RE.match(raw):
        return ""
    return _BEARER_RE.sub("", raw, count=1).strip()


async def bearer_secret(request: InboundRequest, lookup: DeviceLookup) -> Optional[AuthResult]:
    """``Authorization: Bearer <device secret>``, optionally pinned by ``X-Device-Token``."""
    secret = _bearer_value(request)
    if not secret:
        return None
    device = await lookup.by_secret(secret)
    if device is None:
        return AuthResult("bearer")
    claimed_token = request.header("X-Device-Token")
    if claimed_token and claimed_token != device.device_token:
        return AuthResult("bearer")
    return AuthResult("bearer", device)


def message_to_sign(ts: str, method: str, path: str, body: bytes) -> bytes:
    return f"{ts}\n{method.upper()}\n{path}\n".encode("utf-8") + (body or b"")


def sign(device_secret: str, ts: str, method: str, path: str, body: bytes) -> str:
    """Hex HMAC-SHA256 a legacy client sends in ``X-Signature``."""
    return hmac.new(device_secret.encode("utf-8"), message_to_sign(ts, method, path, body), hashlib.sha256).hexdigest()


def signatures_match(expected_hex: str, provided_hex: str) -> bool:
    try:
        expected = bytes.fromhex(expected_hex)
        provided = bytes.fromhex(provided_hex)
    except ValueError:
        return False
    return hmac.compare_digest(expected, provided)


async def signed_timestamp(request: InboundRequest, lookup: DeviceLookup) -> Optional[AuthResult]:
    """``X-Device-Token`` + ``X-TS`` + ``X-Signature`` over ``ts\\nMETHOD\\npath\\nbody``."""
    device_token = request.header("X-Device-Token")
    ts = request.header("X-TS")
    signature = request.header("X-Signature")
    if not (device_token or ts or signature):
        return None
    if not (device_token and ts and signature):
        return AuthResult("signed")

    try:
        ts_ms = int(ts)
    except ValueError:
        return AuthResult("signed")
    # Checked before the lookup: a stale request is rejected whatever it carries.
    if abs(request.received_at_ms - ts_ms) > settings.max_skew_ms:
        return AuthResult("signed")

    device = await lookup.by_token(device_token)
    if device is None:
        return AuthResult("signed")
    expected = sign(device.device_secret, ts, request.method, request.path, request.body)
    if not signatures_match(expected, signature):
        return AuthResult("signed")
    return AuthResult("signed", device)


AUTHENTICATORS: List[Authenticator] = [bearer_secret, signed_timestamp]


async def authenticate(
    request: InboundRequest,
    lookup: DeviceLookup,
    authenticators: Optional[List[Authenticator]] = None,
):
    """Return the authenticated device or raise ``AuthenticationFailure``."""
    for authenticator in authenticators or AUTHENTICATORS:
        result = await authenticator(request, lookup)
        if result is None:
            continue
        if result.ok:
            return result.device
        logger.info("Device auth rejected (scheme=%s) %s %s", result.scheme, request.method, request.path)
        raise AuthenticationFailure()
    logger.info("Device auth missing credentials %s %s", request.method, request.path)
    raise AuthenticationFailure()


async def require_device(request: Request, db: AsyncSession = Depends(get_db)) -> Device:
    """FastAPI dependency for child-device endpoints."""
    inbound = InboundRequest(
        method=request.method,
        path=request.url.path,
        body=await request.body(),
        headers=request.headers,
        received_at_ms=now_ms(),
    )
    try:
        return await authenticate(inbound, SessionDeviceLookup(db))
    except AuthenticationFailure:
        metrics.increment("auth_failures", labels={"surface": "device"})
        raise


# Parent sessions

def mint_session_jwt(parent_id: str, apple_sub: str, expires_days: Optional[int] = None) -> str:
    """Issue a parent session token (HS256, ``sub`` = identity subject)."""
    if not settings.session_jwt_secret:
        raise ServiceMisconfigured("missing_session_secret")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": apple_sub,
        "parentId": parent_id,
        "iat": now,
        "exp": now + timedelta(days=expires_days or settings.session_jwt_expiration_days),
    }
    return jwt.encode(payload, settings.session_jwt_secret, algorithm=settings.session_jwt_algorithm)


def verify_session_jwt(token: str) -> Optional[Dict[str, Any]]:
    """Decode a session token; None when it is expired or invalid"""
    if not settings.session_jwt_secret:
        raise ServiceMisconfigured("missing_session_secret")
    try:
        return jwt.decode(token, settings.session_jwt_secret, algorithms=[settings.session_jwt_algorithm])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


@dataclass(frozen=True)
class ParentContext:
    parent_id: Optional[str]
    is_admin: bool = False
    parent: Optional[Parent] = None

    @property
    def resolver(self) -> str:
        """Value recorded in ``resolved_by`` for decisions made by this caller."""
        return "admin" if self.is_admin else str(self.parent_id)

    @property
    def scope(self) -> Optional[str]:
        """Parent id to scope queries by; None for admin (all devices)."""
        return None if self.is_admin else self.parent_id


security = HTTPBearer(auto_error=False)


def _is_admin_token(token: str) -> bool:
    return bool(settings.admin_token) and hmac.compare_digest(token.encode(), settings.admin_token.encode())


async def _parent_from_token(db: AsyncSession, token: str) -> Parent:
    payload = verify_session_jwt(token)
    if not payload:
        raise AuthenticationFailure()
    apple_sub = str(payload.get("sub") or "")
    parent_id = str(payload.get("parentId") or "")
    if not apple_sub or not parent_id:
        raise AuthenticationFailure()
    parent = await crud.get_parent(db, parent_id, apple_sub)
    if parent is None:
        raise AuthenticationFailure()
    return parent


async def require_parent(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> ParentContext:
    """Signed-in parent only (no admin token)."""
    try:
        if credentials is None or not credentials.credentials:
            raise AuthenticationFailure()
        parent = await _parent_from_token(db, credentials.credentials)
    except AuthenticationFailure:
        metrics.increment("auth_failures", labels={"surface": "parent"})
        logger.info("Parent auth rejected")
        raise
    return ParentContext(parent_id=parent.id, parent=parent)


async def require_parent_or_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> ParentContext:
    if credentials is not None and credentials.credentials and _is_admin_token(credentials.credentials):
        return ParentContext(parent_id=None, is_admin=True)
    return await require_parent(credentials, db)
