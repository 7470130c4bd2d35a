import uuid
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Integer,
    BigInteger,
    ForeignKey,
    Text,
    Boolean,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Parent(Base):
    """Parent account, identified by the subject of its federated identity."""

    __tablename__ = "parents"

    id = Column(String(36), primary_key=True, default=_uuid)
    apple_sub = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    devices = relationship("Device", back_populates="parent")
    push_tokens = relationship("ParentPushToken", back_populates="parent", cascade="all, delete-orphan")


class Device(Base):
    """Enrolled child device"""

    __tablename__ = "devices"

    id = Column(String(36), primary_key=True, default=_uuid)
    parent_id = Column(String(36), ForeignKey("parents.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(255), nullable=False, default="")
    icon = Column(String(60), nullable=True)
    device_token = Column(String(64), nullable=False, unique=True, index=True)
    device_secret = Column(String(128), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)

    parent = relationship("Parent", back_populates="devices")
    policy = relationship("DevicePolicy", back_populates="device", uselist=False, cascade="all, delete-orphan")
    events = relationship("DeviceEvent", back_populates="device", cascade="all, delete-orphan")
    extra_time_requests = relationship("ExtraTimeRequest", back_populates="device", cascade="all, delete-orphan")
    pairing_codes = relationship("PairingCode", back_populates="device", cascade="all, delete-orphan")


class DevicePolicy(Base):
    """Per-device enforcement policy; quiet_days (JSON text) supersedes quiet_start/quiet_end"""

    __tablename__ = "device_policies"

    id = Column(String(36), primary_key=True, default=_uuid)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, unique=True)
    lock_apps = Column(Boolean, nullable=False, default=True)
    hotspot_off = Column(Boolean, nullable=False, default=True)
    wifi_off = Column(Boolean, nullable=False, default=False)
    mobile_data_off = Column(Boolean, nullable=False, default=False)
    rotate_password = Column(Boolean, nullable=False, default=True)
    quiet_start = Column(String(20), nullable=True)
    quiet_end = Column(String(20), nullable=True)
    quiet_days = Column(Text, nullable=True)
    tz = Column(String(60), nullable=True)
    gap_ms = Column(BigInteger, nullable=False, default=7_200_000)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    device = relationship("Device", back_populates="policy")


class DeviceEvent(Base):
    """Append-only activity log reported by (or recorded for) a device"""

    __tablename__ = "device_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    ts = Column(BigInteger, nullable=False, index=True)  # epoch ms
    trigger = Column(String(100), nullable=False)
    shortcut_version = Column(String(50), nullable=True)
    actions_attempted = Column(Text, nullable=True)
    result_ok = Column(Boolean, nullable=False, default=True)
    result_errors = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    device = relationship("Device", back_populates="events")


class ExtraTimeRequest(Base):
    """Extra-time request / grant ledger row; all instants are epoch ms"""

    __tablename__ = "extra_time_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_minutes = Column(Integer, nullable=False)
    reason = Column(String(300), nullable=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    requested_at = Column(BigInteger, nullable=False)
    resolved_at = Column(BigInteger, nullable=True)
    resolved_by = Column(String(64), nullable=True)
    granted_minutes = Column(Integer, nullable=True)
    starts_at = Column(BigInteger, nullable=True)
    ends_at = Column(BigInteger, nullable=True, index=True)

    device = relationship("Device", back_populates="extra_time_requests")


class PairingCode(Base):
    """Short-lived one-time code a child app redeems for its device credentials"""

    __tablename__ = "pairing_codes"

    code = Column(String(8), primary_key=True)
    device_id = Column(String(36), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(BigInteger, nullable=False, index=True)
    redeemed_at = Column(BigInteger, nullable=True)
    redeemed_ip = Column(String(64), nullable=True)

    device = relationship("Device", back_populates="pairing_codes")


class ParentPushToken(Base):
    """Push registration for a parent's phone"""

    __tablename__ = "parent_push_tokens"

    token = Column(String(512), primary_key=True)
    parent_id = Column(String(36), ForeignKey("parents.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String(16), nullable=False, default="ios")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    last_used_at = Column(BigInteger, nullable=True)

    parent = relationship("Parent", back_populates="push_tokens")
