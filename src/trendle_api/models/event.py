"""Venue events, registrations and check-in proofs."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from trendle_api.core.time import utcnow
from trendle_api.db.base import Base
from trendle_api.models.account import enum_values


class CheckInMethod(str, Enum):
    GPS = "gps"
    QR = "qr"
    EITHER = "either"


class Event(Base):
    """Time-boxed venue event that grants points on verified presence."""

    __tablename__ = "events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    venue_id = Column(UUID(as_uuid=True), ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    check_in_method = Column(
        SqlEnum(CheckInMethod, name="check_in_method", values_callable=enum_values),
        nullable=False,
        default=CheckInMethod.EITHER,
        server_default=CheckInMethod.EITHER.value,
    )
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    qr_token = Column(String, nullable=True)
    points_reward = Column(Integer, nullable=False, default=0, server_default="0")
    requires_registration = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    venue = relationship("Venue")


class EventRegistration(Base):
    """RSVP recorded before an event that requires one."""

    __tablename__ = "event_registrations"
    __table_args__ = (
        UniqueConstraint("account_id", "event_id", name="uq_event_registrations_account_event"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    registered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class CheckinRecord(Base):
    """Proof that an account was present at an event."""

    __tablename__ = "checkin_records"
    __table_args__ = (
        UniqueConstraint("account_id", "event_id", name="uq_checkin_records_account_event"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    event_id = Column(UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    venue_id = Column(UUID(as_uuid=True), ForeignKey("venues.id"), nullable=False)
    method = Column(SqlEnum(CheckInMethod, name="check_in_method", values_callable=enum_values), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    points_awarded = Column(Integer, nullable=False, default=0)
    distance_meters = Column(Float, nullable=True)
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("ledger_entries.id"), nullable=True)
