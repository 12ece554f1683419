"""Moderation cases raised against accounts or their content."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from trendle_api.core.time import utcnow
from trendle_api.db.base import Base
from trendle_api.models.account import enum_values


class ModerationCaseStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class ModerationSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ModerationContentType(str, Enum):
    POST = "post"
    COMMENT = "comment"
    NONE = "none"


class ModerationAction(str, Enum):
    OPEN = "open"
    DISMISS = "dismiss"
    WARN = "warn"
    SUSPEND = "suspend"
    ESCALATE = "escalate"
    REINSTATE = "reinstate"


class ModerationCase(Base):
    """Fraud or abuse report moving through the resolution workflow."""

    __tablename__ = "moderation_cases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    subject_account_id = Column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reporter_account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    content_type = Column(
        SqlEnum(ModerationContentType, name="moderation_content_type", values_callable=enum_values),
        nullable=False,
        default=ModerationContentType.NONE,
        server_default=ModerationContentType.NONE.value,
    )
    content_id = Column(String, nullable=True)
    severity = Column(
        SqlEnum(ModerationSeverity, name="moderation_severity", values_callable=enum_values),
        nullable=False,
        default=ModerationSeverity.LOW,
        server_default=ModerationSeverity.LOW.value,
    )
    status = Column(
        SqlEnum(ModerationCaseStatus, name="moderation_case_status", values_callable=enum_values),
        nullable=False,
        default=ModerationCaseStatus.PENDING,
        server_default=ModerationCaseStatus.PENDING.value,
        index=True,
    )
    reason = Column(Text, nullable=False)
    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    events = relationship(
        "ModerationCaseEvent",
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="ModerationCaseEvent.created_at",
    )


class ModerationCaseEvent(Base):
    """Audit entry written alongside every case transition."""

    __tablename__ = "moderation_case_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    case_id = Column(
        UUID(as_uuid=True), ForeignKey("moderation_cases.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = Column(SqlEnum(ModerationAction, name="moderation_action", values_callable=enum_values), nullable=False)
    from_status = Column(String, nullable=True)
    to_status = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    actor_label = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    case = relationship("ModerationCase", back_populates="events")
