"""Venue, reward catalog and voucher models."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from trendle_api.core.time import utcnow
from trendle_api.db.base import Base


class Venue(Base):
    """Partner venue where rewards are honoured and events happen."""

    __tablename__ = "venues"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    category = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    rewards = relationship("Reward", back_populates="venue")


class Reward(Base):
    """Redeemable catalog item scoped to a single venue."""

    __tablename__ = "rewards"
    __table_args__ = (CheckConstraint("cost_points >= 0", name="ck_rewards_cost_points_non_negative"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    venue_id = Column(UUID(as_uuid=True), ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    cost_points = Column(Integer, nullable=False)
    category = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    venue = relationship("Venue", back_populates="rewards")
    vouchers = relationship("Voucher", back_populates="reward")


class Voucher(Base):
    """Single-use proof of a redeemed reward."""

    __tablename__ = "vouchers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    reward_id = Column(UUID(as_uuid=True), ForeignKey("rewards.id"), nullable=False)
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("ledger_entries.id"), nullable=True)
    code = Column(String, nullable=False, unique=True, index=True)
    points_cost = Column(Integer, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed = Column(Boolean, nullable=False, default=False, server_default="false")
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    consumed_at_venue_id = Column(UUID(as_uuid=True), ForeignKey("venues.id"), nullable=True)

    reward = relationship("Reward", back_populates="vouchers")
