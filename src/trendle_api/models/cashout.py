"""Point cashout requests."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from trendle_api.core.time import utcnow
from trendle_api.db.base import Base
from trendle_api.models.account import enum_values


class CashoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"


class CashoutRequest(Base):
    """Points withdrawn from the ledger and awaiting an external payout."""

    __tablename__ = "cashout_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(CashoutStatus, name="cashout_status", values_callable=enum_values),
        nullable=False,
        default=CashoutStatus.PENDING,
        server_default=CashoutStatus.PENDING.value,
    )
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("ledger_entries.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
