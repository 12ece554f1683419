"""Account and points ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from trendle_api.core.time import utcnow
from trendle_api.db.base import Base


def enum_values(members) -> list[str]:
    return [member.value for member in members]


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Account(Base):
    """Point-holding account for a platform user."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("point_balance >= 0", name="ck_accounts_point_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    username = Column(String, nullable=True, unique=True)
    point_balance = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(
        SqlEnum(AccountStatus, name="account_status", values_callable=enum_values),
        nullable=False,
        default=AccountStatus.ACTIVE,
        server_default=AccountStatus.ACTIVE.value,
    )
    warning_count = Column(Integer, nullable=False, default=0, server_default="0")
    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    ledger_entries = relationship("LedgerEntry", back_populates="account", cascade="all, delete-orphan")


class LedgerReason(str, Enum):
    """Why a ledger entry was written."""

    POST = "post"
    LIKE = "like"
    COMMENT = "comment"
    SURVEY = "survey"
    DAILY_TASK = "daily-task"
    CHECK_IN = "check-in"
    REDEMPTION_DEBIT = "redemption-debit"
    CASHOUT_DEBIT = "cashout-debit"
    ADMIN_ADJUSTMENT = "admin-adjustment"


class LedgerEntry(Base):
    """Immutable signed point delta."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key", name="uq_ledger_entries_account_idempotency"),
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
        Index("ix_ledger_entries_account_digest", "account_id", "content_digest"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    amount_delta = Column(Integer, nullable=False)
    reason = Column(SqlEnum(LedgerReason, name="ledger_reason", values_callable=enum_values), nullable=False)
    description = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=True)
    # sha256 of the normalised comment text that earned the entry
    content_digest = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    account = relationship("Account", back_populates="ledger_entries")
