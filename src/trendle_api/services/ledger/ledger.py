"""Append-only points ledger and the cached balance it maintains."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.core.settings import get_settings
from trendle_api.core.time import utcnow
from trendle_api.models.account import Account, AccountStatus, LedgerEntry, LedgerReason
from trendle_api.observability.points import get_points_store
from trendle_api.observability.tracing import get_tracer
from trendle_api.services.errors import (
    AccountNotFoundError,
    DuplicateLedgerEntryError,
    InsufficientBalanceError,
    PersistenceError,
    PointsCoreError,
)
from trendle_api.services.locks import KeyedLockRegistry, account_key, get_lock_registry
from trendle_api.services.notifications import NotificationService


class Tier(str, Enum):
    """Balance-derived classification. A view over the balance, never stored."""

    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


def tier_for_balance(
    balance: int,
    *,
    gold_threshold: int | None = None,
    platinum_threshold: int | None = None,
) -> Tier:
    settings = get_settings()
    gold = settings.tier_gold_threshold if gold_threshold is None else gold_threshold
    platinum = settings.tier_platinum_threshold if platinum_threshold is None else platinum_threshold
    if balance >= platinum:
        return Tier.PLATINUM
    if balance >= gold:
        return Tier.GOLD
    return Tier.SILVER


def _next_tier(balance: int) -> tuple[Tier | None, int]:
    settings = get_settings()
    if balance < settings.tier_gold_threshold:
        return Tier.GOLD, settings.tier_gold_threshold - balance
    if balance < settings.tier_platinum_threshold:
        return Tier.PLATINUM, settings.tier_platinum_threshold - balance
    return None, 0


@dataclass
class LedgerResult:
    """Outcome of a committed (or staged) balance mutation."""

    entry_id: UUID
    account_id: UUID
    amount_delta: int
    new_balance: int
    reason: LedgerReason

    @property
    def tier(self) -> Tier:
        return tier_for_balance(self.new_balance)


@dataclass
class BalanceAudit:
    account_id: UUID
    cached_balance: int
    ledger_sum: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_sum


@dataclass
class AccountSnapshot:
    """Serializable points overview for clients."""

    account_id: UUID
    balance: int
    tier: Tier
    next_tier: Optional[Tier]
    points_to_next_tier: int
    status: AccountStatus
    warning_count: int


@dataclass
class LedgerWindow:
    entries: list[LedgerEntry]
    next_cursor: Optional[str]


class Ledger:
    """Owns every write to ``Account.point_balance``.

    Each mutation is a conditional ``UPDATE`` that refuses to take the balance
    below zero, followed by the entry insert, both in one transaction and under
    the per-account lock.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notification_service: NotificationService | None = None,
        locks: KeyedLockRegistry | None = None,
    ) -> None:
        self._db = db_session
        self._notifications = notification_service or NotificationService()
        self._locks = locks or get_lock_registry()

    @property
    def locks(self) -> KeyedLockRegistry:
        return self._locks

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    async def ensure_account(self, account_id: UUID | None = None, *, username: str | None = None) -> Account:
        """Fetch or create an account with an empty balance."""

        if account_id is not None:
            existing = await self._db.get(Account, account_id)
            if existing is not None:
                return existing

        account = Account(username=username, point_balance=0)
        if account_id is not None:
            account.id = account_id
        self._db.add(account)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when creating account", account_id=str(account_id))
            if account_id is None:
                raise
            return await self.get_account(account_id)

        logger.info("Created points account", account_id=str(account.id))
        return account

    async def get_account(self, account_id: UUID) -> Account:
        account = await self._db.get(Account, account_id, populate_existing=True)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    async def get_balance(self, account_id: UUID) -> int:
        balance = await self._db.scalar(select(Account.point_balance).where(Account.id == account_id))
        if balance is None:
            raise AccountNotFoundError(account_id)
        return int(balance)

    async def sum_entries(self, account_id: UUID) -> int:
        total = await self._db.scalar(
            select(func.coalesce(func.sum(LedgerEntry.amount_delta), 0)).where(LedgerEntry.account_id == account_id)
        )
        return int(total or 0)

    async def verify_balance(self, account_id: UUID) -> BalanceAudit:
        """Compare the cached balance against the sum of entries."""

        audit = BalanceAudit(
            account_id=account_id,
            cached_balance=await self.get_balance(account_id),
            ledger_sum=await self.sum_entries(account_id),
        )
        if not audit.consistent:
            logger.error(
                "Ledger balance drift detected",
                account_id=str(account_id),
                cached_balance=audit.cached_balance,
                ledger_sum=audit.ledger_sum,
            )
        return audit

    async def get_tier(self, account_id: UUID) -> Tier:
        return tier_for_balance(await self.get_balance(account_id))

    async def snapshot(self, account_id: UUID) -> AccountSnapshot:
        account = await self.get_account(account_id)
        balance = int(account.point_balance or 0)
        next_tier, remaining = _next_tier(balance)
        return AccountSnapshot(
            account_id=account.id,
            balance=balance,
            tier=tier_for_balance(balance),
            next_tier=next_tier,
            points_to_next_tier=remaining,
            status=account.status,
            warning_count=int(account.warning_count or 0),
        )

    async def list_entries(
        self,
        account_id: UUID,
        *,
        limit: int = 25,
        cursor: str | None = None,
    ) -> LedgerWindow:
        """Return entries newest first with an opaque continuation cursor."""

        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id)
        if cursor:
            created_at, entry_id = decode_time_uuid_cursor(cursor)
            stmt = stmt.where(
                or_(
                    LedgerEntry.created_at < created_at,
                    and_(LedgerEntry.created_at == created_at, LedgerEntry.id < entry_id),
                )
            )
        stmt = stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).limit(limit + 1)
        result = await self._db.execute(stmt)
        entries = list(result.scalars().all())

        next_cursor = None
        if len(entries) > limit:
            entries = entries[:limit]
            last = entries[-1]
            next_cursor = encode_time_uuid_cursor(last.created_at, last.id)
        return LedgerWindow(entries=entries, next_cursor=next_cursor)

    async def apply_delta(
        self,
        account_id: UUID,
        amount_delta: int,
        reason: LedgerReason,
        *,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerResult:
        """Apply a signed delta and commit it together with its ledger entry."""

        with get_tracer().start_as_current_span("ledger.apply_delta"):
            async with self._locks.hold(account_key(account_id)):
                try:
                    result = await self.record_delta(
                        account_id,
                        amount_delta,
                        reason,
                        description=description,
                        idempotency_key=idempotency_key,
                    )
                    await self._db.commit()
                except PointsCoreError:
                    await self._db.rollback()
                    raise
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    logger.exception("Ledger write failed", account_id=str(account_id), reason=reason.value)
                    raise PersistenceError("Ledger write failed") from exc

        get_points_store().record_ledger_delta(reason.value, amount_delta)
        await self._notifications.points_changed(
            account_id,
            amount_delta=amount_delta,
            new_balance=result.new_balance,
            reason=reason.value,
        )
        return result

    async def record_delta(
        self,
        account_id: UUID,
        amount_delta: int,
        reason: LedgerReason,
        *,
        description: str | None = None,
        idempotency_key: str | None = None,
        content_digest: str | None = None,
    ) -> LedgerResult:
        """Stage a delta inside the caller's transaction.

        Callers must hold the account lock, own the commit/rollback and record the
        delta with the points store once committed. Nothing is written when the
        balance would go negative.
        """

        if isinstance(amount_delta, bool) or not isinstance(amount_delta, int):
            raise TypeError("Ledger deltas must be whole points")
        if amount_delta == 0:
            raise ValueError("Ledger entries require a non-zero amount")

        if idempotency_key is not None:
            duplicate = await self._db.scalar(
                select(LedgerEntry.id).where(
                    LedgerEntry.account_id == account_id,
                    LedgerEntry.idempotency_key == idempotency_key,
                )
            )
            if duplicate is not None:
                raise DuplicateLedgerEntryError(account_id, idempotency_key)

        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.point_balance + amount_delta >= 0)
            .values(point_balance=Account.point_balance + amount_delta, updated_at=utcnow())
            .returning(Account.point_balance)
        )
        new_balance = (await self._db.execute(stmt)).scalar_one_or_none()
        if new_balance is None:
            current = await self._db.scalar(select(Account.point_balance).where(Account.id == account_id))
            if current is None:
                raise AccountNotFoundError(account_id)
            logger.info(
                "Rejected ledger debit",
                account_id=str(account_id),
                balance=int(current),
                amount_delta=amount_delta,
                reason=reason.value,
            )
            raise InsufficientBalanceError(account_id, int(current), -amount_delta)

        entry = LedgerEntry(
            account_id=account_id,
            amount_delta=amount_delta,
            reason=reason,
            description=description,
            idempotency_key=idempotency_key,
            content_digest=content_digest,
        )
        self._db.add(entry)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            if idempotency_key is not None:
                raise DuplicateLedgerEntryError(account_id, idempotency_key) from exc
            raise

        logger.info(
            "Recorded ledger entry",
            account_id=str(account_id),
            entry_id=str(entry.id),
            amount_delta=amount_delta,
            reason=reason.value,
            balance=int(new_balance),
        )
        return LedgerResult(
            entry_id=entry.id,
            account_id=account_id,
            amount_delta=amount_delta,
            new_balance=int(new_balance),
            reason=reason,
        )


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)
