"""Cashout requests: a ledger debit recorded against a pending payout."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.core.settings import get_settings
from trendle_api.core.time import ensure_utc, utcnow
from trendle_api.models.account import AccountStatus, LedgerReason
from trendle_api.models.cashout import CashoutRequest, CashoutStatus
from trendle_api.observability.points import get_points_store
from trendle_api.services.errors import (
    AccountSuspendedError,
    CashoutRejectedError,
    PersistenceError,
    PointsCoreError,
)
from trendle_api.services.locks import account_key

from .ledger import Ledger


@dataclass
class CashoutReceipt:
    request: CashoutRequest
    new_balance: int


class CashoutService:
    """Applies the minimum-amount and cooldown policy before debiting points."""

    def __init__(self, db_session: AsyncSession, *, ledger: Ledger | None = None) -> None:
        self._db = db_session
        self._ledger = ledger or Ledger(db_session)

    async def request_cashout(self, account_id: UUID, amount: int, *, now: datetime | None = None) -> CashoutReceipt:
        settings = get_settings()
        now = now or utcnow()
        if amount < settings.cashout_minimum_points:
            raise CashoutRejectedError(f"Minimum cashout is {settings.cashout_minimum_points} points")

        async with self._ledger.locks.hold(account_key(account_id)):
            try:
                account = await self._ledger.get_account(account_id)
                if account.status == AccountStatus.SUSPENDED:
                    raise AccountSuspendedError(account_id)

                last = await self._latest_cashout(account_id)
                if last is not None:
                    elapsed = now - ensure_utc(last.created_at)
                    cooldown = timedelta(days=settings.cashout_cooldown_days)
                    if elapsed < cooldown:
                        days_remaining = math.ceil((cooldown - elapsed) / timedelta(days=1))
                        raise CashoutRejectedError(f"You can request another cashout in {days_remaining} day(s)")

                result = await self._ledger.record_delta(
                    account_id,
                    -amount,
                    LedgerReason.CASHOUT_DEBIT,
                    description="Cashout request",
                )
                request = CashoutRequest(
                    account_id=account_id,
                    amount=amount,
                    ledger_entry_id=result.entry_id,
                    created_at=now,
                )
                self._db.add(request)
                await self._db.flush()
                await self._db.commit()
            except PointsCoreError:
                await self._db.rollback()
                raise
            except SQLAlchemyError as exc:
                await self._db.rollback()
                raise PersistenceError("Cashout could not be recorded") from exc

        get_points_store().record_ledger_delta(LedgerReason.CASHOUT_DEBIT.value, -amount)
        logger.info("Recorded cashout request", account_id=str(account_id), cashout_id=str(request.id), amount=amount)
        await self._ledger.notifications.points_changed(
            account_id,
            amount_delta=-amount,
            new_balance=result.new_balance,
            reason=LedgerReason.CASHOUT_DEBIT.value,
        )
        return CashoutReceipt(request=request, new_balance=result.new_balance)

    async def list_cashouts(self, account_id: UUID) -> list[CashoutRequest]:
        stmt = (
            select(CashoutRequest)
            .where(CashoutRequest.account_id == account_id)
            .order_by(CashoutRequest.created_at.desc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def _latest_cashout(self, account_id: UUID) -> CashoutRequest | None:
        stmt = (
            select(CashoutRequest)
            .where(
                CashoutRequest.account_id == account_id,
                CashoutRequest.status != CashoutStatus.REJECTED,
            )
            .order_by(CashoutRequest.created_at.desc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()
