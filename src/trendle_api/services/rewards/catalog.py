"""Venue reward catalog and voucher issuance."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from trendle_api.core.settings import get_settings
from trendle_api.core.time import ensure_utc, utcnow
from trendle_api.models.account import AccountStatus, LedgerReason
from trendle_api.models.venue import Reward, Venue, Voucher
from trendle_api.observability.points import get_points_store
from trendle_api.observability.tracing import get_tracer
from trendle_api.services.errors import (
    AccountSuspendedError,
    PersistenceError,
    PointsCoreError,
    RewardInactiveError,
    RewardNotFoundError,
    VenueNotFoundError,
)
from trendle_api.services.ledger import Ledger
from trendle_api.services.locks import account_key


class VoucherStatus(str, Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"


def voucher_status(voucher: Voucher, *, now: datetime | None = None) -> VoucherStatus:
    """Expiry is derived from ``expires_at``; it is never written."""

    if voucher.consumed:
        return VoucherStatus.CONSUMED
    if (now or utcnow()) > ensure_utc(voucher.expires_at):
        return VoucherStatus.EXPIRED
    return VoucherStatus.ACTIVE


def generate_voucher_code() -> str:
    return secrets.token_urlsafe(get_settings().voucher_code_bytes)


class RewardCatalog:
    """Coordinates reward listings and point redemptions."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: Ledger | None = None,
        code_factory: Callable[[], str] | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or Ledger(db_session)
        self._code_factory = code_factory or generate_voucher_code

    async def create_reward(
        self,
        venue_id: UUID,
        *,
        title: str,
        cost_points: int,
        category: str | None = None,
        description: str | None = None,
    ) -> Reward:
        if cost_points < 0:
            raise ValueError("Reward cost cannot be negative")
        if await self._db.get(Venue, venue_id) is None:
            raise VenueNotFoundError(venue_id)

        reward = Reward(
            venue_id=venue_id,
            title=title,
            cost_points=cost_points,
            category=category,
            description=description,
        )
        self._db.add(reward)
        await self._db.commit()
        logger.info("Created reward", reward_id=str(reward.id), venue_id=str(venue_id), cost_points=cost_points)
        return reward

    async def set_reward_active(self, reward_id: UUID, active: bool) -> Reward:
        """Soft toggle. Vouchers already issued stay redeemable until they expire."""

        reward = await self.get_reward(reward_id)
        if reward is None:
            raise RewardNotFoundError(reward_id)
        reward.is_active = active
        await self._db.commit()
        logger.info("Updated reward availability", reward_id=str(reward_id), active=active)
        return reward

    async def get_reward(self, reward_id: UUID) -> Reward | None:
        return await self._db.get(Reward, reward_id, populate_existing=True)

    async def list_rewards(self, *, venue_id: UUID | None = None, include_inactive: bool = False) -> list[Reward]:
        """Return rewards ordered by cost."""

        stmt = select(Reward)
        if venue_id is not None:
            stmt = stmt.where(Reward.venue_id == venue_id)
        if not include_inactive:
            stmt = stmt.where(Reward.is_active.is_(True))
        stmt = stmt.order_by(Reward.cost_points.asc(), Reward.title.asc())
        result = await self._db.execute(stmt)
        rewards = list(result.scalars().all())
        logger.debug("Fetched rewards", count=len(rewards), venue_id=str(venue_id) if venue_id else None)
        return rewards

    async def list_account_vouchers(self, account_id: UUID) -> list[Voucher]:
        stmt = (
            select(Voucher)
            .options(selectinload(Voucher.reward))
            .where(Voucher.account_id == account_id)
            .order_by(Voucher.issued_at.desc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def redeem(self, account_id: UUID, reward_id: UUID, *, now: datetime | None = None) -> Voucher:
        """Debit the reward cost and issue a voucher in a single transaction.

        If anything fails after the debit has been staged the transaction is
        rolled back, so points are never lost without a voucher.
        """

        now = now or utcnow()
        store = get_points_store()
        with get_tracer().start_as_current_span("rewards.redeem"):
            async with self._ledger.locks.hold(account_key(account_id)):
                try:
                    voucher, new_balance = await self._issue(account_id, reward_id, now)
                    await self._db.commit()
                except PointsCoreError as exc:
                    await self._db.rollback()
                    store.record_redemption(exc.code)
                    raise
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    store.record_redemption("failed")
                    logger.exception("Redemption failed", account_id=str(account_id), reward_id=str(reward_id))
                    raise PersistenceError("Redemption could not be completed") from exc
                except Exception:
                    await self._db.rollback()
                    store.record_redemption("failed")
                    logger.exception("Redemption aborted", account_id=str(account_id), reward_id=str(reward_id))
                    raise

        store.record_redemption("issued")
        if voucher.points_cost:
            store.record_ledger_delta(LedgerReason.REDEMPTION_DEBIT.value, -voucher.points_cost)
        logger.info(
            "Issued voucher",
            voucher_id=str(voucher.id),
            account_id=str(account_id),
            reward_id=str(reward_id),
            points=voucher.points_cost,
        )
        notifications = self._ledger.notifications
        if voucher.points_cost:
            await notifications.points_changed(
                account_id,
                amount_delta=-voucher.points_cost,
                new_balance=new_balance,
                reason=LedgerReason.REDEMPTION_DEBIT.value,
            )
        await notifications.voucher_issued(
            account_id,
            voucher_id=voucher.id,
            reward_title=voucher.reward.title,
            expires_at=ensure_utc(voucher.expires_at).isoformat(),
        )
        return voucher

    async def _issue(self, account_id: UUID, reward_id: UUID, now: datetime) -> tuple[Voucher, int]:
        reward = await self.get_reward(reward_id)
        if reward is None:
            raise RewardNotFoundError(reward_id)
        if not reward.is_active:
            raise RewardInactiveError(reward_id)

        account = await self._ledger.get_account(account_id)
        if account.status == AccountStatus.SUSPENDED:
            raise AccountSuspendedError(account_id)

        cost = int(reward.cost_points or 0)
        ledger_entry_id = None
        new_balance = int(account.point_balance or 0)
        if cost > 0:
            debit = await self._ledger.record_delta(
                account_id,
                -cost,
                LedgerReason.REDEMPTION_DEBIT,
                description=f"Redeemed {reward.title}",
            )
            ledger_entry_id = debit.entry_id
            new_balance = debit.new_balance

        voucher = Voucher(
            account_id=account_id,
            reward_id=reward.id,
            ledger_entry_id=ledger_entry_id,
            code=self._code_factory(),
            points_cost=cost,
            issued_at=now,
            expires_at=now + timedelta(days=get_settings().voucher_ttl_days),
            consumed=False,
        )
        voucher.reward = reward
        self._db.add(voucher)
        await self._db.flush()
        return voucher, new_balance
