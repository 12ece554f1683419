"""Venue-side voucher validation. Validating a voucher consumes it."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from trendle_api.core.time import ensure_utc, utcnow
from trendle_api.models.venue import Voucher
from trendle_api.observability.points import get_points_store
from trendle_api.observability.tracing import get_tracer
from trendle_api.services.errors import PersistenceError
from trendle_api.services.locks import KeyedLockRegistry, get_lock_registry, voucher_key
from trendle_api.services.notifications import NotificationService


class VoucherRejection(str, Enum):
    """Rejection reasons, listed in the order they are checked."""

    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    EXPIRED = "expired"
    WRONG_VENUE = "wrong_venue"


@dataclass
class VoucherValidation:
    valid: bool
    voucher: Optional[Voucher] = None
    reason: Optional[VoucherRejection] = None

    @classmethod
    def rejected(cls, reason: VoucherRejection, voucher: Voucher | None = None) -> "VoucherValidation":
        return cls(valid=False, voucher=voucher, reason=reason)


class VoucherValidator:
    """Checks a presented code and marks it consumed in the same call.

    Calls are serialised per code, and the consume write is conditioned on
    ``consumed = false`` so only one of two racing validators can win.
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

    async def validate(self, code: str, venue_id: UUID, *, now: datetime | None = None) -> VoucherValidation:
        now = now or utcnow()
        code = (code or "").strip()

        with get_tracer().start_as_current_span("vouchers.validate"):
            async with self._locks.hold(voucher_key(code)):
                try:
                    outcome = await self._consume(code, venue_id, now)
                    await self._db.commit()
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    logger.exception("Voucher validation failed", venue_id=str(venue_id))
                    raise PersistenceError("Voucher validation failed") from exc

        store = get_points_store()
        if not outcome.valid:
            store.record_voucher_validation(outcome.reason.value)
            logger.info(
                "Rejected voucher",
                venue_id=str(venue_id),
                reason=outcome.reason.value,
                voucher_id=str(outcome.voucher.id) if outcome.voucher else None,
            )
            return outcome

        voucher = outcome.voucher
        store.record_voucher_validation("consumed")
        logger.info("Consumed voucher", voucher_id=str(voucher.id), venue_id=str(venue_id))
        await self._notifications.voucher_consumed(voucher.account_id, voucher_id=voucher.id, venue_id=venue_id)
        return outcome

    async def _consume(self, code: str, venue_id: UUID, now: datetime) -> VoucherValidation:
        if not code:
            return VoucherValidation.rejected(VoucherRejection.NOT_FOUND)

        stmt = (
            select(Voucher)
            .options(selectinload(Voucher.reward))
            .where(Voucher.code == code)
            .execution_options(populate_existing=True)
        )
        voucher = (await self._db.execute(stmt)).scalar_one_or_none()
        if voucher is None:
            return VoucherValidation.rejected(VoucherRejection.NOT_FOUND)
        if voucher.consumed:
            return VoucherValidation.rejected(VoucherRejection.ALREADY_USED, voucher)
        if now > ensure_utc(voucher.expires_at):
            return VoucherValidation.rejected(VoucherRejection.EXPIRED, voucher)
        if voucher.reward.venue_id != venue_id:
            return VoucherValidation.rejected(VoucherRejection.WRONG_VENUE, voucher)

        consume = (
            update(Voucher)
            .where(Voucher.id == voucher.id, Voucher.consumed.is_(False))
            .values(consumed=True, consumed_at=now, consumed_at_venue_id=venue_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(consume)
        if result.rowcount != 1:
            return VoucherValidation.rejected(VoucherRejection.ALREADY_USED, voucher)

        set_committed_value(voucher, "consumed", True)
        set_committed_value(voucher, "consumed_at", now)
        set_committed_value(voucher, "consumed_at_venue_id", venue_id)
        return VoucherValidation(valid=True, voucher=voucher)
