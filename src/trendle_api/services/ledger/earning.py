"""Point awards for social activity (posts, likes, comments, surveys, daily tasks)."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.core.settings import get_settings
from trendle_api.core.time import utcnow
from trendle_api.models.account import AccountStatus, LedgerEntry, LedgerReason
from trendle_api.models.moderation import ModerationContentType, ModerationSeverity
from trendle_api.observability.points import get_points_store
from trendle_api.observability.tracing import get_tracer
from trendle_api.services.errors import (
    AccountSuspendedError,
    ActivityRejectedError,
    PersistenceError,
    PointsCoreError,
)
from trendle_api.services.locks import account_key
from trendle_api.services.moderation import ModerationCaseManager

from .ledger import Ledger, LedgerResult


def points_for_post(caption: str | None) -> int:
    settings = get_settings()
    points = settings.points_post_base
    if caption and len(caption.strip()) > settings.points_post_caption_min_length:
        points += settings.points_post_caption_bonus
    return points


def comment_qualifies(text: str) -> bool:
    return len(text.split()) >= get_settings().comment_min_words


def comment_digest(text: str) -> str:
    """Case and whitespace insensitive fingerprint of a comment body."""

    normalised = " ".join(text.lower().split())
    return hashlib.sha256(normalised.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class FraudSignal:
    """Why an award was refused, and how the resulting flag is graded."""

    message: str
    reason: str
    severity: ModerationSeverity


@dataclass(slots=True)
class _Source:
    content_type: ModerationContentType = ModerationContentType.NONE
    daily_limit: int | None = None
    digest: str | None = None


class EarningService:
    """Credits the ledger for user activity, at most once per source action.

    Award amounts come from server configuration only. Likes, comments and posts
    are capped per UTC day, and comments repeating the same text are refused.
    Refusals that look like farming are raised as moderation flags.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: Ledger | None = None,
        moderation: ModerationCaseManager | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or Ledger(db_session)
        self._moderation = moderation or ModerationCaseManager(
            db_session,
            notification_service=self._ledger.notifications,
            locks=self._ledger.locks,
        )

    async def award_post(self, account_id: UUID, post_id: str, *, caption: str | None = None) -> LedgerResult:
        return await self._award(
            account_id,
            LedgerReason.POST,
            points_for_post(caption),
            idempotency_key=f"post:{post_id}",
            description="Shared a moment",
            source=_Source(ModerationContentType.POST, daily_limit=get_settings().daily_post_limit),
        )

    async def award_like(self, account_id: UUID, post_id: str) -> LedgerResult:
        settings = get_settings()
        return await self._award(
            account_id,
            LedgerReason.LIKE,
            settings.points_like,
            idempotency_key=f"like:{post_id}",
            description="Liked a post",
            source=_Source(ModerationContentType.POST, daily_limit=settings.daily_like_limit),
        )

    async def award_comment(self, account_id: UUID, comment_id: str, *, text: str) -> LedgerResult:
        settings = get_settings()
        if not comment_qualifies(text):
            raise ActivityRejectedError(
                f"Comments must contain at least {settings.comment_min_words} words to earn points"
            )
        return await self._award(
            account_id,
            LedgerReason.COMMENT,
            settings.points_comment,
            idempotency_key=f"comment:{comment_id}",
            description="Commented on a post",
            source=_Source(
                ModerationContentType.COMMENT,
                daily_limit=settings.daily_comment_limit,
                digest=comment_digest(text),
            ),
        )

    async def award_survey(self, account_id: UUID, survey_id: str) -> LedgerResult:
        points = get_settings().survey_rewards.get(survey_id)
        if points is None:
            raise ActivityRejectedError(f"Survey {survey_id} does not award points")
        return await self._award(
            account_id,
            LedgerReason.SURVEY,
            points,
            idempotency_key=f"survey:{survey_id}",
            description="Completed a survey",
        )

    async def award_daily_task(self, account_id: UUID, task_id: str, *, day: date | None = None) -> LedgerResult:
        points = get_settings().daily_task_rewards.get(task_id)
        if points is None:
            raise ActivityRejectedError(f"Daily task {task_id} does not award points")
        day = day or utcnow().date()
        return await self._award(
            account_id,
            LedgerReason.DAILY_TASK,
            points,
            idempotency_key=f"daily-task:{task_id}:{day.isoformat()}",
            description="Completed a daily task",
        )

    async def _award(
        self,
        account_id: UUID,
        reason: LedgerReason,
        points: int,
        *,
        idempotency_key: str,
        description: str,
        source: _Source | None = None,
    ) -> LedgerResult:
        if points <= 0:
            raise ActivityRejectedError("Activity awards must be positive")
        source = source or _Source()
        now = utcnow()

        with get_tracer().start_as_current_span("earning.award"):
            async with self._ledger.locks.hold(account_key(account_id)):
                try:
                    account = await self._ledger.get_account(account_id)
                    if account.status == AccountStatus.SUSPENDED:
                        raise AccountSuspendedError(account_id)

                    signal = await self._screen(account_id, reason, source, now)
                    result = None
                    if signal is None:
                        result = await self._ledger.record_delta(
                            account_id,
                            points,
                            reason,
                            description=description,
                            idempotency_key=idempotency_key,
                            content_digest=source.digest,
                        )
                    await self._db.commit()
                except PointsCoreError:
                    await self._db.rollback()
                    raise
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    logger.exception("Activity award failed", account_id=str(account_id), reason=reason.value)
                    raise PersistenceError("Activity award failed") from exc

        if signal is not None:
            logger.info(
                "Refused activity award",
                account_id=str(account_id),
                reason=reason.value,
                flag=signal.reason,
            )
            await self._moderation.flag(
                account_id,
                reason=signal.reason,
                severity=signal.severity,
                content_type=source.content_type,
            )
            raise ActivityRejectedError(signal.message)

        get_points_store().record_ledger_delta(reason.value, points)
        logger.debug("Awarded activity points", account_id=str(account_id), reason=reason.value, points=points)
        await self._ledger.notifications.points_changed(
            account_id,
            amount_delta=points,
            new_balance=result.new_balance,
            reason=reason.value,
        )
        return result

    async def _screen(
        self,
        account_id: UUID,
        reason: LedgerReason,
        source: _Source,
        now: datetime,
    ) -> FraudSignal | None:
        if source.daily_limit is not None:
            day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
            earned_today = await self._count_entries(account_id, reason, since=day_start)
            if earned_today >= source.daily_limit:
                return FraudSignal(
                    message=f"Daily {reason.value} limit reached ({source.daily_limit} per day)",
                    reason=f"{reason.value}: daily limit reached",
                    severity=ModerationSeverity.LOW,
                )

        if source.digest is not None:
            settings = get_settings()
            window_start = now - timedelta(hours=settings.repeated_comment_window_hours)
            repeats = await self._count_entries(account_id, reason, since=window_start, digest=source.digest)
            if repeats >= settings.repeated_comment_threshold:
                return FraudSignal(
                    message="Repeated comment text detected",
                    reason=f"{reason.value}: repeated text",
                    severity=ModerationSeverity.MEDIUM,
                )
        return None

    async def _count_entries(
        self,
        account_id: UUID,
        reason: LedgerReason,
        *,
        since: datetime,
        digest: str | None = None,
    ) -> int:
        stmt = select(func.count()).select_from(LedgerEntry).where(
            LedgerEntry.account_id == account_id,
            LedgerEntry.reason == reason,
            LedgerEntry.created_at >= since,
        )
        if digest is not None:
            stmt = stmt.where(LedgerEntry.content_digest == digest)
        return int(await self._db.scalar(stmt) or 0)
