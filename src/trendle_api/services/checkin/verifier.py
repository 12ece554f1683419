"""Event presence verification and check-in point credits."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.core.settings import get_settings
from trendle_api.core.time import ensure_utc, utcnow
from trendle_api.models.account import Account, AccountStatus, LedgerReason
from trendle_api.models.event import CheckInMethod, CheckinRecord, Event, EventRegistration
from trendle_api.models.moderation import ModerationSeverity
from trendle_api.models.venue import Venue
from trendle_api.observability.points import get_points_store
from trendle_api.observability.tracing import get_tracer
from trendle_api.services.errors import DuplicateLedgerEntryError, EventNotFoundError, PersistenceError
from trendle_api.services.ledger import Ledger
from trendle_api.services.locks import account_key
from trendle_api.services.moderation import ModerationCaseManager

from .geo import GeoPoint, haversine_meters


class CheckinRejection(str, Enum):
    EVENT_NOT_FOUND = "event_not_found"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_SUSPENDED = "account_suspended"
    NOT_REGISTERED = "not_registered"
    ALREADY_CHECKED_IN = "already_checked_in"
    WRONG_METHOD = "wrong_method"
    INVALID_CODE = "invalid_code"
    LOCATION_REQUIRED = "location_required"
    TOO_FAR = "too_far"
    NOT_ACTIVE = "not_active"
    ENDED = "ended"


@dataclass(slots=True)
class CheckinPayload:
    """Proof presented by the client: a scanned QR token or a device location."""

    token: Optional[str] = None
    location: Optional[GeoPoint] = None


@dataclass
class CheckinResult:
    success: bool
    reason: Optional[CheckinRejection] = None
    points_earned: int = 0
    record: Optional[CheckinRecord] = None
    distance_meters: Optional[float] = None

    @classmethod
    def rejected(cls, reason: CheckinRejection, *, distance_meters: float | None = None) -> "CheckinResult":
        return cls(success=False, reason=reason, distance_meters=distance_meters)


class CheckinVerifier:
    """Checks presence proofs against an event and credits points once per account."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: Ledger | None = None,
        radius_meters: float | None = None,
        moderation: ModerationCaseManager | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or Ledger(db_session)
        self._moderation = moderation or ModerationCaseManager(
            db_session,
            notification_service=self._ledger.notifications,
            locks=self._ledger.locks,
        )
        self._radius = radius_meters if radius_meters is not None else get_settings().checkin_radius_meters

    async def register(self, account_id: UUID, event_id: UUID) -> EventRegistration:
        """RSVP to an event. Registering twice returns the existing registration."""

        event = await self._db.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        await self._ledger.get_account(account_id)

        existing = await self._get_registration(account_id, event_id)
        if existing is not None:
            return existing

        registration = EventRegistration(account_id=account_id, event_id=event_id)
        self._db.add(registration)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when registering", account_id=str(account_id), event_id=str(event_id))
            existing = await self._get_registration(account_id, event_id)
            if existing is None:
                raise
            return existing

        logger.info("Registered for event", account_id=str(account_id), event_id=str(event_id))
        return registration

    async def list_event_checkins(self, event_id: UUID) -> list[CheckinRecord]:
        stmt = (
            select(CheckinRecord)
            .where(CheckinRecord.event_id == event_id)
            .order_by(CheckinRecord.verified_at.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def check_in(
        self,
        account_id: UUID,
        event_id: UUID,
        method: CheckInMethod,
        payload: CheckinPayload,
        *,
        now: datetime | None = None,
    ) -> CheckinResult:
        """Verify presence and, on success, record it and credit the event points together."""

        now = now or utcnow()
        with get_tracer().start_as_current_span("checkin.verify"):
            async with self._ledger.locks.hold(account_key(account_id)):
                try:
                    outcome, event = await self._verify_and_record(account_id, event_id, method, payload, now)
                    await self._db.commit()
                except DuplicateLedgerEntryError:
                    await self._db.rollback()
                    outcome, event = CheckinResult.rejected(CheckinRejection.ALREADY_CHECKED_IN), None
                except IntegrityError as exc:
                    await self._db.rollback()
                    if not _is_duplicate_checkin(exc):
                        logger.exception("Check-in failed", account_id=str(account_id), event_id=str(event_id))
                        raise PersistenceError("Check-in could not be recorded") from exc
                    outcome, event = CheckinResult.rejected(CheckinRejection.ALREADY_CHECKED_IN), None
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    logger.exception("Check-in failed", account_id=str(account_id), event_id=str(event_id))
                    raise PersistenceError("Check-in could not be recorded") from exc

        store = get_points_store()
        if not outcome.success:
            store.record_checkin(outcome.reason.value)
            logger.info(
                "Rejected check-in",
                account_id=str(account_id),
                event_id=str(event_id),
                reason=outcome.reason.value,
                distance_meters=outcome.distance_meters,
            )
            if outcome.reason in _FLAGGED_REJECTIONS:
                await self._moderation.flag(
                    account_id,
                    reason=f"check-in: {outcome.reason.value}",
                    severity=ModerationSeverity.MEDIUM,
                    content_id=str(event_id),
                )
            return outcome

        store.record_checkin("verified")
        if outcome.points_earned:
            store.record_ledger_delta(LedgerReason.CHECK_IN.value, outcome.points_earned)
        logger.info(
            "Verified check-in",
            account_id=str(account_id),
            event_id=str(event_id),
            method=method.value,
            points=outcome.points_earned,
        )
        await self._ledger.notifications.checkin_verified(
            account_id,
            event_title=event.title,
            points=outcome.points_earned,
        )
        return outcome

    async def _verify_and_record(
        self,
        account_id: UUID,
        event_id: UUID,
        method: CheckInMethod,
        payload: CheckinPayload,
        now: datetime,
    ) -> tuple[CheckinResult, Optional[Event]]:
        event = await self._db.get(Event, event_id, populate_existing=True)
        if event is None:
            return CheckinResult.rejected(CheckinRejection.EVENT_NOT_FOUND), None

        account = await self._db.get(Account, account_id, populate_existing=True)
        if account is None:
            return CheckinResult.rejected(CheckinRejection.ACCOUNT_NOT_FOUND), event
        if account.status == AccountStatus.SUSPENDED:
            return CheckinResult.rejected(CheckinRejection.ACCOUNT_SUSPENDED), event

        if event.requires_registration and await self._get_registration(account_id, event_id) is None:
            return CheckinResult.rejected(CheckinRejection.NOT_REGISTERED), event

        existing = await self._db.scalar(
            select(CheckinRecord.id).where(
                CheckinRecord.account_id == account_id,
                CheckinRecord.event_id == event_id,
            )
        )
        if existing is not None:
            return CheckinResult.rejected(CheckinRejection.ALREADY_CHECKED_IN), event

        if method == CheckInMethod.EITHER or (
            event.check_in_method != CheckInMethod.EITHER and event.check_in_method != method
        ):
            return CheckinResult.rejected(CheckinRejection.WRONG_METHOD), event

        distance = None
        if method == CheckInMethod.QR:
            if not _token_matches(event.qr_token, payload.token):
                return CheckinResult.rejected(CheckinRejection.INVALID_CODE), event
        else:
            if payload.location is None:
                return CheckinResult.rejected(CheckinRejection.LOCATION_REQUIRED), event
            anchor = await self._event_location(event)
            if anchor is None:
                return CheckinResult.rejected(CheckinRejection.WRONG_METHOD), event
            distance = haversine_meters(anchor, payload.location)
            if distance > self._radius:
                return CheckinResult.rejected(CheckinRejection.TOO_FAR, distance_meters=distance), event

        if now < ensure_utc(event.start_time):
            return CheckinResult.rejected(CheckinRejection.NOT_ACTIVE, distance_meters=distance), event
        if now > ensure_utc(event.end_time):
            return CheckinResult.rejected(CheckinRejection.ENDED, distance_meters=distance), event

        points = int(event.points_reward or 0)
        record = CheckinRecord(
            account_id=account_id,
            event_id=event.id,
            venue_id=event.venue_id,
            method=method,
            verified_at=now,
            points_awarded=points,
            distance_meters=distance,
        )
        self._db.add(record)
        await self._db.flush()

        if points > 0:
            credit = await self._ledger.record_delta(
                account_id,
                points,
                LedgerReason.CHECK_IN,
                description=f"Checked in at {event.title}",
                idempotency_key=f"check-in:{event.id}",
            )
            record.ledger_entry_id = credit.entry_id
            await self._db.flush()

        result = CheckinResult(success=True, points_earned=points, record=record, distance_meters=distance)
        return result, event

    async def _event_location(self, event: Event) -> GeoPoint | None:
        if event.latitude is not None and event.longitude is not None:
            return GeoPoint(event.latitude, event.longitude)
        venue = await self._db.get(Venue, event.venue_id)
        if venue is not None and venue.latitude is not None and venue.longitude is not None:
            return GeoPoint(venue.latitude, venue.longitude)
        return None

    async def _get_registration(self, account_id: UUID, event_id: UUID) -> EventRegistration | None:
        stmt = select(EventRegistration).where(
            EventRegistration.account_id == account_id,
            EventRegistration.event_id == event_id,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()


def _token_matches(expected: str | None, presented: str | None) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


# Rejections raised as medium-severity moderation flags.
_FLAGGED_REJECTIONS = frozenset({CheckinRejection.TOO_FAR, CheckinRejection.INVALID_CODE})

# PostgreSQL reports the constraint name; SQLite reports the columns.
_DUPLICATE_CHECKIN_MARKERS = (
    "uq_checkin_records_account_event",
    "checkin_records.account_id, checkin_records.event_id",
)


def _is_duplicate_checkin(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _DUPLICATE_CHECKIN_MARKERS)
