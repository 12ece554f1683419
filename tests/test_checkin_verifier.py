import asyncio
from datetime import timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from trendle_api.core.time import utcnow
from trendle_api.models.account import Account, AccountStatus, LedgerEntry, LedgerReason
from trendle_api.models.event import CheckInMethod, CheckinRecord, Event
from trendle_api.models.moderation import ModerationSeverity
from trendle_api.models.venue import Venue
from trendle_api.observability.points import get_points_store
from trendle_api.services.checkin import CheckinPayload, CheckinRejection, CheckinVerifier, GeoPoint
from trendle_api.services.errors import EventNotFoundError, PersistenceError
from trendle_api.services.ledger import Ledger
from trendle_api.services.moderation import ModerationCaseManager
from trendle_api.services.notifications import InMemoryNotificationBackend, NotificationService

NEON_BEAN = GeoPoint(-33.9249, 18.4241)
ACROSS_THE_STREET = GeoPoint(-33.9252, 18.4245)
VELVET_WHISK = GeoPoint(-33.9067, 18.4179)


async def _create_event(
    session,
    *,
    method: CheckInMethod = CheckInMethod.EITHER,
    points: int = 50,
    starts_in: timedelta = timedelta(hours=-1),
    duration: timedelta = timedelta(hours=3),
    requires_registration: bool = False,
    with_location: bool = True,
):
    venue = Venue(
        name="Neon Bean",
        latitude=NEON_BEAN.latitude if with_location else None,
        longitude=NEON_BEAN.longitude if with_location else None,
    )
    session.add(venue)
    await session.flush()
    start = utcnow() + starts_in
    event = Event(
        venue_id=venue.id,
        title="Latte art throwdown",
        start_time=start,
        end_time=start + duration,
        check_in_method=method,
        qr_token="throwdown-2026",
        points_reward=points,
        requires_registration=requires_registration,
    )
    session.add(event)
    await session.commit()
    return event.id, start


async def _create_account(session) -> UUID:
    return (await Ledger(session).ensure_account(username=f"guest-{uuid4().hex[:6]}")).id


async def _checkin_credits(session, account_id) -> int:
    return await session.scalar(
        select(func.count())
        .select_from(LedgerEntry)
        .where(LedgerEntry.account_id == account_id, LedgerEntry.reason == LedgerReason.CHECK_IN)
    )


@pytest.mark.asyncio
async def test_qr_check_in_records_and_credits_points(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session)
        account_id = await _create_account(session)
        backend = InMemoryNotificationBackend()
        ledger = Ledger(session, notification_service=NotificationService(backend, enabled=True))

        result = await CheckinVerifier(session, ledger=ledger).check_in(
            account_id, event_id, CheckInMethod.QR, CheckinPayload(token="throwdown-2026")
        )

        assert result.success
        assert result.points_earned == 50
        assert result.record.method == CheckInMethod.QR
        assert result.record.ledger_entry_id is not None
        assert await ledger.get_balance(account_id) == 50
        assert [event["event_type"] for event in backend.delivered] == ["checkin_verified"]
        assert get_points_store().snapshot().checkins == {"verified": 1}


@pytest.mark.asyncio
async def test_second_check_in_is_rejected(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session)
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)
        payload = CheckinPayload(token="throwdown-2026")

        assert (await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload)).success
        again = await verifier.check_in(account_id, event_id, CheckInMethod.GPS, CheckinPayload(location=NEON_BEAN))

        assert again.reason == CheckinRejection.ALREADY_CHECKED_IN
        assert await Ledger(session).get_balance(account_id) == 50


@pytest.mark.asyncio
async def test_concurrent_check_ins_credit_once(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session, points=75)
        account_id = await _create_account(session)

    async def _attempt():
        async with session_factory() as session:
            return await CheckinVerifier(session).check_in(
                account_id, event_id, CheckInMethod.QR, CheckinPayload(token="throwdown-2026")
            )

    outcomes = await asyncio.gather(*(_attempt() for _ in range(20)))

    assert sum(1 for outcome in outcomes if outcome.success) == 1
    assert {outcome.reason for outcome in outcomes if not outcome.success} == {CheckinRejection.ALREADY_CHECKED_IN}
    async with session_factory() as session:
        records = await session.scalar(select(func.count()).select_from(CheckinRecord))
        assert records == 1
        assert await _checkin_credits(session, account_id) == 1
        assert await Ledger(session).get_balance(account_id) == 75


@pytest.mark.asyncio
async def test_time_window_is_checked_last(session_factory) -> None:
    async with session_factory() as session:
        event_id, start = await _create_event(session, starts_in=timedelta(minutes=2))
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)
        payload = CheckinPayload(token="throwdown-2026")

        early = await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload, now=start - timedelta(minutes=2))
        assert early.reason == CheckinRejection.NOT_ACTIVE

        # a bad code is reported before the window
        bad = await verifier.check_in(
            account_id, event_id, CheckInMethod.QR, CheckinPayload(token="guess"), now=start - timedelta(minutes=2)
        )
        assert bad.reason == CheckinRejection.INVALID_CODE

        late = await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload, now=start + timedelta(hours=4))
        assert late.reason == CheckinRejection.ENDED

        on_time = await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload, now=start + timedelta(minutes=5))
        assert on_time.success
        assert await _checkin_credits(session, account_id) == 1


@pytest.mark.asyncio
async def test_gps_check_in_uses_radius(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session, method=CheckInMethod.GPS)
        near_id = await _create_account(session)
        far_id = await _create_account(session)
        verifier = CheckinVerifier(session)

        far = await verifier.check_in(far_id, event_id, CheckInMethod.GPS, CheckinPayload(location=VELVET_WHISK))
        missing = await verifier.check_in(far_id, event_id, CheckInMethod.GPS, CheckinPayload())
        near = await verifier.check_in(near_id, event_id, CheckInMethod.GPS, CheckinPayload(location=ACROSS_THE_STREET))

        assert far.reason == CheckinRejection.TOO_FAR
        assert far.distance_meters > 1100
        assert missing.reason == CheckinRejection.LOCATION_REQUIRED
        assert near.success
        assert near.distance_meters < 100
        assert near.record.distance_meters == pytest.approx(near.distance_meters)


@pytest.mark.asyncio
async def test_gps_without_any_location_is_wrong_method(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session, with_location=False)
        account_id = await _create_account(session)

        result = await CheckinVerifier(session).check_in(
            account_id, event_id, CheckInMethod.GPS, CheckinPayload(location=NEON_BEAN)
        )

        assert result.reason == CheckinRejection.WRONG_METHOD


@pytest.mark.asyncio
async def test_method_must_match_event(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session, method=CheckInMethod.QR)
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)

        gps = await verifier.check_in(account_id, event_id, CheckInMethod.GPS, CheckinPayload(location=NEON_BEAN))
        either = await verifier.check_in(account_id, event_id, CheckInMethod.EITHER, CheckinPayload(token="throwdown-2026"))
        wrong_code = await verifier.check_in(account_id, event_id, CheckInMethod.QR, CheckinPayload(token=None))

        assert gps.reason == CheckinRejection.WRONG_METHOD
        assert either.reason == CheckinRejection.WRONG_METHOD
        assert wrong_code.reason == CheckinRejection.INVALID_CODE
        assert get_points_store().snapshot().checkins == {"wrong_method": 2, "invalid_code": 1}


@pytest.mark.asyncio
async def test_registration_gate(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session, requires_registration=True)
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)
        payload = CheckinPayload(token="throwdown-2026")

        blocked = await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload)
        assert blocked.reason == CheckinRejection.NOT_REGISTERED

        first = await verifier.register(account_id, event_id)
        second = await verifier.register(account_id, event_id)
        assert first.id == second.id

        assert (await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload)).success
        assert len(await verifier.list_event_checkins(event_id)) == 1

        with pytest.raises(EventNotFoundError):
            await verifier.register(account_id, uuid4())


@pytest.mark.asyncio
async def test_unknown_event_account_and_suspension(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session)
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)
        payload = CheckinPayload(token="throwdown-2026")

        assert (await verifier.check_in(account_id, uuid4(), CheckInMethod.QR, payload)).reason == (
            CheckinRejection.EVENT_NOT_FOUND
        )
        assert (await verifier.check_in(uuid4(), event_id, CheckInMethod.QR, payload)).reason == (
            CheckinRejection.ACCOUNT_NOT_FOUND
        )

        await session.execute(update(Account).where(Account.id == account_id).values(status=AccountStatus.SUSPENDED))
        await session.commit()

        suspended = await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload)
        assert suspended.reason == CheckinRejection.ACCOUNT_SUSPENDED


@pytest.mark.asyncio
async def test_zero_point_event_records_without_ledger_entry(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session, points=0)
        account_id = await _create_account(session)

        result = await CheckinVerifier(session).check_in(
            account_id, event_id, CheckInMethod.QR, CheckinPayload(token="throwdown-2026")
        )

        assert result.success
        assert result.record.ledger_entry_id is None
        assert await _checkin_credits(session, account_id) == 0


@pytest.mark.asyncio
async def test_spoofed_location_and_guessed_code_raise_flags(session_factory) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session)
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)

        for _ in range(2):
            far = await verifier.check_in(account_id, event_id, CheckInMethod.GPS, CheckinPayload(location=VELVET_WHISK))
            assert far.reason == CheckinRejection.TOO_FAR
        guessed = await verifier.check_in(account_id, event_id, CheckInMethod.QR, CheckinPayload(token="guess"))
        missing = await verifier.check_in(account_id, event_id, CheckInMethod.GPS, CheckinPayload())

        assert guessed.reason == CheckinRejection.INVALID_CODE
        assert missing.reason == CheckinRejection.LOCATION_REQUIRED

        manager = ModerationCaseManager(session)
        cases = sorted(await manager.list_cases(), key=lambda case: case.reason)
        assert [(case.reason, case.severity, case.content_id) for case in cases] == [
            ("check-in: invalid_code", ModerationSeverity.MEDIUM, str(event_id)),
            ("check-in: too_far", ModerationSeverity.MEDIUM, str(event_id)),
        ]
        assert all(case.subject_account_id == account_id for case in cases)
        events = await manager.list_events(cases[1].id)
        assert events[0].actor_label == "fraud-guard"
        assert get_points_store().snapshot().moderation == {"open": 2}


@pytest.mark.asyncio
async def test_only_the_check_in_constraint_maps_to_already_checked_in(session_factory, monkeypatch) -> None:
    async with session_factory() as session:
        event_id, _ = await _create_event(session)
        account_id = await _create_account(session)
        verifier = CheckinVerifier(session)
        payload = CheckinPayload(token="throwdown-2026")

        async def _violates(message):
            raise IntegrityError("INSERT INTO checkin_records", {}, Exception(message))

        monkeypatch.setattr(
            verifier,
            "_verify_and_record",
            lambda *args: _violates("UNIQUE constraint failed: checkin_records.account_id, checkin_records.event_id"),
        )
        duplicate = await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload)
        assert duplicate.reason == CheckinRejection.ALREADY_CHECKED_IN

        monkeypatch.setattr(verifier, "_verify_and_record", lambda *args: _violates("FOREIGN KEY constraint failed"))
        with pytest.raises(PersistenceError):
            await verifier.check_in(account_id, event_id, CheckInMethod.QR, payload)

        assert await _checkin_credits(session, account_id) == 0
