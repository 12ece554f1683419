from uuid import uuid4

import pytest
from sqlalchemy import delete

from trendle_api.models.account import Account, AccountStatus
from trendle_api.models.moderation import (
    ModerationAction,
    ModerationCaseStatus,
    ModerationContentType,
    ModerationSeverity,
)
from trendle_api.observability.points import get_points_store
from trendle_api.services.errors import AccountNotFoundError, CaseNotFoundError, InvalidCaseTransitionError
from trendle_api.services.ledger import Ledger
from trendle_api.services.moderation import ModerationCaseManager
from trendle_api.services.notifications import InMemoryNotificationBackend, NotificationService


async def _open_case(session, manager: ModerationCaseManager, **kwargs):
    ledger = Ledger(session)
    subject_id = (await ledger.ensure_account(username=f"subject-{uuid4().hex[:6]}")).id
    case = await manager.open_case(subject_id, reason=kwargs.pop("reason", "Duplicate check-ins"), **kwargs)
    return subject_id, case.id


@pytest.mark.asyncio
async def test_open_case_starts_pending_with_audit_event(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        subject_id, case_id = await _open_case(
            session,
            manager,
            severity=ModerationSeverity.HIGH,
            content_type=ModerationContentType.POST,
            content_id="post-77",
            actor_label="automod",
        )

        case = await manager.get_case(case_id)
        assert case.status == ModerationCaseStatus.PENDING
        assert case.subject_account_id == subject_id
        assert case.severity == ModerationSeverity.HIGH
        events = await manager.list_events(case_id)
        assert [(event.action, event.to_status) for event in events] == [(ModerationAction.OPEN, "pending")]
        assert events[0].actor_label == "automod"

        with pytest.raises(AccountNotFoundError):
            await manager.open_case(uuid4(), reason="Ghost account")


@pytest.mark.asyncio
async def test_warn_resolves_case_and_records_warning(session_factory) -> None:
    async with session_factory() as session:
        backend = InMemoryNotificationBackend()
        manager = ModerationCaseManager(session, notification_service=NotificationService(backend, enabled=True))
        subject_id, case_id = await _open_case(session, manager)

        case = await manager.resolve(case_id, ModerationAction.WARN, "Posted a competitor's menu", actor_label="ops")

        assert case.status == ModerationCaseStatus.RESOLVED
        assert case.resolved_at is not None
        assert case.resolution_notes == "Posted a competitor's menu"
        account = await Ledger(session).get_account(subject_id)
        assert account.status == AccountStatus.ACTIVE
        assert account.warning_count == 1
        assert f"[WARN from case {case_id}] Posted a competitor's menu" in account.admin_notes
        assert [event["event_type"] for event in backend.delivered] == ["case_resolved"]


@pytest.mark.asyncio
async def test_suspend_blocks_account_and_reinstate_restores_it(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        subject_id, case_id = await _open_case(session, manager)

        await manager.resolve(case_id, "suspend", "Farming likes with bots")
        account = await Ledger(session).get_account(subject_id)
        assert account.status == AccountStatus.SUSPENDED

        outcome = await manager.reinstate(subject_id, "Appeal accepted", actor_label="lead")
        assert outcome.reinstated
        account = await Ledger(session).get_account(subject_id)
        assert account.status == AccountStatus.ACTIVE
        assert account.admin_notes.splitlines()[-1] == "[REINSTATE by lead] Appeal accepted"

        # already active
        assert not (await manager.reinstate(subject_id)).reinstated
        with pytest.raises(AccountNotFoundError):
            await manager.reinstate(uuid4())


@pytest.mark.asyncio
async def test_escalated_case_can_still_be_resolved(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        _, case_id = await _open_case(session, manager)

        escalated = await manager.resolve(case_id, ModerationAction.ESCALATE)
        assert escalated.status == ModerationCaseStatus.INVESTIGATING
        assert escalated.resolved_at is None

        with pytest.raises(InvalidCaseTransitionError):
            await manager.resolve(case_id, ModerationAction.ESCALATE)

        dismissed = await manager.resolve(case_id, ModerationAction.DISMISS, "Not enough evidence")
        assert dismissed.status == ModerationCaseStatus.DISMISSED

        events = await manager.list_events(case_id)
        assert [event.action for event in events] == [
            ModerationAction.OPEN,
            ModerationAction.ESCALATE,
            ModerationAction.DISMISS,
        ]
        assert [(event.from_status, event.to_status) for event in events[1:]] == [
            ("pending", "investigating"),
            ("investigating", "dismissed"),
        ]


@pytest.mark.asyncio
async def test_terminal_cases_reject_further_actions(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        subject_id, case_id = await _open_case(session, manager)
        await manager.resolve(case_id, ModerationAction.DISMISS)

        for action in (ModerationAction.WARN, ModerationAction.SUSPEND, ModerationAction.ESCALATE, ModerationAction.DISMISS):
            with pytest.raises(InvalidCaseTransitionError):
                await manager.resolve(case_id, action)

        # no sanction leaked from the rejected attempts
        account = await Ledger(session).get_account(subject_id)
        assert account.warning_count == 0
        assert account.status == AccountStatus.ACTIVE
        assert len(await manager.list_events(case_id)) == 2


@pytest.mark.asyncio
async def test_open_and_reinstate_are_not_resolution_actions(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        _, case_id = await _open_case(session, manager)

        with pytest.raises(InvalidCaseTransitionError):
            await manager.resolve(case_id, ModerationAction.OPEN)
        with pytest.raises(ValueError):
            await manager.resolve(case_id, "ban")
        with pytest.raises(CaseNotFoundError):
            await manager.resolve(uuid4(), ModerationAction.DISMISS)


@pytest.mark.asyncio
async def test_list_cases_filters_by_status(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        _, first_id = await _open_case(session, manager)
        _, second_id = await _open_case(session, manager)
        await manager.resolve(first_id, ModerationAction.WARN)

        pending = await manager.list_cases(status=ModerationCaseStatus.PENDING)
        resolved = await manager.list_cases(status=ModerationCaseStatus.RESOLVED)

        assert [case.id for case in pending] == [second_id]
        assert [case.id for case in resolved] == [first_id]
        assert len(await manager.list_cases()) == 2
        assert get_points_store().snapshot().moderation == {"open": 2, "warn": 1}


@pytest.mark.asyncio
async def test_failed_sanction_leaves_case_untouched(session_factory) -> None:
    async with session_factory() as session:
        manager = ModerationCaseManager(session)
        subject_id, case_id = await _open_case(session, manager)
        # sqlite does not enforce the foreign key here, so the case outlives its subject
        await session.execute(delete(Account).where(Account.id == subject_id))
        await session.commit()

        with pytest.raises(AccountNotFoundError):
            await manager.resolve(case_id, ModerationAction.WARN, "Stacked reviews")

        case = await manager.get_case(case_id)
        assert case.status == ModerationCaseStatus.PENDING
        assert case.resolution_notes is None
        assert case.resolved_at is None
        assert [event.action for event in await manager.list_events(case_id)] == [ModerationAction.OPEN]
        assert get_points_store().snapshot().moderation == {"open": 1}
