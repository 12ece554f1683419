"""Moderation case workflow with audit logging and account sanctions."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from trendle_api.core.time import utcnow
from trendle_api.models.account import Account, AccountStatus
from trendle_api.models.moderation import (
    ModerationAction,
    ModerationCase,
    ModerationCaseEvent,
    ModerationCaseStatus,
    ModerationContentType,
    ModerationSeverity,
)
from trendle_api.observability.points import get_points_store
from trendle_api.observability.tracing import get_tracer
from trendle_api.services.errors import (
    AccountNotFoundError,
    CaseNotFoundError,
    InvalidCaseTransitionError,
    PersistenceError,
    PointsCoreError,
)
from trendle_api.services.locks import KeyedLockRegistry, case_key, flag_key, get_lock_registry
from trendle_api.services.notifications import NotificationService


@dataclass(slots=True)
class ReinstatementOutcome:
    account_id: UUID
    reinstated: bool


def _sanction_note(action: ModerationAction, case_id: UUID, notes: str | None) -> str:
    prefix = f"[{action.value.upper()} from case {case_id}]"
    return f"{prefix} {notes}".rstrip() if notes else prefix


def _append_note(note: str):
    """SQL expression appending ``note`` to the existing admin notes on its own line."""

    return func.coalesce(Account.admin_notes + "\n", "") + note


class ModerationCaseManager:
    """Moves cases through review and applies the sanction each resolution carries."""

    _ALLOWED_TRANSITIONS: dict[ModerationCaseStatus, set[ModerationCaseStatus]] = {
        ModerationCaseStatus.PENDING: {
            ModerationCaseStatus.DISMISSED,
            ModerationCaseStatus.RESOLVED,
            ModerationCaseStatus.INVESTIGATING,
        },
        ModerationCaseStatus.INVESTIGATING: {
            ModerationCaseStatus.RESOLVED,
            ModerationCaseStatus.DISMISSED,
        },
        ModerationCaseStatus.RESOLVED: set(),
        ModerationCaseStatus.DISMISSED: set(),
    }

    _ACTION_TARGETS: dict[ModerationAction, ModerationCaseStatus] = {
        ModerationAction.DISMISS: ModerationCaseStatus.DISMISSED,
        ModerationAction.WARN: ModerationCaseStatus.RESOLVED,
        ModerationAction.SUSPEND: ModerationCaseStatus.RESOLVED,
        ModerationAction.ESCALATE: ModerationCaseStatus.INVESTIGATING,
    }

    _TERMINAL = {ModerationCaseStatus.RESOLVED, ModerationCaseStatus.DISMISSED}
    _OPEN = (ModerationCaseStatus.PENDING, ModerationCaseStatus.INVESTIGATING)

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

    async def open_case(
        self,
        subject_account_id: UUID,
        *,
        reason: str,
        severity: ModerationSeverity = ModerationSeverity.LOW,
        content_type: ModerationContentType = ModerationContentType.NONE,
        content_id: str | None = None,
        reporter_account_id: UUID | None = None,
        actor_label: str | None = None,
    ) -> ModerationCase:
        if await self._db.get(Account, subject_account_id) is None:
            raise AccountNotFoundError(subject_account_id)

        case = ModerationCase(
            subject_account_id=subject_account_id,
            reporter_account_id=reporter_account_id,
            content_type=content_type,
            content_id=content_id,
            severity=severity,
            status=ModerationCaseStatus.PENDING,
            reason=reason,
        )
        self._db.add(case)
        await self._db.flush()
        self._db.add(
            ModerationCaseEvent(
                case_id=case.id,
                action=ModerationAction.OPEN,
                from_status=None,
                to_status=ModerationCaseStatus.PENDING.value,
                notes=reason,
                actor_label=actor_label,
            )
        )
        await self._db.commit()

        get_points_store().record_moderation_action(ModerationAction.OPEN.value)
        logger.info(
            "Opened moderation case",
            case_id=str(case.id),
            subject_account_id=str(subject_account_id),
            severity=severity.value,
        )
        return case

    async def flag(
        self,
        subject_account_id: UUID,
        *,
        reason: str,
        severity: ModerationSeverity,
        content_type: ModerationContentType = ModerationContentType.NONE,
        content_id: str | None = None,
        actor_label: str = "fraud-guard",
    ) -> ModerationCase:
        """Open a system-raised case unless the same flag is still awaiting review."""

        async with self._locks.hold(flag_key(subject_account_id)):
            try:
                stmt = select(ModerationCase).where(
                    ModerationCase.subject_account_id == subject_account_id,
                    ModerationCase.reason == reason,
                    ModerationCase.status.in_(self._OPEN),
                )
                if content_id is None:
                    stmt = stmt.where(ModerationCase.content_id.is_(None))
                else:
                    stmt = stmt.where(ModerationCase.content_id == content_id)
                existing = (await self._db.execute(stmt.limit(1))).scalar_one_or_none()
                if existing is not None:
                    logger.debug("Flag already under review", case_id=str(existing.id), reason=reason)
                    return existing

                return await self.open_case(
                    subject_account_id,
                    reason=reason,
                    severity=severity,
                    content_type=content_type,
                    content_id=content_id,
                    actor_label=actor_label,
                )
            except SQLAlchemyError as exc:
                await self._db.rollback()
                logger.exception("Fraud flag failed", account_id=str(subject_account_id), reason=reason)
                raise PersistenceError("Fraud flag could not be recorded") from exc

    async def get_case(self, case_id: UUID) -> ModerationCase:
        stmt = (
            select(ModerationCase)
            .options(selectinload(ModerationCase.events))
            .where(ModerationCase.id == case_id)
            .execution_options(populate_existing=True)
        )
        case = (await self._db.execute(stmt)).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    async def list_cases(self, *, status: ModerationCaseStatus | None = None, limit: int = 50) -> list[ModerationCase]:
        """Return cases newest first, optionally filtered by status."""

        stmt = select(ModerationCase)
        if status is not None:
            stmt = stmt.where(ModerationCase.status == status)
        stmt = stmt.order_by(ModerationCase.created_at.desc()).limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def list_events(self, case_id: UUID) -> list[ModerationCaseEvent]:
        stmt = (
            select(ModerationCaseEvent)
            .where(ModerationCaseEvent.case_id == case_id)
            .order_by(ModerationCaseEvent.created_at.asc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars())

    async def resolve(
        self,
        case_id: UUID,
        action: ModerationAction | str,
        notes: str | None = None,
        *,
        actor_label: str | None = None,
    ) -> ModerationCase:
        """Apply a moderator decision.

        The case transition, the account sanction and the audit event commit
        together or not at all.
        """

        action = ModerationAction(action)
        with get_tracer().start_as_current_span("moderation.resolve"):
            async with self._locks.hold(case_key(case_id)):
                try:
                    case, previous = await self._transition(case_id, action, notes, actor_label)
                    await self._db.commit()
                except PointsCoreError:
                    await self._db.rollback()
                    raise
                except SQLAlchemyError as exc:
                    await self._db.rollback()
                    logger.exception("Moderation update failed", case_id=str(case_id), action=action.value)
                    raise PersistenceError("Moderation update failed") from exc

        get_points_store().record_moderation_action(action.value)
        logger.info(
            "Moderation case transitioned",
            case_id=str(case.id),
            action=action.value,
            from_status=previous.value,
            to_status=case.status.value,
            actor_label=actor_label,
        )
        if case.status in self._TERMINAL:
            await self._notifications.case_resolved(
                case.subject_account_id,
                case_id=case.id,
                status=case.status.value,
                action=action.value,
            )
        return case

    async def reinstate(
        self,
        account_id: UUID,
        notes: str | None = None,
        *,
        actor_label: str | None = None,
    ) -> ReinstatementOutcome:
        """Reactivate a suspended account. Active accounts are left untouched."""

        note = f"[REINSTATE by {actor_label or 'admin'}]"
        if notes:
            note = f"{note} {notes}"
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.status == AccountStatus.SUSPENDED)
            .values(status=AccountStatus.ACTIVE, admin_notes=_append_note(note), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._db.execute(stmt)
            if result.rowcount != 1 and await self._db.get(Account, account_id) is None:
                raise AccountNotFoundError(account_id)
            await self._db.commit()
        except PointsCoreError:
            await self._db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise PersistenceError("Account reinstatement failed") from exc

        reinstated = result.rowcount == 1
        if reinstated:
            get_points_store().record_moderation_action(ModerationAction.REINSTATE.value)
        logger.info("Reinstate requested", account_id=str(account_id), reinstated=reinstated)
        return ReinstatementOutcome(account_id=account_id, reinstated=reinstated)

    async def _transition(
        self,
        case_id: UUID,
        action: ModerationAction,
        notes: str | None,
        actor_label: str | None,
    ) -> tuple[ModerationCase, ModerationCaseStatus]:
        case = await self.get_case(case_id)
        current = case.status
        target = self._ACTION_TARGETS.get(action)
        if target is None or target not in self._ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidCaseTransitionError(current.value, action.value)

        now = utcnow()
        resolved_at = now if target in self._TERMINAL else None
        stmt = (
            update(ModerationCase)
            .where(ModerationCase.id == case.id, ModerationCase.status == current)
            .values(status=target, resolution_notes=notes, resolved_at=resolved_at, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if (await self._db.execute(stmt)).rowcount != 1:
            # another worker moved the case after we read it
            raise InvalidCaseTransitionError(current.value, action.value)

        if action in (ModerationAction.WARN, ModerationAction.SUSPEND):
            await self._sanction(case, action, notes, now)

        self._db.add(
            ModerationCaseEvent(
                case_id=case.id,
                action=action,
                from_status=current.value,
                to_status=target.value,
                notes=notes,
                actor_label=actor_label,
            )
        )
        await self._db.flush()

        set_committed_value(case, "status", target)
        set_committed_value(case, "resolution_notes", notes)
        set_committed_value(case, "resolved_at", resolved_at)
        set_committed_value(case, "updated_at", now)
        return case, current

    async def _sanction(self, case: ModerationCase, action: ModerationAction, notes: str | None, now) -> None:
        values = {"admin_notes": _append_note(_sanction_note(action, case.id, notes)), "updated_at": now}
        if action == ModerationAction.WARN:
            values["warning_count"] = Account.warning_count + 1
        else:
            values["status"] = AccountStatus.SUSPENDED

        stmt = (
            update(Account)
            .where(Account.id == case.subject_account_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if (await self._db.execute(stmt)).rowcount != 1:
            raise AccountNotFoundError(case.subject_account_id)
