"""Admin endpoints for the moderation case workflow."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.api.dependencies.security import require_admin_api_key
from trendle_api.api.errors import http_error_from
from trendle_api.db.session import get_session
from trendle_api.models.moderation import (
    ModerationAction,
    ModerationCase,
    ModerationCaseStatus,
    ModerationContentType,
    ModerationSeverity,
)
from trendle_api.services.errors import PointsCoreError
from trendle_api.services.moderation import ModerationCaseManager


router = APIRouter(
    prefix="/moderation",
    tags=["moderation"],
    dependencies=[Depends(require_admin_api_key)],
)


class ResolutionAction(str, Enum):
    DISMISS = "dismiss"
    WARN = "warn"
    SUSPEND = "suspend"
    ESCALATE = "escalate"


class CaseCreateRequest(BaseModel):
    subjectAccountId: UUID
    reason: str = Field(..., min_length=3, max_length=2000)
    severity: ModerationSeverity = ModerationSeverity.LOW
    contentType: ModerationContentType = ModerationContentType.NONE
    contentId: Optional[str] = None
    reporterAccountId: Optional[UUID] = None


class CaseResolveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    actorLabel: Optional[str] = Field(None, description="Moderator handle recorded on the audit trail")


class ReinstateRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    actorLabel: Optional[str] = None


class CaseResponse(BaseModel):
    id: UUID
    subjectAccountId: UUID
    reporterAccountId: Optional[UUID]
    contentType: str
    contentId: Optional[str]
    severity: str
    status: str
    reason: str
    resolutionNotes: Optional[str]
    createdAt: datetime
    resolvedAt: Optional[datetime]


class ReinstateResponse(BaseModel):
    accountId: UUID
    reinstated: bool


def _serialize_case(case: ModerationCase) -> CaseResponse:
    return CaseResponse(
        id=case.id,
        subjectAccountId=case.subject_account_id,
        reporterAccountId=case.reporter_account_id,
        contentType=case.content_type.value,
        contentId=case.content_id,
        severity=case.severity.value,
        status=case.status.value,
        reason=case.reason,
        resolutionNotes=case.resolution_notes,
        createdAt=case.created_at,
        resolvedAt=case.resolved_at,
    )


@router.get("/cases", response_model=List[CaseResponse])
async def list_cases(
    status_filter: ModerationCaseStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
) -> List[CaseResponse]:
    cases = await ModerationCaseManager(db).list_cases(status=status_filter, limit=limit)
    return [_serialize_case(case) for case in cases]


@router.post("/cases", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def open_case(
    payload: CaseCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> CaseResponse:
    try:
        case = await ModerationCaseManager(db).open_case(
            payload.subjectAccountId,
            reason=payload.reason,
            severity=payload.severity,
            content_type=payload.contentType,
            content_id=payload.contentId,
            reporter_account_id=payload.reporterAccountId,
        )
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc
    return _serialize_case(case)


@router.post("/cases/{case_id}/{action}", response_model=CaseResponse)
async def resolve_case(
    case_id: UUID,
    action: ResolutionAction,
    payload: CaseResolveRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> CaseResponse:
    """Apply a moderator decision to a case."""

    try:
        case = await ModerationCaseManager(db).resolve(
            case_id,
            ModerationAction(action.value),
            payload.notes if payload else None,
            actor_label=payload.actorLabel if payload else None,
        )
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc
    return _serialize_case(case)


@router.post("/accounts/{account_id}/reinstate", response_model=ReinstateResponse)
async def reinstate_account(
    account_id: UUID,
    payload: ReinstateRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> ReinstateResponse:
    try:
        outcome = await ModerationCaseManager(db).reinstate(
            account_id,
            payload.notes if payload else None,
            actor_label=payload.actorLabel if payload else None,
        )
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc
    return ReinstateResponse(accountId=outcome.account_id, reinstated=outcome.reinstated)
