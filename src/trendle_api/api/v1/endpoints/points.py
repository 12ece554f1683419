"""API endpoints for the authenticated account's points balance and ledger."""

from __future__ import annotations

import binascii
from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.api.dependencies.session import require_account_session
from trendle_api.api.errors import http_error_from
from trendle_api.db.session import get_session
from trendle_api.models.account import Account, LedgerEntry
from trendle_api.services.errors import PointsCoreError
from trendle_api.services.ledger import (
    CashoutService,
    EarningService,
    Ledger,
    LedgerResult,
    decode_time_uuid_cursor,
)


router = APIRouter(prefix="/points", tags=["points"])


class PointsSnapshotResponse(BaseModel):
    accountId: UUID
    balance: int
    tier: str
    nextTier: Optional[str]
    pointsToNextTier: int
    status: str
    warningCount: int


class LedgerEntryResponse(BaseModel):
    id: UUID
    occurredAt: datetime
    reason: str
    amountDelta: int
    description: Optional[str]


class LedgerWindowResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    nextCursor: Optional[str]


class LedgerResultResponse(BaseModel):
    entryId: UUID
    amountDelta: int
    reason: str
    balance: int
    tier: str


class ActivityRequest(BaseModel):
    kind: Literal["post", "like", "comment", "survey", "daily-task"]
    referenceId: str = Field(..., min_length=1, description="Post, comment, survey or task identifier")
    caption: Optional[str] = Field(None, description="Post caption (posts only)")
    text: Optional[str] = Field(None, description="Comment body (comments only)")

    @model_validator(mode="after")
    def validate_activity(self) -> "ActivityRequest":
        if self.kind == "comment" and not self.text:
            raise ValueError("text is required for comments")
        return self


class CashoutCreateRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Points to cash out")


class CashoutResponse(BaseModel):
    id: UUID
    amount: int
    status: str
    balance: int
    createdAt: datetime


def _serialize_entry(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        occurredAt=entry.created_at,
        reason=entry.reason.value,
        amountDelta=int(entry.amount_delta),
        description=entry.description,
    )


def _serialize_result(result: LedgerResult) -> LedgerResultResponse:
    return LedgerResultResponse(
        entryId=result.entry_id,
        amountDelta=result.amount_delta,
        reason=result.reason.value,
        balance=result.new_balance,
        tier=result.tier.value,
    )


@router.get("/me", response_model=PointsSnapshotResponse)
async def get_points_snapshot(
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> PointsSnapshotResponse:
    """Return balance, derived tier and progress for the session account."""

    snapshot = await Ledger(db).snapshot(current_account.id)
    return PointsSnapshotResponse(
        accountId=snapshot.account_id,
        balance=snapshot.balance,
        tier=snapshot.tier.value,
        nextTier=snapshot.next_tier.value if snapshot.next_tier else None,
        pointsToNextTier=snapshot.points_to_next_tier,
        status=snapshot.status.value,
        warningCount=snapshot.warning_count,
    )


@router.get("/me/ledger", response_model=LedgerWindowResponse)
async def list_ledger_entries(
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor from a previous page"),
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> LedgerWindowResponse:
    """Return ledger entries newest first."""

    if cursor:
        try:
            decode_time_uuid_cursor(cursor)
        except (ValueError, binascii.Error) as exc:
            raise HTTPException(status_code=400, detail="Invalid ledger cursor") from exc

    window = await Ledger(db).list_entries(current_account.id, limit=limit, cursor=cursor)
    return LedgerWindowResponse(
        entries=[_serialize_entry(entry) for entry in window.entries],
        nextCursor=window.next_cursor,
    )


@router.post("/me/activities", response_model=LedgerResultResponse, status_code=status.HTTP_201_CREATED)
async def record_activity(
    payload: ActivityRequest,
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> LedgerResultResponse:
    """Credit points for a social activity. Each source action earns once.

    Amounts are fixed server-side; surveys and daily tasks must be configured.
    """

    service = EarningService(db)
    account_id = current_account.id
    try:
        if payload.kind == "post":
            result = await service.award_post(account_id, payload.referenceId, caption=payload.caption)
        elif payload.kind == "like":
            result = await service.award_like(account_id, payload.referenceId)
        elif payload.kind == "comment":
            result = await service.award_comment(account_id, payload.referenceId, text=payload.text or "")
        elif payload.kind == "survey":
            result = await service.award_survey(account_id, payload.referenceId)
        else:
            result = await service.award_daily_task(account_id, payload.referenceId)
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc
    return _serialize_result(result)


@router.post("/me/cashouts", response_model=CashoutResponse, status_code=status.HTTP_201_CREATED)
async def request_cashout(
    payload: CashoutCreateRequest,
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> CashoutResponse:
    """Debit points against a pending payout."""

    try:
        receipt = await CashoutService(db).request_cashout(current_account.id, payload.amount)
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc

    return CashoutResponse(
        id=receipt.request.id,
        amount=receipt.request.amount,
        status=receipt.request.status.value,
        balance=receipt.new_balance,
        createdAt=receipt.request.created_at,
    )
