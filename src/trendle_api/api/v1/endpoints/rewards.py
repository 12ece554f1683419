"""API endpoints for the venue reward catalog, redemptions and voucher validation."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.api.dependencies.security import require_venue_api_key
from trendle_api.api.dependencies.session import require_account_session
from trendle_api.api.errors import http_error_from
from trendle_api.db.session import get_session
from trendle_api.models.account import Account
from trendle_api.models.venue import Reward, Voucher
from trendle_api.services.errors import PointsCoreError
from trendle_api.services.rewards import RewardCatalog, VoucherValidator, voucher_status


router = APIRouter(prefix="/rewards", tags=["rewards"])


class RewardResponse(BaseModel):
    id: UUID
    venueId: UUID
    title: str
    description: Optional[str]
    costPoints: int
    category: Optional[str]
    isActive: bool


class VoucherResponse(BaseModel):
    id: UUID
    code: str
    rewardId: UUID
    rewardTitle: str
    venueId: UUID
    pointsCost: int
    issuedAt: datetime
    expiresAt: datetime
    status: str


class RewardAvailabilityRequest(BaseModel):
    active: bool


class VoucherValidationRequest(BaseModel):
    code: str = Field(..., min_length=1, description="Voucher code presented by the customer")
    venueId: UUID = Field(..., description="Venue where the voucher is being honoured")


class VoucherValidationResponse(BaseModel):
    valid: bool
    reason: Optional[str]
    voucherId: Optional[UUID]
    rewardTitle: Optional[str]
    consumedAt: Optional[datetime]


def _serialize_reward(reward: Reward) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        venueId=reward.venue_id,
        title=reward.title,
        description=reward.description,
        costPoints=int(reward.cost_points),
        category=reward.category,
        isActive=bool(reward.is_active),
    )


def _serialize_voucher(voucher: Voucher) -> VoucherResponse:
    return VoucherResponse(
        id=voucher.id,
        code=voucher.code,
        rewardId=voucher.reward_id,
        rewardTitle=voucher.reward.title,
        venueId=voucher.reward.venue_id,
        pointsCost=int(voucher.points_cost),
        issuedAt=voucher.issued_at,
        expiresAt=voucher.expires_at,
        status=voucher_status(voucher).value,
    )


@router.get("", response_model=List[RewardResponse])
async def list_rewards(
    venue_id: UUID | None = Query(None, alias="venueId"),
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: AsyncSession = Depends(get_session),
) -> List[RewardResponse]:
    """List redeemable rewards, optionally for a single venue."""

    rewards = await RewardCatalog(db).list_rewards(venue_id=venue_id, include_inactive=include_inactive)
    return [_serialize_reward(reward) for reward in rewards]


@router.get("/vouchers", response_model=List[VoucherResponse])
async def list_my_vouchers(
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> List[VoucherResponse]:
    """Return the session account's vouchers with their derived status."""

    vouchers = await RewardCatalog(db).list_account_vouchers(current_account.id)
    return [_serialize_voucher(voucher) for voucher in vouchers]


@router.post("/validate", response_model=VoucherValidationResponse, dependencies=[Depends(require_venue_api_key)])
async def validate_voucher(
    payload: VoucherValidationRequest,
    db: AsyncSession = Depends(get_session),
) -> VoucherValidationResponse:
    """Check and consume a voucher at the venue. Rejections are reported, not raised."""

    try:
        outcome = await VoucherValidator(db).validate(payload.code, payload.venueId)
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc

    voucher = outcome.voucher
    return VoucherValidationResponse(
        valid=outcome.valid,
        reason=outcome.reason.value if outcome.reason else None,
        voucherId=voucher.id if voucher else None,
        rewardTitle=voucher.reward.title if voucher else None,
        consumedAt=voucher.consumed_at if voucher and outcome.valid else None,
    )


@router.post("/{reward_id}/redeem", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
async def redeem_reward(
    reward_id: UUID,
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    """Spend points on a reward and receive a single-use voucher."""

    try:
        voucher = await RewardCatalog(db).redeem(current_account.id, reward_id)
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc
    return _serialize_voucher(voucher)


@router.post(
    "/{reward_id}/active",
    response_model=RewardResponse,
    dependencies=[Depends(require_venue_api_key)],
)
async def set_reward_availability(
    reward_id: UUID,
    payload: RewardAvailabilityRequest,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    try:
        reward = await RewardCatalog(db).set_reward_active(reward_id, payload.active)
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc
    return _serialize_reward(reward)
