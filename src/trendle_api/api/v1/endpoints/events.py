"""API endpoints for event registration and check-in."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from trendle_api.api.dependencies.security import require_venue_api_key
from trendle_api.api.dependencies.session import require_account_session
from trendle_api.api.errors import http_error_from
from trendle_api.db.session import get_session
from trendle_api.models.account import Account
from trendle_api.models.event import CheckInMethod, CheckinRecord
from trendle_api.services.checkin import CheckinPayload, CheckinVerifier, GeoPoint
from trendle_api.services.errors import PointsCoreError


router = APIRouter(prefix="/events", tags=["events"])


class RegistrationResponse(BaseModel):
    id: UUID
    eventId: UUID
    accountId: UUID
    registeredAt: datetime


class CheckinRequest(BaseModel):
    method: Literal["gps", "qr"]
    token: Optional[str] = Field(None, description="Scanned QR token")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    def to_payload(self) -> CheckinPayload:
        location = None
        if self.latitude is not None and self.longitude is not None:
            location = GeoPoint(self.latitude, self.longitude)
        return CheckinPayload(token=self.token, location=location)


class CheckinResponse(BaseModel):
    success: bool
    reason: Optional[str]
    pointsEarned: int
    recordId: Optional[UUID]
    distanceMeters: Optional[float]


class CheckinRecordResponse(BaseModel):
    id: UUID
    accountId: UUID
    method: str
    verifiedAt: datetime
    pointsAwarded: int
    distanceMeters: Optional[float]


def _serialize_record(record: CheckinRecord) -> CheckinRecordResponse:
    return CheckinRecordResponse(
        id=record.id,
        accountId=record.account_id,
        method=record.method.value,
        verifiedAt=record.verified_at,
        pointsAwarded=int(record.points_awarded or 0),
        distanceMeters=record.distance_meters,
    )


@router.post("/{event_id}/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register_for_event(
    event_id: UUID,
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> RegistrationResponse:
    try:
        registration = await CheckinVerifier(db).register(current_account.id, event_id)
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc

    return RegistrationResponse(
        id=registration.id,
        eventId=registration.event_id,
        accountId=registration.account_id,
        registeredAt=registration.registered_at,
    )


@router.post("/{event_id}/check-in", response_model=CheckinResponse)
async def check_in(
    event_id: UUID,
    payload: CheckinRequest,
    current_account: Account = Depends(require_account_session),
    db: AsyncSession = Depends(get_session),
) -> CheckinResponse:
    """Verify presence at an event. Rejections come back with a reason code."""

    try:
        result = await CheckinVerifier(db).check_in(
            current_account.id,
            event_id,
            CheckInMethod(payload.method),
            payload.to_payload(),
        )
    except PointsCoreError as exc:
        raise http_error_from(exc) from exc

    return CheckinResponse(
        success=result.success,
        reason=result.reason.value if result.reason else None,
        pointsEarned=result.points_earned,
        recordId=result.record.id if result.record else None,
        distanceMeters=result.distance_meters,
    )


@router.get(
    "/{event_id}/check-ins",
    response_model=List[CheckinRecordResponse],
    dependencies=[Depends(require_venue_api_key)],
)
async def list_event_checkins(
    event_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[CheckinRecordResponse]:
    records = await CheckinVerifier(db).list_event_checkins(event_id)
    return [_serialize_record(record) for record in records]
