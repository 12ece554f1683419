"""Translation of points-core failures into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from trendle_api.services.errors import PointsCoreError

_STATUS_BY_CODE: dict[str, int] = {
    "account_not_found": status.HTTP_404_NOT_FOUND,
    "reward_not_found": status.HTTP_404_NOT_FOUND,
    "venue_not_found": status.HTTP_404_NOT_FOUND,
    "event_not_found": status.HTTP_404_NOT_FOUND,
    "case_not_found": status.HTTP_404_NOT_FOUND,
    "account_suspended": status.HTTP_403_FORBIDDEN,
    "insufficient_balance": status.HTTP_409_CONFLICT,
    "duplicate_entry": status.HTTP_409_CONFLICT,
    "reward_inactive": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "cashout_rejected": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "activity_rejected": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "internal_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def http_error_from(exc: PointsCoreError) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST)
    message = "Internal error" if status_code >= 500 else str(exc)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": message})
