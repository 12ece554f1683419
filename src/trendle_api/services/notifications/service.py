"""Fire-and-forget notifications for points, vouchers, check-ins and cases."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from loguru import logger

from trendle_api.core.settings import get_settings

from .backend import LoggingNotificationBackend, NotificationBackend


@dataclass
class NotificationEvent:
    """Representation of a notification that was handed to the backend."""

    recipient: str
    event_type: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationService:
    """Publishes user-visible events after the core transaction has committed.

    Delivery failures are logged and swallowed: a notification can never undo
    a committed balance change.
    """

    def __init__(self, backend: Optional[NotificationBackend] = None, *, enabled: bool | None = None) -> None:
        self._backend = backend or LoggingNotificationBackend()
        self._enabled = get_settings().notifications_enabled if enabled is None else enabled
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    async def points_changed(self, account_id: UUID, *, amount_delta: int, new_balance: int, reason: str) -> None:
        verb = "earned" if amount_delta > 0 else "spent"
        await self._publish(
            account_id,
            "points_changed",
            f"You {verb} {abs(amount_delta)} points ({reason}). Balance: {new_balance}.",
            {"amountDelta": amount_delta, "balance": new_balance, "reason": reason},
        )

    async def voucher_issued(self, account_id: UUID, *, voucher_id: UUID, reward_title: str, expires_at: str) -> None:
        await self._publish(
            account_id,
            "voucher_issued",
            f"Your voucher for {reward_title} is ready. Use it before {expires_at}.",
            {"voucherId": str(voucher_id), "expiresAt": expires_at},
        )

    async def voucher_consumed(self, account_id: UUID, *, voucher_id: UUID, venue_id: UUID) -> None:
        await self._publish(
            account_id,
            "voucher_consumed",
            "Your voucher was redeemed at the venue.",
            {"voucherId": str(voucher_id), "venueId": str(venue_id)},
        )

    async def checkin_verified(self, account_id: UUID, *, event_title: str, points: int) -> None:
        await self._publish(
            account_id,
            "checkin_verified",
            f"Checked in at {event_title}: +{points} points.",
            {"points": points},
        )

    async def case_resolved(self, account_id: UUID, *, case_id: UUID, status: str, action: str) -> None:
        await self._publish(
            account_id,
            "case_resolved",
            f"A moderation review on your account was closed ({action}).",
            {"caseId": str(case_id), "status": status, "action": action},
        )

    async def _publish(self, account_id: UUID, event_type: str, message: str, payload: dict[str, Any]) -> None:
        if not self._enabled:
            return

        recipient = str(account_id)
        try:
            await self._backend.deliver(recipient, event_type, message, payload=payload)
        except Exception as exc:  # noqa: BLE001 - delivery is best effort
            logger.warning(
                "Notification delivery failed",
                recipient=recipient,
                event_type=event_type,
                error=str(exc),
            )
            return

        self._events.append(NotificationEvent(recipient=recipient, event_type=event_type, message=message, payload=payload))
