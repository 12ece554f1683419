from uuid import uuid4

import pytest

from trendle_api.models.account import LedgerReason
from trendle_api.services.ledger import Ledger
from trendle_api.services.notifications import InMemoryNotificationBackend, NotificationService


class FailingNotificationBackend:
    def __init__(self) -> None:
        self.attempts = 0

    async def deliver(self, recipient, event_type, message, *, payload) -> None:
        self.attempts += 1
        raise ConnectionError("push gateway unavailable")


@pytest.mark.asyncio
async def test_points_changed_message_and_payload() -> None:
    backend = InMemoryNotificationBackend()
    service = NotificationService(backend, enabled=True)
    account_id = uuid4()

    await service.points_changed(account_id, amount_delta=-200, new_balance=800, reason="redemption-debit")

    [event] = backend.delivered
    assert event["recipient"] == str(account_id)
    assert event["message"] == "You spent 200 points (redemption-debit). Balance: 800."
    assert event["payload"] == {"amountDelta": -200, "balance": 800, "reason": "redemption-debit"}
    assert service.sent_events[0].event_type == "points_changed"


@pytest.mark.asyncio
async def test_disabled_service_sends_nothing() -> None:
    backend = InMemoryNotificationBackend()
    service = NotificationService(backend, enabled=False)

    await service.checkin_verified(uuid4(), event_title="Latte art throwdown", points=50)

    assert backend.delivered == []
    assert service.sent_events == []


@pytest.mark.asyncio
async def test_delivery_failure_never_undoes_a_balance_change(session_factory) -> None:
    backend = FailingNotificationBackend()
    async with session_factory() as session:
        ledger = Ledger(session, notification_service=NotificationService(backend, enabled=True))
        account_id = (await ledger.ensure_account(username="offline")).id

        result = await ledger.apply_delta(account_id, 40, LedgerReason.POST)

        assert result.new_balance == 40
        assert backend.attempts == 1
        assert ledger.notifications.sent_events == []

    async with session_factory() as session:
        assert await Ledger(session).get_balance(account_id) == 40
