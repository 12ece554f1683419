"""Error taxonomy shared by the points core services."""

from __future__ import annotations

from uuid import UUID


class PointsCoreError(RuntimeError):
    """Base class for recoverable, user-facing failures."""

    code = "points_core_error"


class PersistenceError(PointsCoreError):
    """The store failed mid-operation; nothing was applied."""

    code = "internal_error"


class AccountNotFoundError(PointsCoreError):
    code = "account_not_found"

    def __init__(self, account_id: UUID) -> None:
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class AccountSuspendedError(PointsCoreError):
    code = "account_suspended"

    def __init__(self, account_id: UUID) -> None:
        super().__init__(f"Account {account_id} is suspended")
        self.account_id = account_id


class InsufficientBalanceError(PointsCoreError):
    code = "insufficient_balance"

    def __init__(self, account_id: UUID, balance: int, requested: int) -> None:
        super().__init__(f"Account {account_id} has {balance} points, {requested} required")
        self.account_id = account_id
        self.balance = balance
        self.requested = requested


class DuplicateLedgerEntryError(PointsCoreError):
    code = "duplicate_entry"

    def __init__(self, account_id: UUID, idempotency_key: str) -> None:
        super().__init__(f"Points already awarded for {idempotency_key}")
        self.account_id = account_id
        self.idempotency_key = idempotency_key


class RewardNotFoundError(PointsCoreError):
    code = "reward_not_found"

    def __init__(self, reward_id: UUID) -> None:
        super().__init__(f"Reward {reward_id} not found")
        self.reward_id = reward_id


class RewardInactiveError(RewardNotFoundError):
    code = "reward_inactive"

    def __init__(self, reward_id: UUID) -> None:
        RuntimeError.__init__(self, f"Reward {reward_id} is not available")
        self.reward_id = reward_id


class VenueNotFoundError(PointsCoreError):
    code = "venue_not_found"

    def __init__(self, venue_id: UUID) -> None:
        super().__init__(f"Venue {venue_id} not found")
        self.venue_id = venue_id


class EventNotFoundError(PointsCoreError):
    code = "event_not_found"

    def __init__(self, event_id: UUID) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class CaseNotFoundError(PointsCoreError):
    code = "case_not_found"

    def __init__(self, case_id: UUID) -> None:
        super().__init__(f"Moderation case {case_id} not found")
        self.case_id = case_id


class InvalidCaseTransitionError(PointsCoreError):
    code = "invalid_transition"

    def __init__(self, current_status: str, action: str) -> None:
        super().__init__(f"Cannot {action} a case that is {current_status}")
        self.current_status = current_status
        self.action = action


class CashoutRejectedError(PointsCoreError):
    code = "cashout_rejected"


class ActivityRejectedError(PointsCoreError):
    code = "activity_rejected"
