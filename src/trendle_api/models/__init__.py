"""SQLAlchemy models package."""

from .account import Account, AccountStatus, LedgerEntry, LedgerReason  # noqa: F401
from .cashout import CashoutRequest, CashoutStatus  # noqa: F401
from .event import CheckInMethod, CheckinRecord, Event, EventRegistration  # noqa: F401
from .moderation import (  # noqa: F401
    ModerationAction,
    ModerationCase,
    ModerationCaseEvent,
    ModerationCaseStatus,
    ModerationContentType,
    ModerationSeverity,
)
from .venue import Reward, Venue, Voucher  # noqa: F401
