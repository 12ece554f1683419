"""Points ledger exports."""

from .cashout import CashoutReceipt, CashoutService  # noqa: F401
from .earning import EarningService, comment_qualifies, points_for_post  # noqa: F401
from .ledger import (  # noqa: F401
    AccountSnapshot,
    BalanceAudit,
    Ledger,
    LedgerResult,
    LedgerWindow,
    Tier,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
    tier_for_balance,
)
