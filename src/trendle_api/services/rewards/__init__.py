"""Reward catalog and voucher exports."""

from .catalog import RewardCatalog, VoucherStatus, generate_voucher_code, voucher_status  # noqa: F401
from .validator import VoucherRejection, VoucherValidation, VoucherValidator  # noqa: F401
