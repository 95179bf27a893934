"""Common protocol constants and schedule calculator exports."""

from .payment_schedule import (
    ExpectedPlan,
    PaymentBreakdown,
    PaymentInfo,
    ScheduledInstallment,
    build_schedule,
    calculate_payment_info,
    get_expected_plan_sync,
    get_installment_due,
)
from .protocol_constants import BPS_DENOMINATOR, apply_bps, status_code, to_wei

__all__ = [
    "ExpectedPlan",
    "PaymentBreakdown",
    "PaymentInfo",
    "ScheduledInstallment",
    "build_schedule",
    "calculate_payment_info",
    "get_expected_plan_sync",
    "get_installment_due",
    "BPS_DENOMINATOR",
    "apply_bps",
    "status_code",
    "to_wei",
]
