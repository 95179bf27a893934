"""Amortized payment schedule calculator for BNPL and Pawn plans.

Pure functions over ``PlanTermsModel``: no I/O, no clock, no floats. Every
division truncates, so the sum of installments may fall short of the total
financing amount by a few smallest units. That residual is reproduced as-is.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from paymentplan.models.exceptions import InvalidTermsError
from paymentplan.models.plans import PlanTermsModel

from .protocol_constants import apply_bps, split_evenly


class PaymentBreakdown(NamedTuple):
    """Intermediate amounts of the amortization."""

    single_principal: int
    single_interest_fee: int
    single_service_fee: int
    financed_amount: int
    total_interest_fee: int
    total_service_fee: int
    down_payment_amount: int
    pay_count_without_down_payment: int


class ExpectedPlan(NamedTuple):
    """Totals a buyer is quoted before signing."""

    down_payment_due: int
    total_interest_fee: int
    total_service_fee: int
    per_installment_amount: int
    total_financing_amount: int


class PaymentInfo(NamedTuple):
    """Amount due for the next payment; ``total_due`` is what the payer sends."""

    principal_due: int
    interest_fee_due: int
    service_fee_due: int
    total_due: int
    due_at: Optional[datetime]


class ScheduledInstallment(NamedTuple):
    """One projected installment of a plan."""

    sequence_no: int
    due_at: datetime
    principal: int
    interest_fee: int
    service_fee: int
    total: int
    is_down_payment: bool


def calculate_payment_info(terms: PlanTermsModel) -> PaymentBreakdown:
    """Split principal, interest and service fee across installments.

    Raises:
        InvalidTermsError: If there is no installment to amortize over.
    """
    if terms.total_installments < 1:
        raise InvalidTermsError("Invalid total number of payments")

    pay_count = terms.total_installments - (1 if terms.has_down_payment else 0)
    if pay_count < 1:
        raise InvalidTermsError("Down payment leaves no installments to amortize")

    down_payment_amount = apply_bps(terms.principal_amount, terms.down_payment_percent_bp)
    financed_amount = terms.principal_amount - down_payment_amount
    total_interest_fee = apply_bps(financed_amount, terms.interest_rate_bp)
    total_service_fee = apply_bps(terms.principal_amount, terms.service_fee_rate_bp)

    return PaymentBreakdown(
        single_principal=split_evenly(financed_amount, pay_count),
        single_interest_fee=split_evenly(total_interest_fee, pay_count),
        single_service_fee=split_evenly(total_service_fee, terms.total_installments),
        financed_amount=financed_amount,
        total_interest_fee=total_interest_fee,
        total_service_fee=total_service_fee,
        down_payment_amount=down_payment_amount,
        pay_count_without_down_payment=pay_count,
    )


def get_expected_plan_sync(terms: PlanTermsModel) -> ExpectedPlan:
    """Return the quote tuple ``(down payment due, interest, service fee, installment, total)``."""
    breakdown = calculate_payment_info(terms)
    down_payment_due = (
        breakdown.down_payment_amount + breakdown.single_service_fee if terms.has_down_payment else 0
    )
    return ExpectedPlan(
        down_payment_due=down_payment_due,
        total_interest_fee=breakdown.total_interest_fee,
        total_service_fee=breakdown.total_service_fee,
        per_installment_amount=(
            breakdown.single_principal + breakdown.single_interest_fee + breakdown.single_service_fee
        ),
        total_financing_amount=(
            terms.principal_amount + breakdown.total_interest_fee + breakdown.total_service_fee
        ),
    )


def get_installment_due(
    terms: PlanTermsModel,
    early: bool = False,
    last_payment_at: Optional[datetime] = None,
) -> PaymentInfo:
    """Compute the next payment from the terms' current ``paid_installments``.

    With ``early=True`` the payer settles every remaining principal and
    service-fee slice but only the current period's interest.

    Raises:
        InvalidTermsError: If every installment has already been paid.
    """
    breakdown = calculate_payment_info(terms)
    remaining = terms.total_installments - terms.paid_installments
    if remaining < 1:
        raise InvalidTermsError("All installments have been paid")

    due_at = None
    if last_payment_at is not None:
        due_at = last_payment_at + timedelta(minutes=terms.term_minutes)

    if terms.has_down_payment and terms.paid_installments == 0:
        principal = breakdown.down_payment_amount
        interest_fee = 0
        service_fee = breakdown.single_service_fee
    elif early:
        # the down payment slice is never part of an early payoff
        principal = breakdown.single_principal * remaining
        interest_fee = breakdown.single_interest_fee
        service_fee = breakdown.single_service_fee * remaining
    else:
        principal = breakdown.single_principal
        interest_fee = breakdown.single_interest_fee
        service_fee = breakdown.single_service_fee

    return PaymentInfo(
        principal_due=principal,
        interest_fee_due=interest_fee,
        service_fee_due=service_fee,
        total_due=principal + interest_fee + service_fee,
        due_at=due_at,
    )


def build_schedule(terms: PlanTermsModel, start: datetime) -> List[ScheduledInstallment]:
    """Project all installments of a plan; the down payment, if any, falls due at ``start``."""
    breakdown = calculate_payment_info(terms)
    per_installment = (
        breakdown.single_principal + breakdown.single_interest_fee + breakdown.single_service_fee
    )
    schedule: List[ScheduledInstallment] = []
    sequence_no = 1
    if terms.has_down_payment:
        schedule.append(
            ScheduledInstallment(
                sequence_no=sequence_no,
                due_at=start,
                principal=breakdown.down_payment_amount,
                interest_fee=0,
                service_fee=breakdown.single_service_fee,
                total=breakdown.down_payment_amount + breakdown.single_service_fee,
                is_down_payment=True,
            )
        )
        sequence_no += 1

    for period in range(1, breakdown.pay_count_without_down_payment + 1):
        schedule.append(
            ScheduledInstallment(
                sequence_no=sequence_no,
                due_at=start + timedelta(minutes=terms.term_minutes * period),
                principal=breakdown.single_principal,
                interest_fee=breakdown.single_interest_fee,
                service_fee=breakdown.single_service_fee,
                total=per_installment,
                is_down_payment=False,
            )
        )
        sequence_no += 1
    return schedule
