"""Canonical protocol constants and basis-point math.

Amounts are integers in the smallest currency unit and rates are integers
out of ``BPS_DENOMINATOR``. Division always truncates toward zero, matching
uint256 arithmetic on the plan contract:

    downpaymentAmount = amount * downPaymentPercent / 10000
"""

from __future__ import annotations

from typing import Dict, Tuple

from web3 import Web3

from paymentplan.models.enums import PlanKind, PlanStatus, Role

# ---------------------------------------------------------------------------
# Fixed-point scaling
# ---------------------------------------------------------------------------
BPS_DENOMINATOR: int = 10_000
WEI_PER_ETHER: int = 10**18
SECONDS_PER_MINUTE: int = 60

# ---------------------------------------------------------------------------
# Vault defaults  (basis points)
# ---------------------------------------------------------------------------
DEFAULT_SAFETY_FUND_PERCENT_BP: int = 2000   # 20 %
DEFAULT_SERVICE_FEE_PERCENT_BP: int = 30     # 0.3 %

# ---------------------------------------------------------------------------
# Role identifiers  (keccak256 of the role name, as AccessControl stores them)
# ---------------------------------------------------------------------------
ROLE_IDS: Dict[Role, str] = {
    role: Web3.to_hex(Web3.keccak(text="{0}_ROLE".format(role.value)))
    for role in Role
}

# ---------------------------------------------------------------------------
# Numeric status codes reported by the plan contract
# ---------------------------------------------------------------------------
STATUS_CODES: Dict[Tuple[PlanKind, PlanStatus], int] = {
    (PlanKind.BNPL, PlanStatus.CREATED): 0,
    (PlanKind.BNPL, PlanStatus.FUNDED): 1,
    (PlanKind.BNPL, PlanStatus.ACTIVE): 2,
    (PlanKind.BNPL, PlanStatus.DEFAULTED): 3,
    (PlanKind.BNPL, PlanStatus.REJECTED): 4,
    (PlanKind.BNPL, PlanStatus.COMPLETED): 5,
    (PlanKind.BNPL, PlanStatus.LIQUIDATED): 6,
    (PlanKind.PAWN, PlanStatus.ACTIVE): 7,
    (PlanKind.PAWN, PlanStatus.DEFAULTED): 8,
    (PlanKind.PAWN, PlanStatus.COMPLETED): 9,
    (PlanKind.PAWN, PlanStatus.LIQUIDATED): 10,
}


# ---------------------------------------------------------------------------
# Basis-point helpers
# ---------------------------------------------------------------------------

def require_bps(value: int, name: str = "rate") -> int:
    """Return ``value`` if it is an integer basis-point rate in [0, 10000].

    Raises:
        ValueError: On floats, booleans or out-of-range values.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("{0} must be an integer basis-point value".format(name))
    if value < 0 or value > BPS_DENOMINATOR:
        raise ValueError("{0} must be between 0 and {1}".format(name, BPS_DENOMINATOR))
    return value


def apply_bps(amount: int, rate_bps: int) -> int:
    """Return ``amount * rate_bps / 10000`` truncated, for non-negative integers.

    Example:  apply_bps(11 * 10**18, 2500)  ->  2_750_000_000_000_000_000
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError("amount must be an integer in the smallest currency unit")
    if amount < 0:
        raise ValueError("amount must be >= 0")
    return (amount * require_bps(rate_bps)) // BPS_DENOMINATOR


def split_evenly(amount: int, parts: int) -> int:
    """Truncated share of ``amount`` across ``parts``; the remainder is dropped."""
    if parts <= 0:
        raise ValueError("parts must be > 0")
    return amount // parts


def to_wei(ether: str) -> int:
    """Convert a decimal ether string such as ``"3.2725"`` to wei without floats."""
    return int(Web3.to_wei(ether, "ether"))


def status_code(kind: PlanKind, status: PlanStatus) -> int:
    """Return the numeric contract status for a plan kind and status.

    Raises:
        ValueError: For combinations Pawn plans never reach (CREATED, FUNDED, REJECTED).
    """
    try:
        return STATUS_CODES[(PlanKind(kind), PlanStatus(status))]
    except KeyError:
        raise ValueError("No status code for kind={0} status={1}".format(kind, status))
