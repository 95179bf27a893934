"""Reusable enums for plan, item and authorization models."""

from enum import Enum, IntEnum


class StringEnum(str, Enum):
    """Base enum class with string behavior for JSON serialization."""


class ItemType(IntEnum):
    """Collateral asset standards; values are packed as uint8 into item digests."""

    ERC721 = 1
    ERC1155 = 2
    CRYPTO_PUNKS = 3


class AutoRepayStatus(IntEnum):
    """Auto-repayment preference carried in signed plan terms."""

    DISABLED = 0
    ENABLED = 1
    ENABLED_FROM_MAIN = 2


class PlanKind(StringEnum):
    """Financing product of a plan."""

    BNPL = "BNPL"
    PAWN = "PAWN"


class PlanStatus(StringEnum):
    """Plan lifecycle states."""

    CREATED = "CREATED"
    FUNDED = "FUNDED"
    ACTIVE = "ACTIVE"
    DEFAULTED = "DEFAULTED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    LIQUIDATED = "LIQUIDATED"


class PlanEvent(StringEnum):
    """Events applied to plans by the lifecycle engine."""

    FUND = "FUND"
    ACTIVATE = "ACTIVATE"
    REJECT = "REJECT"
    PAY = "PAY"
    DEFAULT = "DEFAULT"
    LIQUIDATE = "LIQUIDATE"


class Role(StringEnum):
    """Role names checked through the access control collaborator."""

    FUNDING = "FUNDING"
    ADMIN = "ADMIN"


TERMINAL_STATUSES = frozenset({PlanStatus.COMPLETED, PlanStatus.REJECTED, PlanStatus.LIQUIDATED})
