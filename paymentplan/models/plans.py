"""Plan terms and plan record models for BNPL and Pawn financing."""

from datetime import datetime
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, validator

from .base import BaseDocumentModel, Money, PercentageBps, normalize_address
from .enums import TERMINAL_STATUSES, AutoRepayStatus, PlanKind, PlanStatus
from .exceptions import InvalidTermsError
from .items import ItemModel


logger = logging.getLogger(__name__)

MAX_UINT8 = 255
MAX_UINT32 = 2**32 - 1


class PlanTermsModel(BaseModel):
    """Financing terms as priced off-chain and covered by the authorization signature.

    ``paid_installments`` counts the down payment for BNPL plans, so a freshly
    created BNPL plan carries ``paid_installments == 1``.
    """

    model_config = ConfigDict(frozen=True)

    principal_amount: Money = Field(..., gt=0)
    down_payment_percent_bp: PercentageBps = Field(default=0, ge=0, le=10000)
    interest_rate_bp: PercentageBps = Field(default=0, ge=0, le=10000)
    service_fee_rate_bp: PercentageBps = Field(default=0, ge=0, le=10000)
    term_minutes: int = Field(..., gt=0, le=MAX_UINT32)
    total_installments: int = Field(..., ge=0, le=MAX_UINT8)
    paid_installments: int = Field(default=0, ge=0, le=MAX_UINT8)
    auto_repay_status: AutoRepayStatus = Field(default=AutoRepayStatus.DISABLED)

    @property
    def has_down_payment(self) -> bool:
        """Return whether the first installment is a down payment."""
        return self.down_payment_percent_bp > 0

    @property
    def remaining_installments(self) -> int:
        """Installments still to be paid."""
        return max(0, self.total_installments - self.paid_installments)

    def with_paid_installments(self, paid_installments: int) -> "PlanTermsModel":
        """Return a copy with an updated paid counter."""
        return self.model_copy(update={"paid_installments": int(paid_installments)})

    def with_auto_repay_status(self, status: AutoRepayStatus) -> "PlanTermsModel":
        """Return a copy with an updated auto-repay preference."""
        return self.model_copy(update={"auto_repay_status": AutoRepayStatus(status)})


def build_terms(payload: Dict[str, Any]) -> PlanTermsModel:
    """Parse terms from a mapping, reporting malformed input as ``InvalidTermsError``."""
    try:
        return PlanTermsModel.model_validate(dict(payload))
    except ValidationError as exc:
        logger.warning("Rejected malformed plan terms payload=%s", payload)
        raise InvalidTermsError(str(exc))


def validate_terms_for_kind(terms: PlanTermsModel, kind: PlanKind) -> None:
    """Check kind-specific creation rules for signed terms.

    Raises:
        InvalidTermsError: If the terms cannot back a plan of ``kind``.
    """
    if terms.total_installments < 1:
        raise InvalidTermsError("total_installments must be >= 1")
    if kind == PlanKind.BNPL:
        if not terms.has_down_payment:
            raise InvalidTermsError("BNPL plans require down_payment_percent_bp > 0")
        if terms.down_payment_percent_bp >= 10000:
            raise InvalidTermsError("BNPL down payment cannot cover the whole principal")
        if terms.total_installments < 2:
            raise InvalidTermsError("BNPL plans require at least one installment after the down payment")
        if terms.paid_installments != 1:
            raise InvalidTermsError("BNPL terms must count the down payment as the first paid installment")
    else:
        if terms.has_down_payment:
            raise InvalidTermsError("Pawn plans cannot carry a down payment")
        if terms.paid_installments != 0:
            raise InvalidTermsError("Pawn terms must start with zero paid installments")


class PlanModel(BaseDocumentModel):
    """Engine-owned plan record. Created once, never deleted."""

    plan_id: int = Field(..., ge=0)
    kind: PlanKind = Field(...)
    status: PlanStatus = Field(...)
    owner: str = Field(...)
    item: ItemModel = Field(...)
    terms: PlanTermsModel = Field(...)

    down_payment_paid: Money = Field(default=0, ge=0)
    total_paid: Money = Field(default=0, ge=0)
    liquidation_proceeds: Money = Field(default=0, ge=0)
    refund_due: Money = Field(default=0, ge=0, description="Down payment owed back after a rejection.")

    funded_at: Optional[datetime] = Field(default=None)
    activated_at: Optional[datetime] = Field(default=None)
    last_payment_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    rejected_at: Optional[datetime] = Field(default=None)
    defaulted_at: Optional[datetime] = Field(default=None)
    liquidated_at: Optional[datetime] = Field(default=None)

    @validator("owner", pre=True)
    def _checksum_owner(cls, value: Any) -> str:
        """Normalize owner address."""
        return normalize_address(value)

    @property
    def is_terminal(self) -> bool:
        """Return whether no further transition may leave the current status."""
        return self.status in TERMINAL_STATUSES

    @property
    def paid_installments(self) -> int:
        """Shortcut to the paid counter on the plan terms."""
        return self.terms.paid_installments
