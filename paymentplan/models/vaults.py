"""Vault account model for pooled plan liquidity."""

import logging
from typing import Any, Dict

from pydantic import Field, root_validator, validator

from .base import BaseDocumentModel, Money, PercentageBps, normalize_address


logger = logging.getLogger(__name__)


class VaultAccountModel(BaseDocumentModel):
    """Pooled liquidity shared by every plan funded from one vault.

    ``safety_fund`` is part of ``balance`` but cannot be advanced to plans.
    ``service_fee_collected`` has already left the vault for the platform.
    """

    vault_address: str = Field(...)
    safety_fund_percent_bp: PercentageBps = Field(..., ge=0, le=10000)
    service_fee_percent_bp: PercentageBps = Field(..., ge=0, le=10000)

    total_deposited: Money = Field(default=0, ge=0)
    balance: Money = Field(default=0, ge=0)
    safety_fund: Money = Field(default=0, ge=0)
    outstanding_principal: Money = Field(default=0, ge=0)
    interest_earned: Money = Field(default=0, ge=0)
    service_fee_collected: Money = Field(default=0, ge=0)
    liquidation_losses: Money = Field(default=0, ge=0)
    rounding_residual: Money = Field(default=0, ge=0)
    exposures: Dict[int, Money] = Field(default_factory=dict)

    @validator("vault_address", pre=True)
    def _checksum_vault(cls, value: Any) -> str:
        """Normalize vault address."""
        return normalize_address(value)

    @root_validator(skip_on_failure=True)
    def _validate_reserve(cls, values: dict) -> dict:
        """Safety fund can never exceed the cash held by the vault."""
        if int(values.get("safety_fund", 0)) > int(values.get("balance", 0)):
            raise ValueError("safety_fund cannot exceed balance")
        return values

    @property
    def available_liquidity(self) -> Money:
        """Cash that may be advanced to new plans."""
        return max(0, self.balance - self.safety_fund)
