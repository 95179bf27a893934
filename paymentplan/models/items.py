"""Collateral item model bound to a plan."""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, root_validator, validator

from .base import normalize_address
from .enums import ItemType


logger = logging.getLogger(__name__)


class ItemModel(BaseModel):
    """Collateral descriptor; frozen so it cannot drift after being signed."""

    model_config = ConfigDict(frozen=True)

    vault_address: str = Field(..., description="Vault that funds plans against this item.")
    asset_contract_address: str = Field(...)
    asset_id: int = Field(..., ge=0)
    amount: int = Field(default=0, ge=0)
    asset_kind: ItemType = Field(default=ItemType.ERC721)

    @validator("vault_address", "asset_contract_address", pre=True)
    def _checksum_addresses(cls, value: Any) -> str:
        """Normalize addresses to checksum format."""
        return normalize_address(value)

    @root_validator(skip_on_failure=True)
    def _validate_amount_for_kind(cls, values: dict) -> dict:
        """Semi-fungible items carry a quantity, unique items do not."""
        kind = values.get("asset_kind")
        amount = int(values.get("amount", 0))
        if kind == ItemType.ERC1155 and amount < 1:
            raise ValueError("ERC1155 items require amount >= 1")
        if kind in {ItemType.ERC721, ItemType.CRYPTO_PUNKS} and amount != 0:
            raise ValueError("amount must be 0 for unique items")
        return values

    @property
    def collateral_key(self) -> tuple:
        """Identity of the underlying asset irrespective of vault."""
        return (self.asset_contract_address, self.asset_id)

    @property
    def is_fungible(self) -> bool:
        """ERC1155 units of one token id are interchangeable between holders."""
        return self.asset_kind == ItemType.ERC1155
