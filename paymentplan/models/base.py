"""Shared base models and common type aliases."""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from web3 import Web3

from .exceptions import ModelValidationError


logger = logging.getLogger(__name__)

Money = int
PercentageBps = int

ModelT = TypeVar("ModelT", bound=BaseModel)


def utc_now() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(timezone.utc)


def normalize_address(value: Any) -> str:
    """Validate an EVM address and return its checksum form.

    Raises:
        ValueError: If the value is not a 20-byte hex address.
    """
    candidate = str(value or "").strip()
    if not Web3.is_address(candidate):
        raise ValueError("Invalid address format: {0}".format(candidate))
    return Web3.to_checksum_address(candidate)


def clone_model(model: ModelT, **updates: Any) -> ModelT:
    """Return a deep copy of ``model`` with optional field updates applied."""
    copied = model.model_copy(deep=True)
    if not updates:
        return copied
    payload = copied.model_dump()
    payload.update(updates)
    return type(model).model_validate(payload)


class BaseDocumentModel(BaseModel):
    """Base record schema for engine-owned, audit-retained documents."""

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1)

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=False,
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize model into a JSON-friendly document dictionary.

        Returns:
            Dict[str, Any]: Serialized model payload.

        Raises:
            ModelValidationError: If serialization fails.
        """
        try:
            return self.model_dump(mode="json", exclude_none=True)
        except ValueError as exc:
            logger.exception("Failed to serialize %s", self.__class__.__name__)
            raise ModelValidationError(str(exc))

    @classmethod
    def from_document(cls: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        """Create model instance from a stored document.

        Raises:
            ModelValidationError: If payload parsing fails.
        """
        try:
            return cls.model_validate(dict(data))
        except ValueError as exc:
            logger.exception("Failed to parse document payload for %s", cls.__name__)
            raise ModelValidationError(str(exc))

    def bump(self, now: Optional[datetime] = None, **updates: Any) -> "BaseDocumentModel":
        """Return an updated copy with ``version`` incremented and ``updated_at`` refreshed."""
        return clone_model(
            self,
            updated_at=now or utc_now(),
            version=self.version + 1,
            **updates,
        )
