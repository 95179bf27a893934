"""Public model package exports for the payment plan engine."""

from .base import BaseDocumentModel, Money, PercentageBps, clone_model, normalize_address, utc_now
from .enums import (
    TERMINAL_STATUSES,
    AutoRepayStatus,
    ItemType,
    PlanEvent,
    PlanKind,
    PlanStatus,
    Role,
)
from .exceptions import (
    AuthorizationError,
    CustodyError,
    ExpiredAuthorizationError,
    InsufficientLiquidityError,
    InsufficientPaymentError,
    InvalidTermsError,
    ModelValidationError,
    PlanEngineError,
    PlanNotFoundError,
    PreconditionViolation,
    TransactionError,
    UnauthorizedCallerError,
    UnauthorizedSignerError,
    VaultNotFoundError,
)
from .items import ItemModel
from .plans import PlanModel, PlanTermsModel, build_terms, validate_terms_for_kind
from .repositories import InMemoryLedgerStore, PlanRepository, VaultRepository
from .signatures import AuthorizationSignatureModel
from .vaults import VaultAccountModel

__all__ = [
    "BaseDocumentModel",
    "Money",
    "PercentageBps",
    "clone_model",
    "normalize_address",
    "utc_now",
    "TERMINAL_STATUSES",
    "AutoRepayStatus",
    "ItemType",
    "PlanEvent",
    "PlanKind",
    "PlanStatus",
    "Role",
    "AuthorizationError",
    "CustodyError",
    "ExpiredAuthorizationError",
    "InsufficientLiquidityError",
    "InsufficientPaymentError",
    "InvalidTermsError",
    "ModelValidationError",
    "PlanEngineError",
    "PlanNotFoundError",
    "PreconditionViolation",
    "TransactionError",
    "UnauthorizedCallerError",
    "UnauthorizedSignerError",
    "VaultNotFoundError",
    "ItemModel",
    "PlanModel",
    "PlanTermsModel",
    "build_terms",
    "validate_terms_for_kind",
    "InMemoryLedgerStore",
    "PlanRepository",
    "VaultRepository",
    "AuthorizationSignatureModel",
    "VaultAccountModel",
]
