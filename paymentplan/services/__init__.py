"""Service layer exports."""

from .collaborators import (
    AccessControl,
    CustodyService,
    InMemoryAccessControl,
    InMemoryCustodyService,
    SignerRegistry,
    StaticSignerRegistry,
)
from .default_monitor import DefaultMonitor
from .plan_engine import (
    CreationReceipt,
    EngineContext,
    LiquidationReceipt,
    PaymentReceipt,
    PlanEngineBuilder,
    PlanLifecycleEngine,
)
from .signature_service import SignatureAuthorizationService, sign_collection, sign_plan
from .vault_ledger import LiquidationSettlement, RepaymentSplit, VaultFundingLedger

__all__ = [
    "AccessControl",
    "CustodyService",
    "InMemoryAccessControl",
    "InMemoryCustodyService",
    "SignerRegistry",
    "StaticSignerRegistry",
    "DefaultMonitor",
    "CreationReceipt",
    "EngineContext",
    "LiquidationReceipt",
    "PaymentReceipt",
    "PlanEngineBuilder",
    "PlanLifecycleEngine",
    "SignatureAuthorizationService",
    "sign_collection",
    "sign_plan",
    "LiquidationSettlement",
    "RepaymentSplit",
    "VaultFundingLedger",
]
