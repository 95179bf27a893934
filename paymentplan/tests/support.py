"""Shared builders for engine, ledger and signature tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from eth_account import Account

from paymentplan.common.protocol_constants import to_wei
from paymentplan.models.enums import AutoRepayStatus, ItemType, Role
from paymentplan.models.items import ItemModel
from paymentplan.models.plans import PlanTermsModel
from paymentplan.models.repositories import InMemoryLedgerStore
from paymentplan.models.signatures import AuthorizationSignatureModel
from paymentplan.services.collaborators import (
    InMemoryAccessControl,
    InMemoryCustodyService,
    StaticSignerRegistry,
)
from paymentplan.services.plan_engine import PlanEngineBuilder, PlanLifecycleEngine
from paymentplan.services.signature_service import sign_plan
from paymentplan.services.vault_ledger import VaultFundingLedger


CHAIN_ID = 31337
TERM_MINUTES = 31 * 24 * 60

SIGNER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
SIGNER_ADDRESS = Account.from_key(SIGNER_KEY).address
OTHER_ADDRESS = Account.from_key(OTHER_KEY).address

VAULT = "0x" + "a1" * 20
COLLECTION = "0x" + "c0" * 20
OWNER = "0x" + "b0" * 20
FUNDER = "0x" + "f0" * 20
ADMIN = "0x" + "ad" * 20
STRANGER = "0x" + "5e" * 20

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


class MutableClock:
    """Clock whose current time tests move explicitly."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def make_item(asset_id: int = 1, vault: str = VAULT) -> ItemModel:
    return ItemModel(
        vault_address=vault,
        asset_contract_address=COLLECTION,
        asset_id=asset_id,
        amount=0,
        asset_kind=ItemType.ERC721,
    )


def make_bnpl_terms(principal: int = to_wei("11"), total_installments: int = 4) -> PlanTermsModel:
    """Terms used by the reference BNPL flow: 25% down, 18% interest, 1% service fee."""
    return PlanTermsModel(
        principal_amount=principal,
        down_payment_percent_bp=2500,
        interest_rate_bp=1800,
        service_fee_rate_bp=100,
        term_minutes=TERM_MINUTES,
        total_installments=total_installments,
        paid_installments=1,
        auto_repay_status=AutoRepayStatus.DISABLED,
    )


def make_pawn_terms(principal: int = to_wei("10"), total_installments: int = 3) -> PlanTermsModel:
    return PlanTermsModel(
        principal_amount=principal,
        down_payment_percent_bp=0,
        interest_rate_bp=1800,
        service_fee_rate_bp=100,
        term_minutes=TERM_MINUTES,
        total_installments=total_installments,
        paid_installments=0,
    )


def authorize(
    item: ItemModel,
    terms: PlanTermsModel,
    plan_id: int,
    expiry: Optional[int] = None,
    key: str = SIGNER_KEY,
    chain_id: int = CHAIN_ID,
) -> AuthorizationSignatureModel:
    """Sign a plan offer the way the pricing service does."""
    if expiry is None:
        expiry = int((START + timedelta(days=1)).timestamp())
    return sign_plan(key, item, terms, plan_id, expiry, chain_id)


class EngineFixture:
    """Engine wired to in-memory collaborators with a funded vault."""

    def __init__(
        self,
        deposit: int = to_wei("20"),
        custody: Optional[InMemoryCustodyService] = None,
        require_collection_authorization: bool = False,
    ) -> None:
        self.clock = MutableClock()
        self.store = InMemoryLedgerStore()
        self.ledger = VaultFundingLedger(self.store)
        self.custody = custody or InMemoryCustodyService()
        self.access_control = InMemoryAccessControl({Role.FUNDING: [FUNDER], Role.ADMIN: [ADMIN]})
        self.signer_registry = StaticSignerRegistry(SIGNER_ADDRESS)
        self.ledger.register_vault(VAULT, 2000, 30)
        if deposit:
            self.ledger.deposit(VAULT, deposit)
        self.engine: PlanLifecycleEngine = (
            PlanEngineBuilder()
            .with_custody(self.custody)
            .with_access_control(self.access_control)
            .with_signer_registry(self.signer_registry)
            .with_store(self.store)
            .with_ledger(self.ledger)
            .with_chain_id(CHAIN_ID)
            .with_clock(self.clock)
            .require_collection_authorization(require_collection_authorization)
            .build()
        )

    def create_bnpl(self, plan_id: int = 1, asset_id: int = 1, terms: Optional[PlanTermsModel] = None, down_payment=None):
        terms = terms or make_bnpl_terms()
        item = make_item(asset_id)
        if down_payment is None:
            down_payment = self.engine.get_expected_plan_sync(terms).down_payment_due
        return self.engine.create_bnpl(item, terms, plan_id, authorize(item, terms, plan_id), OWNER, down_payment)

    def create_pawn(self, plan_id: int = 1, asset_id: int = 1, terms: Optional[PlanTermsModel] = None):
        terms = terms or make_pawn_terms()
        item = make_item(asset_id)
        return self.engine.create_pawn(item, terms, plan_id, authorize(item, terms, plan_id), OWNER)

    def activate_bnpl(self, plan_id: int = 1, asset_id: int = 1):
        self.create_bnpl(plan_id=plan_id, asset_id=asset_id)
        self.engine.fund([plan_id], FUNDER)
        return self.engine.activate([plan_id], FUNDER)[0]

    def pay_due(self, plan_id: int, early: bool = False):
        info = self.engine.get_payment_info_by_plan_id(plan_id, is_early_payment=early)
        return self.engine.pay(plan_id, info.total_due, is_early_payment=early)
