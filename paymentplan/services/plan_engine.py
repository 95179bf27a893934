"""Plan lifecycle state machine for BNPL and Pawn plans.

Transitions (anything else raises ``PreconditionViolation``)::

    create_bnpl               -> CREATED
    CREATED   --fund-->          FUNDED
    FUNDED    --activate-->      ACTIVE
    CREATED   --reject-->        REJECTED
    create_pawn               -> ACTIVE
    ACTIVE    --pay-->           ACTIVE | COMPLETED
    ACTIVE    --default-->       DEFAULTED
    DEFAULTED --liquidate-->     LIQUIDATED

Each transition runs as one unit of work: it holds the locks of its plans
and then of their vaults, and journals the prior plan and vault records and
every custody move. When any step fails the journal is unwound before the
error propagates, so callers never observe a half-applied transition and a
batch either applies to every id or to none.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
import logging
from threading import RLock
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional

from eth_account import Account

from paymentplan.common.payment_schedule import (
    ExpectedPlan,
    PaymentInfo,
    ScheduledInstallment,
    build_schedule,
    calculate_payment_info,
    get_expected_plan_sync,
    get_installment_due,
)
from paymentplan.common.protocol_constants import status_code
from paymentplan.core.config import AppSettings
from paymentplan.models.base import Money, normalize_address, utc_now
from paymentplan.models.enums import AutoRepayStatus, PlanEvent, PlanKind, PlanStatus, Role
from paymentplan.models.exceptions import (
    InsufficientPaymentError,
    PlanEngineError,
    PlanNotFoundError,
    PreconditionViolation,
    UnauthorizedCallerError,
)
from paymentplan.models.items import ItemModel
from paymentplan.models.plans import PlanModel, PlanTermsModel, validate_terms_for_kind
from paymentplan.models.repositories import InMemoryLedgerStore, PlanRepository
from paymentplan.models.signatures import AuthorizationSignatureModel

from .collaborators import (
    AccessControl,
    CustodyService,
    InMemoryAccessControl,
    InMemoryCustodyService,
    SignerRegistry,
    StaticSignerRegistry,
)
from .signature_service import SignatureAuthorizationService
from .vault_ledger import LiquidationSettlement, RepaymentSplit, VaultFundingLedger


logger = logging.getLogger(__name__)

_TRANSITIONS: Dict[tuple, PlanStatus] = {
    (PlanEvent.FUND, PlanStatus.CREATED): PlanStatus.FUNDED,
    (PlanEvent.ACTIVATE, PlanStatus.FUNDED): PlanStatus.ACTIVE,
    (PlanEvent.REJECT, PlanStatus.CREATED): PlanStatus.REJECTED,
    (PlanEvent.PAY, PlanStatus.ACTIVE): PlanStatus.ACTIVE,
    (PlanEvent.DEFAULT, PlanStatus.ACTIVE): PlanStatus.DEFAULTED,
    (PlanEvent.LIQUIDATE, PlanStatus.DEFAULTED): PlanStatus.LIQUIDATED,
}


class PaymentReceipt(NamedTuple):
    """Result of a successful ``pay``."""

    plan: PlanModel
    payment: PaymentInfo
    amount_received: Money
    change: Money
    split: RepaymentSplit


class CreationReceipt(NamedTuple):
    """Result of a successful plan creation."""

    plan: PlanModel
    expected: ExpectedPlan
    change: Money


class LiquidationReceipt(NamedTuple):
    """Result of a successful ``liquidate``."""

    plan: PlanModel
    settlement: LiquidationSettlement


@dataclass
class EngineContext:
    """Everything the engine depends on, passed in rather than looked up globally."""

    custody: CustodyService
    access_control: AccessControl
    signer_registry: SignerRegistry
    ledger: VaultFundingLedger
    plans: PlanRepository
    chain_id: int
    clock: Callable[[], datetime] = field(default=utc_now)
    require_collection_authorization: bool = False


class _Journal:
    """Undo steps recorded by one unit of work, replayed newest first on failure."""

    def __init__(self) -> None:
        self._undo: List[Callable[[], object]] = []

    def record(self, undo: Callable[[], object]) -> None:
        self._undo.append(undo)

    def unwind(self) -> None:
        while self._undo:
            undo = self._undo.pop()
            try:
                undo()
            except Exception:
                # keep unwinding; the caller re-raises the original error
                logger.exception("Undo step failed while unwinding a transition")


class PlanLifecycleEngine:
    """Owns plan records and applies authorized transitions to them."""

    def __init__(self, context: EngineContext) -> None:
        self._ctx = context
        self._signatures = SignatureAuthorizationService(
            signer_registry=context.signer_registry,
            chain_id=context.chain_id,
            clock=context.clock,
        )
        self._registry_lock = RLock()
        self._creation_lock = RLock()
        self._plan_locks: Dict[int, RLock] = {}
        self._enabled_collections: Dict[str, int] = {}

    @property
    def context(self) -> EngineContext:
        """Injected collaborators."""
        return self._ctx

    @property
    def signatures(self) -> SignatureAuthorizationService:
        """Signature verifier bound to the engine's chain domain."""
        return self._signatures

    @property
    def ledger(self) -> VaultFundingLedger:
        """Vault funding ledger shared by all plans."""
        return self._ctx.ledger

    @contextmanager
    def _locked_plan(self, plan_id: int) -> Iterator[int]:
        """Hold the per-plan write lock.

        Locks are only allocated for stored plans; unknown ids raise
        ``PlanNotFoundError`` without leaving an entry behind.
        """
        key = int(plan_id)
        with self._registry_lock:
            lock = self._plan_locks.get(key)
            if lock is None:
                if not self._ctx.plans.has_plan(key):
                    raise PlanNotFoundError("Plan not found: {0}".format(key))
                lock = self._plan_locks[key] = RLock()
        with lock:
            yield key

    @contextmanager
    def _unit_of_work(
        self,
        plan_ids: Iterable[int] = (),
        vault_addresses: Iterable[str] = (),
    ) -> Iterator[_Journal]:
        """Lock plans, then their vaults, and restore everything touched if the body raises.

        Plan locks are taken in id order and vault locks in address order, so
        concurrent units of work never wait on each other in a cycle.
        """
        ids = sorted({int(plan_id) for plan_id in plan_ids})
        addresses = sorted(set(vault_addresses))
        journal = _Journal()
        with ExitStack() as stack:
            for plan_id in ids:
                stack.enter_context(self._locked_plan(plan_id))
            stack.enter_context(self.ledger.hold(*addresses))
            for plan_id in ids:
                journal.record(partial(self._ctx.plans.save_plan, self._ctx.plans.get_plan(plan_id)))
            for address in addresses:
                journal.record(partial(self.ledger.restore, self.ledger.get_vault(address)))
            try:
                yield journal
            except Exception:
                journal.unwind()
                raise

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return now or self._ctx.clock()

    @staticmethod
    def _require_transition(plan: PlanModel, event: PlanEvent) -> PlanStatus:
        """Return the target status of ``event`` or raise if the table has no such edge."""
        target = _TRANSITIONS.get((event, plan.status))
        if target is None:
            raise PreconditionViolation(
                "Cannot apply {0} to plan {1} in status {2}".format(event.value, plan.plan_id, plan.status.value)
            )
        return target

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_bnpl(
        self,
        item: ItemModel,
        terms: PlanTermsModel,
        plan_id: int,
        authorization: AuthorizationSignatureModel,
        owner: str,
        down_payment: Money,
    ) -> CreationReceipt:
        """Open a BNPL plan in ``CREATED`` once the down payment covers the amount due.

        The collateral stays with its seller until the plan is funded.

        Raises:
            InvalidTermsError: Terms cannot back a BNPL plan.
            ExpiredAuthorizationError, UnauthorizedSignerError: Authorization rejected.
            PreconditionViolation: Plan id reused, item unavailable or collection not enabled.
            InsufficientPaymentError: Down payment below the amount due.
        """
        return self._create(PlanKind.BNPL, item, terms, plan_id, authorization, owner, down_payment)

    def create_pawn(
        self,
        item: ItemModel,
        terms: PlanTermsModel,
        plan_id: int,
        authorization: AuthorizationSignatureModel,
        owner: str,
    ) -> CreationReceipt:
        """Open a Pawn plan directly in ``ACTIVE`` and advance the principal to the owner.

        Raises:
            InsufficientLiquidityError: The vault cannot lend the principal.
            CustodyError: The owner's collateral could not be taken into custody.
            (plus every error ``create_bnpl`` raises apart from the down payment check)
        """
        return self._create(PlanKind.PAWN, item, terms, plan_id, authorization, owner, 0)

    def _create(
        self,
        kind: PlanKind,
        item: ItemModel,
        terms: PlanTermsModel,
        plan_id: int,
        authorization: AuthorizationSignatureModel,
        owner: str,
        down_payment: Money,
    ) -> CreationReceipt:
        owner_address = normalize_address(owner)
        try:
            validate_terms_for_kind(terms, kind)
            expected = get_expected_plan_sync(terms)
            breakdown = calculate_payment_info(terms)

            # the plan id has no lock until it is stored, so creation is serialized here
            with self._creation_lock:
                now = self._now()
                if self._ctx.plans.has_plan(plan_id):
                    raise PreconditionViolation("Plan id already used: {0}".format(plan_id))

                self._signatures.verify_plan_authorization(item, terms, plan_id, authorization, now=now)
                self._require_collection_enabled(item)
                vault_address = self.ledger.require_vault(item.vault_address)
                self._require_item_available(item)

                if kind == PlanKind.BNPL and down_payment < expected.down_payment_due:
                    raise InsufficientPaymentError(
                        "Down payment {0} below required {1}".format(down_payment, expected.down_payment_due)
                    )

                plan = PlanModel(
                    plan_id=int(plan_id),
                    kind=kind,
                    status=PlanStatus.CREATED if kind == PlanKind.BNPL else PlanStatus.ACTIVE,
                    owner=owner_address,
                    item=item,
                    terms=terms,
                    down_payment_paid=expected.down_payment_due,
                    total_paid=expected.down_payment_due,
                    activated_at=now if kind == PlanKind.PAWN else None,
                    last_payment_at=now if kind == PlanKind.PAWN else None,
                    created_at=now,
                    updated_at=now,
                )

                with self._unit_of_work(vault_addresses=[vault_address]) as journal:
                    if kind == PlanKind.PAWN:
                        self.ledger.advance(vault_address, plan.plan_id, breakdown.financed_amount)
                        self._take_custody(journal, item, owner_address)
                    stored = self._ctx.plans.create_plan(plan)

            change = max(0, down_payment - expected.down_payment_due) if kind == PlanKind.BNPL else 0
            logger.info(
                "Plan created plan_id=%s kind=%s status=%s owner=%s principal=%d",
                stored.plan_id,
                kind.value,
                stored.status.value,
                owner_address,
                terms.principal_amount,
            )
            return CreationReceipt(plan=stored, expected=expected, change=change)
        except PlanEngineError:
            logger.warning("Plan creation refused plan_id=%s kind=%s", plan_id, kind.value)
            raise
        except Exception:
            logger.exception("Failed creating plan plan_id=%s kind=%s", plan_id, kind.value)
            raise

    def _take_custody(self, journal: _Journal, item: ItemModel, from_address: str) -> None:
        self._ctx.custody.transfer_in(item, from_address)
        journal.record(partial(self._ctx.custody.transfer_out, item, from_address))

    def _release_custody(self, journal: _Journal, item: ItemModel, to_address: str) -> None:
        self._ctx.custody.transfer_out(item, to_address)
        journal.record(partial(self._ctx.custody.transfer_in, item, to_address))

    def _require_item_available(self, item: ItemModel) -> None:
        """Refuse a unique item already backing a live plan.

        ERC1155 units are pledged per holder, so custody balances decide
        whether another plan on the same token id can take collateral.
        """
        if item.is_fungible:
            return
        for existing in self._ctx.plans.list_plans():
            if not existing.is_terminal and existing.item.collateral_key == item.collateral_key:
                raise PreconditionViolation(
                    "Item {0}#{1} already backs plan {2}".format(
                        item.asset_contract_address, item.asset_id, existing.plan_id
                    )
                )

    def _require_collection_enabled(self, item: ItemModel) -> None:
        if not self._ctx.require_collection_authorization:
            return
        if not self.is_collection_enabled(item.asset_contract_address):
            raise PreconditionViolation(
                "Collection {0} is not enabled".format(item.asset_contract_address)
            )

    # ------------------------------------------------------------------
    # Funding authority transitions
    # ------------------------------------------------------------------

    def fund(self, plan_ids: Iterable[int], caller: str) -> List[PlanModel]:
        """Advance the financed amount for each ``CREATED`` BNPL plan.

        The funding authority hands each plan's collateral into custody. The
        batch is all-or-nothing: one failing id leaves every plan, vault and
        item as it was.
        """
        self._ctx.access_control.require_role(caller, Role.FUNDING)
        return self._apply_batch(PlanEvent.FUND, plan_ids, partial(self._fund_one, funder=normalize_address(caller)))

    def activate(self, plan_ids: Iterable[int], caller: str) -> List[PlanModel]:
        """Move each ``FUNDED`` BNPL plan to ``ACTIVE``; the first due date counts from now."""
        self._ctx.access_control.require_role(caller, Role.FUNDING)
        return self._apply_batch(PlanEvent.ACTIVATE, plan_ids, self._activate_one)

    def reject(self, plan_ids: Iterable[int], caller: str) -> List[PlanModel]:
        """Reject ``CREATED`` BNPL plans.

        No collateral moves, since BNPL items only enter custody when funded.
        The down payment becomes ``refund_due`` on each rejected plan.
        """
        self._ctx.access_control.require_role(caller, Role.FUNDING)
        return self._apply_batch(PlanEvent.REJECT, plan_ids, self._reject_one)

    def _apply_batch(
        self,
        event: PlanEvent,
        plan_ids: Iterable[int],
        apply_one: Callable[[_Journal, PlanModel, datetime], PlanModel],
    ) -> List[PlanModel]:
        ids = [int(plan_id) for plan_id in plan_ids]
        try:
            vault_addresses = {self._ctx.plans.get_plan(plan_id).item.vault_address for plan_id in ids}
            with self._unit_of_work(ids, vault_addresses) as journal:
                now = self._now()
                return [apply_one(journal, self._ctx.plans.get_plan(plan_id), now) for plan_id in ids]
        except PlanEngineError:
            logger.warning("Batch %s refused plan_ids=%s; no plan changed", event.value, ids)
            raise

    def _fund_one(self, journal: _Journal, plan: PlanModel, now: datetime, funder: str) -> PlanModel:
        target = self._require_transition(plan, PlanEvent.FUND)
        breakdown = calculate_payment_info(plan.terms)
        self.ledger.advance(
            plan.item.vault_address,
            plan.plan_id,
            breakdown.financed_amount,
            platform_fee=breakdown.single_service_fee,
        )
        self._take_custody(journal, plan.item, funder)
        stored = self._ctx.plans.save_plan(plan.bump(now=now, status=target, funded_at=now))
        logger.info("Plan funded plan_id=%s amount=%d funder=%s", plan.plan_id, breakdown.financed_amount, funder)
        return stored

    def _activate_one(self, journal: _Journal, plan: PlanModel, now: datetime) -> PlanModel:
        target = self._require_transition(plan, PlanEvent.ACTIVATE)
        stored = self._ctx.plans.save_plan(plan.bump(now=now, status=target, activated_at=now, last_payment_at=now))
        logger.info("Plan activated plan_id=%s", plan.plan_id)
        return stored

    def _reject_one(self, journal: _Journal, plan: PlanModel, now: datetime) -> PlanModel:
        target = self._require_transition(plan, PlanEvent.REJECT)
        stored = self._ctx.plans.save_plan(
            plan.bump(now=now, status=target, rejected_at=now, refund_due=plan.down_payment_paid)
        )
        logger.info("Plan rejected plan_id=%s owner=%s refund_due=%d", plan.plan_id, plan.owner, plan.down_payment_paid)
        return stored

    def liquidate(
        self,
        plan_id: int,
        caller: str,
        recipient: str,
        proceeds: Money = 0,
    ) -> LiquidationReceipt:
        """Hand defaulted collateral to ``recipient`` and credit ``proceeds`` to the vault."""
        self._ctx.access_control.require_role(caller, Role.FUNDING)
        recipient_address = normalize_address(recipient)
        if proceeds < 0:
            raise ValueError("proceeds must be >= 0")
        vault_address = self._ctx.plans.get_plan(plan_id).item.vault_address
        with self._unit_of_work([plan_id], [vault_address]) as journal:
            plan = self._ctx.plans.get_plan(plan_id)
            target = self._require_transition(plan, PlanEvent.LIQUIDATE)
            now = self._now()
            settlement = self.ledger.credit_liquidation(vault_address, plan.plan_id, proceeds)
            self._release_custody(journal, plan.item, recipient_address)
            stored = self._ctx.plans.save_plan(
                plan.bump(now=now, status=target, liquidated_at=now, liquidation_proceeds=proceeds)
            )
            logger.info(
                "Plan liquidated plan_id=%s recipient=%s proceeds=%d loss=%d",
                plan.plan_id,
                recipient_address,
                proceeds,
                settlement.loss,
            )
            return LiquidationReceipt(plan=stored, settlement=settlement)

    # ------------------------------------------------------------------
    # Borrower transitions
    # ------------------------------------------------------------------

    def pay(
        self,
        plan_id: int,
        amount: Money,
        is_early_payment: bool = False,
        now: Optional[datetime] = None,
    ) -> PaymentReceipt:
        """Apply one installment (or an early payoff) to an ``ACTIVE`` plan.

        A completing payment books the repayment, writes off the rounding
        residual and releases the collateral as one unit.

        Raises:
            PreconditionViolation: Plan is not ``ACTIVE``.
            InsufficientPaymentError: ``amount`` is below the installment due.
            CustodyError: Collateral could not be released on completion.
        """
        vault_address = self._ctx.plans.get_plan(plan_id).item.vault_address
        with self._unit_of_work([plan_id], [vault_address]) as journal:
            plan = self._ctx.plans.get_plan(plan_id)
            self._require_transition(plan, PlanEvent.PAY)
            payment = get_installment_due(plan.terms, early=is_early_payment, last_payment_at=plan.last_payment_at)
            if amount < payment.total_due:
                raise InsufficientPaymentError(
                    "Payment {0} below installment due {1} for plan {2}".format(amount, payment.total_due, plan_id)
                )

            current_time = self._now(now)
            paid = plan.terms.total_installments if is_early_payment else plan.terms.paid_installments + 1
            completed = paid >= plan.terms.total_installments
            updated = plan.bump(
                now=current_time,
                status=PlanStatus.COMPLETED if completed else PlanStatus.ACTIVE,
                terms=plan.terms.with_paid_installments(paid),
                total_paid=plan.total_paid + payment.total_due,
                last_payment_at=current_time,
                completed_at=current_time if completed else None,
            )

            split = self.ledger.receive_repayment(
                vault_address,
                plan.plan_id,
                principal=payment.principal_due,
                interest=payment.interest_fee_due,
                plan_service_fee=payment.service_fee_due,
                settle=completed,
            )
            if completed:
                self._release_custody(journal, plan.item, plan.owner)
            stored = self._ctx.plans.save_plan(updated)

            logger.info(
                "Plan payment plan_id=%s paid=%d/%d amount=%d status=%s",
                plan.plan_id,
                paid,
                plan.terms.total_installments,
                payment.total_due,
                stored.status.value,
            )
            return PaymentReceipt(
                plan=stored,
                payment=payment,
                amount_received=amount,
                change=amount - payment.total_due,
                split=split,
            )

    def mark_defaulted(self, plan_id: int, now: Optional[datetime] = None) -> PlanModel:
        """Move an ``ACTIVE`` plan past its due date to ``DEFAULTED``.

        Default detection is pushed by callers (or the default monitor); reads
        never change status.
        """
        with self._locked_plan(plan_id):
            plan = self._ctx.plans.get_plan(plan_id)
            target = self._require_transition(plan, PlanEvent.DEFAULT)
            current_time = self._now(now)
            due_at = self._due_at(plan)
            if due_at is None or current_time <= due_at:
                raise PreconditionViolation(
                    "Plan {0} is not past due (due_at={1})".format(plan_id, due_at.isoformat() if due_at else None)
                )
            stored = self._ctx.plans.save_plan(plan.bump(now=current_time, status=target, defaulted_at=current_time))
            logger.warning("Plan defaulted plan_id=%s due_at=%s", plan.plan_id, due_at.isoformat())
            return stored

    def update_auto_repay_status(self, plan_id: int, caller: str, status: AutoRepayStatus) -> PlanModel:
        """Let the plan owner change the auto-repay preference of a live plan."""
        with self._locked_plan(plan_id):
            plan = self._ctx.plans.get_plan(plan_id)
            if normalize_address(caller) != plan.owner:
                raise UnauthorizedCallerError("Only the plan owner may change auto-repay")
            if plan.is_terminal:
                raise PreconditionViolation("Plan {0} is {1}".format(plan_id, plan.status.value))
            stored = self._ctx.plans.save_plan(
                plan.bump(now=self._now(), terms=plan.terms.with_auto_repay_status(status))
            )
            logger.info("Auto-repay updated plan_id=%s status=%s", plan_id, AutoRepayStatus(status).name)
            return stored

    # ------------------------------------------------------------------
    # Collection authorization
    # ------------------------------------------------------------------

    def enable_collection(self, collection_address: str, version: int, signature: str) -> int:
        """Enable a collection with a signed, strictly increasing version."""
        address = normalize_address(collection_address)
        self._signatures.verify_collection_authorization(address, version, signature)
        with self._registry_lock:
            current = self._enabled_collections.get(address)
            if current is not None and version <= current:
                raise PreconditionViolation(
                    "Collection {0} already enabled at version {1}".format(address, current)
                )
            self._enabled_collections[address] = int(version)
        logger.info("Collection enabled collection=%s version=%d", address, version)
        return int(version)

    def is_collection_enabled(self, collection_address: str) -> bool:
        """Return whether a collection-level authorization is on record."""
        with self._registry_lock:
            return normalize_address(collection_address) in self._enabled_collections

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_plan(self, plan_id: int) -> PlanModel:
        """Consistent copy of a plan record."""
        with self._locked_plan(plan_id):
            return self._ctx.plans.get_plan(plan_id)

    def get_plan_status(self, plan_id: int) -> PlanStatus:
        """Current status; never evaluates defaults."""
        return self.get_plan(plan_id).status

    def get_status_code(self, plan_id: int) -> int:
        """Numeric status as reported by the plan contract."""
        plan = self.get_plan(plan_id)
        return status_code(plan.kind, plan.status)

    def get_payment_info_by_plan_id(self, plan_id: int, is_early_payment: bool = False) -> PaymentInfo:
        """Recompute the next payment from the plan's current paid counter.

        Raises:
            PreconditionViolation: Plan is terminal or already fully paid.
        """
        plan = self.get_plan(plan_id)
        if plan.is_terminal:
            raise PreconditionViolation("Plan {0} is {1}".format(plan_id, plan.status.value))
        return get_installment_due(plan.terms, early=is_early_payment, last_payment_at=plan.last_payment_at)

    def get_schedule(self, plan_id: int) -> List[ScheduledInstallment]:
        """Projected installments counted from activation (or creation before activation)."""
        plan = self.get_plan(plan_id)
        return build_schedule(plan.terms, plan.activated_at or plan.created_at)

    @staticmethod
    def get_expected_plan_sync(terms: PlanTermsModel) -> ExpectedPlan:
        """Quote for prospective terms."""
        return get_expected_plan_sync(terms)

    def list_plans(self, status: Optional[PlanStatus] = None) -> List[PlanModel]:
        """All plans ordered by id, optionally filtered by status."""
        return self._ctx.plans.list_plans(status=status)

    def find_overdue_plans(self, now: Optional[datetime] = None) -> List[int]:
        """Ids of ``ACTIVE`` plans whose next payment is past due."""
        current_time = self._now(now)
        overdue: List[int] = []
        for plan in self._ctx.plans.list_plans(status=PlanStatus.ACTIVE):
            due_at = self._due_at(plan)
            if due_at is not None and current_time > due_at:
                overdue.append(plan.plan_id)
        return overdue

    @staticmethod
    def _due_at(plan: PlanModel) -> Optional[datetime]:
        if plan.last_payment_at is None:
            return None
        return plan.last_payment_at + timedelta(minutes=plan.terms.term_minutes)


class PlanEngineBuilder:
    """Wires concrete collaborator implementations into a ``PlanLifecycleEngine``."""

    def __init__(self) -> None:
        self._custody: Optional[CustodyService] = None
        self._access_control: Optional[AccessControl] = None
        self._signer_registry: Optional[SignerRegistry] = None
        self._store: Optional[InMemoryLedgerStore] = None
        self._plans: Optional[PlanRepository] = None
        self._ledger: Optional[VaultFundingLedger] = None
        self._chain_id: Optional[int] = None
        self._clock: Callable[[], datetime] = utc_now
        self._require_collection_authorization = False

    @classmethod
    def from_settings(cls, settings: AppSettings) -> PlanLifecycleEngine:
        """Build an in-memory engine from application settings.

        Funding authorities are granted ``FUNDING``, the signer comes from
        ``signer_address`` or is derived from ``signer_private_key``, and the
        configured vault is registered with its initial deposit.
        """
        try:
            if settings.signer_address:
                authority = settings.signer_address
            elif settings.signer_private_key:
                authority = Account.from_key(settings.signer_private_key).address
            else:
                authority = Account.create().address
                logger.warning("No signer configured; using ephemeral authority=%s", authority)

            access_control = InMemoryAccessControl(
                {Role.FUNDING: settings.funding_authorities, Role.ADMIN: settings.admin_authorities}
            )
            store = InMemoryLedgerStore()
            ledger = VaultFundingLedger(store)
            if settings.vault_address:
                ledger.register_vault(
                    settings.vault_address,
                    settings.vault_safety_fund_percent_bp,
                    settings.vault_service_fee_percent_bp,
                )
                if settings.vault_initial_deposit > 0:
                    ledger.deposit(settings.vault_address, settings.vault_initial_deposit)

            return (
                cls()
                .with_access_control(access_control)
                .with_signer_registry(StaticSignerRegistry(authority))
                .with_store(store)
                .with_ledger(ledger)
                .with_chain_id(settings.chain_id)
                .require_collection_authorization(settings.require_collection_authorization)
                .build()
            )
        except Exception:
            logger.exception("Failed to build plan engine from settings.")
            raise

    def with_custody(self, custody: CustodyService) -> "PlanEngineBuilder":
        self._custody = custody
        return self

    def with_access_control(self, access_control: AccessControl) -> "PlanEngineBuilder":
        self._access_control = access_control
        return self

    def with_signer_registry(self, signer_registry: SignerRegistry) -> "PlanEngineBuilder":
        self._signer_registry = signer_registry
        return self

    def with_store(self, store: InMemoryLedgerStore) -> "PlanEngineBuilder":
        """Use one store for both plans and vaults."""
        self._store = store
        return self

    def with_plan_repository(self, plans: PlanRepository) -> "PlanEngineBuilder":
        self._plans = plans
        return self

    def with_ledger(self, ledger: VaultFundingLedger) -> "PlanEngineBuilder":
        self._ledger = ledger
        return self

    def with_chain_id(self, chain_id: int) -> "PlanEngineBuilder":
        self._chain_id = int(chain_id)
        return self

    def with_clock(self, clock: Callable[[], datetime]) -> "PlanEngineBuilder":
        self._clock = clock
        return self

    def require_collection_authorization(self, enabled: bool = True) -> "PlanEngineBuilder":
        self._require_collection_authorization = bool(enabled)
        return self

    def build(self) -> PlanLifecycleEngine:
        """Assemble the engine, defaulting storage and collaborators to in-memory versions.

        Raises:
            ValueError: If no signer registry or chain id was provided.
        """
        if self._signer_registry is None:
            raise ValueError("A signer registry is required")
        if self._chain_id is None:
            raise ValueError("A chain id is required")

        store = self._store or InMemoryLedgerStore()
        context = EngineContext(
            custody=self._custody or InMemoryCustodyService(),
            access_control=self._access_control or InMemoryAccessControl(),
            signer_registry=self._signer_registry,
            ledger=self._ledger or VaultFundingLedger(store),
            plans=self._plans or store,
            chain_id=self._chain_id,
            clock=self._clock,
            require_collection_authorization=self._require_collection_authorization,
        )
        logger.info(
            "Plan engine built chain_id=%d collection_authorization=%s",
            context.chain_id,
            context.require_collection_authorization,
        )
        return PlanLifecycleEngine(context)
