"""Lifecycle tests for BNPL and Pawn plans against in-memory collaborators."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import unittest
from unittest import mock

from web3 import Web3

from paymentplan.common.protocol_constants import to_wei
from paymentplan.core.config import AppSettings
from paymentplan.models.enums import AutoRepayStatus, ItemType, PlanEvent, PlanStatus, Role
from paymentplan.models.exceptions import (
    CustodyError,
    ExpiredAuthorizationError,
    InsufficientLiquidityError,
    InsufficientPaymentError,
    InvalidTermsError,
    PlanNotFoundError,
    PreconditionViolation,
    UnauthorizedCallerError,
    UnauthorizedSignerError,
    VaultNotFoundError,
)
from paymentplan.models.items import ItemModel
from paymentplan.services.collaborators import InMemoryCustodyService
from paymentplan.services.plan_engine import _TRANSITIONS, PlanEngineBuilder
from paymentplan.services.signature_service import sign_collection
from paymentplan.tests.support import (
    CHAIN_ID,
    COLLECTION,
    FUNDER,
    OTHER_KEY,
    OWNER,
    SIGNER_ADDRESS,
    SIGNER_KEY,
    STRANGER,
    TERM_MINUTES,
    VAULT,
    EngineFixture,
    authorize,
    make_bnpl_terms,
    make_item,
    make_pawn_terms,
)


class FailingReleaseCustody(InMemoryCustodyService):
    """Custody that refuses to release collateral."""

    def transfer_out(self, item, to_address):
        raise CustodyError("release blocked")


class FailingIntakeCustody(InMemoryCustodyService):
    """Custody that refuses to take collateral."""

    def transfer_in(self, item, from_address):
        raise CustodyError("intake blocked")


class BnplLifecycleTests(unittest.TestCase):
    """BNPL: CREATED -> FUNDED -> ACTIVE -> COMPLETED."""

    def setUp(self) -> None:
        self.fx = EngineFixture()
        self.engine = self.fx.engine

    def test_reference_flow(self) -> None:
        receipt = self.fx.create_bnpl()
        self.assertEqual(receipt.plan.status, PlanStatus.CREATED)
        self.assertEqual(receipt.plan.down_payment_paid, to_wei("2.7775"))
        self.assertEqual(self.engine.get_status_code(1), 0)
        self.assertFalse(self.fx.custody.is_held(make_item()))

        funded = self.engine.fund([1], FUNDER)[0]
        self.assertEqual(funded.status, PlanStatus.FUNDED)
        self.assertTrue(self.fx.custody.is_held(make_item()))
        activated = self.engine.activate([1], FUNDER)[0]
        self.assertEqual(activated.status, PlanStatus.ACTIVE)
        self.assertEqual(activated.paid_installments, 1)

        info = self.engine.get_payment_info_by_plan_id(1)
        self.assertEqual(info.total_due, to_wei("3.2725"))
        self.assertEqual(info.due_at, self.fx.clock.now + timedelta(minutes=TERM_MINUTES))

        for expected_paid in (2, 3, 4):
            self.fx.clock.advance(days=30)
            receipt = self.engine.pay(1, to_wei("3.2725"))
            self.assertEqual(receipt.plan.paid_installments, expected_paid)

        plan = self.engine.get_plan(1)
        self.assertEqual(plan.status, PlanStatus.COMPLETED)
        self.assertEqual(plan.paid_installments, 4)
        self.assertEqual(plan.total_paid, to_wei("12.595"))
        self.assertEqual(self.engine.get_status_code(1), 5)
        self.assertFalse(self.fx.custody.is_held(make_item()))
        self.assertEqual(self.fx.custody.owner_of(COLLECTION, 1), Web3.to_checksum_address(OWNER))

        vault = self.fx.ledger.get_vault(VAULT)
        self.assertEqual(vault.outstanding_principal, 0)
        self.assertEqual(vault.rounding_residual, 0)
        self.assertEqual(vault.balance, to_wei("20") + 3 * to_wei("0.493515"))

    def test_fund_advances_financed_amount(self) -> None:
        self.fx.create_bnpl()
        self.engine.fund([1], FUNDER)
        vault = self.fx.ledger.get_vault(VAULT)
        self.assertEqual(vault.outstanding_principal, to_wei("8.25"))
        self.assertEqual(vault.service_fee_collected, to_wei("0.0275"))

    def test_down_payment_too_small(self) -> None:
        with self.assertRaises(InsufficientPaymentError):
            self.fx.create_bnpl(down_payment=to_wei("2.7775") - 1)
        self.assertFalse(self.engine.context.plans.has_plan(1))
        self.assertFalse(self.fx.custody.is_held(make_item()))

    def test_down_payment_change(self) -> None:
        receipt = self.fx.create_bnpl(down_payment=to_wei("3"))
        self.assertEqual(receipt.change, to_wei("3") - to_wei("2.7775"))

    def test_terms_must_fit_bnpl(self) -> None:
        item, terms = make_item(), make_pawn_terms()
        with self.assertRaises(InvalidTermsError):
            self.engine.create_bnpl(item, terms, 1, authorize(item, terms, 1), OWNER, to_wei("5"))

    def test_plan_id_cannot_be_reused(self) -> None:
        self.fx.create_bnpl(plan_id=1, asset_id=1)
        self.engine.reject([1], FUNDER)
        with self.assertRaises(PreconditionViolation):
            self.fx.create_bnpl(plan_id=1, asset_id=2)

    def test_item_cannot_back_two_live_plans(self) -> None:
        self.fx.create_bnpl(plan_id=1, asset_id=1)
        with self.assertRaises(PreconditionViolation):
            self.fx.create_bnpl(plan_id=2, asset_id=1)

    def test_item_reusable_after_rejection(self) -> None:
        self.fx.create_bnpl(plan_id=1, asset_id=1)
        self.engine.reject([1], FUNDER)
        self.assertEqual(self.fx.create_bnpl(plan_id=2, asset_id=1).plan.status, PlanStatus.CREATED)

    def test_fund_takes_collateral_from_funder(self) -> None:
        self.fx.custody.register_asset(COLLECTION, 1, FUNDER)
        self.fx.create_bnpl()
        self.assertEqual(self.fx.custody.owner_of(COLLECTION, 1), Web3.to_checksum_address(FUNDER))

        self.engine.fund([1], FUNDER)
        self.assertTrue(self.fx.custody.is_held(make_item()))
        self.engine.activate([1], FUNDER)
        for _ in range(3):
            self.fx.pay_due(1)
        self.assertEqual(self.fx.custody.owner_of(COLLECTION, 1), Web3.to_checksum_address(OWNER))

    def test_fund_fails_when_funder_lacks_collateral(self) -> None:
        self.fx.custody.register_asset(COLLECTION, 1, STRANGER)
        self.fx.create_bnpl()
        with self.assertRaises(CustodyError):
            self.engine.fund([1], FUNDER)
        self.assertEqual(self.engine.get_plan_status(1), PlanStatus.CREATED)
        self.assertEqual(self.fx.ledger.get_vault(VAULT).outstanding_principal, 0)
        self.assertEqual(self.fx.custody.owner_of(COLLECTION, 1), Web3.to_checksum_address(STRANGER))

    def test_reject_leaves_collateral_with_seller(self) -> None:
        self.fx.custody.register_asset(COLLECTION, 1, FUNDER)
        self.fx.create_bnpl()
        rejected = self.engine.reject([1], FUNDER)[0]
        self.assertEqual(rejected.status, PlanStatus.REJECTED)
        self.assertIsNotNone(rejected.rejected_at)
        self.assertEqual(rejected.refund_due, to_wei("2.7775"))
        self.assertEqual(self.engine.get_status_code(1), 4)
        self.assertFalse(self.fx.custody.is_held(make_item()))
        self.assertEqual(self.fx.custody.owner_of(COLLECTION, 1), Web3.to_checksum_address(FUNDER))
        with self.assertRaises(PreconditionViolation):
            self.engine.fund([1], FUNDER)

    def test_funding_role_required(self) -> None:
        self.fx.create_bnpl()
        for action in (self.engine.fund, self.engine.activate, self.engine.reject):
            with self.subTest(action=action.__name__):
                with self.assertRaises(UnauthorizedCallerError):
                    action([1], STRANGER)
        self.assertEqual(self.engine.get_plan_status(1), PlanStatus.CREATED)

    def test_activate_requires_funding_first(self) -> None:
        self.fx.create_bnpl()
        with self.assertRaises(PreconditionViolation):
            self.engine.activate([1], FUNDER)

    def test_pay_before_activation(self) -> None:
        self.fx.create_bnpl()
        with self.assertRaises(PreconditionViolation):
            self.engine.pay(1, to_wei("4"))
        self.assertEqual(self.engine.get_plan(1).paid_installments, 1)

    def test_fund_insufficient_liquidity(self) -> None:
        fx = EngineFixture(deposit=to_wei("10"))
        fx.create_bnpl()
        with self.assertRaises(InsufficientLiquidityError):
            fx.engine.fund([1], FUNDER)
        self.assertEqual(fx.engine.get_plan_status(1), PlanStatus.CREATED)

    def test_batch_with_unknown_id_changes_nothing(self) -> None:
        self.fx.create_bnpl(plan_id=1, asset_id=1)
        self.fx.create_bnpl(plan_id=2, asset_id=2)
        with self.assertRaises(PlanNotFoundError):
            self.engine.fund([1, 99, 2], FUNDER)
        self.assertEqual(self.engine.get_plan_status(1), PlanStatus.CREATED)
        self.assertEqual(self.engine.get_plan_status(2), PlanStatus.CREATED)
        self.assertEqual(self.fx.ledger.get_vault(VAULT).outstanding_principal, 0)
        self.assertFalse(self.fx.custody.is_held(make_item(1)))

    def test_batch_is_undone_when_a_later_id_fails(self) -> None:
        self.fx.create_bnpl(plan_id=1, asset_id=1)
        self.fx.create_bnpl(plan_id=2, asset_id=2)
        before = self.fx.ledger.get_vault(VAULT)
        # 16 ether available covers one 8.25 ether advance but not two
        with self.assertRaises(InsufficientLiquidityError):
            self.engine.fund([1, 2], FUNDER)
        for plan_id in (1, 2):
            self.assertEqual(self.engine.get_plan_status(plan_id), PlanStatus.CREATED)
            self.assertFalse(self.fx.custody.is_held(make_item(plan_id)))
        after = self.fx.ledger.get_vault(VAULT)
        self.assertEqual(after.balance, before.balance)
        self.assertEqual(after.service_fee_collected, before.service_fee_collected)
        self.assertEqual(after.exposures, {})

    def test_activate_batch_is_all_or_nothing(self) -> None:
        self.fx.create_bnpl(plan_id=1, asset_id=1)
        self.fx.create_bnpl(plan_id=2, asset_id=2)
        self.engine.fund([1], FUNDER)
        with self.assertRaises(PreconditionViolation):
            self.engine.activate([1, 2], FUNDER)
        self.assertEqual(self.engine.get_plan_status(1), PlanStatus.FUNDED)
        self.assertIsNone(self.engine.get_plan(1).activated_at)

    def test_plan_write_failure_undoes_funding(self) -> None:
        self.fx.create_bnpl()
        save_plan = self.fx.store.save_plan

        def refuse_funded(plan):
            if plan.status == PlanStatus.FUNDED:
                raise RuntimeError("plan store unavailable")
            return save_plan(plan)

        with mock.patch.object(self.fx.store, "save_plan", side_effect=refuse_funded):
            with self.assertRaises(RuntimeError):
                self.engine.fund([1], FUNDER)
        self.assertEqual(self.engine.get_plan_status(1), PlanStatus.CREATED)
        self.assertEqual(self.fx.ledger.get_vault(VAULT).outstanding_principal, 0)
        self.assertFalse(self.fx.custody.is_held(make_item()))

    def test_early_payoff_completes(self) -> None:
        self.fx.activate_bnpl()
        receipt = self.fx.pay_due(1, early=True)
        self.assertEqual(receipt.payment.total_due, to_wei("8.8275"))
        self.assertEqual(receipt.plan.status, PlanStatus.COMPLETED)
        self.assertEqual(receipt.plan.paid_installments, 4)
        self.assertEqual(self.fx.ledger.get_vault(VAULT).outstanding_principal, 0)

    def test_underpayment_leaves_plan_unchanged(self) -> None:
        self.fx.activate_bnpl()
        with self.assertRaises(InsufficientPaymentError):
            self.engine.pay(1, to_wei("3.2725") - 1)
        plan = self.engine.get_plan(1)
        self.assertEqual(plan.paid_installments, 1)
        self.assertEqual(plan.status, PlanStatus.ACTIVE)

    def test_overpayment_returns_change(self) -> None:
        self.fx.activate_bnpl()
        receipt = self.engine.pay(1, to_wei("4"))
        self.assertEqual(receipt.change, to_wei("4") - to_wei("3.2725"))
        self.assertEqual(receipt.plan.total_paid, to_wei("2.7775") + to_wei("3.2725"))

    def test_payment_info_on_terminal_plan(self) -> None:
        self.fx.create_bnpl()
        self.engine.reject([1], FUNDER)
        with self.assertRaises(PreconditionViolation):
            self.engine.get_payment_info_by_plan_id(1)

    def test_schedule(self) -> None:
        self.fx.activate_bnpl()
        schedule = self.engine.get_schedule(1)
        self.assertEqual(len(schedule), 4)
        self.assertEqual(schedule[1].due_at, self.fx.clock.now + timedelta(minutes=TERM_MINUTES))


class PawnLifecycleTests(unittest.TestCase):
    """Pawn: ACTIVE at creation, then repayment, default and liquidation."""

    def setUp(self) -> None:
        self.fx = EngineFixture()
        self.engine = self.fx.engine

    def test_reference_flow_with_rounding_residual(self) -> None:
        receipt = self.fx.create_pawn()
        self.assertEqual(receipt.plan.status, PlanStatus.ACTIVE)
        self.assertEqual(self.engine.get_status_code(1), 7)
        self.assertEqual(self.fx.ledger.get_vault(VAULT).outstanding_principal, to_wei("10"))

        for expected_paid in (1, 2, 3):
            self.fx.clock.advance(days=1)
            self.assertEqual(self.fx.pay_due(1).plan.paid_installments, expected_paid)

        self.assertEqual(self.engine.get_plan_status(1), PlanStatus.COMPLETED)
        self.assertEqual(self.engine.get_status_code(1), 9)
        vault = self.fx.ledger.get_vault(VAULT)
        self.assertEqual(vault.outstanding_principal, 0)
        # 10 ether over 3 installments drops one wei of principal
        self.assertEqual(vault.rounding_residual, 1)

    def test_insufficient_liquidity(self) -> None:
        fx = EngineFixture(deposit=to_wei("12"))
        with self.assertRaises(InsufficientLiquidityError):
            fx.create_pawn()
        self.assertFalse(fx.engine.context.plans.has_plan(1))
        self.assertFalse(fx.custody.is_held(make_item()))

    def test_unknown_vault(self) -> None:
        item = make_item(vault="0x" + "77" * 20)
        terms = make_pawn_terms()
        with self.assertRaises(VaultNotFoundError):
            self.engine.create_pawn(item, terms, 1, authorize(item, terms, 1), OWNER)

    def test_custody_intake_failure(self) -> None:
        fx = EngineFixture(custody=FailingIntakeCustody())
        with self.assertRaises(CustodyError):
            fx.create_pawn()
        self.assertFalse(fx.engine.context.plans.has_plan(1))
        self.assertEqual(fx.ledger.get_vault(VAULT).outstanding_principal, 0)

    def test_item_owned_by_someone_else(self) -> None:
        self.fx.custody.register_asset(COLLECTION, 1, STRANGER)
        with self.assertRaises(CustodyError):
            self.fx.create_pawn()
        self.assertFalse(self.engine.context.plans.has_plan(1))

    def test_release_failure_rolls_back_final_payment(self) -> None:
        fx = EngineFixture(custody=FailingReleaseCustody())
        fx.create_pawn()
        fx.pay_due(1)
        fx.pay_due(1)
        before = fx.ledger.get_vault(VAULT)
        with self.assertRaises(CustodyError):
            fx.pay_due(1)
        plan = fx.engine.get_plan(1)
        self.assertEqual(plan.status, PlanStatus.ACTIVE)
        self.assertEqual(plan.paid_installments, 2)
        self.assertEqual(fx.ledger.get_vault(VAULT).balance, before.balance)

    def test_expired_authorization(self) -> None:
        item, terms = make_item(), make_pawn_terms()
        authorization = authorize(item, terms, 1)
        self.fx.clock.advance(days=2)
        with self.assertRaises(ExpiredAuthorizationError):
            self.engine.create_pawn(item, terms, 1, authorization, OWNER)

    def test_unauthorized_signer(self) -> None:
        item, terms = make_item(), make_pawn_terms()
        with self.assertRaises(UnauthorizedSignerError):
            self.engine.create_pawn(item, terms, 1, authorize(item, terms, 1, key=OTHER_KEY), OWNER)
        self.assertFalse(self.fx.custody.is_held(item))

    def test_default_requires_overdue(self) -> None:
        self.fx.create_pawn()
        self.fx.clock.advance(minutes=TERM_MINUTES)
        with self.assertRaises(PreconditionViolation):
            self.engine.mark_defaulted(1)
        self.assertEqual(self.engine.find_overdue_plans(), [])

        self.fx.clock.advance(seconds=1)
        self.assertEqual(self.engine.find_overdue_plans(), [1])
        defaulted = self.engine.mark_defaulted(1)
        self.assertEqual(defaulted.status, PlanStatus.DEFAULTED)
        self.assertEqual(self.engine.get_status_code(1), 8)

    def test_payment_resets_due_date(self) -> None:
        self.fx.create_pawn()
        self.fx.clock.advance(minutes=TERM_MINUTES - 1)
        self.fx.pay_due(1)
        self.fx.clock.advance(minutes=2)
        self.assertEqual(self.engine.find_overdue_plans(), [])

    def test_overdue_plan_can_still_pay_until_marked(self) -> None:
        self.fx.create_pawn()
        self.fx.clock.advance(minutes=TERM_MINUTES + 10)
        self.assertEqual(self.fx.pay_due(1).plan.paid_installments, 1)

    def test_liquidation(self) -> None:
        self.fx.create_pawn()
        self.fx.clock.advance(minutes=TERM_MINUTES + 1)
        self.engine.mark_defaulted(1)
        with self.assertRaises(PreconditionViolation):
            self.engine.pay(1, to_wei("5"))
        with self.assertRaises(UnauthorizedCallerError):
            self.engine.liquidate(1, STRANGER, FUNDER, proceeds=to_wei("4"))

        receipt = self.engine.liquidate(1, FUNDER, FUNDER, proceeds=to_wei("4"))
        self.assertEqual(receipt.plan.status, PlanStatus.LIQUIDATED)
        self.assertEqual(receipt.settlement.loss, to_wei("6"))
        self.assertEqual(receipt.settlement.absorbed_by_safety_fund, to_wei("4"))
        self.assertEqual(self.engine.get_status_code(1), 10)
        self.assertEqual(self.fx.custody.owner_of(COLLECTION, 1), Web3.to_checksum_address(FUNDER))

        vault = self.fx.ledger.get_vault(VAULT)
        self.assertEqual(vault.liquidation_losses, to_wei("6"))
        self.assertEqual(vault.safety_fund, 0)

    def test_liquidate_active_plan(self) -> None:
        self.fx.create_pawn()
        with self.assertRaises(PreconditionViolation):
            self.engine.liquidate(1, FUNDER, FUNDER)

    def test_final_payment_closes_exposure_in_one_vault_write(self) -> None:
        self.fx.create_pawn()
        self.fx.pay_due(1)
        self.fx.pay_due(1)
        version = self.fx.ledger.get_vault(VAULT).version
        receipt = self.fx.pay_due(1)
        vault = self.fx.ledger.get_vault(VAULT)
        self.assertEqual(receipt.split.residual_written_off, 1)
        self.assertEqual(vault.version, version + 1)
        self.assertNotIn(1, vault.exposures)

    def test_erc1155_units_pledged_by_separate_holders(self) -> None:
        fx = EngineFixture(deposit=to_wei("100"))
        holders = (OWNER, STRANGER)
        for holder in holders:
            fx.custody.register_units(COLLECTION, 7, holder, 1)
        item = ItemModel(
            vault_address=VAULT,
            asset_contract_address=COLLECTION,
            asset_id=7,
            amount=1,
            asset_kind=ItemType.ERC1155,
        )
        terms = make_pawn_terms()
        for plan_id, holder in enumerate(holders, start=1):
            fx.engine.create_pawn(item, terms, plan_id, authorize(item, terms, plan_id), holder)
            self.assertEqual(fx.custody.units_of(COLLECTION, 7, holder), 0)
        self.assertEqual(len(fx.engine.list_plans(PlanStatus.ACTIVE)), 2)

        with self.assertRaises(CustodyError):
            fx.engine.create_pawn(item, terms, 3, authorize(item, terms, 3), OWNER)
        self.assertFalse(fx.engine.context.plans.has_plan(3))

        for _ in range(3):
            fx.pay_due(2)
        self.assertEqual(fx.custody.units_of(COLLECTION, 7, STRANGER), 1)
        self.assertTrue(fx.custody.is_held(item))

    def test_concurrent_payments_are_serialized(self) -> None:
        self.fx.create_pawn()
        amount = self.engine.get_payment_info_by_plan_id(1).total_due * 2

        def attempt(_):
            try:
                self.engine.pay(1, amount)
                return "paid"
            except PreconditionViolation:
                return "refused"

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(attempt, range(4)))
        self.assertEqual(outcomes.count("paid"), 3)
        self.assertEqual(outcomes.count("refused"), 1)
        self.assertEqual(self.engine.get_plan(1).paid_installments, 3)


class PlanAdministrationTests(unittest.TestCase):
    """Auto-repay preference, collection gating and listing."""

    def test_update_auto_repay(self) -> None:
        fx = EngineFixture()
        fx.create_pawn()
        updated = fx.engine.update_auto_repay_status(1, OWNER, AutoRepayStatus.ENABLED)
        self.assertEqual(updated.terms.auto_repay_status, AutoRepayStatus.ENABLED)
        with self.assertRaises(UnauthorizedCallerError):
            fx.engine.update_auto_repay_status(1, STRANGER, AutoRepayStatus.DISABLED)

    def test_collection_gate(self) -> None:
        fx = EngineFixture(require_collection_authorization=True)
        with self.assertRaises(PreconditionViolation):
            fx.create_pawn()

        fx.engine.enable_collection(COLLECTION, 1, sign_collection(SIGNER_KEY, COLLECTION, 1, CHAIN_ID))
        self.assertTrue(fx.engine.is_collection_enabled(COLLECTION))
        self.assertEqual(fx.create_pawn().plan.status, PlanStatus.ACTIVE)

        with self.assertRaises(PreconditionViolation):
            fx.engine.enable_collection(COLLECTION, 1, sign_collection(SIGNER_KEY, COLLECTION, 1, CHAIN_ID))
        self.assertEqual(
            fx.engine.enable_collection(COLLECTION, 2, sign_collection(SIGNER_KEY, COLLECTION, 2, CHAIN_ID)), 2
        )

    def test_collection_signature_must_come_from_authority(self) -> None:
        fx = EngineFixture()
        with self.assertRaises(UnauthorizedSignerError):
            fx.engine.enable_collection(COLLECTION, 1, sign_collection(OTHER_KEY, COLLECTION, 1, CHAIN_ID))

    def test_list_plans_by_status(self) -> None:
        fx = EngineFixture(deposit=to_wei("100"))
        fx.create_pawn(plan_id=1, asset_id=1)
        fx.create_bnpl(plan_id=2, asset_id=2)
        self.assertEqual([plan.plan_id for plan in fx.engine.list_plans()], [1, 2])
        self.assertEqual([plan.plan_id for plan in fx.engine.list_plans(PlanStatus.CREATED)], [2])

    def test_unknown_plan(self) -> None:
        fx = EngineFixture()
        with self.assertRaises(PlanNotFoundError):
            fx.engine.get_plan_status(5)

    def test_unknown_plan_lookups_allocate_no_locks(self) -> None:
        fx = EngineFixture()
        fx.create_pawn()
        fx.engine.get_plan(1)
        for plan_id in range(100, 1100):
            with self.assertRaises(PlanNotFoundError):
                fx.engine.get_plan(plan_id)
        with self.assertRaises(PlanNotFoundError):
            fx.engine.pay(5000, to_wei("1"))
        self.assertEqual(list(fx.engine._plan_locks), [1])

    def test_every_event_has_a_transition(self) -> None:
        events = {event for event, _ in _TRANSITIONS}
        self.assertEqual(events, set(PlanEvent))


class PlanEngineBuilderTests(unittest.TestCase):
    """Wiring from builder calls and settings."""

    def _settings(self, **overrides) -> AppSettings:
        values = dict(
            app_name="test",
            debug=False,
            host="127.0.0.1",
            port=8000,
            log_level="INFO",
            chain_id=CHAIN_ID,
            signer_address=None,
            signer_private_key=SIGNER_KEY,
            require_collection_authorization=False,
            funding_authorities=[FUNDER],
            admin_authorities=[],
            vault_address=VAULT,
            vault_safety_fund_percent_bp=2000,
            vault_service_fee_percent_bp=30,
            vault_initial_deposit=to_wei("20"),
            default_monitor_enabled=False,
            default_monitor_poll_interval_sec=60,
        )
        values.update(overrides)
        return AppSettings(**values)

    def test_build_requires_signer_and_chain(self) -> None:
        with self.assertRaises(ValueError):
            PlanEngineBuilder().with_chain_id(CHAIN_ID).build()

    def test_from_settings(self) -> None:
        engine = PlanEngineBuilder.from_settings(self._settings())
        self.assertEqual(engine.context.signer_registry.current_authority(), SIGNER_ADDRESS)
        engine.context.access_control.require_role(FUNDER, Role.FUNDING)
        self.assertEqual(engine.ledger.available_liquidity(VAULT), to_wei("16"))
        self.assertEqual(engine.signatures.chain_id, CHAIN_ID)

    def test_from_settings_without_vault(self) -> None:
        engine = PlanEngineBuilder.from_settings(self._settings(vault_address=None))
        self.assertFalse(engine.ledger.has_vault(VAULT))


if __name__ == "__main__":
    unittest.main()
