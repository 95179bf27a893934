"""Vault funding ledger: pooled liquidity, safety fund and fee splits.

Every mutation of a vault account runs under that vault's lock and is
written back to the repository in one ``save_vault`` call, so a failed
guard never leaves a partial update behind. ``hold`` lets a caller keep
several vault locks across a multi-step transition and ``restore`` puts a
prior copy back when that transition unwinds.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
import logging
from threading import RLock
from typing import Dict, Iterator, NamedTuple

from paymentplan.common.protocol_constants import apply_bps
from paymentplan.models.base import Money, normalize_address
from paymentplan.models.exceptions import InsufficientLiquidityError, VaultNotFoundError
from paymentplan.models.repositories import VaultRepository
from paymentplan.models.vaults import VaultAccountModel


logger = logging.getLogger(__name__)


class RepaymentSplit(NamedTuple):
    """Where one repayment went."""

    principal_returned: Money
    interest_yield: Money
    vault_service_fee: Money
    plan_service_fee: Money
    safety_fund_set_aside: Money
    residual_written_off: Money = 0


class LiquidationSettlement(NamedTuple):
    """Outcome of crediting liquidation proceeds."""

    proceeds: Money
    exposure_closed: Money
    loss: Money
    absorbed_by_safety_fund: Money


class VaultFundingLedger:
    """Tracks vault accounts and moves plan cash flows through them."""

    def __init__(self, repository: VaultRepository) -> None:
        self._repository = repository
        self._registry_lock = RLock()
        self._vault_locks: Dict[str, RLock] = {}

    @contextmanager
    def _locked(self, vault_address: str, create: bool = False) -> Iterator[str]:
        """Hold the per-vault write lock and yield the checksum address.

        Locks exist only for registered vaults (or the one being registered),
        so lookups of unknown addresses leave nothing behind.
        """
        address = normalize_address(vault_address)
        with self._registry_lock:
            lock = self._vault_locks.get(address)
            if lock is None:
                if not create and not self._repository.has_vault(address):
                    raise VaultNotFoundError("Vault not found: {0}".format(address))
                lock = self._vault_locks[address] = RLock()
        with lock:
            yield address

    @contextmanager
    def hold(self, *vault_addresses: str) -> Iterator[None]:
        """Hold the locks of several vaults, taken in address order."""
        addresses = sorted({normalize_address(address) for address in vault_addresses})
        with ExitStack() as stack:
            for address in addresses:
                stack.enter_context(self._locked(address))
            yield

    def restore(self, vault: VaultAccountModel) -> VaultAccountModel:
        """Write back a previously read copy of a vault account."""
        with self._locked(vault.vault_address) as address:
            logger.info("Vault restored vault=%s version=%s", address, vault.version)
            return self._repository.save_vault(vault)

    def register_vault(
        self,
        vault_address: str,
        safety_fund_percent_bp: int,
        service_fee_percent_bp: int,
    ) -> VaultAccountModel:
        """Open a vault account with zero balance."""
        with self._locked(vault_address, create=True) as address:
            vault = VaultAccountModel(
                vault_address=address,
                safety_fund_percent_bp=safety_fund_percent_bp,
                service_fee_percent_bp=service_fee_percent_bp,
            )
            created = self._repository.create_vault(vault)
            logger.info(
                "Vault registered vault=%s safety_fund_bp=%d service_fee_bp=%d",
                address,
                safety_fund_percent_bp,
                service_fee_percent_bp,
            )
            return created

    def has_vault(self, vault_address: str) -> bool:
        """Return whether a vault account exists."""
        return self._repository.has_vault(normalize_address(vault_address))

    def get_vault(self, vault_address: str) -> VaultAccountModel:
        """Return a consistent copy of a vault account."""
        with self._locked(vault_address) as address:
            return self._repository.get_vault(address)

    def available_liquidity(self, vault_address: str) -> Money:
        """Cash that can be advanced to new plans, net of the safety fund."""
        return self.get_vault(vault_address).available_liquidity

    def deposit(self, vault_address: str, amount: Money) -> VaultAccountModel:
        """Add liquidity; part of every deposit is reserved into the safety fund."""
        if amount <= 0:
            raise ValueError("deposit amount must be > 0")
        with self._locked(vault_address) as address:
            vault = self._repository.get_vault(address)
            reserve = apply_bps(amount, vault.safety_fund_percent_bp)
            updated = vault.bump(
                total_deposited=vault.total_deposited + amount,
                balance=vault.balance + amount,
                safety_fund=vault.safety_fund + reserve,
            )
            logger.info("Vault deposit vault=%s amount=%d reserve=%d", address, amount, reserve)
            return self._repository.save_vault(updated)

    def advance(
        self,
        vault_address: str,
        plan_id: int,
        amount: Money,
        platform_fee: Money = 0,
    ) -> VaultAccountModel:
        """Lend ``amount`` to a plan, booking any platform fee taken alongside it.

        Raises:
            InsufficientLiquidityError: If ``amount`` exceeds balance net of the safety fund.
        """
        if amount < 0 or platform_fee < 0:
            raise ValueError("advance amount and platform fee must be >= 0")
        with self._locked(vault_address) as address:
            vault = self._repository.get_vault(address)
            if amount > vault.available_liquidity:
                logger.warning(
                    "Insufficient liquidity vault=%s plan_id=%s requested=%d available=%d",
                    address,
                    plan_id,
                    amount,
                    vault.available_liquidity,
                )
                raise InsufficientLiquidityError(
                    "Vault {0} cannot fund {1}; available {2}".format(address, amount, vault.available_liquidity)
                )
            exposures = dict(vault.exposures)
            exposures[int(plan_id)] = exposures.get(int(plan_id), 0) + amount
            updated = vault.bump(
                balance=vault.balance - amount,
                outstanding_principal=vault.outstanding_principal + amount,
                service_fee_collected=vault.service_fee_collected + platform_fee,
                exposures=exposures,
            )
            logger.info(
                "Vault advanced vault=%s plan_id=%s amount=%d platform_fee=%d", address, plan_id, amount, platform_fee
            )
            return self._repository.save_vault(updated)

    def receive_repayment(
        self,
        vault_address: str,
        plan_id: int,
        principal: Money,
        interest: Money,
        plan_service_fee: Money,
        settle: bool = False,
    ) -> RepaymentSplit:
        """Book one repayment and split it into principal, yield, fees and safety set-aside.

        With ``settle=True`` the plan's remaining exposure is closed in the same
        write, so no reader sees a repaid plan with exposure still open.
        """
        with self._locked(vault_address) as address:
            vault = self._repository.get_vault(address)
            vault_service_fee = apply_bps(interest, vault.service_fee_percent_bp)
            interest_yield = interest - vault_service_fee
            set_aside = apply_bps(interest_yield, vault.safety_fund_percent_bp)

            exposures = dict(vault.exposures)
            exposure = exposures.get(int(plan_id), 0)
            principal_booked = min(principal, exposure)
            exposures[int(plan_id)] = exposure - principal_booked
            residual = exposures.pop(int(plan_id), 0) if settle else 0

            updated = vault.bump(
                balance=vault.balance + principal + interest_yield,
                safety_fund=vault.safety_fund + set_aside,
                outstanding_principal=vault.outstanding_principal - principal_booked - residual,
                interest_earned=vault.interest_earned + interest_yield,
                service_fee_collected=vault.service_fee_collected + plan_service_fee + vault_service_fee,
                rounding_residual=vault.rounding_residual + residual,
                exposures=exposures,
            )
            self._repository.save_vault(updated)
            split = RepaymentSplit(
                principal_returned=principal,
                interest_yield=interest_yield,
                vault_service_fee=vault_service_fee,
                plan_service_fee=plan_service_fee,
                safety_fund_set_aside=set_aside,
                residual_written_off=residual,
            )
            logger.info("Vault repayment vault=%s plan_id=%s split=%s", address, plan_id, split)
            return split

    def settle_plan(self, vault_address: str, plan_id: int) -> Money:
        """Close a repaid plan's exposure; any truncation residual is written off."""
        with self._locked(vault_address) as address:
            vault = self._repository.get_vault(address)
            exposures = dict(vault.exposures)
            residual = exposures.pop(int(plan_id), 0)
            updated = vault.bump(
                outstanding_principal=vault.outstanding_principal - residual,
                rounding_residual=vault.rounding_residual + residual,
                exposures=exposures,
            )
            self._repository.save_vault(updated)
            if residual:
                logger.info("Plan settled with rounding residual vault=%s plan_id=%s residual=%d", address, plan_id, residual)
            return residual

    def credit_liquidation(self, vault_address: str, plan_id: int, proceeds: Money) -> LiquidationSettlement:
        """Credit collateral sale proceeds; a shortfall is absorbed by the safety fund first."""
        if proceeds < 0:
            raise ValueError("proceeds must be >= 0")
        with self._locked(vault_address) as address:
            vault = self._repository.get_vault(address)
            exposures = dict(vault.exposures)
            exposure = exposures.pop(int(plan_id), 0)
            loss = max(0, exposure - proceeds)
            absorbed = min(loss, vault.safety_fund)
            updated = vault.bump(
                balance=vault.balance + proceeds,
                safety_fund=vault.safety_fund - absorbed,
                outstanding_principal=vault.outstanding_principal - exposure,
                liquidation_losses=vault.liquidation_losses + loss,
                exposures=exposures,
            )
            self._repository.save_vault(updated)
            settlement = LiquidationSettlement(
                proceeds=proceeds,
                exposure_closed=exposure,
                loss=loss,
                absorbed_by_safety_fund=absorbed,
            )
            logger.info("Vault liquidation credited vault=%s plan_id=%s settlement=%s", address, plan_id, settlement)
            return settlement

    def require_vault(self, vault_address: str) -> str:
        """Return the checksum address if the vault exists.

        Raises:
            VaultNotFoundError: If no account is registered.
        """
        address = normalize_address(vault_address)
        if not self._repository.has_vault(address):
            raise VaultNotFoundError("Vault not found: {0}".format(address))
        return address
