"""Repository interfaces and the in-memory transactional store."""

from abc import ABC, abstractmethod
import copy
import logging
from threading import RLock
from typing import Dict, List, Optional, Tuple

from .enums import PlanStatus
from .exceptions import PlanNotFoundError, TransactionError, VaultNotFoundError
from .plans import PlanModel
from .vaults import VaultAccountModel


logger = logging.getLogger(__name__)


class PlanRepository(ABC):
    """Plan data access abstraction."""

    @abstractmethod
    def create_plan(self, plan: PlanModel) -> PlanModel:
        """Persist a new plan.

        Raises:
            ValueError: If the plan id is already taken.
        """

    @abstractmethod
    def get_plan(self, plan_id: int) -> PlanModel:
        """Fetch a plan by identifier.

        Raises:
            PlanNotFoundError: If plan does not exist.
        """

    @abstractmethod
    def save_plan(self, plan: PlanModel) -> PlanModel:
        """Replace an existing plan record."""

    @abstractmethod
    def has_plan(self, plan_id: int) -> bool:
        """Return whether a plan id has been used."""

    @abstractmethod
    def list_plans(self, status: Optional[PlanStatus] = None) -> List[PlanModel]:
        """Return plans ordered by id, optionally filtered by status."""


class VaultRepository(ABC):
    """Vault account data access abstraction."""

    @abstractmethod
    def create_vault(self, vault: VaultAccountModel) -> VaultAccountModel:
        """Persist a new vault account."""

    @abstractmethod
    def get_vault(self, vault_address: str) -> VaultAccountModel:
        """Fetch a vault account.

        Raises:
            VaultNotFoundError: If vault does not exist.
        """

    @abstractmethod
    def save_vault(self, vault: VaultAccountModel) -> VaultAccountModel:
        """Replace an existing vault account."""

    @abstractmethod
    def has_vault(self, vault_address: str) -> bool:
        """Return whether a vault is registered."""


_State = Tuple[Dict[int, PlanModel], Dict[str, VaultAccountModel]]


class InMemoryLedgerStore(PlanRepository, VaultRepository):
    """Dict-backed plan and vault store with begin/commit/rollback and snapshots.

    Records are copied on the way in and out, so callers never hold a
    reference into the store. ``snapshot``/``revert`` give the fixture
    isolation tests need; ``begin``/``commit``/``rollback`` wrap one unit of
    work on top of the same snapshot stack.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._plans: Dict[int, PlanModel] = {}
        self._vaults: Dict[str, VaultAccountModel] = {}
        self._snapshots: List[_State] = []
        self._transaction_depth = 0

    def create_plan(self, plan: PlanModel) -> PlanModel:
        with self._lock:
            if plan.plan_id in self._plans:
                raise ValueError("Plan id already used: {0}".format(plan.plan_id))
            self._plans[plan.plan_id] = plan.model_copy(deep=True)
            return plan.model_copy(deep=True)

    def get_plan(self, plan_id: int) -> PlanModel:
        with self._lock:
            plan = self._plans.get(int(plan_id))
            if plan is None:
                raise PlanNotFoundError("Plan not found: {0}".format(plan_id))
            return plan.model_copy(deep=True)

    def save_plan(self, plan: PlanModel) -> PlanModel:
        with self._lock:
            if plan.plan_id not in self._plans:
                raise PlanNotFoundError("Plan not found: {0}".format(plan.plan_id))
            self._plans[plan.plan_id] = plan.model_copy(deep=True)
            return plan.model_copy(deep=True)

    def has_plan(self, plan_id: int) -> bool:
        with self._lock:
            return int(plan_id) in self._plans

    def list_plans(self, status: Optional[PlanStatus] = None) -> List[PlanModel]:
        with self._lock:
            return [
                self._plans[plan_id].model_copy(deep=True)
                for plan_id in sorted(self._plans)
                if status is None or self._plans[plan_id].status == status
            ]

    def create_vault(self, vault: VaultAccountModel) -> VaultAccountModel:
        with self._lock:
            if vault.vault_address in self._vaults:
                raise ValueError("Vault already registered: {0}".format(vault.vault_address))
            self._vaults[vault.vault_address] = vault.model_copy(deep=True)
            return vault.model_copy(deep=True)

    def get_vault(self, vault_address: str) -> VaultAccountModel:
        with self._lock:
            vault = self._vaults.get(vault_address)
            if vault is None:
                raise VaultNotFoundError("Vault not found: {0}".format(vault_address))
            return vault.model_copy(deep=True)

    def save_vault(self, vault: VaultAccountModel) -> VaultAccountModel:
        with self._lock:
            if vault.vault_address not in self._vaults:
                raise VaultNotFoundError("Vault not found: {0}".format(vault.vault_address))
            self._vaults[vault.vault_address] = vault.model_copy(deep=True)
            return vault.model_copy(deep=True)

    def has_vault(self, vault_address: str) -> bool:
        with self._lock:
            return vault_address in self._vaults

    def snapshot(self) -> int:
        """Capture the current state and return its snapshot id."""
        with self._lock:
            self._snapshots.append((copy.deepcopy(self._plans), copy.deepcopy(self._vaults)))
            snapshot_id = len(self._snapshots) - 1
            logger.debug("Store snapshot taken snapshot_id=%d", snapshot_id)
            return snapshot_id

    def revert(self, snapshot_id: int) -> None:
        """Restore the state captured by ``snapshot_id`` and drop later snapshots.

        Raises:
            TransactionError: If the snapshot id is unknown.
        """
        with self._lock:
            if snapshot_id < 0 or snapshot_id >= len(self._snapshots):
                raise TransactionError("Unknown snapshot id: {0}".format(snapshot_id))
            plans, vaults = self._snapshots[snapshot_id]
            self._plans = copy.deepcopy(plans)
            self._vaults = copy.deepcopy(vaults)
            del self._snapshots[snapshot_id:]
            self._transaction_depth = min(self._transaction_depth, len(self._snapshots))
            logger.debug("Store reverted to snapshot_id=%d", snapshot_id)

    def begin(self) -> None:
        """Open a (possibly nested) unit of work."""
        with self._lock:
            self.snapshot()
            self._transaction_depth += 1

    def commit(self) -> None:
        """Keep changes made since the matching ``begin``."""
        with self._lock:
            if self._transaction_depth == 0:
                raise TransactionError("commit called without an open transaction")
            self._snapshots.pop()
            self._transaction_depth -= 1

    def rollback(self) -> None:
        """Discard changes made since the matching ``begin``."""
        with self._lock:
            if self._transaction_depth == 0:
                raise TransactionError("rollback called without an open transaction")
            self._transaction_depth -= 1
            self.revert(len(self._snapshots) - 1)

    @property
    def in_transaction(self) -> bool:
        """Return whether a unit of work is open."""
        return self._transaction_depth > 0
