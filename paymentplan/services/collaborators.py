"""Interfaces the plan engine needs from custody, access control and signer registry.

The in-memory implementations back the API service and the test suite; a
deployment swaps in adapters for the real conduit and role contracts.
"""

from abc import ABC, abstractmethod
import logging
from threading import RLock
from typing import Dict, Iterable, Optional, Set, Tuple

from paymentplan.common.protocol_constants import ROLE_IDS
from paymentplan.models.base import normalize_address
from paymentplan.models.enums import Role
from paymentplan.models.exceptions import CustodyError, UnauthorizedCallerError
from paymentplan.models.items import ItemModel


logger = logging.getLogger(__name__)


class CustodyService(ABC):
    """Moves collateral between owners and the vault."""

    @abstractmethod
    def transfer_in(self, item: ItemModel, from_address: str) -> None:
        """Take custody of ``item`` from ``from_address``.

        Raises:
            CustodyError: If the transfer fails.
        """

    @abstractmethod
    def transfer_out(self, item: ItemModel, to_address: str) -> None:
        """Release ``item`` to ``to_address``.

        Raises:
            CustodyError: If the transfer fails.
        """


class AccessControl(ABC):
    """Role checks for privileged transitions."""

    @abstractmethod
    def require_role(self, caller: str, role: Role) -> None:
        """Raise ``UnauthorizedCallerError`` unless ``caller`` holds ``role``."""


class SignerRegistry(ABC):
    """Source of the authority whose signatures create plans."""

    @abstractmethod
    def current_authority(self) -> str:
        """Return the checksum address of the current signing authority."""


class InMemoryCustodyService(CustodyService):
    """Tracks asset owners and items held in custody.

    Unique items (ERC721, CryptoPunks) have a single owner. ERC1155 items are
    fungible within a token id, so custody keeps unit balances per holder and
    several holders of the same id can pledge their own units.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._owners: Dict[Tuple[str, int], str] = {}
        self._held: Dict[Tuple[str, int], ItemModel] = {}
        self._unit_balances: Dict[Tuple[str, int], Dict[str, int]] = {}
        self._held_units: Dict[Tuple[str, int], int] = {}

    def register_asset(self, asset_contract_address: str, asset_id: int, owner: str) -> None:
        """Record who currently owns a unique asset outside custody."""
        key = (normalize_address(asset_contract_address), int(asset_id))
        with self._lock:
            self._owners[key] = normalize_address(owner)

    def register_units(self, asset_contract_address: str, asset_id: int, owner: str, amount: int) -> None:
        """Credit ``amount`` ERC1155 units of a token id to ``owner``."""
        if amount < 1:
            raise ValueError("amount must be >= 1")
        key = (normalize_address(asset_contract_address), int(asset_id))
        holder = normalize_address(owner)
        with self._lock:
            balances = self._unit_balances.setdefault(key, {})
            balances[holder] = balances.get(holder, 0) + int(amount)

    def owner_of(self, asset_contract_address: str, asset_id: int) -> Optional[str]:
        """Return the recorded owner, or None while the asset is in custody or unknown."""
        key = (normalize_address(asset_contract_address), int(asset_id))
        with self._lock:
            if key in self._held:
                return None
            return self._owners.get(key)

    def units_of(self, asset_contract_address: str, asset_id: int, owner: str) -> int:
        """ERC1155 units of a token id held by ``owner`` outside custody."""
        key = (normalize_address(asset_contract_address), int(asset_id))
        with self._lock:
            return self._unit_balances.get(key, {}).get(normalize_address(owner), 0)

    def is_held(self, item: ItemModel) -> bool:
        """Return whether the item is currently in custody."""
        with self._lock:
            if item.is_fungible:
                return self._held_units.get(item.collateral_key, 0) > 0
            return item.collateral_key in self._held

    def transfer_in(self, item: ItemModel, from_address: str) -> None:
        sender = normalize_address(from_address)
        key = item.collateral_key
        with self._lock:
            if item.is_fungible:
                self._receive_units(item, sender)
                return
            if key in self._held:
                raise CustodyError("Item {0}#{1} is already in custody".format(*key))
            owner = self._owners.get(key)
            if owner is not None and owner != sender:
                raise CustodyError("Item {0}#{1} is not owned by {2}".format(key[0], key[1], sender))
            self._held[key] = item
            self._owners.pop(key, None)
            logger.info("Custody received item=%s#%s from=%s", key[0], key[1], sender)

    def transfer_out(self, item: ItemModel, to_address: str) -> None:
        recipient = normalize_address(to_address)
        key = item.collateral_key
        with self._lock:
            if item.is_fungible:
                self._release_units(item, recipient)
                return
            if key not in self._held:
                raise CustodyError("Item {0}#{1} is not in custody".format(*key))
            del self._held[key]
            self._owners[key] = recipient
            logger.info("Custody released item=%s#%s to=%s", key[0], key[1], recipient)

    def _receive_units(self, item: ItemModel, sender: str) -> None:
        key = item.collateral_key
        balances = self._unit_balances.get(key)
        # token ids nobody registered are accepted as-is, like unknown unique items
        if balances is not None:
            available = balances.get(sender, 0)
            if available < item.amount:
                raise CustodyError(
                    "{0} holds {1} units of {2}#{3}, needs {4}".format(sender, available, key[0], key[1], item.amount)
                )
            balances[sender] = available - item.amount
        self._held_units[key] = self._held_units.get(key, 0) + item.amount
        logger.info("Custody received item=%s#%s units=%d from=%s", key[0], key[1], item.amount, sender)

    def _release_units(self, item: ItemModel, recipient: str) -> None:
        key = item.collateral_key
        held = self._held_units.get(key, 0)
        if held < item.amount:
            raise CustodyError("Only {0} units of {1}#{2} are in custody".format(held, key[0], key[1]))
        self._held_units[key] = held - item.amount
        balances = self._unit_balances.get(key)
        if balances is not None:
            balances[recipient] = balances.get(recipient, 0) + item.amount
        logger.info("Custody released item=%s#%s units=%d to=%s", key[0], key[1], item.amount, recipient)


class InMemoryAccessControl(AccessControl):
    """Role table keyed by role, holding checksum addresses."""

    def __init__(self, grants: Optional[Dict[Role, Iterable[str]]] = None) -> None:
        self._lock = RLock()
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}
        for role, addresses in (grants or {}).items():
            for address in addresses:
                self.grant_role(role, address)

    def grant_role(self, role: Role, address: str) -> None:
        """Add ``address`` to ``role``."""
        with self._lock:
            self._members[Role(role)].add(normalize_address(address))
        logger.info("Role granted role=%s role_id=%s address=%s", role, ROLE_IDS[Role(role)], address)

    def revoke_role(self, role: Role, address: str) -> None:
        """Remove ``address`` from ``role``."""
        with self._lock:
            self._members[Role(role)].discard(normalize_address(address))
        logger.info("Role revoked role=%s address=%s", role, address)

    def has_role(self, caller: str, role: Role) -> bool:
        """Return whether ``caller`` holds ``role``."""
        try:
            address = normalize_address(caller)
        except ValueError:
            return False
        with self._lock:
            return address in self._members[Role(role)]

    def require_role(self, caller: str, role: Role) -> None:
        if not self.has_role(caller, role):
            logger.warning("Caller lacks role caller=%s role=%s", caller, role)
            raise UnauthorizedCallerError("Caller {0} lacks role {1}".format(caller, Role(role).value))


class StaticSignerRegistry(SignerRegistry):
    """Single configured authority, rotatable at runtime."""

    def __init__(self, authority: str) -> None:
        self._lock = RLock()
        self._authority = normalize_address(authority)

    def current_authority(self) -> str:
        with self._lock:
            return self._authority

    def rotate(self, authority: str) -> None:
        """Replace the signing authority; outstanding signatures from the old one stop verifying."""
        new_authority = normalize_address(authority)
        with self._lock:
            previous, self._authority = self._authority, new_authority
        logger.info("Signer authority rotated from=%s to=%s", previous, new_authority)
