"""Signature authorization protocol binding off-chain offers to plans.

Digests are keccak-256 over tightly packed fields (``abi.encodePacked``),
signed as EIP-191 personal messages over the 32 raw digest bytes, exactly
what ``signer.signMessage(arrayify(hash))`` produces in the pricing service.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from paymentplan.models.base import normalize_address, utc_now
from paymentplan.models.exceptions import ExpiredAuthorizationError, UnauthorizedSignerError
from paymentplan.models.items import ItemModel
from paymentplan.models.plans import PlanTermsModel
from paymentplan.models.signatures import AuthorizationSignatureModel


logger = logging.getLogger(__name__)

ITEM_TYPES = ["address", "address", "uint256", "uint256", "uint8"]
TERMS_TYPES = ["uint256", "uint32", "uint32", "uint32", "uint32", "uint8", "uint8", "uint8"]
MESSAGE_TYPES = ["bytes32", "bytes32", "uint256", "uint256", "uint256"]
COLLECTION_TYPES = ["address", "uint256", "uint256"]


def item_digest(item: ItemModel) -> bytes:
    """Hash the collateral descriptor."""
    return bytes(
        Web3.solidity_keccak(
            ITEM_TYPES,
            [
                item.vault_address,
                item.asset_contract_address,
                item.asset_id,
                item.amount,
                int(item.asset_kind),
            ],
        )
    )


def terms_digest(terms: PlanTermsModel) -> bytes:
    """Hash the priced plan terms."""
    return bytes(
        Web3.solidity_keccak(
            TERMS_TYPES,
            [
                terms.principal_amount,
                terms.down_payment_percent_bp,
                terms.interest_rate_bp,
                terms.service_fee_rate_bp,
                terms.term_minutes,
                terms.total_installments,
                terms.paid_installments,
                int(terms.auto_repay_status),
            ],
        )
    )


def message_digest(
    item: ItemModel,
    terms: PlanTermsModel,
    plan_id: int,
    expiry_timestamp: int,
    chain_id: int,
) -> bytes:
    """Hash item, terms, plan id, expiry and chain domain into the signed message."""
    return bytes(
        Web3.solidity_keccak(
            MESSAGE_TYPES,
            [item_digest(item), terms_digest(terms), int(plan_id), int(expiry_timestamp), int(chain_id)],
        )
    )


def collection_digest(collection_address: str, version: int, chain_id: int) -> bytes:
    """Hash a collection-level authorization."""
    return bytes(
        Web3.solidity_keccak(
            COLLECTION_TYPES,
            [normalize_address(collection_address), int(chain_id), int(version)],
        )
    )


def sign_digest(digest: bytes, private_key: str) -> str:
    """Sign a 32-byte digest as a personal message and return 0x-prefixed hex."""
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
    return Web3.to_hex(signed.signature)


def recover_signer(digest: bytes, signature: bytes) -> str:
    """Recover the checksum address that signed ``digest``.

    Raises:
        UnauthorizedSignerError: If the signature bytes cannot be recovered.
    """
    try:
        return Account.recover_message(encode_defunct(primitive=digest), signature=signature)
    except Exception as exc:
        logger.warning("Signature recovery failed: %s", exc)
        raise UnauthorizedSignerError("Malformed signature") from exc


def sign_plan(
    private_key: str,
    item: ItemModel,
    terms: PlanTermsModel,
    plan_id: int,
    expiry_timestamp: int,
    chain_id: int,
) -> AuthorizationSignatureModel:
    """Produce the authorization an off-chain pricer hands to a borrower."""
    digest = message_digest(item, terms, plan_id, expiry_timestamp, chain_id)
    return AuthorizationSignatureModel(
        expiry_timestamp=int(expiry_timestamp),
        signature=sign_digest(digest, private_key),
    )


def sign_collection(private_key: str, collection_address: str, version: int, chain_id: int) -> str:
    """Produce a collection-level authorization signature."""
    return sign_digest(collection_digest(collection_address, version, chain_id), private_key)


class SignatureAuthorizationService:
    """Verify plan and collection authorizations against the registered signer."""

    def __init__(
        self,
        signer_registry,
        chain_id: int,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Bind verification to one chain domain.

        Args:
            signer_registry: Supplies the currently registered authority address.
            chain_id: Domain separator mixed into every digest.
            clock: Source of the current time for expiry checks.
        """
        self._signer_registry = signer_registry
        self._chain_id = int(chain_id)
        self._clock = clock

    @property
    def chain_id(self) -> int:
        """Chain domain this service verifies for."""
        return self._chain_id

    def plan_digest(self, item: ItemModel, terms: PlanTermsModel, plan_id: int, expiry_timestamp: int) -> bytes:
        """Message digest for this service's chain domain."""
        return message_digest(item, terms, plan_id, expiry_timestamp, self._chain_id)

    def verify_plan_authorization(
        self,
        item: ItemModel,
        terms: PlanTermsModel,
        plan_id: int,
        authorization: AuthorizationSignatureModel,
        now: Optional[datetime] = None,
    ) -> str:
        """Check expiry, then signer identity, and return the signer address.

        Raises:
            ExpiredAuthorizationError: If the current time is past the expiry.
            UnauthorizedSignerError: If the signer is not the registered authority.
        """
        current_time = now or self._clock()
        if int(current_time.timestamp()) > authorization.expiry_timestamp:
            logger.warning(
                "Expired authorization plan_id=%s expiry=%s now=%s",
                plan_id,
                authorization.expiry_timestamp,
                int(current_time.timestamp()),
            )
            raise ExpiredAuthorizationError(
                "Authorization for plan {0} expired at {1}".format(plan_id, authorization.expiry_timestamp)
            )

        digest = self.plan_digest(item, terms, plan_id, authorization.expiry_timestamp)
        return self._require_authority(digest, authorization.signature, "plan {0}".format(plan_id))

    def verify_collection_authorization(self, collection_address: str, version: int, signature: str) -> str:
        """Verify a collection-level authorization and return the signer address.

        Raises:
            UnauthorizedSignerError: If the signer is not the registered authority.
        """
        digest = collection_digest(collection_address, version, self._chain_id)
        return self._require_authority(digest, signature, "collection {0}".format(collection_address))

    def _require_authority(self, digest: bytes, signature: str, subject: str) -> str:
        """Recover the signer and compare it to the registered authority."""
        try:
            signature_bytes = AuthorizationSignatureModel(expiry_timestamp=0, signature=signature).signature_bytes
        except ValueError as exc:
            raise UnauthorizedSignerError("Malformed signature for {0}".format(subject)) from exc

        signer = recover_signer(digest, signature_bytes)
        authority = normalize_address(self._signer_registry.current_authority())
        if signer != authority:
            logger.warning("Unauthorized signer for %s signer=%s authority=%s", subject, signer, authority)
            raise UnauthorizedSignerError("Signer {0} is not the registered authority".format(signer))
        return signer
