"""Plan and vault routers exposing the lifecycle engine over HTTP."""

import logging
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from paymentplan.common.protocol_constants import status_code
from paymentplan.models.enums import AutoRepayStatus, PlanStatus, Role
from paymentplan.models.exceptions import (
    CustodyError,
    ExpiredAuthorizationError,
    InsufficientLiquidityError,
    ModelValidationError,
    PlanEngineError,
    PlanNotFoundError,
    PreconditionViolation,
    TransactionError,
    UnauthorizedCallerError,
    UnauthorizedSignerError,
    VaultNotFoundError,
)
from paymentplan.models.items import ItemModel
from paymentplan.models.plans import PlanModel, build_terms
from paymentplan.models.signatures import AuthorizationSignatureModel
from paymentplan.services.plan_engine import PlanLifecycleEngine


logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ModelValidationError, status.HTTP_400_BAD_REQUEST),
    (ExpiredAuthorizationError, status.HTTP_401_UNAUTHORIZED),
    (UnauthorizedSignerError, status.HTTP_403_FORBIDDEN),
    (UnauthorizedCallerError, status.HTTP_403_FORBIDDEN),
    (PlanNotFoundError, status.HTTP_404_NOT_FOUND),
    (VaultNotFoundError, status.HTTP_404_NOT_FOUND),
    (PreconditionViolation, status.HTTP_409_CONFLICT),
    (InsufficientLiquidityError, status.HTTP_409_CONFLICT),
    (TransactionError, status.HTTP_409_CONFLICT),
    (CustodyError, status.HTTP_502_BAD_GATEWAY),
)


class CreateBnplRequest(BaseModel):
    """Request payload for opening a BNPL plan."""

    plan_id: int = Field(..., ge=0)
    item: ItemModel = Field(...)
    terms: Dict[str, Any] = Field(...)
    authorization: AuthorizationSignatureModel = Field(...)
    down_payment: int = Field(..., ge=0)


class CreatePawnRequest(BaseModel):
    """Request payload for opening a Pawn plan."""

    plan_id: int = Field(..., ge=0)
    item: ItemModel = Field(...)
    terms: Dict[str, Any] = Field(...)
    authorization: AuthorizationSignatureModel = Field(...)


class PlanBatchRequest(BaseModel):
    """Plan ids processed in order by a funding authority."""

    plan_ids: List[int] = Field(..., min_length=1)


class PaymentRequest(BaseModel):
    """Request payload for one installment or an early payoff."""

    amount: int = Field(..., gt=0)
    is_early_payment: bool = Field(default=False)


class LiquidationRequest(BaseModel):
    """Request payload for liquidating defaulted collateral."""

    recipient: str = Field(..., min_length=42, max_length=42)
    proceeds: int = Field(default=0, ge=0)


class AutoRepayRequest(BaseModel):
    """Request payload for changing the auto-repay preference."""

    status: AutoRepayStatus = Field(...)


class QuoteRequest(BaseModel):
    """Prospective terms to price."""

    terms: Dict[str, Any] = Field(...)


class CollectionRequest(BaseModel):
    """Signed collection-level authorization."""

    version: int = Field(..., ge=0)
    signature: str = Field(..., min_length=4)


class VaultRegisterRequest(BaseModel):
    """Request payload for registering a vault account."""

    vault_address: str = Field(..., min_length=42, max_length=42)
    safety_fund_percent_bp: int = Field(default=2000, ge=0, le=10000)
    service_fee_percent_bp: int = Field(default=30, ge=0, le=10000)


class DepositRequest(BaseModel):
    """Request payload for a vault deposit."""

    amount: int = Field(..., gt=0)


def _raise_http(exc: Exception) -> NoReturn:
    """Translate engine and validation errors into HTTP errors."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=code, detail=str(exc))
    if isinstance(exc, PlanEngineError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _plan_payload(plan: PlanModel) -> Dict[str, Any]:
    """Serialize a plan with its numeric contract status."""
    payload = plan.to_document()
    payload["status_code"] = status_code(plan.kind, plan.status)
    return payload


def build_plan_router(engine: PlanLifecycleEngine) -> APIRouter:
    """Build the plan lifecycle router."""
    router = APIRouter(prefix="/plans", tags=["plans"])

    @router.post("/bnpl", summary="Open a BNPL plan", status_code=status.HTTP_201_CREATED)
    def create_bnpl(
        payload: CreateBnplRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        """Take the item into custody and record the plan as CREATED."""
        try:
            receipt = engine.create_bnpl(
                item=payload.item,
                terms=build_terms(payload.terms),
                plan_id=payload.plan_id,
                authorization=payload.authorization,
                owner=caller,
                down_payment=payload.down_payment,
            )
            return {
                "plan": _plan_payload(receipt.plan),
                "expected": receipt.expected._asdict(),
                "change": receipt.change,
            }
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/pawn", summary="Open a Pawn plan", status_code=status.HTTP_201_CREATED)
    def create_pawn(
        payload: CreatePawnRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        """Take the item into custody and advance the principal."""
        try:
            receipt = engine.create_pawn(
                item=payload.item,
                terms=build_terms(payload.terms),
                plan_id=payload.plan_id,
                authorization=payload.authorization,
                owner=caller,
            )
            return {"plan": _plan_payload(receipt.plan), "expected": receipt.expected._asdict()}
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/quote", summary="Price prospective terms")
    def quote(payload: QuoteRequest) -> Dict[str, Any]:
        """Return down payment due, totals and per-installment amount."""
        try:
            return engine.get_expected_plan_sync(build_terms(payload.terms))._asdict()
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/fund", summary="Fund CREATED BNPL plans")
    def fund(
        payload: PlanBatchRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        try:
            plans = engine.fund(payload.plan_ids, caller)
            return {"plans": [_plan_payload(plan) for plan in plans]}
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/activate", summary="Activate FUNDED BNPL plans")
    def activate(
        payload: PlanBatchRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        try:
            plans = engine.activate(payload.plan_ids, caller)
            return {"plans": [_plan_payload(plan) for plan in plans]}
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/reject", summary="Reject CREATED BNPL plans")
    def reject(
        payload: PlanBatchRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        try:
            plans = engine.reject(payload.plan_ids, caller)
            return {"plans": [_plan_payload(plan) for plan in plans]}
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.get("", summary="List plans")
    def list_plans(plan_status: Optional[PlanStatus] = Query(default=None, alias="status")) -> Dict[str, Any]:
        plans = engine.list_plans(status=plan_status)
        return {"plans": [_plan_payload(plan) for plan in plans], "count": len(plans)}

    @router.get("/{plan_id}", summary="Get plan")
    def get_plan(plan_id: int) -> Dict[str, Any]:
        try:
            return _plan_payload(engine.get_plan(plan_id))
        except PlanEngineError as exc:
            _raise_http(exc)

    @router.get("/{plan_id}/status", summary="Get plan status")
    def get_plan_status(plan_id: int) -> Dict[str, Any]:
        try:
            plan = engine.get_plan(plan_id)
            return {
                "plan_id": plan.plan_id,
                "status": plan.status.value,
                "status_code": status_code(plan.kind, plan.status),
            }
        except PlanEngineError as exc:
            _raise_http(exc)

    @router.get("/{plan_id}/payment-info", summary="Next payment due")
    def payment_info(plan_id: int, early: bool = Query(default=False)) -> Dict[str, Any]:
        try:
            info = engine.get_payment_info_by_plan_id(plan_id, is_early_payment=early)
            payload = info._asdict()
            payload["due_at"] = info.due_at.isoformat() if info.due_at else None
            return payload
        except PlanEngineError as exc:
            _raise_http(exc)

    @router.get("/{plan_id}/schedule", summary="Projected installments")
    def schedule(plan_id: int) -> Dict[str, Any]:
        try:
            installments = engine.get_schedule(plan_id)
        except PlanEngineError as exc:
            _raise_http(exc)
        return {
            "plan_id": plan_id,
            "installments": [
                dict(installment._asdict(), due_at=installment.due_at.isoformat()) for installment in installments
            ],
        }

    @router.post("/{plan_id}/payments", summary="Pay an installment")
    def pay(
        plan_id: int,
        payload: PaymentRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        """Apply a payment; any excess over the amount due is returned as change."""
        logger.info("Payment requested plan_id=%s payer=%s amount=%d", plan_id, caller, payload.amount)
        try:
            receipt = engine.pay(plan_id, payload.amount, is_early_payment=payload.is_early_payment)
            return {
                "plan": _plan_payload(receipt.plan),
                "amount_due": receipt.payment.total_due,
                "change": receipt.change,
                "split": receipt.split._asdict(),
            }
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/{plan_id}/default", summary="Mark an overdue plan defaulted")
    def mark_defaulted(plan_id: int) -> Dict[str, Any]:
        try:
            return _plan_payload(engine.mark_defaulted(plan_id))
        except PlanEngineError as exc:
            _raise_http(exc)

    @router.post("/{plan_id}/liquidate", summary="Liquidate a defaulted plan")
    def liquidate(
        plan_id: int,
        payload: LiquidationRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        try:
            receipt = engine.liquidate(plan_id, caller, payload.recipient, proceeds=payload.proceeds)
            return {"plan": _plan_payload(receipt.plan), "settlement": receipt.settlement._asdict()}
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.put("/{plan_id}/auto-repay", summary="Update auto-repay preference")
    def update_auto_repay(
        plan_id: int,
        payload: AutoRepayRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        try:
            return _plan_payload(engine.update_auto_repay_status(plan_id, caller, payload.status))
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/collections/{collection_address}", summary="Enable a collection")
    def enable_collection(collection_address: str, payload: CollectionRequest) -> Dict[str, Any]:
        try:
            version = engine.enable_collection(collection_address, payload.version, payload.signature)
            return {"collection": collection_address, "version": version, "enabled": True}
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    return router


def build_vault_router(engine: PlanLifecycleEngine) -> APIRouter:
    """Build the vault account router."""
    router = APIRouter(prefix="/vaults", tags=["vaults"])
    ledger = engine.ledger

    @router.post("", summary="Register a vault", status_code=status.HTTP_201_CREATED)
    def register_vault(
        payload: VaultRegisterRequest,
        caller: str = Header(..., alias="X-Caller-Address"),
    ) -> Dict[str, Any]:
        """Open a vault account; restricted to admins."""
        try:
            engine.context.access_control.require_role(caller, Role.ADMIN)
            if ledger.has_vault(payload.vault_address):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Vault already registered.")
            vault = ledger.register_vault(
                payload.vault_address,
                payload.safety_fund_percent_bp,
                payload.service_fee_percent_bp,
            )
            return vault.to_document()
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.get("/{vault_address}", summary="Get vault account")
    def get_vault(vault_address: str) -> Dict[str, Any]:
        try:
            vault = ledger.get_vault(vault_address)
            payload = vault.to_document()
            payload["available_liquidity"] = vault.available_liquidity
            return payload
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    @router.post("/{vault_address}/deposits", summary="Deposit liquidity")
    def deposit(vault_address: str, payload: DepositRequest) -> Dict[str, Any]:
        try:
            vault = ledger.deposit(vault_address, payload.amount)
            return {
                "vault_address": vault.vault_address,
                "balance": vault.balance,
                "safety_fund": vault.safety_fund,
                "available_liquidity": vault.available_liquidity,
            }
        except (PlanEngineError, ValueError) as exc:
            _raise_http(exc)

    return router
