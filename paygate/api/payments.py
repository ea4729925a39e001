"""
Payment endpoints.

POST /payments/web                Start a browser-redirect payment.
POST /payments/mobile             Start a mobile money payment.
POST /payments/status             Check a payment with its provider and reconcile.
POST /payments/refund             Refund a settled payment (full or partial).
GET  /payments/methods            Methods, currencies and fees on offer.
GET  /payments/{reference}        A single payment record.
GET  /payments/{reference}/trace  Record plus audit trail and webhook deliveries.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from paygate.api.deps import CallerIdentity, get_caller, get_orchestrator, get_reconciler, get_store
from paygate.config import settings
from paygate.engine.orchestrator import PaymentOrchestrator
from paygate.engine.reconciler import WebhookReconciler
from paygate.errors import NoProviderAvailable, RefundUnsupported, StatusUnavailable
from paygate.models.enums import MobileMethod, ProviderId, UniversalStatus
from paygate.models.payment import Payment
from paygate.providers.base import MobilePaymentRequest, PaymentItem, PaymentRequest, PaymentResponse
from paygate.store import SqlPaymentStore

logger = logging.getLogger("paygate.api.payments")

router = APIRouter(prefix="/payments", tags=["payments"])


# ─── Request / response models ─────────────────────────────────────────


class ItemIn(BaseModel):
    name: str
    unit_amount: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    description: Optional[str] = None


class WebPaymentIn(BaseModel):
    items: list[ItemIn] = Field(min_length=1)
    currency: Optional[str] = None
    description: Optional[str] = None
    payer_email: Optional[str] = None
    provider: Optional[ProviderId] = None
    metadata: dict = Field(default_factory=dict)


class MobilePaymentIn(WebPaymentIn):
    phone_number: str
    mobile_method: MobileMethod


class PaymentResponseOut(BaseModel):
    success: bool
    provider: Optional[str]
    reference: str
    amount: float
    currency: str
    transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None
    instructions: Optional[str] = None
    poll_token: Optional[str] = None
    error: Optional[str] = None
    failure_reason: Optional[str] = None


class StatusIn(BaseModel):
    reference: str
    provider: Optional[ProviderId] = None


class StatusOut(BaseModel):
    reference: str
    status: str
    paid: bool
    provider: Optional[str]
    provider_status: str
    outcome: str


class RefundIn(BaseModel):
    reference: str
    amount: Optional[float] = Field(default=None, gt=0)
    reason: Optional[str] = None
    # Reuse the same id to retry a refund safely; omit it for a new refund
    refund_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class RefundOut(BaseModel):
    success: bool
    reference: str
    status: str
    refunded_amount: float
    message: Optional[str] = None


class PaymentDetail(BaseModel):
    id: str
    reference: str
    transaction_id: Optional[str]
    provider: Optional[str]
    user_id: Optional[str]
    organization_id: Optional[str]
    payer_email: Optional[str]
    amount: float
    currency: str
    status: str
    paid_amount: Optional[float]
    refunded_amount: float
    redirect_url: Optional[str]
    instructions: Optional[str]
    failure_reason: Optional[str]
    notes: Optional[str]
    activated_at: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    model_config = {"from_attributes": True}


class AuditEntry(BaseModel):
    id: int
    action: str
    details: Optional[dict] = None
    timestamp: Optional[str]


class WebhookEntry(BaseModel):
    id: int
    provider: str
    event_type: Optional[str]
    status: Optional[str]
    outcome: str
    error: Optional[str]
    created_at: Optional[str]


class PaymentTrace(BaseModel):
    payment: PaymentDetail
    audit_trail: list[AuditEntry]
    webhooks: list[WebhookEntry]


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _payment_to_detail(p: Payment) -> PaymentDetail:
    return PaymentDetail(
        id=p.id,
        reference=p.reference,
        transaction_id=p.transaction_id,
        provider=p.provider,
        user_id=p.user_id,
        organization_id=p.organization_id,
        payer_email=p.payer_email,
        amount=p.amount,
        currency=p.currency,
        status=p.status,
        paid_amount=p.paid_amount,
        refunded_amount=p.refunded_amount or 0.0,
        redirect_url=p.redirect_url,
        instructions=p.instructions,
        failure_reason=p.failure_reason,
        notes=p.notes,
        activated_at=_iso(p.activated_at),
        created_at=_iso(p.created_at),
        updated_at=_iso(p.updated_at),
    )


def _response_out(response: PaymentResponse) -> PaymentResponseOut:
    return PaymentResponseOut(
        success=response.success,
        provider=response.provider.value if response.provider else None,
        reference=response.reference,
        amount=response.amount,
        currency=response.currency,
        transaction_id=response.transaction_id,
        redirect_url=response.redirect_url,
        instructions=response.instructions,
        poll_token=response.poll_token,
        error=response.error,
        failure_reason=response.failure_reason.value if response.failure_reason else None,
    )


async def _owned_payment(store: SqlPaymentStore, key: str, caller: CallerIdentity) -> Payment:
    payment = await store.get_payment_record(key)
    if not payment:
        raise HTTPException(status_code=404, detail=f"Payment not found: {key}")
    if payment.organization_id and payment.organization_id != caller.tenant:
        raise HTTPException(status_code=403, detail="Payment belongs to another organization")
    return payment


async def _refund_recorded(store: SqlPaymentStore, reference: str, refund_id: str) -> bool:
    for log in await store.list_audit(reference):
        if log.action == "refund_recorded" and log.details and json.loads(log.details).get("refund_id") == refund_id:
            return True
    return False


def _build_request(body: WebPaymentIn, reference: str, caller: CallerIdentity) -> dict:
    payer_email = body.payer_email or caller.email
    if not payer_email:
        raise HTTPException(status_code=400, detail="A payer email is required")
    return {
        "reference": reference,
        "payer_email": payer_email,
        "items": [PaymentItem(**item.model_dump()) for item in body.items],
        "currency": body.currency or settings.default_currency,
        "description": body.description,
        "metadata": body.metadata,
        "payer_id": caller.id,
        "organization_id": caller.tenant,
    }


async def _persist_pending(store: SqlPaymentStore, request: PaymentRequest, **extra) -> None:
    await store.create_payment_record(
        request.reference,
        user_id=request.payer_id,
        organization_id=request.organization_id,
        payer_email=request.payer_email,
        amount=request.total_amount,
        currency=request.currency,
        items=json.dumps([item.__dict__ for item in request.items]),
        description=request.description,
        status=UniversalStatus.PENDING,
        **extra,
    )


# ─── Initiation ────────────────────────────────────────────────────────


@router.post("/web", response_model=PaymentResponseOut)
async def create_web_payment(
    body: WebPaymentIn,
    caller: CallerIdentity = Depends(get_caller),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    store: SqlPaymentStore = Depends(get_store),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    """Create a pending record, initiate with the routed provider and store the outcome."""
    reference = orchestrator.generate_payment_reference(f"ORG-{caller.tenant}")
    request = PaymentRequest(**_build_request(body, reference, caller))
    await _persist_pending(store, request)

    try:
        response = await orchestrator.create_web_payment(request, preferred=body.provider)
    except NoProviderAvailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    await reconciler.apply_initiation(reference, response)
    return _response_out(response)


@router.post("/mobile", response_model=PaymentResponseOut)
async def create_mobile_payment(
    body: MobilePaymentIn,
    caller: CallerIdentity = Depends(get_caller),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    store: SqlPaymentStore = Depends(get_store),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    reference = orchestrator.generate_payment_reference(f"MOB-{caller.tenant}")
    request = MobilePaymentRequest(
        **_build_request(body, reference, caller),
        phone_number=body.phone_number,
        mobile_method=body.mobile_method,
    )
    await _persist_pending(
        store,
        request,
        phone_number=request.phone_number,
        mobile_method=request.mobile_method,
    )

    try:
        response = await orchestrator.create_mobile_payment(request, preferred=body.provider)
    except NoProviderAvailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    await reconciler.apply_initiation(reference, response)
    return _response_out(response)


# ─── Status & refunds ──────────────────────────────────────────────────


@router.post("/status", response_model=StatusOut)
async def check_payment_status(
    body: StatusIn,
    caller: CallerIdentity = Depends(get_caller),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    store: SqlPaymentStore = Depends(get_store),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    """
    Ask the provider for the payment's current status and reconcile it.

    A provider outage is reported as 503, never as a failed payment.
    """
    payment = await _owned_payment(store, body.reference, caller)
    handle = payment.poll_token or payment.transaction_id or payment.reference
    provider = body.provider or (ProviderId(payment.provider) if payment.provider else None)

    try:
        status = await orchestrator.check_payment_status(handle, provider=provider)
    except (StatusUnavailable, NoProviderAvailable) as e:
        logger.warning("Status unavailable for %s: %s", payment.reference, e)
        raise HTTPException(status_code=503, detail="Payment status temporarily unavailable")

    result = await reconciler.apply_status(status, reference=payment.reference)
    payment = await store.get_payment_record(payment.reference)
    return StatusOut(
        reference=payment.reference,
        status=payment.status,
        paid=payment.status == UniversalStatus.SUCCEEDED.value,
        provider=payment.provider,
        provider_status=status.status.value,
        outcome=result.outcome.value,
    )


@router.post("/refund", response_model=RefundOut)
async def refund_payment(
    body: RefundIn,
    caller: CallerIdentity = Depends(get_caller),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    store: SqlPaymentStore = Depends(get_store),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    payment = await _owned_payment(store, body.reference, caller)
    if body.refund_id and await _refund_recorded(store, payment.reference, body.refund_id):
        return RefundOut(
            success=True,
            reference=payment.reference,
            status=payment.status,
            refunded_amount=payment.refunded_amount or 0.0,
            message=f"Refund {body.refund_id} was already recorded",
        )
    if payment.status != UniversalStatus.SUCCEEDED.value:
        raise HTTPException(status_code=409, detail=f"Payment is {payment.status}, only succeeded payments can be refunded")
    if not payment.transaction_id:
        raise HTTPException(status_code=409, detail="Payment has no provider transaction to refund")

    paid = payment.paid_amount if payment.paid_amount is not None else payment.amount
    remaining = paid - (payment.refunded_amount or 0.0)
    if body.amount is not None and body.amount > remaining + 0.005:
        raise HTTPException(status_code=400, detail=f"Refund exceeds refundable balance of {remaining:.2f}")

    provider = ProviderId(payment.provider) if payment.provider else None
    refund_id = body.refund_id or orchestrator.generate_payment_reference("RF")
    try:
        refunded = await orchestrator.refund_payment(
            payment.transaction_id, body.amount, provider=provider, refund_id=refund_id
        )
    except RefundUnsupported as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoProviderAvailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not refunded:
        await store.record_audit(
            "refund_not_settled",
            payment_reference=payment.reference,
            details={"amount": body.amount, "reason": body.reason, "refund_id": refund_id},
        )
        return RefundOut(
            success=False,
            reference=payment.reference,
            status=payment.status,
            refunded_amount=payment.refunded_amount or 0.0,
            message="Refund was not settled by the provider",
        )

    await reconciler.record_refund(payment.reference, body.amount, refund_id=refund_id)
    payment = await store.get_payment_record(payment.reference)
    return RefundOut(
        success=True,
        reference=payment.reference,
        status=payment.status,
        refunded_amount=payment.refunded_amount or 0.0,
    )


# ─── Queries ───────────────────────────────────────────────────────────


@router.get("/methods")
async def get_payment_methods(
    currency: Optional[str] = Query(None, description="ISO 4217 currency code"),
    region: Optional[str] = Query(None, description="ISO 3166 country code"),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    """Payment methods, currencies, provider availability and sample fees on 100 units."""
    code = (currency or settings.default_currency).upper()
    return {
        "currency": code,
        "methods": orchestrator.get_available_payment_methods(code, region),
        "currencies": orchestrator.get_supported_currencies(),
        "providers": orchestrator.get_provider_status(),
        "fees": {
            provider.value: round(orchestrator.calculate_fees(100, provider), 2)
            for provider in orchestrator.enabled_providers
        },
    }


@router.get("/{reference}", response_model=PaymentDetail)
async def get_payment(
    reference: str,
    caller: CallerIdentity = Depends(get_caller),
    store: SqlPaymentStore = Depends(get_store),
):
    return _payment_to_detail(await _owned_payment(store, reference, caller))


@router.get("/{reference}/trace", response_model=PaymentTrace)
async def get_payment_trace(
    reference: str,
    caller: CallerIdentity = Depends(get_caller),
    store: SqlPaymentStore = Depends(get_store),
):
    """
    Full history of a payment.

    Returns the record, every audit entry and every webhook delivery for
    it, oldest first.
    """
    payment = await _owned_payment(store, reference, caller)

    audit_trail = []
    for log in await store.list_audit(payment.reference):
        details = None
        if log.details:
            try:
                details = json.loads(log.details)
            except (json.JSONDecodeError, TypeError):
                details = {"raw": log.details}
        audit_trail.append(AuditEntry(
            id=log.id,
            action=log.action,
            details=details,
            timestamp=_iso(log.timestamp),
        ))

    webhooks = [
        WebhookEntry(
            id=hook.id,
            provider=hook.provider,
            event_type=hook.event_type,
            status=hook.status,
            outcome=hook.outcome,
            error=hook.error,
            created_at=_iso(hook.created_at),
        )
        for hook in await store.list_webhooks(payment.reference)
    ]

    return PaymentTrace(
        payment=_payment_to_detail(payment),
        audit_trail=audit_trail,
        webhooks=webhooks,
    )
