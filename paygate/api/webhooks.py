"""
Provider webhook endpoints.

POST /webhooks/paynow  Paynow result URL (form-encoded, hash-signed).
POST /webhooks/stripe  Stripe events (JSON, Stripe-Signature header).

Deliveries that were processed, or deliberately rejected (bad signature,
malformed body, unknown payment, terminal record), are acknowledged with 200
so the provider stops retrying. The outcome is in the webhook log. Database
failures propagate as 500 and the provider will redeliver.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from paygate.api.deps import get_orchestrator, get_reconciler
from paygate.engine.orchestrator import PaymentOrchestrator
from paygate.engine.reconciler import ReconcileResult, WebhookReconciler
from paygate.errors import NoProviderAvailable
from paygate.models.enums import ProviderId
from paygate.providers.base import RawWebhook

logger = logging.getLogger("paygate.api.webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _process(
    provider: ProviderId,
    request: Request,
    orchestrator: PaymentOrchestrator,
    reconciler: WebhookReconciler,
) -> ReconcileResult:
    raw = RawWebhook(body=await request.body(), headers=dict(request.headers))
    try:
        result = await reconciler.process_webhook(orchestrator, provider, raw)
    except NoProviderAvailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    logger.info(
        "%s webhook for %s: %s",
        provider.value,
        result.reference or "-",
        result.outcome.value,
    )
    return result


@router.post("/paynow", response_class=PlainTextResponse)
async def paynow_webhook(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    await _process(ProviderId.PAYNOW, request, orchestrator, reconciler)
    return PlainTextResponse("OK")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    result = await _process(ProviderId.STRIPE, request, orchestrator, reconciler)
    return {"received": True, "outcome": result.outcome.value}
