"""
Stripe adapter.

Built on the official ``stripe`` SDK (``StripeClient`` async methods over its
httpx transport):
  - Web payments are hosted Checkout Sessions; the payer is redirected to
    ``session.url``
  - Status comes from the Checkout Session (``cs_...``) or PaymentIntent
    (``pi_...``)
  - Refunds are issued against the PaymentIntent
  - Webhooks are authenticated with ``stripe.Webhook.construct_event``

The SDK's own network retries are switched off; calls go through
``with_retry`` like every other adapter. Every POST carries an idempotency
key derived from our reference or refund id, which is what makes those
retries safe for writes.
"""

import logging
import uuid
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional

import stripe

from paygate.engine.retry import (
    ProviderError,
    ProviderRejected,
    TransportError,
    error_for_status,
    with_retry,
)
from paygate.errors import ConfigurationError, InvalidSignature, MalformedWebhook
from paygate.models.enums import FailureReason, ProviderId, UniversalStatus
from paygate.providers.base import (
    PaymentProvider,
    PaymentRequest,
    PaymentResponse,
    PaymentStatus,
    RawWebhook,
    RefundCapable,
    TransportPolicy,
    WebhookEvent,
)
from paygate.routing.status_mapper import map_status

logger = logging.getLogger("paygate.providers.stripe")

SIGNATURE_TOLERANCE_SECONDS = 300


def to_minor_units(amount: float) -> int:
    """Convert a major-unit amount to cents, avoiding floating point issues."""
    return int(round(amount * 100))


def from_minor_units(amount: Optional[int]) -> Optional[float]:
    return None if amount is None else amount / 100


def _plain(obj: Any) -> dict[str, Any]:
    """SDK resources as plain mappings."""
    return obj.to_dict() if isinstance(obj, stripe.StripeObject) else dict(obj)


def _provider_error(e: stripe.StripeError) -> ProviderError:
    message = e.user_message or str(e) or type(e).__name__
    if isinstance(e, stripe.APIConnectionError):
        return TransportError(f"Stripe unreachable: {message}")
    return error_for_status(e.http_status or 500, message)


def _session_native_status(session: Mapping[str, Any]) -> Optional[str]:
    if session.get("status") == "expired":
        return "expired"
    return session.get("payment_status")


def _object_id(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as the full object."""
    if isinstance(value, Mapping):
        return value.get("id")
    return value or None


class StripeProvider(PaymentProvider, RefundCapable):
    """Stripe adapter using hosted Checkout for web payments."""

    supported_currencies = frozenset({"USD", "EUR", "GBP", "ZAR"})
    payment_methods = ("card", "bank_transfer", "wallet")

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        *,
        success_url: str = "",
        cancel_url: str = "",
        api_base: Optional[str] = None,
        signature_tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
        policy: Optional[TransportPolicy] = None,
        http_client: Optional[stripe.HTTPClient] = None,
    ):
        if not secret_key:
            raise ConfigurationError("Stripe secret key not configured")

        self._webhook_secret = webhook_secret or None
        self._success_url = success_url
        self._cancel_url = cancel_url
        self._signature_tolerance = signature_tolerance
        self._policy = policy or TransportPolicy()
        self._owns_http_client = http_client is None
        self._http_client = http_client or stripe.HTTPXClient(timeout=self._policy.timeout)
        self._stripe = stripe.StripeClient(
            secret_key,
            http_client=self._http_client,
            max_network_retries=0,
            base_addresses={"api": api_base} if api_base else {},
        )

        if not self._webhook_secret:
            logger.warning("Stripe webhook secret not configured; all Stripe webhooks will be rejected")

    @property
    def name(self) -> ProviderId:
        return ProviderId.STRIPE

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.close_async()

    # ─── Transport ─────────────────────────────────────────────────────

    async def _send(self, operation: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            return _plain(await operation(*args, **kwargs))
        except stripe.StripeError as e:
            raise _provider_error(e) from e

    async def _call(self, operation: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> dict[str, Any]:
        return await with_retry(
            self._send,
            operation,
            *args,
            max_retries=self._policy.max_retries,
            base_delay=self._policy.base_delay,
            **kwargs,
        )

    # ─── Initiation ────────────────────────────────────────────────────

    async def create_web_payment(self, request: PaymentRequest) -> PaymentResponse:
        failure = self._precheck(request)
        if failure:
            return failure

        currency = request.currency.lower()
        line_items = []
        for item in request.items:
            product: dict[str, Any] = {"name": item.name}
            if item.description:
                product["description"] = item.description
            line_items.append({
                "price_data": {
                    "currency": currency,
                    "product_data": product,
                    "unit_amount": to_minor_units(item.unit_amount),
                },
                "quantity": item.quantity,
            })

        params = {
            "mode": "payment",
            "customer_email": request.payer_email,
            "client_reference_id": request.reference,
            "success_url": self._success_url,
            "cancel_url": self._cancel_url,
            "line_items": line_items,
            "metadata": {
                "reference": request.reference,
                "organization_id": request.organization_id or "",
                "payer_id": request.payer_id or "",
            },
            "payment_intent_data": {
                "description": request.description
                or f"Payment for {', '.join(item.name for item in request.items)}",
                "metadata": {"reference": request.reference},
            },
        }

        try:
            session = await self._call(
                self._stripe.v1.checkout.sessions.create_async,
                params=params,
                options={"idempotency_key": f"checkout-{request.reference}"},
            )
        except ProviderRejected as e:
            logger.warning("Stripe rejected %s: %s", request.reference, e)
            return self._failure(request, str(e), FailureReason.PROVIDER_REJECTED)
        except ProviderError as e:
            return self._failure(request, str(e), FailureReason.TRANSPORT_ERROR)

        session_id = session.get("id")
        logger.info("Stripe checkout session %s created for %s", session_id, request.reference)
        return PaymentResponse(
            success=True,
            provider=self.name,
            reference=request.reference,
            amount=request.total_amount,
            currency=request.currency,
            transaction_id=_object_id(session.get("payment_intent")) or session_id,
            redirect_url=session.get("url"),
            poll_token=session_id,
        )

    # ─── Status ────────────────────────────────────────────────────────

    async def check_payment_status(self, handle: str) -> PaymentStatus:
        if handle.startswith("cs_"):
            session = await self._call(
                self._stripe.v1.checkout.sessions.retrieve_async,
                handle,
                params={"expand": ["payment_intent"]},
            )
            intent = session.get("payment_intent")
            reference = (session.get("metadata") or {}).get("reference") or session.get("client_reference_id")
            if isinstance(intent, Mapping):
                return self._status_from_intent(intent, reference=reference)
            return self._status_from_session(session)

        if handle.startswith("pi_"):
            intent = await self._call(self._stripe.v1.payment_intents.retrieve_async, handle)
            return self._status_from_intent(intent)

        raise ProviderRejected(f"Unrecognised Stripe handle: {handle!r}")

    def _status_from_intent(self, intent: Mapping[str, Any], reference: Optional[str] = None) -> PaymentStatus:
        native = intent.get("status")
        status = map_status(self.name, native)
        amount = from_minor_units(intent.get("amount")) or 0.0
        received = from_minor_units(intent.get("amount_received"))
        intent_id = intent.get("id", "")

        paid_amount = None
        if status == UniversalStatus.SUCCEEDED:
            paid_amount = received if received is not None else amount

        return PaymentStatus(
            reference=(intent.get("metadata") or {}).get("reference") or reference or intent_id,
            transaction_id=intent_id,
            provider=self.name,
            status=status,
            amount=amount,
            currency=(intent.get("currency") or "").upper(),
            paid_amount=paid_amount,
            provider_reference=intent_id,
            metadata={"native_status": native, "payment_method": _object_id(intent.get("payment_method"))},
        )

    def _status_from_session(self, session: Mapping[str, Any]) -> PaymentStatus:
        native = _session_native_status(session)
        status = map_status(self.name, native)
        amount = from_minor_units(session.get("amount_total")) or 0.0
        session_id = session.get("id", "")

        return PaymentStatus(
            reference=(session.get("metadata") or {}).get("reference")
            or session.get("client_reference_id")
            or session_id,
            transaction_id=session_id,
            provider=self.name,
            status=status,
            amount=amount,
            currency=(session.get("currency") or "").upper(),
            paid_amount=amount if status == UniversalStatus.SUCCEEDED else None,
            provider_reference=session_id,
            metadata={"native_status": native, "session_status": session.get("status")},
        )


    # ─── Webhook ───────────────────────────────────────────────────────

    async def handle_webhook(self, raw: RawWebhook) -> WebhookEvent:
        if not self._webhook_secret:
            raise InvalidSignature("Stripe webhook secret not configured; cannot verify delivery")

        header = raw.header("stripe-signature")
        if not header:
            raise InvalidSignature("Missing Stripe-Signature header")

        try:
            verified = stripe.Webhook.construct_event(
                raw.body,
                header,
                self._webhook_secret,
                tolerance=self._signature_tolerance,
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Stripe signature rejected: {e.user_message or e}") from None
        except ValueError:
            raise MalformedWebhook("Stripe webhook body is not valid JSON") from None

        event = _plain(verified)
        data = event.get("data")
        obj = data.get("object") if isinstance(data, Mapping) else None
        if not isinstance(obj, Mapping):
            raise MalformedWebhook("Stripe webhook has no data.object")

        event_type = event.get("type") or ""
        kind = obj.get("object")

        if kind == "checkout.session":
            if event_type.endswith("async_payment_failed"):
                native = "failed"
            else:
                native = _session_native_status(obj)
            transaction_id = _object_id(obj.get("payment_intent")) or obj.get("id")
            amount = obj.get("amount_total")
        elif kind == "charge":
            if obj.get("refunded"):
                native = "refunded"
            elif obj.get("amount_refunded"):
                native = "partially_refunded"
            else:
                native = obj.get("status")
            transaction_id = _object_id(obj.get("payment_intent")) or obj.get("id")
            amount = obj.get("amount")
        else:
            native = obj.get("status")
            transaction_id = obj.get("id")
            amount = obj.get("amount")

        reference = (
            (obj.get("metadata") or {}).get("reference")
            or obj.get("client_reference_id")
            or transaction_id
        )
        if not reference or not native:
            raise MalformedWebhook(f"Stripe {event_type or 'event'} missing reference or status")

        currency = obj.get("currency")
        return WebhookEvent(
            provider=self.name,
            event_type=event_type,
            reference=reference,
            status=map_status(self.name, native),
            amount=from_minor_units(amount),
            currency=currency.upper() if currency else None,
            transaction_id=transaction_id,
            raw=event,
        )

    # ─── Refunds ───────────────────────────────────────────────────────

    async def refund_payment(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        refund_id: Optional[str] = None,
    ) -> bool:
        if amount is not None and amount <= 0:
            raise ValueError(f"Refund amount must be positive: {amount}")

        params: dict[str, Any] = {}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        try:
            intent_id = transaction_id
            if transaction_id.startswith("cs_"):
                session = await self._call(self._stripe.v1.checkout.sessions.retrieve_async, transaction_id)
                intent_id = _object_id(session.get("payment_intent"))
                if not intent_id:
                    logger.warning("Checkout session %s has no PaymentIntent to refund", transaction_id)
                    return False

            params["payment_intent"] = intent_id
            refund = await self._call(
                self._stripe.v1.refunds.create_async,
                params=params,
                options={"idempotency_key": f"refund-{intent_id}-{refund_id or uuid.uuid4().hex}"},
            )
        except ProviderError as e:
            logger.error("Stripe refund failed for %s: %s", transaction_id, e)
            return False

        settled = refund.get("status") == "succeeded"
        if not settled:
            logger.info("Stripe refund %s for %s is %s", refund.get("id"), transaction_id, refund.get("status"))
        return settled
