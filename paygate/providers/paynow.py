"""
Paynow (Zimbabwe) adapter.

Paynow speaks form-encoded HTTP in both directions:
  - Web payments POST to ``/initiatetransaction`` and get a browser URL
  - Mobile money (EcoCash, OneMoney) POSTs to ``/remotetransaction`` and gets
    payer instructions
  - Status is read by POSTing to the ``pollurl`` returned at initiation
  - Status changes are pushed to our ``resulturl`` (the webhook)

Every message in either direction carries a ``hash``: uppercase hex SHA-512
of all other field values concatenated in order, followed by the
integration key. Incoming messages whose hash does not verify are rejected.

Paynow has no refund API, so this adapter is not RefundCapable.
"""

import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Optional
from urllib.parse import parse_qsl

import httpx

from paygate.engine.retry import (
    ProviderError,
    ProviderRejected,
    TransportError,
    error_for_status,
    with_retry,
)
from paygate.errors import ConfigurationError, InvalidSignature, MalformedWebhook
from paygate.models.enums import FailureReason, MobileMethod, ProviderId, UniversalStatus
from paygate.providers.base import (
    MobilePaymentCapable,
    MobilePaymentRequest,
    PaymentItem,
    PaymentProvider,
    PaymentRequest,
    PaymentResponse,
    PaymentStatus,
    RawWebhook,
    TransportPolicy,
    WebhookEvent,
)
from paygate.routing.status_mapper import map_status

logger = logging.getLogger("paygate.providers.paynow")

PAYNOW_BASE_URL = "https://www.paynow.co.zw/interface"
INITIATE_PATH = "/initiatetransaction"
REMOTE_PATH = "/remotetransaction"


def generate_hash(fields: Mapping[str, str], integration_key: str) -> str:
    """Paynow message hash over every field except ``hash`` itself."""
    concatenated = "".join(str(value) for key, value in fields.items() if key.lower() != "hash")
    digest = hashlib.sha512((concatenated + integration_key).encode("utf-8"))
    return digest.hexdigest().upper()


def verify_hash(fields: Mapping[str, str], integration_key: str) -> bool:
    received = fields.get("hash")
    if not received:
        return False
    expected = generate_hash(fields, integration_key)
    return hmac.compare_digest(received.strip().upper(), expected)


def parse_message(body: str) -> dict[str, str]:
    """Decode a URL-encoded Paynow message, keeping field order, lower-casing keys."""
    return {key.lower(): value for key, value in parse_qsl(body or "", keep_blank_values=True)}


def _parse_amount(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except ValueError:
        return None


def _describe_items(items: list[PaymentItem]) -> str:
    return ", ".join(item.name for item in items)


class PaynowProvider(PaymentProvider, MobilePaymentCapable):
    """Paynow adapter covering hosted web payments and mobile money."""

    supported_currencies = frozenset({"USD", "ZWL"})
    payment_methods = ("web", "mobile", "ecocash", "onemoney")
    supported_regions = frozenset({"ZW"})
    supported_mobile_methods = frozenset({MobileMethod.ECOCASH, MobileMethod.ONEMONEY})

    def __init__(
        self,
        integration_id: str,
        integration_key: str,
        result_url: str,
        return_url: str,
        *,
        base_url: str = PAYNOW_BASE_URL,
        policy: Optional[TransportPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not integration_id or not integration_key:
            raise ConfigurationError("Paynow integration credentials not configured")

        self._integration_id = integration_id
        self._integration_key = integration_key
        self._result_url = result_url
        self._return_url = return_url
        self._base_url = base_url.rstrip("/")
        self._policy = policy or TransportPolicy()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._policy.timeout)

    @property
    def name(self) -> ProviderId:
        return ProviderId.PAYNOW

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ─── Transport ─────────────────────────────────────────────────────

    async def _post(self, url: str, fields: Mapping[str, str]) -> dict[str, str]:
        try:
            response = await self._client.post(url, data=dict(fields))
        except httpx.TimeoutException as e:
            raise TransportError(f"Paynow request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Paynow request failed: {e}") from e

        if response.status_code >= 400:
            raise error_for_status(response.status_code, f"Paynow HTTP {response.status_code}")
        return parse_message(response.text)

    def _message(self, request: PaymentRequest) -> dict[str, str]:
        return {
            "resulturl": self._result_url,
            "returnurl": self._return_url,
            "reference": request.reference,
            "amount": f"{request.total_amount:.2f}",
            "id": self._integration_id,
            "additionalinfo": request.description or _describe_items(request.items),
            "authemail": request.payer_email,
        }

    def _sign(self, fields: dict[str, str]) -> dict[str, str]:
        fields["hash"] = generate_hash(fields, self._integration_key)
        return fields

    # ─── Initiation ────────────────────────────────────────────────────

    async def _initiate(
        self,
        request: PaymentRequest,
        path: str,
        fields: dict[str, str],
    ) -> PaymentResponse:
        # Paynow has no idempotency key, so initiation is never retried here.
        try:
            message = await self._post(f"{self._base_url}{path}", self._sign(fields))
        except ProviderRejected as e:
            return self._failure(request, str(e), FailureReason.PROVIDER_REJECTED)
        except ProviderError as e:
            return self._failure(request, str(e), FailureReason.TRANSPORT_ERROR)

        status = message.get("status", "").lower()
        if status == "error":
            error = message.get("error") or "Payment initialization failed"
            logger.warning("Paynow rejected %s: %s", request.reference, error)
            return self._failure(request, error, FailureReason.PROVIDER_REJECTED)
        if status != "ok":
            return self._failure(
                request,
                f"Unexpected Paynow response status: {status or 'missing'}",
                FailureReason.PROVIDER_REJECTED,
            )
        if not verify_hash(message, self._integration_key):
            logger.warning("Paynow initiation response for %s failed hash verification", request.reference)
            return self._failure(
                request,
                "Paynow response failed hash verification",
                FailureReason.PROVIDER_REJECTED,
            )

        logger.info("Paynow payment initiated: %s", request.reference)
        return PaymentResponse(
            success=True,
            provider=self.name,
            reference=request.reference,
            amount=request.total_amount,
            currency=request.currency,
            transaction_id=message.get("paynowreference") or request.reference,
            redirect_url=message.get("browserurl"),
            instructions=message.get("instructions"),
            poll_token=message.get("pollurl"),
        )

    async def create_web_payment(self, request: PaymentRequest) -> PaymentResponse:
        failure = self._precheck(request)
        if failure:
            return failure

        fields = self._message(request)
        fields["status"] = "Message"
        return await self._initiate(request, INITIATE_PATH, fields)

    async def create_mobile_payment(self, request: MobilePaymentRequest) -> PaymentResponse:
        failure = self._precheck(
            request,
            mobile_method=request.mobile_method,
            supported_mobile_methods=self.supported_mobile_methods,
        )
        if failure:
            return failure

        fields = self._message(request)
        fields["phone"] = request.phone_number
        fields["method"] = request.mobile_method.value
        fields["status"] = "Message"
        return await self._initiate(request, REMOTE_PATH, fields)

    # ─── Status ────────────────────────────────────────────────────────

    async def check_payment_status(self, handle: str) -> PaymentStatus:
        if not handle or not handle.lower().startswith(("http://", "https://")):
            raise ProviderRejected(f"Paynow status checks need a poll URL, got {handle!r}")

        message = await with_retry(
            self._post,
            handle,
            {},
            max_retries=self._policy.max_retries,
            base_delay=self._policy.base_delay,
        )

        if message.get("status", "").lower() == "error":
            raise ProviderRejected(message.get("error") or "Paynow poll failed")
        if not verify_hash(message, self._integration_key):
            raise ProviderRejected("Paynow status response failed hash verification")

        native = message.get("status")
        status = map_status(self.name, native)
        amount = _parse_amount(message.get("amount")) or 0.0
        paynow_reference = message.get("paynowreference")

        return PaymentStatus(
            reference=message.get("reference", ""),
            transaction_id=paynow_reference or message.get("reference", ""),
            provider=self.name,
            status=status,
            amount=amount,
            currency=None,
            paid_amount=amount if status == UniversalStatus.SUCCEEDED else None,
            provider_reference=paynow_reference,
            metadata={"poll_url": handle, "native_status": native},
        )

    # ─── Webhook (result URL) ──────────────────────────────────────────

    async def handle_webhook(self, raw: RawWebhook) -> WebhookEvent:
        fields = parse_message(raw.text)

        if not verify_hash(fields, self._integration_key):
            raise InvalidSignature("Paynow webhook hash missing or invalid")

        reference = fields.get("reference")
        native = fields.get("status")
        if not reference or not native:
            raise MalformedWebhook("Paynow webhook missing reference or status")

        return WebhookEvent(
            provider=self.name,
            event_type="payment.status_changed",
            reference=reference,
            status=map_status(self.name, native),
            amount=_parse_amount(fields.get("amount")),
            currency=None,
            transaction_id=fields.get("paynowreference") or None,
            raw=fields,
        )
