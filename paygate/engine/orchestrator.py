"""
Payment orchestrator: the routing and failover engine.

Holds the enabled provider adapters and decides which one handles each
call. The flow for a web payment:

  1. Provider selection (preferred → primary → fallback → any enabled)
  2. Adapter call (currency pre-check, provider API, normalized response)
  3. Failover, at most once, from the configured primary to a distinct
     configured fallback when the primary did not succeed

Failover guarantees:
  - A provider that returned ``success=True`` is never followed by another
    attempt, so one call can create at most one charge
  - Each adapter is invoked at most once per call
  - A caller who pinned a non-primary provider gets that provider's answer

Per-payment outcomes come back as ``PaymentResponse`` data. Only
deployment problems (nothing enabled, unsupported capability, every status
source down) are raised.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Optional

import httpx

from paygate.config import Settings
from paygate.engine import fees, references
from paygate.engine.retry import ProviderError
from paygate.errors import ConfigurationError, NoProviderAvailable, RefundUnsupported, StatusUnavailable
from paygate.models.enums import FailureReason, ProviderId
from paygate.providers.base import (
    MobilePaymentCapable,
    MobilePaymentRequest,
    PaymentProvider,
    PaymentRequest,
    PaymentResponse,
    PaymentStatus,
    RawWebhook,
    RefundCapable,
    WebhookEvent,
)
from paygate.providers.registry import build_providers
from paygate.routing.provider_selector import ProviderDecision, infer_provider, select_provider

logger = logging.getLogger("paygate.orchestrator")


class PaymentOrchestrator:
    """Routes payment operations across the enabled provider adapters."""

    def __init__(
        self,
        providers: Mapping[ProviderId, PaymentProvider],
        primary: ProviderId = ProviderId.PAYNOW,
        fallback: ProviderId = ProviderId.STRIPE,
    ):
        if not providers:
            raise ConfigurationError("No payment providers are enabled")
        # Keep ProviderId declaration order regardless of the mapping's order
        self._providers = {pid: providers[pid] for pid in ProviderId if pid in providers}
        self.primary = primary
        self.fallback = fallback

        if primary not in self._providers:
            logger.warning("Primary provider %s is not enabled", primary.value)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "PaymentOrchestrator":
        return cls(
            build_providers(settings, client=client),
            primary=settings.primary_payment_provider,
            fallback=settings.fallback_payment_provider,
        )

    @property
    def enabled_providers(self) -> list[ProviderId]:
        return list(self._providers)

    def get_provider(self, provider: ProviderId) -> PaymentProvider:
        try:
            return self._providers[provider]
        except KeyError:
            raise NoProviderAvailable(f"Payment provider {provider.value} is not enabled") from None

    def select_provider(self, preferred: Optional[ProviderId] = None) -> ProviderDecision:
        return select_provider(self._providers, self.primary, self.fallback, preferred)

    async def aclose(self) -> None:
        for adapter in self._providers.values():
            await adapter.aclose()

    # ─── Initiation ────────────────────────────────────────────────────

    async def _attempt(
        self,
        adapter: PaymentProvider,
        request: PaymentRequest,
        call: Callable[[PaymentRequest], Awaitable[PaymentResponse]],
    ) -> PaymentResponse:
        """Run one adapter call, turning any escaped exception into a failure response."""
        try:
            response = await call(request)
        except ProviderError as e:
            logger.warning("%s call for %s raised: %s", adapter.label, request.reference, e)
            return adapter._failure(request, str(e), FailureReason.TRANSPORT_ERROR)
        except Exception as e:
            logger.exception("Unexpected error from %s for %s", adapter.label, request.reference)
            return adapter._failure(request, f"Unexpected error: {e}", FailureReason.UNEXPECTED_ERROR)

        if response.success:
            logger.info("Payment %s initiated with %s", request.reference, adapter.label)
        else:
            logger.info(
                "Payment %s not initiated with %s: %s",
                request.reference,
                adapter.label,
                response.error,
            )
        return response

    async def create_web_payment(
        self,
        request: PaymentRequest,
        preferred: Optional[ProviderId] = None,
    ) -> PaymentResponse:
        """
        Initiate a browser-redirect payment with a single failover.

        Raises:
            NoProviderAvailable: Nothing is enabled.
        """
        decision = self.select_provider(preferred)
        adapter = self._providers[decision.provider]
        response = await self._attempt(adapter, request, adapter.create_web_payment)

        if response.success or decision.provider != self.primary:
            return response

        if self.fallback == decision.provider or self.fallback not in self._providers:
            return response

        fallback = self._providers[self.fallback]
        logger.warning(
            "Primary %s failed for %s (%s), failing over to %s",
            adapter.label,
            request.reference,
            response.error,
            fallback.label,
        )
        return await self._attempt(fallback, request, fallback.create_web_payment)

    async def create_mobile_payment(
        self,
        request: MobilePaymentRequest,
        preferred: Optional[ProviderId] = None,
    ) -> PaymentResponse:
        """Initiate a mobile money payment. No failover."""
        capable = [pid for pid, adapter in self._providers.items() if isinstance(adapter, MobilePaymentCapable)]
        if not capable:
            logger.warning("Mobile payment %s requested but no provider supports mobile money", request.reference)
            return PaymentResponse(
                success=False,
                provider=None,
                reference=request.reference,
                amount=request.total_amount,
                currency=request.currency,
                error="No enabled payment provider supports mobile money payments",
                failure_reason=FailureReason.NO_CAPABLE_PROVIDER,
            )

        decision = select_provider(capable, self.primary, self.fallback, preferred)
        adapter = self._providers[decision.provider]
        return await self._attempt(adapter, request, adapter.create_mobile_payment)

    # ─── Status ────────────────────────────────────────────────────────

    async def check_payment_status(
        self,
        handle: str,
        provider: Optional[ProviderId] = None,
    ) -> PaymentStatus:
        """
        Ask providers for a payment's status.

        With an explicit provider only that one is asked. Otherwise the
        provider inferred from the handle goes first, then the primary, then
        every other enabled provider. The first answer wins.

        Raises:
            StatusUnavailable: No candidate could answer.
            NoProviderAvailable: An explicitly named provider is not enabled.
        """
        if provider is not None:
            candidates = [provider]
            self.get_provider(provider)
        else:
            candidates = []
            for pid in (infer_provider(handle), self.primary, *self._providers):
                if pid is not None and pid in self._providers and pid not in candidates:
                    candidates.append(pid)

        for pid in candidates:
            adapter = self._providers[pid]
            try:
                return await adapter.check_payment_status(handle)
            except Exception as e:
                logger.warning("Status check for %s via %s failed: %s", handle, adapter.label, e)

        raise StatusUnavailable(handle)

    # ─── Refunds ───────────────────────────────────────────────────────

    async def refund_payment(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        provider: Optional[ProviderId] = None,
        refund_id: Optional[str] = None,
    ) -> bool:
        """
        Refund through the explicit, inferred or primary provider.

        Raises:
            RefundUnsupported: The resolved adapter cannot refund.
            NoProviderAvailable: The resolved provider is not enabled.
        """
        resolved = provider or infer_provider(transaction_id) or self.primary
        adapter = self.get_provider(resolved)
        if not isinstance(adapter, RefundCapable):
            raise RefundUnsupported(f"{adapter.label} does not support refunds")

        refunded = await adapter.refund_payment(transaction_id, amount, refund_id=refund_id)
        logger.info(
            "Refund of %s for %s via %s: %s",
            "full amount" if amount is None else f"{amount:.2f}",
            transaction_id,
            adapter.label,
            "settled" if refunded else "not settled",
        )
        return refunded

    # ─── Webhooks ──────────────────────────────────────────────────────

    async def handle_webhook(self, provider: ProviderId, raw: RawWebhook) -> WebhookEvent:
        return await self.get_provider(provider).handle_webhook(raw)

    # ─── Capability reporting ──────────────────────────────────────────

    def get_available_payment_methods(self, currency: str, region: Optional[str] = None) -> list[str]:
        """Payment methods offered by enabled providers for a currency (and region)."""
        methods: list[str] = []
        for adapter in self._providers.values():
            if not adapter.supports_currency(currency) or not adapter.serves_region(region):
                continue
            for method in adapter.payment_methods:
                if method not in methods:
                    methods.append(method)
        return methods

    def get_supported_currencies(self) -> list[str]:
        currencies: set[str] = set()
        for adapter in self._providers.values():
            currencies.update(adapter.supported_currencies)
        return sorted(currencies)

    def get_provider_status(self) -> dict:
        return {
            "providers": {
                pid.value: {
                    "enabled": pid in self._providers,
                    "mobile": isinstance(self._providers.get(pid), MobilePaymentCapable),
                    "refunds": isinstance(self._providers.get(pid), RefundCapable),
                    "currencies": sorted(self._providers[pid].supported_currencies) if pid in self._providers else [],
                }
                for pid in ProviderId
            },
            "primary": {"provider": self.primary.value, "available": self.primary in self._providers},
            "fallback": {"provider": self.fallback.value, "available": self.fallback in self._providers},
        }

    # ─── Utilities ─────────────────────────────────────────────────────

    def calculate_fees(self, amount: float, provider: Optional[ProviderId] = None) -> float:
        return fees.calculate_fees(amount, provider or self.primary)

    @staticmethod
    def generate_payment_reference(prefix: str = "PAY") -> str:
        return references.generate_payment_reference(prefix)
