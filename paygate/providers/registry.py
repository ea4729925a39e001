"""Build the enabled provider adapters from settings."""

import logging
from typing import Optional

import httpx

from paygate.config import Settings
from paygate.models.enums import ProviderId
from paygate.providers.base import PaymentProvider, TransportPolicy
from paygate.providers.paynow import PaynowProvider
from paygate.providers.stripe import StripeProvider

logger = logging.getLogger("paygate.providers")


def build_providers(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[ProviderId, PaymentProvider]:
    """
    Construct an adapter for every provider switched on in settings.

    ``client`` is shared by the httpx-based adapters; Stripe goes through its
    SDK client.

    Raises:
        ConfigurationError: A provider is enabled but its credentials are missing.
    """
    policy = TransportPolicy(
        timeout=settings.provider_timeout_seconds,
        max_retries=settings.transport_max_retries,
        base_delay=settings.retry_base_delay,
    )
    providers: dict[ProviderId, PaymentProvider] = {}

    if settings.paynow_enabled:
        providers[ProviderId.PAYNOW] = PaynowProvider(
            integration_id=settings.paynow_integration_id,
            integration_key=settings.paynow_integration_key,
            result_url=settings.resolved_paynow_result_url,
            return_url=settings.resolved_paynow_return_url,
            policy=policy,
            client=client,
        )

    if settings.stripe_enabled:
        providers[ProviderId.STRIPE] = StripeProvider(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            success_url=settings.stripe_success_url,
            cancel_url=settings.stripe_cancel_url,
            policy=policy,
        )

    logger.info("Enabled payment providers: %s", ", ".join(p.value for p in providers) or "none")
    return providers
