"""
Provider routing decisions.

Selection priority (strict, never randomized or load-balanced):
  1. Caller's preferred provider, if enabled
  2. Configured primary, if enabled
  3. Configured fallback, if enabled
  4. First enabled provider in ProviderId declaration order

Status handles are opaque strings, but their shape usually gives away the
provider that issued them. ``infer_provider`` holds that guesswork in one
place so it can be updated when a provider changes its id formats.
"""

from collections.abc import Collection
from dataclasses import dataclass
from typing import Optional

from paygate.errors import NoProviderAvailable
from paygate.models.enums import ProviderId

PAYNOW_HOST_MARKER = "paynow.co.zw"
STRIPE_ID_PREFIXES = ("pi_", "cs_", "ch_", "sub_")


@dataclass
class ProviderDecision:
    """Result of the provider selection process."""

    provider: ProviderId
    reason: str  # "preferred", "primary", "fallback", "any"

    @property
    def is_primary(self) -> bool:
        return self.reason == "primary"


def select_provider(
    enabled: Collection[ProviderId],
    primary: ProviderId,
    fallback: ProviderId,
    preferred: Optional[ProviderId] = None,
) -> ProviderDecision:
    """
    Pick the provider that should handle a request.

    Args:
        enabled: Providers that are configured and constructed.
        primary: Configured primary provider.
        fallback: Configured fallback provider.
        preferred: Caller's explicit choice, if any.

    Returns:
        ProviderDecision naming the provider and which rule selected it.

    Raises:
        NoProviderAvailable: When nothing is enabled.
    """
    if preferred is not None and preferred in enabled:
        return ProviderDecision(provider=preferred, reason="preferred")

    if primary in enabled:
        return ProviderDecision(provider=primary, reason="primary")

    if fallback in enabled:
        return ProviderDecision(provider=fallback, reason="fallback")

    for provider in ProviderId:
        if provider in enabled:
            return ProviderDecision(provider=provider, reason="any")

    raise NoProviderAvailable("No payment providers are available")


def infer_provider(handle: Optional[str]) -> Optional[ProviderId]:
    """
    Guess which provider issued a status handle or transaction id.

    Best effort only: returns None when the handle has no recognisable shape.
    """
    value = (handle or "").strip()
    if not value:
        return None
    if PAYNOW_HOST_MARKER in value.lower():
        return ProviderId.PAYNOW
    if value.startswith(STRIPE_ID_PREFIXES):
        return ProviderId.STRIPE
    return None
