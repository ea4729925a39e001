"""
Pre-flight checks run by adapters before any network call.

Before sending a payment to a provider we verify:
  1. The currency is on the provider's allow-list
  2. For mobile money, the collection channel is one the provider supports

Each check returns a structured result so the adapter can hand back a
categorized failure instead of raising.
"""

from collections.abc import Collection
from dataclasses import dataclass
from typing import Optional

from paygate.models.enums import FailureReason, MobileMethod


@dataclass
class EligibilityResult:
    """Result of an eligibility check."""

    eligible: bool
    failure_reason: Optional[FailureReason] = None
    message: str = ""


def check_eligibility(
    provider_label: str,
    currency: str,
    supported_currencies: Collection[str],
    mobile_method: Optional[MobileMethod] = None,
    supported_mobile_methods: Optional[Collection[MobileMethod]] = None,
) -> EligibilityResult:
    """
    Check whether a request can be sent to a provider.

    Args:
        provider_label: Human readable provider name for messages.
        currency: ISO 4217 code of the request.
        supported_currencies: The provider's currency allow-list.
        mobile_method: Requested mobile channel, for mobile payments only.
        supported_mobile_methods: Channels the provider can collect through.

    Returns:
        EligibilityResult indicating pass/fail with categorized reason.
    """
    code = (currency or "").upper()
    if code not in supported_currencies:
        return EligibilityResult(
            eligible=False,
            failure_reason=FailureReason.UNSUPPORTED_CURRENCY,
            message=f"Currency {currency} not supported by {provider_label}",
        )

    if mobile_method is not None:
        if not supported_mobile_methods or mobile_method not in supported_mobile_methods:
            method = getattr(mobile_method, "value", mobile_method)
            return EligibilityResult(
                eligible=False,
                failure_reason=FailureReason.UNSUPPORTED_CHANNEL,
                message=f"Mobile method {method} not supported by {provider_label}",
            )

    return EligibilityResult(eligible=True)
