"""
Translate provider-native statuses into the universal taxonomy.

Unknown native statuses map to PENDING and are logged as anomalies. Falling
back to a terminal state would close out a payment that may still be moving.
"""

import logging
from typing import Optional

from paygate.models.enums import ProviderId, UniversalStatus
from paygate.routing.status_tables import STATUS_TABLES

logger = logging.getLogger("paygate.status")


def _normalise(native_status: Optional[str]) -> str:
    return (native_status or "").strip().lower()


def map_status(provider: ProviderId, native_status: Optional[str]) -> UniversalStatus:
    """
    Map a provider's native status string onto UniversalStatus.

    Args:
        provider: The provider that emitted the status.
        native_status: The status exactly as the provider reported it.

    Returns:
        The mapped status, or PENDING when the string is not in the table.
    """
    table = STATUS_TABLES.get(provider, {})
    mapped = table.get(_normalise(native_status))
    if mapped is None:
        logger.warning(
            "Unmapped %s status %r, treating as %s",
            provider.value,
            native_status,
            UniversalStatus.PENDING.value,
        )
        return UniversalStatus.PENDING
    return mapped


def is_paid(provider: ProviderId, native_status: Optional[str]) -> bool:
    return map_status(provider, native_status) == UniversalStatus.SUCCEEDED


def is_terminal(provider: ProviderId, native_status: Optional[str]) -> bool:
    return map_status(provider, native_status).is_terminal


def is_refundable(provider: ProviderId, native_status: Optional[str]) -> bool:
    """Only settled, not-yet-refunded payments can be refunded."""
    return map_status(provider, native_status) == UniversalStatus.SUCCEEDED
