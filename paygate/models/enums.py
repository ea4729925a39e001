"""Enumerations for the payment orchestration domain model."""

from enum import Enum


class ProviderId(str, Enum):
    """Payment providers the orchestrator knows how to talk to.

    Declaration order is the last-resort selection order.
    """

    PAYNOW = "paynow"
    STRIPE = "stripe"


class UniversalStatus(str, Enum):
    """Provider-agnostic lifecycle states for a payment."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    UniversalStatus.SUCCEEDED,
    UniversalStatus.FAILED,
    UniversalStatus.CANCELLED,
    UniversalStatus.REFUNDED,
})


class MobileMethod(str, Enum):
    """Mobile money collection channels."""

    ECOCASH = "ecocash"
    ONEMONEY = "onemoney"


class FailureReason(str, Enum):
    """Categorized reasons for an unsuccessful payment initiation."""

    UNSUPPORTED_CURRENCY = "unsupported_currency"
    UNSUPPORTED_CHANNEL = "unsupported_channel"
    NO_CAPABLE_PROVIDER = "no_capable_provider"
    PROVIDER_REJECTED = "provider_rejected"
    TRANSPORT_ERROR = "transport_error"
    UNEXPECTED_ERROR = "unexpected_error"


class ReconcileOutcome(str, Enum):
    """What happened when an event was applied to a payment record."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    REJECTED_TERMINAL = "rejected_terminal"
    UNKNOWN_PAYMENT = "unknown_payment"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
