from paygate.models.enums import (
    FailureReason,
    MobileMethod,
    ProviderId,
    ReconcileOutcome,
    TERMINAL_STATUSES,
    UniversalStatus,
)
from paygate.models.payment import AuditLog, Base, Payment, WebhookLog

__all__ = [
    "Base",
    "Payment",
    "WebhookLog",
    "AuditLog",
    "FailureReason",
    "MobileMethod",
    "ProviderId",
    "ReconcileOutcome",
    "TERMINAL_STATUSES",
    "UniversalStatus",
]
