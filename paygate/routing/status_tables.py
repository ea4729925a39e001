"""
Provider-native status vocabularies mapped onto UniversalStatus.

One table per provider. Keys are lower-cased native status strings; lookups
in ``status_mapper`` normalise case and whitespace before consulting them.
Supporting a new provider means adding a table here, not new branches in the
orchestrator.
"""

from paygate.models.enums import ProviderId, UniversalStatus

P = UniversalStatus


PAYNOW_STATUSES: dict[str, UniversalStatus] = {
    # ─── Transaction lifecycle as reported by poll URL / result URL ────
    "created": P.PENDING,            # Transaction created, customer not yet redirected
    "sent": P.PROCESSING,            # Sent to customer (mobile prompt / redirect)
    "paid": P.SUCCEEDED,             # Funds received
    "awaiting delivery": P.SUCCEEDED,  # Paid, merchant yet to mark delivered
    "delivered": P.SUCCEEDED,
    "cancelled": P.CANCELLED,
    "disputed": P.FAILED,
    "refunded": P.REFUNDED,
    "failed": P.FAILED,
}


STRIPE_STATUSES: dict[str, UniversalStatus] = {
    # ─── PaymentIntent.status ──────────────────────────────────────────
    "requires_payment_method": P.PENDING,
    "requires_confirmation": P.PENDING,
    "requires_action": P.PENDING,
    "processing": P.PROCESSING,
    "requires_capture": P.PROCESSING,
    "succeeded": P.SUCCEEDED,
    "canceled": P.CANCELLED,
    # ─── Checkout Session payment_status / status ──────────────────────
    "unpaid": P.PENDING,
    "paid": P.SUCCEEDED,
    "no_payment_required": P.SUCCEEDED,
    "expired": P.CANCELLED,
    # ─── Charge outcome (webhooks) ─────────────────────────────────────
    "pending": P.PROCESSING,
    "failed": P.FAILED,
    "partially_refunded": P.SUCCEEDED,  # Record stays paid until fully refunded
    "refunded": P.REFUNDED,
}


STATUS_TABLES: dict[ProviderId, dict[str, UniversalStatus]] = {
    ProviderId.PAYNOW: PAYNOW_STATUSES,
    ProviderId.STRIPE: STRIPE_STATUSES,
}
