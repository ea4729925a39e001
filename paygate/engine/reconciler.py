"""
Webhook reconciler: applies provider status reports to payment records.

Three sources move a record's status:
  1. The initiation response (``apply_initiation``)
  2. An explicit status check (``apply_status``)
  3. A verified webhook (``process_webhook`` / ``apply_event``)

All three go through the same transition rules:
  - Same status again → DUPLICATE, nothing written
  - Out of a terminal state (other than succeeded → refunded) → REJECTED_TERMINAL
  - processing → pending → STALE (an earlier event delivered late)
  - Anything else → compare-and-set on the status the record was read in;
    losing that race is also STALE

The activation hook runs only for the call whose compare-and-set moved the
record into SUCCEEDED. ``activated_at`` is written in that same UPDATE, so a
repeated webhook can never activate twice.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from paygate.audit.logger import append_note
from paygate.errors import InvalidSignature, MalformedWebhook
from paygate.models.enums import ProviderId, ReconcileOutcome, UniversalStatus
from paygate.models.payment import Payment
from paygate.providers.base import PaymentResponse, PaymentStatus, RawWebhook, WebhookEvent
from paygate.store import PaymentStore

if TYPE_CHECKING:
    from paygate.engine.orchestrator import PaymentOrchestrator

logger = logging.getLogger("paygate.reconciler")

ActivationHook = Callable[[Payment], Awaitable[None]]

AMOUNT_TOLERANCE = 0.005
REFUND_WRITE_ATTEMPTS = 5


@dataclass
class ReconcileResult:
    """What applying one status report did to a record."""

    outcome: ReconcileOutcome
    reference: Optional[str] = None
    previous_status: Optional[UniversalStatus] = None
    status: Optional[UniversalStatus] = None
    activated: bool = False
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome == ReconcileOutcome.APPLIED


def evaluate_transition(current: UniversalStatus, new: UniversalStatus) -> ReconcileOutcome:
    """Decide whether a record in ``current`` may move to ``new``."""
    if current == new:
        return ReconcileOutcome.DUPLICATE
    if current.is_terminal:
        if current == UniversalStatus.SUCCEEDED and new == UniversalStatus.REFUNDED:
            return ReconcileOutcome.APPLIED
        return ReconcileOutcome.REJECTED_TERMINAL
    if current == UniversalStatus.PROCESSING and new == UniversalStatus.PENDING:
        return ReconcileOutcome.STALE
    return ReconcileOutcome.APPLIED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookReconciler:
    """Applies status reports to persisted payment records exactly once."""

    def __init__(self, store: PaymentStore, activation_hook: Optional[ActivationHook] = None):
        self.store = store
        self.activation_hook = activation_hook

    # ─── Webhooks ──────────────────────────────────────────────────────

    async def process_webhook(
        self,
        orchestrator: "PaymentOrchestrator",
        provider: ProviderId,
        raw: RawWebhook,
    ) -> ReconcileResult:
        """
        Verify, translate and apply a webhook delivery.

        Rejected deliveries are logged with their raw body and change nothing.

        Raises:
            NoProviderAvailable: The provider is not enabled.
        """
        try:
            event = await orchestrator.handle_webhook(provider, raw)
        except InvalidSignature as e:
            logger.warning("Rejected %s webhook: %s", provider.value, e)
            await self.store.log_webhook(
                provider, ReconcileOutcome.INVALID_SIGNATURE, raw_data=raw.text, error=str(e)
            )
            return ReconcileResult(outcome=ReconcileOutcome.INVALID_SIGNATURE, message=str(e))
        except MalformedWebhook as e:
            logger.warning("Malformed %s webhook: %s", provider.value, e)
            await self.store.log_webhook(
                provider, ReconcileOutcome.MALFORMED, raw_data=raw.text, error=str(e)
            )
            return ReconcileResult(outcome=ReconcileOutcome.MALFORMED, message=str(e))

        result = await self.apply_event(event)
        await self.store.log_webhook(
            provider,
            result.outcome,
            event=event,
            raw_data=raw.text,
            error=result.message or None,
        )
        return result

    async def apply_event(self, event: WebhookEvent) -> ReconcileResult:
        record = await self.store.get_payment_record(event.reference)
        if record is None and event.transaction_id:
            record = await self.store.get_payment_record(event.transaction_id)
        if record is None:
            logger.warning(
                "Webhook %s from %s for unknown payment %s",
                event.event_type,
                event.provider.value,
                event.reference,
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.UNKNOWN_PAYMENT,
                reference=event.reference,
                status=event.status,
                message=f"No payment record for {event.reference}",
            )

        self._check_amount(record, event.amount, event.status)
        fields: dict[str, Any] = {"last_event_at": _utcnow()}
        if event.transaction_id:
            fields["provider_reference"] = event.transaction_id
            if not record.transaction_id:
                fields["transaction_id"] = event.transaction_id
        if event.status == UniversalStatus.SUCCEEDED:
            fields["paid_amount"] = event.amount if event.amount is not None else record.amount

        return await self._transition(record, event.status, f"webhook {event.event_type}", fields)

    # ─── Status checks ─────────────────────────────────────────────────

    async def apply_status(self, status: PaymentStatus, reference: Optional[str] = None) -> ReconcileResult:
        """Apply the result of an explicit status check."""
        record = await self.store.get_payment_record(reference or status.reference)
        if record is None and status.transaction_id:
            record = await self.store.get_payment_record(status.transaction_id)
        if record is None:
            logger.warning("Status check result for unknown payment %s", reference or status.reference)
            return ReconcileResult(
                outcome=ReconcileOutcome.UNKNOWN_PAYMENT,
                reference=reference or status.reference,
                status=status.status,
            )

        fields: dict[str, Any] = {"last_event_at": status.updated_at}
        if status.provider_reference:
            fields["provider_reference"] = status.provider_reference
        if status.paid_amount is not None:
            fields["paid_amount"] = status.paid_amount

        return await self._transition(record, status.status, "status check", fields)

    # ─── Initiation ────────────────────────────────────────────────────

    async def apply_initiation(self, reference: str, response: PaymentResponse) -> ReconcileResult:
        """
        Record what the provider said when the payment was started.

        Handles and URLs are stored whatever the record's status. The status
        itself only moves out of ``pending``, so a webhook that got there
        first is left alone.
        """
        handles = {
            "provider": response.provider,
            "transaction_id": response.transaction_id,
            "poll_token": response.poll_token,
            "redirect_url": response.redirect_url,
            "instructions": response.instructions,
            "failure_reason": response.failure_reason,
        }
        record = await self.store.update_payment_record(
            reference, **{k: v for k, v in handles.items() if v is not None}
        )
        if record is None:
            logger.warning("Initiation result for unknown payment %s", reference)
            return ReconcileResult(outcome=ReconcileOutcome.UNKNOWN_PAYMENT, reference=reference)

        provider_name = response.provider.value if response.provider else "none"
        if response.success:
            new = UniversalStatus.PROCESSING
            note = f"Initiated with {provider_name}: {response.transaction_id or '-'}"
        else:
            new = UniversalStatus.FAILED
            note = f"Initiation failed ({provider_name}): {response.error}"

        await self.store.record_audit(
            "initiated" if response.success else "initiation_failed",
            payment_reference=reference,
            details={
                "provider": provider_name,
                "transaction_id": response.transaction_id,
                "error": response.error,
                "failure_reason": response.failure_reason,
            },
        )

        moved = await self.store.transition_status(
            reference,
            UniversalStatus.PENDING,
            new,
            notes=append_note(record.notes, note),
        )
        if not moved:
            return ReconcileResult(
                outcome=ReconcileOutcome.STALE,
                reference=reference,
                previous_status=UniversalStatus(record.status),
                status=UniversalStatus(record.status),
                message="Record already advanced past pending",
            )
        return ReconcileResult(
            outcome=ReconcileOutcome.APPLIED,
            reference=reference,
            previous_status=UniversalStatus.PENDING,
            status=new,
        )

    # ─── Refunds ───────────────────────────────────────────────────────

    async def record_refund(
        self,
        reference: str,
        amount: Optional[float] = None,
        refund_id: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Add a settled refund to the record.

        The record moves to REFUNDED only once the refunded total covers the
        paid amount; a partial refund leaves it SUCCEEDED. The write is
        conditional on the refunded total that was read, so a concurrent
        refund forces a re-read instead of being overwritten.
        """
        for _ in range(REFUND_WRITE_ATTEMPTS):
            record = await self.store.get_payment_record(reference)
            if record is None:
                return ReconcileResult(outcome=ReconcileOutcome.UNKNOWN_PAYMENT, reference=reference)

            current = UniversalStatus(record.status)
            if current != UniversalStatus.SUCCEEDED:
                logger.warning("Refund recorded against %s payment %s", current.value, reference)
                return ReconcileResult(
                    outcome=ReconcileOutcome.REJECTED_TERMINAL if current.is_terminal else ReconcileOutcome.STALE,
                    reference=reference,
                    previous_status=current,
                    status=current,
                    message=f"Payment is {current.value}, not succeeded",
                )

            paid = record.paid_amount if record.paid_amount is not None else record.amount
            already = record.refunded_amount or 0.0
            refunded_total = min(paid, already + (amount if amount is not None else paid - already))
            fully_refunded = refunded_total >= paid - AMOUNT_TOLERANCE
            new = UniversalStatus.REFUNDED if fully_refunded else UniversalStatus.SUCCEEDED

            moved = await self.store.transition_status(
                reference,
                UniversalStatus.SUCCEEDED,
                new,
                match={"refunded_amount": record.refunded_amount},
                refunded_amount=round(refunded_total, 2),
                notes=append_note(record.notes, f"Refunded {refunded_total:.2f} of {paid:.2f} {record.currency}"),
            )
            if moved:
                break
            logger.info("Refund on %s raced another write, re-reading", reference)
        else:
            logger.error("Could not record refund on %s after %d attempts", reference, REFUND_WRITE_ATTEMPTS)
            return ReconcileResult(
                outcome=ReconcileOutcome.STALE,
                reference=reference,
                previous_status=current,
                message="Refund total kept changing underneath the write",
            )

        await self.store.record_audit(
            "refund_recorded",
            payment_reference=reference,
            details={
                "amount": amount,
                "refund_id": refund_id,
                "refunded_total": refunded_total,
                "status": new.value,
            },
        )
        return ReconcileResult(
            outcome=ReconcileOutcome.APPLIED,
            reference=reference,
            previous_status=current,
            status=new,
        )

    # ─── Internals ─────────────────────────────────────────────────────

    async def _transition(
        self,
        record: Payment,
        new: UniversalStatus,
        source: str,
        fields: dict[str, Any],
    ) -> ReconcileResult:
        reference = record.reference
        current = UniversalStatus(record.status)
        outcome = evaluate_transition(current, new)

        if outcome == ReconcileOutcome.REJECTED_TERMINAL:
            logger.warning(
                "Ignoring %s -> %s for %s from %s: record is terminal",
                current.value,
                new.value,
                reference,
                source,
            )
        elif outcome != ReconcileOutcome.APPLIED:
            logger.info("%s -> %s for %s from %s: %s", current.value, new.value, reference, source, outcome.value)

        if outcome != ReconcileOutcome.APPLIED:
            return ReconcileResult(outcome=outcome, reference=reference, previous_status=current, status=current)

        now = _utcnow()
        fields["notes"] = append_note(record.notes, f"Status {current.value} -> {new.value} ({source})")
        if new == UniversalStatus.SUCCEEDED:
            fields["activated_at"] = now
        elif new == UniversalStatus.REFUNDED:
            fields["refunded_amount"] = record.paid_amount if record.paid_amount is not None else record.amount

        if not await self.store.transition_status(reference, current, new, **fields):
            return ReconcileResult(
                outcome=ReconcileOutcome.STALE,
                reference=reference,
                previous_status=current,
                message="Record changed concurrently",
            )

        await self.store.record_audit(
            "status_changed",
            payment_reference=reference,
            details={"from": current.value, "to": new.value, "source": source},
        )
        logger.info("Payment %s: %s -> %s (%s)", reference, current.value, new.value, source)

        activated = False
        if new == UniversalStatus.SUCCEEDED:
            activated = await self._activate(reference)

        return ReconcileResult(
            outcome=ReconcileOutcome.APPLIED,
            reference=reference,
            previous_status=current,
            status=new,
            activated=activated,
        )

    async def _activate(self, reference: str) -> bool:
        if self.activation_hook is None:
            return False

        record = await self.store.get_payment_record(reference)
        try:
            await self.activation_hook(record)
        except Exception as e:
            logger.exception("Activation hook failed for %s", reference)
            await self.store.record_audit("activation_failed", payment_reference=reference, details={"error": str(e)})
            return False

        await self.store.record_audit("activated", payment_reference=reference)
        return True

    def _check_amount(self, record: Payment, amount: Optional[float], status: UniversalStatus) -> None:
        if status != UniversalStatus.SUCCEEDED or amount is None:
            return
        if abs(amount - record.amount) > AMOUNT_TOLERANCE:
            logger.warning(
                "Amount mismatch on %s: record %.2f, provider reported %.2f",
                record.reference,
                record.amount,
                amount,
            )
