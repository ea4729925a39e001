"""Integration tests for webhook reconciliation against an in-memory database."""

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from paygate.engine.orchestrator import PaymentOrchestrator
from paygate.engine.reconciler import WebhookReconciler, evaluate_transition
from paygate.models.enums import FailureReason, ProviderId, ReconcileOutcome, UniversalStatus
from paygate.models.payment import AuditLog, Base, WebhookLog
from paygate.providers.base import PaymentResponse, PaymentStatus, WebhookEvent
from paygate.store import SqlPaymentStore
from tests.fakes import FakeProvider, webhook

S = UniversalStatus


class ActivationSpy:
    def __init__(self, fail: bool = False):
        self.activated: list[str] = []
        self.fail = fail

    async def __call__(self, payment) -> None:
        self.activated.append(payment.reference)
        if self.fail:
            raise RuntimeError("downstream unavailable")


async def seed(store, reference="R1", status=S.PENDING, amount=19.00, **fields):
    return await store.create_payment_record(
        reference,
        amount=amount,
        currency="USD",
        status=status,
        provider=ProviderId.STRIPE,
        organization_id="org-1",
        **fields,
    )


def event(reference="R1", status=S.SUCCEEDED, amount=19.00, transaction_id=None) -> WebhookEvent:
    return WebhookEvent(
        provider=ProviderId.STRIPE,
        event_type="payment_intent.succeeded",
        reference=reference,
        status=status,
        amount=amount,
        currency="USD",
        transaction_id=transaction_id,
        raw={},
    )


class TestTransitionRules:
    def test_same_status_is_duplicate(self):
        assert evaluate_transition(S.SUCCEEDED, S.SUCCEEDED) == ReconcileOutcome.DUPLICATE

    @pytest.mark.parametrize("new", [S.PENDING, S.PROCESSING, S.FAILED, S.CANCELLED])
    def test_succeeded_is_protected(self, new):
        assert evaluate_transition(S.SUCCEEDED, new) == ReconcileOutcome.REJECTED_TERMINAL

    def test_refund_edge_allowed(self):
        assert evaluate_transition(S.SUCCEEDED, S.REFUNDED) == ReconcileOutcome.APPLIED

    @pytest.mark.parametrize("terminal", [S.FAILED, S.CANCELLED, S.REFUNDED])
    def test_other_terminals_never_reopen(self, terminal):
        assert evaluate_transition(terminal, S.SUCCEEDED) == ReconcileOutcome.REJECTED_TERMINAL

    def test_late_pending_after_processing_is_stale(self):
        assert evaluate_transition(S.PROCESSING, S.PENDING) == ReconcileOutcome.STALE

    def test_forward_moves_apply(self):
        assert evaluate_transition(S.PENDING, S.PROCESSING) == ReconcileOutcome.APPLIED
        assert evaluate_transition(S.PENDING, S.SUCCEEDED) == ReconcileOutcome.APPLIED
        assert evaluate_transition(S.PROCESSING, S.FAILED) == ReconcileOutcome.APPLIED


class TestApplyEvent:
    @pytest.mark.asyncio
    async def test_success_activates_once(self, store):
        spy = ActivationSpy()
        reconciler = WebhookReconciler(store, activation_hook=spy)
        await seed(store, status=S.PROCESSING)

        first = await reconciler.apply_event(event())
        second = await reconciler.apply_event(event())

        assert first.outcome == ReconcileOutcome.APPLIED
        assert first.activated
        assert second.outcome == ReconcileOutcome.DUPLICATE
        assert not second.activated
        assert spy.activated == ["R1"]

        record = await store.get_payment_record("R1")
        assert record.status == "succeeded"
        assert record.paid_amount == pytest.approx(19.00)
        assert record.activated_at is not None
        assert "processing -> succeeded" in record.notes

    @pytest.mark.asyncio
    async def test_zwl_payment_keeps_its_currency(self, store):
        await store.create_payment_record(
            "R1", amount=50.00, currency="ZWL", status=S.PROCESSING, provider=ProviderId.PAYNOW
        )
        paynow_event = WebhookEvent(
            provider=ProviderId.PAYNOW,
            event_type="payment.status_changed",
            reference="R1",
            status=S.SUCCEEDED,
            amount=50.00,
            transaction_id="778899",
        )

        result = await WebhookReconciler(store).apply_event(paynow_event)

        assert result.outcome == ReconcileOutcome.APPLIED
        record = await store.get_payment_record("R1")
        assert record.currency == "ZWL"
        assert record.paid_amount == pytest.approx(50.00)

    @pytest.mark.asyncio
    async def test_terminal_state_protected(self, store):
        reconciler = WebhookReconciler(store)
        await seed(store, status=S.SUCCEEDED)

        result = await reconciler.apply_event(event(status=S.PENDING))

        assert result.outcome == ReconcileOutcome.REJECTED_TERMINAL
        assert (await store.get_payment_record("R1")).status == "succeeded"

    @pytest.mark.asyncio
    async def test_late_pending_is_stale(self, store):
        reconciler = WebhookReconciler(store)
        await seed(store, status=S.PROCESSING)

        result = await reconciler.apply_event(event(status=S.PENDING))

        assert result.outcome == ReconcileOutcome.STALE
        assert (await store.get_payment_record("R1")).status == "processing"

    @pytest.mark.asyncio
    async def test_lookup_by_transaction_id(self, store):
        reconciler = WebhookReconciler(store)
        await seed(store, status=S.PROCESSING, transaction_id="pi_1")

        result = await reconciler.apply_event(event(reference="pi_1", transaction_id="pi_1"))

        assert result.outcome == ReconcileOutcome.APPLIED
        assert result.reference == "R1"

    @pytest.mark.asyncio
    async def test_unknown_payment(self, store):
        result = await WebhookReconciler(store).apply_event(event(reference="NOPE"))
        assert result.outcome == ReconcileOutcome.UNKNOWN_PAYMENT

    @pytest.mark.asyncio
    async def test_lost_race_is_stale(self, store):
        spy = ActivationSpy()
        reconciler = WebhookReconciler(store, activation_hook=spy)
        record = await seed(store, status=S.PROCESSING)

        # Another writer moves the row after we read it
        assert await store.transition_status("R1", S.PROCESSING, S.FAILED)
        result = await reconciler._transition(record, S.SUCCEEDED, "test", {})

        assert result.outcome == ReconcileOutcome.STALE
        assert spy.activated == []
        assert (await store.get_payment_record("R1")).status == "failed"

    @pytest.mark.asyncio
    async def test_failing_activation_hook_is_audited(self, store, db_session):
        reconciler = WebhookReconciler(store, activation_hook=ActivationSpy(fail=True))
        await seed(store, status=S.PROCESSING)

        result = await reconciler.apply_event(event())

        assert result.outcome == ReconcileOutcome.APPLIED
        assert not result.activated
        actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
        assert "activation_failed" in actions
        assert (await store.get_payment_record("R1")).status == "succeeded"


class TestProcessWebhook:
    @pytest.mark.asyncio
    async def test_invalid_signature_changes_nothing(self, store, db_session):
        orch = PaymentOrchestrator({ProviderId.STRIPE: FakeProvider(ProviderId.STRIPE)})
        reconciler = WebhookReconciler(store)
        await seed(store, status=S.PROCESSING)

        result = await reconciler.process_webhook(orch, ProviderId.STRIPE, webhook("R1", "succeeded", signature="forged"))

        assert result.outcome == ReconcileOutcome.INVALID_SIGNATURE
        assert (await store.get_payment_record("R1")).status == "processing"
        log = (await db_session.execute(select(WebhookLog))).scalars().one()
        assert log.outcome == "invalid_signature"
        assert '"succeeded"' in log.raw_data

    @pytest.mark.asyncio
    async def test_malformed_is_logged(self, store, db_session):
        orch = PaymentOrchestrator({ProviderId.STRIPE: FakeProvider(ProviderId.STRIPE)})
        reconciler = WebhookReconciler(store)

        raw = webhook("R1", "succeeded")
        raw.body = b'{"reference": "R1"}'
        result = await reconciler.process_webhook(orch, ProviderId.STRIPE, raw)

        assert result.outcome == ReconcileOutcome.MALFORMED
        log = (await db_session.execute(select(WebhookLog))).scalars().one()
        assert log.outcome == "malformed"

    @pytest.mark.asyncio
    async def test_repeated_delivery_side_effect_once(self, store, db_session):
        orch = PaymentOrchestrator({ProviderId.STRIPE: FakeProvider(ProviderId.STRIPE)})
        spy = ActivationSpy()
        reconciler = WebhookReconciler(store, activation_hook=spy)
        await seed(store, status=S.PROCESSING)

        outcomes = [
            (await reconciler.process_webhook(orch, ProviderId.STRIPE, webhook("R1", "succeeded", amount=19.0))).outcome
            for _ in range(3)
        ]

        assert outcomes == [ReconcileOutcome.APPLIED, ReconcileOutcome.DUPLICATE, ReconcileOutcome.DUPLICATE]
        assert spy.activated == ["R1"]
        logs = (await db_session.execute(select(WebhookLog))).scalars().all()
        assert len(logs) == 3


class TestInitiationAndStatus:
    @pytest.mark.asyncio
    async def test_successful_initiation(self, store):
        await seed(store)
        response = PaymentResponse(
            success=True,
            provider=ProviderId.STRIPE,
            reference="R1",
            amount=19.0,
            currency="USD",
            transaction_id="cs_1",
            redirect_url="https://checkout.test/cs_1",
            poll_token="cs_1",
        )

        result = await WebhookReconciler(store).apply_initiation("R1", response)

        assert result.outcome == ReconcileOutcome.APPLIED
        record = await store.get_payment_record("cs_1")
        assert record.reference == "R1"
        assert record.status == "processing"
        assert record.redirect_url.endswith("cs_1")

    @pytest.mark.asyncio
    async def test_failed_initiation(self, store):
        await seed(store)
        response = PaymentResponse(
            success=False,
            provider=ProviderId.PAYNOW,
            reference="R1",
            amount=19.0,
            currency="EUR",
            error="Currency EUR not supported by Paynow",
            failure_reason=FailureReason.UNSUPPORTED_CURRENCY,
        )

        await WebhookReconciler(store).apply_initiation("R1", response)

        record = await store.get_payment_record("R1")
        assert record.status == "failed"
        assert record.failure_reason == "unsupported_currency"

    @pytest.mark.asyncio
    async def test_webhook_beat_initiation(self, store):
        await seed(store)
        reconciler = WebhookReconciler(store)
        await reconciler.apply_event(event())
        response = PaymentResponse(
            success=True, provider=ProviderId.STRIPE, reference="R1", amount=19.0, currency="USD", transaction_id="cs_1"
        )

        result = await reconciler.apply_initiation("R1", response)

        assert result.outcome == ReconcileOutcome.STALE
        record = await store.get_payment_record("R1")
        assert record.status == "succeeded"
        assert record.transaction_id == "cs_1"

    @pytest.mark.asyncio
    async def test_status_check_applied(self, store):
        await seed(store, status=S.PROCESSING)
        status = PaymentStatus("pi_1", "pi_1", ProviderId.STRIPE, S.CANCELLED, 19.0, "USD")

        result = await WebhookReconciler(store).apply_status(status, reference="R1")

        assert result.outcome == ReconcileOutcome.APPLIED
        assert (await store.get_payment_record("R1")).status == "cancelled"


class TestRefunds:
    @pytest.mark.asyncio
    async def test_partial_refund_keeps_succeeded(self, store):
        await seed(store, status=S.SUCCEEDED, paid_amount=19.00)

        result = await WebhookReconciler(store).record_refund("R1", 10.00)

        assert result.status == S.SUCCEEDED
        record = await store.get_payment_record("R1")
        assert record.status == "succeeded"
        assert record.refunded_amount == pytest.approx(10.00)

    @pytest.mark.asyncio
    async def test_refunds_accumulate_to_refunded(self, store):
        await seed(store, status=S.SUCCEEDED, paid_amount=19.00)
        reconciler = WebhookReconciler(store)

        await reconciler.record_refund("R1", 10.00)
        result = await reconciler.record_refund("R1", 9.00)

        assert result.status == S.REFUNDED
        record = await store.get_payment_record("R1")
        assert record.status == "refunded"
        assert record.refunded_amount == pytest.approx(19.00)

    @pytest.mark.asyncio
    async def test_full_refund(self, store):
        await seed(store, status=S.SUCCEEDED)
        result = await WebhookReconciler(store).record_refund("R1")
        assert result.status == S.REFUNDED

    @pytest.mark.asyncio
    async def test_refund_on_unpaid_payment_rejected(self, store):
        await seed(store, status=S.FAILED)
        result = await WebhookReconciler(store).record_refund("R1", 5.00)

        assert result.outcome == ReconcileOutcome.REJECTED_TERMINAL
        assert (await store.get_payment_record("R1")).refunded_amount == 0

    @pytest.mark.asyncio
    async def test_refund_write_requires_unchanged_total(self, store):
        await seed(store, status=S.SUCCEEDED, paid_amount=19.00, refunded_amount=5.00)

        moved = await store.transition_status(
            "R1", S.SUCCEEDED, S.SUCCEEDED, match={"refunded_amount": 0.0}, refunded_amount=5.00
        )

        assert not moved
        assert (await store.get_payment_record("R1")).refunded_amount == pytest.approx(5.00)

    @pytest.mark.asyncio
    async def test_concurrent_partial_refunds_both_count(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'refunds.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        try:
            async with session_factory() as first, session_factory() as second:
                await seed(SqlPaymentStore(first), status=S.SUCCEEDED, paid_amount=19.00)
                results = await asyncio.gather(
                    WebhookReconciler(SqlPaymentStore(first)).record_refund("R1", 5.00),
                    WebhookReconciler(SqlPaymentStore(second)).record_refund("R1", 5.00),
                )
            async with session_factory() as fresh:
                record = await SqlPaymentStore(fresh).get_payment_record("R1")
        finally:
            await engine.dispose()

        assert [r.outcome for r in results] == [ReconcileOutcome.APPLIED, ReconcileOutcome.APPLIED]
        assert record.status == "succeeded"
        assert record.refunded_amount == pytest.approx(10.00)
