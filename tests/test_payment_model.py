"""Tests for the normalized payment model, fees and references."""

import re

import pytest

from paygate.engine.fees import calculate_fees
from paygate.engine.references import generate_payment_reference
from paygate.models.enums import MobileMethod, ProviderId, UniversalStatus
from paygate.providers.base import (
    MobilePaymentRequest,
    PaymentItem,
    PaymentRequest,
    PaymentStatus,
    RawWebhook,
    calculate_total,
)


class TestAmounts:
    def test_total_is_derived_from_items(self):
        request = PaymentRequest(
            reference="R1",
            payer_email="a@example.com",
            items=[PaymentItem("Seat", 7.50, quantity=2), PaymentItem("Setup", 4.00)],
            currency="usd",
        )
        assert request.total_amount == pytest.approx(19.00)
        assert request.currency == "USD"

    def test_calculate_total(self):
        assert calculate_total([PaymentItem("A", 1.25, 4)]) == pytest.approx(5.00)

    def test_empty_items_rejected(self):
        with pytest.raises(ValueError):
            PaymentRequest(reference="R1", payer_email="a@example.com", items=[], currency="USD")

    def test_negative_unit_amount_rejected(self):
        with pytest.raises(ValueError):
            PaymentItem("Bad", -1.0)

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValueError):
            PaymentItem("Bad", 1.0, quantity=0)

    def test_mobile_method_coerced(self):
        request = MobilePaymentRequest(
            reference="M1",
            payer_email="a@example.com",
            items=[PaymentItem("A", 1.0)],
            currency="USD",
            phone_number="0771234567",
            mobile_method="onemoney",
        )
        assert request.mobile_method is MobileMethod.ONEMONEY


class TestPaymentStatus:
    def test_paid_derived_from_status(self):
        status = PaymentStatus("R1", "T1", ProviderId.STRIPE, UniversalStatus.SUCCEEDED, 19.0, "USD")
        assert status.paid
        status.status = UniversalStatus.REFUNDED
        assert not status.paid


class TestRawWebhook:
    def test_header_lookup_is_case_insensitive(self):
        raw = RawWebhook(body=b"{}", headers={"stripe-signature": "t=1,v1=abc"})
        assert raw.header("Stripe-Signature") == "t=1,v1=abc"
        assert raw.header("X-Missing") is None


class TestFees:
    def test_paynow_fee(self):
        assert calculate_fees(100, ProviderId.PAYNOW) == pytest.approx(4.00)

    def test_stripe_fee(self):
        assert calculate_fees(100, ProviderId.STRIPE) == pytest.approx(3.20)

    def test_minimum_applies(self):
        assert calculate_fees(0, ProviderId.PAYNOW) == pytest.approx(0.50)
        assert calculate_fees(0, ProviderId.STRIPE) == pytest.approx(0.30)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            calculate_fees(-1, ProviderId.STRIPE)


class TestReferences:
    def test_format(self):
        reference = generate_payment_reference("ORG-42")
        assert re.fullmatch(r"ORG-42-\d{13}-[A-Z0-9]{6}", reference)

    def test_default_prefix(self):
        assert generate_payment_reference().startswith("PAY-")

    def test_unique(self):
        assert len({generate_payment_reference() for _ in range(200)}) == 200
