"""Tests for pre-flight currency and channel checks."""

from paygate.engine.eligibility import check_eligibility
from paygate.models.enums import FailureReason, MobileMethod

STRIPE_CURRENCIES = {"USD", "EUR", "GBP", "ZAR"}
PAYNOW_CURRENCIES = {"USD", "ZWL"}
PAYNOW_CHANNELS = {MobileMethod.ECOCASH, MobileMethod.ONEMONEY}


class TestEligibility:
    def test_supported_currency(self):
        result = check_eligibility("Stripe", "EUR", STRIPE_CURRENCIES)
        assert result.eligible is True
        assert result.failure_reason is None

    def test_currency_is_case_insensitive(self):
        assert check_eligibility("Paynow", "zwl", PAYNOW_CURRENCIES).eligible

    def test_supported_mobile_channel(self):
        result = check_eligibility("Paynow", "USD", PAYNOW_CURRENCIES, MobileMethod.ONEMONEY, PAYNOW_CHANNELS)
        assert result.eligible is True


class TestFailureReasons:
    def test_unsupported_currency(self):
        result = check_eligibility("Stripe", "ZWL", STRIPE_CURRENCIES)
        assert not result.eligible
        assert result.failure_reason == FailureReason.UNSUPPORTED_CURRENCY
        assert "ZWL" in result.message

    def test_missing_currency(self):
        result = check_eligibility("Stripe", None, STRIPE_CURRENCIES)
        assert result.failure_reason == FailureReason.UNSUPPORTED_CURRENCY

    def test_unsupported_channel(self):
        result = check_eligibility("Paynow", "USD", PAYNOW_CURRENCIES, MobileMethod.ECOCASH, {MobileMethod.ONEMONEY})
        assert not result.eligible
        assert result.failure_reason == FailureReason.UNSUPPORTED_CHANNEL
        assert "ecocash" in result.message

    def test_channel_without_any_mobile_support(self):
        result = check_eligibility("Stripe", "USD", STRIPE_CURRENCIES, MobileMethod.ECOCASH, None)
        assert result.failure_reason == FailureReason.UNSUPPORTED_CHANNEL

    def test_currency_checked_before_channel(self):
        result = check_eligibility("Paynow", "EUR", PAYNOW_CURRENCIES, MobileMethod.ECOCASH, set())
        assert result.failure_reason == FailureReason.UNSUPPORTED_CURRENCY
