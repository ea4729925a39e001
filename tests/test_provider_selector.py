"""Tests for provider selection and status handle inference."""

import pytest

from paygate.errors import NoProviderAvailable
from paygate.models.enums import ProviderId
from paygate.routing.provider_selector import infer_provider, select_provider

PAYNOW = ProviderId.PAYNOW
STRIPE = ProviderId.STRIPE


class TestSelectProvider:
    def test_preferred_wins_when_enabled(self):
        decision = select_provider({PAYNOW, STRIPE}, primary=PAYNOW, fallback=STRIPE, preferred=STRIPE)
        assert decision.provider == STRIPE
        assert decision.reason == "preferred"
        assert not decision.is_primary

    def test_disabled_preference_falls_to_primary(self):
        decision = select_provider({PAYNOW}, primary=PAYNOW, fallback=STRIPE, preferred=STRIPE)
        assert decision.provider == PAYNOW
        assert decision.is_primary

    def test_primary_without_preference(self):
        decision = select_provider({PAYNOW, STRIPE}, primary=STRIPE, fallback=PAYNOW)
        assert decision.provider == STRIPE
        assert decision.reason == "primary"

    def test_fallback_when_primary_disabled(self):
        decision = select_provider({STRIPE}, primary=PAYNOW, fallback=STRIPE)
        assert decision.provider == STRIPE
        assert decision.reason == "fallback"

    def test_any_enabled_as_last_resort(self):
        decision = select_provider({STRIPE}, primary=PAYNOW, fallback=PAYNOW)
        assert decision.provider == STRIPE
        assert decision.reason == "any"

    def test_nothing_enabled_raises(self):
        with pytest.raises(NoProviderAvailable):
            select_provider(set(), primary=PAYNOW, fallback=STRIPE)


class TestInferProvider:
    def test_paynow_poll_url(self):
        url = "https://www.paynow.co.zw/Interface/CheckPayment/?guid=abc"
        assert infer_provider(url) == PAYNOW

    @pytest.mark.parametrize("handle", ["pi_3Nabc", "cs_test_a1b2", "ch_1Q", "sub_9X"])
    def test_stripe_prefixes(self, handle):
        assert infer_provider(handle) == STRIPE

    @pytest.mark.parametrize("handle", ["", None, "ORG-42-1718035200123-ABCDEF", "12345"])
    def test_unrecognised_handles(self, handle):
        assert infer_provider(handle) is None
