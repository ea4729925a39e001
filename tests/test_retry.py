"""Tests for transport-level retry with exponential backoff."""

import pytest

from paygate.engine.retry import (
    ProviderError,
    ProviderRejected,
    RateLimitError,
    TransportError,
    error_for_status,
    with_retry,
)


class Flaky:
    def __init__(self, failures: list[Exception], result: str = "ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestErrorForStatus:
    def test_rate_limit(self):
        error = error_for_status(429, "slow down", retry_after=2.0)
        assert isinstance(error, RateLimitError)
        assert error.retry_after == 2.0

    @pytest.mark.parametrize("code", [500, 502, 503, 504])
    def test_server_errors_are_transport(self, code):
        error = error_for_status(code, "boom")
        assert isinstance(error, TransportError)
        assert error.retriable

    @pytest.mark.parametrize("code", [400, 401, 402, 404])
    def test_client_errors_are_rejections(self, code):
        error = error_for_status(code, "declined")
        assert isinstance(error, ProviderRejected)
        assert not error.retriable
        assert str(error) == "declined"


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_recovers_from_transient_failure(self):
        func = Flaky([TransportError("reset")])
        assert await with_retry(func, base_delay=0) == "ok"
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_rejection_not_retried(self):
        func = Flaky([ProviderRejected("card declined")])
        with pytest.raises(ProviderRejected):
            await with_retry(func, base_delay=0)
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        func = Flaky([TransportError("down")] * 5)
        with pytest.raises(TransportError):
            await with_retry(func, max_retries=2, base_delay=0)
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self):
        func = Flaky([TransportError("down")])
        with pytest.raises(ProviderError):
            await with_retry(func, max_retries=0, base_delay=0)
        assert func.calls == 1
