"""Unit tests for retry policy classification and backoff."""

import random

import httpx
import pytest

from fetchkit.exceptions import (
    ConfigurationError,
    DecodingFailedError,
    InvalidResponseError,
    RequestFailedError,
    StatusCodeError,
)
from fetchkit.utils.http import RetryController, RetryPolicy, TransportErrorCode


def _status(code):
    return StatusCodeError(code, b"", httpx.Headers())


def _transport(code):
    return RequestFailedError(OSError("boom"), code)


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.enabled is False
        assert policy.max_retries == 2
        assert policy.initial_backoff == 0.2
        assert policy.backoff_multiplier == 2.0
        assert policy.jitter is None
        assert policy.retryable_status_codes == {429, 500, 502, 503, 504}

    def test_presets(self):
        interactive = RetryPolicy.for_interactive()
        assert interactive.enabled
        assert interactive.max_retries == 2
        assert interactive.jitter == (0.8, 1.2)

        batch = RetryPolicy.for_batch()
        assert batch.enabled
        assert batch.max_retries == 5
        assert batch.initial_backoff == 1.0

    def test_negative_max_retries_rejected(self):
        with pytest.raises(ConfigurationError):
            RetryPolicy(max_retries=-1)

    def test_empty_jitter_range_rejected(self):
        with pytest.raises(ConfigurationError):
            RetryPolicy(jitter=(1.5, 0.5))

    def test_error_codes_accept_strings(self):
        policy = RetryPolicy(retryable_error_codes={"timed_out"})
        assert policy.retryable_error_codes == {TransportErrorCode.TIMED_OUT}

    @pytest.mark.parametrize("code", [429, 500, 502, 503, 504])
    def test_retryable_status(self, code):
        assert RetryPolicy().is_retryable(_status(code))

    @pytest.mark.parametrize("code", [400, 401, 404, 501])
    def test_non_retryable_status(self, code):
        assert not RetryPolicy().is_retryable(_status(code))

    def test_transport_codes(self):
        policy = RetryPolicy()
        assert policy.is_retryable(_transport(TransportErrorCode.TIMED_OUT))
        assert policy.is_retryable(_transport(TransportErrorCode.DNS_LOOKUP_FAILED))
        assert not policy.is_retryable(_transport(TransportErrorCode.UNKNOWN))
        assert not policy.is_retryable(
            _transport(TransportErrorCode.TOO_MANY_REDIRECTS)
        )

    def test_other_kinds_never_retryable(self):
        policy = RetryPolicy()
        assert not policy.is_retryable(InvalidResponseError())
        assert not policy.is_retryable(DecodingFailedError(ValueError("x")))

    def test_backoff_grows_exponentially(self):
        policy = RetryPolicy(initial_backoff=0.5, backoff_multiplier=3.0)
        assert policy.backoff_delay(1) == 0.5
        assert policy.backoff_delay(2) == 1.5
        assert policy.backoff_delay(3) == 4.5

    def test_jitter_stays_in_range(self):
        policy = RetryPolicy(initial_backoff=1.0, jitter=(0.8, 1.2))
        rng = random.Random(42)
        for _ in range(50):
            assert 0.8 <= policy.backoff_delay(1, rng) <= 1.2


class TestRetryController:
    def test_disabled_never_retries(self):
        controller = RetryController(RetryPolicy(enabled=False))
        assert not controller.should_retry(_status(503))

    def test_stops_at_max_retries(self):
        controller = RetryController(RetryPolicy(enabled=True, max_retries=1))
        assert controller.should_retry(_status(503))
        controller.retries = 1
        assert not controller.should_retry(_status(503))

    def test_predicate_overrides_classification(self):
        seen = []

        def predicate(error, retries):
            seen.append((error.code, retries))
            return isinstance(error, StatusCodeError) and error.status_code == 404

        controller = RetryController(
            RetryPolicy(enabled=True, max_retries=3, should_retry=predicate)
        )
        assert controller.should_retry(_status(404))
        assert not controller.should_retry(_status(503))
        assert seen == [("STATUS_CODE", 0), ("STATUS_CODE", 0)]

    def test_predicate_still_bounded_by_max_retries(self):
        controller = RetryController(
            RetryPolicy(enabled=True, max_retries=0, should_retry=lambda e, n: True)
        )
        assert not controller.should_retry(_status(503))

    @pytest.mark.asyncio
    async def test_backoff_sleeps_and_counts(self, recording_sleep):
        controller = RetryController(
            RetryPolicy(enabled=True, initial_backoff=0.1, backoff_multiplier=2.0),
            sleep=recording_sleep,
        )
        assert await controller.backoff() == pytest.approx(0.1)
        assert await controller.backoff() == pytest.approx(0.2)
        assert controller.retries == 2
        assert recording_sleep.delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_zero_backoff_skips_sleep(self, recording_sleep):
        controller = RetryController(
            RetryPolicy(enabled=True, initial_backoff=0.0), sleep=recording_sleep
        )
        await controller.backoff()
        assert controller.retries == 1
        assert recording_sleep.delays == []
