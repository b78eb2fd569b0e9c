"""Tests for the retry decorator."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from areaflow.errors import MaxRetriesError
from areaflow.utils.retry import RetryConfig, is_retryable_error, with_retry


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class TestIsRetryable:
    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, status):
        assert is_retryable_error(StatusError(status))

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_errors_not_retried(self, status):
        assert not is_retryable_error(StatusError(status))

    def test_connection_error(self):
        assert is_retryable_error(requests.ConnectionError("reset"))

    def test_google_style_resp_status(self):
        exc = Exception("boom")
        exc.resp = MagicMock(status=503)
        assert is_retryable_error(exc)

    def test_plain_error(self):
        assert not is_retryable_error(ValueError("bad"))


class TestWithRetry:
    @pytest.fixture(autouse=True)
    def no_sleep(self):
        with patch("areaflow.utils.retry.time.sleep") as sleep:
            yield sleep

    def test_succeeds_after_transient_failures(self, no_sleep):
        calls = MagicMock(side_effect=[StatusError(503), StatusError(429), "ok"])

        @with_retry(max_retries=2)
        def call():
            return calls()

        assert call() == "ok"
        assert calls.call_count == 3
        assert no_sleep.call_count == 2

    def test_gives_up(self):
        @with_retry(max_retries=1)
        def call():
            raise StatusError(500)

        with pytest.raises(MaxRetriesError) as exc_info:
            call()
        assert exc_info.value.attempts == 2

    def test_non_retryable_raised_immediately(self, no_sleep):
        @with_retry(max_retries=3)
        def call():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            call()
        no_sleep.assert_not_called()

    def test_on_retry_callback(self):
        seen = []
        calls = MagicMock(side_effect=[TimeoutError("slow"), "ok"])

        @with_retry(max_retries=1, on_retry=lambda exc, attempt: seen.append(attempt))
        def call():
            return calls()

        call()
        assert seen == [0]


def test_delay_is_capped():
    config = RetryConfig(base_delay=1.0, max_delay=4.0, jitter=False)
    assert [config.calculate_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 4.0]
