"""Tests for retry with exponential backoff."""

from __future__ import annotations

import pytest

from ssocli.client.retry import call_with_retry, is_retryable
from ssocli.exceptions import APIError, AuthError, ConnectionError_, OAuthAPIError


class TestIsRetryable:
    def test_classification(self) -> None:
        assert is_retryable(ConnectionError_("down"))
        assert is_retryable(APIError("boom", status_code=500))
        assert is_retryable(OAuthAPIError("server_error", status_code=503))
        assert not is_retryable(OAuthAPIError("authorization_pending", status_code=400))
        assert not is_retryable(APIError("empty", status_code=200))
        assert not is_retryable(AuthError("nope"))


class TestCallWithRetry:
    def test_returns_first_success(self) -> None:
        sleeps: list[float] = []
        assert call_with_retry(lambda: 42, "Op", sleep=sleeps.append) == 42
        assert sleeps == []

    def test_backoff_doubles(self) -> None:
        attempts: list[int] = []
        sleeps: list[float] = []

        def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 4:
                raise ConnectionError_("down")
            return "ok"

        assert call_with_retry(flaky, "Op", max_attempts=4, sleep=sleeps.append) == "ok"
        assert sleeps == [1, 2, 4]

    def test_client_errors_raise_immediately(self) -> None:
        sleeps: list[float] = []

        def rejected() -> None:
            raise OAuthAPIError("invalid_client", status_code=401)

        with pytest.raises(OAuthAPIError):
            call_with_retry(rejected, "Op", sleep=sleeps.append)
        assert sleeps == []

    def test_last_error_is_raised(self) -> None:
        errors = iter([ConnectionError_("first"), ConnectionError_("second")])

        def failing() -> None:
            raise next(errors)

        with pytest.raises(ConnectionError_, match="second"):
            call_with_retry(failing, "Op", max_attempts=2, sleep=lambda s: None)
