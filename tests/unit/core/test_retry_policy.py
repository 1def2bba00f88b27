"""Tests for the completion retry policy."""

from unittest.mock import AsyncMock

import pytest

from imagineer.core.exceptions import (
    APIClientError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
)
from imagineer.core.retry import RetryPolicy


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.mark.asyncio
async def test_rate_limit_exhausts_all_attempts(sleep):
    operation = AsyncMock(side_effect=RateLimitError("slow down", status_code=429))

    with pytest.raises(RateLimitError):
        await RetryPolicy(max_retries=3, base_delay=1.0, sleep=sleep).run(operation)

    assert operation.await_count == 4
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_quota_fails_on_first_attempt(sleep):
    operation = AsyncMock(side_effect=QuotaExceededError("gemini", "billing"))

    with pytest.raises(QuotaExceededError):
        await RetryPolicy(sleep=sleep).run(operation)

    assert operation.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_recovers_after_unavailable(sleep):
    operation = AsyncMock(side_effect=[ServiceUnavailableError("down", status_code=503), "ok"])

    assert await RetryPolicy(base_delay=0.5, sleep=sleep).run(operation) == "ok"
    sleep.assert_awaited_once_with(0.5)


@pytest.mark.asyncio
async def test_other_client_errors_are_not_retried(sleep):
    operation = AsyncMock(side_effect=APIClientError("bad request", status_code=400))

    with pytest.raises(APIClientError):
        await RetryPolicy(sleep=sleep).run(operation)

    assert operation.await_count == 1


def test_zero_retries_means_one_attempt():
    assert RetryPolicy(max_retries=0).max_attempts == 1
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
