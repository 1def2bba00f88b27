"""Test unified LLM client functionality."""

import pytest
from unittest.mock import AsyncMock

from imagineer.core.base_llm_client import classify_http_failure
from imagineer.core.exceptions import (
    APIClientError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
)
from imagineer.core.retry import RetryPolicy
from imagineer.core.unified_llm import LLMProvider, UnifiedLLMClient, create_llm_client_from_settings


def _no_sleep_policy(max_retries=3):
    sleep = AsyncMock()
    return RetryPolicy(max_retries=max_retries, base_delay=1.0, sleep=sleep), sleep


def test_unified_llm_with_gemini():
    """Test unified LLM client with Gemini provider."""
    client = UnifiedLLMClient(
        provider="gemini",
        api_key="test_gemini_key",
        model="gemini-2.0-flash",
        timeout=60,
    )

    assert client.provider == LLMProvider.GEMINI
    assert client.retry_policy.max_retries == 3


def test_unified_llm_with_openrouter():
    """Test unified LLM client with OpenRouter provider."""
    client = UnifiedLLMClient(
        provider="openrouter",
        api_key="test_openrouter_key",
        model="anthropic/claude-3.5-haiku",
        base_url="https://openrouter.ai/api/v1/chat/completions",
        timeout=60,
    )

    assert client.provider == LLMProvider.OPENROUTER
    assert client.model == "anthropic/claude-3.5-haiku"


def test_create_client_requires_key_for_hosted_providers():
    with pytest.raises(ValueError, match="OPENROUTER_API_KEY"):
        create_llm_client_from_settings(provider="openrouter", openrouter_api_key="  ")

    with pytest.raises(ValueError, match="GEMINI_API_KEY"):
        create_llm_client_from_settings(provider="gemini")


def test_create_client_for_ollama_needs_no_key():
    client = create_llm_client_from_settings(provider="ollama", max_retries=1, retry_base_delay=0.5)

    assert client.provider == LLMProvider.OLLAMA
    assert client.retry_policy.max_retries == 1
    assert client.retry_policy.base_delay == 0.5


@pytest.mark.asyncio
async def test_quota_error_is_raised_after_a_single_attempt():
    """Quota exhaustion must never be retried."""
    policy, sleep = _no_sleep_policy()
    client = UnifiedLLMClient(provider="openrouter", api_key="k", model="m", retry_policy=policy)
    client.client.generate_content = AsyncMock(
        side_effect=QuotaExceededError("openrouter", "insufficient credits", status_code=402)
    )

    with pytest.raises(QuotaExceededError) as exc_info:
        await client.generate_content("hello", system_instruction="sys")

    assert client.client.generate_content.await_count == 1
    sleep.assert_not_awaited()
    assert exc_info.value.provider == "openrouter"


@pytest.mark.asyncio
async def test_rate_limit_is_retried_until_attempts_run_out():
    """A 429 without quota language gets the first attempt plus three retries."""
    policy, sleep = _no_sleep_policy()
    client = UnifiedLLMClient(provider="openrouter", api_key="k", model="m", retry_policy=policy)
    client.client.generate_content = AsyncMock(
        side_effect=RateLimitError("openrouter rate limited", status_code=429)
    )

    with pytest.raises(RateLimitError):
        await client.generate_content("hello")

    assert client.client.generate_content.await_count == 4
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_transient_failure_then_success():
    policy, sleep = _no_sleep_policy()
    client = UnifiedLLMClient(provider="openrouter", api_key="k", model="m", retry_policy=policy)
    client.client.generate_content = AsyncMock(
        side_effect=[ServiceUnavailableError("down", status_code=503), '{"ok": true}']
    )

    result = await client.generate_content("hello")

    assert result == '{"ok": true}'
    assert client.client.generate_content.await_count == 2
    sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_other_client_errors_are_not_retried():
    policy, sleep = _no_sleep_policy()
    client = UnifiedLLMClient(provider="openrouter", api_key="k", model="m", retry_policy=policy)
    client.client.generate_content = AsyncMock(side_effect=APIClientError("bad request", status_code=400))

    with pytest.raises(APIClientError):
        await client.generate_content("hello")

    assert client.client.generate_content.await_count == 1
    sleep.assert_not_awaited()


class TestClassifyHttpFailure:
    def test_payment_required_is_quota(self):
        error = classify_http_failure("openrouter", 402, "Payment required")
        assert isinstance(error, QuotaExceededError)
        assert error.status_code == 402

    @pytest.mark.parametrize("body", [
        '{"error": {"code": "insufficient_quota"}}',
        "You exceeded your current quota, please check your plan and billing details.",
        "Insufficient credits remaining",
    ])
    def test_429_with_quota_language_is_quota(self, body):
        assert isinstance(classify_http_failure("openrouter", 429, body), QuotaExceededError)

    def test_plain_429_is_rate_limit(self):
        error = classify_http_failure("openrouter", 429, "Too many requests, slow down")
        assert isinstance(error, RateLimitError)
        assert not isinstance(error, QuotaExceededError)

    def test_503_is_service_unavailable(self):
        assert isinstance(classify_http_failure("gemini", 503, "overloaded"), ServiceUnavailableError)

    def test_anything_else_is_generic_client_error(self):
        error = classify_http_failure("gemini", 500, "boom")
        assert type(error) is APIClientError
        assert "500" in error.message
