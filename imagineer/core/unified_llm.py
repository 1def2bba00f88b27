"""Unified LLM client factory.

Provides one completion interface over Gemini, OpenRouter and Ollama. Every
call goes through a RetryPolicy, so callers see either a result, a
QuotaExceededError (never retried), or the last error once retries run out.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from imagineer.core.gemini_client import GeminiClient
from imagineer.core.ollama_client import OllamaClient
from imagineer.core.openrouter_client import OpenRouterClient
from imagineer.core.retry import RetryPolicy
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"


class UnifiedLLMClient:
    """Provider-agnostic completion client with retry handling."""

    def __init__(
        self,
        provider: Union[str, LLMProvider],
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: int = 60,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize unified LLM client.

        Args:
            provider: LLM provider to use ("gemini", "openrouter", or "ollama")
            api_key: API key for the provider (unused for Ollama)
            model: Model name to use
            base_url: Optional base URL (for OpenRouter or Ollama)
            timeout: Request timeout in seconds
            retry_policy: Backoff policy; defaults to 3 retries from 1s
        """
        self.provider = LLMProvider(provider)
        self.model = model
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

        if self.provider == LLMProvider.GEMINI:
            self.client = GeminiClient(api_key=api_key, model=model, timeout=timeout)
        elif self.provider == LLMProvider.OPENROUTER:
            self.client = OpenRouterClient(
                api_key=api_key,
                model=model,
                base_url=base_url or "https://openrouter.ai/api/v1/chat/completions",
                timeout=timeout,
            )
        else:
            self.client = OllamaClient(
                model=model,
                base_url=base_url or "http://localhost:11434",
                timeout=timeout,
            )

        LOGGER.info(f"Initialized unified LLM with {self.provider.value} provider (model: {model})")

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the configured provider.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature,
                max_output_tokens, response_mime_type)

        Returns:
            Generated text response

        Raises:
            QuotaExceededError: On the first attempt that reports quota exhaustion
            APIClientError: On other failures, after retries where applicable
        """
        async def attempt() -> str:
            return await self.client.generate_content(
                contents=contents,
                system_instruction=system_instruction,
                generation_config=generation_config,
            )

        return await self.retry_policy.run(attempt)


def create_llm_client_from_settings(
    provider: str,
    gemini_api_key: str = "",
    gemini_model: str = "gemini-2.0-flash",
    openrouter_api_key: str = "",
    openrouter_api_url: str = "https://openrouter.ai/api/v1/chat/completions",
    openrouter_model: str = "anthropic/claude-3.5-haiku",
    ollama_api_url: str = "http://localhost:11434",
    ollama_model: str = "llama3.1:8b",
    timeout: int = 90,
    max_retries: int = 3,
    retry_base_delay: float = 1.0,
) -> UnifiedLLMClient:
    """Create a unified LLM client from configuration settings.

    Selects the API key, model and base URL that match the provider.

    Raises:
        ValueError: If the required API key is missing for the selected provider
    """
    provider_enum = LLMProvider(provider.lower())
    policy = RetryPolicy(max_retries=max_retries, base_delay=retry_base_delay)

    if provider_enum == LLMProvider.GEMINI:
        if not gemini_api_key.strip():
            raise ValueError(
                "gemini_api_key required when provider='gemini'. "
                "Please set GEMINI_API_KEY environment variable."
            )
        return UnifiedLLMClient(
            provider=provider_enum,
            api_key=gemini_api_key.strip(),
            model=gemini_model,
            timeout=timeout,
            retry_policy=policy,
        )

    if provider_enum == LLMProvider.OPENROUTER:
        if not openrouter_api_key.strip():
            raise ValueError(
                "openrouter_api_key required when provider='openrouter'. "
                "Please set OPENROUTER_API_KEY environment variable."
            )
        return UnifiedLLMClient(
            provider=provider_enum,
            api_key=openrouter_api_key.strip(),
            model=openrouter_model,
            base_url=openrouter_api_url,
            timeout=timeout,
            retry_policy=policy,
        )

    return UnifiedLLMClient(
        provider=provider_enum,
        api_key="",
        model=ollama_model,
        base_url=ollama_api_url,
        timeout=timeout,
        retry_policy=policy,
    )


def get_llm_client() -> UnifiedLLMClient:
    """Build a client from the global settings."""
    from imagineer.core.config import settings

    llm = settings.llm
    return create_llm_client_from_settings(
        provider=llm.provider,
        gemini_api_key=llm.gemini_api_key,
        gemini_model=llm.gemini_model,
        openrouter_api_key=llm.openrouter_api_key,
        openrouter_api_url=llm.openrouter_api_url,
        openrouter_model=llm.openrouter_model,
        ollama_api_url=llm.ollama_api_url,
        ollama_model=llm.ollama_model,
        timeout=llm.timeout,
        max_retries=llm.max_retries,
        retry_base_delay=llm.retry_base_delay,
    )
