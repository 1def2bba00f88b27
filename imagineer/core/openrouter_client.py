"""OpenRouter LLM client implementation."""

from typing import Any, Dict, List, Optional, Union

from imagineer.core.base_llm_client import BaseLLMClient, flatten_contents
from imagineer.core.exceptions import APIClientError
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


class OpenRouterClient:
    """OpenRouter chat-completions client.

    One call, one HTTP request; failures surface as classified APIClientError
    subclasses from BaseLLMClient.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "anthropic/claude-3.5-haiku",
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        timeout: int = 60,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout

        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            provider="openrouter",
            timeout=timeout,
        )

        LOGGER.info(f"Initialized OpenRouter client with model {self.model}")

    def build_payload(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Translate the provider-neutral request into an OpenRouter payload."""
        messages = []
        system_text = system_instruction or ""
        config = generation_config or {}

        if config.get("response_mime_type") == "application/json":
            json_hint = "Respond with valid JSON only."
            system_text = f"{system_text}\n\nIMPORTANT: {json_hint}" if system_text else json_hint

        if system_text:
            messages.append({"role": "system", "content": system_text})
        messages.append({"role": "user", "content": flatten_contents(contents)})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": config.get("temperature", 0.0),
        }
        if "max_output_tokens" in config:
            payload["max_tokens"] = config["max_output_tokens"]
        return payload

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the configured OpenRouter model.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature, etc.)

        Returns:
            Generated text response

        Raises:
            APIClientError: If generation fails (classified subclass)
        """
        payload = self.build_payload(contents, system_instruction, generation_config)
        response = await self.client.call_api(payload=payload)

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:300]}")
            raise APIClientError("Invalid response format from OpenRouter")

        content = (choices[0].get("message") or {}).get("content") or ""
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
        return content
