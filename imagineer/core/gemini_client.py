from typing import Any, Dict, List, Optional, Union

from google import genai
from google.genai import errors, types

from imagineer.core.base_llm_client import classify_http_failure
from imagineer.core.exceptions import APIClientError
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)


class GeminiClient:
    """Wrapper for Google Gemini API client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: int = 60,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key
            model: Model name to use
            timeout: Request timeout in seconds (kept for interface consistency)
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

        try:
            self.client = genai.Client(api_key=self.api_key)
            LOGGER.info(f"Initialized Gemini client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", original_error=e)

    def build_config(
        self,
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> types.GenerateContentConfig:
        config = types.GenerateContentConfig(temperature=0.0)
        if generation_config:
            if "temperature" in generation_config:
                config.temperature = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                config.max_output_tokens = generation_config["max_output_tokens"]
            if "response_mime_type" in generation_config:
                config.response_mime_type = generation_config["response_mime_type"]
        if system_instruction:
            config.system_instruction = system_instruction
        return config

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using Gemini model.

        Raises:
            APIClientError: If generation fails (classified subclass)
        """
        config = self.build_config(system_instruction, generation_config)

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
        except errors.APIError as e:
            LOGGER.warning(f"Gemini API error: {e}", extra={"status_code": e.code})
            raise classify_http_failure("gemini", e.code, str(e.message or e), original_error=e) from e

        if not response.text:
            LOGGER.warning("Empty response from Gemini")
            return ""
        return response.text
