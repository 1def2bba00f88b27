"""Ollama LLM client implementation."""

from typing import Any, Dict, List, Optional, Union

import httpx
import ollama

from imagineer.core.base_llm_client import classify_http_failure, flatten_contents
from imagineer.core.exceptions import APIClientError, APITimeoutError
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

JSON_ONLY_INSTRUCTION = (
    "Respond with valid JSON only. Do not include markdown code blocks, "
    "explanatory text, or anything outside the JSON object."
)


def normalize_host(base_url: str) -> str:
    """Strip scheme and trailing paths; the Ollama client expects host:port."""
    host = base_url
    for scheme in ("http://", "https://"):
        if host.startswith(scheme):
            host = host[len(scheme):]
    return host.split("/")[0]


class OllamaClient:
    """Wrapper for a local Ollama server."""

    def __init__(
        self,
        model: str = "llama3.1:8b",
        base_url: str = "http://localhost:11434",
        timeout: int = 60,
    ):
        self.model = model
        self.base_url = base_url
        self.timeout = timeout

        host = normalize_host(base_url)
        self.client = ollama.AsyncClient(host=host, timeout=timeout)
        LOGGER.info(f"Initialized Ollama client with model {self.model} at {host} (timeout: {timeout}s)")

    def build_request(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        config = generation_config or {}
        system_text = system_instruction or ""
        format_param = None

        if config.get("response_mime_type") == "application/json":
            format_param = "json"
            system_text = f"{system_text}\n\nIMPORTANT: {JSON_ONLY_INSTRUCTION}" if system_text else JSON_ONLY_INSTRUCTION

        messages = []
        if system_text:
            messages.append({"role": "system", "content": system_text})
        messages.append({"role": "user", "content": flatten_contents(contents)})

        options = {"temperature": config.get("temperature", 0.0)}
        if "max_output_tokens" in config:
            options["num_predict"] = config["max_output_tokens"]

        return {"model": self.model, "messages": messages, "options": options, "format": format_param}

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the local Ollama model.

        Raises:
            APIClientError: If generation fails (classified subclass)
        """
        request = self.build_request(contents, system_instruction, generation_config)

        try:
            response = await self.client.chat(**request)
        except ollama.ResponseError as e:
            LOGGER.warning(f"Ollama API error: {e.error}", extra={"status_code": e.status_code})
            raise classify_http_failure("ollama", e.status_code, e.error, original_error=e) from e
        except httpx.TimeoutException as e:
            raise APITimeoutError("ollama request timed out", original_error=e) from e
        except httpx.HTTPError as e:
            raise APIClientError(f"ollama transport error: {e}", original_error=e) from e

        content = response["message"]["content"] or ""
        if not content:
            LOGGER.warning("Empty response from Ollama")
        return content
