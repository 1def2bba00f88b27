from typing import Any, Dict, List, Optional, Union

import httpx
from httpx import HTTPStatusError, TimeoutException

from imagineer.core.exceptions import (
    APIClientError,
    APITimeoutError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
)
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Phrases providers put in 429 bodies when the account itself is out of allowance
QUOTA_MARKERS = ("quota", "billing", "insufficient_quota", "credit")


def classify_http_failure(
    provider: str,
    status_code: Optional[int],
    body: str = "",
    original_error: Optional[Exception] = None,
) -> APIClientError:
    """Map a provider HTTP failure onto the completion error taxonomy.

    Args:
        provider: Provider name used in error messages
        status_code: HTTP status returned by the provider (None if unknown)
        body: Response body or error message text
        original_error: Underlying exception to chain

    Returns:
        QuotaExceededError for 402, or 429 with quota language;
        RateLimitError for other 429s; ServiceUnavailableError for 503;
        APIClientError for everything else.
    """
    text = body or ""
    lowered = text.lower()

    if status_code == 402 or (
        status_code == 429 and any(marker in lowered for marker in QUOTA_MARKERS)
    ):
        return QuotaExceededError(
            provider, text[:500] or "usage allowance exhausted",
            original_error=original_error, status_code=status_code,
        )
    if status_code == 429:
        return RateLimitError(
            f"{provider} rate limited: {text[:500]}",
            original_error=original_error, status_code=status_code,
        )
    if status_code == 503:
        return ServiceUnavailableError(
            f"{provider} unavailable: {text[:500]}",
            original_error=original_error, status_code=status_code,
        )
    return APIClientError(
        f"{provider} API error {status_code}: {text[:500]}",
        original_error=original_error, status_code=status_code,
    )


class BaseLLMClient:
    """Base client for HTTP-based LLM APIs.

    Performs exactly one request per call and converts failures into typed
    errors; retrying is the caller's concern (see RetryPolicy).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        provider: str = "openrouter",
        timeout: int = 60,
    ):
        """Initialize the LLM client.

        Args:
            api_key: API key for authentication
            base_url: Base URL for the API
            provider: Provider name used when classifying failures
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url
        self.provider = provider
        self.timeout = timeout
        self.logger = LOGGER

    async def call_api(
        self,
        endpoint: str = "",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload and return the parsed JSON response.

        Args:
            endpoint: API endpoint (appended to base_url)
            payload: JSON payload
            headers: Additional headers

        Returns:
            Parsed JSON response

        Raises:
            QuotaExceededError | RateLimitError | ServiceUnavailableError |
            APIClientError: On HTTP failures, classified by status and body
            APITimeoutError: If the request times out
        """
        url = f"{self.base_url}{endpoint}" if endpoint else self.base_url

        default_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            default_headers.update(headers)

        self.logger.debug(f"Calling LLM API: {url}", extra={"timeout": self.timeout})

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=default_headers, json=payload)
                response.raise_for_status()
                return response.json()
        except HTTPStatusError as e:
            raise self._handle_http_error(e, url) from e
        except TimeoutException as e:
            self.logger.warning("API Timeout", extra={"url": url})
            raise APITimeoutError(f"{self.provider} request timed out", original_error=e) from e
        except httpx.HTTPError as e:
            self.logger.warning("API transport error", extra={"url": url, "error": str(e)})
            raise APIClientError(f"{self.provider} transport error: {e}", original_error=e) from e

    def _handle_http_error(self, error: HTTPStatusError, url: str) -> APIClientError:
        """Log an HTTP status error and return its classified exception."""
        status_code = error.response.status_code
        try:
            error_body = error.response.text
        except Exception:
            error_body = "Could not read response body"

        self.logger.warning(
            "API HTTP error",
            extra={
                "url": url,
                "status_code": status_code,
                "error_body": error_body[:500],
            },
        )
        return classify_http_failure(self.provider, status_code, error_body, original_error=error)


def flatten_contents(contents: Union[str, List[Union[str, Dict[str, Any]]]]) -> str:
    """Join string or {"text": ...} content parts into one user message."""
    if isinstance(contents, str):
        return contents
    parts = []
    for part in contents:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and "text" in part:
            parts.append(part["text"])
    return "".join(parts)
