"""
Infrastructure layer: Base HTTP client for external providers, with retry logic.
"""
from typing import Any, Dict
import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cropwatch.config import settings
from cropwatch.domain.exceptions import ExternalServiceError
from cropwatch.infrastructure.api_constants import APIConstants

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    """Retry on server errors (5xx) and transport errors, never on client errors (4xx)."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.RequestError)


class ProviderClient:
    """
    Base client for an external provider.
    Implements retry logic with exponential backoff.
    """

    service_name = "provider"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = APIConstants.DEFAULT_TIMEOUT,
    ):
        """
        Initialize the client.

        Args:
            base_url: Provider base URL
            api_key: Bearer token sent with every request
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url
        self.api_key = api_key
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "accept": APIConstants.CONTENT_TYPE_JSON,
            },
            timeout=timeout,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _request_once(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        response = await self.client.request(method, endpoint, **kwargs)
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    async def _request_with_retry(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        return await self._request_once(method, endpoint, **kwargs)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        retry_enabled: bool = True,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Make an HTTP request, retried on transient failures.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            retry_enabled: Whether transient failures are retried
            **kwargs: Additional arguments for the request

        Returns:
            Response data as dictionary

        Raises:
            ExternalServiceError: If the request fails after retries
        """
        try:
            if retry_enabled:
                return await self._request_with_retry(method, endpoint, **kwargs)
            return await self._request_once(method, endpoint, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"{self.service_name} request failed: "
                f"{e.response.status_code} - {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"{self.service_name} request error: {str(e)}") from e
        except ValueError as e:
            raise ExternalServiceError(f"{self.service_name} returned invalid JSON: {e}") from e
