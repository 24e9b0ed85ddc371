"""Base HTTP client with retry logic and error handling."""

import asyncio
import logging
from typing import Any

import httpx

from shared.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)


class BaseHTTPClient:
    """Base HTTP client with retry logic, timeout handling, and error management."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ):
        """
        Initialize the HTTP client.

        Args:
            base_url: Base URL for the service
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay between retries in seconds (grows linearly)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> httpx.Response:
        """
        Make HTTP request, retrying transport failures and 5xx responses.

        Args:
            method: HTTP method
            path: Request path (appended to base_url)
            **kwargs: Additional arguments passed to httpx

        Returns:
            httpx.Response object

        Raises:
            ServiceUnavailableError: If the service is unavailable after retries
            httpx.HTTPStatusError: On 4xx responses
        """
        client = await self._get_client()
        last_exception: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_exception = e
                logger.warning(
                    f"{method} {self.base_url}{path} failed "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )

            except httpx.HTTPStatusError as e:
                # Client errors are answers, not outages
                if e.response.status_code < 500:
                    raise
                last_exception = e
                logger.warning(
                    f"Server error {e.response.status_code} for {method} {self.base_url}{path} "
                    f"(attempt {attempt}/{self.max_retries})"
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        logger.error(f"{method} {self.base_url}{path} failed after {self.max_retries} attempts")
        raise ServiceUnavailableError(
            f"Service at {self.base_url} is unavailable after {self.max_retries} attempts: "
            f"{last_exception}"
        )

    async def post_json(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        POST a JSON body and decode the JSON response.

        Args:
            path: Request path
            json: JSON body
            headers: Additional headers

        Returns:
            Decoded response body (empty dict for empty responses)
        """
        response = await self._request_with_retry("POST", path, json=json, headers=headers)
        if not response.content:
            return {}
        return response.json()
