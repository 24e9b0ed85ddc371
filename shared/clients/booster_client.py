"""HTTP client for the booster backend."""

import logging

import httpx

from boosters.backend import BatchAck, CancelAck, SubmitAck
from boosters.models import OperationType
from shared.clients.base import BaseHTTPClient
from shared.clients.config import get_http_client_settings

logger = logging.getLogger(__name__)


def _rejection_message(response: httpx.Response) -> str:
    """Extract an error message from a 4xx response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error", "Error", "message", "Message", "detail"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class BoosterServiceClient(BaseHTTPClient):
    """HTTP implementation of the booster backend operation API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ):
        """
        Initialize booster service client.

        Args:
            base_url: Base URL for the booster backend (defaults to config)
            timeout: Request timeout in seconds (defaults to config)
            max_retries: Maximum attempts (defaults to config)
            retry_delay: Delay between retries (defaults to config)
        """
        settings = get_http_client_settings()
        super().__init__(
            base_url=base_url or settings.booster_service_url,
            timeout=timeout or settings.booster_service_timeout,
            max_retries=max_retries or settings.booster_service_max_retries,
            retry_delay=retry_delay if retry_delay is not None else settings.booster_service_retry_delay,
        )

    async def submit(self, booster_id: str, operation_type: OperationType) -> SubmitAck:
        """
        Submit one booster operation.

        Args:
            booster_id: Booster to apply or revert
            operation_type: Apply or revert

        Returns:
            Submission acknowledgment (success=False when the backend refuses)

        Raises:
            ServiceUnavailableError: If the backend is unreachable
        """
        try:
            body = await self.post_json(
                "/api/v1/operations",
                json={"booster_id": booster_id, "operation_type": operation_type.value},
            )
        except httpx.HTTPStatusError as e:
            logger.warning(f"Submission of {booster_id} refused: HTTP {e.response.status_code}")
            return SubmitAck(success=False, message=_rejection_message(e.response))

        return SubmitAck.model_validate(body)

    async def submit_batch(self, booster_ids: list[str], operation_type: OperationType) -> BatchAck:
        """
        Submit several boosters as one batch.

        Args:
            booster_ids: Boosters to apply or revert
            operation_type: Apply or revert

        Returns:
            Batch acknowledgment with backend-side validation errors

        Raises:
            ServiceUnavailableError: If the backend is unreachable
        """
        try:
            body = await self.post_json(
                "/api/v1/batches",
                json={"booster_ids": booster_ids, "operation_type": operation_type.value},
            )
        except httpx.HTTPStatusError as e:
            logger.warning(f"Batch of {len(booster_ids)} boosters refused: HTTP {e.response.status_code}")
            return BatchAck(success=False, message=_rejection_message(e.response))

        return BatchAck.model_validate(body)

    async def cancel(self, operation_id: str) -> CancelAck:
        """
        Request cancellation of an operation.

        Args:
            operation_id: Backend operation id

        Returns:
            Cancellation acknowledgment

        Raises:
            ServiceUnavailableError: If the backend is unreachable
        """
        try:
            body = await self.post_json(f"/api/v1/operations/{operation_id}/cancel")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Cancellation of {operation_id} refused: HTTP {e.response.status_code}")
            return CancelAck(success=False, message=_rejection_message(e.response))

        # A 2xx without a body is an accepted cancellation
        return CancelAck.model_validate(body) if body else CancelAck(success=True)
