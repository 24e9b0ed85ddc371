"""
Custom exceptions for the booster queue.
"""

from typing import Any


class BoosterQueueError(Exception):
    """Base exception for all booster queue errors."""

    def __init__(self, message: str, error_code: str | None = None, details: dict | None = None):
        """
        Initialize exception.

        Args:
            message: Error message
            error_code: Optional error code
            details: Optional error details
        """
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)


# Validation Errors


class ValidationError(BoosterQueueError):
    """Local, pre-submission validation errors."""

    def __init__(self, message: str, booster_id: str | None = None, reason: str | None = None):
        """
        Initialize exception.

        Args:
            message: Error message
            booster_id: Booster the request targeted
            reason: Short rejection reason (e.g. "AlreadyQueued")
        """
        details: dict[str, Any] = {}
        if booster_id:
            details["booster_id"] = booster_id
        if reason:
            details["reason"] = reason
        super().__init__(message, error_code="VALIDATION_ERROR", details=details)
        self.booster_id = booster_id
        self.reason = reason


# Operation Errors


class SubmissionError(BoosterQueueError):
    """Backend rejected or could not be reached at submit/cancel time."""

    def __init__(self, message: str, booster_id: str | None = None):
        """
        Initialize exception.

        Args:
            message: Error message
            booster_id: Booster the request targeted
        """
        details = {"booster_id": booster_id} if booster_id else {}
        super().__init__(message, error_code="SUBMISSION_ERROR", details=details)


class OperationError(BoosterQueueError):
    """Recoverable operation error, surfaced through the Error status."""

    def __init__(self, operation_id: str, message: str = "Operation reported an error"):
        """
        Initialize exception.

        Args:
            operation_id: Operation identifier
            message: Error message
        """
        super().__init__(
            message, error_code="OPERATION_ERROR", details={"operation_id": operation_id}
        )
        self.operation_id = operation_id


class OperationFailure(BoosterQueueError):
    """Terminal, non-recoverable operation failure."""

    def __init__(self, operation_id: str, message: str = "Operation failed"):
        """
        Initialize exception.

        Args:
            operation_id: Operation identifier
            message: Error message
        """
        super().__init__(
            message, error_code="OPERATION_FAILURE", details={"operation_id": operation_id}
        )
        self.operation_id = operation_id


class InvalidStateError(BoosterQueueError):
    """Caller attempted an action the operation's current state does not allow."""

    def __init__(self, operation_id: str, status: str, message: str | None = None):
        """
        Initialize exception.

        Args:
            operation_id: Operation identifier
            status: Current operation status
            message: Optional error message
        """
        message = message or f"Operation {operation_id} is already {status}"
        super().__init__(
            message,
            error_code="INVALID_STATE",
            details={"operation_id": operation_id, "status": status},
        )


class OperationNotFoundError(BoosterQueueError):
    """Operation not known to the queue."""

    def __init__(self, operation_id: str):
        """
        Initialize exception.

        Args:
            operation_id: Operation identifier
        """
        super().__init__(
            f"Operation not found: {operation_id}",
            error_code="OPERATION_NOT_FOUND",
            details={"operation_id": operation_id},
        )


class StoreIntegrityError(BoosterQueueError):
    """A store mutation would break one of the queue invariants."""

    def __init__(self, message: str, identifier: str | None = None):
        """
        Initialize exception.

        Args:
            message: Error message
            identifier: Operation or batch identifier involved
        """
        details = {"identifier": identifier} if identifier else {}
        super().__init__(message, error_code="STORE_INTEGRITY", details=details)


# Service Errors


class ServiceUnavailableError(BoosterQueueError):
    """Remote service unreachable after retries."""

    def __init__(self, message: str = "Service unavailable"):
        """Initialize exception."""
        super().__init__(message, error_code="SERVICE_UNAVAILABLE")


# Messaging Errors


class MessagingError(BoosterQueueError):
    """Messaging-related errors."""

    pass


class MessageConsumeError(MessagingError):
    """Message consumption errors."""

    def __init__(self, queue: str, message: str = "Failed to consume message"):
        """
        Initialize exception.

        Args:
            queue: Queue name
            message: Error message
        """
        super().__init__(message, error_code="MESSAGE_CONSUME_ERROR", details={"queue": queue})


# Configuration Errors


class ConfigurationError(BoosterQueueError):
    """Configuration errors."""

    def __init__(self, message: str, key: str | None = None):
        """
        Initialize exception.

        Args:
            message: Error message
            key: Configuration key
        """
        details = {"key": key} if key else {}
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details)
