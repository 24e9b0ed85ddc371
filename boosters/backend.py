"""
Backend operation API boundary.

The controller talks to the backend through the BoosterBackend protocol;
acknowledgments accept both the backend's PascalCase field names and
snake_case.
"""

from typing import Any, Protocol

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from boosters.models import OperationType


class _Ack(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = Field(False, validation_alias=AliasChoices("success", "Success"))
    message: str | None = Field(None, validation_alias=AliasChoices("message", "Message"))
    error: str | None = Field(None, validation_alias=AliasChoices("error", "Error"))

    @property
    def reason(self) -> str | None:
        """Best available explanation for a rejection."""
        return self.error or self.message


class SubmitAck(_Ack):
    """Acknowledgment of a single submission."""

    operation_id: str | None = Field(
        None, validation_alias=AliasChoices("operation_id", "OperationID", "operationId")
    )


class BatchAck(_Ack):
    """Acknowledgment of a batch submission."""

    batch_id: str | None = Field(
        None, validation_alias=AliasChoices("batch_id", "BatchID", "batchId")
    )
    validation_errors: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("validation_errors", "ValidationErrors", "validationErrors"),
    )

    @field_validator("validation_errors", mode="before")
    @classmethod
    def default_validation_errors(cls, value: Any) -> Any:
        """Treat a null mapping as empty."""
        return {} if value is None else value


class CancelAck(_Ack):
    """Acknowledgment of a cancellation request."""


class BoosterBackend(Protocol):
    """Backend operation API consumed by the controller."""

    async def submit(self, booster_id: str, operation_type: OperationType) -> SubmitAck: ...

    async def submit_batch(
        self, booster_ids: list[str], operation_type: OperationType
    ) -> BatchAck: ...

    async def cancel(self, operation_id: str) -> CancelAck: ...
