"""Shared API request/response models.

The API speaks camelCase JSON; ApiModel maps it onto snake_case fields.
Domain models (Order, WebhookOutcome, etc.) are in payments.models.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Re-export ErrorResponse for convenience - this is the standard error format
from payments.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "ApiModel",
    "ErrorCode",
    "ErrorResponse",
    "ValidationErrorDetail",
]


class ApiModel(BaseModel):
    """Base for API bodies: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationErrorDetail(BaseModel):
    """Detail of a single validation error, as listed in ErrorResponse.details."""

    model_config = ConfigDict(strict=True)

    loc: list[str | int] = Field(
        ...,
        description="Path to the field that failed validation",
        examples=[["body", "orderId"]],
    )
    msg: str = Field(..., examples=["Field required"])
    type: str = Field(..., examples=["missing"])
