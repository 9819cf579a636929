"""Paystack webhook event models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import ProcessingResult


class WebhookEvent(BaseModel):
    """A parsed webhook delivery.

    Transient: only the ledger entry outlives the request.
    """

    model_config = ConfigDict(extra="ignore")

    event: str = Field(..., min_length=1, examples=["charge.success"])
    data: Any = None

    @property
    def reference(self) -> str | None:
        if not isinstance(self.data, dict):
            return None
        reference = self.data.get("reference")
        return str(reference) if reference else None


class WebhookOutcome(BaseModel):
    """Result of handling one webhook delivery."""

    model_config = ConfigDict(strict=True)

    event: str
    reference: str | None = None
    processing_result: ProcessingResult
    message: str | None = None
