"""Idempotency ledger entry model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import EventSource, LedgerOutcome


class LedgerEntry(BaseModel):
    """Record of a provider reference that has been applied to an order.

    Used for:
    - Idempotency: the first writer for a reference wins, everyone else is a duplicate
    - Auditing: which entry point applied the reference and when
    """

    model_config = ConfigDict(strict=True)

    reference: str = Field(
        ...,
        description="Provider transaction reference",
        examples=["ref_abc123"],
    )
    order_id: str = Field(..., description="Order the reference belongs to")
    outcome: LedgerOutcome = Field(
        default=LedgerOutcome.APPLIED,
        description="Whether the reference changed the order",
    )
    event_source: EventSource = Field(..., description="Entry point that claimed the reference")
    event_type: str = Field(
        ...,
        description="Event that was applied",
        examples=["charge.success", "verify.success"],
    )
    recorded_at: datetime = Field(..., description="When the claim was written")
    payload_hash: str | None = Field(
        default=None,
        description="SHA-256 of the raw webhook body, when delivered by webhook",
    )
    detail: str | None = Field(default=None, description="Reason for an ignored outcome")


class LedgerClaim(BaseModel):
    """Result of an atomic check-and-insert on the ledger."""

    model_config = ConfigDict(strict=True)

    already_applied: bool
    entry: LedgerEntry | None = None
