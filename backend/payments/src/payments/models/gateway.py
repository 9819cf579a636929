"""Results returned by the payment provider client."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .order import Order


class InitializedTransaction(BaseModel):
    """A transaction created at the provider, awaiting customer redirect."""

    model_config = ConfigDict(strict=True)

    authorization_url: str = Field(
        ...,
        description="Hosted checkout URL to redirect the customer to",
        examples=["https://checkout.paystack.com/0peioxfhpn"],
    )
    access_code: str = Field(..., examples=["0peioxfhpn"])
    reference: str = Field(..., examples=["ref_abc123"])


class VerifiedTransaction(BaseModel):
    """Transaction state as reported by the provider.

    Also built from webhook payloads, which carry the same data object.
    """

    model_config = ConfigDict(strict=True)

    reference: str
    status: str = Field(
        ...,
        description="Provider status: success, failed, abandoned, pending, ...",
    )
    amount: int = Field(..., ge=0, description="Amount in minor units")
    currency: str | None = None
    paid_at: datetime | None = None
    customer_email: str | None = None
    customer_code: str | None = None
    authorization_code: str | None = None
    gateway_response: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_failed(self) -> bool:
        return self.status == "failed"


class PaymentInitialization(BaseModel):
    """Outcome of starting a payment attempt for an order."""

    model_config = ConfigDict(strict=True)

    order: Order
    transaction: InitializedTransaction
    amount_minor: int = Field(..., gt=0, description="Amount sent to the provider")
