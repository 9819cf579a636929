"""Payment settings loaded from environment variables."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentSettings(BaseSettings):
    """Settings for the payment provider and amount policy.

    Amount limits are business policy, not protocol constants. Both are in
    minor units (kobo): the defaults allow ₦100 to ₦500,000.
    """

    model_config = SettingsConfigDict(
        env_prefix="PAYMENTS_", extra="ignore", populate_by_name=True
    )

    environment: str = Field(
        default="dev",
        validation_alias="ENVIRONMENT",
        description="Deployment environment (dev/prod), used in SSM parameter paths",
    )
    paystack_base_url: str = Field(
        default="https://api.paystack.co", description="Paystack API base URL"
    )
    paystack_secret_key: str | None = Field(
        default=None,
        description="Secret key override; when unset the key is read from SSM",
    )
    callback_url: str | None = Field(
        default=None,
        description="Where Paystack redirects the customer after checkout",
        examples=["https://shop.example.com/payment/callback"],
    )
    min_amount: int = Field(default=10_000, gt=0, description="Minimum charge in minor units")
    max_amount: int = Field(default=50_000_000, gt=0, description="Maximum charge in minor units")
    request_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for each provider call (seconds)"
    )
    currency: str = Field(default="NGN", description="Settlement currency")
    minor_units_per_major: int = Field(
        default=100, gt=0, description="Minor units in one major currency unit"
    )

    @model_validator(mode="after")
    def _check_amount_range(self) -> "PaymentSettings":
        if self.min_amount > self.max_amount:
            raise ValueError("min_amount must not exceed max_amount")
        return self

    @property
    def secret_key_parameter(self) -> str:
        """SSM parameter path holding the Paystack secret key."""
        return f"/storefront/{self.environment}/paystack/secret_key"


@lru_cache(maxsize=1)
def get_settings() -> PaymentSettings:
    """Get the shared PaymentSettings instance.

    Returns:
        PaymentSettings: Settings read from the environment on first call.
    """
    return PaymentSettings()
