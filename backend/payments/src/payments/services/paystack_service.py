"""Paystack transaction gateway client.

Wraps the two provider calls reconciliation depends on:
- POST /transaction/initialize: create a transaction and get the checkout URL
- GET /transaction/verify/{reference}: read back the transaction outcome

The client holds no state beyond its configuration and never touches
orders. Every call is bounded by the configured timeout; a timeout is
reported separately from other failures so callers can decide to retry.
"""

import logging
import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from payments.config import PaymentSettings, get_settings
from payments.models.errors import ErrorCode, PaymentError
from payments.models.gateway import InitializedTransaction, VerifiedTransaction

from .ssm_service import SSMService, SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)

# Paystack references are alphanumeric with a few separators
REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9._=\-]{5,255}$")


class PaystackServiceError(Exception):
    """Raised when Paystack is unreachable or answers with a failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider_message: str | None = None,
    ) -> None:
        """Initialize with message and optional HTTP/provider context.

        Args:
            message: Human-readable error message.
            status_code: HTTP status returned by Paystack, if any.
            provider_message: The "message" field of the Paystack response.
        """
        super().__init__(message)
        self.status_code = status_code
        self.provider_message = provider_message


class PaystackTimeoutError(PaystackServiceError):
    """Raised when a Paystack call exceeds the configured timeout."""


def validate_reference(reference: str | None) -> str:
    """Check a transaction reference before spending a round-trip on it.

    Args:
        reference: Reference supplied by a client or webhook.

    Returns:
        The reference, unchanged.

    Raises:
        PaymentError: INVALID_REFERENCE if the shape is wrong.
    """
    if not isinstance(reference, str) or not REFERENCE_PATTERN.fullmatch(reference):
        raise PaymentError(
            code=ErrorCode.INVALID_REFERENCE,
            details={"reference": str(reference)[:64] if reference else ""},
        )
    return reference


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def parse_transaction(data: dict[str, Any]) -> VerifiedTransaction:
    """Build a VerifiedTransaction from a Paystack transaction object.

    The same object shape arrives in verify responses and in the
    "data" field of charge webhooks.

    Args:
        data: Paystack transaction data object.

    Returns:
        Parsed transaction.

    Raises:
        PaystackServiceError: If required fields are missing or malformed.
    """
    try:
        amount = data["amount"]
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TypeError(f"amount must be an integer, got {type(amount).__name__}")

        customer = data.get("customer") or {}
        authorization = data.get("authorization") or {}
        metadata = data.get("metadata")

        return VerifiedTransaction(
            reference=str(data["reference"]),
            status=str(data["status"]),
            amount=amount,
            currency=data.get("currency"),
            paid_at=_parse_timestamp(data.get("paid_at") or data.get("paidAt")),
            customer_email=customer.get("email"),
            customer_code=customer.get("customer_code"),
            authorization_code=authorization.get("authorization_code"),
            gateway_response=data.get("gateway_response"),
            metadata=metadata if isinstance(metadata, dict) else {},
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise PaystackServiceError(f"Malformed transaction data from Paystack: {e}") from e


class PaystackService:
    """Client for the Paystack transaction API.

    Usage:
        paystack = PaystackService(get_settings())
        txn = await paystack.initialize_transaction(
            email="customer@example.com",
            amount_minor=1_500_000,
            metadata={"order_id": "ord_123"},
        )
    """

    def __init__(
        self,
        settings: PaymentSettings | None = None,
        *,
        ssm: SSMService | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Payment settings. Defaults to get_settings().
            ssm: SSM service for the secret key. Defaults to get_ssm_service().
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._settings = settings or get_settings()
        self._ssm = ssm
        self._transport = transport
        self._secret_key: str | None = None

    @property
    def settings(self) -> PaymentSettings:
        return self._settings

    def get_secret_key(self) -> str:
        """Get the Paystack secret key (lazy, cached).

        Returns:
            Secret key from settings override or SSM.

        Raises:
            PaystackServiceError: If the key cannot be retrieved.
        """
        if self._secret_key is None:
            if self._settings.paystack_secret_key:
                self._secret_key = self._settings.paystack_secret_key
            else:
                ssm = self._ssm or get_ssm_service()
                try:
                    self._secret_key = ssm.get_parameter(self._settings.secret_key_parameter)
                except SSMServiceError as e:
                    raise PaystackServiceError(f"Failed to get Paystack secret key: {e}") from e
                logger.info(
                    "Paystack secret key loaded for environment: %s",
                    self._settings.environment,
                )
        return self._secret_key

    def check_amount(self, amount_minor: int) -> None:
        """Reject amounts outside the configured floor and ceiling.

        Args:
            amount_minor: Amount in minor units.

        Raises:
            PaymentError: AMOUNT_OUT_OF_RANGE.
        """
        if not self._settings.min_amount <= amount_minor <= self._settings.max_amount:
            raise PaymentError(
                code=ErrorCode.AMOUNT_OUT_OF_RANGE,
                details={
                    "amount_minor": amount_minor,
                    "min_amount": self._settings.min_amount,
                    "max_amount": self._settings.max_amount,
                },
            )

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and unwrap the Paystack {status, message, data} envelope.

        Raises:
            PaystackTimeoutError: If the call exceeds the configured timeout.
            PaystackServiceError: On transport errors, non-2xx, or a failed envelope.
        """
        headers = {
            "Authorization": f"Bearer {self.get_secret_key()}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._settings.paystack_base_url,
                timeout=self._settings.request_timeout,
                transport=self._transport,
                headers=headers,
            ) as client:
                response = await client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise PaystackTimeoutError(
                f"Paystack {method} {path} timed out after {self._settings.request_timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise PaystackServiceError(f"Paystack {method} {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise PaystackServiceError(
                f"Paystack returned a non-JSON response ({response.status_code})",
                status_code=response.status_code,
            ) from e

        provider_message = body.get("message") if isinstance(body, dict) else None
        if response.is_error or not isinstance(body, dict) or not body.get("status"):
            raise PaystackServiceError(
                provider_message or f"Paystack request failed ({response.status_code})",
                status_code=response.status_code,
                provider_message=provider_message,
            )

        data = body.get("data")
        if not isinstance(data, dict):
            raise PaystackServiceError(
                "Paystack response is missing the data object",
                status_code=response.status_code,
                provider_message=provider_message,
            )
        return data

    async def initialize_transaction(
        self,
        *,
        email: str,
        amount_minor: int,
        metadata: dict[str, Any] | None = None,
    ) -> InitializedTransaction:
        """Create a transaction and get the hosted checkout URL.

        Args:
            email: Customer email.
            amount_minor: Amount in minor units (kobo).
            metadata: Free-form metadata echoed back in webhooks.

        Returns:
            InitializedTransaction with authorization URL, access code and reference.

        Raises:
            PaymentError: AMOUNT_OUT_OF_RANGE before any network call.
            PaystackTimeoutError: On timeout.
            PaystackServiceError: On any other provider failure.
        """
        self.check_amount(amount_minor)

        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": self._settings.currency,
            "metadata": metadata or {},
        }
        if self._settings.callback_url:
            payload["callback_url"] = self._settings.callback_url

        try:
            data = await self._request("POST", "/transaction/initialize", payload)
            transaction = InitializedTransaction(
                authorization_url=str(data["authorization_url"]),
                access_code=str(data["access_code"]),
                reference=str(data["reference"]),
            )
        except KeyError as e:
            logger.error("Paystack initialize response missing %s", e)
            raise PaystackServiceError(f"Malformed initialize response: missing {e}") from e
        except PaystackServiceError as e:
            logger.error(
                "Paystack initialization failed: %s (status: %s)",
                str(e),
                e.status_code,
            )
            raise

        logger.info(
            "Paystack transaction initialized: %s, amount %d",
            transaction.reference,
            amount_minor,
        )
        return transaction

    async def verify_transaction(self, reference: str) -> VerifiedTransaction:
        """Read the provider's view of a transaction.

        Args:
            reference: Transaction reference.

        Returns:
            VerifiedTransaction with status, amount and authorization details.

        Raises:
            PaymentError: INVALID_REFERENCE before any network call.
            PaystackTimeoutError: On timeout.
            PaystackServiceError: On any other provider failure.
        """
        validate_reference(reference)

        try:
            data = await self._request(
                "GET", f"/transaction/verify/{quote(reference, safe='')}"
            )
            transaction = parse_transaction(data)
        except PaystackServiceError as e:
            logger.error("Paystack verification failed for %s: %s", reference, e)
            raise

        logger.info(
            "Paystack transaction verified: %s status=%s amount=%d",
            reference,
            transaction.status,
            transaction.amount,
        )
        return transaction

    async def fetch_transaction(self, transaction_id: int) -> VerifiedTransaction:
        """Fetch a transaction by its numeric Paystack ID.

        Args:
            transaction_id: Paystack transaction ID.

        Returns:
            Parsed transaction.
        """
        data = await self._request("GET", f"/transaction/{int(transaction_id)}")
        return parse_transaction(data)
