"""Payment endpoints for the customer checkout flow.

Provides REST endpoints for:
- Initializing a payment for an order (JWT required)
- Verifying a payment on return from checkout (JWT required)
- Payment service health

API Gateway validates the JWT and passes user identity via x-user-sub header.
"""

import datetime as dt

from fastapi import APIRouter, Depends, Path

from payments.config import PaymentSettings
from payments.models.errors import ErrorResponse
from payments.services.reconciliation import ReconciliationEngine
from payments.utils.logging import get_logger
from payments_api.dependencies import (
    get_current_user_id,
    get_payment_settings,
    get_reconciliation_engine,
)
from payments_api.models.payments import (
    HealthResponse,
    InitializePaymentRequest,
    InitializePaymentResponse,
    VerifyPaymentResponse,
)

logger = get_logger(__name__)

router = APIRouter(tags=["payments"])


@router.post(
    "/payment/initialize",
    summary="Initialize payment",
    description="""
Start a payment attempt for an order and get the hosted checkout URL.

**Requires JWT authentication.**
**Only the order owner can pay.**

**Notes:**
- `amount` is in Naira and defaults to the order total; it may not exceed it
- Charges below ₦100 or above ₦500,000 are rejected before contacting the provider
- A failed order can be initialized again; a new reference is issued
""",
    response_model=InitializePaymentResponse,
    responses={
        400: {"description": "Invalid amount", "model": ErrorResponse},
        401: {"description": "JWT token required", "model": ErrorResponse},
        403: {"description": "Order belongs to another user", "model": ErrorResponse},
        404: {"description": "Order not found", "model": ErrorResponse},
        409: {"description": "Order already initialized or cancelled", "model": ErrorResponse},
        502: {"description": "Payment provider error", "model": ErrorResponse},
        504: {"description": "Payment provider timed out", "model": ErrorResponse},
    },
)
async def initialize_payment(
    body: InitializePaymentRequest,
    user_id: str = Depends(get_current_user_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    settings: PaymentSettings = Depends(get_payment_settings),
) -> InitializePaymentResponse:
    result = await engine.initialize_payment(body.order_id, user_id, body.amount)
    return InitializePaymentResponse.from_initialization(result, settings.minor_units_per_major)


@router.post(
    "/payment/verify/{reference}",
    summary="Verify payment",
    description="""
Confirm the outcome of a payment attempt, typically when the customer
returns from checkout.

**Requires JWT authentication.**

Orders already completed, failed or cancelled are answered from stored
state. Otherwise the provider is asked and the answer is applied once,
even if the webhook for the same payment arrives at the same time.

`status` is one of success, failed, pending, cancelled.
""",
    response_model=VerifyPaymentResponse,
    responses={
        400: {"description": "Malformed reference", "model": ErrorResponse},
        401: {"description": "JWT token required", "model": ErrorResponse},
        403: {"description": "Order belongs to another user", "model": ErrorResponse},
        404: {"description": "Unknown reference", "model": ErrorResponse},
        502: {"description": "Payment provider error", "model": ErrorResponse},
        504: {"description": "Payment provider timed out", "model": ErrorResponse},
    },
)
async def verify_payment(
    reference: str = Path(..., description="Provider transaction reference"),
    user_id: str = Depends(get_current_user_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    settings: PaymentSettings = Depends(get_payment_settings),
) -> VerifyPaymentResponse:
    order = await engine.verify_payment(reference, user_id)
    return VerifyPaymentResponse.from_order(reference, order, settings.minor_units_per_major)


@router.get(
    "/payment/health",
    summary="Payment service health",
    response_model=HealthResponse,
)
async def payment_health() -> HealthResponse:
    return HealthResponse(timestamp=dt.datetime.now(dt.UTC))
