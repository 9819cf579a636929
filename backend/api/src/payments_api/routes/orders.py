"""Order endpoints.

Provides:
- Cancelling an unpaid order (JWT required)
"""

from fastapi import APIRouter, Depends, Path

from payments.models.errors import ErrorResponse
from payments.services.reconciliation import ReconciliationEngine
from payments_api.dependencies import get_current_user_id, get_reconciliation_engine
from payments_api.models.payments import CancelOrderResponse

router = APIRouter(tags=["orders"])


@router.post(
    "/orders/{order_id}/cancel",
    summary="Cancel order",
    description="""
Cancel an order that is pending or awaiting payment confirmation.

**Requires JWT authentication.**

A payment that completes at the provider after cancellation is not
applied to the order. Cancelling an already cancelled order returns it
unchanged.
""",
    response_model=CancelOrderResponse,
    responses={
        401: {"description": "JWT token required", "model": ErrorResponse},
        403: {"description": "Order belongs to another user", "model": ErrorResponse},
        404: {"description": "Order not found", "model": ErrorResponse},
        409: {"description": "Order already completed or failed", "model": ErrorResponse},
    },
)
async def cancel_order(
    order_id: str = Path(..., description="Order ID"),
    user_id: str = Depends(get_current_user_id),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> CancelOrderResponse:
    order = engine.cancel_order(order_id, user_id)
    return CancelOrderResponse.from_order(order)
