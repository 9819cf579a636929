"""API routes package.

Routers are organized by domain:

- payments: Initialize and verify payments, service health
- webhooks: Paystack event deliveries
- orders: Order cancellation

All routers are registered in main.py with /api/v1 prefix.
"""

from payments_api.routes.orders import router as orders_router
from payments_api.routes.payments import router as payments_router
from payments_api.routes.webhooks import router as webhooks_router

__all__ = [
    "orders_router",
    "payments_router",
    "webhooks_router",
]
