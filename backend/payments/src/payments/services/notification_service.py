"""Customer notification hook for payment outcomes.

Delivery is out of scope here: outcomes are logged in structured form for a
downstream mailer to pick up. Callers treat any exception from this
service as non-fatal.
"""

import logging

from payments.models.order import Order
from payments.utils.logging import log_payment_operation

logger = logging.getLogger(__name__)


class NotificationService:
    """Announces completed and failed payments."""

    def payment_completed(self, order: Order) -> None:
        log_payment_operation(
            logger,
            "notify_payment_completed",
            order_id=order.order_id,
            reference=order.payment_reference,
            amount_minor=order.amount_due,
            status=order.payment_status.value,
            customer_email=order.customer_email,
        )

    def payment_failed(self, order: Order) -> None:
        log_payment_operation(
            logger,
            "notify_payment_failed",
            order_id=order.order_id,
            reference=order.payment_reference,
            amount_minor=order.amount_due,
            status=order.payment_status.value,
            customer_email=order.customer_email,
            failure_reason=order.failure_reason,
        )
