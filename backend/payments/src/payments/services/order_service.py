"""Order store for payment reconciliation.

Orders are only read and written here. Every payment-status change is a
conditional update on the expected current state, so a transition that
lost a race returns None instead of overwriting the winner.
"""

import datetime as dt
import logging
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from payments.models.enums import PaymentStatus
from payments.models.order import Order, OrderCreate

from .dynamodb import serialize_item

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

_STATUS_NAMES = {"#payment_status": "payment_status"}


class OrderService:
    """DynamoDB-backed order store."""

    ORDERS_TABLE = "orders"
    REFERENCES_TABLE = "payment-references"
    STATUS_INDEX = "payment_status-index"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize order service.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def _generate_order_id(self) -> str:
        return f"ORD-{uuid.uuid4().hex[:12].upper()}"

    def create_order(self, data: OrderCreate) -> Order:
        """Create an order awaiting payment.

        Args:
            data: Order creation data

        Returns:
            Created Order in pending status
        """
        now = dt.datetime.now(dt.UTC)
        order = Order(
            order_id=self._generate_order_id(),
            user_id=data.user_id,
            customer_email=data.customer_email,
            total=data.total,
            currency=data.currency,
            payment_status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.db.put_item(
            self.ORDERS_TABLE,
            self._order_to_item(order),
            condition_expression="attribute_not_exists(order_id)",
        )
        logger.info("Order %s created, total %d", order.order_id, order.total)
        return order

    def get_order(self, order_id: str) -> Order | None:
        """Get an order by ID.

        Args:
            order_id: Order ID

        Returns:
            Order or None if not found
        """
        item = self.db.get_item(self.ORDERS_TABLE, {"order_id": order_id})
        return self._item_to_order(item) if item else None

    def get_order_by_reference(self, reference: str) -> Order | None:
        """Get the order a provider reference was assigned to.

        Args:
            reference: Provider transaction reference

        Returns:
            Order or None if the reference is unknown
        """
        item = self.db.get_item(self.REFERENCES_TABLE, {"reference": reference})
        if not item:
            return None
        return self.get_order(item["order_id"])

    def list_orders_by_status(self, status: PaymentStatus) -> list[Order]:
        """List orders in a payment status.

        Args:
            status: Payment status to filter on

        Returns:
            Orders in that status (eventually consistent)
        """
        items = self.db.query_by_gsi(
            self.ORDERS_TABLE,
            self.STATUS_INDEX,
            "payment_status",
            status.value,
        )
        return [self._item_to_order(item) for item in items]

    def assign_reference(
        self,
        order: Order,
        reference: str,
        amount_charged: int,
    ) -> Order | None:
        """Record a new payment attempt and move the order to processing.

        The reference claim and the order update are written in one
        transaction. It fails if the reference was already assigned to any
        order, or if the order left the state it was read in.

        Args:
            order: Order as read before calling the provider
            reference: Reference returned by the provider
            amount_charged: Amount sent to the provider, in minor units

        Returns:
            Updated Order, or None if the transaction was cancelled
        """
        now = dt.datetime.now(dt.UTC).isoformat()

        set_clauses = [
            "#payment_status = :processing",
            "payment_reference = :reference",
            "amount_charged = :amount",
            "payment_initiated_at = :now",
            "updated_at = :now",
        ]
        values: dict[str, Any] = {
            ":processing": PaymentStatus.PROCESSING.value,
            ":expected": order.payment_status.value,
            ":reference": reference,
            ":amount": amount_charged,
            ":now": now,
        }

        if order.payment_reference:
            # Retry after a failed attempt: keep the old reference on record
            condition = "#payment_status = :expected AND payment_reference = :previous"
            values[":previous"] = order.payment_reference
            values[":previous_list"] = [order.payment_reference]
            values[":empty"] = []
            set_clauses.append(
                "previous_references = list_append("
                "if_not_exists(previous_references, :empty), :previous_list)"
            )
        else:
            condition = "#payment_status = :expected AND attribute_not_exists(payment_reference)"

        update_expression = "SET " + ", ".join(set_clauses) + " REMOVE failure_reason"

        succeeded = self.db.transact_write(
            [
                {
                    "Put": {
                        "TableName": self.db.table_name(self.REFERENCES_TABLE),
                        "Item": serialize_item(
                            {
                                "reference": reference,
                                "order_id": order.order_id,
                                "created_at": now,
                            }
                        ),
                        "ConditionExpression": "attribute_not_exists(#reference)",
                        "ExpressionAttributeNames": {"#reference": "reference"},
                    }
                },
                {
                    "Update": {
                        "TableName": self.db.table_name(self.ORDERS_TABLE),
                        "Key": serialize_item({"order_id": order.order_id}),
                        "UpdateExpression": update_expression,
                        "ConditionExpression": condition,
                        "ExpressionAttributeNames": dict(_STATUS_NAMES),
                        "ExpressionAttributeValues": serialize_item(values),
                    }
                },
            ]
        )
        if not succeeded:
            logger.warning(
                "Reference %s not assigned to order %s (order changed or reference reused)",
                reference,
                order.order_id,
            )
            return None

        return self.get_order(order.order_id)

    def mark_completed(
        self,
        order_id: str,
        reference: str,
        *,
        paid_at: dt.datetime,
        authorization_code: str | None,
    ) -> Order | None:
        """Move a processing order to completed.

        paid_at and the completed status are written by the same update.

        Args:
            order_id: Order ID
            reference: Reference the completion is for
            paid_at: Payment timestamp
            authorization_code: Provider authorization code

        Returns:
            Updated Order, or None if the order was not processing this reference
        """
        set_clauses = [
            "#payment_status = :completed",
            "paid_at = :paid_at",
            "updated_at = :now",
        ]
        values: dict[str, Any] = {
            ":completed": PaymentStatus.COMPLETED.value,
            ":processing": PaymentStatus.PROCESSING.value,
            ":reference": reference,
            ":paid_at": paid_at.isoformat(),
            ":now": dt.datetime.now(dt.UTC).isoformat(),
        }
        if authorization_code:
            set_clauses.append("authorization_code = :authorization_code")
            values[":authorization_code"] = authorization_code

        attrs = self.db.update_item(
            self.ORDERS_TABLE,
            {"order_id": order_id},
            "SET " + ", ".join(set_clauses),
            values,
            dict(_STATUS_NAMES),
            condition_expression="#payment_status = :processing AND payment_reference = :reference",
        )
        return self._item_to_order(attrs) if attrs else None

    def mark_failed(self, order_id: str, reference: str, *, reason: str) -> Order | None:
        """Move a processing order to failed.

        Args:
            order_id: Order ID
            reference: Reference the failure is for
            reason: Provider gateway response or local reason

        Returns:
            Updated Order, or None if the order was not processing this reference
        """
        attrs = self.db.update_item(
            self.ORDERS_TABLE,
            {"order_id": order_id},
            "SET #payment_status = :failed, failure_reason = :reason, updated_at = :now",
            {
                ":failed": PaymentStatus.FAILED.value,
                ":processing": PaymentStatus.PROCESSING.value,
                ":reference": reference,
                ":reason": reason,
                ":now": dt.datetime.now(dt.UTC).isoformat(),
            },
            dict(_STATUS_NAMES),
            condition_expression="#payment_status = :processing AND payment_reference = :reference",
        )
        return self._item_to_order(attrs) if attrs else None

    def mark_cancelled(self, order_id: str) -> Order | None:
        """Cancel an order that has not been paid.

        Args:
            order_id: Order ID

        Returns:
            Updated Order, or None if the order is no longer pending or processing
        """
        now = dt.datetime.now(dt.UTC).isoformat()
        attrs = self.db.update_item(
            self.ORDERS_TABLE,
            {"order_id": order_id},
            "SET #payment_status = :cancelled, cancelled_at = :now, updated_at = :now",
            {
                ":cancelled": PaymentStatus.CANCELLED.value,
                ":pending": PaymentStatus.PENDING.value,
                ":processing": PaymentStatus.PROCESSING.value,
                ":now": now,
            },
            dict(_STATUS_NAMES),
            condition_expression="#payment_status IN (:pending, :processing)",
        )
        return self._item_to_order(attrs) if attrs else None

    def _order_to_item(self, order: Order) -> dict[str, Any]:
        """Convert Order to a DynamoDB item, omitting unset optional fields."""
        item: dict[str, Any] = {
            "order_id": order.order_id,
            "user_id": order.user_id,
            "customer_email": order.customer_email,
            "total": order.total,
            "currency": order.currency,
            "payment_status": order.payment_status.value,
            "created_at": order.created_at.isoformat(),
            "updated_at": order.updated_at.isoformat(),
        }
        optional: dict[str, Any] = {
            "payment_reference": order.payment_reference,
            "amount_charged": order.amount_charged,
            "authorization_code": order.authorization_code,
            "failure_reason": order.failure_reason,
        }
        for key, value in optional.items():
            if value is not None:
                item[key] = value
        for key in ("payment_initiated_at", "paid_at", "cancelled_at"):
            value = getattr(order, key)
            if value is not None:
                item[key] = value.isoformat()
        if order.previous_references:
            item["previous_references"] = list(order.previous_references)
        return item

    def _item_to_order(self, item: dict[str, Any]) -> Order:
        """Convert a DynamoDB item to Order."""

        def _timestamp(key: str) -> dt.datetime | None:
            value = item.get(key)
            return dt.datetime.fromisoformat(value) if value else None

        def _integer(key: str) -> int | None:
            value = item.get(key)
            return int(value) if isinstance(value, (int, Decimal)) else None

        return Order(
            order_id=item["order_id"],
            user_id=item["user_id"],
            customer_email=item["customer_email"],
            total=int(item["total"]),
            currency=item.get("currency", "NGN"),
            payment_status=PaymentStatus(item["payment_status"]),
            payment_reference=item.get("payment_reference"),
            previous_references=list(item.get("previous_references") or []),
            amount_charged=_integer("amount_charged"),
            payment_initiated_at=_timestamp("payment_initiated_at"),
            paid_at=_timestamp("paid_at"),
            authorization_code=item.get("authorization_code"),
            failure_reason=item.get("failure_reason"),
            cancelled_at=_timestamp("cancelled_at"),
            created_at=dt.datetime.fromisoformat(item["created_at"]),
            updated_at=dt.datetime.fromisoformat(item["updated_at"]),
        )
