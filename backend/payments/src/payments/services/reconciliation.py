"""Payment reconciliation engine.

Moves orders through pending -> processing -> completed | failed, with
cancelled reachable from pending and processing. Three entry points can
report the outcome of the same provider reference: the customer's verify
call, the provider's webhook, and the operator's reverify job. They race
freely; two mechanisms keep the result consistent:

- the idempotency ledger lets exactly one caller claim a reference, and
- every order write is conditional on (processing, same reference), so a
  terminal state is never overwritten and paid_at is written once.

Gateway calls are the only awaits. Ledger and order writes for one
reference happen after the provider answer is in hand.
"""

import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from payments.config import PaymentSettings, get_settings
from payments.models.enums import (
    EventSource,
    LedgerOutcome,
    PaymentStatus,
    ProcessingResult,
    WebhookEventType,
)
from payments.models.errors import ErrorCode, PaymentError
from payments.models.gateway import PaymentInitialization, VerifiedTransaction
from payments.models.ledger import LedgerClaim
from payments.models.order import Order
from payments.models.webhook import WebhookEvent, WebhookOutcome
from payments.utils.logging import log_payment_operation, log_webhook_event

from .paystack_service import (
    PaystackServiceError,
    PaystackTimeoutError,
    parse_transaction,
    validate_reference,
)

if TYPE_CHECKING:
    from .idempotency import IdempotencyLedger
    from .notification_service import NotificationService
    from .order_service import OrderService
    from .paystack_service import PaystackService

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Applies provider transaction outcomes to orders exactly once."""

    def __init__(
        self,
        orders: "OrderService",
        ledger: "IdempotencyLedger",
        gateway: "PaystackService",
        *,
        settings: PaymentSettings | None = None,
        notifier: "NotificationService | None" = None,
    ) -> None:
        """Initialize the engine.

        Args:
            orders: Order store
            ledger: Idempotency ledger
            gateway: Provider client
            settings: Payment settings. Defaults to get_settings().
            notifier: Optional outcome notifier
        """
        self._orders = orders
        self._ledger = ledger
        self._gateway = gateway
        self._settings = settings or get_settings()
        self._notifier = notifier

    # Amounts

    def to_minor_units(self, amount: Decimal | int) -> int:
        """Convert a major-unit amount to minor units, rounding half up.

        Args:
            amount: Amount in major units (Naira)

        Returns:
            Amount in minor units (kobo)

        Raises:
            PaymentError: VALIDATION_ERROR for zero or negative amounts
        """
        value = Decimal(amount) * self._settings.minor_units_per_major
        minor = int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if minor <= 0:
            raise PaymentError(
                code=ErrorCode.VALIDATION_ERROR,
                details={"field": "amount", "reason": "must be greater than zero"},
            )
        return minor

    # Initialize

    async def initialize_payment(
        self,
        order_id: str,
        user_id: str,
        amount: Decimal | int | None = None,
    ) -> PaymentInitialization:
        """Start a payment attempt for an order.

        Allowed from pending, and from failed as a retry with a new
        reference. The old reference is kept in previous_references.

        Args:
            order_id: Order to pay
            user_id: Authenticated caller
            amount: Optional amount in major units, at most the order total.
                Defaults to the order total.

        Returns:
            PaymentInitialization with the updated order and checkout details

        Raises:
            PaymentError: ORDER_NOT_FOUND, UNAUTHORIZED, ALREADY_INITIALIZED,
                ORDER_NOT_PAYABLE, VALIDATION_ERROR, AMOUNT_OUT_OF_RANGE,
                GATEWAY_TIMEOUT or GATEWAY_ERROR
        """
        order = self._get_owned_order(order_id, user_id)

        if order.payment_status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED):
            raise PaymentError(
                code=ErrorCode.ALREADY_INITIALIZED,
                details={
                    "order_id": order_id,
                    "payment_status": order.payment_status.value,
                    "reference": order.payment_reference,
                },
            )
        if order.payment_status == PaymentStatus.CANCELLED:
            raise PaymentError(
                code=ErrorCode.ORDER_NOT_PAYABLE,
                details={"order_id": order_id, "payment_status": order.payment_status.value},
            )

        amount_minor = order.total if amount is None else self.to_minor_units(amount)
        if amount_minor > order.total:
            raise PaymentError(
                code=ErrorCode.VALIDATION_ERROR,
                details={
                    "field": "amount",
                    "reason": "exceeds order total",
                    "amount_minor": amount_minor,
                    "total": order.total,
                },
            )

        metadata = {
            "order_id": order.order_id,
            "user_id": user_id,
            "order_date": dt.datetime.now(dt.UTC).isoformat(),
        }
        try:
            transaction = await self._gateway.initialize_transaction(
                email=order.customer_email,
                amount_minor=amount_minor,
                metadata=metadata,
            )
        except PaystackServiceError as e:
            raise self._gateway_error(e, order_id=order_id) from e

        updated = self._orders.assign_reference(order, transaction.reference, amount_minor)
        if updated is None:
            # Another attempt moved the order first, or the reference was reused
            current = self._orders.get_order(order_id) or order
            log_payment_operation(
                logger,
                "initialize_payment",
                order_id=order_id,
                reference=transaction.reference,
                amount_minor=amount_minor,
                status=current.payment_status.value,
                error="order changed during initialization",
            )
            raise PaymentError(
                code=ErrorCode.ALREADY_INITIALIZED,
                details={
                    "order_id": order_id,
                    "payment_status": current.payment_status.value,
                    "reference": current.payment_reference,
                },
            )

        log_payment_operation(
            logger,
            "initialize_payment",
            order_id=order_id,
            reference=transaction.reference,
            amount_minor=amount_minor,
            status=updated.payment_status.value,
            retry=bool(updated.previous_references),
        )
        return PaymentInitialization(
            order=updated,
            transaction=transaction,
            amount_minor=amount_minor,
        )

    # Verify / reverify

    async def verify_payment(self, reference: str, user_id: str) -> Order:
        """Confirm a payment on the customer's return from checkout.

        Terminal orders are answered from stored state without calling the
        provider. A gateway error leaves the order in processing.

        Args:
            reference: Provider transaction reference
            user_id: Authenticated caller

        Returns:
            Order after reconciliation

        Raises:
            PaymentError: INVALID_REFERENCE, ORDER_NOT_FOUND, UNAUTHORIZED,
                GATEWAY_TIMEOUT or GATEWAY_ERROR
        """
        validate_reference(reference)

        order = self._orders.get_order_by_reference(reference)
        if order is None:
            raise PaymentError(code=ErrorCode.ORDER_NOT_FOUND, details={"reference": reference})
        if order.user_id != user_id:
            raise PaymentError(
                code=ErrorCode.UNAUTHORIZED,
                details={"order_id": order.order_id},
            )

        if order.payment_status != PaymentStatus.PROCESSING or order.payment_reference != reference:
            log_payment_operation(
                logger,
                "verify_payment",
                order_id=order.order_id,
                reference=reference,
                status=order.payment_status.value,
                gateway_call=False,
            )
            return order

        transaction = await self._verify_with_gateway(reference, order.order_id)
        order, result = self._reconcile(
            order.order_id,
            transaction,
            EventSource.VERIFY,
            f"verify.{transaction.status}",
        )
        log_payment_operation(
            logger,
            "verify_payment",
            order_id=order.order_id,
            reference=reference,
            amount_minor=transaction.amount,
            status=order.payment_status.value,
            result=result.value,
        )
        return order

    async def reverify_order(self, order_id: str) -> Order:
        """Re-check a processing order against the provider.

        Used by the operator job for orders whose webhook never arrived.

        Args:
            order_id: Order to reconcile

        Returns:
            Order after reconciliation (unchanged if not processing)

        Raises:
            PaymentError: ORDER_NOT_FOUND, GATEWAY_TIMEOUT or GATEWAY_ERROR
        """
        order = self._orders.get_order(order_id)
        if order is None:
            raise PaymentError(code=ErrorCode.ORDER_NOT_FOUND, details={"order_id": order_id})
        if order.payment_status != PaymentStatus.PROCESSING or not order.payment_reference:
            logger.info(
                "Order %s is %s; nothing to reverify",
                order_id,
                order.payment_status.value,
            )
            return order

        transaction = await self._verify_with_gateway(order.payment_reference, order_id)
        order, result = self._reconcile(
            order_id,
            transaction,
            EventSource.REVERIFY,
            f"reverify.{transaction.status}",
        )
        log_payment_operation(
            logger,
            "reverify_order",
            order_id=order_id,
            reference=transaction.reference,
            amount_minor=transaction.amount,
            status=order.payment_status.value,
            result=result.value,
        )
        return order

    # Webhooks

    async def handle_webhook_event(
        self,
        event: WebhookEvent,
        payload_hash: str | None = None,
    ) -> WebhookOutcome:
        """Apply an authenticated webhook delivery.

        The signature must already have been checked; the event data is
        trusted without a verify round-trip. Redeliveries are answered as
        duplicates.

        Args:
            event: Parsed webhook event
            payload_hash: SHA-256 of the raw body, stored in the ledger

        Returns:
            WebhookOutcome describing what happened
        """
        event_type = event.event
        reference = event.reference

        if event_type in (WebhookEventType.TRANSFER_SUCCESS, WebhookEventType.TRANSFER_FAILED):
            log_webhook_event(logger, event_type, reference, result=ProcessingResult.SKIPPED.value)
            return WebhookOutcome(
                event=event_type,
                reference=reference,
                processing_result=ProcessingResult.SKIPPED,
                message="Transfer events are not reconciled against orders",
            )

        if event_type not in (WebhookEventType.CHARGE_SUCCESS, WebhookEventType.CHARGE_FAILED):
            log_webhook_event(logger, event_type, reference, result=ProcessingResult.IGNORED.value)
            return WebhookOutcome(
                event=event_type,
                reference=reference,
                processing_result=ProcessingResult.IGNORED,
                message="Unhandled event type",
            )

        if not isinstance(event.data, dict):
            log_webhook_event(
                logger,
                event_type,
                None,
                result=ProcessingResult.ERROR.value,
                error=f"data is {type(event.data).__name__}",
            )
            return WebhookOutcome(
                event=event_type,
                processing_result=ProcessingResult.ERROR,
                message="Malformed transaction data",
            )

        if not reference:
            log_webhook_event(
                logger,
                event_type,
                None,
                result=ProcessingResult.IGNORED.value,
                error="missing reference",
            )
            return WebhookOutcome(
                event=event_type,
                processing_result=ProcessingResult.IGNORED,
                message="Event has no transaction reference",
            )

        try:
            transaction = parse_transaction(event.data)
        except PaystackServiceError as e:
            log_webhook_event(
                logger,
                event_type,
                reference,
                result=ProcessingResult.ERROR.value,
                error=str(e),
            )
            return WebhookOutcome(
                event=event_type,
                reference=reference,
                processing_result=ProcessingResult.ERROR,
                message="Malformed transaction data",
            )

        if event_type == WebhookEventType.CHARGE_FAILED and not transaction.is_failed:
            transaction = transaction.model_copy(update={"status": "failed"})
        elif event_type == WebhookEventType.CHARGE_SUCCESS and not transaction.is_success:
            log_webhook_event(
                logger,
                event_type,
                reference,
                result=ProcessingResult.SKIPPED.value,
                transaction_status=transaction.status,
            )
            return WebhookOutcome(
                event=event_type,
                reference=reference,
                processing_result=ProcessingResult.SKIPPED,
                message=f"Transaction status is {transaction.status}",
            )

        order = self._orders.get_order_by_reference(reference)
        if order is None:
            log_webhook_event(
                logger,
                event_type,
                reference,
                result=ProcessingResult.IGNORED.value,
                error="unknown reference",
            )
            return WebhookOutcome(
                event=event_type,
                reference=reference,
                processing_result=ProcessingResult.IGNORED,
                message="No order for reference",
            )

        order, result = self._apply_transaction(
            order,
            transaction,
            EventSource.WEBHOOK,
            event_type,
            payload_hash=payload_hash,
        )
        log_webhook_event(
            logger,
            event_type,
            reference,
            order_id=order.order_id,
            result=result.value,
            payment_status=order.payment_status.value,
        )
        return WebhookOutcome(
            event=event_type,
            reference=reference,
            processing_result=result,
            message=f"Order {order.order_id} is {order.payment_status.value}",
        )

    # Cancellation

    def cancel_order(self, order_id: str, user_id: str) -> Order:
        """Cancel an unpaid order.

        A payment that completes at the provider after cancellation is not
        applied; it is recorded in the ledger and logged for refund review.

        Args:
            order_id: Order to cancel
            user_id: Authenticated caller

        Returns:
            Cancelled order (cancelling twice returns the same order)

        Raises:
            PaymentError: ORDER_NOT_FOUND, UNAUTHORIZED or ORDER_NOT_CANCELLABLE
        """
        order = self._get_owned_order(order_id, user_id)
        if order.payment_status == PaymentStatus.CANCELLED:
            return order

        updated = None
        if order.payment_status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            updated = self._orders.mark_cancelled(order_id)

        if updated is None:
            current = self._orders.get_order(order_id) or order
            if current.payment_status == PaymentStatus.CANCELLED:
                return current
            raise PaymentError(
                code=ErrorCode.ORDER_NOT_CANCELLABLE,
                details={"order_id": order_id, "payment_status": current.payment_status.value},
            )

        log_payment_operation(
            logger,
            "cancel_order",
            order_id=order_id,
            reference=updated.payment_reference,
            status=updated.payment_status.value,
        )
        return updated

    # Internals

    def _get_owned_order(self, order_id: str, user_id: str) -> Order:
        order = self._orders.get_order(order_id)
        if order is None:
            raise PaymentError(code=ErrorCode.ORDER_NOT_FOUND, details={"order_id": order_id})
        if order.user_id != user_id:
            raise PaymentError(code=ErrorCode.UNAUTHORIZED, details={"order_id": order_id})
        return order

    def _gateway_error(self, error: PaystackServiceError, **context: str) -> PaymentError:
        details: dict[str, object] = dict(context)
        if error.provider_message:
            details["provider_message"] = error.provider_message
        code = (
            ErrorCode.GATEWAY_TIMEOUT
            if isinstance(error, PaystackTimeoutError)
            else ErrorCode.GATEWAY_ERROR
        )
        logger.error("Gateway call failed (%s): %s", code.name, error, extra=details)
        return PaymentError(code=code, details=details)

    async def _verify_with_gateway(self, reference: str, order_id: str) -> VerifiedTransaction:
        try:
            return await self._gateway.verify_transaction(reference)
        except PaystackServiceError as e:
            raise self._gateway_error(e, order_id=order_id, reference=reference) from e

    def _reconcile(
        self,
        order_id: str,
        transaction: VerifiedTransaction,
        source: EventSource,
        event_type: str,
    ) -> tuple[Order, ProcessingResult]:
        """Apply a provider answer to the order as it is now, not as it was
        before the gateway call."""
        order = self._orders.get_order(order_id)
        if order is None:
            raise PaymentError(code=ErrorCode.ORDER_NOT_FOUND, details={"order_id": order_id})
        return self._apply_transaction(order, transaction, source, event_type)

    def _apply_transaction(
        self,
        order: Order,
        transaction: VerifiedTransaction,
        source: EventSource,
        event_type: str,
        payload_hash: str | None = None,
    ) -> tuple[Order, ProcessingResult]:
        reference = transaction.reference

        if order.payment_reference != reference:
            if transaction.is_success:
                self._flag_unapplied_charge(
                    order,
                    transaction,
                    source,
                    event_type,
                    payload_hash,
                    detail=f"attempt superseded by {order.payment_reference}",
                )
            else:
                logger.warning(
                    "Discarding %s for stale reference %s; order %s is on %s",
                    event_type,
                    reference,
                    order.order_id,
                    order.payment_reference,
                )
            return order, ProcessingResult.IGNORED

        if order.payment_status == PaymentStatus.CANCELLED:
            if transaction.is_success:
                logger.error(
                    "Order %s was cancelled but reference %s was charged %d; refund review needed",
                    order.order_id,
                    reference,
                    transaction.amount,
                )
            self._ledger.try_apply(
                reference,
                order_id=order.order_id,
                event_source=source,
                event_type=event_type,
                outcome=LedgerOutcome.IGNORED,
                payload_hash=payload_hash,
                detail="order cancelled",
            )
            return order, ProcessingResult.IGNORED

        if order.payment_status == PaymentStatus.COMPLETED:
            return order, ProcessingResult.DUPLICATE

        if order.payment_status == PaymentStatus.FAILED:
            if transaction.is_success:
                self._flag_unapplied_charge(
                    order,
                    transaction,
                    source,
                    event_type,
                    payload_hash,
                    detail="order failed",
                )
                return order, ProcessingResult.IGNORED
            return order, ProcessingResult.DUPLICATE

        if transaction.is_success:
            if transaction.amount != order.amount_due:
                reason = (
                    f"Amount mismatch: expected {order.amount_due}, received {transaction.amount}"
                )
                logger.error("Order %s reference %s: %s", order.order_id, reference, reason)
                return self._transition(
                    order, transaction, PaymentStatus.FAILED, source, event_type, payload_hash, reason
                )
            return self._transition(
                order, transaction, PaymentStatus.COMPLETED, source, event_type, payload_hash
            )

        if transaction.is_failed:
            reason = transaction.gateway_response or "Payment failed"
            return self._transition(
                order, transaction, PaymentStatus.FAILED, source, event_type, payload_hash, reason
            )

        logger.info(
            "Reference %s is still %s at the provider; order %s unchanged",
            reference,
            transaction.status,
            order.order_id,
        )
        return order, ProcessingResult.SKIPPED

    def _transition(
        self,
        order: Order,
        transaction: VerifiedTransaction,
        target: PaymentStatus,
        source: EventSource,
        event_type: str,
        payload_hash: str | None,
        reason: str | None = None,
    ) -> tuple[Order, ProcessingResult]:
        """Claim the reference, then write the terminal state.

        The ledger detail holds the target status so a claim whose order
        write never happened can be finished by the next delivery.
        """
        reference = transaction.reference
        claim = self._ledger.try_apply(
            reference,
            order_id=order.order_id,
            event_source=source,
            event_type=event_type,
            payload_hash=payload_hash,
            detail=target.value,
        )
        if claim.already_applied and not self._is_resumable(claim, target):
            current = self._orders.get_order(order.order_id) or order
            return current, ProcessingResult.DUPLICATE

        if target == PaymentStatus.COMPLETED:
            updated = self._orders.mark_completed(
                order.order_id,
                reference,
                paid_at=dt.datetime.now(dt.UTC),
                authorization_code=transaction.authorization_code,
            )
        else:
            updated = self._orders.mark_failed(
                order.order_id,
                reference,
                reason=reason or "Payment failed",
            )

        if updated is None:
            return self._resolve_lost_write(order, reference, target, claim)

        log_payment_operation(
            logger,
            "apply_transaction",
            order_id=updated.order_id,
            reference=reference,
            amount_minor=transaction.amount,
            status=updated.payment_status.value,
            source=source.value,
            event_type=event_type,
        )
        self._notify(updated)
        return updated, ProcessingResult.APPLIED

    def _flag_unapplied_charge(
        self,
        order: Order,
        transaction: VerifiedTransaction,
        source: EventSource,
        event_type: str,
        payload_hash: str | None,
        detail: str,
    ) -> None:
        """Record a successful charge that will not be applied to the order.

        The reference usually already holds the entry for its failed
        attempt; that entry is marked ignored so refund review finds it.
        """
        reference = transaction.reference
        logger.error(
            "Order %s not updated but reference %s was charged %d (%s); refund review needed",
            order.order_id,
            reference,
            transaction.amount,
            detail,
        )
        claim = self._ledger.try_apply(
            reference,
            order_id=order.order_id,
            event_source=source,
            event_type=event_type,
            outcome=LedgerOutcome.IGNORED,
            payload_hash=payload_hash,
            detail=f"charged after {detail}",
        )
        if claim.already_applied:
            self._ledger.record_outcome(
                reference, LedgerOutcome.IGNORED, detail=f"charged after {detail}"
            )

    def _is_resumable(self, claim: LedgerClaim, target: PaymentStatus) -> bool:
        entry = claim.entry
        return (
            entry is not None
            and entry.outcome == LedgerOutcome.APPLIED
            and entry.detail == target.value
        )

    def _resolve_lost_write(
        self,
        order: Order,
        reference: str,
        target: PaymentStatus,
        claim: LedgerClaim,
    ) -> tuple[Order, ProcessingResult]:
        current = self._orders.get_order(order.order_id) or order
        if current.payment_reference == reference and current.payment_status == target:
            return current, ProcessingResult.DUPLICATE

        logger.warning(
            "Order %s moved to %s before %s could be applied for %s",
            order.order_id,
            current.payment_status.value,
            target.value,
            reference,
        )
        if not claim.already_applied:
            self._ledger.record_outcome(
                reference,
                LedgerOutcome.IGNORED,
                detail=f"order {current.payment_status.value}",
            )
        return current, ProcessingResult.IGNORED

    def _notify(self, order: Order) -> None:
        if self._notifier is None:
            return
        try:
            if order.payment_status == PaymentStatus.COMPLETED:
                self._notifier.payment_completed(order)
            else:
                self._notifier.payment_failed(order)
        except Exception:
            logger.exception("Notification for order %s failed", order.order_id)
