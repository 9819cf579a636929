"""Unit tests for the reconciliation engine.

The engine runs against moto DynamoDB tables and the in-memory Paystack
stub from conftest, so ledger and order writes are real conditional writes.

Test categories:
- Initialization (amount handling, payability, retry after failure)
- Verification (terminal short-circuit, gateway errors)
- Webhook events (dispatch, duplicates, stale references, amount mismatch)
- Cancellation
- Crash recovery between ledger claim and order write
"""

import asyncio
import logging
from decimal import Decimal

import httpx
import pytest

from payments.models.enums import (
    EventSource,
    LedgerOutcome,
    PaymentStatus,
    ProcessingResult,
    TransactionStatus,
)
from payments.models.errors import ErrorCode, PaymentError
from payments.models.webhook import WebhookEvent


# === Test Configuration ===

TEST_USER_ID = "user-sub-123"
OTHER_USER_ID = "user-sub-456"


def _initialize(engine, order, amount=None):
    return asyncio.run(engine.initialize_payment(order.order_id, TEST_USER_ID, amount))


def _webhook(engine, payload: dict):
    return asyncio.run(engine.handle_webhook_event(WebhookEvent.model_validate(payload)))


class TestInitializePayment:
    """initialize_payment: amount conversion, range, payability."""

    def test_amount_converted_to_kobo(self, engine, make_order, paystack_stub):
        order = make_order(total=1_500_000)

        result = _initialize(engine, order, Decimal("15000"))

        assert result.amount_minor == 1_500_000
        assert paystack_stub.transactions[result.transaction.reference]["amount"] == 1_500_000
        assert result.order.payment_status == PaymentStatus.PROCESSING
        assert result.order.payment_reference == result.transaction.reference
        assert result.transaction.authorization_url.startswith("https://checkout.paystack.com/")

    def test_amount_defaults_to_order_total(self, engine, make_order):
        order = make_order(total=2_500_000)

        result = _initialize(engine, order)

        assert result.amount_minor == 2_500_000
        assert result.order.amount_charged == 2_500_000

    def test_metadata_carries_order_id(self, engine, make_order, paystack_stub):
        order = make_order()

        result = _initialize(engine, order)

        metadata = paystack_stub.transactions[result.transaction.reference]["metadata"]
        assert metadata["order_id"] == order.order_id
        assert metadata["user_id"] == TEST_USER_ID

    def test_fractional_amount_rounds_half_up(self, engine):
        assert engine.to_minor_units(Decimal("150.005")) == 15001
        assert engine.to_minor_units(Decimal("150.004")) == 15000

    def test_amount_below_floor_rejected_without_gateway_call(
        self, engine, make_order, order_service, paystack_stub
    ):
        order = make_order(total=1_500_000)

        with pytest.raises(PaymentError) as exc_info:
            _initialize(engine, order, Decimal("50"))

        assert exc_info.value.code == ErrorCode.AMOUNT_OUT_OF_RANGE
        assert paystack_stub.initialize_calls == 0
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.PENDING

    def test_amount_above_total_rejected(self, engine, make_order, paystack_stub):
        order = make_order(total=1_500_000)

        with pytest.raises(PaymentError) as exc_info:
            _initialize(engine, order, Decimal("20000"))

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert paystack_stub.initialize_calls == 0

    def test_unknown_order(self, engine):
        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.initialize_payment("ORD-MISSING", TEST_USER_ID))

        assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND

    def test_other_users_order(self, engine, make_order):
        order = make_order()

        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.initialize_payment(order.order_id, OTHER_USER_ID))

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED

    def test_already_processing(self, engine, make_order):
        order = make_order()
        _initialize(engine, order)

        with pytest.raises(PaymentError) as exc_info:
            _initialize(engine, order)

        assert exc_info.value.code == ErrorCode.ALREADY_INITIALIZED

    def test_cancelled_order_not_payable(self, engine, make_order, paystack_stub):
        order = make_order()
        engine.cancel_order(order.order_id, TEST_USER_ID)

        with pytest.raises(PaymentError) as exc_info:
            _initialize(engine, order)

        assert exc_info.value.code == ErrorCode.ORDER_NOT_PAYABLE
        assert paystack_stub.initialize_calls == 0

    def test_retry_after_failure_issues_new_reference(
        self, engine, make_order, paystack_stub
    ):
        order = make_order()
        first = _initialize(engine, order)
        paystack_stub.settle(first.transaction.reference, "failed")
        _webhook(engine, paystack_stub.webhook_event(first.transaction.reference, "charge.failed"))

        second = _initialize(engine, order)

        assert second.transaction.reference != first.transaction.reference
        assert second.order.payment_status == PaymentStatus.PROCESSING
        assert second.order.previous_references == [first.transaction.reference]

    def test_gateway_timeout_leaves_order_pending(
        self, engine, make_order, order_service, paystack_stub
    ):
        order = make_order()
        paystack_stub.fail_with = httpx.ReadTimeout("timed out")

        with pytest.raises(PaymentError) as exc_info:
            _initialize(engine, order)

        assert exc_info.value.code == ErrorCode.GATEWAY_TIMEOUT
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.PENDING

    def test_gateway_error_leaves_order_pending(
        self, engine, make_order, order_service, paystack_stub
    ):
        order = make_order()
        paystack_stub.fail_with = httpx.Response(
            500, json={"status": False, "message": "Internal error"}
        )

        with pytest.raises(PaymentError) as exc_info:
            _initialize(engine, order)

        assert exc_info.value.code == ErrorCode.GATEWAY_ERROR
        assert exc_info.value.details["provider_message"] == "Internal error"
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.PENDING

    def test_concurrent_initialize_one_winner(self, engine, make_order, order_service):
        order = make_order()

        async def _both():
            return await asyncio.gather(
                engine.initialize_payment(order.order_id, TEST_USER_ID),
                engine.initialize_payment(order.order_id, TEST_USER_ID),
                return_exceptions=True,
            )

        results = asyncio.run(_both())

        errors = [r for r in results if isinstance(r, PaymentError)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(errors) == 1
        assert errors[0].code == ErrorCode.ALREADY_INITIALIZED
        stored = order_service.get_order(order.order_id)
        assert stored.payment_reference == successes[0].transaction.reference


class TestVerifyPayment:
    """verify_payment: provider round-trip and stored-state answers."""

    def test_successful_payment_completes_order(
        self, engine, make_order, paystack_stub, notifier
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")

        result = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert result.payment_status == PaymentStatus.COMPLETED
        assert result.transaction_status == TransactionStatus.SUCCESS
        assert result.paid_at is not None
        assert result.authorization_code == "AUTH_8dfhjjdt"
        notifier.payment_completed.assert_called_once()

    def test_repeat_verify_is_idempotent_and_skips_gateway(
        self, engine, make_order, paystack_stub
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")

        first = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))
        calls_after_first = paystack_stub.verify_calls
        second = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert second == first
        assert paystack_stub.verify_calls == calls_after_first

    def test_declined_payment_fails_order(self, engine, make_order, paystack_stub, notifier):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "failed", gateway_response="Insufficient Funds")

        result = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert result.payment_status == PaymentStatus.FAILED
        assert result.failure_reason == "Insufficient Funds"
        assert result.paid_at is None
        notifier.payment_failed.assert_called_once()

    def test_pending_at_provider_leaves_order_processing(
        self, engine, make_order, paystack_stub, ledger
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference

        result = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert result.payment_status == PaymentStatus.PROCESSING
        assert result.transaction_status == TransactionStatus.PENDING
        assert ledger.get_entry(reference) is None

    def test_gateway_timeout_leaves_order_processing(
        self, engine, make_order, paystack_stub, order_service
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.fail_with = httpx.ReadTimeout("timed out")

        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert exc_info.value.code == ErrorCode.GATEWAY_TIMEOUT
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.PROCESSING

    def test_malformed_reference(self, engine):
        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.verify_payment("bad ref!", TEST_USER_ID))

        assert exc_info.value.code == ErrorCode.INVALID_REFERENCE

    def test_unknown_reference(self, engine):
        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.verify_payment("ref_999999", TEST_USER_ID))

        assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND

    def test_other_users_reference(self, engine, make_order):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference

        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.verify_payment(reference, OTHER_USER_ID))

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED

    def test_amount_mismatch_fails_order(self, engine, make_order, paystack_stub, notifier):
        order = make_order(total=1_500_000)
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success", amount=1_000_000)

        result = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert result.payment_status == PaymentStatus.FAILED
        assert result.failure_reason.startswith("Amount mismatch")
        assert result.paid_at is None
        notifier.payment_completed.assert_not_called()

    def test_partial_amount_checked_against_amount_charged(
        self, engine, make_order, paystack_stub
    ):
        order = make_order(total=1_500_000)
        reference = _initialize(engine, order, Decimal("5000")).transaction.reference
        paystack_stub.settle(reference, "success")

        result = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert result.payment_status == PaymentStatus.COMPLETED
        assert result.amount_due == 500_000


class TestWebhookEvents:
    """handle_webhook_event: dispatch and gating."""

    def test_charge_success_completes_order(self, engine, make_order, paystack_stub, ledger):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")

        outcome = _webhook(engine, paystack_stub.webhook_event(reference))

        assert outcome.processing_result == ProcessingResult.APPLIED
        entry = ledger.get_entry(reference)
        assert entry.event_source == EventSource.WEBHOOK
        assert entry.event_type == "charge.success"

    def test_redelivery_is_duplicate(self, engine, make_order, paystack_stub, notifier):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")
        payload = paystack_stub.webhook_event(reference)

        first = _webhook(engine, payload)
        second = _webhook(engine, payload)

        assert first.processing_result == ProcessingResult.APPLIED
        assert second.processing_result == ProcessingResult.DUPLICATE
        notifier.payment_completed.assert_called_once()

    def test_charge_failed_fails_order(self, engine, make_order, paystack_stub, order_service):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "failed", gateway_response="Declined")

        outcome = _webhook(engine, paystack_stub.webhook_event(reference, "charge.failed"))

        assert outcome.processing_result == ProcessingResult.APPLIED
        stored = order_service.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.FAILED
        assert stored.failure_reason == "Declined"

    def test_success_after_failure_never_completes(
        self, engine, make_order, paystack_stub, order_service
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "failed")
        _webhook(engine, paystack_stub.webhook_event(reference, "charge.failed"))

        paystack_stub.settle(reference, "success")
        outcome = _webhook(engine, paystack_stub.webhook_event(reference))

        assert outcome.processing_result == ProcessingResult.IGNORED
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.FAILED

    def test_stale_reference_discarded(self, engine, make_order, paystack_stub, order_service):
        order = make_order()
        first = _initialize(engine, order).transaction.reference
        paystack_stub.settle(first, "failed")
        _webhook(engine, paystack_stub.webhook_event(first, "charge.failed"))
        second = _initialize(engine, order).transaction.reference

        # The first attempt reports success late; only the current attempt counts
        paystack_stub.settle(first, "success")
        outcome = _webhook(engine, paystack_stub.webhook_event(first))

        assert outcome.processing_result == ProcessingResult.IGNORED
        stored = order_service.get_order(order.order_id)
        assert stored.payment_status == PaymentStatus.PROCESSING
        assert stored.payment_reference == second

    def test_stale_reference_success_flagged_for_refund(
        self, engine, make_order, paystack_stub, ledger, notifier, caplog
    ):
        order = make_order()
        first = _initialize(engine, order).transaction.reference
        paystack_stub.settle(first, "failed")
        _webhook(engine, paystack_stub.webhook_event(first, "charge.failed"))
        second = _initialize(engine, order).transaction.reference
        paystack_stub.settle(first, "success")

        with caplog.at_level(logging.ERROR, logger="payments.services.reconciliation"):
            outcome = _webhook(engine, paystack_stub.webhook_event(first))

        assert outcome.processing_result == ProcessingResult.IGNORED
        entry = ledger.get_entry(first)
        assert entry.outcome == LedgerOutcome.IGNORED
        assert entry.detail == f"charged after attempt superseded by {second}"
        assert any(
            "refund review" in r.getMessage() and first in r.getMessage()
            for r in caplog.records
            if r.levelno == logging.ERROR
        )
        notifier.payment_completed.assert_not_called()

    def test_stale_reference_failure_not_flagged(
        self, engine, make_order, paystack_stub, ledger, caplog
    ):
        order = make_order()
        first = _initialize(engine, order).transaction.reference
        paystack_stub.settle(first, "failed")
        _webhook(engine, paystack_stub.webhook_event(first, "charge.failed"))
        _initialize(engine, order)

        with caplog.at_level(logging.WARNING, logger="payments.services.reconciliation"):
            outcome = _webhook(engine, paystack_stub.webhook_event(first, "charge.failed"))

        assert outcome.processing_result == ProcessingResult.IGNORED
        assert ledger.get_entry(first).outcome == LedgerOutcome.APPLIED
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_unknown_reference_ignored(self, engine):
        outcome = _webhook(
            engine,
            {"event": "charge.success", "data": {"reference": "ref_nobody", "status": "success", "amount": 10000}},
        )

        assert outcome.processing_result == ProcessingResult.IGNORED

    def test_missing_reference_ignored(self, engine):
        outcome = _webhook(engine, {"event": "charge.success", "data": {}})

        assert outcome.processing_result == ProcessingResult.IGNORED
        assert outcome.reference is None

    def test_malformed_data_reported_as_error(self, engine):
        outcome = _webhook(
            engine,
            {"event": "charge.success", "data": {"reference": "ref_000001", "status": "success"}},
        )

        assert outcome.processing_result == ProcessingResult.ERROR

    @pytest.mark.parametrize("event_type", ["transfer.success", "transfer.failed"])
    def test_transfer_events_logged_only(self, engine, event_type):
        outcome = _webhook(engine, {"event": event_type, "data": {"reference": "TRF_000001"}})

        assert outcome.processing_result == ProcessingResult.SKIPPED

    def test_unknown_event_ignored(self, engine):
        outcome = _webhook(engine, {"event": "subscription.create", "data": {}})

        assert outcome.processing_result == ProcessingResult.IGNORED
        assert outcome.event == "subscription.create"

    @pytest.mark.parametrize("data", [[], None, "x", 42])
    def test_unknown_event_with_any_data_ignored(self, engine, data):
        outcome = _webhook(engine, {"event": "charge.dispute.create", "data": data})

        assert outcome.processing_result == ProcessingResult.IGNORED
        assert outcome.reference is None

    @pytest.mark.parametrize("data", [[], None, "x"])
    def test_charge_event_with_non_object_data_is_error(self, engine, data):
        outcome = _webhook(engine, {"event": "charge.success", "data": data})

        assert outcome.processing_result == ProcessingResult.ERROR
        assert outcome.reference is None

    def test_charge_success_with_non_success_status_skipped(
        self, engine, make_order, paystack_stub, order_service
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference

        outcome = _webhook(engine, paystack_stub.webhook_event(reference))

        assert outcome.processing_result == ProcessingResult.SKIPPED
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.PROCESSING

    def test_payload_hash_recorded(self, engine, make_order, paystack_stub, ledger):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")

        asyncio.run(
            engine.handle_webhook_event(
                WebhookEvent.model_validate(paystack_stub.webhook_event(reference)),
                payload_hash="f" * 64,
            )
        )

        assert ledger.get_entry(reference).payload_hash == "f" * 64


class TestCancellation:
    def test_cancel_pending_order(self, engine, make_order):
        order = make_order()

        cancelled = engine.cancel_order(order.order_id, TEST_USER_ID)

        assert cancelled.payment_status == PaymentStatus.CANCELLED

    def test_cancel_twice_returns_cancelled_order(self, engine, make_order):
        order = make_order()
        engine.cancel_order(order.order_id, TEST_USER_ID)

        again = engine.cancel_order(order.order_id, TEST_USER_ID)

        assert again.payment_status == PaymentStatus.CANCELLED

    def test_cancelled_order_never_completes(
        self, engine, make_order, paystack_stub, order_service, ledger, notifier
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        engine.cancel_order(order.order_id, TEST_USER_ID)
        paystack_stub.settle(reference, "success")

        outcome = _webhook(engine, paystack_stub.webhook_event(reference))
        verified = asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        assert outcome.processing_result == ProcessingResult.IGNORED
        assert verified.payment_status == PaymentStatus.CANCELLED
        assert verified.transaction_status == TransactionStatus.CANCELLED
        assert verified.paid_at is None
        assert ledger.get_entry(reference).outcome == LedgerOutcome.IGNORED
        notifier.payment_completed.assert_not_called()

    def test_completed_order_not_cancellable(self, engine, make_order, paystack_stub):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")
        asyncio.run(engine.verify_payment(reference, TEST_USER_ID))

        with pytest.raises(PaymentError) as exc_info:
            engine.cancel_order(order.order_id, TEST_USER_ID)

        assert exc_info.value.code == ErrorCode.ORDER_NOT_CANCELLABLE

    def test_other_user_cannot_cancel(self, engine, make_order):
        order = make_order()

        with pytest.raises(PaymentError) as exc_info:
            engine.cancel_order(order.order_id, OTHER_USER_ID)

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED


class TestReverify:
    def test_reverify_completes_processing_order(self, engine, make_order, paystack_stub, ledger):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")

        result = asyncio.run(engine.reverify_order(order.order_id))

        assert result.payment_status == PaymentStatus.COMPLETED
        assert ledger.get_entry(reference).event_source == EventSource.REVERIFY

    def test_reverify_skips_pending_order(self, engine, make_order, paystack_stub):
        order = make_order()

        result = asyncio.run(engine.reverify_order(order.order_id))

        assert result.payment_status == PaymentStatus.PENDING
        assert paystack_stub.verify_calls == 0

    def test_reverify_unknown_order(self, engine):
        with pytest.raises(PaymentError) as exc_info:
            asyncio.run(engine.reverify_order("ORD-MISSING"))

        assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND


class TestCrashRecovery:
    """A claim recorded without its order write is finished by the next delivery."""

    def test_orphaned_claim_completed_on_redelivery(
        self, engine, make_order, paystack_stub, ledger, order_service, notifier
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")
        # Writer claimed the reference, then died before the order write
        ledger.try_apply(
            reference,
            order_id=order.order_id,
            event_source=EventSource.WEBHOOK,
            event_type="charge.success",
            detail=PaymentStatus.COMPLETED.value,
        )

        outcome = _webhook(engine, paystack_stub.webhook_event(reference))

        assert outcome.processing_result == ProcessingResult.APPLIED
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.COMPLETED
        notifier.payment_completed.assert_called_once()

    def test_ignored_claim_not_resumed(
        self, engine, make_order, paystack_stub, ledger, order_service
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")
        ledger.try_apply(
            reference,
            order_id=order.order_id,
            event_source=EventSource.WEBHOOK,
            event_type="charge.success",
            outcome=LedgerOutcome.IGNORED,
        )

        outcome = _webhook(engine, paystack_stub.webhook_event(reference))

        assert outcome.processing_result == ProcessingResult.DUPLICATE
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.PROCESSING


class TestNotifications:
    def test_notifier_failure_does_not_undo_completion(
        self, engine, make_order, paystack_stub, order_service, notifier
    ):
        order = make_order()
        reference = _initialize(engine, order).transaction.reference
        paystack_stub.settle(reference, "success")
        notifier.payment_completed.side_effect = RuntimeError("mailer down")

        outcome = _webhook(engine, paystack_stub.webhook_event(reference))

        assert outcome.processing_result == ProcessingResult.APPLIED
        assert order_service.get_order(order.order_id).payment_status == PaymentStatus.COMPLETED
