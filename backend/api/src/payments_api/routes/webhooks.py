"""Webhook endpoint for Paystack event deliveries.

Handles:
- charge.success / charge.failed: reconciled against the order
- transfer.success / transfer.failed: acknowledged and logged
- anything else: acknowledged and ignored

This endpoint does NOT require JWT authentication: deliveries are
authenticated by the X-Paystack-Signature HMAC over the raw body.
"""

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from payments.models.enums import ProcessingResult
from payments.models.errors import ErrorCode, ErrorResponse, PaymentError
from payments.models.webhook import WebhookEvent, WebhookOutcome
from payments.services.reconciliation import ReconciliationEngine
from payments.services.signature import (
    SIGNATURE_HEADER,
    WebhookSignatureVerifier,
    compute_payload_hash,
)
from payments.utils.logging import get_logger, log_webhook_event
from payments_api.dependencies import get_reconciliation_engine, get_signature_verifier
from payments_api.models.payments import WebhookResponse

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/payment/webhook",
    summary="Receive Paystack webhook events",
    description="""
Endpoint for Paystack webhook events.

**No authentication required** - the signature is verified with the Paystack secret key.

**Idempotent**: redelivered events return 200 with a `duplicate` result.

Every authenticated delivery is answered with 200, including deliveries
that could not be processed; those are logged at ERROR level.
""",
    response_model=WebhookResponse,
    responses={
        200: {"description": "Event received", "model": WebhookResponse},
        400: {"description": "Signed body is not a webhook event", "model": ErrorResponse},
        401: {"description": "Missing or invalid signature", "model": ErrorResponse},
    },
)
async def handle_paystack_webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    verifier: WebhookSignatureVerifier = Depends(get_signature_verifier),
) -> WebhookResponse:
    # Signature covers the bytes as received, so read them before any parsing
    raw_body = await request.body()

    if not verifier.verify(request.headers.get(SIGNATURE_HEADER), raw_body):
        raise PaymentError(code=ErrorCode.SIGNATURE_INVALID)

    try:
        event = WebhookEvent.model_validate_json(raw_body)
    except ValidationError as e:
        logger.warning("Signed webhook body is not a valid event: %s", e.error_count())
        raise PaymentError(
            code=ErrorCode.VALIDATION_ERROR,
            details={"reason": "Body is not a valid webhook event"},
        )

    log_webhook_event(logger, event.event, event.reference, result="received")

    try:
        outcome = await engine.handle_webhook_event(
            event, payload_hash=compute_payload_hash(raw_body)
        )
    except Exception:
        # The provider only retries on non-2xx; the log is the alert channel here
        logger.exception(
            "Webhook processing failed for %s (%s)", event.event, event.reference
        )
        outcome = WebhookOutcome(
            event=event.event,
            reference=event.reference,
            processing_result=ProcessingResult.ERROR,
            message="Processing failed",
        )

    return WebhookResponse.from_outcome(outcome)
