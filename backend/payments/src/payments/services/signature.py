"""Webhook signature verification for Paystack deliveries.

Paystack signs each webhook with HMAC-SHA512 of the request body, keyed
with the account secret key, hex-encoded in the X-Paystack-Signature
header. The digest must be computed over the bytes exactly as received:
parsing and re-serializing the JSON does not reproduce them.
"""

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Paystack-Signature"


class WebhookSignatureVerifier:
    """Checks webhook authenticity. Fails closed: any doubt returns False.

    Usage:
        verifier = WebhookSignatureVerifier(secret_key)
        if not verifier.verify(request.headers.get(SIGNATURE_HEADER), raw_body):
            ...reject with 401...
    """

    digestmod = hashlib.sha512

    def __init__(self, secret: str) -> None:
        """Initialize with the shared secret.

        Args:
            secret: Paystack secret key used to sign webhook payloads.
        """
        self._secret = secret.encode("utf-8") if secret else b""

    def compute_signature(self, raw_body: bytes) -> str:
        """Hex HMAC of the raw body.

        Args:
            raw_body: Request body bytes as received on the wire.

        Returns:
            Lowercase hex digest.
        """
        return hmac.new(self._secret, raw_body, self.digestmod).hexdigest()

    def verify(self, signature_header: str | None, raw_body: bytes | None) -> bool:
        """Verify a webhook signature.

        Args:
            signature_header: Value of the X-Paystack-Signature header.
            raw_body: Untouched request body bytes.

        Returns:
            True only if the header matches the HMAC of the body.
        """
        if not self._secret:
            logger.error("Webhook secret is not configured; rejecting delivery")
            return False

        if not signature_header or not raw_body:
            logger.warning("Missing signature or body in webhook verification")
            return False

        try:
            supplied = signature_header.strip().encode("ascii")
        except UnicodeEncodeError:
            logger.warning("Webhook signature header is not ASCII")
            return False

        expected = self.compute_signature(raw_body)
        if hmac.compare_digest(expected.encode("ascii"), supplied):
            return True

        logger.warning(
            "Invalid webhook signature (supplied=%s...)",
            supplied[:10].decode("ascii", errors="replace"),
        )
        return False


def compute_payload_hash(raw_body: bytes) -> str:
    """SHA-256 of a webhook body, stored with ledger entries for audit.

    Args:
        raw_body: Request body bytes as received.

    Returns:
        Hex digest.
    """
    return hashlib.sha256(raw_body).hexdigest()
