"""Idempotency ledger keyed by provider transaction reference.

A provider may deliver the same webhook several times, and a client may
retry verify while the webhook is being handled. The ledger decides which
of those callers gets to apply a reference to its order: the conditional
put below succeeds for exactly one of them. Duplicates are detected from
the failed condition, never from a prior read, so two concurrent handlers
cannot both see the reference as new.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from payments.models.enums import EventSource, LedgerOutcome
from payments.models.ledger import LedgerClaim, LedgerEntry

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Atomic check-and-insert of applied references."""

    LEDGER_TABLE = "payment-ledger"

    def __init__(self, db: "DynamoDBService") -> None:
        """Initialize the ledger.

        Args:
            db: DynamoDB service instance
        """
        self.db = db

    def try_apply(
        self,
        reference: str,
        *,
        order_id: str,
        event_source: EventSource,
        event_type: str,
        outcome: LedgerOutcome = LedgerOutcome.APPLIED,
        payload_hash: str | None = None,
        detail: str | None = None,
    ) -> LedgerClaim:
        """Claim a reference for application to an order.

        Args:
            reference: Provider transaction reference
            order_id: Order the reference belongs to
            event_source: Entry point making the claim
            event_type: Event being applied (charge.success, verify.failed, ...)
            outcome: Outcome to record with the claim
            payload_hash: SHA-256 of the raw webhook body, if any
            detail: Free-text note stored with the entry

        Returns:
            LedgerClaim with already_applied=False for the single winning caller.
            Every other caller gets already_applied=True and the existing entry.
        """
        entry = LedgerEntry(
            reference=reference,
            order_id=order_id,
            outcome=outcome,
            event_source=event_source,
            event_type=event_type,
            recorded_at=dt.datetime.now(dt.UTC),
            payload_hash=payload_hash,
            detail=detail,
        )

        created = self.db.put_item(
            self.LEDGER_TABLE,
            self._entry_to_item(entry),
            condition_expression="attribute_not_exists(#reference)",
            expression_attribute_names={"#reference": "reference"},
        )
        if created:
            logger.info(
                "Ledger claim recorded for %s (order=%s, source=%s, event=%s)",
                reference,
                order_id,
                event_source.value,
                event_type,
            )
            return LedgerClaim(already_applied=False, entry=entry)

        logger.info(
            "Reference %s already in ledger; %s delivery from %s is a duplicate",
            reference,
            event_type,
            event_source.value,
        )
        return LedgerClaim(already_applied=True, entry=self.get_entry(reference))

    def record_outcome(
        self,
        reference: str,
        outcome: LedgerOutcome,
        detail: str | None = None,
    ) -> LedgerEntry | None:
        """Update the outcome of an existing entry.

        Used when a claimed reference could not be applied, e.g. the order was
        cancelled between the claim and the order write.

        Args:
            reference: Provider transaction reference
            outcome: New outcome
            detail: Reason for the change

        Returns:
            Updated entry, or None if no entry exists for the reference
        """
        attrs = self.db.update_item(
            self.LEDGER_TABLE,
            {"reference": reference},
            "SET #outcome = :outcome, #detail = :detail",
            {":outcome": outcome.value, ":detail": detail},
            {"#outcome": "outcome", "#detail": "detail", "#reference": "reference"},
            condition_expression="attribute_exists(#reference)",
        )
        return self._item_to_entry(attrs) if attrs else None

    def get_entry(self, reference: str) -> LedgerEntry | None:
        """Get the ledger entry for a reference.

        Args:
            reference: Provider transaction reference

        Returns:
            LedgerEntry or None if the reference was never claimed
        """
        item = self.db.get_item(self.LEDGER_TABLE, {"reference": reference})
        return self._item_to_entry(item) if item else None

    def _entry_to_item(self, entry: LedgerEntry) -> dict[str, Any]:
        item: dict[str, Any] = {
            "reference": entry.reference,
            "order_id": entry.order_id,
            "outcome": entry.outcome.value,
            "event_source": entry.event_source.value,
            "event_type": entry.event_type,
            "recorded_at": entry.recorded_at.isoformat(),
        }
        if entry.payload_hash:
            item["payload_hash"] = entry.payload_hash
        if entry.detail:
            item["detail"] = entry.detail
        return item

    def _item_to_entry(self, item: dict[str, Any]) -> LedgerEntry:
        return LedgerEntry(
            reference=item["reference"],
            order_id=item["order_id"],
            outcome=LedgerOutcome(item["outcome"]),
            event_source=EventSource(item["event_source"]),
            event_type=item["event_type"],
            recorded_at=dt.datetime.fromisoformat(item["recorded_at"]),
            payload_hash=item.get("payload_hash"),
            detail=item.get("detail"),
        )
