#!/usr/bin/env python3
"""
Re-verify payments stuck in processing.

Orders stay in processing when the Paystack webhook never arrives and the
customer never returns to the verify endpoint. This script asks Paystack
for each such order's current reference and applies the answer through the
same reconciliation path as the webhook, so it is safe to run while live
traffic is being processed.

Usage:
    uv run python scripts/reverify_payments.py --env dev
    uv run python scripts/reverify_payments.py --env dev --order-id ORD-3F2A9C1B7D4E
    uv run python scripts/reverify_payments.py --env prod --dry-run
"""

import argparse
import asyncio
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from payments.services.order_service import OrderService
    from payments.services.reconciliation import ReconciliationEngine


async def reverify_orders(
    engine: "ReconciliationEngine",
    orders: "OrderService",
    order_id: str | None = None,
    dry_run: bool = False,
) -> dict[str, str]:
    """
    Re-verify one order, or every order in processing.

    Returns a map of order_id to resulting payment status, or to
    "error: <code>" when the provider could not be reached.
    """
    from payments.models.enums import PaymentStatus
    from payments.models.errors import PaymentError

    if order_id:
        targets = [order_id]
    else:
        targets = [o.order_id for o in orders.list_orders_by_status(PaymentStatus.PROCESSING)]

    results: dict[str, str] = {}
    for target in targets:
        if dry_run:
            results[target] = "would re-verify"
            continue
        try:
            order = await engine.reverify_order(target)
        except PaymentError as e:
            results[target] = f"error: {e.code.name}"
            continue
        results[target] = order.payment_status.value
    return results


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Re-verify processing payments against Paystack"
    )
    parser.add_argument(
        "--env",
        required=True,
        choices=["dev", "prod"],
        help="Environment to reconcile",
    )
    parser.add_argument(
        "--region",
        default="eu-west-1",
        help="AWS region (default: eu-west-1)",
    )
    parser.add_argument(
        "--order-id",
        help="Re-verify a single order instead of all processing orders",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the orders that would be re-verified without calling Paystack",
    )

    args = parser.parse_args()

    os.environ["ENVIRONMENT"] = args.env
    os.environ.setdefault("AWS_DEFAULT_REGION", args.region)

    from payments.config import get_settings
    from payments.services.dynamodb import get_dynamodb_service
    from payments.services.idempotency import IdempotencyLedger
    from payments.services.notification_service import NotificationService
    from payments.services.order_service import OrderService
    from payments.services.paystack_service import PaystackService
    from payments.services.reconciliation import ReconciliationEngine
    from payments.utils.logging import configure_logging

    configure_logging()

    db = get_dynamodb_service(args.env)
    settings = get_settings()
    orders = OrderService(db)
    engine = ReconciliationEngine(
        orders=orders,
        ledger=IdempotencyLedger(db),
        gateway=PaystackService(settings),
        settings=settings,
        notifier=NotificationService(),
    )

    action = "[DRY RUN] " if args.dry_run else ""
    print(f"\n{'='*60}")
    print(f"{action}Re-verifying processing payments in {args.env}")
    print(f"{'='*60}")

    results = asyncio.run(
        reverify_orders(engine, orders, order_id=args.order_id, dry_run=args.dry_run)
    )

    for order_id, outcome in results.items():
        print(f"  {order_id}: {outcome}")

    errors = sum(1 for outcome in results.values() if outcome.startswith("error"))
    print(f"\n{action}{len(results)} order(s) checked, {errors} error(s)")
    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
