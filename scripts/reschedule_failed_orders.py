"""Schedule a fresh payment retry for failed orders that have none pending."""

import argparse

from orderpay.common.db import SessionLocal
from orderpay.services.orders.recovery import reschedule_failed_orders
from orderpay.services.orders.scheduler import DatabaseRetryScheduler


def main() -> None:
    """CLI entrypoint for recovering from retry scheduling failures."""

    parser = argparse.ArgumentParser(description="Reschedule retries for failed orders with no pending retry job.")
    parser.add_argument("--delay-seconds", type=float, default=0.0)
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    order_ids = reschedule_failed_orders(
        SessionLocal,
        DatabaseRetryScheduler(SessionLocal),
        delay_seconds=args.delay_seconds,
        dry_run=args.dry_run,
        limit=args.limit,
    )
    verb = "Would reschedule" if args.dry_run else "Rescheduled"
    print(f"{verb} {len(order_ids)} order(s): {order_ids}")


if __name__ == "__main__":
    main()
