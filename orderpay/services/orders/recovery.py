"""Operator recovery for failed orders left without a pending retry.

Happens after a `SchedulingFailure` or when a retry job itself was parked as
`FAILED`.
"""

from sqlalchemy import select

from orderpay.common.logging import logger
from orderpay.common.state_machine import OrderStatus
from orderpay.services.orders.models import Order
from orderpay.services.orders.scheduler import RetryRequest, has_open_retry
from orderpay.services.orders.service import build_payment_payload


def find_orphaned_failed_orders(db, limit: int = 100) -> list[Order]:
    failed = db.execute(
        select(Order).where(Order.status == OrderStatus.FAILED.value).order_by(Order.id).limit(limit)
    ).scalars()
    return [order for order in failed if not has_open_retry(db, order.id)]


def reschedule_failed_orders(
    session_factory,
    scheduler,
    delay_seconds: float,
    dry_run: bool = False,
    limit: int = 100,
) -> list[int]:
    """Schedule one fresh retry per orphaned failed order; return their ids."""

    with session_factory() as db:
        orders = find_orphaned_failed_orders(db, limit)
    rescheduled = []
    for order in orders:
        if not dry_run:
            job_id = scheduler.schedule_after(
                delay_seconds, RetryRequest(order_id=order.id, payload=build_payment_payload(order))
            )
            logger.info("retry_rescheduled order_id=%s job_id=%s", order.id, job_id)
        rescheduled.append(order.id)
    return rescheduled
