"""Order creation and the payment state machine.

`PaymentService` is the only writer of order/transaction status. One attempt
runs in three steps:

1. claim the order (conditional UPDATE on `attempt_started_at`) so no other
   attempt for the same order can run at the same time;
2. call the gateway outside any DB transaction;
3. resolve: write order, transaction and the attempt-log row in one DB
   transaction guarded by `state_version`, then schedule a delayed retry if
   the attempt failed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import selectinload

from orderpay.common.amounts import parse_amount
from orderpay.common.auth import BearerCredential, issue_service_token
from orderpay.common.config import settings
from orderpay.common.errors import OrderNotFoundError, PaymentConflictError, SchedulingFailure
from orderpay.common.logging import logger, order_id_ctx
from orderpay.common.metrics import (
    orders_created_total,
    payment_attempts_total,
    payment_failure_total,
    payment_success_total,
    retries_scheduled_total,
    retry_scheduling_failures_total,
)
from orderpay.common.state_machine import PAYABLE_STATUSES, OrderStatus, validate_transition
from orderpay.services.orders.gateway import ChargeOutcome, OutcomeKind
from orderpay.services.orders.models import Order, PaymentAttempt, Transaction
from orderpay.services.orders.scheduler import RetryRequest, has_open_retry


@dataclass(frozen=True)
class PaymentResult:
    """What the caller of one attempt learns about it."""

    order_id: int
    status: str
    message: str
    processed: bool = True
    retry_scheduled: bool = False
    reason: str | None = None


def build_payment_payload(order: Order, payment_method: str = settings.payment_method) -> dict[str, Any]:
    """Gateway charge body derived from the order's amount string."""

    parsed = parse_amount(order.amount)
    return {
        "amount": parsed.value,
        "currency": parsed.currency,
        "order_id": order.id,
        "payment_method": payment_method,
    }


@dataclass(frozen=True)
class _Claim:
    from_status: str
    version: int
    attempt_number: int
    payload: dict[str, Any]


class PaymentService:
    """Owns order creation and the pending -> paid/failed transitions."""

    def __init__(
        self,
        session_factory,
        gateway,
        retry_gateway,
        scheduler,
        service_name: str = "orders",
        retry_delay_seconds: float = settings.retry_delay_seconds,
        attempt_lock_ttl_seconds: int = settings.attempt_lock_ttl_seconds,
        payment_provider: str = settings.payment_provider,
        payment_method: str = settings.payment_method,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.retry_gateway = retry_gateway
        self.scheduler = scheduler
        self.service_name = service_name
        self.retry_delay_seconds = retry_delay_seconds
        self.attempt_lock_ttl_seconds = attempt_lock_ttl_seconds
        self.payment_provider = payment_provider
        self.payment_method = payment_method

    def create_order(self, user_id: str, amount: str) -> Order:
        """Persist a pending order and its pending transaction together."""

        parse_amount(amount)
        with self.session_factory() as db:
            order = Order(user_id=user_id, amount=amount, status=OrderStatus.PENDING.value, state_version=0)
            db.add(order)
            db.flush()
            db.add(
                Transaction(
                    order_id=order.id,
                    payment_provider=self.payment_provider,
                    status=OrderStatus.PENDING.value,
                )
            )
            db.commit()
        orders_created_total.labels(service=self.service_name).inc()
        logger.info("order_created order_id=%s user_id=%s amount=%s", order.id, user_id, amount)
        return order

    def get_order(self, order_id: int) -> Order:
        with self.session_factory() as db:
            order = db.execute(
                select(Order).options(selectinload(Order.transaction)).where(Order.id == order_id)
            ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self.session_factory() as db:
            transaction = db.execute(
                select(Transaction).options(selectinload(Transaction.order)).where(Transaction.id == transaction_id)
            ).scalar_one_or_none()
        if transaction is None:
            raise OrderNotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    def build_payment_payload(self, order: Order) -> dict[str, Any]:
        return build_payment_payload(order, self.payment_method)

    def initiate(self, order_id: int, credential: BearerCredential) -> PaymentResult:
        """Interactive attempt on behalf of an authenticated caller."""

        return self._attempt(order_id, credential, self.gateway, trigger="interactive")

    def run_retry(self, request: RetryRequest) -> PaymentResult | None:
        """Background re-attempt fired by the retry worker.

        Missing orders and orders another attempt currently owns are skipped;
        the owning attempt schedules its own retry if it fails.
        """

        try:
            return self._attempt(
                request.order_id,
                issue_service_token(),
                self.retry_gateway,
                trigger="retry",
                payload=request.payload,
                job_id=request.job_id,
            )
        except OrderNotFoundError as exc:
            logger.warning("retry_skipped order_id=%s reason=not_found detail=%s", request.order_id, exc)
        except PaymentConflictError as exc:
            logger.info("retry_skipped order_id=%s reason=conflict detail=%s", request.order_id, exc)
        return None

    def _attempt(
        self,
        order_id: int,
        credential: BearerCredential,
        gateway,
        trigger: str,
        payload: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> PaymentResult:
        ctx_token = order_id_ctx.set(str(order_id))
        try:
            claim = self._claim(order_id, payload)
            if claim is None:
                logger.info("payment_skipped order_id=%s reason=already_paid trigger=%s", order_id, trigger)
                return PaymentResult(
                    order_id=order_id,
                    status=OrderStatus.PAID.value,
                    message="Order already paid.",
                    processed=False,
                )

            payment_attempts_total.labels(service=self.service_name, trigger=trigger).inc()
            try:
                outcome = gateway.charge(claim.payload, credential)
            except Exception as exc:
                logger.exception("gateway_call_crashed order_id=%s error=%s", order_id, exc)
                outcome = ChargeOutcome(
                    kind=OutcomeKind.TRANSPORT_ERROR, reason=f"Payment gateway call failed: {exc}"
                )

            new_status = OrderStatus.PAID.value if outcome.succeeded else OrderStatus.FAILED.value
            self._resolve(order_id, claim, outcome, new_status, trigger)

            if outcome.succeeded:
                payment_success_total.labels(service=self.service_name).inc()
                logger.info(
                    "payment_resolved order_id=%s outcome=paid trigger=%s attempt=%s",
                    order_id,
                    trigger,
                    claim.attempt_number,
                )
                return PaymentResult(
                    order_id=order_id,
                    status=new_status,
                    message="Payment processed successfully.",
                )

            payment_failure_total.labels(service=self.service_name, kind=outcome.kind.value).inc()
            log = logger.error if outcome.kind is OutcomeKind.TRANSPORT_ERROR else logger.warning
            log(
                "payment_resolved order_id=%s outcome=failed kind=%s trigger=%s attempt=%s reason=%s",
                order_id,
                outcome.kind.value,
                trigger,
                claim.attempt_number,
                outcome.reason,
            )
            scheduled = self._schedule_retry(order_id, claim.payload, job_id)
            return PaymentResult(
                order_id=order_id,
                status=new_status,
                message=(
                    "Payment failed; a retry has been scheduled."
                    if scheduled
                    else "Payment failed; a retry is already scheduled."
                ),
                retry_scheduled=True,
                reason=outcome.reason,
            )
        finally:
            order_id_ctx.reset(ctx_token)

    def _claim(self, order_id: int, payload: dict[str, Any] | None) -> _Claim | None:
        """Take exclusive ownership of the order for one attempt.

        Returns None when the order is already paid. A claim older than
        `attempt_lock_ttl_seconds` belongs to a dead attempt and may be taken.
        """

        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=self.attempt_lock_ttl_seconds)
        with self.session_factory() as db:
            order = db.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(f"Order {order_id} not found")
            if order.transaction is None:
                raise OrderNotFoundError(f"Order {order_id} has no transaction")
            if order.status == OrderStatus.PAID.value:
                return None

            # Compared in SQL only: SQLite hands back naive datetimes.
            result = db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status.in_(PAYABLE_STATUSES),
                    Order.state_version == order.state_version,
                    or_(Order.attempt_started_at.is_(None), Order.attempt_started_at < stale_before),
                )
                .values(attempt_started_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise PaymentConflictError(f"Payment for order {order_id} is already in progress")

            previous_attempts = db.execute(
                select(func.count()).select_from(PaymentAttempt).where(PaymentAttempt.order_id == order_id)
            ).scalar_one()
            claim = _Claim(
                from_status=order.status,
                version=order.state_version,
                attempt_number=previous_attempts + 1,
                payload=payload if payload is not None else self.build_payment_payload(order),
            )
            db.commit()
            return claim

    def _resolve(self, order_id: int, claim: _Claim, outcome: ChargeOutcome, new_status: str, trigger: str) -> None:
        """Write both records and the attempt row in one transaction, or none."""

        validate_transition(claim.from_status, new_status)
        with self.session_factory() as db:
            result = db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == claim.from_status,
                    Order.state_version == claim.version,
                )
                .values(status=new_status, state_version=claim.version + 1, attempt_started_at=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise PaymentConflictError(
                    f"optimistic concurrency conflict for order {order_id} (expected version {claim.version})"
                )
            db.execute(
                update(Transaction)
                .where(Transaction.order_id == order_id)
                .values(status=new_status, response_data=outcome.response_data)
                .execution_options(synchronize_session=False)
            )
            db.add(
                PaymentAttempt(
                    order_id=order_id,
                    attempt_number=claim.attempt_number,
                    trigger=trigger,
                    result=outcome.kind.value,
                    latency_ms=outcome.latency_ms,
                    error_detail=None if outcome.succeeded else outcome.reason,
                )
            )
            db.commit()

    def _schedule_retry(self, order_id: int, payload: dict[str, Any], current_job_id: str | None = None) -> bool:
        """Queue one re-attempt unless another retry for the order is already open.

        `current_job_id` is the retry job running this attempt; it is about to
        finish and does not count as open. Returns False when nothing was queued.
        """

        try:
            with self.session_factory() as db:
                pending = has_open_retry(db, order_id, exclude_job_id=current_job_id)
            if pending:
                logger.info("payment_retry_already_open order_id=%s", order_id)
                return False
            job_id = self.scheduler.schedule_after(
                self.retry_delay_seconds, RetryRequest(order_id=order_id, payload=payload)
            )
        except Exception as exc:
            retry_scheduling_failures_total.labels(service=self.service_name).inc()
            logger.critical("retry_scheduling_failed order_id=%s error=%s", order_id, exc)
            raise SchedulingFailure(f"Could not schedule payment retry for order {order_id}: {exc}") from exc
        retries_scheduled_total.labels(service=self.service_name).inc()
        logger.info(
            "payment_retry_scheduled order_id=%s job_id=%s delay_s=%s",
            order_id,
            job_id,
            self.retry_delay_seconds,
        )
        return True
