"""Delayed payment retries.

`RetryScheduler` is the scheduling seam used by the state machine. The default
implementation persists jobs in `payment_retries`; `RetryWorker` claims due
rows and hands them back to the state machine. The claim/mark helpers follow
the same conditional-update discipline so that two workers never run the same
job.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import and_, exists, or_, select, update

from orderpay.common.logging import logger
from orderpay.common.metrics import retry_jobs_total
from orderpay.services.orders.models import PaymentRetry


@dataclass(frozen=True)
class RetryRequest:
    """Order reference plus the payment payload to send again.

    `job_id` is set when the request is run by the retry worker.
    """

    order_id: int
    payload: dict[str, Any]
    job_id: str | None = None


class RetryScheduler(Protocol):
    def schedule_after(self, delay_seconds: float, request: RetryRequest) -> str:
        """Arrange one re-attempt after `delay_seconds`; return a job id."""
        ...


class DatabaseRetryScheduler:
    """Durable delayed tasks stored next to the orders they retry."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def schedule_after(self, delay_seconds: float, request: RetryRequest) -> str:
        run_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        with self.session_factory() as db:
            job = PaymentRetry(
                order_id=request.order_id,
                payload=request.payload,
                status="PENDING",
                run_at=run_at,
            )
            db.add(job)
            db.commit()
            return job.id


def due_retry_ids(db, due_before: datetime, stale_before: datetime, limit: int = 50) -> list[str]:
    """Ids of rows that are due, or whose previous claim went stale."""

    return list(
        db.execute(
            select(PaymentRetry.id)
            .where(_claimable(due_before, stale_before))
            .order_by(PaymentRetry.run_at)
            .limit(limit)
        ).scalars()
    )


def claim_retry(db, job_id: str, due_before: datetime, now: datetime, claim_timeout_seconds: int) -> dict | None:
    """Move one row to `PROCESSING` stamped with `now`; None when another worker got it first."""

    stale_before = now - timedelta(seconds=claim_timeout_seconds)
    result = db.execute(
        update(PaymentRetry)
        .where(PaymentRetry.id == job_id, _claimable(due_before, stale_before))
        .values(status="PROCESSING", claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    row = db.execute(
        select(PaymentRetry.id, PaymentRetry.order_id, PaymentRetry.payload).where(PaymentRetry.id == job_id)
    ).one()
    return {"id": row.id, "order_id": row.order_id, "payload": row.payload, "claimed_at": now}


def _owned(job: dict):
    return and_(
        PaymentRetry.id == job["id"],
        PaymentRetry.status == "PROCESSING",
        PaymentRetry.claimed_at == job["claimed_at"],
    )


def retry_still_owned(db, job: dict) -> bool:
    """False once a stale-claim takeover has re-stamped the row."""

    return db.execute(select(exists().where(_owned(job)))).scalar_one()


def mark_retry_done(db, job: dict) -> None:
    db.execute(
        update(PaymentRetry)
        .where(_owned(job))
        .values(status="DONE")
        .execution_options(synchronize_session=False)
    )


def mark_retry_failed(db, job: dict, error: str) -> None:
    """Park a job whose execution raised; it is not picked up again."""

    db.execute(
        update(PaymentRetry)
        .where(_owned(job))
        .values(status="FAILED", last_error=error)
        .execution_options(synchronize_session=False)
    )


def has_open_retry(db, order_id: int, exclude_job_id: str | None = None) -> bool:
    conditions = [PaymentRetry.order_id == order_id, PaymentRetry.status.in_(("PENDING", "PROCESSING"))]
    if exclude_job_id is not None:
        conditions.append(PaymentRetry.id != exclude_job_id)
    return db.execute(select(exists().where(*conditions))).scalar_one()


def _claimable(due_before: datetime, stale_before: datetime):
    return or_(
        and_(PaymentRetry.status == "PENDING", PaymentRetry.run_at <= due_before),
        and_(
            PaymentRetry.status == "PROCESSING",
            PaymentRetry.claimed_at.is_not(None),
            PaymentRetry.claimed_at < stale_before,
        ),
    )


class RetryWorker:
    """Polls `payment_retries` and re-runs due payment attempts.

    Jobs are claimed one at a time, right before they run, so a claim never
    waits behind other jobs long enough to look stale to another worker.
    """

    def __init__(
        self,
        session_factory,
        payments,
        poll_interval_seconds: float = 1.0,
        claim_timeout_seconds: int = 120,
        batch_size: int = 50,
        service_name: str = "orders",
    ) -> None:
        self.session_factory = session_factory
        self.payments = payments
        self.poll_interval_seconds = poll_interval_seconds
        self.claim_timeout_seconds = claim_timeout_seconds
        self.batch_size = batch_size
        self.service_name = service_name

    def claim_next(self, due_before: datetime | None = None) -> dict | None:
        """Claim the oldest job due at `due_before` (default: now)."""

        now = datetime.now(timezone.utc)
        due_before = due_before or now
        stale_before = now - timedelta(seconds=self.claim_timeout_seconds)
        with self.session_factory() as db:
            for job_id in due_retry_ids(db, due_before, stale_before, limit=5):
                job = claim_retry(db, job_id, due_before, now, self.claim_timeout_seconds)
                if job is not None:
                    db.commit()
                    return job
            db.rollback()
        return None

    def execute(self, job: dict) -> None:
        """Run one claimed job and record how it ended."""

        with self.session_factory() as db:
            owned = retry_still_owned(db, job)
        if not owned:
            logger.warning("retry_job_claim_lost job_id=%s order_id=%s", job["id"], job["order_id"])
            retry_jobs_total.labels(service=self.service_name, result="lost").inc()
            return

        request = RetryRequest(order_id=job["order_id"], payload=job["payload"], job_id=job["id"])
        try:
            self.payments.run_retry(request)
        except Exception as exc:
            logger.exception("retry_job_failed job_id=%s order_id=%s error=%s", job["id"], job["order_id"], exc)
            retry_jobs_total.labels(service=self.service_name, result="failed").inc()
            with self.session_factory() as db:
                mark_retry_failed(db, job, str(exc))
                db.commit()
            return
        retry_jobs_total.labels(service=self.service_name, result="done").inc()
        with self.session_factory() as db:
            mark_retry_done(db, job)
            db.commit()

    async def run_once(self) -> int:
        """Run up to `batch_size` jobs that were due when the pass started."""

        # Retries queued during this pass wait for the next one.
        due_before = datetime.now(timezone.utc)
        executed = 0
        while executed < self.batch_size:
            job = await asyncio.to_thread(self.claim_next, due_before)
            if job is None:
                break
            # Gateway calls block; keep them off the event loop.
            await asyncio.to_thread(self.execute, job)
            executed += 1
        return executed

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("retry_worker_loop_error error=%s", exc)
            await asyncio.sleep(self.poll_interval_seconds)
