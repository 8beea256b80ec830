"""Shared fixtures: per-test SQLite database and deterministic collaborators."""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_orderpay.db")

from types import SimpleNamespace

import pytest

from orderpay.common.auth import BearerCredential
from orderpay.common.db import Base, make_engine, make_session_factory
from orderpay.services.orders import models  # noqa: F401  (registers tables)
from orderpay.services.orders.gateway import ChargeOutcome, OutcomeKind
from orderpay.services.orders.service import PaymentService


class StubGateway:
    """Returns queued outcomes (or raises queued exceptions) in order."""

    def __init__(self, outcomes=()) -> None:
        self.outcomes = list(outcomes)
        self.calls = []

    def charge(self, payload, credential):
        self.calls.append((payload, credential))
        item = self.outcomes.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingScheduler:
    """Records scheduled retries instead of running them."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.jobs = []

    def schedule_after(self, delay_seconds, request):
        if self.error is not None:
            raise self.error
        self.jobs.append((delay_seconds, request))
        return f"job-{len(self.jobs)}"


def paid(body=None) -> ChargeOutcome:
    return ChargeOutcome(kind=OutcomeKind.SUCCEEDED, body=body or {"status": "paid"})


def declined(reason="Payment failed. (HTTP 400)") -> ChargeOutcome:
    return ChargeOutcome(kind=OutcomeKind.DECLINED, reason=reason)


def timed_out(reason="Payment gateway timed out after 5.0s (ReadTimeout: timed out)") -> ChargeOutcome:
    return ChargeOutcome(kind=OutcomeKind.TRANSPORT_ERROR, reason=reason, attempts=3)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'orderpay.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def credential():
    return BearerCredential(token="user-token", subject="user-1")


@pytest.fixture
def outcomes():
    """Outcome builders: `outcomes.paid()`, `outcomes.declined()`, `outcomes.timed_out()`."""

    return SimpleNamespace(paid=paid, declined=declined, timed_out=timed_out)


@pytest.fixture
def make_service(session_factory, scheduler):
    """Build a PaymentService whose gateways replay the given outcomes."""

    def _make(*gateway_outcomes, retry_outcomes=(), scheduling_error=None):
        return PaymentService(
            session_factory,
            gateway=StubGateway(gateway_outcomes),
            retry_gateway=StubGateway(retry_outcomes),
            scheduler=RecordingScheduler(scheduling_error) if scheduling_error else scheduler,
            retry_delay_seconds=300,
            attempt_lock_ttl_seconds=180,
        )

    return _make
