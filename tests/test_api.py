"""HTTP surface of the orders service, with real JWT verification."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select, update

import orderpay.services.orders.main as orders_main
from orderpay.common.auth import issue_service_token
from orderpay.services.orders.models import Order, Transaction


@pytest.fixture
def user_token():
    return issue_service_token(subject="user-1").token


@pytest.fixture
def client_for(monkeypatch):
    """TestClient whose routes use the given PaymentService; no lifespan, no Redis."""

    def _client(service):
        monkeypatch.setattr(orders_main, "service", service)
        orders_main.app.dependency_overrides[orders_main.rate_limit] = lambda: None
        return TestClient(orders_main.app)

    yield _client
    orders_main.app.dependency_overrides.clear()


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_create_order(client_for, make_service, session_factory, user_token):
    """A valid amount creates a pending order and transaction for the token subject."""

    client = client_for(make_service())

    response = client.post("/orders", json={"amount": "$100"}, headers=auth(user_token))

    assert response.status_code == 200
    assert response.json()["status"] == "success"
    assert response.json()["message"] == "Order created successfully!"
    with session_factory() as db:
        order = db.get(Order, response.json()["order_id"])
        assert (order.user_id, order.amount, order.status) == ("user-1", "$100", "pending")
        transaction = db.execute(select(Transaction).where(Transaction.order_id == order.id)).scalar_one()
        assert (transaction.payment_provider, transaction.status) == ("stripe", "pending")


@pytest.mark.parametrize("body", [{"amount": "INVALID"}, {"amount": 100}, {}])
def test_create_order_validation_error(client_for, make_service, session_factory, user_token, body):
    """Malformed bodies are rejected before anything is written."""

    client = client_for(make_service())

    response = client.post("/orders", json=body, headers=auth(user_token))

    assert response.status_code == 422
    with session_factory() as db:
        assert db.execute(select(func.count()).select_from(Order)).scalar_one() == 0


@pytest.mark.parametrize("header", [None, "Bearer not-a-jwt", "Basic abc"])
def test_requests_without_valid_token_are_rejected(client_for, make_service, header):
    """Requests without a valid bearer JWT get 401."""

    client = client_for(make_service())
    headers = {"Authorization": header} if header else {}

    response = client.post("/orders", json={"amount": "$100"}, headers=headers)

    assert response.status_code == 401


def test_pay_order_success_forwards_caller_token(client_for, make_service, session_factory, user_token, outcomes):
    """A paid attempt answers 200 and charges with the caller's own token."""

    service = make_service(outcomes.paid())
    order = service.create_order("user-1", "$100")
    client = client_for(service)

    response = client.post(f"/orders/{order.id}/pay", headers=auth(user_token))

    assert response.status_code == 200
    assert response.json() == {
        "status": "success",
        "message": "Payment processed successfully.",
        "order_id": order.id,
        "order_status": "paid",
    }
    _, credential = service.gateway.calls[0]
    assert credential.token == user_token
    with session_factory() as db:
        assert db.get(Order, order.id).status == "paid"


def test_pay_order_failure_is_acknowledged_as_processing(client_for, make_service, scheduler, user_token, outcomes):
    """A failed attempt answers 202 once its retry is queued."""

    service = make_service(outcomes.declined())
    order = service.create_order("user-1", "$100")
    client = client_for(service)

    response = client.post(f"/orders/{order.id}/pay", headers=auth(user_token))

    assert response.status_code == 202
    assert response.json()["status"] == "processing"
    assert response.json()["order_status"] == "failed"
    assert len(scheduler.jobs) == 1


def test_pay_unknown_order_is_404(client_for, make_service, user_token):
    """Unknown order ids are reported, not charged."""

    client = client_for(make_service())

    response = client.post("/orders/999/pay", headers=auth(user_token))

    assert response.status_code == 404
    assert response.json()["detail"] == "Order 999 not found"


def test_pay_order_already_in_progress_is_409(client_for, make_service, session_factory, user_token):
    """A second attempt while one is in flight is refused."""

    service = make_service()
    order = service.create_order("user-1", "$100")
    with session_factory() as db:
        db.execute(update(Order).where(Order.id == order.id).values(attempt_started_at=datetime.now(timezone.utc)))
        db.commit()
    client = client_for(service)

    response = client.post(f"/orders/{order.id}/pay", headers=auth(user_token))

    assert response.status_code == 409
    assert service.gateway.calls == []


def test_pay_order_scheduling_failure_is_500(client_for, make_service, user_token, outcomes):
    """An unschedulable retry surfaces as a server error."""

    service = make_service(outcomes.declined(), scheduling_error=ConnectionError("queue down"))
    order = service.create_order("user-1", "$100")
    client = client_for(service)

    response = client.post(f"/orders/{order.id}/pay", headers=auth(user_token))

    assert response.status_code == 500
    assert response.json()["detail"].startswith("An error occurred:")


def test_order_and_transaction_views(client_for, make_service, user_token, outcomes):
    """Read endpoints expose status labels, parsed amount and provider response."""

    service = make_service(outcomes.paid({"status": "paid", "transaction_id": "ch_9"}))
    order = service.create_order("user-1", "RON500.00")
    service.initiate(order.id, issue_service_token(subject="user-1"))
    client = client_for(service)

    order_view = client.get(f"/orders/{order.id}", headers=auth(user_token)).json()
    transaction_view = client.get(
        f"/transactions/{order_view['transaction']['id']}", headers=auth(user_token)
    ).json()

    assert order_view["status"] == "paid"
    assert order_view["status_label"] == "Payment Successful"
    assert order_view["currency"] == "RON"
    assert order_view["numeric_amount"] == 500.0
    assert transaction_view["order_id"] == order.id
    assert transaction_view["response_data"] == {"status": "paid", "transaction_id": "ch_9"}
    assert client.get("/orders/12345", headers=auth(user_token)).status_code == 404
    assert client.get("/transactions/12345", headers=auth(user_token)).status_code == 404


def test_health_and_metrics(client_for, make_service):
    """Probe and scrape endpoints need no token."""

    client = client_for(make_service())

    assert client.get("/health").json() == {"ok": True}
    assert "payment_attempts_total" in client.get("/metrics").text
