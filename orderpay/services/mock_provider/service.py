"""Simulated payment provider.

Decides each charge with an injectable function (coin flip by default) and
answers like a card processor would. It reads orders only to reject unknown
ids; order and transaction state belong to the orders service alone.
"""

import random
from uuid import uuid4

from orderpay.common.logging import logger
from orderpay.services.orders.models import Order


def random_decision(_request) -> bool:
    return random.randint(0, 1) == 1


class MockProviderService:
    """Answers `/mock-stripe/charge` requests."""

    def __init__(self, session_factory, decide=random_decision) -> None:
        self.session_factory = session_factory
        self.decide = decide

    def _order_exists(self, order_id: int) -> bool:
        with self.session_factory() as db:
            return db.get(Order, order_id) is not None

    def charge(self, request) -> tuple[int, dict]:
        """Return `(http_status, body)` for one charge request."""

        if not self._order_exists(request.order_id):
            return 404, {"message": "Order not found"}
        if self.decide(request):
            transaction_id = f"ch_{uuid4().hex[:24]}"
            logger.info("mock_charge order_id=%s status=paid transaction_id=%s", request.order_id, transaction_id)
            return 200, {"message": "Payment succeeded.", "status": "paid", "transaction_id": transaction_id}
        logger.info("mock_charge order_id=%s status=failed", request.order_id)
        return 400, {"message": "Payment failed.", "status": "failed"}
