"""API request/response schemas for the orders service."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, field_validator

from orderpay.common.amounts import AMOUNT_FORMAT_HINT, extract_amount, extract_currency, is_valid_amount
from orderpay.common.state_machine import OrderStatus


class OrderCreateRequest(BaseModel):
    """Order submission: only the amount string, e.g. `$100` or `RON500.00`."""

    amount: str

    @field_validator("amount")
    @classmethod
    def amount_format(cls, value: str) -> str:
        if not is_valid_amount(value):
            raise ValueError(AMOUNT_FORMAT_HINT)
        return value


class OrderCreatedResponse(BaseModel):
    status: str
    message: str
    order_id: int


class PaymentResponse(BaseModel):
    """Acknowledgment of one payment attempt."""

    status: str
    message: str
    order_id: int
    order_status: str


class TransactionView(BaseModel):
    id: int
    order_id: int
    payment_provider: str
    status: str
    status_label: str
    response_data: Any = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, transaction) -> "TransactionView":
        return cls(
            id=transaction.id,
            order_id=transaction.order_id,
            payment_provider=transaction.payment_provider,
            status=transaction.status,
            status_label=OrderStatus(transaction.status).label(),
            response_data=transaction.response_data,
            created_at=transaction.created_at,
            updated_at=transaction.updated_at,
        )


class OrderView(BaseModel):
    id: int
    user_id: str
    amount: str
    currency: str | None
    numeric_amount: float | None
    status: str
    status_label: str
    transaction: TransactionView | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, order) -> "OrderView":
        return cls(
            id=order.id,
            user_id=order.user_id,
            amount=order.amount,
            currency=extract_currency(order.amount),
            numeric_amount=extract_amount(order.amount),
            status=order.status,
            status_label=OrderStatus(order.status).label(),
            transaction=TransactionView.from_model(order.transaction) if order.transaction else None,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
