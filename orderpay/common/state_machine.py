"""Order payment state machine: statuses and allowed transitions."""

from enum import Enum


class OrderStatus(str, Enum):
    """Payment status shared by an order and its transaction."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    def label(self) -> str:
        """Human-readable label for API views."""

        return _LABELS[self]

    @classmethod
    def values(cls) -> list[str]:
        return [status.value for status in cls]

    @classmethod
    def labels(cls) -> dict[str, str]:
        return {status.value: status.label() for status in cls}


_LABELS = {
    OrderStatus.PENDING: "Pending Payment",
    OrderStatus.PAID: "Payment Successful",
    OrderStatus.FAILED: "Payment Failed",
}

# `failed -> failed` is a re-attempt that failed again; `paid` is terminal.
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"paid", "failed"},
    "failed": {"paid", "failed"},
    "paid": set(),
}

PAYABLE_STATUSES = frozenset({"pending", "failed"})


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
