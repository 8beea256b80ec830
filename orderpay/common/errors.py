"""Domain errors raised by the order/payment core.

Gateway declines and transport failures are not exceptions here: the gateway
client reports them as a `ChargeOutcome` and the state machine recovers them.
"""


class InvalidAmountError(ValueError):
    """Amount string is malformed; nothing was persisted."""


class OrderNotFoundError(LookupError):
    """Referenced order, or its transaction, does not exist."""


class PaymentConflictError(RuntimeError):
    """Another attempt owns the order, or a concurrent update won the race."""


class SchedulingFailure(RuntimeError):
    """The delayed-retry substrate rejected a job; needs operator attention."""
