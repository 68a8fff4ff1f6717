"""Typed failures raised by the orders lifecycle and its ledgers.

Every error is a ``ValueError`` whose string value is a short machine code
(for example ``"INSUFFICIENT_STOCK"``), so callers can keep matching on
``str(exc)``. Errors also carry the offending order id and the order's status
at the time of failure when those are known; the lifecycle fills them in for
errors that originate in a ledger.
"""


class OrderError(ValueError):
    """Base class for all lifecycle failures.

    Attributes:
        code: Machine-readable error code, also the string value.
        order_id: Id of the order involved, if any.
        state: Order status at the time of the failure, if known.
    """

    code = "ORDER_ERROR"

    def __init__(self, code: str | None = None, *, order_id=None, state=None):
        self.code = code or self.code
        self.order_id = order_id
        self.state = state
        super().__init__(self.code)

    def attach(self, order_id, state) -> "OrderError":
        """Fill in order context that was unknown where the error was raised."""
        if self.order_id is None:
            self.order_id = order_id
        if self.state is None:
            self.state = state
        return self


class ValidationError(OrderError):
    """Malformed input: empty cart, bad quantities, negative amounts."""

    code = "VALIDATION_ERROR"


class NegativeResultError(OrderError):
    """Money arithmetic would produce a negative amount."""

    code = "NEGATIVE_RESULT"


class NotFoundError(OrderError):
    """An order, product or reward account does not exist."""

    code = "NOT_FOUND"


class InvalidTransitionError(OrderError):
    """The requested event is not allowed from the order's current status.

    Attributes:
        event: Name of the rejected event (e.g. ``"confirm_payment"``).
    """

    code = "INVALID_TRANSITION"

    def __init__(self, code: str | None = None, *, order_id=None, state=None, event: str | None = None):
        super().__init__(code, order_id=order_id, state=state)
        self.event = event


class WindowExpiredError(InvalidTransitionError):
    """A return was requested outside the return window."""

    code = "RETURN_WINDOW_EXPIRED"


class NoActiveReturnRequestError(InvalidTransitionError):
    """A return decision was made without a pending return request."""

    code = "NO_ACTIVE_RETURN_REQUEST"


class InsufficientStockError(OrderError):
    """A reservation would take a product's stock below zero.

    Attributes:
        product_id: The first product that could not be reserved.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.product_id = product_id


class InsufficientBalanceError(OrderError):
    """A debit would take a buyer's points or wallet balance below zero."""

    code = "INSUFFICIENT_BALANCE"


class IdempotencyConflictError(OrderError):
    """A ledger reference was reused with a different entry."""

    code = "IDEMPOTENCY_CONFLICT"


class PartialFailureError(OrderError):
    """A transition failed after some ledger side effects were applied.

    The applied side effects are not compensated; ``applied`` names them in
    the order they were committed so an operator (or a retry, which is safe
    for reward references) can reconcile. The original failure is chained as
    ``__cause__``.
    """

    code = "PARTIAL_FAILURE"

    def __init__(self, applied: list[str], *, order_id=None, state=None):
        super().__init__(order_id=order_id, state=state)
        self.applied = list(applied)
