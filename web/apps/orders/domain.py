"""Domain models, state machine and ports for orders.

This module contains the order aggregate and its value objects, the table of
allowed status transitions, protocol definitions (ports) for the ledgers and
storage the lifecycle depends on, and the settlement policy that prices
fees, points and refunds. Nothing here performs I/O.
"""

import uuid
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from . import return_window
from .errors import (
    InvalidTransitionError,
    NoActiveReturnRequestError,
    ValidationError,
    WindowExpiredError,
)
from .money import DEFAULT_CURRENCY, PLATFORM_FEE_RATE, Money, platform_fee, sum_money


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    Status only moves forward through ``ALLOWED_TRANSITIONS``; the return
    path is the only branch after delivery.
    """

    CREATED = "CREATED"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURN_APPROVED = "RETURN_APPROVED"
    RETURN_REJECTED = "RETURN_REJECTED"
    REFUNDED = "REFUNDED"


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReturnDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class RefundPolicy(str, Enum):
    """How much of an order is paid back when a return is approved."""

    FULL_TOTAL = "full_total"
    EXCLUDE_PLATFORM_FEE = "exclude_platform_fee"


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PAID}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURN_REQUESTED}),
    OrderStatus.RETURN_REQUESTED: frozenset({OrderStatus.RETURN_APPROVED, OrderStatus.RETURN_REJECTED}),
    OrderStatus.RETURN_APPROVED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.RETURN_REJECTED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True if ``current -> target`` is an allowed transition."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


# ---- Value objects ----
@dataclass(frozen=True)
class OrderItem:
    """A single line item in an order.

    Attributes:
        product_id: Catalog identifier of the product.
        quantity: Number of units bought.
        name: Product name at checkout time.
        unit_price: Price per unit at checkout time. Later catalog price
            changes never reach an existing order.
        image: Optional image reference captured with the snapshot.
    """

    product_id: str
    quantity: int
    name: str = ""
    unit_price: Money = field(default_factory=Money.zero)
    image: Optional[str] = None


@dataclass(frozen=True)
class ShippingAddress:
    address: str
    city: str
    postal_code: str
    country: str


@dataclass(frozen=True)
class PaymentReceipt:
    """Receipt fields reported by the payment provider."""

    id: str
    status: str
    update_time: str = ""
    email_address: str = ""


@dataclass
class ReturnRequest:
    reason: str
    requested_at: datetime
    status: ReturnStatus = ReturnStatus.PENDING
    decided_at: Optional[datetime] = None
    reject_reason: Optional[str] = None


@dataclass(frozen=True)
class SettlementPolicy:
    """Marketplace rules applied by the lifecycle at each transition.

    Attributes:
        fee_rate: Platform fee as a fraction of the pre-fee total.
        minor_units_per_point: Minor units of payment that earn one reward
            point (100 = one point per whole currency unit).
        return_window: How long after delivery a return may be requested.
        refund_policy: How the refund amount is derived from the order.
        restock_on_return: Put returned items back into stock on approval.
        reverse_points_on_refund: Debit the points earned by the payment
            when the order is refunded.
    """

    fee_rate: Decimal = PLATFORM_FEE_RATE
    minor_units_per_point: int = 100
    return_window: timedelta = return_window.RETURN_WINDOW
    refund_policy: RefundPolicy = RefundPolicy.FULL_TOTAL
    restock_on_return: bool = True
    reverse_points_on_refund: bool = False

    def points_for(self, amount: Money) -> int:
        return amount.cents // self.minor_units_per_point

    def refund_amount(self, order: "Order") -> Money:
        if self.refund_policy == RefundPolicy.EXCLUDE_PLATFORM_FEE:
            return order.total_price.subtract(order.platform_fee)
        return order.total_price


# ---- Aggregate ----
@dataclass
class Order:
    """The order aggregate.

    Transition methods check their preconditions and mutate the order in
    place; they never touch ledgers. Each raises a typed
    ``InvalidTransitionError`` (or subtype) carrying the order id and the
    current status when the event is not allowed.
    """

    id: uuid.UUID
    buyer_id: str
    items: tuple[OrderItem, ...]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: Money
    shipping_price: Money
    tax_price: Money
    platform_fee: Money
    total_price: Money
    created_at: datetime
    currency: str = DEFAULT_CURRENCY
    status: OrderStatus = OrderStatus.CREATED
    number: Optional[int] = None
    payment_result: Optional[PaymentReceipt] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: Optional[Money] = None
    return_request: Optional[ReturnRequest] = None

    @classmethod
    def place(
        cls,
        *,
        buyer_id: str,
        items: Sequence[OrderItem],
        shipping_address: ShippingAddress,
        payment_method: str,
        items_price: Money,
        shipping_price: Money,
        tax_price: Money,
        created_at: datetime,
        fee_rate: Decimal | str = PLATFORM_FEE_RATE,
        order_id: uuid.UUID | None = None,
    ) -> "Order":
        """Build a new order in ``CREATED`` with its fee and total computed.

        Raises:
            ValidationError: ``EMPTY_ORDER`` for an empty cart,
                ``INVALID_QUANTITY`` for non-positive quantities,
                ``CURRENCY_MISMATCH`` when amounts disagree on currency.
        """
        if not items:
            raise ValidationError("EMPTY_ORDER")
        if any(it.quantity <= 0 for it in items):
            raise ValidationError("INVALID_QUANTITY")
        currency = items_price.currency
        amounts = [items_price, shipping_price, tax_price] + [it.unit_price for it in items]
        if any(m.currency != currency for m in amounts):
            raise ValidationError("CURRENCY_MISMATCH")

        base = sum_money([items_price, shipping_price, tax_price], currency)
        fee = platform_fee(base, fee_rate)
        return cls(
            id=order_id or uuid.uuid4(),
            buyer_id=buyer_id,
            items=tuple(items),
            shipping_address=shipping_address,
            payment_method=payment_method,
            items_price=items_price,
            shipping_price=shipping_price,
            tax_price=tax_price,
            platform_fee=fee,
            total_price=base + fee,
            created_at=created_at,
            currency=currency,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _advance(self, event: str, target: OrderStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(order_id=self.id, state=self.status, event=event)
        self.status = target

    def confirm_payment(self, receipt: PaymentReceipt, at: datetime) -> None:
        self._advance("confirm_payment", OrderStatus.PAID)
        self.payment_result = receipt
        self.paid_at = at

    def confirm_shipment(self, at: datetime) -> None:
        self._advance("confirm_shipment", OrderStatus.SHIPPED)
        self.shipped_at = at

    def confirm_delivery(self, at: datetime) -> None:
        self._advance("confirm_delivery", OrderStatus.DELIVERED)
        self.delivered_at = at

    def request_return(self, reason: str, at: datetime, window: timedelta = return_window.RETURN_WINDOW) -> None:
        """Open a pending return request on a delivered order.

        Raises:
            InvalidTransitionError: If the order is not delivered or a return
                was already requested.
            WindowExpiredError: If ``at`` is outside the return window.
        """
        if self.status != OrderStatus.DELIVERED or self.delivered_at is None or self.return_request is not None:
            raise InvalidTransitionError(order_id=self.id, state=self.status, event="request_return")
        if not return_window.eligible(self.delivered_at, at, window):
            raise WindowExpiredError(order_id=self.id, state=self.status, event="request_return")
        self._advance("request_return", OrderStatus.RETURN_REQUESTED)
        self.return_request = ReturnRequest(reason=reason, requested_at=at)

    def _pending_return(self, event: str) -> ReturnRequest:
        rr = self.return_request
        if rr is None or rr.status != ReturnStatus.PENDING:
            raise NoActiveReturnRequestError(order_id=self.id, state=self.status, event=event)
        return rr

    def approve_return(self, at: datetime) -> None:
        rr = self._pending_return("approve_return")
        self._advance("approve_return", OrderStatus.RETURN_APPROVED)
        rr.status = ReturnStatus.APPROVED
        rr.decided_at = at

    def reject_return(self, at: datetime, reason: Optional[str] = None) -> None:
        rr = self._pending_return("reject_return")
        self._advance("reject_return", OrderStatus.RETURN_REJECTED)
        rr.status = ReturnStatus.REJECTED
        rr.decided_at = at
        rr.reject_reason = reason

    def mark_refunded(self, amount: Money, at: datetime) -> None:
        self._advance("refund", OrderStatus.REFUNDED)
        self.refund_amount = amount
        self.refunded_at = at


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Port describing the inventory ledger used by the lifecycle."""

    def reserve(self, items: List[OrderItem]) -> None:
        """Take stock for every item, all or nothing.

        Raises:
            InsufficientStockError: If a product lacks stock and the ledger
                enforces its floor.
            NotFoundError: If a product has no inventory record.
        """
        raise NotImplementedError()

    def restock(self, items: List[OrderItem]) -> None:
        """Return stock for every item without reversing sold counts."""
        raise NotImplementedError()


class RewardsPort(Protocol):
    """Port describing the buyer reward ledger (points and wallet)."""

    def credit(self, buyer_id: str, *, points: int = 0, balance_cents: int = 0, reference: str | None = None) -> None:
        """Add points and/or wallet balance to a buyer's account.

        A repeated ``reference`` with the same amounts applies nothing.
        """
        raise NotImplementedError()

    def debit(self, buyer_id: str, *, points: int = 0, balance_cents: int = 0, reference: str | None = None) -> None:
        """Remove points and/or wallet balance.

        Raises:
            InsufficientBalanceError: If either counter would go negative.
        """
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Durable order storage with per-order serialization."""

    def adding(self, order: Order) -> AbstractContextManager[Order]:
        """Persist a new order; the insert commits when the block exits cleanly."""
        raise NotImplementedError()

    def locked(self, order_id) -> AbstractContextManager[Order]:
        """Yield an order under an exclusive lock; save it on clean exit.

        Raises:
            NotFoundError: If no order has ``order_id``.
        """
        raise NotImplementedError()

    def get(self, order_id) -> Order:
        raise NotImplementedError()

    def list_for_buyer(self, buyer_id: str) -> List[Order]:
        raise NotImplementedError()

    def list_all(self) -> List[Order]:
        raise NotImplementedError()


class Clock(Protocol):
    def now(self) -> datetime:
        raise NotImplementedError()
