"""Order lifecycle service.

``OrderLifecycle`` advances orders through their states and applies the
ledger side effects of each transition. Every transition follows the same
shape:

1. lock the order (or stage a new one) through the ``OrderStorePort``,
2. run the aggregate's transition method, which validates preconditions
   before anything else happens,
3. call the ledgers,
4. commit the order when the lock is released.

A failure in step 2, or in the first ledger call, leaves nothing applied and
propagates as is. A failure after a ledger call has been applied cannot be
rolled back here and is reported as ``PartialFailureError``.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .domain import (
    Clock,
    InventoryPort,
    Order,
    OrderItem,
    OrderStatus,
    OrderStorePort,
    PaymentReceipt,
    ReturnDecision,
    RewardsPort,
    SettlementPolicy,
    ShippingAddress,
)
from .errors import OrderError, PartialFailureError, ValidationError
from .money import Money

logger = logging.getLogger("orders.lifecycle")


@dataclass(frozen=True)
class CreateOrder:
    """Input for order creation, already validated at the API edge."""

    buyer_id: str
    items: Sequence[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: Money
    shipping_price: Money
    tax_price: Money


class _Transition:
    """Book-keeping for one transition: the order and applied side effects."""

    def __init__(self, event: str, order_id=None):
        self.event = event
        self.order_id = order_id
        self.order: Optional[Order] = None
        self.from_status: Optional[OrderStatus] = None
        self.applied: List[str] = []

    def bind(self, order: Order) -> Order:
        self.order = order
        self.order_id = order.id
        self.from_status = order.status
        return order

    @property
    def state(self) -> Optional[OrderStatus]:
        """Status of the stored order; a failed transition never commits."""
        if self.from_status is not None:
            return self.from_status
        return self.order.status if self.order is not None else None

    def apply(self, step: str, fn: Callable, *args, **kwargs) -> None:
        fn(*args, **kwargs)
        self.applied.append(step)


class OrderLifecycle:
    """Domain service that owns order transitions and their side effects.

    Args:
        orders: Storage for orders.
        inventory: Stock ledger, reserved on creation and restocked on refund.
        rewards: Buyer ledger, credited with points on payment and with the
            refund on an approved return.
        clock: Time source for every timestamp and the return window.
        policy: Fee, points and refund rules.
    """

    def __init__(
        self,
        orders: OrderStorePort,
        inventory: InventoryPort,
        rewards: RewardsPort,
        clock: Clock,
        policy: SettlementPolicy | None = None,
    ):
        self.orders = orders
        self.inventory = inventory
        self.rewards = rewards
        self.clock = clock
        self.policy = policy or SettlementPolicy()

    @contextmanager
    def _transition(self, event: str, order_id=None):
        tx = _Transition(event, order_id)
        try:
            yield tx
        except Exception as exc:
            if tx.applied:
                logger.error(
                    "order transition partially applied",
                    extra={"order_id": str(tx.order_id), "event": event, "applied": tx.applied},
                )
                raise PartialFailureError(tx.applied, order_id=tx.order_id, state=tx.state) from exc
            if isinstance(exc, OrderError):
                exc.attach(tx.order_id, tx.state)
            raise
        logger.info(
            "order transition",
            extra={
                "order_id": str(tx.order_id),
                "event": event,
                "from_status": tx.from_status.value if tx.from_status else None,
                "to_status": tx.order.status.value if tx.order is not None else None,
            },
        )

    # ---- Commands ----
    def create_order(self, cmd: CreateOrder) -> Order:
        """Place an order and reserve stock for all of its lines.

        Raises:
            ValidationError: For an empty cart or invalid quantities/amounts.
            InsufficientStockError: If any line cannot be reserved.
            NotFoundError: If a product has no inventory record.
            PartialFailureError: If stock was reserved but the order could
                not be committed.
        """
        if not cmd.buyer_id:
            raise ValidationError("INVALID_BUYER")
        order = Order.place(
            buyer_id=cmd.buyer_id,
            items=cmd.items,
            shipping_address=cmd.shipping_address,
            payment_method=cmd.payment_method,
            items_price=cmd.items_price,
            shipping_price=cmd.shipping_price,
            tax_price=cmd.tax_price,
            created_at=self.clock.now(),
            fee_rate=self.policy.fee_rate,
        )
        with self._transition("create", order.id) as tx, self.orders.adding(order) as staged:
            tx.order = staged
            tx.apply("inventory.reserve", self.inventory.reserve, list(staged.items))
        return staged

    def confirm_payment(self, order_id, receipt: PaymentReceipt) -> Order:
        """Mark an order paid and credit the buyer's reward points.

        Points are credited once per order: the status check runs on the
        locked order, and the ledger call carries an order-scoped reference.
        """
        with self._transition("confirm_payment", order_id) as tx, self.orders.locked(order_id) as order:
            tx.bind(order)
            order.confirm_payment(receipt, self.clock.now())
            points = self.policy.points_for(order.total_price)
            if points > 0:
                tx.apply(
                    "rewards.credit_points",
                    self.rewards.credit,
                    order.buyer_id,
                    points=points,
                    reference=f"{order.id}:payment",
                )
        return order

    def confirm_shipment(self, order_id) -> Order:
        with self._transition("confirm_shipment", order_id) as tx, self.orders.locked(order_id) as order:
            tx.bind(order)
            order.confirm_shipment(self.clock.now())
        return order

    def confirm_delivery(self, order_id) -> Order:
        with self._transition("confirm_delivery", order_id) as tx, self.orders.locked(order_id) as order:
            tx.bind(order)
            order.confirm_delivery(self.clock.now())
        return order

    def request_return(self, order_id, reason: str) -> Order:
        """Open a return request on a delivered order inside the window.

        Raises:
            InvalidTransitionError: If the order is not delivered or already
                has a return request.
            WindowExpiredError: If the window has passed.
        """
        with self._transition("request_return", order_id) as tx, self.orders.locked(order_id) as order:
            tx.bind(order)
            order.request_return(reason, self.clock.now(), self.policy.return_window)
        return order

    def decide_return(self, order_id, decision: ReturnDecision, reject_reason: Optional[str] = None) -> Order:
        """Approve or reject a pending return request.

        Approval refunds the buyer's wallet per the refund policy, optionally
        reverses earned points and restocks the items, and commits the order
        as ``REFUNDED``. Rejection stores the reason and is terminal.

        Raises:
            NoActiveReturnRequestError: If there is no pending request.
            PartialFailureError: If a later ledger step failed after an
                earlier one was applied.
        """
        try:
            decision = ReturnDecision(decision)
        except ValueError:
            raise ValidationError("INVALID_DECISION", order_id=order_id) from None
        with self._transition(f"{decision.value}_return", order_id) as tx, self.orders.locked(order_id) as order:
            tx.bind(order)
            now = self.clock.now()
            if decision == ReturnDecision.REJECT:
                order.reject_return(now, reject_reason)
            else:
                order.approve_return(now)
                self._refund(tx, order)
                order.mark_refunded(self.policy.refund_amount(order), now)
        return order

    def _refund(self, tx: _Transition, order: Order) -> None:
        amount = self.policy.refund_amount(order)
        if amount.cents > 0:
            tx.apply(
                "rewards.credit_balance",
                self.rewards.credit,
                order.buyer_id,
                balance_cents=amount.cents,
                reference=f"{order.id}:refund",
            )
        if self.policy.reverse_points_on_refund:
            points = self.policy.points_for(order.total_price)
            if points > 0:
                tx.apply(
                    "rewards.debit_points",
                    self.rewards.debit,
                    order.buyer_id,
                    points=points,
                    reference=f"{order.id}:points-reversal",
                )
        if self.policy.restock_on_return:
            tx.apply("inventory.restock", self.inventory.restock, list(order.items))

    # ---- Queries ----
    def get_order(self, order_id) -> Order:
        return self.orders.get(order_id)

    def list_orders_for_buyer(self, buyer_id: str) -> List[Order]:
        return self.orders.list_for_buyer(buyer_id)

    def list_orders(self) -> List[Order]:
        return self.orders.list_all()
