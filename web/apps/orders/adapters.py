"""In-process adapters for the orders domain ports.

These adapters implement ``InventoryPort``, ``RewardsPort`` and
``OrderStorePort`` in memory, with no network or database. They are used by
unit tests and by local development when ``USE_HTTP_ADAPTERS`` is off, and
they enforce the same invariants as the ledger services: stock floor,
non-negative points and balance, reference-based idempotency.
"""

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from .domain import InventoryPort, Order, OrderItem, OrderStorePort, RewardsPort
from .errors import (
    IdempotencyConflictError,
    InsufficientBalanceError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class InventoryRecord:
    stock: int = 0
    sold: int = 0


@dataclass
class RewardAccount:
    points: int = 0
    balance_cents: int = 0


def _quantities(items: List[OrderItem]) -> Dict[str, int]:
    totals: Dict[str, int] = defaultdict(int)
    for it in items:
        if it.quantity <= 0:
            raise ValidationError("INVALID_QUANTITY")
        totals[it.product_id] += it.quantity
    return dict(totals)


class InMemoryInventory(InventoryPort):
    """Stock ledger held in a dict, serialized by a single lock.

    Args:
        allow_negative: Let reservations drive stock below zero instead of
            raising ``InsufficientStockError``.
    """

    def __init__(self, allow_negative: bool = False):
        self.allow_negative = allow_negative
        self._records: Dict[str, InventoryRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, product_id: str, stock: int, sold: int | None = None) -> None:
        if stock < 0 and not self.allow_negative:
            raise ValidationError("NEGATIVE_STOCK")
        with self._lock:
            rec = self._records.setdefault(product_id, InventoryRecord())
            rec.stock = stock
            if sold is not None:
                rec.sold = sold

    def get(self, product_id: str) -> InventoryRecord:
        with self._lock:
            rec = self._records.get(product_id)
            if rec is None:
                raise NotFoundError("PRODUCT_NOT_FOUND")
            return InventoryRecord(rec.stock, rec.sold)

    def reserve(self, items: List[OrderItem]) -> None:
        wanted = _quantities(items)
        with self._lock:
            for product_id, qty in wanted.items():
                rec = self._records.get(product_id)
                if rec is None:
                    raise NotFoundError("PRODUCT_NOT_FOUND")
                if not self.allow_negative and rec.stock < qty:
                    raise InsufficientStockError(product_id)
            for product_id, qty in wanted.items():
                rec = self._records[product_id]
                rec.stock -= qty
                rec.sold += qty

    def restock(self, items: List[OrderItem]) -> None:
        wanted = _quantities(items)
        with self._lock:
            missing = [p for p in wanted if p not in self._records]
            if missing:
                raise NotFoundError("PRODUCT_NOT_FOUND")
            for product_id, qty in wanted.items():
                self._records[product_id].stock += qty

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class InMemoryRewards(RewardsPort):
    """Points and wallet ledger keyed by buyer id.

    Applied references are remembered with their amounts so a retried call is
    a no-op, mirroring the rewards service's idempotency keys.
    """

    def __init__(self):
        self._accounts: Dict[str, RewardAccount] = {}
        self._references: Dict[str, Tuple[str, str, int, int]] = {}
        self._lock = threading.Lock()

    def open(self, buyer_id: str, points: int = 0, balance_cents: int = 0) -> None:
        with self._lock:
            self._accounts[buyer_id] = RewardAccount(points, balance_cents)

    def get(self, buyer_id: str) -> RewardAccount:
        with self._lock:
            acct = self._accounts.get(buyer_id)
            if acct is None:
                raise NotFoundError("ACCOUNT_NOT_FOUND")
            return RewardAccount(acct.points, acct.balance_cents)

    def _apply(self, kind: str, buyer_id: str, points: int, balance_cents: int, reference: str | None) -> None:
        if points < 0 or balance_cents < 0:
            raise ValidationError("INVALID_AMOUNT")
        entry = (kind, buyer_id, points, balance_cents)
        with self._lock:
            if reference is not None and reference in self._references:
                if self._references[reference] != entry:
                    raise IdempotencyConflictError()
                return
            acct = self._accounts.get(buyer_id)
            if acct is None:
                raise NotFoundError("ACCOUNT_NOT_FOUND")
            sign = 1 if kind == "credit" else -1
            if kind == "debit" and (acct.points < points or acct.balance_cents < balance_cents):
                raise InsufficientBalanceError()
            acct.points += sign * points
            acct.balance_cents += sign * balance_cents
            if reference is not None:
                self._references[reference] = entry

    def credit(self, buyer_id: str, *, points: int = 0, balance_cents: int = 0, reference: str | None = None) -> None:
        self._apply("credit", buyer_id, points, balance_cents, reference)

    def debit(self, buyer_id: str, *, points: int = 0, balance_cents: int = 0, reference: str | None = None) -> None:
        self._apply("debit", buyer_id, points, balance_cents, reference)

    def clear(self) -> None:
        with self._lock:
            self._accounts.clear()
            self._references.clear()


class InMemoryOrderStore(OrderStorePort):
    """Order storage with one lock per order id.

    ``locked`` hands out a deep copy and only writes it back when the block
    exits cleanly, so a failed transition leaves the stored order untouched.
    """

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._guard = threading.Lock()
        self._next_number = 1

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks[key]

    @contextmanager
    def adding(self, order: Order):
        key = str(order.id)
        with self._lock_for(key):
            staged = copy.deepcopy(order)
            yield staged
            with self._guard:
                staged.number = self._next_number
                self._next_number += 1
                self._orders[key] = copy.deepcopy(staged)

    @contextmanager
    def locked(self, order_id):
        key = str(order_id)
        with self._lock_for(key):
            with self._guard:
                current = self._orders.get(key)
            if current is None:
                raise NotFoundError("ORDER_NOT_FOUND", order_id=order_id)
            working = copy.deepcopy(current)
            yield working
            with self._guard:
                self._orders[key] = copy.deepcopy(working)

    def get(self, order_id) -> Order:
        with self._guard:
            order = self._orders.get(str(order_id))
        if order is None:
            raise NotFoundError("ORDER_NOT_FOUND", order_id=order_id)
        return copy.deepcopy(order)

    def list_for_buyer(self, buyer_id: str) -> List[Order]:
        return [o for o in self.list_all() if o.buyer_id == buyer_id]

    def list_all(self) -> List[Order]:
        with self._guard:
            orders = [copy.deepcopy(o) for o in self._orders.values()]
        return sorted(orders, key=lambda o: o.number or 0, reverse=True)
