"""SQLAlchemy repository for product stock and sales counters.

One row per product holds the available ``stock`` and the cumulative
``sold`` count. Reservations and restocks lock the affected rows with
``SELECT ... FOR UPDATE`` so concurrent batches on the same product are
serialized, and each batch is applied all-or-nothing.

The database URL comes from ``INVENTORY_DATABASE_URL``; by default it points
at the service's Postgres container. ``INVENTORY_ALLOW_NEGATIVE_STOCK=1``
switches reservations to the permissive mode in which stock may go below
zero.
"""

import os
from collections import defaultdict
from contextlib import contextmanager

from sqlalchemy import BigInteger, Integer, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "INVENTORY_DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
ALLOW_NEGATIVE_STOCK = os.getenv("INVENTORY_ALLOW_NEGATIVE_STOCK", "0").lower() in {"1", "true", "yes"}

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


class Base(DeclarativeBase):
    pass


class Stock(Base):
    """Inventory record for one product.

    Attributes:
        product_id: Catalog product id (primary key).
        stock: Units available for sale.
        sold: Units sold so far; never decreased, not even by restocks.
    """

    __tablename__ = "stock"
    product_id = mapped_column(String(64), primary_key=True)
    stock = mapped_column(Integer, nullable=False, default=0)
    sold = mapped_column(BigInteger, nullable=False, default=0)


class UnknownProduct(LookupError):
    def __init__(self, product_id: str):
        super().__init__(product_id)
        self.product_id = product_id


class InsufficientStock(ValueError):
    def __init__(self, product_id: str):
        super().__init__(product_id)
        self.product_id = product_id


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    """Yield a SQLAlchemy session bound to the module engine; closed on exit."""
    with Session(engine) as s:
        yield s


def _totals(items: list[tuple[str, int]]) -> dict[str, int]:
    totals: dict[str, int] = defaultdict(int)
    for product_id, qty in items:
        totals[product_id] += qty
    return dict(totals)


class InventoryRepo:
    """Repository for inventory operations."""

    def __init__(self, allow_negative: bool | None = None):
        self.allow_negative = ALLOW_NEGATIVE_STOCK if allow_negative is None else allow_negative

    def get(self, product_id: str) -> Stock | None:
        with get_session() as s:
            obj = s.get(Stock, product_id)
            if obj is not None:
                s.expunge(obj)
            return obj

    def upsert(self, product_id: str, stock: int, sold: int | None = None) -> Stock:
        """Set a product's stock (and optionally sold), creating the record.

        Raises:
            InsufficientStock: For a negative ``stock`` while the floor is
                enforced.
        """
        if stock < 0 and not self.allow_negative:
            raise InsufficientStock(product_id)
        with get_session() as s:
            obj = s.get(Stock, product_id, with_for_update=True) or Stock(product_id=product_id, stock=0, sold=0)
            obj.stock = stock
            if sold is not None:
                obj.sold = sold
            s.add(obj)
            s.commit()
            s.refresh(obj)
            s.expunge(obj)
            return obj

    def _locked(self, s: Session, product_ids) -> dict[str, Stock]:
        rows = (
            s.execute(
                select(Stock)
                .where(Stock.product_id.in_(sorted(product_ids)))
                .order_by(Stock.product_id)
                .with_for_update()
            )
            .scalars()
            .all()
        )
        found = {r.product_id: r for r in rows}
        for product_id in sorted(product_ids):
            if product_id not in found:
                raise UnknownProduct(product_id)
        return found

    def reserve(self, items: list[tuple[str, int]]) -> None:
        """Atomically take stock for every (product_id, quantity) pair.

        Rows are locked in product id order to avoid deadlocks between
        overlapping batches. Nothing is written unless every line fits.

        Raises:
            UnknownProduct: If a product has no record.
            InsufficientStock: If a product lacks stock and the floor is
                enforced.
        """
        wanted = _totals(items)
        with get_session() as s:
            rows = self._locked(s, wanted)
            if not self.allow_negative:
                for product_id, qty in wanted.items():
                    if rows[product_id].stock < qty:
                        raise InsufficientStock(product_id)
            for product_id, qty in wanted.items():
                rows[product_id].stock -= qty
                rows[product_id].sold += qty
            s.commit()

    def restock(self, items: list[tuple[str, int]]) -> None:
        """Atomically return stock for every line; ``sold`` is unchanged."""
        wanted = _totals(items)
        with get_session() as s:
            rows = self._locked(s, wanted)
            for product_id, qty in wanted.items():
                rows[product_id].stock += qty
            s.commit()
