"""Fixed-point money arithmetic for order pricing.

Amounts are integer counts of minor units (cents, fen) tagged with an ISO
currency code. Percentages are computed with ``Decimal`` and rounded half-up
to the minor unit so fee computation is reproducible.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .errors import NegativeResultError

DEFAULT_CURRENCY = "CNY"
PLATFORM_FEE_RATE = Decimal("0.05")


@dataclass(frozen=True, order=True)
class Money:
    """Non-negative amount of money in minor units.

    Attributes:
        cents: Amount in minor units.
        currency: ISO currency code (e.g. 'CNY').
    """

    cents: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self):
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError("Money amount must be an integer number of minor units")
        if self.cents < 0:
            raise NegativeResultError()

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(0, currency)

    def _check(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise ValueError("CURRENCY_MISMATCH")

    def add(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.cents + other.cents, self.currency)

    def subtract(self, other: "Money") -> "Money":
        """Return ``self - other``.

        Raises:
            NegativeResultError: If ``other`` is larger than ``self``.
        """
        self._check(other)
        if other.cents > self.cents:
            raise NegativeResultError()
        return Money(self.cents - other.cents, self.currency)

    def percentage(self, rate: Decimal | str) -> "Money":
        """Return ``self * rate`` rounded half-up to the minor unit."""
        value = (Decimal(self.cents) * Decimal(rate)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return Money(int(value), self.currency)

    def __add__(self, other: "Money") -> "Money":
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        return self.subtract(other)

    def __str__(self) -> str:
        return f"{Decimal(self.cents) / 100:.2f} {self.currency}"


def platform_fee(total: Money, rate: Decimal | str = PLATFORM_FEE_RATE) -> Money:
    """Marketplace fee charged on top of an order's pre-fee total."""
    return total.percentage(rate)


def sum_money(amounts, currency: str = DEFAULT_CURRENCY) -> Money:
    total = Money.zero(currency)
    for amount in amounts:
        total = total.add(amount)
    return total
