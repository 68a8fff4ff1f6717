"""Service provider helpers for wiring OrderLifecycle with its ports.

``get_order_lifecycle`` returns a lifecycle backed by the Django order store.
The ledgers are the HTTP clients when ``settings.USE_HTTP_ADAPTERS`` is
truthy, and otherwise the process-wide in-memory ledgers returned by
``local_ledgers()``, which tests and local development seed directly.
"""

from datetime import timedelta
from decimal import Decimal

from django.conf import settings

from .adapters import InMemoryInventory, InMemoryRewards, SystemClock
from .domain import RefundPolicy, SettlementPolicy
from .http_adapters import HttpInventoryClient, HttpRewardsClient
from .lifecycle import OrderLifecycle
from .repository import DjangoOrderStore

_local_inventory = InMemoryInventory()
_local_rewards = InMemoryRewards()


def local_ledgers() -> tuple[InMemoryInventory, InMemoryRewards]:
    """The in-memory ledgers shared by every request of this process."""
    return _local_inventory, _local_rewards


def settlement_policy() -> SettlementPolicy:
    """Build the settlement policy from ``ORDERS_*`` settings."""
    return SettlementPolicy(
        fee_rate=Decimal(str(getattr(settings, "ORDERS_PLATFORM_FEE_RATE", "0.05"))),
        minor_units_per_point=int(getattr(settings, "ORDERS_MINOR_UNITS_PER_POINT", 100)),
        return_window=timedelta(hours=float(getattr(settings, "ORDERS_RETURN_WINDOW_HOURS", 24))),
        refund_policy=RefundPolicy(getattr(settings, "ORDERS_REFUND_POLICY", RefundPolicy.FULL_TOTAL.value)),
        restock_on_return=bool(getattr(settings, "ORDERS_RESTOCK_ON_RETURN", True)),
        reverse_points_on_refund=bool(getattr(settings, "ORDERS_REVERSE_POINTS_ON_REFUND", False)),
    )


def get_order_lifecycle() -> OrderLifecycle:
    """Return a configured OrderLifecycle instance."""
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        inventory, rewards = HttpInventoryClient(), HttpRewardsClient()
    else:
        _local_inventory.allow_negative = bool(getattr(settings, "INVENTORY_ALLOW_NEGATIVE_STOCK", False))
        inventory, rewards = local_ledgers()
    return OrderLifecycle(
        orders=DjangoOrderStore(),
        inventory=inventory,
        rewards=rewards,
        clock=SystemClock(),
        policy=settlement_policy(),
    )
