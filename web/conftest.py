import pytest


@pytest.fixture(autouse=True)
def local_ledgers(settings):
    """Run every test against fresh in-process ledgers and closed circuits."""
    from apps.orders import http_adapters, providers

    settings.USE_HTTP_ADAPTERS = False
    settings.INVENTORY_ALLOW_NEGATIVE_STOCK = False
    inventory, rewards = providers.local_ledgers()
    inventory.clear()
    rewards.clear()
    http_adapters._inventory_cb.reset()
    http_adapters._rewards_cb.reset()
    yield inventory, rewards
    inventory.clear()
    rewards.clear()


@pytest.fixture
def order_payload():
    """A valid create-order body for buyer ``buyer-1``: 900 + 100 + 0 CNY."""
    return {
        "buyer_id": "buyer-1",
        "items": [
            {"product_id": "SKU-1", "name": "Tea set", "quantity": 2, "unit_price_cents": 300},
            {"product_id": "SKU-2", "name": "Teapot", "quantity": 1, "unit_price_cents": 300},
        ],
        "shipping_address": {
            "address": "1 Nanjing Rd",
            "city": "Shanghai",
            "postal_code": "200001",
            "country": "CN",
        },
        "payment_method": "PayPal",
        "items_price_cents": 900,
        "shipping_price_cents": 100,
        "tax_price_cents": 0,
    }


@pytest.fixture
def seeded(local_ledgers):
    """Stock for the payload's products and an empty account for its buyer."""
    inventory, rewards = local_ledgers
    inventory.upsert("SKU-1", 10)
    inventory.upsert("SKU-2", 5)
    rewards.open("buyer-1")
    return inventory, rewards
