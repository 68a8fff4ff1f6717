"""Unit tests for HTTP adapters to the inventory and rewards services.

These tests verify that the HTTP clients send the expected requests and map
business responses to domain errors, by monkeypatching ``httpx.Client.post``
and asserting the adapter behavior.
"""
import httpx
import pytest

from apps.orders.domain import OrderItem
from apps.orders.errors import IdempotencyConflictError, InsufficientBalanceError, InsufficientStockError, NotFoundError
from apps.orders.http_adapters import HttpInventoryClient, HttpRewardsClient
from gateway.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub for adapter tests.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        return self._json


def test_inventory_reserve_ok(monkeypatch):
    """Inventory adapter posts every line to /reserve and returns on 200."""
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(200, {"reserved": True})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    client = HttpInventoryClient(base_url="http://inventory:9001/")
    assert client.reserve([OrderItem("SKU-1", 2), OrderItem("SKU-2", 1)]) is None
    assert seen["url"] == "http://inventory:9001/reserve"
    assert seen["json"] == {"items": [
        {"product_id": "SKU-1", "quantity": 2},
        {"product_id": "SKU-2", "quantity": 1},
    ]}


def test_inventory_reserve_insufficient_stock(monkeypatch):
    """A 422 INSUFFICIENT_STOCK becomes InsufficientStockError with the product."""
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(422, {"detail": {"reserved": False, "detail": "INSUFFICIENT_STOCK", "product_id": "SKU-1"}})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(InsufficientStockError) as ei:
        HttpInventoryClient().reserve([OrderItem("SKU-1", 99)])
    assert ei.value.product_id == "SKU-1"


def test_inventory_unknown_product(monkeypatch):
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(404, {"detail": {"detail": "PRODUCT_NOT_FOUND", "product_id": "GHOST"}})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(NotFoundError, match="PRODUCT_NOT_FOUND"):
        HttpInventoryClient().reserve([OrderItem("GHOST", 1)])


def test_inventory_restock_posts_to_restock(monkeypatch):
    urls = []

    def fake_post(self, url, json=None, headers=None, **kw):
        urls.append(url)
        return DummyResp(200, {"restocked": True})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    HttpInventoryClient(base_url="http://inv").restock([OrderItem("SKU-1", 1)])
    assert urls == ["http://inv/restock"]


def test_rewards_credit_sends_reference_as_idempotency_key(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(200, {"replayed": False})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    HttpRewardsClient(base_url="http://rewards:9002").credit("buyer 1", points=10, reference="o-1:payment")
    assert seen["url"] == "http://rewards:9002/accounts/buyer%201/credit"
    assert seen["json"] == {"points": 10, "balance_cents": 0}
    assert seen["headers"]["Idempotency-Key"] == "o-1:payment"


def test_rewards_debit_insufficient_balance(monkeypatch):
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(422, {"detail": "INSUFFICIENT_BALANCE"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(InsufficientBalanceError):
        HttpRewardsClient().debit("buyer-1", points=10)


def test_rewards_reference_conflict(monkeypatch):
    """A 409 from the rewards service is a typed conflict, not an outage."""
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(409, {"detail": "IDEMPOTENCY_CONFLICT"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(IdempotencyConflictError):
        HttpRewardsClient().credit("buyer-1", balance_cents=1000, reference="o-1:refund")


def test_rewards_unknown_account(monkeypatch):
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(404, {"detail": "ACCOUNT_NOT_FOUND"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(NotFoundError, match="ACCOUNT_NOT_FOUND"):
        HttpRewardsClient().credit("ghost", balance_cents=100)


def test_rewards_network_error(monkeypatch, settings):
    """Rewards adapter propagates network errors from httpx."""
    settings.HTTP_RETRY_MAX = 0

    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(httpx.ConnectError):
        HttpRewardsClient().credit("buyer-1", points=1)


def test_request_id_is_forwarded(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(headers)
        return DummyResp(200, {})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        HttpInventoryClient().reserve([OrderItem("SKU-1", 1)])
    finally:
        REQUEST_ID_CTX.reset(token)
    assert seen["X-Request-ID"] == "rid-42"
    assert seen["X-Circuit-State"] == "CLOSED"
