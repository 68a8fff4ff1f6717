"""API tests for the order lifecycle endpoints: payment, shipment, delivery
and the return path, against the in-process ledgers."""
from datetime import timedelta

import pytest
from django.utils import timezone

from apps.orders.models import OrderModel

CREATE_URL = "/api/orders/"
RECEIPT = {"id": "PAY-1", "status": "COMPLETED", "update_time": "2024-05-01T12:00:00Z",
           "payer": {"email_address": "buyer@example.com"}}


def put(client, url, body=None):
    return client.put(url, data=body or {}, content_type="application/json")


def create(client, payload):
    r = client.post(CREATE_URL, data=payload, content_type="application/json")
    assert r.status_code == 201, r.content
    return r.json()["id"]


def delivered(client, payload):
    oid = create(client, payload)
    assert put(client, f"/api/orders/{oid}/pay/", RECEIPT).status_code == 200
    assert put(client, f"/api/orders/{oid}/deliver/").status_code == 200
    return oid


def return_requested(client, payload):
    oid = delivered(client, payload)
    r = put(client, f"/api/orders/{oid}/return/", {"reason": "lid is cracked"})
    assert r.status_code == 200, r.content
    return oid


@pytest.mark.django_db
def test_full_lifecycle_with_refund(client, order_payload, seeded):
    inventory, rewards = seeded
    oid = create(client, order_payload)

    r = put(client, f"/api/orders/{oid}/pay/", RECEIPT)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "PAID"
    assert body["paid_at"] is not None
    assert body["payment_result"] == {
        "id": "PAY-1", "status": "COMPLETED", "update_time": "2024-05-01T12:00:00Z",
        "email_address": "buyer@example.com",
    }
    assert rewards.get("buyer-1").points == 10

    r = put(client, f"/api/orders/{oid}/ship/")
    assert r.status_code == 200 and r.json()["status"] == "SHIPPED"
    r = put(client, f"/api/orders/{oid}/deliver/")
    assert r.status_code == 200 and r.json()["status"] == "DELIVERED"

    r = put(client, f"/api/orders/{oid}/return/", {"reason": "lid is cracked"})
    assert r.status_code == 200
    assert r.json()["status"] == "RETURN_REQUESTED"
    assert r.json()["return_request"]["status"] == "pending"

    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "REFUNDED"
    assert body["refund_cents"] == 1050
    assert body["return_request"]["status"] == "approved"
    assert body["refunded_at"] is not None

    account = rewards.get("buyer-1")
    assert account.balance_cents == 1050
    assert account.points == 10
    assert inventory.get("SKU-1").stock == 10
    assert inventory.get("SKU-1").sold == 2
    assert OrderModel.objects.get(id=oid).status == "REFUNDED"


@pytest.mark.django_db
def test_refund_policy_from_settings(client, order_payload, seeded, settings):
    settings.ORDERS_REFUND_POLICY = "exclude_platform_fee"
    settings.ORDERS_REVERSE_POINTS_ON_REFUND = True
    _, rewards = seeded
    oid = return_requested(client, order_payload)
    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"})
    assert r.status_code == 200
    assert r.json()["refund_cents"] == 1000
    account = rewards.get("buyer-1")
    assert (account.points, account.balance_cents) == (0, 1000)


@pytest.mark.django_db
def test_unknown_order_is_404(client, seeded):
    r = put(client, "/api/orders/00000000-0000-0000-0000-000000000000/pay/", RECEIPT)
    assert r.status_code == 404
    assert r.json()["detail"] == "ORDER_NOT_FOUND"


@pytest.mark.django_db
def test_shipping_unpaid_order_is_409(client, order_payload, seeded):
    oid = create(client, order_payload)
    r = put(client, f"/api/orders/{oid}/ship/")
    assert r.status_code == 409
    assert r.json() == {"detail": "INVALID_TRANSITION", "order_id": oid, "state": "CREATED"}


@pytest.mark.django_db
def test_payment_body_is_validated(client, order_payload, seeded):
    oid = create(client, order_payload)
    assert put(client, f"/api/orders/{oid}/pay/", {"status": "COMPLETED"}).status_code == 400
    assert put(client, f"/api/orders/{oid}/pay/", {**RECEIPT, "amount": 1}).status_code == 400
    assert OrderModel.objects.get(id=oid).status == "CREATED"


@pytest.mark.django_db
def test_payment_without_reward_account(client, order_payload, seeded):
    order_payload["buyer_id"] = "no-account"
    oid = create(client, order_payload)
    r = put(client, f"/api/orders/{oid}/pay/", RECEIPT)
    assert r.status_code == 404
    assert r.json()["detail"] == "ACCOUNT_NOT_FOUND"
    assert r.json()["state"] == "CREATED"
    assert OrderModel.objects.get(id=oid).status == "CREATED"


@pytest.mark.django_db
def test_return_outside_window_is_422(client, order_payload, seeded):
    oid = delivered(client, order_payload)
    OrderModel.objects.filter(id=oid).update(delivered_at=timezone.now() - timedelta(hours=25))
    r = put(client, f"/api/orders/{oid}/return/", {"reason": "too late"})
    assert r.status_code == 422
    assert r.json()["detail"] == "RETURN_WINDOW_EXPIRED"
    assert r.json()["state"] == "DELIVERED"


@pytest.mark.django_db
def test_return_inside_window(client, order_payload, seeded):
    oid = delivered(client, order_payload)
    OrderModel.objects.filter(id=oid).update(delivered_at=timezone.now() - timedelta(hours=23))
    r = put(client, f"/api/orders/{oid}/return/", {"reason": "still fine"})
    assert r.status_code == 200


@pytest.mark.django_db
def test_return_needs_a_reason(client, order_payload, seeded):
    oid = delivered(client, order_payload)
    assert put(client, f"/api/orders/{oid}/return/", {"reason": ""}).status_code == 400


@pytest.mark.django_db
def test_decision_without_request_is_409(client, order_payload, seeded):
    oid = delivered(client, order_payload)
    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"})
    assert r.status_code == 409
    assert r.json()["detail"] == "NO_ACTIVE_RETURN_REQUEST"


@pytest.mark.django_db
def test_rejection_is_final(client, order_payload, seeded):
    _, rewards = seeded
    oid = return_requested(client, order_payload)
    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "rejected", "reject_reason": "used"})
    assert r.status_code == 200
    assert r.json()["status"] == "RETURN_REJECTED"
    assert r.json()["return_request"]["reject_reason"] == "used"
    assert rewards.get("buyer-1").balance_cents == 0

    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"})
    assert r.status_code == 409
    r = put(client, f"/api/orders/{oid}/return/", {"reason": "please"})
    assert r.status_code == 409


@pytest.mark.django_db
def test_decision_body_is_validated(client, order_payload, seeded):
    oid = return_requested(client, order_payload)
    assert put(client, f"/api/orders/{oid}/return/status/", {"status": "maybe"}).status_code == 400
    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved", "reject_reason": "x"})
    assert r.status_code == 400
    assert OrderModel.objects.get(id=oid).status == "RETURN_REQUESTED"


@pytest.mark.django_db
def test_refunded_order_accepts_nothing(client, order_payload, seeded):
    oid = return_requested(client, order_payload)
    assert put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"}).status_code == 200
    for path, body in (("pay/", RECEIPT), ("ship/", None), ("deliver/", None),
                       ("return/", {"reason": "x"}), ("return/status/", {"status": "approved"})):
        r = put(client, f"/api/orders/{oid}/{path}", body)
        assert r.status_code == 409, path
    assert OrderModel.objects.get(id=oid).status == "REFUNDED"


@pytest.mark.django_db
def test_partial_failure_is_reported(client, order_payload, seeded, monkeypatch):
    inventory, rewards = seeded
    oid = return_requested(client, order_payload)

    def broken_restock(items):
        raise RuntimeError("inventory down")

    monkeypatch.setattr(inventory, "restock", broken_restock)
    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"})
    assert r.status_code == 500
    assert r.json() == {
        "detail": "PARTIAL_FAILURE",
        "order_id": oid,
        "state": "RETURN_REQUESTED",
        "applied": ["rewards.credit_balance"],
    }
    assert rewards.get("buyer-1").balance_cents == 1050
    assert OrderModel.objects.get(id=oid).status == "RETURN_REQUESTED"


@pytest.mark.django_db
def test_retry_with_another_refund_amount_is_409(client, order_payload, seeded, settings, monkeypatch):
    inventory, rewards = seeded
    oid = return_requested(client, order_payload)

    def broken_restock(items):
        raise RuntimeError("inventory down")

    monkeypatch.setattr(inventory, "restock", broken_restock)
    assert put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"}).status_code == 500
    monkeypatch.undo()

    settings.ORDERS_REFUND_POLICY = "exclude_platform_fee"
    r = put(client, f"/api/orders/{oid}/return/status/", {"status": "approved"})
    assert r.status_code == 409
    assert r.json() == {"detail": "IDEMPOTENCY_CONFLICT", "order_id": oid, "state": "RETURN_REQUESTED"}
    assert rewards.get("buyer-1").balance_cents == 1050
    assert OrderModel.objects.get(id=oid).status == "RETURN_REQUESTED"
