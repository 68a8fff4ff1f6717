import pytest
from django.utils import timezone
from uuid import uuid4

from apps.orders.models import OrderModel

DETAIL_URL = "/api/orders/{oid}/"
LIST_URL = "/api/orders/"
BUYER_URL = "/api/orders/buyers/{buyer}/"


def seed(buyer_id="buyer-1", status="CREATED", total_cents=1050, currency="CNY", **kw):
    return OrderModel.objects.create(
        id=uuid4(),
        buyer_id=buyer_id,
        status=status,
        currency=currency,
        items=[{"product_id": "SKU-1", "name": "Tea", "quantity": 1, "unit_price_cents": 1000}],
        shipping_address={"address": "a", "city": "b", "postal_code": "c", "country": "d"},
        payment_method="PayPal",
        items_price_cents=1000,
        platform_fee_cents=total_cents - 1000,
        total_cents=total_cents,
        created_at=timezone.now(),
        **kw,
    )


@pytest.mark.django_db
def test_get_order_by_id_returns_200_and_payload(client):
    o = seed(status="PAID", total_cents=1050, currency="EUR", paid_at=timezone.now(),
             payment_result={"id": "PAY-9", "status": "COMPLETED", "update_time": "", "email_address": ""})
    r = client.get(DETAIL_URL.format(oid=str(o.id)))
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == str(o.id)
    assert body["number"] == o.internal_id
    assert body["status"] == "PAID"
    assert body["amount_cents"] == 1050
    assert body["platform_fee_cents"] == 50
    assert body["currency"] == "EUR"
    assert body["payment_result"]["id"] == "PAY-9"
    assert body["items"][0]["unit_price_cents"] == 1000


@pytest.mark.django_db
def test_get_order_not_found_returns_404(client):
    r = client.get(DETAIL_URL.format(oid=str(uuid4())))
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_list_orders_returns_paginated_array(client):
    seed(status="PAID", total_cents=1500)
    seed(status="CREATED", total_cents=9900)
    r = client.get(LIST_URL)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert body["page"] == 1
    assert len(body["results"]) == 2
    assert all({"id", "status", "amount_cents", "currency"} <= set(x.keys()) for x in body["results"])


@pytest.mark.django_db
def test_list_orders_newest_first_and_paged(client):
    orders = [seed() for _ in range(3)]
    r = client.get(LIST_URL, {"page": 1, "page_size": 2})
    body = r.json()
    assert body["count"] == 3
    assert body["page_size"] == 2
    assert [x["id"] for x in body["results"]] == [str(orders[2].id), str(orders[1].id)]

    r = client.get(LIST_URL, {"page": 2, "page_size": 2})
    assert [x["id"] for x in r.json()["results"]] == [str(orders[0].id)]


@pytest.mark.django_db
def test_list_orders_rejects_bad_paging(client):
    assert client.get(LIST_URL, {"page": "x"}).status_code == 400
    assert client.get(LIST_URL, {"page_size": 0}).status_code == 400


@pytest.mark.django_db
def test_orders_by_buyer(client):
    mine = [seed("buyer-1"), seed("buyer-1")]
    seed("buyer-2")
    r = client.get(BUYER_URL.format(buyer="buyer-1"))
    assert r.status_code == 200
    assert [x["id"] for x in r.json()] == [str(mine[1].id), str(mine[0].id)]
    assert client.get(BUYER_URL.format(buyer="nobody")).json() == []


@pytest.mark.django_db
def test_return_request_is_rendered(client):
    now = timezone.now()
    o = seed(status="RETURN_REJECTED", delivered_at=now, return_reason="broken", return_status="rejected",
             return_requested_at=now, return_decided_at=now, return_reject_reason="used")
    body = client.get(DETAIL_URL.format(oid=str(o.id))).json()
    assert body["return_request"]["reason"] == "broken"
    assert body["return_request"]["status"] == "rejected"
    assert body["return_request"]["reject_reason"] == "used"


def test_ping(client):
    assert client.get("/api/orders/ping/").json() == {"ok": True}
