"""Repository layer for persisting orders.

``DjangoOrderStore`` implements ``OrderStorePort`` on top of the Django ORM.
It maps between the ``Order`` aggregate and ``OrderModel`` rows so the
domain layer is not coupled to ORM types, and it provides the per-order
serialization the lifecycle relies on: ``locked`` runs inside
``transaction.atomic()`` with ``SELECT ... FOR UPDATE`` on the order row.
"""

import uuid
from contextlib import contextmanager
from typing import List

from django.db import transaction

from .domain import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStorePort,
    PaymentReceipt,
    ReturnRequest,
    ReturnStatus,
    ShippingAddress,
)
from .errors import NotFoundError
from .models import OrderModel
from .money import Money


def _parse_id(order_id) -> uuid.UUID:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id))
    except ValueError:
        raise NotFoundError("ORDER_NOT_FOUND", order_id=order_id) from None


def to_domain(obj: OrderModel) -> Order:
    """Build an ``Order`` aggregate from a persisted row."""
    cur = obj.currency
    items = tuple(
        OrderItem(
            product_id=it["product_id"],
            quantity=it["quantity"],
            name=it.get("name", ""),
            unit_price=Money(it.get("unit_price_cents", 0), cur),
            image=it.get("image"),
        )
        for it in obj.items
    )
    return_request = None
    if obj.return_status:
        return_request = ReturnRequest(
            reason=obj.return_reason or "",
            requested_at=obj.return_requested_at,
            status=ReturnStatus(obj.return_status),
            decided_at=obj.return_decided_at,
            reject_reason=obj.return_reject_reason,
        )
    return Order(
        id=obj.id,
        number=obj.internal_id,
        buyer_id=obj.buyer_id,
        items=items,
        shipping_address=ShippingAddress(**obj.shipping_address),
        payment_method=obj.payment_method,
        currency=cur,
        items_price=Money(obj.items_price_cents, cur),
        shipping_price=Money(obj.shipping_price_cents, cur),
        tax_price=Money(obj.tax_price_cents, cur),
        platform_fee=Money(obj.platform_fee_cents, cur),
        total_price=Money(obj.total_cents, cur),
        status=OrderStatus(obj.status),
        payment_result=PaymentReceipt(**obj.payment_result) if obj.payment_result else None,
        created_at=obj.created_at,
        paid_at=obj.paid_at,
        shipped_at=obj.shipped_at,
        delivered_at=obj.delivered_at,
        refunded_at=obj.refunded_at,
        refund_amount=Money(obj.refund_cents, cur) if obj.refund_cents is not None else None,
        return_request=return_request,
    )


def apply_to_model(order: Order, obj: OrderModel) -> OrderModel:
    """Copy the aggregate's state onto an ``OrderModel`` (unsaved)."""
    obj.id = order.id
    obj.buyer_id = order.buyer_id
    obj.status = order.status.value
    obj.currency = order.currency
    obj.items = [
        {
            "product_id": it.product_id,
            "name": it.name,
            "quantity": it.quantity,
            "unit_price_cents": it.unit_price.cents,
            "image": it.image,
        }
        for it in order.items
    ]
    addr = order.shipping_address
    obj.shipping_address = {
        "address": addr.address,
        "city": addr.city,
        "postal_code": addr.postal_code,
        "country": addr.country,
    }
    obj.payment_method = order.payment_method
    obj.items_price_cents = order.items_price.cents
    obj.shipping_price_cents = order.shipping_price.cents
    obj.tax_price_cents = order.tax_price.cents
    obj.platform_fee_cents = order.platform_fee.cents
    obj.total_cents = order.total_price.cents
    obj.refund_cents = order.refund_amount.cents if order.refund_amount else None
    receipt = order.payment_result
    obj.payment_result = (
        {
            "id": receipt.id,
            "status": receipt.status,
            "update_time": receipt.update_time,
            "email_address": receipt.email_address,
        }
        if receipt
        else None
    )
    obj.created_at = order.created_at
    obj.paid_at = order.paid_at
    obj.shipped_at = order.shipped_at
    obj.delivered_at = order.delivered_at
    obj.refunded_at = order.refunded_at
    rr = order.return_request
    obj.return_reason = rr.reason if rr else None
    obj.return_status = rr.status.value if rr else None
    obj.return_requested_at = rr.requested_at if rr else None
    obj.return_decided_at = rr.decided_at if rr else None
    obj.return_reject_reason = rr.reject_reason if rr else None
    return obj


class DjangoOrderStore(OrderStorePort):
    """Order storage backed by ``OrderModel``.

    Both context managers open a transaction; ledger calls made inside the
    block run while the order row is locked, and the order is written only
    when the block exits without an exception.
    """

    @contextmanager
    def adding(self, order: Order):
        with transaction.atomic():
            obj = apply_to_model(order, OrderModel())
            obj.save(force_insert=True)
            order.number = obj.internal_id
            yield order

    @contextmanager
    def locked(self, order_id):
        oid = _parse_id(order_id)
        with transaction.atomic():
            try:
                obj = OrderModel.objects.select_for_update().get(id=oid)
            except OrderModel.DoesNotExist:
                raise NotFoundError("ORDER_NOT_FOUND", order_id=oid) from None
            order = to_domain(obj)
            yield order
            apply_to_model(order, obj).save()

    def get(self, order_id) -> Order:
        oid = _parse_id(order_id)
        try:
            return to_domain(OrderModel.objects.get(id=oid))
        except OrderModel.DoesNotExist:
            raise NotFoundError("ORDER_NOT_FOUND", order_id=oid) from None

    def list_for_buyer(self, buyer_id: str) -> List[Order]:
        return [to_domain(o) for o in OrderModel.objects.filter(buyer_id=buyer_id)]

    def list_all(self) -> List[Order]:
        return [to_domain(o) for o in OrderModel.objects.all()]
