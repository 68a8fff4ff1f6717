"""Pydantic schemas for orders.

This module exposes the request schemas for each lifecycle event and the
read schema returned by the API. Every request schema forbids unknown
fields, so each endpoint accepts exactly one typed input.
"""

import re
import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain import Order, OrderItem, PaymentReceipt, ShippingAddress
from .lifecycle import CreateOrder
from .money import Money


PRODUCT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{3,64}$")
CURRENCIES = {"CNY", "EUR", "USD", "GBP"}


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class OrderItemIn(_Strict):
    """Input schema for a single order line item.

    Attributes:
        product_id: Catalog id of the product (3-64 chars: letters, digits,
            '_' and '-').
        name: Product name snapshot.
        quantity: Positive integer indicating units requested.
        unit_price_cents: Price snapshot per unit, in minor units.
        image: Optional image reference.
    """

    product_id: str = Field(min_length=3, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    quantity: int = Field(gt=0)
    unit_price_cents: int = Field(ge=0)
    image: Optional[str] = Field(default=None, max_length=500)

    @field_validator("product_id")
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        """Validate the product id format.

        Raises:
            ValueError: When the id does not match the expected pattern.
        """
        if not PRODUCT_ID_RE.match(v):
            raise ValueError("Invalid product id format")
        return v


class ShippingAddressIn(_Strict):
    address: str = Field(min_length=1, max_length=300)
    city: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)


class CreateOrderDTO(_Strict):
    """Schema for creating an order.

    Attributes:
        buyer_id: Id of the buyer placing the order.
        items: List of `OrderItemIn` items. Emptiness is a domain rule
            (``EMPTY_ORDER``), not a schema error.
        shipping_address: Where the order ships to.
        payment_method: Opaque payment method chosen by the buyer.
        items_price_cents, shipping_price_cents, tax_price_cents: Non-negative
            amounts in minor units that make up the pre-fee total.
        currency: 3-letter ISO currency code. Normalized to uppercase and
            validated against a small supported set.
    """

    buyer_id: str = Field(min_length=1, max_length=64)
    items: list[OrderItemIn]
    shipping_address: ShippingAddressIn
    payment_method: str = Field(min_length=1, max_length=64)
    items_price_cents: int = Field(ge=0)
    shipping_price_cents: int = Field(default=0, ge=0)
    tax_price_cents: int = Field(default=0, ge=0)
    currency: str = Field(default="CNY", min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate and normalize currency code.

        Raises:
            ValueError: When the currency is not in the supported set.
        """
        v2 = v.upper()
        if v2 not in CURRENCIES:
            raise ValueError("Unsupported currency")
        return v2

    def to_command(self) -> CreateOrder:
        cur = self.currency
        return CreateOrder(
            buyer_id=self.buyer_id,
            items=[
                OrderItem(
                    product_id=i.product_id,
                    quantity=i.quantity,
                    name=i.name,
                    unit_price=Money(i.unit_price_cents, cur),
                    image=i.image,
                )
                for i in self.items
            ],
            shipping_address=ShippingAddress(**self.shipping_address.model_dump()),
            payment_method=self.payment_method,
            items_price=Money(self.items_price_cents, cur),
            shipping_price=Money(self.shipping_price_cents, cur),
            tax_price=Money(self.tax_price_cents, cur),
        )


class PayerIn(_Strict):
    email_address: str = Field(default="", max_length=254)


class PaymentConfirmationDTO(_Strict):
    """Payment provider receipt asserted by the caller.

    Mirrors the provider callback shape: ``{id, status, update_time,
    payer: {email_address}}``.
    """

    id: str = Field(min_length=1, max_length=128)
    status: str = Field(min_length=1, max_length=64)
    update_time: str = Field(default="", max_length=64)
    payer: PayerIn = Field(default_factory=PayerIn)

    def to_receipt(self) -> PaymentReceipt:
        return PaymentReceipt(
            id=self.id,
            status=self.status,
            update_time=self.update_time,
            email_address=self.payer.email_address,
        )


class ReturnRequestDTO(_Strict):
    reason: str = Field(min_length=1, max_length=1000)


class ReturnDecisionDTO(_Strict):
    """Admin decision on a pending return.

    ``reject_reason`` is only accepted together with ``status="rejected"``.
    """

    status: Literal["approved", "rejected"]
    reject_reason: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def reason_only_on_reject(self):
        if self.status == "approved" and self.reject_reason:
            raise ValueError("reject_reason is only allowed when rejecting")
        return self

    @property
    def decision(self) -> str:
        return "approve" if self.status == "approved" else "reject"


class OrderItemOut(BaseModel):
    product_id: str
    name: str
    quantity: int
    unit_price_cents: int
    image: Optional[str] = None


class ReturnRequestOut(BaseModel):
    reason: str
    status: str
    requested_at: datetime
    decided_at: Optional[datetime] = None
    reject_reason: Optional[str] = None


class OrderReadDTO(BaseModel):
    """Read model returned by every order endpoint."""

    id: uuid.UUID
    number: Optional[int] = None
    buyer_id: str
    status: str
    currency: str
    items: list[OrderItemOut]
    shipping_address: dict
    payment_method: str
    items_price_cents: int
    shipping_price_cents: int
    tax_price_cents: int
    platform_fee_cents: int
    amount_cents: int
    refund_cents: Optional[int] = None
    payment_result: Optional[dict] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    return_request: Optional[ReturnRequestOut] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        rr = order.return_request
        receipt = order.payment_result
        return cls(
            id=order.id,
            number=order.number,
            buyer_id=order.buyer_id,
            status=order.status.value,
            currency=order.currency,
            items=[
                OrderItemOut(
                    product_id=it.product_id,
                    name=it.name,
                    quantity=it.quantity,
                    unit_price_cents=it.unit_price.cents,
                    image=it.image,
                )
                for it in order.items
            ],
            shipping_address={
                "address": order.shipping_address.address,
                "city": order.shipping_address.city,
                "postal_code": order.shipping_address.postal_code,
                "country": order.shipping_address.country,
            },
            payment_method=order.payment_method,
            items_price_cents=order.items_price.cents,
            shipping_price_cents=order.shipping_price.cents,
            tax_price_cents=order.tax_price.cents,
            platform_fee_cents=order.platform_fee.cents,
            amount_cents=order.total_price.cents,
            refund_cents=order.refund_amount.cents if order.refund_amount else None,
            payment_result=(
                {
                    "id": receipt.id,
                    "status": receipt.status,
                    "update_time": receipt.update_time,
                    "email_address": receipt.email_address,
                }
                if receipt
                else None
            ),
            created_at=order.created_at,
            paid_at=order.paid_at,
            shipped_at=order.shipped_at,
            delivered_at=order.delivered_at,
            refunded_at=order.refunded_at,
            return_request=(
                ReturnRequestOut(
                    reason=rr.reason,
                    status=rr.status.value,
                    requested_at=rr.requested_at,
                    decided_at=rr.decided_at,
                    reject_reason=rr.reject_reason,
                )
                if rr
                else None
            ),
        )
