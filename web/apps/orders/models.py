import uuid
from django.db import models, transaction


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-facing order number
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        CREATED = "CREATED"
        PAID = "PAID"
        SHIPPED = "SHIPPED"
        DELIVERED = "DELIVERED"
        RETURN_REQUESTED = "RETURN_REQUESTED"
        RETURN_APPROVED = "RETURN_APPROVED"
        RETURN_REJECTED = "RETURN_REJECTED"
        REFUNDED = "REFUNDED"

    class ReturnStatus(models.TextChoices):
        PENDING = "pending"
        APPROVED = "approved"
        REJECTED = "rejected"

    buyer_id = models.CharField(max_length=64, db_index=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.CREATED)
    currency = models.CharField(max_length=3, default="CNY")

    # Snapshots captured at checkout
    items = models.JSONField(default=list)
    shipping_address = models.JSONField(default=dict)
    payment_method = models.CharField(max_length=64)

    items_price_cents = models.PositiveBigIntegerField(default=0)
    shipping_price_cents = models.PositiveBigIntegerField(default=0)
    tax_price_cents = models.PositiveBigIntegerField(default=0)
    platform_fee_cents = models.PositiveBigIntegerField(default=0)
    total_cents = models.PositiveBigIntegerField(default=0)
    refund_cents = models.PositiveBigIntegerField(null=True, blank=True)

    payment_result = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField()
    paid_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    return_reason = models.TextField(null=True, blank=True)
    return_status = models.CharField(max_length=16, choices=ReturnStatus.choices, null=True, blank=True)
    return_requested_at = models.DateTimeField(null=True, blank=True)
    return_decided_at = models.DateTimeField(null=True, blank=True)
    return_reject_reason = models.TextField(null=True, blank=True)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1

        super().save(*args, **kwargs)


class IdempotencyKey(models.Model):
    """Stored response for a client-supplied ``Idempotency-Key``.

    ``key`` is namespaced by the endpoint it was used on (``create:<key>``,
    ``pay:<order>:<key>``) so the same client key cannot collide across
    endpoints.
    """

    key = models.CharField(max_length=255, unique=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "orders_idempotency_keys"
