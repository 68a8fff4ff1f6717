import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("internal_id", models.BigIntegerField(editable=False, null=True, unique=True)),
                ("buyer_id", models.CharField(db_index=True, max_length=64)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("CREATED", "Created"),
                            ("PAID", "Paid"),
                            ("SHIPPED", "Shipped"),
                            ("DELIVERED", "Delivered"),
                            ("RETURN_REQUESTED", "Return Requested"),
                            ("RETURN_APPROVED", "Return Approved"),
                            ("RETURN_REJECTED", "Return Rejected"),
                            ("REFUNDED", "Refunded"),
                        ],
                        default="CREATED",
                        max_length=32,
                    ),
                ),
                ("currency", models.CharField(default="CNY", max_length=3)),
                ("items", models.JSONField(default=list)),
                ("shipping_address", models.JSONField(default=dict)),
                ("payment_method", models.CharField(max_length=64)),
                ("items_price_cents", models.PositiveBigIntegerField(default=0)),
                ("shipping_price_cents", models.PositiveBigIntegerField(default=0)),
                ("tax_price_cents", models.PositiveBigIntegerField(default=0)),
                ("platform_fee_cents", models.PositiveBigIntegerField(default=0)),
                ("total_cents", models.PositiveBigIntegerField(default=0)),
                ("refund_cents", models.PositiveBigIntegerField(blank=True, null=True)),
                ("payment_result", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField()),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("shipped_at", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("return_reason", models.TextField(blank=True, null=True)),
                (
                    "return_status",
                    models.CharField(
                        blank=True,
                        choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")],
                        max_length=16,
                        null=True,
                    ),
                ),
                ("return_requested_at", models.DateTimeField(blank=True, null=True)),
                ("return_decided_at", models.DateTimeField(blank=True, null=True)),
                ("return_reject_reason", models.TextField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-internal_id"],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("key", models.CharField(max_length=255, unique=True)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "orders_idempotency_keys",
            },
        ),
    ]
