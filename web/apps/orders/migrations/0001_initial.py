import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

STATUS_CHOICES = [
    ("pending", "pending"),
    ("confirmed", "confirmed"),
    ("processing", "processing"),
    ("shipped", "shipped"),
    ("delivered", "delivered"),
    ("cancelled", "cancelled"),
    ("refunded", "refunded"),
]

PAYMENT_TYPE_CHOICES = [
    ("credit_card", "credit_card"),
    ("debit_card", "debit_card"),
    ("paypal", "paypal"),
    ("bank_transfer", "bank_transfer"),
    ("cash_on_delivery", "cash_on_delivery"),
    ("mpesa", "mpesa"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(editable=False, max_length=40, unique=True)),
                ("status", models.CharField(choices=STATUS_CHOICES, db_index=True, default="pending", max_length=16)),
                ("shipping_address", models.JSONField()),
                ("billing_address", models.JSONField()),
                ("payment_type", models.CharField(choices=PAYMENT_TYPE_CHOICES, max_length=32)),
                ("payment_details", models.JSONField(blank=True, default=dict)),
                ("payment_request_id", models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ("subtotal", models.DecimalField(decimal_places=2, max_digits=12)),
                ("tax", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("shipping", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total", models.DecimalField(decimal_places=2, max_digits=12)),
                ("tracking_carrier", models.CharField(blank=True, default="", max_length=64)),
                ("tracking_number", models.CharField(blank=True, default="", max_length=64)),
                ("tracking_url", models.URLField(blank=True, default="", max_length=500)),
                ("notes", models.TextField(blank=True, default="")),
                ("estimated_delivery", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, default="", max_length=200)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_ref", models.UUIDField()),
                ("name", models.CharField(max_length=100)),
                ("image", models.URLField(blank=True, default="", max_length=500)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("quantity", models.PositiveIntegerField()),
                ("position", models.PositiveSmallIntegerField(default=0)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.ordermodel",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "db_table": "order_items",
                "ordering": ["position"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gte", 1)), name="order_item_quantity_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("key", models.CharField(max_length=255, primary_key=True, serialize=False)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "idempotency_keys",
            },
        ),
    ]
