import uuid

from django.conf import settings
from django.db import models, transaction

from .domain import OrderStatus, PaymentType
from .numbering import generate_order_number


def _count_orders() -> int:
    # savepoint: a failed count must not poison the surrounding transaction
    with transaction.atomic():
        return OrderModel.objects.count()


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Display number, assigned once on first save
    order_number = models.CharField(max_length=40, unique=True, editable=False)

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders")

    STATUS_CHOICES = [(s.value, s.value) for s in OrderStatus]
    PAYMENT_TYPE_CHOICES = [(p.value, p.value) for p in PaymentType]

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=OrderStatus.PENDING.value, db_index=True)

    shipping_address = models.JSONField()
    billing_address = models.JSONField()

    payment_type = models.CharField(max_length=32, choices=PAYMENT_TYPE_CHOICES)
    # cardLast4, cardBrand, transactionId, receipt, phone, ...
    payment_details = models.JSONField(default=dict, blank=True)
    # Provider checkout request id, copied out of payment_details for lookup
    payment_request_id = models.CharField(max_length=64, null=True, blank=True, unique=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    tracking_carrier = models.CharField(max_length=64, blank=True, default="")
    tracking_number = models.CharField(max_length=64, blank=True, default="")
    tracking_url = models.URLField(max_length=500, blank=True, default="")

    notes = models.TextField(blank=True, default="")
    estimated_delivery = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=200, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        if not self.order_number:
            self.order_number = generate_order_number(_count_orders)
        # never trust a stored or client-supplied total
        self.total = self.subtotal + self.tax + self.shipping - self.discount
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = set(update_fields) | {"total", "updated_at"}
        super().save(*args, **kwargs)

    def __str__(self):
        return self.order_number


class OrderItemModel(models.Model):
    """Line item snapshot. ``product`` may go away; the snapshot fields stay."""

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey("catalog.Product", null=True, on_delete=models.SET_NULL, related_name="+")
    product_ref = models.UUIDField()
    name = models.CharField(max_length=100)
    image = models.URLField(max_length=500, blank=True, default="")
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    quantity = models.PositiveIntegerField()
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        db_table = "order_items"
        ordering = ["position"]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="order_item_quantity_positive"),
        ]


class IdempotencyKey(models.Model):
    """Stored response for an ``Idempotency-Key`` on order creation.

    ``key`` is scoped per user (``<user_id>:<client key>``).
    """

    key = models.CharField(max_length=255, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
