import uuid

from django.core.validators import MinValueValidator
from django.db import models


class Product(models.Model):
    """A sellable phone or accessory.

    ``in_stock`` is a cached flag kept equal to ``stock_quantity > 0`` by
    ``save()`` and by the conditional updates in ``CatalogRepository``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    class Category(models.TextChoices):
        SMARTPHONE = "smartphone"
        ACCESSORY = "accessory"
        CASE = "case"
        CHARGER = "charger"
        HEADPHONES = "headphones"
        SCREEN_PROTECTOR = "screen_protector"
        OTHER = "other"

    name = models.CharField(max_length=100)
    brand = models.CharField(max_length=64)
    model = models.CharField(max_length=64)
    category = models.CharField(max_length=32, choices=Category.choices, default=Category.SMARTPHONE)
    description = models.TextField(max_length=1000, blank=True, default="")
    price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    original_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    image_url = models.URLField(max_length=500, blank=True, default="")
    stock_quantity = models.PositiveIntegerField(default=0)
    in_stock = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(condition=models.Q(stock_quantity__gte=0), name="product_stock_non_negative"),
            models.CheckConstraint(condition=models.Q(price__gte=0), name="product_price_non_negative"),
        ]

    def save(self, *args, **kwargs):
        self.in_stock = self.stock_quantity > 0
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "stock_quantity" in update_fields:
            kwargs["update_fields"] = set(update_fields) | {"in_stock"}
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.brand} {self.name}"
