import uuid

import django.core.validators
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100)),
                ("brand", models.CharField(max_length=64)),
                ("model", models.CharField(max_length=64)),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("smartphone", "Smartphone"),
                            ("accessory", "Accessory"),
                            ("case", "Case"),
                            ("charger", "Charger"),
                            ("headphones", "Headphones"),
                            ("screen_protector", "Screen Protector"),
                            ("other", "Other"),
                        ],
                        default="smartphone",
                        max_length=32,
                    ),
                ),
                ("description", models.TextField(blank=True, default="", max_length=1000)),
                ("price", models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(0)])),
                ("original_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("image_url", models.URLField(blank=True, default="", max_length=500)),
                ("stock_quantity", models.PositiveIntegerField(default=0)),
                ("in_stock", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "products",
                "ordering": ["name"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("stock_quantity__gte", 0)), name="product_stock_non_negative"),
                    models.CheckConstraint(condition=models.Q(("price__gte", 0)), name="product_price_non_negative"),
                ],
            },
        ),
    ]
