from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from apps.catalog.models import Product

SEED = [
    {"name": "iPhone 15 Pro", "brand": "Apple", "model": "A3102", "category": "smartphone", "price": "999.00", "original_price": "1099.00", "stock_quantity": 25},
    {"name": "Galaxy S24", "brand": "Samsung", "model": "SM-S921B", "category": "smartphone", "price": "799.00", "stock_quantity": 30},
    {"name": "Pixel 8", "brand": "Google", "model": "GKWS6", "category": "smartphone", "price": "699.00", "stock_quantity": 20},
    {"name": "Redmi Note 13", "brand": "Xiaomi", "model": "23129RAA4G", "category": "smartphone", "price": "249.00", "stock_quantity": 50},
    {"name": "MagSafe Charger", "brand": "Apple", "model": "MX6X3", "category": "charger", "price": "39.00", "stock_quantity": 100},
    {"name": "Galaxy Buds2 Pro", "brand": "Samsung", "model": "SM-R510", "category": "headphones", "price": "179.00", "stock_quantity": 40},
    {"name": "Clear Case iPhone 15 Pro", "brand": "Spigen", "model": "ACS06715", "category": "case", "price": "19.99", "stock_quantity": 200},
    {"name": "Tempered Glass Galaxy S24", "brand": "ZAGG", "model": "200112345", "category": "screen_protector", "price": "29.99", "stock_quantity": 150},
]


class Command(BaseCommand):
    help = "Load demo phones and accessories into the catalog (idempotent by brand + model)."

    def add_arguments(self, parser):
        parser.add_argument("--reset-stock", action="store_true", help="Overwrite stock of existing products.")

    @transaction.atomic
    def handle(self, *args, reset_stock, **options):
        created = 0
        for row in SEED:
            defaults = {
                "name": row["name"],
                "category": row["category"],
                "price": Decimal(row["price"]),
                "original_price": Decimal(row["original_price"]) if row.get("original_price") else None,
            }
            product, was_created = Product.objects.get_or_create(brand=row["brand"], model=row["model"], defaults={**defaults, "stock_quantity": row["stock_quantity"]})
            if was_created:
                created += 1
            elif reset_stock:
                product.stock_quantity = row["stock_quantity"]
                product.save(update_fields=["stock_quantity"])
        self.stdout.write(self.style.SUCCESS(f"catalog seeded: {created} new, {len(SEED) - created} existing"))
