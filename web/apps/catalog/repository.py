"""Repository layer for the catalog store.

Implements ``CatalogPort`` on top of the Django ORM. Stock changes are
single conditional ``UPDATE`` statements, so the "enough stock?" check
and the decrement happen in one step in the database and two checkouts
can never both take the last unit.
"""

import logging
from typing import Dict, List

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Case, F, Value, When

from apps.orders.domain import CatalogPort, ProductSnapshot

from .models import Product

logger = logging.getLogger("store.catalog")


class CatalogRepository(CatalogPort):
    """Catalog access for the order flow."""

    def load(self, product_ids: List[str]) -> Dict[str, ProductSnapshot]:
        """Return snapshots keyed by the id string the caller passed in.

        Ids that are not valid UUIDs are treated as unknown.
        """
        try:
            rows = list(Product.objects.filter(pk__in=product_ids))
        except DjangoValidationError:
            return {}
        by_pk = {str(p.pk): p for p in rows}
        out: Dict[str, ProductSnapshot] = {}
        for pid in product_ids:
            p = by_pk.get(str(pid).lower())
            if p is None:
                continue
            out[pid] = ProductSnapshot(
                id=str(p.pk),
                name=p.name,
                price=p.price,
                image=p.image_url,
                stock_quantity=p.stock_quantity,
                in_stock=p.in_stock,
                is_active=p.is_active,
            )
        return out

    def reserve(self, product_id: str, quantity: int) -> bool:
        updated = Product.objects.filter(pk=product_id, stock_quantity__gte=quantity).update(
            stock_quantity=F("stock_quantity") - quantity,
            # evaluated against the pre-update row
            in_stock=Case(When(stock_quantity__gt=quantity, then=Value(True)), default=Value(False)),
        )
        if updated:
            logger.info("stock reserved", extra={"product_id": str(product_id), "quantity": quantity})
        else:
            logger.warning("stock reservation refused", extra={"product_id": str(product_id), "quantity": quantity})
        return bool(updated)

    def release(self, product_id: str, quantity: int) -> bool:
        updated = Product.objects.filter(pk=product_id).update(
            stock_quantity=F("stock_quantity") + quantity,
            in_stock=True,
        )
        if not updated:
            logger.warning("stock release skipped, product gone", extra={"product_id": str(product_id), "quantity": quantity})
        return bool(updated)
