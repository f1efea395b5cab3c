"""Service provider helpers for wiring ``OrderService`` with its ports.

``get_order_service`` returns an ``OrderService`` backed by the Django
repositories, with ``transaction.atomic`` as the unit of work and the
pricing knobs taken from settings. Views call it per request so tests can
monkeypatch it or flip settings.
"""

from django.conf import settings
from django.db import transaction

from apps.catalog.repository import CatalogRepository

from .domain import OrderService, PricingPolicy
from .repository import OrderRepository


def get_pricing_policy() -> PricingPolicy:
    return PricingPolicy(
        tax_rate=settings.ORDER_TAX_RATE,
        free_shipping_threshold=settings.ORDER_FREE_SHIPPING_THRESHOLD,
        flat_shipping_fee=settings.ORDER_FLAT_SHIPPING_FEE,
    )


def get_order_service() -> OrderService:
    return OrderService(
        catalog=CatalogRepository(),
        ledger=OrderRepository(),
        pricing=get_pricing_policy(),
        atomic=transaction.atomic,
    )
