"""Shared pytest fixtures for the storefront tests.

``web/`` is put on ``sys.path`` by the pytest configuration in
``pyproject.toml``; apps are imported as ``apps.<name>``.
"""

from decimal import Decimal

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

ADDRESS = {
    "name": "Jane Wanjiku",
    "street": "12 Moi Avenue",
    "city": "Nairobi",
    "state": "Nairobi County",
    "zipCode": "00100",
    "country": "Kenya",
    "phone": "0712345678",
}


@pytest.fixture(autouse=True)
def deterministic_runtime(settings):
    """Process payment callbacks inline and start each test with a clean cache and breaker."""
    settings.PAYMENT_CALLBACK_DISPATCH = "inline"
    settings.MPESA_TOKEN_RETRY_BACKOFF_BASE = 0.0
    cache.clear()
    from apps.payments.mpesa import mpesa_cb

    mpesa_cb.on_success()
    yield
    cache.clear()


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="jane", password="pw-12345")


@pytest.fixture
def other_user(django_user_model):
    return django_user_model.objects.create_user(username="otieno", password="pw-12345")


@pytest.fixture
def staff_user(django_user_model):
    return django_user_model.objects.create_user(username="ops", password="pw-12345", is_staff=True)


@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def anon_client():
    return APIClient()


@pytest.fixture
def make_product(db):
    from apps.catalog.models import Product

    def _make(name="P1", price="50.00", stock=10, is_active=True, **kw):
        return Product.objects.create(
            name=name,
            brand=kw.pop("brand", "Acme"),
            model=kw.pop("model", name),
            price=Decimal(price),
            stock_quantity=stock,
            is_active=is_active,
            image_url=kw.pop("image_url", f"https://img.example.com/{name}.png"),
            **kw,
        )

    return _make


@pytest.fixture
def order_payload():
    def _payload(*lines, payment_type="credit_card", details=None, **extra):
        body = {
            "items": [{"productId": str(p.id), "quantity": q} for p, q in lines],
            "shippingAddress": dict(ADDRESS),
            "billingAddress": dict(ADDRESS),
            "paymentMethod": {"type": payment_type},
        }
        if details is not None:
            body["paymentMethod"]["details"] = details
        body.update(extra)
        return body

    return _payload
