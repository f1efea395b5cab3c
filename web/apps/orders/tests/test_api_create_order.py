"""API tests for the create-order endpoint.

These tests exercise ``POST /api/orders/`` against the real catalog and
order repositories: successful checkout with server-side pricing,
insufficient stock, unknown products, payload validation and the
lost-reservation race rolling everything back.
"""
import re

import pytest
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient

from apps.catalog.models import Product
from apps.catalog.repository import CatalogRepository
from apps.orders.models import OrderItemModel, OrderModel

CREATE_URL = "/api/orders/"


@pytest.mark.django_db
def test_create_order_prices_server_side_and_reserves_stock(api_client, make_product, order_payload):
    """2 x 50 with stock 10: totals 100/8/0/108, status pending, stock 8."""
    p = make_product(price="50.00", stock=10)

    r = api_client.post(CREATE_URL, order_payload((p, 2)), format="json")
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Order created successfully"
    order = body["order"]
    assert order["status"] == "pending"
    assert re.match(r"^ORD-\d+-\d{4}$", order["orderNumber"])
    assert order["pricing"] == {"subtotal": 100.0, "tax": 8.0, "shipping": 0.0, "discount": 0.0, "total": 108.0}
    assert order["items"][0]["productId"] == str(p.id)
    assert order["items"][0]["price"] == 50.0
    assert order["items"][0]["product"]["stockQuantity"] == 8
    assert order["shippingAddress"]["zipCode"] == "00100"

    p.refresh_from_db()
    assert p.stock_quantity == 8
    assert p.in_stock is True


@pytest.mark.django_db
def test_create_order_flat_shipping_below_threshold(api_client, make_product, order_payload):
    p = make_product(price="30.00")
    r = api_client.post(CREATE_URL, order_payload((p, 1)), format="json")
    assert r.status_code == 201
    assert r.json()["order"]["pricing"]["total"] == 42.4


@pytest.mark.django_db
def test_create_order_ignores_client_supplied_prices(api_client, make_product, order_payload):
    p = make_product(price="50.00")
    payload = order_payload((p, 1), total=1, subtotal=1)
    payload["items"][0]["price"] = 0.01
    r = api_client.post(CREATE_URL, payload, format="json")
    assert r.status_code == 201
    assert r.json()["order"]["pricing"]["subtotal"] == 50.0


@pytest.mark.django_db
def test_last_unit_sells_out_product(api_client, make_product, order_payload):
    p = make_product(stock=2)
    r = api_client.post(CREATE_URL, order_payload((p, 2)), format="json")
    assert r.status_code == 201
    p.refresh_from_db()
    assert p.stock_quantity == 0
    assert p.in_stock is False


@pytest.mark.django_db
def test_create_order_insufficient_stock(api_client, make_product, order_payload):
    """Stock 1, quantity 2: 400 naming the product and what is left; nothing written."""
    p = make_product(name="Galaxy A15", stock=1)
    r = api_client.post(CREATE_URL, order_payload((p, 2)), format="json")
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert body["message"] == "Insufficient stock for Galaxy A15. Available: 1"
    assert body["available"] == 1
    assert OrderModel.objects.count() == 0
    p.refresh_from_db()
    assert p.stock_quantity == 1


@pytest.mark.django_db
def test_create_order_unknown_or_inactive_product(api_client, make_product, order_payload):
    gone = make_product(name="Old", is_active=False)
    r = api_client.post(CREATE_URL, order_payload((gone, 1)), format="json")
    assert r.status_code == 404
    assert r.json()["message"] == f"Product {gone.id} not found"

    payload = order_payload((gone, 1))
    payload["items"][0]["productId"] = "6f1c1b0e-3c1d-4a55-9d4c-1f2e3d4c5b6a"
    r = api_client.post(CREATE_URL, payload, format="json")
    assert r.status_code == 404
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
@pytest.mark.parametrize("mutate, field", [
    (lambda b: b["items"][0].update(quantity=0), "items.0.quantity"),
    (lambda b: b["items"][0].update(productId="not-a-uuid"), "items.0.productId"),
    (lambda b: b.update(items=[]), "items"),
    (lambda b: b["shippingAddress"].update(city="   "), "shippingAddress.city"),
    (lambda b: b.pop("billingAddress"), "billingAddress"),
    (lambda b: b["paymentMethod"].update(type="cash"), "paymentMethod.type"),
])
def test_create_order_validation_errors(api_client, make_product, order_payload, mutate, field):
    p = make_product()
    body = order_payload((p, 1))
    mutate(body)
    r = api_client.post(CREATE_URL, body, format="json")
    assert r.status_code == 400
    data = r.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert field in [e["field"] for e in data["errors"]]
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_lost_reservation_race_rolls_back_order(api_client, make_product, order_payload, monkeypatch):
    """Another checkout took the stock between the check and the decrement."""
    p = make_product(stock=5)
    monkeypatch.setattr(CatalogRepository, "reserve", lambda self, pid, qty: False)

    r = api_client.post(CREATE_URL, order_payload((p, 1)), format="json")
    assert r.status_code == 400
    assert r.json()["code"] == "INSUFFICIENT_STOCK"
    assert OrderModel.objects.count() == 0
    assert OrderItemModel.objects.count() == 0
    assert Product.objects.get(pk=p.pk).stock_quantity == 5


@pytest.mark.django_db
def test_partial_reservation_failure_restores_earlier_lines(api_client, make_product, order_payload, monkeypatch):
    a = make_product(name="A", stock=5)
    b = make_product(name="B", stock=5)
    real_reserve = CatalogRepository.reserve

    def reserve(self, pid, qty):
        if pid == str(b.id):
            return False
        return real_reserve(self, pid, qty)

    monkeypatch.setattr(CatalogRepository, "reserve", reserve)
    r = api_client.post(CREATE_URL, order_payload((a, 2), (b, 1)), format="json")
    assert r.status_code == 400
    a.refresh_from_db()
    assert a.stock_quantity == 5


@pytest.mark.django_db
def test_create_order_requires_authentication(anon_client, make_product, order_payload):
    p = make_product()
    r = anon_client.post(CREATE_URL, order_payload((p, 1)), format="json")
    assert r.status_code == 401


@pytest.mark.django_db
def test_create_order_with_bearer_token(user, make_product, order_payload):
    token = Token.objects.create(user=user)
    c = APIClient()
    c.credentials(HTTP_AUTHORIZATION=f"Bearer {token.key}")
    p = make_product()
    r = c.post(CREATE_URL, order_payload((p, 1)), format="json")
    assert r.status_code == 201
    assert r.json()["order"]["user"] == user.pk


@pytest.mark.django_db
def test_create_order_keeps_payment_details(api_client, make_product, order_payload):
    p = make_product()
    r = api_client.post(
        CREATE_URL,
        order_payload((p, 1), payment_type="mpesa", details={"transactionId": "ws_CO_123"}),
        format="json",
    )
    assert r.status_code == 201
    pm = r.json()["order"]["paymentMethod"]
    assert pm == {"type": "mpesa", "details": {"transactionId": "ws_CO_123"}}
    assert OrderModel.objects.get().payment_request_id == "ws_CO_123"
