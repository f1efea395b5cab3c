"""API tests for cancellation (stock restore) and the staff status endpoint."""
import pytest
from rest_framework.test import APIClient

from apps.orders.models import OrderModel

CREATE_URL = "/api/orders/"


def _place(client, payload):
    r = client.post(CREATE_URL, payload, format="json")
    assert r.status_code == 201
    return r.json()["order"]


@pytest.fixture
def staff_client(staff_user):
    c = APIClient()
    c.force_authenticate(user=staff_user)
    return c


@pytest.mark.django_db
def test_cancel_restores_stock_and_records_reason(api_client, make_product, order_payload):
    a = make_product(name="A", stock=3)
    b = make_product(name="B", stock=10)
    order = _place(api_client, order_payload((a, 3), (b, 4)))
    a.refresh_from_db()
    assert a.stock_quantity == 0 and a.in_stock is False

    r = api_client.put(f"/api/orders/{order['id']}/cancel/", {"reason": "Found it cheaper"}, format="json")
    assert r.status_code == 200
    body = r.json()
    assert body["message"] == "Order cancelled successfully"
    assert body["order"]["status"] == "cancelled"
    assert body["order"]["cancellationReason"] == "Found it cheaper"
    assert body["order"]["cancelledAt"]

    a.refresh_from_db()
    b.refresh_from_db()
    assert (a.stock_quantity, a.in_stock) == (3, True)
    assert b.stock_quantity == 10


@pytest.mark.django_db
def test_cancel_twice_is_refused_without_double_restock(api_client, make_product, order_payload):
    p = make_product(stock=5)
    order = _place(api_client, order_payload((p, 2)))
    assert api_client.put(f"/api/orders/{order['id']}/cancel/", {}, format="json").status_code == 200

    r = api_client.put(f"/api/orders/{order['id']}/cancel/", {}, format="json")
    assert r.status_code == 400
    assert r.json()["message"] == "Order is already cancelled"
    p.refresh_from_db()
    assert p.stock_quantity == 5


@pytest.mark.django_db
@pytest.mark.parametrize("status", ["shipped", "delivered"])
def test_cancel_after_dispatch_is_refused(api_client, make_product, order_payload, status):
    p = make_product(stock=5)
    order = _place(api_client, order_payload((p, 2)))
    OrderModel.objects.filter(id=order["id"]).update(status=status)

    r = api_client.put(f"/api/orders/{order['id']}/cancel/", {}, format="json")
    assert r.status_code == 400
    assert r.json()["message"] == "Cannot cancel order that has been shipped or delivered"
    p.refresh_from_db()
    assert p.stock_quantity == 3
    assert OrderModel.objects.get(id=order["id"]).status == status


@pytest.mark.django_db
def test_cancel_confirmed_order_is_allowed(api_client, make_product, order_payload):
    p = make_product(stock=5)
    order = _place(api_client, order_payload((p, 1)))
    OrderModel.objects.filter(id=order["id"]).update(status="confirmed")
    r = api_client.put(f"/api/orders/{order['id']}/cancel/", {}, format="json")
    assert r.status_code == 200
    p.refresh_from_db()
    assert p.stock_quantity == 5


@pytest.mark.django_db
def test_cancel_validation_and_ownership(api_client, other_user, make_product, order_payload):
    order = _place(api_client, order_payload((make_product(), 1)))

    r = api_client.put(f"/api/orders/{order['id']}/cancel/", {"reason": "x" * 201}, format="json")
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "reason"

    theirs = APIClient()
    theirs.force_authenticate(user=other_user)
    r = theirs.put(f"/api/orders/{order['id']}/cancel/", {}, format="json")
    assert r.status_code == 404
    assert OrderModel.objects.get(id=order["id"]).status == "pending"


@pytest.mark.django_db
def test_staff_advances_order_with_tracking(api_client, staff_client, make_product, order_payload):
    order = _place(api_client, order_payload((make_product(), 1)))
    url = f"/api/orders/{order['id']}/status/"

    for status in ("confirmed", "processing"):
        assert staff_client.put(url, {"status": status}, format="json").status_code == 200

    r = staff_client.put(
        url,
        {"status": "shipped", "tracking": {"carrier": "G4S", "trackingNumber": "G4S-991", "trackingUrl": "https://g4s.example/t/991"}},
        format="json",
    )
    assert r.status_code == 200
    body = r.json()
    assert body["order"]["status"] == "shipped"
    assert body["order"]["tracking"] == {"carrier": "G4S", "trackingNumber": "G4S-991", "trackingUrl": "https://g4s.example/t/991"}

    r = staff_client.put(url, {"status": "delivered"}, format="json")
    assert r.json()["order"]["deliveredAt"]


@pytest.mark.django_db
@pytest.mark.parametrize("target", ["shipped", "cancelled", "refunded"])
def test_staff_cannot_skip_states_or_cancel_here(api_client, staff_client, make_product, order_payload, target):
    order = _place(api_client, order_payload((make_product(), 1)))
    r = staff_client.put(f"/api/orders/{order['id']}/status/", {"status": target}, format="json")
    assert r.status_code == 400
    assert r.json()["code"] == "CONFLICT"
    assert OrderModel.objects.get(id=order["id"]).status == "pending"


@pytest.mark.django_db
def test_status_endpoint_is_staff_only(api_client, make_product, order_payload):
    order = _place(api_client, order_payload((make_product(), 1)))
    r = api_client.put(f"/api/orders/{order['id']}/status/", {"status": "confirmed"}, format="json")
    assert r.status_code == 403
