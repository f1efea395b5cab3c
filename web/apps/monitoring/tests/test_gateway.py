"""Tests for the gateway layer: request ids, size limits, error bodies, log filter."""
import logging

import pytest

from gateway.logging_filters import RequestIdFilter
from gateway.middleware import REQUEST_ID_CTX


@pytest.mark.django_db
def test_request_id_is_echoed_or_generated(anon_client):
    r = anon_client.get("/health/", HTTP_X_REQUEST_ID="req-123")
    assert r["X-Request-ID"] == "req-123"

    r = anon_client.get("/health/")
    assert len(r["X-Request-ID"]) == 36


@pytest.mark.django_db
def test_oversized_api_body_is_rejected(api_client, settings):
    settings.API_MAX_BYTES = 10
    r = api_client.post("/api/orders/", {"items": [], "notes": "x" * 50}, format="json")
    assert r.status_code == 413
    assert r.json()["code"] == "PAYLOAD_TOO_LARGE"


@pytest.mark.django_db
def test_framework_errors_use_message_and_code(anon_client, api_client):
    r = anon_client.get("/api/orders/")
    assert r.status_code == 401
    assert set(r.json()) == {"message", "code"}

    r = api_client.post("/api/orders/", data="{broken", content_type="application/json")
    assert r.status_code == 400
    assert r.json()["code"] == "PARSE_ERROR"


def test_request_id_filter_prefers_explicit_value():
    f = RequestIdFilter()
    token = REQUEST_ID_CTX.set("ctx-id")
    try:
        rec = logging.LogRecord("store", logging.INFO, __file__, 1, "m", (), None)
        f.filter(rec)
        assert rec.request_id == "ctx-id"

        rec2 = logging.LogRecord("store", logging.INFO, __file__, 1, "m", (), None)
        rec2.request_id = "explicit"
        f.filter(rec2)
        assert rec2.request_id == "explicit"
    finally:
        REQUEST_ID_CTX.reset(token)
