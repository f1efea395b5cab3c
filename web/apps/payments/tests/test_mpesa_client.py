"""Tests for the M-Pesa client.

The provider is simulated with ``httpx.MockTransport``; no network is used.
"""
import base64
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from apps.orders.errors import ConfigurationError, UpstreamError, UpstreamTimeout, ValidationFailed
from apps.payments.config import MpesaConfig
from apps.payments.mpesa import CircuitBreaker, MpesaClient, push_amount, stk_password, stk_timestamp
from apps.payments.phone import normalize_msisdn

CONFIG = MpesaConfig(
    consumer_key="ck",
    consumer_secret="cs",
    short_code="174379",
    passkey="pk",
    callback_url="https://shop.example.com/api/payments/mpesa/callback",
)
# 09:30:15 in Nairobi
NOW = datetime(2024, 5, 1, 6, 30, 15, tzinfo=timezone.utc)

PUSH_OK = {
    "MerchantRequestID": "29115-34620561-1",
    "CheckoutRequestID": "ws_CO_191220191020363925",
    "ResponseCode": "0",
    "ResponseDescription": "Success. Request accepted for processing",
    "CustomerMessage": "Success. Request accepted for processing",
}


class FakeProvider:
    """Records requests and answers token/push calls from queued responses."""

    def __init__(self, token=None, push=None):
        self.token = list(token or [httpx.Response(200, json={"access_token": "tok", "expires_in": "3599"})])
        self.push = list(push or [httpx.Response(200, json=PUSH_OK)])
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        queue = self.token if request.url.path == "/oauth/v1/generate" else self.push
        r = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(r, Exception):
            raise r
        # fresh copy: a Response object is bound to one request
        return httpx.Response(r.status_code, content=r.content, headers=r.headers)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]


def client_for(provider, config=CONFIG):
    return MpesaClient(config, transport=httpx.MockTransport(provider), clock=lambda: NOW)


@pytest.mark.parametrize("raw, expected", [
    ("0712345678", "254712345678"),
    ("712345678", "254712345678"),
    ("254712345678", "254712345678"),
    ("+254 712 345 678", "254712345678"),
])
def test_normalize_msisdn(raw, expected):
    assert normalize_msisdn(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "+"])
def test_normalize_msisdn_rejects_empty(raw):
    with pytest.raises(ValidationFailed):
        normalize_msisdn(raw)


def test_password_timestamp_and_amount():
    assert stk_timestamp(NOW) == "20240501093015"
    assert base64.b64decode(stk_password("174379", "pk", "20240501093015")) == b"174379pk20240501093015"
    assert push_amount(Decimal("108.50")) == 109
    assert push_amount(Decimal("108.49")) == 108
    assert push_amount(1) == 1


def test_stk_push_sends_provider_payload():
    provider = FakeProvider()
    data = client_for(provider).stk_push(Decimal("108.00"), "0712345678", account_reference="ORD-1", description="Order")
    assert data == PUSH_OK

    (token_req,) = provider.calls("/oauth/v1/generate")
    assert token_req.method == "GET"
    assert token_req.url.params["grant_type"] == "client_credentials"
    assert token_req.headers["Authorization"] == "Basic " + base64.b64encode(b"ck:cs").decode()
    assert str(token_req.url).startswith("https://sandbox.safaricom.co.ke/")

    (push_req,) = provider.calls("/mpesa/stkpush/v1/processrequest")
    assert push_req.headers["Authorization"] == "Bearer tok"
    body = json.loads(push_req.content)
    assert body == {
        "BusinessShortCode": "174379",
        "Password": stk_password("174379", "pk", "20240501093015"),
        "Timestamp": "20240501093015",
        "TransactionType": "CustomerPayBillOnline",
        "Amount": 108,
        "PartyA": "254712345678",
        "PartyB": "174379",
        "PhoneNumber": "254712345678",
        "CallBackURL": CONFIG.callback_url,
        "AccountReference": "ORD-1",
        "TransactionDesc": "Order",
    }


def test_access_token_is_cached():
    provider = FakeProvider()
    c = client_for(provider)
    c.stk_push(10, "0712345678")
    c.stk_push(10, "0712345678")
    assert len(provider.calls("/oauth/v1/generate")) == 1
    assert len(provider.calls("/mpesa/stkpush/v1/processrequest")) == 2


def test_token_retried_on_server_error_then_succeeds():
    provider = FakeProvider(token=[
        httpx.Response(503, json={"message": "busy"}),
        httpx.ConnectError("reset"),
        httpx.Response(200, json={"access_token": "tok2", "expires_in": "3599"}),
    ])
    assert client_for(provider).access_token() == "tok2"
    assert len(provider.calls("/oauth/v1/generate")) == 3


def test_token_rejected_credentials_not_retried():
    provider = FakeProvider(token=[httpx.Response(400, json={"errorMessage": "Invalid credentials"})])
    with pytest.raises(UpstreamError) as e:
        client_for(provider).access_token()
    assert e.value.status_code == 400
    assert e.value.extra["details"] == "Invalid credentials"
    assert len(provider.calls("/oauth/v1/generate")) == 1


def test_token_gives_up_after_max_attempts(settings):
    settings.MPESA_TOKEN_RETRY_MAX = 2
    provider = FakeProvider(token=[httpx.Response(500, text="oops")])
    with pytest.raises(UpstreamError) as e:
        client_for(provider).access_token()
    assert e.value.status_code == 500
    assert len(provider.calls("/oauth/v1/generate")) == 2


@pytest.mark.parametrize("status", [400, 500])
def test_stk_push_error_is_surfaced_and_not_retried(status):
    error = {"requestId": "1-2", "errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid PhoneNumber"}
    provider = FakeProvider(push=[httpx.Response(status, json=error)])
    with pytest.raises(UpstreamError) as e:
        client_for(provider).stk_push(10, "0712345678")
    assert e.value.status_code == status
    assert e.value.message == "Failed to initiate STK Push"
    assert e.value.extra["details"] == "Bad Request - Invalid PhoneNumber"
    assert e.value.extra["error"] == error
    assert len(provider.calls("/mpesa/stkpush/v1/processrequest")) == 1


def test_stk_push_timeout_reports_unknown_outcome():
    provider = FakeProvider(push=[httpx.ReadTimeout("timed out")])
    with pytest.raises(UpstreamTimeout) as e:
        client_for(provider).stk_push(10, "0712345678")
    assert e.value.status_code == 504
    assert e.value.to_body()["error"] == {"outcome": "unknown"}
    assert len(provider.calls("/mpesa/stkpush/v1/processrequest")) == 1


def test_missing_configuration_fails_before_any_request():
    provider = FakeProvider()
    with pytest.raises(ConfigurationError) as e:
        client_for(provider, config=MpesaConfig(consumer_key="ck")).stk_push(10, "0712345678")
    assert e.value.status_code == 500
    assert "MPESA_PASSKEY" in e.value.extra["missing"]
    assert provider.requests == []


def test_production_base_url():
    assert MpesaConfig.from_settings({"ENV": "Production"}).base_url == "https://api.safaricom.co.ke"
    assert MpesaConfig.from_settings({}).is_sandbox


def test_circuit_breaker_opens_and_recovers():
    cb = CircuitBreaker("t", fail_threshold=2, reset_timeout=0.0)
    cb.on_failure()
    assert cb.state == "CLOSED"
    cb.on_failure()
    # reset_timeout 0: OPEN turns HALF_OPEN on the next look
    assert cb.state == "HALF_OPEN"
    cb.before_call()
    with pytest.raises(UpstreamError) as e:
        cb.before_call()
    assert e.value.status_code == 503
    cb.on_success()
    assert cb.state == "CLOSED"


def test_circuit_breaker_refuses_while_open():
    cb = CircuitBreaker("t", fail_threshold=1, reset_timeout=60.0)
    cb.on_failure()
    with pytest.raises(UpstreamError) as e:
        cb.before_call()
    assert e.value.extra["details"] == "CIRCUIT_OPEN"
