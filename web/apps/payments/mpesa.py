"""HTTP client for the M-Pesa (Daraja) STK push API.

This module implements the outbound side of the push-payment flow using
``httpx``:

- OAuth access token (client credentials, HTTP Basic). The token GET is
  safe to repeat, so it is retried with exponential backoff on transport
  errors and 5xx, and the result is cached in the Django cache until just
  before it expires.
- STK push request. This POST is NEVER retried: a second attempt could
  prompt the customer's phone twice. A timeout is reported as an unknown
  outcome (``UpstreamTimeout``), not as a failure.
- A circuit breaker shared by both calls, so an unhealthy provider is not
  hammered.
- Request correlation: ``X-Request-ID`` from the gateway middleware is
  forwarded.
"""

import base64
import hashlib
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

import httpx
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from apps.orders.domain import whole_units
from apps.orders.errors import UpstreamError, UpstreamTimeout
from gateway.middleware import REQUEST_ID_CTX

from .config import MpesaConfig
from .phone import normalize_msisdn

logger = logging.getLogger("store.payments")

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
TRANSACTION_TYPE = "CustomerPayBillOnline"
# refresh the cached token this many seconds before the provider expires it
TOKEN_EXPIRY_MARGIN = 60


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED -> OPEN when failures reach ``fail_threshold``.
    - OPEN -> HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN -> CLOSED on a successful probe; back to OPEN on failure.
      Only one probe may be in flight.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Admit or refuse a call.

        Raises:
            UpstreamError: 503 while OPEN or while a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise UpstreamError("Payment provider temporarily unavailable", status_code=503, details="CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise UpstreamError("Payment provider temporarily unavailable", status_code=503, details="CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


mpesa_cb = CircuitBreaker(
    "mpesa",
    getattr(settings, "MPESA_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "MPESA_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return (max_attempts, backoff_base_seconds, max_sleep_seconds) for the token call."""
    return (
        max(1, getattr(settings, "MPESA_TOKEN_RETRY_MAX", 3)),
        getattr(settings, "MPESA_TOKEN_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "MPESA_TOKEN_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _error_payload(resp: httpx.Response):
    try:
        return resp.json()
    except ValueError:
        return {"message": resp.text}


def _error_detail(data):
    if isinstance(data, dict):
        return data.get("errorMessage") or data.get("ResponseDescription") or data.get("message") or data
    return data


def push_amount(amount) -> int:
    """Whole currency units sent to the provider (half-up)."""
    return whole_units(amount)


def stk_timestamp(now: Optional[datetime] = None) -> str:
    """``YYYYMMDDHHmmss`` in the server's local time zone."""
    return timezone.localtime(now or timezone.now()).strftime("%Y%m%d%H%M%S")


def stk_password(short_code: str, passkey: str, timestamp: str) -> str:
    """Provider-mandated password: base64(short code + passkey + timestamp)."""
    return base64.b64encode(f"{short_code}{passkey}{timestamp}".encode("utf-8")).decode("ascii")


# ---------------- Client ---------------- #

class MpesaClient:
    """Client for token generation and STK push.

    Args:
        config: Provider configuration; validated with ``require()`` before
            any network call.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        clock: Returns "now" for the STK timestamp.
    """

    def __init__(
        self,
        config: MpesaConfig,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.transport = transport
        self.clock = clock or timezone.now

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.config.base_url, timeout=self.config.timeout_secs, transport=self.transport)

    def _token_cache_key(self) -> str:
        digest = hashlib.sha256(f"{self.config.env}:{self.config.consumer_key}".encode("utf-8")).hexdigest()[:16]
        return f"mpesa:token:{digest}"

    def access_token(self) -> str:
        """Return a bearer token, from cache when still valid.

        Raises:
            ConfigurationError: If credentials are missing.
            UpstreamError: If the provider rejects the credentials or stays
                unavailable after retries.
        """
        config = self.config.require()
        key = self._token_cache_key()
        token = cache.get(key)
        if token:
            return token

        basic = base64.b64encode(f"{config.consumer_key}:{config.consumer_secret}".encode("utf-8")).decode("ascii")
        max_attempts, backoff, max_sleep = _retry_policy()
        tries = 0

        mpesa_cb.before_call()
        try:
            with self._client() as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.get(
                            TOKEN_PATH,
                            params={"grant_type": "client_credentials"},
                            headers=_request_headers({"Authorization": f"Basic {basic}"}),
                        )
                        if resp.status_code == 200:
                            mpesa_cb.on_success()
                            data = resp.json()
                            token = data["access_token"]
                            ttl = int(data.get("expires_in", 3599)) - TOKEN_EXPIRY_MARGIN
                            if ttl > 0:
                                cache.set(key, token, ttl)
                            return token
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    if tries >= max_attempts or not _should_retry(resp, exc):
                        if exc is not None:
                            mpesa_cb.on_failure()
                            logger.error("mpesa token request failed", extra={"error": str(exc), "attempts": tries})
                            raise UpstreamError("Failed to obtain M-Pesa access token", status_code=502, details=str(exc))
                        if resp.status_code >= 500:
                            mpesa_cb.on_failure()
                        else:
                            mpesa_cb.on_success()  # credentials problem, not provider health
                        data = _error_payload(resp)
                        logger.error("mpesa token rejected", extra={"status": resp.status_code, "attempts": tries})
                        raise UpstreamError(
                            "Failed to obtain M-Pesa access token",
                            status_code=resp.status_code,
                            details=_error_detail(data),
                            error=data,
                        )

                    sleep_s = min(backoff * (2 ** (tries - 1)), max_sleep)
                    logger.warning("mpesa token retry", extra={"attempt": tries, "sleep_s": sleep_s})
                    if sleep_s > 0:
                        time.sleep(sleep_s)
        finally:
            mpesa_cb.on_finish()

    def stk_push(self, amount, phone: str, account_reference: str = "ORDER", description: str = "Payment") -> dict:
        """Ask the provider to prompt ``phone`` for ``amount``.

        Returns:
            The provider's JSON response, verbatim (it carries
            ``CheckoutRequestID`` for later reconciliation).

        Raises:
            ConfigurationError: If configuration is incomplete.
            ValidationFailed: If the phone number is unusable.
            UpstreamError: Provider HTTP error (its status and detail) or
                transport failure.
            UpstreamTimeout: No answer in time; outcome unknown.
        """
        config = self.config.require()
        msisdn = normalize_msisdn(phone, config.country_code)
        token = self.access_token()
        timestamp = stk_timestamp(self.clock())

        payload = {
            "BusinessShortCode": config.short_code,
            "Password": stk_password(config.short_code, config.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": push_amount(amount),
            "PartyA": msisdn,
            "PartyB": config.short_code,
            "PhoneNumber": msisdn,
            "CallBackURL": config.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }

        mpesa_cb.before_call()
        try:
            with self._client() as client:
                try:
                    resp = client.post(STK_PUSH_PATH, json=payload, headers=_request_headers({"Authorization": f"Bearer {token}"}))
                except httpx.TimeoutException as e:
                    mpesa_cb.on_failure()
                    logger.error("stk push timed out, outcome unknown", extra={"phone": msisdn, "error": str(e)})
                    raise UpstreamTimeout("M-Pesa did not answer in time; the payment prompt may still arrive", details=str(e))
                except httpx.RequestError as e:
                    mpesa_cb.on_failure()
                    logger.error("stk push transport error", extra={"phone": msisdn, "error": str(e)})
                    raise UpstreamError("Failed to initiate STK Push", status_code=502, details=str(e), error={"message": str(e)})

                if resp.status_code >= 400:
                    if resp.status_code >= 500:
                        mpesa_cb.on_failure()
                    else:
                        mpesa_cb.on_success()
                    data = _error_payload(resp)
                    detail = _error_detail(data)
                    logger.error("stk push rejected", extra={"status": resp.status_code, "detail": str(detail)})
                    raise UpstreamError("Failed to initiate STK Push", status_code=resp.status_code, details=detail, error=data)

                mpesa_cb.on_success()
                data = resp.json()
                logger.info(
                    "stk push initiated",
                    extra={"checkout_request_id": data.get("CheckoutRequestID"), "amount": payload["Amount"]},
                )
                return data
        finally:
            mpesa_cb.on_finish()
