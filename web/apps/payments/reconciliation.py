"""Reconciliation of STK push callbacks against pending orders.

``parse_stk_callback`` pulls the interesting fields out of the provider's
nested payload; metadata items are looked up by ``Name`` because the
provider does not guarantee their order. ``process_callback`` takes one
stored ``PaymentCallback`` row through reconciliation and records what
happened on it. It never raises: the provider has already been answered,
so failures are logged and left on the row (state ``failed``) for the
``process_payment_callbacks`` command to retry.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.orders.repository import OrderRepository, PaymentOutcome

from .models import PaymentCallback

logger = logging.getLogger("store.payments")

SUCCESS_RESULT_CODE = 0


@dataclass(frozen=True)
class StkCallbackResult:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: Optional[int]
    result_desc: str
    amount: Optional[Decimal] = None
    receipt: Optional[str] = None
    phone: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == SUCCESS_RESULT_CODE


def _metadata_value(items: list, name: str) -> Any:
    for item in items or []:
        if isinstance(item, dict) and item.get("Name") == name:
            return item.get("Value")
    return None


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_stk_callback(payload: Any) -> Optional[StkCallbackResult]:
    """Extract the result from ``{"Body": {"stkCallback": {...}}}``.

    Returns:
        None when the payload does not look like an STK callback.
    """
    if not isinstance(payload, dict):
        return None
    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict) or not stk.get("CheckoutRequestID"):
        return None

    result_code = _as_int(stk.get("ResultCode"))
    amount = receipt = phone = None
    if result_code == SUCCESS_RESULT_CODE:
        meta = stk.get("CallbackMetadata") or {}
        items = meta.get("Item") if isinstance(meta, dict) else None
        raw_amount = _metadata_value(items, "Amount")
        try:
            amount = Decimal(str(raw_amount)) if raw_amount is not None else None
        except InvalidOperation:
            amount = None
        receipt = _metadata_value(items, "MpesaReceiptNumber")
        raw_phone = _metadata_value(items, "PhoneNumber")
        phone = str(raw_phone) if raw_phone is not None else None

    return StkCallbackResult(
        checkout_request_id=str(stk["CheckoutRequestID"]),
        merchant_request_id=stk.get("MerchantRequestID"),
        result_code=result_code,
        result_desc=str(stk.get("ResultDesc") or ""),
        amount=amount,
        receipt=str(receipt) if receipt is not None else None,
        phone=phone,
    )


def _log_extra(cb: PaymentCallback, **kw) -> dict:
    return {"request_id": cb.request_id or None, "callback_id": cb.pk, "checkout_request_id": cb.checkout_request_id, **kw}


def _reconcile(cb: PaymentCallback) -> str:
    """Apply one callback. Runs inside the caller's transaction; returns the new state."""
    result = parse_stk_callback(cb.payload)
    if result is None:
        logger.warning("callback payload not understood", extra=_log_extra(cb))
        return PaymentCallback.State.INVALID

    cb.checkout_request_id = result.checkout_request_id[:64]
    cb.result_code = result.result_code

    if not result.succeeded:
        logger.warning(
            "stk push failed",
            extra=_log_extra(cb, result_code=result.result_code, result_desc=result.result_desc),
        )
        return PaymentCallback.State.PAYMENT_FAILED

    confirmation = OrderRepository().confirm_payment(
        result.checkout_request_id, result.receipt, result.phone, amount=result.amount
    )

    if confirmation.outcome == PaymentOutcome.UNMATCHED:
        logger.warning("no order for CheckoutRequestID", extra=_log_extra(cb))
        return PaymentCallback.State.UNMATCHED
    if confirmation.outcome == PaymentOutcome.REJECTED:
        logger.warning(
            "payment received for order that cannot be confirmed",
            extra=_log_extra(cb, order_number=confirmation.order_number, status=confirmation.status),
        )
        return PaymentCallback.State.IGNORED
    if confirmation.outcome == PaymentOutcome.ALREADY_CONFIRMED:
        logger.info("duplicate payment callback", extra=_log_extra(cb, order_number=confirmation.order_number))
        return PaymentCallback.State.PROCESSED
    if confirmation.outcome == PaymentOutcome.AMOUNT_MISMATCH:
        logger.warning(
            "paid amount does not cover order total",
            extra=_log_extra(
                cb, order_number=confirmation.order_number, amount=str(result.amount), total=str(confirmation.total)
            ),
        )
        return PaymentCallback.State.AMOUNT_MISMATCH

    logger.info(
        "order confirmed by payment",
        extra=_log_extra(cb, order_number=confirmation.order_number, amount=str(result.amount), receipt=result.receipt),
    )
    return PaymentCallback.State.PROCESSED


def process_callback(callback_id: int) -> Optional[str]:
    """Reconcile one stored callback and record the outcome on its row.

    Rows already in a final state are skipped, so running this twice for
    the same row is harmless. Returns the resulting state, or None if the
    row does not exist.
    """
    try:
        with transaction.atomic():
            cb = PaymentCallback.objects.select_for_update().filter(pk=callback_id).first()
            if cb is None:
                return None
            if cb.state not in (PaymentCallback.State.RECEIVED, PaymentCallback.State.FAILED):
                return cb.state
            cb.attempts += 1
            cb.state = _reconcile(cb)
            cb.last_error = ""
            cb.processed_at = timezone.now()
            cb.save()
            return cb.state
    except Exception as e:
        logger.exception("callback processing error", extra={"callback_id": callback_id})
        PaymentCallback.objects.filter(pk=callback_id).update(
            state=PaymentCallback.State.FAILED,
            attempts=F("attempts") + 1,
            last_error=repr(e)[:2000],
        )
        return PaymentCallback.State.FAILED


def pending_callbacks(limit: int = 100):
    """Ids of rows still to be processed, oldest first."""
    max_attempts = getattr(settings, "PAYMENT_CALLBACK_MAX_ATTEMPTS", 5)
    return list(
        PaymentCallback.objects.filter(
            state__in=[PaymentCallback.State.RECEIVED, PaymentCallback.State.FAILED],
            attempts__lt=max_attempts,
        )
        .order_by("received_at")
        .values_list("pk", flat=True)[:limit]
    )
