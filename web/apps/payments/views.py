"""HTTP views for the M-Pesa STK push integration.

``StkPushView`` starts a push payment and returns the provider payload.
``MpesaCallbackView`` is the public endpoint Safaricom posts results to:
it stores the delivery and answers 200 with a fixed body no matter what
the payload contains, because the provider retries on anything else.
Reconciliation happens outside the request (see ``dispatch``).
"""

import json
import logging
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.orders.domain import OrderStatus
from apps.orders.errors import Conflict, NotFound, StoreError, ValidationFailed
from apps.orders.models import OrderModel
from apps.orders.repository import OrderRepository
from apps.orders.schemas import validate_or_raise
from gateway.exceptions import render_error
from gateway.middleware import REQUEST_ID_CTX

from . import providers
from .dispatch import dispatch_callback
from .models import PaymentCallback
from .mpesa import push_amount
from .schemas import StkPushDTO

logger = logging.getLogger("store.payments")

CALLBACK_ACK = {"ResultCode": 0, "ResultDesc": "Callback received successfully"}


def _check_order_payable(user, order_number: str, amount: Decimal) -> None:
    """The order must be the caller's, pending, and charged its full total."""
    if not user.is_authenticated:
        raise NotFound("Order not found")
    row = OrderModel.objects.filter(order_number=order_number, user=user).values_list("status", "total").first()
    if row is None:
        raise NotFound("Order not found")
    current, total = row
    if current != OrderStatus.PENDING.value:
        raise Conflict(f"Order is {current}, not awaiting payment")
    if push_amount(amount) != push_amount(total):
        raise ValidationFailed([{"field": "amount", "message": f"Amount must equal the order total ({total})"}])


class StkPushView(APIView):
    """Initiate an STK push. Not retried on failure (it could prompt the phone twice)."""

    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "mpesa_stkpush"

    def post(self, request):
        try:
            dto = validate_or_raise(StkPushDTO, request.data)
            if dto.order_number:
                _check_order_payable(request.user, dto.order_number, dto.amount)
            data = providers.get_mpesa_client().stk_push(
                dto.amount,
                dto.phone,
                account_reference=dto.account_reference,
                description=dto.description,
            )
        except StoreError as e:
            return render_error(e)
        except Exception:
            logger.exception("stk push error")
            return Response(
                {"message": "Failed to initiate STK Push", "code": "INTERNAL_ERROR", "details": None, "error": None},
                status=500,
            )

        body = {"message": "STK Push initiated", "data": data}
        checkout_id = data.get("CheckoutRequestID") if isinstance(data, dict) else None
        if dto.order_number and checkout_id:
            try:
                attached = OrderRepository().attach_payment_request(dto.order_number, request.user.pk, checkout_id)
            except Conflict:
                logger.warning(
                    "checkout request already bound to another order",
                    extra={"order_number": dto.order_number, "checkout_request_id": checkout_id},
                )
                attached = False
            except Exception:
                # the push already went out; report it rather than failing the request
                logger.exception("could not attach checkout request to order", extra={"order_number": dto.order_number})
                attached = False
            body["orderAttached"] = attached
        return Response(body)


class MpesaCallbackView(APIView):
    """Receive STK push results. Always answers 200 with ``CALLBACK_ACK``."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > settings.API_MAX_BYTES:
            logger.warning("callback body too large", extra={"content_length": int(clen)})
            return self._store_unreadable(f"body too large: {clen} bytes")
        try:
            raw = request.body.decode("utf-8", errors="replace")
        except Exception as e:
            logger.exception("could not read callback body")
            return self._store_unreadable(repr(e))

        logger.debug("mpesa callback", extra={"body": raw})
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            payload = None

        callback_id = None
        try:
            with transaction.atomic():
                body = payload.get("Body") if isinstance(payload, dict) else None
                stk = body.get("stkCallback") if isinstance(body, dict) else None
                cb = PaymentCallback.objects.create(
                    raw_body=raw,
                    payload=payload,
                    checkout_request_id=str(stk.get("CheckoutRequestID") or "")[:64] if isinstance(stk, dict) else "",
                    state=PaymentCallback.State.RECEIVED if payload is not None else PaymentCallback.State.INVALID,
                    request_id=REQUEST_ID_CTX.get()[:64],
                )
                callback_id = cb.pk
                if payload is not None:
                    dispatch_callback(cb.pk)
        except Exception:
            logger.exception("could not store or dispatch payment callback", extra={"callback_id": callback_id})
        else:
            logger.info(
                "payment callback stored",
                extra={"callback_id": callback_id, "checkout_request_id": cb.checkout_request_id},
            )
        return Response(CALLBACK_ACK)

    def _store_unreadable(self, reason: str):
        try:
            PaymentCallback.objects.create(
                state=PaymentCallback.State.INVALID,
                last_error=reason[:2000],
                request_id=REQUEST_ID_CTX.get()[:64],
            )
        except Exception:
            logger.exception("could not store payment callback")
        return Response(CALLBACK_ACK)
