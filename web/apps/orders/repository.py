"""Repository layer for the order ledger.

``OrderRepository`` implements ``OrderLedgerPort`` on top of the Django
ORM so the domain service is not coupled to ORM details. It also owns the
payment reconciliation write (``confirm_payment``) used by the payments
app, which must lock the order row and apply the state machine the same
way the domain service does.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from .domain import (
    OrderDraft,
    OrderLedgerPort,
    OrderLine,
    OrderRecord,
    OrderStatus,
    can_transition,
    whole_units,
)
from .errors import Conflict
from .models import OrderItemModel, OrderModel
from .numbering import fallback_order_number

logger = logging.getLogger("store.orders")


class PaymentOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    UNMATCHED = "unmatched"
    REJECTED = "rejected"
    AMOUNT_MISMATCH = "amount_mismatch"


@dataclass(frozen=True)
class PaymentConfirmation:
    outcome: PaymentOutcome
    order_number: Optional[str] = None
    status: Optional[str] = None
    total: Optional[Decimal] = None


class OrderRepository(OrderLedgerPort):
    """Persists and mutates ``OrderModel`` rows for the domain service."""

    def create(self, draft: OrderDraft) -> str:
        """Persist a new pending order with its line items.

        The order number is assigned by ``OrderModel.save``. If it collides
        with an existing one (two checkouts in the same millisecond seeing
        the same count) the insert is retried once with the random form.

        Returns:
            The new order's UUID as a string.

        Raises:
            Conflict: the payment reference is already bound to another order.
        """
        details = dict(draft.payment_details or {})
        request_id = details.get("transactionId") or None
        if request_id and self._reference_taken(request_id):
            raise Conflict("Payment reference is already used by another order")
        obj = OrderModel(
            user_id=draft.user_id,
            status=draft.status.value,
            shipping_address=draft.shipping_address,
            billing_address=draft.billing_address,
            payment_type=draft.payment_type.value,
            payment_details=details,
            payment_request_id=request_id,
            subtotal=draft.pricing.subtotal,
            tax=draft.pricing.tax,
            shipping=draft.pricing.shipping,
            discount=draft.pricing.discount,
            total=draft.pricing.total,
            notes=draft.notes or "",
        )
        try:
            with transaction.atomic():
                obj.save(force_insert=True)
        except IntegrityError:
            if request_id and self._reference_taken(request_id):
                raise Conflict("Payment reference is already used by another order")
            logger.warning("order number collision, retrying", extra={"order_number": obj.order_number})
            obj.order_number = fallback_order_number()
            with transaction.atomic():
                obj.save(force_insert=True)

        OrderItemModel.objects.bulk_create(
            [
                OrderItemModel(
                    order=obj,
                    product_id=line.product_id,
                    product_ref=line.product_id,
                    name=line.name,
                    image=line.image,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    position=i,
                )
                for i, line in enumerate(draft.lines)
            ]
        )
        logger.info(
            "order created",
            extra={"order_id": str(obj.id), "order_number": obj.order_number, "total": str(obj.total)},
        )
        return str(obj.id)

    def _reference_taken(self, request_id: str, exclude_pk=None) -> bool:
        qs = OrderModel.objects.filter(payment_request_id=request_id)
        if exclude_pk is not None:
            qs = qs.exclude(pk=exclude_pk)
        return qs.exists()

    def _locked(self, **filters) -> Optional[OrderModel]:
        try:
            return OrderModel.objects.select_for_update().filter(**filters).first()
        except DjangoValidationError:
            return None

    def load_for_update(self, order_id: str, user_id: Optional[int] = None) -> Optional[OrderRecord]:
        filters = {"id": order_id}
        if user_id is not None:
            filters["user_id"] = user_id
        obj = self._locked(**filters)
        if obj is None:
            return None
        lines = [
            OrderLine(
                product_id=str(item.product_ref),
                name=item.name,
                image=item.image,
                unit_price=item.unit_price,
                quantity=item.quantity,
            )
            for item in obj.items.all()
        ]
        return OrderRecord(id=str(obj.id), order_number=obj.order_number, status=OrderStatus(obj.status), lines=lines)

    def mark_cancelled(self, order_id: str, reason: str, at: datetime) -> None:
        obj = OrderModel.objects.get(id=order_id)
        obj.status = OrderStatus.CANCELLED.value
        obj.cancelled_at = at
        obj.cancellation_reason = reason or ""
        obj.save(update_fields=["status", "cancelled_at", "cancellation_reason"])
        logger.info("order cancelled", extra={"order_id": order_id, "order_number": obj.order_number})

    def set_status(self, order_id: str, status: OrderStatus, at: datetime, tracking: Optional[dict] = None) -> None:
        obj = OrderModel.objects.get(id=order_id)
        obj.status = OrderStatus(status).value
        fields = ["status"]
        if status == OrderStatus.DELIVERED:
            obj.delivered_at = at
            fields.append("delivered_at")
        if tracking:
            for key, attr in (("carrier", "tracking_carrier"), ("trackingNumber", "tracking_number"), ("trackingUrl", "tracking_url")):
                if tracking.get(key) is not None:
                    setattr(obj, attr, tracking[key])
                    fields.append(attr)
            if tracking.get("estimatedDelivery") is not None:
                obj.estimated_delivery = tracking["estimatedDelivery"]
                fields.append("estimated_delivery")
        obj.save(update_fields=fields)
        logger.info("order status changed", extra={"order_id": order_id, "status": obj.status})

    def attach_payment_request(self, order_number: str, user_id: int, request_id: str) -> bool:
        """Store a provider checkout request id on a pending order owned by ``user_id``.

        Raises:
            Conflict: another order already holds ``request_id``.
        """
        with transaction.atomic():
            obj = self._locked(order_number=order_number, user_id=user_id)
            if obj is None or obj.status != OrderStatus.PENDING.value:
                return False
            if self._reference_taken(request_id, exclude_pk=obj.pk):
                raise Conflict("Payment reference is already used by another order")
            obj.payment_request_id = request_id
            obj.payment_details = {**(obj.payment_details or {}), "transactionId": request_id}
            obj.save(update_fields=["payment_request_id", "payment_details"])
        logger.info("payment request attached", extra={"order_number": order_number, "checkout_request_id": request_id})
        return True

    def confirm_payment(
        self,
        request_id: str,
        receipt: Optional[str],
        phone: Optional[str],
        amount: Optional[Decimal] = None,
    ) -> PaymentConfirmation:
        """Apply a successful push-payment result to the matching order.

        Only ``pending -> confirmed`` is applied. A second delivery for an
        already confirmed order changes nothing, and an order that has
        moved elsewhere (e.g. cancelled) is left alone. A paid ``amount``
        that is missing or below the order total, in whole units, leaves
        the order pending.

        Must run inside a transaction; the order row is locked.
        """
        obj = self._locked(payment_request_id=request_id)
        if obj is None:
            return PaymentConfirmation(PaymentOutcome.UNMATCHED)
        if obj.status == OrderStatus.CONFIRMED.value:
            return PaymentConfirmation(PaymentOutcome.ALREADY_CONFIRMED, obj.order_number, obj.status)
        if not can_transition(OrderStatus(obj.status), OrderStatus.CONFIRMED):
            return PaymentConfirmation(PaymentOutcome.REJECTED, obj.order_number, obj.status)
        if amount is None or amount < whole_units(obj.total):
            return PaymentConfirmation(PaymentOutcome.AMOUNT_MISMATCH, obj.order_number, obj.status, obj.total)

        obj.status = OrderStatus.CONFIRMED.value
        obj.payment_details = {
            **(obj.payment_details or {}),
            "receipt": receipt,
            "phone": str(phone or ""),
        }
        obj.save(update_fields=["status", "payment_details"])
        return PaymentConfirmation(PaymentOutcome.CONFIRMED, obj.order_number, obj.status, obj.total)
