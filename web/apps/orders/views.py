"""HTTP views for the orders app.

DRF API views for the order flow. Views are kept small: they validate the
request with pydantic, map it to a domain command, delegate to the
``OrderService`` obtained from ``providers.get_order_service()`` and
render the stored order. Every ``StoreError`` raised by the domain is
caught here and rendered as ``{"message", "code", ...}``; anything else is
logged with its traceback and answered with a generic 500.

Idempotency: when an ``Idempotency-Key`` header is sent on create, the
first request is processed and its response stored; retries with the same
payload return the stored response with ``Idempotent-Replay: true``, and a
retry with a different payload gets HTTP 409.
"""

import logging
import math

from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from gateway.exceptions import render_error

from . import providers
from .domain import CartLine, OrderStatus, PlaceOrderCommand
from .errors import InternalError, NotFound, StoreError
from .idempotency import discard, finalize, get_or_create_idempotent, scoped_key
from .models import OrderModel
from .schemas import (
    AdvanceStatusDTO,
    CancelOrderDTO,
    CreateOrderDTO,
    ListOrdersQuery,
    OrderItemRead,
    OrderReadDTO,
    PaginationRead,
    PaymentMethodRead,
    PricingRead,
    ProductBrief,
    TrackingRead,
    validate_or_raise,
)

logger = logging.getLogger("store.orders")


def serialize_order(o: OrderModel, include_user: bool = True) -> dict:
    """Render an order, expanding each line with current product detail."""
    items = []
    for it in o.items.all():
        p = it.product
        items.append(
            OrderItemRead(
                product_id=it.product_ref,
                name=it.name,
                image=it.image,
                price=it.unit_price,
                quantity=it.quantity,
                product=(
                    ProductBrief(
                        id=p.id,
                        name=p.name,
                        price=p.price,
                        image=p.image_url,
                        in_stock=p.in_stock,
                        stock_quantity=p.stock_quantity,
                    )
                    if p is not None
                    else None
                ),
            )
        )
    dto = OrderReadDTO(
        id=o.id,
        order_number=o.order_number,
        user=o.user_id if include_user else None,
        status=o.status,
        items=items,
        shipping_address=o.shipping_address,
        billing_address=o.billing_address,
        payment_method=PaymentMethodRead(type=o.payment_type, details=o.payment_details or {}),
        pricing=PricingRead(subtotal=o.subtotal, tax=o.tax, shipping=o.shipping, discount=o.discount, total=o.total),
        tracking=TrackingRead(carrier=o.tracking_carrier, tracking_number=o.tracking_number, tracking_url=o.tracking_url),
        notes=o.notes,
        estimated_delivery=o.estimated_delivery,
        delivered_at=o.delivered_at,
        cancelled_at=o.cancelled_at,
        cancellation_reason=o.cancellation_reason,
        created_at=o.created_at,
        updated_at=o.updated_at,
    )
    body = dto.model_dump(by_alias=True, mode="json")
    if not include_user:
        body.pop("user", None)
    return body


def _with_items(qs):
    return qs.prefetch_related("items__product")


def _load_order(order_id, **filters) -> OrderModel:
    try:
        return _with_items(OrderModel.objects.filter(id=order_id, **filters)).get()
    except OrderModel.DoesNotExist:
        raise NotFound("Order not found")


def _internal_error(message: str) -> Response:
    logger.exception(message)
    return render_error(InternalError(message))


class OrdersCollectionView(APIView):
    """List the caller's orders (GET) or place a new order (POST)."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        try:
            q = validate_or_raise(ListOrdersQuery, request.query_params.dict())
        except StoreError as e:
            return render_error(e)

        qs = OrderModel.objects.filter(user=request.user)
        if q.status:
            qs = qs.filter(status=q.status.value)
        total = qs.count()
        start = (q.page - 1) * q.limit
        orders = list(_with_items(qs.order_by("-created_at"))[start : start + q.limit])

        pagination = PaginationRead(
            current_page=q.page,
            total_pages=math.ceil(total / q.limit),
            total_orders=total,
        )
        return Response(
            {
                "orders": [serialize_order(o) for o in orders],
                "pagination": pagination.model_dump(by_alias=True),
            }
        )

    def post(self, request):
        """Place an order.

        Returns:
            Response: One of the following responses.
            - 201 with {message, order} when the order is created.
            - stored status/body when an ``Idempotency-Key`` is replayed.
            - 409 when the key is reused with a different payload or the
              original request is still in flight.
            - 400 with {errors} for field validation failures.
            - 404 when a product does not exist.
            - 400 with INSUFFICIENT_STOCK when stock cannot cover the cart.
        """
        try:
            dto = validate_or_raise(CreateOrderDTO, request.data)
        except StoreError as e:
            return render_error(e)

        rec = None
        idem_key = request.headers.get("Idempotency-Key")
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(scoped_key(request.user.pk, idem_key), request.data)
            except ValueError:
                return Response(
                    {"message": "Idempotency key reused with a different payload", "code": "IDEMPOTENCY_CONFLICT"},
                    status=status.HTTP_409_CONFLICT,
                )
            if existing:
                if not rec.response_status:
                    return Response(
                        {"message": "A request with this idempotency key is in progress", "code": "IDEMPOTENCY_IN_PROGRESS"},
                        status=status.HTTP_409_CONFLICT,
                    )
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        details = dto.payment_method.details.model_dump(by_alias=True, exclude_none=True) if dto.payment_method.details else {}
        cmd = PlaceOrderCommand(
            user_id=request.user.pk,
            lines=[CartLine(product_id=str(i.product_id), quantity=i.quantity) for i in dto.items],
            shipping_address=dto.shipping_address.model_dump(by_alias=True, exclude_none=True),
            billing_address=dto.billing_address.model_dump(by_alias=True, exclude_none=True),
            payment_type=dto.payment_method.type,
            payment_details=details,
            notes=dto.notes or "",
        )

        try:
            order_id = providers.get_order_service().place_order(cmd)
        except StoreError as e:
            if rec:
                finalize(rec, e.status_code, e.to_body())
            return render_error(e)
        except Exception:
            if rec:
                discard(rec)
            return _internal_error("Server error while creating order")

        body = {"message": "Order created successfully", "order": serialize_order(_load_order(order_id))}
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order_id)
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = _load_order(oid, user=request.user)
        except StoreError as e:
            return render_error(e)
        return Response({"order": serialize_order(order)})


class CancelOrderView(APIView):
    permission_classes = [IsAuthenticated]

    def put(self, request, oid):
        try:
            dto = validate_or_raise(CancelOrderDTO, request.data)
            providers.get_order_service().cancel_order(str(oid), request.user.pk, dto.reason or "")
        except StoreError as e:
            return render_error(e)
        except Exception:
            return _internal_error("Server error while cancelling order")
        return Response({"message": "Order cancelled successfully", "order": serialize_order(_load_order(oid))})


class AdvanceOrderStatusView(APIView):
    """Staff-only: move an order along the fulfilment path."""

    permission_classes = [IsAdminUser]

    def put(self, request, oid):
        try:
            dto = validate_or_raise(AdvanceStatusDTO, request.data)
            tracking = dto.tracking.model_dump(by_alias=True, exclude_none=True) if dto.tracking else None
            providers.get_order_service().advance_status(str(oid), dto.status, tracking=tracking)
        except StoreError as e:
            return render_error(e)
        except Exception:
            return _internal_error("Server error while updating order status")
        return Response({"message": f"Order moved to {OrderStatus(dto.status).value}", "order": serialize_order(_load_order(oid))})


class TrackOrderView(APIView):
    """Public lookup by order number; the owner is never exposed."""

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_tracking"

    def get(self, request, order_number: str):
        order = _with_items(OrderModel.objects.filter(order_number=order_number)).first()
        if order is None:
            return render_error(NotFound("Order not found"))
        return Response({"order": serialize_order(order, include_user=False)})
