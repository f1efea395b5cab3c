"""Domain models, ports and service for orders.

This module holds the framework-free part of the order flow: the status
state machine, dataclasses used as DTOs, pricing rules, protocol
definitions (ports) for the catalog and the order ledger, and the
``OrderService`` that places, cancels and advances orders.

Django code implements the ports (see ``repository.py`` and
``apps.catalog.repository``) and ``providers.get_order_service()`` wires
them together with ``transaction.atomic`` as the unit of work.
"""

from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from .errors import Conflict, IllegalTransition, InsufficientStock, NotFound

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Quantize a number to two decimal places (half-up)."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def whole_units(value) -> int:
    """Round to whole currency units (half-up), as the push provider charges."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---- Enums ----
class OrderStatus(str, Enum):
    """Order lifecycle states. Only the edges in ``TRANSITIONS`` are legal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    # refunds are recorded outside this service
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[OrderStatus(current)]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise ``IllegalTransition`` unless ``current -> target`` is a legal edge."""
    current, target = OrderStatus(current), OrderStatus(target)
    if not can_transition(current, target):
        raise IllegalTransition(current.value, target.value)


class PaymentType(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"
    MPESA = "mpesa"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartLine:
    """A product id and a requested quantity (>= 1), as sent by the client."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class ProductSnapshot:
    """What the order flow needs to know about a product at checkout time."""

    id: str
    name: str
    price: Decimal
    image: str
    stock_quantity: int
    in_stock: bool
    is_active: bool = True


@dataclass(frozen=True)
class OrderLine:
    """A line item frozen at order time; never re-read from the live catalog."""

    product_id: str
    name: str
    image: str
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PricingPolicy:
    """Tax and shipping knobs.

    Attributes:
        tax_rate: Fraction of the subtotal charged as tax.
        free_shipping_threshold: Subtotal at or above which shipping is free.
        flat_shipping_fee: Shipping charged below the threshold.
    """

    tax_rate: Decimal = Decimal("0.08")
    free_shipping_threshold: Decimal = Decimal("100")
    flat_shipping_fee: Decimal = Decimal("10")


@dataclass(frozen=True)
class Pricing:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal

    @classmethod
    def compute(cls, lines: List[OrderLine], policy: PricingPolicy, discount: Decimal = Decimal("0")) -> "Pricing":
        """Price a list of lines.

        ``total`` is always derived here as subtotal + tax + shipping - discount.
        """
        subtotal = money(sum((line.line_total for line in lines), Decimal("0")))
        tax = money(subtotal * policy.tax_rate)
        shipping = Decimal("0.00") if subtotal >= policy.free_shipping_threshold else money(policy.flat_shipping_fee)
        discount = money(discount)
        return cls(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            discount=discount,
            total=subtotal + tax + shipping - discount,
        )


@dataclass
class PlaceOrderCommand:
    """Everything a validated checkout request carries into the domain."""

    user_id: int
    lines: List[CartLine]
    shipping_address: dict
    billing_address: dict
    payment_type: PaymentType
    payment_details: dict = field(default_factory=dict)
    notes: str = ""


@dataclass
class OrderDraft:
    """A priced order ready to be written to the ledger."""

    user_id: int
    lines: List[OrderLine]
    pricing: Pricing
    shipping_address: dict
    billing_address: dict
    payment_type: PaymentType
    payment_details: dict
    notes: str = ""
    status: OrderStatus = OrderStatus.PENDING


@dataclass
class OrderRecord:
    """The subset of a stored order the service needs to change its state."""

    id: str
    order_number: str
    status: OrderStatus
    lines: List[OrderLine]


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog operations used by the order flow."""

    def load(self, product_ids: List[str]) -> Dict[str, ProductSnapshot]:
        """Return snapshots keyed by product id; unknown ids are omitted."""
        raise NotImplementedError()

    def reserve(self, product_id: str, quantity: int) -> bool:
        """Decrement stock by ``quantity`` only if enough is left, in one step.

        Returns:
            True if the decrement was applied, False if stock was short.
        """
        raise NotImplementedError()

    def release(self, product_id: str, quantity: int) -> bool:
        """Give ``quantity`` back to stock. False if the product no longer exists."""
        raise NotImplementedError()


class OrderLedgerPort(Protocol):
    """Port describing order persistence used by the order flow."""

    def create(self, draft: OrderDraft) -> str:
        """Persist a new order (and its number) and return its id."""
        raise NotImplementedError()

    def load_for_update(self, order_id: str, user_id: Optional[int] = None) -> Optional[OrderRecord]:
        """Lock and load an order, optionally restricted to its owner."""
        raise NotImplementedError()

    def mark_cancelled(self, order_id: str, reason: str, at: datetime) -> None:
        raise NotImplementedError()

    def set_status(self, order_id: str, status: OrderStatus, at: datetime, tracking: Optional[dict] = None) -> None:
        raise NotImplementedError()


# ---- Domain service ----
class OrderService:
    """Domain service for the order lifecycle.

    Each public operation runs inside one unit of work obtained from
    ``atomic`` (``transaction.atomic`` in production), so a failure at any
    step leaves neither a half-written order nor a stray stock change.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        ledger: OrderLedgerPort,
        pricing: PricingPolicy | None = None,
        atomic: Callable[[], AbstractContextManager] = nullcontext,
        clock: Callable[[], datetime] | None = None,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.pricing = pricing or PricingPolicy()
        self.atomic = atomic
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def place_order(self, cmd: PlaceOrderCommand) -> str:
        """Validate the cart, price it, persist a pending order and reserve stock.

        Checks run in order and the first failure wins: every product must
        exist and be active (``NotFound``), then every product must have
        enough stock for the total quantity requested of it
        (``InsufficientStock``). The reservation itself is a conditional
        decrement, so a concurrent checkout that took the last units after
        the check still fails with ``InsufficientStock`` and rolls back.

        Args:
            cmd: Validated checkout request.

        Returns:
            The id of the persisted order.

        Raises:
            Conflict: If the cart is empty.
            NotFound: If a product is missing or inactive.
            InsufficientStock: If a product cannot cover the requested quantity.
        """
        if not cmd.lines:
            raise Conflict("Order must contain at least one item")

        with self.atomic():
            products = self.catalog.load(list(dict.fromkeys(line.product_id for line in cmd.lines)))

            requested: Dict[str, int] = {}
            for line in cmd.lines:
                product = products.get(line.product_id)
                if product is None or not product.is_active:
                    raise NotFound(f"Product {line.product_id} not found", productId=line.product_id)
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

            for product_id, qty in requested.items():
                product = products[product_id]
                if not product.in_stock or product.stock_quantity < qty:
                    raise InsufficientStock(product_id, product.name, product.stock_quantity)

            lines = [
                OrderLine(
                    product_id=line.product_id,
                    name=products[line.product_id].name,
                    image=products[line.product_id].image,
                    unit_price=products[line.product_id].price,
                    quantity=line.quantity,
                )
                for line in cmd.lines
            ]
            draft = OrderDraft(
                user_id=cmd.user_id,
                lines=lines,
                pricing=Pricing.compute(lines, self.pricing),
                shipping_address=cmd.shipping_address,
                billing_address=cmd.billing_address,
                payment_type=cmd.payment_type,
                payment_details=cmd.payment_details,
                notes=cmd.notes,
            )
            order_id = self.ledger.create(draft)

            for product_id, qty in requested.items():
                if not self.catalog.reserve(product_id, qty):
                    # lost a race with another checkout; re-read for the message
                    current = self.catalog.load([product_id]).get(product_id)
                    available = current.stock_quantity if current else 0
                    raise InsufficientStock(product_id, products[product_id].name, available)

        return order_id

    def cancel_order(self, order_id: str, user_id: int, reason: str = "") -> None:
        """Cancel an order owned by ``user_id`` and put its stock back.

        Raises:
            NotFound: If the order does not exist or belongs to someone else.
            Conflict: If the order is already cancelled or has been dispatched.
        """
        with self.atomic():
            record = self.ledger.load_for_update(order_id, user_id=user_id)
            if record is None:
                raise NotFound("Order not found")
            if record.status == OrderStatus.CANCELLED:
                raise Conflict("Order is already cancelled")
            if record.status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
                raise Conflict("Cannot cancel order that has been shipped or delivered")
            ensure_transition(record.status, OrderStatus.CANCELLED)

            self.ledger.mark_cancelled(record.id, reason, self.clock())
            for line in record.lines:
                self.catalog.release(line.product_id, line.quantity)

    def advance_status(self, order_id: str, target: OrderStatus, tracking: Optional[dict] = None) -> None:
        """Move an order along the fulfilment path (staff operation).

        Cancellation is excluded because it must restore stock; use
        ``cancel_order`` for that. Refunds are recorded outside this service.
        """
        target = OrderStatus(target)
        if target == OrderStatus.CANCELLED:
            raise Conflict("Use the cancel operation to cancel an order")
        if target == OrderStatus.REFUNDED:
            raise Conflict("Refunds cannot be recorded through this operation")
        with self.atomic():
            record = self.ledger.load_for_update(order_id)
            if record is None:
                raise NotFound("Order not found")
            ensure_transition(record.status, target)
            self.ledger.set_status(record.id, target, self.clock(), tracking=tracking)
