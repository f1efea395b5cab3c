"""Pydantic schemas for orders.

Request schemas validate incoming JSON (camelCase on the wire); read
schemas shape responses. Money is kept as ``Decimal`` in Python and
rendered as a JSON number.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .domain import OrderStatus, PaymentType
from .errors import ValidationFailed

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def validate_or_raise(schema: type[BaseModel], data: Any) -> BaseModel:
    """Validate ``data`` against ``schema`` or raise ``ValidationFailed``.

    Field paths are rendered with the wire (camelCase) names, e.g.
    ``items.0.quantity``.
    """
    try:
        return schema.model_validate(data if data is not None else {})
    except ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or "body", "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationFailed(errors)


# ---- Requests ----
class OrderItemIn(CamelModel):
    """A cart line: ``productId`` must be a UUID, ``quantity`` >= 1."""

    product_id: UUID
    quantity: int = Field(ge=1)


class AddressIn(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)

    @field_validator("name", "street", "city", "state", "zip_code", "country")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field is required")
        return v


class PaymentDetailsIn(CamelModel):
    """Provider-specific details. Unknown keys are kept as given."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    card_last4: Optional[str] = Field(default=None, max_length=4)
    card_brand: Optional[str] = Field(default=None, max_length=32)
    transaction_id: Optional[str] = Field(default=None, max_length=64)


class PaymentMethodIn(CamelModel):
    type: PaymentType
    details: Optional[PaymentDetailsIn] = None


class CreateOrderDTO(CamelModel):
    """Schema for creating an order. Client-side prices are not accepted."""

    items: list[OrderItemIn] = Field(min_length=1)
    shipping_address: AddressIn
    billing_address: AddressIn
    payment_method: PaymentMethodIn
    notes: Optional[str] = Field(default=None, max_length=1000)


class CancelOrderDTO(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=200)


class ListOrdersQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    status: Optional[OrderStatus] = None


class TrackingIn(CamelModel):
    carrier: Optional[str] = Field(default=None, max_length=64)
    tracking_number: Optional[str] = Field(default=None, max_length=64)
    tracking_url: Optional[str] = Field(default=None, max_length=500)
    estimated_delivery: Optional[datetime] = None


class AdvanceStatusDTO(CamelModel):
    status: OrderStatus
    tracking: Optional[TrackingIn] = None


# ---- Responses ----
class ProductBrief(CamelModel):
    id: UUID
    name: str
    price: Money
    image: str
    in_stock: bool
    stock_quantity: int


class OrderItemRead(CamelModel):
    product_id: UUID
    name: str
    image: str
    price: Money
    quantity: int
    # live catalog detail for display; None once the product is deleted
    product: Optional[ProductBrief] = None


class PricingRead(CamelModel):
    subtotal: Money
    tax: Money
    shipping: Money
    discount: Money
    total: Money


class PaymentMethodRead(CamelModel):
    type: PaymentType
    details: dict = Field(default_factory=dict)


class TrackingRead(CamelModel):
    carrier: str = ""
    tracking_number: str = ""
    tracking_url: str = ""


class OrderReadDTO(CamelModel):
    id: UUID
    order_number: str
    user: Optional[int] = None
    status: OrderStatus
    items: list[OrderItemRead]
    shipping_address: dict
    billing_address: dict
    payment_method: PaymentMethodRead
    pricing: PricingRead
    tracking: TrackingRead
    notes: str = ""
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: str = ""
    created_at: datetime
    updated_at: datetime


class PaginationRead(CamelModel):
    current_page: int
    total_pages: int
    total_orders: int
