from decimal import Decimal
from typing import Optional

from pydantic import Field

from apps.orders.schemas import CamelModel


class StkPushDTO(CamelModel):
    """Body of ``POST /mpesa/stkpush``.

    ``orderNumber`` is optional; when given, the returned
    ``CheckoutRequestID`` is stored on that (pending, caller-owned) order.
    """

    amount: Decimal = Field(gt=0)
    phone: str = Field(min_length=1, max_length=32)
    account_reference: str = Field(default="ORDER", max_length=12)
    description: str = Field(default="Payment", max_length=50)
    order_number: Optional[str] = Field(default=None, max_length=40)
