"""Human-readable order numbers.

``ORD-<epoch millis>-<sequence>`` where the sequence is the current order
count plus one, zero padded to four digits. If the count cannot be read,
the number falls back to ``ORD-<epoch millis>-<random suffix>`` so order
creation never blocks on numbering. Numbers are a display convenience:
the UUID primary key is the real identifier, and rare collisions are
handled by the repository retrying with the random form.
"""

import logging
import secrets
import string
import time
from typing import Callable

from django.db import DatabaseError

logger = logging.getLogger("store.orders")

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


def random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def fallback_order_number(now_ms: int | None = None) -> str:
    return f"ORD-{now_ms if now_ms is not None else _now_ms()}-{random_suffix()}"


def generate_order_number(count_orders: Callable[[], int], now_ms: int | None = None) -> str:
    """Build an order number from the current order count.

    Args:
        count_orders: Callable returning how many orders exist.
        now_ms: Epoch milliseconds; defaults to the current time.
    """
    ms = now_ms if now_ms is not None else _now_ms()
    try:
        count = count_orders()
    except DatabaseError:
        logger.exception("order count failed, using random order number suffix")
        return fallback_order_number(ms)
    return f"ORD-{ms}-{count + 1:04d}"
