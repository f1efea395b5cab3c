"""Hand stored payment callbacks to reconciliation.

``PAYMENT_CALLBACK_DISPATCH`` selects how:

- ``inline``: process right away in the calling thread (tests, local dev).
- ``thread``: after the storing transaction commits, submit to a small
  per-process thread pool, so the HTTP acknowledgment never waits on
  reconciliation.
- ``deferred``: do nothing here; ``manage.py process_payment_callbacks``
  drains the table.

Whatever the mode, rows left in ``received`` or ``failed`` are picked up by
the management command, so a crashed worker loses nothing.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from django.conf import settings
from django.db import close_old_connections, connections, transaction

from .reconciliation import process_callback

logger = logging.getLogger("store.payments")

_executor = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=getattr(settings, "PAYMENT_CALLBACK_WORKERS", 2),
                thread_name_prefix="mpesa-callback",
            )
        return _executor


def _run_in_worker(callback_id: int) -> None:
    close_old_connections()
    try:
        process_callback(callback_id)
    finally:
        connections.close_all()


def dispatch_callback(callback_id: int) -> None:
    mode = getattr(settings, "PAYMENT_CALLBACK_DISPATCH", "thread")
    if mode == "inline":
        process_callback(callback_id)
    elif mode == "thread":
        transaction.on_commit(lambda: _get_executor().submit(_run_in_worker, callback_id))
    elif mode != "deferred":
        logger.error("unknown PAYMENT_CALLBACK_DISPATCH, leaving callback queued", extra={"mode": mode, "callback_id": callback_id})
