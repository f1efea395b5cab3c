"""Idempotency utilities for order creation.

A client may send ``Idempotency-Key`` when creating an order. The first
request with a key creates a record and, once processed, stores the
response; retries with the same payload get that stored response back
without placing a second order. Keys are scoped per user.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


def _hash(payload) -> str:
    """Stable SHA-256 of a JSON payload (sorted keys, compact separators)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def scoped_key(user_id, key: str) -> str:
    return f"{user_id}:{key}"


@transaction.atomic
def get_or_create_idempotent(key: str, payload):
    """Get-or-create an idempotency record for ``key`` and ``payload``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``. ``existing`` is
        False when the record was created by this call; the caller must
        then ``finalize`` it.

    Raises:
        ValueError: If the key exists with a different payload hash.
    """
    h = _hash(payload)

    try:
        # savepoint: an IntegrityError only rolls back this block
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Store the final response so retries can short-circuit."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])


def discard(rec: IdempotencyKey):
    """Forget a key whose request failed unexpectedly so it can be retried."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()
