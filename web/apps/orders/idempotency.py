"""Idempotency-Key handling for order endpoints.

A client may send ``Idempotency-Key`` on order creation and on payment
confirmation. The first request claims the key and, once processed, stores
its response; a retry with the same payload replays that response without
touching the lifecycle again. Keys are namespaced by endpoint scope.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IN_PROGRESS = 0


def _hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON-serializable payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict, scope: str = "create"):
    """Claim ``key`` within ``scope`` or return the record that already holds it.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``. ``existing`` is
        False when this call claimed the key; the caller must then
        ``finalize`` it.

    Raises:
        ValueError: ``IDEMPOTENCY_CONFLICT`` if the key was used with another
            payload, ``IDEMPOTENCY_IN_PROGRESS`` if the first request holding
            the key has not finished yet.
    """
    scoped = f"{scope}:{key}"
    h = _hash(payload)

    try:
        # Savepoint: an IntegrityError only rolls back this block.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=scoped, request_hash=h, response_status=IN_PROGRESS, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=scoped)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        if rec.response_status == IN_PROGRESS:
            raise ValueError("IDEMPOTENCY_IN_PROGRESS")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None) -> None:
    """Store the response for a claimed key so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey) -> None:
    """Drop a claim whose request failed in a retriable way (upstream down,
    partially applied transition) so the client can retry with the same key."""
    rec.delete()
