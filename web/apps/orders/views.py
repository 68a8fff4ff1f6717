"""HTTP views for the orders app.

Views are kept intentionally small: they validate the request body with the
event's pydantic schema, delegate to ``OrderLifecycle`` and render the order
with ``OrderReadDTO``. Domain errors are mapped to HTTP statuses in one
place (``error_response``); transport failures towards the ledger services
become 503.

The lifecycle comes from ``providers.get_order_lifecycle()``, which wires
HTTP ledger clients or the in-process ledgers depending on settings.

Idempotency: order creation and payment confirmation honour an
``Idempotency-Key`` header. The first request is processed and its response
stored; a retry with the same payload replays it with
``Idempotent-Replay: true``; the same key with a different payload is a 409.
"""

import logging

import httpx
from django.core.paginator import Paginator
from pydantic import ValidationError as SchemaError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .errors import (
    IdempotencyConflictError,
    InsufficientBalanceError,
    InsufficientStockError,
    InvalidTransitionError,
    NegativeResultError,
    NotFoundError,
    OrderError,
    PartialFailureError,
    ValidationError,
    WindowExpiredError,
)
from .idempotency import finalize, get_or_create_idempotent, release
from .schemas import (
    CreateOrderDTO,
    OrderReadDTO,
    PaymentConfirmationDTO,
    ReturnDecisionDTO,
    ReturnRequestDTO,
)

logger = logging.getLogger("orders.api")

# Most specific first.
ERROR_STATUS = (
    (PartialFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (WindowExpiredError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (IdempotencyConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientStockError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientBalanceError, status.HTTP_402_PAYMENT_REQUIRED),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NegativeResultError, status.HTTP_400_BAD_REQUEST),
)

RETRIABLE = {status.HTTP_500_INTERNAL_SERVER_ERROR, status.HTTP_503_SERVICE_UNAVAILABLE}


def error_body(exc: OrderError) -> tuple[int, dict]:
    code = next((st for cls, st in ERROR_STATUS if isinstance(exc, cls)), status.HTTP_400_BAD_REQUEST)
    body = {"detail": str(exc)}
    if exc.order_id is not None:
        body["order_id"] = str(exc.order_id)
    if exc.state is not None:
        body["state"] = getattr(exc.state, "value", exc.state)
    if isinstance(exc, PartialFailureError):
        body["applied"] = exc.applied
    return code, body


def render(order) -> dict:
    return OrderReadDTO.from_domain(order).model_dump(mode="json")


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class _IdempotentMixin:
    """Run ``handler`` under the request's ``Idempotency-Key``, if any.

    ``handler`` returns ``(status_code, body)``. Retriable failures (5xx)
    and unhandled exceptions release the key instead of storing the failure.
    """

    def run_idempotent(self, request, scope: str, handler):
        idem_key = request.headers.get("Idempotency-Key")
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data, scope=scope)
            except ValueError as e:
                return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)
            if existing:
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        try:
            status_code, body = handler()
        except Exception:
            if rec is not None:
                release(rec)
            raise

        if rec is not None:
            if status_code in RETRIABLE:
                release(rec)
            else:
                finalize(rec, status_code, body, order_id=body.get("id") or body.get("order_id"))
        return Response(body, status=status_code)


def _call(fn, *args, success=status.HTTP_200_OK):
    """Invoke a lifecycle operation and translate its outcome to (status, body)."""
    try:
        order = fn(*args)
    except OrderError as e:
        return error_body(e)
    except (httpx.HTTPError, RuntimeError) as e:
        logger.warning("ledger unavailable", extra={"error": repr(e)})
        return status.HTTP_503_SERVICE_UNAVAILABLE, {"detail": "UPSTREAM_UNAVAILABLE"}
    return success, render(order)


class OrdersCollectionView(_IdempotentMixin, APIView):
    """List every order (admin) or create one.

    POST validates the body with ``CreateOrderDTO``, creates the order
    (reserving stock) and returns 201 with the order. Failures: 400 for schema
    or domain validation, 404 for an unknown product, 422 for insufficient
    stock, 409 for idempotency conflicts, 503 when the inventory service is
    unreachable.
    """

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        try:
            page = int(request.GET.get("page", 1))
            page_size = min(int(request.GET.get("page_size", 20)), 100)
        except ValueError:
            return Response({"detail": "INVALID_PAGE"}, status=status.HTTP_400_BAD_REQUEST)
        if page_size < 1:
            return Response({"detail": "INVALID_PAGE"}, status=status.HTTP_400_BAD_REQUEST)

        p = Paginator(providers.get_order_lifecycle().list_orders(), page_size)
        page_obj = p.get_page(page)
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [render(o) for o in page_obj.object_list],
            },
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except SchemaError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        lifecycle = providers.get_order_lifecycle()
        return self.run_idempotent(
            request,
            "create",
            lambda: _call(lifecycle.create_order, dto.to_command(), success=status.HTTP_201_CREATED),
        )


class BuyerOrdersView(APIView):
    """Orders placed by one buyer, newest first."""

    def get(self, request, buyer_id: str):
        orders = providers.get_order_lifecycle().list_orders_for_buyer(buyer_id)
        return Response([render(o) for o in orders], status=status.HTTP_200_OK)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        try:
            order = providers.get_order_lifecycle().get_order(oid)
        except NotFoundError:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(render(order), status=status.HTTP_200_OK)


class _TransitionView(APIView):
    """PUT endpoint applying one lifecycle event to an order.

    Subclasses set ``schema`` (or None for events without a body) and
    implement ``perform``.
    """

    schema = None

    def parse(self, request):
        if self.schema is None:
            return None
        return self.schema.model_validate(request.data)

    def perform(self, lifecycle, oid, dto):
        raise NotImplementedError()

    def handle(self, request, oid):
        try:
            dto = self.parse(request)
        except SchemaError as e:
            return status.HTTP_400_BAD_REQUEST, {"detail": str(e)}
        lifecycle = providers.get_order_lifecycle()
        return _call(self.perform, lifecycle, oid, dto)

    def put(self, request, oid):
        status_code, body = self.handle(request, oid)
        return Response(body, status=status_code)


class PayOrderView(_IdempotentMixin, _TransitionView):
    """Confirm payment; credits the buyer's reward points."""

    schema = PaymentConfirmationDTO

    def perform(self, lifecycle, oid, dto):
        return lifecycle.confirm_payment(oid, dto.to_receipt())

    def put(self, request, oid):
        return self.run_idempotent(request, f"pay:{oid}", lambda: self.handle(request, oid))


class ShipOrderView(_TransitionView):
    def perform(self, lifecycle, oid, dto):
        return lifecycle.confirm_shipment(oid)


class DeliverOrderView(_TransitionView):
    def perform(self, lifecycle, oid, dto):
        return lifecycle.confirm_delivery(oid)


class ReturnRequestView(_TransitionView):
    """Buyer asks to return a delivered order (within the return window)."""

    schema = ReturnRequestDTO

    def perform(self, lifecycle, oid, dto):
        return lifecycle.request_return(oid, dto.reason)


class ReturnDecisionView(_TransitionView):
    """Admin approves (refund) or rejects a pending return."""

    schema = ReturnDecisionDTO

    def perform(self, lifecycle, oid, dto):
        return lifecycle.decide_return(oid, dto.decision, dto.reject_reason)
