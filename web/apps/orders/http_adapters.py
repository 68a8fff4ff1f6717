"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements the ledger ports over HTTP using ``httpx``:
``HttpInventoryClient`` talks to the inventory service and
``HttpRewardsClient`` to the rewards service. Both share one request helper
that adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
  the gateway middleware.
- A circuit breaker per downstream service to avoid hammering unhealthy
  dependencies, with HALF_OPEN probing after a timeout.
- A retry policy with exponential backoff for transport errors and 5xx.

Business outcomes (unknown product or account, insufficient stock or
balance) come back as 404/422 and are raised as the matching domain errors;
they never count as circuit failures. Reward calls forward the lifecycle's
reference as ``Idempotency-Key`` so a retried credit is applied once.
"""

import logging
import threading
import time
from typing import Iterable, List, Optional
from urllib.parse import quote

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import InventoryPort, OrderItem, RewardsPort
from .errors import IdempotencyConflictError, InsufficientBalanceError, InsufficientStockError, NotFoundError

logger = logging.getLogger("orders.http")


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; only one probe may be in
      flight; a failed probe opens the circuit again.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._opened_at = 0.0
            self._probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Admit a call or refuse it.

        Raises:
            RuntimeError: ``CIRCUIT_OPEN`` while open, or
                ``CIRCUIT_HALF_OPEN_BUSY`` while a probe is already running.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._probe_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._probe_in_flight = True
            return st

    def on_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._probe_in_flight = False

    def on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                if self._state != "OPEN":
                    logger.warning("circuit opened", extra={"service": self.name, "failures": self._failures})
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._probe_in_flight = False

    def on_finish(self) -> None:
        with self._lock:
            if self._state == "HALF_OPEN":
                self._probe_in_flight = False


def _breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
        getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
    )


# Per-service instances
_inventory_cb = _breaker("inventory")
_rewards_cb = _breaker("rewards")


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Base headers: ``X-Request-ID`` from the current request plus extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy() -> tuple[int, float, float]:
    """Return (max_retries, backoff_base_seconds, max_sleep_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


def _post(
    breaker: CircuitBreaker,
    url: str,
    payload: dict,
    timeout: float,
    extra_headers: Optional[dict] = None,
    business: Iterable[int] = (),
) -> httpx.Response:
    """POST ``payload`` to ``url`` under ``breaker`` with retries.

    Returns the first response that is 2xx or whose status is listed in
    ``business``. A ``max_retries`` of N means at most N+1 attempts.

    Raises:
        RuntimeError: If the circuit refuses the call.
        httpx.RequestError: For transport errors after retries.
        httpx.HTTPStatusError: For 5xx after retries and other non-business
            4xx responses.
    """
    max_retries, backoff, cap = _retry_policy()
    business = set(business)
    tries = 0

    state = breaker.before_call()
    headers = _request_headers({**(extra_headers or {}), "X-Circuit-State": state, "X-Retry-Count": "0"})

    try:
        with httpx.Client(timeout=timeout) as client:
            while True:
                resp = None
                exc = None
                try:
                    resp = client.post(url, json=payload, headers=headers)
                    if 200 <= resp.status_code < 300 or resp.status_code in business:
                        breaker.on_success()
                        return resp
                    if not _should_retry(resp, None):
                        # Caller error (4xx): the dependency is healthy.
                        breaker.on_success()
                        resp.raise_for_status()
                except httpx.RequestError as e:
                    exc = e

                tries += 1
                headers["X-Retry-Count"] = str(tries)

                if tries > max_retries:
                    breaker.on_failure()
                    logger.warning(
                        "upstream call failed",
                        extra={"service": breaker.name, "url": url, "attempts": tries},
                    )
                    if exc is not None:
                        raise exc
                    resp.raise_for_status()
                    raise httpx.HTTPStatusError(f"Server error {resp.status_code}", request=None, response=resp)

                time.sleep(min(backoff * (2 ** (tries - 1)), cap))
    finally:
        breaker.on_finish()


def _error_detail(resp: httpx.Response) -> dict:
    """Normalize a FastAPI error body to ``{"detail": CODE, ...}``."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        return detail
    if isinstance(detail, str):
        return {"detail": detail}
    return {}


def _lines(items: List[OrderItem]) -> list[dict]:
    return [{"product_id": it.product_id, "quantity": it.quantity} for it in items]


# ---------------- Inventory Adapter ---------------- #

class HttpInventoryClient(InventoryPort):
    """HTTP client for the inventory service."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.INVENTORY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _send(self, path: str, items: List[OrderItem]) -> None:
        resp = _post(
            _inventory_cb,
            f"{self.base_url}{path}",
            {"items": _lines(items)},
            self.timeout,
            business=(404, 422),
        )
        if resp.status_code < 300:
            return
        detail = _error_detail(resp)
        code = detail.get("detail")
        if resp.status_code == 404:
            raise NotFoundError(code or "PRODUCT_NOT_FOUND")
        if code == "INSUFFICIENT_STOCK":
            raise InsufficientStockError(detail.get("product_id"))
        resp.raise_for_status()

    def reserve(self, items: List[OrderItem]) -> None:
        """Reserve stock for all items (200), or raise.

        Raises:
            InsufficientStockError: On 422 ``INSUFFICIENT_STOCK``.
            NotFoundError: On 404 for an unknown product.
        """
        self._send("/reserve", items)

    def restock(self, items: List[OrderItem]) -> None:
        self._send("/restock", items)


# ---------------- Rewards Adapter ---------------- #

class HttpRewardsClient(RewardsPort):
    """HTTP client for the rewards (points and wallet) service."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.REWARDS_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _entry(self, kind: str, buyer_id: str, points: int, balance_cents: int, reference: str | None) -> None:
        extras = {"Idempotency-Key": reference} if reference else None
        resp = _post(
            _rewards_cb,
            f"{self.base_url}/accounts/{quote(buyer_id, safe='')}/{kind}",
            {"points": points, "balance_cents": balance_cents},
            self.timeout,
            extra_headers=extras,
            business=(404, 409, 422),
        )
        if resp.status_code < 300:
            return
        code = _error_detail(resp).get("detail")
        if resp.status_code == 404:
            raise NotFoundError(code or "ACCOUNT_NOT_FOUND")
        if resp.status_code == 409:
            raise IdempotencyConflictError()
        if code == "INSUFFICIENT_BALANCE":
            raise InsufficientBalanceError()
        resp.raise_for_status()

    def credit(self, buyer_id: str, *, points: int = 0, balance_cents: int = 0, reference: str | None = None) -> None:
        self._entry("credit", buyer_id, points, balance_cents, reference)

    def debit(self, buyer_id: str, *, points: int = 0, balance_cents: int = 0, reference: str | None = None) -> None:
        """Debit points and/or balance.

        Raises:
            InsufficientBalanceError: On 422 ``INSUFFICIENT_BALANCE``.
            NotFoundError: On 404 for an unknown account.
            IdempotencyConflictError: On 409 when ``reference`` was used
                for another entry.
        """
        self._entry("debit", buyer_id, points, balance_cents, reference)
