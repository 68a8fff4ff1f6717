"""Rewards service API built with FastAPI.

This module exposes endpoints to check service health, open and read a
buyer's reward account, and credit or debit its points and wallet balance.
Validation is performed with Pydantic models, while persistence is delegated
to the SQLAlchemy-backed repository in ``repo.RewardsRepo``.

Run with ``uvicorn services.rewards.main:app --port 9002``.
"""

import logging
import time
import uuid
from typing import Annotated, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from .repo import AccountNotFound, IdempotencyConflict, InsufficientBalance, RewardsRepo, engine, init_db

app = FastAPI(title="Rewards Service")

logger = logging.getLogger("rewards")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class AccountIn(BaseModel):
    """Opening (or overwriting) values of an account."""

    model_config = ConfigDict(extra="forbid")

    points: int = Field(default=0, ge=0)
    balance_cents: int = Field(default=0, ge=0)


class EntryRequest(BaseModel):
    """Request body for credit and debit.

    Attributes:
        points: Points to add or remove.
        balance_cents: Wallet amount in minor units to add or remove.
    """

    model_config = ConfigDict(extra="forbid")

    points: int = Field(default=0, ge=0)
    balance_cents: int = Field(default=0, ge=0)


class AccountOut(BaseModel):
    buyer_id: str
    points: int
    balance_cents: int


class EntryResponse(AccountOut):
    replayed: bool = False


@app.get("/health")
def health():
    """Liveness/health probe endpoint.

    Returns:
        dict: A small JSON payload indicating service health.
    """
    return {"ok": True}


@app.get("/accounts/{buyer_id}", response_model=AccountOut)
def get_account(buyer_id: str):
    acct = RewardsRepo().get(buyer_id)
    if acct is None:
        raise HTTPException(status_code=404, detail="ACCOUNT_NOT_FOUND")
    return AccountOut(buyer_id=acct.buyer_id, points=acct.points, balance_cents=acct.balance_cents)


@app.put("/accounts/{buyer_id}", response_model=AccountOut)
def put_account(buyer_id: str, body: AccountIn):
    acct = RewardsRepo().open(buyer_id, points=body.points, balance_cents=body.balance_cents)
    return AccountOut(buyer_id=acct.buyer_id, points=acct.points, balance_cents=acct.balance_cents)


def _entry(kind: str, buyer_id: str, req: EntryRequest, idempotency_key: Optional[str]) -> EntryResponse:
    try:
        acct, replayed = RewardsRepo().apply(
            kind, buyer_id, req.points, req.balance_cents, reference=idempotency_key or None
        )
    except AccountNotFound:
        raise HTTPException(status_code=404, detail="ACCOUNT_NOT_FOUND")
    except InsufficientBalance:
        raise HTTPException(status_code=422, detail="INSUFFICIENT_BALANCE")
    except IdempotencyConflict:
        raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
    if replayed:
        logger.info("entry replayed", extra={"reference": idempotency_key, "kind": kind})
    return EntryResponse(
        buyer_id=acct.buyer_id, points=acct.points, balance_cents=acct.balance_cents, replayed=replayed
    )


@app.post("/accounts/{buyer_id}/credit", response_model=EntryResponse)
def credit(
    buyer_id: str,
    req: EntryRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Add points and/or balance to an account.

    With an ``Idempotency-Key`` header the credit is applied at most once:
    a retry with the same key and body returns the current account with
    ``replayed`` set, while reusing the key with a different body is
    answered with HTTP 409.
    """
    return _entry("credit", buyer_id, req, idempotency_key)


@app.post("/accounts/{buyer_id}/debit", response_model=EntryResponse)
def debit(
    buyer_id: str,
    req: EntryRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Remove points and/or balance from an account.

    Raises:
        HTTPException: 404 for an unknown account, 422
            ``INSUFFICIENT_BALANCE`` when either amount exceeds what the
            account holds, 409 on an idempotency key conflict.
    """
    return _entry("debit", buyer_id, req, idempotency_key)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
