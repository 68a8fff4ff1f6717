"""Inventory service API built with FastAPI.

This module exposes endpoints to check service health, read and set a
product's stock, reserve stock for a batch of order lines and return stock
for an approved return. Validation is performed with Pydantic models, while
persistence and locking are delegated to ``repo.InventoryRepo``.

Run with ``uvicorn services.inventory.main:app --port 9001``.
"""

import logging
import time
import uuid
from typing import Annotated, List

from fastapi import FastAPI, HTTPException, Path, Request
from pydantic import BaseModel, ConfigDict, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from .repo import InsufficientStock, InventoryRepo, UnknownProduct, engine, init_db

app = FastAPI(title="Inventory Service")

PRODUCT_ID_PATTERN = r"^[A-Za-z0-9_-]{3,64}$"
ProductId = constr(pattern=PRODUCT_ID_PATTERN)

logger = logging.getLogger("inventory")
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


class Line(BaseModel):
    """A product and a positive quantity."""

    model_config = ConfigDict(extra="forbid")

    product_id: ProductId
    quantity: int = Field(gt=0)


class LinesRequest(BaseModel):
    """Request body for ``/reserve`` and ``/restock``."""

    model_config = ConfigDict(extra="forbid")

    items: List[Line] = Field(min_length=1)


class StockIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stock: int
    sold: int | None = Field(default=None, ge=0)


class StockOut(BaseModel):
    product_id: str
    stock: int
    sold: int


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/stock/{product_id}", response_model=StockOut)
def get_stock(product_id: str):
    obj = InventoryRepo().get(product_id)
    if obj is None:
        raise HTTPException(status_code=404, detail="PRODUCT_NOT_FOUND")
    return StockOut(product_id=obj.product_id, stock=obj.stock, sold=obj.sold)


@app.put("/stock/{product_id}", response_model=StockOut)
def put_stock(product_id: Annotated[str, Path(pattern=PRODUCT_ID_PATTERN)], body: StockIn):
    """Create or overwrite a product's inventory record (catalog admin)."""
    try:
        obj = InventoryRepo().upsert(product_id, body.stock, body.sold)
    except InsufficientStock:
        raise HTTPException(status_code=422, detail={"detail": "NEGATIVE_STOCK", "product_id": product_id})
    return StockOut(product_id=obj.product_id, stock=obj.stock, sold=obj.sold)


@app.post("/reserve")
def reserve(req: LinesRequest):
    """Reserve stock for a batch of order lines.

    Returns:
        dict: ``{"reserved": True}`` when every line was reserved.

    Raises:
        HTTPException: 404 ``PRODUCT_NOT_FOUND`` for an unknown product,
            422 ``INSUFFICIENT_STOCK`` (with ``product_id``) when a line does
            not fit. Nothing is reserved in either case.
    """
    items = [(it.product_id, it.quantity) for it in req.items]
    try:
        InventoryRepo().reserve(items)
    except UnknownProduct as e:
        raise HTTPException(status_code=404, detail={"detail": "PRODUCT_NOT_FOUND", "product_id": e.product_id})
    except InsufficientStock as e:
        raise HTTPException(
            status_code=422,
            detail={"reserved": False, "detail": "INSUFFICIENT_STOCK", "product_id": e.product_id},
        )
    return {"reserved": True}


@app.post("/restock")
def restock(req: LinesRequest):
    items = [(it.product_id, it.quantity) for it in req.items]
    try:
        InventoryRepo().restock(items)
    except UnknownProduct as e:
        raise HTTPException(status_code=404, detail={"detail": "PRODUCT_NOT_FOUND", "product_id": e.product_id})
    return {"restocked": True}


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
