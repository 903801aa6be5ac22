"""
Storefront order & inventory service – FastAPI entry point.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from storefront.config import get_settings
from storefront.deps import get_worker
from storefront.exceptions import (
    BackingStoreUnavailableError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from storefront.routers import admin, carts, maintenance, orders, products
from storefront.schemas import ErrorResponse

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s – %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront Orders",
    version="1.0.0",
    description="Order placement, stock reservation and cached storefront state.",
)

# ── Middleware ────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Exception handlers ────────────────────────────────────────────────────────


def _error(status_code: int, **fields: Any) -> JSONResponse:
    body = ErrorResponse(**fields).model_dump(mode="json", by_alias=True, exclude_none=True)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(RequestValidationError)
async def _request_invalid(request: Request, exc: RequestValidationError):
    details: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        details[".".join(loc) or "body"] = err.get("msg", "invalid")
    return _error(400, error="Invalid request", details=details)


@app.exception_handler(ValidationError)
async def _invalid(request: Request, exc: ValidationError):
    return _error(400, error=str(exc), details=exc.errors)


@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return _error(404, error=str(exc))


@app.exception_handler(InsufficientStockError)
async def _insufficient_stock(request: Request, exc: InsufficientStockError):
    return _error(409, error=str(exc), items=exc.items, order_id=exc.order_id)


@app.exception_handler(InvalidTransitionError)
async def _invalid_transition(request: Request, exc: InvalidTransitionError):
    return _error(409, error=str(exc))


@app.exception_handler(PartialFailureError)
async def _partial_failure(request: Request, exc: PartialFailureError):
    return _error(500, error=str(exc), order_id=exc.order_id)


@app.exception_handler(BackingStoreUnavailableError)
async def _store_unavailable(request: Request, exc: BackingStoreUnavailableError):
    return _error(503, error=str(exc))


@app.exception_handler(SQLAlchemyError)
async def _db_error(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return _error(503, error="Backing store unavailable")


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, error="Unexpected error")

# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(orders.router)
app.include_router(products.router)
app.include_router(maintenance.router)
app.include_router(carts.router)
app.include_router(admin.router)


# ── Startup / shutdown ────────────────────────────────────────────────────────

@app.on_event("startup")
async def _startup() -> None:
    logger.info("Storefront service ready.")


@app.on_event("shutdown")
async def _shutdown() -> None:
    worker = get_worker()
    logger.info("Draining background persist queue …")
    try:
        await worker.join(timeout=30)
    except asyncio.TimeoutError:
        logger.warning("Persist queue did not drain within 30 s")
    await worker.stop()
