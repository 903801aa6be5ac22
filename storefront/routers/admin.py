"""
Admin / operational endpoints.

GET /admin/health
GET /admin/stock-movements?productId=&limit=
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.deps import get_worker
from storefront.schemas import HealthResponse, StockMovementRow
from storefront.services import ledger
from storefront.services.background import BackgroundWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse)
async def health(
    db: AsyncSession = Depends(get_db),
    worker: BackgroundWorker = Depends(get_worker),
) -> HealthResponse:
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as exc:
        logger.error("DB health check failed: %s", exc)
        db_status = "error"
    return HealthResponse(status="ok", db=db_status, background=worker.stats())


@router.get("/stock-movements", response_model=List[StockMovementRow])
async def stock_movements(
    product_id: Optional[str] = Query(None, alias="productId"),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> List[StockMovementRow]:
    rows = await ledger.list_movements(db, product_id=product_id, limit=limit)
    return [StockMovementRow.model_validate(r) for r in rows]
