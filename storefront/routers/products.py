"""
Stock and product endpoints.

POST /check-stock                 pre-flight validation (never cached)
GET  /products/{product_id}       product page view (cached)
POST /products/{product_id}/restock
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.deps import get_catalog, get_validator
from storefront.exceptions import ValidationError
from storefront.schemas import (
    CheckStockRequest,
    ProductOut,
    RestockRequest,
    StockMapResponse,
    StockValidationResult,
)
from storefront.services import ledger
from storefront.services.catalog import ProductCatalog
from storefront.services.validator import StockValidator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stock"])


@router.post("/check-stock", response_model=StockValidationResult)
async def check_stock(
    body: CheckStockRequest,
    db: AsyncSession = Depends(get_db),
    validator: StockValidator = Depends(get_validator),
) -> StockValidationResult:
    return await validator.validate(db, body.items)


@router.get("/products/{product_id}", response_model=ProductOut)
async def get_product(
    product_id: str,
    db: AsyncSession = Depends(get_db),
    catalog: ProductCatalog = Depends(get_catalog),
) -> ProductOut:
    return ProductOut.model_validate(await catalog.get_product(db, product_id))


@router.post("/products/{product_id}/restock", response_model=StockMapResponse)
async def restock(
    product_id: str,
    body: RestockRequest,
    db: AsyncSession = Depends(get_db),
    catalog: ProductCatalog = Depends(get_catalog),
) -> StockMapResponse:
    try:
        stock = await ledger.increment_stock(
            db, product_id, body.size, body.color, body.quantity, reason="restock"
        )
    except ValueError as exc:
        raise ValidationError({"quantity": str(exc)})
    await db.commit()
    catalog.invalidate([product_id])
    return StockMapResponse(product_id=product_id, stock=stock)
