"""
Order endpoints.

POST   /orders                     place an order
GET    /orders                     list (cached) or search
GET    /orders/analytics
GET    /orders/{order_id}
DELETE /orders/{order_id}
PUT    /orders                     single status change
PATCH  /orders                     bulk status change
PUT    /orders/{order_id}/payment
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.deps import get_order_pipeline
from storefront.models import OrderStatus
from storefront.schemas import (
    BulkUpdateStatusRequest,
    CreateOrderRequest,
    OrderAnalytics,
    OrderListResponse,
    OrderResponse,
    PaymentStatusRequest,
    UpdatedResponse,
    UpdateStatusRequest,
)
from storefront.services.orders import OrderPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> OrderResponse:
    order = await pipeline.create_order(
        db, body.customer, body.items, body.shipping_method, body.notes
    )
    return OrderResponse(order=order)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    search: Optional[str] = None,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> OrderListResponse:
    if search or status_filter:
        orders = await pipeline.search_orders(
            db, search_term=search, status=status_filter, limit=limit, offset=offset
        )
    else:
        orders = await pipeline.get_orders(db, limit=limit, offset=offset)
    return OrderListResponse(orders=orders, count=len(orders))


@router.get("/analytics", response_model=OrderAnalytics)
async def analytics(
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> OrderAnalytics:
    return await pipeline.order_analytics(db)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> OrderResponse:
    return OrderResponse(order=await pipeline.get_order(db, order_id))


@router.delete("/{order_id}", response_model=UpdatedResponse)
async def delete_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> UpdatedResponse:
    await pipeline.delete_order(db, order_id)
    return UpdatedResponse(updated=1)


@router.put("", response_model=UpdatedResponse)
async def update_status(
    body: UpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> UpdatedResponse:
    await pipeline.update_order_status(db, body.order_id, body.status)
    return UpdatedResponse(updated=1)


@router.patch("", response_model=UpdatedResponse)
async def bulk_update_status(
    body: BulkUpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> UpdatedResponse:
    updated = await pipeline.bulk_update_order_status(db, body.order_ids, body.status)
    return UpdatedResponse(updated=updated)


@router.put("/{order_id}/payment", response_model=OrderResponse)
async def update_payment(
    order_id: str,
    body: PaymentStatusRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: OrderPipeline = Depends(get_order_pipeline),
) -> OrderResponse:
    order = await pipeline.update_payment_status(db, order_id, body.payment_status)
    return OrderResponse(order=order)
