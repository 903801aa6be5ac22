"""
Pydantic schemas for request/response validation.

Wire format is camelCase; Python attributes stay snake_case.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from storefront.models import OrderStatus, PaymentStatus, ShippingMethod

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ── Line items + stock validation ────────────────────────────────────────────

class LineItem(CamelModel):
    product_id: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class ItemCheck(CamelModel):
    line_item: LineItem
    requested: int
    available: int
    ok: bool
    found: bool = True

    def shortfall(self) -> Dict[str, Any]:
        return {
            "product_id": self.line_item.product_id,
            "size": self.line_item.size,
            "color": self.line_item.color,
            "requested": self.requested,
            "available": self.available,
        }


class StockValidationResult(CamelModel):
    overall_ok: bool
    items: List[ItemCheck]

    @property
    def shortfalls(self) -> List[ItemCheck]:
        return [i for i in self.items if not i.ok]


class CheckStockRequest(CamelModel):
    items: List[LineItem] = Field(..., min_length=1)


# ── Orders ───────────────────────────────────────────────────────────────────

class CustomerInfo(CamelModel):
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    wilaya_id: int


class CreateOrderRequest(CamelModel):
    customer: CustomerInfo
    items: List[LineItem] = Field(..., min_length=1)
    shipping_method: ShippingMethod
    notes: Optional[str] = None


class OrderItemOut(CamelModel):
    product_id: str
    product_name: str
    size: str
    color: str
    quantity: int
    unit_price: Money


class OrderOut(CamelModel):
    id: str
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    customer_city: Optional[str] = None
    wilaya_id: int
    wilaya_name: str
    shipping_method: ShippingMethod
    subtotal: Money
    shipping_cost: Money
    total: Money
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut] = []


class OrderResponse(CamelModel):
    success: bool = True
    order: OrderOut


class OrderListResponse(CamelModel):
    success: bool = True
    orders: List[OrderOut]
    count: int


class UpdateStatusRequest(CamelModel):
    order_id: str
    status: OrderStatus


class BulkUpdateStatusRequest(CamelModel):
    order_ids: List[str] = Field(..., min_length=1)
    status: OrderStatus


class PaymentStatusRequest(CamelModel):
    payment_status: PaymentStatus


class UpdatedResponse(CamelModel):
    success: bool = True
    updated: int


class OrderAnalytics(CamelModel):
    total_orders: int
    by_status: Dict[str, int]
    delivered_revenue: Money
    open_revenue: Money


class Shortfall(CamelModel):
    product_id: str
    size: str
    color: str
    requested: int
    available: int


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    details: Optional[Dict[str, str]] = None
    items: Optional[List[Shortfall]] = None
    order_id: Optional[str] = None


# ── Products / stock ─────────────────────────────────────────────────────────

class ProductOut(CamelModel):
    id: str
    name: str
    price: Money
    sizes: List[str]
    colors: List[str]
    stock: Dict[str, Dict[str, int]]


class RestockRequest(CamelModel):
    size: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class StockMapResponse(CamelModel):
    success: bool = True
    product_id: str
    stock: Dict[str, Dict[str, int]]


class StockMovementRow(CamelModel):
    product_id: str
    size: str
    color: str
    delta: int
    quantity_after: int
    reason: str
    order_id: Optional[str] = None
    created_at: datetime


# ── Maintenance ──────────────────────────────────────────────────────────────

class MaintenanceOut(CamelModel):
    is_maintenance: bool = False
    drop_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MaintenanceRequest(CamelModel):
    is_maintenance: bool
    drop_date: Optional[datetime] = None


# ── Carts ────────────────────────────────────────────────────────────────────

class CartItem(CamelModel):
    id: str
    product_id: str
    name: str = ""
    price: Money = Decimal("0")
    size: str
    color: str
    quantity: int = Field(..., gt=0)


class AddCartItemRequest(CamelModel):
    product_id: str
    name: str = ""
    price: Decimal = Decimal("0")
    size: str
    color: str
    quantity: int = Field(1, gt=0)


class UpdateCartItemRequest(CamelModel):
    quantity: int = Field(..., gt=0)


class CartOut(CamelModel):
    session_id: str
    items: List[CartItem]
    total: Money
    item_count: int


# ── Ops ──────────────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    db: str = "ok"
    background: Dict[str, int] = {}
