"""
Order pipeline: validate -> persist order -> deduct stock -> invalidate caches.

Order persistence strictly precedes stock deduction. Deduction goes straight
to the ledger (never through an optimistic cache write); if it fails part-way
the already-deducted items are put back, the order is cancelled, and the
caller gets either InsufficientStockError (lost a race, fully undone) or
PartialFailureError (needs an operator).

Status changes are persisted synchronously before the caller is answered.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import (
    BackingStoreUnavailableError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PartialFailureError,
    StorefrontError,
    ValidationError,
)
from storefront.models import Order, OrderItem, OrderStatus, PaymentStatus, Product, ShippingMethod
from storefront.schemas import CustomerInfo, LineItem, OrderAnalytics, OrderOut
from storefront.services import ledger
from storefront.services.cache import Cache
from storefront.services.catalog import ProductCatalog
from storefront.services.shipping import ShippingTable
from storefront.services.validator import StockValidator
from storefront.validation import check_checkout_fields

logger = logging.getLogger(__name__)

# Fulfillment only moves forward (skipping steps is allowed); cancel only before shipping.
ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, frozenset] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

_LIST_PREFIX = "orders:"


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def new_order_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"ORD-{stamp}-{uuid.uuid4().hex[:8].upper()}"


def _coerce(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError({field: f"Unknown value {value!r}"})


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class OrderPipeline:
    def __init__(
        self,
        validator: StockValidator,
        shipping: ShippingTable,
        order_cache: Cache,
        catalog: ProductCatalog,
    ):
        self._validator = validator
        self._shipping = shipping
        self._order_cache = order_cache
        self._catalog = catalog

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _load_order(self, session: AsyncSession, order_id: str) -> Order:
        order = (
            await session.execute(
                select(Order)
                .where(Order.id == order_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order {order_id!r} not found")
        return order

    async def _commit(self, session: AsyncSession, what: str) -> None:
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("Backing store write failed (%s): %s", what, exc)
            raise BackingStoreUnavailableError(f"Could not persist {what}") from exc

    def _invalidate_order_lists(self) -> None:
        self._order_cache.invalidate_prefix(_LIST_PREFIX)

    # ── Create ───────────────────────────────────────────────────────────────

    async def create_order(
        self,
        session: AsyncSession,
        customer: CustomerInfo,
        line_items: Sequence[LineItem],
        shipping_method: ShippingMethod,
        notes: Optional[str] = None,
    ) -> OrderOut:
        line_items = list(line_items)
        errors = check_checkout_fields(
            name=customer.name,
            phone=customer.phone,
            wilaya_id=customer.wilaya_id,
            shipping_method=shipping_method,
            address=customer.address,
            email=customer.email,
            item_count=len(line_items),
        )
        if errors:
            raise ValidationError(errors)
        shipping_method = ShippingMethod(shipping_method)
        wilaya = await self._shipping.lookup(customer.wilaya_id)

        # 1. Fresh stock validation; nothing is written on failure.
        try:
            result = await self._validator.validate(session, line_items)
        except SQLAlchemyError as exc:
            raise BackingStoreUnavailableError("Stock lookup failed") from exc
        if not result.overall_ok:
            raise InsufficientStockError([c.shortfall() for c in result.shortfalls])

        # 2. Totals from catalog prices and the wilaya tariff.
        products: Dict[str, Product] = {}
        for item in line_items:
            if item.product_id not in products:
                product = await session.get(Product, item.product_id)
                if product is None:
                    raise NotFoundError(f"Product {item.product_id!r} not found")
                products[item.product_id] = product
        subtotal = sum(
            (products[i.product_id].price * i.quantity for i in line_items), Decimal("0")
        )
        shipping_cost = wilaya.cost_for(shipping_method)

        # 3. Persist the order record.
        order_id = new_order_id()
        order = Order(
            id=order_id,
            customer_name=customer.name.strip(),
            customer_phone=customer.phone.strip(),
            customer_email=customer.email,
            customer_address=customer.address,
            customer_city=customer.city,
            wilaya_id=wilaya.id,
            wilaya_name=wilaya.name,
            shipping_method=shipping_method,
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            total=subtotal + shipping_cost,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            notes=notes,
            items=[
                OrderItem(
                    product_id=i.product_id,
                    product_name=products[i.product_id].name,
                    size=i.size,
                    color=i.color,
                    quantity=i.quantity,
                    unit_price=products[i.product_id].price,
                )
                for i in line_items
            ],
        )
        session.add(order)
        await self._commit(session, f"order {order_id}")
        snapshot = OrderOut.model_validate(order)
        logger.info(
            "Order created: id=%s items=%d total=%s wilaya=%s method=%s",
            order_id, len(line_items), snapshot.total, wilaya.name, shipping_method.value,
        )

        # 4. Deduct stock item by item, durably.
        applied: List[LineItem] = []
        for item in line_items:
            try:
                await ledger.decrement_stock(
                    session, item.product_id, item.size, item.color, item.quantity,
                    order_id=order_id,
                )
                await session.commit()
            except (StorefrontError, SQLAlchemyError) as exc:
                await session.rollback()
                await self._compensate(session, order_id, applied, line_items, exc)
            applied.append(item)

        # 5. Invalidate anything that may now show the old stock / list.
        self._catalog.invalidate({i.product_id for i in line_items})
        self._invalidate_order_lists()
        return snapshot

    async def _compensate(
        self,
        session: AsyncSession,
        order_id: str,
        applied: List[LineItem],
        line_items: List[LineItem],
        cause: BaseException,
    ) -> None:
        """Undo applied deductions, cancel the order, then raise."""
        clean = True
        for item in reversed(applied):
            try:
                await ledger.increment_stock(
                    session, item.product_id, item.size, item.color, item.quantity,
                    reason="compensation", order_id=order_id,
                )
                await session.commit()
            except (StorefrontError, SQLAlchemyError, ValueError) as exc:
                await session.rollback()
                clean = False
                logger.error(
                    "Compensation failed for order=%s product=%s size=%s color=%s qty=%d: %s",
                    order_id, item.product_id, item.size, item.color, item.quantity, exc,
                )

        try:
            order = await self._load_order(session, order_id)
            order.status = OrderStatus.CANCELLED
            order.updated_at = datetime.now(timezone.utc)
            note = f"Cancelled automatically: stock deduction failed ({cause})"
            order.notes = f"{order.notes}\n{note}" if order.notes else note
            await session.commit()
        except (StorefrontError, SQLAlchemyError) as exc:
            await session.rollback()
            clean = False
            logger.error("Could not cancel order=%s after failed deduction: %s", order_id, exc)

        self._catalog.invalidate({i.product_id for i in line_items})
        self._invalidate_order_lists()

        if clean and isinstance(cause, InsufficientStockError):
            logger.warning(
                "Order %s lost a stock race and was cancelled; %d deduction(s) reverted",
                order_id, len(applied),
            )
            raise InsufficientStockError(cause.items, order_id=order_id) from cause

        logger.error(
            "PARTIAL FAILURE order=%s applied=%s compensated=%s cause=%r",
            order_id,
            [(i.product_id, i.size, i.color, i.quantity) for i in applied],
            clean,
            cause,
        )
        raise PartialFailureError(
            order_id, f"Order {order_id} could not be completed: {cause}"
        ) from cause

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_order(self, session: AsyncSession, order_id: str) -> OrderOut:
        try:
            order = await self._load_order(session, order_id)
        except SQLAlchemyError as exc:
            raise BackingStoreUnavailableError("Order lookup failed") from exc
        return OrderOut.model_validate(order)

    async def search_orders(
        self,
        session: AsyncSession,
        search_term: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[OrderOut]:
        stmt = select(Order)
        if search_term and search_term.strip():
            pattern = f"%{_escape_like(search_term.strip())}%"
            stmt = stmt.where(
                or_(
                    Order.customer_name.ilike(pattern, escape="\\"),
                    Order.customer_phone.ilike(pattern, escape="\\"),
                    Order.id.ilike(pattern, escape="\\"),
                )
            )
        if status:
            stmt = stmt.where(Order.status == _coerce(OrderStatus, status, "status"))
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.id.desc())
            .limit(max(0, limit))
            .offset(max(0, offset))
        )
        try:
            rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise BackingStoreUnavailableError("Order search failed") from exc
        return [OrderOut.model_validate(o) for o in rows]

    async def get_orders(
        self, session: AsyncSession, limit: int = 50, offset: int = 0
    ) -> List[OrderOut]:
        """Newest-first page of orders; served from the short-TTL cache."""
        return await self._order_cache.read(
            f"{_LIST_PREFIX}{limit}:{offset}",
            lambda: self.search_orders(session, limit=limit, offset=offset),
        )

    async def order_analytics(self, session: AsyncSession) -> OrderAnalytics:
        rows = (
            await session.execute(
                select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
                .group_by(Order.status)
            )
        ).all()
        by_status = {s.value: 0 for s in OrderStatus}
        delivered = Decimal("0")
        open_revenue = Decimal("0")
        for status, count, total in rows:
            status = OrderStatus(status)
            by_status[status.value] = count
            if status == OrderStatus.DELIVERED:
                delivered += Decimal(str(total))
            elif status != OrderStatus.CANCELLED:
                open_revenue += Decimal(str(total))
        return OrderAnalytics(
            total_orders=sum(by_status.values()),
            by_status=by_status,
            delivered_revenue=delivered,
            open_revenue=open_revenue,
        )

    # ── Writes ───────────────────────────────────────────────────────────────

    async def update_order_status(
        self, session: AsyncSession, order_id: str, new_status: str
    ) -> bool:
        new_status = _coerce(OrderStatus, new_status, "status")
        order = await self._load_order(session, order_id)
        current = order.status
        if not can_transition(current, new_status):
            raise InvalidTransitionError(current.value, new_status.value)

        order.status = new_status
        order.updated_at = datetime.now(timezone.utc)
        await self._commit(session, f"status of order {order_id}")
        self._invalidate_order_lists()
        logger.info("Order %s: %s -> %s", order_id, current.value, new_status.value)
        return True

    async def bulk_update_order_status(
        self, session: AsyncSession, order_ids: Iterable[str], new_status: str
    ) -> int:
        """Apply one status to many orders; illegal or unknown ids are skipped."""
        new_status = _coerce(OrderStatus, new_status, "status")
        updated = 0
        for order_id in dict.fromkeys(order_ids):
            try:
                await self.update_order_status(session, order_id, new_status)
            except (InvalidTransitionError, NotFoundError) as exc:
                logger.warning("Bulk status update skipped order %s: %s", order_id, exc)
                continue
            updated += 1
        logger.info("Bulk status update to %s: %d updated", new_status.value, updated)
        return updated

    async def update_payment_status(
        self, session: AsyncSession, order_id: str, payment_status: str
    ) -> OrderOut:
        payment_status = _coerce(PaymentStatus, payment_status, "paymentStatus")
        order = await self._load_order(session, order_id)
        current = order.payment_status
        if payment_status not in PAYMENT_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, payment_status.value)

        order.payment_status = payment_status
        order.updated_at = datetime.now(timezone.utc)
        await self._commit(session, f"payment status of order {order_id}")
        self._invalidate_order_lists()
        logger.info("Order %s payment: %s -> %s", order_id, current.value, payment_status.value)
        return OrderOut.model_validate(order)

    async def delete_order(self, session: AsyncSession, order_id: str) -> None:
        """Administrative delete. Stock is not touched."""
        order = await self._load_order(session, order_id)
        await session.delete(order)
        await self._commit(session, f"deletion of order {order_id}")
        self._invalidate_order_lists()
        logger.info("Order %s deleted", order_id)
