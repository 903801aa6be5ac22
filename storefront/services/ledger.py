"""
Stock ledger: per-product stock maps keyed by (size, color).

Every read goes straight to the backing store. Every mutation is a single
conditional UPDATE so concurrent checkouts can never push a quantity below
zero, and every applied mutation is recorded as a stock_movement row.
Callers own the transaction (nothing here commits).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.config import get_settings
from storefront.exceptions import InsufficientStockError, NotFoundError
from storefront.models import Product, StockLevel, StockMovement

logger = logging.getLogger(__name__)

StockMap = Dict[str, Dict[str, int]]


def available_quantity(stock: StockMap, size: str, color: str) -> int:
    """Missing (size, color) cells count as zero."""
    return stock.get(size, {}).get(color, 0)


async def _require_product(session: AsyncSession, product_id: str) -> Product:
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id!r} not found")
    return product


async def _read_stock_map(session: AsyncSession, product_id: str) -> StockMap:
    rows = (
        await session.execute(
            select(StockLevel.size, StockLevel.color, StockLevel.quantity)
            .where(StockLevel.product_id == product_id)
            .order_by(StockLevel.size, StockLevel.color)
        )
    ).all()
    stock: StockMap = {}
    for size, color, quantity in rows:
        stock.setdefault(size, {})[color] = quantity
    return stock


async def _current_quantity(
    session: AsyncSession, product_id: str, size: str, color: str
) -> Optional[int]:
    return (
        await session.execute(
            select(StockLevel.quantity).where(
                StockLevel.product_id == product_id,
                StockLevel.size == size,
                StockLevel.color == color,
            )
        )
    ).scalar_one_or_none()


def _record_movement(
    session: AsyncSession,
    product_id: str,
    size: str,
    color: str,
    delta: int,
    quantity_after: int,
    reason: str,
    order_id: Optional[str],
) -> None:
    session.add(
        StockMovement(
            product_id=product_id,
            size=size,
            color=color,
            delta=delta,
            quantity_after=quantity_after,
            reason=reason,
            order_id=order_id,
        )
    )


async def get_stock(session: AsyncSession, product_id: str) -> StockMap:
    """Fresh stock map for a product. Raises NotFoundError for unknown products."""
    await _require_product(session, product_id)
    return await _read_stock_map(session, product_id)


async def decrement_stock(
    session: AsyncSession,
    product_id: str,
    size: str,
    color: str,
    amount: int,
    order_id: Optional[str] = None,
    reason: str = "order",
) -> StockMap:
    """
    Atomically take *amount* units out of (size, color).

    The decrement only applies while quantity >= amount, so two racing
    checkouts for the last unit cannot both succeed.
    """
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")

    result = await session.execute(
        update(StockLevel)
        .where(
            StockLevel.product_id == product_id,
            StockLevel.size == size,
            StockLevel.color == color,
            StockLevel.quantity >= amount,
        )
        .values(
            quantity=StockLevel.quantity - amount,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        await _require_product(session, product_id)
        available = await _current_quantity(session, product_id, size, color) or 0
        logger.warning(
            "Stock floor hit for product=%s size=%s color=%s (want %d, have %d)",
            product_id, size, color, amount, available,
        )
        raise InsufficientStockError(
            [
                {
                    "product_id": product_id,
                    "size": size,
                    "color": color,
                    "requested": amount,
                    "available": available,
                }
            ],
            order_id=order_id,
        )

    new_quantity = await _current_quantity(session, product_id, size, color) or 0
    _record_movement(session, product_id, size, color, -amount, new_quantity, reason, order_id)
    logger.info(
        "Stock decremented: product=%s size=%s color=%s delta=-%d new_quantity=%d (order=%s)",
        product_id, size, color, amount, new_quantity, order_id,
    )
    return await _read_stock_map(session, product_id)


async def increment_stock(
    session: AsyncSession,
    product_id: str,
    size: str,
    color: str,
    amount: int,
    reason: str = "restock",
    order_id: Optional[str] = None,
) -> StockMap:
    """Administrative restock (and compensation). Creates the cell if missing."""
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")

    max_quantity = get_settings().max_stock_quantity
    await _require_product(session, product_id)

    result = await session.execute(
        update(StockLevel)
        .where(
            StockLevel.product_id == product_id,
            StockLevel.size == size,
            StockLevel.color == color,
            StockLevel.quantity <= max_quantity - amount,
        )
        .values(
            quantity=StockLevel.quantity + amount,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        current = await _current_quantity(session, product_id, size, color)
        if current is not None or amount > max_quantity:
            raise ValueError(
                f"Restock would exceed max quantity {max_quantity} "
                f"for product={product_id} size={size} color={color}"
            )
        # A concurrent insert of the same cell surfaces as IntegrityError to the caller.
        session.add(
            StockLevel(product_id=product_id, size=size, color=color, quantity=amount)
        )
        await session.flush()

    new_quantity = await _current_quantity(session, product_id, size, color) or 0
    _record_movement(session, product_id, size, color, amount, new_quantity, reason, order_id)
    logger.info(
        "Stock incremented: product=%s size=%s color=%s delta=+%d new_quantity=%d (%s)",
        product_id, size, color, amount, new_quantity, reason,
    )
    return await _read_stock_map(session, product_id)


async def create_product(
    session: AsyncSession,
    product_id: str,
    name: str,
    price: Decimal,
    stock: Optional[StockMap] = None,
    sizes: Optional[List[str]] = None,
    colors: Optional[List[str]] = None,
) -> Product:
    """Create a product together with its initial stock map."""
    stock = stock or {}
    for size, by_color in stock.items():
        for color, quantity in by_color.items():
            if quantity < 0:
                raise ValueError(f"negative quantity for {size}/{color}")

    product = Product(
        id=product_id,
        name=name,
        price=price,
        sizes=sizes or list(stock),
        colors=colors or sorted({c for by_color in stock.values() for c in by_color}),
    )
    session.add(product)
    for size, by_color in stock.items():
        for color, quantity in by_color.items():
            session.add(
                StockLevel(product_id=product_id, size=size, color=color, quantity=quantity)
            )
    await session.flush()
    return product


async def list_movements(
    session: AsyncSession,
    product_id: Optional[str] = None,
    limit: int = 50,
) -> List[StockMovement]:
    stmt = select(StockMovement).order_by(StockMovement.id.desc()).limit(limit)
    if product_id:
        stmt = stmt.where(StockMovement.product_id == product_id)
    return list((await session.execute(stmt)).scalars().all())
