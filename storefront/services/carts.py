"""
Shopping carts keyed by browser session id.

Cart contents are cached and every change is an optimistic write: the new
cart is served immediately and upserted in the background. Carts never
reserve stock; availability is only checked at checkout.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.exceptions import NotFoundError
from storefront.models import Cart
from storefront.schemas import AddCartItemRequest, CartItem, CartOut
from storefront.services.background import PersistJob
from storefront.services.cache import Cache

logger = logging.getLogger(__name__)


def cart_total(items: List[CartItem]) -> Decimal:
    return sum((i.price * i.quantity for i in items), Decimal("0"))


class CartService:
    def __init__(self, cache: Cache, session_factory: async_sessionmaker[AsyncSession]):
        self._cache = cache
        self._session_factory = session_factory
        self.last_job: Optional[PersistJob] = None

    async def _fetch(self, session_id: str) -> List[CartItem]:
        async with self._session_factory() as session:
            cart = await session.get(Cart, session_id)
        if cart is None:
            return []
        return [CartItem.model_validate(raw) for raw in cart.items or []]

    async def _items(self, session_id: str) -> List[CartItem]:
        items = await self._cache.read(session_id, lambda: self._fetch(session_id))
        # Callers mutate the returned list; keep the cached one intact.
        return [i.model_copy() for i in items]

    def _write(self, session_id: str, items: List[CartItem]) -> CartOut:
        payload = [i.model_dump(mode="json", by_alias=True) for i in items]

        async def _persist() -> None:
            async with self._session_factory() as session:
                cart = await session.get(Cart, session_id)
                if cart is None:
                    session.add(Cart(session_id=session_id, items=payload))
                else:
                    cart.items = payload
                    cart.updated_at = datetime.now(timezone.utc)
                await session.commit()

        cached = [i.model_copy() for i in items]
        self.last_job = self._cache.optimistic_write(session_id, cached, _persist)
        return self._view(session_id, items)

    @staticmethod
    def _view(session_id: str, items: List[CartItem]) -> CartOut:
        return CartOut(
            session_id=session_id,
            items=items,
            total=cart_total(items),
            item_count=sum(i.quantity for i in items),
        )

    # ── Public API ───────────────────────────────────────────────────────────

    async def get_cart(self, session_id: str) -> CartOut:
        return self._view(session_id, await self._items(session_id))

    async def add_item(self, session_id: str, item: AddCartItemRequest) -> CartOut:
        """Add a line, or bump the quantity of an existing product/size/color line."""
        items = await self._items(session_id)
        for existing in items:
            if (existing.product_id, existing.size, existing.color) == (
                item.product_id, item.size, item.color
            ):
                existing.quantity += item.quantity
                break
        else:
            items.append(
                CartItem(
                    id=uuid.uuid4().hex[:12],
                    product_id=item.product_id,
                    name=item.name,
                    price=item.price,
                    size=item.size,
                    color=item.color,
                    quantity=item.quantity,
                )
            )
        logger.debug("Cart %s: +%d x %s (%s/%s)",
                     session_id, item.quantity, item.product_id, item.size, item.color)
        return self._write(session_id, items)

    async def update_quantity(self, session_id: str, item_id: str, quantity: int) -> CartOut:
        """Set a line's quantity; zero or less removes the line."""
        items = await self._items(session_id)
        if not any(i.id == item_id for i in items):
            raise NotFoundError(f"Cart item {item_id!r} not found")
        if quantity <= 0:
            items = [i for i in items if i.id != item_id]
        else:
            for i in items:
                if i.id == item_id:
                    i.quantity = quantity
        return self._write(session_id, items)

    async def remove_item(self, session_id: str, item_id: str) -> CartOut:
        items = await self._items(session_id)
        remaining = [i for i in items if i.id != item_id]
        if len(remaining) == len(items):
            raise NotFoundError(f"Cart item {item_id!r} not found")
        return self._write(session_id, remaining)

    async def clear_cart(self, session_id: str) -> CartOut:
        logger.info("Cart %s cleared", session_id)
        return self._write(session_id, [])

    async def cart_total(self, session_id: str) -> Decimal:
        return cart_total(await self._items(session_id))
