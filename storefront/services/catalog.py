"""
Cached product view (product + stock map) for product pages.

Stale for at most the cache TTL; the order pipeline and restocks invalidate
affected products. Checkout never reads through here.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, List

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import NotFoundError
from storefront.models import Product
from storefront.services import ledger
from storefront.services.cache import Cache

logger = logging.getLogger(__name__)


class ProductView(BaseModel):
    id: str
    name: str
    price: Decimal
    sizes: List[str]
    colors: List[str]
    stock: ledger.StockMap


class ProductCatalog:
    def __init__(self, cache: Cache):
        self._cache = cache

    @staticmethod
    def _key(product_id: str) -> str:
        return f"product:{product_id}"

    async def _fetch(self, session: AsyncSession, product_id: str) -> ProductView:
        product = await session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id!r} not found")
        stock = await ledger.get_stock(session, product_id)
        return ProductView(
            id=product.id,
            name=product.name,
            price=product.price,
            sizes=list(product.sizes or []),
            colors=list(product.colors or []),
            stock=stock,
        )

    async def get_product(self, session: AsyncSession, product_id: str) -> ProductView:
        return await self._cache.read(
            self._key(product_id), lambda: self._fetch(session, product_id)
        )

    def invalidate(self, product_ids: Iterable[str]) -> None:
        for product_id in product_ids:
            self._cache.invalidate(self._key(product_id))
