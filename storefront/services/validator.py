"""
Pre-flight stock validation for checkout.

Always reads the ledger fresh (never through a cache) and reports per-item
detail so the caller can say exactly how many units are left.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.exceptions import NotFoundError
from storefront.schemas import ItemCheck, LineItem, StockValidationResult
from storefront.services import ledger

logger = logging.getLogger(__name__)


class StockValidator:
    async def validate(
        self, session: AsyncSession, line_items: Iterable[LineItem]
    ) -> StockValidationResult:
        line_items = list(line_items)

        # Duplicate lines for the same cell compete for the same units; each
        # reports the combined demand.
        demand: Dict[Tuple[str, str, str], int] = defaultdict(int)
        for item in line_items:
            demand[(item.product_id, item.size, item.color)] += item.quantity

        stock_maps: Dict[str, ledger.StockMap] = {}
        missing = set()
        for product_id in dict.fromkeys(i.product_id for i in line_items):
            try:
                stock_maps[product_id] = await ledger.get_stock(session, product_id)
            except NotFoundError:
                logger.info("Validation: product %s no longer exists", product_id)
                missing.add(product_id)

        checks: List[ItemCheck] = []
        for item in line_items:
            needed = demand[(item.product_id, item.size, item.color)]
            if item.product_id in missing:
                checks.append(
                    ItemCheck(line_item=item, requested=needed, available=0,
                              ok=False, found=False)
                )
                continue
            available = ledger.available_quantity(
                stock_maps[item.product_id], item.size, item.color
            )
            checks.append(
                ItemCheck(
                    line_item=item,
                    requested=needed,
                    available=available,
                    ok=available >= needed,
                )
            )

        result = StockValidationResult(overall_ok=all(c.ok for c in checks), items=checks)
        if not result.overall_ok:
            logger.info(
                "Stock validation failed for %d of %d item(s)",
                len(result.shortfalls), len(checks),
            )
        return result
