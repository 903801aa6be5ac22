"""
Wilaya shipping tariffs (static configuration, cached).
"""
from __future__ import annotations

import json
import logging
import pathlib
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel

from storefront.exceptions import ValidationError
from storefront.models import ShippingMethod
from storefront.services.cache import Cache

logger = logging.getLogger(__name__)

_DEFAULT_PATH = pathlib.Path(__file__).parent.parent / "data" / "wilayas.json"


class WilayaRate(BaseModel):
    id: int
    name: str
    stop_desk: Decimal
    home_delivery: Decimal

    def cost_for(self, method: ShippingMethod) -> Decimal:
        if method == ShippingMethod.HOME_DELIVERY:
            return self.home_delivery
        return self.stop_desk


class ShippingTable:
    def __init__(self, cache: Cache, path: Optional[str] = None):
        self._cache = cache
        self._path = pathlib.Path(path) if path else _DEFAULT_PATH

    async def _load(self) -> Dict[int, WilayaRate]:
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        rates = {r.id: r for r in (WilayaRate(**entry) for entry in raw)}
        logger.info("Loaded %d wilaya tariffs from %s", len(rates), self._path)
        return rates

    async def rates(self) -> Dict[int, WilayaRate]:
        return await self._cache.read("rates", self._load)

    async def lookup(self, wilaya_id: int) -> WilayaRate:
        rate = (await self.rates()).get(wilaya_id)
        if rate is None:
            raise ValidationError({"wilaya": f"Unknown wilaya {wilaya_id}"})
        return rate
