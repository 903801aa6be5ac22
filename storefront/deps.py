"""
FastAPI dependency providers for the long-lived services.

Each service is built once per process and owns its own Cache (and TTL).
Tests swap them out through ``app.dependency_overrides``.
"""
from __future__ import annotations

from functools import lru_cache

from storefront.config import get_settings
from storefront.database import AsyncSessionLocal
from storefront.services.background import BackgroundWorker
from storefront.services.cache import Cache
from storefront.services.carts import CartService
from storefront.services.catalog import ProductCatalog
from storefront.services.maintenance import MaintenanceService
from storefront.services.orders import OrderPipeline
from storefront.services.shipping import ShippingTable
from storefront.services.validator import StockValidator


@lru_cache(maxsize=1)
def get_worker() -> BackgroundWorker:
    settings = get_settings()
    return BackgroundWorker(
        name="persist",
        max_retries=settings.persist_max_retries,
        retry_base_seconds=settings.persist_retry_base_seconds,
        maxsize=settings.persist_queue_size,
    )


@lru_cache(maxsize=1)
def get_catalog() -> ProductCatalog:
    return ProductCatalog(Cache("products", get_settings().product_cache_ttl_ms))


@lru_cache(maxsize=1)
def get_shipping() -> ShippingTable:
    settings = get_settings()
    return ShippingTable(
        Cache("shipping", settings.shipping_cache_ttl_ms), settings.shipping_rates_path
    )


@lru_cache(maxsize=1)
def get_validator() -> StockValidator:
    return StockValidator()


@lru_cache(maxsize=1)
def get_order_pipeline() -> OrderPipeline:
    return OrderPipeline(
        validator=get_validator(),
        shipping=get_shipping(),
        order_cache=Cache("orders", get_settings().orders_cache_ttl_ms),
        catalog=get_catalog(),
    )


@lru_cache(maxsize=1)
def get_maintenance_service() -> MaintenanceService:
    cache = Cache("maintenance", get_settings().maintenance_cache_ttl_ms, worker=get_worker())
    return MaintenanceService(cache, AsyncSessionLocal)


@lru_cache(maxsize=1)
def get_cart_service() -> CartService:
    cache = Cache("carts", get_settings().cart_cache_ttl_ms, worker=get_worker())
    return CartService(cache, AsyncSessionLocal)
