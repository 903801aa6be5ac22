"""
Thin async client for the storefront HTTP API, used by the checkout flow.

Error responses are mapped back onto the domain exceptions so callers handle
the same types whether they talk to the pipeline in-process or over HTTP.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel

from storefront.exceptions import (
    BackingStoreUnavailableError,
    InsufficientStockError,
    NotFoundError,
    PartialFailureError,
    StorefrontError,
    ValidationError,
)
from storefront.schemas import (
    CreateOrderRequest,
    CustomerInfo,
    LineItem,
    OrderOut,
    ProductOut,
    Shortfall,
    StockValidationResult,
)
from storefront.models import ShippingMethod

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    body = _body(resp)
    message = body.get("error") or resp.text[:300] or resp.reason_phrase
    status = resp.status_code
    logger.warning(
        "Storefront API error %s %s status=%d body=%s",
        resp.request.method, resp.request.url, status, resp.text[:300],
    )

    if status in (400, 422):
        raise ValidationError(body.get("details") or {"form": message})
    if status == 404:
        raise NotFoundError(message)
    if status == 409 and body.get("items"):
        items = [Shortfall.model_validate(i).model_dump() for i in body["items"]]
        raise InsufficientStockError(items, order_id=body.get("orderId"))
    if status >= 500 and body.get("orderId"):
        raise PartialFailureError(body["orderId"], message)
    if status >= 500:
        raise BackingStoreUnavailableError(message)
    raise StorefrontError(message)


def _parse(resp: httpx.Response, model: Type[M], key: Optional[str] = None) -> M:
    """Decode a success body into *model*; an unreadable body means the API is not usable."""
    try:
        data = resp.json()
        return model.model_validate(data[key] if key else data)
    except (ValueError, KeyError, TypeError) as exc:
        logger.error(
            "Unreadable storefront API response %s %s status=%d body=%s",
            resp.request.method, resp.request.url, resp.status_code, resp.text[:300],
        )
        raise BackingStoreUnavailableError("Unexpected response from the storefront API") from exc


class StorefrontClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self._timeout, transport=self._transport
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.error("Storefront API unreachable (%s %s): %s", method, path, exc)
            raise BackingStoreUnavailableError(f"Could not reach {self.base_url}") from exc
        _raise_for_error(resp)
        return resp

    async def check_stock(self, items: Sequence[LineItem]) -> StockValidationResult:
        payload = {"items": [i.model_dump(by_alias=True) for i in items]}
        resp = await self._request("POST", "/check-stock", json=payload)
        return _parse(resp, StockValidationResult)

    async def create_order(
        self,
        customer: CustomerInfo,
        items: List[LineItem],
        shipping_method: ShippingMethod,
        notes: Optional[str] = None,
    ) -> OrderOut:
        request = CreateOrderRequest(
            customer=customer, items=items, shipping_method=shipping_method, notes=notes
        )
        resp = await self._request(
            "POST", "/orders", json=request.model_dump(mode="json", by_alias=True)
        )
        return _parse(resp, OrderOut, "order")

    async def get_product(self, product_id: str) -> ProductOut:
        resp = await self._request("GET", f"/products/{product_id}")
        return _parse(resp, ProductOut)

    async def clear_cart(self, session_id: str) -> None:
        await self._request("DELETE", f"/carts/{session_id}")
