"""
Cart endpoints, keyed by the browser's session id.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from storefront.deps import get_cart_service
from storefront.schemas import AddCartItemRequest, CartOut, UpdateCartItemRequest
from storefront.services.carts import CartService

router = APIRouter(prefix="/carts", tags=["carts"])


@router.get("/{session_id}", response_model=CartOut)
async def get_cart(
    session_id: str, carts: CartService = Depends(get_cart_service)
) -> CartOut:
    return await carts.get_cart(session_id)


@router.post("/{session_id}/items", response_model=CartOut)
async def add_item(
    session_id: str,
    body: AddCartItemRequest,
    carts: CartService = Depends(get_cart_service),
) -> CartOut:
    return await carts.add_item(session_id, body)


@router.put("/{session_id}/items/{item_id}", response_model=CartOut)
async def update_item(
    session_id: str,
    item_id: str,
    body: UpdateCartItemRequest,
    carts: CartService = Depends(get_cart_service),
) -> CartOut:
    return await carts.update_quantity(session_id, item_id, body.quantity)


@router.delete("/{session_id}/items/{item_id}", response_model=CartOut)
async def remove_item(
    session_id: str, item_id: str, carts: CartService = Depends(get_cart_service)
) -> CartOut:
    return await carts.remove_item(session_id, item_id)


@router.delete("/{session_id}", response_model=CartOut)
async def clear_cart(
    session_id: str, carts: CartService = Depends(get_cart_service)
) -> CartOut:
    return await carts.clear_cart(session_id)
