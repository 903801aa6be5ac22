"""
Builders shared by the test modules.
"""
from __future__ import annotations

from storefront.schemas import CustomerInfo, LineItem

# Alger: stop desk 400, home delivery 700
ALGER = 16


def customer(**overrides) -> CustomerInfo:
    data = dict(
        name="Amina B.",
        phone="0555123456",
        address="12 rue Didouche Mourad",
        city="Alger Centre",
        wilaya_id=ALGER,
    )
    data.update(overrides)
    return CustomerInfo(**data)


def item(product_id: str = "TEE-1", size: str = "M", color: str = "black", quantity: int = 1) -> LineItem:
    return LineItem(product_id=product_id, size=size, color=color, quantity=quantity)
