"""
Checkout field rules shared by the API and the checkout orchestrator.
"""
from __future__ import annotations

import re
from typing import Dict, Optional

from storefront.models import ShippingMethod

PHONE_RE = re.compile(r"^0\d{9}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def check_checkout_fields(
    name: Optional[str],
    phone: Optional[str],
    wilaya_id: Optional[int],
    shipping_method: Optional[str],
    address: Optional[str] = None,
    email: Optional[str] = None,
    item_count: int = 1,
) -> Dict[str, str]:
    """Return field -> message for every rule the input breaks (empty dict if valid)."""
    errors: Dict[str, str] = {}

    if _blank(name):
        errors["name"] = "Name is required"

    if _blank(phone):
        errors["phone"] = "Phone is required"
    elif not PHONE_RE.match(phone.strip()):
        errors["phone"] = "Phone must start with 0 and contain 10 digits"

    if not wilaya_id:
        errors["wilaya"] = "Please select a wilaya"

    method = None
    if _blank(shipping_method):
        errors["shippingMethod"] = "Please select a delivery option"
    else:
        try:
            method = ShippingMethod(shipping_method)
        except ValueError:
            errors["shippingMethod"] = f"Unknown delivery option {shipping_method!r}"

    if method == ShippingMethod.HOME_DELIVERY and _blank(address):
        errors["address"] = "Address is required for home delivery"

    if not _blank(email) and not EMAIL_RE.match(email.strip()):
        errors["email"] = "Invalid email address"

    if item_count < 1:
        errors["items"] = "At least one item is required"

    return errors
