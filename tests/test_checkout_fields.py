"""
Unit tests for checkout field rules and the wilaya tariff table.
"""
from __future__ import annotations

import json
from decimal import Decimal

import pytest

from storefront.exceptions import ValidationError
from storefront.models import ShippingMethod
from storefront.services.cache import Cache
from storefront.services.shipping import ShippingTable
from storefront.validation import check_checkout_fields


def check(**overrides):
    data = dict(
        name="Amina",
        phone="0555123456",
        wilaya_id=16,
        shipping_method="stop_desk",
    )
    data.update(overrides)
    return check_checkout_fields(**data)


def test_valid_stop_desk_form():
    assert check() == {}


@pytest.mark.parametrize("phone", ["123456789", "055512345", "05551234567", "0555-12345", ""])
def test_phone_must_be_ten_digits_starting_with_zero(phone):
    assert "phone" in check(phone=phone)


def test_phone_is_trimmed():
    assert check(phone=" 0555123456 ") == {}


def test_address_only_required_for_home_delivery():
    assert check(shipping_method="stop_desk", address=None) == {}
    assert "address" in check(shipping_method="home_delivery", address="  ")


def test_unknown_shipping_method():
    assert "shippingMethod" in check(shipping_method="drone")
    assert "shippingMethod" in check(shipping_method=None)


def test_missing_wilaya_and_items():
    errors = check(wilaya_id=None, item_count=0)
    assert set(errors) == {"wilaya", "items"}


def test_email_optional_but_checked():
    assert check(email="") == {}
    assert check(email="a@b.dz") == {}
    assert "email" in check(email="a@b")


@pytest.mark.asyncio
async def test_bundled_table_has_every_wilaya():
    table = ShippingTable(Cache("shipping", 60_000))
    rates = await table.rates()

    assert sorted(rates) == list(range(1, 58))
    alger = await table.lookup(16)
    assert alger.name == "Alger"
    assert alger.cost_for(ShippingMethod.HOME_DELIVERY) == Decimal("700")
    assert alger.cost_for(ShippingMethod.STOP_DESK) == Decimal("400")


@pytest.mark.asyncio
async def test_unknown_wilaya_is_validation_error():
    table = ShippingTable(Cache("shipping", 60_000))
    with pytest.raises(ValidationError):
        await table.lookup(0)


@pytest.mark.asyncio
async def test_custom_table_is_loaded_once(tmp_path):
    path = tmp_path / "rates.json"
    path.write_text(json.dumps([{"id": 1, "name": "Test", "stop_desk": 100, "home_delivery": 200}]))
    cache = Cache("shipping", 60_000)
    table = ShippingTable(cache, str(path))

    assert (await table.lookup(1)).home_delivery == Decimal("200")
    path.write_text("[]")
    assert (await table.lookup(1)).stop_desk == Decimal("100")
    assert cache.hits == 1
