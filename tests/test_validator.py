"""
Tests for pre-flight stock validation.
"""
from __future__ import annotations

import pytest

from storefront.services import ledger
from storefront.services.validator import StockValidator
from tests.helpers import item


@pytest.mark.asyncio
async def test_all_available(seeded):
    result = await StockValidator().validate(
        seeded, [item(quantity=5), item("HOODIE-1", "M", "grey", 3)]
    )
    assert result.overall_ok
    assert [c.available for c in result.items] == [5, 3]


@pytest.mark.asyncio
async def test_shortfall_reports_available(seeded):
    result = await StockValidator().validate(
        seeded, [item(quantity=1), item(size="L", quantity=2)]
    )
    assert not result.overall_ok
    assert [c.ok for c in result.items] == [True, False]
    assert result.shortfalls[0].shortfall() == {
        "product_id": "TEE-1",
        "size": "L",
        "color": "black",
        "requested": 2,
        "available": 1,
    }


@pytest.mark.asyncio
async def test_zero_and_missing_cells_are_unavailable(seeded):
    result = await StockValidator().validate(
        seeded, [item(color="white"), item(size="XXL")]
    )
    assert not result.overall_ok
    assert [c.available for c in result.items] == [0, 0]


@pytest.mark.asyncio
async def test_unknown_product_is_not_ok(seeded):
    result = await StockValidator().validate(seeded, [item("GONE-1")])
    assert not result.overall_ok
    assert result.items[0].found is False
    assert result.items[0].available == 0


@pytest.mark.asyncio
async def test_duplicate_lines_share_the_same_units(seeded):
    # 3 + 3 of a cell holding 5
    result = await StockValidator().validate(seeded, [item(quantity=3), item(quantity=3)])
    assert not result.overall_ok


@pytest.mark.asyncio
async def test_validation_is_idempotent_and_side_effect_free(seeded):
    validator = StockValidator()
    items = [item(quantity=2), item(size="L", quantity=5)]

    first = await validator.validate(seeded, items)
    second = await validator.validate(seeded, items)

    assert first == second
    assert await ledger.list_movements(seeded) == []
    assert (await ledger.get_stock(seeded, "TEE-1"))["M"]["black"] == 5


@pytest.mark.asyncio
async def test_validation_reads_fresh_stock(seeded):
    validator = StockValidator()
    assert (await validator.validate(seeded, [item(size="L")])).overall_ok

    await ledger.decrement_stock(seeded, "TEE-1", "L", "black", 1)
    await seeded.commit()

    assert not (await validator.validate(seeded, [item(size="L")])).overall_ok


@pytest.mark.asyncio
async def test_duplicate_lines_report_combined_demand(seeded):
    result = await StockValidator().validate(seeded, [item(quantity=3), item(quantity=4)])

    assert [c.requested for c in result.shortfalls] == [7, 7]
    assert result.shortfalls[0].shortfall()["available"] == 5
