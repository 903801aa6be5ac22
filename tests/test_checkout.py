"""
Tests for the checkout orchestrator, against the real app over ASGI and
against mocked transports for the failure paths.
"""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from httpx import ASGITransport

from storefront.checkout import CheckoutForm, CheckoutOrchestrator, CheckoutState
from storefront.schemas import AddCartItemRequest
from storefront.services import ledger
from storefront.services.api_client import StorefrontClient
from tests.helpers import ALGER, item


def form(**overrides) -> CheckoutForm:
    data = dict(
        name="Amina B.",
        phone="0555123456",
        wilaya_id=ALGER,
        shipping_method="home_delivery",
        address="12 rue Didouche Mourad",
        items=[item(quantity=2)],
    )
    data.update(overrides)
    return CheckoutForm(**data)


@pytest.fixture
def app_client(api) -> StorefrontClient:
    from storefront.main import app

    return StorefrontClient("http://test", transport=ASGITransport(app=app))


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responses=None):
        self.requests = []
        self.responses = responses or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses[(request.method, request.url.path)]
        return httpx.Response(status, json=body)

    def client(self) -> StorefrontClient:
        return StorefrontClient("http://test", transport=httpx.MockTransport(self))


STOCK_OK = {"overallOk": True, "items": []}


# ── Local validation ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_bad_phone_rejected_before_any_network_call():
    recorder = Recorder()
    checkout = CheckoutOrchestrator(recorder.client())
    submitted = form(phone="123456789")

    assert await checkout.submit(submitted) is None

    assert checkout.state == CheckoutState.ERROR
    assert "phone" in checkout.field_errors
    assert recorder.requests == []
    assert checkout.form is submitted


@pytest.mark.asyncio
async def test_home_delivery_requires_address():
    recorder = Recorder()
    checkout = CheckoutOrchestrator(recorder.client())

    await checkout.submit(form(address=""))

    assert checkout.field_errors == {"address": "Address is required for home delivery"}
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_empty_cart_rejected():
    recorder = Recorder()
    checkout = CheckoutOrchestrator(recorder.client())

    await checkout.submit(form(items=[]))

    assert "items" in checkout.field_errors
    assert recorder.requests == []


# ── Against the app ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_shortfall_keeps_form_and_itemizes(app_client, seeded):
    checkout = CheckoutOrchestrator(app_client)
    submitted = form(items=[item(quantity=1), item(size="L", quantity=3), item(color="white")])

    assert await checkout.submit(submitted) is None

    assert checkout.state == CheckoutState.ERROR
    assert checkout.stock_messages == [
        "TEE-1 (L / black): only 1 available, you asked for 3",
        "TEE-1 (M / white) is out of stock",
    ]
    assert checkout.form is submitted
    assert (await ledger.get_stock(seeded, "TEE-1"))["M"]["black"] == 5


@pytest.mark.asyncio
async def test_success_clears_cart_and_redirects(app_client, seeded, carts):
    await carts.add_item(
        "sess-1",
        AddCartItemRequest(product_id="TEE-1", size="M", color="black", quantity=2),
    )
    await carts.last_job.wait()

    navigated = []
    checkout = CheckoutOrchestrator(
        app_client, redirect_seconds=0, on_navigate=navigated.append, cart_session_id="sess-1"
    )

    order = await checkout.submit(form())

    assert order is not None
    assert checkout.state == CheckoutState.SUCCESS
    assert checkout.order_id == order.id
    assert checkout.form is None

    await checkout.redirect_task
    assert navigated == ["/"]

    await carts.last_job.wait()
    assert (await carts.get_cart("sess-1")).items == []
    assert (await ledger.get_stock(seeded, "TEE-1"))["M"]["black"] == 3


@pytest.mark.asyncio
async def test_countdown_ticks_down_before_navigating():
    recorder = Recorder({
        ("POST", "/check-stock"): (200, STOCK_OK),
        ("POST", "/orders"): (201, {"success": True, "order": _order_json("ORD-1")}),
    })
    navigated = []
    checkout = CheckoutOrchestrator(
        recorder.client(), redirect_seconds=3, on_navigate=navigated.append, tick_seconds=0.001
    )

    await checkout.submit(form())
    assert checkout.countdown == 3
    assert navigated == []

    await checkout.redirect_task
    assert checkout.countdown == 0
    assert navigated == ["/"]


@pytest.mark.asyncio
async def test_retry_after_error_succeeds(app_client, seeded):
    checkout = CheckoutOrchestrator(app_client, redirect_seconds=0)

    await checkout.submit(form(phone="12"))
    assert checkout.state == CheckoutState.ERROR

    order = await checkout.submit(form())
    assert checkout.state == CheckoutState.SUCCESS
    assert checkout.error is None
    assert order.status == "pending"
    checkout.cancel_redirect()


# ── Failure mapping and re-entrancy ──────────────────────────────────────────

@pytest.mark.asyncio
async def test_duplicate_submit_is_ignored():
    release = asyncio.Event()
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/check-stock":
            await release.wait()
            return httpx.Response(200, json=STOCK_OK)
        return httpx.Response(201, json={"success": True, "order": _order_json("ORD-1")})

    client = StorefrontClient("http://test", transport=httpx.MockTransport(handler))
    checkout = CheckoutOrchestrator(client, redirect_seconds=0)

    first = asyncio.create_task(checkout.submit(form()))
    while checkout.state != CheckoutState.VALIDATING:
        await asyncio.sleep(0)

    assert await checkout.submit(form()) is None

    release.set()
    assert (await first).id == "ORD-1"
    assert calls == ["/check-stock", "/orders"]
    await checkout.redirect_task


@pytest.mark.asyncio
async def test_partial_failure_points_to_support():
    recorder = Recorder({
        ("POST", "/check-stock"): (200, STOCK_OK),
        ("POST", "/orders"): (500, {"success": False, "error": "boom", "orderId": "ORD-XYZ"}),
    })
    checkout = CheckoutOrchestrator(recorder.client())
    submitted = form()

    await checkout.submit(submitted)

    assert checkout.state == CheckoutState.ERROR
    assert "ORD-XYZ" in checkout.error
    assert "contact support" in checkout.error
    assert checkout.form is submitted


@pytest.mark.asyncio
async def test_race_lost_at_submission_is_itemized():
    shortage = [{"productId": "TEE-1", "size": "M", "color": "black", "requested": 2, "available": 0}]
    recorder = Recorder({
        ("POST", "/check-stock"): (200, STOCK_OK),
        ("POST", "/orders"): (409, {"success": False, "error": "x", "items": shortage, "orderId": "ORD-L"}),
    })
    checkout = CheckoutOrchestrator(recorder.client())

    await checkout.submit(form())

    assert checkout.state == CheckoutState.ERROR
    assert checkout.stock_messages == ["TEE-1 (M / black) is out of stock"]


@pytest.mark.asyncio
async def test_unreachable_api_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = StorefrontClient("http://test", transport=httpx.MockTransport(handler))
    checkout = CheckoutOrchestrator(client)

    await checkout.submit(form())

    assert checkout.state == CheckoutState.ERROR
    assert "temporarily unavailable" in checkout.error


@pytest.mark.asyncio
async def test_unreadable_response_is_reported_and_checkout_can_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, text="<html>proxy</html>")

    client = StorefrontClient("http://test", transport=httpx.MockTransport(handler))
    checkout = CheckoutOrchestrator(client)
    submitted = form()

    assert await checkout.submit(submitted) is None
    assert checkout.state == CheckoutState.ERROR
    assert not checkout.busy
    assert "temporarily unavailable" in checkout.error
    assert checkout.form is submitted

    await checkout.submit(submitted)
    assert calls == ["/check-stock", "/check-stock"]


@pytest.mark.asyncio
async def test_order_body_without_order_is_reported():
    recorder = Recorder({
        ("POST", "/check-stock"): (200, STOCK_OK),
        ("POST", "/orders"): (201, {"success": True}),
    })
    checkout = CheckoutOrchestrator(recorder.client())

    await checkout.submit(form())

    assert checkout.state == CheckoutState.ERROR
    assert "temporarily unavailable" in checkout.error


@pytest.mark.asyncio
async def test_unexpected_client_error_leaves_checkout_usable():
    class BrokenClient(StorefrontClient):
        async def check_stock(self, items):
            raise RuntimeError("boom")

    checkout = CheckoutOrchestrator(BrokenClient("http://test"))
    submitted = form()

    assert await checkout.submit(submitted) is None
    assert checkout.state == CheckoutState.ERROR
    assert not checkout.busy
    assert checkout.form is submitted
    assert "try again" in checkout.error


@pytest.mark.asyncio
async def test_server_side_validation_errors_are_surfaced():
    recorder = Recorder({
        ("POST", "/check-stock"): (200, STOCK_OK),
        ("POST", "/orders"): (400, {"success": False, "error": "bad", "details": {"wilaya": "Unknown wilaya 99"}}),
    })
    checkout = CheckoutOrchestrator(recorder.client())

    await checkout.submit(form())

    assert checkout.field_errors == {"wilaya": "Unknown wilaya 99"}
    sent = json.loads(recorder.requests[-1].content)
    assert sent["customer"]["wilayaId"] == ALGER
    assert sent["shippingMethod"] == "home_delivery"


def _order_json(order_id: str) -> dict:
    return {
        "id": order_id,
        "customerName": "Amina B.",
        "customerPhone": "0555123456",
        "wilayaId": ALGER,
        "wilayaName": "Alger",
        "shippingMethod": "home_delivery",
        "subtotal": 5000.0,
        "shippingCost": 700.0,
        "total": 5700.0,
        "status": "pending",
        "paymentStatus": "pending",
        "paymentMethod": "cash_on_delivery",
        "createdAt": "2024-01-01T10:00:00Z",
        "updatedAt": "2024-01-01T10:00:00Z",
        "items": [],
    }
