"""
Checkout orchestrator: drives one customer's submission from form to order.

States: idle -> validating -> submitting -> success | error.

Field rules are checked locally (no network call on invalid input); stock is
checked by the API right before the order is placed. On error the form is
kept so the customer can fix it and resubmit; on success the draft and the
remote cart are cleared and a countdown redirects home.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from storefront.exceptions import (
    BackingStoreUnavailableError,
    InsufficientStockError,
    PartialFailureError,
    StorefrontError,
    ValidationError,
)
from storefront.models import ShippingMethod
from storefront.schemas import CustomerInfo, LineItem, OrderOut
from storefront.services.api_client import StorefrontClient
from storefront.validation import check_checkout_fields

logger = logging.getLogger(__name__)


class CheckoutState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class CheckoutForm:
    name: str = ""
    phone: str = ""
    wilaya_id: Optional[int] = None
    shipping_method: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    items: List[LineItem] = field(default_factory=list)


def shortfall_messages(items: List[dict]) -> List[str]:
    messages = []
    for item in items:
        label = f"{item['product_id']} ({item['size']} / {item['color']})"
        if item["available"] <= 0:
            messages.append(f"{label} is out of stock")
        else:
            messages.append(
                f"{label}: only {item['available']} available, you asked for {item['requested']}"
            )
    return messages


class CheckoutOrchestrator:
    def __init__(
        self,
        client: StorefrontClient,
        redirect_seconds: int = 10,
        on_navigate: Optional[Callable[[str], None]] = None,
        cart_session_id: Optional[str] = None,
        tick_seconds: float = 1.0,
    ):
        self.client = client
        self.redirect_seconds = redirect_seconds
        self.on_navigate = on_navigate
        self.cart_session_id = cart_session_id
        self.tick_seconds = tick_seconds

        self.state = CheckoutState.IDLE
        self.form: Optional[CheckoutForm] = None
        self.error: Optional[str] = None
        self.field_errors: Dict[str, str] = {}
        self.stock_messages: List[str] = []
        self.order: Optional[OrderOut] = None
        self.countdown: int = 0
        self.redirect_task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self.state in (CheckoutState.VALIDATING, CheckoutState.SUBMITTING)

    @property
    def order_id(self) -> Optional[str]:
        return self.order.id if self.order is not None else None

    def _fail(self, message: str) -> None:
        self.state = CheckoutState.ERROR
        self.error = message

    async def submit(self, form: CheckoutForm) -> Optional[OrderOut]:
        """Run one checkout attempt. Returns the order on success, else None."""
        if self.busy:
            logger.info("Checkout already in progress; ignoring duplicate submit")
            return None

        self.form = form
        self.error = None
        self.field_errors = {}
        self.stock_messages = []

        self.field_errors = check_checkout_fields(
            name=form.name,
            phone=form.phone,
            wilaya_id=form.wilaya_id,
            shipping_method=form.shipping_method,
            address=form.address,
            email=form.email,
            item_count=len(form.items),
        )
        if self.field_errors:
            self._fail(str(ValidationError(self.field_errors)))
            return None

        try:
            self.state = CheckoutState.VALIDATING
            result = await self.client.check_stock(form.items)
            if not result.overall_ok:
                self.stock_messages = shortfall_messages(
                    [c.shortfall() for c in result.shortfalls]
                )
                self._fail("Some items are no longer available in the requested quantity")
                return None

            self.state = CheckoutState.SUBMITTING
            customer = CustomerInfo(
                name=form.name.strip(),
                phone=form.phone.strip(),
                email=form.email or None,
                address=form.address or None,
                city=form.city or None,
                wilaya_id=form.wilaya_id,
            )
            order = await self.client.create_order(
                customer, form.items, ShippingMethod(form.shipping_method), form.notes
            )
        except ValidationError as exc:
            self.field_errors = exc.errors
            self._fail(str(exc))
            return None
        except InsufficientStockError as exc:
            self.stock_messages = shortfall_messages(exc.items)
            self._fail("Some items are no longer available in the requested quantity")
            return None
        except PartialFailureError as exc:
            logger.error("Checkout hit a partial failure for order %s", exc.order_id)
            self._fail(
                f"We could not complete your order. Please contact support "
                f"with order id {exc.order_id}."
            )
            return None
        except BackingStoreUnavailableError as exc:
            self._fail(f"The store is temporarily unavailable, please try again ({exc})")
            return None
        except StorefrontError as exc:
            self._fail(str(exc))
            return None
        except Exception:
            logger.exception("Checkout failed unexpectedly")
            self._fail("Something went wrong while placing your order, please try again")
            return None

        self.order = order
        self.state = CheckoutState.SUCCESS
        self.form = None
        logger.info("Checkout complete: order %s", order.id)
        await self._clear_cart()
        self._start_redirect()
        return order

    async def _clear_cart(self) -> None:
        if not self.cart_session_id:
            return
        try:
            await self.client.clear_cart(self.cart_session_id)
        except StorefrontError as exc:
            logger.warning("Could not clear cart %s: %s", self.cart_session_id, exc)

    def _start_redirect(self) -> None:
        self.countdown = self.redirect_seconds
        self.redirect_task = asyncio.get_running_loop().create_task(self._redirect())

    async def _redirect(self) -> None:
        while self.countdown > 0:
            await asyncio.sleep(self.tick_seconds)
            self.countdown -= 1
        if self.on_navigate is not None:
            self.on_navigate("/")

    def cancel_redirect(self) -> None:
        if self.redirect_task is not None and not self.redirect_task.done():
            self.redirect_task.cancel()
        self.redirect_task = None

    def reset(self) -> None:
        """Back to idle, e.g. after the customer edits the form."""
        self.cancel_redirect()
        self.state = CheckoutState.IDLE
        self.error = None
        self.field_errors = {}
        self.stock_messages = []
