"""Test doubles shared by the checkout tests"""

import asyncio
import fnmatch
from typing import Any, Callable, Dict, List, Optional

import redis

from storefront_checkout.config import GatewayConfig
from storefront_checkout.interaction import CheckoutUI
from storefront_checkout.protocol.errors import GatewayIntegrationError
from storefront_checkout.services.attempt_store import MemoryAttemptStore
from storefront_checkout.services.checkout_state_machine import CheckoutStateMachine
from storefront_checkout.services.gateway_adapter import (
    CheckoutWidget,
    GatewayAdapter,
    GatewayLibrary,
    GatewayLibraryLoader
)
from storefront_checkout.services.payment_method_selector import PaymentMethodSelector


VALID_ADDRESS = {
    'name': "Ravi Kumar",
    'phone': "9876543210",
    'email': "ravi@example.com",
    'address': "12 Gandhi Road, Anna Nagar",
    'city': "Chennai",
    'state': "Tamil Nadu",
    'pincode': "600040",
}

CART_ITEMS = [
    {'productId': "prod_led_9w", 'name': "LED Bulb 9W", 'price': 499, 'quantity': 1},
]


def gateway_config(**overrides) -> GatewayConfig:
    values = {'key_id': "rzp_test_key", 'key_secret': None}
    values.update(overrides)
    return GatewayConfig(**values)


class ScriptedUI(CheckoutUI):
    """Answers confirmations and window requests from prepared lists"""

    def __init__(self, confirms: Optional[List[bool]] = None, windows: Optional[List[bool]] = None):
        self.confirms = list(confirms or [])
        self.windows = list(windows or [])
        self.prompts: List[str] = []
        self.opened: List[str] = []
        self.notices: List[str] = []

    async def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.confirms.pop(0) if self.confirms else False

    async def notify(self, message: str) -> None:
        self.notices.append(message)

    async def open_window(self, url: str) -> bool:
        self.opened.append(url)
        return self.windows.pop(0) if self.windows else True


class FakeWidget(CheckoutWidget):
    def __init__(self, options: Dict[str, Any], behaviour: Callable[['FakeWidget'], None]):
        self.options = options
        self.behaviour = behaviour
        self.handlers: Dict[str, Callable] = {}
        self.open_calls = 0

    def on(self, event, callback):
        self.handlers[event] = callback

    def open(self):
        self.open_calls += 1
        self.behaviour(self)

    # Simulated user actions

    def pay(self, payment_id: Optional[str] = "pay_123", order_id=None, signature=None):
        response = {}
        if payment_id:
            response['razorpay_payment_id'] = payment_id
        if order_id:
            response['razorpay_order_id'] = order_id
        if signature:
            response['razorpay_signature'] = signature
        self.options['handler'](response)

    def dismiss(self):
        self.options['modal']['ondismiss']()

    def fail(self, description="Your payment was declined by the bank"):
        self.handlers['payment.failed']({'error': {'code': "BAD_REQUEST_ERROR", 'description': description}})


class FakeLibrary(GatewayLibrary):
    def __init__(self, behaviour: Callable[[FakeWidget], None]):
        self.behaviour = behaviour
        self.widgets: List[FakeWidget] = []

    def create_checkout(self, options):
        widget = FakeWidget(options, self.behaviour)
        self.widgets.append(widget)
        return widget


def paying(payment_id="pay_123", **kwargs):
    return lambda widget: widget.pay(payment_id, **kwargs)


def dismissing(widget):
    widget.dismiss()


def failing(widget):
    widget.fail()


def waiting(event: asyncio.Event):
    """Leave the modal open until the test settles it"""
    return lambda widget: event.set()


def raising_on_open(widget):
    raise RuntimeError("Razorpay is not defined")


class CountingLoader(GatewayLibraryLoader):
    """GatewayLibraryLoader that counts real acquisitions"""

    def __init__(self, library: Optional[GatewayLibrary] = None, error: Optional[Exception] = None):
        self.acquisitions = 0
        self.library = library
        self.error = error
        super().__init__(self._fake_acquire)

    async def _fake_acquire(self):
        self.acquisitions += 1
        if self.error is not None:
            raise self.error
        return self.library


def broken_loader() -> CountingLoader:
    return CountingLoader(error=GatewayIntegrationError("Failed to load Razorpay script", "embedded"))


class RecordingPersister:
    """Stands in for OrderBackendClient"""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def create_order(self, payload, idempotency_key, auth_token=None):
        self.calls.append({'payload': payload, 'idempotency_key': idempotency_key, 'auth_token': auth_token})
        if self.error is not None:
            raise self.error
        number = len(self.calls)
        return {'_id': f"order_{number}", 'orderNumber': f"ORD-{1000 + number}"}


def make_machine(ui: ScriptedUI, loader: GatewayLibraryLoader, persister: RecordingPersister,
                 store=None, enable_cod: bool = True, **gateway_overrides) -> CheckoutStateMachine:
    gateway = GatewayAdapter(ui, loader=loader, gateway_config=gateway_config(**gateway_overrides))
    return CheckoutStateMachine(
        ui,
        gateway=gateway,
        persister=persister,
        store=store if store is not None else MemoryAttemptStore(),
        selector=PaymentMethodSelector(enable_cod=enable_cod)
    )


class FakeRedis:
    """Just enough of redis.Redis for RedisAttemptManager"""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    def delete(self, key):
        self.data.pop(key, None)

    def exists(self, key):
        return 1 if key in self.data else 0

    def scan_iter(self, pattern):
        return [key for key in list(self.data) if fnmatch.fnmatch(key, pattern)]


class FlakyRedis(FakeRedis):
    """FakeRedis whose listed operations lose the connection"""

    def __init__(self, failing=('delete',)):
        super().__init__()
        self.failing = set(failing)

    def _check(self, operation):
        if operation in self.failing:
            raise redis.exceptions.ConnectionError("Connection reset by peer")

    def get(self, key):
        self._check('get')
        return super().get(key)

    def delete(self, key):
        self._check('delete')
        super().delete(key)

    def exists(self, key):
        self._check('exists')
        return super().exists(key)

    def scan_iter(self, pattern):
        self._check('scan_iter')
        return super().scan_iter(pattern)
