"""
Razorpay gateway adapter

Obtains a payment outcome for an amount by trying strategies in a fixed order:

1. Embedded checkout - the Razorpay client library opens a modal and reports
   success, dismissal or a payment failure through callbacks.
2. Hosted payment page - opened in a new browser context.
3. UPI intent URI - last resort.

Secondary strategies are only used when the embedded checkout cannot be
attempted at all (library load failure, error before the modal opens). A user
dismissing the modal is final. Secondary strategies cannot observe completion,
so a manually confirmed payment is only ever pending verification.
"""

import asyncio
import hashlib
import hmac
import inspect
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, List, Optional, Any, Callable, Awaitable
from urllib.parse import urlencode, quote

import httpx

from ..config import config, GatewayConfig
from ..interaction import CheckoutUI
from ..protocol.errors import (
    GatewayIntegrationError,
    GatewayOutcomeFailure,
    InvalidAmount,
    UserCancellation
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class OutcomeKind(Enum):
    """Resolution of one gateway attempt"""
    SUCCESS = "success"
    PENDING = "pending"        # Payment believed likely, not proven
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureReason:
    """Reason codes attached to gateway outcomes"""
    PAYMENT_FAILED = "payment_failed"
    BLOCKED = "blocked"
    DECLINED = "declined"
    EXHAUSTED = "exhausted"
    GATEWAY_ERROR = "gateway_error"
    USER_DISMISSED = "user_dismissed"
    MANUAL_CONFIRMATION = "manual_confirmation"
    UNVERIFIED_CALLBACK = "unverified_callback"
    SIGNATURE_MISMATCH = "signature_mismatch"
    CALLBACK_TIMEOUT = "callback_timeout"


@dataclass
class ChargeRequest:
    """Metadata for a charge besides the amount"""
    attempt_id: str
    description: str = ""
    customer_name: str = ""
    customer_email: str = ""
    customer_contact: str = ""
    notes: Dict[str, Any] = field(default_factory=dict)
    gateway_order_id: Optional[str] = None


@dataclass
class GatewayOutcome:
    """Result of GatewayAdapter.charge"""
    kind: OutcomeKind
    strategy: str
    reason: Optional[str] = None
    message: str = ""
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    signature: Optional[str] = None
    payment_link: Optional[str] = None
    error: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'strategy': self.strategy,
            'reason': self.reason,
            'message': self.message,
            'payment_id': self.payment_id,
            'order_id': self.order_id,
            'payment_link': self.payment_link,
            'error': self.error
        }


def to_smallest_unit(amount: float) -> int:
    """Rupees to paise, rounding half up"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def validate_amount(amount: Any) -> float:
    """
    Reject anything that is not a positive finite number

    Raises:
        InvalidAmount
    """
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        raise InvalidAmount(amount)
    value = float(amount)
    if math.isnan(value) or math.isinf(value) or value <= 0:
        raise InvalidAmount(amount)
    return value


def verify_payment_signature(order_id: str, payment_id: str, signature: str, key_secret: str) -> bool:
    """Razorpay checkout signature: HMAC-SHA256 of 'order_id|payment_id'"""
    expected = hmac.new(
        key_secret.encode('utf-8'),
        f"{order_id}|{payment_id}".encode('utf-8'),
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


# ================================
# CLIENT LIBRARY
# ================================

class CheckoutWidget(ABC):
    """An embedded checkout instance created by the client library"""

    @abstractmethod
    def on(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Subscribe to a widget event such as 'payment.failed'"""

    @abstractmethod
    def open(self):
        """Open the checkout modal; may return an awaitable"""


class GatewayLibrary(ABC):
    """Handle to the acquired gateway client library"""

    @abstractmethod
    def create_checkout(self, options: Dict[str, Any]) -> CheckoutWidget:
        """Construct a checkout widget from Razorpay-style options"""


CheckoutHostFactory = Callable[[str], GatewayLibrary]

_checkout_host_factory: Optional[CheckoutHostFactory] = None


def register_checkout_host(factory: Optional[CheckoutHostFactory]) -> None:
    """Register the UI host that can run the downloaded checkout script"""
    global _checkout_host_factory
    _checkout_host_factory = factory


async def fetch_checkout_script(script_url: Optional[str] = None, timeout: float = 15.0) -> GatewayLibrary:
    """
    Default acquisition: download the checkout script and bind it to the registered host

    Raises:
        GatewayIntegrationError: script unreachable or no host able to run it
    """
    script_url = script_url or config.gateway.script_url
    logger.info(f"[GatewayLibrary] Loading checkout script from {script_url}")
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
            response = await client.get(script_url)
    except httpx.HTTPError as e:
        raise GatewayIntegrationError(f"Failed to load Razorpay script: {e}", "embedded") from e

    if response.status_code != 200 or not response.text:
        raise GatewayIntegrationError(
            f"Failed to load Razorpay script: HTTP {response.status_code}", "embedded"
        )

    if _checkout_host_factory is None:
        raise GatewayIntegrationError("No embedded checkout host is registered", "embedded")

    return _checkout_host_factory(response.text)


class GatewayLibraryLoader:
    """
    Lazily acquires the gateway client library once per process

    The first caller performs the acquisition; every later caller receives
    the cached handle, or the cached failure.
    """

    def __init__(self, acquire: Optional[Callable[[], Awaitable[GatewayLibrary]]] = None):
        self._acquire = acquire or fetch_checkout_script
        self._handle: Optional[GatewayLibrary] = None
        self._error: Optional[GatewayIntegrationError] = None
        self._attempted = False
        self._lock = asyncio.Lock()

    @property
    def attempted(self) -> bool:
        return self._attempted

    @property
    def acquired(self) -> bool:
        return self._handle is not None

    async def acquire(self) -> GatewayLibrary:
        """
        Raises:
            GatewayIntegrationError: the single acquisition attempt failed
        """
        async with self._lock:
            if not self._attempted:
                self._attempted = True
                try:
                    self._handle = await self._acquire()
                    logger.info("[GatewayLibrary] Client library acquired")
                except GatewayIntegrationError as e:
                    self._error = e
                except Exception as e:
                    self._error = GatewayIntegrationError(f"Failed to load Razorpay script: {e}", "embedded")

                if self._error is not None:
                    logger.warning(f"[GatewayLibrary] Acquisition failed: {self._error.message}")

        if self._handle is None:
            raise self._error
        return self._handle

    def reset(self) -> None:
        """Forget the cached handle or failure"""
        self._handle = None
        self._error = None
        self._attempted = False


_library_loader: Optional[GatewayLibraryLoader] = None


def get_gateway_library_loader() -> GatewayLibraryLoader:
    """Get the process-wide GatewayLibraryLoader"""
    global _library_loader
    if _library_loader is None:
        _library_loader = GatewayLibraryLoader()
    return _library_loader


# ================================
# STRATEGIES
# ================================

class PaymentStrategy(ABC):
    """One way of collecting a payment"""

    name = "strategy"

    @abstractmethod
    async def attempt(self, amount: float, request: ChargeRequest, ui: CheckoutUI) -> GatewayOutcome:
        """
        Raises:
            GatewayIntegrationError: the strategy could not be attempted
        """


class EmbeddedCheckoutStrategy(PaymentStrategy):
    """Razorpay embedded checkout modal"""

    name = "embedded"

    def __init__(self, loader: GatewayLibraryLoader, gateway_config: GatewayConfig):
        self.loader = loader
        self.gateway = gateway_config

    def build_options(self, amount: float, request: ChargeRequest,
                      handler: Callable, on_dismiss: Callable) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            'key': self.gateway.key_id,
            'amount': to_smallest_unit(amount),
            'currency': self.gateway.currency,
            'name': self.gateway.merchant_name,
            'description': request.description or f"Order Payment - Total: ₹{amount:.2f}",
            'handler': handler,
            'prefill': {
                'name': request.customer_name,
                'email': request.customer_email,
                'contact': request.customer_contact
            },
            'notes': {**request.notes, 'attempt_id': request.attempt_id, 'order_total': amount},
            'theme': {'color': self.gateway.theme_color},
            'modal': {'ondismiss': on_dismiss}
        }
        if self.gateway.logo_url:
            options['image'] = self.gateway.logo_url
        if request.gateway_order_id:
            options['order_id'] = request.gateway_order_id
        return options

    async def attempt(self, amount: float, request: ChargeRequest, ui: CheckoutUI) -> GatewayOutcome:
        library = await self.loader.acquire()

        loop = asyncio.get_running_loop()
        settled: asyncio.Future = loop.create_future()

        def _settle(kind: str, payload: Any) -> None:
            if not settled.done():
                settled.set_result((kind, payload))

        def settle(kind: str, payload: Any = None) -> None:
            # Widget hosts may call back from their own thread
            loop.call_soon_threadsafe(_settle, kind, payload)

        options = self.build_options(
            amount,
            request,
            handler=lambda response: settle('success', response),
            on_dismiss=lambda *args: settle('dismiss')
        )

        try:
            widget = library.create_checkout(options)
            widget.on('payment.failed', lambda response: settle('failed', response))
            logger.info(f"[Gateway] Opening Razorpay checkout for {options['amount']} paise ({request.attempt_id})")
            opened = widget.open()
            if inspect.isawaitable(opened):
                await opened
        except GatewayIntegrationError:
            raise
        except Exception as e:
            raise GatewayIntegrationError(f"Error initializing Razorpay checkout: {e}", self.name) from e

        try:
            kind, payload = await asyncio.wait_for(settled, self.gateway.callback_timeout or None)
        except asyncio.TimeoutError:
            # The user may still have paid inside the modal
            logger.warning(f"[Gateway] No checkout callback within {self.gateway.callback_timeout}s ({request.attempt_id})")
            return GatewayOutcome(
                kind=OutcomeKind.PENDING,
                strategy=self.name,
                reason=FailureReason.CALLBACK_TIMEOUT,
                message="No response from the payment window; awaiting verification",
                order_id=request.gateway_order_id
            )
        return self._resolve(kind, payload, request)

    def _resolve(self, kind: str, payload: Any, request: ChargeRequest) -> GatewayOutcome:
        if kind == 'dismiss':
            logger.info(f"[Gateway] Checkout dismissed by user ({request.attempt_id})")
            return GatewayOutcome(
                kind=OutcomeKind.CANCELLED,
                strategy=self.name,
                reason=FailureReason.USER_DISMISSED,
                message=UserCancellation().message
            )

        payload = payload if isinstance(payload, dict) else {}

        if kind == 'failed':
            error = payload.get('error', payload)
            failure = GatewayOutcomeFailure(FailureReason.PAYMENT_FAILED, error)
            logger.warning(f"[Gateway] Payment failed ({request.attempt_id}): {failure.message}")
            metadata = error.get('metadata', {}) if isinstance(error, dict) else {}
            return GatewayOutcome(
                kind=OutcomeKind.FAILED,
                strategy=self.name,
                reason=FailureReason.PAYMENT_FAILED,
                message=failure.message,
                payment_id=metadata.get('payment_id'),
                order_id=metadata.get('order_id'),
                error=failure.error
            )

        payment_id = payload.get('razorpay_payment_id')
        order_id = payload.get('razorpay_order_id') or request.gateway_order_id
        signature = payload.get('razorpay_signature')

        if not payment_id:
            logger.warning(f"[Gateway] Success callback without payment id ({request.attempt_id})")
            return GatewayOutcome(
                kind=OutcomeKind.PENDING,
                strategy=self.name,
                reason=FailureReason.UNVERIFIED_CALLBACK,
                message="Payment reported without a payment id; awaiting verification",
                order_id=order_id,
                signature=signature
            )

        if self.gateway.key_secret and order_id and signature:
            if not verify_payment_signature(order_id, payment_id, signature, self.gateway.key_secret):
                logger.error(f"[Gateway] Signature mismatch for payment {payment_id}")
                return GatewayOutcome(
                    kind=OutcomeKind.PENDING,
                    strategy=self.name,
                    reason=FailureReason.SIGNATURE_MISMATCH,
                    message="Payment signature could not be verified; awaiting verification",
                    payment_id=payment_id,
                    order_id=order_id,
                    signature=signature
                )

        logger.info(f"[Gateway] Payment successful: {payment_id}")
        return GatewayOutcome(
            kind=OutcomeKind.SUCCESS,
            strategy=self.name,
            message="Payment completed successfully!",
            payment_id=payment_id,
            order_id=order_id,
            signature=signature
        )


class ManualConfirmationStrategy(PaymentStrategy):
    """Out-of-process payment the adapter can only learn about from the user"""

    def __init__(self, gateway_config: GatewayConfig):
        self.gateway = gateway_config

    @abstractmethod
    def build_url(self, amount: float, request: ChargeRequest) -> str:
        """Link the user pays through"""

    def confirmation_prompt(self, amount: float) -> str:
        return (
            f"Payment Verification\n\n"
            f"Have you successfully completed the payment of ₹{amount:.2f} on Razorpay?\n\n"
            f"Answer yes only if the payment was processed and money was deducted.\n"
            f"The bill is generated after the merchant confirms payment receipt."
        )

    async def attempt(self, amount: float, request: ChargeRequest, ui: CheckoutUI) -> GatewayOutcome:
        url = self.build_url(amount, request)
        logger.info(f"[Gateway] Opening {self.name} payment for {request.attempt_id}")

        if not await ui.open_window(url):
            logger.warning(f"[Gateway] {self.name} window was blocked ({request.attempt_id})")
            return GatewayOutcome(
                kind=OutcomeKind.FAILED,
                strategy=self.name,
                reason=FailureReason.BLOCKED,
                message="Your browser blocked the payment window. Allow popups and try again.",
                payment_link=url
            )

        if await ui.confirm(self.confirmation_prompt(amount)):
            logger.info(f"[Gateway] {self.name} payment confirmed by user ({request.attempt_id})")
            return GatewayOutcome(
                kind=OutcomeKind.PENDING,
                strategy=self.name,
                reason=FailureReason.MANUAL_CONFIRMATION,
                message="Order Created - Payment Under Verification",
                order_id=request.gateway_order_id,
                payment_link=url
            )

        logger.info(f"[Gateway] {self.name} payment not confirmed ({request.attempt_id})")
        return GatewayOutcome(
            kind=OutcomeKind.FAILED,
            strategy=self.name,
            reason=FailureReason.DECLINED,
            message="Payment was cancelled or failed. You can try again.",
            payment_link=url
        )


class HostedPageStrategy(ManualConfirmationStrategy):
    """Razorpay hosted payment page"""

    name = "hosted_page"

    def build_url(self, amount: float, request: ChargeRequest) -> str:
        query = urlencode({'amount': f"{amount:.2f}", 'reference': request.attempt_id})
        return f"{self.gateway.hosted_page_url}?{query}"


class UpiIntentStrategy(ManualConfirmationStrategy):
    """Raw UPI intent URI"""

    name = "upi_intent"

    def build_url(self, amount: float, request: ChargeRequest) -> str:
        query = urlencode({
            'pa': self.gateway.upi_vpa,
            'pn': self.gateway.merchant_name,
            'am': f"{amount:.2f}",
            'cu': self.gateway.currency,
            'tn': f"Order {request.attempt_id}"
        }, quote_via=quote)
        return f"upi://pay?{query}"


SECONDARY_STRATEGIES = {
    HostedPageStrategy.name: HostedPageStrategy,
    UpiIntentStrategy.name: UpiIntentStrategy,
}


# ================================
# ADAPTER
# ================================

class GatewayAdapter:
    """Drives the payment gateway with fallback on integration failure"""

    def __init__(
        self,
        ui: CheckoutUI,
        loader: Optional[GatewayLibraryLoader] = None,
        gateway_config: Optional[GatewayConfig] = None,
        secondary_strategies: Optional[List[PaymentStrategy]] = None
    ):
        """
        Args:
            ui: Confirmation/window capability
            loader: Client library loader (defaults to the process-wide one)
            gateway_config: Gateway settings (defaults to config.gateway)
            secondary_strategies: Override of the configured fallback order
        """
        self.ui = ui
        self.gateway = gateway_config or config.gateway
        self.loader = loader or get_gateway_library_loader()
        self.embedded = EmbeddedCheckoutStrategy(self.loader, self.gateway)

        if secondary_strategies is None:
            secondary_strategies = [
                SECONDARY_STRATEGIES[name](self.gateway)
                for name in self.gateway.secondary_strategies
                if name in SECONDARY_STRATEGIES
            ]
        self.secondary_strategies = secondary_strategies

    async def charge(self, amount: Any, request: ChargeRequest) -> GatewayOutcome:
        """
        Obtain a payment outcome for the amount

        Raises:
            InvalidAmount: before any strategy or library load when amount <= 0
        """
        amount = validate_amount(amount)

        try:
            return await self.embedded.attempt(amount, request, self.ui)
        except GatewayIntegrationError as e:
            logger.warning(f"[Gateway] Embedded checkout unavailable for {request.attempt_id}: {e.message}")
            return await self._fallback(amount, request, e)

    async def _fallback(self, amount: float, request: ChargeRequest,
                        cause: GatewayIntegrationError) -> GatewayOutcome:
        if not self.secondary_strategies:
            return GatewayOutcome(
                kind=OutcomeKind.FAILED,
                strategy=self.embedded.name,
                reason=FailureReason.EXHAUSTED,
                message="Payment gateway is unavailable. Please try again later.",
                error=cause.to_dict()
            )

        try_alternative = await self.ui.confirm(
            "Payment Gateway Issue\n\n"
            "The primary payment method encountered an issue.\n"
            "Would you like to try alternative payment options?"
        )
        if not try_alternative:
            return GatewayOutcome(
                kind=OutcomeKind.FAILED,
                strategy=self.embedded.name,
                reason=FailureReason.DECLINED,
                message="Payment cancelled. You can try again later.",
                error=cause.to_dict()
            )

        outcome = None
        for strategy in self.secondary_strategies:
            outcome = await strategy.attempt(amount, request, self.ui)
            if outcome.kind is OutcomeKind.FAILED and outcome.reason == FailureReason.BLOCKED:
                continue
            return outcome

        return outcome
