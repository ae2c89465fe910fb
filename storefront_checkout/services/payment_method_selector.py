"""Payment method selection for the checkout payment step"""

from typing import Dict, List, Optional, Any, Iterable

from ..config import config
from ..models.session import PaymentMethod
from ..protocol.errors import UnsupportedPaymentMethod
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Methods that resolve through the payment gateway
GATEWAY_BACKED_METHODS = frozenset({PaymentMethod.GATEWAY})

# Declared in the catalogue but not wired to a gateway adapter yet
UNWIRED_METHODS = frozenset({PaymentMethod.DIRECT_UPI, PaymentMethod.CARD})

_DESCRIPTIONS = {
    PaymentMethod.GATEWAY: "Secure payments with Cards, UPI, Net Banking & Wallets via Razorpay",
    PaymentMethod.DIRECT_UPI: "Pay directly from any UPI app",
    PaymentMethod.CARD: "Visa, Mastercard, RuPay",
    PaymentMethod.CASH_ON_DELIVERY: "Pay when your order is delivered",
}


class PaymentMethodSelector:
    """Rules for choosing among the closed set of payment methods; the choice lives on the session"""

    def __init__(self, enable_cod: Optional[bool] = None,
                 available: Optional[Iterable[PaymentMethod]] = None):
        """
        Args:
            enable_cod: Offer cash on delivery (defaults to ENABLE_COD_PAYMENTS)
            available: Override of the offered methods
        """
        if enable_cod is None:
            enable_cod = config.payment.enable_cod_payments

        methods = list(available) if available is not None else list(PaymentMethod)
        if not enable_cod:
            methods = [m for m in methods if m is not PaymentMethod.CASH_ON_DELIVERY]

        self._available = methods

    def is_gateway_backed(self, method: Any) -> bool:
        """True only for methods that need the payment gateway to resolve"""
        return PaymentMethod.parse(method) in GATEWAY_BACKED_METHODS

    def is_supported(self, method: Any) -> bool:
        method = PaymentMethod.parse(method)
        return method in self._available and method not in UNWIRED_METHODS

    def select(self, method: Any) -> PaymentMethod:
        """
        Check a chosen payment method and return it parsed

        Raises:
            UnsupportedPaymentMethod: for declared-but-unwired or disabled methods
            ValueError: for values outside the closed set
        """
        method = PaymentMethod.parse(method)
        if not self.is_supported(method):
            logger.warning(f"[PaymentMethod] Rejected unsupported method: {method.value}")
            raise UnsupportedPaymentMethod(method.value)

        logger.info(f"[PaymentMethod] Selected: {method.value}")
        return method

    def available_methods(self) -> List[Dict[str, Any]]:
        """Display catalogue of the offered methods"""
        return [
            {
                "method": method.value,
                "display_name": method.label,
                "description": _DESCRIPTIONS[method],
                "gateway_backed": method in GATEWAY_BACKED_METHODS,
                "supported": method not in UNWIRED_METHODS,
            }
            for method in self._available
        ]
