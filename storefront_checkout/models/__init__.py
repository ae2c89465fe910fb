"""Data models for the storefront checkout"""

from .session import (
    CheckoutSession,
    CheckoutStep,
    CustomerDetails,
    LineItem,
    Order,
    OrderSummary,
    OutcomeView,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    TERMINAL_STEPS,
    new_attempt_id
)

__all__ = [
    'CheckoutSession',
    'CheckoutStep',
    'CustomerDetails',
    'LineItem',
    'Order',
    'OrderSummary',
    'OutcomeView',
    'PaymentMethod',
    'PaymentRecord',
    'PaymentStatus',
    'TERMINAL_STEPS',
    'new_attempt_id'
]
