"""
Protocol Package - checkout error taxonomy

This package contains:
- Error codes
- Checkout error hierarchy
- Exception to response conversion
"""

from .errors import (
    CheckoutError,
    ValidationError,
    StepTransitionError,
    UnsupportedPaymentMethod,
    CartUnavailable,
    InvalidAmount,
    GatewayIntegrationError,
    GatewayOutcomeFailure,
    UserCancellation,
    PersistenceError,
    AttemptStoreUnavailable,
    ErrorHandler,
    ErrorCode
)

__all__ = [
    'CheckoutError',
    'ValidationError',
    'StepTransitionError',
    'UnsupportedPaymentMethod',
    'CartUnavailable',
    'InvalidAmount',
    'GatewayIntegrationError',
    'GatewayOutcomeFailure',
    'UserCancellation',
    'PersistenceError',
    'AttemptStoreUnavailable',
    'ErrorHandler',
    'ErrorCode'
]
