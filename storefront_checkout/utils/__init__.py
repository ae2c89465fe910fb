"""Utility modules for the checkout flow"""

from .logger import (
    get_logger,
    setup_checkout_logging,
    CheckoutEventLogger,
    get_checkout_event_logger
)

__all__ = [
    "get_logger",
    "setup_checkout_logging",
    "CheckoutEventLogger",
    "get_checkout_event_logger"
]
