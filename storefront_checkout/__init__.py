"""Storefront checkout payment orchestration"""

__version__ = "1.0.0"
