"""Configuration management for the storefront checkout flow"""

import os
import sys
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from dotenv import load_dotenv
import logging

# Load environment variables
load_dotenv()


@dataclass
class APIConfig:
    """Order backend API configuration"""
    backend_endpoint: str
    timeout: float = 30.0
    debug_curl: bool = False

    @property
    def default_headers(self) -> Dict[str, str]:
        """Default headers for API requests"""
        return {
            "Content-Type": "application/json",
            "Accept": "application/json"
        }


@dataclass
class GatewayConfig:
    """Razorpay gateway configuration"""
    key_id: str = ""
    key_secret: Optional[str] = None  # Enables signature verification when set
    script_url: str = "https://checkout.razorpay.com/v1/checkout.js"
    hosted_page_url: str = "https://pages.razorpay.com/jaimaaruthi"
    upi_vpa: str = "jaimaaruthi@razorpay"
    merchant_name: str = "Jaimaaruthi Electrical Store"
    currency: str = "INR"
    theme_color: str = "#2874f0"
    logo_url: Optional[str] = "/logo192.png"
    secondary_strategies: List[str] = field(default_factory=lambda: ["hosted_page", "upi_intent"])
    callback_timeout: float = 900.0  # Seconds to wait for the checkout modal; 0 waits forever


@dataclass
class PaymentConfig:
    """Payment method toggles"""
    enable_cod_payments: bool = True


@dataclass
class StorageConfig:
    """Durable pending-attempt storage configuration"""
    store_type: str = "file"  # memory, file, redis
    store_path: str = "./checkout_attempts"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    ttl_hours: int = 72


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Config:
    """Main configuration class"""

    def __init__(self):
        self.api = APIConfig(
            backend_endpoint=os.getenv("BACKEND_ENDPOINT", "http://localhost:5000"),
            timeout=float(os.getenv("ORDER_API_TIMEOUT", "30")),
            debug_curl=os.getenv("DEBUG_CURL_LOGGING", "false").lower() == "true"
        )

        strategies = os.getenv("GATEWAY_SECONDARY_STRATEGIES", "hosted_page,upi_intent")
        self.gateway = GatewayConfig(
            key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
            script_url=os.getenv("GATEWAY_SCRIPT_URL", "https://checkout.razorpay.com/v1/checkout.js"),
            hosted_page_url=os.getenv("GATEWAY_HOSTED_PAGE_URL", "https://pages.razorpay.com/jaimaaruthi"),
            upi_vpa=os.getenv("GATEWAY_UPI_VPA", "jaimaaruthi@razorpay"),
            merchant_name=os.getenv("MERCHANT_NAME", "Jaimaaruthi Electrical Store"),
            currency=os.getenv("GATEWAY_CURRENCY", "INR"),
            theme_color=os.getenv("GATEWAY_THEME_COLOR", "#2874f0"),
            callback_timeout=float(os.getenv("GATEWAY_CALLBACK_TIMEOUT", "900")),
            secondary_strategies=[s.strip() for s in strategies.split(",") if s.strip()]
        )

        self.payment = PaymentConfig(
            enable_cod_payments=os.getenv("ENABLE_COD_PAYMENTS", "true").lower() == "true"
        )

        self.storage = StorageConfig(
            store_type=os.getenv("ATTEMPT_STORE", "file"),
            store_path=os.path.expanduser(os.getenv("ATTEMPT_STORE_PATH", "~/.storefront-checkout/attempts")),
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=int(os.getenv("REDIS_PORT", "6379")),
            redis_db=int(os.getenv("REDIS_DB", "0")),
            ttl_hours=int(os.getenv("ATTEMPT_TTL_HOURS", "72"))
        )

        self.logging = LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            file=os.getenv("LOG_FILE")
        )

        self._configure_logging()

    def _configure_logging(self):
        """Configure logging based on settings"""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(self.logging.format))
        root_logger.addHandler(console_handler)

        if self.logging.file:
            try:
                log_dir = os.path.dirname(self.logging.file)
                if log_dir and not os.path.exists(log_dir):
                    os.makedirs(log_dir, exist_ok=True)

                file_handler = logging.FileHandler(self.logging.file)
                file_handler.setLevel(log_level)
                file_handler.setFormatter(logging.Formatter(self.logging.format))
                root_logger.addHandler(file_handler)
            except (OSError, PermissionError) as e:
                logging.warning(f"Could not create log file {self.logging.file}: {e}")

    def validate(self) -> bool:
        """Validate configuration"""
        errors = []

        if not self.api.backend_endpoint:
            errors.append("BACKEND_ENDPOINT is required")
        if not self.gateway.key_id:
            errors.append("RAZORPAY_KEY_ID is required for online payments")
        if self.storage.store_type not in ("memory", "file", "redis"):
            errors.append(f"ATTEMPT_STORE must be memory, file or redis (got {self.storage.store_type})")
        unknown = [s for s in self.gateway.secondary_strategies if s not in ("hosted_page", "upi_intent")]
        if unknown:
            errors.append(f"Unknown secondary strategies: {', '.join(unknown)}")

        if errors:
            for error in errors:
                logging.error(f"Configuration error: {error}")
            return False

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "api": {
                "backend_endpoint": self.api.backend_endpoint,
                "timeout": self.api.timeout,
                "debug_curl": self.api.debug_curl
            },
            "gateway": {
                "key_id": self.gateway.key_id,
                "signature_verification": bool(self.gateway.key_secret),
                "script_url": self.gateway.script_url,
                "hosted_page_url": self.gateway.hosted_page_url,
                "upi_vpa": self.gateway.upi_vpa,
                "currency": self.gateway.currency,
                "secondary_strategies": self.gateway.secondary_strategies,
                "callback_timeout": self.gateway.callback_timeout
            },
            "payment": {
                "enable_cod": self.payment.enable_cod_payments
            },
            "storage": {
                "store_type": self.storage.store_type,
                "store_path": self.storage.store_path,
                "ttl_hours": self.storage.ttl_hours
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file
            }
        }


# Global configuration instance
config = Config()
