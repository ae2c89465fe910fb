"""Logging utilities for the checkout flow"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional, Dict, Any


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger instance

    Args:
        name: Logger name (usually __name__)
        level: Optional log level override

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if level:
        log_level = getattr(logging, level.upper(), logging.INFO)
        logger.setLevel(log_level)

    return logger


def setup_checkout_logging(debug: bool = False, level: Optional[str] = None):
    """
    Setup logging for the checkout CLI

    All logging goes to stderr so prompts on stdout stay readable.

    Args:
        debug: Enable debug logging
        level: Explicit level name, falls back to LOG_LEVEL
    """
    log_level_str = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    log_level = log_level_map.get(log_level_str, logging.INFO)

    if debug:
        log_level = logging.DEBUG

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger


class CheckoutEventLogger:
    """Structured JSON logging of checkout state transitions"""

    def __init__(self, log_file: Optional[str] = None):
        self.log_file = log_file or os.getenv('CHECKOUT_EVENT_LOG')
        self.max_log_size = int(os.getenv('CHECKOUT_EVENT_LOG_MAX_SIZE', '2000'))

        self.logger = logging.getLogger('checkout_events')
        self.logger.setLevel(logging.DEBUG)

        if self.log_file and not self.logger.handlers:
            self._setup_file_handler()

    def _setup_file_handler(self):
        """Attach a file handler for the event log"""
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        try:
            log_dir = os.path.dirname(self.log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)
        except OSError as e:
            self.logger.error(f"Failed to setup checkout event log at {self.log_file}: {e}")

    def _truncate(self, data: Any) -> Any:
        json_str = json.dumps(data, default=str)
        if len(json_str) <= self.max_log_size:
            return data
        return {"_truncated": True, "_size": len(json_str), "_data": json_str[:self.max_log_size]}

    def log_transition(self, attempt_id: str, event: str, from_step: str, to_step: str,
                       accepted: bool, details: Optional[Dict[str, Any]] = None):
        """Log one state machine transition"""
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "event_type": "checkout_transition",
            "attempt_id": attempt_id,
            "event": event,
            "from": from_step,
            "to": to_step,
            "accepted": accepted,
        }
        if details:
            log_entry["details"] = self._truncate(details)

        self.logger.info(f"[TRANSITION] {json.dumps(log_entry, separators=(',', ':'), default=str)}")

    def log_gateway_outcome(self, attempt_id: str, outcome: Dict[str, Any]):
        """Log a resolved gateway outcome"""
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "event_type": "gateway_outcome",
            "attempt_id": attempt_id,
            "outcome": self._truncate(outcome),
        }
        self.logger.info(f"[GATEWAY] {json.dumps(log_entry, separators=(',', ':'), default=str)}")


_checkout_event_logger = None

def get_checkout_event_logger() -> CheckoutEventLogger:
    """Get global checkout event logger instance"""
    global _checkout_event_logger
    if _checkout_event_logger is None:
        _checkout_event_logger = CheckoutEventLogger()
    return _checkout_event_logger
