"""
Checkout Error Handling

Error taxonomy for the checkout flow. Every error carries a numeric code,
a user-presentable message and optional structured data.
"""

from typing import Optional, Any, Dict
from enum import IntEnum


class ErrorCode(IntEnum):
    """Checkout error codes"""

    # Input errors - recoverable, never reach the network
    VALIDATION_ERROR = 1001        # Address fields failed validation
    STEP_TRANSITION = 1002         # Event not allowed in the current step
    UNSUPPORTED_METHOD = 1003      # Payment method declared but not wired
    CART_UNAVAILABLE = 1004        # Checkout entered without cart state

    # Gateway errors
    INVALID_AMOUNT = 2001          # Amount <= 0, blocks any gateway attempt
    GATEWAY_INTEGRATION = 2002     # Library/widget failed, triggers fallback
    GATEWAY_OUTCOME_FAILURE = 2003 # Gateway reported a payment failure
    USER_CANCELLATION = 2004       # User dismissed the checkout

    # Persistence errors
    PERSISTENCE_ERROR = 3001       # Order creation API failed
    ATTEMPT_STORE_UNAVAILABLE = 3002  # Pending attempt could not be recorded


class CheckoutError(Exception):
    """Base class for all checkout errors"""

    def __init__(
        self,
        code: int,
        message: str,
        data: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize checkout error

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            data: Optional additional error data
        """
        self.code = code
        self.message = message
        self.data = data or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a serializable dict"""
        error_dict = {
            "code": int(self.code),
            "type": type(self).__name__,
            "message": self.message
        }
        if self.data:
            error_dict["data"] = self.data
        return error_dict


class ValidationError(CheckoutError):
    """One or more address fields are invalid"""

    def __init__(self, errors: Dict[str, str]):
        lines = "\n".join(f"• {message}" for message in errors.values())
        super().__init__(
            ErrorCode.VALIDATION_ERROR,
            f"Please fix the following errors:\n{lines}",
            {"errors": dict(errors)}
        )
        self.errors = dict(errors)


class StepTransitionError(CheckoutError):
    """Event is not allowed from the current checkout step"""

    def __init__(self, current: str, event: str, reason: Optional[str] = None):
        message = f"Cannot {event} while checkout is at the {current} step"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            ErrorCode.STEP_TRANSITION,
            message,
            {"current_step": current, "event": event}
        )


class UnsupportedPaymentMethod(CheckoutError):
    """Payment method is declared but not yet supported"""

    def __init__(self, method: str):
        super().__init__(
            ErrorCode.UNSUPPORTED_METHOD,
            f"Payment method '{method}' is not yet supported",
            {"method": method}
        )


class CartUnavailable(CheckoutError):
    """Checkout was entered without cart contents"""

    def __init__(self, message: str = "No cart found for checkout. Please return to your cart."):
        super().__init__(ErrorCode.CART_UNAVAILABLE, message)


class InvalidAmount(CheckoutError):
    """Order amount is not a positive number"""

    def __init__(self, amount: Any):
        super().__init__(
            ErrorCode.INVALID_AMOUNT,
            "Invalid order amount. Please try again.",
            {"amount": amount}
        )


class GatewayIntegrationError(CheckoutError):
    """The gateway integration could not be attempted"""

    def __init__(self, message: str, strategy: Optional[str] = None):
        super().__init__(
            ErrorCode.GATEWAY_INTEGRATION,
            message,
            {"strategy": strategy} if strategy else None
        )
        self.strategy = strategy


class GatewayOutcomeFailure(CheckoutError):
    """The gateway reported a failed payment"""

    def __init__(self, reason: str, error: Optional[Dict[str, Any]] = None):
        description = None
        if isinstance(error, dict):
            description = error.get("description") or error.get("reason")
        super().__init__(
            ErrorCode.GATEWAY_OUTCOME_FAILURE,
            f"Payment failed: {description or reason}",
            {"reason": reason, "error": error or {}}
        )
        self.reason = reason
        self.error = error or {}


class UserCancellation(CheckoutError):
    """The user dismissed the payment checkout"""

    def __init__(self, message: str = "Payment cancelled"):
        super().__init__(ErrorCode.USER_CANCELLATION, message)


class PersistenceError(CheckoutError):
    """The order creation API rejected or did not answer the request"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 payload: Optional[Any] = None):
        data: Dict[str, Any] = {}
        if status_code is not None:
            data["status_code"] = status_code
        if payload is not None:
            data["payload"] = payload
        super().__init__(ErrorCode.PERSISTENCE_ERROR, message, data)
        self.status_code = status_code
        self.payload = payload


class AttemptStoreUnavailable(CheckoutError):
    """The pending attempt record could not be written, so no charge is started"""

    def __init__(self, attempt_id: str, message: str = "Pending attempt could not be recorded"):
        super().__init__(ErrorCode.ATTEMPT_STORE_UNAVAILABLE, message, {"attempt_id": attempt_id})


class ErrorHandler:
    """Utility class for handling and formatting errors"""

    @staticmethod
    def handle_exception(e: Exception) -> Dict[str, Any]:
        """
        Convert any exception to an error response

        Args:
            e: Exception to handle

        Returns:
            Response dict with success flag and error details
        """
        if isinstance(e, CheckoutError):
            return {"success": False, "message": e.message, "error": e.to_dict()}

        return {
            "success": False,
            "message": f"Internal error: {e}",
            "error": {
                "code": 5000,
                "type": type(e).__name__,
                "message": str(e)
            }
        }
