"""Checkout services"""

from .address_validator import AddressValidator, ValidationResult, format_errors
from .attempt_store import (
    AttemptStatus,
    PendingAttempt,
    PendingAttemptStore,
    MemoryAttemptStore,
    FileAttemptStore,
    RedisAttemptStore,
    get_attempt_store
)
from .checkout_state_machine import (
    CheckoutStateMachine,
    TransitionResult,
    SubmitAddress,
    SelectPaymentMethod,
    ContinueToSummary,
    GoBack,
    PlaceOrder,
    Retry,
    Abandon
)
from .gateway_adapter import (
    ChargeRequest,
    GatewayAdapter,
    GatewayLibrary,
    GatewayLibraryLoader,
    GatewayOutcome,
    CheckoutWidget,
    FailureReason,
    OutcomeKind,
    get_gateway_library_loader,
    register_checkout_host
)
from .payment_method_selector import PaymentMethodSelector
from .reconciliation_service import ReconciliationService

__all__ = [
    'AddressValidator',
    'ValidationResult',
    'format_errors',
    'AttemptStatus',
    'PendingAttempt',
    'PendingAttemptStore',
    'MemoryAttemptStore',
    'FileAttemptStore',
    'RedisAttemptStore',
    'get_attempt_store',
    'CheckoutStateMachine',
    'TransitionResult',
    'SubmitAddress',
    'SelectPaymentMethod',
    'ContinueToSummary',
    'GoBack',
    'PlaceOrder',
    'Retry',
    'Abandon',
    'ChargeRequest',
    'GatewayAdapter',
    'GatewayLibrary',
    'GatewayLibraryLoader',
    'GatewayOutcome',
    'CheckoutWidget',
    'FailureReason',
    'OutcomeKind',
    'get_gateway_library_loader',
    'register_checkout_host',
    'PaymentMethodSelector',
    'ReconciliationService'
]
