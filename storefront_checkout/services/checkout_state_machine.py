"""
Checkout state machine

Owns one CheckoutSession and moves it through

    ADDRESS -> PAYMENT_METHOD -> SUMMARY -> COMPLETED | PENDING_VERIFICATION | FAILED | CANCELLED

Every user action is an event handed to dispatch(). Gateway and persistence
errors are caught here and turned into terminal steps with user-facing
messages; they never escape once a payment attempt has started.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union

from ..interaction import CheckoutUI
from ..models.session import (
    CheckoutSession,
    CheckoutStep,
    LineItem,
    OutcomeView,
    PaymentRecord,
    PaymentStatus,
    new_attempt_id
)
from ..order_backend_client import OrderBackendClient, get_order_backend_client
from ..protocol.errors import (
    AttemptStoreUnavailable,
    CartUnavailable,
    CheckoutError,
    GatewayOutcomeFailure,
    InvalidAmount,
    PersistenceError,
    StepTransitionError,
    UnsupportedPaymentMethod,
    ValidationError
)
from ..utils.logger import get_logger, get_checkout_event_logger, CheckoutEventLogger
from .address_validator import AddressValidator, format_errors
from .attempt_store import AttemptStatus, PendingAttempt, PendingAttemptStore, get_attempt_store
from .gateway_adapter import (
    ChargeRequest,
    FailureReason,
    GatewayAdapter,
    GatewayOutcome,
    OutcomeKind,
    validate_amount
)
from .payment_method_selector import PaymentMethodSelector

logger = get_logger(__name__)

PENDING_VERIFICATION_MESSAGE = (
    "Your order has been created. Payment verification is in progress. "
    "The bill will be generated once the merchant confirms payment receipt."
)

CANNOT_START_PAYMENT_MESSAGE = (
    "We cannot start the payment safely right now. "
    "No money has been taken. Please try again in a moment."
)

MONEY_MOVED = (PaymentStatus.COMPLETED, PaymentStatus.PENDING_VERIFICATION)


# ================================
# EVENTS
# ================================

@dataclass
class SubmitAddress:
    fields: Dict[str, Any]


@dataclass
class SelectPaymentMethod:
    method: Any


@dataclass
class ContinueToSummary:
    pass


@dataclass
class GoBack:
    pass


@dataclass
class PlaceOrder:
    pass


@dataclass
class Retry:
    pass


@dataclass
class Abandon:
    pass


CheckoutEvent = Union[SubmitAddress, SelectPaymentMethod, ContinueToSummary,
                      GoBack, PlaceOrder, Retry, Abandon]


@dataclass
class TransitionResult:
    """What happened to a dispatched event"""
    session: CheckoutSession
    accepted: bool
    message: str = ""
    errors: Dict[str, str] = field(default_factory=dict)
    outcome: Optional[OutcomeView] = None
    ignored: bool = False

    @property
    def step(self) -> CheckoutStep:
        return self.session.current_step

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accepted': self.accepted,
            'ignored': self.ignored,
            'step': self.step.value,
            'message': self.message,
            'errors': self.errors,
            'outcome': self.outcome.to_navigation_state() if self.outcome else None
        }


class CheckoutStateMachine:
    """Drives checkout sessions through their steps"""

    def __init__(
        self,
        ui: CheckoutUI,
        gateway: Optional[GatewayAdapter] = None,
        persister: Optional[OrderBackendClient] = None,
        store: Optional[PendingAttemptStore] = None,
        validator: Optional[AddressValidator] = None,
        selector: Optional[PaymentMethodSelector] = None,
        event_logger: Optional[CheckoutEventLogger] = None
    ):
        """
        Args:
            ui: Confirmation/window capability shared with the gateway adapter
            gateway: Payment gateway adapter
            persister: Order creation client
            store: Durable pending-attempt store
            validator: Delivery address validator
            selector: Payment method rules
            event_logger: Structured transition log
        """
        self.ui = ui
        self.gateway = gateway or GatewayAdapter(ui)
        self.persister = persister or get_order_backend_client()
        self.store = store or get_attempt_store()
        self.validator = validator or AddressValidator()
        self.selector = selector or PaymentMethodSelector()
        self.event_logger = event_logger or get_checkout_event_logger()

        self._handlers = {
            SubmitAddress: self._submit_address,
            SelectPaymentMethod: self._select_payment_method,
            ContinueToSummary: self._continue_to_summary,
            GoBack: self._go_back,
            PlaceOrder: self._place_order,
            Retry: self._retry,
            Abandon: self._abandon,
        }

    def start(self, items: List[Any], order_total: Optional[float] = None,
              auth_token: Optional[str] = None, account_email: Optional[str] = None) -> CheckoutSession:
        """
        Begin a checkout for the handed-over cart

        Raises:
            CartUnavailable: no items were handed over
        """
        if not items:
            raise CartUnavailable()

        line_items = [item if isinstance(item, LineItem) else LineItem.from_dict(item) for item in items]
        if order_total is None:
            order_total = sum(item.subtotal for item in line_items)

        session = CheckoutSession(
            items=line_items,
            order_total=order_total,
            auth_token=auth_token,
            account_email=account_email
        )
        session.add_to_history('start', {'items': len(line_items), 'total': order_total})
        logger.info(f"[Checkout] Started {session.attempt_id} with {len(line_items)} item(s), total ₹{order_total}")
        return session

    def can_enter_summary(self, session: CheckoutSession) -> bool:
        """Summary requires a validated address and a selected method"""
        return session.address_valid and session.method_selected

    async def dispatch(self, session: CheckoutSession, event: CheckoutEvent) -> TransitionResult:
        """Apply one event to the session"""
        event_name = type(event).__name__
        from_step = session.current_step

        if session.loading and not isinstance(event, Abandon):
            logger.info(f"[Checkout] Ignoring {event_name} while an order placement is in flight")
            return TransitionResult(session=session, accepted=False, ignored=True,
                                    message="Order placement is already in progress")

        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unknown checkout event: {event_name}")

        try:
            result = await handler(session, event)
        except StepTransitionError as e:
            result = TransitionResult(session=session, accepted=False, message=e.message)

        if result.accepted:
            session.add_to_history(event_name, {'from': from_step.value, 'to': session.current_step.value})

        self.event_logger.log_transition(
            session.attempt_id,
            event_name,
            from_step.value,
            session.current_step.value,
            result.accepted,
            {'message': result.message, 'errors': result.errors} if not result.accepted else None
        )
        return result

    # Convenience wrappers

    async def submit_address(self, session: CheckoutSession, fields: Dict[str, Any]) -> TransitionResult:
        return await self.dispatch(session, SubmitAddress(fields))

    async def select_payment_method(self, session: CheckoutSession, method: Any) -> TransitionResult:
        return await self.dispatch(session, SelectPaymentMethod(method))

    async def continue_to_summary(self, session: CheckoutSession) -> TransitionResult:
        return await self.dispatch(session, ContinueToSummary())

    async def go_back(self, session: CheckoutSession) -> TransitionResult:
        return await self.dispatch(session, GoBack())

    async def place_order(self, session: CheckoutSession) -> TransitionResult:
        return await self.dispatch(session, PlaceOrder())

    async def retry(self, session: CheckoutSession) -> TransitionResult:
        return await self.dispatch(session, Retry())

    async def abandon(self, session: CheckoutSession) -> TransitionResult:
        return await self.dispatch(session, Abandon())

    # ================================
    # STEP HANDLERS
    # ================================

    def _require_step(self, session: CheckoutSession, event: str, *allowed: CheckoutStep) -> None:
        if session.current_step not in allowed:
            raise StepTransitionError(session.current_step.value, event)

    async def _submit_address(self, session: CheckoutSession, event: SubmitAddress) -> TransitionResult:
        self._require_step(session, 'SubmitAddress', CheckoutStep.ADDRESS)

        try:
            customer = self.validator.to_customer(event.fields, default_email=session.account_email)
        except ValidationError as e:
            session.last_error = e.to_dict()
            return TransitionResult(session=session, accepted=False,
                                    message=format_errors(e.errors), errors=dict(e.errors))

        session.customer = customer
        session.last_error = None
        session.current_step = CheckoutStep.PAYMENT_METHOD
        logger.info(f"[Checkout] Address accepted for {session.attempt_id}")
        return TransitionResult(session=session, accepted=True)

    async def _select_payment_method(self, session: CheckoutSession,
                                     event: SelectPaymentMethod) -> TransitionResult:
        self._require_step(session, 'SelectPaymentMethod', CheckoutStep.PAYMENT_METHOD)

        try:
            session.payment_method = self.selector.select(event.method)
        except UnsupportedPaymentMethod as e:
            return TransitionResult(session=session, accepted=False, message=e.message,
                                    errors={'payment_method': e.message})
        except ValueError as e:
            return TransitionResult(session=session, accepted=False, message=str(e),
                                    errors={'payment_method': str(e)})

        return TransitionResult(session=session, accepted=True)

    async def _continue_to_summary(self, session: CheckoutSession,
                                   event: ContinueToSummary) -> TransitionResult:
        self._require_step(session, 'ContinueToSummary', CheckoutStep.PAYMENT_METHOD)

        if not self.can_enter_summary(session):
            message = ("Please select a payment method" if session.address_valid
                       else "Please complete your delivery address")
            return TransitionResult(session=session, accepted=False, message=message)

        session.current_step = CheckoutStep.SUMMARY
        return TransitionResult(session=session, accepted=True)

    async def _go_back(self, session: CheckoutSession, event: GoBack) -> TransitionResult:
        if session.current_step == CheckoutStep.SUMMARY:
            session.current_step = CheckoutStep.PAYMENT_METHOD
        elif session.current_step == CheckoutStep.PAYMENT_METHOD:
            session.current_step = CheckoutStep.ADDRESS
        else:
            raise StepTransitionError(session.current_step.value, 'GoBack')
        return TransitionResult(session=session, accepted=True)

    async def _retry(self, session: CheckoutSession, event: Retry) -> TransitionResult:
        self._require_step(session, 'Retry', CheckoutStep.FAILED, CheckoutStep.CANCELLED)

        previous = session.attempt_id
        session.attempt_id = new_attempt_id()
        session.payment = None
        session.outcome = None
        session.last_error = None
        session.current_step = CheckoutStep.SUMMARY
        logger.info(f"[Checkout] Retrying {previous} as {session.attempt_id}")
        return TransitionResult(session=session, accepted=True)

    async def _abandon(self, session: CheckoutSession, event: Abandon) -> TransitionResult:
        try:
            attempt = self.store.get(session.attempt_id)
        except Exception as e:
            logger.error(f"[Checkout] Failed to read pending attempt {session.attempt_id}: {e}")
            attempt = None
        if attempt is not None and attempt.status == AttemptStatus.IN_FLIGHT:
            self._mark_attempt(session.attempt_id, AttemptStatus.ABANDONED)
            logger.warning(f"[Checkout] {session.attempt_id} abandoned with a payment attempt on record")
        return TransitionResult(session=session, accepted=True)

    # ================================
    # ORDER PLACEMENT
    # ================================

    async def _place_order(self, session: CheckoutSession, event: PlaceOrder) -> TransitionResult:
        self._require_step(session, 'PlaceOrder', CheckoutStep.SUMMARY)

        if session.payment is not None and session.payment.status in MONEY_MOVED:
            logger.warning(f"[Checkout] Refusing to charge {session.attempt_id} again, payment {session.payment.status.value}")
            return TransitionResult(session=session, accepted=False,
                                    message="Payment for this order has already been received")

        if not self.can_enter_summary(session):
            raise StepTransitionError(session.current_step.value, 'PlaceOrder',
                                      "address and payment method are required")

        method = session.payment_method
        if not self.selector.is_supported(method):
            error = UnsupportedPaymentMethod(method.value)
            return TransitionResult(session=session, accepted=False, message=error.message)

        session.loading = True
        try:
            validate_amount(session.order_total)
            if self.selector.is_gateway_backed(method):
                return await self._place_gateway_order(session)
            return await self._place_direct_order(session)
        except InvalidAmount as e:
            session.last_error = e.to_dict()
            return TransitionResult(session=session, accepted=False, message=e.message)
        finally:
            session.loading = False

    async def _place_direct_order(self, session: CheckoutSession) -> TransitionResult:
        """Methods settled at delivery: no money moves, persist with business status pending"""
        payment = PaymentRecord(
            method=session.payment_method,
            status=PaymentStatus.PENDING,
            amount=session.order_total
        )
        session.payment = payment

        try:
            order = await self._persist(session, payment, idempotency_key=session.attempt_id)
        except PersistenceError as e:
            logger.error(f"[Checkout] Order creation failed for {session.attempt_id}: {e.message}")
            session.last_error = e.to_dict()
            session.current_step = CheckoutStep.FAILED
            return TransitionResult(session=session, accepted=True, message=e.message)

        return self._complete(session, CheckoutStep.COMPLETED, order, "Order placed successfully!")

    async def _place_gateway_order(self, session: CheckoutSession) -> TransitionResult:
        amount = session.order_total

        attempt = PendingAttempt(
            attempt_id=session.attempt_id,
            amount=amount,
            method=session.payment_method.value,
            idempotency_key=session.attempt_id,
            order_payload=session.build_order().to_api_payload()
        )
        try:
            saved = self.store.save(attempt)
        except Exception as e:
            logger.error(f"[Checkout] Failed to record pending attempt {session.attempt_id}: {e}")
            saved = False
        if not saved:
            # No charge without a durable record
            error = AttemptStoreUnavailable(session.attempt_id)
            logger.error(f"[Checkout] Not charging {session.attempt_id}: {error.message}")
            session.last_error = error.to_dict()
            return TransitionResult(session=session, accepted=False, message=CANNOT_START_PAYMENT_MESSAGE)

        customer = session.customer
        request = ChargeRequest(
            attempt_id=session.attempt_id,
            description=f"Order Payment - Total: ₹{amount:.2f}",
            customer_name=customer.name,
            customer_email=customer.email,
            customer_contact=customer.phone,
            notes={'address': f"{customer.address}, {customer.city}, {customer.state} - {customer.pincode}"}
        )

        try:
            outcome = await self.gateway.charge(amount, request)
        except InvalidAmount:
            self._discard_attempt(session.attempt_id)
            raise
        except Exception as e:
            # Money may have moved, so the pending record stays
            logger.exception(f"[Checkout] Unexpected gateway error for {session.attempt_id}")
            failure = GatewayOutcomeFailure('gateway_error', {'description': str(e)})
            session.last_error = failure.to_dict()
            session.current_step = CheckoutStep.FAILED
            self._mark_attempt(session.attempt_id, AttemptStatus.IN_FLIGHT,
                               error={'type': type(e).__name__, 'message': str(e)})
            return TransitionResult(session=session, accepted=True,
                                    message="Payment failed. Please try again.")

        self.event_logger.log_gateway_outcome(session.attempt_id, outcome.to_dict())
        return await self._apply_outcome(session, outcome)

    async def _apply_outcome(self, session: CheckoutSession, outcome: GatewayOutcome) -> TransitionResult:
        if outcome.kind is OutcomeKind.CANCELLED:
            session.current_step = CheckoutStep.CANCELLED
            session.last_error = None
            self._discard_attempt(session.attempt_id)
            return TransitionResult(session=session, accepted=True, message=outcome.message)

        if outcome.kind is OutcomeKind.FAILED:
            session.last_error = GatewayOutcomeFailure(outcome.reason, outcome.error).to_dict()
            session.current_step = CheckoutStep.FAILED
            self._discard_attempt(session.attempt_id)
            return TransitionResult(session=session, accepted=True, message=outcome.message)

        if outcome.kind is OutcomeKind.SUCCESS:
            status, target = PaymentStatus.COMPLETED, CheckoutStep.COMPLETED
            message = "Payment completed successfully!"
        else:
            status, target = PaymentStatus.PENDING_VERIFICATION, CheckoutStep.PENDING_VERIFICATION
            message = "Order Created - Payment Under Verification"

        payment = PaymentRecord(
            method=session.payment_method,
            status=status,
            amount=session.order_total,
            gateway_order_id=outcome.order_id,
            gateway_payment_id=outcome.payment_id,
            gateway_signature=outcome.signature,
            strategy=outcome.strategy,
            payment_link=outcome.payment_link,
            reason=outcome.reason
        )
        session.payment = payment
        idempotency_key = payment.gateway_payment_id or session.attempt_id

        # Money may have moved: the record must carry everything needed to replay the order
        self._mark_attempt(
            session.attempt_id,
            AttemptStatus.NEEDS_RECONCILIATION,
            idempotency_key=idempotency_key,
            payment=payment.to_dict(),
            order_payload=session.build_order().to_api_payload()
        )

        try:
            order = await self._persist(session, payment, idempotency_key=idempotency_key)
        except PersistenceError as e:
            return await self._confirmation_failed(session, target, idempotency_key, e)
        except Exception as e:
            logger.exception(f"[Checkout] Unexpected order creation error for {session.attempt_id}")
            return await self._confirmation_failed(session, target, idempotency_key, PersistenceError(str(e)))

        result = self._complete(session, target, order, message)
        if outcome.reason == FailureReason.CALLBACK_TIMEOUT:
            # Nothing reported on the payment, so it stays listed for an operator
            logger.warning(f"[Checkout] Keeping pending attempt {session.attempt_id} after a checkout timeout")
        else:
            self._discard_attempt(session.attempt_id)
        return result

    async def _persist(self, session: CheckoutSession, payment: PaymentRecord,
                       idempotency_key: str) -> Dict[str, Any]:
        """
        Create the order at most once per idempotency key and payment status

        Raises:
            PersistenceError
        """
        cache_key = f"{idempotency_key}:{payment.status.value}"
        if cache_key in session.persisted_orders:
            logger.info(f"[Checkout] Order for {cache_key} already created, not resubmitting")
            return session.persisted_orders[cache_key]

        payload = session.build_order().to_api_payload()
        order = await self.persister.create_order(payload, idempotency_key, auth_token=session.auth_token)
        session.persisted_orders[cache_key] = order
        return order

    def _discard_attempt(self, attempt_id: str) -> None:
        """Drop a pending record; storage trouble is logged, never raised"""
        try:
            self.store.delete(attempt_id)
        except Exception as e:
            logger.error(f"[Checkout] Failed to clear pending attempt {attempt_id}: {e}")

    def _mark_attempt(self, attempt_id: str, status: str, **changes: Any) -> None:
        try:
            if self.store.update_status(attempt_id, status, **changes) is None:
                logger.error(f"[Checkout] Pending attempt {attempt_id} missing, could not mark {status}")
        except Exception as e:
            logger.error(f"[Checkout] Failed to mark pending attempt {attempt_id} {status}: {e}")

    def _complete(self, session: CheckoutSession, target: CheckoutStep,
                  order: Dict[str, Any], message: str) -> TransitionResult:
        is_pending = target == CheckoutStep.PENDING_VERIFICATION

        session.outcome = OutcomeView(
            message=message,
            amount=session.order_total,
            payment_method_label=session.payment_method.label,
            order_id=order.get('_id'),
            order_number=order.get('orderNumber') or order.get('_id'),
            order_data=self._order_data(session),
            is_pending=is_pending,
            pending_message=PENDING_VERIFICATION_MESSAGE if is_pending else None
        )
        session.last_error = None
        session.current_step = target
        logger.info(f"[Checkout] {session.attempt_id} -> {target.value} (order {session.outcome.order_number})")
        return TransitionResult(session=session, accepted=True, message=message, outcome=session.outcome)

    async def _confirmation_failed(self, session: CheckoutSession, target: CheckoutStep,
                                   reference: str, error: CheckoutError) -> TransitionResult:
        """Payment moved but the order was not recorded; keep everything for reconciliation"""
        logger.error(f"[Checkout] Order confirmation failed after payment {reference}: {error.message}")

        message = (
            "Payment was successful but order confirmation failed. "
            f"Please contact support with payment reference {reference}."
        )
        session.outcome = OutcomeView(
            message=message,
            amount=session.order_total,
            payment_method_label=session.payment_method.label,
            order_data=self._order_data(session),
            is_pending=target == CheckoutStep.PENDING_VERIFICATION,
            pending_message=PENDING_VERIFICATION_MESSAGE if target == CheckoutStep.PENDING_VERIFICATION else None,
            confirmation_failed=True,
            reference=reference
        )
        session.last_error = error.to_dict()
        session.current_step = target
        self._mark_attempt(session.attempt_id, AttemptStatus.NEEDS_RECONCILIATION,
                           error=error.to_dict())
        try:
            await self.ui.notify(message)
        except Exception as e:
            logger.error(f"[Checkout] Could not show confirmation failure for {session.attempt_id}: {e}")
        return TransitionResult(session=session, accepted=True, message=message, outcome=session.outcome)

    @staticmethod
    def _order_data(session: CheckoutSession) -> Dict[str, Any]:
        payload = session.build_order().to_api_payload()
        return {
            'items': payload['items'],
            'customerDetails': payload['customerDetails'],
            'orderSummary': payload['orderSummary']
        }
