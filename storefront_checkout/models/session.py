"""Data models for the checkout session with proper typing and serialization"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from datetime import datetime
from enum import Enum
import uuid


class CheckoutStep(Enum):
    """Checkout steps - the last four are terminal"""
    ADDRESS = "address"
    PAYMENT_METHOD = "payment_method"
    SUMMARY = "summary"
    COMPLETED = "completed"
    PENDING_VERIFICATION = "pending_verification"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STEPS


TERMINAL_STEPS = frozenset({
    CheckoutStep.COMPLETED,
    CheckoutStep.PENDING_VERIFICATION,
    CheckoutStep.FAILED,
    CheckoutStep.CANCELLED,
})


class PaymentMethod(Enum):
    """Closed set of payment methods offered at checkout"""
    GATEWAY = "gateway"                  # Razorpay embedded checkout
    DIRECT_UPI = "directUpi"
    CARD = "card"
    CASH_ON_DELIVERY = "cashOnDelivery"

    @property
    def api_value(self) -> str:
        """Value the order backend expects in paymentDetails.method"""
        return _API_VALUES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> 'PaymentMethod':
        """Accept an enum member, its value, its name or its backend value"""
        if isinstance(value, cls):
            return value
        text = str(value or '').strip()
        for method in cls:
            if text in (method.value, method.api_value) or text.upper() == method.name:
                return method
        raise ValueError(f"Unknown payment method: {value!r}")


_API_VALUES = {
    PaymentMethod.GATEWAY: "razorpay",
    PaymentMethod.DIRECT_UPI: "upi",
    PaymentMethod.CARD: "card",
    PaymentMethod.CASH_ON_DELIVERY: "cod",
}

_LABELS = {
    PaymentMethod.GATEWAY: "Online Payment (Razorpay)",
    PaymentMethod.DIRECT_UPI: "UPI Payment",
    PaymentMethod.CARD: "Credit/Debit Card",
    PaymentMethod.CASH_ON_DELIVERY: "Cash on Delivery",
}


class PaymentStatus(Enum):
    """Payment status persisted with the order"""
    COMPLETED = "completed"
    PENDING_VERIFICATION = "pending_verification"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PENDING = "pending"  # Business status for methods settled at delivery


@dataclass
class LineItem:
    """Cart line item handed over from the cart page"""
    product_id: str
    name: str
    price: float
    quantity: int
    image_url: Optional[str] = None

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'productId': self.product_id,
            'name': self.name,
            'price': self.price,
            'quantity': self.quantity,
            'image': self.image_url,
            'subtotal': self.subtotal
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LineItem':
        """Create LineItem from the backend or cart page shape"""
        product = data.get('product') if isinstance(data.get('product'), dict) else {}
        product_id = (data.get('productId') or data.get('product_id') or data.get('_id')
                      or data.get('id') or product.get('_id') or product.get('id'))
        return cls(
            product_id=str(product_id) if product_id is not None else '',
            name=data.get('name') or product.get('name', ''),
            price=float(data.get('price', product.get('price', 0)) or 0),
            quantity=int(data.get('quantity', 1) or 1),
            image_url=data.get('image') or data.get('image_url') or product.get('image')
        )


@dataclass
class CustomerDetails:
    """Validated delivery details"""
    name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    email: str = ''
    landmark: Optional[str] = None
    locality: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = self.name.split(' ')
        return parts[0] if parts else ''

    @property
    def last_name(self) -> str:
        return ' '.join(self.name.split(' ')[1:])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'pincode': self.pincode,
            'landmark': self.landmark,
            'locality': self.locality
        }

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to the order API customerDetails format"""
        return {
            'firstName': self.first_name,
            'lastName': self.last_name,
            'email': self.email or '',
            'phone': self.phone,
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'pincode': self.pincode,
            'landmark': self.landmark or ''
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CustomerDetails':
        return cls(
            name=data['name'],
            phone=data['phone'],
            address=data['address'],
            city=data['city'],
            state=data['state'],
            pincode=data['pincode'],
            email=data.get('email') or '',
            landmark=data.get('landmark'),
            locality=data.get('locality')
        )


@dataclass
class OrderSummary:
    """Price breakdown of an order"""
    subtotal: float
    shipping: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    item_count: int = 0

    @classmethod
    def from_total(cls, total: float, item_count: int = 0) -> 'OrderSummary':
        """Summary used when the cart page only hands over the total"""
        return cls(subtotal=total, shipping=0.0, tax=0.0, total=total, item_count=item_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'subtotal': self.subtotal,
            'shipping': self.shipping,
            'tax': self.tax,
            'total': self.total,
            'itemCount': self.item_count
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderSummary':
        return cls(
            subtotal=float(data.get('subtotal', 0)),
            shipping=float(data.get('shipping', 0)),
            tax=float(data.get('tax', 0)),
            total=float(data.get('total', 0)),
            item_count=int(data.get('itemCount', data.get('item_count', 0)))
        )


@dataclass
class PaymentRecord:
    """Resolved payment for an order"""
    method: PaymentMethod
    status: PaymentStatus
    amount: float
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    strategy: Optional[str] = None
    payment_link: Optional[str] = None
    reason: Optional[str] = None

    def to_api_dict(self) -> Dict[str, Any]:
        """Convert to the order API paymentDetails format"""
        details: Dict[str, Any] = {
            'method': self.method.api_value,
            'status': self.status.value,
            'amount': self.amount,
            'timestamp': self.timestamp
        }
        if self.gateway_order_id:
            details['razorpay_order_id'] = self.gateway_order_id
        if self.gateway_payment_id:
            details['razorpay_payment_id'] = self.gateway_payment_id
        if self.gateway_signature:
            details['razorpay_signature'] = self.gateway_signature
        if self.strategy:
            details['strategy'] = self.strategy
        if self.payment_link:
            details['payment_link'] = self.payment_link
        return details

    def to_dict(self) -> Dict[str, Any]:
        return {
            'method': self.method.value,
            'status': self.status.value,
            'amount': self.amount,
            'timestamp': self.timestamp,
            'gateway_order_id': self.gateway_order_id,
            'gateway_payment_id': self.gateway_payment_id,
            'gateway_signature': self.gateway_signature,
            'strategy': self.strategy,
            'payment_link': self.payment_link,
            'reason': self.reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentRecord':
        return cls(
            method=PaymentMethod.parse(data['method']),
            status=PaymentStatus(data['status']),
            amount=float(data['amount']),
            timestamp=data.get('timestamp') or datetime.utcnow().isoformat(),
            gateway_order_id=data.get('gateway_order_id'),
            gateway_payment_id=data.get('gateway_payment_id'),
            gateway_signature=data.get('gateway_signature'),
            strategy=data.get('strategy'),
            payment_link=data.get('payment_link'),
            reason=data.get('reason')
        )


@dataclass
class Order:
    """Order owned by the checkout session until handed to the backend"""
    items: List[LineItem]
    customer: CustomerDetails
    summary: OrderSummary
    payment: Optional[PaymentRecord] = None

    def to_api_payload(self) -> Dict[str, Any]:
        """Build the order creation request body"""
        return {
            'items': [item.to_dict() for item in self.items],
            'customerDetails': self.customer.to_api_dict(),
            'orderSummary': self.summary.to_dict(),
            'paymentDetails': self.payment.to_api_dict() if self.payment else {}
        }


@dataclass
class OutcomeView:
    """State handed to the outcome screen once checkout is terminal"""
    message: str
    amount: float
    payment_method_label: str
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    order_data: Dict[str, Any] = field(default_factory=dict)
    is_pending: bool = False
    pending_message: Optional[str] = None
    confirmation_failed: bool = False
    reference: Optional[str] = None

    def to_navigation_state(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {
            'message': self.message,
            'orderId': self.order_id,
            'orderNumber': self.order_number,
            'paymentMethod': self.payment_method_label,
            'amount': self.amount,
            'orderData': self.order_data
        }
        if self.is_pending:
            state['isPending'] = True
            state['pendingMessage'] = self.pending_message
        if self.confirmation_failed:
            state['confirmationFailed'] = True
        if self.reference:
            state['reference'] = self.reference
        return state


def new_attempt_id() -> str:
    """Generate a checkout attempt id"""
    return f"attempt_{uuid.uuid4().hex[:16]}"


@dataclass
class CheckoutSession:
    """Explicit state of one checkout, owned by the state machine"""
    items: List[LineItem]
    order_total: float
    attempt_id: str = field(default_factory=new_attempt_id)
    current_step: CheckoutStep = CheckoutStep.ADDRESS
    customer: Optional[CustomerDetails] = None
    payment_method: Optional[PaymentMethod] = None
    loading: bool = False
    payment: Optional[PaymentRecord] = None
    outcome: Optional[OutcomeView] = None
    last_error: Optional[Dict[str, Any]] = None
    persisted_orders: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    auth_token: Optional[str] = None
    account_email: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def address_valid(self) -> bool:
        return self.customer is not None

    @property
    def method_selected(self) -> bool:
        return self.payment_method is not None

    @property
    def is_terminal(self) -> bool:
        return self.current_step.is_terminal

    def build_order(self) -> Order:
        """Assemble the order from session state"""
        return Order(
            items=list(self.items),
            customer=self.customer,
            summary=OrderSummary.from_total(self.order_total, item_count=len(self.items)),
            payment=self.payment
        )

    def add_to_history(self, action: str, data: Dict[str, Any]) -> None:
        self.history.append({
            'action': action,
            'data': data,
            'timestamp': datetime.utcnow().isoformat()
        })

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'attempt_id': self.attempt_id,
            'current_step': self.current_step.value,
            'items': [item.to_dict() for item in self.items],
            'order_total': self.order_total,
            'customer': self.customer.to_dict() if self.customer else None,
            'payment_method': self.payment_method.value if self.payment_method else None,
            'loading': self.loading,
            'payment': self.payment.to_dict() if self.payment else None,
            'outcome': self.outcome.to_navigation_state() if self.outcome else None,
            'last_error': self.last_error,
            'history': self.history,
            'created_at': self.created_at.isoformat()
        }
