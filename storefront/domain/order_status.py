"""Order lifecycle and payment lifecycle states.

``status`` tracks fulfilment, ``payment_status`` tracks the payment attempt.
The two axes are independent: a cash-on-delivery order stays at payment
``pending`` until it is delivered, while an online order has to reach
payment ``completed`` before fulfilment may move past ``pending``.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import InvalidStatusTransitionError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AWAITING = "awaiting"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    COD = "cod"
    RAZORPAY = "razorpay"


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# statuses an online order may only reach once its payment is completed
PAYMENT_GATED_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
)

# payment states the verification endpoint may move out of
VERIFIABLE_PAYMENT_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.AWAITING, PaymentStatus.FAILED}
)

# payment states from which the customer may (re)open the gateway widget
PAYABLE_PAYMENT_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.AWAITING, PaymentStatus.FAILED}
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(
    current: OrderStatus,
    target: OrderStatus,
    payment_method: Optional[str],
    payment_status: Optional[PaymentStatus],
) -> None:
    """Raise InvalidStatusTransitionError unless ``current -> target`` is allowed.

    ``payment_status`` is the value the order will have after the update,
    so an admin can record a COD payment and ship in one call.
    """
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            f"Cannot change order status from '{current.value}' to '{target.value}'"
        )
    if (
        target in PAYMENT_GATED_STATUSES
        and payment_method == PaymentMethod.RAZORPAY.value
        and payment_status != PaymentStatus.COMPLETED
    ):
        raise InvalidStatusTransitionError(
            f"Online payment must be completed before the order can be marked '{target.value}'"
        )
