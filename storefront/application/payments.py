"""Verification of the gateway's payment callback.

The browser relays ``razorpay_order_id``, ``razorpay_payment_id`` and
``razorpay_signature`` after the widget reports success. The signature only
proves the gateway issued that order/payment pair; the gateway order is then
fetched and must carry this order's number as its receipt and this order's
total as its amount. Nothing about the order changes to ``paid`` without
both checks.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from storefront.core import get_logger, set_request_context
from storefront.core_settings import Settings
from storefront.domain.errors import GatewayRequestError, OrderNotFoundError, SignatureMismatchError
from storefront.domain.models import Order
from storefront.domain.order_status import OrderStatus, PaymentMethod
from storefront.infrastructure import signature
from storefront.infrastructure.gateway import RazorpayGateway, to_minor_units
from storefront.infrastructure.repository import OrderRepository, PaymentTransition

from .schemas import VerifyPaymentRequest

logger = get_logger(__name__)

SIGNATURE_MISMATCH_MESSAGE = "Payment verification failed - invalid signature"

# gateway answers meaning "no such order", as opposed to an outage
UNKNOWN_GATEWAY_ORDER_STATUSES = (400, 404)


@dataclass
class VerificationOutcome:
    order_number: str
    payment_id: str
    transition: Optional[PaymentTransition] = None
    # only the call that actually moved the order sends confirmations
    notify: bool = False


class PaymentVerificationService:
    def __init__(self, db: Optional[Session], settings: Settings, gateway: RazorpayGateway):
        self.db = db
        self.settings = settings
        self.gateway = gateway

    def verify(self, request: VerifyPaymentRequest) -> VerificationOutcome:
        set_request_context(order_number=request.order_number)

        valid = signature.verify(
            request.razorpay_order_id,
            request.razorpay_payment_id,
            request.razorpay_signature,
            self.settings.RAZORPAY_KEY_SECRET,
        )
        if not valid:
            self._reject(request, "payment_signature_mismatch", "Payment callback rejected: invalid signature")

        if self.db is None:
            logger.warning(
                f"Payment verified for {request.order_number} without datastore; order not updated",
                extra={'extra_fields': {'payment_id': request.razorpay_payment_id}}
            )
            return VerificationOutcome(request.order_number, request.razorpay_payment_id)

        orders = OrderRepository(self.db)
        order = orders.get_order_by_number(request.order_number)
        self._check_gateway_order(order, request)

        transition = orders.mark_payment_completed(
            request.order_number,
            request.razorpay_payment_id,
            PaymentMethod.RAZORPAY.value,
        )

        notify = False
        if transition == PaymentTransition.COMPLETED:
            order = orders.get_order_by_number(request.order_number)
            notify = order.status == OrderStatus.PAID.value
            if not notify:
                logger.warning(
                    f"Payment {request.razorpay_payment_id} received for {order.status} order {request.order_number}",
                    extra={'extra_fields': {
                        'payment_id': request.razorpay_payment_id,
                        'order_status': order.status,
                        'action': 'manual_refund_review',
                    }}
                )
            else:
                logger.info(
                    f"Payment verified for order: {request.order_number}, Payment ID: {request.razorpay_payment_id}",
                    extra={'extra_fields': {
                        'payment_id': request.razorpay_payment_id,
                        'gateway_order_id': request.razorpay_order_id,
                    }}
                )
            orders.record_activity(
                "payment_received",
                request.order_number,
                f"Payment received for order {request.order_number}",
                {
                    "payment_id": request.razorpay_payment_id,
                    "gateway_order_id": request.razorpay_order_id,
                    "payment_method": PaymentMethod.RAZORPAY.value,
                },
            )
        elif transition == PaymentTransition.PAYMENT_ID_REPLACED:
            orders.record_activity(
                "payment_reconciliation",
                request.order_number,
                f"Additional payment {request.razorpay_payment_id} verified for paid order",
                {"payment_id": request.razorpay_payment_id, "gateway_order_id": request.razorpay_order_id},
            )
        else:
            logger.info(f"Duplicate verification for {request.order_number} ignored")

        return VerificationOutcome(request.order_number, request.razorpay_payment_id, transition, notify)

    def _check_gateway_order(self, order: Order, request: VerifyPaymentRequest) -> None:
        """The signed gateway order must have been opened for this order and this total."""
        try:
            gateway_order = self.gateway.fetch_order(request.razorpay_order_id)
        except GatewayRequestError as e:
            if e.upstream_status not in UNKNOWN_GATEWAY_ORDER_STATUSES:
                raise
            gateway_order = {}

        expected_amount = to_minor_units(order.total)
        if (
            gateway_order.get("receipt") != order.order_number
            or gateway_order.get("amount") != expected_amount
            or gateway_order.get("currency") != order.currency
        ):
            self._reject(
                request,
                "payment_order_mismatch",
                "Payment callback rejected: gateway order belongs to another order",
                gateway_receipt=gateway_order.get("receipt"),
                gateway_amount=gateway_order.get("amount"),
                expected_amount=expected_amount,
            )

    def _reject(self, request: VerifyPaymentRequest, security_event: str, description: str, **fields) -> None:
        # the signature itself is never logged
        logger.warning(
            f"{description}: order {request.order_number}",
            extra={'extra_fields': {
                'security_event': security_event,
                'gateway_order_id': request.razorpay_order_id,
                'payment_id': request.razorpay_payment_id,
                **fields,
            }}
        )
        if self.db is not None:
            orders = OrderRepository(self.db)
            try:
                orders.mark_payment_failed(request.order_number)
            except OrderNotFoundError:
                logger.warning(f"Rejected callback names unknown order {request.order_number}")
            else:
                orders.record_activity(
                    "payment_tamper",
                    request.order_number,
                    description,
                    {
                        "payment_id": request.razorpay_payment_id,
                        "gateway_order_id": request.razorpay_order_id,
                        "reason": security_event,
                    },
                )
        raise SignatureMismatchError(SIGNATURE_MISMATCH_MESSAGE)
