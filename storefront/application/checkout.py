"""Checkout orchestration: turn a validated cart into a pending order, then
open (or re-open) a payment with the gateway for it.

``place_order`` and ``start_payment`` are deliberately separate calls. The
first one writes the order; the second only ever reads it and asks the
gateway for a payment intent, so a customer who closes the payment widget
can retry without a second order row or a recomputed total.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.core import get_logger, set_request_context
from storefront.core_settings import Settings
from storefront.domain.errors import (
    AmountMismatchError,
    DatabaseNotConfiguredError,
    GatewayConfigurationError,
    PaymentNotAllowedError,
    ValidationError,
)
from storefront.domain.order_status import (
    PAYABLE_PAYMENT_STATUSES,
    TERMINAL_STATUSES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from storefront.infrastructure.gateway import GatewayOrder, RazorpayGateway
from storefront.infrastructure.repository import (
    CatalogRepository,
    CreatedOrder,
    NewOrder,
    NewOrderItem,
    OrderRepository,
    generate_order_number,
)

from .pricing import compute_totals, coupon_discount, effective_unit_price, money
from .schemas import CartItem, CheckoutRequest
from .site_settings import SettingsSnapshot, load_snapshot

logger = get_logger(__name__)


@dataclass
class PlacedOrder:
    order_number: str
    payment_method: str
    payment_status: str
    order_id: Optional[int] = None
    total: Optional[Decimal] = None
    # confirmation emails are due (new cash-on-delivery order)
    notify: bool = False
    items_persisted: bool = True


def initial_payment_status(payment_method: PaymentMethod) -> PaymentStatus:
    if payment_method == PaymentMethod.COD:
        return PaymentStatus.PENDING
    return PaymentStatus.AWAITING


class CheckoutService:
    def __init__(self, db: Optional[Session], settings: Settings, gateway: RazorpayGateway):
        self.db = db
        self.settings = settings
        self.gateway = gateway

    def _orders(self) -> OrderRepository:
        return OrderRepository(
            self.db,
            order_number_prefix=self.settings.ORDER_NUMBER_PREFIX,
            max_attempts=self.settings.ORDER_NUMBER_MAX_ATTEMPTS,
        )

    def place_order(self, request: CheckoutRequest, checkout_token: Optional[str] = None) -> PlacedOrder:
        method = PaymentMethod(request.payment_method)
        payment_status = initial_payment_status(method)

        if self.db is None:
            order_number = generate_order_number(self.settings.ORDER_NUMBER_PREFIX)
            logger.warning(
                f"Order number generated without datastore: {order_number}",
                extra={'extra_fields': {'order_number': order_number, 'mode': 'number_only'}}
            )
            return PlacedOrder(order_number, method.value, payment_status.value)

        guest_email = request.guest_email or request.shipping_address.email
        if not request.user_id and not guest_email:
            raise ValidationError.for_field("guest_email", "Email is required for guest checkout")

        snapshot = load_snapshot(self.db)
        if method == PaymentMethod.RAZORPAY and not (snapshot.gateway.enabled and self.gateway.configured):
            raise ValidationError.for_field("payment_method", "Online payment is currently unavailable")

        lines = self._price_items(request.items)
        totals, coupon_id = self._totals(lines, snapshot, request.coupon_code)

        if request.total is not None and money(request.total) != totals.total:
            logger.warning(
                "Client total differs from server total",
                extra={'extra_fields': {'client_total': str(request.total), 'server_total': str(totals.total)}}
            )
            raise AmountMismatchError(
                "Order total has changed, please review your cart",
                details=[{"field": "total", "message": f"Expected {totals.total}"}],
            )

        created: CreatedOrder = self._orders().create_order(
            NewOrder(
                payment_method=method.value,
                payment_status=payment_status.value,
                subtotal=totals.subtotal,
                shipping_amount=totals.shipping_amount,
                tax_amount=totals.tax_amount,
                discount_amount=totals.discount_amount,
                total=totals.total,
                currency=self.settings.DEFAULT_CURRENCY,
                shipping_address=request.shipping_address.model_dump(),
                user_id=request.user_id,
                guest_email=guest_email,
                coupon_id=coupon_id,
                notes=request.notes,
                checkout_token=request.checkout_token or checkout_token,
            ),
            lines,
        )
        order = created.order
        set_request_context(order_number=order.order_number)

        if not created.existing:
            self._orders().record_activity(
                "order_created",
                order.order_number,
                f"New order {order.order_number} placed",
                {
                    "total": str(order.total),
                    "payment_method": order.payment_method,
                    "items_persisted": created.items_persisted,
                },
            )

        return PlacedOrder(
            order_number=order.order_number,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            order_id=order.id,
            total=order.total,
            notify=order.payment_method == PaymentMethod.COD.value and not created.existing,
            items_persisted=created.items_persisted,
        )

    def _price_items(self, items: List[CartItem]) -> List[NewOrderItem]:
        catalog = CatalogRepository(self.db)
        products = catalog.products_by_id(i.product_id for i in items)
        variants = catalog.variants_by_id(i.variant_id for i in items if i.variant_id is not None)

        lines = []
        for index, item in enumerate(items):
            product = products.get(item.product_id)
            if product is None or not product.is_visible:
                raise ValidationError.for_field(f"items.{index}.product_id", "Product is not available")

            variant = None
            if item.variant_id is not None:
                variant = variants.get(item.variant_id)
                if variant is None or variant.product_id != product.id or not variant.is_visible:
                    raise ValidationError.for_field(f"items.{index}.variant_id", "Variant is not available")

            source = variant or product
            images = (variant.images if variant else None) or product.images or []
            lines.append(NewOrderItem(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                unit_price=effective_unit_price(source.price, source.sale_price),
                product_image=images[0] if images else None,
                variant_id=variant.id if variant else None,
                variant_size=variant.size if variant else None,
                variant_sku=variant.sku if variant else None,
            ))
        return lines

    def _totals(self, lines: List[NewOrderItem], snapshot: SettingsSnapshot, coupon_code: Optional[str]):
        """Totals plus the id of the coupon that produced the discount, if any."""
        line_totals = [line.total_price for line in lines]
        discount = Decimal("0")
        coupon_id = None
        if coupon_code:
            coupon = CatalogRepository(self.db).coupon_by_code(coupon_code)
            if coupon is None:
                raise ValidationError.for_field("coupon_code", "Invalid coupon code")
            discount = coupon_discount(coupon, money(sum(line_totals, Decimal("0"))))
            coupon_id = coupon.id
        return compute_totals(line_totals, snapshot, discount), coupon_id

    def start_payment(
        self,
        order_number: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        """Open a gateway payment for an existing order, first attempt or retry alike."""
        if self.db is None:
            raise DatabaseNotConfiguredError()

        if not load_snapshot(self.db).gateway.enabled:
            logger.error("Online payments disabled in site settings")
            raise GatewayConfigurationError("Payment gateway not configured")

        order = self._orders().get_order_by_number(order_number)
        set_request_context(order_number=order.order_number)

        if order.payment_method != PaymentMethod.RAZORPAY.value:
            raise PaymentNotAllowedError("Order is not set up for online payment")
        if OrderStatus(order.status) in TERMINAL_STATUSES:
            raise PaymentNotAllowedError(f"Order is {order.status} and cannot be paid")
        if order.payment_status == PaymentStatus.COMPLETED.value:
            raise PaymentNotAllowedError("Order has already been paid")
        if PaymentStatus(order.payment_status) not in PAYABLE_PAYMENT_STATUSES:
            raise PaymentNotAllowedError("Order is not awaiting payment")

        if amount is not None and money(amount) != money(order.total):
            logger.warning(
                f"Payment amount mismatch for {order.order_number}",
                extra={'extra_fields': {'client_amount': str(amount), 'order_total': str(order.total)}}
            )
            raise AmountMismatchError(
                "Payment amount does not match the order total",
                details=[{"field": "amount", "message": f"Expected {money(order.total)}"}],
            )
        if currency is not None and currency != order.currency:
            raise ValidationError.for_field("currency", "Currency does not match the order")

        gateway_notes = dict(notes or {})
        gateway_notes["order_number"] = order.order_number
        return self.gateway.create_order(order.order_number, order.total, order.currency, gateway_notes)
