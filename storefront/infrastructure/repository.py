"""Persistence for the order aggregate and the read-only catalog/settings rows.

Order and items are written in one transaction. When the item insert fails
the order row is still committed on its own (degraded mode): once checkout
has been accepted the customer must always hold a valid order number, and
the missing items become a back-office repair task.

Payment transitions are single conditional UPDATE statements, so the
datastore's row atomicity is the only concurrency control needed: of two
concurrent verifications for the same order only one matches the WHERE
clause.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.core import get_logger
from storefront.domain.errors import (
    OrderCreationError,
    OrderNotFoundError,
    PartialCreationFailure,
)
from storefront.domain.models import (
    ActivityLog,
    Coupon,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    SiteSetting,
)
from storefront.domain.order_status import (
    OrderStatus,
    PaymentStatus,
    VERIFIABLE_PAYMENT_STATUSES,
    check_transition,
)

logger = get_logger(__name__)


def generate_order_number(prefix: str = "MYS", now: Optional[datetime] = None, rng: random.Random = random) -> str:
    """``PREFIX-YYYYMMDD-NNNN`` with a random 4-digit suffix."""
    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now.strftime('%Y%m%d')}-{rng.randint(0, 9999):04d}"


@dataclass
class NewOrderItem:
    product_id: Optional[int]
    product_name: str
    quantity: int
    unit_price: Decimal
    product_image: Optional[str] = None
    variant_id: Optional[int] = None
    variant_size: Optional[str] = None
    variant_sku: Optional[str] = None

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class NewOrder:
    payment_method: str
    payment_status: str
    subtotal: Decimal
    total: Decimal
    shipping_address: dict
    shipping_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    currency: str = "INR"
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    coupon_id: Optional[int] = None
    notes: Optional[str] = None
    checkout_token: Optional[str] = None


@dataclass
class CreatedOrder:
    order: Order
    items_persisted: bool = True
    # True when a repeated checkout_token matched an order created earlier
    existing: bool = False


class PaymentTransition(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    PAYMENT_ID_REPLACED = "payment_id_replaced"


class OrderRepository:
    def __init__(
        self,
        db: Session,
        order_number_prefix: str = "MYS",
        max_attempts: int = 5,
        number_generator: Optional[Callable[[], str]] = None,
    ):
        self.db = db
        self.max_attempts = max(1, max_attempts)
        self._generate = number_generator or (lambda: generate_order_number(order_number_prefix))

    # -- creation -------------------------------------------------------

    def create_order(self, order_input: NewOrder, items: Iterable[NewOrderItem]) -> CreatedOrder:
        items = list(items)
        if order_input.checkout_token:
            existing = self._find_by_checkout_token(order_input.checkout_token)
            if existing is not None:
                logger.info(f"Repeated checkout submission for {existing.order_number}")
                return CreatedOrder(existing, items_persisted=bool(existing.items), existing=True)

        for attempt in range(1, self.max_attempts + 1):
            order_number = self._generate()
            order = self._build_order(order_number, order_input)
            try:
                self.db.add(order)
                self.db.flush()
            except IntegrityError as e:
                self.db.rollback()
                if order_input.checkout_token:
                    existing = self._find_by_checkout_token(order_input.checkout_token)
                    if existing is not None:
                        logger.info(f"Concurrent checkout submission resolved to {existing.order_number}")
                        return CreatedOrder(existing, items_persisted=bool(existing.items), existing=True)
                if not self._order_number_exists(order_number):
                    logger.error("Order insert rejected by datastore", exc_info=True)
                    raise OrderCreationError("Failed to create order in database") from e
                logger.warning(
                    f"Order number collision on {order_number}, retrying",
                    extra={'extra_fields': {'attempt': attempt, 'max_attempts': self.max_attempts}}
                )
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Order insert failed", exc_info=True)
                raise OrderCreationError("Failed to create order in database") from e

            try:
                for item in items:
                    self.db.add(self._build_item(order.id, item))
                self._consume_coupon(order_input.coupon_id)
                self.db.flush()
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                return self._create_without_items(order_number, order_input, e)

            self.db.refresh(order)
            logger.info(f"Order created: {order_number}")
            return CreatedOrder(order)

        raise OrderCreationError(
            f"Could not allocate a unique order number after {self.max_attempts} attempts"
        )

    def _create_without_items(self, order_number: str, order_input: NewOrder, cause: Exception) -> CreatedOrder:
        order = self._build_order(order_number, order_input)
        try:
            self.db.add(order)
            self._consume_coupon(order_input.coupon_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Order insert failed after item failure", exc_info=True)
            raise OrderCreationError("Failed to create order in database") from e

        self.db.refresh(order)
        failure = PartialCreationFailure(f"Order {order_number} saved without its items")
        logger.error(
            str(failure),
            exc_info=(type(cause), cause, cause.__traceback__),
            extra={'extra_fields': {'order_number': order_number, 'error_class': type(failure).__name__}}
        )
        return CreatedOrder(order, items_persisted=False)

    def _build_order(self, order_number: str, data: NewOrder) -> Order:
        now = datetime.utcnow()
        return Order(
            order_number=order_number,
            checkout_token=data.checkout_token,
            user_id=data.user_id,
            guest_email=data.guest_email,
            status=OrderStatus.PENDING.value,
            payment_status=data.payment_status,
            payment_method=data.payment_method,
            subtotal=data.subtotal,
            shipping_amount=data.shipping_amount,
            tax_amount=data.tax_amount,
            discount_amount=data.discount_amount,
            total=data.total,
            currency=data.currency,
            shipping_address=dict(data.shipping_address),
            coupon_id=data.coupon_id,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _build_item(order_id: int, item: NewOrderItem) -> OrderItem:
        return OrderItem(
            order_id=order_id,
            product_id=item.product_id,
            product_name=item.product_name,
            product_image=item.product_image,
            variant_id=item.variant_id,
            variant_size=item.variant_size,
            variant_sku=item.variant_sku,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
        )

    def _consume_coupon(self, coupon_id: Optional[int]) -> None:
        if coupon_id is None:
            return
        self.db.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id)
            .values(used_count=Coupon.used_count + 1)
        )

    def _find_by_checkout_token(self, token: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.checkout_token == token)
            .first()
        )

    def _order_number_exists(self, order_number: str) -> bool:
        return self.db.query(Order.id).filter(Order.order_number == order_number).first() is not None

    # -- reads ----------------------------------------------------------

    def get_order_by_number(self, order_number: str) -> Order:
        # populate_existing: payment transitions bypass the identity map
        order = (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.order_number == order_number)
            .populate_existing()
            .first()
        )
        if order is None:
            raise OrderNotFoundError()
        return order

    # -- updates --------------------------------------------------------

    def update_order_status(
        self,
        order_number: str,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Order:
        """Partial admin update. Re-applying the same values is a no-op apart from updated_at."""
        order = self.get_order_by_number(order_number)

        next_payment_status = PaymentStatus(payment_status or order.payment_status)
        if status is not None:
            check_transition(
                OrderStatus(order.status),
                OrderStatus(status),
                order.payment_method,
                next_payment_status,
            )
            order.status = status
        if payment_status is not None:
            order.payment_status = payment_status
        if payment_id is not None:
            order.payment_id = payment_id
        order.updated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(order)
        return order

    def mark_payment_completed(self, order_number: str, payment_id: str, payment_method: str) -> PaymentTransition:
        """Record a verified payment.

        Only a pending order moves to ``paid``; a payment arriving for an
        order already cancelled is recorded without reviving the order.
        """
        now = datetime.utcnow()
        result = self.db.execute(
            update(Order)
            .where(
                Order.order_number == order_number,
                Order.payment_status.in_([s.value for s in VERIFIABLE_PAYMENT_STATUSES]),
            )
            .values(
                status=case(
                    (Order.status == OrderStatus.PENDING.value, OrderStatus.PAID.value),
                    else_=Order.status,
                ),
                payment_status=PaymentStatus.COMPLETED.value,
                payment_id=payment_id,
                payment_method=payment_method,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self.db.commit()
            return PaymentTransition.COMPLETED
        self.db.rollback()

        order = self.get_order_by_number(order_number)
        if order.payment_id == payment_id:
            return PaymentTransition.ALREADY_COMPLETED

        # a second gateway attempt also succeeded; keep the latest verified id
        self.db.execute(
            update(Order)
            .where(
                Order.order_number == order_number,
                Order.payment_status == PaymentStatus.COMPLETED.value,
            )
            .values(payment_id=payment_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.warning(
            f"Order {order_number} already paid with {order.payment_id}; recorded newer payment {payment_id}",
            extra={'extra_fields': {
                'order_number': order_number,
                'previous_payment_id': order.payment_id,
                'payment_id': payment_id,
                'action': 'manual_refund_review',
            }}
        )
        return PaymentTransition.PAYMENT_ID_REPLACED

    def mark_payment_failed(self, order_number: str) -> bool:
        """Flag the payment attempt as failed; a completed payment is never downgraded."""
        result = self.db.execute(
            update(Order)
            .where(
                Order.order_number == order_number,
                Order.payment_status != PaymentStatus.COMPLETED.value,
            )
            .values(payment_status=PaymentStatus.FAILED.value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self.db.commit()
            return True
        self.db.rollback()
        # raises OrderNotFoundError for unknown numbers
        self.get_order_by_number(order_number)
        return False

    # -- audit ----------------------------------------------------------

    def record_activity(
        self,
        event_type: str,
        entity_id: Optional[str],
        description: str,
        details: Optional[dict] = None,
        entity_type: str = "order",
    ) -> None:
        """Best effort: an audit row must never fail the business operation."""
        try:
            self.db.add(ActivityLog(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
                details=details,
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning(f"Failed to write activity log entry '{event_type}'", exc_info=True)


class CatalogRepository:
    def __init__(self, db: Session):
        self.db = db

    def products_by_id(self, ids: Iterable[int]) -> Dict[int, Product]:
        ids = set(ids)
        if not ids:
            return {}
        return {p.id: p for p in self.db.query(Product).filter(Product.id.in_(ids)).all()}

    def variants_by_id(self, ids: Iterable[int]) -> Dict[int, ProductVariant]:
        ids = set(ids)
        if not ids:
            return {}
        return {v.id: v for v in self.db.query(ProductVariant).filter(ProductVariant.id.in_(ids)).all()}

    def coupon_by_code(self, code: str) -> Optional[Coupon]:
        return self.db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()


class SettingsRepository:
    def __init__(self, db: Session):
        self.db = db

    def values(self, keys: List[str]) -> Dict[str, object]:
        rows = self.db.query(SiteSetting).filter(SiteSetting.key.in_(keys)).all()
        return {row.key: row.value for row in rows}
