import random
import re
from datetime import datetime
from decimal import Decimal
from itertools import chain, repeat

import pytest

from storefront.domain.errors import InvalidStatusTransitionError, OrderCreationError, OrderNotFoundError
from storefront.domain.models import ActivityLog, Coupon, Order, OrderItem
from storefront.infrastructure.repository import (
    NewOrder,
    NewOrderItem,
    OrderRepository,
    PaymentTransition,
    generate_order_number,
)

ADDRESS = {"full_name": "Asha Verma", "city": "Bengaluru"}


def _order(**kwargs):
    values = dict(
        payment_method="razorpay",
        payment_status="awaiting",
        subtotal=Decimal("500.00"),
        total=Decimal("500.00"),
        shipping_address=ADDRESS,
        guest_email="asha@example.com",
    )
    values.update(kwargs)
    return NewOrder(**values)


def _item(**kwargs):
    values = dict(product_id=1, product_name="Oud Royale", quantity=2, unit_price=Decimal("250.00"))
    values.update(kwargs)
    return NewOrderItem(**values)


def _numbers(*numbers):
    it = iter(numbers)
    return lambda: next(it)


def test_order_number_format():
    number = generate_order_number("MYS", datetime(2026, 10, 18, 23, 59), random.Random(7))
    assert re.fullmatch(r"MYS-20261018-\d{4}", number)


def test_order_number_suffix_is_zero_padded():
    class Low:
        def randint(self, a, b):
            return 7

    assert generate_order_number("MYS", datetime(2026, 1, 2), Low()) == "MYS-20260102-0007"


def test_create_order_with_items(session):
    created = OrderRepository(session).create_order(_order(), [_item(), _item(product_id=2, quantity=1)])

    assert created.items_persisted
    assert not created.existing
    order = created.order
    assert order.status == "pending"
    assert order.payment_status == "awaiting"
    assert [i.total_price for i in order.items] == [Decimal("500.00"), Decimal("250.00")]


def test_order_number_collision_is_retried(session):
    repo = OrderRepository(session, number_generator=_numbers("MYS-20261018-0001", "MYS-20261018-0001", "MYS-20261018-0002"))
    first = repo.create_order(_order(), [_item()])
    second = repo.create_order(_order(), [_item()])

    assert first.order.order_number == "MYS-20261018-0001"
    assert second.order.order_number == "MYS-20261018-0002"
    assert session.query(Order).count() == 2


def test_order_number_retries_are_bounded(session):
    numbers = chain(["MYS-20261018-0001"], repeat("MYS-20261018-0001"))
    repo = OrderRepository(session, max_attempts=3, number_generator=lambda: next(numbers))
    repo.create_order(_order(), [_item()])

    with pytest.raises(OrderCreationError):
        repo.create_order(_order(), [_item()])
    assert session.query(Order).count() == 1


def test_failed_item_insert_keeps_the_order(session):
    # product_name is NOT NULL, so the item insert fails
    created = OrderRepository(session).create_order(_order(), [_item(product_name=None)])

    assert created.items_persisted is False
    assert session.query(Order).filter_by(order_number=created.order.order_number).count() == 1
    assert session.query(OrderItem).count() == 0


def test_repeated_checkout_token_returns_existing_order(session):
    repo = OrderRepository(session)
    first = repo.create_order(_order(checkout_token="tok-1"), [_item()])
    again = repo.create_order(_order(checkout_token="tok-1"), [_item()])

    assert again.existing
    assert again.order.order_number == first.order.order_number
    assert session.query(Order).count() == 1


def test_coupon_use_is_counted_with_the_order(session):
    coupon = Coupon(code="SAVE10", discount_type="percentage", discount_value=Decimal("10"), used_count=0, is_active=True)
    session.add(coupon)
    session.commit()

    OrderRepository(session).create_order(_order(coupon_id=coupon.id), [_item()])
    session.refresh(coupon)
    assert coupon.used_count == 1


def test_unknown_order_number(session):
    with pytest.raises(OrderNotFoundError):
        OrderRepository(session).get_order_by_number("MYS-20000101-0000")


def test_payment_completion_happens_once(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(), [_item()]).order.order_number

    assert repo.mark_payment_completed(number, "pay_1", "razorpay") == PaymentTransition.COMPLETED
    assert repo.mark_payment_completed(number, "pay_1", "razorpay") == PaymentTransition.ALREADY_COMPLETED

    order = repo.get_order_by_number(number)
    assert (order.status, order.payment_status, order.payment_id) == ("paid", "completed", "pay_1")


def test_second_successful_payment_replaces_payment_id(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(), [_item()]).order.order_number
    repo.mark_payment_completed(number, "pay_1", "razorpay")

    assert repo.mark_payment_completed(number, "pay_2", "razorpay") == PaymentTransition.PAYMENT_ID_REPLACED
    order = repo.get_order_by_number(number)
    assert order.payment_id == "pay_2"
    assert order.status == "paid"


def test_failed_attempt_can_still_be_paid(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(), [_item()]).order.order_number

    assert repo.mark_payment_failed(number) is True
    assert repo.get_order_by_number(number).payment_status == "failed"
    assert repo.mark_payment_completed(number, "pay_1", "razorpay") == PaymentTransition.COMPLETED


def test_completed_payment_is_never_downgraded(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(), [_item()]).order.order_number
    repo.mark_payment_completed(number, "pay_1", "razorpay")

    assert repo.mark_payment_failed(number) is False
    order = repo.get_order_by_number(number)
    assert (order.status, order.payment_status) == ("paid", "completed")


def test_payment_on_cancelled_order_does_not_revive_it(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(), [_item()]).order.order_number
    repo.update_order_status(number, status="cancelled")

    assert repo.mark_payment_completed(number, "pay_1", "razorpay") == PaymentTransition.COMPLETED
    order = repo.get_order_by_number(number)
    assert (order.status, order.payment_status) == ("cancelled", "completed")


def test_mark_failed_unknown_order(session):
    with pytest.raises(OrderNotFoundError):
        OrderRepository(session).mark_payment_failed("MYS-20000101-0000")


def test_admin_update_checks_state_machine(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(payment_method="cod", payment_status="pending"), [_item()]).order.order_number

    order = repo.update_order_status(number, status="processing")
    assert order.status == "processing"
    # same value again is accepted
    assert repo.update_order_status(number, status="processing").status == "processing"

    with pytest.raises(InvalidStatusTransitionError):
        repo.update_order_status(number, status="pending")

    order = repo.update_order_status(number, status="shipped", payment_status="completed", payment_id="cash-001")
    assert (order.status, order.payment_status, order.payment_id) == ("shipped", "completed", "cash-001")


def test_unpaid_online_order_cannot_be_processed(session):
    repo = OrderRepository(session)
    number = repo.create_order(_order(), [_item()]).order.order_number
    with pytest.raises(InvalidStatusTransitionError):
        repo.update_order_status(number, status="processing")
    assert repo.get_order_by_number(number).status == "pending"


def test_record_activity(session):
    repo = OrderRepository(session)
    repo.record_activity("payment_received", "MYS-20261018-0001", "Payment received", {"payment_id": "pay_1"})
    row = session.query(ActivityLog).one()
    assert (row.event_type, row.entity_type, row.details) == ("payment_received", "order", {"payment_id": "pay_1"})
