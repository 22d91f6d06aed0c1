from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from storefront.application.pricing import (
    calculate_shipping,
    calculate_tax,
    calculate_total,
    compute_totals,
    coupon_discount,
    effective_unit_price,
    money,
)
from storefront.application.site_settings import SettingsSnapshot, ShippingSettings, TaxSettings
from storefront.domain.errors import ValidationError
from storefront.domain.models import Coupon


def test_total_with_default_tax_rate():
    subtotal = Decimal("1000")
    tax = calculate_tax(subtotal, TaxSettings())
    assert tax == Decimal("180.00")
    assert calculate_total(subtotal, 0, 0, tax) == Decimal("1180.00")


def test_tax_rounds_half_up_to_cents():
    assert calculate_tax(Decimal("0.25"), TaxSettings(rate=10)) == Decimal("0.03")
    assert calculate_tax(Decimal("99.95"), TaxSettings(rate=18)) == Decimal("17.99")


def test_shipping_free_from_threshold_inclusive():
    shipping = ShippingSettings(base_price=99, free_threshold=1500)
    assert calculate_shipping(Decimal("1499.99"), shipping) == Decimal("99.00")
    assert calculate_shipping(Decimal("1500"), shipping) == Decimal("0.00")


def test_cod_example_totals():
    snapshot = SettingsSnapshot(tax=TaxSettings(rate=10), shipping=ShippingSettings(base_price=99, free_threshold=1500))
    totals = compute_totals([Decimal("2000")], snapshot)
    assert totals.subtotal == Decimal("2000.00")
    assert totals.shipping_amount == Decimal("0.00")
    assert totals.tax_amount == Decimal("200.00")
    assert totals.total == Decimal("2200.00")


def test_small_order_pays_shipping():
    totals = compute_totals([Decimal("500")], SettingsSnapshot())
    assert totals.shipping_amount == Decimal("99.00")
    assert totals.tax_amount == Decimal("90.00")
    assert totals.total == Decimal("689.00")


def test_total_never_negative():
    assert calculate_total(100, 500, 0, 0) == Decimal("0.00")


@pytest.mark.parametrize("price, sale, expected", [
    ("600", "500", "500.00"),
    ("600", None, "600.00"),
    ("600", "0", "600.00"),
    ("600", "600", "600.00"),
    ("600", "700", "600.00"),
])
def test_effective_unit_price(price, sale, expected):
    assert effective_unit_price(price, sale) == Decimal(expected)


def _coupon(**kwargs):
    values = dict(code="SAVE10", discount_type="percentage", discount_value=Decimal("10"),
                  used_count=0, is_active=True)
    values.update(kwargs)
    return Coupon(**values)


def test_percentage_coupon():
    assert coupon_discount(_coupon(), Decimal("1999.99")) == Decimal("200.00")


def test_fixed_coupon_is_capped_at_subtotal():
    coupon = _coupon(discount_type="fixed", discount_value=Decimal("500"))
    assert coupon_discount(coupon, Decimal("300")) == Decimal("300.00")


@pytest.mark.parametrize("overrides, message", [
    ({"is_active": False}, "Coupon is not active"),
    ({"expires_at": datetime.utcnow() - timedelta(days=1)}, "Coupon has expired"),
    ({"max_uses": 5, "used_count": 5}, "Coupon usage limit reached"),
    ({"min_order_amount": Decimal("1000")}, "Minimum order amount for this coupon is 1000.00"),
])
def test_coupon_rejections(overrides, message):
    with pytest.raises(ValidationError) as exc:
        coupon_discount(_coupon(**overrides), Decimal("500"))
    assert exc.value.details == [{"field": "coupon_code", "message": message}]


def test_money_quantizes():
    assert money("149.995") == Decimal("150.00")
    assert money(1) == Decimal("1.00")
