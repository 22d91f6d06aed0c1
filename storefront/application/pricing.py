"""Server-side order totals.

All money is ``Decimal`` and every stored figure is rounded half-up to two
decimals. Totals are only ever computed here; a total sent by a client is at
most compared against the result.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from storefront.domain.errors import ValidationError
from storefront.domain.models import Coupon

from .site_settings import SettingsSnapshot, ShippingSettings, TaxSettings

CENT = Decimal("0.01")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def money(value: Number) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def effective_unit_price(price: Number, sale_price: Optional[Number]) -> Decimal:
    """Sale price wins only when it is positive and below the list price."""
    price = Decimal(str(price))
    if sale_price is not None:
        sale = Decimal(str(sale_price))
        if ZERO < sale < price:
            return money(sale)
    return money(price)


def calculate_tax(subtotal: Number, tax: TaxSettings) -> Decimal:
    return money(Decimal(str(subtotal)) * tax.rate / 100)


def calculate_shipping(subtotal: Number, shipping: ShippingSettings) -> Decimal:
    if Decimal(str(subtotal)) >= shipping.free_threshold:
        return money(ZERO)
    return money(shipping.base_price)


def calculate_total(subtotal: Number, discount: Number, shipping: Number, tax: Number) -> Decimal:
    total = Decimal(str(subtotal)) - Decimal(str(discount)) + Decimal(str(shipping)) + Decimal(str(tax))
    return money(max(total, ZERO))


def coupon_discount(coupon: Coupon, subtotal: Decimal, now: Optional[datetime] = None) -> Decimal:
    """Discount granted by ``coupon`` on ``subtotal``; raises ValidationError if it does not apply."""
    now = now or datetime.utcnow()
    if not coupon.is_active:
        raise ValidationError.for_field("coupon_code", "Coupon is not active")
    if coupon.expires_at is not None and coupon.expires_at < now:
        raise ValidationError.for_field("coupon_code", "Coupon has expired")
    if coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses:
        raise ValidationError.for_field("coupon_code", "Coupon usage limit reached")
    if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
        raise ValidationError.for_field(
            "coupon_code", f"Minimum order amount for this coupon is {money(coupon.min_order_amount)}"
        )

    value = Decimal(str(coupon.discount_value))
    if coupon.discount_type == "percentage":
        discount = subtotal * value / 100
    else:
        discount = value
    # never more than the goods are worth
    return money(min(discount, subtotal))


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total: Decimal


def compute_totals(
    line_totals: Iterable[Number],
    snapshot: SettingsSnapshot,
    discount: Number = ZERO,
) -> Totals:
    """Shipping is decided on the pre-discount subtotal, tax on the subtotal as well."""
    subtotal = money(sum((Decimal(str(t)) for t in line_totals), ZERO))
    discount = money(discount)
    shipping = calculate_shipping(subtotal, snapshot.shipping)
    tax = calculate_tax(subtotal, snapshot.tax)
    return Totals(
        subtotal=subtotal,
        discount_amount=discount,
        shipping_amount=shipping,
        tax_amount=tax,
        total=calculate_total(subtotal, discount, shipping, tax),
    )
