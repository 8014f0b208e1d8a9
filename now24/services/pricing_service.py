"""
Pricing engine.

Pure functions shared by the cart preview and order creation, so the
numbers a customer sees are the numbers the order stores. All amounts are
integer centavos.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from now24.models.coupon import DiscountType


def line_unit_price(price: int, customizations: Optional[List[Dict[str, Any]]] = None) -> int:
    """
    Unit price of a line: product price plus every customization delta.

    Deltas may be fractional; the sum is rounded half-up to centavos and
    never goes below zero.
    """
    total = Decimal(int(price))
    for customization in customizations or ():
        total += Decimal(str(customization.get('price_delta') or 0))
    unit = int(total.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    return max(unit, 0)


def calculate_subtotal(lines: Iterable[Dict[str, Any]]) -> int:
    """Sum of unit price x quantity over lines of {price, quantity, customizations}."""
    subtotal = 0
    for line in lines:
        subtotal += line_unit_price(line['price'], line.get('customizations')) * int(line['quantity'])
    return subtotal


def coupon_is_applicable(coupon, subtotal: int, delivery_fee: int, now: datetime) -> bool:
    """Activity, validity window and minimum order value (against subtotal + fee)."""
    if coupon is None or not coupon.active:
        return False
    if coupon.valid_from and now < coupon.valid_from:
        return False
    if coupon.valid_until and now > coupon.valid_until:
        return False
    if subtotal + delivery_fee < (coupon.min_order_value or 0):
        return False
    return True


def calculate_coupon_discount(coupon, subtotal: int, delivery_fee: int, now: Optional[datetime] = None) -> int:
    """
    Discount granted by a coupon, already capped.

    Usage limits are not checked here; they need the database and are
    enforced by the coupon service.
    """
    now = now or datetime.utcnow()
    if not coupon_is_applicable(coupon, subtotal, delivery_fee, now):
        return 0

    ceiling = subtotal + delivery_fee
    discount_type = DiscountType(coupon.discount_type)

    if discount_type == DiscountType.FIXED:
        discount = int(coupon.discount_value)
    else:
        base = subtotal + delivery_fee if coupon.applies_to_delivery else subtotal
        discount = base * int(coupon.discount_value) // 100
        if coupon.max_discount is not None:
            discount = min(discount, int(coupon.max_discount))

    return max(0, min(discount, ceiling))


def price_cart(
    lines: Iterable[Dict[str, Any]],
    delivery_fee: int,
    coupon=None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Price a set of lines.

    Args:
        lines: dicts with `price`, `quantity` and optional `customizations`
        delivery_fee: flat delivery fee in centavos
        coupon: Coupon (or any object with the same attributes) or None
        now: evaluation instant for the coupon validity window

    Returns:
        dict with subtotal, delivery_fee, discount and total
    """
    subtotal = calculate_subtotal(lines)
    discount = calculate_coupon_discount(coupon, subtotal, delivery_fee, now) if coupon else 0
    total = max(subtotal + delivery_fee - discount, 0)
    return {
        'subtotal': subtotal,
        'delivery_fee': delivery_fee,
        'discount': discount,
        'total': total,
    }
