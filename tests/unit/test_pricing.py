"""
Unit tests for the pricing engine.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from now24.models import DiscountType
from now24.services.pricing_service import (
    line_unit_price, calculate_subtotal, calculate_coupon_discount, price_cart
)

NOW = datetime(2026, 3, 10, 12, 0)


def coupon(discount_type=DiscountType.PERCENTAGE, discount_value=10, **overrides):
    """Plain object with the Coupon attributes the pricing engine reads."""
    data = dict(
        discount_type=discount_type,
        discount_value=discount_value,
        min_order_value=0,
        max_discount=None,
        applies_to_delivery=False,
        valid_from=NOW - timedelta(days=1),
        valid_until=None,
        active=True,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


class TestLinePricing:
    """Tests for unit price and subtotal."""

    def test_unit_price_without_customizations(self):
        assert line_unit_price(2000) == 2000
        assert line_unit_price(2000, []) == 2000

    def test_unit_price_adds_customization_deltas(self):
        customizations = [{'name': 'Bacon', 'price_delta': 450}, {'name': 'Sem cebola', 'price_delta': 0}]
        assert line_unit_price(2000, customizations) == 2450

    def test_fractional_deltas_round_half_up(self):
        assert line_unit_price(1000, [{'price_delta': 0.5}]) == 1001
        assert line_unit_price(1000, [{'price_delta': 0.49}]) == 1000

    def test_negative_deltas_never_go_below_zero(self):
        assert line_unit_price(500, [{'price_delta': -800}]) == 0

    def test_subtotal_multiplies_by_quantity(self):
        lines = [
            {'price': 2000, 'quantity': 2},
            {'price': 1200, 'quantity': 1, 'customizations': [{'price_delta': 300}]},
        ]
        assert calculate_subtotal(lines) == 5500


class TestCartTotals:
    """Worked examples and coupon caps."""

    def test_no_coupon(self):
        totals = price_cart([{'price': 2000, 'quantity': 2}], 900)
        assert totals == {'subtotal': 4000, 'delivery_fee': 900, 'discount': 0, 'total': 4900}

    def test_percentage_coupon_respects_max_discount(self):
        c = coupon(discount_value=10, max_discount=300)
        totals = price_cart([{'price': 2000, 'quantity': 2}], 900, c, NOW)
        assert totals['discount'] == 300
        assert totals['total'] == 4600

    def test_percentage_coupon_floors(self):
        c = coupon(discount_value=15)
        assert calculate_coupon_discount(c, 999, 900, NOW) == 149

    def test_percentage_on_delivery_when_flagged(self):
        c = coupon(discount_value=10, applies_to_delivery=True)
        assert calculate_coupon_discount(c, 4000, 900, NOW) == 490

    def test_fixed_coupon_capped_at_subtotal_plus_fee(self):
        c = coupon(discount_type=DiscountType.FIXED, discount_value=10000)
        totals = price_cart([{'price': 2000, 'quantity': 1}], 900, c, NOW)
        assert totals['discount'] == 2900
        assert totals['total'] == 0

    def test_minimum_order_value_counts_delivery_fee(self):
        c = coupon(discount_type=DiscountType.FIXED, discount_value=500, min_order_value=4900)
        assert calculate_coupon_discount(c, 4000, 900, NOW) == 500
        assert calculate_coupon_discount(c, 3999, 900, NOW) == 0

    @pytest.mark.parametrize('overrides', [
        {'active': False},
        {'valid_from': NOW + timedelta(hours=1)},
        {'valid_until': NOW - timedelta(seconds=1)},
    ])
    def test_unusable_coupon_grants_nothing(self, overrides):
        c = coupon(discount_type=DiscountType.FIXED, discount_value=500, **overrides)
        assert calculate_coupon_discount(c, 4000, 900, NOW) == 0

    def test_pricing_is_deterministic(self):
        lines = [{'price': 1990, 'quantity': 3, 'customizations': [{'price_delta': 0.5}]}]
        c = coupon(discount_value=12, max_discount=1000)
        assert price_cart(lines, 900, c, NOW) == price_cart(list(lines), 900, c, NOW)
