"""
Tests for order pricing: shipping, tax and totals.
"""

from decimal import Decimal

import pytest
from django.test import override_settings

from core.pricing import (
    ASSISTED_DELIVERY,
    SELF_PICKUP,
    calculate_order_price,
    calculate_shipping_cost,
    calculate_tax,
    format_amount,
)


class TestFormatAmount:

    def test_thousands_separator(self):
        assert format_amount(Decimal('25000')) == 'NT$25,000'

    def test_fraction_is_dropped(self):
        assert format_amount(Decimal('19000.00')) == 'NT$19,000'

    def test_small_amount(self):
        assert format_amount(500) == 'NT$500'

    def test_none(self):
        assert format_amount(None) is None

    @override_settings(MARKETPLACE={'CURRENCY_PREFIX': 'TWD '})
    def test_prefix_is_configurable(self):
        assert format_amount(Decimal('1234567')) == 'TWD 1,234,567'


class TestShippingCost:

    def test_self_pickup_is_free(self):
        assert calculate_shipping_cost(SELF_PICKUP, {'county': 'penghu'}) == Decimal('0')

    def test_delivery_base_cost(self):
        assert calculate_shipping_cost(ASSISTED_DELIVERY, {'county': 'taipei'}) == Decimal('100')

    @pytest.mark.parametrize('county', ['penghu', 'kinmen', 'lienchiang', 'taitung', 'hualien'])
    def test_remote_region_surcharge(self, county):
        assert calculate_shipping_cost(ASSISTED_DELIVERY, {'county': county}) == Decimal('150')

    def test_remote_region_match_is_case_insensitive(self):
        assert calculate_shipping_cost(ASSISTED_DELIVERY, {'county': 'Kinmen'}) == Decimal('150')

    def test_delivery_without_address(self):
        assert calculate_shipping_cost(ASSISTED_DELIVERY) == Decimal('100')

    @override_settings(MARKETPLACE={'SHIPPING_BASE_COST': Decimal('80'), 'REMOTE_REGION_SURCHARGE': Decimal('70')})
    def test_costs_are_configurable(self):
        assert calculate_shipping_cost(ASSISTED_DELIVERY, {'county': 'penghu'}) == Decimal('150')
        assert calculate_shipping_cost(ASSISTED_DELIVERY, {'county': 'taipei'}) == Decimal('80')


class TestTax:

    def test_five_percent(self):
        assert calculate_tax(Decimal('25000')) == Decimal('1250')

    def test_rounds_half_up(self):
        # 30 * 0.05 = 1.5
        assert calculate_tax(Decimal('30')) == Decimal('2')
        # 10 * 0.05 = 0.5
        assert calculate_tax(Decimal('10')) == Decimal('1')

    def test_rounds_down_below_half(self):
        # 29 * 0.05 = 1.45
        assert calculate_tax(Decimal('29')) == Decimal('1')

    @override_settings(MARKETPLACE={'TAX_RATE': Decimal('0.1')})
    def test_rate_is_configurable(self):
        assert calculate_tax(Decimal('999')) == Decimal('100')


class TestOrderPrice:

    def test_total_is_sum_of_parts(self):
        price = calculate_order_price(Decimal('25000'), ASSISTED_DELIVERY, {'county': 'taipei'})

        assert price.subtotal == Decimal('25000')
        assert price.shipping_cost == Decimal('100')
        assert price.tax == Decimal('1250')
        assert price.total_price == Decimal('26350')

    def test_self_pickup_total(self):
        price = calculate_order_price(Decimal('24000'), SELF_PICKUP)

        assert price.total_price == Decimal('25200')

    def test_remote_delivery_total(self):
        price = calculate_order_price(Decimal('20000'), ASSISTED_DELIVERY, {'county': 'hualien'})

        assert price.total_price == Decimal('21150')
