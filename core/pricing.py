"""
Order pricing: shipping, tax and totals.

All amounts are whole currency units (NT$); tax is rounded half-up.
"""

from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from .conf import marketplace_setting

SELF_PICKUP = 'self_pickup'
ASSISTED_DELIVERY = 'assisted_delivery'

PriceBreakdown = namedtuple('PriceBreakdown', ['subtotal', 'shipping_cost', 'tax', 'total_price'])


def format_amount(amount):
    """
    Format an amount for display, e.g. Decimal('25000') -> 'NT$25,000'.

    Args:
        amount: Decimal or int amount (fractions are dropped)

    Returns:
        str: Formatted amount, or None if amount is None
    """
    if amount is None:
        return None
    prefix = marketplace_setting('CURRENCY_PREFIX')
    return f"{prefix}{int(Decimal(amount)):,}"


def calculate_shipping_cost(shipping_method, shipping_address=None):
    """
    Calculate shipping cost.

    Self-pickup is free. Assisted delivery costs the base cost plus a surcharge
    when the destination county is in the remote region list.

    Args:
        shipping_method: 'self_pickup' or 'assisted_delivery'
        shipping_address: Sanitized address dict (county is lowercase)

    Returns:
        Decimal: Shipping cost
    """
    if shipping_method == SELF_PICKUP:
        return Decimal('0')

    cost = Decimal(marketplace_setting('SHIPPING_BASE_COST'))
    county = (shipping_address or {}).get('county', '')
    remote_regions = {region.lower() for region in marketplace_setting('REMOTE_REGIONS')}
    if county and county.lower() in remote_regions:
        cost += Decimal(marketplace_setting('REMOTE_REGION_SURCHARGE'))
    return cost


def calculate_tax(subtotal):
    """Return round(subtotal * TAX_RATE) to whole currency units."""
    rate = Decimal(str(marketplace_setting('TAX_RATE')))
    return (Decimal(subtotal) * rate).quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def calculate_order_price(subtotal, shipping_method, shipping_address=None):
    """
    Compute the full price breakdown for an order.

    Args:
        subtotal: Agreed bicycle price (listing price or accepted offer amount)
        shipping_method: 'self_pickup' or 'assisted_delivery'
        shipping_address: Sanitized address dict

    Returns:
        PriceBreakdown: subtotal, shipping_cost, tax, total_price
    """
    subtotal = Decimal(subtotal)
    shipping_cost = calculate_shipping_cost(shipping_method, shipping_address)
    tax = calculate_tax(subtotal)
    return PriceBreakdown(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total_price=subtotal + shipping_cost + tax,
    )
