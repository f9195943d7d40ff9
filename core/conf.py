"""
Access to marketplace business settings with defaults.

Values are read on every call so that override_settings() in tests takes effect.
"""

from decimal import Decimal

from django.conf import settings

DEFAULTS = {
    'TAX_RATE': Decimal('0.05'),
    'PAYMENT_WINDOW_DAYS': 3,
    'SHIPPING_BASE_COST': Decimal('100'),
    'REMOTE_REGION_SURCHARGE': Decimal('50'),
    'REMOTE_REGIONS': ('penghu', 'kinmen', 'lienchiang', 'taitung', 'hualien'),
    'CURRENCY_PREFIX': 'NT$',
    'OFFER_ACCEPTANCE_MODE': 'reserve',
    'OFFER_ORDER_SHIPPING_METHOD': 'assisted_delivery',
    'BANK_TRANSFER': {
        'bank_name': 'E.SUN Commercial Bank',
        'bank_code': '808',
        'account_number': '1234567890123',
        'account_name': 'RideCycle Used Bicycle Marketplace Ltd.',
        'branch': 'Taipei Branch',
    },
    'PAYMENT_PROOF_MAX_SIZE': 5 * 1024 * 1024,
    'PAYMENT_PROOF_CONTENT_TYPES': (
        'image/jpeg',
        'image/png',
        'image/gif',
        'application/pdf',
    ),
    'METRICS_BACKEND': 'core.metrics.LoggingMetrics',
    'SWEEPER_BATCH_SIZE': 100,
}

OFFER_ACCEPTANCE_MODES = ('reserve', 'direct_sale')


def marketplace_setting(name):
    """
    Return a marketplace setting, falling back to the built-in default.

    Args:
        name: Key inside settings.MARKETPLACE

    Returns:
        The configured value

    Raises:
        KeyError: If name is not a known marketplace setting
    """
    if name not in DEFAULTS:
        raise KeyError(f'Unknown marketplace setting: {name}')
    user_settings = getattr(settings, 'MARKETPLACE', None) or {}
    return user_settings.get(name, DEFAULTS[name])
