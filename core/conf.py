"""Access to the ``MARKETPLACE`` settings dictionary and money rounding."""

from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

CENT = Decimal('0.01')

DEFAULTS = {
    'CURRENCY': 'NGN',
    'REQUEST_PLATFORM_FEE_PERCENTAGE': Decimal('15'),
    'GIG_PLATFORM_FEE_PERCENTAGE': Decimal('5'),
    'MIN_DOWN_PAYMENT_PERCENTAGE': Decimal('1'),
    'MAX_DOWN_PAYMENT_PERCENTAGE': Decimal('50'),
    'MIN_DOWN_PAYMENT_AMOUNT': Decimal('1000'),
    'INSPECTION_FEE_MIN': Decimal('500'),
    'INSPECTION_FEE_MAX': Decimal('10000'),
    'AGENT_COMMISSION_BASE': 'fixer_amount',
    'FIXER_BONUS_TIERS': [],
    'OUTBOX_MAX_ATTEMPTS': 5,
}


def marketplace_setting(name):
    """
    Return a marketplace rule, falling back to the built-in default.

    Args:
        name: Key in ``settings.MARKETPLACE``

    Returns:
        The configured value
    """
    configured = getattr(settings, 'MARKETPLACE', {})
    if name in configured:
        return configured[name]
    return DEFAULTS[name]


def round_money(value):
    """Round to the currency's minor unit, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
