from decimal import Decimal

import pytest

from core.conf import DEFAULTS, marketplace_setting, round_money


class TestMarketplaceSetting:

    def test_configured_value_wins(self, settings):
        settings.MARKETPLACE = {'GIG_PLATFORM_FEE_PERCENTAGE': Decimal('7')}

        assert marketplace_setting('GIG_PLATFORM_FEE_PERCENTAGE') == Decimal('7')

    def test_missing_key_falls_back_to_default(self, settings):
        settings.MARKETPLACE = {}

        assert marketplace_setting('REQUEST_PLATFORM_FEE_PERCENTAGE') == Decimal('15')
        assert marketplace_setting('OUTBOX_MAX_ATTEMPTS') == DEFAULTS['OUTBOX_MAX_ATTEMPTS']

    def test_unknown_key_raises(self, settings):
        settings.MARKETPLACE = {}

        with pytest.raises(KeyError):
            marketplace_setting('NO_SUCH_RULE')


class TestRoundMoney:

    @pytest.mark.parametrize('value,expected', [
        ('10.005', Decimal('10.01')),
        ('10.004', Decimal('10.00')),
        (750, Decimal('750.00')),
        (Decimal('2.675'), Decimal('2.68')),
    ])
    def test_rounds_half_up_to_cents(self, value, expected):
        assert round_money(value) == expected
