"""
Tests for the escrow ledger primitives.
"""

from decimal import Decimal

import pytest

from core import ledger
from core.exceptions import ValidationError
from core.ledger import LedgerError, PurseDelta
from core.models import Purse, PurseTransaction


@pytest.mark.django_db
class TestCreditPurse:

    def test_credit_creates_purse_and_ledger_line(self, make_user):
        user = make_user('FIXER')

        entry = ledger.credit_purse(
            user,
            PurseDelta(available=Decimal('100.00'), revenue=Decimal('100.00')),
            PurseTransaction.ENTRY_ADJUSTMENT,
            memo='Opening balance',
        )

        purse = Purse.objects.get(user=user)
        assert purse.available_balance == Decimal('100.00')
        assert purse.total_revenue == Decimal('100.00')
        assert entry.purse == purse
        assert entry.available_delta == Decimal('100.00')
        assert entry.memo == 'Opening balance'

    def test_zero_delta_writes_nothing(self, make_user):
        user = make_user('FIXER')

        assert ledger.credit_purse(user, PurseDelta(), PurseTransaction.ENTRY_ADJUSTMENT) is None
        assert not Purse.objects.filter(user=user).exists()
        assert PurseTransaction.objects.count() == 0

    def test_platform_purse_is_shared(self):
        ledger.credit_purse(None, PurseDelta(available=Decimal('10')), PurseTransaction.ENTRY_ADJUSTMENT)
        ledger.credit_purse(None, PurseDelta(available=Decimal('5')), PurseTransaction.ENTRY_BONUS_FUNDING)

        assert Purse.objects.filter(is_platform=True).count() == 1
        assert ledger.get_platform_purse().available_balance == Decimal('15.00')

    def test_overdraft_is_rejected(self, make_user):
        user = make_user('AGENT')
        ledger.credit_purse(user, PurseDelta(commission=Decimal('50')), PurseTransaction.ENTRY_ADJUSTMENT)

        with pytest.raises(LedgerError):
            ledger.credit_purse(
                user, PurseDelta(commission=Decimal('-80')), PurseTransaction.ENTRY_COMMISSION_WITHDRAWAL
            )

        purse = Purse.objects.get(user=user)
        assert purse.commission_balance == Decimal('50.00')
        assert purse.entries.count() == 1

    def test_duplicate_movement_for_order_is_rejected(self, request_order_factory):
        order = request_order_factory(labor_cost='5000')
        ledger.credit_purse(
            order.fixer, PurseDelta(available=Decimal('1')), PurseTransaction.ENTRY_PAYOUT, order=order
        )

        with pytest.raises(LedgerError):
            ledger.credit_purse(
                order.fixer, PurseDelta(available=Decimal('1')), PurseTransaction.ENTRY_PAYOUT, order=order
            )

        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('1.00')


@pytest.mark.django_db
class TestEscrowHolds:

    def test_full_payment_holds_fee_and_escrow(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', stage='paid')

        assert ledger.held_amounts(order) == (Decimal('4250.00'), Decimal('750.00'))
        platform = ledger.get_platform_purse()
        assert platform.pending_balance == Decimal('4250.00')
        assert platform.commission_balance == Decimal('750.00')

    def test_down_payment_split_pro_rata(self, request_order_factory):
        """A 1500 down payment on a 5000 order holds 225 fee and 1275 escrow."""
        order = request_order_factory(labor_cost='5000', down_payment_percentage='30')

        assert ledger.held_amounts(order) == (Decimal('1275.00'), Decimal('225.00'))

    def test_final_capture_completes_down_payment_order(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', down_payment_percentage='30', stage='paid')

        assert ledger.held_amounts(order) == (Decimal('4250.00'), Decimal('750.00'))
        assert PurseTransaction.objects.filter(
            order=order, entry_type__in=PurseTransaction.HOLD_ENTRIES
        ).count() == 2

    def test_final_capture_must_match_remaining(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', stage='completed')

        with pytest.raises(LedgerError):
            ledger.record_escrow_hold(order, Decimal('4000'))


@pytest.mark.django_db
class TestReleasePlan:

    def test_full_release(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', stage='paid')

        plan = ledger.plan_release(order)

        assert plan.captured == Decimal('5000.00')
        assert plan.fixer_payout == Decimal('4250.00')
        assert plan.fee_kept == Decimal('750.00')
        assert plan.client_refund == Decimal('0.00')

    def test_partial_refund_scales_fee(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', stage='paid')

        plan = ledger.plan_release(order, Decimal('2000'))

        assert plan.fee_kept == Decimal('450.00')
        assert plan.fixer_payout == Decimal('2550.00')
        assert plan.fixer_payout + plan.fee_kept + plan.client_refund == plan.captured

    @pytest.mark.parametrize('refund', ['-1', '5000.01'])
    def test_refund_out_of_range(self, request_order_factory, refund):
        order = request_order_factory(labor_cost='5000', stage='paid')

        with pytest.raises(ValidationError):
            ledger.plan_release(order, Decimal(refund))

    def test_nothing_captured(self, request_order_factory):
        order = request_order_factory(labor_cost='5000')

        plan = ledger.plan_release(order)

        assert plan.captured == Decimal('0.00')
        assert plan.fee_kept == Decimal('0.00')
        assert plan.fixer_payout == Decimal('0.00')

    def test_commission_above_fee_comes_out_of_fixer_payout(self, request_order_factory, agent):
        order = request_order_factory(labor_cost='5000', stage='paid')
        plan = ledger.plan_release(order)

        applied = ledger.apply_release(order, plan, agent_user=agent.user, agent_commission=Decimal('1000.00'))

        assert applied.agent_commission == Decimal('1000.00')
        assert applied.fee_kept == Decimal('0.00')
        assert applied.fixer_payout == Decimal('4000.00')
        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('4000.00')
        assert Purse.objects.get(user=agent.user).commission_balance == Decimal('1000.00')

    def test_commission_above_released_amount_is_rejected(self, request_order_factory, agent):
        order = request_order_factory(labor_cost='5000', stage='paid')
        plan = ledger.plan_release(order)

        with pytest.raises(LedgerError):
            ledger.apply_release(order, plan, agent_user=agent.user, agent_commission=Decimal('5000.01'))

        assert not ledger.escrow_released(order)

    def test_release_is_recorded_once(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', stage='paid')
        ledger.release_escrow(order)

        assert ledger.escrow_released(order)
        with pytest.raises(LedgerError):
            ledger.release_escrow(order)


@pytest.mark.django_db
class TestPurseDrift:

    def test_consistent_purse_has_no_drift(self, request_order_factory):
        request_order_factory(labor_cost='5000', stage='paid')

        for purse in Purse.objects.all():
            assert ledger.purse_drift(purse) == {}

    def test_drift_detected_and_repaired(self, make_user):
        user = make_user('FIXER')
        ledger.credit_purse(user, PurseDelta(available=Decimal('300')), PurseTransaction.ENTRY_ADJUSTMENT)
        Purse.objects.filter(user=user).update(available_balance=Decimal('999.00'))
        purse = Purse.objects.get(user=user)

        assert ledger.purse_drift(purse) == {
            'available_balance': (Decimal('300.00'), Decimal('999.00')),
        }

        ledger.repair_purse(purse)

        purse.refresh_from_db()
        assert purse.available_balance == Decimal('300.00')
        assert ledger.purse_drift(purse) == {}
