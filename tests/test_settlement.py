"""
Tests for order settlement.

Test Coverage:
- Escrow release into fixer and platform purses
- Agent commission paid out of the platform fee, then the fixer payout
- At-most-once settlement
- Agent-fixer bonus, including failures that must not undo the settlement
- Authorization on the service and the endpoint
"""

import threading
import time
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import OperationalError, connection, transaction

from core import ledger, settlement
from core.exceptions import Forbidden, InvalidState
from core.models import (
    Agent,
    AgentCommission,
    AgentFixer,
    Order,
    OutboxEvent,
    Payment,
    Purse,
    PurseTransaction,
)


def platform_purse():
    return Purse.objects.get(is_platform=True)


@pytest.mark.django_db
class TestSettleOrder:
    """Releasing escrow of a paid order."""

    def test_settlement_pays_fixer_and_keeps_fee(self, request_order_factory, admin_user):
        """A 5000 order pays the fixer 4250 and the platform keeps 750."""
        order = request_order_factory(labor_cost='5000', stage='paid')

        order = settlement.settle_order(order.pk, admin_user)

        assert order.status == Order.STATUS_SETTLED
        assert order.settled_at is not None

        fixer_purse = Purse.objects.get(user=order.fixer)
        assert fixer_purse.available_balance == Decimal('4250.00')
        assert fixer_purse.total_revenue == Decimal('4250.00')

        platform = platform_purse()
        assert platform.pending_balance == Decimal('0.00')
        assert platform.commission_balance == Decimal('0.00')
        assert platform.available_balance == Decimal('750.00')
        assert platform.total_revenue == Decimal('750.00')

        payment = Payment.objects.get(order=order)
        assert payment.status == Payment.STATUS_RELEASED
        assert payment.released_at is not None

    def test_settlement_notifies_fixer(self, request_order_factory, admin_user):
        order = request_order_factory(labor_cost='5000', stage='paid')
        settlement.settle_order(order.pk, admin_user)

        event = OutboxEvent.objects.get(recipient=order.fixer, event_type='ORDER_SETTLED')
        assert event.payload['amount'] == '4250.00'

    def test_agent_commission_comes_out_of_platform_fee(self, request_order_factory, agent, admin_user):
        """A 10% agent earns 425 on the fixer amount; the platform keeps 325."""
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')

        settlement.settle_order(order.pk, admin_user)

        commission = AgentCommission.objects.get(order=order)
        assert commission.commission_type == AgentCommission.TYPE_ORDER_COMMISSION
        assert commission.amount == Decimal('425.00')
        assert commission.order_amount == Decimal('4250.00')
        assert commission.status == AgentCommission.STATUS_PENDING

        agent_purse = Purse.objects.get(user=agent.user)
        assert agent_purse.commission_balance == Decimal('425.00')
        assert agent_purse.total_revenue == Decimal('425.00')
        assert platform_purse().available_balance == Decimal('325.00')
        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('4250.00')

    def test_commission_above_platform_fee_is_paid_in_full(self, request_order_factory, agent, admin_user):
        """A 20% agent earns 850; the 100 the fee cannot cover comes out of the fixer payout."""
        agent.commission_percentage = Decimal('20.00')
        agent.save()
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')

        settlement.settle_order(order.pk, admin_user)

        assert AgentCommission.objects.get(order=order).amount == Decimal('850.00')
        assert Purse.objects.get(user=agent.user).commission_balance == Decimal('850.00')
        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('4150.00')
        assert platform_purse().available_balance == Decimal('0.00')
        for purse in Purse.objects.all():
            assert ledger.purse_drift(purse) == {}

    def test_settling_twice_changes_nothing(self, request_order_factory, agent, admin_user):
        """A second settle call writes no ledger lines and no second commission."""
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')
        settlement.settle_order(order.pk, admin_user)
        lines_before = PurseTransaction.objects.count()

        again = settlement.settle_order(order.pk, admin_user)

        assert again.status == Order.STATUS_SETTLED
        assert PurseTransaction.objects.count() == lines_before
        assert AgentCommission.objects.filter(order=order).count() == 1
        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('4250.00')

    def test_down_payment_order_settles_full_amount(self, request_order_factory, admin_user):
        """Down payment and final payment are released together."""
        order = request_order_factory(labor_cost='5000', down_payment_percentage='30', stage='paid')
        assert Payment.objects.get(order=order).amount == Decimal('5000.00')

        settlement.settle_order(order.pk, admin_user)

        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('4250.00')
        platform = platform_purse()
        assert platform.pending_balance == Decimal('0.00')
        assert platform.commission_balance == Decimal('0.00')
        assert platform.available_balance == Decimal('750.00')

    def test_ledger_matches_balances_after_settlement(self, request_order_factory, agent, admin_user):
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')
        settlement.settle_order(order.pk, admin_user)

        for purse in Purse.objects.all():
            assert ledger.purse_drift(purse) == {}

    def test_unpaid_order_cannot_be_settled(self, request_order_factory, admin_user):
        order = request_order_factory(labor_cost='5000', stage='completed')

        with pytest.raises(InvalidState):
            settlement.settle_order(order.pk, admin_user)

        order.refresh_from_db()
        assert order.status == Order.STATUS_COMPLETED
        assert not PurseTransaction.objects.filter(entry_type=PurseTransaction.ENTRY_ESCROW_RELEASE).exists()

    def test_non_admin_cannot_settle(self, request_order_factory):
        order = request_order_factory(labor_cost='5000', stage='paid')

        with pytest.raises(Forbidden):
            settlement.settle_order(order.pk, order.client)

        order.refresh_from_db()
        assert order.status == Order.STATUS_PAID


@pytest.mark.django_db(transaction=True)
class TestConcurrentSettlement:
    """
    Two admins settling the same order at once.

    Besides real threads, a stale snapshot stands in for a loser that read the
    order as PAID before the winner committed.
    """

    def assert_settled_once(self, order, agent):
        assert PurseTransaction.objects.filter(
            purse__user=order.fixer, order=order, entry_type=PurseTransaction.ENTRY_PAYOUT
        ).count() == 1
        assert PurseTransaction.objects.filter(
            order=order, entry_type=PurseTransaction.ENTRY_ESCROW_RELEASE
        ).count() == 1
        assert AgentCommission.objects.filter(order=order).count() == 1
        assert Purse.objects.get(user=order.fixer).available_balance == Decimal('4250.00')
        assert Purse.objects.get(user=agent.user).commission_balance == Decimal('425.00')

    def test_two_threads_settle_once(self, request_order_factory, agent, admin_user):
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')
        barrier = threading.Barrier(2)
        results = []

        def settle():
            barrier.wait()
            try:
                # SQLite reports a locked table instead of waiting for the other writer
                for _attempt in range(50):
                    try:
                        results.append(settlement.settle_order(order.pk, admin_user).status)
                        return
                    except OperationalError:
                        time.sleep(0.02)
            finally:
                connection.close()

        threads = [threading.Thread(target=settle) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == [Order.STATUS_SETTLED, Order.STATUS_SETTLED]
        self.assert_settled_once(order, agent)

    def test_stale_reader_loses_guarded_update(self, request_order_factory, agent, admin_user):
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')
        stale = Order.objects.get(pk=order.pk)
        settlement.settle_order(order.pk, admin_user)

        with patch('core.settlement.get_order', return_value=stale), \
                patch('core.settlement.lock_order', return_value=stale):
            settlement.settle_order(order.pk, admin_user)

        self.assert_settled_once(order, agent)

    def test_second_release_is_refused_by_ledger(self, request_order_factory, agent, admin_user):
        order = request_order_factory(labor_cost='5000', agent=agent, stage='paid')
        settlement.settle_order(order.pk, admin_user)
        lines_before = PurseTransaction.objects.count()

        with pytest.raises(ledger.LedgerError):
            with transaction.atomic():
                settlement._release(Order.objects.get(pk=order.pk))

        assert PurseTransaction.objects.count() == lines_before
        self.assert_settled_once(order, agent)


@pytest.mark.django_db
class TestFixerBonus:
    """First settled order of a managed fixer pays the agent a bonus."""

    @pytest.fixture
    def managed_fixer(self, make_fixer, agent):
        fixer = make_fixer()
        AgentFixer.objects.create(agent=agent, fixer=fixer)
        return fixer

    def test_bonus_paid_on_first_settled_order(self, request_order_factory, managed_fixer, agent, admin_user):
        """One managed fixer puts the agent in the first tier: a 50 bonus."""
        order = request_order_factory(labor_cost='5000', fixer=managed_fixer, stage='paid')

        settlement.settle_order(order.pk, admin_user)

        bonus = AgentCommission.objects.get(commission_type=AgentCommission.TYPE_FIXER_BONUS)
        assert bonus.amount == Decimal('50.00')
        relation = AgentFixer.objects.get(agent=agent, fixer=managed_fixer)
        assert relation.bonus_paid is True
        assert relation.first_order_id == order.pk

        agent_purse = Purse.objects.get(user=agent.user)
        assert agent_purse.commission_balance == Decimal('475.00')
        assert platform_purse().available_balance == Decimal('275.00')

    def test_bonus_paid_only_once(self, request_order_factory, managed_fixer, admin_user):
        first = request_order_factory(labor_cost='5000', fixer=managed_fixer, stage='paid')
        second = request_order_factory(labor_cost='8000', fixer=managed_fixer, stage='paid')

        settlement.settle_order(first.pk, admin_user)
        settlement.settle_order(second.pk, admin_user)

        assert AgentCommission.objects.filter(commission_type=AgentCommission.TYPE_FIXER_BONUS).count() == 1

    def test_bonus_goes_to_mediating_agent(self, request_order_factory, managed_fixer, agent, make_user,
                                           admin_user):
        """A fixer linked to two agents earns the bonus for the agent who mediated the order."""
        other_agent = Agent.objects.create(
            user=make_user('AGENT'), commission_percentage=Decimal('10.00'), is_active=True
        )
        AgentFixer.objects.create(agent=other_agent, fixer=managed_fixer)
        order = request_order_factory(labor_cost='5000', agent=other_agent, fixer=managed_fixer, stage='paid')

        settlement.settle_order(order.pk, admin_user)

        bonus = AgentCommission.objects.get(commission_type=AgentCommission.TYPE_FIXER_BONUS)
        assert bonus.agent == other_agent
        assert AgentFixer.objects.get(agent=other_agent, fixer=managed_fixer).bonus_paid is True
        assert AgentFixer.objects.get(agent=agent, fixer=managed_fixer).bonus_paid is False

    def test_order_without_request_agent_pays_oldest_link(self, request_order_factory, managed_fixer, agent,
                                                          make_user, admin_user):
        other_agent = Agent.objects.create(
            user=make_user('AGENT'), commission_percentage=Decimal('10.00'), is_active=True
        )
        AgentFixer.objects.create(agent=other_agent, fixer=managed_fixer)
        order = request_order_factory(labor_cost='5000', fixer=managed_fixer, stage='paid')

        settlement.settle_order(order.pk, admin_user)

        assert AgentFixer.objects.get(agent=agent, fixer=managed_fixer).bonus_paid is True
        assert AgentFixer.objects.get(agent=other_agent, fixer=managed_fixer).bonus_paid is False

    def test_bonus_disabled_for_agent(self, request_order_factory, managed_fixer, agent, admin_user):
        agent.fixer_bonus_enabled = False
        agent.save(update_fields=['fixer_bonus_enabled'])
        order = request_order_factory(labor_cost='5000', fixer=managed_fixer, stage='paid')

        settlement.settle_order(order.pk, admin_user)

        assert not AgentCommission.objects.filter(commission_type=AgentCommission.TYPE_FIXER_BONUS).exists()

    def test_bonus_failure_does_not_undo_settlement(self, request_order_factory, managed_fixer, admin_user, settings):
        """A bonus the platform purse cannot fund is logged and skipped."""
        settings.MARKETPLACE = {**settings.MARKETPLACE, 'FIXER_BONUS_TIERS': [(1, None, Decimal('100000'))]}
        order = request_order_factory(labor_cost='5000', fixer=managed_fixer, stage='paid')

        with patch('core.settlement.logger') as mock_logger:
            order = settlement.settle_order(order.pk, admin_user)

        mock_logger.error.assert_called_once()
        assert order.status == Order.STATUS_SETTLED
        assert Purse.objects.get(user=managed_fixer).available_balance == Decimal('4250.00')
        assert not AgentCommission.objects.filter(commission_type=AgentCommission.TYPE_FIXER_BONUS).exists()
        assert AgentFixer.objects.get(fixer=managed_fixer).bonus_paid is False


@pytest.mark.django_db
class TestSettleEndpoint:

    def test_admin_settles_through_api(self, request_order_factory, admin_user, client_for):
        order = request_order_factory(labor_cost='5000', stage='paid')

        response = client_for(admin_user).post(f'/api/admin/orders/{order.pk}/settle/')

        assert response.status_code == 200
        assert response.data['status'] == Order.STATUS_SETTLED
        assert response.data['payment']['status'] == Payment.STATUS_RELEASED

    def test_non_admin_gets_forbidden(self, request_order_factory, client_for):
        order = request_order_factory(labor_cost='5000', stage='paid')

        response = client_for(order.client).post(f'/api/admin/orders/{order.pk}/settle/')

        assert response.status_code == 403
        assert response.data['kind'] == 'Forbidden'
        order.refresh_from_db()
        assert order.status == Order.STATUS_PAID

    def test_settle_unknown_order(self, admin_user, client_for):
        response = client_for(admin_user).post(
            '/api/admin/orders/00000000-0000-0000-0000-000000000000/settle/'
        )

        assert response.status_code == 404
        assert response.data['kind'] == 'NotFound'
