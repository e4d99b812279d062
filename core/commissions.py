"""
Commission and bonus rules for agents.

``calculate_commission`` and ``get_bonus_amount`` are pure functions. The
recording functions run inside the caller's transaction and write through the
ledger.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from . import exceptions as errors
from . import notifications
from .conf import marketplace_setting, round_money
from .ledger import PurseDelta, credit_purse
from .models import Agent, AgentCommission, AgentFixer, Order, PurseTransaction
from .permissions import require_admin

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class CommissionBreakdown:
    order_amount: Decimal
    commission_percentage: Decimal
    commission_amount: Decimal
    net_amount: Decimal


def calculate_commission(order_amount, percentage):
    """
    Compute an agent commission.

    Args:
        order_amount: Commission base
        percentage: Commission rate, 0 to 100

    Returns:
        CommissionBreakdown: commission_amount = round(order_amount * percentage / 100)

    Raises:
        ValidationError: For a negative amount or an out-of-range percentage
    """
    order_amount = Decimal(order_amount)
    percentage = Decimal(percentage)
    if order_amount < 0:
        raise errors.ValidationError('Order amount cannot be negative.')
    if not (ZERO <= percentage <= HUNDRED):
        raise errors.ValidationError('Commission percentage must be between 0 and 100.')

    commission_amount = round_money(order_amount * percentage / HUNDRED)
    return CommissionBreakdown(
        order_amount=order_amount,
        commission_percentage=percentage,
        commission_amount=commission_amount,
        net_amount=order_amount - commission_amount,
    )


def commission_base(order, plan=None):
    """
    The amount an agent commission is computed on.

    ``AGENT_COMMISSION_BASE`` selects the order's fixer amount (default) or
    its total. When a release plan is given, only the released part counts:
    the fixer payout in place of the fixer amount, and the captured amount
    less any client refund in place of the total.
    """
    if marketplace_setting('AGENT_COMMISSION_BASE') == 'total_amount':
        if plan is not None:
            return plan.captured - plan.client_refund
        return order.total_amount
    if plan is not None:
        return plan.fixer_payout
    return order.fixer_amount


def plan_order_commission(order, plan=None):
    """
    Decide the commission owed on a settled order.

    Returns None when no agent mediated the order or a commission already
    exists. The amount is never reduced: the escrow release takes any part
    above the platform fee kept out of the fixer payout.

    Args:
        order: Order being settled
        plan: ReleasePlan before the commission is applied, if any

    Returns:
        tuple: (agent, CommissionBreakdown) or None
    """
    agent = order.mediating_agent()
    if agent is None:
        return None
    if AgentCommission.objects.filter(order=order).exists():
        logger.info(f"Commission already recorded. Order ID: {order.pk}, Agent ID: {agent.pk}")
        return None

    return agent, calculate_commission(commission_base(order, plan), agent.commission_percentage)


def record_order_commission(order, agent, breakdown):
    """
    Create the commission record for a settled order.

    The wallet credit itself is part of the escrow release. Must run inside
    the settlement transaction with the order row locked.

    Returns:
        AgentCommission
    """
    commission = AgentCommission.objects.create(
        agent=agent,
        order=order,
        commission_type=AgentCommission.TYPE_ORDER_COMMISSION,
        amount=breakdown.commission_amount,
        percentage=breakdown.commission_percentage,
        order_amount=breakdown.order_amount,
    )
    notifications.notify(
        agent.user,
        notifications.COMMISSION_EARNED,
        'Commission earned',
        f"You earned {breakdown.commission_amount} commission on order {order.pk}.",
        link='/agent/commissions',
        payload={'order_id': str(order.pk), 'amount': str(breakdown.commission_amount)},
    )
    logger.info(
        f"Agent commission recorded. Order ID: {order.pk}, Agent ID: {agent.pk}, "
        f"Amount: {breakdown.commission_amount} ({breakdown.commission_percentage}% of "
        f"{breakdown.order_amount})"
    )
    return commission


# ============================================================================
# Agent-fixer bonus
# ============================================================================

def get_bonus_amount(agent):
    """
    Bonus for a managed fixer's first order, by the agent's fixer count tier.

    Returns:
        Decimal: Bonus amount, 0 when no tier matches
    """
    managed = agent.total_fixers_managed
    for minimum, maximum, amount in marketplace_setting('FIXER_BONUS_TIERS'):
        if managed >= minimum and (maximum is None or managed <= maximum):
            return Decimal(amount)
    return ZERO


def should_pay_fixer_bonus(order_id, agent_fixer_id):
    """
    Check whether settling an order earns the agent-fixer bonus.

    The bonus is paid once per agent-fixer link, for the first settled order
    of that fixer.

    Returns:
        bool
    """
    relation = AgentFixer.objects.filter(pk=agent_fixer_id).first()
    if relation is None or relation.bonus_paid:
        return False
    if AgentCommission.objects.filter(agent_fixer=relation).exists():
        return False
    if relation.first_order_id is not None and str(relation.first_order_id) != str(order_id):
        return False
    return Order.objects.filter(
        pk=order_id,
        fixer_id=relation.fixer_id,
        status=Order.STATUS_SETTLED,
    ).exists()


def pay_fixer_bonus(agent_fixer_id, order_id):
    """
    Pay the agent the first-order bonus for a managed fixer.

    Idempotent: the link row is locked and re-checked, and the unique
    ``agent_fixer`` column on AgentCommission rejects a second bonus.

    Args:
        agent_fixer_id: AgentFixer primary key
        order_id: Settled order that triggered the bonus

    Returns:
        AgentCommission or None when no bonus is due
    """
    with transaction.atomic():
        relation = (
            AgentFixer.objects.select_for_update()
            .select_related('agent', 'agent__user')
            .get(pk=agent_fixer_id)
        )
        if relation.bonus_paid or AgentCommission.objects.filter(agent_fixer=relation).exists():
            logger.info(f"Fixer bonus already paid. AgentFixer ID: {relation.pk}")
            return None

        agent = relation.agent
        if not agent.fixer_bonus_enabled:
            logger.info(f"Fixer bonus disabled for agent. Agent ID: {agent.pk}")
            return None

        amount = get_bonus_amount(agent)
        if amount <= 0:
            return None

        order = Order.objects.get(pk=order_id)
        bonus = AgentCommission.objects.create(
            agent=agent,
            agent_fixer=relation,
            commission_type=AgentCommission.TYPE_FIXER_BONUS,
            amount=amount,
        )
        now = timezone.now()
        AgentFixer.objects.filter(pk=relation.pk).update(
            bonus_paid=True,
            bonus_amount=amount,
            bonus_paid_at=now,
            first_order=order,
        )
        credit_purse(
            None,
            PurseDelta(available=-amount),
            PurseTransaction.ENTRY_BONUS_FUNDING,
            order=order,
            memo=f"Bonus for agent {agent.pk} on fixer {relation.fixer_id}",
        )
        credit_purse(
            agent.user,
            PurseDelta(commission=amount, revenue=amount),
            PurseTransaction.ENTRY_FIXER_BONUS,
            order=order,
            memo=f"Bonus for fixer {relation.fixer_id} first order",
        )
        notifications.notify(
            agent.user,
            notifications.FIXER_BONUS_PAID,
            'Fixer bonus earned',
            f"You earned a {amount} bonus because your fixer completed their first order.",
            link='/agent/commissions',
            payload={'order_id': str(order.pk), 'amount': str(amount)},
        )

    logger.info(
        f"Fixer bonus paid. Agent ID: {agent.pk}, Fixer ID: {relation.fixer_id}, "
        f"Order ID: {order_id}, Amount: {amount}"
    )
    return bonus


# ============================================================================
# Commission payout
# ============================================================================

def pay_out_commissions(agent_id, actor, commission_ids=None):
    """
    Mark an agent's pending commissions as paid and debit the agent wallet.

    Args:
        agent_id: Agent primary key
        actor: Admin performing the payout
        commission_ids: Limit the payout to these commissions (all pending if None)

    Returns:
        dict: {'count': int, 'amount': Decimal}

    Raises:
        Forbidden: Caller is not an admin
        NotFound: Agent does not exist
        InvalidState: Nothing to pay, or the wallet cannot cover the payout
    """
    require_admin(actor, 'Only admins can pay out commissions.')

    with transaction.atomic():
        agent = Agent.objects.select_for_update().select_related('user').filter(pk=agent_id).first()
        if agent is None:
            raise errors.NotFound('Agent not found.')

        pending = AgentCommission.objects.select_for_update().filter(
            agent=agent,
            status=AgentCommission.STATUS_PENDING,
        )
        if commission_ids is not None:
            pending = pending.filter(pk__in=commission_ids)
        commissions = list(pending)
        if not commissions:
            raise errors.InvalidState('No pending commissions to pay out.')

        amount = sum((commission.amount for commission in commissions), ZERO)
        if amount > agent.wallet_balance:
            raise errors.InvalidState(
                f"Insufficient wallet balance. Available: {agent.wallet_balance}, Requested: {amount}"
            )

        AgentCommission.objects.filter(pk__in=[c.pk for c in commissions]).update(
            status=AgentCommission.STATUS_PAID,
            paid_at=timezone.now(),
        )
        credit_purse(
            agent.user,
            PurseDelta(commission=-amount),
            PurseTransaction.ENTRY_COMMISSION_WITHDRAWAL,
            memo=f"Payout of {len(commissions)} commission(s)",
        )
        notifications.notify(
            agent.user,
            notifications.COMMISSIONS_PAID_OUT,
            'Commissions paid out',
            f"{amount} has been paid out from your wallet.",
            link='/agent/commissions',
            payload={'amount': str(amount), 'count': len(commissions)},
        )

    logger.info(
        f"Commissions paid out. Agent ID: {agent.pk}, Count: {len(commissions)}, "
        f"Amount: {amount}, Admin ID: {actor.pk}"
    )
    return {'count': len(commissions), 'amount': amount}
