"""
Settlement orchestrator.

Settling a paid order releases its escrow: the fixer is credited, the
mediating agent earns a commission out of the platform fee (and out of the
fixer payout when the fee does not cover it) and the platform keeps the rest.

Settlement happens at most once per order. The order row is locked, the
PAID -> SETTLED update is guarded, and the ledger refuses a second release
line for the same order.

The agent-fixer bonus is evaluated after the settlement transaction and can
never undo it.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from . import commissions
from . import exceptions as errors
from . import ledger, notifications
from .models import AgentFixer, Dispute, Order, Payment
from .orders import advance, get_order, lock_order
from .permissions import require_admin

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


def _release_payment(order):
    """Bring a held payment into the ledger if needed and mark it released."""
    payment = Payment.objects.select_for_update().filter(order=order).first()
    if payment is None:
        return None
    if payment.status == Payment.STATUS_HELD_IN_ESCROW:
        ledger.ensure_escrow_held(order, payment)
        Payment.objects.filter(pk=payment.pk, status=Payment.STATUS_HELD_IN_ESCROW).update(
            status=Payment.STATUS_RELEASED,
            released_at=timezone.now(),
            updated_at=timezone.now(),
        )
    return payment


def _release(order, client_refund=ZERO):
    """
    Release an order's escrow, paying the agent commission if one is due.

    Must run inside the settlement transaction with the order row locked.

    Returns:
        ReleasePlan
    """
    _release_payment(order)

    plan = ledger.plan_release(order, client_refund)
    commission = commissions.plan_order_commission(order, plan)
    agent, breakdown = commission if commission else (None, None)

    plan = ledger.apply_release(
        order,
        plan,
        agent_user=agent.user if agent else None,
        agent_commission=breakdown.commission_amount if breakdown else ZERO,
    )
    if commission:
        commissions.record_order_commission(order, agent, breakdown)

    if plan.fixer_payout > 0:
        notifications.notify(
            order.fixer,
            notifications.ORDER_SETTLED,
            'Payment released',
            f"{plan.fixer_payout} for order {order.pk} is now available in your purse.",
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk), 'amount': str(plan.fixer_payout)},
        )
    return plan


def _bonus_relation(order):
    """
    Unpaid agent-fixer link the bonus for this order belongs to.

    The link of the agent who mediated the order wins; otherwise the oldest
    unpaid link of the fixer.
    """
    unpaid = AgentFixer.objects.filter(fixer_id=order.fixer_id, bonus_paid=False)
    agent = order.mediating_agent()
    if agent is not None:
        relation = unpaid.filter(agent=agent).first()
        if relation is not None:
            return relation
    return unpaid.order_by('created_at').first()


def award_fixer_bonus(order):
    """
    Pay the agent-fixer bonus triggered by a settled order, if any.

    Runs outside the settlement transaction. Failures are logged and
    swallowed so that they never affect the settlement.

    Returns:
        AgentCommission or None
    """
    try:
        relation = _bonus_relation(order)
        if relation is None or not commissions.should_pay_fixer_bonus(order.pk, relation.pk):
            return None
        return commissions.pay_fixer_bonus(relation.pk, order.pk)
    except Exception as e:
        logger.error(
            f"Error paying fixer bonus. Order ID: {order.pk}, Fixer ID: {order.fixer_id}, Error: {str(e)}",
            exc_info=True
        )
        return None


def settle_order(order_id, actor):
    """
    Release the escrow of a paid order.

    Re-entrant: settling an order that is already SETTLED only releases
    escrow if no release has been recorded yet, and is otherwise a no-op.

    Args:
        order_id: Order primary key
        actor: Admin or SYSTEM

    Returns:
        Order: The settled order

    Raises:
        Forbidden, NotFound, InvalidState
    """
    require_admin(actor, 'Only admins can settle orders.')
    order = get_order(order_id)
    if order.status not in (Order.STATUS_PAID, Order.STATUS_SETTLED):
        raise errors.InvalidState(f"Only paid orders can be settled; order is {order.status}.")

    released = False
    with transaction.atomic():
        order = lock_order(order_id)
        if order.status == Order.STATUS_PAID:
            updated = Order.objects.filter(pk=order.pk, status=Order.STATUS_PAID).update(
                status=Order.STATUS_SETTLED,
                settled_at=timezone.now(),
                updated_at=timezone.now(),
            )
            if updated:
                order.refresh_from_db()
                _release(order)
                released = True
        elif order.status == Order.STATUS_SETTLED:
            if not ledger.escrow_released(order):
                _release(order)
                released = True
        else:
            raise errors.InvalidState(f"Only paid orders can be settled; order is {order.status}.")

    if not released:
        logger.info(f"Order already settled. ID: {order.pk}")
        return order

    logger.info(f"Order settled successfully. ID: {order.pk}, Fixer: {order.fixer_id}, Actor: {actor}")
    award_fixer_bonus(order)
    return order


def _client_refund_for(captured, refund_amount, release_to):
    if release_to == Dispute.RELEASE_TO_CLIENT:
        return captured if refund_amount is None else Decimal(refund_amount)
    if release_to == Dispute.RELEASE_TO_FIXER:
        released = captured if refund_amount is None else Decimal(refund_amount)
        if released < 0 or released > captured:
            raise errors.ValidationError(
                f"Released amount must be between 0 and the captured amount of {captured}."
            )
        return captured - released
    return ZERO if refund_amount is None else Decimal(refund_amount)


def settle_disputed_order(dispute, refund_amount=None, release_to=None):
    """
    Apply the money side of a dispute decision.

    Must run inside the resolution transaction with the order row locked.

    With ``release_to`` CLIENT, ``refund_amount`` goes back to the client
    (all of the captured amount when omitted). With FIXER, the amount is what
    the fixer side receives before the platform fee, and the rest goes back to
    the client. The platform fee kept is proportional to the fixer side.

    Returns:
        ReleasePlan, or None when no money moved

    Raises:
        InvalidState: A refund was requested on an already released order
        ValidationError: Amount outside the captured range
    """
    order = dispute.order
    _release_payment(order)
    held_escrow, held_fee = ledger.held_amounts(order)
    captured = held_escrow + held_fee
    now = timezone.now()

    if ledger.escrow_released(order):
        if refund_amount or release_to == Dispute.RELEASE_TO_CLIENT:
            raise errors.InvalidState('Escrow for this order has already been released.')
        advance(order, Order.STATUS_SETTLED)
        return None

    if captured == 0:
        advance(
            order,
            Order.STATUS_CANCELLED,
            cancelled_at=now,
            cancellation_reason=f"Dispute {dispute.pk} resolved before payment",
        )
        return None

    client_refund = _client_refund_for(captured, refund_amount, release_to)
    plan = _release(order, client_refund)
    advance(order, Order.STATUS_SETTLED, settled_at=now)

    dispute.refund_amount = plan.client_refund
    dispute.released_amount = plan.fixer_payout
    if plan.client_refund > 0:
        notifications.notify(
            order.client,
            notifications.ORDER_SETTLED,
            'Refund issued',
            f"{plan.client_refund} from order {order.pk} has been refunded to your purse.",
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk), 'amount': str(plan.client_refund)},
        )
    return plan
