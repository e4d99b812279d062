"""
Escrow ledger.

Every balance change in the marketplace goes through ``credit_purse``. It
upserts the owner's Purse, writes one ``PurseTransaction`` line and applies the
deltas as F() increments, so concurrent credits never lose updates.

Money flow for an order:

1. Payment captured: the platform purse holds the escrow part in
   ``pending_balance`` and the platform fee part in ``commission_balance``
   (``record_escrow_hold``). A down payment and the final payment each add
   one hold line.
2. Escrow released (``plan_release`` + ``apply_release``): the platform holds
   are cleared and the captured amount is split between the fixer payout, an
   optional client refund, the platform fee kept and an optional agent
   commission. The commission is taken out of the fee first and out of the
   fixer payout for any part the fee cannot cover. The four parts always add
   up to the captured amount.
"""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from . import exceptions as errors
from .conf import round_money
from .models import Purse, PurseTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')


class LedgerError(Exception):
    """A ledger movement was rejected (duplicate line, overdraft or imbalance)."""


@dataclass(frozen=True)
class PurseDelta:
    available: Decimal = ZERO
    pending: Decimal = ZERO
    commission: Decimal = ZERO
    revenue: Decimal = ZERO

    FIELD_MAP = (
        ('available', 'available_balance'),
        ('pending', 'pending_balance'),
        ('commission', 'commission_balance'),
        ('revenue', 'total_revenue'),
    )

    def is_zero(self):
        return all(getattr(self, name) == 0 for name, _field in self.FIELD_MAP)

    def as_updates(self):
        """F() increments for the non-zero parts of the delta."""
        return {
            field: F(field) + getattr(self, name)
            for name, field in self.FIELD_MAP
            if getattr(self, name) != 0
        }

    def as_entry_fields(self):
        return {
            'available_delta': self.available,
            'pending_delta': self.pending,
            'commission_delta': self.commission,
            'revenue_delta': self.revenue,
        }


@dataclass(frozen=True)
class ReleasePlan:
    """How the captured amount of an order is split when escrow is released."""

    captured: Decimal
    held_escrow: Decimal
    held_fee: Decimal
    fixer_payout: Decimal
    client_refund: Decimal
    fee_kept: Decimal
    agent_commission: Decimal = ZERO


def _purse_lookup(owner):
    if owner is None:
        return {'is_platform': True}
    return {'user': owner}


def get_purse(owner):
    """
    Return the purse of ``owner`` (the platform purse for None), creating it
    on first use.
    """
    lookup = _purse_lookup(owner)
    purse = Purse.objects.filter(**lookup).first()
    if purse is not None:
        return purse
    try:
        with transaction.atomic():
            return Purse.objects.create(user=owner, is_platform=owner is None)
    except IntegrityError:
        # Created concurrently
        return Purse.objects.get(**lookup)


def get_platform_purse():
    return get_purse(None)


def credit_purse(owner, delta, entry_type, order=None, memo=''):
    """
    Apply a delta to a purse and record it in the ledger.

    This is the only primitive that mutates purse balances. Negative deltas
    are debits; a debit that would take any balance below zero violates the
    purse check constraints.

    Args:
        owner: User owning the purse, or None for the platform purse
        delta: PurseDelta to apply
        entry_type: PurseTransaction entry type
        order: Order the movement belongs to, if any
        memo: Free-text description for the ledger line

    Returns:
        PurseTransaction: The ledger line, or None for an all-zero delta

    Raises:
        LedgerError: Duplicate movement for the order, or an overdraft
    """
    if delta.is_zero():
        return None

    purse = get_purse(owner)
    try:
        with transaction.atomic():
            entry = PurseTransaction.objects.create(
                purse=purse,
                order=order,
                entry_type=entry_type,
                memo=memo[:255],
                **delta.as_entry_fields()
            )
            Purse.objects.filter(pk=purse.pk).update(
                updated_at=timezone.now(),
                **delta.as_updates()
            )
    except IntegrityError as e:
        logger.warning(
            f"Ledger movement rejected. Purse ID: {purse.pk}, Entry: {entry_type}, "
            f"Order ID: {getattr(order, 'pk', None)}, Delta: {delta}, Error: {str(e)}"
        )
        raise LedgerError(f"Ledger movement {entry_type} rejected for purse {purse.pk}.") from e

    logger.info(
        f"Purse credited. Purse ID: {purse.pk}, Entry: {entry_type}, "
        f"Order ID: {getattr(order, 'pk', None)}, Delta: {delta}"
    )
    return entry


# ============================================================================
# Escrow holds
# ============================================================================

def held_amounts(order):
    """
    Escrow and platform fee currently held for an order on the platform purse.

    Returns:
        tuple: (held_escrow, held_fee)
    """
    totals = PurseTransaction.objects.filter(
        purse__is_platform=True,
        order=order,
        entry_type__in=PurseTransaction.HOLD_ENTRIES,
    ).aggregate(escrow=Sum('pending_delta'), fee=Sum('commission_delta'))
    return totals['escrow'] or ZERO, totals['fee'] or ZERO


def escrow_released(order):
    return PurseTransaction.objects.filter(
        order=order,
        entry_type=PurseTransaction.ENTRY_ESCROW_RELEASE,
    ).exists()


def record_escrow_hold(order, amount, entry_type=PurseTransaction.ENTRY_ESCROW_HOLD):
    """
    Hold a captured amount for an order on the platform purse.

    A down payment is split pro rata between platform fee and escrow. The
    final capture takes whatever fee and escrow remain, so that all holds for
    the order add up to exactly ``platform_fee`` and ``fixer_amount``.

    Args:
        order: Order the money was captured for
        amount: Captured amount
        entry_type: DOWN_PAYMENT_HOLD or ESCROW_HOLD

    Returns:
        PurseTransaction: The hold line

    Raises:
        LedgerError: If a final capture does not match the remaining balance
    """
    held_escrow, held_fee = held_amounts(order)

    if entry_type == PurseTransaction.ENTRY_DOWN_PAYMENT_HOLD:
        fee_part = round_money(amount * order.platform_fee / order.total_amount)
        escrow_part = amount - fee_part
    else:
        fee_part = order.platform_fee - held_fee
        escrow_part = amount - fee_part
        if escrow_part != order.fixer_amount - held_escrow:
            raise LedgerError(
                f"Capture of {amount} does not complete order {order.pk}: "
                f"expected {order.fixer_amount - held_escrow + fee_part}."
            )

    return credit_purse(
        None,
        PurseDelta(pending=escrow_part, commission=fee_part),
        entry_type,
        order=order,
        memo=f"Captured {amount} for order {order.pk}",
    )


def ensure_escrow_held(order, payment):
    """
    Record the hold for a captured payment that has no hold lines yet.

    Payments captured before the ledger existed are brought into it here, so
    that releasing them keeps the platform purse balanced.
    """
    held_escrow, held_fee = held_amounts(order)
    if held_escrow + held_fee > 0 or not payment.amount:
        return
    if payment.amount == order.total_amount:
        record_escrow_hold(order, payment.amount, PurseTransaction.ENTRY_ESCROW_HOLD)
    else:
        record_escrow_hold(order, payment.amount, PurseTransaction.ENTRY_DOWN_PAYMENT_HOLD)


# ============================================================================
# Escrow release
# ============================================================================

def plan_release(order, client_refund=ZERO):
    """
    Split the escrow held for an order.

    The platform fee kept scales with the share of the captured amount that
    goes to the fixer, so a full refund keeps no fee and a full release keeps
    the whole fee.

    Args:
        order: Order whose escrow is released
        client_refund: Amount returned to the client

    Returns:
        ReleasePlan

    Raises:
        ValidationError: If the refund is negative or exceeds the captured amount
    """
    held_escrow, held_fee = held_amounts(order)
    captured = held_escrow + held_fee
    client_refund = round_money(client_refund)

    if client_refund < 0 or client_refund > captured:
        raise errors.ValidationError(
            f"Refund must be between 0 and the captured amount of {captured}."
        )

    fixer_gross = captured - client_refund
    fee_kept = round_money(held_fee * fixer_gross / captured) if captured else ZERO

    return ReleasePlan(
        captured=captured,
        held_escrow=held_escrow,
        held_fee=held_fee,
        fixer_payout=fixer_gross - fee_kept,
        client_refund=client_refund,
        fee_kept=fee_kept,
    )


def apply_release(order, plan, agent_user=None, agent_commission=ZERO):
    """
    Move released escrow into the parties' purses.

    Must run inside the caller's transaction. The agent commission is paid
    in full: it comes out of the platform fee kept, and out of the fixer
    payout for the part the fee does not cover.

    Args:
        order: Order being settled
        plan: ReleasePlan from ``plan_release``
        agent_user: User of the mediating agent, if a commission is paid
        agent_commission: Commission amount, at most the fee kept plus the
            fixer payout

    Returns:
        ReleasePlan: The plan with the commission applied

    Raises:
        LedgerError: If the parts do not add up to the captured amount
    """
    if agent_commission < 0 or agent_commission > plan.fee_kept + plan.fixer_payout:
        raise LedgerError(
            f"Agent commission {agent_commission} exceeds the released amount "
            f"({plan.fee_kept + plan.fixer_payout})."
        )
    from_fee = min(agent_commission, plan.fee_kept)
    plan = replace(
        plan,
        fee_kept=plan.fee_kept - from_fee,
        fixer_payout=plan.fixer_payout - (agent_commission - from_fee),
        agent_commission=agent_commission,
    )
    if agent_commission > from_fee:
        logger.info(
            f"Agent commission exceeds platform fee, remainder taken from fixer payout. "
            f"Order ID: {order.pk}, Commission: {agent_commission}, From fee: {from_fee}"
        )

    platform_share = plan.fee_kept
    distributed = plan.fixer_payout + plan.client_refund + platform_share + agent_commission
    if distributed != plan.captured:
        raise LedgerError(
            f"Release for order {order.pk} distributes {distributed} of {plan.captured}."
        )

    credit_purse(
        None,
        PurseDelta(
            available=platform_share,
            pending=-plan.held_escrow,
            commission=-plan.held_fee,
            revenue=platform_share,
        ),
        PurseTransaction.ENTRY_ESCROW_RELEASE,
        order=order,
        memo=f"Escrow released for order {order.pk}",
    )
    # Marker line so the release is recorded even when every platform delta is zero
    if not escrow_released(order):
        PurseTransaction.objects.create(
            purse=get_platform_purse(),
            order=order,
            entry_type=PurseTransaction.ENTRY_ESCROW_RELEASE,
            memo=f"Escrow released for order {order.pk}",
        )

    credit_purse(
        order.fixer,
        PurseDelta(available=plan.fixer_payout, revenue=plan.fixer_payout),
        PurseTransaction.ENTRY_PAYOUT,
        order=order,
        memo=f"Payout for order {order.pk}",
    )
    credit_purse(
        order.client,
        PurseDelta(available=plan.client_refund),
        PurseTransaction.ENTRY_REFUND,
        order=order,
        memo=f"Refund for order {order.pk}",
    )
    if agent_user is not None:
        credit_purse(
            agent_user,
            PurseDelta(commission=agent_commission, revenue=agent_commission),
            PurseTransaction.ENTRY_AGENT_COMMISSION,
            order=order,
            memo=f"Commission on order {order.pk}",
        )

    logger.info(
        f"Escrow released. Order ID: {order.pk}, Captured: {plan.captured}, "
        f"Fixer payout: {plan.fixer_payout}, Client refund: {plan.client_refund}, "
        f"Platform kept: {platform_share}, Agent commission: {agent_commission}"
    )
    return plan


# ============================================================================
# Integrity
# ============================================================================

def ledger_totals(purse):
    totals = purse.entries.aggregate(
        available=Sum('available_delta'),
        pending=Sum('pending_delta'),
        commission=Sum('commission_delta'),
        revenue=Sum('revenue_delta'),
    )
    return {
        'available_balance': totals['available'] or ZERO,
        'pending_balance': totals['pending'] or ZERO,
        'commission_balance': totals['commission'] or ZERO,
        'total_revenue': totals['revenue'] or ZERO,
    }


def purse_drift(purse):
    """
    Compare a purse's balances with the sum of its ledger lines.

    Returns:
        dict: field -> (ledger value, stored value) for every mismatched field
    """
    expected = ledger_totals(purse)
    return {
        field: (expected[field], getattr(purse, field))
        for field in Purse.BALANCE_FIELDS
        if expected[field] != getattr(purse, field)
    }


def repair_purse(purse):
    """Reset a purse's balances to its ledger totals."""
    expected = ledger_totals(purse)
    Purse.objects.filter(pk=purse.pk).update(updated_at=timezone.now(), **expected)
    logger.warning(f"Purse balances reset from ledger. Purse ID: {purse.pk}, Balances: {expected}")
    return expected


def release_escrow(order, client_refund=ZERO, agent_user=None, agent_commission=ZERO):
    """
    Plan and apply the release of an order's escrow in one call.

    Returns:
        ReleasePlan: The split that was applied
    """
    plan = plan_release(order, client_refund)
    return apply_release(order, plan, agent_user=agent_user, agent_commission=agent_commission)
