"""
Order state machine.

Orders are created from a gig package or from an accepted quote and then move
through PENDING -> IN_PROGRESS -> COMPLETED -> PAID -> SETTLED. Every
transition locks the order row and applies a status-guarded UPDATE, so a
transition either applies completely or raises and changes nothing.
Settlement lives in ``core.settlement`` and disputes in ``core.disputes``.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from . import exceptions as errors
from . import gateways, ledger, notifications
from .conf import marketplace_setting, round_money
from .models import Gig, GigPackage, Order, Payment, PurseTransaction
from .origin import ORDER_ORIGINS, GigOrigin, RequestOrigin, initial_status, origin_fields
from .permissions import (
    is_admin,
    is_system,
    require_authenticated,
    require_order_client,
    require_order_fixer,
)

logger = logging.getLogger(__name__)

MIN_REVISION_NOTE_LENGTH = 10
REVIEWABLE_STATUSES = (Order.STATUS_COMPLETED, Order.STATUS_PAID, Order.STATUS_SETTLED)


def platform_fee_percentage(origin):
    if isinstance(origin, RequestOrigin):
        return Decimal(marketplace_setting('REQUEST_PLATFORM_FEE_PERCENTAGE'))
    if isinstance(origin, GigOrigin):
        return Decimal(marketplace_setting('GIG_PLATFORM_FEE_PERCENTAGE'))
    raise TypeError(f"Unknown order origin: {origin!r}")


def create_order(origin, client, fixer, total_amount, down_payment_amount=None,
                 down_payment_paid=False, requirements='', revisions_allowed=0,
                 delivery_date=None):
    """
    Create an order with its financial terms fixed.

    Must run inside the caller's transaction.

    Args:
        origin: GigOrigin or RequestOrigin
        client: User paying for the work
        fixer: User doing the work
        total_amount: Amount payable by the client
        down_payment_amount: Down payment agreed on the quote, if any
        down_payment_paid: Whether the down payment has already been captured

    Returns:
        Order
    """
    if not isinstance(origin, ORDER_ORIGINS):
        raise TypeError(f"Unknown order origin: {origin!r}")

    total_amount = round_money(total_amount)
    platform_fee = round_money(total_amount * platform_fee_percentage(origin) / Decimal('100'))
    status = initial_status(origin)

    order = Order(
        client=client,
        fixer=fixer,
        total_amount=total_amount,
        platform_fee=platform_fee,
        fixer_amount=total_amount - platform_fee,
        status=status,
        down_payment_required=down_payment_amount is not None,
        down_payment_amount=down_payment_amount,
        down_payment_paid=down_payment_paid,
        requirements=requirements,
        revisions_allowed=revisions_allowed,
        delivery_date=delivery_date,
        started_at=timezone.now() if status == Order.STATUS_IN_PROGRESS else None,
        **origin_fields(origin)
    )
    order.save()

    logger.info(
        f"Order created successfully. ID: {order.pk}, Origin: {type(origin).__name__}, "
        f"Client: {client.pk}, Fixer: {fixer.pk}, Total: {total_amount}, "
        f"Platform fee: {platform_fee}, Status: {status}"
    )
    return order


# ============================================================================
# Helpers
# ============================================================================

def get_order(order_id):
    order = Order.objects.select_related('client', 'fixer').filter(pk=order_id).first()
    if order is None:
        raise errors.NotFound('Order not found.')
    return order


def get_order_for(order_id, actor):
    """
    Return an order visible to the actor.

    Raises:
        NotFound, Forbidden
    """
    require_authenticated(actor)
    order = get_order(order_id)
    if not (order.is_party(actor) or is_admin(actor)):
        raise errors.Forbidden('You do not have permission to access this order.')
    return order


def lock_order(order_id):
    """Fetch an order with its row locked. Must run inside a transaction."""
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise errors.NotFound('Order not found.')
    return order


def advance(order, to_status, **fields):
    """
    Apply a status transition with a guarded UPDATE.

    The UPDATE only matches while the order is still in the status it was
    read in, so a concurrent transition makes this one fail instead of
    silently overwriting it.

    Raises:
        InvalidState: Transition not allowed, or the status changed meanwhile
    """
    is_valid, error_msg = order.can_transition_to(to_status)
    if not is_valid:
        raise errors.InvalidState(error_msg)

    from_status = order.status
    updated = Order.objects.filter(pk=order.pk, status=from_status).update(
        status=to_status,
        updated_at=timezone.now(),
        **fields
    )
    if not updated:
        raise errors.InvalidState(
            f"Order {order.pk} is no longer {from_status}."
        )
    order.refresh_from_db()
    logger.info(f"Order status changed. ID: {order.pk}, From: {from_status}, To: {to_status}")
    return order


def _require_status(order, *statuses):
    if order.status not in statuses:
        raise errors.InvalidState(
            f"Order is {order.status}; this action needs {' or '.join(statuses)}."
        )


# ============================================================================
# Gig orders
# ============================================================================

def place_gig_order(gig_id, package_id, actor, requirements=''):
    """
    Order a package of an active gig.

    Returns:
        Order: PENDING order

    Raises:
        NotFound, InvalidState, Forbidden
    """
    require_authenticated(actor)
    if is_system(actor):
        raise errors.Forbidden('Orders must be placed by a client.')

    package = GigPackage.objects.select_related('gig', 'gig__fixer').filter(pk=package_id, gig_id=gig_id).first()
    if package is None:
        raise errors.NotFound('Gig package not found.')
    gig = package.gig
    if gig.status != Gig.STATUS_ACTIVE:
        raise errors.InvalidState('This gig is not accepting orders.')
    if gig.fixer_id == actor.pk:
        raise errors.Forbidden('You cannot order your own gig.')

    with transaction.atomic():
        order = create_order(
            GigOrigin(gig_id=gig.pk, package_id=package.pk),
            client=actor,
            fixer=gig.fixer,
            total_amount=package.price,
            requirements=requirements,
            revisions_allowed=package.revisions,
            delivery_date=timezone.now() + timedelta(days=package.delivery_days),
        )
        Gig.objects.filter(pk=gig.pk).update(orders_count=F('orders_count') + 1)
        notifications.notify(
            gig.fixer,
            notifications.ORDER_PLACED,
            'New order',
            f"You have a new order for \"{gig.title}\" ({package.name}).",
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk)},
        )
    return order


def start_order(order_id, actor):
    """Fixer starts a gig order: PENDING -> IN_PROGRESS."""
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_fixer(actor, order, 'Only the fixer can start this order.')
    if not order.is_gig_order():
        raise errors.InvalidState('Request orders start when the quote is accepted.')

    with transaction.atomic():
        order = lock_order(order_id)
        _require_status(order, Order.STATUS_PENDING)
        advance(order, Order.STATUS_IN_PROGRESS, started_at=timezone.now())
        notifications.notify(
            order.client,
            notifications.ORDER_STARTED,
            'Work started',
            'The fixer has started working on your order.',
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk)},
        )
    return order


def deliver_order(order_id, actor, delivery_note):
    """Fixer delivers a gig order: IN_PROGRESS -> COMPLETED."""
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_fixer(actor, order, 'Only the fixer can deliver this order.')
    if not order.is_gig_order():
        raise errors.InvalidState('Use mark complete for request orders.')
    if not (delivery_note or '').strip():
        raise errors.ValidationError('A delivery note is required.')

    with transaction.atomic():
        order = lock_order(order_id)
        _require_status(order, Order.STATUS_IN_PROGRESS)
        now = timezone.now()
        advance(
            order,
            Order.STATUS_COMPLETED,
            delivery_note=delivery_note.strip(),
            delivered_at=now,
            completed_at=now,
        )
        notifications.notify(
            order.client,
            notifications.ORDER_DELIVERED,
            'Order delivered',
            'Your order has been delivered. Please review it and pay.',
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk)},
        )
    return order


def mark_order_complete(order_id, actor, message=''):
    """Fixer completes a request order: IN_PROGRESS -> COMPLETED."""
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_fixer(actor, order, 'Only the fixer can complete this order.')
    if order.is_gig_order():
        raise errors.InvalidState('Use deliver for gig orders.')

    with transaction.atomic():
        order = lock_order(order_id)
        _require_status(order, Order.STATUS_IN_PROGRESS)
        advance(
            order,
            Order.STATUS_COMPLETED,
            delivery_note=(message or '').strip(),
            completed_at=timezone.now(),
        )
        notifications.notify(
            order.client,
            notifications.ORDER_COMPLETED,
            'Job completed',
            message or 'The fixer marked the job as complete. Please pay to release it.',
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk), 'amount_due': str(order.amount_due)},
        )
    return order


# ============================================================================
# Payment
# ============================================================================

def create_order_payment_intent(order_id, actor, provider=None):
    """
    Start the final payment of a completed order.

    Returns:
        PaymentIntent for the amount due
    """
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_client(actor, order, 'Only the client can pay for this order.')
    _require_status(order, Order.STATUS_COMPLETED)

    intent = gateways.get_gateway(provider).create_payment_intent(
        order.amount_due,
        metadata={
            'payment_type': 'ORDER_PAYMENT',
            'order_id': str(order.pk),
            'client_id': str(actor.pk),
        },
        email=actor.email,
    )
    logger.info(f"Order payment intent created. Order ID: {order.pk}, Amount: {order.amount_due}, Intent: {intent.id}")
    return intent


def pay_order(order_id, actor, reference, provider=None):
    """
    Record the client's final payment and hold it in escrow.

    The gateway is asked before any row is touched. Paying an order that is
    already PAID or SETTLED succeeds without contacting the gateway.
    The capture must be tagged as this order's payment, and its reference must
    not already be recorded against another purchase.

    Returns:
        Order

    Raises:
        Forbidden, NotFound, InvalidState, GatewayError, ValidationError, Conflict
    """
    require_authenticated(actor)
    order = get_order(order_id)
    if not is_system(actor):
        require_order_client(actor, order, 'Only the client can pay for this order.')

    if order.status in (Order.STATUS_PAID, Order.STATUS_SETTLED):
        logger.info(f"Order already paid. ID: {order.pk}, Status: {order.status}")
        return order
    _require_status(order, Order.STATUS_COMPLETED)

    amount_due = order.amount_due
    verification = gateways.verify_captured(
        provider,
        reference,
        amount_due,
        {'payment_type': 'ORDER_PAYMENT', 'order_id': order.pk},
    )

    with transaction.atomic():
        order = lock_order(order_id)
        if order.status in (Order.STATUS_PAID, Order.STATUS_SETTLED):
            return order
        gateways.ensure_reference_unused(reference)
        now = timezone.now()
        advance(order, Order.STATUS_PAID, paid_at=now)

        payment = Payment.objects.select_for_update().filter(order=order).first()
        if payment is None:
            payment = Payment(order=order, amount=Decimal('0.00'))
        payment.provider = verification.provider
        payment.reference = reference
        payment.amount = payment.amount + amount_due
        payment.status = Payment.STATUS_HELD_IN_ESCROW
        payment.paid_at = now
        payment.save()

        ledger.record_escrow_hold(order, amount_due, PurseTransaction.ENTRY_ESCROW_HOLD)

        link = f'/orders/{order.pk}'
        payload = {'order_id': str(order.pk), 'amount': str(amount_due)}
        notifications.notify(
            order.fixer,
            notifications.PAYMENT_RECEIVED,
            'Payment received',
            f"The client paid {amount_due}. Funds are held in escrow until release.",
            link=link,
            payload=payload,
        )
        notifications.notify(
            order.client,
            notifications.PAYMENT_RECEIVED,
            'Payment confirmed',
            f"Your payment of {amount_due} was received.",
            link=link,
            payload=payload,
        )
        notifications.notify_admins(
            notifications.PAYMENT_RECEIVED,
            'Order awaiting settlement',
            f"Order {order.pk} was paid and is ready to settle.",
            link=f'/admin/orders/{order.pk}',
            payload=payload,
        )

    logger.info(
        f"Order paid successfully. ID: {order.pk}, Reference: {reference}, "
        f"Amount: {amount_due}, Captured total: {payment.amount}"
    )
    return order


# ============================================================================
# Cancellation, revisions and reviews
# ============================================================================

def cancel_order(order_id, actor, reason=''):
    """Client cancels an order before work starts."""
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_client(actor, order, 'Only the client can cancel this order.')

    with transaction.atomic():
        order = lock_order(order_id)
        _require_status(order, Order.STATUS_PENDING)
        advance(
            order,
            Order.STATUS_CANCELLED,
            cancellation_reason=(reason or '').strip(),
            cancelled_at=timezone.now(),
        )
        if order.gig_id:
            Gig.objects.filter(pk=order.gig_id, orders_count__gt=0).update(
                orders_count=F('orders_count') - 1
            )
        notifications.notify(
            order.fixer,
            notifications.ORDER_CANCELLED,
            'Order cancelled',
            f"The client cancelled the order. Reason: {reason or 'not given'}",
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk)},
        )
    return order


def request_revision(order_id, actor, note):
    """Client sends a delivered order back: COMPLETED -> IN_PROGRESS."""
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_client(actor, order, 'Only the client can request a revision.')
    note = (note or '').strip()
    if len(note) < MIN_REVISION_NOTE_LENGTH:
        raise errors.ValidationError(
            f"Revision note must be at least {MIN_REVISION_NOTE_LENGTH} characters."
        )

    with transaction.atomic():
        order = lock_order(order_id)
        _require_status(order, Order.STATUS_COMPLETED)
        if order.revisions_used >= order.revisions_allowed:
            raise errors.InvalidState('No revisions left on this order.')
        advance(
            order,
            Order.STATUS_IN_PROGRESS,
            revision_note=note,
            delivery_note='',
            delivered_at=None,
            completed_at=None,
            revisions_used=F('revisions_used') + 1,
        )
        notifications.notify(
            order.fixer,
            notifications.REVISION_REQUESTED,
            'Revision requested',
            note,
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk), 'revisions_used': order.revisions_used},
        )
    return order


def review_order(order_id, actor, rating, comment):
    """
    Client rates the fixer once the work is complete.

    Raises:
        ValidationError: Rating outside 1 to 5, or an empty comment
        Conflict: Order already reviewed
    """
    require_authenticated(actor)
    order = get_order(order_id)
    require_order_client(actor, order, 'Only the client can review this order.')
    try:
        rating = int(rating)
    except (TypeError, ValueError) as e:
        raise errors.ValidationError('Rating must be a whole number.') from e
    if not 1 <= rating <= 5:
        raise errors.ValidationError('Rating must be between 1 and 5.')
    comment = (comment or '').strip()
    if not comment:
        raise errors.ValidationError('A review comment is required.')

    with transaction.atomic():
        order = lock_order(order_id)
        _require_status(order, *REVIEWABLE_STATUSES)
        updated = Order.objects.filter(pk=order.pk, rating__isnull=True).update(
            rating=rating,
            review_comment=comment,
            reviewed_at=timezone.now(),
            updated_at=timezone.now(),
        )
        if not updated:
            raise errors.Conflict('This order has already been reviewed.')
        notifications.notify(
            order.fixer,
            notifications.REVIEW_RECEIVED,
            'New review',
            f"You received a {rating}-star review.",
            link=f'/orders/{order.pk}',
            payload={'order_id': str(order.pk), 'rating': rating},
        )

    order.refresh_from_db()
    logger.info(f"Order reviewed. ID: {order.pk}, Rating: {rating}, Client: {actor.pk}")
    return order
