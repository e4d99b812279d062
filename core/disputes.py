"""
Dispute filing, messaging and resolution.

Filing a dispute freezes the order in DISPUTED. Only an admin decision moves
it on: the settlement orchestrator splits whatever is held in escrow and the
order ends SETTLED, or CANCELLED when nothing was ever paid.
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import exceptions as errors
from . import notifications
from .models import Dispute, DisputeMessage, Order
from .orders import advance, get_order, lock_order
from .permissions import is_admin, is_system, require_admin, require_authenticated, require_order_party
from .settlement import award_fixer_bonus, settle_disputed_order

logger = logging.getLogger(__name__)

UNDISPUTABLE_STATUSES = (Order.STATUS_PENDING, Order.STATUS_CANCELLED)
REASONS = {choice for choice, _label in Dispute.REASON_CHOICES}
RELEASE_TARGETS = {choice for choice, _label in Dispute.RELEASE_TO_CHOICES}


def file_dispute(order_id, actor, reason, description, evidence=None):
    """
    Open a dispute on an order.

    Args:
        order_id: Order primary key
        actor: The order's client or fixer
        reason: One of Dispute.REASON_CHOICES
        description: What went wrong
        evidence: Optional list of evidence references (URLs)

    Returns:
        Dispute

    Raises:
        Forbidden, NotFound, ValidationError, InvalidState, Conflict
    """
    require_authenticated(actor)
    order = get_order(order_id)
    if is_system(actor):
        raise errors.Forbidden('Disputes are filed by the parties of an order.')
    require_order_party(actor, order, 'Only the client or fixer of this order can file a dispute.')
    if reason not in REASONS:
        raise errors.ValidationError(f"Invalid dispute reason: {reason}.")
    if not (description or '').strip():
        raise errors.ValidationError('A description of the dispute is required.')
    if evidence is not None and not isinstance(evidence, list):
        raise errors.ValidationError('Evidence must be a list.')

    with transaction.atomic():
        order = lock_order(order_id)
        if order.status in UNDISPUTABLE_STATUSES:
            raise errors.InvalidState(f"A {order.status} order cannot be disputed.")
        if Dispute.objects.filter(order=order, status__in=Dispute.ACTIVE_STATUSES).exists():
            raise errors.Conflict('This order already has an active dispute.')

        order_status_before = order.status
        try:
            with transaction.atomic():
                dispute = Dispute.objects.create(
                    order=order,
                    initiated_by=actor,
                    reason=reason,
                    description=description.strip(),
                    evidence=evidence or [],
                    order_status_before=order_status_before,
                )
        except IntegrityError as e:
            raise errors.Conflict('This order already has an active dispute.') from e
        advance(order, Order.STATUS_DISPUTED)

        other_party = order.fixer if actor.pk == order.client_id else order.client
        payload = {'dispute_id': str(dispute.pk), 'order_id': str(order.pk)}
        notifications.notify(
            other_party,
            notifications.DISPUTE_FILED,
            'Dispute filed',
            f"A dispute was filed on order {order.pk}: {dispute.get_reason_display()}.",
            link=f'/disputes/{dispute.pk}',
            payload=payload,
        )
        notifications.notify_admins(
            notifications.DISPUTE_FILED,
            'New dispute',
            f"Order {order.pk} was disputed ({dispute.get_reason_display()}).",
            link=f'/admin/disputes/{dispute.pk}',
            payload=payload,
        )

    logger.info(
        f"Dispute filed successfully. ID: {dispute.pk}, Order: {order.pk}, "
        f"Initiated by: {actor.pk}, Reason: {reason}, Order status before: {order_status_before}"
    )
    return dispute


def resolve_dispute(dispute_id, actor, status, resolution='', refund_amount=None, release_to=None):
    """
    Move a dispute forward; resolving or closing it settles the order.

    Args:
        dispute_id: Dispute primary key
        actor: Admin
        status: Target dispute status
        resolution: Decision text, required for RESOLVED and CLOSED
        refund_amount: Amount for the side named by ``release_to``
        release_to: 'CLIENT' or 'FIXER'

    Returns:
        Dispute

    Raises:
        Forbidden, NotFound, InvalidState, ValidationError
    """
    require_admin(actor, 'Only admins can resolve disputes.')
    if not Dispute.objects.filter(pk=dispute_id).exists():
        raise errors.NotFound('Dispute not found.')
    if release_to and release_to not in RELEASE_TARGETS:
        raise errors.ValidationError(f"Invalid release target: {release_to}.")
    if refund_amount is not None and refund_amount < 0:
        raise errors.ValidationError('Amount cannot be negative.')

    plan = None
    with transaction.atomic():
        dispute = Dispute.objects.select_for_update().get(pk=dispute_id)
        order = lock_order(dispute.order_id)
        dispute.order = order

        is_valid, error_msg = dispute.can_transition_to(status)
        if not is_valid:
            raise errors.InvalidState(error_msg)

        terminal = status in Dispute.TERMINAL_STATUSES
        if terminal:
            if not (resolution or '').strip():
                raise errors.ValidationError('A resolution is required to close a dispute.')
            if order.status != Order.STATUS_DISPUTED:
                raise errors.InvalidState(f"Order is {order.status}, expected DISPUTED.")
            plan = settle_disputed_order(dispute, refund_amount=refund_amount, release_to=release_to)
            dispute.resolution = resolution.strip()
            dispute.release_to = release_to or ''
            dispute.resolved_by = None if is_system(actor) else actor
            dispute.resolved_at = timezone.now()

        old_status = dispute.status
        dispute.status = status
        dispute.save()

        payload = {'dispute_id': str(dispute.pk), 'order_id': str(order.pk), 'status': status}
        for party in (order.client, order.fixer):
            notifications.notify(
                party,
                notifications.DISPUTE_UPDATED,
                f"Dispute {status.lower().replace('_', ' ')}",
                dispute.resolution or f"The dispute on order {order.pk} is now {status}.",
                link=f'/disputes/{dispute.pk}',
                payload=payload,
            )

    logger.info(
        f"Dispute updated. ID: {dispute.pk}, From: {old_status}, To: {status}, "
        f"Order: {order.pk}, Order status: {order.status}, Admin: {actor}"
    )
    if plan is not None and plan.fixer_payout > 0:
        award_fixer_bonus(order)
    return dispute


# ============================================================================
# Messages
# ============================================================================

def _get_dispute_for(dispute_id, actor):
    require_authenticated(actor)
    dispute = Dispute.objects.select_related('order').filter(pk=dispute_id).first()
    if dispute is None:
        raise errors.NotFound('Dispute not found.')
    if not (dispute.order.is_party(actor) or is_admin(actor)):
        raise errors.Forbidden('You do not have access to this dispute.')
    return dispute


def post_dispute_message(dispute_id, actor, message, is_admin_note=False):
    """
    Add a message to an active dispute.

    Returns:
        DisputeMessage

    Raises:
        Forbidden: Not a party or admin, or a non-admin posting an admin note
        InvalidState: Dispute resolved or closed
        ValidationError: Empty message
    """
    dispute = _get_dispute_for(dispute_id, actor)
    if is_system(actor):
        raise errors.Forbidden('Messages must be posted by a user.')
    if is_admin_note and not is_admin(actor):
        raise errors.Forbidden('Only admins can post admin notes.')
    if not dispute.is_active:
        raise errors.InvalidState(f"Cannot post messages on a {dispute.status} dispute.")
    message = (message or '').strip()
    if not message:
        raise errors.ValidationError('Message cannot be empty.')

    with transaction.atomic():
        dispute_message = DisputeMessage.objects.create(
            dispute=dispute,
            sender=actor,
            message=message,
            is_admin_note=is_admin_note,
        )
        if not is_admin_note:
            order = dispute.order
            for party in (order.client, order.fixer):
                if party.pk == actor.pk:
                    continue
                notifications.notify(
                    party,
                    notifications.DISPUTE_MESSAGE,
                    'New dispute message',
                    message[:200],
                    link=f'/disputes/{dispute.pk}',
                    payload={'dispute_id': str(dispute.pk)},
                )

    logger.info(f"Dispute message posted. Dispute ID: {dispute.pk}, Sender: {actor.pk}, Admin note: {is_admin_note}")
    return dispute_message


def list_dispute_messages(dispute_id, actor):
    """Messages visible to the actor; admin notes only for admins."""
    dispute = _get_dispute_for(dispute_id, actor)
    messages = dispute.messages.select_related('sender')
    if not is_admin(actor):
        messages = messages.filter(is_admin_note=False)
    return messages
