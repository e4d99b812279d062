"""
Notification outbox.

Core operations call ``notify`` inside their own transaction; it only writes
an ``OutboxEvent`` row, so a notification commits or rolls back together with
the state change that caused it. Delivery happens later in
``dispatch_outbox`` (run by the ``dispatch_outbox`` management command).
Delivery failures are recorded on the event and logged, and never reach the
core records.
"""

import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from .conf import marketplace_setting
from .models import OutboxEvent

logger = logging.getLogger(__name__)

User = get_user_model()


QUOTE_RECEIVED = 'QUOTE_RECEIVED'
FINAL_QUOTE_SUBMITTED = 'FINAL_QUOTE_SUBMITTED'
QUOTE_ACCEPTED = 'QUOTE_ACCEPTED'
INSPECTION_FEE_PAID = 'INSPECTION_FEE_PAID'
ORDER_PLACED = 'ORDER_PLACED'
ORDER_STARTED = 'ORDER_STARTED'
ORDER_DELIVERED = 'ORDER_DELIVERED'
ORDER_COMPLETED = 'ORDER_COMPLETED'
ORDER_CANCELLED = 'ORDER_CANCELLED'
REVISION_REQUESTED = 'REVISION_REQUESTED'
REVIEW_RECEIVED = 'REVIEW_RECEIVED'
PAYMENT_RECEIVED = 'PAYMENT_RECEIVED'
ORDER_SETTLED = 'ORDER_SETTLED'
COMMISSION_EARNED = 'COMMISSION_EARNED'
COMMISSIONS_PAID_OUT = 'COMMISSIONS_PAID_OUT'
FIXER_BONUS_PAID = 'FIXER_BONUS_PAID'
DISPUTE_FILED = 'DISPUTE_FILED'
DISPUTE_UPDATED = 'DISPUTE_UPDATED'
DISPUTE_MESSAGE = 'DISPUTE_MESSAGE'


def notify(recipient, event_type, title, message, link='', payload=None):
    """
    Queue a notification for delivery.

    Args:
        recipient: User to notify
        event_type: One of the event type constants in this module
        title: Short subject line
        message: Body text
        link: Relative link into the web app
        payload: JSON-serialisable extra data

    Returns:
        OutboxEvent: The queued event
    """
    return OutboxEvent.objects.create(
        recipient=recipient,
        event_type=event_type,
        title=title,
        message=message,
        link=link,
        payload=payload or {},
    )


def notify_admins(event_type, title, message, link='', payload=None):
    """Queue the same notification for every active admin user."""
    # roles is stored as a JSON list of quoted names
    admins = User.objects.filter(is_active=True).filter(
        Q(is_staff=True) | Q(roles__icontains=f'"{User.ROLE_ADMIN}"')
    ).order_by('pk')
    return [
        notify(admin, event_type, title, message, link=link, payload=payload)
        for admin in admins
    ]


def deliver(event):
    """
    Deliver one event by e-mail.

    Raises:
        Exception: Whatever the e-mail backend raises
    """
    if not event.recipient.email:
        return
    body = event.message
    if event.link:
        body = f"{body}\n\n{settings.SITE_URL}{event.link}"
    send_mail(
        subject=event.title,
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[event.recipient.email],
        fail_silently=False,
    )


def pending_events(max_attempts=None):
    if max_attempts is None:
        max_attempts = marketplace_setting('OUTBOX_MAX_ATTEMPTS')
    return OutboxEvent.objects.filter(
        dispatched_at__isnull=True,
        attempts__lt=max_attempts,
    ).select_related('recipient').order_by('created_at')


def dispatch_outbox(batch_size=100, dry_run=False):
    """
    Deliver pending outbox events.

    Each event is claimed with a row lock so that concurrent dispatchers do not
    send it twice. A failed delivery increments ``attempts`` and stores the
    error; the event is retried on the next run until the attempt limit.

    Args:
        batch_size: Maximum number of events to process
        dry_run: Count pending events without delivering them

    Returns:
        dict: Counts of 'sent', 'failed' and 'pending' events
    """
    summary = {'sent': 0, 'failed': 0, 'pending': 0}
    event_ids = list(pending_events().values_list('id', flat=True)[:batch_size])
    summary['pending'] = len(event_ids)

    if dry_run:
        return summary

    for event_id in event_ids:
        with transaction.atomic():
            event = (
                OutboxEvent.objects.select_for_update()
                .select_related('recipient')
                .filter(pk=event_id, dispatched_at__isnull=True)
                .first()
            )
            if event is None:
                continue
            try:
                deliver(event)
            except Exception as e:
                OutboxEvent.objects.filter(pk=event.pk).update(
                    attempts=F('attempts') + 1,
                    last_error=str(e)[:2000],
                )
                summary['failed'] += 1
                logger.error(
                    f"Outbox delivery failed. Event ID: {event.pk}, "
                    f"Type: {event.event_type}, Recipient ID: {event.recipient_id}, "
                    f"Error: {str(e)}",
                    exc_info=True
                )
                continue
            OutboxEvent.objects.filter(pk=event.pk).update(
                attempts=F('attempts') + 1,
                dispatched_at=timezone.now(),
                last_error='',
            )
            summary['sent'] += 1

    logger.info(
        f"Outbox dispatch finished. Sent: {summary['sent']}, Failed: {summary['failed']}"
    )
    return summary
