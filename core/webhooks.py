"""
Gateway webhook processing.

A verified webhook reports a successful charge. The charge's metadata says
what it paid for, and the matching confirmation runs as the SYSTEM actor.
Each confirmation re-verifies the reference with the gateway and is
idempotent, so duplicate deliveries are harmless.
"""

import logging

from . import orders, quotes
from .permissions import SYSTEM

logger = logging.getLogger(__name__)

PAYMENT_ORDER = 'ORDER_PAYMENT'
PAYMENT_DOWN_PAYMENT = 'DOWN_PAYMENT'
PAYMENT_INSPECTION_FEE = 'INSPECTION_FEE'


def process_webhook_event(event):
    """
    Apply a verified WebhookEvent.

    Args:
        event: gateways.WebhookEvent, or None for ignored events

    Returns:
        The confirmed Order or Quote, or None when the event is ignored
    """
    if event is None:
        return None

    payment_type = event.metadata.get('payment_type')
    if payment_type == PAYMENT_ORDER:
        result = orders.pay_order(event.metadata.get('order_id'), SYSTEM, event.reference, event.provider)
    elif payment_type == PAYMENT_DOWN_PAYMENT:
        result = quotes.confirm_down_payment(event.metadata.get('quote_id'), SYSTEM, event.reference, event.provider)
    elif payment_type == PAYMENT_INSPECTION_FEE:
        result = quotes.confirm_inspection_payment(event.metadata.get('quote_id'), SYSTEM, event.reference, event.provider)
    else:
        logger.warning(
            f"Webhook ignored, unknown payment type. Provider: {event.provider}, "
            f"Reference: {event.reference}, Type: {payment_type}"
        )
        return None

    logger.info(
        f"Webhook processed. Provider: {event.provider}, Type: {payment_type}, Reference: {event.reference}"
    )
    return result
