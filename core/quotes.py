"""
Quote submission and acceptance.

A fixer quotes on a client's service request either directly (priced up
front) or after a paid inspection visit. Accepting a quote creates the
request-origin order; a quote with a down payment is only accepted once the
down payment has been captured by the gateway.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from . import exceptions as errors
from . import gateways, ledger, notifications
from .conf import marketplace_setting, round_money
from .models import AgentFixer, FixerService, Payment, PurseTransaction, Quote, ServiceRequest, User
from .orders import create_order
from .origin import RequestOrigin
from .permissions import is_system, require_authenticated, require_role

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
MIN_DOWN_PAYMENT_REASON_LENGTH = 10


@dataclass(frozen=True)
class QuoteTerms:
    """Price terms proposed by a fixer."""

    quote_type: str = Quote.TYPE_DIRECT
    labor_cost: Decimal = ZERO
    material_cost: Decimal = ZERO
    other_costs: Decimal = ZERO
    inspection_fee: Optional[Decimal] = None
    requires_down_payment: bool = False
    down_payment_percentage: Optional[Decimal] = None
    down_payment_reason: str = ''
    estimated_duration: str = ''
    notes: str = ''

    @property
    def total(self):
        return round_money(self.labor_cost + self.material_cost + self.other_costs)


@dataclass(frozen=True)
class QuoteAcceptance:
    """
    Result of accepting a quote.

    Either ``order`` is set, or ``requires_payment`` is true and the client
    must pay the down payment through ``payment_intent`` first.
    """

    order: object = None
    requires_payment: bool = False
    payment_intent: Optional[gateways.PaymentIntent] = None
    down_payment_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None


# ============================================================================
# Validation helpers
# ============================================================================

def _validate_costs(terms):
    if terms.labor_cost <= 0:
        raise errors.ValidationError('Labor cost must be greater than 0.')
    if terms.material_cost < 0 or terms.other_costs < 0:
        raise errors.ValidationError('Material and other costs cannot be negative.')


def _validate_down_payment_terms(terms):
    if not terms.requires_down_payment:
        return
    percentage = terms.down_payment_percentage
    minimum = Decimal(marketplace_setting('MIN_DOWN_PAYMENT_PERCENTAGE'))
    maximum = Decimal(marketplace_setting('MAX_DOWN_PAYMENT_PERCENTAGE'))
    if percentage is None or not (minimum <= Decimal(percentage) <= maximum):
        raise errors.ValidationError(
            f"Down payment percentage must be between {minimum} and {maximum}."
        )
    if len(terms.down_payment_reason.strip()) < MIN_DOWN_PAYMENT_REASON_LENGTH:
        raise errors.ValidationError(
            f"Down payment reason must be at least {MIN_DOWN_PAYMENT_REASON_LENGTH} characters."
        )


def down_payment_for(total, terms):
    """
    Down payment owed on ``total`` under ``terms``.

    Returns:
        Decimal or None when no down payment is required

    Raises:
        ValidationError: Amount below MIN_DOWN_PAYMENT_AMOUNT
    """
    if not terms.requires_down_payment:
        return None
    amount = round_money(total * Decimal(terms.down_payment_percentage) / Decimal('100'))
    minimum = Decimal(marketplace_setting('MIN_DOWN_PAYMENT_AMOUNT'))
    if amount < minimum:
        raise errors.ValidationError(f"Down payment must be at least {minimum}.")
    return amount


def validate_terms(terms):
    """
    Check initial quote terms.

    Raises:
        ValidationError: Malformed terms
    """
    if terms.quote_type == Quote.TYPE_DIRECT:
        _validate_costs(terms)
    elif terms.quote_type == Quote.TYPE_INSPECTION_REQUIRED:
        minimum = Decimal(marketplace_setting('INSPECTION_FEE_MIN'))
        maximum = Decimal(marketplace_setting('INSPECTION_FEE_MAX'))
        if terms.inspection_fee is None or not (minimum <= terms.inspection_fee <= maximum):
            raise errors.ValidationError(
                f"Inspection fee must be between {minimum} and {maximum}."
            )
    else:
        raise errors.ValidationError(f"Unknown quote type: {terms.quote_type}.")
    _validate_down_payment_terms(terms)


def _fixer_covers_request(fixer, service_request):
    return FixerService.objects.filter(
        fixer=fixer,
        subcategory_id=service_request.subcategory_id,
        neighborhoods=service_request.neighborhood_id,
        is_active=True,
    ).exists()


def _mediating_agent_for(service_request, fixer):
    if service_request.agent_id:
        return service_request.agent
    relation = (
        AgentFixer.objects.filter(fixer=fixer, agent__is_active=True)
        .select_related('agent')
        .order_by('created_at')
        .first()
    )
    return relation.agent if relation else None


def _get_quote(quote_id):
    quote = Quote.objects.select_related('request', 'fixer').filter(pk=quote_id).first()
    if quote is None:
        raise errors.NotFound('Quote not found.')
    return quote


# ============================================================================
# Submission
# ============================================================================

def submit_quote(request_id, actor, terms):
    """
    Submit a fixer's quote on a service request.

    Args:
        request_id: ServiceRequest primary key
        actor: Fixer submitting the quote
        terms: QuoteTerms

    Returns:
        Quote: The created quote

    Raises:
        Unauthorized, Forbidden, ValidationError, NotFound, InvalidState, Conflict
    """
    require_role(actor, User.ROLE_FIXER, 'Only fixers can submit quotes.')
    validate_terms(terms)

    service_request = ServiceRequest.objects.filter(pk=request_id).first()
    if service_request is None:
        raise errors.NotFound('Service request not found.')
    if not _fixer_covers_request(actor, service_request):
        raise errors.Forbidden(
            'You do not offer this service in the neighborhood of this request.'
        )

    if terms.quote_type == Quote.TYPE_DIRECT:
        total = terms.total
        down_payment_amount = down_payment_for(total, terms)
    else:
        total = ZERO
        down_payment_amount = None

    with transaction.atomic():
        service_request = ServiceRequest.objects.select_for_update().get(pk=service_request.pk)
        if service_request.status not in ServiceRequest.QUOTABLE_STATUSES:
            raise errors.InvalidState(
                f"Service request is {service_request.status} and not accepting quotes."
            )
        if Quote.objects.filter(request=service_request, fixer=actor).exists():
            raise errors.Conflict('You have already quoted on this request.')

        quote = Quote(
            request=service_request,
            fixer=actor,
            agent=_mediating_agent_for(service_request, actor),
            quote_type=terms.quote_type,
            inspection_fee=terms.inspection_fee if terms.quote_type == Quote.TYPE_INSPECTION_REQUIRED else None,
            labor_cost=terms.labor_cost if terms.quote_type == Quote.TYPE_DIRECT else ZERO,
            material_cost=terms.material_cost if terms.quote_type == Quote.TYPE_DIRECT else ZERO,
            other_costs=terms.other_costs if terms.quote_type == Quote.TYPE_DIRECT else ZERO,
            total_amount=total,
            estimated_duration=terms.estimated_duration,
            notes=terms.notes,
            requires_down_payment=terms.requires_down_payment,
            down_payment_percentage=terms.down_payment_percentage if terms.requires_down_payment else None,
            down_payment_amount=down_payment_amount,
            down_payment_reason=terms.down_payment_reason if terms.requires_down_payment else '',
        )
        try:
            with transaction.atomic():
                quote.save()
        except IntegrityError as e:
            raise errors.Conflict('You have already quoted on this request.') from e

        if service_request.status == ServiceRequest.STATUS_APPROVED:
            ServiceRequest.objects.filter(pk=service_request.pk).update(
                status=ServiceRequest.STATUS_QUOTED,
                updated_at=timezone.now(),
            )

        notifications.notify(
            service_request.client,
            notifications.QUOTE_RECEIVED,
            'New quote received',
            f"{actor.get_full_name() or actor.username} sent a quote for \"{service_request.title}\".",
            link=f'/requests/{service_request.pk}',
            payload={'quote_id': str(quote.pk), 'request_id': str(service_request.pk)},
        )

    logger.info(
        f"Quote submitted successfully. ID: {quote.pk}, Request: {service_request.pk}, "
        f"Fixer: {actor.pk}, Type: {quote.quote_type}, Total: {quote.total_amount}"
    )
    return quote


def submit_final_quote(quote_id, actor, terms):
    """
    Price an inspection quote after the inspection has been paid.

    Returns:
        Quote: The revised quote

    Raises:
        Forbidden: Actor does not own the quote
        InvalidState: Not an inspection quote, fee unpaid, already revised or accepted
        ValidationError: Malformed costs, or a total below the inspection fee
    """
    require_authenticated(actor)
    quote = _get_quote(quote_id)
    if is_system(actor) or quote.fixer_id != actor.pk:
        raise errors.Forbidden('You can only revise your own quotes.')

    with transaction.atomic():
        quote = Quote.objects.select_for_update().get(pk=quote.pk)
        if not quote.is_inspection():
            raise errors.InvalidState('Only inspection quotes take a final quote.')
        if not quote.inspection_fee_paid:
            raise errors.InvalidState('The inspection fee has not been paid yet.')
        if quote.is_revised:
            raise errors.InvalidState('A final quote has already been submitted.')
        if quote.is_accepted:
            raise errors.InvalidState('This quote has already been accepted.')

        _validate_costs(terms)
        _validate_down_payment_terms(terms)
        total = terms.total
        if total < quote.inspection_fee:
            raise errors.ValidationError(
                f"The final total cannot be below the inspection fee of {quote.inspection_fee}."
            )
        down_payment_amount = down_payment_for(total, terms)

        quote.labor_cost = terms.labor_cost
        quote.material_cost = terms.material_cost
        quote.other_costs = terms.other_costs
        quote.total_amount = total
        quote.estimated_duration = terms.estimated_duration or quote.estimated_duration
        quote.notes = terms.notes or quote.notes
        quote.requires_down_payment = terms.requires_down_payment
        quote.down_payment_percentage = terms.down_payment_percentage if terms.requires_down_payment else None
        quote.down_payment_amount = down_payment_amount
        quote.down_payment_reason = terms.down_payment_reason if terms.requires_down_payment else ''
        quote.is_revised = True
        quote.revised_at = timezone.now()
        quote.save()

        notifications.notify(
            quote.request.client,
            notifications.FINAL_QUOTE_SUBMITTED,
            'Final quote ready',
            f"The final quote for \"{quote.request.title}\" is {total}.",
            link=f'/requests/{quote.request_id}',
            payload={'quote_id': str(quote.pk), 'total_amount': str(total)},
        )

    logger.info(f"Final quote submitted. ID: {quote.pk}, Fixer: {actor.pk}, Total: {quote.total_amount}")
    return quote


# ============================================================================
# Acceptance
# ============================================================================

def _create_request_order(quote, down_payment_paid=False):
    """
    Accept a locked quote and create its order.

    Must run inside a transaction with the quote row locked.

    Raises:
        Conflict: Quote accepted concurrently
        InvalidState: Request no longer accepts quotes
    """
    service_request = ServiceRequest.objects.select_for_update().get(pk=quote.request_id)
    if service_request.status not in ServiceRequest.QUOTABLE_STATUSES:
        raise errors.InvalidState(
            f"Service request is {service_request.status} and no longer accepts quotes."
        )

    now = timezone.now()
    updated = Quote.objects.filter(pk=quote.pk, is_accepted=False).update(
        is_accepted=True,
        accepted_at=now,
        updated_at=now,
    )
    if not updated:
        raise errors.Conflict('This quote has already been accepted.')

    ServiceRequest.objects.filter(pk=service_request.pk).update(
        status=ServiceRequest.STATUS_ACCEPTED,
        updated_at=now,
    )

    order = create_order(
        RequestOrigin(request_id=service_request.pk, quote_id=quote.pk),
        client=service_request.client,
        fixer=quote.fixer,
        total_amount=quote.total_amount,
        down_payment_amount=quote.down_payment_amount if quote.requires_down_payment else None,
        down_payment_paid=down_payment_paid,
    )

    notifications.notify(
        quote.fixer,
        notifications.QUOTE_ACCEPTED,
        'Quote accepted',
        f"Your quote for \"{service_request.title}\" was accepted. Work can begin.",
        link=f'/orders/{order.pk}',
        payload={'quote_id': str(quote.pk), 'order_id': str(order.pk)},
    )
    return order


def accept_quote(quote_id, actor, provider=None):
    """
    Accept a quote on the client's service request.

    Args:
        quote_id: Quote primary key
        actor: Client who owns the request
        provider: Payment provider used when a down payment is required

    Returns:
        QuoteAcceptance

    Raises:
        Forbidden, NotFound, Conflict, InvalidState, GatewayError
    """
    require_authenticated(actor)
    quote = _get_quote(quote_id)
    if is_system(actor) or quote.request.client_id != actor.pk:
        raise errors.Forbidden('Only the client who made the request can accept its quotes.')
    if quote.is_accepted:
        raise errors.Conflict('This quote has already been accepted.')
    is_valid, error_msg = quote.can_be_accepted()
    if not is_valid:
        raise errors.InvalidState(error_msg)

    if quote.requires_down_payment:
        intent = gateways.get_gateway(provider).create_payment_intent(
            quote.down_payment_amount,
            metadata={
                'payment_type': 'DOWN_PAYMENT',
                'quote_id': str(quote.pk),
                'client_id': str(actor.pk),
            },
            email=actor.email,
        )
        logger.info(
            f"Down payment intent created. Quote ID: {quote.pk}, Client: {actor.pk}, "
            f"Amount: {quote.down_payment_amount}, Intent: {intent.id}"
        )
        return QuoteAcceptance(
            requires_payment=True,
            payment_intent=intent,
            down_payment_amount=quote.down_payment_amount,
            total_amount=quote.total_amount,
        )

    with transaction.atomic():
        quote = Quote.objects.select_for_update().get(pk=quote.pk)
        if quote.is_accepted:
            raise errors.Conflict('This quote has already been accepted.')
        order = _create_request_order(quote)

    logger.info(f"Quote accepted successfully. ID: {quote.pk}, Order: {order.pk}, Client: {actor.pk}")
    return QuoteAcceptance(order=order, total_amount=order.total_amount)


def confirm_down_payment(quote_id, actor, reference, provider=None):
    """
    Accept a down-payment quote once its payment has been captured.

    Idempotent for the reference that accepted the quote.

    Returns:
        Order

    Raises:
        Forbidden, NotFound, InvalidState, Conflict, GatewayError, ValidationError
    """
    require_authenticated(actor)
    quote = _get_quote(quote_id)
    if not is_system(actor) and quote.request.client_id != actor.pk:
        raise errors.Forbidden('Only the client who made the request can pay this down payment.')
    if not quote.requires_down_payment:
        raise errors.InvalidState('This quote does not require a down payment.')

    if quote.is_accepted:
        return _accepted_down_payment_order(quote, reference)
    is_valid, error_msg = quote.can_be_accepted()
    if not is_valid:
        raise errors.InvalidState(error_msg)

    verification = gateways.verify_captured(
        provider,
        reference,
        quote.down_payment_amount,
        {'payment_type': 'DOWN_PAYMENT', 'quote_id': quote.pk},
    )

    with transaction.atomic():
        quote = Quote.objects.select_for_update().select_related('request').get(pk=quote.pk)
        if quote.is_accepted:
            return _accepted_down_payment_order(quote, reference)
        gateways.ensure_reference_unused(reference)

        order = _create_request_order(quote, down_payment_paid=True)
        now = timezone.now()
        Payment.objects.create(
            order=order,
            provider=verification.provider,
            reference=reference,
            down_payment_reference=reference,
            amount=quote.down_payment_amount,
            status=Payment.STATUS_HELD_IN_ESCROW,
            paid_at=now,
        )
        ledger.record_escrow_hold(order, quote.down_payment_amount, PurseTransaction.ENTRY_DOWN_PAYMENT_HOLD)

    logger.info(
        f"Down payment confirmed. Quote ID: {quote.pk}, Order: {order.pk}, "
        f"Reference: {reference}, Amount: {quote.down_payment_amount}"
    )
    return order


def _accepted_down_payment_order(quote, reference):
    order = getattr(quote, 'order', None)
    payment = getattr(order, 'payment', None) if order is not None else None
    if payment is not None and payment.down_payment_reference == reference:
        logger.info(f"Down payment already confirmed. Quote ID: {quote.pk}, Reference: {reference}")
        return order
    raise errors.Conflict('This quote has already been accepted.')


# ============================================================================
# Inspection fee
# ============================================================================

def _inspection_quote_for_client(quote_id, actor, allow_system=False):
    require_authenticated(actor)
    quote = _get_quote(quote_id)
    if is_system(actor):
        if not allow_system:
            raise errors.Forbidden('Only the client who made the request can pay the inspection fee.')
    elif quote.request.client_id != actor.pk:
        raise errors.Forbidden('Only the client who made the request can pay the inspection fee.')
    if not quote.is_inspection():
        raise errors.InvalidState('This quote does not require an inspection.')
    return quote


def start_inspection_payment(quote_id, actor, provider=None):
    """
    Create a payment intent for a quote's inspection fee.

    Returns:
        PaymentIntent
    """
    quote = _inspection_quote_for_client(quote_id, actor)
    if quote.inspection_fee_paid:
        raise errors.InvalidState('The inspection fee has already been paid.')

    intent = gateways.get_gateway(provider).create_payment_intent(
        quote.inspection_fee,
        metadata={
            'payment_type': 'INSPECTION_FEE',
            'quote_id': str(quote.pk),
            'client_id': str(actor.pk),
        },
        email=actor.email,
    )
    logger.info(f"Inspection payment intent created. Quote ID: {quote.pk}, Intent: {intent.id}")
    return intent


def confirm_inspection_payment(quote_id, actor, reference, provider=None):
    """
    Mark a quote's inspection fee as paid after verifying the payment.

    The payment's metadata must name this quote. Idempotent.

    Returns:
        Quote
    """
    quote = _inspection_quote_for_client(quote_id, actor, allow_system=True)
    if quote.inspection_fee_paid:
        return quote

    gateways.verify_captured(
        provider,
        reference,
        quote.inspection_fee,
        {'payment_type': 'INSPECTION_FEE', 'quote_id': quote.pk},
    )

    with transaction.atomic():
        gateways.ensure_reference_unused(reference)
        updated = Quote.objects.filter(pk=quote.pk, inspection_fee_paid=False).update(
            inspection_fee_paid=True,
            inspection_payment_reference=reference,
            updated_at=timezone.now(),
        )
        if updated:
            notifications.notify(
                quote.fixer,
                notifications.INSPECTION_FEE_PAID,
                'Inspection fee paid',
                f"The client paid the inspection fee for \"{quote.request.title}\".",
                link=f'/requests/{quote.request_id}',
                payload={'quote_id': str(quote.pk)},
            )

    if updated:
        logger.info(f"Inspection fee paid. Quote ID: {quote.pk}, Reference: {reference}")
    quote.refresh_from_db()
    return quote
