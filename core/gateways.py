"""
Payment gateway adapters.

The engine needs two calls from a gateway:

- ``create_payment_intent(amount, metadata, email)`` -> PaymentIntent
- ``verify_payment(reference)`` -> PaymentVerification

plus webhook signature checking. Gateway results are trusted once they report
success. Calls are synchronous with a bounded timeout and no retries; any
provider failure surfaces as ``GatewayError`` before the caller has changed
anything.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal

import requests
import stripe
from django.conf import settings

from . import exceptions as errors
from .conf import marketplace_setting
from .models import Payment, Quote

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_PENDING = 'pending'
STATUS_FAILED = 'failed'

MINOR_UNITS = Decimal('100')


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    amount: Decimal
    provider: str


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    status: str
    amount: Decimal
    metadata: dict = field(default_factory=dict)
    provider: str = ''

    @property
    def succeeded(self):
        return self.status == STATUS_SUCCESS


@dataclass(frozen=True)
class WebhookEvent:
    """A verified gateway callback reporting a successful charge."""

    provider: str
    event_type: str
    reference: str
    metadata: dict


def to_minor_units(amount):
    return int((Decimal(amount) * MINOR_UNITS).to_integral_value())


def from_minor_units(value):
    return (Decimal(value or 0) / MINOR_UNITS).quantize(Decimal('0.01'))


def _string_metadata(metadata):
    return {key: str(value) for key, value in (metadata or {}).items()}


class StripeGateway:
    """Stripe PaymentIntents through the official SDK."""

    provider = Payment.PROVIDER_STRIPE

    STATUS_MAP = {
        'succeeded': STATUS_SUCCESS,
        'processing': STATUS_PENDING,
        'requires_payment_method': STATUS_PENDING,
        'requires_confirmation': STATUS_PENDING,
        'requires_action': STATUS_PENDING,
        'requires_capture': STATUS_PENDING,
        'canceled': STATUS_FAILED,
    }

    def __init__(self):
        stripe.api_key = getattr(settings, 'STRIPE_SECRET_KEY', '')

    def create_payment_intent(self, amount, metadata, email=None):
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=marketplace_setting('CURRENCY').lower(),
                metadata=_string_metadata(metadata),
                receipt_email=email or None,
                automatic_payment_methods={'enabled': True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent creation failed: {str(e)}, Metadata: {metadata}")
            raise errors.GatewayError('Could not start the payment with Stripe.') from e

        return PaymentIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=Decimal(amount),
            provider=self.provider,
        )

    def verify_payment(self, reference):
        try:
            intent = stripe.PaymentIntent.retrieve(reference)
        except stripe.StripeError as e:
            logger.error(f"Stripe payment verification failed. Reference: {reference}, Error: {str(e)}")
            raise errors.GatewayError('Could not verify the payment with Stripe.') from e

        return PaymentVerification(
            reference=intent.id,
            status=self.STATUS_MAP.get(intent.status, STATUS_FAILED),
            amount=from_minor_units(intent.amount_received or intent.amount),
            metadata=dict(intent.metadata or {}),
            provider=self.provider,
        )

    def parse_webhook(self, payload, signature):
        """
        Verify a Stripe webhook and extract a successful payment.

        Returns:
            WebhookEvent or None for events the engine ignores

        Raises:
            Forbidden: Invalid signature
            ValidationError: Malformed payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, getattr(settings, 'STRIPE_WEBHOOK_SECRET', '')
            )
        except ValueError as e:
            raise errors.ValidationError('Invalid webhook payload.') from e
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature rejected: {str(e)}")
            raise errors.Forbidden('Invalid webhook signature.') from e

        if event['type'] != 'payment_intent.succeeded':
            return None
        intent = event['data']['object']
        return WebhookEvent(
            provider=self.provider,
            event_type=event['type'],
            reference=intent['id'],
            metadata=dict(intent.get('metadata') or {}),
        )


class PaystackGateway:
    """Paystack transactions through its REST API."""

    provider = Payment.PROVIDER_PAYSTACK

    def __init__(self):
        self.secret_key = getattr(settings, 'PAYSTACK_SECRET_KEY', '')
        self.base_url = getattr(settings, 'PAYSTACK_BASE_URL', 'https://api.paystack.co').rstrip('/')
        self.timeout = getattr(settings, 'PAYMENT_GATEWAY_TIMEOUT', 15)

    def _headers(self):
        return {
            'Authorization': f'Bearer {self.secret_key}',
            'Content-Type': 'application/json',
        }

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Paystack request failed. URL: {url}, Error: {str(e)}")
            raise errors.GatewayError('The payment provider is unavailable.') from e

        if not body.get('status'):
            logger.error(f"Paystack returned an error. URL: {url}, Message: {body.get('message')}")
            raise errors.GatewayError(body.get('message') or 'The payment provider rejected the request.')
        return body.get('data') or {}

    def create_payment_intent(self, amount, metadata, email=None):
        data = self._request('POST', '/transaction/initialize', json={
            'email': email or settings.DEFAULT_FROM_EMAIL,
            'amount': to_minor_units(amount),
            'currency': marketplace_setting('CURRENCY'),
            'metadata': _string_metadata(metadata),
        })
        return PaymentIntent(
            id=data['reference'],
            client_secret=data.get('access_code') or data.get('authorization_url', ''),
            amount=Decimal(amount),
            provider=self.provider,
        )

    def verify_payment(self, reference):
        data = self._request('GET', f'/transaction/verify/{reference}')
        status = data.get('status')
        if status == 'success':
            normalized = STATUS_SUCCESS
        elif status in ('failed', 'abandoned', 'reversed'):
            normalized = STATUS_FAILED
        else:
            normalized = STATUS_PENDING
        metadata = data.get('metadata') or {}
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = {}
        return PaymentVerification(
            reference=data.get('reference', reference),
            status=normalized,
            amount=from_minor_units(data.get('amount')),
            metadata=metadata,
            provider=self.provider,
        )

    def parse_webhook(self, payload, signature):
        """
        Verify a Paystack webhook (HMAC-SHA512 of the raw body with the secret key).

        Returns:
            WebhookEvent or None for events the engine ignores
        """
        expected = hmac.new(
            self.secret_key.encode('utf-8'), payload, hashlib.sha512
        ).hexdigest()
        if not signature or not hmac.compare_digest(expected, signature):
            logger.warning('Paystack webhook signature rejected.')
            raise errors.Forbidden('Invalid webhook signature.')

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise errors.ValidationError('Invalid webhook payload.') from e

        if event.get('event') != 'charge.success':
            return None
        data = event.get('data') or {}
        return WebhookEvent(
            provider=self.provider,
            event_type=event['event'],
            reference=data.get('reference', ''),
            metadata=data.get('metadata') or {},
        )


GATEWAYS = {
    Payment.PROVIDER_STRIPE: StripeGateway,
    Payment.PROVIDER_PAYSTACK: PaystackGateway,
}


def get_gateway(provider=None):
    """
    Return the adapter for a payment provider.

    Args:
        provider: 'STRIPE' or 'PAYSTACK'; defaults to DEFAULT_PAYMENT_PROVIDER

    Raises:
        ValidationError: Unknown provider
    """
    provider = (provider or getattr(settings, 'DEFAULT_PAYMENT_PROVIDER', Payment.PROVIDER_PAYSTACK)).upper()
    gateway_class = GATEWAYS.get(provider)
    if gateway_class is None:
        raise errors.ValidationError(f"Unsupported payment provider: {provider}.")
    return gateway_class()


def check_metadata(verification, expected_metadata):
    """
    Require the capture's metadata to name what is being paid for.

    Every key of ``expected_metadata`` must be present with the same value, so
    a capture made for another order, quote or payment type is rejected.

    Returns:
        PaymentVerification

    Raises:
        ValidationError: A key is missing or holds another value
    """
    for key, expected in (expected_metadata or {}).items():
        reported = verification.metadata.get(key)
        if reported is None or str(reported) != str(expected):
            logger.warning(
                f"Payment metadata mismatch. Reference: {verification.reference}, "
                f"Key: {key}, Expected: {expected}, Received: {reported}"
            )
            raise errors.ValidationError(f"Payment {verification.reference} was not made for this purchase.")
    return verification


def ensure_reference_unused(reference):
    """
    Reject a gateway reference already recorded against another purchase.

    Must run inside the recording transaction.

    Raises:
        Conflict: The reference paid for something else
    """
    used = (
        Payment.objects.filter(reference=reference).exists()
        or Payment.objects.filter(down_payment_reference=reference).exists()
        or Quote.objects.filter(inspection_payment_reference=reference).exists()
    )
    if used:
        logger.warning(f"Payment reference reused. Reference: {reference}")
        raise errors.Conflict(f"Payment {reference} has already been used.")


def verify_captured(provider, reference, expected_amount, expected_metadata=None):
    """
    Verify a reference reports a successful capture of exactly ``expected_amount``
    made for the purchase described by ``expected_metadata``.

    Returns:
        PaymentVerification

    Raises:
        GatewayError: Provider failure
        ValidationError: Not successful, the amount does not match, or the
            metadata names another purchase
    """
    verification = get_gateway(provider).verify_payment(reference)
    if not verification.succeeded:
        raise errors.ValidationError(
            f"Payment {reference} has not succeeded (status: {verification.status})."
        )
    if verification.amount != Decimal(expected_amount):
        logger.warning(
            f"Payment amount mismatch. Reference: {reference}, "
            f"Expected: {expected_amount}, Received: {verification.amount}"
        )
        raise errors.ValidationError('Payment amount does not match the amount due.')
    return check_metadata(verification, expected_metadata)
