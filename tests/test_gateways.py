"""
Tests for the payment gateway adapters.

Test Coverage:
- Paystack requests, provider failures and verification results
- Stripe payment intents and verification through the SDK
- Capture checks: status, amount and purchase metadata
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest
import requests
import stripe

from core import gateways
from core.exceptions import GatewayError, ValidationError
from core.gateways import PaystackGateway, StripeGateway


def paystack_response(body):
    response = Mock()
    response.json.return_value = body
    response.raise_for_status.return_value = None
    return response


def paystack_capture(status='success', amount=500000, metadata=None):
    return paystack_response({
        'status': True,
        'message': 'Verification successful',
        'data': {
            'reference': 'ref-final',
            'status': status,
            'amount': amount,
            'metadata': metadata if metadata is not None else {
                'payment_type': 'ORDER_PAYMENT',
                'order_id': '42',
            },
        },
    })


def stripe_intent(status='succeeded', amount=500000, metadata=None):
    return SimpleNamespace(
        id='pi_test_1',
        client_secret='pi_test_1_secret',
        status=status,
        amount=amount,
        amount_received=amount if status == 'succeeded' else 0,
        metadata=metadata if metadata is not None else {'payment_type': 'ORDER_PAYMENT', 'order_id': '42'},
    )


class TestPaystackGateway:

    def test_verify_payment_converts_minor_units(self):
        with patch('core.gateways.requests.request', return_value=paystack_capture()) as mock_request:
            verification = PaystackGateway().verify_payment('ref-final')

        assert verification.succeeded
        assert verification.amount == Decimal('5000.00')
        assert verification.reference == 'ref-final'
        assert verification.provider == 'PAYSTACK'
        assert verification.metadata == {'payment_type': 'ORDER_PAYMENT', 'order_id': '42'}

        method, url = mock_request.call_args.args
        assert method == 'GET'
        assert url == 'https://api.paystack.co/transaction/verify/ref-final'
        assert mock_request.call_args.kwargs['headers']['Authorization'] == 'Bearer sk_test_paystack_dummy'
        assert mock_request.call_args.kwargs['timeout'] == 15

    def test_metadata_sent_as_json_string_is_decoded(self):
        response = paystack_capture(metadata='{"payment_type": "DOWN_PAYMENT", "quote_id": "7"}')

        with patch('core.gateways.requests.request', return_value=response):
            verification = PaystackGateway().verify_payment('ref-final')

        assert verification.metadata == {'payment_type': 'DOWN_PAYMENT', 'quote_id': '7'}

    @pytest.mark.parametrize('status,expected', [
        ('failed', gateways.STATUS_FAILED),
        ('abandoned', gateways.STATUS_FAILED),
        ('ongoing', gateways.STATUS_PENDING),
    ])
    def test_unsuccessful_statuses(self, status, expected):
        with patch('core.gateways.requests.request', return_value=paystack_capture(status=status)):
            verification = PaystackGateway().verify_payment('ref-final')

        assert verification.status == expected
        assert not verification.succeeded

    def test_network_failure_raises_gateway_error(self):
        with patch('core.gateways.requests.request', side_effect=requests.ConnectionError('connection refused')), \
                patch('core.gateways.logger') as mock_logger:
            with pytest.raises(GatewayError):
                PaystackGateway().verify_payment('ref-final')

        mock_logger.error.assert_called_once()

    def test_http_error_raises_gateway_error(self):
        response = paystack_response({})
        response.raise_for_status.side_effect = requests.HTTPError('500 Server Error')

        with patch('core.gateways.requests.request', return_value=response):
            with pytest.raises(GatewayError):
                PaystackGateway()._request('GET', '/transaction/verify/ref-final')

    def test_rejected_request_raises_gateway_error(self):
        response = paystack_response({'status': False, 'message': 'Transaction reference not found'})

        with patch('core.gateways.requests.request', return_value=response):
            with pytest.raises(GatewayError) as exc_info:
                PaystackGateway()._request('GET', '/transaction/verify/ref-missing')

        assert str(exc_info.value.detail) == 'Transaction reference not found'

    def test_request_returns_data(self):
        response = paystack_response({'status': True, 'data': {'reference': 'ref-1'}})

        with patch('core.gateways.requests.request', return_value=response):
            assert PaystackGateway()._request('GET', '/transaction/verify/ref-1') == {'reference': 'ref-1'}

    def test_create_payment_intent(self):
        response = paystack_response({
            'status': True,
            'data': {'reference': 'ref-new', 'access_code': 'acc_123', 'authorization_url': 'https://pay'},
        })

        with patch('core.gateways.requests.request', return_value=response) as mock_request:
            intent = PaystackGateway().create_payment_intent(
                Decimal('3500.00'), {'payment_type': 'ORDER_PAYMENT', 'order_id': 42}, 'client@example.com'
            )

        assert intent.id == 'ref-new'
        assert intent.client_secret == 'acc_123'
        assert intent.amount == Decimal('3500.00')
        body = mock_request.call_args.kwargs['json']
        assert body['amount'] == 350000
        assert body['email'] == 'client@example.com'
        assert body['metadata'] == {'payment_type': 'ORDER_PAYMENT', 'order_id': '42'}


class TestStripeGateway:

    def test_verify_payment(self):
        with patch('core.gateways.stripe.PaymentIntent.retrieve', return_value=stripe_intent()) as mock_retrieve:
            verification = StripeGateway().verify_payment('pi_test_1')

        mock_retrieve.assert_called_once_with('pi_test_1')
        assert verification.succeeded
        assert verification.amount == Decimal('5000.00')
        assert verification.provider == 'STRIPE'
        assert verification.metadata['order_id'] == '42'

    @pytest.mark.parametrize('status,expected', [
        ('processing', gateways.STATUS_PENDING),
        ('requires_action', gateways.STATUS_PENDING),
        ('canceled', gateways.STATUS_FAILED),
        ('something_new', gateways.STATUS_FAILED),
    ])
    def test_status_mapping(self, status, expected):
        with patch('core.gateways.stripe.PaymentIntent.retrieve', return_value=stripe_intent(status=status)):
            verification = StripeGateway().verify_payment('pi_test_1')

        assert verification.status == expected

    def test_sdk_failure_raises_gateway_error(self):
        with patch('core.gateways.stripe.PaymentIntent.retrieve', side_effect=stripe.StripeError('No such intent')), \
                patch('core.gateways.logger') as mock_logger:
            with pytest.raises(GatewayError):
                StripeGateway().verify_payment('pi_missing')

        mock_logger.error.assert_called_once()

    def test_create_payment_intent(self):
        with patch('core.gateways.stripe.PaymentIntent.create', return_value=stripe_intent()) as mock_create:
            intent = StripeGateway().create_payment_intent(
                Decimal('5000.00'), {'payment_type': 'ORDER_PAYMENT', 'order_id': 42}
            )

        assert intent.id == 'pi_test_1'
        assert intent.client_secret == 'pi_test_1_secret'
        assert intent.provider == 'STRIPE'
        kwargs = mock_create.call_args.kwargs
        assert kwargs['amount'] == 500000
        assert kwargs['metadata'] == {'payment_type': 'ORDER_PAYMENT', 'order_id': '42'}
        assert kwargs['receipt_email'] is None

    def test_create_payment_intent_failure(self):
        with patch('core.gateways.stripe.PaymentIntent.create', side_effect=stripe.StripeError('Card declined')):
            with pytest.raises(GatewayError):
                StripeGateway().create_payment_intent(Decimal('5000.00'), {'order_id': 42})


class TestVerifyCaptured:
    """Capture checks run against the Paystack adapter with the HTTP call patched."""

    expected = {'payment_type': 'ORDER_PAYMENT', 'order_id': 42}

    def verify(self, response, amount='5000.00', expected_metadata=None):
        with patch('core.gateways.requests.request', return_value=response):
            return gateways.verify_captured(
                'PAYSTACK', 'ref-final', Decimal(amount), expected_metadata or self.expected
            )

    def test_successful_capture(self):
        verification = self.verify(paystack_capture())

        assert verification.amount == Decimal('5000.00')
        assert verification.provider == 'PAYSTACK'

    def test_failed_capture_rejected(self):
        with pytest.raises(ValidationError):
            self.verify(paystack_capture(status='failed'))

    def test_pending_capture_rejected(self):
        with pytest.raises(ValidationError):
            self.verify(paystack_capture(status='ongoing'))

    def test_amount_mismatch_rejected(self):
        with patch('core.gateways.logger') as mock_logger:
            with pytest.raises(ValidationError):
                self.verify(paystack_capture(amount=499999))

        mock_logger.warning.assert_called_once()

    def test_capture_for_other_order_rejected(self):
        response = paystack_capture(metadata={'payment_type': 'ORDER_PAYMENT', 'order_id': '43'})

        with pytest.raises(ValidationError):
            self.verify(response)

    def test_capture_without_payment_type_rejected(self):
        with pytest.raises(ValidationError):
            self.verify(paystack_capture(metadata={'order_id': '42'}))

    def test_provider_failure_propagates(self):
        with patch('core.gateways.requests.request', side_effect=requests.Timeout('read timed out')):
            with pytest.raises(GatewayError):
                gateways.verify_captured('PAYSTACK', 'ref-final', Decimal('5000.00'), self.expected)

    def test_stripe_capture(self):
        with patch('core.gateways.stripe.PaymentIntent.retrieve', return_value=stripe_intent()):
            verification = gateways.verify_captured('STRIPE', 'pi_test_1', Decimal('5000.00'), self.expected)

        assert verification.reference == 'pi_test_1'

    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            gateways.verify_captured('PAYPAL', 'ref-final', Decimal('5000.00'))
