"""
Tests for the structured error responses and the account endpoints.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions

from core import exceptions as errors
from core import settlement
from core.exceptions import marketplace_exception_handler


def handle(exc):
    return marketplace_exception_handler(exc, {'view': None})


class TestExceptionHandler:

    @pytest.mark.parametrize('exc,status_code,kind', [
        (errors.Unauthorized(), 401, 'Unauthorized'),
        (errors.Forbidden(), 403, 'Forbidden'),
        (errors.NotFound(), 404, 'NotFound'),
        (errors.Conflict(), 409, 'Conflict'),
        (errors.InvalidState(), 400, 'InvalidState'),
        (errors.ValidationError(), 400, 'ValidationError'),
        (errors.GatewayError(), 502, 'GatewayError'),
    ])
    def test_engine_errors(self, exc, status_code, kind):
        response = handle(exc)

        assert response.status_code == status_code
        assert response.data['kind'] == kind
        assert response.data['detail'] == exc.default_detail

    def test_custom_message_is_kept(self):
        response = handle(errors.Conflict('This quote has already been accepted.'))

        assert response.data == {'kind': 'Conflict', 'detail': 'This quote has already been accepted.'}

    def test_drf_errors_are_mapped(self):
        assert handle(drf_exceptions.NotAuthenticated()).data['kind'] == 'Unauthorized'
        assert handle(drf_exceptions.PermissionDenied()).data['kind'] == 'Forbidden'

    def test_serializer_errors_keep_field_detail(self):
        response = handle(drf_exceptions.ValidationError({'rating': ['Too high.']}))

        assert response.status_code == 400
        assert response.data == {'kind': 'ValidationError', 'detail': {'rating': ['Too high.']}}

    def test_django_validation_error(self):
        response = handle(DjangoValidationError({'status': ['Invalid transition.']}))

        assert response.status_code == 400
        assert response.data['kind'] == 'ValidationError'
        assert response.data['detail'] == {'status': ['Invalid transition.']}

    def test_http404(self):
        response = handle(Http404())

        assert response.status_code == 404
        assert response.data['kind'] == 'NotFound'

    def test_unexpected_error_hides_internals(self):
        with patch('core.exceptions.logger') as mock_logger:
            response = handle(RuntimeError('database password is hunter2'))

        assert response.status_code == 500
        assert response.data == {'kind': 'Error', 'detail': 'An unexpected error occurred.'}
        mock_logger.error.assert_called_once()


@pytest.mark.django_db
class TestAccountEndpoints:

    def test_purse_of_new_user_is_empty(self, client_user, client_for):
        response = client_for(client_user).get('/api/purse/')

        assert response.status_code == 200
        assert response.data['available_balance'] == '0.00'
        assert response.data['commission_balance'] == '0.00'

    def test_fixer_purse_after_settlement(self, request_order_factory, admin_user, client_for):
        order = request_order_factory(labor_cost='5000', stage='paid')
        settlement.settle_order(order.pk, admin_user)

        response = client_for(order.fixer).get('/api/purse/')

        assert response.status_code == 200
        assert Decimal(response.data['available_balance']) == Decimal('4250.00')
        assert Decimal(response.data['total_revenue']) == Decimal('4250.00')

    def test_unknown_route_returns_404(self, client_user, client_for):
        response = client_for(client_user).get('/api/does-not-exist/')

        assert response.status_code == 404
