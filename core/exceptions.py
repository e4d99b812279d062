"""
Error taxonomy for the marketplace engine.

Every failure a caller can observe carries a machine-checkable ``kind`` and a
human-readable ``detail``. The service layer raises these exceptions; the REST
layer renders them through ``marketplace_exception_handler`` as::

    {"kind": "Conflict", "detail": "This quote has already been accepted."}
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class MarketplaceError(drf_exceptions.APIException):
    """Base class for all engine errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be processed.'
    default_code = 'error'
    kind = 'Error'


class Unauthorized(MarketplaceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Authentication credentials were not provided.'
    default_code = 'unauthorized'
    kind = 'Unauthorized'


class Forbidden(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'forbidden'
    kind = 'Forbidden'


class NotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'
    kind = 'NotFound'


class Conflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The request conflicts with the current state of the resource.'
    default_code = 'conflict'
    kind = 'Conflict'


class InvalidState(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'This operation is not valid in the current state.'
    default_code = 'invalid_state'
    kind = 'InvalidState'


class ValidationError(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'
    default_code = 'invalid'
    kind = 'ValidationError'


class GatewayError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'The payment provider could not process the request.'
    default_code = 'gateway_error'
    kind = 'GatewayError'


# DRF and Django exceptions mapped onto the engine's kinds.
_DRF_KINDS = (
    (drf_exceptions.NotAuthenticated, 'Unauthorized'),
    (drf_exceptions.AuthenticationFailed, 'Unauthorized'),
    (drf_exceptions.PermissionDenied, 'Forbidden'),
    (drf_exceptions.NotFound, 'NotFound'),
    (drf_exceptions.ValidationError, 'ValidationError'),
    (drf_exceptions.MethodNotAllowed, 'MethodNotAllowed'),
    (drf_exceptions.Throttled, 'Throttled'),
)


def _kind_for(exc):
    if isinstance(exc, MarketplaceError):
        return exc.kind
    for exc_class, kind in _DRF_KINDS:
        if isinstance(exc, exc_class):
            return kind
    return 'Error'


def marketplace_exception_handler(exc, context):
    """
    Render every error as ``{"kind": ..., "detail": ...}``.

    Django model validation errors become ``ValidationError`` responses.
    Anything DRF does not recognise is logged and answered with a generic
    500 body so that no internals leak to the caller.

    Args:
        exc: The raised exception
        context: DRF handler context (view, request, args, kwargs)

    Returns:
        Response: Structured error response
    """
    if isinstance(exc, DjangoValidationError):
        detail = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        exc = drf_exceptions.ValidationError(detail=detail)
    elif isinstance(exc, Http404):
        exc = drf_exceptions.NotFound()

    response = exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.error(
            f"Unhandled error in {view.__class__.__name__ if view else 'unknown view'}: {exc}",
            exc_info=exc
        )
        return Response(
            {'kind': 'Error', 'detail': 'An unexpected error occurred.'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    kind = _kind_for(exc)
    if isinstance(response.data, dict) and 'detail' in response.data:
        response.data = {'kind': kind, 'detail': response.data['detail']}
    else:
        response.data = {'kind': kind, 'detail': response.data}
    return response
