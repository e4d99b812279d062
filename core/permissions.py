"""
Caller identity checks for the Fixers Marketplace.

Two layers use this module:

- DRF permission classes guard the HTTP endpoints by role.
- The ``require_*`` helpers are called by the service layer with the explicit
  ``actor`` passed into every operation, and raise the engine's error types.

``SYSTEM`` is the actor used for gateway webhooks once their signature and
payment have been verified.
"""

from rest_framework import permissions

from . import exceptions as errors


class SystemActor:
    """Identity of the platform itself, used for verified gateway callbacks."""

    pk = None
    id = None
    email = 'system@fixers.local'
    is_authenticated = True
    is_staff = True

    def __str__(self):
        return 'system'

    def is_admin(self):
        return True


SYSTEM = SystemActor()


def is_system(actor):
    return actor is SYSTEM


def is_admin(actor):
    return is_system(actor) or bool(actor is not None and actor.is_authenticated and actor.is_admin())


def require_authenticated(actor):
    """
    Ensure an operation has a caller.

    Raises:
        Unauthorized: If actor is missing or anonymous
    """
    if actor is None or not getattr(actor, 'is_authenticated', False):
        raise errors.Unauthorized()
    return actor


def require_admin(actor, message='Only admins can perform this action.'):
    require_authenticated(actor)
    if not is_admin(actor):
        raise errors.Forbidden(message)
    return actor


def require_role(actor, role, message):
    require_authenticated(actor)
    if is_system(actor) or not actor.has_role(role):
        raise errors.Forbidden(message)
    return actor


def require_order_party(actor, order, message='You are not a party to this order.'):
    require_authenticated(actor)
    if not order.is_party(actor):
        raise errors.Forbidden(message)
    return actor


def require_order_client(actor, order, message='Only the client of this order can do this.'):
    require_authenticated(actor)
    if is_system(actor) or actor.pk != order.client_id:
        raise errors.Forbidden(message)
    return actor


def require_order_fixer(actor, order, message='Only the fixer of this order can do this.'):
    require_authenticated(actor)
    if is_system(actor) or actor.pk != order.fixer_id:
        raise errors.Forbidden(message)
    return actor


class IsMarketplaceAdmin(permissions.BasePermission):
    """
    Allows staff users and users holding the ADMIN role.

    Usage:
        class OrderSettleView(APIView):
            permission_classes = [IsAuthenticated, IsMarketplaceAdmin]
    """

    message = 'You do not have permission to perform this action. Admin privileges required.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_admin()


class IsFixer(permissions.BasePermission):
    message = 'Only fixers can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_fixer()


class IsClient(permissions.BasePermission):
    message = 'Only clients can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_client()


class IsAgent(permissions.BasePermission):
    """Allows users with an agent profile."""

    message = 'Only agents can view commissions.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return hasattr(request.user, 'agent_profile')


class IsOrderParty(permissions.BasePermission):
    """
    Object-level permission: the caller must be the order's client or fixer,
    or an admin.
    """

    message = 'You do not have permission to access this order.'

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated)

    def has_object_permission(self, request, view, obj):
        return obj.is_party(request.user) or request.user.is_admin()
