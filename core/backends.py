"""
Authentication backend for the token endpoint.

Fixers and clients sign in with their e-mail address; staff accounts created
with ``createsuperuser`` may still use their username.
"""

from django.contrib.auth import get_user_model
from django.contrib.auth.backends import ModelBackend
from django.db.models import Q

User = get_user_model()


class EmailOrUsernameBackend(ModelBackend):
    """
    Authenticate with ``email`` (case-insensitive) or ``username`` plus password.

    Inactive users are rejected by ``user_can_authenticate``.
    """

    def authenticate(self, request, username=None, password=None, **kwargs):
        identifier = kwargs.get('email') or username
        if not identifier or password is None:
            return None

        user = User.objects.filter(
            Q(email__iexact=identifier) | Q(username=identifier)
        ).order_by('pk').first()
        if user is None:
            # Hash anyway so unknown identifiers take as long as wrong passwords
            User().set_password(password)
            return None

        if user.check_password(password) and self.user_can_authenticate(user):
            return user
        return None
