"""
Field validators shared by the marketplace models.
"""

import re
from decimal import Decimal

from django.core.exceptions import ValidationError


def validate_phone_number(value):
    """
    Validate a Nigerian phone number.

    Accepts local (``08031234567``) and international (``+2348031234567``)
    forms. Spaces and dashes are ignored.

    Args:
        value: Phone number string to validate

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not value:  # Optional field
        return

    if not re.match(r'^[\d\s\-\+]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, and plus sign.',
            code='invalid_phone_chars'
        )

    compact = re.sub(r'[\s\-]', '', value)
    if not re.match(r'^(\+234\d{10}|0\d{10})$', compact):
        raise ValidationError(
            'Enter a phone number like 08031234567 or +2348031234567.',
            code='invalid_phone_format'
        )


def validate_positive_amount(value):
    """Money amounts stored on quotes and orders must be greater than zero."""
    if value is not None and value <= Decimal('0'):
        raise ValidationError(
            'Amount must be greater than zero.',
            code='non_positive_amount'
        )


def validate_percentage(value):
    if value is not None and not (Decimal('0') <= value <= Decimal('100')):
        raise ValidationError(
            'Percentage must be between 0 and 100.',
            code='invalid_percentage'
        )


def validate_roles(value):
    """
    Validate the list of marketplace roles held by a user.

    Raises:
        ValidationError: If value is not a list of known, unique role names
    """
    from .models import User

    known = {choice for choice, _label in User.ROLE_CHOICES}
    if not isinstance(value, list):
        raise ValidationError('Roles must be a list.', code='invalid_roles')
    unknown = [role for role in value if role not in known]
    if unknown:
        raise ValidationError(
            f"Unknown role(s): {', '.join(map(str, unknown))}.",
            code='unknown_role'
        )
    if len(set(value)) != len(value):
        raise ValidationError('Roles must not repeat.', code='duplicate_role')
