"""
Where an order came from.

An order is created either from a fixer's gig package or from an accepted
quote on a client's service request. The two variants start the order state
machine at different points, so the entry status is a property of the variant
and every caller dispatches on it instead of probing nullable foreign keys.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class GigOrigin:
    gig_id: UUID
    package_id: UUID


@dataclass(frozen=True)
class RequestOrigin:
    request_id: UUID
    quote_id: UUID


# Every order origin variant, for isinstance checks.
ORDER_ORIGINS = (GigOrigin, RequestOrigin)


def initial_status(origin):
    """
    Return the status a freshly created order starts in.

    Gig orders wait in PENDING for the fixer to start work; request orders
    begin IN_PROGRESS as soon as the quote is accepted.

    Raises:
        TypeError: If origin is not a known variant
    """
    if isinstance(origin, GigOrigin):
        return 'PENDING'
    if isinstance(origin, RequestOrigin):
        return 'IN_PROGRESS'
    raise TypeError(f"Unknown order origin: {origin!r}")


def origin_fields(origin):
    """Map an origin onto the Order model's foreign key columns."""
    if isinstance(origin, GigOrigin):
        return {
            'gig_id': origin.gig_id,
            'package_id': origin.package_id,
            'request_id': None,
            'quote_id': None,
        }
    if isinstance(origin, RequestOrigin):
        return {
            'gig_id': None,
            'package_id': None,
            'request_id': origin.request_id,
            'quote_id': origin.quote_id,
        }
    raise TypeError(f"Unknown order origin: {origin!r}")
