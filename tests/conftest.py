"""
Shared fixtures for the marketplace test suite.

Payment providers are never contacted: ``fake_gateway`` patches
``core.gateways.get_gateway`` and ``core.gateways.verify_captured`` so that
every reference reports a successful capture of the expected amount, tagged
for the expected purchase unless a test sets ``fake_gateway.metadata``.
"""

import itertools
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from core import orders, quotes
from core.gateways import STATUS_SUCCESS, PaymentIntent, PaymentVerification, check_metadata
from core.models import (
    Agent,
    Category,
    FixerService,
    Gig,
    GigPackage,
    Neighborhood,
    ServiceRequest,
    Subcategory,
)

User = get_user_model()

_sequence = itertools.count(1)


class FakeGateway:
    """Records intents and reports every verified reference as captured."""

    def __init__(self):
        self.metadata = None
        self.intents = []
        self.verified = []

    def create_payment_intent(self, amount, metadata, email=None):
        intent = PaymentIntent(
            id=f'pi_test_{len(self.intents) + 1}',
            client_secret='secret_test',
            amount=Decimal(amount),
            provider='PAYSTACK',
        )
        self.intents.append((intent, metadata))
        return intent

    def verify_captured(self, provider, reference, expected_amount, expected_metadata=None):
        self.verified.append(reference)
        if self.metadata is None:
            metadata = {key: str(value) for key, value in (expected_metadata or {}).items()}
        else:
            metadata = dict(self.metadata)
        verification = PaymentVerification(
            reference=reference,
            status=STATUS_SUCCESS,
            amount=Decimal(expected_amount),
            metadata=metadata,
            provider=provider or 'PAYSTACK',
        )
        return check_metadata(verification, expected_metadata)


@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    with patch('core.gateways.get_gateway', return_value=gateway), \
            patch('core.gateways.verify_captured', side_effect=gateway.verify_captured):
        yield gateway


@pytest.fixture
def api_client():
    """Return API client for testing."""
    return APIClient()


@pytest.fixture
def client_for():
    """Build an API client authenticated with a JWT for the given user."""
    def _client_for(user):
        api = APIClient()
        token = RefreshToken.for_user(user).access_token
        api.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        return api
    return _client_for


# ============================================================================
# Users
# ============================================================================

@pytest.fixture
def make_user(db):
    def _make_user(*roles, **extra):
        n = next(_sequence)
        return User.objects.create_user(
            username=f'user{n}',
            email=f'user{n}@test.com',
            password='TestPass123!',
            roles=list(roles),
            **extra
        )
    return _make_user


@pytest.fixture
def client_user(make_user):
    return make_user(User.ROLE_CLIENT)


@pytest.fixture
def admin_user(make_user):
    return make_user(User.ROLE_ADMIN)


@pytest.fixture
def agent(make_user):
    return Agent.objects.create(
        user=make_user(User.ROLE_AGENT),
        commission_percentage=Decimal('10.00'),
    )


# ============================================================================
# Taxonomy, requests and gigs
# ============================================================================

@pytest.fixture
def subcategory(db):
    category = Category.objects.create(name='Plumbing', slug='plumbing')
    return Subcategory.objects.create(category=category, name='Leak Repair')


@pytest.fixture
def neighborhood(db):
    return Neighborhood.objects.create(name='Yaba', city='Lagos', state='Lagos')


@pytest.fixture
def make_fixer(make_user, subcategory, neighborhood):
    """A fixer who covers the default subcategory and neighborhood."""
    def _make_fixer():
        fixer = make_user(User.ROLE_FIXER)
        service = FixerService.objects.create(fixer=fixer, subcategory=subcategory)
        service.neighborhoods.add(neighborhood)
        return fixer
    return _make_fixer


@pytest.fixture
def fixer_user(make_fixer):
    return make_fixer()


@pytest.fixture
def make_request(subcategory, neighborhood):
    def _make_request(client, agent=None, status=ServiceRequest.STATUS_APPROVED):
        return ServiceRequest.objects.create(
            client=client,
            subcategory=subcategory,
            neighborhood=neighborhood,
            agent=agent,
            title='Fix the kitchen sink',
            description='Water is leaking under the sink.',
            status=status,
        )
    return _make_request


@pytest.fixture
def service_request(make_request, client_user):
    return make_request(client_user)


@pytest.fixture
def gig_package(fixer_user, subcategory):
    gig = Gig.objects.create(
        fixer=fixer_user,
        subcategory=subcategory,
        title='Full bathroom plumbing check',
        status=Gig.STATUS_ACTIVE,
    )
    return GigPackage.objects.create(
        gig=gig,
        name='Standard',
        price=Decimal('10000.00'),
        delivery_days=3,
        revisions=1,
    )


# ============================================================================
# Orders
# ============================================================================

@pytest.fixture
def request_order_factory(make_user, make_fixer, make_request, fake_gateway):
    """
    Drive a request order through the service layer.

    ``stage`` is one of 'in_progress', 'completed' or 'paid'.
    """
    def _build(labor_cost='5000', agent=None, client=None, fixer=None,
               down_payment_percentage=None, stage='in_progress'):
        client = client or make_user(User.ROLE_CLIENT)
        fixer = fixer or make_fixer()
        service_request = make_request(client, agent=agent)

        if down_payment_percentage is None:
            terms = quotes.QuoteTerms(labor_cost=Decimal(labor_cost))
        else:
            terms = quotes.QuoteTerms(
                labor_cost=Decimal(labor_cost),
                requires_down_payment=True,
                down_payment_percentage=Decimal(down_payment_percentage),
                down_payment_reason='Materials must be bought before work starts.',
            )
        quote = quotes.submit_quote(service_request.pk, fixer, terms)

        if quote.requires_down_payment:
            order = quotes.confirm_down_payment(quote.pk, client, f'dp-{quote.pk}')
        else:
            order = quotes.accept_quote(quote.pk, client).order

        if stage in ('completed', 'paid'):
            order = orders.mark_order_complete(order.pk, fixer)
        if stage == 'paid':
            order = orders.pay_order(order.pk, client, f'pay-{order.pk}')
        return order
    return _build
