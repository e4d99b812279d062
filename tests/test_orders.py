"""
Tests for the order state machine.

Test Coverage:
- Gig orders: placement, start, delivery, cancellation
- Revisions and reviews
- Order visibility
- Order endpoints
"""

from decimal import Decimal

import pytest

from core import orders
from core.exceptions import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from core.models import Gig, Order, OutboxEvent


@pytest.fixture
def gig_order(gig_package, client_user):
    return orders.place_gig_order(gig_package.gig_id, gig_package.pk, client_user, 'Check every tap')


@pytest.fixture
def delivered_gig_order(gig_order):
    orders.start_order(gig_order.pk, gig_order.fixer)
    return orders.deliver_order(gig_order.pk, gig_order.fixer, 'All pipes checked and sealed.')


@pytest.mark.django_db
class TestPlaceGigOrder:

    def test_order_uses_package_terms(self, gig_order, gig_package, client_user):
        """A 10000 package carries the 5% gig fee."""
        assert gig_order.status == Order.STATUS_PENDING
        assert gig_order.origin.package_id == gig_package.pk
        assert gig_order.is_gig_order()
        assert gig_order.client == client_user
        assert gig_order.fixer == gig_package.gig.fixer
        assert gig_order.total_amount == Decimal('10000.00')
        assert gig_order.platform_fee == Decimal('500.00')
        assert gig_order.fixer_amount == Decimal('9500.00')
        assert gig_order.revisions_allowed == 1
        assert gig_order.delivery_date is not None
        assert gig_order.started_at is None

    def test_orders_count_incremented(self, gig_order, gig_package):
        assert Gig.objects.get(pk=gig_package.gig_id).orders_count == 1

    def test_fixer_notified(self, gig_order):
        assert OutboxEvent.objects.filter(recipient=gig_order.fixer, event_type='ORDER_PLACED').exists()

    def test_inactive_gig_rejected(self, gig_package, client_user):
        Gig.objects.filter(pk=gig_package.gig_id).update(status=Gig.STATUS_PAUSED)

        with pytest.raises(InvalidState):
            orders.place_gig_order(gig_package.gig_id, gig_package.pk, client_user)

    def test_fixer_cannot_order_own_gig(self, gig_package, fixer_user):
        with pytest.raises(Forbidden):
            orders.place_gig_order(gig_package.gig_id, gig_package.pk, fixer_user)

    def test_package_must_belong_to_gig(self, gig_package, client_user, subcategory, fixer_user):
        other_gig = Gig.objects.create(
            fixer=fixer_user, subcategory=subcategory, title='Another gig', status=Gig.STATUS_ACTIVE
        )

        with pytest.raises(NotFound):
            orders.place_gig_order(other_gig.pk, gig_package.pk, client_user)


@pytest.mark.django_db
class TestGigOrderLifecycle:

    def test_start_and_deliver(self, gig_order):
        order = orders.start_order(gig_order.pk, gig_order.fixer)
        assert order.status == Order.STATUS_IN_PROGRESS
        assert order.started_at is not None

        order = orders.deliver_order(gig_order.pk, gig_order.fixer, '  All pipes checked.  ')
        assert order.status == Order.STATUS_COMPLETED
        assert order.delivery_note == 'All pipes checked.'
        assert order.delivered_at is not None
        assert order.completed_at is not None
        assert OutboxEvent.objects.filter(recipient=order.client, event_type='ORDER_DELIVERED').exists()

    def test_only_fixer_starts(self, gig_order):
        with pytest.raises(Forbidden):
            orders.start_order(gig_order.pk, gig_order.client)

    def test_cannot_start_twice(self, gig_order):
        orders.start_order(gig_order.pk, gig_order.fixer)

        with pytest.raises(InvalidState):
            orders.start_order(gig_order.pk, gig_order.fixer)

    def test_delivery_needs_note(self, gig_order):
        orders.start_order(gig_order.pk, gig_order.fixer)

        with pytest.raises(ValidationError):
            orders.deliver_order(gig_order.pk, gig_order.fixer, '   ')

    def test_cannot_deliver_pending_order(self, gig_order):
        with pytest.raises(InvalidState):
            orders.deliver_order(gig_order.pk, gig_order.fixer, 'Done early.')

    def test_request_orders_use_mark_complete(self, request_order_factory):
        order = request_order_factory(labor_cost='5000')

        with pytest.raises(InvalidState):
            orders.deliver_order(order.pk, order.fixer, 'Finished the job.')
        with pytest.raises(InvalidState):
            orders.start_order(order.pk, order.fixer)

    def test_gig_orders_use_deliver(self, gig_order):
        orders.start_order(gig_order.pk, gig_order.fixer)

        with pytest.raises(InvalidState):
            orders.mark_order_complete(gig_order.pk, gig_order.fixer)

    def test_mark_request_order_complete(self, request_order_factory):
        order = request_order_factory(labor_cost='5000')

        order = orders.mark_order_complete(order.pk, order.fixer, 'Sink fixed.')

        assert order.status == Order.STATUS_COMPLETED
        event = OutboxEvent.objects.get(recipient=order.client, event_type='ORDER_COMPLETED')
        assert event.payload['amount_due'] == '5000.00'


@pytest.mark.django_db
class TestCancelOrder:

    def test_client_cancels_pending_order(self, gig_order, gig_package):
        order = orders.cancel_order(gig_order.pk, gig_order.client, 'Changed my mind')

        assert order.status == Order.STATUS_CANCELLED
        assert order.cancellation_reason == 'Changed my mind'
        assert order.cancelled_at is not None
        assert Gig.objects.get(pk=gig_package.gig_id).orders_count == 0
        assert OutboxEvent.objects.filter(recipient=order.fixer, event_type='ORDER_CANCELLED').exists()

    def test_started_order_cannot_be_cancelled(self, gig_order):
        orders.start_order(gig_order.pk, gig_order.fixer)

        with pytest.raises(InvalidState):
            orders.cancel_order(gig_order.pk, gig_order.client)

    def test_fixer_cannot_cancel(self, gig_order):
        with pytest.raises(Forbidden):
            orders.cancel_order(gig_order.pk, gig_order.fixer)

    def test_cancelled_order_is_terminal(self, gig_order):
        orders.cancel_order(gig_order.pk, gig_order.client)

        with pytest.raises(InvalidState):
            orders.start_order(gig_order.pk, gig_order.fixer)


@pytest.mark.django_db
class TestRevisions:

    def test_revision_reopens_order(self, delivered_gig_order):
        order = orders.request_revision(
            delivered_gig_order.pk, delivered_gig_order.client, 'The bathroom tap still drips.'
        )

        assert order.status == Order.STATUS_IN_PROGRESS
        assert order.revisions_used == 1
        assert order.revision_note == 'The bathroom tap still drips.'
        assert order.delivery_note == ''
        assert order.completed_at is None
        event = OutboxEvent.objects.get(recipient=order.fixer, event_type='REVISION_REQUESTED')
        assert event.payload['revisions_used'] == 1

    def test_revisions_are_limited(self, delivered_gig_order):
        order = delivered_gig_order
        orders.request_revision(order.pk, order.client, 'The bathroom tap still drips.')
        orders.deliver_order(order.pk, order.fixer, 'Replaced the washer.')

        with pytest.raises(InvalidState):
            orders.request_revision(order.pk, order.client, 'Still not right, please redo.')

    def test_revision_note_too_short(self, delivered_gig_order):
        with pytest.raises(ValidationError):
            orders.request_revision(delivered_gig_order.pk, delivered_gig_order.client, 'Redo')

    def test_revision_needs_completed_order(self, gig_order):
        orders.start_order(gig_order.pk, gig_order.fixer)

        with pytest.raises(InvalidState):
            orders.request_revision(gig_order.pk, gig_order.client, 'The bathroom tap still drips.')


@pytest.mark.django_db
class TestReviews:

    def test_review_completed_order(self, delivered_gig_order):
        order = orders.review_order(delivered_gig_order.pk, delivered_gig_order.client, 5, 'Great work!')

        assert order.rating == 5
        assert order.review_comment == 'Great work!'
        assert order.reviewed_at is not None
        assert OutboxEvent.objects.filter(recipient=order.fixer, event_type='REVIEW_RECEIVED').exists()

    def test_second_review_conflicts(self, delivered_gig_order):
        order = delivered_gig_order
        orders.review_order(order.pk, order.client, 4, 'Good job.')

        with pytest.raises(Conflict):
            orders.review_order(order.pk, order.client, 1, 'Changed my mind.')

        order.refresh_from_db()
        assert order.rating == 4

    @pytest.mark.parametrize('rating', [0, 6, 'five'])
    def test_invalid_rating(self, delivered_gig_order, rating):
        with pytest.raises(ValidationError):
            orders.review_order(delivered_gig_order.pk, delivered_gig_order.client, rating, 'Fine.')

    def test_comment_required(self, delivered_gig_order):
        with pytest.raises(ValidationError):
            orders.review_order(delivered_gig_order.pk, delivered_gig_order.client, 5, '  ')

    def test_pending_order_cannot_be_reviewed(self, gig_order):
        with pytest.raises(InvalidState):
            orders.review_order(gig_order.pk, gig_order.client, 5, 'Great work!')

    def test_fixer_cannot_review(self, delivered_gig_order):
        with pytest.raises(Forbidden):
            orders.review_order(delivered_gig_order.pk, delivered_gig_order.fixer, 5, 'Great client!')


@pytest.mark.django_db
class TestOrderVisibility:

    def test_parties_and_admin_can_view(self, gig_order, admin_user):
        assert orders.get_order_for(gig_order.pk, gig_order.client) == gig_order
        assert orders.get_order_for(gig_order.pk, gig_order.fixer) == gig_order
        assert orders.get_order_for(gig_order.pk, admin_user) == gig_order

    def test_outsider_cannot_view(self, gig_order, make_user):
        with pytest.raises(Forbidden):
            orders.get_order_for(gig_order.pk, make_user('CLIENT'))

    def test_unknown_order(self, client_user):
        with pytest.raises(NotFound):
            orders.get_order_for('00000000-0000-0000-0000-000000000000', client_user)


@pytest.mark.django_db
class TestOrderEndpoints:

    def test_place_order(self, gig_package, client_user, client_for):
        response = client_for(client_user).post(
            '/api/orders/',
            {'gig': str(gig_package.gig_id), 'package': str(gig_package.pk), 'requirements': 'Morning visit'},
            format='json'
        )

        assert response.status_code == 201
        assert response.data['origin'] == 'GIG'
        assert response.data['status'] == Order.STATUS_PENDING
        assert response.data['platform_fee'] == '500.00'
        assert response.data['payment'] is None

    def test_lifecycle_through_api(self, gig_order, client_for):
        fixer_api = client_for(gig_order.fixer)

        response = fixer_api.post(f'/api/orders/{gig_order.pk}/start/')
        assert response.status_code == 200
        assert response.data['status'] == Order.STATUS_IN_PROGRESS

        response = fixer_api.post(
            f'/api/orders/{gig_order.pk}/deliver/', {'delivery_note': 'All done.'}, format='json'
        )
        assert response.status_code == 200
        assert response.data['status'] == Order.STATUS_COMPLETED

        response = client_for(gig_order.client).post(
            f'/api/orders/{gig_order.pk}/review/', {'rating': 5, 'comment': 'Excellent'}, format='json'
        )
        assert response.status_code == 200
        assert response.data['rating'] == 5

    def test_invalid_transition_returns_400(self, gig_order, client_for):
        response = client_for(gig_order.fixer).post(
            f'/api/orders/{gig_order.pk}/deliver/', {'delivery_note': 'All done.'}, format='json'
        )

        assert response.status_code == 400
        assert response.data['kind'] == 'InvalidState'

    def test_detail_for_outsider_is_forbidden(self, gig_order, make_user, client_for):
        response = client_for(make_user('CLIENT')).get(f'/api/orders/{gig_order.pk}/')

        assert response.status_code == 403
        assert response.data['kind'] == 'Forbidden'

    def test_detail_for_client(self, gig_order, client_for):
        response = client_for(gig_order.client).get(f'/api/orders/{gig_order.pk}/')

        assert response.status_code == 200
        assert response.data['id'] == str(gig_order.pk)
        assert response.data['amount_due'] == '10000.00'

    def test_cancel_endpoint(self, gig_order, client_for):
        response = client_for(gig_order.client).post(
            f'/api/orders/{gig_order.pk}/cancel/', {'reason': 'No longer needed'}, format='json'
        )

        assert response.status_code == 200
        assert response.data['status'] == Order.STATUS_CANCELLED

    def test_review_rating_validated_by_serializer(self, delivered_gig_order, client_for):
        response = client_for(delivered_gig_order.client).post(
            f'/api/orders/{delivered_gig_order.pk}/review/', {'rating': 9, 'comment': 'Wow'}, format='json'
        )

        assert response.status_code == 400
        assert response.data['kind'] == 'ValidationError'
