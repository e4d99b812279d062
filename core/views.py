"""
API views for the Fixers Marketplace.

Views are thin: they validate the request shape with a serializer, pass
``request.user`` as the explicit actor into the service layer and render the
result. Errors raised by the services are rendered by
``core.exceptions.marketplace_exception_handler``.
"""

import logging

from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.generics import ListAPIView
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from . import commissions, disputes, gateways, ledger, orders, quotes, settlement, webhooks
from .models import AgentCommission
from .permissions import IsAgent, IsMarketplaceAdmin
from .serializers import (
    AgentCommissionSerializer,
    CancellationSerializer,
    CommissionPayoutSerializer,
    CompletionSerializer,
    DeliverySerializer,
    DisputeCreateSerializer,
    DisputeMessageCreateSerializer,
    DisputeMessageSerializer,
    DisputeResolveSerializer,
    DisputeSerializer,
    EmailTokenObtainPairSerializer,
    FinalQuoteSerializer,
    GigOrderCreateSerializer,
    OrderSerializer,
    PaymentConfirmSerializer,
    PaymentIntentSerializer,
    ProviderSerializer,
    PurseSerializer,
    QuoteSerializer,
    QuoteSubmitSerializer,
    ReviewSerializer,
    RevisionSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


class EmailTokenObtainPairView(TokenObtainPairView):
    """
    Obtain a JWT pair with email and password.

    POST /api/token/
    Request body: {"email": "user@example.com", "password": "password123"}
    """
    serializer_class = EmailTokenObtainPairSerializer


class MarketplaceAPIView(APIView):
    """Base view for the marketplace endpoints."""

    permission_classes = [IsAuthenticated]

    def get_client_ip(self, request):
        """
        Get client IP address from request.
        Handles proxy headers for accurate IP detection.
        """
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0]
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip

    def validated(self, serializer_class, request):
        serializer = serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        return serializer


def render_order(order, http_status=status.HTTP_200_OK):
    return Response(OrderSerializer(order).data, status=http_status)


def render_intent(intent, **extra):
    data = dict(PaymentIntentSerializer(intent).data)
    data.update(extra)
    return data


# ============================================================================
# Quotes
# ============================================================================

class QuoteSubmitView(MarketplaceAPIView):
    """
    Submit a quote on a service request.

    POST /api/quotes/
    Request body: {
        "request": "<uuid>",
        "quote_type": "DIRECT",
        "labor_cost": "4000.00",
        "material_cost": "1000.00",
        "requires_down_payment": true,
        "down_payment_percentage": "30",
        "down_payment_reason": "Materials must be bought upfront"
    }

    Error responses:
    - 403: Not a fixer, or the fixer does not cover the request
    - 404: Request not found
    - 409: Fixer already quoted on this request
    - 400: Invalid terms or request not open for quotes
    """

    def post(self, request, *args, **kwargs):
        serializer = self.validated(QuoteSubmitSerializer, request)
        quote = quotes.submit_quote(
            serializer.validated_data['request'],
            request.user,
            serializer.to_terms(),
        )
        logger.info(
            f"Quote created successfully. ID: {quote.pk}, "
            f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return Response(QuoteSerializer(quote).data, status=status.HTTP_201_CREATED)


class FinalQuoteView(MarketplaceAPIView):
    """POST /api/quotes/<id>/final/ - price an inspection quote."""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(FinalQuoteSerializer, request)
        quote = quotes.submit_final_quote(kwargs['pk'], request.user, serializer.to_terms())
        return Response(QuoteSerializer(quote).data, status=status.HTTP_200_OK)


class QuoteAcceptView(MarketplaceAPIView):
    """
    Accept a quote.

    POST /api/quotes/<id>/accept/
    Request body: {"provider": "PAYSTACK"} (optional)

    Success responses:
    - 201: Order created; body is the order
    - 202: Down payment required; body holds the payment intent
    """

    def post(self, request, *args, **kwargs):
        serializer = self.validated(ProviderSerializer, request)
        result = quotes.accept_quote(
            kwargs['pk'],
            request.user,
            provider=serializer.validated_data['provider'],
        )
        if result.requires_payment:
            return Response(
                {
                    'requires_payment': True,
                    'payment_intent': render_intent(result.payment_intent),
                    'down_payment_amount': str(result.down_payment_amount),
                    'total_amount': str(result.total_amount),
                },
                status=status.HTTP_202_ACCEPTED
            )

        logger.info(
            f"Quote accepted via API. Quote ID: {kwargs['pk']}, Order ID: {result.order.pk}, "
            f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return render_order(result.order, status.HTTP_201_CREATED)


class DownPaymentConfirmView(MarketplaceAPIView):
    """POST /api/quotes/<id>/down-payment/confirm/ - {"reference": "...", "provider": "..."}"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(PaymentConfirmSerializer, request)
        order = quotes.confirm_down_payment(
            kwargs['pk'],
            request.user,
            serializer.validated_data['reference'],
            provider=serializer.validated_data['provider'],
        )
        return render_order(order, status.HTTP_201_CREATED)


class InspectionPaymentView(MarketplaceAPIView):
    """POST /api/quotes/<id>/inspection-payment/ - start paying the inspection fee."""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(ProviderSerializer, request)
        intent = quotes.start_inspection_payment(
            kwargs['pk'],
            request.user,
            provider=serializer.validated_data['provider'],
        )
        return Response(render_intent(intent), status=status.HTTP_201_CREATED)


class InspectionPaymentConfirmView(MarketplaceAPIView):
    """POST /api/quotes/<id>/inspection-payment/confirm/"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(PaymentConfirmSerializer, request)
        quote = quotes.confirm_inspection_payment(
            kwargs['pk'],
            request.user,
            serializer.validated_data['reference'],
            provider=serializer.validated_data['provider'],
        )
        return Response(QuoteSerializer(quote).data, status=status.HTTP_200_OK)


# ============================================================================
# Orders
# ============================================================================

class GigOrderCreateView(MarketplaceAPIView):
    """
    Order a gig package.

    POST /api/orders/
    Request body: {"gig": "<uuid>", "package": "<uuid>", "requirements": "..."}
    """

    def post(self, request, *args, **kwargs):
        serializer = self.validated(GigOrderCreateSerializer, request)
        data = serializer.validated_data
        order = orders.place_gig_order(data['gig'], data['package'], request.user, data['requirements'])
        logger.info(
            f"Gig order created successfully. ID: {order.pk}, "
            f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return render_order(order, status.HTTP_201_CREATED)


class OrderDetailView(MarketplaceAPIView):
    """GET /api/orders/<id>/ - visible to the order's parties and admins."""

    def get(self, request, *args, **kwargs):
        return render_order(orders.get_order_for(kwargs['pk'], request.user))


class OrderStartView(MarketplaceAPIView):
    """POST /api/orders/<id>/start/"""

    def post(self, request, *args, **kwargs):
        return render_order(orders.start_order(kwargs['pk'], request.user))


class OrderDeliverView(MarketplaceAPIView):
    """POST /api/orders/<id>/deliver/ - {"delivery_note": "..."}"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(DeliverySerializer, request)
        order = orders.deliver_order(kwargs['pk'], request.user, serializer.validated_data['delivery_note'])
        return render_order(order)


class OrderCompleteView(MarketplaceAPIView):
    """POST /api/orders/<id>/complete/ - {"message": "..."}"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(CompletionSerializer, request)
        order = orders.mark_order_complete(kwargs['pk'], request.user, serializer.validated_data['message'])
        return render_order(order)


class OrderPaymentIntentView(MarketplaceAPIView):
    """POST /api/orders/<id>/payment-intent/"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(ProviderSerializer, request)
        intent = orders.create_order_payment_intent(
            kwargs['pk'],
            request.user,
            provider=serializer.validated_data['provider'],
        )
        return Response(render_intent(intent), status=status.HTTP_201_CREATED)


class OrderPayView(MarketplaceAPIView):
    """
    Confirm the final payment of an order.

    POST /api/orders/<id>/pay/
    Request body: {"reference": "<gateway reference>", "provider": "STRIPE"}

    Error responses:
    - 400: Order not completed, or the payment is not successful or does not
      match the amount due
    - 403: Not the order's client
    - 502: Payment provider unavailable
    """

    def post(self, request, *args, **kwargs):
        serializer = self.validated(PaymentConfirmSerializer, request)
        order = orders.pay_order(
            kwargs['pk'],
            request.user,
            serializer.validated_data['reference'],
            provider=serializer.validated_data['provider'],
        )
        logger.info(
            f"Order payment confirmed via API. Order ID: {order.pk}, "
            f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return render_order(order)


class OrderCancelView(MarketplaceAPIView):
    """POST /api/orders/<id>/cancel/ - {"reason": "..."}"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(CancellationSerializer, request)
        order = orders.cancel_order(kwargs['pk'], request.user, serializer.validated_data['reason'])
        logger.info(
            f"Order cancelled. ID: {order.pk}, User: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return render_order(order)


class OrderRevisionView(MarketplaceAPIView):
    """POST /api/orders/<id>/revision/ - {"note": "..."}"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(RevisionSerializer, request)
        order = orders.request_revision(kwargs['pk'], request.user, serializer.validated_data['note'])
        return render_order(order)


class OrderReviewView(MarketplaceAPIView):
    """POST /api/orders/<id>/review/ - {"rating": 5, "comment": "..."}"""

    def post(self, request, *args, **kwargs):
        serializer = self.validated(ReviewSerializer, request)
        order = orders.review_order(
            kwargs['pk'],
            request.user,
            serializer.validated_data['rating'],
            serializer.validated_data['comment'],
        )
        return render_order(order)


# ============================================================================
# Disputes
# ============================================================================

class OrderDisputeCreateView(MarketplaceAPIView):
    """
    File a dispute on an order.

    POST /api/orders/<id>/disputes/
    Request body: {"reason": "QUALITY_ISSUE", "description": "...", "evidence": ["https://..."]}

    Error responses:
    - 403: Not the order's client or fixer
    - 409: An active dispute already exists
    - 400: Order cannot be disputed in its current status
    """

    def post(self, request, *args, **kwargs):
        serializer = self.validated(DisputeCreateSerializer, request)
        data = serializer.validated_data
        dispute = disputes.file_dispute(
            kwargs['pk'],
            request.user,
            data['reason'],
            data['description'],
            evidence=data['evidence'],
        )
        logger.info(
            f"Dispute created successfully. ID: {dispute.pk}, Order ID: {kwargs['pk']}, "
            f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return Response(DisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)


class DisputeMessageView(MarketplaceAPIView):
    """
    GET /api/disputes/<id>/messages/ - list messages
    POST /api/disputes/<id>/messages/ - {"message": "...", "is_admin_note": false}
    """

    def get(self, request, *args, **kwargs):
        messages = disputes.list_dispute_messages(kwargs['pk'], request.user)
        return Response(DisputeMessageSerializer(messages, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = self.validated(DisputeMessageCreateSerializer, request)
        message = disputes.post_dispute_message(
            kwargs['pk'],
            request.user,
            serializer.validated_data['message'],
            is_admin_note=serializer.validated_data['is_admin_note'],
        )
        return Response(DisputeMessageSerializer(message).data, status=status.HTTP_201_CREATED)


# ============================================================================
# Admin
# ============================================================================

class AdminOrderSettleView(MarketplaceAPIView):
    """POST /api/admin/orders/<id>/settle/ - release escrow of a paid order."""

    permission_classes = [IsAuthenticated, IsMarketplaceAdmin]

    def post(self, request, *args, **kwargs):
        order = settlement.settle_order(kwargs['pk'], request.user)
        logger.info(
            f"Order settlement requested. Order ID: {order.pk}, Status: {order.status}, "
            f"Admin: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return render_order(order)


class AdminDisputeResolveView(MarketplaceAPIView):
    """
    POST /api/admin/disputes/<id>/resolve/
    Request body: {
        "status": "RESOLVED",
        "resolution": "Half of the job was done.",
        "refund_amount": "2500.00",
        "release_to": "CLIENT"
    }
    """

    permission_classes = [IsAuthenticated, IsMarketplaceAdmin]

    def post(self, request, *args, **kwargs):
        serializer = self.validated(DisputeResolveSerializer, request)
        data = serializer.validated_data
        dispute = disputes.resolve_dispute(
            kwargs['pk'],
            request.user,
            data['status'],
            resolution=data['resolution'],
            refund_amount=data['refund_amount'],
            release_to=data['release_to'],
        )
        logger.info(
            f"Dispute resolution applied. ID: {dispute.pk}, Status: {dispute.status}, "
            f"Admin: {request.user.email}, IP: {self.get_client_ip(request)}"
        )
        return Response(DisputeSerializer(dispute).data, status=status.HTTP_200_OK)


class AdminCommissionPayoutView(MarketplaceAPIView):
    """POST /api/admin/agents/<id>/commissions/payout/ - {"commission_ids": [...]} (optional)"""

    permission_classes = [IsAuthenticated, IsMarketplaceAdmin]

    def post(self, request, *args, **kwargs):
        serializer = self.validated(CommissionPayoutSerializer, request)
        result = commissions.pay_out_commissions(
            kwargs['pk'],
            request.user,
            commission_ids=serializer.validated_data['commission_ids'],
        )
        return Response(
            {'count': result['count'], 'amount': str(result['amount'])},
            status=status.HTTP_200_OK
        )


# ============================================================================
# Account
# ============================================================================

class PurseView(MarketplaceAPIView):
    """GET /api/purse/ - the caller's balances."""

    def get(self, request, *args, **kwargs):
        purse = ledger.get_purse(request.user)
        return Response(PurseSerializer(purse).data)


class AgentCommissionListView(ListAPIView):
    """
    GET /api/agent/commissions/?status=PENDING

    Paginated commissions of the calling agent, newest first.
    """

    serializer_class = AgentCommissionSerializer
    permission_classes = [IsAuthenticated, IsAgent]

    def get_queryset(self):
        queryset = AgentCommission.objects.filter(agent__user=self.request.user)
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter.upper())
        return queryset.order_by('-created_at')


# ============================================================================
# Webhooks
# ============================================================================

class GatewayWebhookView(APIView):
    """
    Receive a payment gateway callback.

    The signature is checked against the raw body before anything else; a
    bad signature answers 403. Verified events are applied as the SYSTEM
    actor.
    """

    authentication_classes = []
    permission_classes = [AllowAny]
    provider = None
    signature_header = None

    def post(self, request, *args, **kwargs):
        payload = request.body
        signature = request.META.get(self.signature_header, '')
        gateway = gateways.get_gateway(self.provider)
        event = gateway.parse_webhook(payload, signature)
        webhooks.process_webhook_event(event)
        return Response({'received': True}, status=status.HTTP_200_OK)


class StripeWebhookView(GatewayWebhookView):
    """POST /api/webhooks/stripe/"""

    provider = 'STRIPE'
    signature_header = 'HTTP_STRIPE_SIGNATURE'


class PaystackWebhookView(GatewayWebhookView):
    """POST /api/webhooks/paystack/"""

    provider = 'PAYSTACK'
    signature_header = 'HTTP_X_PAYSTACK_SIGNATURE'
