"""
Serializers for the Fixers Marketplace API.

Input serializers only check the shape of a request; the business rules live
in the service modules (``core.quotes``, ``core.orders``, ...), which raise
the engine's error types. Output serializers are read-only renderings of the
models.
"""

from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import (
    AgentCommission,
    Dispute,
    DisputeMessage,
    Order,
    Payment,
    Purse,
    Quote,
)
from .quotes import QuoteTerms

User = get_user_model()

PROVIDER_CHOICES = [choice for choice, _label in Payment.PROVIDER_CHOICES]


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Obtain a JWT pair with email and password instead of username.
    """
    username_field = 'email'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields.pop('username', None)
        if 'email' not in self.fields:
            self.fields['email'] = serializers.EmailField()

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['roles'] = list(user.roles or [])
        return token


# ============================================================================
# Users
# ============================================================================

class UserSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name']
        read_only_fields = fields


# ============================================================================
# Quotes
# ============================================================================

class FinalQuoteSerializer(serializers.Serializer):
    """
    Costs of a quote.

    Fields:
    - labor_cost: Required, greater than 0 (checked by the service)
    - material_cost / other_costs: Optional, default 0
    - requires_down_payment / down_payment_percentage / down_payment_reason:
      Optional down payment terms
    """

    labor_cost = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=Decimal('0.00'))
    material_cost = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=Decimal('0.00'))
    other_costs = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=Decimal('0.00'))
    requires_down_payment = serializers.BooleanField(required=False, default=False)
    down_payment_percentage = serializers.DecimalField(
        max_digits=5, decimal_places=2, required=False, allow_null=True, default=None
    )
    down_payment_reason = serializers.CharField(required=False, allow_blank=True, default='')
    estimated_duration = serializers.CharField(required=False, allow_blank=True, default='', max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs.get('requires_down_payment') and attrs.get('down_payment_percentage') is None:
            raise serializers.ValidationError({
                'down_payment_percentage': 'Required when a down payment is requested.'
            })
        return attrs

    def to_terms(self):
        return QuoteTerms(**self.validated_data)


class QuoteSubmitSerializer(FinalQuoteSerializer):
    request = serializers.UUIDField()
    quote_type = serializers.ChoiceField(choices=Quote.TYPE_CHOICES, default=Quote.TYPE_DIRECT)
    inspection_fee = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, allow_null=True, default=None
    )

    def validate(self, attrs):
        attrs = super().validate(attrs)
        if attrs['quote_type'] == Quote.TYPE_INSPECTION_REQUIRED and attrs.get('inspection_fee') is None:
            raise serializers.ValidationError({
                'inspection_fee': 'Required for inspection quotes.'
            })
        return attrs

    def to_terms(self):
        data = dict(self.validated_data)
        data.pop('request')
        return QuoteTerms(**data)


class QuoteSerializer(serializers.ModelSerializer):
    fixer = UserSummarySerializer(read_only=True)
    order_id = serializers.SerializerMethodField()

    class Meta:
        model = Quote
        fields = [
            'id', 'request', 'fixer', 'agent', 'quote_type',
            'inspection_fee', 'inspection_fee_paid',
            'labor_cost', 'material_cost', 'other_costs', 'total_amount',
            'estimated_duration', 'notes',
            'requires_down_payment', 'down_payment_percentage',
            'down_payment_amount', 'down_payment_reason',
            'is_accepted', 'accepted_at', 'is_revised', 'revised_at',
            'order_id', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_order_id(self, obj):
        order = getattr(obj, 'order', None) if obj.is_accepted else None
        return str(order.pk) if order is not None else None


# ============================================================================
# Payments
# ============================================================================

class ProviderSerializer(serializers.Serializer):
    provider = serializers.ChoiceField(choices=PROVIDER_CHOICES, required=False, allow_null=True, default=None)


class PaymentConfirmSerializer(ProviderSerializer):
    reference = serializers.CharField(max_length=255)


class PaymentIntentSerializer(serializers.Serializer):
    """Renders a gateways.PaymentIntent."""

    id = serializers.CharField()
    client_secret = serializers.CharField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    provider = serializers.CharField()


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ['id', 'provider', 'reference', 'amount', 'status', 'paid_at', 'released_at']
        read_only_fields = fields


# ============================================================================
# Orders
# ============================================================================

class GigOrderCreateSerializer(serializers.Serializer):
    gig = serializers.UUIDField()
    package = serializers.UUIDField()
    requirements = serializers.CharField(required=False, allow_blank=True, default='')


class DeliverySerializer(serializers.Serializer):
    delivery_note = serializers.CharField()


class CompletionSerializer(serializers.Serializer):
    message = serializers.CharField(required=False, allow_blank=True, default='')


class CancellationSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class RevisionSerializer(serializers.Serializer):
    note = serializers.CharField()


class ReviewSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    comment = serializers.CharField()


class OrderSerializer(serializers.ModelSerializer):
    """
    Order details for its parties and admins.

    ``origin`` is 'GIG' or 'REQUEST'; ``amount_due`` is what the client still
    owes at final payment.
    """

    client = UserSummarySerializer(read_only=True)
    fixer = UserSummarySerializer(read_only=True)
    payment = serializers.SerializerMethodField()
    origin = serializers.SerializerMethodField()
    amount_due = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'origin', 'client', 'fixer', 'request', 'quote', 'gig', 'package',
            'total_amount', 'platform_fee', 'fixer_amount', 'amount_due', 'status',
            'down_payment_required', 'down_payment_amount', 'down_payment_paid',
            'requirements', 'delivery_date', 'delivery_note', 'revision_note',
            'revisions_allowed', 'revisions_used', 'cancellation_reason',
            'rating', 'review_comment', 'reviewed_at', 'payment',
            'started_at', 'delivered_at', 'completed_at', 'paid_at',
            'settled_at', 'cancelled_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_origin(self, obj):
        return 'GIG' if obj.is_gig_order() else 'REQUEST'

    def get_payment(self, obj):
        payment = Payment.objects.filter(order=obj).first()
        return PaymentSerializer(payment).data if payment is not None else None


# ============================================================================
# Disputes
# ============================================================================

class DisputeCreateSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=Dispute.REASON_CHOICES)
    description = serializers.CharField()
    evidence = serializers.ListField(child=serializers.URLField(), required=False, default=list)


class DisputeResolveSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Dispute.STATUS_CHOICES)
    resolution = serializers.CharField(required=False, allow_blank=True, default='')
    refund_amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, allow_null=True, default=None,
        min_value=Decimal('0.00')
    )
    release_to = serializers.ChoiceField(
        choices=Dispute.RELEASE_TO_CHOICES, required=False, allow_null=True, default=None
    )


class DisputeSerializer(serializers.ModelSerializer):
    initiated_by = UserSummarySerializer(read_only=True)

    class Meta:
        model = Dispute
        fields = [
            'id', 'order', 'initiated_by', 'reason', 'description', 'evidence',
            'status', 'order_status_before', 'resolution', 'release_to',
            'refund_amount', 'released_amount', 'resolved_by', 'resolved_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class DisputeMessageCreateSerializer(serializers.Serializer):
    message = serializers.CharField()
    is_admin_note = serializers.BooleanField(required=False, default=False)


class DisputeMessageSerializer(serializers.ModelSerializer):
    sender = UserSummarySerializer(read_only=True)

    class Meta:
        model = DisputeMessage
        fields = ['id', 'dispute', 'sender', 'message', 'is_admin_note', 'created_at']
        read_only_fields = fields


# ============================================================================
# Purses and commissions
# ============================================================================

class PurseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Purse
        fields = [
            'id', 'available_balance', 'pending_balance',
            'commission_balance', 'total_revenue', 'updated_at',
        ]
        read_only_fields = fields


class AgentCommissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = AgentCommission
        fields = [
            'id', 'commission_type', 'order', 'agent_fixer', 'amount',
            'percentage', 'order_amount', 'status', 'paid_at', 'created_at',
        ]
        read_only_fields = fields


class CommissionPayoutSerializer(serializers.Serializer):
    commission_ids = serializers.ListField(
        child=serializers.UUIDField(), required=False, allow_null=True, default=None
    )
