"""
URL configuration for fixers_marketplace project.

Every API route is mounted under ``/api/``.
"""
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import (
    TokenRefreshView,
    TokenVerifyView,
    TokenBlacklistView,
)
from core.views import (
    AdminCommissionPayoutView,
    AdminDisputeResolveView,
    AdminOrderSettleView,
    AgentCommissionListView,
    DisputeMessageView,
    DownPaymentConfirmView,
    EmailTokenObtainPairView,
    FinalQuoteView,
    GigOrderCreateView,
    InspectionPaymentConfirmView,
    InspectionPaymentView,
    OrderCancelView,
    OrderCompleteView,
    OrderDeliverView,
    OrderDetailView,
    OrderDisputeCreateView,
    OrderPaymentIntentView,
    OrderPayView,
    OrderReviewView,
    OrderRevisionView,
    OrderStartView,
    PaystackWebhookView,
    PurseView,
    QuoteAcceptView,
    QuoteSubmitView,
    StripeWebhookView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # JWT Authentication endpoints
    path('api/token/', EmailTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/token/verify/', TokenVerifyView.as_view(), name='token_verify'),
    path('api/token/blacklist/', TokenBlacklistView.as_view(), name='token_blacklist'),

    # Quote endpoints
    path('api/quotes/', QuoteSubmitView.as_view(), name='quote_submit'),
    path('api/quotes/<uuid:pk>/final/', FinalQuoteView.as_view(), name='quote_final'),
    path('api/quotes/<uuid:pk>/accept/', QuoteAcceptView.as_view(), name='quote_accept'),
    path('api/quotes/<uuid:pk>/down-payment/confirm/', DownPaymentConfirmView.as_view(), name='quote_down_payment_confirm'),
    path('api/quotes/<uuid:pk>/inspection-payment/', InspectionPaymentView.as_view(), name='quote_inspection_payment'),
    path('api/quotes/<uuid:pk>/inspection-payment/confirm/', InspectionPaymentConfirmView.as_view(), name='quote_inspection_payment_confirm'),

    # Order endpoints
    path('api/orders/', GigOrderCreateView.as_view(), name='order_create'),
    path('api/orders/<uuid:pk>/', OrderDetailView.as_view(), name='order_detail'),
    path('api/orders/<uuid:pk>/start/', OrderStartView.as_view(), name='order_start'),
    path('api/orders/<uuid:pk>/deliver/', OrderDeliverView.as_view(), name='order_deliver'),
    path('api/orders/<uuid:pk>/complete/', OrderCompleteView.as_view(), name='order_complete'),
    path('api/orders/<uuid:pk>/payment-intent/', OrderPaymentIntentView.as_view(), name='order_payment_intent'),
    path('api/orders/<uuid:pk>/pay/', OrderPayView.as_view(), name='order_pay'),
    path('api/orders/<uuid:pk>/cancel/', OrderCancelView.as_view(), name='order_cancel'),
    path('api/orders/<uuid:pk>/revision/', OrderRevisionView.as_view(), name='order_revision'),
    path('api/orders/<uuid:pk>/review/', OrderReviewView.as_view(), name='order_review'),
    path('api/orders/<uuid:pk>/disputes/', OrderDisputeCreateView.as_view(), name='order_dispute_create'),

    # Dispute endpoints
    path('api/disputes/<uuid:pk>/messages/', DisputeMessageView.as_view(), name='dispute_messages'),

    # Admin endpoints
    path('api/admin/orders/<uuid:pk>/settle/', AdminOrderSettleView.as_view(), name='admin_order_settle'),
    path('api/admin/disputes/<uuid:pk>/resolve/', AdminDisputeResolveView.as_view(), name='admin_dispute_resolve'),
    path('api/admin/agents/<uuid:pk>/commissions/payout/', AdminCommissionPayoutView.as_view(), name='admin_commission_payout'),

    # Account endpoints
    path('api/purse/', PurseView.as_view(), name='purse'),
    path('api/agent/commissions/', AgentCommissionListView.as_view(), name='agent_commissions'),

    # Gateway webhooks
    path('api/webhooks/stripe/', StripeWebhookView.as_view(), name='webhook_stripe'),
    path('api/webhooks/paystack/', PaystackWebhookView.as_view(), name='webhook_paystack'),
]
