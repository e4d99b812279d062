"""
Django admin configuration for the Fixers Marketplace.

Money-bearing records (orders, payments, purses, ledger lines, commissions)
are read-only here: balances only change through the service layer, and a
purse that drifted from its ledger is repaired with ``verify_purses --fix``.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import (
    Agent,
    AgentCommission,
    AgentFixer,
    Category,
    Dispute,
    DisputeMessage,
    FixerService,
    Gig,
    GigPackage,
    Neighborhood,
    Order,
    OutboxEvent,
    Payment,
    Purse,
    PurseTransaction,
    Quote,
    ServiceRequest,
    Subcategory,
    User,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Admin for records that are only written by the service layer."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Custom admin interface for User model.

    Extends Django's UserAdmin with phone number and marketplace roles.
    """

    list_display = [
        'email',
        'username',
        'roles',
        'is_staff',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'is_staff',
        'is_superuser',
        'is_active',
        'created_at',
    ]

    search_fields = [
        'email',
        'username',
        'first_name',
        'last_name',
        'phone_number',
    ]

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('first_name', 'last_name', 'email', 'phone_number')
        }),
        (_('Marketplace Roles'), {
            'fields': ('roles',)
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'password1', 'password2', 'roles'),
        }),
    )

    readonly_fields = ['created_at', 'updated_at', 'last_login', 'date_joined']

    date_hierarchy = 'created_at'

    list_per_page = 25


# ============================================================================
# Taxonomy
# ============================================================================

class SubcategoryInline(admin.TabularInline):
    model = Subcategory
    extra = 1


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug']
    prepopulated_fields = {'slug': ('name',)}
    search_fields = ['name']
    inlines = [SubcategoryInline]


@admin.register(Neighborhood)
class NeighborhoodAdmin(admin.ModelAdmin):
    list_display = ['name', 'city', 'state']
    list_filter = ['state', 'city']
    search_fields = ['name', 'city']


@admin.register(FixerService)
class FixerServiceAdmin(admin.ModelAdmin):
    list_display = ['fixer', 'subcategory', 'is_active', 'created_at']
    list_filter = ['is_active', 'subcategory__category']
    search_fields = ['fixer__email', 'subcategory__name']
    filter_horizontal = ['neighborhoods']


# ============================================================================
# Agents
# ============================================================================

class AgentFixerInline(admin.TabularInline):
    model = AgentFixer
    extra = 0
    fields = ['fixer', 'bonus_paid', 'bonus_amount', 'bonus_paid_at', 'first_order']
    readonly_fields = ['bonus_paid', 'bonus_amount', 'bonus_paid_at', 'first_order']


@admin.register(Agent)
class AgentAdmin(admin.ModelAdmin):
    list_display = [
        'user',
        'commission_percentage',
        'fixer_bonus_enabled',
        'total_fixers_managed',
        'is_active',
        'created_at',
    ]
    list_filter = ['is_active', 'fixer_bonus_enabled']
    search_fields = ['user__email', 'user__username']
    readonly_fields = ['total_fixers_managed', 'created_at', 'updated_at']
    inlines = [AgentFixerInline]


@admin.register(AgentCommission)
class AgentCommissionAdmin(ReadOnlyAdmin):
    list_display = ['agent', 'commission_type', 'order', 'amount', 'percentage', 'status', 'created_at']
    list_filter = ['commission_type', 'status', 'created_at']
    search_fields = ['agent__user__email']
    date_hierarchy = 'created_at'


# ============================================================================
# Requests, gigs and quotes
# ============================================================================

@admin.register(ServiceRequest)
class ServiceRequestAdmin(admin.ModelAdmin):
    list_display = ['title', 'client', 'subcategory', 'neighborhood', 'status', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['title', 'client__email']
    readonly_fields = ['created_at', 'updated_at']


class GigPackageInline(admin.TabularInline):
    model = GigPackage
    extra = 1


@admin.register(Gig)
class GigAdmin(admin.ModelAdmin):
    list_display = ['title', 'fixer', 'agent', 'status', 'orders_count', 'created_at']
    list_filter = ['status']
    search_fields = ['title', 'fixer__email']
    readonly_fields = ['orders_count', 'created_at', 'updated_at']
    inlines = [GigPackageInline]


@admin.register(Quote)
class QuoteAdmin(ReadOnlyAdmin):
    list_display = [
        'request',
        'fixer',
        'quote_type',
        'total_amount',
        'inspection_fee_paid',
        'is_revised',
        'is_accepted',
        'created_at',
    ]
    list_filter = ['quote_type', 'is_accepted', 'is_revised']
    search_fields = ['fixer__email', 'request__title']


# ============================================================================
# Orders and money
# ============================================================================

class PaymentInline(admin.StackedInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = ['provider', 'reference', 'amount', 'status', 'paid_at', 'released_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(ReadOnlyAdmin):
    list_display = [
        'id',
        'client',
        'fixer',
        'total_amount',
        'platform_fee',
        'fixer_amount',
        'status',
        'created_at',
    ]
    list_filter = ['status', 'created_at']
    search_fields = ['id', 'client__email', 'fixer__email']
    date_hierarchy = 'created_at'
    inlines = [PaymentInline]
    list_per_page = 25


@admin.register(Payment)
class PaymentAdmin(ReadOnlyAdmin):
    list_display = ['reference', 'order', 'provider', 'amount', 'status', 'paid_at', 'released_at']
    list_filter = ['provider', 'status']
    search_fields = ['reference', 'order__id']


@admin.register(Purse)
class PurseAdmin(ReadOnlyAdmin):
    list_display = [
        'user',
        'is_platform',
        'available_balance',
        'pending_balance',
        'commission_balance',
        'total_revenue',
        'updated_at',
    ]
    list_filter = ['is_platform']
    search_fields = ['user__email']


@admin.register(PurseTransaction)
class PurseTransactionAdmin(ReadOnlyAdmin):
    list_display = [
        'purse',
        'order',
        'entry_type',
        'available_delta',
        'pending_delta',
        'commission_delta',
        'revenue_delta',
        'created_at',
    ]
    list_filter = ['entry_type', 'created_at']
    search_fields = ['order__id', 'purse__user__email', 'memo']
    date_hierarchy = 'created_at'


# ============================================================================
# Disputes and notifications
# ============================================================================

class DisputeMessageInline(admin.TabularInline):
    model = DisputeMessage
    extra = 0
    readonly_fields = ['sender', 'message', 'is_admin_note', 'created_at']


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    """
    Disputes are resolved through the resolve endpoint, which settles the
    order; the admin only shows them.
    """

    list_display = ['order', 'initiated_by', 'reason', 'status', 'release_to', 'created_at']
    list_filter = ['status', 'reason']
    search_fields = ['order__id', 'initiated_by__email']
    readonly_fields = [
        'order', 'initiated_by', 'reason', 'description', 'evidence', 'status',
        'order_status_before', 'resolution', 'release_to', 'refund_amount',
        'released_amount', 'resolved_by', 'resolved_at', 'created_at', 'updated_at',
    ]
    inlines = [DisputeMessageInline]


@admin.register(OutboxEvent)
class OutboxEventAdmin(admin.ModelAdmin):
    list_display = ['event_type', 'recipient', 'title', 'attempts', 'dispatched_at', 'created_at']
    list_filter = ['event_type', 'dispatched_at']
    search_fields = ['recipient__email', 'title']
    readonly_fields = ['created_at', 'dispatched_at', 'attempts', 'last_error']
