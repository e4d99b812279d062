"""
Data model for the Fixers Marketplace order, quote and escrow engine.
"""

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils.translation import gettext_lazy as _

from .origin import GigOrigin, RequestOrigin
from .validators import (
    validate_percentage,
    validate_phone_number,
    validate_positive_amount,
    validate_roles,
)


ZERO = Decimal('0.00')


def money_field(verbose_name, help_text, **kwargs):
    """DecimalField configured for currency amounts."""
    kwargs.setdefault('max_digits', 14)
    kwargs.setdefault('decimal_places', 2)
    return models.DecimalField(verbose_name, help_text=help_text, **kwargs)


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    Additional fields:
    - email: Required, unique email address
    - phone_number: Optional phone number
    - roles: Marketplace roles held by the user (CLIENT, FIXER, AGENT, ADMIN)
    - created_at: Account creation timestamp
    - updated_at: Last update timestamp

    Staff users are always treated as admins.
    """

    ROLE_CLIENT = 'CLIENT'
    ROLE_FIXER = 'FIXER'
    ROLE_AGENT = 'AGENT'
    ROLE_ADMIN = 'ADMIN'

    ROLE_CHOICES = [
        (ROLE_CLIENT, 'Client'),
        (ROLE_FIXER, 'Fixer'),
        (ROLE_AGENT, 'Agent'),
        (ROLE_ADMIN, 'Admin'),
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    phone_number = models.CharField(
        _('phone number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Enter phone number in local or international format.')
    )

    roles = models.JSONField(
        _('roles'),
        default=list,
        blank=True,
        validators=[validate_roles],
        help_text=_('Marketplace roles held by this user.')
    )

    created_at = models.DateTimeField(
        _('created at'),
        auto_now_add=True,
        help_text=_('Timestamp when the account was created.')
    )

    updated_at = models.DateTimeField(
        _('updated at'),
        auto_now=True,
        help_text=_('Timestamp when the account was last updated.')
    )

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email'], name='user_email_idx'),
        ]

    def __str__(self):
        return self.email or self.username

    def has_role(self, role):
        return role in (self.roles or [])

    def is_client(self):
        return self.has_role(self.ROLE_CLIENT)

    def is_fixer(self):
        return self.has_role(self.ROLE_FIXER)

    def is_agent(self):
        return self.has_role(self.ROLE_AGENT)

    def is_admin(self):
        """
        Check if user may perform admin-only marketplace actions.

        Returns:
            bool: True for staff users and users holding the ADMIN role
        """
        return bool(self.is_staff or self.has_role(self.ROLE_ADMIN))

    def clean(self):
        super().clean()
        if self.email:
            self.email = self.email.lower()
        if not self.email:
            raise ValidationError({
                'email': _('Email address is required.')
            })

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.lower()
        # New users skip full_clean so duplicate emails surface as IntegrityError
        if self.pk is not None:
            self.full_clean()
        super().save(*args, **kwargs)


# ============================================================================
# Taxonomy
# ============================================================================

class Category(models.Model):
    name = models.CharField(_('name'), max_length=100, unique=True)
    slug = models.SlugField(_('slug'), max_length=120, unique=True)

    class Meta:
        verbose_name = _('category')
        verbose_name_plural = _('categories')
        ordering = ['name']

    def __str__(self):
        return self.name


class Subcategory(models.Model):
    category = models.ForeignKey(
        Category,
        on_delete=models.CASCADE,
        related_name='subcategories'
    )
    name = models.CharField(_('name'), max_length=100)

    class Meta:
        verbose_name = _('subcategory')
        verbose_name_plural = _('subcategories')
        ordering = ['category__name', 'name']
        constraints = [
            models.UniqueConstraint(
                fields=['category', 'name'],
                name='unique_subcategory_per_category'
            )
        ]

    def __str__(self):
        return f"{self.category.name} / {self.name}"


class Neighborhood(models.Model):
    name = models.CharField(_('name'), max_length=100)
    city = models.CharField(_('city'), max_length=100)
    state = models.CharField(_('state'), max_length=100)

    class Meta:
        verbose_name = _('neighborhood')
        verbose_name_plural = _('neighborhoods')
        ordering = ['state', 'city', 'name']
        constraints = [
            models.UniqueConstraint(
                fields=['name', 'city', 'state'],
                name='unique_neighborhood'
            )
        ]

    def __str__(self):
        return f"{self.name}, {self.city}"


class FixerService(models.Model):
    """
    A subcategory a fixer works in, and the neighborhoods they cover for it.

    Quote eligibility is decided here: a fixer may quote on a service request
    only if one of their active services matches the request's subcategory and
    lists the request's neighborhood.
    """

    fixer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='fixer_services',
        help_text=_('Fixer offering the service')
    )
    subcategory = models.ForeignKey(
        Subcategory,
        on_delete=models.CASCADE,
        related_name='fixer_services'
    )
    neighborhoods = models.ManyToManyField(
        Neighborhood,
        related_name='fixer_services',
        blank=True
    )
    is_active = models.BooleanField(_('active'), default=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('fixer service')
        verbose_name_plural = _('fixer services')
        constraints = [
            models.UniqueConstraint(
                fields=['fixer', 'subcategory'],
                name='unique_fixer_service_per_subcategory'
            )
        ]

    def __str__(self):
        return f"{self.fixer} - {self.subcategory}"


# ============================================================================
# Agents
# ============================================================================

class Agent(models.Model):
    """
    Intermediary who brings fixers and clients to the platform.

    Fields:
    - user: The agent's user account
    - commission_percentage: Share of mediated order value paid to the agent
    - fixer_bonus_enabled: Whether first-order bonuses are paid for this agent
    - total_fixers_managed: Count of fixers linked to the agent (drives bonus tiers)
    - is_active: Inactive agents earn no new commission

    The agent wallet is the commission balance of the agent user's Purse.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='agent_profile'
    )

    commission_percentage = models.DecimalField(
        _('commission percentage'),
        max_digits=5,
        decimal_places=2,
        default=Decimal('10.00'),
        validators=[validate_percentage],
        help_text=_('Percentage of the commission base paid to the agent.')
    )

    fixer_bonus_enabled = models.BooleanField(
        _('fixer bonus enabled'),
        default=True,
        help_text=_('Pay a bonus when a managed fixer completes their first order.')
    )

    total_fixers_managed = models.PositiveIntegerField(
        _('total fixers managed'),
        default=0,
        help_text=_('Maintained by signals on AgentFixer.')
    )

    is_active = models.BooleanField(_('active'), default=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('agent')
        verbose_name_plural = _('agents')
        ordering = ['-created_at']

    def __str__(self):
        return f"Agent {self.user}"

    def _purse(self):
        return Purse.objects.filter(user_id=self.user_id).first()

    @property
    def wallet_balance(self):
        purse = self._purse()
        return purse.commission_balance if purse else ZERO

    @property
    def total_earned(self):
        purse = self._purse()
        return purse.total_revenue if purse else ZERO


class AgentFixer(models.Model):
    """Link between an agent and a fixer they manage."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    agent = models.ForeignKey(
        Agent,
        on_delete=models.CASCADE,
        related_name='managed_fixers'
    )
    fixer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='agent_links'
    )
    bonus_paid = models.BooleanField(_('bonus paid'), default=False)
    bonus_amount = money_field(
        _('bonus amount'),
        _('Bonus paid to the agent for this fixer'),
        null=True,
        blank=True
    )
    bonus_paid_at = models.DateTimeField(_('bonus paid at'), null=True, blank=True)
    first_order = models.ForeignKey(
        'Order',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
        help_text=_('Order that triggered the bonus')
    )
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('agent fixer')
        verbose_name_plural = _('agent fixers')
        constraints = [
            models.UniqueConstraint(
                fields=['agent', 'fixer'],
                name='unique_agent_fixer'
            )
        ]

    def __str__(self):
        return f"{self.agent} manages {self.fixer}"


# ============================================================================
# Service Requests and Gigs
# ============================================================================

class ServiceRequest(models.Model):
    """
    A client's posted job that fixers quote on.

    Status flow: OPEN -> APPROVED -> QUOTED -> ACCEPTED, or CANCELLED.
    """

    STATUS_OPEN = 'OPEN'
    STATUS_APPROVED = 'APPROVED'
    STATUS_QUOTED = 'QUOTED'
    STATUS_ACCEPTED = 'ACCEPTED'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_QUOTED, 'Quoted'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    QUOTABLE_STATUSES = (STATUS_APPROVED, STATUS_QUOTED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    client = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='service_requests'
    )
    subcategory = models.ForeignKey(
        Subcategory,
        on_delete=models.PROTECT,
        related_name='service_requests'
    )
    neighborhood = models.ForeignKey(
        Neighborhood,
        on_delete=models.PROTECT,
        related_name='service_requests'
    )
    agent = models.ForeignKey(
        Agent,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='service_requests',
        help_text=_('Agent who posted or manages this request')
    )
    title = models.CharField(_('title'), max_length=200)
    description = models.TextField(_('description'), blank=True, default='')
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_OPEN
    )
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('service request')
        verbose_name_plural = _('service requests')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='request_status_idx'),
            models.Index(fields=['client'], name='request_client_idx'),
        ]

    def __str__(self):
        return self.title


class Gig(models.Model):
    STATUS_DRAFT = 'DRAFT'
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_PAUSED = 'PAUSED'

    STATUS_CHOICES = [
        (STATUS_DRAFT, 'Draft'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_PAUSED, 'Paused'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    fixer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='gigs'
    )
    agent = models.ForeignKey(
        Agent,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='gigs'
    )
    subcategory = models.ForeignKey(
        Subcategory,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='gigs'
    )
    title = models.CharField(_('title'), max_length=200)
    description = models.TextField(_('description'), blank=True, default='')
    status = models.CharField(
        _('status'),
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_DRAFT
    )
    orders_count = models.PositiveIntegerField(_('orders count'), default=0)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('gig')
        verbose_name_plural = _('gigs')
        ordering = ['-created_at']

    def __str__(self):
        return self.title


class GigPackage(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    gig = models.ForeignKey(
        Gig,
        on_delete=models.CASCADE,
        related_name='packages'
    )
    name = models.CharField(_('name'), max_length=100)
    description = models.TextField(_('description'), blank=True, default='')
    price = money_field(
        _('price'),
        _('Package price'),
        validators=[validate_positive_amount]
    )
    delivery_days = models.PositiveIntegerField(
        _('delivery days'),
        validators=[MinValueValidator(1)]
    )
    revisions = models.PositiveIntegerField(_('revisions'), default=0)

    class Meta:
        verbose_name = _('gig package')
        verbose_name_plural = _('gig packages')
        ordering = ['price']

    def __str__(self):
        return f"{self.gig.title} - {self.name}"


# ============================================================================
# Quote Model
# ============================================================================

class Quote(models.Model):
    """
    A fixer's price offer against a service request.

    Fields:
    - request / fixer: At most one quote per pair
    - quote_type: DIRECT (priced up front) or INSPECTION_REQUIRED (paid
      inspection first, final price later)
    - inspection_fee / inspection_fee_paid: Inspection stage of the quote
    - labor_cost / material_cost / other_costs / total_amount: Price breakdown
    - requires_down_payment / down_payment_*: Optional upfront payment
    - is_accepted / accepted_at: Set once, by the request's client
    - is_revised / revised_at: Final quote submitted after inspection

    An inspection quote keeps total_amount at 0 until the final quote is
    submitted; the final total may not be below the inspection fee. Both rules
    are enforced by a database check constraint.
    """

    TYPE_DIRECT = 'DIRECT'
    TYPE_INSPECTION_REQUIRED = 'INSPECTION_REQUIRED'

    TYPE_CHOICES = [
        (TYPE_DIRECT, 'Direct'),
        (TYPE_INSPECTION_REQUIRED, 'Inspection required'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    request = models.ForeignKey(
        ServiceRequest,
        on_delete=models.CASCADE,
        related_name='quotes'
    )
    fixer = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='quotes'
    )
    agent = models.ForeignKey(
        Agent,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='quotes'
    )
    quote_type = models.CharField(
        _('quote type'),
        max_length=20,
        choices=TYPE_CHOICES,
        default=TYPE_DIRECT
    )
    inspection_fee = money_field(
        _('inspection fee'),
        _('Fee charged for the inspection visit'),
        null=True,
        blank=True
    )
    inspection_fee_paid = models.BooleanField(_('inspection fee paid'), default=False)
    inspection_payment_reference = models.CharField(
        _('inspection payment reference'),
        max_length=255,
        blank=True,
        default=''
    )
    labor_cost = money_field(_('labor cost'), _('Labor cost'), default=ZERO)
    material_cost = money_field(_('material cost'), _('Material cost'), default=ZERO)
    other_costs = money_field(_('other costs'), _('Other costs'), default=ZERO)
    total_amount = money_field(_('total amount'), _('Quoted total'), default=ZERO)
    estimated_duration = models.CharField(
        _('estimated duration'),
        max_length=100,
        blank=True,
        default=''
    )
    notes = models.TextField(_('notes'), blank=True, default='')

    requires_down_payment = models.BooleanField(_('requires down payment'), default=False)
    down_payment_percentage = models.DecimalField(
        _('down payment percentage'),
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[validate_percentage]
    )
    down_payment_amount = money_field(
        _('down payment amount'),
        _('Amount payable before work starts'),
        null=True,
        blank=True
    )
    down_payment_reason = models.TextField(_('down payment reason'), blank=True, default='')

    is_accepted = models.BooleanField(_('accepted'), default=False)
    accepted_at = models.DateTimeField(_('accepted at'), null=True, blank=True)
    is_revised = models.BooleanField(_('revised'), default=False)
    revised_at = models.DateTimeField(_('revised at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('quote')
        verbose_name_plural = _('quotes')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['fixer'], name='quote_fixer_idx'),
            models.Index(fields=['is_accepted'], name='quote_accepted_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['request', 'fixer'],
                name='unique_quote_per_request_fixer'
            ),
            models.CheckConstraint(
                condition=(
                    Q(quote_type='DIRECT', total_amount__gt=0)
                    | Q(quote_type='INSPECTION_REQUIRED', is_revised=False, total_amount=0)
                    | Q(
                        quote_type='INSPECTION_REQUIRED',
                        is_revised=True,
                        total_amount__gte=F('inspection_fee')
                    )
                ),
                name='quote_total_matches_type'
            ),
        ]

    def __str__(self):
        return f"Quote by {self.fixer} on {self.request}"

    def is_inspection(self):
        return self.quote_type == self.TYPE_INSPECTION_REQUIRED

    @property
    def awaiting_final_quote(self):
        return self.is_inspection() and not self.is_revised

    def can_be_accepted(self):
        """
        Check whether the client may accept this quote now.

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if self.is_accepted:
            return False, 'This quote has already been accepted.'
        if self.awaiting_final_quote:
            return False, 'The fixer must submit a final quote after the inspection.'
        if self.request.status not in ServiceRequest.QUOTABLE_STATUSES:
            return False, f'Service request is {self.request.status} and no longer accepts quotes.'
        return True, None

    def clean(self):
        super().clean()
        if self.quote_type == self.TYPE_DIRECT and self.total_amount is not None:
            if self.total_amount <= 0:
                raise ValidationError({
                    'total_amount': _('A direct quote must have a total greater than 0.')
                })
        if self.is_inspection():
            if self.inspection_fee is None:
                raise ValidationError({
                    'inspection_fee': _('An inspection quote needs an inspection fee.')
                })
            if self.is_revised and self.total_amount < self.inspection_fee:
                raise ValidationError({
                    'total_amount': _('The final total cannot be below the inspection fee.')
                })
        if self.requires_down_payment and not self.down_payment_amount:
            raise ValidationError({
                'down_payment_amount': _('A down payment amount is required.')
            })

    def save(self, *args, **kwargs):
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)


# ============================================================================
# Order Model
# ============================================================================

class Order(models.Model):
    """
    The unit of paid work.

    An order originates either from a gig package (gig + package) or from an
    accepted quote (request + quote), never both. Its financial terms
    (total_amount, platform_fee, fixer_amount, down payment) are fixed at
    creation: fixer_amount + platform_fee == total_amount is a database check
    constraint, and clean() rejects any later change to them.

    After creation only status transitions mutate an order. They are applied
    with status-guarded queryset updates by ``core.orders``; the table below
    is the state machine those updates follow.
    """

    STATUS_PENDING = 'PENDING'
    STATUS_IN_PROGRESS = 'IN_PROGRESS'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_PAID = 'PAID'
    STATUS_SETTLED = 'SETTLED'
    STATUS_DISPUTED = 'DISPUTED'
    STATUS_CANCELLED = 'CANCELLED'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_PAID, 'Paid'),
        (STATUS_SETTLED, 'Settled'),
        (STATUS_DISPUTED, 'Disputed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    VALID_TRANSITIONS = {
        STATUS_PENDING: [STATUS_IN_PROGRESS, STATUS_CANCELLED],
        STATUS_IN_PROGRESS: [STATUS_COMPLETED, STATUS_DISPUTED],
        STATUS_COMPLETED: [STATUS_PAID, STATUS_IN_PROGRESS, STATUS_DISPUTED],
        STATUS_PAID: [STATUS_SETTLED, STATUS_DISPUTED],
        STATUS_SETTLED: [STATUS_DISPUTED],
        STATUS_DISPUTED: [STATUS_SETTLED, STATUS_CANCELLED],
        STATUS_CANCELLED: [],  # Terminal state
    }

    IMMUTABLE_FIELDS = (
        'client_id', 'fixer_id', 'request_id', 'quote_id', 'gig_id', 'package_id',
        'total_amount', 'platform_fee', 'fixer_amount',
        'down_payment_required', 'down_payment_amount',
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    client = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='client_orders'
    )
    fixer = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='fixer_orders'
    )

    request = models.ForeignKey(
        ServiceRequest,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='orders'
    )
    quote = models.OneToOneField(
        Quote,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='order'
    )
    gig = models.ForeignKey(
        Gig,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='orders'
    )
    package = models.ForeignKey(
        GigPackage,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='orders'
    )

    total_amount = money_field(
        _('total amount'),
        _('Amount payable by the client'),
        validators=[validate_positive_amount]
    )
    platform_fee = money_field(
        _('platform fee'),
        _('Platform share of the total'),
        validators=[MinValueValidator(ZERO)]
    )
    fixer_amount = money_field(
        _('fixer amount'),
        _('Fixer share of the total'),
        validators=[MinValueValidator(ZERO)]
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )

    down_payment_required = models.BooleanField(_('down payment required'), default=False)
    down_payment_amount = money_field(
        _('down payment amount'),
        _('Down payment agreed on the quote'),
        null=True,
        blank=True
    )
    down_payment_paid = models.BooleanField(_('down payment paid'), default=False)

    requirements = models.TextField(_('requirements'), blank=True, default='')
    delivery_date = models.DateTimeField(_('delivery date'), null=True, blank=True)
    delivery_note = models.TextField(_('delivery note'), blank=True, default='')
    revision_note = models.TextField(_('revision note'), blank=True, default='')
    revisions_allowed = models.PositiveIntegerField(_('revisions allowed'), default=0)
    revisions_used = models.PositiveIntegerField(_('revisions used'), default=0)
    cancellation_reason = models.TextField(_('cancellation reason'), blank=True, default='')

    rating = models.PositiveSmallIntegerField(
        _('rating'),
        null=True,
        blank=True,
        validators=[
            MinValueValidator(1, message=_('Rating must be at least 1.')),
            MaxValueValidator(5, message=_('Rating cannot exceed 5.'))
        ]
    )
    review_comment = models.TextField(_('review comment'), blank=True, default='')
    reviewed_at = models.DateTimeField(_('reviewed at'), null=True, blank=True)

    started_at = models.DateTimeField(_('started at'), null=True, blank=True)
    delivered_at = models.DateTimeField(_('delivered at'), null=True, blank=True)
    completed_at = models.DateTimeField(_('completed at'), null=True, blank=True)
    paid_at = models.DateTimeField(_('paid at'), null=True, blank=True)
    settled_at = models.DateTimeField(_('settled at'), null=True, blank=True)
    cancelled_at = models.DateTimeField(_('cancelled at'), null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('order')
        verbose_name_plural = _('orders')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['client'], name='order_client_idx'),
            models.Index(fields=['fixer'], name='order_fixer_idx'),
            models.Index(fields=['status'], name='order_status_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(
                        request__isnull=False, quote__isnull=False,
                        gig__isnull=True, package__isnull=True
                    )
                    | Q(
                        request__isnull=True, quote__isnull=True,
                        gig__isnull=False, package__isnull=False
                    )
                ),
                name='order_single_origin'
            ),
            models.CheckConstraint(
                condition=Q(total_amount=F('fixer_amount') + F('platform_fee')),
                name='order_amount_split'
            ),
            models.CheckConstraint(
                condition=Q(platform_fee__gte=0, fixer_amount__gte=0),
                name='order_shares_non_negative'
            ),
        ]

    def __str__(self):
        return f"Order {self.id} ({self.status})"

    @property
    def origin(self):
        """
        Return the order's origin variant.

        Returns:
            GigOrigin or RequestOrigin
        """
        if self.gig_id is not None:
            return GigOrigin(gig_id=self.gig_id, package_id=self.package_id)
        return RequestOrigin(request_id=self.request_id, quote_id=self.quote_id)

    def is_gig_order(self):
        return isinstance(self.origin, GigOrigin)

    def is_party(self, user):
        return user is not None and user.pk in (self.client_id, self.fixer_id)

    @property
    def amount_due(self):
        """Amount the client still owes at final payment."""
        if self.down_payment_paid and self.down_payment_amount:
            return self.total_amount - self.down_payment_amount
        return self.total_amount

    def mediating_agent(self):
        """
        Return the agent who mediated this order, if any.

        The quote's agent takes precedence, then the service request's agent,
        then the gig's agent. Inactive agents earn nothing.
        """
        candidates = []
        if self.quote_id:
            candidates.append(self.quote.agent)
        if self.request_id:
            candidates.append(self.request.agent)
        if self.gig_id:
            candidates.append(self.gig.agent)
        for agent in candidates:
            if agent is not None and agent.is_active:
                return agent
        return None

    def can_transition_to(self, new_status):
        """
        Validate if order can transition to new status.

        Args:
            new_status: Target status to transition to

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        current_status = self.status
        if current_status == new_status:
            return True, None
        if current_status == self.STATUS_CANCELLED:
            return False, 'Cannot modify a cancelled order.'
        if new_status not in self.VALID_TRANSITIONS.get(current_status, []):
            return False, f'Invalid status transition from {current_status} to {new_status}.'
        return True, None

    def clean(self):
        """
        Validate origin, money split and immutability of financial terms.

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        has_request = self.request_id is not None or self.quote_id is not None
        has_gig = self.gig_id is not None or self.package_id is not None
        if has_request == has_gig:
            raise ValidationError(
                _('An order must originate from exactly one of a quote or a gig package.')
            )

        if None not in (self.total_amount, self.platform_fee, self.fixer_amount):
            if self.fixer_amount + self.platform_fee != self.total_amount:
                raise ValidationError({
                    'fixer_amount': _('Fixer amount and platform fee must add up to the total.')
                })

        if self.client_id and self.client_id == self.fixer_id:
            raise ValidationError({
                'client': _('A fixer cannot order their own work.')
            })

        if self.pk is not None:
            old_instance = Order.objects.filter(pk=self.pk).first()
            if old_instance is not None:
                changed = [
                    name for name in self.IMMUTABLE_FIELDS
                    if getattr(old_instance, name) != getattr(self, name)
                ]
                if changed:
                    raise ValidationError(
                        _('Financial terms and origin of an order cannot change: %(fields)s'),
                        params={'fields': ', '.join(changed)}
                    )

    def save(self, *args, **kwargs):
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)


class Payment(models.Model):
    """
    The client's payment for an order, held in escrow until settlement.

    Status only moves forward: PENDING -> HELD_IN_ESCROW -> RELEASED.
    ``amount`` is the total captured so far (down payment plus final payment).
    """

    STATUS_PENDING = 'PENDING'
    STATUS_HELD_IN_ESCROW = 'HELD_IN_ESCROW'
    STATUS_RELEASED = 'RELEASED'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_HELD_IN_ESCROW, 'Held in escrow'),
        (STATUS_RELEASED, 'Released'),
    ]

    VALID_TRANSITIONS = {
        STATUS_PENDING: [STATUS_HELD_IN_ESCROW],
        STATUS_HELD_IN_ESCROW: [STATUS_RELEASED],
        STATUS_RELEASED: [],  # Terminal state
    }

    PROVIDER_STRIPE = 'STRIPE'
    PROVIDER_PAYSTACK = 'PAYSTACK'

    PROVIDER_CHOICES = [
        (PROVIDER_STRIPE, 'Stripe'),
        (PROVIDER_PAYSTACK, 'Paystack'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.OneToOneField(
        Order,
        on_delete=models.PROTECT,
        related_name='payment'
    )
    provider = models.CharField(
        _('provider'),
        max_length=20,
        choices=PROVIDER_CHOICES
    )
    reference = models.CharField(
        _('reference'),
        max_length=255,
        help_text=_('Gateway reference of the latest capture')
    )
    down_payment_reference = models.CharField(
        _('down payment reference'),
        max_length=255,
        blank=True,
        default='',
        help_text=_('Gateway reference of the down payment capture')
    )
    amount = money_field(
        _('amount'),
        _('Total captured for the order'),
        validators=[MinValueValidator(ZERO)]
    )
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )
    paid_at = models.DateTimeField(_('paid at'), null=True, blank=True)
    released_at = models.DateTimeField(_('released at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('payment')
        verbose_name_plural = _('payments')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['reference'], name='payment_reference_idx'),
            models.Index(fields=['status'], name='payment_status_idx'),
        ]

    def __str__(self):
        return f"Payment {self.reference} ({self.status})"

    def can_transition_to(self, new_status):
        return new_status == self.status or new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def clean(self):
        super().clean()
        if self.pk is not None:
            old_instance = Payment.objects.filter(pk=self.pk).first()
            if old_instance is not None and not old_instance.can_transition_to(self.status):
                raise ValidationError({
                    'status': _(
                        f'Invalid payment status transition from {old_instance.status} to {self.status}.'
                    )
                })

    def save(self, *args, **kwargs):
        self.full_clean(validate_constraints=False)
        super().save(*args, **kwargs)


# ============================================================================
# Escrow Ledger
# ============================================================================

class Purse(models.Model):
    """
    Running balances for one user, or for the platform itself.

    Balances are changed only through ``core.ledger.credit_purse`` using
    F() increments. All four balances are kept non-negative by check
    constraints, so a debit that would overdraw a purse aborts its transaction.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.OneToOneField(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='purse'
    )
    is_platform = models.BooleanField(_('platform purse'), default=False)

    available_balance = money_field(_('available balance'), _('Withdrawable funds'), default=ZERO)
    pending_balance = money_field(_('pending balance'), _('Funds held in escrow'), default=ZERO)
    commission_balance = money_field(
        _('commission balance'),
        _('Platform fees held, or agent commission earned'),
        default=ZERO
    )
    total_revenue = money_field(_('total revenue'), _('Lifetime earnings'), default=ZERO)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    BALANCE_FIELDS = ('available_balance', 'pending_balance', 'commission_balance', 'total_revenue')

    class Meta:
        verbose_name = _('purse')
        verbose_name_plural = _('purses')
        constraints = [
            models.CheckConstraint(condition=Q(available_balance__gte=0), name='purse_available_non_negative'),
            models.CheckConstraint(condition=Q(pending_balance__gte=0), name='purse_pending_non_negative'),
            models.CheckConstraint(condition=Q(commission_balance__gte=0), name='purse_commission_non_negative'),
            models.CheckConstraint(condition=Q(total_revenue__gte=0), name='purse_revenue_non_negative'),
            models.CheckConstraint(
                condition=Q(is_platform=True, user__isnull=True) | Q(is_platform=False, user__isnull=False),
                name='purse_owner_or_platform'
            ),
            models.UniqueConstraint(
                fields=['is_platform'],
                condition=Q(is_platform=True),
                name='single_platform_purse'
            ),
        ]

    def __str__(self):
        return 'Platform purse' if self.is_platform else f"Purse of {self.user}"


class PurseTransaction(models.Model):
    """
    One ledger line: the deltas applied to a purse by a single movement.

    A purse's balances always equal the sum of its lines. Each kind of movement
    happens at most once per (purse, order).
    """

    ENTRY_DOWN_PAYMENT_HOLD = 'DOWN_PAYMENT_HOLD'
    ENTRY_ESCROW_HOLD = 'ESCROW_HOLD'
    ENTRY_ESCROW_RELEASE = 'ESCROW_RELEASE'
    ENTRY_PAYOUT = 'PAYOUT'
    ENTRY_REFUND = 'REFUND'
    ENTRY_AGENT_COMMISSION = 'AGENT_COMMISSION'
    ENTRY_BONUS_FUNDING = 'BONUS_FUNDING'
    ENTRY_FIXER_BONUS = 'FIXER_BONUS'
    ENTRY_COMMISSION_WITHDRAWAL = 'COMMISSION_WITHDRAWAL'
    ENTRY_ADJUSTMENT = 'ADJUSTMENT'

    ENTRY_TYPE_CHOICES = [
        (ENTRY_DOWN_PAYMENT_HOLD, 'Down payment held in escrow'),
        (ENTRY_ESCROW_HOLD, 'Payment held in escrow'),
        (ENTRY_ESCROW_RELEASE, 'Escrow released, fee kept'),
        (ENTRY_PAYOUT, 'Payout to fixer'),
        (ENTRY_REFUND, 'Refund to client'),
        (ENTRY_AGENT_COMMISSION, 'Agent commission'),
        (ENTRY_BONUS_FUNDING, 'Bonus funded by platform'),
        (ENTRY_FIXER_BONUS, 'Fixer bonus to agent'),
        (ENTRY_COMMISSION_WITHDRAWAL, 'Commission withdrawal'),
        (ENTRY_ADJUSTMENT, 'Manual adjustment'),
    ]

    HOLD_ENTRIES = (ENTRY_DOWN_PAYMENT_HOLD, ENTRY_ESCROW_HOLD)
    RELEASE_ENTRIES = (ENTRY_PAYOUT, ENTRY_REFUND)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    purse = models.ForeignKey(
        Purse,
        on_delete=models.PROTECT,
        related_name='entries'
    )
    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='ledger_entries'
    )
    entry_type = models.CharField(
        _('entry type'),
        max_length=30,
        choices=ENTRY_TYPE_CHOICES
    )
    available_delta = money_field(_('available delta'), _('Change to available balance'), default=ZERO)
    pending_delta = money_field(_('pending delta'), _('Change to pending balance'), default=ZERO)
    commission_delta = money_field(_('commission delta'), _('Change to commission balance'), default=ZERO)
    revenue_delta = money_field(_('revenue delta'), _('Change to total revenue'), default=ZERO)
    memo = models.CharField(_('memo'), max_length=255, blank=True, default='')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('purse transaction')
        verbose_name_plural = _('purse transactions')
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['entry_type'], name='ledger_entry_type_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['purse', 'order', 'entry_type'],
                name='unique_ledger_entry_per_order'
            )
        ]

    def __str__(self):
        return f"{self.entry_type} on {self.purse}"


class AgentCommission(models.Model):
    """
    Money owed to an agent: a commission on a mediated order, or a bonus for a
    managed fixer's first order.

    At most one ORDER_COMMISSION per order and one FIXER_BONUS per agent-fixer
    link (unique one-to-one columns).
    """

    TYPE_ORDER_COMMISSION = 'ORDER_COMMISSION'
    TYPE_FIXER_BONUS = 'FIXER_BONUS'

    TYPE_CHOICES = [
        (TYPE_ORDER_COMMISSION, 'Order commission'),
        (TYPE_FIXER_BONUS, 'Fixer bonus'),
    ]

    STATUS_PENDING = 'PENDING'
    STATUS_PAID = 'PAID'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    agent = models.ForeignKey(
        Agent,
        on_delete=models.PROTECT,
        related_name='commissions'
    )
    order = models.OneToOneField(
        Order,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='agent_commission'
    )
    agent_fixer = models.OneToOneField(
        AgentFixer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='bonus_commission'
    )
    commission_type = models.CharField(
        _('type'),
        max_length=20,
        choices=TYPE_CHOICES,
        default=TYPE_ORDER_COMMISSION
    )
    amount = money_field(_('amount'), _('Commission amount'), validators=[MinValueValidator(ZERO)])
    percentage = models.DecimalField(
        _('percentage'),
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True
    )
    order_amount = money_field(_('order amount'), _('Commission base'), null=True, blank=True)
    status = models.CharField(
        _('status'),
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )
    paid_at = models.DateTimeField(_('paid at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('agent commission')
        verbose_name_plural = _('agent commissions')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['agent', 'status'], name='commission_agent_status_idx'),
        ]

    def __str__(self):
        return f"{self.commission_type} {self.amount} for {self.agent}"


# ============================================================================
# Disputes
# ============================================================================

class Dispute(models.Model):
    """
    A complaint raised by the client or fixer of an order.

    Status flow: OPEN -> UNDER_REVIEW / ESCALATED -> RESOLVED / CLOSED.
    While a dispute is active the order sits in DISPUTED and only admin
    resolution moves it on. At most one active dispute exists per order.
    """

    STATUS_OPEN = 'OPEN'
    STATUS_UNDER_REVIEW = 'UNDER_REVIEW'
    STATUS_ESCALATED = 'ESCALATED'
    STATUS_RESOLVED = 'RESOLVED'
    STATUS_CLOSED = 'CLOSED'

    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open'),
        (STATUS_UNDER_REVIEW, 'Under review'),
        (STATUS_ESCALATED, 'Escalated'),
        (STATUS_RESOLVED, 'Resolved'),
        (STATUS_CLOSED, 'Closed'),
    ]

    ACTIVE_STATUSES = (STATUS_OPEN, STATUS_UNDER_REVIEW, STATUS_ESCALATED)
    TERMINAL_STATUSES = (STATUS_RESOLVED, STATUS_CLOSED)

    VALID_TRANSITIONS = {
        STATUS_OPEN: [STATUS_UNDER_REVIEW, STATUS_ESCALATED, STATUS_RESOLVED, STATUS_CLOSED],
        STATUS_UNDER_REVIEW: [STATUS_ESCALATED, STATUS_RESOLVED, STATUS_CLOSED],
        STATUS_ESCALATED: [STATUS_RESOLVED, STATUS_CLOSED],
        STATUS_RESOLVED: [],
        STATUS_CLOSED: [],
    }

    REASON_CHOICES = [
        ('QUALITY_ISSUE', 'Quality issue'),
        ('INCOMPLETE_WORK', 'Incomplete work'),
        ('OVERCHARGING', 'Overcharging'),
        ('PAYMENT_DISPUTE', 'Payment dispute'),
        ('TIMELINE_ISSUE', 'Timeline issue'),
        ('COMMUNICATION_ISSUE', 'Communication issue'),
        ('SCOPE_DISAGREEMENT', 'Scope disagreement'),
        ('OTHER', 'Other'),
    ]

    RELEASE_TO_CLIENT = 'CLIENT'
    RELEASE_TO_FIXER = 'FIXER'

    RELEASE_TO_CHOICES = [
        (RELEASE_TO_CLIENT, 'Client'),
        (RELEASE_TO_FIXER, 'Fixer'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name='disputes'
    )
    initiated_by = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='disputes_filed'
    )
    reason = models.CharField(_('reason'), max_length=30, choices=REASON_CHOICES)
    description = models.TextField(_('description'))
    evidence = models.JSONField(_('evidence'), default=list, blank=True)
    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_OPEN
    )
    order_status_before = models.CharField(
        _('order status before dispute'),
        max_length=20,
        choices=Order.STATUS_CHOICES
    )
    resolution = models.TextField(_('resolution'), blank=True, default='')
    release_to = models.CharField(
        _('release to'),
        max_length=10,
        choices=RELEASE_TO_CHOICES,
        blank=True,
        default=''
    )
    refund_amount = money_field(
        _('refund amount'),
        _('Amount returned to the client'),
        null=True,
        blank=True
    )
    released_amount = money_field(
        _('released amount'),
        _('Amount paid out to the fixer'),
        null=True,
        blank=True
    )
    resolved_by = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='disputes_resolved'
    )
    resolved_at = models.DateTimeField(_('resolved at'), null=True, blank=True)
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('dispute')
        verbose_name_plural = _('disputes')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='dispute_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['order'],
                condition=Q(status__in=['OPEN', 'UNDER_REVIEW', 'ESCALATED']),
                name='single_active_dispute_per_order'
            )
        ]

    def __str__(self):
        return f"Dispute on order {self.order_id} ({self.status})"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    def can_transition_to(self, new_status):
        """
        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        if self.status in self.TERMINAL_STATUSES:
            return False, f'Dispute is already {self.status}.'
        if new_status not in self.VALID_TRANSITIONS.get(self.status, []):
            return False, f'Invalid dispute transition from {self.status} to {new_status}.'
        return True, None


class DisputeMessage(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    dispute = models.ForeignKey(
        Dispute,
        on_delete=models.CASCADE,
        related_name='messages'
    )
    sender = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='dispute_messages'
    )
    message = models.TextField(_('message'))
    is_admin_note = models.BooleanField(
        _('admin note'),
        default=False,
        help_text=_('Visible to admins only')
    )
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('dispute message')
        verbose_name_plural = _('dispute messages')
        ordering = ['created_at']

    def __str__(self):
        return f"Message by {self.sender} on {self.dispute_id}"


# ============================================================================
# Notification Outbox
# ============================================================================

class OutboxEvent(models.Model):
    """
    A notification written inside a core transaction and delivered later.

    The dispatcher (``core.notifications.dispatch_outbox``) sends pending
    events and records attempts; delivery never touches core records.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    recipient = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='outbox_events'
    )
    event_type = models.CharField(_('event type'), max_length=50)
    title = models.CharField(_('title'), max_length=200)
    message = models.TextField(_('message'))
    link = models.CharField(_('link'), max_length=255, blank=True, default='')
    payload = models.JSONField(_('payload'), default=dict, blank=True)
    is_read = models.BooleanField(_('read'), default=False)
    dispatched_at = models.DateTimeField(_('dispatched at'), null=True, blank=True)
    attempts = models.PositiveIntegerField(_('attempts'), default=0)
    last_error = models.TextField(_('last error'), blank=True, default='')
    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('outbox event')
        verbose_name_plural = _('outbox events')
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['dispatched_at', 'created_at'], name='outbox_pending_idx'),
            models.Index(fields=['recipient', 'is_read'], name='outbox_recipient_read_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} -> {self.recipient}"
