import uuid
from decimal import Decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import core.validators


def money(verbose_name, help_text, **kwargs):
    kwargs.setdefault('max_digits', 14)
    kwargs.setdefault('decimal_places', 2)
    return models.DecimalField(verbose_name=verbose_name, help_text=help_text, **kwargs)


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Enter a valid email address.', max_length=254, unique=True, verbose_name='email address')),
                ('phone_number', models.CharField(blank=True, default='', help_text='Optional. Enter phone number in local or international format.', max_length=20, validators=[core.validators.validate_phone_number], verbose_name='phone number')),
                ('roles', models.JSONField(blank=True, default=list, help_text='Marketplace roles held by this user.', validators=[core.validators.validate_roles], verbose_name='roles')),
                ('created_at', models.DateTimeField(auto_now_add=True, help_text='Timestamp when the account was created.', verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, help_text='Timestamp when the account was last updated.', verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['email'], name='user_email_idx')],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),

        # Taxonomy
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True, verbose_name='name')),
                ('slug', models.SlugField(max_length=120, unique=True, verbose_name='slug')),
            ],
            options={
                'verbose_name': 'category',
                'verbose_name_plural': 'categories',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Subcategory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, verbose_name='name')),
                ('category', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subcategories', to='core.category')),
            ],
            options={
                'verbose_name': 'subcategory',
                'verbose_name_plural': 'subcategories',
                'ordering': ['category__name', 'name'],
                'constraints': [models.UniqueConstraint(fields=('category', 'name'), name='unique_subcategory_per_category')],
            },
        ),
        migrations.CreateModel(
            name='Neighborhood',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, verbose_name='name')),
                ('city', models.CharField(max_length=100, verbose_name='city')),
                ('state', models.CharField(max_length=100, verbose_name='state')),
            ],
            options={
                'verbose_name': 'neighborhood',
                'verbose_name_plural': 'neighborhoods',
                'ordering': ['state', 'city', 'name'],
                'constraints': [models.UniqueConstraint(fields=('name', 'city', 'state'), name='unique_neighborhood')],
            },
        ),
        migrations.CreateModel(
            name='FixerService',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('is_active', models.BooleanField(default=True, verbose_name='active')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('fixer', models.ForeignKey(help_text='Fixer offering the service', on_delete=django.db.models.deletion.CASCADE, related_name='fixer_services', to=settings.AUTH_USER_MODEL)),
                ('subcategory', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='fixer_services', to='core.subcategory')),
                ('neighborhoods', models.ManyToManyField(blank=True, related_name='fixer_services', to='core.neighborhood')),
            ],
            options={
                'verbose_name': 'fixer service',
                'verbose_name_plural': 'fixer services',
                'constraints': [models.UniqueConstraint(fields=('fixer', 'subcategory'), name='unique_fixer_service_per_subcategory')],
            },
        ),

        # Agents
        migrations.CreateModel(
            name='Agent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('commission_percentage', models.DecimalField(decimal_places=2, default=Decimal('10.00'), help_text='Percentage of the commission base paid to the agent.', max_digits=5, validators=[core.validators.validate_percentage], verbose_name='commission percentage')),
                ('fixer_bonus_enabled', models.BooleanField(default=True, help_text='Pay a bonus when a managed fixer completes their first order.', verbose_name='fixer bonus enabled')),
                ('total_fixers_managed', models.PositiveIntegerField(default=0, help_text='Maintained by signals on AgentFixer.', verbose_name='total fixers managed')),
                ('is_active', models.BooleanField(default=True, verbose_name='active')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('user', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='agent_profile', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'agent',
                'verbose_name_plural': 'agents',
                'ordering': ['-created_at'],
            },
        ),

        # Requests, gigs and quotes
        migrations.CreateModel(
            name='ServiceRequest',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=200, verbose_name='title')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('status', models.CharField(choices=[('OPEN', 'Open'), ('APPROVED', 'Approved'), ('QUOTED', 'Quoted'), ('ACCEPTED', 'Accepted'), ('IN_PROGRESS', 'In progress'), ('COMPLETED', 'Completed'), ('CANCELLED', 'Cancelled')], default='OPEN', max_length=20, verbose_name='status')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('agent', models.ForeignKey(blank=True, help_text='Agent who posted or manages this request', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='service_requests', to='core.agent')),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='service_requests', to=settings.AUTH_USER_MODEL)),
                ('neighborhood', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='service_requests', to='core.neighborhood')),
                ('subcategory', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='service_requests', to='core.subcategory')),
            ],
            options={
                'verbose_name': 'service request',
                'verbose_name_plural': 'service requests',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='request_status_idx'),
                    models.Index(fields=['client'], name='request_client_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Gig',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=200, verbose_name='title')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('status', models.CharField(choices=[('DRAFT', 'Draft'), ('ACTIVE', 'Active'), ('PAUSED', 'Paused')], default='DRAFT', max_length=10, verbose_name='status')),
                ('orders_count', models.PositiveIntegerField(default=0, verbose_name='orders count')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('agent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='gigs', to='core.agent')),
                ('fixer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='gigs', to=settings.AUTH_USER_MODEL)),
                ('subcategory', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='gigs', to='core.subcategory')),
            ],
            options={
                'verbose_name': 'gig',
                'verbose_name_plural': 'gigs',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='GigPackage',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100, verbose_name='name')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('price', money('price', 'Package price', validators=[core.validators.validate_positive_amount])),
                ('delivery_days', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='delivery days')),
                ('revisions', models.PositiveIntegerField(default=0, verbose_name='revisions')),
                ('gig', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='packages', to='core.gig')),
            ],
            options={
                'verbose_name': 'gig package',
                'verbose_name_plural': 'gig packages',
                'ordering': ['price'],
            },
        ),
        migrations.CreateModel(
            name='Quote',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('quote_type', models.CharField(choices=[('DIRECT', 'Direct'), ('INSPECTION_REQUIRED', 'Inspection required')], default='DIRECT', max_length=20, verbose_name='quote type')),
                ('inspection_fee', money('inspection fee', 'Fee charged for the inspection visit', blank=True, null=True)),
                ('inspection_fee_paid', models.BooleanField(default=False, verbose_name='inspection fee paid')),
                ('inspection_payment_reference', models.CharField(blank=True, default='', max_length=255, verbose_name='inspection payment reference')),
                ('labor_cost', money('labor cost', 'Labor cost', default=Decimal('0.00'))),
                ('material_cost', money('material cost', 'Material cost', default=Decimal('0.00'))),
                ('other_costs', money('other costs', 'Other costs', default=Decimal('0.00'))),
                ('total_amount', money('total amount', 'Quoted total', default=Decimal('0.00'))),
                ('estimated_duration', models.CharField(blank=True, default='', max_length=100, verbose_name='estimated duration')),
                ('notes', models.TextField(blank=True, default='', verbose_name='notes')),
                ('requires_down_payment', models.BooleanField(default=False, verbose_name='requires down payment')),
                ('down_payment_percentage', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True, validators=[core.validators.validate_percentage], verbose_name='down payment percentage')),
                ('down_payment_amount', money('down payment amount', 'Amount payable before work starts', blank=True, null=True)),
                ('down_payment_reason', models.TextField(blank=True, default='', verbose_name='down payment reason')),
                ('is_accepted', models.BooleanField(default=False, verbose_name='accepted')),
                ('accepted_at', models.DateTimeField(blank=True, null=True, verbose_name='accepted at')),
                ('is_revised', models.BooleanField(default=False, verbose_name='revised')),
                ('revised_at', models.DateTimeField(blank=True, null=True, verbose_name='revised at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('agent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='quotes', to='core.agent')),
                ('fixer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='quotes', to=settings.AUTH_USER_MODEL)),
                ('request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='quotes', to='core.servicerequest')),
            ],
            options={
                'verbose_name': 'quote',
                'verbose_name_plural': 'quotes',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['fixer'], name='quote_fixer_idx'),
                    models.Index(fields=['is_accepted'], name='quote_accepted_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('request', 'fixer'), name='unique_quote_per_request_fixer'),
                    models.CheckConstraint(
                        condition=(
                            models.Q(quote_type='DIRECT', total_amount__gt=0)
                            | models.Q(quote_type='INSPECTION_REQUIRED', is_revised=False, total_amount=0)
                            | models.Q(quote_type='INSPECTION_REQUIRED', is_revised=True, total_amount__gte=models.F('inspection_fee'))
                        ),
                        name='quote_total_matches_type',
                    ),
                ],
            },
        ),

        # Orders
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('total_amount', money('total amount', 'Amount payable by the client', validators=[core.validators.validate_positive_amount])),
                ('platform_fee', money('platform fee', 'Platform share of the total', validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('fixer_amount', money('fixer amount', 'Fixer share of the total', validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('IN_PROGRESS', 'In progress'), ('COMPLETED', 'Completed'), ('PAID', 'Paid'), ('SETTLED', 'Settled'), ('DISPUTED', 'Disputed'), ('CANCELLED', 'Cancelled')], default='PENDING', max_length=20, verbose_name='status')),
                ('down_payment_required', models.BooleanField(default=False, verbose_name='down payment required')),
                ('down_payment_amount', money('down payment amount', 'Down payment agreed on the quote', blank=True, null=True)),
                ('down_payment_paid', models.BooleanField(default=False, verbose_name='down payment paid')),
                ('requirements', models.TextField(blank=True, default='', verbose_name='requirements')),
                ('delivery_date', models.DateTimeField(blank=True, null=True, verbose_name='delivery date')),
                ('delivery_note', models.TextField(blank=True, default='', verbose_name='delivery note')),
                ('revision_note', models.TextField(blank=True, default='', verbose_name='revision note')),
                ('revisions_allowed', models.PositiveIntegerField(default=0, verbose_name='revisions allowed')),
                ('revisions_used', models.PositiveIntegerField(default=0, verbose_name='revisions used')),
                ('cancellation_reason', models.TextField(blank=True, default='', verbose_name='cancellation reason')),
                ('rating', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1, message='Rating must be at least 1.'), django.core.validators.MaxValueValidator(5, message='Rating cannot exceed 5.')], verbose_name='rating')),
                ('review_comment', models.TextField(blank=True, default='', verbose_name='review comment')),
                ('reviewed_at', models.DateTimeField(blank=True, null=True, verbose_name='reviewed at')),
                ('started_at', models.DateTimeField(blank=True, null=True, verbose_name='started at')),
                ('delivered_at', models.DateTimeField(blank=True, null=True, verbose_name='delivered at')),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='completed at')),
                ('paid_at', models.DateTimeField(blank=True, null=True, verbose_name='paid at')),
                ('settled_at', models.DateTimeField(blank=True, null=True, verbose_name='settled at')),
                ('cancelled_at', models.DateTimeField(blank=True, null=True, verbose_name='cancelled at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('client', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='client_orders', to=settings.AUTH_USER_MODEL)),
                ('fixer', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='fixer_orders', to=settings.AUTH_USER_MODEL)),
                ('gig', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='core.gig')),
                ('package', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='core.gigpackage')),
                ('quote', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='order', to='core.quote')),
                ('request', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='orders', to='core.servicerequest')),
            ],
            options={
                'verbose_name': 'order',
                'verbose_name_plural': 'orders',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['client'], name='order_client_idx'),
                    models.Index(fields=['fixer'], name='order_fixer_idx'),
                    models.Index(fields=['status'], name='order_status_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(request__isnull=False, quote__isnull=False, gig__isnull=True, package__isnull=True)
                            | models.Q(request__isnull=True, quote__isnull=True, gig__isnull=False, package__isnull=False)
                        ),
                        name='order_single_origin',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(total_amount=models.F('fixer_amount') + models.F('platform_fee')),
                        name='order_amount_split',
                    ),
                    models.CheckConstraint(
                        condition=models.Q(platform_fee__gte=0, fixer_amount__gte=0),
                        name='order_shares_non_negative',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='AgentFixer',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('bonus_paid', models.BooleanField(default=False, verbose_name='bonus paid')),
                ('bonus_amount', money('bonus amount', 'Bonus paid to the agent for this fixer', blank=True, null=True)),
                ('bonus_paid_at', models.DateTimeField(blank=True, null=True, verbose_name='bonus paid at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('agent', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='managed_fixers', to='core.agent')),
                ('fixer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='agent_links', to=settings.AUTH_USER_MODEL)),
                ('first_order', models.ForeignKey(blank=True, help_text='Order that triggered the bonus', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='core.order')),
            ],
            options={
                'verbose_name': 'agent fixer',
                'verbose_name_plural': 'agent fixers',
                'constraints': [models.UniqueConstraint(fields=('agent', 'fixer'), name='unique_agent_fixer')],
            },
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('provider', models.CharField(choices=[('STRIPE', 'Stripe'), ('PAYSTACK', 'Paystack')], max_length=20, verbose_name='provider')),
                ('reference', models.CharField(help_text='Gateway reference of the latest capture', max_length=255, verbose_name='reference')),
                ('down_payment_reference', models.CharField(blank=True, default='', help_text='Gateway reference of the down payment capture', max_length=255, verbose_name='down payment reference')),
                ('amount', money('amount', 'Total captured for the order', validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('HELD_IN_ESCROW', 'Held in escrow'), ('RELEASED', 'Released')], default='PENDING', max_length=20, verbose_name='status')),
                ('paid_at', models.DateTimeField(blank=True, null=True, verbose_name='paid at')),
                ('released_at', models.DateTimeField(blank=True, null=True, verbose_name='released at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='payment', to='core.order')),
            ],
            options={
                'verbose_name': 'payment',
                'verbose_name_plural': 'payments',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['reference'], name='payment_reference_idx'),
                    models.Index(fields=['status'], name='payment_status_idx'),
                ],
            },
        ),

        # Escrow ledger
        migrations.CreateModel(
            name='Purse',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_platform', models.BooleanField(default=False, verbose_name='platform purse')),
                ('available_balance', money('available balance', 'Withdrawable funds', default=Decimal('0.00'))),
                ('pending_balance', money('pending balance', 'Funds held in escrow', default=Decimal('0.00'))),
                ('commission_balance', money('commission balance', 'Platform fees held, or agent commission earned', default=Decimal('0.00'))),
                ('total_revenue', money('total revenue', 'Lifetime earnings', default=Decimal('0.00'))),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('user', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='purse', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'purse',
                'verbose_name_plural': 'purses',
                'constraints': [
                    models.CheckConstraint(condition=models.Q(available_balance__gte=0), name='purse_available_non_negative'),
                    models.CheckConstraint(condition=models.Q(pending_balance__gte=0), name='purse_pending_non_negative'),
                    models.CheckConstraint(condition=models.Q(commission_balance__gte=0), name='purse_commission_non_negative'),
                    models.CheckConstraint(condition=models.Q(total_revenue__gte=0), name='purse_revenue_non_negative'),
                    models.CheckConstraint(
                        condition=models.Q(is_platform=True, user__isnull=True) | models.Q(is_platform=False, user__isnull=False),
                        name='purse_owner_or_platform',
                    ),
                    models.UniqueConstraint(condition=models.Q(is_platform=True), fields=('is_platform',), name='single_platform_purse'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PurseTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('entry_type', models.CharField(choices=[('DOWN_PAYMENT_HOLD', 'Down payment held in escrow'), ('ESCROW_HOLD', 'Payment held in escrow'), ('ESCROW_RELEASE', 'Escrow released, fee kept'), ('PAYOUT', 'Payout to fixer'), ('REFUND', 'Refund to client'), ('AGENT_COMMISSION', 'Agent commission'), ('BONUS_FUNDING', 'Bonus funded by platform'), ('FIXER_BONUS', 'Fixer bonus to agent'), ('COMMISSION_WITHDRAWAL', 'Commission withdrawal'), ('ADJUSTMENT', 'Manual adjustment')], max_length=30, verbose_name='entry type')),
                ('available_delta', money('available delta', 'Change to available balance', default=Decimal('0.00'))),
                ('pending_delta', money('pending delta', 'Change to pending balance', default=Decimal('0.00'))),
                ('commission_delta', money('commission delta', 'Change to commission balance', default=Decimal('0.00'))),
                ('revenue_delta', money('revenue delta', 'Change to total revenue', default=Decimal('0.00'))),
                ('memo', models.CharField(blank=True, default='', max_length=255, verbose_name='memo')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('order', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='ledger_entries', to='core.order')),
                ('purse', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='entries', to='core.purse')),
            ],
            options={
                'verbose_name': 'purse transaction',
                'verbose_name_plural': 'purse transactions',
                'ordering': ['created_at'],
                'indexes': [models.Index(fields=['entry_type'], name='ledger_entry_type_idx')],
                'constraints': [models.UniqueConstraint(fields=('purse', 'order', 'entry_type'), name='unique_ledger_entry_per_order')],
            },
        ),
        migrations.CreateModel(
            name='AgentCommission',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('commission_type', models.CharField(choices=[('ORDER_COMMISSION', 'Order commission'), ('FIXER_BONUS', 'Fixer bonus')], default='ORDER_COMMISSION', max_length=20, verbose_name='type')),
                ('amount', money('amount', 'Commission amount', validators=[django.core.validators.MinValueValidator(Decimal('0.00'))])),
                ('percentage', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True, verbose_name='percentage')),
                ('order_amount', money('order amount', 'Commission base', blank=True, null=True)),
                ('status', models.CharField(choices=[('PENDING', 'Pending'), ('PAID', 'Paid')], default='PENDING', max_length=10, verbose_name='status')),
                ('paid_at', models.DateTimeField(blank=True, null=True, verbose_name='paid at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('agent', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='commissions', to='core.agent')),
                ('agent_fixer', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='bonus_commission', to='core.agentfixer')),
                ('order', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='agent_commission', to='core.order')),
            ],
            options={
                'verbose_name': 'agent commission',
                'verbose_name_plural': 'agent commissions',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['agent', 'status'], name='commission_agent_status_idx')],
            },
        ),

        # Disputes
        migrations.CreateModel(
            name='Dispute',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('reason', models.CharField(choices=[('QUALITY_ISSUE', 'Quality issue'), ('INCOMPLETE_WORK', 'Incomplete work'), ('OVERCHARGING', 'Overcharging'), ('PAYMENT_DISPUTE', 'Payment dispute'), ('TIMELINE_ISSUE', 'Timeline issue'), ('COMMUNICATION_ISSUE', 'Communication issue'), ('SCOPE_DISAGREEMENT', 'Scope disagreement'), ('OTHER', 'Other')], max_length=30, verbose_name='reason')),
                ('description', models.TextField(verbose_name='description')),
                ('evidence', models.JSONField(blank=True, default=list, verbose_name='evidence')),
                ('status', models.CharField(choices=[('OPEN', 'Open'), ('UNDER_REVIEW', 'Under review'), ('ESCALATED', 'Escalated'), ('RESOLVED', 'Resolved'), ('CLOSED', 'Closed')], default='OPEN', max_length=20, verbose_name='status')),
                ('order_status_before', models.CharField(choices=[('PENDING', 'Pending'), ('IN_PROGRESS', 'In progress'), ('COMPLETED', 'Completed'), ('PAID', 'Paid'), ('SETTLED', 'Settled'), ('DISPUTED', 'Disputed'), ('CANCELLED', 'Cancelled')], max_length=20, verbose_name='order status before dispute')),
                ('resolution', models.TextField(blank=True, default='', verbose_name='resolution')),
                ('release_to', models.CharField(blank=True, choices=[('CLIENT', 'Client'), ('FIXER', 'Fixer')], default='', max_length=10, verbose_name='release to')),
                ('refund_amount', money('refund amount', 'Amount returned to the client', blank=True, null=True)),
                ('released_amount', money('released amount', 'Amount paid out to the fixer', blank=True, null=True)),
                ('resolved_at', models.DateTimeField(blank=True, null=True, verbose_name='resolved at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('initiated_by', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='disputes_filed', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='disputes', to='core.order')),
                ('resolved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='disputes_resolved', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'dispute',
                'verbose_name_plural': 'disputes',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status'], name='dispute_status_idx')],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(status__in=['OPEN', 'UNDER_REVIEW', 'ESCALATED']),
                        fields=('order',),
                        name='single_active_dispute_per_order',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='DisputeMessage',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('message', models.TextField(verbose_name='message')),
                ('is_admin_note', models.BooleanField(default=False, help_text='Visible to admins only', verbose_name='admin note')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('dispute', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='core.dispute')),
                ('sender', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='dispute_messages', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'dispute message',
                'verbose_name_plural': 'dispute messages',
                'ordering': ['created_at'],
            },
        ),

        # Notification outbox
        migrations.CreateModel(
            name='OutboxEvent',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('event_type', models.CharField(max_length=50, verbose_name='event type')),
                ('title', models.CharField(max_length=200, verbose_name='title')),
                ('message', models.TextField(verbose_name='message')),
                ('link', models.CharField(blank=True, default='', max_length=255, verbose_name='link')),
                ('payload', models.JSONField(blank=True, default=dict, verbose_name='payload')),
                ('is_read', models.BooleanField(default=False, verbose_name='read')),
                ('dispatched_at', models.DateTimeField(blank=True, null=True, verbose_name='dispatched at')),
                ('attempts', models.PositiveIntegerField(default=0, verbose_name='attempts')),
                ('last_error', models.TextField(blank=True, default='', verbose_name='last error')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('recipient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='outbox_events', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'outbox event',
                'verbose_name_plural': 'outbox events',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['dispatched_at', 'created_at'], name='outbox_pending_idx'),
                    models.Index(fields=['recipient', 'is_read'], name='outbox_recipient_read_idx'),
                ],
            },
        ),
    ]
