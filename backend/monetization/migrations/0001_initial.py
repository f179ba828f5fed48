import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Wallet',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('balance', models.IntegerField(default=0, help_text='Total coins owned, including reserved coins')),
                ('held_balance', models.IntegerField(default=0, help_text='Coins reserved by pending holds', validators=[django.core.validators.MinValueValidator(0)])),
                ('last_reconciled_at', models.DateTimeField(blank=True, help_text='Last time the balance matched the transaction history', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.OneToOneField(help_text='Wallet owner', on_delete=django.db.models.deletion.CASCADE, related_name='wallet', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Wallet',
                'verbose_name_plural': 'Wallets',
                'db_table': 'monetization_wallet',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('held_balance__gte', 0)), name='wallet_held_balance_non_negative'),
                    models.CheckConstraint(condition=models.Q(('held_balance__lte', models.F('balance'))), name='wallet_available_balance_non_negative'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WalletTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.IntegerField(help_text='Signed coin amount; positive for credits, negative for debits')),
                ('type', models.CharField(choices=[('purchase', 'Purchase'), ('gift', 'Gift'), ('tip', 'Tip'), ('call_charge', 'Call charge'), ('call_earnings', 'Call earnings'), ('subscription_payment', 'Subscription payment'), ('subscription_earnings', 'Subscription earnings'), ('creator_payout', 'Creator payout'), ('refund', 'Refund'), ('adjustment', 'Adjustment')], help_text='Categorisation of the coin movement', max_length=32)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('failed', 'Failed')], default='completed', max_length=16)),
                ('idempotency_key', models.CharField(blank=True, help_text='Unique key to guarantee idempotent transaction writes', max_length=255, null=True)),
                ('description', models.TextField(blank=True, help_text='Optional human-readable context for the transaction')),
                ('metadata', models.JSONField(blank=True, default=dict, help_text='Typed metadata payload tagged with its ``kind``')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('related_transaction', models.ForeignKey(blank=True, help_text='Counterpart leg of a two-wallet transfer', null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='monetization.wallettransaction')),
                ('user', models.ForeignKey(help_text='Wallet owner affected by this transaction', on_delete=django.db.models.deletion.PROTECT, related_name='wallet_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Wallet transaction',
                'verbose_name_plural': 'Wallet transactions',
                'db_table': 'monetization_wallet_transaction',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', '-created_at'], name='wallet_tx_user_created_idx'),
                    models.Index(fields=['type', '-created_at'], name='wallet_tx_type_created_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('amount', 0), _negated=True), name='wallet_transaction_non_zero'),
                    models.UniqueConstraint(condition=models.Q(('idempotency_key__isnull', False)), fields=('idempotency_key',), name='unique_wallet_transaction_idempotency_key'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SpendHold',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ('purpose', models.CharField(choices=[('payout', 'Payout'), ('call', 'Call'), ('session', 'Session')], max_length=16)),
                ('related_id', models.CharField(blank=True, help_text='Identifier of the object the hold was taken for', max_length=64)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('settled', 'Settled'), ('released', 'Released')], default='pending', max_length=16)),
                ('settled_at', models.DateTimeField(blank=True, null=True)),
                ('released_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('settlement_transaction', models.ForeignKey(blank=True, help_text='Debit row written when the hold was settled', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='monetization.wallettransaction')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='spend_holds', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'monetization_spend_hold',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'status'], name='spend_hold_user_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='VirtualGift',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=64, unique=True)),
                ('emoji', models.CharField(blank=True, max_length=16)),
                ('coin_cost', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ('is_active', models.BooleanField(default=True)),
                ('display_order', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'monetization_virtual_gift',
                'ordering': ['display_order', 'coin_cost'],
            },
        ),
        migrations.CreateModel(
            name='LiveSession',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('title', models.CharField(blank=True, max_length=200)),
                ('status', models.CharField(choices=[('scheduled', 'Scheduled'), ('live', 'Live'), ('ended', 'Ended')], default='live', max_length=16)),
                ('featured_creator_commission', models.PositiveSmallIntegerField(default=0, help_text='Percent of guest-directed tips retained by the host', validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('total_gifts_received', models.PositiveIntegerField(default=0)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('host', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='hosted_sessions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'monetization_live_session',
                'ordering': ['-created_at'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('featured_creator_commission__gte', 0), ('featured_creator_commission__lte', 100)), name='live_session_commission_percent_range'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SessionFeaturedCreator',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('is_active', models.BooleanField(default=True)),
                ('tips_received', models.PositiveIntegerField(default=0)),
                ('gift_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('creator', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='featured_sessions', to=settings.AUTH_USER_MODEL)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='featured_creators', to='monetization.livesession')),
            ],
            options={
                'db_table': 'monetization_session_featured_creator',
                'constraints': [
                    models.UniqueConstraint(fields=('session', 'creator'), name='unique_session_featured_creator'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SessionGift',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('quantity', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ('total_coins', models.PositiveIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('debit_transaction', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='monetization.wallettransaction')),
                ('gift', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='+', to='monetization.virtualgift')),
                ('recipient', models.ForeignKey(help_text='Creator credited with the gift', on_delete=django.db.models.deletion.CASCADE, related_name='received_session_gifts', to=settings.AUTH_USER_MODEL)),
                ('sender', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sent_session_gifts', to=settings.AUTH_USER_MODEL)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='gifts', to='monetization.livesession')),
            ],
            options={
                'db_table': 'monetization_session_gift',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='SubscriptionTier',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tier', models.PositiveSmallIntegerField(choices=[(1, 'Basic'), (2, 'Bronze'), (3, 'Silver'), (4, 'Gold'), (5, 'Platinum')], default=1)),
                ('name', models.CharField(max_length=100)),
                ('description', models.TextField(blank=True)),
                ('price_per_month', models.PositiveIntegerField(help_text='Coins charged every billing period', validators=[django.core.validators.MinValueValidator(1)])),
                ('benefits', models.JSONField(blank=True, default=list)),
                ('is_active', models.BooleanField(default=True)),
                ('subscriber_count', models.PositiveIntegerField(default=0)),
                ('display_order', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('creator', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subscription_tiers', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'monetization_subscription_tier',
                'ordering': ['display_order', 'price_per_month'],
                'constraints': [
                    models.UniqueConstraint(fields=('creator', 'tier'), name='unique_creator_subscription_tier'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Subscription',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('status', models.CharField(choices=[('active', 'Active'), ('cancelled', 'Cancelled'), ('expired', 'Expired')], default='active', max_length=16)),
                ('started_at', models.DateTimeField()),
                ('expires_at', models.DateTimeField()),
                ('next_billing_at', models.DateTimeField(blank=True, null=True)),
                ('last_payment_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('auto_renew', models.BooleanField(default=True)),
                ('failed_payment_count', models.PositiveIntegerField(default=0)),
                ('total_paid', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('creator', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subscribers', to=settings.AUTH_USER_MODEL)),
                ('tier', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='subscriptions', to='monetization.subscriptiontier')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subscriptions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'monetization_subscription',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'auto_renew', 'next_billing_at'], name='subscription_renewal_due_idx'),
                    models.Index(fields=['creator', 'status'], name='subscription_creator_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('status', 'active')), fields=('user', 'creator'), name='unique_active_subscription_per_creator'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SubscriptionPayment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.PositiveIntegerField()),
                ('status', models.CharField(choices=[('completed', 'Completed'), ('failed', 'Failed'), ('refunded', 'Refunded')], default='completed', max_length=16)),
                ('billing_period_start', models.DateTimeField()),
                ('billing_period_end', models.DateTimeField()),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('creator', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subscription_earnings', to=settings.AUTH_USER_MODEL)),
                ('subscription', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='payments', to='monetization.subscription')),
                ('transaction', models.ForeignKey(blank=True, help_text='Subscriber debit for this billing cycle', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='monetization.wallettransaction')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subscription_payments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'monetization_subscription_payment',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='PayeeAccount',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('payee_id', models.CharField(help_text='Identifier the provider knows this creator by', max_length=128, unique=True)),
                ('payee_status', models.CharField(choices=[('not_registered', 'Not registered'), ('pending', 'Pending'), ('active', 'Active'), ('inactive', 'Inactive'), ('declined', 'Declined')], default='not_registered', max_length=16)),
                ('preferred_currency', models.CharField(default='USD', max_length=3)),
                ('registration_link', models.URLField(blank=True, max_length=500)),
                ('registration_link_expires_at', models.DateTimeField(blank=True, null=True)),
                ('payout_methods', models.JSONField(blank=True, default=list)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('creator', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='payee_account', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'monetization_payee_account',
            },
        ),
        migrations.CreateModel(
            name='PayoutRequest',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('amount', models.PositiveIntegerField(help_text='Coins to pay out', validators=[django.core.validators.MinValueValidator(1)])),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('processing', 'Processing'), ('completed', 'Completed'), ('failed', 'Failed'), ('cancelled', 'Cancelled')], default='pending', max_length=16)),
                ('payout_method', models.CharField(choices=[('provider', 'Payout provider'), ('manual', 'Manual')], default='provider', max_length=16)),
                ('external_reference', models.CharField(blank=True, max_length=128)),
                ('provider_payment_id', models.CharField(blank=True, max_length=128, null=True)),
                ('provider_status', models.CharField(blank=True, max_length=32)),
                ('failure_reason', models.TextField(blank=True)),
                ('admin_notes', models.TextField(blank=True)),
                ('requested_at', models.DateTimeField(auto_now_add=True)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('creator', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payout_requests', to=settings.AUTH_USER_MODEL)),
                ('hold', models.ForeignKey(help_text='Hold reserving the coins until the provider reports an outcome', on_delete=django.db.models.deletion.PROTECT, related_name='payout_requests', to='monetization.spendhold')),
                ('transaction', models.ForeignKey(blank=True, help_text='creator_payout debit written on completion', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='+', to='monetization.wallettransaction')),
            ],
            options={
                'db_table': 'monetization_payout_request',
                'ordering': ['-requested_at'],
                'indexes': [
                    models.Index(fields=['status', '-requested_at'], name='payout_request_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('provider_payment_id__isnull', False)), fields=('provider_payment_id',), name='unique_payout_provider_payment_id'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProviderWebhookEventLog',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('payload_hash', models.CharField(help_text='SHA-256 of the raw webhook body', max_length=64, unique=True)),
                ('event_type', models.CharField(blank=True, max_length=64)),
                ('subject_id', models.CharField(blank=True, help_text='Payee or payment identifier the event refers to', max_length=128)),
                ('status', models.CharField(choices=[('received', 'Received'), ('processing', 'Processing'), ('processed', 'Processed'), ('ignored', 'Ignored'), ('failed', 'Failed')], default='received', max_length=16)),
                ('last_error', models.TextField(blank=True)),
                ('handled', models.BooleanField(default=False)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'monetization_provider_webhook_event_log',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', '-created_at'], name='provider_webhook_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='MonetizationAuditLog',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('event_type', models.CharField(max_length=64)),
                ('actor', models.CharField(blank=True, max_length=64)),
                ('subject_id', models.CharField(blank=True, max_length=64)),
                ('request_id', models.CharField(blank=True, max_length=64)),
                ('details', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'monetization_audit_log',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['event_type', '-created_at'], name='monetization_audit_event_idx'),
                ],
            },
        ),
    ]
