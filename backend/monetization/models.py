"""Monetization models: wallets, holds, live-session revenue, subscriptions and payouts."""
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import F, Q


class Wallet(models.Model):
    """Coin balance for a single user; ``held_balance`` is reserved but not yet spent."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="wallet",
        help_text="Wallet owner",
    )
    balance = models.IntegerField(
        default=0,
        help_text="Total coins owned, including reserved coins",
    )
    held_balance = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Coins reserved by pending holds",
    )
    last_reconciled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Last time the balance matched the transaction history",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_wallet"
        verbose_name = "Wallet"
        verbose_name_plural = "Wallets"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(held_balance__gte=0),
                name="wallet_held_balance_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(held_balance__lte=F("balance")),
                name="wallet_available_balance_non_negative",
            ),
        ]

    @property
    def available_balance(self) -> int:
        return self.balance - self.held_balance

    def clean(self):
        super().clean()
        if self.held_balance is not None and self.held_balance < 0:
            raise ValidationError("Wallet held balance cannot be negative.")
        if self.balance is not None and self.held_balance is not None and self.held_balance > self.balance:
            raise ValidationError("Wallet held balance cannot exceed the balance.")

    def save(self, *args, **kwargs):
        self.full_clean(validate_constraints=False)
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"Wallet<{self.user_id}:{self.balance}/{self.held_balance}>"


class WalletTransaction(models.Model):
    """Immutable, signed record of every coin movement."""

    class TransactionType(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        GIFT = "gift", "Gift"
        TIP = "tip", "Tip"
        CALL_CHARGE = "call_charge", "Call charge"
        CALL_EARNINGS = "call_earnings", "Call earnings"
        SUBSCRIPTION_PAYMENT = "subscription_payment", "Subscription payment"
        SUBSCRIPTION_EARNINGS = "subscription_earnings", "Subscription earnings"
        CREATOR_PAYOUT = "creator_payout", "Creator payout"
        REFUND = "refund", "Refund"
        ADJUSTMENT = "adjustment", "Adjustment"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="wallet_transactions",
        help_text="Wallet owner affected by this transaction",
    )
    amount = models.IntegerField(
        help_text="Signed coin amount; positive for credits, negative for debits",
    )
    type = models.CharField(
        max_length=32,
        choices=TransactionType.choices,
        help_text="Categorisation of the coin movement",
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.COMPLETED,
    )
    idempotency_key = models.CharField(
        max_length=255,
        blank=True,
        null=True,
        help_text="Unique key to guarantee idempotent transaction writes",
    )
    related_transaction = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Counterpart leg of a two-wallet transfer",
    )
    description = models.TextField(
        blank=True,
        help_text="Optional human-readable context for the transaction",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Typed metadata payload tagged with its ``kind``",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "monetization_wallet_transaction"
        verbose_name = "Wallet transaction"
        verbose_name_plural = "Wallet transactions"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="wallet_tx_user_created_idx"),
            models.Index(fields=["type", "-created_at"], name="wallet_tx_type_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=~Q(amount=0), name="wallet_transaction_non_zero"),
            models.UniqueConstraint(
                fields=["idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_wallet_transaction_idempotency_key",
            ),
        ]

    def clean(self):
        super().clean()
        if self.amount == 0:
            raise ValidationError("Amount must be non-zero.")

    def save(self, *args, **kwargs):
        if self.pk and WalletTransaction.objects.filter(pk=self.pk).exists():
            raise ValidationError("WalletTransaction records are immutable and cannot be updated.")
        # The idempotency constraint is left to the database so concurrent inserts raise IntegrityError.
        self.full_clean(validate_constraints=False)
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("WalletTransaction records are immutable and cannot be deleted.")

    @property
    def typed_metadata(self):
        from monetization.services.metadata import parse_metadata

        return parse_metadata(self.metadata)

    def __str__(self):
        return f"WalletTransaction<{self.type}:{self.amount} for {self.user_id}>"


class SpendHold(models.Model):
    """Coins reserved against a wallet until the spend is settled or released."""

    class Purpose(models.TextChoices):
        PAYOUT = "payout", "Payout"
        CALL = "call", "Call"
        SESSION = "session", "Session"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SETTLED = "settled", "Settled"
        RELEASED = "released", "Released"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="spend_holds",
    )
    amount = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    purpose = models.CharField(max_length=16, choices=Purpose.choices)
    related_id = models.CharField(
        max_length=64,
        blank=True,
        help_text="Identifier of the object the hold was taken for",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    settlement_transaction = models.ForeignKey(
        WalletTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Debit row written when the hold was settled",
    )
    settled_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_spend_hold"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "status"], name="spend_hold_user_status_idx"),
        ]

    def __str__(self):
        return f"SpendHold<{self.purpose}:{self.amount} {self.status}>"


class VirtualGift(models.Model):
    """Catalog entry for a gift viewers can send during a live session."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=64, unique=True)
    emoji = models.CharField(max_length=16, blank=True)
    coin_cost = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    is_active = models.BooleanField(default=True)
    display_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "monetization_virtual_gift"
        ordering = ["display_order", "coin_cost"]

    def __str__(self):
        return f"{self.emoji} {self.name} ({self.coin_cost})".strip()


class LiveSession(models.Model):
    """A live broadcast whose tips and gifts are split between host and guest."""

    class Status(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        LIVE = "live", "Live"
        ENDED = "ended", "Ended"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="hosted_sessions",
    )
    title = models.CharField(max_length=200, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.LIVE)
    featured_creator_commission = models.PositiveSmallIntegerField(
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Percent of guest-directed tips retained by the host",
    )
    total_gifts_received = models.PositiveIntegerField(default=0)
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_live_session"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(featured_creator_commission__gte=0) & Q(featured_creator_commission__lte=100),
                name="live_session_commission_percent_range",
            ),
        ]

    def __str__(self):
        return f"LiveSession<{self.id} host={self.host_id}>"


class SessionFeaturedCreator(models.Model):
    """Guest creator featured in a live session, with display counters."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(LiveSession, on_delete=models.CASCADE, related_name="featured_creators")
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="featured_sessions",
    )
    is_active = models.BooleanField(default=True)
    tips_received = models.PositiveIntegerField(default=0)
    gift_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "monetization_session_featured_creator"
        constraints = [
            models.UniqueConstraint(fields=["session", "creator"], name="unique_session_featured_creator"),
        ]


class SessionGift(models.Model):
    """Immutable record of a gift sent during a live session."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(LiveSession, on_delete=models.CASCADE, related_name="gifts")
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_session_gifts",
    )
    gift = models.ForeignKey(VirtualGift, on_delete=models.PROTECT, related_name="+")
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    total_coins = models.PositiveIntegerField()
    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="received_session_gifts",
        help_text="Creator credited with the gift",
    )
    debit_transaction = models.ForeignKey(
        WalletTransaction,
        on_delete=models.PROTECT,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "monetization_session_gift"
        ordering = ["-created_at"]


class SubscriptionTier(models.Model):
    """Priced subscription offering published by a creator."""

    class Tier(models.IntegerChoices):
        BASIC = 1, "Basic"
        BRONZE = 2, "Bronze"
        SILVER = 3, "Silver"
        GOLD = 4, "Gold"
        PLATINUM = 5, "Platinum"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscription_tiers",
    )
    tier = models.PositiveSmallIntegerField(choices=Tier.choices, default=Tier.BASIC)
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    price_per_month = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Coins charged every billing period",
    )
    benefits = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    subscriber_count = models.PositiveIntegerField(default=0)
    display_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_subscription_tier"
        ordering = ["display_order", "price_per_month"]
        constraints = [
            models.UniqueConstraint(fields=["creator", "tier"], name="unique_creator_subscription_tier"),
        ]

    def __str__(self):
        return f"{self.name} ({self.price_per_month}/mo)"


class Subscription(models.Model):
    """A subscriber's recurring access to a creator at a given tier."""

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CANCELLED = "cancelled", "Cancelled"
        EXPIRED = "expired", "Expired"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscriptions",
    )
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscribers",
    )
    tier = models.ForeignKey(
        SubscriptionTier,
        on_delete=models.SET_NULL,
        null=True,
        related_name="subscriptions",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    started_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    next_billing_at = models.DateTimeField(null=True, blank=True)
    last_payment_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    auto_renew = models.BooleanField(default=True)
    failed_payment_count = models.PositiveIntegerField(default=0)
    total_paid = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_subscription"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "auto_renew", "next_billing_at"], name="subscription_renewal_due_idx"),
            models.Index(fields=["creator", "status"], name="subscription_creator_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "creator"],
                condition=Q(status="active"),
                name="unique_active_subscription_per_creator",
            ),
        ]

    def __str__(self):
        return f"Subscription<{self.user_id}->{self.creator_id} {self.status}>"


class SubscriptionPayment(models.Model):
    """One successful billing cycle of a subscription."""

    class Status(models.TextChoices):
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        REFUNDED = "refunded", "Refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subscription = models.ForeignKey(Subscription, on_delete=models.CASCADE, related_name="payments")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscription_payments",
    )
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="subscription_earnings",
    )
    amount = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.COMPLETED)
    transaction = models.ForeignKey(
        WalletTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Subscriber debit for this billing cycle",
    )
    billing_period_start = models.DateTimeField()
    billing_period_end = models.DateTimeField()
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "monetization_subscription_payment"
        ordering = ["-created_at"]

    def save(self, *args, **kwargs):
        if self.pk and SubscriptionPayment.objects.filter(pk=self.pk).exists():
            raise ValidationError("SubscriptionPayment records are immutable and cannot be updated.")
        return super().save(*args, **kwargs)


class PayeeAccount(models.Model):
    """A creator's registration with the external payout provider."""

    class PayeeStatus(models.TextChoices):
        NOT_REGISTERED = "not_registered", "Not registered"
        PENDING = "pending", "Pending"
        ACTIVE = "active", "Active"
        INACTIVE = "inactive", "Inactive"
        DECLINED = "declined", "Declined"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    creator = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payee_account",
    )
    payee_id = models.CharField(
        max_length=128,
        unique=True,
        help_text="Identifier the provider knows this creator by",
    )
    payee_status = models.CharField(
        max_length=16,
        choices=PayeeStatus.choices,
        default=PayeeStatus.NOT_REGISTERED,
    )
    preferred_currency = models.CharField(max_length=3, default="USD")
    registration_link = models.URLField(max_length=500, blank=True)
    registration_link_expires_at = models.DateTimeField(null=True, blank=True)
    payout_methods = models.JSONField(default=list, blank=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_payee_account"

    def __str__(self):
        return f"PayeeAccount<{self.payee_id}:{self.payee_status}>"


class PayoutRequest(models.Model):
    """Creator request to convert coins into a provider payout."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PROCESSING = "processing", "Processing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED, Status.CANCELLED)

    class Method(models.TextChoices):
        PROVIDER = "provider", "Payout provider"
        MANUAL = "manual", "Manual"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_requests",
    )
    amount = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Coins to pay out",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    payout_method = models.CharField(max_length=16, choices=Method.choices, default=Method.PROVIDER)
    hold = models.ForeignKey(
        SpendHold,
        on_delete=models.PROTECT,
        related_name="payout_requests",
        help_text="Hold reserving the coins until the provider reports an outcome",
    )
    transaction = models.ForeignKey(
        WalletTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="creator_payout debit written on completion",
    )
    external_reference = models.CharField(max_length=128, blank=True)
    provider_payment_id = models.CharField(max_length=128, blank=True, null=True)
    provider_status = models.CharField(max_length=32, blank=True)
    failure_reason = models.TextField(blank=True)
    admin_notes = models.TextField(blank=True)
    requested_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_payout_request"
        ordering = ["-requested_at"]
        indexes = [
            models.Index(fields=["status", "-requested_at"], name="payout_request_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider_payment_id"],
                condition=Q(provider_payment_id__isnull=False),
                name="unique_payout_provider_payment_id",
            ),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def __str__(self):
        return f"PayoutRequest<{self.id}:{self.amount} {self.status}>"


class ProviderWebhookEventLog(models.Model):
    """Stores idempotency and processing status for payout provider webhooks."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSING = "processing", "Processing"
        PROCESSED = "processed", "Processed"
        IGNORED = "ignored", "Ignored"
        FAILED = "failed", "Failed"

    id = models.BigAutoField(primary_key=True)
    payload_hash = models.CharField(
        max_length=64,
        unique=True,
        help_text="SHA-256 of the raw webhook body",
    )
    event_type = models.CharField(max_length=64, blank=True)
    subject_id = models.CharField(
        max_length=128,
        blank=True,
        help_text="Payee or payment identifier the event refers to",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.RECEIVED)
    last_error = models.TextField(blank=True)
    handled = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "monetization_provider_webhook_event_log"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "-created_at"], name="provider_webhook_status_idx"),
        ]


class MonetizationAuditLog(models.Model):
    """Audit trail for subscription and payout lifecycle changes."""

    id = models.BigAutoField(primary_key=True)
    event_type = models.CharField(max_length=64)
    actor = models.CharField(max_length=64, blank=True)
    subject_id = models.CharField(max_length=64, blank=True)
    request_id = models.CharField(max_length=64, blank=True)
    details = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "monetization_audit_log"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["event_type", "-created_at"], name="monetization_audit_event_idx"),
        ]

    def __str__(self):
        return f"{self.event_type} ({self.subject_id})"
