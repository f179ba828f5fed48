from django.contrib import admin

from .models import (
    LiveSession,
    MonetizationAuditLog,
    PayeeAccount,
    PayoutRequest,
    ProviderWebhookEventLog,
    SpendHold,
    Subscription,
    SubscriptionPayment,
    SubscriptionTier,
    VirtualGift,
    Wallet,
    WalletTransaction,
)


class ReadOnlyAdminMixin:
    """Ledger history is append-only; the admin may inspect but never edit it."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "balance", "held_balance", "available_display", "last_reconciled_at", "updated_at")
    search_fields = ("id", "user__username", "user__email")
    readonly_fields = ("balance", "held_balance", "last_reconciled_at", "created_at", "updated_at")
    list_select_related = ("user",)
    raw_id_fields = ("user",)
    ordering = ("-created_at",)

    fieldsets = (
        ("Ownership", {"fields": ("user",)}),
        ("Balance", {"fields": ("balance", "held_balance", "last_reconciled_at")}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description="Available")
    def available_display(self, obj):
        return obj.available_balance


@admin.register(WalletTransaction)
class WalletTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "user", "amount", "type", "status", "idempotency_key", "created_at")
    list_filter = ("type", "status", "created_at")
    search_fields = ("id", "idempotency_key", "user__username", "user__email")
    list_select_related = ("user",)
    ordering = ("-created_at",)


@admin.register(SpendHold)
class SpendHoldAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "user", "amount", "purpose", "status", "related_id", "created_at", "settled_at", "released_at")
    list_filter = ("purpose", "status")
    search_fields = ("id", "related_id", "user__username")
    list_select_related = ("user",)


@admin.register(VirtualGift)
class VirtualGiftAdmin(admin.ModelAdmin):
    list_display = ("name", "emoji", "coin_cost", "is_active", "display_order")
    list_editable = ("coin_cost", "is_active", "display_order")
    ordering = ("display_order", "coin_cost")


@admin.register(LiveSession)
class LiveSessionAdmin(admin.ModelAdmin):
    list_display = ("id", "host", "title", "status", "featured_creator_commission", "total_gifts_received", "created_at")
    list_filter = ("status",)
    search_fields = ("id", "title", "host__username")
    raw_id_fields = ("host",)


@admin.register(SubscriptionTier)
class SubscriptionTierAdmin(admin.ModelAdmin):
    list_display = ("name", "creator", "tier", "price_per_month", "subscriber_count", "is_active")
    list_filter = ("tier", "is_active")
    search_fields = ("name", "creator__username")
    raw_id_fields = ("creator",)
    readonly_fields = ("subscriber_count",)


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "creator", "tier", "status", "auto_renew", "expires_at", "failed_payment_count")
    list_filter = ("status", "auto_renew")
    search_fields = ("id", "user__username", "creator__username")
    raw_id_fields = ("user", "creator", "tier")
    readonly_fields = ("total_paid", "failed_payment_count", "last_payment_at", "created_at", "updated_at")


@admin.register(SubscriptionPayment)
class SubscriptionPaymentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "subscription", "user", "creator", "amount", "status", "billing_period_start", "paid_at")
    list_filter = ("status",)


@admin.register(PayeeAccount)
class PayeeAccountAdmin(admin.ModelAdmin):
    list_display = ("payee_id", "creator", "payee_status", "preferred_currency", "last_synced_at")
    list_filter = ("payee_status",)
    search_fields = ("payee_id", "creator__username", "creator__email")
    raw_id_fields = ("creator",)


@admin.register(PayoutRequest)
class PayoutRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "creator", "amount", "status", "provider_payment_id", "provider_status", "requested_at")
    list_filter = ("status", "payout_method")
    search_fields = ("id", "provider_payment_id", "external_reference", "creator__username")
    raw_id_fields = ("creator", "hold", "transaction")
    # Money-moving fields change only through the settlement service.
    readonly_fields = (
        "amount",
        "status",
        "hold",
        "transaction",
        "external_reference",
        "provider_payment_id",
        "provider_status",
        "requested_at",
        "processed_at",
        "completed_at",
    )


@admin.register(ProviderWebhookEventLog)
class ProviderWebhookEventLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "event_type", "subject_id", "status", "handled", "created_at", "processed_at")
    list_filter = ("status", "event_type", "handled")
    search_fields = ("payload_hash", "subject_id")


@admin.register(MonetizationAuditLog)
class MonetizationAuditLogAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "event_type", "actor", "subject_id", "request_id", "created_at")
    list_filter = ("event_type",)
    search_fields = ("subject_id", "actor", "request_id")
