"""DRF serializers for wallet, live-session, subscription and payout endpoints."""
from __future__ import annotations

from typing import Any, Dict

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from monetization.models import (
    LiveSession,
    PayeeAccount,
    PayoutRequest,
    SessionGift,
    Subscription,
    SubscriptionTier,
    VirtualGift,
    Wallet,
    WalletTransaction,
)


class WalletSerializer(serializers.ModelSerializer):
    available_balance = serializers.IntegerField(read_only=True)

    class Meta:
        model = Wallet
        fields = ["id", "balance", "held_balance", "available_balance", "last_reconciled_at", "updated_at"]
        read_only_fields = fields


class WalletTransactionSerializer(serializers.ModelSerializer):
    related_transaction_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = WalletTransaction
        fields = [
            "id",
            "amount",
            "type",
            "status",
            "idempotency_key",
            "related_transaction_id",
            "description",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class VirtualGiftSerializer(serializers.ModelSerializer):
    class Meta:
        model = VirtualGift
        fields = ["id", "name", "emoji", "coin_cost", "display_order"]
        read_only_fields = fields


class SessionGiftSerializer(serializers.ModelSerializer):
    gift = VirtualGiftSerializer(read_only=True)

    class Meta:
        model = SessionGift
        fields = ["id", "session", "sender", "recipient", "gift", "quantity", "total_coins", "created_at"]
        read_only_fields = fields


class LiveSessionSerializer(serializers.ModelSerializer):
    class Meta:
        model = LiveSession
        fields = ["id", "host", "title", "status", "featured_creator_commission", "total_gifts_received"]
        read_only_fields = fields


class TipRequestSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)
    recipient_creator_id = serializers.IntegerField(required=False, allow_null=True)


class GiftRequestSerializer(serializers.Serializer):
    gift_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, max_value=1000, default=1)
    recipient_creator_id = serializers.IntegerField(required=False, allow_null=True)


class CommissionUpdateSerializer(serializers.Serializer):
    percent = serializers.IntegerField(min_value=0, max_value=100)


class SubscriptionTierSerializer(serializers.ModelSerializer):
    class Meta:
        model = SubscriptionTier
        fields = [
            "id",
            "creator",
            "tier",
            "name",
            "description",
            "price_per_month",
            "benefits",
            "subscriber_count",
            "display_order",
        ]
        read_only_fields = fields


class SubscriptionSerializer(serializers.ModelSerializer):
    tier = SubscriptionTierSerializer(read_only=True)

    class Meta:
        model = Subscription
        fields = [
            "id",
            "user",
            "creator",
            "tier",
            "status",
            "started_at",
            "expires_at",
            "next_billing_at",
            "last_payment_at",
            "cancelled_at",
            "auto_renew",
            "failed_payment_count",
            "total_paid",
        ]
        read_only_fields = fields


class SubscribeRequestSerializer(serializers.Serializer):
    creator_id = serializers.IntegerField()
    tier_id = serializers.UUIDField()


class AutoRenewToggleSerializer(serializers.Serializer):
    enabled = serializers.BooleanField()

    def to_internal_value(self, data):
        # Strings such as "false" would coerce to a bool; only real booleans are accepted.
        if not isinstance(data, dict) or not isinstance(data.get("enabled"), bool):
            raise serializers.ValidationError({"enabled": [_("Field 'enabled' must be a boolean.")]})
        return super().to_internal_value(data)


class PayeeAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayeeAccount
        fields = [
            "payee_id",
            "payee_status",
            "preferred_currency",
            "registration_link",
            "registration_link_expires_at",
            "last_synced_at",
        ]
        read_only_fields = fields


class PayoutRequestSerializer(serializers.ModelSerializer):
    hold_id = serializers.UUIDField(read_only=True)
    transaction_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = PayoutRequest
        fields = [
            "id",
            "amount",
            "status",
            "payout_method",
            "hold_id",
            "transaction_id",
            "external_reference",
            "provider_payment_id",
            "provider_status",
            "failure_reason",
            "requested_at",
            "processed_at",
            "completed_at",
        ]
        read_only_fields = fields


class PayoutCreateSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)


class PayoutWebhookEventSerializer(serializers.Serializer):
    """Validates the provider payload after ``data`` has been flattened into the top level."""

    PAYEE_EVENTS = ("payee_status_changed",)
    PAYMENT_EVENTS = ("payment_status_changed", "payout_completed", "payout_failed")

    event_type = serializers.CharField()
    payee_id = serializers.CharField(required=False, allow_blank=True)
    payment_id = serializers.CharField(required=False, allow_blank=True)
    status = serializers.CharField(required=False, allow_blank=True)
    previous_status = serializers.CharField(required=False, allow_blank=True)
    client_reference_id = serializers.CharField(required=False, allow_blank=True)
    failure_reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    amount = serializers.DecimalField(max_digits=18, decimal_places=6, required=False, allow_null=True)
    currency = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        event_type = attrs["event_type"]
        if event_type in self.PAYEE_EVENTS and not (attrs.get("payee_id") and attrs.get("status")):
            raise serializers.ValidationError({"non_field_errors": [_("Missing payee_id or status.")]})
        if event_type in self.PAYMENT_EVENTS and not (attrs.get("payment_id") and attrs.get("status")):
            raise serializers.ValidationError({"non_field_errors": [_("Missing payment_id or status.")]})
        return attrs
