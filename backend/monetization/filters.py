"""FilterSet definitions for monetization endpoints."""
from __future__ import annotations

import django_filters

from monetization.models import PayoutRequest, Subscription, WalletTransaction


class WalletTransactionFilter(django_filters.FilterSet):
    type = django_filters.CharFilter(field_name="type", lookup_expr="iexact")
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    direction = django_filters.ChoiceFilter(
        choices=(("credit", "Credit"), ("debit", "Debit")),
        method="filter_direction",
    )
    created_after = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="gte")
    created_before = django_filters.DateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = WalletTransaction
        fields = ["type", "status"]

    def filter_direction(self, queryset, name, value):
        if value == "credit":
            return queryset.filter(amount__gt=0)
        return queryset.filter(amount__lt=0)


class SubscriptionFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    creator_id = django_filters.NumberFilter(field_name="creator_id")

    class Meta:
        model = Subscription
        fields = ["status", "creator_id"]


class PayoutRequestFilter(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="iexact")
    requested_after = django_filters.DateTimeFilter(field_name="requested_at", lookup_expr="gte")
    requested_before = django_filters.DateTimeFilter(field_name="requested_at", lookup_expr="lte")

    class Meta:
        model = PayoutRequest
        fields = ["status"]
