from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response

from monetization.serializers import (
    AutoRenewToggleSerializer,
    SubscribeRequestSerializer,
    SubscriptionSerializer,
    SubscriptionTierSerializer,
)
from monetization.services import subscriptions as subscription_services
from monetization.views.base import MonetizationAPIView, request_id


class CreatorTierListView(MonetizationAPIView):
    def get(self, request, creator_id: int, *args, **kwargs):
        tiers = subscription_services.get_creator_tiers(creator_id)
        return Response(SubscriptionTierSerializer(tiers, many=True).data)


class SubscriptionListCreateView(MonetizationAPIView):
    def get(self, request, *args, **kwargs):
        active_only = request.query_params.get("include_inactive", "").lower() not in ("1", "true", "yes")
        subscriptions = subscription_services.get_user_subscriptions(request.user, active_only=active_only)
        return Response(SubscriptionSerializer(subscriptions, many=True).data)

    def post(self, request, *args, **kwargs):
        serializer = SubscribeRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = subscription_services.subscribe(
            user=request.user,
            creator_id=serializer.validated_data["creator_id"],
            tier_id=serializer.validated_data["tier_id"],
        )
        payload = SubscriptionSerializer(result.subscription).data
        payload["transaction_id"] = str(result.transfer.debit.pk)
        return Response(payload, status=status.HTTP_201_CREATED)


class SubscriptionCancelView(MonetizationAPIView):
    def post(self, request, subscription_id, *args, **kwargs):
        subscription = subscription_services.cancel_subscription(
            user=request.user,
            subscription_id=subscription_id,
            request_id=request_id(request),
        )
        return Response(SubscriptionSerializer(subscription).data)


class SubscriptionAutoRenewView(MonetizationAPIView):
    http_method_names = ["patch", "options"]

    def patch(self, request, subscription_id, *args, **kwargs):
        serializer = AutoRenewToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = subscription_services.toggle_auto_renew(
            user=request.user,
            subscription_id=subscription_id,
            enabled=serializer.validated_data["enabled"],
            request_id=request_id(request),
        )
        subscription = result.subscription
        return Response(
            {
                "subscription_id": str(subscription.pk),
                "auto_renew": subscription.auto_renew,
                "status": subscription.status,
                "previous": result.previous,
                "updated": result.updated,
            }
        )
