"""Tips, gifts and commission changes inside a live session."""
from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response

from monetization.models import VirtualGift
from monetization.serializers import (
    CommissionUpdateSerializer,
    GiftRequestSerializer,
    LiveSessionSerializer,
    SessionGiftSerializer,
    TipRequestSerializer,
    VirtualGiftSerializer,
)
from monetization.services import revenue_split
from monetization.views.base import MonetizationAPIView, idempotency_key


class GiftCatalogView(MonetizationAPIView):
    def get(self, request, *args, **kwargs):
        gifts = VirtualGift.objects.filter(is_active=True).order_by("display_order", "coin_cost")
        return Response(VirtualGiftSerializer(gifts, many=True).data)


class SessionTipView(MonetizationAPIView):
    def post(self, request, session_id, *args, **kwargs):
        serializer = TipRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = revenue_split.send_tip(
            session_id=session_id,
            sender=request.user,
            amount=serializer.validated_data["amount"],
            recipient_creator_id=serializer.validated_data.get("recipient_creator_id"),
            idempotency_key=idempotency_key(request),
        )
        return Response(
            {
                "transaction_id": str(result.sender_debit.pk),
                "amount": -result.sender_debit.amount,
                "host_amount": result.host_credit.amount if result.host_credit else 0,
                "guest_amount": result.guest_credit.amount if result.guest_credit else 0,
                "new_balance": result.new_balance,
                "replayed": not result.created,
            },
            status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK,
        )


class SessionGiftView(MonetizationAPIView):
    def post(self, request, session_id, *args, **kwargs):
        serializer = GiftRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = revenue_split.send_gift(
            session_id=session_id,
            sender=request.user,
            gift_id=serializer.validated_data["gift_id"],
            quantity=serializer.validated_data["quantity"],
            recipient_creator_id=serializer.validated_data.get("recipient_creator_id"),
            idempotency_key=idempotency_key(request),
        )
        payload = {
            "transaction_id": str(result.sender_debit.pk),
            "total_coins": -result.sender_debit.amount,
            "recipient_id": result.recipient_credit.user_id,
            "replayed": not result.created,
        }
        if result.session_gift is not None:
            payload["session_gift"] = SessionGiftSerializer(result.session_gift).data
        return Response(payload, status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK)


class SessionCommissionView(MonetizationAPIView):
    http_method_names = ["patch", "options"]

    def patch(self, request, session_id, *args, **kwargs):
        serializer = CommissionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        session = revenue_split.set_session_commission(
            session_id=session_id,
            host=request.user,
            percent=serializer.validated_data["percent"],
        )
        return Response(LiveSessionSerializer(session).data)
