"""Creator payout endpoints: payee onboarding, payout requests and admin submission."""
from __future__ import annotations

from rest_framework import status
from rest_framework.generics import ListAPIView
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from monetization.filters import PayoutRequestFilter
from monetization.models import PayoutRequest
from monetization.pagination import BoundedPageNumberPagination
from monetization.serializers import PayeeAccountSerializer, PayoutCreateSerializer, PayoutRequestSerializer
from monetization.services.payouts import build_settlement_service
from monetization.views.base import MonetizationAPIView, MonetizationErrorMixin, request_id


class PayeeRegistrationLinkView(MonetizationAPIView):
    def post(self, request, *args, **kwargs):
        account = build_settlement_service().generate_registration_link(creator=request.user)
        return Response(PayeeAccountSerializer(account).data, status=status.HTTP_201_CREATED)


class PayeeStatusView(MonetizationAPIView):
    def get(self, request, *args, **kwargs):
        force_sync = request.query_params.get("force_sync", "").lower() in ("1", "true", "yes")
        result = build_settlement_service().get_payee_status(creator=request.user, force_sync=force_sync)
        return Response(
            {
                "status": result.status,
                "payee_id": result.payee_id,
                "preferred_currency": result.preferred_currency,
                "last_synced_at": result.last_synced_at,
                "payout_methods": list(result.payout_methods),
            }
        )


class PayoutListCreateView(MonetizationErrorMixin, ListAPIView):
    serializer_class = PayoutRequestSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = PayoutRequestFilter
    ordering_fields = ("requested_at", "amount", "status")
    ordering = ("-requested_at",)

    def get_queryset(self):
        return PayoutRequest.objects.filter(creator=self.request.user).order_by("-requested_at")

    def post(self, request, *args, **kwargs):
        serializer = PayoutCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payout = build_settlement_service().request_payout(
            creator=request.user,
            amount=serializer.validated_data["amount"],
            request_id=request_id(request),
        )
        return Response(PayoutRequestSerializer(payout).data, status=status.HTTP_201_CREATED)


class PayoutCancelView(MonetizationAPIView):
    def post(self, request, payout_id, *args, **kwargs):
        payout = build_settlement_service().cancel_payout_request(
            creator=request.user,
            payout_id=payout_id,
            request_id=request_id(request),
        )
        return Response(PayoutRequestSerializer(payout).data)


class PayoutSubmitView(MonetizationAPIView):
    permission_classes = [IsAdminUser]

    def post(self, request, payout_id, *args, **kwargs):
        result = build_settlement_service().submit_payout(payout_id, actor=f"admin:{request.user.pk}")
        payload = PayoutRequestSerializer(result.payout).data
        payload["submitted"] = result.submitted
        payload["timed_out"] = result.timed_out
        return Response(payload, status=status.HTTP_202_ACCEPTED if result.timed_out else status.HTTP_200_OK)
