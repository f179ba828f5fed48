"""API endpoints exposing the caller's wallet and ledger rows."""
from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import ReadOnlyModelViewSet

from monetization.filters import WalletTransactionFilter
from monetization.models import WalletTransaction
from monetization.pagination import BoundedPageNumberPagination
from monetization.serializers import WalletSerializer, WalletTransactionSerializer
from monetization.services.ledger import ensure_wallet
from monetization.views.base import MonetizationAPIView, MonetizationErrorMixin


class WalletView(MonetizationAPIView):
    def get(self, request, *args, **kwargs):
        wallet = ensure_wallet(request.user)
        return Response(WalletSerializer(wallet).data)


class WalletTransactionViewSet(MonetizationErrorMixin, ReadOnlyModelViewSet):
    serializer_class = WalletTransactionSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = WalletTransactionFilter
    ordering_fields = ("created_at", "amount", "type")
    ordering = ("-created_at",)

    def get_queryset(self):
        return WalletTransaction.objects.filter(user=self.request.user).order_by("-created_at")
