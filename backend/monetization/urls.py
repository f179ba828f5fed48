"""URL routes for monetization endpoints."""
from django.urls import path

from .views.payouts import (
    PayeeRegistrationLinkView,
    PayeeStatusView,
    PayoutCancelView,
    PayoutListCreateView,
    PayoutSubmitView,
)
from .views.sessions import GiftCatalogView, SessionCommissionView, SessionGiftView, SessionTipView
from .views.subscriptions import (
    CreatorTierListView,
    SubscriptionAutoRenewView,
    SubscriptionCancelView,
    SubscriptionListCreateView,
)
from .views.wallet import WalletTransactionViewSet, WalletView
from .views.webhooks import PayoutWebhookView

app_name = "monetization"

urlpatterns = [
    path("wallet/", WalletView.as_view(), name="wallet"),
    path(
        "wallet/transactions/",
        WalletTransactionViewSet.as_view({"get": "list"}),
        name="wallet-transactions",
    ),
    path("gifts/", GiftCatalogView.as_view(), name="gift-catalog"),
    path("sessions/<uuid:session_id>/tips/", SessionTipView.as_view(), name="session-tips"),
    path("sessions/<uuid:session_id>/gifts/", SessionGiftView.as_view(), name="session-gifts"),
    path(
        "sessions/<uuid:session_id>/commission/",
        SessionCommissionView.as_view(),
        name="session-commission",
    ),
    path("creators/<int:creator_id>/tiers/", CreatorTierListView.as_view(), name="creator-tiers"),
    path("subscriptions/", SubscriptionListCreateView.as_view(), name="subscriptions"),
    path(
        "subscriptions/<uuid:subscription_id>/cancel/",
        SubscriptionCancelView.as_view(),
        name="subscription-cancel",
    ),
    path(
        "subscriptions/<uuid:subscription_id>/auto-renew/",
        SubscriptionAutoRenewView.as_view(),
        name="subscription-auto-renew",
    ),
    path(
        "payouts/registration-link/",
        PayeeRegistrationLinkView.as_view(),
        name="payee-registration-link",
    ),
    path("payouts/payee-status/", PayeeStatusView.as_view(), name="payee-status"),
    path("payouts/", PayoutListCreateView.as_view(), name="payouts"),
    path("payouts/<uuid:payout_id>/cancel/", PayoutCancelView.as_view(), name="payout-cancel"),
    path("payouts/<uuid:payout_id>/submit/", PayoutSubmitView.as_view(), name="payout-submit"),
    path("webhooks/payouts/", PayoutWebhookView.as_view(), name="payout-webhook"),
]
