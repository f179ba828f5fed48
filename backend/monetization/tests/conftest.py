import itertools
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from monetization.models import LiveSession, SessionFeaturedCreator, VirtualGift, WalletTransaction
from monetization.services.ledger import create_transaction
from monetization.services.payout_provider import InMemoryPayoutProvider, reset_payout_provider
from monetization.services.payouts import PayoutSettlementService

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def monetization_settings(settings):
    settings.APP_ENV = "test"
    settings.PAYOUT_PROVIDER_MOCK_MODE = True
    settings.PAYOUT_PROVIDER_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.SUBSCRIPTION_RENEWAL_MAX_WORKERS = 1
    settings.SUBSCRIPTION_MAX_FAILED_RENEWALS = 3
    settings.PAYOUT_MINIMUM_COINS = 100
    reset_payout_provider()
    yield settings
    reset_payout_provider()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(username=None, *, coins=0, is_creator=False, is_staff=False):
        username = username or f"member{next(counter)}"
        user = get_user_model().objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password="pass1234",
            is_creator=is_creator,
            is_staff=is_staff,
        )
        if coins:
            create_transaction(
                user,
                coins,
                WalletTransaction.TransactionType.PURCHASE,
                idempotency_key=f"seed_{username}",
            )
        return user

    return _make


@pytest.fixture
def host(make_user):
    return make_user("host", is_creator=True)


@pytest.fixture
def guest(make_user):
    return make_user("guest", is_creator=True)


@pytest.fixture
def fan(make_user):
    return make_user("fan", coins=500)


@pytest.fixture
def live_session(host, guest):
    session = LiveSession.objects.create(
        host=host,
        title="Friday stream",
        status=LiveSession.Status.LIVE,
        featured_creator_commission=20,
    )
    SessionFeaturedCreator.objects.create(session=session, creator=guest)
    return session


@pytest.fixture
def gift(db):
    return VirtualGift.objects.create(name="Test Comet", emoji="*", coin_cost=40, display_order=99)


@pytest.fixture
def provider():
    return InMemoryPayoutProvider(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def settlement(provider):
    return PayoutSettlementService(provider, coin_rate=Decimal("0.10"), minimum_coins=100)


@pytest.fixture
def api_client():
    return APIClient()
