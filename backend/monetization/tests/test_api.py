import pytest
from django.urls import reverse

from monetization.models import PayoutRequest, Subscription, SubscriptionTier
from monetization.services.ledger import get_balance
from monetization.services.payout_provider import get_payout_provider
from monetization.services.subscriptions import subscribe, upsert_tier


@pytest.mark.django_db
def test_wallet_endpoints_require_authentication(api_client):
    response = api_client.get(reverse("monetization:wallet"))

    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_wallet_endpoint_reports_available_balance(api_client, fan):
    api_client.force_authenticate(user=fan)

    response = api_client.get(reverse("monetization:wallet"))

    assert response.status_code == 200
    payload = response.json()
    assert payload["balance"] == 500
    assert payload["held_balance"] == 0
    assert payload["available_balance"] == 500


@pytest.mark.django_db
def test_transaction_history_filters_by_direction(api_client, fan, live_session):
    api_client.force_authenticate(user=fan)
    api_client.post(reverse("monetization:session-tips", args=[live_session.pk]), {"amount": 25}, format="json")

    everything = api_client.get(reverse("monetization:wallet-transactions")).json()
    debits = api_client.get(reverse("monetization:wallet-transactions"), {"direction": "debit"}).json()

    assert everything["count"] == 2
    assert debits["count"] == 1
    assert debits["results"][0]["amount"] == -25
    assert debits["results"][0]["metadata"]["kind"] == "tip"


@pytest.mark.django_db
def test_tip_endpoint_replays_with_idempotency_key(api_client, fan, guest, host, live_session):
    api_client.force_authenticate(user=fan)
    url = reverse("monetization:session-tips", args=[live_session.pk])
    body = {"amount": 100, "recipient_creator_id": guest.pk}

    first = api_client.post(url, body, format="json", HTTP_IDEMPOTENCY_KEY="tip-abc")
    second = api_client.post(url, body, format="json", HTTP_IDEMPOTENCY_KEY="tip-abc")

    assert first.status_code == 201
    assert first.json()["host_amount"] == 20
    assert first.json()["guest_amount"] == 80
    assert first.json()["new_balance"] == 400
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["transaction_id"] == first.json()["transaction_id"]
    assert get_balance(fan) == 400


@pytest.mark.django_db
def test_tip_endpoint_reports_insufficient_balance(api_client, make_user, live_session):
    broke = make_user(coins=5)
    api_client.force_authenticate(user=broke)

    response = api_client.post(
        reverse("monetization:session-tips", args=[live_session.pk]),
        {"amount": 50},
        format="json",
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "insufficient_balance"
    assert payload["details"]["required"] == 50
    assert payload["details"]["available"] == 5


@pytest.mark.django_db
def test_tip_endpoint_validates_payload(api_client, fan, live_session):
    api_client.force_authenticate(user=fan)

    response = api_client.post(
        reverse("monetization:session-tips", args=[live_session.pk]),
        {"amount": 0},
        format="json",
    )

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"
    assert "amount" in response.json()["details"]


@pytest.mark.django_db
def test_gift_catalog_and_gift_endpoint(api_client, fan, host, live_session, gift):
    api_client.force_authenticate(user=fan)

    catalog = api_client.get(reverse("monetization:gift-catalog")).json()
    assert str(gift.pk) in {item["id"] for item in catalog}

    response = api_client.post(
        reverse("monetization:session-gifts", args=[live_session.pk]),
        {"gift_id": str(gift.pk), "quantity": 2},
        format="json",
    )

    assert response.status_code == 201
    assert response.json()["total_coins"] == 80
    assert response.json()["session_gift"]["quantity"] == 2
    assert get_balance(host) == 80


@pytest.mark.django_db
def test_commission_endpoint_is_host_only(api_client, host, guest, live_session):
    url = reverse("monetization:session-commission", args=[live_session.pk])

    api_client.force_authenticate(user=guest)
    forbidden = api_client.patch(url, {"percent": 5}, format="json")
    api_client.force_authenticate(user=host)
    allowed = api_client.patch(url, {"percent": 35}, format="json")

    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "forbidden"
    assert allowed.status_code == 200
    assert allowed.json()["featured_creator_commission"] == 35


@pytest.mark.django_db
def test_subscription_flow_over_http(api_client, fan, host):
    tier = upsert_tier(creator=host, tier=SubscriptionTier.Tier.BRONZE, name="Bronze", price_per_month=50)
    api_client.force_authenticate(user=fan)

    tiers = api_client.get(reverse("monetization:creator-tiers", args=[host.pk])).json()
    assert [item["id"] for item in tiers] == [str(tier.pk)]

    created = api_client.post(
        reverse("monetization:subscriptions"),
        {"creator_id": host.pk, "tier_id": str(tier.pk)},
        format="json",
    )
    assert created.status_code == 201
    subscription_id = created.json()["id"]
    assert created.json()["transaction_id"]

    duplicate = api_client.post(
        reverse("monetization:subscriptions"),
        {"creator_id": host.pk, "tier_id": str(tier.pk)},
        format="json",
    )
    assert duplicate.status_code == 400

    toggled = api_client.patch(
        reverse("monetization:subscription-auto-renew", args=[subscription_id]),
        {"enabled": False},
        format="json",
    )
    assert toggled.status_code == 200
    assert toggled.json()["auto_renew"] is False
    assert toggled.json()["updated"] is True

    cancelled = api_client.post(reverse("monetization:subscription-cancel", args=[subscription_id]))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == Subscription.Status.CANCELLED

    listing = api_client.get(reverse("monetization:subscriptions"), {"include_inactive": "true"}).json()
    assert [item["id"] for item in listing] == [subscription_id]
    assert api_client.get(reverse("monetization:subscriptions")).json() == []


@pytest.mark.django_db
def test_auto_renew_rejects_string_booleans(api_client, fan, host):
    tier = upsert_tier(creator=host, tier=1, name="Basic", price_per_month=10)
    subscription = subscribe(user=fan, creator_id=host.pk, tier_id=tier.pk).subscription
    api_client.force_authenticate(user=fan)

    response = api_client.patch(
        reverse("monetization:subscription-auto-renew", args=[subscription.pk]),
        {"enabled": "false"},
        format="json",
    )

    assert response.status_code == 400
    assert "enabled" in response.json()["details"]
    subscription.refresh_from_db()
    assert subscription.auto_renew is True


@pytest.mark.django_db
def test_cancelling_someone_elses_subscription_is_forbidden(api_client, fan, host, make_user):
    tier = upsert_tier(creator=host, tier=1, name="Basic", price_per_month=10)
    subscription = subscribe(user=fan, creator_id=host.pk, tier_id=tier.pk).subscription
    api_client.force_authenticate(user=make_user())

    response = api_client.post(reverse("monetization:subscription-cancel", args=[subscription.pk]))

    assert response.status_code == 403


@pytest.mark.django_db
def test_payout_flow_over_http(api_client, make_user):
    creator = make_user("payee", coins=800, is_creator=True)
    admin = make_user("ops", is_staff=True)
    api_client.force_authenticate(user=creator)

    link = api_client.post(reverse("monetization:payee-registration-link"))
    assert link.status_code == 201
    assert link.json()["payee_status"] == "pending"
    get_payout_provider().activate_payee(link.json()["payee_id"])

    status_response = api_client.get(reverse("monetization:payee-status"), {"force_sync": "true"})
    assert status_response.json()["status"] == "active"

    too_small = api_client.post(reverse("monetization:payouts"), {"amount": 10}, format="json")
    assert too_small.status_code == 400

    created = api_client.post(reverse("monetization:payouts"), {"amount": 300}, format="json")
    assert created.status_code == 201
    payout_id = created.json()["id"]
    assert created.json()["status"] == PayoutRequest.Status.PENDING
    assert api_client.get(reverse("monetization:wallet")).json()["available_balance"] == 500

    listing = api_client.get(reverse("monetization:payouts"), {"status": "pending"}).json()
    assert [item["id"] for item in listing["results"]] == [payout_id]

    forbidden = api_client.post(reverse("monetization:payout-submit", args=[payout_id]))
    assert forbidden.status_code == 403

    api_client.force_authenticate(user=admin)
    submitted = api_client.post(reverse("monetization:payout-submit", args=[payout_id]))
    assert submitted.status_code == 200
    assert submitted.json()["submitted"] is True
    assert submitted.json()["status"] == PayoutRequest.Status.PROCESSING

    api_client.force_authenticate(user=creator)
    cancel = api_client.post(reverse("monetization:payout-cancel", args=[payout_id]))
    assert cancel.status_code == 409


@pytest.mark.django_db
def test_cancel_pending_payout_over_http(api_client, make_user):
    creator = make_user("quitter", coins=300, is_creator=True)
    api_client.force_authenticate(user=creator)
    payout_id = api_client.post(reverse("monetization:payouts"), {"amount": 200}, format="json").json()["id"]

    response = api_client.post(reverse("monetization:payout-cancel", args=[payout_id]))

    assert response.status_code == 200
    assert response.json()["status"] == PayoutRequest.Status.CANCELLED
    assert api_client.get(reverse("monetization:wallet")).json()["available_balance"] == 300
