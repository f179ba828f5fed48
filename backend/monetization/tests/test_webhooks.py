import json

import pytest
from django.urls import reverse

from monetization.models import PayeeAccount, PayoutRequest, ProviderWebhookEventLog, Wallet, WalletTransaction
from monetization.services.payout_provider import MOCK_WEBHOOK_SIGNATURE, compute_webhook_signature, get_payout_provider
from monetization.services.payouts import build_settlement_service


@pytest.fixture
def creator(make_user):
    return make_user("streamer", coins=1000, is_creator=True)


@pytest.fixture
def submitted_payout(creator):
    provider = get_payout_provider()
    settlement = build_settlement_service(provider)
    account = settlement.generate_registration_link(creator=creator)
    provider.activate_payee(account.payee_id)
    settlement.sync_payee_status(creator=creator)
    payout = settlement.request_payout(creator=creator, amount=500)
    return settlement.submit_payout(payout.pk).payout


def _post(client, event, signature=MOCK_WEBHOOK_SIGNATURE, header="HTTP_X_PAYOUT_SIGNATURE"):
    body = event if isinstance(event, bytes) else json.dumps(event).encode("utf-8")
    url = reverse("monetization:payout-webhook")
    return client.post(url, data=body, content_type="application/json", **{header: signature})


def _payout_debits(user):
    return WalletTransaction.objects.filter(user=user, type=WalletTransaction.TransactionType.CREATOR_PAYOUT)


@pytest.mark.django_db
def test_invalid_signature_is_rejected(api_client, submitted_payout):
    event = {"event_type": "payout_completed", "payment_id": submitted_payout.provider_payment_id, "status": "completed"}

    response = _post(api_client, event, signature="forged")

    assert response.status_code == 401
    submitted_payout.refresh_from_db()
    assert submitted_payout.status == PayoutRequest.Status.PROCESSING
    assert not ProviderWebhookEventLog.objects.exists()


@pytest.mark.django_db
def test_completion_webhook_settles_payout(api_client, submitted_payout, creator):
    event = {
        "event_type": "payment_status_changed",
        "data": {"payment_id": submitted_payout.provider_payment_id, "status": "completed", "amount": "50.00"},
    }

    response = _post(api_client, event)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    submitted_payout.refresh_from_db()
    assert submitted_payout.status == PayoutRequest.Status.COMPLETED
    assert Wallet.objects.get(user=creator).balance == 500
    log_entry = ProviderWebhookEventLog.objects.get()
    assert log_entry.status == ProviderWebhookEventLog.Status.PROCESSED
    assert log_entry.handled is True
    assert log_entry.subject_id == submitted_payout.provider_payment_id


@pytest.mark.django_db
def test_duplicate_delivery_is_acknowledged_without_reprocessing(api_client, submitted_payout, creator):
    event = {"event_type": "payout_completed", "payment_id": submitted_payout.provider_payment_id, "status": "completed"}

    first = _post(api_client, event)
    second = _post(api_client, event)

    assert first.status_code == second.status_code == 200
    assert second.json() == {"received": True, "status": ProviderWebhookEventLog.Status.PROCESSED}
    assert _payout_debits(creator).count() == 1
    assert ProviderWebhookEventLog.objects.count() == 1


@pytest.mark.django_db
def test_redelivered_terminal_status_with_new_body_debits_once(api_client, submitted_payout, creator):
    payment_id = submitted_payout.provider_payment_id

    _post(api_client, {"event_type": "payout_completed", "payment_id": payment_id, "status": "completed"})
    response = _post(
        api_client,
        {"event_type": "payout_completed", "payment_id": payment_id, "status": "completed", "currency": "USD"},
    )

    assert response.status_code == 200
    assert _payout_debits(creator).count() == 1
    assert Wallet.objects.get(user=creator).balance == 500
    assert ProviderWebhookEventLog.objects.count() == 2


@pytest.mark.django_db
def test_failure_webhook_releases_hold(api_client, submitted_payout, creator):
    event = {
        "event_type": "payout_failed",
        "payment_id": submitted_payout.provider_payment_id,
        "status": "failed",
        "failure_reason": "Invalid bank account",
    }

    response = _post(api_client, event, header="HTTP_X_WEBHOOK_SIGNATURE")

    assert response.status_code == 200
    submitted_payout.refresh_from_db()
    wallet = Wallet.objects.get(user=creator)
    assert submitted_payout.status == PayoutRequest.Status.FAILED
    assert submitted_payout.failure_reason == "Invalid bank account"
    assert wallet.balance == 1000
    assert wallet.held_balance == 0


@pytest.mark.django_db
def test_hmac_signed_payee_webhook_activates_account(api_client, creator, settings):
    settlement = build_settlement_service()
    account = settlement.generate_registration_link(creator=creator)
    body = json.dumps({"event_type": "payee_status_changed", "payee_id": account.payee_id, "status": "active"}).encode()

    signature = compute_webhook_signature(body, settings.PAYOUT_PROVIDER_WEBHOOK_SECRET)

    response = _post(api_client, body, signature=signature)

    assert response.status_code == 200
    assert PayeeAccount.objects.get(pk=account.pk).payee_status == PayeeAccount.PayeeStatus.ACTIVE


@pytest.mark.django_db
def test_unknown_status_is_logged_as_failed_and_acknowledged(api_client, submitted_payout, creator):
    event = {"event_type": "payment_status_changed", "payment_id": submitted_payout.provider_payment_id,
             "status": "reversed"}

    response = _post(api_client, event)

    assert response.status_code == 200
    assert response.json()["error"] == "Internal processing error"
    log_entry = ProviderWebhookEventLog.objects.get()
    assert log_entry.status == ProviderWebhookEventLog.Status.FAILED
    assert log_entry.handled is False
    assert "reversed" in log_entry.last_error
    submitted_payout.refresh_from_db()
    assert submitted_payout.status == PayoutRequest.Status.PROCESSING
    assert Wallet.objects.get(user=creator).held_balance == 500


@pytest.mark.django_db
def test_unhandled_events_and_unknown_payments_are_ignored(api_client):
    _post(api_client, {"event_type": "program_updated"})
    _post(api_client, {"event_type": "payout_completed", "payment_id": "pay_unknown", "status": "completed"})

    statuses = set(ProviderWebhookEventLog.objects.values_list("status", flat=True))
    assert statuses == {ProviderWebhookEventLog.Status.IGNORED}


@pytest.mark.django_db
@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b'["a", "list"]',
        json.dumps({"event_type": "payout_completed", "status": "completed"}).encode(),
        json.dumps({"event_type": "payee_status_changed", "payee_id": "p-1"}).encode(),
    ],
)
def test_malformed_payloads_are_rejected(api_client, body):
    response = _post(api_client, body)

    assert response.status_code == 400
    assert not ProviderWebhookEventLog.objects.exists()


@pytest.mark.django_db
def test_mock_provider_refused_in_production(api_client, settings):
    settings.APP_ENV = "production"

    response = _post(api_client, {"event_type": "payout_completed", "payment_id": "x", "status": "completed"})

    assert response.status_code == 500
