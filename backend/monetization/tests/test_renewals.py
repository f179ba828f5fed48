from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import OperationalError, connection
from django.utils import timezone

from monetization.models import MonetizationAuditLog, Subscription, SubscriptionPayment, SubscriptionTier
from monetization.services.ledger import create_transaction, get_balance
from monetization.services.subscriptions import (
    due_subscription_ids,
    process_renewals,
    renew_subscription,
    subscribe,
    upsert_tier,
)
from monetization.tasks import process_subscription_renewals


@pytest.fixture
def creator(make_user):
    return make_user("renewcreator", is_creator=True)


@pytest.fixture
def tier(creator):
    return upsert_tier(creator=creator, tier=SubscriptionTier.Tier.SILVER, name="Silver", price_per_month=50)


def _make_due(subscription, days_ago=1):
    expires_at = timezone.now() - timedelta(days=days_ago)
    Subscription.objects.filter(pk=subscription.pk).update(expires_at=expires_at, next_billing_at=expires_at)
    return expires_at


@pytest.mark.django_db
def test_renewal_extends_from_previous_expiry(creator, fan, tier):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription
    previous_expiry = _make_due(subscription, days_ago=3)

    result = renew_subscription(subscription.pk)

    renewed = result.subscription
    assert renewed.expires_at == previous_expiry + timedelta(days=30)
    assert renewed.next_billing_at == renewed.expires_at
    assert renewed.total_paid == 100
    assert result.payment.billing_period_start == previous_expiry
    assert result.payment.billing_period_end == renewed.expires_at
    assert result.payment.transaction.typed_metadata.renewal is True


@pytest.mark.django_db
def test_process_renewals_only_charges_due_auto_renewing_subscriptions(creator, tier, make_user):
    due = subscribe(user=make_user(coins=200), creator_id=creator.pk, tier_id=tier.pk).subscription
    not_due = subscribe(user=make_user(coins=200), creator_id=creator.pk, tier_id=tier.pk).subscription
    opted_out = subscribe(user=make_user(coins=200), creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(due)
    _make_due(opted_out)
    Subscription.objects.filter(pk=opted_out.pk).update(auto_renew=False)

    assert due_subscription_ids() == [due.pk]

    summary = process_renewals()

    assert summary.processed == 1
    assert summary.succeeded == 1
    assert summary.failed == 0
    assert SubscriptionPayment.objects.filter(subscription=due).count() == 2
    assert SubscriptionPayment.objects.filter(subscription=not_due).count() == 1
    assert SubscriptionPayment.objects.filter(subscription=opted_out).count() == 1
    assert get_balance(creator) == 200


@pytest.mark.django_db
def test_three_failed_renewals_cancel_the_subscription(creator, tier, make_user):
    subscriber = make_user(coins=50)
    subscription = subscribe(user=subscriber, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)

    first = process_renewals()
    second = process_renewals()

    subscription.refresh_from_db()
    assert first.failed == second.failed == 1
    assert first.cancelled == second.cancelled == 0
    assert subscription.status == Subscription.Status.ACTIVE
    assert subscription.failed_payment_count == 2

    third = process_renewals()

    subscription.refresh_from_db()
    tier.refresh_from_db()
    assert third.cancelled == 1
    assert subscription.status == Subscription.Status.CANCELLED
    assert subscription.auto_renew is False
    assert subscription.failed_payment_count == 3
    assert tier.subscriber_count == 0
    assert MonetizationAuditLog.objects.filter(
        event_type="subscription.renewal_failed", subject_id=str(subscription.pk)
    ).count() == 2
    assert MonetizationAuditLog.objects.filter(
        event_type="subscription.auto_cancelled", subject_id=str(subscription.pk)
    ).exists()
    assert get_balance(subscriber) == 0
    assert due_subscription_ids() == []


@pytest.mark.django_db
def test_successful_renewal_resets_failure_count(creator, tier, make_user):
    subscriber = make_user(coins=50)
    subscription = subscribe(user=subscriber, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)
    process_renewals()

    create_transaction(subscriber, 50, "purchase", idempotency_key="topup-renewal")
    summary = process_renewals()

    subscription.refresh_from_db()
    assert summary.succeeded == 1
    assert subscription.failed_payment_count == 0
    assert subscription.status == Subscription.Status.ACTIVE


@pytest.mark.django_db
def test_one_failure_does_not_abort_the_batch(creator, tier, make_user):
    paying = subscribe(user=make_user(coins=100), creator_id=creator.pk, tier_id=tier.pk).subscription
    broke = subscribe(user=make_user(coins=50), creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(paying, days_ago=2)
    _make_due(broke, days_ago=1)

    summary = process_renewals(batch_size=1)

    assert summary.processed == 2
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert summary.errors[0].subscription_id == str(broke.pk)
    assert summary.as_dict()["errors"][0]["subscription_id"] == str(broke.pk)


@pytest.mark.django_db
def test_renewal_task_returns_summary(creator, tier, fan):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)

    result = process_subscription_renewals()

    assert result["processed"] == 1
    assert result["succeeded"] == 1
    assert result["errors"] == []


@pytest.mark.django_db
def test_renewal_command_dry_run_lists_due_subscriptions(creator, tier, fan):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)
    out = StringIO()

    call_command("run_subscription_renewals", "--dry-run", stdout=out)

    assert f"Due for renewal: {subscription.pk}" in out.getvalue()
    assert SubscriptionPayment.objects.filter(subscription=subscription).count() == 1
    assert get_balance(fan) == 450


@pytest.mark.django_db
def test_renewal_command_charges_and_reports(creator, tier, fan):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)
    out = StringIO()

    call_command("run_subscription_renewals", "--limit", "5", stdout=out)

    assert "1 renewed" in out.getvalue()
    assert get_balance(fan) == 400


@pytest.mark.django_db
def test_renewal_command_fails_when_every_renewal_fails(creator, tier, make_user):
    subscription = subscribe(user=make_user(coins=50), creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)

    with pytest.raises(CommandError):
        call_command("run_subscription_renewals", stdout=StringIO())


@pytest.mark.django_db
def test_overlapping_renewal_runs_charge_each_cycle_once(creator, tier, fan, monkeypatch):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)
    stale_ids = due_subscription_ids()

    first = process_renewals()
    monkeypatch.setattr(
        "monetization.services.subscriptions.due_subscription_ids",
        lambda **kwargs: list(stale_ids),
    )
    second = process_renewals()

    subscription.refresh_from_db()
    assert first.succeeded == 1
    assert second.processed == 1
    assert second.skipped == 1
    assert second.succeeded == second.failed == 0
    assert second.as_dict()["skipped"] == 1
    assert get_balance(fan) == 400
    assert SubscriptionPayment.objects.filter(subscription=subscription).count() == 2
    assert subscription.failed_payment_count == 0
    assert subscription.expires_at > timezone.now() + timedelta(days=27)
    assert subscription.expires_at < timezone.now() + timedelta(days=30)


@pytest.mark.django_db
def test_renewal_with_due_cutoff_skips_subscription_not_yet_due(creator, tier, fan):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription

    assert renew_subscription(subscription.pk, due_before=timezone.now()) is None

    subscription.refresh_from_db()
    assert subscription.total_paid == 50
    assert get_balance(fan) == 450


@pytest.mark.django_db
def test_database_errors_are_not_counted_as_payment_strikes(creator, tier, fan, monkeypatch):
    subscription = subscribe(user=fan, creator_id=creator.pk, tier_id=tier.pk).subscription
    _make_due(subscription)

    def locked(subscription_id, **kwargs):
        raise OperationalError("database table is locked: monetization_wallet")

    monkeypatch.setattr("monetization.services.subscriptions.renew_subscription", locked)
    summary = process_renewals()

    subscription.refresh_from_db()
    assert summary.failed == 1
    assert summary.cancelled == 0
    assert "locked" in summary.errors[0].error
    assert subscription.failed_payment_count == 0
    assert not MonetizationAuditLog.objects.filter(
        event_type__in=["subscription.renewal_failed", "subscription.auto_cancelled"],
        subject_id=str(subscription.pk),
    ).exists()


@pytest.mark.django_db
def test_sqlite_renewals_run_sequentially_with_several_workers(creator, tier, make_user, settings):
    if connection.vendor != "sqlite":
        pytest.skip("Sequential fallback only applies to SQLite.")
    settings.SUBSCRIPTION_RENEWAL_MAX_WORKERS = 4
    subscriptions = [
        subscribe(user=make_user(coins=100), creator_id=creator.pk, tier_id=tier.pk).subscription
        for _ in range(3)
    ]
    for subscription in subscriptions:
        _make_due(subscription)

    summary = process_renewals(batch_size=3)

    assert summary.succeeded == 3
    assert summary.failed == 0
    assert get_balance(creator) == 300


@pytest.mark.django_db(transaction=True)
def test_parallel_renewal_batches_renew_every_subscription(make_user, settings):
    if connection.vendor != "postgresql":
        pytest.skip("Row-level locking requires PostgreSQL.")
    settings.SUBSCRIPTION_RENEWAL_MAX_WORKERS = 4
    creator = make_user("parallelcreator", is_creator=True)
    tier = upsert_tier(creator=creator, tier=SubscriptionTier.Tier.SILVER, name="Silver", price_per_month=50)
    subscriptions = [
        subscribe(user=make_user(coins=100), creator_id=creator.pk, tier_id=tier.pk).subscription
        for _ in range(7)
    ]
    for subscription in subscriptions:
        _make_due(subscription)

    summary = process_renewals(batch_size=3)

    assert summary.processed == 7
    assert summary.succeeded == 7
    assert summary.failed == 0
    assert get_balance(creator) == 700
    assert not Subscription.objects.filter(failed_payment_count__gt=0).exists()
    assert due_subscription_ids() == []
