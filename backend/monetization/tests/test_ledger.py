import threading

import pytest
from django.core.exceptions import ValidationError as ModelValidationError
from django.db import connection, connections
from django.db.models import Sum

from monetization.models import SpendHold, Wallet, WalletTransaction
from monetization.services.errors import ConflictError, InsufficientBalance, ValidationError
from monetization.services.ledger import (
    create_hold,
    create_transaction,
    get_available_balance,
    get_balance,
    reconcile_wallet,
    release_hold,
    settle_hold,
    transfer,
)
from monetization.services.metadata import HoldMetadata, SubscriptionChargeMetadata, TipMetadata, parse_metadata

TransactionType = WalletTransaction.TransactionType


def _ledger_sum(user):
    return WalletTransaction.objects.filter(user=user).aggregate(total=Sum("amount"))["total"] or 0


@pytest.mark.django_db
def test_new_user_gets_an_empty_wallet(make_user):
    user = make_user()

    wallet = Wallet.objects.get(user=user)
    assert wallet.balance == 0
    assert wallet.held_balance == 0


@pytest.mark.django_db
def test_credit_and_debit_update_balance_and_append_rows(make_user):
    user = make_user()

    create_transaction(user, 300, TransactionType.PURCHASE)
    debit = create_transaction(user, -120, TransactionType.ADJUSTMENT, description="Manual correction")

    assert get_balance(user) == 180
    assert debit.amount == -120
    assert debit.status == WalletTransaction.Status.COMPLETED
    assert _ledger_sum(user) == 180


@pytest.mark.django_db
def test_debit_beyond_balance_is_rejected_without_side_effects(make_user):
    user = make_user(coins=50)

    with pytest.raises(InsufficientBalance) as exc:
        create_transaction(user, -51, TransactionType.TIP)

    assert exc.value.required == 51
    assert exc.value.available == 50
    assert get_balance(user) == 50
    assert WalletTransaction.objects.filter(user=user).count() == 1


@pytest.mark.django_db
@pytest.mark.parametrize("amount", [0, 1.5, True, "10"])
def test_invalid_amounts_are_rejected(make_user, amount):
    user = make_user()

    with pytest.raises(ValidationError):
        create_transaction(user, amount, TransactionType.PURCHASE)


@pytest.mark.django_db
def test_replayed_idempotency_key_returns_original_row(make_user):
    user = make_user()

    first = create_transaction(user, 200, TransactionType.PURCHASE, idempotency_key="purchase-1")
    second = create_transaction(user, 200, TransactionType.PURCHASE, idempotency_key="purchase-1")

    assert first.pk == second.pk
    assert get_balance(user) == 200
    assert WalletTransaction.objects.filter(idempotency_key="purchase-1").count() == 1


@pytest.mark.django_db
def test_idempotency_key_reused_for_different_amount_conflicts(make_user):
    user = make_user()
    create_transaction(user, 200, TransactionType.PURCHASE, idempotency_key="purchase-2")

    with pytest.raises(ConflictError):
        create_transaction(user, 250, TransactionType.PURCHASE, idempotency_key="purchase-2")

    assert get_balance(user) == 200


@pytest.mark.django_db
def test_wallet_transactions_are_immutable(make_user):
    user = make_user(coins=10)
    entry = WalletTransaction.objects.get(user=user)

    entry.amount = 99
    with pytest.raises(ModelValidationError):
        entry.save()
    with pytest.raises(ModelValidationError):
        entry.delete()

    entry.refresh_from_db()
    assert entry.amount == 10


@pytest.mark.django_db
def test_transfer_conserves_coins_and_links_legs(make_user):
    payer = make_user(coins=400)
    payee = make_user()

    result = transfer(
        payer=payer,
        payee=payee,
        amount=150,
        debit_type=TransactionType.SUBSCRIPTION_PAYMENT,
        credit_type=TransactionType.SUBSCRIPTION_EARNINGS,
        idempotency_key="transfer-1",
    )

    assert result.created is True
    assert result.debit.amount == -150
    assert result.credit.amount == 150
    assert result.debit.related_transaction_id == result.credit.pk
    assert result.credit.related_transaction_id == result.debit.pk
    assert get_balance(payer) + get_balance(payee) == 400

    replay = transfer(
        payer=payer,
        payee=payee,
        amount=150,
        debit_type=TransactionType.SUBSCRIPTION_PAYMENT,
        credit_type=TransactionType.SUBSCRIPTION_EARNINGS,
        idempotency_key="transfer-1",
    )
    assert replay.created is False
    assert replay.debit.pk == result.debit.pk
    assert replay.credit.pk == result.credit.pk
    assert get_balance(payer) == 250
    assert get_balance(payee) == 150


@pytest.mark.django_db
def test_transfer_to_same_wallet_is_rejected(make_user):
    user = make_user(coins=100)

    with pytest.raises(ValidationError):
        transfer(
            payer=user,
            payee=user,
            amount=10,
            debit_type=TransactionType.TIP,
            credit_type=TransactionType.TIP,
        )


@pytest.mark.django_db
def test_failed_transfer_writes_neither_leg(make_user):
    payer = make_user(coins=20)
    payee = make_user()

    with pytest.raises(InsufficientBalance):
        transfer(
            payer=payer,
            payee=payee,
            amount=21,
            debit_type=TransactionType.TIP,
            credit_type=TransactionType.TIP,
        )

    assert get_balance(payer) == 20
    assert get_balance(payee) == 0
    assert not WalletTransaction.objects.filter(user=payee).exists()


@pytest.mark.django_db
def test_hold_reserves_available_balance_only(make_user):
    user = make_user(coins=300)

    hold = create_hold(user, 200, SpendHold.Purpose.PAYOUT, related_id="payout-x")

    wallet = Wallet.objects.get(user=user)
    assert hold.status == SpendHold.Status.PENDING
    assert wallet.balance == 300
    assert wallet.held_balance == 200
    assert get_available_balance(user) == 100

    with pytest.raises(InsufficientBalance):
        create_transaction(user, -150, TransactionType.TIP)
    with pytest.raises(InsufficientBalance):
        create_hold(user, 101, SpendHold.Purpose.CALL)


@pytest.mark.django_db
def test_settle_hold_debits_once(make_user):
    user = make_user(coins=300)
    hold = create_hold(user, 120, SpendHold.Purpose.CALL, related_id="call-1")

    debit = settle_hold(hold.pk, transaction_type=TransactionType.CALL_CHARGE)
    again = settle_hold(hold.pk, transaction_type=TransactionType.CALL_CHARGE)

    wallet = Wallet.objects.get(user=user)
    hold.refresh_from_db()
    assert debit.pk == again.pk
    assert debit.amount == -120
    assert wallet.balance == 180
    assert wallet.held_balance == 0
    assert hold.status == SpendHold.Status.SETTLED
    assert hold.settlement_transaction_id == debit.pk
    assert isinstance(debit.typed_metadata, HoldMetadata)
    assert debit.typed_metadata.related_id == "call-1"

    with pytest.raises(ConflictError):
        release_hold(hold.pk)


@pytest.mark.django_db
def test_release_hold_restores_available_balance_and_is_repeatable(make_user):
    user = make_user(coins=300)
    hold = create_hold(user, 250, SpendHold.Purpose.PAYOUT)

    release_hold(hold.pk)
    release_hold(hold.pk)

    wallet = Wallet.objects.get(user=user)
    hold.refresh_from_db()
    assert hold.status == SpendHold.Status.RELEASED
    assert wallet.balance == 300
    assert wallet.held_balance == 0

    with pytest.raises(ConflictError):
        settle_hold(hold.pk)


@pytest.mark.django_db
def test_reconcile_wallet_detects_tampered_balance(make_user):
    user = make_user(coins=90)
    create_hold(user, 40, SpendHold.Purpose.SESSION)

    assert reconcile_wallet(user).status == "ok"
    assert Wallet.objects.get(user=user).last_reconciled_at is not None

    Wallet.objects.filter(user=user).update(balance=95)
    result = reconcile_wallet(user)

    assert result.status == "discrepancy"
    assert result.difference == 5
    assert result.pending_holds_total == 40


@pytest.mark.django_db
def test_transaction_metadata_round_trips_through_json(make_user):
    user = make_user(coins=100)
    metadata = TipMetadata(session_id="s-1", sender_id=str(user.pk), role="sender", commission_percent=25)

    entry = create_transaction(user, -10, TransactionType.TIP, metadata=metadata)

    entry.refresh_from_db()
    assert entry.metadata["kind"] == "tip"
    assert entry.typed_metadata == metadata


def test_parse_metadata_rejects_unknown_kind():
    assert parse_metadata({}) is None
    with pytest.raises(ValueError):
        parse_metadata({"kind": "loyalty_points"})

    charge = parse_metadata(
        {
            "kind": "subscription_charge",
            "subscription_id": "sub",
            "tier_id": "tier",
            "subscriber_id": "1",
            "creator_id": "2",
            "period_start": "2026-01-01T00:00:00+00:00",
            "period_end": "2026-01-31T00:00:00+00:00",
            "renewal": True,
        }
    )
    assert isinstance(charge, SubscriptionChargeMetadata)
    assert charge.renewal is True


@pytest.mark.django_db(transaction=True)
def test_concurrent_debits_never_overdraw(make_user):
    if connection.vendor != "postgresql":
        pytest.skip("Row-level locking requires PostgreSQL.")

    user = make_user(coins=100)
    outcomes = []
    barrier = threading.Barrier(5)

    def spend():
        try:
            barrier.wait()
            create_transaction(user.pk, -60, TransactionType.TIP)
            outcomes.append("ok")
        except InsufficientBalance:
            outcomes.append("rejected")
        finally:
            connections.close_all()

    threads = [threading.Thread(target=spend) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("rejected") == 4
    assert get_balance(user) == 40
    assert _ledger_sum(user) == 40
