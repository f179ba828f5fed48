"""Wallet ledger: the single path through which coins are credited, debited or reserved.

Every mutation locks the affected wallet rows with ``select_for_update`` inside
``transaction.atomic()`` so concurrent debits serialise on the wallet and the
available balance (``balance - held_balance``) can never go negative.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Sum
from django.utils import timezone

from monetization.models import SpendHold, Wallet, WalletTransaction
from monetization.observability.metrics import INSUFFICIENT_BALANCE_COUNT, LEDGER_TRANSACTION_COUNT
from monetization.services.errors import (
    ConflictError,
    InsufficientBalance,
    NotFound,
    ValidationError,
    WalletNotFound,
)
from monetization.services.metadata import HoldMetadata, TransactionMetadata

logger = logging.getLogger(__name__)

User = get_user_model()

TransactionType = WalletTransaction.TransactionType


@dataclass(frozen=True)
class LedgerEntry:
    wallet: Wallet
    transaction: WalletTransaction
    created: bool


@dataclass(frozen=True)
class TransferResult:
    debit: WalletTransaction
    credit: WalletTransaction
    created: bool


@dataclass(frozen=True)
class ReconciliationResult:
    status: str
    balance: int = 0
    ledger_total: int = 0
    held_balance: int = 0
    pending_holds_total: int = 0

    @property
    def difference(self) -> int:
        return self.balance - self.ledger_total


def user_pk(user) -> object:
    return getattr(user, "pk", user)


def ensure_wallet(user) -> Wallet:
    """Return the user's wallet, opening an empty one on first use."""

    wallet, created = Wallet.objects.get_or_create(user_id=user_pk(user))
    if created:
        logger.debug("Opened wallet %s for user %s.", wallet.pk, wallet.user_id)
    return wallet


def get_balance(user) -> int:
    return ensure_wallet(user).balance


def get_available_balance(user) -> int:
    return ensure_wallet(user).available_balance


def list_transactions(user, limit: int = 50) -> List[WalletTransaction]:
    return list(
        WalletTransaction.objects.filter(user_id=user_pk(user)).order_by("-created_at")[:limit]
    )


def lock_wallets(user_ids: Iterable, *, create_missing: Iterable = ()) -> Dict[object, Wallet]:
    """Lock the wallets of ``user_ids`` in a stable order and return them keyed by user id.

    Must run inside ``transaction.atomic()``. Wallets for ids in ``create_missing``
    are opened when absent; any other missing wallet raises ``WalletNotFound``.
    """

    ids = list(dict.fromkeys(user_ids))
    for user_id in set(create_missing):
        if not Wallet.objects.filter(user_id=user_id).exists():
            if not User.objects.filter(pk=user_id).exists():
                raise NotFound(f"User {user_id} does not exist.", user_id=str(user_id))
            Wallet.objects.get_or_create(user_id=user_id)

    # Rows are locked in user_id order so two transfers between the same pair cannot deadlock.
    locked = {
        str(wallet.user_id): wallet
        for wallet in Wallet.objects.select_for_update().filter(user_id__in=ids).order_by("user_id")
    }
    wallets = {}
    for user_id in ids:
        wallet = locked.get(str(user_id))
        if wallet is None:
            logger.error("Wallet missing for user %s during a debit; ledger data is inconsistent.", user_id)
            raise WalletNotFound(f"No wallet exists for user {user_id}.", user_id=str(user_id))
        wallets[user_id] = wallet
    return wallets


def post_entry(
    *,
    wallet: Wallet,
    amount: int,
    transaction_type: str,
    idempotency_key: Optional[str] = None,
    metadata: Optional[TransactionMetadata] = None,
    description: str = "",
    release_held: int = 0,
) -> LedgerEntry:
    """Write one signed entry against an already locked wallet.

    ``release_held`` moves that many coins out of ``held_balance`` in the same
    write, which is how a hold is settled.
    """

    if idempotency_key:
        existing = WalletTransaction.objects.filter(idempotency_key=idempotency_key).first()
        if existing:
            _validate_existing(existing, wallet=wallet, amount=amount, transaction_type=transaction_type)
            return LedgerEntry(wallet=wallet, transaction=existing, created=False)

    held = wallet.held_balance - release_held
    if held < 0:
        raise ConflictError(
            "Cannot release more coins than are held.",
            held=wallet.held_balance,
            release=release_held,
        )
    available = wallet.balance - held
    if amount < 0 and available + amount < 0:
        INSUFFICIENT_BALANCE_COUNT.labels(transaction_type=transaction_type).inc()
        raise InsufficientBalance(
            required=-amount,
            available=available,
            balance=wallet.balance,
            held=wallet.held_balance,
        )

    wallet.balance += amount
    wallet.held_balance = held
    wallet.save(update_fields=["balance", "held_balance", "updated_at"])

    entry = WalletTransaction.objects.create(
        user_id=wallet.user_id,
        amount=amount,
        type=transaction_type,
        status=WalletTransaction.Status.COMPLETED,
        idempotency_key=idempotency_key or None,
        metadata=metadata.to_dict() if metadata else {},
        description=description,
    )
    LEDGER_TRANSACTION_COUNT.labels(transaction_type=transaction_type).inc()
    return LedgerEntry(wallet=wallet, transaction=entry, created=True)


def link_legs(debit: WalletTransaction, credit: WalletTransaction) -> None:
    """Point the two legs of a transfer at each other."""

    WalletTransaction.objects.filter(pk=debit.pk).update(related_transaction=credit)
    WalletTransaction.objects.filter(pk=credit.pk).update(related_transaction=debit)
    debit.related_transaction = credit
    credit.related_transaction = debit


def create_transaction(
    user,
    amount: int,
    transaction_type: str,
    *,
    idempotency_key: Optional[str] = None,
    metadata: Optional[TransactionMetadata] = None,
    description: str = "",
) -> WalletTransaction:
    """Credit (positive) or debit (negative) a single wallet.

    Replaying an ``idempotency_key`` returns the original row untouched.
    """

    _validate_amount(amount, allow_negative=True)
    user_id = user_pk(user)

    try:
        with transaction.atomic():
            wallets = lock_wallets([user_id], create_missing=[user_id] if amount > 0 else [])
            result = post_entry(
                wallet=wallets[user_id],
                amount=amount,
                transaction_type=transaction_type,
                idempotency_key=idempotency_key,
                metadata=metadata,
                description=description,
            )
    except IntegrityError as exc:
        existing = resolve_idempotency_race(idempotency_key, exc)
        _validate_existing(existing, wallet=None, amount=amount, transaction_type=transaction_type, user_id=user_id)
        return existing

    if result.created:
        logger.info(
            "Ledger %s of %s coins for user %s (%s).",
            "credit" if amount > 0 else "debit",
            abs(amount),
            user_id,
            transaction_type,
        )
    return result.transaction


def transfer(
    *,
    payer,
    payee,
    amount: int,
    debit_type: str,
    credit_type: str,
    idempotency_key: Optional[str] = None,
    debit_metadata: Optional[TransactionMetadata] = None,
    credit_metadata: Optional[TransactionMetadata] = None,
    description: str = "",
    credit_description: Optional[str] = None,
) -> TransferResult:
    """Move ``amount`` coins from ``payer`` to ``payee`` as two linked entries in one transaction."""

    _validate_amount(amount)
    payer_id, payee_id = user_pk(payer), user_pk(payee)
    if payer_id == payee_id:
        raise ValidationError("Cannot transfer coins to the same wallet.")

    credit_key = f"{idempotency_key}:credit" if idempotency_key else None
    try:
        with transaction.atomic():
            wallets = lock_wallets([payer_id, payee_id], create_missing=[payee_id])
            debit = post_entry(
                wallet=wallets[payer_id],
                amount=-amount,
                transaction_type=debit_type,
                idempotency_key=idempotency_key,
                metadata=debit_metadata,
                description=description,
            )
            if not debit.created:
                return _existing_transfer(debit.transaction, credit_key)

            credit = post_entry(
                wallet=wallets[payee_id],
                amount=amount,
                transaction_type=credit_type,
                idempotency_key=credit_key,
                metadata=credit_metadata,
                description=credit_description if credit_description is not None else description,
            )
            link_legs(debit.transaction, credit.transaction)
    except IntegrityError as exc:
        existing = resolve_idempotency_race(idempotency_key, exc)
        return _existing_transfer(existing, credit_key)

    logger.info(
        "Ledger transfer of %s coins from user %s to user %s (%s/%s).",
        amount,
        payer_id,
        payee_id,
        debit_type,
        credit_type,
    )
    return TransferResult(debit=debit.transaction, credit=credit.transaction, created=True)


def create_hold(user, amount: int, purpose: str, related_id: str = "") -> SpendHold:
    """Reserve ``amount`` available coins; the balance itself is untouched until settlement."""

    _validate_amount(amount)
    user_id = user_pk(user)

    with transaction.atomic():
        wallet = lock_wallets([user_id])[user_id]
        available = wallet.available_balance
        if available < amount:
            INSUFFICIENT_BALANCE_COUNT.labels(transaction_type=f"hold:{purpose}").inc()
            raise InsufficientBalance(
                required=amount,
                available=available,
                balance=wallet.balance,
                held=wallet.held_balance,
            )
        wallet.held_balance += amount
        wallet.save(update_fields=["held_balance", "updated_at"])
        hold = SpendHold.objects.create(
            user_id=user_id,
            amount=amount,
            purpose=purpose,
            related_id=str(related_id or ""),
        )

    logger.info("Placed %s hold %s of %s coins for user %s.", purpose, hold.pk, amount, user_id)
    return hold


def settle_hold(
    hold_id,
    *,
    transaction_type: str = TransactionType.CREATOR_PAYOUT,
    description: str = "",
    metadata: Optional[TransactionMetadata] = None,
) -> WalletTransaction:
    """Convert a pending hold into a real debit; settling twice returns the first debit."""

    with transaction.atomic():
        hold, wallet = _lock_hold(hold_id)
        if hold.status == SpendHold.Status.SETTLED:
            return hold.settlement_transaction
        if hold.status == SpendHold.Status.RELEASED:
            raise ConflictError("Hold was already released and cannot be settled.", hold_id=str(hold.pk))

        result = post_entry(
            wallet=wallet,
            amount=-hold.amount,
            transaction_type=transaction_type,
            idempotency_key=f"hold:{hold.pk}:settle",
            metadata=metadata or HoldMetadata(hold_id=str(hold.pk), purpose=hold.purpose, related_id=hold.related_id),
            description=description,
            release_held=hold.amount,
        )
        hold.status = SpendHold.Status.SETTLED
        hold.settled_at = timezone.now()
        hold.settlement_transaction = result.transaction
        hold.save(update_fields=["status", "settled_at", "settlement_transaction", "updated_at"])

    logger.info("Settled hold %s for user %s (%s coins).", hold.pk, hold.user_id, hold.amount)
    return result.transaction


def release_hold(hold_id) -> SpendHold:
    """Return held coins to the available balance; releasing twice is a no-op."""

    with transaction.atomic():
        hold, wallet = _lock_hold(hold_id)
        if hold.status == SpendHold.Status.RELEASED:
            return hold
        if hold.status == SpendHold.Status.SETTLED:
            raise ConflictError("Hold was already settled and cannot be released.", hold_id=str(hold.pk))

        if wallet.held_balance < hold.amount:
            raise ConflictError(
                "Wallet holds fewer coins than the hold being released.",
                hold_id=str(hold.pk),
                held=wallet.held_balance,
            )
        wallet.held_balance -= hold.amount
        wallet.save(update_fields=["held_balance", "updated_at"])
        hold.status = SpendHold.Status.RELEASED
        hold.released_at = timezone.now()
        hold.save(update_fields=["status", "released_at", "updated_at"])

    logger.info("Released hold %s for user %s (%s coins).", hold.pk, hold.user_id, hold.amount)
    return hold


def reconcile_wallet(user) -> ReconciliationResult:
    """Compare the stored balance with the sum of completed transactions."""

    user_id = user_pk(user)
    wallet = Wallet.objects.filter(user_id=user_id).first()
    if wallet is None:
        return ReconciliationResult(status="no_wallet")

    ledger_total = (
        WalletTransaction.objects.filter(user_id=user_id, status=WalletTransaction.Status.COMPLETED)
        .aggregate(total=Sum("amount"))["total"]
        or 0
    )
    pending_holds_total = (
        SpendHold.objects.filter(user_id=user_id, status=SpendHold.Status.PENDING)
        .aggregate(total=Sum("amount"))["total"]
        or 0
    )
    result = ReconciliationResult(
        status="ok",
        balance=wallet.balance,
        ledger_total=ledger_total,
        held_balance=wallet.held_balance,
        pending_holds_total=pending_holds_total,
    )

    if ledger_total != wallet.balance or pending_holds_total != wallet.held_balance:
        logger.warning(
            "Wallet %s for user %s does not reconcile: balance=%s ledger=%s held=%s pending_holds=%s.",
            wallet.pk,
            user_id,
            wallet.balance,
            ledger_total,
            wallet.held_balance,
            pending_holds_total,
        )
        return ReconciliationResult(
            status="discrepancy",
            balance=result.balance,
            ledger_total=result.ledger_total,
            held_balance=result.held_balance,
            pending_holds_total=result.pending_holds_total,
        )

    Wallet.objects.filter(pk=wallet.pk).update(last_reconciled_at=timezone.now())
    return result


def _lock_hold(hold_id):
    try:
        owner_id = SpendHold.objects.values_list("user_id", flat=True).get(pk=hold_id)
    except SpendHold.DoesNotExist as exc:
        raise NotFound(f"Hold {hold_id} does not exist.", hold_id=str(hold_id)) from exc
    wallet = lock_wallets([owner_id])[owner_id]
    hold = SpendHold.objects.select_for_update().get(pk=hold_id)
    return hold, wallet


def _validate_amount(amount, *, allow_negative: bool = False) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValidationError("Amount must be a whole number of coins.", amount=amount)
    if amount == 0 or (amount < 0 and not allow_negative):
        raise ValidationError("Amount must be a positive number of coins.", amount=amount)


def _validate_existing(
    existing: WalletTransaction,
    *,
    wallet: Optional[Wallet],
    amount: int,
    transaction_type: str,
    user_id=None,
) -> None:
    owner_id = wallet.user_id if wallet is not None else user_id
    if str(existing.user_id) != str(owner_id):
        raise ConflictError(
            "Idempotency key already used for a different wallet.",
            idempotency_key=existing.idempotency_key,
        )
    if existing.type != transaction_type or existing.amount != amount:
        raise ConflictError(
            "Idempotency key already used for a different transaction.",
            idempotency_key=existing.idempotency_key,
            existing_amount=existing.amount,
            requested_amount=amount,
        )


def resolve_idempotency_race(idempotency_key: Optional[str], exc: IntegrityError) -> WalletTransaction:
    if idempotency_key:
        existing = WalletTransaction.objects.filter(idempotency_key=idempotency_key).first()
        if existing is not None:
            logger.info("Idempotency key %s resolved to concurrent write %s.", idempotency_key, existing.pk)
            return existing
    raise ConflictError("Concurrent ledger write could not be resolved.", idempotency_key=idempotency_key) from exc


def _existing_transfer(debit: WalletTransaction, credit_key: Optional[str]) -> TransferResult:
    credit = None
    if debit.related_transaction_id:
        credit = WalletTransaction.objects.get(pk=debit.related_transaction_id)
    elif credit_key:
        credit = WalletTransaction.objects.filter(idempotency_key=credit_key).first()
    if credit is None:
        raise ConflictError("Transfer debit exists without its credit leg.", debit_id=str(debit.pk))
    return TransferResult(debit=debit, credit=credit, created=False)
