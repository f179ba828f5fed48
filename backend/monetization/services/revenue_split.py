"""Tips and gifts sent during a live session, split between the host and a featured guest."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import F

from monetization.models import (
    LiveSession,
    SessionFeaturedCreator,
    SessionGift,
    VirtualGift,
    WalletTransaction,
)
from monetization.services.errors import AuthorizationError, NotFound, ValidationError
from monetization.services.ledger import (
    get_balance,
    link_legs,
    lock_wallets,
    post_entry,
    resolve_idempotency_race,
    user_pk,
)
from monetization.services.metadata import GiftMetadata, TipMetadata

logger = logging.getLogger(__name__)

User = get_user_model()

TransactionType = WalletTransaction.TransactionType


@dataclass(frozen=True)
class TipResult:
    sender_debit: WalletTransaction
    host_credit: Optional[WalletTransaction]
    guest_credit: Optional[WalletTransaction]
    new_balance: int
    created: bool


@dataclass(frozen=True)
class GiftResult:
    sender_debit: WalletTransaction
    recipient_credit: WalletTransaction
    session_gift: Optional[SessionGift]
    created: bool


def split_tip_amount(amount: int, commission_percent: int) -> Tuple[int, int]:
    """Return ``(host_amount, guest_amount)``; the host share is rounded down."""

    host_amount = amount * commission_percent // 100
    return host_amount, amount - host_amount


def send_tip(
    *,
    session_id,
    sender,
    amount: int,
    recipient_creator_id=None,
    idempotency_key: Optional[str] = None,
) -> TipResult:
    """Debit the sender and credit the host, or split with a featured guest by commission."""

    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 1:
        raise ValidationError("Tip amount must be at least 1 coin.", amount=amount)

    sender_id = user_pk(sender)
    key = idempotency_key or f"tip_{sender_id}_{session_id}_{amount}_{int(time.time())}"

    try:
        with transaction.atomic():
            session = _lock_live_session(session_id)
            guest_id = _resolve_guest(session, recipient_creator_id)
            _reject_self_payment(sender_id, session.host_id if guest_id is None else guest_id)

            # The commission is read under the session lock, so a concurrent change applies to later tips only.
            commission = session.featured_creator_commission if guest_id is not None else 100
            host_amount, guest_amount = split_tip_amount(amount, commission)

            participants = [sender_id, session.host_id] + ([guest_id] if guest_id is not None else [])
            wallets = lock_wallets(participants, create_missing=participants[1:])

            debit = post_entry(
                wallet=wallets[sender_id],
                amount=-amount,
                transaction_type=TransactionType.TIP,
                idempotency_key=key,
                metadata=TipMetadata(
                    session_id=str(session.pk),
                    sender_id=str(sender_id),
                    role="sender",
                    commission_percent=commission if guest_id is not None else None,
                ),
                description=f"Tip in live session {session.pk}",
            )
            if not debit.created:
                return _replayed_tip(debit.transaction, key, sender_id)

            host_credit = None
            if host_amount > 0:
                host_credit = post_entry(
                    wallet=wallets[session.host_id],
                    amount=host_amount,
                    transaction_type=TransactionType.TIP,
                    idempotency_key=f"{key}:host",
                    metadata=TipMetadata(
                        session_id=str(session.pk),
                        sender_id=str(sender_id),
                        role="host",
                        commission_percent=commission if guest_id is not None else None,
                    ),
                    description=(
                        f"Host commission ({commission}%) on tip in live session {session.pk}"
                        if guest_id is not None
                        else f"Tip received in live session {session.pk}"
                    ),
                ).transaction

            guest_credit = None
            if guest_amount > 0:
                guest_credit = post_entry(
                    wallet=wallets[guest_id],
                    amount=guest_amount,
                    transaction_type=TransactionType.TIP,
                    idempotency_key=f"{key}:guest",
                    metadata=TipMetadata(
                        session_id=str(session.pk),
                        sender_id=str(sender_id),
                        role="guest",
                        commission_percent=commission,
                    ),
                    description=f"Tip received as featured creator in live session {session.pk}",
                ).transaction

            if guest_id is not None:
                # Display counter tracks the full tip, not the guest share.
                SessionFeaturedCreator.objects.filter(session=session, creator_id=guest_id).update(
                    tips_received=F("tips_received") + amount
                )
            link_legs(debit.transaction, guest_credit or host_credit)
    except IntegrityError as exc:
        existing = resolve_idempotency_race(key, exc)
        return _replayed_tip(existing, key, sender_id)

    logger.info(
        "Tip of %s coins from user %s in session %s (host=%s guest=%s).",
        amount,
        sender_id,
        session.pk,
        host_amount,
        guest_amount,
    )
    return TipResult(
        sender_debit=debit.transaction,
        host_credit=host_credit,
        guest_credit=guest_credit,
        new_balance=wallets[sender_id].balance,
        created=True,
    )


def send_gift(
    *,
    session_id,
    sender,
    gift_id,
    quantity: int = 1,
    recipient_creator_id=None,
    idempotency_key: Optional[str] = None,
) -> GiftResult:
    """Debit the full gift cost and credit it entirely to the guest, or the host when no guest is named."""

    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Gift quantity must be at least 1.", quantity=quantity)

    gift = VirtualGift.objects.filter(pk=gift_id, is_active=True).first()
    if gift is None:
        raise NotFound("Gift not found.", gift_id=str(gift_id))

    sender_id = user_pk(sender)
    total = gift.coin_cost * quantity
    key = idempotency_key or f"gift_{sender_id}_{session_id}_{gift.pk}_{quantity}_{int(time.time())}"

    try:
        with transaction.atomic():
            session = _lock_live_session(session_id)
            guest_id = _resolve_guest(session, recipient_creator_id)
            recipient_id = guest_id if guest_id is not None else session.host_id
            _reject_self_payment(sender_id, recipient_id)

            wallets = lock_wallets([sender_id, recipient_id], create_missing=[recipient_id])
            metadata = GiftMetadata(
                session_id=str(session.pk),
                gift_id=str(gift.pk),
                quantity=quantity,
                sender_id=str(sender_id),
            )
            debit = post_entry(
                wallet=wallets[sender_id],
                amount=-total,
                transaction_type=TransactionType.GIFT,
                idempotency_key=key,
                metadata=metadata,
                description=f"Sent {quantity}x {gift.name}",
            )
            if not debit.created:
                return _replayed_gift(debit.transaction, key)

            credit = post_entry(
                wallet=wallets[recipient_id],
                amount=total,
                transaction_type=TransactionType.GIFT,
                idempotency_key=f"{key}:credit",
                metadata=metadata,
                description=f"Received {quantity}x {gift.name}",
            )
            link_legs(debit.transaction, credit.transaction)

            session_gift = SessionGift.objects.create(
                session=session,
                sender_id=sender_id,
                gift=gift,
                quantity=quantity,
                total_coins=total,
                recipient_id=recipient_id,
                debit_transaction=debit.transaction,
            )
            LiveSession.objects.filter(pk=session.pk).update(
                total_gifts_received=F("total_gifts_received") + total
            )
            if guest_id is not None:
                SessionFeaturedCreator.objects.filter(session=session, creator_id=guest_id).update(
                    tips_received=F("tips_received") + total,
                    gift_count=F("gift_count") + quantity,
                )
    except IntegrityError as exc:
        existing = resolve_idempotency_race(key, exc)
        return _replayed_gift(existing, key)

    logger.info(
        "Gift %s x%s (%s coins) from user %s to user %s in session %s.",
        gift.name,
        quantity,
        total,
        sender_id,
        recipient_id,
        session.pk,
    )
    return GiftResult(
        sender_debit=debit.transaction,
        recipient_credit=credit.transaction,
        session_gift=session_gift,
        created=True,
    )


def set_session_commission(*, session_id, host, percent: int) -> LiveSession:
    """Change the host's share of guest tips; tips already sent keep their split."""

    if not isinstance(percent, int) or isinstance(percent, bool) or not 0 <= percent <= 100:
        raise ValidationError("Commission must be an integer between 0 and 100.", percent=percent)

    with transaction.atomic():
        session = _lock_session(session_id)
        if str(session.host_id) != str(user_pk(host)):
            raise AuthorizationError("Only the session host can change the commission.")
        previous = session.featured_creator_commission
        session.featured_creator_commission = percent
        session.save(update_fields=["featured_creator_commission", "updated_at"])

    logger.info("Session %s commission changed from %s%% to %s%%.", session.pk, previous, percent)
    return session


def add_featured_creator(*, session_id, host, creator_id) -> SessionFeaturedCreator:
    """Feature a guest creator in the host's session."""

    with transaction.atomic():
        session = _lock_session(session_id)
        if str(session.host_id) != str(user_pk(host)):
            raise AuthorizationError("Only the session host can feature creators.")
        if str(creator_id) == str(session.host_id):
            raise ValidationError("The host cannot be featured in their own session.")
        creator = User.objects.filter(pk=creator_id).first()
        if creator is None:
            raise NotFound("Creator not found.", creator_id=str(creator_id))
        featured, _created = SessionFeaturedCreator.objects.update_or_create(
            session=session,
            creator=creator,
            defaults={"is_active": True},
        )
    return featured


def _lock_session(session_id) -> LiveSession:
    try:
        return LiveSession.objects.select_for_update().get(pk=session_id)
    except LiveSession.DoesNotExist as exc:
        raise NotFound("Live session not found.", session_id=str(session_id)) from exc


def _lock_live_session(session_id) -> LiveSession:
    session = _lock_session(session_id)
    if session.status != LiveSession.Status.LIVE:
        raise ValidationError("Live session is not accepting tips or gifts.", session_id=str(session.pk))
    return session


def _resolve_guest(session: LiveSession, recipient_creator_id):
    if recipient_creator_id in (None, "") or str(recipient_creator_id) == str(session.host_id):
        return None
    guest = User.objects.filter(pk=recipient_creator_id).values_list("pk", flat=True).first()
    if guest is None:
        raise NotFound("Recipient creator not found.", recipient_creator_id=str(recipient_creator_id))
    featured = SessionFeaturedCreator.objects.filter(session=session, creator_id=guest, is_active=True)
    if not featured.exists():
        raise ValidationError(
            "Recipient is not a featured creator in this session.",
            recipient_creator_id=str(recipient_creator_id),
        )
    return guest


def _reject_self_payment(sender_id, recipient_id) -> None:
    if str(sender_id) == str(recipient_id):
        raise ValidationError("You cannot send coins to yourself.")


def _replayed_tip(debit: WalletTransaction, key: str, sender_id) -> TipResult:
    credits = {
        entry.idempotency_key: entry
        for entry in WalletTransaction.objects.filter(idempotency_key__in=[f"{key}:host", f"{key}:guest"])
    }
    return TipResult(
        sender_debit=debit,
        host_credit=credits.get(f"{key}:host"),
        guest_credit=credits.get(f"{key}:guest"),
        new_balance=get_balance(sender_id),
        created=False,
    )


def _replayed_gift(debit: WalletTransaction, key: str) -> GiftResult:
    credit = WalletTransaction.objects.get(idempotency_key=f"{key}:credit")
    session_gift = SessionGift.objects.filter(debit_transaction=debit).first()
    return GiftResult(sender_debit=debit, recipient_credit=credit, session_gift=session_gift, created=False)
