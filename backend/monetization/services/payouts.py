"""Payee registration, payout submission and reconciliation of provider outcomes."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from monetization.models import MonetizationAuditLog, PayeeAccount, PayoutRequest, SpendHold, WalletTransaction
from monetization.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFound,
    ProviderError,
    ProviderTimeout,
    ValidationError,
)
from monetization.services.ledger import create_hold, release_hold, settle_hold, user_pk
from monetization.services.metadata import PayoutMetadata
from monetization.services.notifications import notify_creator_after_commit
from monetization.services.payout_provider import (
    PayoutProviderAdapter,
    get_payout_provider,
    map_payee_status,
    map_payment_status,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PayeeStatusResult:
    status: str
    payee_id: Optional[str] = None
    preferred_currency: str = "USD"
    last_synced_at: Optional[datetime] = None
    payout_methods: tuple = ()

    @classmethod
    def from_account(cls, account: Optional[PayeeAccount]) -> "PayeeStatusResult":
        if account is None:
            return cls(status=PayeeAccount.PayeeStatus.NOT_REGISTERED)
        return cls(
            status=account.payee_status,
            payee_id=account.payee_id,
            preferred_currency=account.preferred_currency or "USD",
            last_synced_at=account.last_synced_at,
            payout_methods=tuple(account.payout_methods or ()),
        )


@dataclass(frozen=True)
class SubmitPayoutResult:
    payout: PayoutRequest
    submitted: bool
    timed_out: bool = False


class PayoutSettlementService:
    """Moves creator payouts through ``pending -> processing -> terminal``.

    Provider calls are made outside any database transaction; only the local
    bookkeeping that follows them (hold settle or release, status updates) is
    transactional.
    """

    def __init__(
        self,
        provider: PayoutProviderAdapter,
        *,
        coin_rate: Decimal,
        minimum_coins: int = 100,
        redirect_url: str = "",
        sync_interval_seconds: int = 300,
    ) -> None:
        self.provider = provider
        self.coin_rate = Decimal(coin_rate)
        self.minimum_coins = minimum_coins
        self.redirect_url = redirect_url
        self.sync_interval = timedelta(seconds=sync_interval_seconds)

    def coins_to_fiat(self, coins: int) -> Decimal:
        return (Decimal(coins) * self.coin_rate).quantize(CENTS, rounding=ROUND_HALF_UP)

    def request_payout(self, *, creator, amount: int, request_id: str = "") -> PayoutRequest:
        """Reserve ``amount`` coins and open a pending payout request."""

        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValidationError("Payout amount must be a whole number of coins.", amount=amount)
        if amount < self.minimum_coins:
            raise ValidationError(
                f"Minimum payout is {self.minimum_coins} coins.",
                amount=amount,
                minimum=self.minimum_coins,
            )

        creator_id = user_pk(creator)
        payout_id = uuid.uuid4()
        with transaction.atomic():
            hold = create_hold(creator_id, amount, SpendHold.Purpose.PAYOUT, related_id=str(payout_id))
            payout = PayoutRequest.objects.create(
                id=payout_id,
                creator_id=creator_id,
                amount=amount,
                hold=hold,
                payout_method=PayoutRequest.Method.PROVIDER,
            )
            MonetizationAuditLog.objects.create(
                event_type="payout.requested",
                actor=f"user:{creator_id}",
                subject_id=str(payout.pk),
                request_id=request_id or "",
                details={"amount": amount, "hold_id": str(hold.pk)},
            )

        logger.info("Creator %s requested payout %s of %s coins.", creator_id, payout.pk, amount)
        return payout

    def cancel_payout_request(self, *, creator, payout_id, request_id: str = "") -> PayoutRequest:
        """Withdraw a payout that has not been submitted yet and release its hold."""

        creator_id = user_pk(creator)
        with transaction.atomic():
            payout = self._lock_payout(payout_id)
            if str(payout.creator_id) != str(creator_id):
                raise AuthorizationError("Payout request belongs to another creator.")
            if payout.status != PayoutRequest.Status.PENDING:
                raise ConflictError("Only pending payout requests can be cancelled.", status=payout.status)

            release_hold(payout.hold_id)
            payout.status = PayoutRequest.Status.CANCELLED
            payout.failure_reason = "Cancelled by creator"
            payout.save(update_fields=["status", "failure_reason", "updated_at"])
            MonetizationAuditLog.objects.create(
                event_type="payout.cancelled",
                actor=f"user:{creator_id}",
                subject_id=str(payout.pk),
                request_id=request_id or "",
                details={"amount": payout.amount},
            )

        logger.info("Creator %s cancelled payout %s.", creator_id, payout.pk)
        return payout

    def generate_registration_link(self, *, creator) -> PayeeAccount:
        """Ask the provider for an onboarding link and mark the payee pending."""

        creator_id = user_pk(creator)
        account = PayeeAccount.objects.filter(creator_id=creator_id).first()
        if account is not None and account.payee_status == PayeeAccount.PayeeStatus.ACTIVE:
            raise ValidationError("Payout account is already connected.")

        payee_id = account.payee_id if account is not None else str(creator_id)
        link = self.provider.generate_registration_link(payee_id, self.redirect_url)

        account, _created = PayeeAccount.objects.update_or_create(
            creator_id=creator_id,
            defaults={
                "payee_id": payee_id,
                "payee_status": PayeeAccount.PayeeStatus.PENDING,
                "registration_link": link.url,
                "registration_link_expires_at": link.expires_at,
            },
        )
        logger.info("Issued payout registration link for creator %s.", creator_id)
        return account

    def sync_payee_status(self, *, creator) -> PayeeStatusResult:
        """Refresh the payee status from the provider, falling back to the cached value."""

        creator_id = user_pk(creator)
        account = PayeeAccount.objects.filter(creator_id=creator_id).first()
        if account is None:
            return PayeeStatusResult.from_account(None)

        try:
            response = self.provider.get_payee_status(account.payee_id)
            status = map_payee_status(response.status)
        except ProviderError as exc:
            logger.warning("Payee status sync failed for creator %s: %s", creator_id, exc.message)
            return PayeeStatusResult.from_account(account)

        account.payee_status = status
        account.payout_methods = list(response.payout_methods)
        account.last_synced_at = timezone.now()
        account.save(update_fields=["payee_status", "payout_methods", "last_synced_at", "updated_at"])
        return PayeeStatusResult.from_account(account)

    def get_payee_status(self, *, creator, force_sync: bool = False) -> PayeeStatusResult:
        account = PayeeAccount.objects.filter(creator_id=user_pk(creator)).first()
        if account is None:
            return PayeeStatusResult.from_account(None)

        stale = account.last_synced_at is None or account.last_synced_at < timezone.now() - self.sync_interval
        if (force_sync or stale) and account.payee_status != PayeeAccount.PayeeStatus.ACTIVE:
            return self.sync_payee_status(creator=account.creator_id)
        return PayeeStatusResult.from_account(account)

    def submit_payout(self, payout_request_id, *, actor: str = "system") -> SubmitPayoutResult:
        """Send a payout to the provider.

        The external reference is persisted before the provider call and reused
        on retry, so the provider can recognise a resubmission. A timeout leaves
        the payout in processing for the next sync.
        """

        with transaction.atomic():
            payout = self._lock_payout(payout_request_id)
            if payout.payout_method != PayoutRequest.Method.PROVIDER:
                raise ValidationError("Payout is not configured for the payout provider.")
            if payout.status not in (PayoutRequest.Status.PENDING, PayoutRequest.Status.PROCESSING):
                raise ConflictError(f"Payout cannot be submitted while {payout.status}.", status=payout.status)
            if payout.provider_payment_id:
                return SubmitPayoutResult(payout=payout, submitted=False)

            account = PayeeAccount.objects.filter(creator_id=payout.creator_id).first()
            if account is None or account.payee_status != PayeeAccount.PayeeStatus.ACTIVE:
                raise ValidationError("Creator does not have an active payout account.")

            if not payout.external_reference:
                payout.external_reference = f"payout_{payout.pk}_{int(time.time() * 1000)}"
                payout.save(update_fields=["external_reference", "updated_at"])

        amount_fiat = self.coins_to_fiat(payout.amount)
        currency = account.preferred_currency or "USD"
        try:
            submission = self.provider.submit_payout(
                payee_id=account.payee_id,
                amount=amount_fiat,
                currency=currency,
                client_reference_id=payout.external_reference,
                description=f"Creator payout - {payout.amount} coins",
            )
        except ProviderTimeout:
            logger.warning("Payout %s submission timed out; leaving it processing for a later sync.", payout.pk)
            PayoutRequest.objects.filter(pk=payout.pk, status=PayoutRequest.Status.PENDING).update(
                status=PayoutRequest.Status.PROCESSING,
                processed_at=timezone.now(),
                updated_at=timezone.now(),
            )
            payout.refresh_from_db()
            return SubmitPayoutResult(payout=payout, submitted=False, timed_out=True)

        with transaction.atomic():
            payout = self._lock_payout(payout.pk)
            payout.status = PayoutRequest.Status.PROCESSING
            payout.provider_payment_id = submission.payment_id
            payout.provider_status = submission.status
            payout.processed_at = timezone.now()
            payout.save(
                update_fields=["status", "provider_payment_id", "provider_status", "processed_at", "updated_at"]
            )
            MonetizationAuditLog.objects.create(
                event_type="payout.submitted",
                actor=actor,
                subject_id=str(payout.pk),
                details={
                    "provider_payment_id": submission.payment_id,
                    "amount_fiat": str(amount_fiat),
                    "currency": currency,
                    "external_reference": payout.external_reference,
                },
            )

        logger.info(
            "Submitted payout %s (%s coins -> %s %s) as provider payment %s.",
            payout.pk,
            payout.amount,
            amount_fiat,
            currency,
            submission.payment_id,
        )
        return SubmitPayoutResult(payout=payout, submitted=True)

    def check_payout_status(self, payout_request_id) -> PayoutRequest:
        """Poll the provider for a submitted payout and apply the outcome."""

        payout = PayoutRequest.objects.filter(pk=payout_request_id).first()
        if payout is None:
            raise NotFound("Payout request not found.", payout_id=str(payout_request_id))
        if not payout.provider_payment_id:
            raise ValidationError("Payout has not been submitted to the provider.", payout_id=str(payout.pk))
        if payout.is_terminal:
            return payout

        try:
            response = self.provider.get_payment_status(payout.provider_payment_id)
        except ProviderTimeout:
            logger.warning("Status poll for payout %s timed out; will retry on next sync.", payout.pk)
            return payout

        return self._apply_payment_status(
            payout.pk,
            raw_status=response.status,
            failure_reason=response.failure_reason,
            actor="celery.payouts",
        )

    def handle_payment_status_webhook(
        self,
        payment_id: str,
        status: str,
        failure_reason: Optional[str] = None,
    ) -> Optional[PayoutRequest]:
        """Apply a provider payment status; repeated terminal deliveries are no-ops."""

        map_payment_status(status)
        payout_pk = (
            PayoutRequest.objects.filter(provider_payment_id=payment_id).values_list("pk", flat=True).first()
        )
        if payout_pk is None:
            logger.warning("Payout not found for provider payment id %s; ignoring webhook.", payment_id)
            return None
        return self._apply_payment_status(
            payout_pk,
            raw_status=status,
            failure_reason=failure_reason,
            actor="provider.webhook",
        )

    def handle_payee_status_webhook(self, payee_id: str, status: str) -> Optional[PayeeAccount]:
        mapped = map_payee_status(status)
        account = PayeeAccount.objects.filter(payee_id=payee_id).first()
        if account is None:
            logger.warning("Payee %s not found; ignoring status webhook.", payee_id)
            return None

        account.payee_status = mapped
        account.last_synced_at = timezone.now()
        account.save(update_fields=["payee_status", "last_synced_at", "updated_at"])
        logger.info("Payee %s status updated to %s.", payee_id, mapped)
        return account

    def _apply_payment_status(
        self,
        payout_pk,
        *,
        raw_status: str,
        failure_reason: Optional[str],
        actor: str,
    ) -> PayoutRequest:
        mapped = map_payment_status(raw_status)

        with transaction.atomic():
            payout = self._lock_payout(payout_pk)
            if payout.is_terminal:
                if payout.status != mapped:
                    logger.warning(
                        "Payout %s is already %s; ignoring provider status %s.",
                        payout.pk,
                        payout.status,
                        raw_status,
                    )
                return payout

            payout.provider_status = raw_status
            update_fields = ["provider_status", "updated_at"]

            if mapped == PayoutRequest.Status.PROCESSING:
                payout.status = mapped
                update_fields.append("status")
                payout.save(update_fields=update_fields)
                return payout

            if mapped == PayoutRequest.Status.COMPLETED:
                settlement = settle_hold(
                    payout.hold_id,
                    transaction_type=WalletTransaction.TransactionType.CREATOR_PAYOUT,
                    description="Payout via payout provider",
                    metadata=PayoutMetadata(
                        payout_id=str(payout.pk),
                        hold_id=str(payout.hold_id),
                        provider_payment_id=payout.provider_payment_id,
                        amount_fiat=str(self.coins_to_fiat(payout.amount)),
                        currency="USD",
                    ),
                )
                payout.transaction = settlement
                payout.completed_at = timezone.now()
                update_fields += ["transaction", "completed_at"]
            else:
                release_hold(payout.hold_id)
                if mapped == PayoutRequest.Status.FAILED:
                    payout.failure_reason = failure_reason or "Payment failed at provider"
                    update_fields.append("failure_reason")

            payout.status = mapped
            update_fields.append("status")
            payout.save(update_fields=update_fields)

            MonetizationAuditLog.objects.create(
                event_type=f"payout.{mapped}",
                actor=actor,
                subject_id=str(payout.pk),
                details={
                    "provider_payment_id": payout.provider_payment_id,
                    "provider_status": raw_status,
                    "failure_reason": payout.failure_reason,
                },
            )
            notify_creator_after_commit(
                payout.creator_id,
                f"payout_{mapped}",
                {"payout_id": str(payout.pk), "amount": payout.amount},
            )

        logger.info("Payout %s moved to %s (provider status %s).", payout.pk, mapped, raw_status)
        return payout

    @staticmethod
    def _lock_payout(payout_id) -> PayoutRequest:
        payout = PayoutRequest.objects.select_for_update().filter(pk=payout_id).first()
        if payout is None:
            raise NotFound("Payout request not found.", payout_id=str(payout_id))
        return payout


def build_settlement_service(provider: Optional[PayoutProviderAdapter] = None) -> PayoutSettlementService:
    """Construct the service from settings, using the configured provider unless one is given."""

    return PayoutSettlementService(
        provider or get_payout_provider(),
        coin_rate=Decimal(str(getattr(settings, "PAYOUT_COIN_TO_USD_RATE", "0.10"))),
        minimum_coins=getattr(settings, "PAYOUT_MINIMUM_COINS", 100),
        redirect_url=getattr(settings, "PAYOUT_REGISTRATION_REDIRECT_URL", ""),
        sync_interval_seconds=getattr(settings, "PAYEE_STATUS_SYNC_INTERVAL_SECONDS", 300),
    )
