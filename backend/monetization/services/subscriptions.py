"""Subscription tiers, subscribe/cancel flows and the recurring renewal batch."""
from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, connection, connections, transaction
from django.db.models import Count, F, Q, Sum
from django.utils import timezone

from monetization.models import (
    MonetizationAuditLog,
    Subscription,
    SubscriptionPayment,
    SubscriptionTier,
    WalletTransaction,
)
from monetization.observability.metrics import RENEWAL_BATCH_LATENCY, SUBSCRIPTION_RENEWAL_COUNT
from monetization.services.errors import AuthorizationError, MonetizationError, NotFound, ValidationError
from monetization.services.ledger import TransferResult, transfer, user_pk
from monetization.services.metadata import SubscriptionChargeMetadata
from monetization.services.notifications import notify_creator_after_commit

logger = logging.getLogger(__name__)

User = get_user_model()

TransactionType = WalletTransaction.TransactionType


@dataclass(frozen=True)
class SubscribeResult:
    subscription: Subscription
    payment: SubscriptionPayment
    transfer: TransferResult


@dataclass(frozen=True)
class RenewalResult:
    subscription: Subscription
    payment: SubscriptionPayment


@dataclass(frozen=True)
class RenewalFailure:
    subscription_id: str
    error: str


@dataclass
class RenewalRunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    errors: List[RenewalFailure] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "errors": [{"subscription_id": item.subscription_id, "error": item.error} for item in self.errors],
        }


@dataclass(frozen=True)
class AutoRenewToggleResult:
    subscription: Subscription
    previous: bool
    updated: bool


@dataclass(frozen=True)
class CreatorStats:
    total_subscribers: int
    active_subscriptions: int
    total_revenue: int


def billing_period() -> timedelta:
    return timedelta(days=getattr(settings, "SUBSCRIPTION_PERIOD_DAYS", 30))


def max_failed_renewals() -> int:
    return getattr(settings, "SUBSCRIPTION_MAX_FAILED_RENEWALS", 3)


def upsert_tier(
    *,
    creator,
    tier: int,
    name: str,
    price_per_month: int,
    description: str = "",
    benefits: Optional[Iterable[str]] = None,
    is_active: bool = True,
    display_order: Optional[int] = None,
) -> SubscriptionTier:
    """Create or update the creator's tier at the given level."""

    if tier not in SubscriptionTier.Tier.values:
        raise ValidationError("Unknown subscription tier level.", tier=tier)
    if not isinstance(price_per_month, int) or isinstance(price_per_month, bool) or price_per_month < 1:
        raise ValidationError("Tier price must be at least 1 coin.", price_per_month=price_per_month)
    if not (name or "").strip():
        raise ValidationError("Tier name is required.")

    defaults = {
        "name": name.strip(),
        "description": description or "",
        "price_per_month": price_per_month,
        "benefits": list(benefits or []),
        "is_active": is_active,
        "display_order": tier if display_order is None else display_order,
    }
    record, created = SubscriptionTier.objects.update_or_create(
        creator_id=user_pk(creator),
        tier=tier,
        defaults=defaults,
    )
    logger.info(
        "%s subscription tier %s for creator %s at %s coins.",
        "Created" if created else "Updated",
        record.pk,
        record.creator_id,
        record.price_per_month,
    )
    return record


def get_creator_tiers(creator) -> List[SubscriptionTier]:
    """Active tiers ordered by display order then price; a default tier is created on first use."""

    creator_id = user_pk(creator)
    if not SubscriptionTier.objects.filter(creator_id=creator_id).exists():
        if not User.objects.filter(pk=creator_id).exists():
            raise NotFound("Creator not found.", creator_id=str(creator_id))
        defaults = dict(getattr(settings, "SUBSCRIPTION_DEFAULT_TIER", {}))
        level = defaults.pop("tier", SubscriptionTier.Tier.BASIC)
        defaults.setdefault("name", "Subscriber")
        defaults.setdefault("price_per_month", 50)
        SubscriptionTier.objects.get_or_create(creator_id=creator_id, tier=level, defaults=defaults)
        logger.info("Created default subscription tier for creator %s.", creator_id)

    return list(
        SubscriptionTier.objects.filter(creator_id=creator_id, is_active=True).order_by(
            "display_order", "price_per_month"
        )
    )


def subscribe(*, user, creator_id, tier_id) -> SubscribeResult:
    """Charge the first period and open an active, auto-renewing subscription."""

    subscriber_id = user_pk(user)
    if str(subscriber_id) == str(creator_id):
        raise ValidationError("You cannot subscribe to yourself.")
    if Subscription.objects.filter(
        user_id=subscriber_id, creator_id=creator_id, status=Subscription.Status.ACTIVE
    ).exists():
        raise ValidationError("Already subscribed to this creator.")

    tier = SubscriptionTier.objects.select_related("creator").filter(pk=tier_id, is_active=True).first()
    if tier is None:
        raise NotFound("Subscription tier not found or inactive.", tier_id=str(tier_id))
    if str(tier.creator_id) != str(creator_id):
        raise ValidationError("Tier does not belong to this creator.", tier_id=str(tier_id))

    now = timezone.now()
    expires_at = now + billing_period()
    subscription_id = uuid.uuid4()

    try:
        with transaction.atomic():
            charge = transfer(
                payer=subscriber_id,
                payee=tier.creator_id,
                amount=tier.price_per_month,
                debit_type=TransactionType.SUBSCRIPTION_PAYMENT,
                credit_type=TransactionType.SUBSCRIPTION_EARNINGS,
                idempotency_key=f"subscription_{subscription_id}_initial",
                debit_metadata=_charge_metadata(subscription_id, tier, subscriber_id, now, expires_at),
                credit_metadata=_charge_metadata(subscription_id, tier, subscriber_id, now, expires_at),
                description=f"Subscription to @{tier.creator.username} - {tier.name}",
                credit_description=f"New subscriber - {tier.name}",
            )
            subscription = Subscription.objects.create(
                id=subscription_id,
                user_id=subscriber_id,
                creator_id=tier.creator_id,
                tier=tier,
                status=Subscription.Status.ACTIVE,
                started_at=now,
                expires_at=expires_at,
                next_billing_at=expires_at,
                last_payment_at=now,
                auto_renew=True,
                total_paid=tier.price_per_month,
            )
            payment = SubscriptionPayment.objects.create(
                subscription=subscription,
                user_id=subscriber_id,
                creator_id=tier.creator_id,
                amount=tier.price_per_month,
                transaction=charge.debit,
                billing_period_start=now,
                billing_period_end=expires_at,
                paid_at=now,
            )
            SubscriptionTier.objects.filter(pk=tier.pk).update(subscriber_count=F("subscriber_count") + 1)
            notify_creator_after_commit(
                tier.creator_id,
                "new_subscriber",
                {"subscriber_id": str(subscriber_id), "tier": tier.name, "amount": tier.price_per_month},
            )
    except IntegrityError as exc:
        # Lost the race against a concurrent subscribe for the same creator.
        raise ValidationError("Already subscribed to this creator.") from exc

    logger.info(
        "User %s subscribed to creator %s at tier %s for %s coins.",
        subscriber_id,
        tier.creator_id,
        tier.pk,
        tier.price_per_month,
    )
    return SubscribeResult(subscription=subscription, payment=payment, transfer=charge)


def renew_subscription(subscription_id, *, due_before: Optional[datetime] = None) -> Optional[RenewalResult]:
    """Charge the next period; expiry is chained from the previous expiry, not from now.

    With ``due_before`` the charge only happens while the subscription is still due at that
    instant, checked under the row lock. A subscription that another run already renewed is
    skipped and ``None`` is returned.
    """

    with transaction.atomic():
        subscription = Subscription.objects.select_for_update().filter(pk=subscription_id).first()
        if subscription is None:
            raise NotFound("Subscription not found.", subscription_id=str(subscription_id))
        if due_before is not None and not _still_due(subscription, due_before):
            logger.info("Subscription %s is no longer due; skipping renewal.", subscription.pk)
            return None
        if subscription.status != Subscription.Status.ACTIVE:
            raise ValidationError("Subscription is not active.", status=subscription.status)
        if not subscription.auto_renew:
            raise ValidationError("Auto-renew is disabled for this subscription.")
        tier = SubscriptionTier.objects.filter(pk=subscription.tier_id).first()
        if tier is None:
            raise NotFound("Subscription tier no longer exists.", subscription_id=str(subscription.pk))

        now = timezone.now()
        period_start = subscription.expires_at
        period_end = period_start + billing_period()

        charge = transfer(
            payer=subscription.user_id,
            payee=subscription.creator_id,
            amount=tier.price_per_month,
            debit_type=TransactionType.SUBSCRIPTION_PAYMENT,
            credit_type=TransactionType.SUBSCRIPTION_EARNINGS,
            idempotency_key=f"renewal_{subscription.pk}_{period_start.isoformat()}",
            debit_metadata=_charge_metadata(
                subscription.pk, tier, subscription.user_id, period_start, period_end, renewal=True
            ),
            credit_metadata=_charge_metadata(
                subscription.pk, tier, subscription.user_id, period_start, period_end, renewal=True
            ),
            description=f"Subscription renewal - {tier.name}",
            credit_description=f"Subscription renewal earnings - {tier.name}",
        )

        subscription.expires_at = period_end
        subscription.next_billing_at = period_end
        subscription.last_payment_at = now
        subscription.total_paid += tier.price_per_month
        subscription.failed_payment_count = 0
        subscription.save(
            update_fields=[
                "expires_at",
                "next_billing_at",
                "last_payment_at",
                "total_paid",
                "failed_payment_count",
                "updated_at",
            ]
        )
        payment = SubscriptionPayment.objects.create(
            subscription=subscription,
            user_id=subscription.user_id,
            creator_id=subscription.creator_id,
            amount=tier.price_per_month,
            transaction=charge.debit,
            billing_period_start=period_start,
            billing_period_end=period_end,
            paid_at=now,
        )

    logger.info("Renewed subscription %s until %s.", subscription.pk, period_end.isoformat())
    return RenewalResult(subscription=subscription, payment=payment)


def due_subscription_ids(*, now: Optional[datetime] = None, limit: Optional[int] = None) -> List:
    queryset = (
        Subscription.objects.filter(
            status=Subscription.Status.ACTIVE,
            auto_renew=True,
            next_billing_at__lte=now or timezone.now(),
        )
        .order_by("next_billing_at")
        .values_list("pk", flat=True)
    )
    if limit is not None:
        queryset = queryset[:limit]
    return list(queryset)


def process_renewals(
    *,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
    max_workers: Optional[int] = None,
    limit: Optional[int] = None,
) -> RenewalRunSummary:
    """Renew every due subscription in bounded batches, isolating failures per subscription."""

    now = now or timezone.now()
    batch_size = batch_size or getattr(settings, "SUBSCRIPTION_RENEWAL_BATCH_SIZE", 10)
    max_workers = max_workers or getattr(settings, "SUBSCRIPTION_RENEWAL_MAX_WORKERS", batch_size)

    due_ids = due_subscription_ids(now=now, limit=limit)

    summary = RenewalRunSummary()
    for start in range(0, len(due_ids), batch_size):
        batch = due_ids[start:start + batch_size]
        with RENEWAL_BATCH_LATENCY.time():
            outcomes = _run_batch(batch, max_workers, now)

        for subscription_id, result, error in outcomes:
            summary.processed += 1
            if error is None and result is None:
                summary.skipped += 1
                SUBSCRIPTION_RENEWAL_COUNT.labels(outcome="skipped").inc()
                continue
            if error is None:
                summary.succeeded += 1
                SUBSCRIPTION_RENEWAL_COUNT.labels(outcome="renewed").inc()
                continue
            summary.failed += 1
            summary.errors.append(RenewalFailure(subscription_id=str(subscription_id), error=str(error)))
            # Only payment-side errors count as strikes.
            if isinstance(error, MonetizationError) and _record_renewal_failure(subscription_id, error):
                summary.cancelled += 1

    logger.info(
        "Renewal run finished: processed=%s succeeded=%s failed=%s cancelled=%s skipped=%s",
        summary.processed,
        summary.succeeded,
        summary.failed,
        summary.cancelled,
        summary.skipped,
    )
    return summary


def cancel_subscription(*, user, subscription_id, request_id: str = "") -> Subscription:
    """Cancel an active subscription; access lasts until ``expires_at``."""

    with transaction.atomic():
        subscription = _lock_owned_subscription(user, subscription_id)
        if subscription.status != Subscription.Status.ACTIVE:
            raise ValidationError("Only active subscriptions can be cancelled.", status=subscription.status)

        subscription.status = Subscription.Status.CANCELLED
        subscription.cancelled_at = timezone.now()
        subscription.auto_renew = False
        subscription.save(update_fields=["status", "cancelled_at", "auto_renew", "updated_at"])
        _decrement_tier_count(subscription.tier_id)

        MonetizationAuditLog.objects.create(
            event_type="subscription.cancelled",
            actor=f"user:{user_pk(user)}",
            subject_id=str(subscription.pk),
            request_id=request_id or "",
            details={"creator_id": str(subscription.creator_id), "tier_id": str(subscription.tier_id)},
        )

    logger.info("Subscription %s cancelled by user %s.", subscription.pk, user_pk(user))
    return subscription


def toggle_auto_renew(*, user, subscription_id, enabled: bool, request_id: str = "") -> AutoRenewToggleResult:
    """
    Toggle ``auto_renew`` while recording an audit trail.

    Only active subscriptions can change; a cancelled one stays cancelled.
    """

    if not isinstance(enabled, bool):
        raise ValidationError("Field 'enabled' must be a boolean.")

    with transaction.atomic():
        subscription = _lock_owned_subscription(user, subscription_id)
        if subscription.status != Subscription.Status.ACTIVE:
            raise ValidationError("Auto-renew can only be changed on active subscriptions.")

        previous = subscription.auto_renew
        if previous == enabled:
            logger.debug("Auto-renew already %s for subscription %s; no changes.", enabled, subscription.pk)
            return AutoRenewToggleResult(subscription=subscription, previous=previous, updated=False)

        subscription.auto_renew = enabled
        subscription.save(update_fields=["auto_renew", "updated_at"])

        MonetizationAuditLog.objects.create(
            event_type="subscription.auto_renew_toggled",
            actor=f"user:{user_pk(user)}",
            subject_id=str(subscription.pk),
            request_id=request_id or "",
            details={"previous": previous, "auto_renew": enabled},
        )

    return AutoRenewToggleResult(subscription=subscription, previous=previous, updated=True)


def get_user_subscription(user, creator_id) -> Optional[Subscription]:
    return (
        Subscription.objects.select_related("tier")
        .filter(user_id=user_pk(user), creator_id=creator_id, status=Subscription.Status.ACTIVE)
        .first()
    )


def is_subscribed(user, creator_id) -> bool:
    return get_user_subscription(user, creator_id) is not None


def get_user_subscriptions(user, *, active_only: bool = True) -> List[Subscription]:
    queryset = Subscription.objects.select_related("tier", "creator").filter(user_id=user_pk(user))
    if active_only:
        queryset = queryset.filter(status=Subscription.Status.ACTIVE)
    return list(queryset.order_by("-created_at"))


def get_creator_subscribers(creator, *, active_only: bool = True) -> List[Subscription]:
    queryset = Subscription.objects.select_related("tier", "user").filter(creator_id=user_pk(creator))
    if active_only:
        queryset = queryset.filter(status=Subscription.Status.ACTIVE)
    return list(queryset.order_by("-created_at"))


def get_creator_stats(creator) -> CreatorStats:
    aggregates = Subscription.objects.filter(creator_id=user_pk(creator)).aggregate(
        total=Count("id"),
        active=Count("id", filter=Q(status=Subscription.Status.ACTIVE)),
        revenue=Sum("total_paid"),
    )
    return CreatorStats(
        total_subscribers=aggregates["total"] or 0,
        active_subscriptions=aggregates["active"] or 0,
        total_revenue=aggregates["revenue"] or 0,
    )


def _charge_metadata(subscription_id, tier, subscriber_id, start, end, *, renewal: bool = False):
    return SubscriptionChargeMetadata(
        subscription_id=str(subscription_id),
        tier_id=str(tier.pk),
        subscriber_id=str(subscriber_id),
        creator_id=str(tier.creator_id),
        period_start=start.isoformat(),
        period_end=end.isoformat(),
        renewal=renewal,
    )


def _still_due(subscription: Subscription, due_before: datetime) -> bool:
    return (
        subscription.status == Subscription.Status.ACTIVE
        and subscription.auto_renew
        and subscription.next_billing_at is not None
        and subscription.next_billing_at <= due_before
    )


def _lock_owned_subscription(user, subscription_id) -> Subscription:
    subscription = Subscription.objects.select_for_update().filter(pk=subscription_id).first()
    if subscription is None:
        raise NotFound("Subscription not found.", subscription_id=str(subscription_id))
    if str(subscription.user_id) != str(user_pk(user)):
        raise AuthorizationError("Subscription belongs to another user.")
    return subscription


def _decrement_tier_count(tier_id) -> None:
    if tier_id is None:
        return
    SubscriptionTier.objects.filter(pk=tier_id, subscriber_count__gt=0).update(
        subscriber_count=F("subscriber_count") - 1
    )


RenewalOutcome = Tuple[Any, Optional[RenewalResult], Optional[Exception]]


def _run_batch(batch: List, max_workers: int, due_before: datetime) -> List[RenewalOutcome]:
    # SQLite locks the whole database per write, so worker threads would only contend.
    if max_workers <= 1 or len(batch) == 1 or connection.vendor == "sqlite":
        return [(subscription_id, *_attempt_renewal(subscription_id, due_before)) for subscription_id in batch]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(batch))) as executor:
        attempts = list(executor.map(_attempt_renewal_in_worker, batch, [due_before] * len(batch)))
    return [(subscription_id, result, error) for subscription_id, (result, error) in zip(batch, attempts)]


def _attempt_renewal(subscription_id, due_before: datetime) -> Tuple[Optional[RenewalResult], Optional[Exception]]:
    try:
        return renew_subscription(subscription_id, due_before=due_before), None
    except Exception as exc:  # collected per subscription
        if not isinstance(exc, MonetizationError):
            logger.exception("Unexpected error renewing subscription %s.", subscription_id)
        return None, exc


def _attempt_renewal_in_worker(
    subscription_id, due_before: datetime
) -> Tuple[Optional[RenewalResult], Optional[Exception]]:
    try:
        return _attempt_renewal(subscription_id, due_before)
    finally:
        # Worker threads open their own connections; close them before the pool reuses the thread.
        connections.close_all()


def _record_renewal_failure(subscription_id, error: Exception) -> bool:
    """Count the failure and cancel on the final strike; returns ``True`` when cancelled."""

    with transaction.atomic():
        subscription = Subscription.objects.select_for_update().filter(pk=subscription_id).first()
        if subscription is None or subscription.status != Subscription.Status.ACTIVE:
            return False

        subscription.failed_payment_count += 1
        cancelled = subscription.failed_payment_count >= max_failed_renewals()
        updates = ["failed_payment_count", "updated_at"]
        if cancelled:
            subscription.status = Subscription.Status.CANCELLED
            subscription.cancelled_at = timezone.now()
            subscription.auto_renew = False
            updates.extend(["status", "cancelled_at", "auto_renew"])
            _decrement_tier_count(subscription.tier_id)
        subscription.save(update_fields=updates)

        MonetizationAuditLog.objects.create(
            event_type="subscription.auto_cancelled" if cancelled else "subscription.renewal_failed",
            actor="celery.renewals",
            subject_id=str(subscription.pk),
            details={
                "error": str(error),
                "error_code": getattr(error, "code", ""),
                "failed_payment_count": subscription.failed_payment_count,
            },
        )

    SUBSCRIPTION_RENEWAL_COUNT.labels(outcome="cancelled" if cancelled else "failed").inc()
    logger.warning(
        "Renewal failed for subscription %s (%s/%s): %s",
        subscription_id,
        subscription.failed_payment_count,
        max_failed_renewals(),
        error,
    )
    return cancelled
