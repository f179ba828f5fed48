"""Celery tasks for recurring billing, payout polling and ledger maintenance."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import shared_task
from django.contrib.auth import get_user_model
from django.utils import timezone

from monetization.models import PayoutRequest, ProviderWebhookEventLog, Wallet
from monetization.observability.logging import log_monetization_event
from monetization.services.errors import MonetizationError
from monetization.services.ledger import reconcile_wallet
from monetization.services.payouts import build_settlement_service
from monetization.services.subscriptions import process_renewals

logger = logging.getLogger(__name__)

User = get_user_model()

PAYOUT_SYNC_BATCH_LIMIT = 100


@shared_task(queue="monetization")
def process_subscription_renewals(batch_size: Optional[int] = None) -> Dict[str, Any]:
    """Charge every subscription whose billing date has passed."""

    summary = process_renewals(batch_size=batch_size)
    logger.info(
        "Subscription renewal run: processed=%s succeeded=%s failed=%s cancelled=%s skipped=%s",
        summary.processed,
        summary.succeeded,
        summary.failed,
        summary.cancelled,
        summary.skipped,
    )
    return summary.as_dict()


@shared_task(queue="monetization")
def sync_processing_payouts(limit: int = PAYOUT_SYNC_BATCH_LIMIT) -> Dict[str, int]:
    """Poll the provider for in-flight payouts and resubmit ones whose submission timed out."""

    stats = {"checked": 0, "resubmitted": 0, "settled": 0, "failed": 0}
    service = build_settlement_service()

    payouts = (
        PayoutRequest.objects.filter(status=PayoutRequest.Status.PROCESSING)
        .order_by("processed_at")
        .values_list("pk", "provider_payment_id")[:limit]
    )
    for payout_id, provider_payment_id in payouts:
        try:
            if provider_payment_id:
                payout = service.check_payout_status(payout_id)
                stats["checked"] += 1
                if payout.is_terminal:
                    stats["settled"] += 1
            else:
                service.submit_payout(payout_id, actor="celery.payouts")
                stats["resubmitted"] += 1
        except MonetizationError as exc:
            stats["failed"] += 1
            logger.warning("Payout %s sync failed: %s", payout_id, exc.message)

    return stats


@shared_task(queue="monetization")
def reconcile_wallets() -> Dict[str, int]:
    """Compare every stored wallet balance with its completed ledger rows."""

    stats = {"checked": 0, "ok": 0, "discrepancies": 0}
    for user_id in Wallet.objects.values_list("user_id", flat=True).iterator():
        result = reconcile_wallet(user_id)
        stats["checked"] += 1
        if result.status == "ok":
            stats["ok"] += 1
        elif result.status == "discrepancy":
            stats["discrepancies"] += 1

    if stats["discrepancies"]:
        logger.error("Wallet reconciliation found %s discrepancies.", stats["discrepancies"])
    return stats


@shared_task(queue="maintenance")
def cleanup_webhook_event_logs(days: int = 7) -> int:
    """Remove handled webhook receipts older than ``days`` days."""

    cutoff = timezone.now() - timedelta(days=days)
    deleted, _ = ProviderWebhookEventLog.objects.filter(
        status__in=[ProviderWebhookEventLog.Status.PROCESSED, ProviderWebhookEventLog.Status.IGNORED],
        handled=True,
        processed_at__lt=cutoff,
    ).delete()

    logger.info("Cleaned up %s processed webhook events older than %s days.", deleted, days)
    return deleted


@shared_task(queue="notifications")
def deliver_creator_notification(creator_id: str, kind: str, payload: Dict[str, Any]) -> bool:
    """Emit a creator notification event on the ``monetization`` logger."""

    creator = User.objects.filter(pk=creator_id).first()
    if creator is None:
        logger.warning("Skipping %s notification for missing creator %s.", kind, creator_id)
        return False

    log_monetization_event(
        message=f"creator_notification.{kind}",
        user_id=creator_id,
        actor="celery.notifications",
        extra={"email": creator.email or "", "payload": payload},
    )
    return True
