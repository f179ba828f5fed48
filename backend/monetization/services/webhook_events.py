"""Receipt log for payout provider webhooks, keyed by a hash of the raw body."""
from __future__ import annotations

import hashlib
import logging
from typing import Optional, Tuple

from django.db import IntegrityError, transaction
from django.utils import timezone

from monetization.models import ProviderWebhookEventLog

logger = logging.getLogger(__name__)


def hash_payload(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body or b"").hexdigest()


def reserve_event_log(
    payload_hash: str,
    event_type: Optional[str],
    subject_id: Optional[str],
) -> Tuple[ProviderWebhookEventLog, bool]:
    """Mark a delivery as processing; the flag is True when it was already handled."""

    try:
        with transaction.atomic():
            log_entry = ProviderWebhookEventLog.objects.select_for_update().filter(payload_hash=payload_hash).first()
            if log_entry:
                if log_entry.handled:
                    return log_entry, True

                log_entry.event_type = event_type or log_entry.event_type
                log_entry.subject_id = subject_id or log_entry.subject_id
                log_entry.status = ProviderWebhookEventLog.Status.PROCESSING
                log_entry.last_error = ""
                log_entry.processed_at = None
                log_entry.save(
                    update_fields=["event_type", "subject_id", "status", "last_error", "processed_at", "updated_at"]
                )
                return log_entry, False

            log_entry = ProviderWebhookEventLog.objects.create(
                payload_hash=payload_hash,
                event_type=event_type or "",
                subject_id=subject_id or "",
                status=ProviderWebhookEventLog.Status.PROCESSING,
            )
            return log_entry, False
    except IntegrityError:
        # A concurrent delivery of the same body inserted the row first.
        log_entry = ProviderWebhookEventLog.objects.get(payload_hash=payload_hash)
        logger.info("Webhook %s is already being processed by a concurrent delivery.", payload_hash[:12])
        return log_entry, True


def mark_event_completed(log_entry: ProviderWebhookEventLog, status: str) -> None:
    log_entry.status = status
    log_entry.processed_at = timezone.now()
    log_entry.last_error = ""
    log_entry.handled = True
    log_entry.save(update_fields=["status", "processed_at", "last_error", "handled", "updated_at"])


def mark_event_failed(log_entry: ProviderWebhookEventLog, error: str) -> None:
    log_entry.status = ProviderWebhookEventLog.Status.FAILED
    log_entry.last_error = error
    log_entry.processed_at = None
    log_entry.handled = False
    log_entry.save(update_fields=["status", "last_error", "processed_at", "handled", "updated_at"])
