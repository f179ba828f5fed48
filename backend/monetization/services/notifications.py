"""Creator notification triggers; delivery itself belongs to the notifications worker."""
from __future__ import annotations

import logging
from typing import Any, Dict

from django.db import transaction

logger = logging.getLogger(__name__)


def notify_creator_after_commit(creator_id, kind: str, payload: Dict[str, Any]) -> None:
    """Queue a creator notification once the surrounding transaction commits.

    Enqueue failures are logged and never propagate to the money movement that triggered them.
    """

    transaction.on_commit(lambda: _enqueue(creator_id, kind, payload))


def _enqueue(creator_id, kind: str, payload: Dict[str, Any]) -> None:
    from monetization.tasks import deliver_creator_notification

    try:
        deliver_creator_notification.delay(str(creator_id), kind, payload)
    except Exception:  # broker specific failures
        logger.exception("Failed to enqueue %s notification for creator %s.", kind, creator_id)
