"""Structured logging helper for monetization events."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("monetization")


def log_monetization_event(*, message: str, user_id: Optional[Any] = None, subject_id: Optional[Any] = None,
                           actor: Optional[str] = None, request_id: Optional[str] = None,
                           extra: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"message": message}
    if user_id:
        payload["user_id"] = str(user_id)
    if subject_id:
        payload["subject_id"] = str(subject_id)
    if actor:
        payload["actor"] = actor
    if request_id:
        payload["request_id"] = request_id
    if extra:
        payload.update(extra)
    logger.info(payload)
