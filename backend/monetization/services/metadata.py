"""Typed metadata variants stored on wallet transactions.

Each variant serialises to a plain dict tagged with ``kind`` so the JSON column
stays queryable, and :func:`parse_metadata` turns it back into the dataclass.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Type


@dataclass(frozen=True)
class TransactionMetadata:
    kind: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        payload["kind"] = self.kind
        return payload


@dataclass(frozen=True)
class SubscriptionChargeMetadata(TransactionMetadata):
    kind: ClassVar[str] = "subscription_charge"

    subscription_id: str
    tier_id: str
    subscriber_id: str
    creator_id: str
    period_start: str
    period_end: str
    renewal: bool = False


@dataclass(frozen=True)
class TipMetadata(TransactionMetadata):
    kind: ClassVar[str] = "tip"

    session_id: str
    sender_id: str
    role: str
    commission_percent: Optional[int] = None


@dataclass(frozen=True)
class GiftMetadata(TransactionMetadata):
    kind: ClassVar[str] = "gift"

    session_id: str
    gift_id: str
    quantity: int
    sender_id: str


@dataclass(frozen=True)
class HoldMetadata(TransactionMetadata):
    kind: ClassVar[str] = "hold_settlement"

    hold_id: str
    purpose: str
    related_id: str = ""


@dataclass(frozen=True)
class PayoutMetadata(TransactionMetadata):
    kind: ClassVar[str] = "payout"

    payout_id: str
    hold_id: str
    provider_payment_id: Optional[str] = None
    amount_fiat: Optional[str] = None
    currency: Optional[str] = None


_REGISTRY: Dict[str, Type[TransactionMetadata]] = {
    cls.kind: cls
    for cls in (SubscriptionChargeMetadata, TipMetadata, GiftMetadata, HoldMetadata, PayoutMetadata)
}


def parse_metadata(payload: Optional[Dict[str, Any]]) -> Optional[TransactionMetadata]:
    """Rebuild the typed variant for a stored payload; ``None`` for empty metadata."""

    if not payload:
        return None
    kind = payload.get("kind")
    variant = _REGISTRY.get(kind)
    if variant is None:
        raise ValueError(f"Unknown transaction metadata kind: {kind!r}")
    names = {field.name for field in fields(variant)}
    return variant(**{key: value for key, value in payload.items() if key in names})
