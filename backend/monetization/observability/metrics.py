"""Prometheus metrics helpers for the monetization domain."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

LEDGER_TRANSACTION_COUNT = Counter(
    "monetization_ledger_transaction_total",
    "Number of wallet transactions written",
    labelnames=("transaction_type",),
)

INSUFFICIENT_BALANCE_COUNT = Counter(
    "monetization_insufficient_balance_total",
    "Debits rejected because the available balance was too low",
    labelnames=("transaction_type",),
)

SUBSCRIPTION_RENEWAL_COUNT = Counter(
    "monetization_subscription_renewal_total",
    "Subscription renewal attempts by outcome",
    labelnames=("outcome",),
)

RENEWAL_BATCH_LATENCY = Histogram(
    "monetization_renewal_batch_duration_seconds",
    "Time spent processing one renewal batch",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

PAYOUT_WEBHOOK_COUNT = Counter(
    "monetization_payout_webhook_total",
    "Payout provider webhooks by event type and result",
    labelnames=("event_type", "result"),
)

PROVIDER_ERROR_COUNT = Counter(
    "monetization_provider_error_total",
    "Payout provider calls that failed",
    labelnames=("operation", "reason"),
)
