"""Payout provider webhook endpoint."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

from django.core.exceptions import ImproperlyConfigured
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from monetization.models import ProviderWebhookEventLog
from monetization.observability.metrics import PAYOUT_WEBHOOK_COUNT
from monetization.serializers import PayoutWebhookEventSerializer
from monetization.services.payouts import build_settlement_service
from monetization.services.webhook_events import (
    hash_payload,
    mark_event_completed,
    mark_event_failed,
    reserve_event_log,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Payout-Signature", "X-Webhook-Signature")


@method_decorator(csrf_exempt, name="dispatch")
class PayoutWebhookView(APIView):
    """Verify, record and apply payout provider events.

    Processing errors are logged and acknowledged with 200 so the provider's
    own retry policy is the only redelivery mechanism.
    """

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        raw_body = request.body
        signature = next((request.headers.get(name) for name in SIGNATURE_HEADERS if request.headers.get(name)), "")

        try:
            service = build_settlement_service()
        except ImproperlyConfigured as exc:
            logger.error("Payout webhook configuration error: %s", exc)
            return Response({"error": "Webhook not configured"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        if not service.provider.verify_webhook_signature(raw_body, signature):
            logger.warning("Payout webhook signature verification failed.")
            PAYOUT_WEBHOOK_COUNT.labels(event_type="unknown", result="invalid_signature").inc()
            return Response({"error": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)

        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.error("Invalid JSON in payout webhook.")
            return Response({"error": "Invalid JSON"}, status=status.HTTP_400_BAD_REQUEST)
        if not isinstance(event, dict):
            return Response({"error": "Invalid JSON"}, status=status.HTTP_400_BAD_REQUEST)

        serializer = PayoutWebhookEventSerializer(data=_flatten_event(event))
        if not serializer.is_valid():
            return Response({"error": serializer.errors}, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data
        event_type = data["event_type"]
        subject_id = data.get("payment_id") or data.get("payee_id") or ""

        logger.info(
            "Received payout webhook %s (payee=%s payment=%s status=%s).",
            event_type,
            data.get("payee_id"),
            data.get("payment_id"),
            data.get("status"),
        )

        log_entry, already_handled = reserve_event_log(hash_payload(raw_body), event_type, subject_id)
        if already_handled:
            PAYOUT_WEBHOOK_COUNT.labels(event_type=event_type, result="duplicate").inc()
            return Response({"received": True, "status": log_entry.status})

        try:
            outcome = self._dispatch(service, data)
        except Exception as exc:
            logger.exception("Error processing payout webhook %s for %s.", event_type, subject_id)
            mark_event_failed(log_entry, str(exc))
            PAYOUT_WEBHOOK_COUNT.labels(event_type=event_type, result="failed").inc()
            return Response({"received": True, "error": "Internal processing error"})

        mark_event_completed(log_entry, outcome)
        PAYOUT_WEBHOOK_COUNT.labels(event_type=event_type, result=outcome).inc()
        return Response({"received": True})

    @staticmethod
    def _dispatch(service, data: Dict[str, Any]) -> str:
        event_type = data["event_type"]
        if event_type in PayoutWebhookEventSerializer.PAYEE_EVENTS:
            handled = service.handle_payee_status_webhook(data["payee_id"], data["status"])
        elif event_type in PayoutWebhookEventSerializer.PAYMENT_EVENTS:
            handled = service.handle_payment_status_webhook(
                data["payment_id"],
                data["status"],
                data.get("failure_reason") or None,
            )
        else:
            logger.info("Unhandled payout webhook event type: %s", event_type)
            return ProviderWebhookEventLog.Status.IGNORED

        if handled is None:
            return ProviderWebhookEventLog.Status.IGNORED
        return ProviderWebhookEventLog.Status.PROCESSED


def _flatten_event(event: Dict[str, Any]) -> Dict[str, Any]:
    flattened = {key: value for key, value in event.items() if key != "data"}
    nested = event.get("data")
    if isinstance(nested, dict):
        flattened.update(nested)
    return flattened
