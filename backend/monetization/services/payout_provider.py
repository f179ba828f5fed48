"""Payout provider adapters and the mapping from provider status strings to local states.

``HttpPayoutProvider`` talks to the provider's REST API. ``InMemoryPayoutProvider``
implements the same contract with instance-scoped storage for development and
tests and is refused whenever ``APP_ENV`` is ``production``.
"""
from __future__ import annotations

import abc
import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from monetization.models import PayeeAccount, PayoutRequest
from monetization.observability.metrics import PROVIDER_ERROR_COUNT
from monetization.services.errors import ProviderError, ProviderTimeout, UnknownProviderStatus

logger = logging.getLogger(__name__)

MOCK_WEBHOOK_SIGNATURE = "mock_webhook_test"
REGISTRATION_REDIRECT_SECONDS = 5

_PAYEE_STATUS_MAP = {
    "not_registered": PayeeAccount.PayeeStatus.NOT_REGISTERED,
    "active": PayeeAccount.PayeeStatus.ACTIVE,
    "pending": PayeeAccount.PayeeStatus.PENDING,
    "in_progress": PayeeAccount.PayeeStatus.PENDING,
    "inactive": PayeeAccount.PayeeStatus.INACTIVE,
    "suspended": PayeeAccount.PayeeStatus.INACTIVE,
    "declined": PayeeAccount.PayeeStatus.DECLINED,
    "rejected": PayeeAccount.PayeeStatus.DECLINED,
}

_PAYMENT_STATUS_MAP = {
    "pending": PayoutRequest.Status.PROCESSING,
    "in_progress": PayoutRequest.Status.PROCESSING,
    "processing": PayoutRequest.Status.PROCESSING,
    "submitted": PayoutRequest.Status.PROCESSING,
    "completed": PayoutRequest.Status.COMPLETED,
    "failed": PayoutRequest.Status.FAILED,
    "rejected": PayoutRequest.Status.FAILED,
    "cancelled": PayoutRequest.Status.CANCELLED,
    "canceled": PayoutRequest.Status.CANCELLED,
}


def map_payee_status(raw_status: Optional[str]) -> str:
    """Translate a provider payee status; unknown values raise instead of defaulting."""

    key = (raw_status or "").strip().lower()
    try:
        return _PAYEE_STATUS_MAP[key]
    except KeyError:
        raise UnknownProviderStatus(f"Unrecognised payee status {raw_status!r}.", status=raw_status) from None


def map_payment_status(raw_status: Optional[str]) -> str:
    """Translate a provider payment status into a ``PayoutRequest.Status``."""

    key = (raw_status or "").strip().lower()
    try:
        return _PAYMENT_STATUS_MAP[key]
    except KeyError:
        raise UnknownProviderStatus(f"Unrecognised payment status {raw_status!r}.", status=raw_status) from None


def is_production() -> bool:
    return getattr(settings, "APP_ENV", "development") == "production"


def compute_webhook_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class RegistrationLink:
    url: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class PayeeStatusResponse:
    payee_id: str
    status: str
    payout_methods: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class PayoutSubmission:
    payment_id: str
    status: str


@dataclass(frozen=True)
class PaymentStatusResponse:
    payment_id: str
    status: str
    failure_reason: str = ""


class PayoutProviderAdapter(abc.ABC):
    """Contract every payout provider implementation satisfies."""

    @abc.abstractmethod
    def generate_registration_link(self, payee_id: str, redirect_url: str) -> RegistrationLink:
        ...

    @abc.abstractmethod
    def get_payee_status(self, payee_id: str) -> PayeeStatusResponse:
        ...

    @abc.abstractmethod
    def submit_payout(
        self,
        *,
        payee_id: str,
        amount: Decimal,
        currency: str,
        client_reference_id: str,
        description: str = "",
    ) -> PayoutSubmission:
        ...

    @abc.abstractmethod
    def get_payment_status(self, payment_id: str) -> PaymentStatusResponse:
        ...

    @abc.abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        ...


class HttpPayoutProvider(PayoutProviderAdapter):
    """REST client for the payout provider using HTTP Basic auth."""

    def __init__(
        self,
        *,
        base_url: str,
        program_id: str,
        username: str,
        password: str,
        webhook_secret: str = "",
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.program_id = program_id
        self.auth = (username, password)
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate_registration_link(self, payee_id: str, redirect_url: str) -> RegistrationLink:
        data = self._request(
            "POST",
            f"/payees/{payee_id}/registration-link",
            operation="registration_link",
            payload={"redirect_url": redirect_url, "redirect_time": REGISTRATION_REDIRECT_SECONDS},
        )
        link = data.get("registration_link")
        if not link:
            raise ProviderError("Provider response did not include a registration link.")
        expires_at = parse_datetime(data["expires_at"]) if data.get("expires_at") else None
        return RegistrationLink(url=link, expires_at=expires_at)

    def get_payee_status(self, payee_id: str) -> PayeeStatusResponse:
        data = self._request("GET", f"/payees/{payee_id}", operation="payee_status")
        return PayeeStatusResponse(
            payee_id=str(data.get("payee_id") or payee_id),
            status=str(data.get("status") or ""),
            payout_methods=list(data.get("payout_methods") or []),
        )

    def submit_payout(
        self,
        *,
        payee_id: str,
        amount: Decimal,
        currency: str,
        client_reference_id: str,
        description: str = "",
    ) -> PayoutSubmission:
        data = self._request(
            "POST",
            "/payments",
            operation="submit_payout",
            payload={
                "payee_id": payee_id,
                "amount": str(amount),
                "currency": currency,
                "client_reference_id": client_reference_id,
                "description": description,
            },
        )
        payment_id = data.get("payment_id")
        if not payment_id:
            raise ProviderError("Provider response did not include a payment id.")
        return PayoutSubmission(payment_id=str(payment_id), status=str(data.get("status") or "pending"))

    def get_payment_status(self, payment_id: str) -> PaymentStatusResponse:
        data = self._request("GET", f"/payments/{payment_id}", operation="payment_status")
        return PaymentStatusResponse(
            payment_id=str(data.get("payment_id") or payment_id),
            status=str(data.get("status") or ""),
            failure_reason=str(data.get("failure_reason") or ""),
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            logger.error("Payout webhook secret not configured; rejecting webhook.")
            return False
        if not signature:
            return False
        expected = compute_webhook_signature(payload, self.webhook_secret)
        return hmac.compare_digest(expected, signature.strip())

    def _request(self, method: str, path: str, *, operation: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/programs/{self.program_id}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                auth=self.auth,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()

        except Timeout as exc:
            PROVIDER_ERROR_COUNT.labels(operation=operation, reason="timeout").inc()
            logger.warning("Payout provider %s timed out after %ss.", operation, self.timeout)
            raise ProviderTimeout(f"Payout provider timed out during {operation}.") from exc

        except ConnectionError as exc:
            PROVIDER_ERROR_COUNT.labels(operation=operation, reason="connection").inc()
            logger.error("Failed to connect to payout provider during %s.", operation)
            raise ProviderError(f"Could not reach payout provider during {operation}.") from exc

        except HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            PROVIDER_ERROR_COUNT.labels(operation=operation, reason=f"http_{status_code}").inc()
            message = _extract_error_message(exc.response) or f"Payout provider error: HTTP {status_code}"
            logger.error("Payout provider %s failed: %s", operation, message)
            raise ProviderError(message, status_code=status_code) from exc

        except RequestException as exc:
            PROVIDER_ERROR_COUNT.labels(operation=operation, reason="request").inc()
            logger.error("Payout provider %s request failed: %s", operation, exc)
            raise ProviderError(f"Payout provider request failed during {operation}.") from exc

        try:
            return response.json()
        except ValueError as exc:
            PROVIDER_ERROR_COUNT.labels(operation=operation, reason="invalid_json").inc()
            raise ProviderError("Invalid JSON response received from payout provider.") from exc


class InMemoryPayoutProvider(PayoutProviderAdapter):
    """Provider double keeping payees and payments on the instance.

    ``activate_payee`` and ``set_payment_status`` drive state changes the real
    provider would make on its own.
    """

    def __init__(self, *, webhook_secret: str = "") -> None:
        self.webhook_secret = webhook_secret
        self.payees: Dict[str, Dict[str, Any]] = {}
        self.payments: Dict[str, Dict[str, Any]] = {}

    def generate_registration_link(self, payee_id: str, redirect_url: str) -> RegistrationLink:
        self.payees[payee_id] = {"status": "pending", "registered_at": timezone.now()}
        return RegistrationLink(
            url=f"https://sandbox.payouts.local/register?payee={payee_id}&mock=true",
            expires_at=timezone.now() + timedelta(hours=24),
        )

    def get_payee_status(self, payee_id: str) -> PayeeStatusResponse:
        record = self.payees.get(payee_id)
        status = record["status"] if record else "not_registered"
        methods = [{"type": "bank_account", "currency": "USD", "status": "active"}] if status == "active" else []
        return PayeeStatusResponse(payee_id=payee_id, status=status, payout_methods=methods)

    def submit_payout(
        self,
        *,
        payee_id: str,
        amount: Decimal,
        currency: str,
        client_reference_id: str,
        description: str = "",
    ) -> PayoutSubmission:
        for payment_id, record in self.payments.items():
            if record["client_reference_id"] == client_reference_id:
                return PayoutSubmission(payment_id=payment_id, status=record["status"])
        payment_id = f"mock_payment_{uuid.uuid4().hex[:12]}"
        self.payments[payment_id] = {
            "status": "pending",
            "payee_id": payee_id,
            "amount": amount,
            "currency": currency,
            "client_reference_id": client_reference_id,
            "failure_reason": "",
        }
        return PayoutSubmission(payment_id=payment_id, status="pending")

    def get_payment_status(self, payment_id: str) -> PaymentStatusResponse:
        record = self.payments.get(payment_id)
        if record is None:
            raise ProviderError("Payment not found.", payment_id=payment_id)
        return PaymentStatusResponse(
            payment_id=payment_id,
            status=record["status"],
            failure_reason=record["failure_reason"],
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if is_production():
            logger.critical("In-memory payout provider used in production; rejecting webhook.")
            return False
        if not signature:
            return False
        if signature == MOCK_WEBHOOK_SIGNATURE:
            return True
        if self.webhook_secret:
            if hmac.compare_digest(signature, self.webhook_secret):
                return True
            return hmac.compare_digest(compute_webhook_signature(payload, self.webhook_secret), signature)
        return False

    def activate_payee(self, payee_id: str, status: str = "active") -> None:
        self.payees.setdefault(payee_id, {})["status"] = status

    def set_payment_status(self, payment_id: str, status: str, failure_reason: str = "") -> None:
        record = self.payments[payment_id]
        record["status"] = status
        record["failure_reason"] = failure_reason


_mock_provider: Optional[InMemoryPayoutProvider] = None


def get_payout_provider() -> PayoutProviderAdapter:
    """Build the adapter configured in settings."""

    global _mock_provider
    if getattr(settings, "PAYOUT_PROVIDER_MOCK_MODE", False):
        if is_production():
            raise ImproperlyConfigured("PAYOUT_PROVIDER_MOCK_MODE cannot be enabled in production.")
        # One instance per process so registrations survive between requests in development.
        if _mock_provider is None:
            _mock_provider = InMemoryPayoutProvider(
                webhook_secret=getattr(settings, "PAYOUT_PROVIDER_WEBHOOK_SECRET", ""),
            )
        return _mock_provider

    program_id = getattr(settings, "PAYOUT_PROVIDER_PROGRAM_ID", "")
    username = getattr(settings, "PAYOUT_PROVIDER_USERNAME", "")
    password = getattr(settings, "PAYOUT_PROVIDER_PASSWORD", "")
    if not (program_id and username and password):
        raise ImproperlyConfigured("Payout provider credentials are not configured.")
    return HttpPayoutProvider(
        base_url=getattr(settings, "PAYOUT_PROVIDER_API_URL", "https://api.sandbox.payoneer.com/v4"),
        program_id=program_id,
        username=username,
        password=password,
        webhook_secret=getattr(settings, "PAYOUT_PROVIDER_WEBHOOK_SECRET", ""),
        timeout=getattr(settings, "PAYOUT_PROVIDER_TIMEOUT_SECONDS", 15),
    )


def _extract_error_message(response) -> str:
    if response is None:
        return ""
    try:
        data = response.json()
    except ValueError:
        return ""
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or "")
    return ""


def reset_payout_provider() -> None:
    """Drop the cached in-memory provider so the next lookup starts empty."""

    global _mock_provider
    _mock_provider = None
