"""Shared error translation for monetization API views."""
from __future__ import annotations

import logging
from typing import Optional

from rest_framework import status
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from monetization.services.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientBalance,
    MonetizationError,
    NotFound,
    ProviderError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (InsufficientBalance, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
)


def error_response(exc: MonetizationError) -> Response:
    http_status = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    if http_status >= 500:
        logger.warning("Monetization request failed upstream: %s (%s)", exc.message, exc.code)
    return Response(
        {"code": exc.code, "message": exc.message, "details": exc.details},
        status=http_status,
    )


def request_id(request) -> str:
    return request.headers.get("X-Request-ID", "")


def idempotency_key(request) -> Optional[str]:
    key = (request.headers.get("Idempotency-Key") or "").strip()
    return key or None


class MonetizationErrorMixin:
    """Render service and payload errors in the ``{code, message, details}`` envelope."""

    def handle_exception(self, exc):
        if isinstance(exc, MonetizationError):
            return error_response(exc)
        if isinstance(exc, DRFValidationError):
            return Response(
                {"code": "invalid_request", "message": "Invalid request payload.", "details": exc.detail},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return super().handle_exception(exc)


class MonetizationAPIView(MonetizationErrorMixin, APIView):
    permission_classes = [IsAuthenticated]
