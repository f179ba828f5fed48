"""Exception hierarchy shared by the monetization services."""
from __future__ import annotations

from typing import Any, Dict


class MonetizationError(Exception):
    """Base exception type for monetization failures."""

    code = "monetization_error"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or str(self.args[0])
        self.details: Dict[str, Any] = details


class ValidationError(MonetizationError):
    """Input is malformed or contradicts the current state."""

    code = "invalid_request"


class AuthorizationError(MonetizationError):
    """Caller does not own the resource they are acting on."""

    code = "forbidden"


class NotFound(MonetizationError):
    """Referenced entity does not exist."""

    code = "not_found"


class WalletNotFound(NotFound):
    """The user has no wallet to debit."""

    code = "wallet_not_found"


class ConflictError(MonetizationError):
    """Concurrent or repeated request collided with existing state."""

    code = "conflict"


class InsufficientBalance(MonetizationError):
    """Available balance does not cover the requested debit."""

    code = "insufficient_balance"

    def __init__(self, *, required: int, available: int, balance: int, held: int) -> None:
        super().__init__(
            f"Insufficient balance: {required} coins required, {available} available.",
            required=required,
            available=available,
            balance=balance,
            held=held,
        )
        self.required = required
        self.available = available
        self.balance = balance
        self.held = held


class ProviderError(MonetizationError):
    """The payout provider rejected or failed a request."""

    code = "provider_error"


class ProviderTimeout(ProviderError):
    """The payout provider did not answer in time; the outcome is unknown."""

    code = "provider_timeout"


class UnknownProviderStatus(ProviderError):
    """The provider reported a status string with no local mapping."""

    code = "unknown_provider_status"
