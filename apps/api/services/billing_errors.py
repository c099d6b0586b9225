"""Billing error taxonomy shared by services and routers."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class BillingError(Exception):
    """Base class for billing failures that map onto an HTTP status."""

    status_code: int = 400
    retryable: bool = False

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidRequest(BillingError):
    status_code = 400


class InvalidAmount(InvalidRequest):
    pass


class InsufficientFunds(BillingError):
    """Business-rule rejection: the balance cannot cover the debit."""

    status_code = 400

    def __init__(self, user_id: str, requested: Decimal, available: Optional[Decimal] = None) -> None:
        super().__init__("Insufficient balance.")
        self.user_id = user_id
        self.requested = requested
        self.available = available


class Forbidden(BillingError):
    status_code = 403


class NotFound(BillingError):
    status_code = 404


class ArtifactUnavailable(BillingError):
    """Artifact exists but is not in a purchasable state."""

    status_code = 403


class RechargeClosed(BillingError):
    """Recharge already left pending through a non-completed terminal state."""

    status_code = 409

    def __init__(self, recharge_id: str, status: str) -> None:
        super().__init__(f"Recharge {recharge_id} is already {status}.")
        self.recharge_id = recharge_id
        self.status = status


class IdempotencyConflict(BillingError):
    """An idempotency key was reused for a different operation or amount."""

    status_code = 409

    def __init__(self, idempotency_key: str) -> None:
        super().__init__("Idempotency key was already used with a different request.")
        self.idempotency_key = idempotency_key


class CheckoutMismatch(BillingError):
    """The provider checkout belongs to a different recharge request."""

    status_code = 409


class ProviderUnavailable(BillingError):
    """Payment provider call failed or timed out; state is unchanged."""

    status_code = 503
    retryable = True


class RetryableBillingError(BillingError):
    """Persisting an effect failed; the caller should retry the same request."""

    status_code = 503
    retryable = True


class MalformedWebhook(BillingError):
    status_code = 400


class WebhookSignatureInvalid(BillingError):
    status_code = 401
