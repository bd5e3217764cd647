"""Domain exceptions for the payment and settlement pipeline.

Every exception carries a stable ``code`` and the HTTP status the API layer
maps it to. Services raise these; the handlers registered in ``minerpay.main``
turn them into the shared error envelope.
"""
from __future__ import annotations

from typing import Any


class PaymentError(Exception):
    """Base class for all pipeline errors."""

    code = "PAYMENT_ERROR"
    status_code = 500
    public_message = "Payment processing failed."

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.details = details or {}


class ValidationError(PaymentError):
    """Bad or missing input, detected before any gateway call."""

    code = "VALIDATION_ERROR"
    status_code = 422
    public_message = "Invalid request data."


class RecordNotFoundError(PaymentError):
    code = "NOT_FOUND"
    status_code = 404
    public_message = "Record not found."


class ConfigurationError(PaymentError):
    """Gateway credentials are missing or the integration is disabled."""

    code = "GATEWAY_NOT_CONFIGURED"
    status_code = 503
    public_message = "Payments are temporarily unavailable. Please contact support."


class GatewayError(PaymentError):
    """The external payment processor rejected or failed a call.

    Local state is untouched when this is raised, so the caller may retry.
    ``retryable`` is true for timeouts, connection errors and rate limits.
    """

    code = "GATEWAY_ERROR"
    status_code = 502
    public_message = "The payment provider could not complete the request. Please try again."

    def __init__(
        self,
        message: str | None = None,
        *,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.retryable = retryable
        self.details.setdefault("retryable", retryable)


class PersistenceError(PaymentError):
    """A local write failed after the gateway call succeeded.

    Money may have moved without being recorded; ``external_ids`` lists every
    gateway identifier needed for manual reconciliation.
    """

    code = "PERSISTENCE_ERROR"
    status_code = 500
    public_message = "Your request was received but could not be saved. Please try again."

    def __init__(
        self,
        message: str | None = None,
        *,
        external_ids: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.external_ids = external_ids or {}


class SignatureError(PaymentError):
    """Webhook payload is not authentic."""

    code = "WEBHOOK_SIGNATURE_INVALID"
    status_code = 400
    public_message = "Invalid webhook signature."


class DuplicateEvent(PaymentError):
    """A webhook event that was already processed. Not a failure."""

    code = "WEBHOOK_DUPLICATE"
    status_code = 200
    public_message = "Event already processed."

    def __init__(self, event_id: str, *, handled: bool = True) -> None:
        super().__init__(f"Event {event_id} already processed.")
        self.event_id = event_id
        self.handled = handled


class LedgerInvariantError(PaymentError):
    """A ledger write would break the split or immutability rules."""

    code = "LEDGER_INVARIANT_VIOLATION"
    status_code = 500


__all__ = [
    "PaymentError",
    "ValidationError",
    "RecordNotFoundError",
    "ConfigurationError",
    "GatewayError",
    "PersistenceError",
    "SignatureError",
    "DuplicateEvent",
    "LedgerInvariantError",
]
