"""Stripe SDK wrapper isolating every call to the payment processor."""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, TypeVar

import stripe

from minerpay.config import Settings, get_settings
from minerpay.core.exceptions import ConfigurationError, GatewayError, SignatureError, ValidationError
from minerpay.services.pricing import to_minor_units

if TYPE_CHECKING:  # pragma: no cover - hints only
    from minerpay.models import Order, Rental

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)
_CREDENTIAL_ERRORS = (stripe.AuthenticationError, stripe.PermissionError)


def _translate_stripe_error(operation: str, exc: stripe.StripeError) -> Exception:
    """Map Stripe SDK errors onto the pipeline's error taxonomy."""

    details = {"operation": operation, "stripe_code": getattr(exc, "code", None)}
    request_id = getattr(exc, "request_id", None)
    if request_id:
        details["stripe_request_id"] = request_id
    if isinstance(exc, _CREDENTIAL_ERRORS):
        return ConfigurationError("Stripe credentials are invalid or unauthorized.", details=details)
    if isinstance(exc, _RETRYABLE_ERRORS):
        return GatewayError(f"Temporary Stripe error during {operation}.", retryable=True, details=details)
    message = getattr(exc, "user_message", None) or f"Stripe rejected {operation}."
    return GatewayError(message, retryable=False, details=details)


def verify_webhook_payload(payload: bytes, sig_header: str | None, settings: Settings | None = None) -> dict[str, Any]:
    """Check the ``Stripe-Signature`` header and return the decoded event.

    Both the primary and the rotation secret are accepted. Raises
    ``SignatureError`` on any authenticity failure.
    """

    settings = settings or get_settings()
    secrets = settings.webhook_secrets
    if not secrets:
        raise ConfigurationError("Stripe webhook secret is missing; configure STRIPE_WEBHOOK_SECRET.")
    if not sig_header:
        raise SignatureError("Stripe-Signature header is required.", details={"reason": "missing_header"})

    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SignatureError("Webhook payload is not valid UTF-8.") from exc

    for secret in secrets:
        try:
            stripe.WebhookSignature.verify_header(
                text, sig_header, secret, tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
            )
            break
        except stripe.SignatureVerificationError:
            continue
    else:
        raise SignatureError()

    try:
        event = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError("Webhook payload is not valid JSON.") from exc
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ValidationError("Webhook payload is missing id or type.")
    return event


class StripeGateway:
    """Thin adapter over the Stripe Python SDK."""

    def __init__(self, settings: Settings) -> None:
        """Initialise the client and set the API key when enabled."""

        self.settings = settings
        if not settings.STRIPE_ENABLED:
            raise ConfigurationError("Stripe integration is disabled; enable STRIPE_ENABLED to proceed.")
        if not settings.STRIPE_SECRET_KEY:
            raise ConfigurationError("Stripe secret key is missing; configure STRIPE_SECRET_KEY.")

        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.api_version = settings.STRIPE_API_VERSION
        stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES

    def _ensure_connect_enabled(self) -> None:
        if not self.settings.STRIPE_CONNECT_ENABLED:
            raise ConfigurationError(
                "Stripe Connect is disabled; enable STRIPE_CONNECT_ENABLED to onboard payees."
            )

    def _call(self, operation: str, fn: Callable[..., T], **kwargs: Any) -> T:
        try:
            return fn(**kwargs)
        except stripe.StripeError as exc:
            translated = _translate_stripe_error(operation, exc)
            logger.warning(
                "Stripe call failed",
                extra={"operation": operation, "error_type": type(exc).__name__, "code": translated.code},
            )
            raise translated from exc

    # -- payer profiles --------------------------------------------------------

    def find_or_create_customer(self, email: str, *, metadata: Mapping[str, str]) -> stripe.Customer:
        """Return the first customer with ``email`` or create one.

        Not atomic: two concurrent checkouts may both create a customer. Stripe
        tolerates duplicate customers per e-mail.
        """

        existing = self._call("customer.list", stripe.Customer.list, email=email, limit=1)
        if existing.data:
            return existing.data[0]
        return self._call("customer.create", stripe.Customer.create, email=email, metadata=dict(metadata))

    # -- checkout --------------------------------------------------------------

    def create_checkout_session(
        self,
        order: "Order",
        *,
        line_items: list[Dict[str, Any]],
        customer_id: str,
        success_url: str,
        cancel_url: str,
    ) -> stripe.checkout.Session:
        """Create a hosted checkout session for a pending order."""

        params: Dict[str, Any] = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": line_items,
            "mode": order.mode.value,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"order_id": str(order.id), "buyer_id": str(order.buyer_id)},
            "billing_address_collection": "required",
            "customer_update": {"address": "auto", "name": "auto"},
            "automatic_tax": {"enabled": bool(self.settings.STRIPE_AUTOMATIC_TAX)},
            "idempotency_key": f"checkout-session:order:{order.id}",
        }
        if order.mode.value == "payment":
            params["shipping_address_collection"] = {
                "allowed_countries": list(self.settings.CHECKOUT_SHIPPING_COUNTRIES)
            }
        return self._call("checkout.session.create", stripe.checkout.Session.create, **params)

    # -- rentals ---------------------------------------------------------------

    def create_rental_payment_intent(
        self,
        rental: "Rental",
        *,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, str],
        receipt_email: str | None = None,
        replaces: str | None = None,
    ) -> stripe.PaymentIntent:
        """Create a PaymentIntent for a rental, grouped for the owner transfer.

        ``replaces`` names a canceled intent being superseded; it keys a fresh
        idempotency slot so the replacement is not answered from the first
        attempt.
        """

        payload: Dict[str, Any] = {
            "rental_id": str(rental.id),
            "machine_id": str(rental.machine_id),
            "renter_id": str(rental.renter_id),
            "owner_id": str(rental.owner_id),
            "platform_fee": str(rental.platform_fee),
            "owner_payout": str(rental.owner_payout),
        }
        # Caller metadata never overrides the settlement keys.
        for key, value in metadata.items():
            payload.setdefault(key, str(value))

        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "metadata": payload,
            "description": f"Rental payment for machine {rental.machine_id}",
            "transfer_group": f"rental_{rental.id}",
            "idempotency_key": f"rental-payment:{rental.id}" + (f":after:{replaces}" if replaces else ""),
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        return self._call("payment_intent.create", stripe.PaymentIntent.create, **params)

    def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        return self._call("payment_intent.retrieve", stripe.PaymentIntent.retrieve, id=payment_intent_id)

    # -- payees ----------------------------------------------------------------

    def create_payee_account(
        self, *, owner_id: int, email: str, display_name: str | None, country: str
    ) -> stripe.Account:
        """Create an Express connected account able to receive transfers."""

        self._ensure_connect_enabled()
        return self._call(
            "account.create",
            stripe.Account.create,
            type="express",
            country=country,
            email=email,
            capabilities={"card_payments": {"requested": True}, "transfers": {"requested": True}},
            business_type="individual",
            metadata={"owner_id": str(owner_id), "business_name": display_name or ""},
            idempotency_key=f"payee-account:owner:{owner_id}",
        )

    def create_onboarding_link(self, account_id: str, *, refresh_url: str, return_url: str) -> stripe.AccountLink:
        """Create a time-bound onboarding link for a connected account."""

        self._ensure_connect_enabled()
        return self._call(
            "account_link.create",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )


__all__ = ["StripeGateway", "verify_webhook_payload"]
