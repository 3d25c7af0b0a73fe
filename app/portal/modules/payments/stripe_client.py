from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import stripe

from app.portal.config import Settings

WEBHOOK_TOLERANCE_SECONDS = 300


class StripeGatewayError(RuntimeError):
    pass


class InvalidWebhook(StripeGatewayError):
    pass


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None
    status: str | None = None
    payment_status: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    customer_email: str | None = None
    metadata: dict[str, str] | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


def _as_session(obj: Any) -> CheckoutSession:
    details = getattr(obj, "customer_details", None)
    email = getattr(obj, "customer_email", None) or (getattr(details, "email", None) if details else None)
    raw_metadata = getattr(obj, "metadata", None)
    if raw_metadata and hasattr(raw_metadata, "to_dict"):
        raw_metadata = raw_metadata.to_dict()
    metadata = {str(k): str(v) for k, v in (raw_metadata or {}).items()}
    return CheckoutSession(
        id=obj.id,
        url=getattr(obj, "url", None),
        status=getattr(obj, "status", None),
        payment_status=getattr(obj, "payment_status", None),
        amount_total=getattr(obj, "amount_total", None),
        currency=getattr(obj, "currency", None),
        customer_email=email,
        metadata=metadata,
    )


@dataclass(frozen=True)
class StripeGateway:
    """Thin wrapper over the Stripe SDK; every call carries its own API key."""

    secret_key: str
    webhook_secret: str
    success_url: str
    cancel_url: str

    def create_checkout_session(
        self,
        *,
        email: str,
        product_name: str,
        product_description: str,
        unit_amount: int,
        metadata: dict[str, str],
        success_query: str = "",
        currency: str = "eur",
    ) -> CheckoutSession:
        try:
            obj = stripe.checkout.Session.create(
                api_key=self.secret_key,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": product_name, "description": product_description},
                            "unit_amount": unit_amount,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=f"{self.success_url}?session_id={{CHECKOUT_SESSION_ID}}{success_query}",
                cancel_url=self.cancel_url,
                customer_email=email,
                client_reference_id=email,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            raise StripeGatewayError(f"Stripe checkout creation failed: {e.user_message or e}") from e
        return _as_session(obj)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            obj = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise StripeGatewayError(f"Stripe session lookup failed: {e.user_message or e}") from e
        return _as_session(obj)

    def parse_webhook(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """
        Verify the Stripe-Signature header against the raw body and return the
        event as plain JSON. Raises InvalidWebhook on any verification problem.
        """
        if not signature_header:
            raise InvalidWebhook("Missing Stripe-Signature header")
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidWebhook("Payload is not UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(
                text, signature_header, self.webhook_secret, tolerance=WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidWebhook(str(e)) from e
        try:
            event = json.loads(text)
        except ValueError as e:
            raise InvalidWebhook("Invalid JSON payload") from e
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidWebhook("Payload is not a Stripe event")
        return event


def gateway_from_settings(settings: Settings) -> StripeGateway:
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        success_url=settings.success_url,
        cancel_url=settings.cancel_url,
    )
