"""
Stripe payment provider.

Implements the PaymentProvider protocol with the Stripe API: one-off
credit-pack checkout sessions and webhook signature verification.
"""
import json
from typing import Dict, Any, Optional

import stripe

from arcade.core.config import Settings, settings as default_settings
from arcade.core.errors import PaymentServiceError
from arcade.features.billing.provider import CheckoutSession, PaymentEvent, provider_unavailable

SIGNATURE_TOLERANCE_SECONDS = 300


class StripeProvider:
    """Stripe implementation of PaymentProvider."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        price_id: Optional[str] = None,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.price_id = price_id

        if not self.secret_key:
            raise provider_unavailable("Stripe is not configured (missing STRIPE_SECRET_KEY)")

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "StripeProvider":
        cfg = cfg or default_settings
        return cls(
            secret_key=cfg.STRIPE_SECRET_KEY,
            webhook_secret=cfg.STRIPE_WEBHOOK_SECRET,
            price_id=cfg.STRIPE_PRICE_ID,
        )

    def create_checkout_session(
        self,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        """Create a one-off Stripe checkout session for a credit pack."""
        if not self.price_id:
            raise provider_unavailable("Stripe price not configured (missing STRIPE_PRICE_ID)")

        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{"price": self.price_id, "quantity": 1}],
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise PaymentServiceError(f"Stripe checkout session creation failed: {e}", status_code=502, code="payment_provider_error")

        if not session.url:
            raise PaymentServiceError("Stripe did not return a checkout URL", status_code=502, code="payment_provider_error")

        return CheckoutSession(url=session.url, session_id=session.id)

    def verify_notification(self, raw_body: bytes, signature_header: str) -> PaymentEvent:
        """Verify the Stripe-Signature header over the raw body, then parse."""
        if not self.webhook_secret:
            raise provider_unavailable("Webhook secret not configured")
        if not signature_header:
            raise PaymentServiceError("Missing stripe-signature header", status_code=400, code="invalid_signature")

        payload = raw_body.decode("utf-8", errors="replace") if isinstance(raw_body, bytes) else raw_body
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, SIGNATURE_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            raise PaymentServiceError(f"Webhook signature verification failed: {e}", status_code=400, code="invalid_signature")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise PaymentServiceError(f"Invalid payload: {e}", status_code=400, code="invalid_payload")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> PaymentEvent:
        if not isinstance(event, dict) or "type" not in event:
            raise PaymentServiceError("Invalid payload: missing event type", status_code=400, code="invalid_payload")

        data = (event.get("data") or {}).get("object") or {}
        metadata = data.get("metadata") if isinstance(data, dict) else None
        return PaymentEvent(
            event_id=str(event.get("id") or ""),
            event_type=event["type"],
            object_id=data.get("id") if isinstance(data, dict) else None,
            metadata=metadata if isinstance(metadata, dict) else {},
        )
