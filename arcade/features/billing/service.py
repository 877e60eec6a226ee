"""
Credit-pack billing.

- start_checkout: validate redirect URLs, open a one-off payment session
- handle_notification: verify a provider notification and grant credits

Provider-specific code lives in stripe_provider.py; the grant itself is
idempotent in the ledger, keyed by the checkout session id.
"""
import logging
from typing import Dict, Iterable, Optional
from urllib.parse import urlparse

from sqlalchemy.engine import Engine

from arcade.core.config import settings
from arcade.core.errors import ValidationError
from arcade.core.logging import log_event
from arcade.features.billing.provider import (
    CHECKOUT_COMPLETED,
    PaymentClientHandle,
    PaymentProvider,
)
from arcade.features.billing.stripe_provider import StripeProvider
from arcade.features.credits import ledger

logger = logging.getLogger("arcade")

payment_client = PaymentClientHandle(StripeProvider.from_settings)


def is_allowed_redirect(url: str, allowed_hosts: Iterable[str]) -> bool:
    """True if ``url`` is http(s) and its hostname is on the allow-list."""
    try:
        parsed = urlparse(url or "")
    except ValueError:
        return False
    if parsed.scheme not in ("https", "http"):
        return False
    host = (parsed.hostname or "").lower()
    if not host:
        return False
    return host in {h.lower() for h in allowed_hosts}


def start_checkout(
    provider: PaymentProvider,
    user_id: str,
    email: Optional[str],
    success_url: str,
    cancel_url: str,
    allowed_hosts: Iterable[str],
    credits_amount: Optional[int] = None,
) -> Dict[str, str]:
    """
    Create a checkout session for one credit pack.

    Both redirect URLs are checked before the provider is contacted.

    Raises:
        ValidationError: redirect host not allowed
        PaymentServiceError: provider not configured (503) or failing (502)
    """
    hosts = list(allowed_hosts)
    for label, url in (("successUrl", success_url), ("cancelUrl", cancel_url)):
        if not is_allowed_redirect(url, hosts):
            log_event("warning", "billing.redirect_rejected", user_id=user_id, error_code="validation_error", extra={"field": label})
            raise ValidationError(f"{label} host is not allowed")

    amount = credits_amount or settings.CREDITS_PER_PURCHASE
    session = provider.create_checkout_session(
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"userId": user_id, "creditsAmount": str(amount)},
        customer_email=email,
    )
    log_event("info", "billing.checkout_created", user_id=user_id, extra={"session_id": session.session_id})
    return {"url": session.url, "sessionId": session.session_id}


def handle_notification(
    store: Engine,
    provider: PaymentProvider,
    raw_body: bytes,
    signature_header: Optional[str],
) -> bool:
    """
    Verify and apply a payment notification.

    Returns True when the notification was applied or intentionally
    ignored, False when a completed checkout carried unusable metadata.

    Raises:
        PaymentServiceError: 400 on a bad signature or payload, 503 if the
            webhook secret is not configured
    """
    event = provider.verify_notification(raw_body, signature_header or "")

    if event.event_type != CHECKOUT_COMPLETED:
        logger.info("billing.event_ignored", extra={"event_type": event.event_type})
        return True

    user_id = event.metadata.get("userId")
    if not user_id or not isinstance(user_id, str):
        log_event(
            "error",
            "billing.missing_user",
            event_type=event.event_type,
            error_code="invalid_metadata",
            extra={"session_id": event.object_id},
        )
        return False

    raw_amount = event.metadata.get("creditsAmount")
    try:
        amount = int(raw_amount) if raw_amount not in (None, "") else settings.CREDITS_PER_PURCHASE
    except (TypeError, ValueError):
        amount = 0
    if amount <= 0 or not event.object_id:
        log_event(
            "error",
            "billing.invalid_metadata",
            user_id=user_id,
            event_type=event.event_type,
            error_code="invalid_metadata",
            extra={"session_id": event.object_id, "credits_amount": raw_amount},
        )
        return False

    ledger.grant(
        store,
        user_id,
        amount,
        event.object_id,
        {"eventId": event.event_id},
    )
    return True
