"""
Payment provider protocol.

Defines the interface the credits core needs from a payment provider
(Stripe today), plus the lazily-built process-wide client handle.
"""
import threading
from typing import Protocol, Dict, Any, Optional, Callable
from dataclasses import dataclass, field

from arcade.core.errors import PaymentServiceError


CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass
class CheckoutSession:
    url: str
    session_id: str


@dataclass
class PaymentEvent:
    """A verified provider notification, normalized."""
    event_id: str
    event_type: str
    object_id: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must handle:
    - One-off checkout session creation
    - Notification signature verification over the raw body
    """

    def create_checkout_session(
        self,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a one-off payment checkout session.

        Raises:
            PaymentServiceError: 503 if not configured, 502 if the provider fails
        """
        ...

    def verify_notification(self, raw_body: bytes, signature_header: str) -> PaymentEvent:
        """
        Verify the notification signature and parse the event.

        Raises:
            PaymentServiceError: 400 on signature or payload failure,
                503 if the signing secret is not configured
        """
        ...


class PaymentClientHandle:
    """
    Lazily constructed, process-wide payment provider.

    Precondition for ``get()``: the provider's secret key is configured;
    the factory raises ``PaymentServiceError`` (503) otherwise, and nothing
    is cached so a later call can succeed once configuration is present.
    """

    def __init__(self, factory: Callable[[], PaymentProvider]):
        self._factory = factory
        self._provider: Optional[PaymentProvider] = None
        self._lock = threading.Lock()

    def get(self) -> PaymentProvider:
        if self._provider is None:
            with self._lock:
                if self._provider is None:
                    self._provider = self._factory()
        return self._provider

    def reset(self) -> None:
        with self._lock:
            self._provider = None


def provider_unavailable(message: str) -> PaymentServiceError:
    return PaymentServiceError(message, status_code=503, code="payment_unavailable")
