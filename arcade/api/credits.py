"""
Credits API routes.

- GET  /api/credits: balance
- GET  /api/credits/history: recent transactions
- POST /api/credits/continue: spend a credit, get a continue token + save
- POST /api/credits/redeem: consume a continue token
- POST /api/credits/checkout: start a credit-pack purchase
- POST /api/credits/webhook: Stripe notifications (unauthenticated, raw body)
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, field_validator
from sqlalchemy.engine import Engine

from arcade.api.deps import continue_token_secret, get_payment_provider, get_save_store, get_store
from arcade.core.auth import AuthenticatedUser, get_current_user
from arcade.core.config import settings
from arcade.core.ratelimit import per_user_limit
from arcade.features.billing import service as billing
from arcade.features.billing.provider import PaymentProvider
from arcade.features.credits import ledger
from arcade.features.credits import service as credits
from arcade.features.saves.store import SaveStore


router = APIRouter(prefix="/credits", tags=["credits"])

continue_limit = per_user_limit("continue", lambda: settings.CONTINUE_RATE_LIMIT_PER_MINUTE)
checkout_limit = per_user_limit("checkout", lambda: settings.CHECKOUT_RATE_LIMIT_PER_MINUTE)


class CreditBalance(BaseModel):
    freeRemaining: int
    purchased: int
    total: int


class BalanceResponse(BaseModel):
    credits: CreditBalance


class ContinueResponse(BaseModel):
    continueToken: str
    save: Dict[str, Any]
    creditBalance: CreditBalance


class RedeemRequest(BaseModel):
    continueToken: str

    @field_validator("continueToken")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("continueToken is required")
        return value


class CheckoutRequest(BaseModel):
    successUrl: str
    cancelUrl: str


class CheckoutResponse(BaseModel):
    url: str
    sessionId: str


class TransactionOut(BaseModel):
    id: str
    kind: str
    amount: int
    externalRef: Optional[str] = None
    metadata: Dict[str, Any] = {}
    createdAt: Optional[str] = None


@router.get("", response_model=BalanceResponse)
def get_credits(
    user: AuthenticatedUser = Depends(get_current_user),
    store: Engine = Depends(get_store),
):
    return {"credits": credits.get_balance(store, user.user_id)}


@router.get("/history", response_model=List[TransactionOut])
def get_history(
    limit: int = Query(20, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    store: Engine = Depends(get_store),
):
    return ledger.list_transactions(store, user.user_id, limit=limit)


@router.post("/continue", response_model=ContinueResponse)
def request_continue(
    user: AuthenticatedUser = Depends(continue_limit),
    store: Engine = Depends(get_store),
    saves: SaveStore = Depends(get_save_store),
    secret: str = Depends(continue_token_secret),
):
    """
    Spend one credit to resume the saved run.

    Errors:
        402: no credits
        404: no save (credit refunded)
        409: concurrent spend, retry
        429: rate limited
    """
    return credits.request_continue(store, saves, secret, user.user_id)


@router.post("/redeem")
def redeem_continue(
    body: RedeemRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: Engine = Depends(get_store),
    secret: str = Depends(continue_token_secret),
):
    credits.redeem_continue(store, secret, user.user_id, body.continueToken)
    return {"ok": True}


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(checkout_limit),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """
    Create a Stripe checkout session for one credit pack.

    Errors:
        400: redirect host not on CHECKOUT_ALLOWED_HOSTS
        502: Stripe API error
        503: billing not configured
    """
    return billing.start_checkout(
        provider,
        user.user_id,
        user.email,
        body.successUrl,
        body.cancelUrl,
        settings.allowed_checkout_hosts(),
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    store: Engine = Depends(get_store),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """
    Stripe webhook. The signature is checked over the raw body.

    Any verified notification is acknowledged so Stripe stops retrying it,
    including completed checkouts whose metadata could not be applied.
    """
    body = await request.body()
    billing.handle_notification(store, provider, body, stripe_signature)
    return {"received": True}
