"""Shared FastAPI dependencies for the credits and saves routers."""
from typing import Optional

from fastapi import Depends
from sqlalchemy.engine import Engine

from arcade.core.config import settings
from arcade.core.database import get_engine
from arcade.core.errors import AppError
from arcade.features.billing.provider import PaymentProvider
from arcade.features.billing.service import payment_client
from arcade.features.saves.store import SaveStore, SqlSaveStore


def get_store() -> Engine:
    return get_engine()


def get_save_store(store: Engine = Depends(get_store)) -> SaveStore:
    return SqlSaveStore(store)


def get_payment_provider() -> PaymentProvider:
    return payment_client.get()


def require_secret(value: Optional[str], name: str) -> str:
    if not value:
        raise AppError(f"{name} is not configured", code="not_configured", status_code=503)
    return value


def continue_token_secret() -> str:
    return require_secret(settings.CONTINUE_TOKEN_SECRET, "CONTINUE_TOKEN_SECRET")


def save_session_secret() -> str:
    return require_secret(settings.SAVE_HMAC_SECRET, "SAVE_HMAC_SECRET")
