"""
Save-session authority.

Session tokens gate writes to a user's persisted save. Verification is
two-layered:

1. Cryptographic: signature plus ``<userId>:`` prefix (no I/O).
2. Storage: the token row exists for that user and has not expired.

A session has no "consumed" state; it backs any number of writes until it
expires.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.engine import Engine

from arcade.core.database import save_sessions, utc_now
from arcade.core.errors import AuthorizationError, ValidationError
from arcade.features.saves.store import SaveSnapshot, SaveStore
from arcade.features.tokens import codec

logger = logging.getLogger("arcade")

SESSION_TTL = timedelta(hours=48)
MIN_WAVE = 1
MAX_WAVE = 100


def start_session(store: Engine, secret: str, user_id: str, now: Optional[datetime] = None) -> str:
    """Issue and persist a session token for ``user_id``."""
    now = now or utc_now()
    token = codec.sign(codec.join_fields(user_id, codec.new_nonce()), secret)

    with store.begin() as conn:
        conn.execute(
            insert(save_sessions).values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                token=token,
                expires_at=now + SESSION_TTL,
                created_at=now,
            )
        )

    try:
        removed = clean_expired_sessions(store, now)
        if removed:
            logger.info("save_sessions.cleaned", extra={"user_id": user_id, "removed": removed})
    except Exception:
        logger.warning("save_sessions.cleanup_failed", exc_info=True)

    return token


def clean_expired_sessions(store: Engine, now: Optional[datetime] = None) -> int:
    with store.begin() as conn:
        result = conn.execute(
            delete(save_sessions).where(save_sessions.c.expires_at < (now or utc_now()))
        )
        removed = result.rowcount
    return removed or 0


def verify_session_signature(secret: str, user_id: str, token: str) -> bool:
    """Layer 1: the token verifies and was minted for ``user_id``."""
    try:
        payload = codec.verify(token, secret)
    except codec.TokenRejected:
        return False
    return payload.startswith(f"{user_id}:".encode("utf-8"))


def authorize_write(store: Engine, secret: str, user_id: str, token: str, now: Optional[datetime] = None) -> None:
    """
    Require a valid, live session token for ``user_id``.

    Raises:
        AuthorizationError (403): forged, cross-user, revoked or expired token
    """
    if not token or not verify_session_signature(secret, user_id, token):
        raise AuthorizationError("Invalid session token", status_code=403, code="invalid_session")

    with store.connect() as conn:
        row = conn.execute(
            select(save_sessions.c.id).where(
                and_(
                    save_sessions.c.token == token,
                    save_sessions.c.user_id == user_id,
                    save_sessions.c.expires_at > (now or utc_now()),
                )
            )
        ).first()

    if row is None:
        raise AuthorizationError("Session token not found or expired", status_code=403, code="invalid_session")


def persist_save(
    store: Engine,
    saves: SaveStore,
    secret: str,
    user_id: str,
    session_token: str,
    save_data: Dict[str, Any],
    wave: int,
    game_state: str,
    schema_version: int,
    now: Optional[datetime] = None,
) -> SaveSnapshot:
    """Authorize the write, then hand the snapshot to the save store."""
    authorize_write(store, secret, user_id, session_token, now=now)

    if not MIN_WAVE <= wave <= MAX_WAVE:
        raise ValidationError("Invalid wave number in save data")

    return saves.upsert(user_id, save_data, wave, game_state, session_token, schema_version)
