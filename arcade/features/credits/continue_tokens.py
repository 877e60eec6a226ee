"""
One-time continue tokens.

A continue token authorises resuming one run from a specific save version.
The signature and the ``<userId>:`` prefix are checked first, without I/O.
A token that passes is consumed by a single conditional UPDATE; expiry is
checked against the wall clock inside that same statement.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, insert, or_, update
from sqlalchemy.engine import Engine

from arcade.core.database import continue_tokens, utc_now
from arcade.core.errors import CreditError
from arcade.features.tokens import codec

logger = logging.getLogger("arcade")

TOKEN_TTL = timedelta(minutes=5)

# Same message for forged, foreign, unknown, expired and already-consumed tokens.
_REJECTED = "Invalid, expired, or already-used continue token"


@dataclass
class IssuedContinueToken:
    token: str
    expires_at: datetime
    save_version: int


def issue(store: Engine, secret: str, user_id: str, save_version: int, now: Optional[datetime] = None) -> IssuedContinueToken:
    """Mint and persist an unconsumed token bound to ``save_version``.

    Outstanding tokens per user are not capped.
    """
    now = now or utc_now()
    issued_ms = int(now.timestamp() * 1000)
    token = codec.sign(codec.join_fields(user_id, codec.new_nonce(), save_version, issued_ms), secret)
    expires_at = now + TOKEN_TTL

    with store.begin() as conn:
        conn.execute(
            insert(continue_tokens).values(
                id=str(uuid.uuid4()),
                user_id=user_id,
                token=token,
                save_version=save_version,
                consumed=False,
                created_at=now,
                expires_at=expires_at,
            )
        )

    return IssuedContinueToken(token=token, expires_at=expires_at, save_version=save_version)


def bound_save_version(secret: str, user_id: str, token: str) -> int:
    """
    Return the save version signed into ``token`` if it was minted for ``user_id``.

    Pure check, no I/O. Raises CreditError(403) otherwise.
    """
    prefix = f"{user_id}:".encode("utf-8")
    try:
        payload = codec.verify(token, secret)
        if not payload.startswith(prefix):
            raise codec.TokenRejected()
        # nonce:saveVersion:issuedAtMs
        fields = codec.split_fields(payload[len(prefix):])
    except codec.TokenRejected:
        raise CreditError(_REJECTED, 403)
    if len(fields) != 3 or not fields[1].isdigit():
        raise CreditError(_REJECTED, 403)
    return int(fields[1])


def consume(store: Engine, secret: str, user_id: str, token: str, now: Optional[datetime] = None) -> int:
    """
    Mark the token consumed and return the save version it was bound to.

    Raises:
        CreditError(403): forged or foreign token, or no unconsumed,
            unexpired row for this user
    """
    if not token:
        raise CreditError(_REJECTED, 403)
    save_version = bound_save_version(secret, user_id, token)

    with store.begin() as conn:
        result = conn.execute(
            update(continue_tokens)
            .where(
                and_(
                    continue_tokens.c.user_id == user_id,
                    continue_tokens.c.token == token,
                    continue_tokens.c.consumed.is_(False),
                    continue_tokens.c.expires_at > (now or utc_now()),
                )
            )
            .values(consumed=True)
        )
        changed = result.rowcount

    if changed != 1:
        raise CreditError(_REJECTED, 403)
    return save_version


def revoke(store: Engine, token: str) -> int:
    """Delete one token row regardless of state."""
    with store.begin() as conn:
        result = conn.execute(delete(continue_tokens).where(continue_tokens.c.token == token))
        removed = result.rowcount
    return removed or 0


def clean_expired(store: Engine, now: Optional[datetime] = None) -> int:
    """Delete consumed or expired tokens. Both states are already terminal."""
    with store.begin() as conn:
        result = conn.execute(
            delete(continue_tokens).where(
                or_(
                    continue_tokens.c.consumed.is_(True),
                    continue_tokens.c.expires_at < (now or utc_now()),
                )
            )
        )
        removed = result.rowcount
    return removed or 0
