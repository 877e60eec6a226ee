"""
Continue orchestration.

Flow:
  1. request_continue(user) -> spend one credit, load the server-held save,
     issue a one-time continue token bound to the save version, log the
     spend, return token + save + balance.
  2. redeem_continue(user, token) -> check signature and owner, then
     consume the token.

The save is intentionally left in place on redemption. If the player dies
again before the next wave auto-save, they can spend another credit to
resume from the same snapshot; replay is gated by credits and by the
one-time token, not by deleting the save.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine

from arcade.core.database import utc_now
from arcade.core.errors import CreditError
from arcade.core.logging import log_event
from arcade.features.credits import continue_tokens, ledger
from arcade.features.saves.store import SaveStore

logger = logging.getLogger("arcade")


def request_continue(
    store: Engine,
    saves: SaveStore,
    secret: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Spend a credit to resume the user's saved run.

    Raises:
        CreditError(402): no credits
        CreditError(409): lost the balance race, retry
        CreditError(404): no save; the spent credit has been refunded

    Any failure after the spend revokes the issued token and refunds the
    credit before the error propagates.
    """
    now = now or utc_now()

    deduction = ledger.deduct(store, user_id, now=now)

    issued = None
    try:
        save = saves.load(user_id)
        if save is None:
            raise CreditError("No save found, nothing to continue from", 404)
        issued = continue_tokens.issue(store, secret, user_id, save.save_version, now=now)
        ledger.record_transaction(
            store,
            user_id,
            deduction.kind,
            -1,
            None,
            {"wave": save.wave, "saveVersion": save.save_version},
            now=now,
        )
    except Exception:
        # Compensate before surfacing; the spend was never logged.
        if issued is not None:
            _revoke_quietly(store, user_id, issued.token)
        _refund_quietly(store, user_id, deduction.kind, now)
        raise

    try:
        continue_tokens.clean_expired(store, now=now)
    except Exception:
        logger.warning("continue_tokens.cleanup_failed", exc_info=True)

    log_event(
        "info",
        "credits.continue_issued",
        user_id=user_id,
        event_type=deduction.kind,
        extra={"save_version": save.save_version, "wave": save.wave},
    )

    return {
        "continueToken": issued.token,
        "save": save.to_payload(),
        "creditBalance": deduction.to_balance(),
    }


def _refund_quietly(store: Engine, user_id: str, kind: str, now: datetime) -> None:
    try:
        ledger.refund(store, user_id, kind, now=now)
    except Exception:
        logger.error("credits.refund_failed", exc_info=True, extra={"user_id": user_id, "event_type": kind})


def _revoke_quietly(store: Engine, user_id: str, token: str) -> None:
    try:
        continue_tokens.revoke(store, token)
    except Exception:
        logger.error("continue_tokens.revoke_failed", exc_info=True, extra={"user_id": user_id})


def redeem_continue(store: Engine, secret: str, user_id: str, token: str, now: Optional[datetime] = None) -> bool:
    """
    Consume a continue token.

    The save version recorded at issue time is not compared with the current
    save; a save overwritten in between still redeems.

    Raises:
        CreditError(403): forged, foreign, invalid, expired or already used
    """
    save_version = continue_tokens.consume(store, secret, user_id, token, now=now)
    log_event("info", "credits.continue_redeemed", user_id=user_id, extra={"save_version": save_version})
    return True


def get_balance(store: Engine, user_id: str) -> Dict[str, int]:
    return ledger.get_balance(store, user_id)
