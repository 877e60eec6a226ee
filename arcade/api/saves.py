"""
Save API routes.

- POST   /api/saves/session: issue a signed session token for save writes
- PUT    /api/saves: persist a snapshot (session token required)
- GET    /api/saves: current snapshot
- DELETE /api/saves: remove the snapshot
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from arcade.api.deps import get_save_store, get_store, save_session_secret
from arcade.core.auth import AuthenticatedUser, get_current_user
from arcade.core.config import settings
from arcade.core.errors import AppError, NotFoundError
from arcade.core.ratelimit import per_user_limit
from arcade.features.saves import sessions
from arcade.features.saves.store import SaveStore

router = APIRouter(prefix="/saves", tags=["saves"])

save_write_limit = per_user_limit("save_write", lambda: settings.SAVE_WRITE_RATE_LIMIT_PER_MINUTE)


class SessionResponse(BaseModel):
    token: str


class SaveRequest(BaseModel):
    sessionToken: str = Field(min_length=1)
    saveData: Dict[str, Any]
    wave: int
    gameState: str = Field(min_length=1)
    schemaVersion: int = 2


class SaveResponse(BaseModel):
    save: Dict[str, Any]


async def save_size_limit(request: Request) -> None:
    """Reject bodies over SAVE_MAX_BYTES, measured on the raw bytes received."""
    body = await request.body()
    if len(body) > settings.SAVE_MAX_BYTES:
        raise AppError("Save payload too large", code="payload_too_large", status_code=413)


@router.post("/session", response_model=SessionResponse)
def start_session(
    user: AuthenticatedUser = Depends(get_current_user),
    store: Engine = Depends(get_store),
    secret: str = Depends(save_session_secret),
):
    return {"token": sessions.start_session(store, secret, user.user_id)}


@router.put("", dependencies=[Depends(save_size_limit)])
def put_save(
    body: SaveRequest,
    user: AuthenticatedUser = Depends(save_write_limit),
    store: Engine = Depends(get_store),
    saves: SaveStore = Depends(get_save_store),
    secret: str = Depends(save_session_secret),
):
    """
    Persist the caller's snapshot.

    Errors:
        400: wave outside 1..100 or malformed body
        403: session token forged, foreign, unknown or expired
        413: payload too large
    """
    snapshot = sessions.persist_save(
        store,
        saves,
        secret,
        user.user_id,
        body.sessionToken,
        body.saveData,
        body.wave,
        body.gameState,
        body.schemaVersion,
    )
    return {"ok": True, "saveVersion": snapshot.save_version}


@router.get("", response_model=SaveResponse)
def get_save(
    user: AuthenticatedUser = Depends(get_current_user),
    saves: SaveStore = Depends(get_save_store),
):
    snapshot = saves.load(user.user_id)
    if snapshot is None:
        raise NotFoundError("No save found")
    return {"save": snapshot.to_payload()}


@router.delete("")
def delete_save(
    user: AuthenticatedUser = Depends(get_current_user),
    saves: SaveStore = Depends(get_save_store),
):
    saves.delete(user.user_id)
    return {"ok": True}
