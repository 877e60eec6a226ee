"""
Save snapshot store.

The credits core only consumes saves through the ``SaveStore`` protocol;
``SqlSaveStore`` is the table-backed implementation used by the service.
Every write bumps ``save_version`` so continue tokens can bind to it.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol
import uuid

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from arcade.core.database import save_states, utc_now


@dataclass
class SaveSnapshot:
    user_id: str
    save_data: Dict[str, Any]
    wave: int
    game_state: str
    schema_version: int
    save_version: int
    updated_at: Optional[datetime] = None
    session_token: Optional[str] = field(default=None, repr=False)

    def to_payload(self) -> Dict[str, Any]:
        """Client-facing shape: the stored payload plus bookkeeping fields."""
        saved_at = self.updated_at or utc_now()
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        return {
            **(self.save_data or {}),
            "schemaVersion": self.schema_version,
            "savedAt": int(saved_at.timestamp() * 1000),
            "wave": self.wave,
            "gameState": self.game_state,
        }


class SaveStore(Protocol):
    def load(self, user_id: str) -> Optional[SaveSnapshot]:
        ...

    def upsert(
        self,
        user_id: str,
        save_data: Dict[str, Any],
        wave: int,
        game_state: str,
        session_token: str,
        schema_version: int,
    ) -> SaveSnapshot:
        ...

    def delete(self, user_id: str) -> None:
        ...


def _row_to_snapshot(row) -> SaveSnapshot:
    data = row._mapping
    return SaveSnapshot(
        user_id=data["user_id"],
        save_data=data["save_data"] or {},
        wave=data["wave"],
        game_state=data["game_state"],
        schema_version=data["schema_version"],
        save_version=data["save_version"],
        updated_at=data["updated_at"],
        session_token=data["session_token"],
    )


class SqlSaveStore:
    """``SaveStore`` over the ``save_states`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def load(self, user_id: str) -> Optional[SaveSnapshot]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(save_states).where(save_states.c.user_id == user_id)
            ).first()
        return _row_to_snapshot(row) if row else None

    def upsert(
        self,
        user_id: str,
        save_data: Dict[str, Any],
        wave: int,
        game_state: str,
        session_token: str,
        schema_version: int,
    ) -> SaveSnapshot:
        now = utc_now()
        values = dict(
            save_data=save_data,
            wave=wave,
            game_state=game_state,
            session_token=session_token,
            schema_version=schema_version,
            updated_at=now,
        )

        # Update-then-insert; a lost insert race falls back to one more update.
        for _ in range(2):
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(save_states)
                    .where(save_states.c.user_id == user_id)
                    .values(save_version=save_states.c.save_version + 1, **values)
                )
                updated = result.rowcount
            if updated:
                break
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        insert(save_states).values(
                            id=str(uuid.uuid4()),
                            user_id=user_id,
                            save_version=1,
                            created_at=now,
                            **values,
                        )
                    )
                break
            except IntegrityError:
                continue

        return self.load(user_id)

    def delete(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(save_states.delete().where(save_states.c.user_id == user_id))
