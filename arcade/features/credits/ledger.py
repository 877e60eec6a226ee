"""
Credit ledger.

Owns the per-user balance (free + purchased credits) and the append-only
transaction log.

- Every balance mutation is one conditional UPDATE whose WHERE clause
  carries the precondition; zero affected rows is a conflict, never a
  silent no-op.
- A transaction row is written only after the balance change it records
  has taken effect.
- Purchases are idempotent by ``external_ref``.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from sqlalchemy import and_, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from arcade.core.config import settings
from arcade.core.database import credit_transactions, user_credits, utc_now
from arcade.core.errors import CreditError, ValidationError
from arcade.core.logging import log_event

FREE_USE = "free_use"
PAID_USE = "paid_use"
PURCHASE = "purchase"

TransactionKind = Literal["free_use", "paid_use", "purchase"]
TRANSACTION_KINDS = {FREE_USE, PAID_USE, PURCHASE}


@dataclass
class Credits:
    user_id: str
    free_remaining: int
    purchased_balance: int

    @property
    def total(self) -> int:
        return self.free_remaining + self.purchased_balance

    def to_balance(self) -> Dict[str, int]:
        return {
            "freeRemaining": self.free_remaining,
            "purchased": self.purchased_balance,
            "total": self.total,
        }


@dataclass
class Deduction:
    kind: TransactionKind
    new_free: int
    new_balance: int

    def to_balance(self) -> Dict[str, int]:
        return {
            "freeRemaining": self.new_free,
            "purchased": self.new_balance,
            "total": self.new_free + self.new_balance,
        }


def _read(store: Engine, user_id: str) -> Optional[Credits]:
    with store.connect() as conn:
        row = conn.execute(
            select(user_credits.c.free_credits_remaining, user_credits.c.balance).where(
                user_credits.c.user_id == user_id
            )
        ).first()
    if row is None:
        return None
    return Credits(user_id=user_id, free_remaining=row[0], purchased_balance=row[1])


def get_or_create(store: Engine, user_id: str, now: Optional[datetime] = None) -> Credits:
    """Return the user's credits, inserting a fresh row if absent.

    Insert-if-absent: losing a concurrent first-access race is fine, the
    winner's row is read back.
    """
    existing = _read(store, user_id)
    if existing:
        return existing

    now = now or utc_now()
    try:
        with store.begin() as conn:
            conn.execute(
                insert(user_credits).values(
                    user_id=user_id,
                    balance=0,
                    free_credits_remaining=settings.FREE_CREDITS_DEFAULT,
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        pass

    credits = _read(store, user_id)
    if credits is None:
        raise CreditError("Failed to initialise credits", 500, code="credit_init_failed")
    return credits


def get_balance(store: Engine, user_id: str) -> Dict[str, int]:
    return get_or_create(store, user_id).to_balance()


def deduct(store: Engine, user_id: str, now: Optional[datetime] = None) -> Deduction:
    """
    Spend one credit, free credits first.

    Raises:
        CreditError(402): no credits at all
        CreditError(409): the row changed between read and write; retry the
            whole call so it re-reads current state
    """
    now = now or utc_now()
    credits = get_or_create(store, user_id, now=now)

    if credits.free_remaining > 0:
        column, kind = user_credits.c.free_credits_remaining, FREE_USE
    elif credits.purchased_balance > 0:
        column, kind = user_credits.c.balance, PAID_USE
    else:
        raise CreditError("No credits remaining", 402)

    with store.begin() as conn:
        result = conn.execute(
            update(user_credits)
            .where(and_(user_credits.c.user_id == user_id, column > 0))
            .values({column: column - 1, user_credits.c.updated_at: now})
        )
        changed = result.rowcount

    if changed != 1:
        log_event("warning", "credits.deduct_conflict", user_id=user_id, event_type=kind, error_code="conflict")
        raise CreditError("Credit balance changed concurrently, please retry", 409)

    after = _read(store, user_id)
    return Deduction(kind=kind, new_free=after.free_remaining, new_balance=after.purchased_balance)


def refund(store: Engine, user_id: str, kind: TransactionKind, now: Optional[datetime] = None) -> Credits:
    """Compensating increment for a spend that did not go through.

    Restores the bucket the credit came from. Nothing is logged for either
    side, so the transaction log never shows a spend that was undone.
    """
    if kind == FREE_USE:
        column = user_credits.c.free_credits_remaining
    elif kind == PAID_USE:
        column = user_credits.c.balance
    else:
        raise ValidationError(f"Cannot refund a {kind} transaction")

    with store.begin() as conn:
        result = conn.execute(
            update(user_credits)
            .where(user_credits.c.user_id == user_id)
            .values({column: column + 1, user_credits.c.updated_at: now or utc_now()})
        )
        changed = result.rowcount

    if changed != 1:
        raise CreditError("Credits row missing during refund", 409)

    log_event("info", "credits.refunded", user_id=user_id, event_type=kind)
    return _read(store, user_id)


def find_transaction_by_ref(store: Engine, external_ref: str) -> Optional[Dict[str, Any]]:
    with store.connect() as conn:
        row = conn.execute(
            select(credit_transactions).where(credit_transactions.c.external_ref == external_ref)
        ).first()
    return _row_to_dict(row) if row else None


def grant(
    store: Engine,
    user_id: str,
    amount: int,
    external_ref: str,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Credits:
    """
    Add purchased credits exactly once per ``external_ref``.

    The increment and its ``purchase`` row go out as one batch. The lookup
    by ``external_ref`` plus the unique constraint on that column keep a
    retried or concurrent duplicate from applying twice.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Grant amount must be a positive integer")
    if not external_ref:
        raise ValidationError("Grant requires an external reference")

    if find_transaction_by_ref(store, external_ref):
        log_event("info", "credits.grant_duplicate", user_id=user_id, event_type=PURCHASE, extra={"external_ref": external_ref})
        return get_or_create(store, user_id, now=now)

    now = now or utc_now()
    get_or_create(store, user_id, now=now)

    try:
        with store.begin() as conn:
            result = conn.execute(
                update(user_credits)
                .where(user_credits.c.user_id == user_id)
                .values(balance=user_credits.c.balance + amount, updated_at=now)
            )
            if result.rowcount != 1:
                raise CreditError("Credits row missing during grant", 409)
            conn.execute(
                insert(credit_transactions).values(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    type=PURCHASE,
                    amount=amount,
                    external_ref=external_ref,
                    metadata=metadata or {},
                    created_at=now,
                )
            )
    except IntegrityError:
        # A concurrent delivery of the same reference won; this batch was discarded.
        log_event("info", "credits.grant_duplicate", user_id=user_id, event_type=PURCHASE, extra={"external_ref": external_ref})
        return get_or_create(store, user_id, now=now)

    log_event("info", "credits.granted", user_id=user_id, event_type=PURCHASE, extra={"amount": amount, "external_ref": external_ref})
    return _read(store, user_id)


def record_transaction(
    store: Engine,
    user_id: str,
    kind: TransactionKind,
    amount: int,
    external_ref: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    """Append a log row. Never touches the balance."""
    if kind not in TRANSACTION_KINDS:
        raise ValidationError(f"Unknown transaction kind: {kind}")

    transaction_id = str(uuid.uuid4())
    with store.begin() as conn:
        conn.execute(
            insert(credit_transactions).values(
                id=transaction_id,
                user_id=user_id,
                type=kind,
                amount=amount,
                external_ref=external_ref,
                metadata=metadata or {},
                created_at=now or utc_now(),
            )
        )
    return transaction_id


def list_transactions(store: Engine, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    """Most recent transactions first."""
    with store.connect() as conn:
        rows = conn.execute(
            select(credit_transactions)
            .where(credit_transactions.c.user_id == user_id)
            .order_by(credit_transactions.c.created_at.desc())
            .limit(limit)
        ).fetchall()
    return [_row_to_dict(row) for row in rows]


def _row_to_dict(row) -> Dict[str, Any]:
    data = row._mapping
    created_at = data["created_at"]
    return {
        "id": data["id"],
        "userId": data["user_id"],
        "kind": data["type"],
        "amount": data["amount"],
        "externalRef": data["external_ref"],
        "metadata": data["metadata"] or {},
        "createdAt": created_at.isoformat() if created_at else None,
    }
