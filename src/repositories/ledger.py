"""Ledger: the only write path for user currency balances.

Every change is a single conditional ``UPDATE users SET balance = balance + delta``
so concurrent stakes and payouts on the same user cannot lose updates, paired
with an append-only ``ledger_transactions`` row carrying the resulting balance.
Callers own the transaction; nothing here commits.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from domain.errors import InvariantViolationError, NotFoundError
from models import LedgerTransaction, User

logger = logging.getLogger(__name__)

STAKE = "stake"
PAYOUT = "payout"
REFUND = "refund"
GRANT = "grant"


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def create_user(
    session: Session,
    *,
    username: str,
    starting_balance: int = 400,
    now: datetime | None = None,
) -> User:
    """Create a user and grant the starting balance through the ledger."""
    username = username.strip()
    if not username:
        raise ValueError("username must not be empty")
    now = now or _utcnow()

    user = User(username=username, balance=0, created_at=now, updated_at=now)
    session.add(user)
    session.flush()
    if starting_balance > 0:
        grant(session, user.id, starting_balance, now=now)
    return user


def get_balance(session: Session, user_id: int) -> int:
    balance = session.scalar(select(User.balance).where(User.id == user_id))
    if balance is None:
        raise NotFoundError("user", user_id)
    return int(balance)


def debit(
    session: Session,
    user_id: int,
    amount: int,
    *,
    kind: str = STAKE,
    battle_id: int | None = None,
    now: datetime | None = None,
) -> LedgerTransaction:
    """Remove ``amount`` from a balance; fails rather than going below zero."""
    if amount < 0:
        raise ValueError(f"debit amount must be >= 0, got {amount}")
    return _apply(session, user_id, -amount, kind=kind, battle_id=battle_id, now=now)


def credit(
    session: Session,
    user_id: int,
    amount: int,
    *,
    kind: str = PAYOUT,
    battle_id: int | None = None,
    now: datetime | None = None,
) -> LedgerTransaction:
    """Add ``amount`` to a balance. Zero-amount credits are recorded too."""
    if amount < 0:
        raise ValueError(f"credit amount must be >= 0, got {amount}")
    return _apply(session, user_id, amount, kind=kind, battle_id=battle_id, now=now)


def grant(
    session: Session,
    user_id: int,
    amount: int,
    *,
    now: datetime | None = None,
) -> LedgerTransaction:
    """Mint currency into a balance outside of any battle."""
    return credit(session, user_id, amount, kind=GRANT, now=now)


def balance_delta_for_battle(session: Session, user_id: int, battle_id: int) -> int:
    """Net stake/payout/refund movement for one user on one battle."""
    total = session.scalar(
        select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.battle_id == battle_id,
        )
    )
    return int(total or 0)


def _apply(
    session: Session,
    user_id: int,
    delta: int,
    *,
    kind: str,
    battle_id: int | None,
    now: datetime | None,
) -> LedgerTransaction:
    now = now or _utcnow()
    result = session.execute(
        update(User)
        .where(User.id == user_id, User.balance + delta >= 0)
        .values(balance=User.balance + delta, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = session.scalar(select(User.balance).where(User.id == user_id))
        if current is None:
            raise NotFoundError("user", user_id)
        raise InvariantViolationError(
            f"user_id={user_id} balance {current} cannot absorb {kind} of {delta}"
        )

    balance_after = get_balance(session, user_id)
    transaction = LedgerTransaction(
        user_id=user_id,
        battle_id=battle_id,
        kind=kind,
        amount=delta,
        balance_after=balance_after,
        created_at=now,
    )
    session.add(transaction)
    session.flush()

    # Keep any already-loaded User instance in step with the row just written.
    session.get(User, user_id, populate_existing=True)

    logger.debug(
        "ledger user_id=%s kind=%s delta=%s balance_after=%s battle_id=%s",
        user_id,
        kind,
        delta,
        balance_after,
        battle_id,
    )
    return transaction


__all__ = [
    "GRANT",
    "PAYOUT",
    "REFUND",
    "STAKE",
    "balance_delta_for_battle",
    "create_user",
    "credit",
    "debit",
    "get_balance",
    "grant",
]
