"""Wager intake. Stakes are escrowed through the ledger when placed."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from domain.common import BattleStatus, Team
from domain.errors import InvariantViolationError, NotFoundError
from models import Participant, User, Wager
from repositories import ledger
from repositories.battles import get_battle

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def place_wager(
    session: Session,
    *,
    user_id: int,
    battle_id: int,
    victor: Team,
    stake: int,
    now: datetime | None = None,
    grace_seconds: float = 3.0,
) -> Wager:
    """Place or replace a user's wager on a battle.

    A replacement refunds the previous stake before debiting the new one, so a
    user can move their whole balance from one side to the other.
    """
    now = now or _utcnow()
    victor = Team(victor)
    if stake <= 0:
        raise ValueError(f"stake must be > 0, got {stake}")

    battle = get_battle(session, battle_id, for_update=True)
    if battle.status != BattleStatus.ONGOING.value:
        raise InvariantViolationError(f"wagers have closed for battle_id={battle_id} ({battle.status})")
    if battle.closes_at + timedelta(seconds=grace_seconds) < now:
        raise InvariantViolationError(f"wagers closed for battle_id={battle_id} at {battle.closes_at}")

    if session.get(User, user_id) is None:
        raise NotFoundError("user", user_id)

    team_size = session.scalar(
        select(func.count())
        .select_from(Participant)
        .where(Participant.battle_id == battle_id, Participant.team == int(victor))
    )
    if not team_size:
        raise InvariantViolationError(f"team {victor.name} has no participants in battle_id={battle_id}")

    wager = session.execute(
        select(Wager).where(Wager.user_id == user_id, Wager.battle_id == battle_id).with_for_update()
    ).scalar_one_or_none()

    if wager is None:
        ledger.debit(session, user_id, stake, kind=ledger.STAKE, battle_id=battle_id, now=now)
        wager = Wager(
            user_id=user_id,
            battle_id=battle_id,
            victor=int(victor),
            stake=stake,
            created_at=now,
            updated_at=now,
        )
        session.add(wager)
    else:
        if wager.settlement_transaction_id is not None:
            raise InvariantViolationError(f"wager_id={wager.id} is already settled")
        ledger.credit(session, user_id, wager.stake, kind=ledger.REFUND, battle_id=battle_id, now=now)
        ledger.debit(session, user_id, stake, kind=ledger.STAKE, battle_id=battle_id, now=now)
        wager.victor = int(victor)
        wager.stake = stake
        wager.updated_at = now

    session.flush()
    logger.info(
        "wager user_id=%s battle_id=%s victor=%s stake=%s",
        user_id,
        battle_id,
        victor.name,
        stake,
    )
    return wager


def list_wagers(session: Session, battle_id: int) -> Sequence[Wager]:
    return session.scalars(select(Wager).where(Wager.battle_id == battle_id).order_by(Wager.id.asc())).all()


def unsettled_wagers(session: Session, battle_id: int) -> Sequence[Wager]:
    return session.scalars(
        select(Wager)
        .where(Wager.battle_id == battle_id, Wager.settlement_transaction_id.is_(None))
        .order_by(Wager.id.asc())
        .with_for_update()
    ).all()


__all__ = ["list_wagers", "place_wager", "unsettled_wagers"]
