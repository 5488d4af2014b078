"""Matchup discovery: turn concluded battles into rating-eligible 1v1 outcomes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session, aliased

from domain.common import BattleStatus, Matchup, Outcome, RatingTriple
from domain.config import DEFAULT_MIN_CANCELLED_FINISH_TIME
from models import Battle, Participant
from repositories.ratings.store import latest_snapshot, snapshot_triple

_TERMINAL_STATUSES = (BattleStatus.CONCLUDED.value, BattleStatus.CANCELLED.value)


def derive_outcome(
    *,
    no_contest: bool,
    finish_time: int | None,
    opponent_no_contest: bool,
    opponent_finish_time: int | None,
) -> Outcome:
    """Outcome of a 1v1 from the first participant's perspective.

    A no-contest participant never beats anyone, and an opponent's no-contest
    never costs the other side. Identical finish times, and battles where both
    sides no-contest or neither finished, are draws.
    """
    if no_contest and opponent_no_contest:
        return Outcome.DRAW
    if no_contest:
        return Outcome.LOSS
    if opponent_no_contest:
        return Outcome.WIN
    if finish_time is None and opponent_finish_time is None:
        return Outcome.DRAW
    if finish_time is None:
        return Outcome.LOSS
    if opponent_finish_time is None:
        return Outcome.WIN
    if finish_time < opponent_finish_time:
        return Outcome.WIN
    if finish_time > opponent_finish_time:
        return Outcome.LOSS
    return Outcome.DRAW


def _matchup_finish_time(my_finish_time: int | None, opponent_finish_time: int | None) -> int | None:
    if opponent_finish_time is not None:
        return opponent_finish_time
    return my_finish_time


def _counts_toward_rating(row: Any, finish_time: int | None, min_cancelled_finish_time: int) -> bool:
    if row.status == BattleStatus.CONCLUDED.value:
        return True
    # Cancelled races still count once they ran long enough to mean something.
    return finish_time is not None and finish_time > min_cancelled_finish_time


def _one_opponent_rows(session: Session, player_id: int, time_from: datetime, time_to: datetime):
    me = aliased(Participant, name="me")
    op = aliased(Participant, name="op")

    opponent_counts = (
        select(
            Participant.battle_id.label("battle_id"),
            func.count().label("opponent_count"),
        )
        .where(Participant.player_id != player_id)
        .group_by(Participant.battle_id)
        .subquery("opponent_counts")
    )

    statement = (
        select(
            Battle.id.label("battle_id"),
            Battle.status.label("status"),
            Battle.concluded_at.label("concluded_at"),
            me.finish_time.label("my_finish_time"),
            me.no_contest.label("my_no_contest"),
            op.player_id.label("opponent_id"),
            op.finish_time.label("opponent_finish_time"),
            op.no_contest.label("opponent_no_contest"),
        )
        .select_from(Battle)
        .join(me, and_(me.battle_id == Battle.id, me.player_id == player_id))
        .join(opponent_counts, opponent_counts.c.battle_id == Battle.id)
        .join(op, and_(op.battle_id == Battle.id, op.player_id != player_id))
        .where(
            Battle.status.in_(_TERMINAL_STATUSES),
            Battle.concluded_at.is_not(None),
            Battle.concluded_at >= time_from,
            Battle.concluded_at < time_to,
            opponent_counts.c.opponent_count == 1,
        )
        .order_by(Battle.created_at.asc(), Battle.id.asc())
    )
    return session.execute(statement).all()


def find_matchups(
    session: Session,
    player_id: int,
    time_from: datetime,
    time_to: datetime,
    *,
    defaults: RatingTriple,
    min_cancelled_finish_time: int = DEFAULT_MIN_CANCELLED_FINISH_TIME,
) -> list[Matchup]:
    """Eligible matchups for ``player_id`` among battles concluded in ``[time_from, time_to)``.

    Ordered by battle creation. Battles with any number of opponents other
    than one are left out entirely. Each opponent is rated by their latest
    snapshot not created after the battle concluded.
    """
    matchups: list[Matchup] = []
    for row in _one_opponent_rows(session, player_id, time_from, time_to):
        finish_time = _matchup_finish_time(row.my_finish_time, row.opponent_finish_time)
        if not _counts_toward_rating(row, finish_time, min_cancelled_finish_time):
            continue

        opponent_id = int(row.opponent_id)
        opponent = snapshot_triple(
            latest_snapshot(session, opponent_id, at=row.concluded_at),
            defaults,
        )
        no_contest = bool(row.my_no_contest)
        opponent_no_contest = bool(row.opponent_no_contest)
        matchups.append(
            Matchup(
                battle_id=int(row.battle_id),
                opponent_id=opponent_id,
                opponent=opponent,
                outcome=derive_outcome(
                    no_contest=no_contest,
                    finish_time=row.my_finish_time,
                    opponent_no_contest=opponent_no_contest,
                    opponent_finish_time=row.opponent_finish_time,
                ),
                no_contest=no_contest,
                opponent_no_contest=opponent_no_contest,
                finish_time=finish_time,
            )
        )
    return matchups


def participant_ids_in_window(session: Session, time_from: datetime, time_to: datetime) -> set[int]:
    """Players who took part in any terminal battle concluded in ``[time_from, time_to)``."""
    statement = (
        select(Participant.player_id)
        .join(Battle, Battle.id == Participant.battle_id)
        .where(
            Battle.status.in_(_TERMINAL_STATUSES),
            Battle.concluded_at.is_not(None),
            Battle.concluded_at >= time_from,
            Battle.concluded_at < time_to,
        )
        .distinct()
    )
    return set(session.scalars(statement).all())


__all__ = ["derive_outcome", "find_matchups", "participant_ids_in_window"]
