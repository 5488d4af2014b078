"""Rating period scheduler: batch Glicko-2 recomputation at period boundaries.

A period moves ``open -> closing -> closed``. Marking it ``closing`` is its own
short transaction; computing every player's snapshot, closing the period and
opening its successor is a second, all-or-nothing transaction. If the second
one fails the period stays ``closing`` and the whole close can be retried.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from domain.common import PeriodStatus, RatingTriple
from domain.config import EngineConfig
from domain.errors import ConvergenceFailureError
from domain.ratings.glicko2.calculator import rate_matchups
from models import RatingPeriod
from repositories.battles import get_player
from repositories.ratings.matchups import find_matchups, participant_ids_in_window
from repositories.ratings.store import (
    append_snapshot,
    ensure_open_period,
    get_current_rating,
    get_latest_period,
    get_next_period,
    get_open_period,
    get_period,
    latest_snapshot,
    rated_player_ids,
    snapshot_triple,
    snapshots_for_period,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodCloseSummary:
    """Outcome of closing one rating period."""

    closed_period_id: int
    new_period_id: int | None
    started_at: datetime
    ended_at: datetime
    rated_players: int
    skipped_players: tuple[int, ...] = ()
    already_closed: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _begin_closing(session_factory: sessionmaker[Session], period_id: int | None) -> int | None:
    with session_factory() as session:
        try:
            if period_id is None:
                period = get_latest_period(session, for_update=True)
            else:
                period = get_period(session, period_id, for_update=True)

            if period is None:
                session.rollback()
                return None
            if period.status == PeriodStatus.CLOSED.value:
                session.rollback()
                # An explicit id is answered with the recorded outcome; "close current" is a no-op.
                return period.id if period_id is not None else None
            if period.status == PeriodStatus.OPEN.value:
                period.status = PeriodStatus.CLOSING.value
                logger.info("rating period period_id=%s is closing", period.id)
            session.commit()
            return period.id
        except Exception:
            session.rollback()
            raise


def _closed_summary(session: Session, period: RatingPeriod) -> PeriodCloseSummary:
    next_period = get_next_period(session, period)
    if period.ended_at is None:
        raise ValueError(f"period_id={period.id} is closed without an ended_at")
    return PeriodCloseSummary(
        closed_period_id=period.id,
        new_period_id=None if next_period is None else next_period.id,
        started_at=period.started_at,
        ended_at=period.ended_at,
        rated_players=len(snapshots_for_period(session, period.id)),
        already_closed=True,
    )


def _prior_rating(session: Session, player_id: int, *, at: datetime, config: EngineConfig) -> RatingTriple | None:
    snapshot = latest_snapshot(session, player_id, at=at)
    if snapshot is None:
        return None
    prior = snapshot_triple(snapshot, config.glicko2.defaults)
    return replace(prior, deviation=config.glicko2.clamp_rd(prior.deviation))


def close_rating_period(
    session_factory: sessionmaker[Session],
    *,
    config: EngineConfig,
    now: datetime | None = None,
    ended_at: datetime | None = None,
    period_id: int | None = None,
    echo: Callable[[str], None] | None = None,
) -> PeriodCloseSummary | None:
    """Close the current (or the given) rating period and open the next one.

    Returns ``None`` when there is no period to close. Closing a period that a
    concurrent or earlier call already closed returns that result with
    ``already_closed=True``.
    """
    now = now or _utcnow()
    ended_at = ended_at or now
    params = config.glicko2

    target_id = _begin_closing(session_factory, period_id)
    if target_id is None:
        logger.info("no open rating period to close")
        return None

    with session_factory() as session:
        try:
            period = get_period(session, target_id, for_update=True)
            if period.status == PeriodStatus.CLOSED.value:
                summary = _closed_summary(session, period)
                session.rollback()
                return summary
            if ended_at < period.started_at:
                raise ValueError(
                    f"ended_at={ended_at} precedes period_id={period.id} start {period.started_at}"
                )

            started_at = period.started_at
            candidates = rated_player_ids(session) | participant_ids_in_window(session, started_at, ended_at)

            rated_players = 0
            skipped_players: list[int] = []
            for player_id in sorted(candidates):
                matchups = find_matchups(
                    session,
                    player_id,
                    started_at,
                    ended_at,
                    defaults=params.defaults,
                    min_cancelled_finish_time=config.matchups.min_cancelled_finish_time,
                )
                prior = _prior_rating(session, player_id, at=ended_at, config=config)
                if prior is None and not matchups:
                    continue

                try:
                    updated = rate_matchups(
                        prior or params.defaults,
                        matchups,
                        params=params,
                        player_id=player_id,
                    )
                except ConvergenceFailureError:
                    logger.warning(
                        "skipping player_id=%s for period_id=%s: volatility did not converge",
                        player_id,
                        period.id,
                        exc_info=True,
                    )
                    skipped_players.append(player_id)
                    continue

                append_snapshot(
                    session,
                    period_id=period.id,
                    player_id=player_id,
                    triple=updated,
                    matchup_count=len(matchups),
                    created_at=ended_at,
                )
                rated_players += 1

            period.status = PeriodStatus.CLOSED.value
            period.ended_at = ended_at
            next_period = RatingPeriod(status=PeriodStatus.OPEN.value, started_at=ended_at)
            session.add(next_period)
            session.flush()
            session.commit()
        except IntegrityError:
            session.rollback()
            period = get_period(session, target_id)
            if period.status != PeriodStatus.CLOSED.value:
                raise
            logger.info("period_id=%s was closed concurrently", target_id)
            summary = _closed_summary(session, period)
            session.rollback()
            return summary
        except Exception:
            session.rollback()
            raise

    summary = PeriodCloseSummary(
        closed_period_id=period.id,
        new_period_id=next_period.id,
        started_at=started_at,
        ended_at=ended_at,
        rated_players=rated_players,
        skipped_players=tuple(skipped_players),
    )
    logger.info(
        "closed period_id=%s rated_players=%s skipped_players=%s new_period_id=%s",
        summary.closed_period_id,
        summary.rated_players,
        len(summary.skipped_players),
        summary.new_period_id,
    )
    if echo is not None:
        echo(
            "closed "
            f"period_id={summary.closed_period_id} "
            f"started_at={summary.started_at.isoformat()} "
            f"ended_at={summary.ended_at.isoformat()} "
            f"rated_players={summary.rated_players} "
            f"skipped_players={len(summary.skipped_players)} "
            f"new_period_id={summary.new_period_id}"
        )
    return summary


def open_first_period(session_factory: sessionmaker[Session], *, now: datetime | None = None) -> int:
    """Make sure a rating period is open, starting one at ``now`` if none ever existed."""
    now = now or _utcnow()
    with session_factory() as session:
        try:
            period = ensure_open_period(session, now=now)
            session.commit()
            return period.id
        except IntegrityError:
            session.rollback()
            period = get_open_period(session)
            if period is None:
                raise
            logger.info("period_id=%s was opened concurrently", period.id)
            session.rollback()
            return period.id
        except Exception:
            session.rollback()
            raise


def close_elapsed_periods(
    session_factory: sessionmaker[Session],
    *,
    config: EngineConfig,
    now: datetime | None = None,
    echo: Callable[[str], None] | None = None,
) -> list[PeriodCloseSummary]:
    """Close fixed-length periods until the current one has not yet run its full length.

    Each elapsed period is its own atomic batch ending exactly one period
    length after it started, so a scheduler that missed several ticks catches
    up without merging their windows.
    """
    now = now or _utcnow()
    length = config.rating_period
    summaries: list[PeriodCloseSummary] = []

    with session_factory() as session:
        has_period = get_latest_period(session) is not None
    if not has_period:
        open_first_period(session_factory, now=now)
        return summaries

    while True:
        with session_factory() as session:
            period = get_latest_period(session)
        if period is None or period.status == PeriodStatus.CLOSED.value:
            break
        period_end = period.started_at + length
        if period_end > now:
            break

        summary = close_rating_period(
            session_factory,
            config=config,
            now=now,
            ended_at=period_end,
            period_id=period.id,
            echo=echo,
        )
        if summary is None:
            break
        summaries.append(summary)

    return summaries


def preview_rating(
    session: Session,
    player_id: int,
    *,
    config: EngineConfig,
    now: datetime | None = None,
) -> RatingTriple:
    """Provisional rating as if the open period ended now.

    Deviation growth is scaled by the fraction of the period already elapsed.
    Nothing is written.
    """
    now = now or _utcnow()
    get_player(session, player_id)

    period = get_open_period(session)
    if period is None:
        return get_current_rating(session, player_id)

    length_seconds = config.rating_period.total_seconds()
    elapsed_seconds = (now - period.started_at).total_seconds()
    fractional_period = min(max(elapsed_seconds / length_seconds, 0.0), 1.0)

    matchups = find_matchups(
        session,
        player_id,
        period.started_at,
        now,
        defaults=config.glicko2.defaults,
        min_cancelled_finish_time=config.matchups.min_cancelled_finish_time,
    )
    prior = _prior_rating(session, player_id, at=now, config=config) or config.glicko2.defaults
    return rate_matchups(
        prior,
        matchups,
        params=config.glicko2,
        player_id=player_id,
        fractional_period=fractional_period,
    )


__all__ = [
    "PeriodCloseSummary",
    "close_elapsed_periods",
    "close_rating_period",
    "open_first_period",
    "preview_rating",
]
