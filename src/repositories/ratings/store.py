"""Rating store: rating periods, append-only snapshots and the player rating cache."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.common import PeriodStatus, RatingTriple
from domain.errors import InvariantViolationError, NotFoundError
from models import Player, Rating, RatingPeriod

logger = logging.getLogger(__name__)


def get_period(session: Session, period_id: int, *, for_update: bool = False) -> RatingPeriod:
    statement = select(RatingPeriod).where(RatingPeriod.id == period_id)
    if for_update:
        statement = statement.with_for_update()
    period = session.execute(statement.execution_options(populate_existing=True)).scalar_one_or_none()
    if period is None:
        raise NotFoundError("rating period", period_id)
    return period


def get_latest_period(session: Session, *, for_update: bool = False) -> RatingPeriod | None:
    """Return the most recently started period, whatever its status."""
    statement = select(RatingPeriod).order_by(RatingPeriod.started_at.desc(), RatingPeriod.id.desc()).limit(1)
    if for_update:
        statement = statement.with_for_update()
    return session.execute(statement.execution_options(populate_existing=True)).scalar_one_or_none()


def get_open_period(session: Session, *, for_update: bool = False) -> RatingPeriod | None:
    statement = select(RatingPeriod).where(RatingPeriod.status == PeriodStatus.OPEN.value)
    if for_update:
        statement = statement.with_for_update()
    periods = session.execute(statement.execution_options(populate_existing=True)).scalars().all()
    if len(periods) > 1:
        raise InvariantViolationError(
            f"{len(periods)} rating periods are open: {[period.id for period in periods]}"
        )
    return periods[0] if periods else None


def get_next_period(session: Session, period: RatingPeriod) -> RatingPeriod | None:
    """Return the period opened when ``period`` closed, if any."""
    return session.execute(
        select(RatingPeriod)
        .where(RatingPeriod.id > period.id)
        .order_by(RatingPeriod.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def ensure_open_period(session: Session, *, now: datetime) -> RatingPeriod:
    """Return the open period, starting the very first one when none exist."""
    period = get_open_period(session, for_update=True)
    if period is not None:
        return period
    latest = get_latest_period(session)
    if latest is not None:
        raise InvariantViolationError(
            f"no open rating period; latest period_id={latest.id} is {latest.status}"
        )
    period = RatingPeriod(status=PeriodStatus.OPEN.value, started_at=now)
    session.add(period)
    session.flush()
    logger.info("opened first rating period period_id=%s started_at=%s", period.id, now)
    return period


def latest_snapshot(
    session: Session,
    player_id: int,
    *,
    at: datetime | None = None,
) -> Rating | None:
    """Latest snapshot for a player, optionally only those created no later than ``at``."""
    statement = select(Rating).where(Rating.player_id == player_id)
    if at is not None:
        statement = statement.where(Rating.created_at <= at)
    statement = statement.order_by(Rating.created_at.desc(), Rating.id.desc()).limit(1)
    return session.execute(statement).scalar_one_or_none()


def snapshot_triple(snapshot: Rating | None, defaults: RatingTriple) -> RatingTriple:
    if snapshot is None:
        return defaults
    return RatingTriple(
        rating=float(snapshot.rating),
        deviation=float(snapshot.deviation),
        volatility=float(snapshot.volatility),
    )


def rated_player_ids(session: Session) -> set[int]:
    """Players holding at least one snapshot."""
    return set(session.scalars(select(Rating.player_id).distinct()).all())


def snapshots_for_period(session: Session, period_id: int) -> Sequence[Rating]:
    return session.scalars(
        select(Rating).where(Rating.period_id == period_id).order_by(Rating.player_id.asc())
    ).all()


def append_snapshot(
    session: Session,
    *,
    period_id: int,
    player_id: int,
    triple: RatingTriple,
    matchup_count: int,
    created_at: datetime,
) -> Rating:
    """Insert one immutable snapshot and refresh the player's cached rating with it."""
    snapshot = Rating(
        period_id=period_id,
        player_id=player_id,
        rating=triple.rating,
        deviation=triple.deviation,
        volatility=triple.volatility,
        matchup_count=matchup_count,
        created_at=created_at,
    )
    session.add(snapshot)
    session.flush()
    refresh_rating_cache(session, player_id)
    return snapshot


def refresh_rating_cache(session: Session, player_id: int) -> Player:
    """Copy the canonical latest snapshot into the player's denormalized columns."""
    player = session.get(Player, player_id, with_for_update=True)
    if player is None:
        raise NotFoundError("player", player_id)
    snapshot = latest_snapshot(session, player_id)
    if snapshot is None:
        return player
    player.rating = snapshot.rating
    player.deviation = snapshot.deviation
    player.volatility = snapshot.volatility
    player.rating_period_id = snapshot.period_id
    session.flush()
    return player


def get_current_rating(session: Session, player_id: int) -> RatingTriple:
    """Read a player's cached rating triple."""
    row = session.execute(
        select(Player.rating, Player.deviation, Player.volatility).where(Player.id == player_id)
    ).one_or_none()
    if row is None:
        raise NotFoundError("player", player_id)
    return RatingTriple(
        rating=float(row.rating),
        deviation=float(row.deviation),
        volatility=float(row.volatility),
    )


__all__ = [
    "append_snapshot",
    "ensure_open_period",
    "get_current_rating",
    "get_latest_period",
    "get_next_period",
    "get_open_period",
    "get_period",
    "latest_snapshot",
    "rated_player_ids",
    "refresh_rating_cache",
    "snapshot_triple",
    "snapshots_for_period",
]
