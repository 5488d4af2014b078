"""Tests for closing rating periods and the player rating cache."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from domain.common import PeriodStatus
from domain.errors import ConvergenceFailureError, NotFoundError
from domain.ratings import periods
from domain.ratings.glicko2.calculator import rate_matchups
from domain.ratings.periods import (
    close_elapsed_periods,
    close_rating_period,
    preview_rating,
)
from models import Rating, RatingPeriod
from repositories.ratings.store import (
    get_current_rating,
    get_open_period,
    latest_snapshot,
    snapshot_triple,
    snapshots_for_period,
)

T0 = datetime(2026, 1, 1, 0, 0, 0)
DAY = timedelta(days=1)


def _close(arena, ended_at: datetime, **kwargs):
    return close_rating_period(
        arena.session_factory,
        config=arena.config,
        now=ended_at,
        ended_at=ended_at,
        **kwargs,
    )


def test_close_without_any_period_is_a_no_op(arena) -> None:
    assert _close(arena, T0) is None


def test_close_rates_participants_and_refreshes_cache(arena) -> None:
    first_period = arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    idle = arena.player("idle")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))

    messages: list[str] = []
    summary = _close(arena, T0 + DAY, echo=messages.append)

    assert summary is not None
    assert summary.closed_period_id == first_period
    assert summary.new_period_id is not None
    assert summary.rated_players == 2
    assert summary.already_closed is False
    assert len(messages) == 1

    with arena.session_factory() as session:
        closed = session.get(RatingPeriod, first_period)
        assert closed.status == PeriodStatus.CLOSED.value
        assert closed.ended_at == T0 + DAY

        next_period = get_open_period(session)
        assert next_period.id == summary.new_period_id
        assert next_period.started_at == T0 + DAY

        assert [snapshot.player_id for snapshot in snapshots_for_period(session, first_period)] == [alice, bob]
        assert latest_snapshot(session, idle) is None

        for player_id in (alice, bob):
            snapshot = latest_snapshot(session, player_id)
            assert snapshot.matchup_count == 1
            assert get_current_rating(session, player_id) == snapshot_triple(snapshot, arena.config.glicko2.defaults)

        assert get_current_rating(session, alice).rating > 1500.0
        assert get_current_rating(session, bob).rating < 1500.0
        assert get_current_rating(session, idle) == arena.config.glicko2.defaults


def test_idle_rated_player_keeps_rating_and_volatility(arena) -> None:
    arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    carol = arena.player("carol")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))
    _close(arena, T0 + DAY)

    with arena.session_factory() as session:
        before = get_current_rating(session, bob)

    arena.race(alice, carol, red_time=1000, blue_time=1200, at=T0 + DAY + timedelta(hours=2))
    summary = _close(arena, T0 + 2 * DAY)

    assert summary.rated_players == 3
    with arena.session_factory() as session:
        after = get_current_rating(session, bob)
        snapshot = latest_snapshot(session, bob)

    assert snapshot.period_id == summary.closed_period_id
    assert snapshot.matchup_count == 0
    assert after.rating == pytest.approx(before.rating)
    assert after.volatility == pytest.approx(before.volatility)
    assert before.deviation < after.deviation <= arena.config.glicko2.max_rd


def test_closing_a_closed_period_returns_the_recorded_result(arena) -> None:
    period_id = arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))

    first = _close(arena, T0 + DAY)
    again = _close(arena, T0 + 2 * DAY, period_id=period_id)

    assert again.already_closed is True
    assert again.closed_period_id == first.closed_period_id
    assert again.new_period_id == first.new_period_id
    assert again.ended_at == first.ended_at
    assert again.rated_players == first.rated_players

    with arena.session_factory() as session:
        assert session.scalar(select(func.count()).select_from(Rating)) == 2
        assert session.scalar(select(func.count()).select_from(RatingPeriod)) == 2


def test_period_stuck_in_closing_can_be_retried(arena) -> None:
    period_id = arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))

    with arena.session_factory() as session:
        session.get(RatingPeriod, period_id).status = PeriodStatus.CLOSING.value
        session.commit()

    summary = _close(arena, T0 + DAY)

    assert summary.closed_period_id == period_id
    assert summary.rated_players == 2


def test_failed_batch_writes_nothing_and_stays_closing(arena, monkeypatch) -> None:
    period_id = arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))

    def failing_rate_matchups(current, matchups, *, player_id=None, **kwargs):
        if player_id == bob:
            raise RuntimeError("storage unavailable")
        return rate_matchups(current, matchups, player_id=player_id, **kwargs)

    monkeypatch.setattr(periods, "rate_matchups", failing_rate_matchups)
    with pytest.raises(RuntimeError, match="storage unavailable"):
        _close(arena, T0 + DAY)

    with arena.session_factory() as session:
        assert session.scalar(select(func.count()).select_from(Rating)) == 0
        assert session.scalar(select(func.count()).select_from(RatingPeriod)) == 1
        assert session.get(RatingPeriod, period_id).status == PeriodStatus.CLOSING.value
        assert get_current_rating(session, alice) == arena.config.glicko2.defaults

    monkeypatch.undo()
    summary = _close(arena, T0 + DAY)

    assert summary.closed_period_id == period_id
    assert summary.rated_players == 2


def test_convergence_failure_skips_only_that_player(arena, monkeypatch) -> None:
    arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))

    def diverging_rate_matchups(current, matchups, *, player_id=None, **kwargs):
        if player_id == alice:
            raise ConvergenceFailureError("volatility did not converge")
        return rate_matchups(current, matchups, player_id=player_id, **kwargs)

    monkeypatch.setattr(periods, "rate_matchups", diverging_rate_matchups)
    summary = _close(arena, T0 + DAY)

    assert summary.rated_players == 1
    assert summary.skipped_players == (alice,)
    with arena.session_factory() as session:
        assert latest_snapshot(session, alice) is None
        assert latest_snapshot(session, bob).period_id == summary.closed_period_id
        assert get_current_rating(session, alice) == arena.config.glicko2.defaults
        assert get_current_rating(session, bob).rating < 1500.0


def test_second_open_period_is_rejected(arena) -> None:
    period_id = arena.open_period(T0)

    with arena.session_factory() as session:
        session.add(RatingPeriod(status=PeriodStatus.OPEN.value, started_at=T0 + DAY))
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    assert arena.open_period(T0 + DAY) == period_id
    with arena.session_factory() as session:
        assert get_open_period(session).id == period_id


def test_unknown_period_id_raises(arena) -> None:
    arena.open_period(T0)

    with pytest.raises(NotFoundError):
        _close(arena, T0 + DAY, period_id=999)


def test_catch_up_closes_each_elapsed_period(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")

    assert close_elapsed_periods(arena.session_factory, config=arena.config, now=T0) == []

    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))
    arena.race(bob, alice, red_time=1000, blue_time=1200, at=T0 + 2 * DAY + timedelta(hours=2))

    summaries = close_elapsed_periods(
        arena.session_factory,
        config=arena.config,
        now=T0 + 3 * DAY + timedelta(hours=1),
    )

    assert [summary.ended_at for summary in summaries] == [T0 + DAY, T0 + 2 * DAY, T0 + 3 * DAY]
    assert [summary.rated_players for summary in summaries] == [2, 2, 2]

    with arena.session_factory() as session:
        open_period = get_open_period(session)
        assert open_period.started_at == T0 + 3 * DAY
        assert latest_snapshot(session, alice).matchup_count == 1

    assert (
        close_elapsed_periods(
            arena.session_factory,
            config=arena.config,
            now=T0 + 3 * DAY + timedelta(hours=2),
        )
        == []
    )


def test_preview_is_provisional_and_writes_nothing(arena) -> None:
    arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=2))

    with arena.session_factory() as session:
        preview = preview_rating(session, alice, config=arena.config, now=T0 + timedelta(hours=12))
        session.rollback()

    assert preview.rating > 1500.0
    assert preview.deviation < arena.config.glicko2.initial_rd

    with arena.session_factory() as session:
        assert session.scalar(select(func.count()).select_from(Rating)) == 0
        assert get_current_rating(session, alice) == arena.config.glicko2.defaults


def test_current_rating_of_unknown_player_raises(arena) -> None:
    with arena.session_factory() as session:
        with pytest.raises(NotFoundError):
            get_current_rating(session, 12345)
