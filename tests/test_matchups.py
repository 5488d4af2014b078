"""Tests for turning concluded battles into rating matchups."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from domain.common import Outcome, RatingTriple, Team
from repositories.ratings.matchups import derive_outcome, find_matchups, participant_ids_in_window
from repositories.ratings.store import append_snapshot

T0 = datetime(2026, 1, 1, 0, 0, 0)
WINDOW_END = T0 + timedelta(days=1)


def _matchups(arena, player_id: int, *, time_to: datetime = WINDOW_END):
    with arena.session_factory() as session:
        return find_matchups(
            session,
            player_id,
            T0,
            time_to,
            defaults=arena.config.glicko2.defaults,
            min_cancelled_finish_time=arena.config.matchups.min_cancelled_finish_time,
        )


@pytest.mark.parametrize(
    ("mine", "theirs", "expected"),
    [
        ((False, 1000), (False, 1200), Outcome.WIN),
        ((False, 1200), (False, 1000), Outcome.LOSS),
        ((False, 1100), (False, 1100), Outcome.DRAW),
        ((False, 1100), (False, None), Outcome.WIN),
        ((False, None), (False, 1100), Outcome.LOSS),
        ((False, None), (False, None), Outcome.DRAW),
        ((True, 900), (False, 1500), Outcome.LOSS),
        ((False, 1500), (True, 900), Outcome.WIN),
        ((True, None), (True, None), Outcome.DRAW),
    ],
)
def test_derive_outcome(mine, theirs, expected) -> None:
    outcome = derive_outcome(
        no_contest=mine[0],
        finish_time=mine[1],
        opponent_no_contest=theirs[0],
        opponent_finish_time=theirs[1],
    )
    assert outcome is expected


def test_faster_finisher_wins_the_matchup(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")
    battle_id = arena.race(alice, bob, red_time=1000, blue_time=1200, at=T0 + timedelta(hours=1))

    alice_matchups = _matchups(arena, alice)
    bob_matchups = _matchups(arena, bob)

    assert len(alice_matchups) == 1
    assert alice_matchups[0].battle_id == battle_id
    assert alice_matchups[0].opponent_id == bob
    assert alice_matchups[0].outcome is Outcome.WIN
    assert alice_matchups[0].position == 1
    assert alice_matchups[0].score == pytest.approx(1.0)
    assert bob_matchups[0].outcome is Outcome.LOSS
    assert bob_matchups[0].position == 2
    assert bob_matchups[0].score == pytest.approx(0.0)


def test_battles_without_exactly_one_opponent_are_ignored(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")
    carol = arena.player("carol")

    battle_id = arena.open_battle({alice: Team.RED, bob: Team.BLUE, carol: Team.BLUE}, at=T0 + timedelta(hours=1))
    arena.finish_battle(battle_id, {alice: 1000, bob: 1100, carol: 1200}, at=T0 + timedelta(hours=2))

    assert _matchups(arena, alice) == []
    assert _matchups(arena, bob) == []

    solo_id = arena.open_battle({alice: Team.RED}, at=T0 + timedelta(hours=3))
    arena.finish_battle(solo_id, {alice: 900}, at=T0 + timedelta(hours=4))

    assert _matchups(arena, alice) == []


def test_no_contest_loses_and_never_penalises_the_opponent(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.race(alice, bob, red_time=None, blue_time=1800, at=T0 + timedelta(hours=1), no_contest={alice})

    alice_matchup = _matchups(arena, alice)[0]
    bob_matchup = _matchups(arena, bob)[0]

    assert alice_matchup.no_contest is True
    assert alice_matchup.outcome is Outcome.LOSS
    assert bob_matchup.opponent_no_contest is True
    assert bob_matchup.outcome is Outcome.WIN


def test_cancelled_battles_count_only_once_long_enough(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")
    min_time = arena.config.matchups.min_cancelled_finish_time

    arena.race(alice, bob, red_time=min_time, blue_time=None, at=T0 + timedelta(hours=1), cancelled=True)
    counted = arena.race(
        alice,
        bob,
        red_time=None,
        blue_time=min_time + 1,
        at=T0 + timedelta(hours=2),
        cancelled=True,
    )

    alice_matchups = _matchups(arena, alice)
    assert [matchup.battle_id for matchup in alice_matchups] == [counted]
    assert alice_matchups[0].finish_time == min_time + 1
    assert alice_matchups[0].outcome is Outcome.LOSS


def test_matchups_are_limited_to_the_window_and_ordered(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")

    first = arena.race(alice, bob, red_time=1000, blue_time=1100, at=T0 + timedelta(hours=1))
    second = arena.race(bob, alice, red_time=1000, blue_time=1100, at=T0 + timedelta(hours=3))
    arena.race(alice, bob, red_time=1000, blue_time=1100, at=WINDOW_END + timedelta(hours=1))

    matchups = _matchups(arena, alice)
    assert [matchup.battle_id for matchup in matchups] == [first, second]
    assert [matchup.outcome for matchup in matchups] == [Outcome.WIN, Outcome.LOSS]

    with arena.session_factory() as session:
        assert participant_ids_in_window(session, T0, WINDOW_END) == {alice, bob}


def test_ongoing_battles_are_not_matchups(arena) -> None:
    alice = arena.player("alice")
    bob = arena.player("bob")
    arena.open_battle({alice: Team.RED, bob: Team.BLUE}, at=T0 + timedelta(hours=1))

    assert _matchups(arena, alice) == []


def test_opponent_is_rated_by_snapshot_as_of_the_battle(arena) -> None:
    period_id = arena.open_period(T0)
    alice = arena.player("alice")
    bob = arena.player("bob")

    with arena.session_factory() as session:
        append_snapshot(
            session,
            period_id=period_id,
            player_id=bob,
            triple=RatingTriple(rating=1800.0, deviation=80.0, volatility=0.06),
            matchup_count=3,
            created_at=T0 + timedelta(hours=10),
        )
        session.commit()

    before = arena.race(alice, bob, red_time=1000, blue_time=1100, at=T0 + timedelta(hours=1))
    after = arena.race(alice, bob, red_time=1000, blue_time=1100, at=T0 + timedelta(hours=12))

    opponents = {matchup.battle_id: matchup.opponent for matchup in _matchups(arena, alice)}
    assert opponents[before] == arena.config.glicko2.defaults
    assert opponents[after] == RatingTriple(rating=1800.0, deviation=80.0, volatility=0.06)
