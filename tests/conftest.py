"""Shared fixtures: a throwaway SQLite database and helpers to stage races and wagers."""

from __future__ import annotations

import hashlib
from collections.abc import Collection, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db import create_db_engine, create_session_factory, ensure_schema
from domain.common import Team
from domain.config import EngineConfig
from domain.ratings.periods import open_first_period
from repositories import ledger
from repositories.battles import (
    add_participant,
    conclude_battle,
    create_battle,
    get_or_create_player,
    report_result,
)
from repositories.wagers import place_wager

T0 = datetime(2026, 1, 1, 0, 0, 0)


@dataclass
class Arena:
    session_factory: sessionmaker[Session]
    config: EngineConfig

    def open_period(self, at: datetime = T0) -> int:
        return open_first_period(self.session_factory, now=at)

    def player(self, name: str) -> int:
        public_key = hashlib.sha256(name.encode("utf-8")).hexdigest()
        with self.session_factory() as session:
            player = get_or_create_player(
                session,
                public_key=public_key,
                display_name=name,
                defaults=self.config.glicko2.defaults,
            )
            session.commit()
            return player.id

    def user(self, username: str, *, at: datetime = T0) -> int:
        with self.session_factory() as session:
            user = ledger.create_user(
                session,
                username=username,
                starting_balance=self.config.wagers.starting_balance,
                now=at,
            )
            session.commit()
            return user.id

    def open_battle(self, teams: dict[int, Team], *, at: datetime) -> int:
        with self.session_factory() as session:
            battle = create_battle(session, level_name="MAP01", closes_at=at + timedelta(minutes=1), now=at)
            for player_id, team in teams.items():
                add_participant(session, battle.id, player_id, team)
            session.commit()
            return battle.id

    def finish_battle(
        self,
        battle_id: int,
        finish_times: dict[int, int | None],
        *,
        at: datetime,
        no_contest: Collection[int] = (),
        cancelled: bool = False,
    ) -> None:
        with self.session_factory() as session:
            for player_id, finish_time in finish_times.items():
                report_result(
                    session,
                    battle_id,
                    player_id,
                    finish_time=finish_time,
                    no_contest=player_id in no_contest,
                )
            conclude_battle(session, battle_id, now=at, cancelled=cancelled)
            session.commit()

    def race(
        self,
        red: int,
        blue: int,
        *,
        red_time: int | None,
        blue_time: int | None,
        at: datetime,
        no_contest: Collection[int] = (),
        cancelled: bool = False,
    ) -> int:
        battle_id = self.open_battle({red: Team.RED, blue: Team.BLUE}, at=at)
        self.finish_battle(
            battle_id,
            {red: red_time, blue: blue_time},
            at=at + timedelta(minutes=5),
            no_contest=no_contest,
            cancelled=cancelled,
        )
        return battle_id

    def wager(self, user_id: int, battle_id: int, victor: Team, stake: int, *, at: datetime) -> int:
        with self.session_factory() as session:
            wager = place_wager(
                session,
                user_id=user_id,
                battle_id=battle_id,
                victor=victor,
                stake=stake,
                now=at,
                grace_seconds=self.config.wagers.grace_seconds,
            )
            session.commit()
            return wager.id

    def balance(self, user_id: int) -> int:
        with self.session_factory() as session:
            return ledger.get_balance(session, user_id)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def arena(session_factory: sessionmaker[Session], config: EngineConfig) -> Arena:
    return Arena(session_factory=session_factory, config=config)
