"""Players, battles and participant results as reported by the game integration."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from domain.common import BattleStatus, RatingTriple, Team
from domain.errors import InvariantViolationError, NotFoundError
from models import Battle, Participant, Player

logger = logging.getLogger(__name__)

_PUBLIC_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def get_player(session: Session, player_id: int) -> Player:
    player = session.get(Player, player_id)
    if player is None:
        raise NotFoundError("player", player_id)
    return player


def get_or_create_player(
    session: Session,
    *,
    public_key: str,
    display_name: str,
    defaults: RatingTriple,
) -> Player:
    """Look a player up by public key, creating them at the default rating.

    The display name is refreshed on every call since it is whatever the
    client last reported.
    """
    if not _PUBLIC_KEY_PATTERN.match(public_key):
        raise ValueError(f"public_key must be 64 hex characters, got {public_key!r}")
    public_key = public_key.lower()

    player = session.execute(select(Player).where(Player.public_key == public_key)).scalar_one_or_none()
    if player is None:
        player = Player(
            public_key=public_key,
            display_name=display_name,
            rating=defaults.rating,
            deviation=defaults.deviation,
            volatility=defaults.volatility,
        )
        session.add(player)
        session.flush()
        logger.info("registered player_id=%s display_name=%s", player.id, display_name)
    elif player.display_name != display_name:
        player.display_name = display_name
        session.flush()
    return player


def get_battle(session: Session, battle_id: int, *, for_update: bool = False) -> Battle:
    statement = select(Battle).where(Battle.id == battle_id)
    if for_update:
        statement = statement.with_for_update()
    battle = session.execute(statement.execution_options(populate_existing=True)).scalar_one_or_none()
    if battle is None:
        raise NotFoundError("battle", battle_id)
    return battle


def create_battle(
    session: Session,
    *,
    level_name: str,
    closes_at: datetime,
    now: datetime | None = None,
) -> Battle:
    now = now or _utcnow()
    if closes_at < now:
        raise ValueError(f"closes_at={closes_at} is before creation time {now}")
    battle = Battle(
        level_name=level_name,
        status=BattleStatus.ONGOING.value,
        created_at=now,
        closes_at=closes_at,
    )
    session.add(battle)
    session.flush()
    return battle


def _require_ongoing(battle: Battle) -> None:
    if BattleStatus(battle.status).is_terminal:
        raise InvariantViolationError(
            f"battle_id={battle.id} is {battle.status} and can no longer change"
        )


def get_participants(session: Session, battle_id: int) -> list[Participant]:
    return list(
        session.scalars(
            select(Participant).where(Participant.battle_id == battle_id).order_by(Participant.id.asc())
        ).all()
    )


def add_participant(session: Session, battle_id: int, player_id: int, team: Team) -> Participant:
    battle = get_battle(session, battle_id, for_update=True)
    _require_ongoing(battle)
    get_player(session, player_id)

    existing = session.execute(
        select(Participant).where(
            Participant.battle_id == battle_id,
            Participant.player_id == player_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise InvariantViolationError(f"player_id={player_id} already participates in battle_id={battle_id}")

    participant = Participant(
        battle_id=battle_id,
        player_id=player_id,
        team=int(Team(team)),
        finish_time=None,
        no_contest=False,
    )
    session.add(participant)
    session.flush()
    return participant


def report_result(
    session: Session,
    battle_id: int,
    player_id: int,
    *,
    finish_time: int | None,
    no_contest: bool = False,
) -> Participant:
    """Record one participant's finish time (in tics) or no-contest."""
    battle = get_battle(session, battle_id, for_update=True)
    _require_ongoing(battle)
    if finish_time is not None and finish_time < 0:
        raise ValueError(f"finish_time must be >= 0, got {finish_time}")

    participant = session.execute(
        select(Participant).where(
            Participant.battle_id == battle_id,
            Participant.player_id == player_id,
        )
    ).scalar_one_or_none()
    if participant is None:
        raise NotFoundError("participant", (battle_id, player_id))

    participant.finish_time = finish_time
    participant.no_contest = no_contest
    session.flush()
    return participant


def conclude_battle(
    session: Session,
    battle_id: int,
    *,
    now: datetime | None = None,
    cancelled: bool = False,
) -> Battle:
    """Move a battle to its terminal state. Terminal states are final."""
    battle = get_battle(session, battle_id, for_update=True)
    _require_ongoing(battle)
    battle.status = (BattleStatus.CANCELLED if cancelled else BattleStatus.CONCLUDED).value
    battle.concluded_at = now or _utcnow()
    session.flush()
    logger.info("battle_id=%s %s at %s", battle.id, battle.status, battle.concluded_at)
    return battle


__all__ = [
    "add_participant",
    "conclude_battle",
    "create_battle",
    "get_battle",
    "get_or_create_player",
    "get_participants",
    "get_player",
    "report_result",
]
