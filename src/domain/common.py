"""Shared value types for ratings and settlement."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class Team(IntEnum):
    """A side in a battle. Player 1 races for red, player 2 for blue."""

    RED = 0
    BLUE = 1


class BattleStatus(str, Enum):
    ONGOING = "ongoing"
    CONCLUDED = "concluded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not BattleStatus.ONGOING


class PeriodStatus(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class Outcome(str, Enum):
    """Result of one matchup from the evaluated player's perspective."""

    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"

    @property
    def score(self) -> float:
        if self is Outcome.WIN:
            return 1.0
        if self is Outcome.LOSS:
            return 0.0
        return 0.5

    @property
    def position(self) -> int:
        return 2 if self is Outcome.LOSS else 1


@dataclass(frozen=True)
class RatingTriple:
    """Glicko-2 state on the public (1500-centred) scale."""

    rating: float
    deviation: float
    volatility: float


@dataclass(frozen=True)
class Matchup:
    """One eligible 1v1 result for the player being rated."""

    battle_id: int
    opponent_id: int
    opponent: RatingTriple
    outcome: Outcome
    no_contest: bool
    opponent_no_contest: bool
    finish_time: int | None

    @property
    def position(self) -> int:
        return self.outcome.position

    @property
    def score(self) -> float:
        return self.outcome.score


__all__ = [
    "BattleStatus",
    "Matchup",
    "Outcome",
    "PeriodStatus",
    "RatingTriple",
    "Team",
]
