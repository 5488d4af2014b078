"""Rating and settlement domain modules."""

from domain.common import BattleStatus, Matchup, Outcome, PeriodStatus, RatingTriple, Team
from domain.errors import (
    ConvergenceFailureError,
    EngineError,
    InvariantViolationError,
    NotConcludedError,
    NotFoundError,
)

__all__ = [
    "BattleStatus",
    "ConvergenceFailureError",
    "EngineError",
    "InvariantViolationError",
    "Matchup",
    "NotConcludedError",
    "NotFoundError",
    "Outcome",
    "PeriodStatus",
    "RatingTriple",
    "Team",
]
