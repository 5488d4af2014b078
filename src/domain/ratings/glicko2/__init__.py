"""Glicko-2 rating modules."""

from domain.ratings.glicko2.calculator import (
    Glicko2OpponentResult,
    Glicko2Parameters,
    calculate_expected_score,
    rate_matchups,
    update_glicko2_player,
)

__all__ = [
    "Glicko2OpponentResult",
    "Glicko2Parameters",
    "calculate_expected_score",
    "rate_matchups",
    "update_glicko2_player",
]
