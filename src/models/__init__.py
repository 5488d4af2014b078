"""ORM models."""

from models.base import Base
from models.battle import Battle, Participant
from models.player import Player
from models.rating import Rating, RatingPeriod
from models.user import LedgerTransaction, User
from models.wager import BattleSettlement, Wager

__all__ = [
    "Base",
    "Battle",
    "BattleSettlement",
    "LedgerTransaction",
    "Participant",
    "Player",
    "Rating",
    "RatingPeriod",
    "User",
    "Wager",
]
