"""Exception taxonomy for the rating and settlement engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(EngineError, LookupError):
    """An unknown player, battle, user or rating period was referenced."""

    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f"{entity} {key!r} not found")
        self.entity = entity
        self.key = key


class NotConcludedError(EngineError, RuntimeError):
    """Settlement was requested for a battle that is still ongoing."""

    def __init__(self, battle_id: int) -> None:
        super().__init__(f"battle_id={battle_id} has not concluded")
        self.battle_id = battle_id


class InvariantViolationError(EngineError, ValueError):
    """A data-integrity rule would be broken; the enclosing transaction must abort."""


class ConvergenceFailureError(EngineError, RuntimeError):
    """The Glicko-2 volatility root-find did not converge within its iteration bound."""


__all__ = [
    "ConvergenceFailureError",
    "EngineError",
    "InvariantViolationError",
    "NotConcludedError",
    "NotFoundError",
]
