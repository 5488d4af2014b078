"""Load engine definitions (Glicko-2, matchup and wager settings) from TOML files."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any
import tomllib

from domain.ratings.glicko2.calculator import Glicko2Parameters

# 30 seconds at 35 tics per second.
DEFAULT_MIN_CANCELLED_FINISH_TIME = 35 * 30


@dataclass(frozen=True)
class MatchupParameters:
    min_cancelled_finish_time: int = DEFAULT_MIN_CANCELLED_FINISH_TIME


@dataclass(frozen=True)
class WagerParameters:
    grace_seconds: float = 3.0
    starting_balance: int = 400


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for one engine deployment."""

    name: str = "default"
    description: str | None = None
    file_path: Path | None = None
    glicko2: Glicko2Parameters = field(default_factory=Glicko2Parameters)
    matchups: MatchupParameters = field(default_factory=MatchupParameters)
    wagers: WagerParameters = field(default_factory=WagerParameters)

    @property
    def rating_period(self) -> timedelta:
        return timedelta(days=self.glicko2.rating_period_days)

    def as_config_json(self) -> dict[str, Any]:
        return {
            "initial_rating": self.glicko2.initial_rating,
            "initial_rd": self.glicko2.initial_rd,
            "initial_volatility": self.glicko2.initial_volatility,
            "tau": self.glicko2.tau,
            "rating_period_days": self.glicko2.rating_period_days,
            "min_rd": self.glicko2.min_rd,
            "max_rd": self.glicko2.max_rd,
            "epsilon": self.glicko2.epsilon,
            "max_iterations": self.glicko2.max_iterations,
            "min_cancelled_finish_time": self.matchups.min_cancelled_finish_time,
            "grace_seconds": self.wagers.grace_seconds,
            "starting_balance": self.wagers.starting_balance,
        }


def load_engine_configs(config_dir: Path) -> list[EngineConfig]:
    """Load and validate all engine TOML config files in a directory."""
    if not config_dir.exists():
        raise FileNotFoundError(f"Config directory not found: {config_dir}")
    if not config_dir.is_dir():
        raise NotADirectoryError(f"Config path is not a directory: {config_dir}")

    config_files = sorted(config_dir.glob("*.toml"))
    if not config_files:
        raise ValueError(f"No .toml config files found in: {config_dir}")

    configs = [load_engine_config(file_path) for file_path in config_files]

    names = [config.name for config in configs]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate engine config names found in {config_dir}: {names}")

    return configs


def load_engine_config(file_path: Path) -> EngineConfig:
    """Load and validate a single engine TOML config file."""
    if not file_path.is_file():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with file_path.open("rb") as file:
        raw = tomllib.load(file)

    system_raw = raw.get("system", {})
    glicko2_raw = raw.get("glicko2", {})
    matchups_raw = raw.get("matchups", {})
    wagers_raw = raw.get("wagers", {})

    name = str(system_raw.get("name", "")).strip()
    if not name:
        raise ValueError(f"{file_path}: [system].name is required")

    description_value = system_raw.get("description")
    description = None if description_value is None else str(description_value)

    glicko2 = Glicko2Parameters(
        initial_rating=float(glicko2_raw.get("initial_rating", 1500.0)),
        initial_rd=float(glicko2_raw.get("initial_rd", 350.0)),
        initial_volatility=float(glicko2_raw.get("initial_volatility", 0.06)),
        tau=float(glicko2_raw.get("tau", 0.5)),
        rating_period_days=float(glicko2_raw.get("rating_period_days", 1.0)),
        min_rd=float(glicko2_raw.get("min_rd", 30.0)),
        max_rd=float(glicko2_raw.get("max_rd", 350.0)),
        epsilon=float(glicko2_raw.get("epsilon", 1e-6)),
        max_iterations=int(glicko2_raw.get("max_iterations", 1_000)),
    )
    _validate_glicko2(file_path=file_path, parameters=glicko2)

    matchups = MatchupParameters(
        min_cancelled_finish_time=int(
            matchups_raw.get("min_cancelled_finish_time", DEFAULT_MIN_CANCELLED_FINISH_TIME)
        ),
    )
    if matchups.min_cancelled_finish_time < 0:
        raise ValueError(f"{file_path}: [matchups].min_cancelled_finish_time must be >= 0")

    wagers = WagerParameters(
        grace_seconds=float(wagers_raw.get("grace_seconds", 3.0)),
        starting_balance=int(wagers_raw.get("starting_balance", 400)),
    )
    if wagers.grace_seconds < 0.0:
        raise ValueError(f"{file_path}: [wagers].grace_seconds must be >= 0")
    if wagers.starting_balance < 0:
        raise ValueError(f"{file_path}: [wagers].starting_balance must be >= 0")

    return EngineConfig(
        name=name,
        description=description,
        file_path=file_path,
        glicko2=glicko2,
        matchups=matchups,
        wagers=wagers,
    )


def _validate_glicko2(*, file_path: Path, parameters: Glicko2Parameters) -> None:
    if parameters.initial_rating <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].initial_rating must be > 0")
    if parameters.initial_rd <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].initial_rd must be > 0")
    if parameters.initial_volatility <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].initial_volatility must be > 0")
    if parameters.tau <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].tau must be > 0")
    if parameters.rating_period_days <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].rating_period_days must be > 0")
    if parameters.min_rd <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].min_rd must be > 0")
    if parameters.max_rd <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].max_rd must be > 0")
    if parameters.min_rd > parameters.max_rd:
        raise ValueError(f"{file_path}: [glicko2].min_rd must be <= max_rd")
    if parameters.initial_rd < parameters.min_rd or parameters.initial_rd > parameters.max_rd:
        raise ValueError(f"{file_path}: [glicko2].initial_rd must be between min_rd and max_rd")
    if parameters.epsilon <= 0.0:
        raise ValueError(f"{file_path}: [glicko2].epsilon must be > 0")
    if parameters.max_iterations <= 0:
        raise ValueError(f"{file_path}: [glicko2].max_iterations must be > 0")


__all__ = [
    "EngineConfig",
    "MatchupParameters",
    "WagerParameters",
    "load_engine_config",
    "load_engine_configs",
]
