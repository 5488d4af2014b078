"""battles and participants table models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Battle(Base):
    """A single race. ``concluded`` and ``cancelled`` are terminal."""

    __tablename__ = "battles"
    __table_args__ = (
        Index("idx_battles_status_concluded", "status", "concluded_at"),
        Index("idx_battles_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    level_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(
            "ongoing",
            "concluded",
            "cancelled",
            name="battle_status",
            native_enum=False,
        ),
        nullable=False,
        default="ongoing",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
    closes_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    concluded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class Participant(Base):
    """One player's entry in a battle."""

    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("battle_id", "player_id", name="uq_participants_battle_player"),
        CheckConstraint("team IN (0, 1)", name="ck_participants_team"),
        CheckConstraint("finish_time IS NULL OR finish_time >= 0", name="ck_participants_finish_time"),
        Index("idx_participants_player", "player_id", "battle_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    battle_id: Mapped[int] = mapped_column(ForeignKey("battles.id"), nullable=False)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    team: Mapped[int] = mapped_column(Integer, nullable=False)
    # In game tics (35 per second).
    finish_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    no_contest: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
