"""rating_periods and ratings table models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class RatingPeriod(Base):
    """One window over which battle outcomes are batched."""

    __tablename__ = "rating_periods"
    __table_args__ = (
        Index("idx_rating_periods_status", "status"),
        # At most one period is open at a time.
        Index(
            "uq_rating_periods_single_open",
            "status",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        Index("idx_rating_periods_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(
        Enum(
            "open",
            "closing",
            "closed",
            name="rating_period_status",
            native_enum=False,
        ),
        nullable=False,
        default="open",
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class Rating(Base):
    """Immutable Glicko-2 snapshot of one player at the close of one period."""

    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("period_id", "player_id", name="uq_ratings_period_player"),
        CheckConstraint("deviation > 0.0", name="ck_ratings_deviation"),
        CheckConstraint("volatility > 0.0", name="ck_ratings_volatility"),
        CheckConstraint("matchup_count >= 0", name="ck_ratings_matchup_count"),
        Index("idx_ratings_player_created", "player_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("rating_periods.id"), nullable=False)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    deviation: Mapped[float] = mapped_column(Float, nullable=False)
    volatility: Mapped[float] = mapped_column(Float, nullable=False)
    matchup_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
