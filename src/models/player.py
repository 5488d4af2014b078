"""players table model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Float, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Player(Base):
    """A rated competitor, keyed by the public key of their game client.

    ``rating``/``deviation``/``volatility`` mirror the latest row in ``ratings``
    and are only written alongside a new snapshot.
    """

    __tablename__ = "players"
    __table_args__ = (
        CheckConstraint("deviation > 0.0", name="ck_players_deviation"),
        CheckConstraint("volatility > 0.0", name="ck_players_volatility"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    public_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=1500.0)
    deviation: Mapped[float] = mapped_column(Float, nullable=False, default=350.0)
    volatility: Mapped[float] = mapped_column(Float, nullable=False, default=0.06)
    rating_period_id: Mapped[int | None] = mapped_column(
        ForeignKey("rating_periods.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
