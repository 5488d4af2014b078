"""wagers and battle_settlements table models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Wager(Base):
    """A user's stake on one team winning a battle.

    The wager is settled once ``settlement_transaction_id`` is set.
    """

    __tablename__ = "wagers"
    __table_args__ = (
        UniqueConstraint("user_id", "battle_id", name="uq_wagers_user_battle"),
        CheckConstraint("victor IN (0, 1)", name="ck_wagers_victor"),
        CheckConstraint("stake > 0", name="ck_wagers_stake"),
        Index("idx_wagers_battle", "battle_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    battle_id: Mapped[int] = mapped_column(ForeignKey("battles.id"), nullable=False)
    victor: Mapped[int] = mapped_column(Integer, nullable=False)
    stake: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    settlement_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_transactions.id"),
        nullable=True,
        unique=True,
    )


class BattleSettlement(Base):
    """Idempotency marker written in the same transaction as a battle's payouts."""

    __tablename__ = "battle_settlements"
    __table_args__ = (CheckConstraint("victor IS NULL OR victor IN (0, 1)", name="ck_battle_settlements_victor"),)

    battle_id: Mapped[int] = mapped_column(ForeignKey("battles.id"), primary_key=True, autoincrement=False)
    # NULL means the battle was voided and every stake refunded.
    victor: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settled_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
