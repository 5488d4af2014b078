"""users and ledger_transactions table models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class User(Base):
    """A spectator account holding a currency balance."""

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=400)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )


class LedgerTransaction(Base):
    """Append-only record of one balance change."""

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        CheckConstraint("balance_after >= 0", name="ck_ledger_transactions_balance_after"),
        Index("idx_ledger_transactions_user", "user_id", "id"),
        Index("idx_ledger_transactions_battle", "battle_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    battle_id: Mapped[int | None] = mapped_column(ForeignKey("battles.id"), nullable=True)
    kind: Mapped[str] = mapped_column(
        Enum(
            "stake",
            "payout",
            "refund",
            "grant",
            name="ledger_transaction_kind",
            native_enum=False,
        ),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
