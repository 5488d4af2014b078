"""Exactly-once settlement of every wager on a concluded battle."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from domain.common import BattleStatus, Team
from domain.errors import NotConcludedError
from domain.settlement.payouts import (
    ParticipantResult,
    SettlementResult,
    StakeEntry,
    WagerPayout,
    determine_victor,
    split_pool,
)
from models import BattleSettlement, LedgerTransaction, Wager
from repositories import ledger
from repositories.battles import get_battle, get_participants
from repositories.wagers import unsettled_wagers

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _recorded_result(session: Session, marker: BattleSettlement) -> SettlementResult:
    rows = session.execute(
        select(Wager, LedgerTransaction.amount)
        .join(LedgerTransaction, LedgerTransaction.id == Wager.settlement_transaction_id)
        .where(Wager.battle_id == marker.battle_id)
        .order_by(Wager.id.asc())
    ).all()
    return SettlementResult(
        battle_id=marker.battle_id,
        victor=None if marker.victor is None else Team(marker.victor),
        payouts=tuple(
            WagerPayout(
                wager_id=wager.id,
                user_id=wager.user_id,
                predicted=Team(wager.victor),
                stake=int(wager.stake),
                payout=int(amount),
            )
            for wager, amount in rows
        ),
        already_settled=True,
    )


def _find_marker(session: Session, battle_id: int) -> BattleSettlement | None:
    return session.get(BattleSettlement, battle_id, populate_existing=True)


def settle(
    session_factory: sessionmaker[Session],
    battle_id: int,
    *,
    now: datetime | None = None,
) -> SettlementResult:
    """Resolve every wager on a terminal battle exactly once.

    Safe to call repeatedly and concurrently: the ``battle_settlements`` row is
    written in the same transaction as the ledger credits, so any later or
    losing call rebuilds and returns the result that was committed.
    """
    now = now or _utcnow()

    with session_factory() as session:
        try:
            battle = get_battle(session, battle_id, for_update=True)
            status = BattleStatus(battle.status)
            if not status.is_terminal:
                raise NotConcludedError(battle_id)

            marker = _find_marker(session, battle_id)
            if marker is not None:
                result = _recorded_result(session, marker)
                session.rollback()
                logger.info("battle_id=%s already settled", battle_id)
                return result

            if status is BattleStatus.CANCELLED:
                victor = None
            else:
                victor = determine_victor(
                    [
                        ParticipantResult(
                            team=Team(participant.team),
                            finish_time=participant.finish_time,
                            no_contest=participant.no_contest,
                        )
                        for participant in get_participants(session, battle_id)
                    ]
                )

            wagers = unsettled_wagers(session, battle_id)
            split = split_pool(
                victor,
                [
                    StakeEntry(
                        wager_id=wager.id,
                        user_id=wager.user_id,
                        predicted=Team(wager.victor),
                        stake=int(wager.stake),
                    )
                    for wager in wagers
                ],
            )
            kind = ledger.REFUND if split.refunded else ledger.PAYOUT

            wagers_by_id = {wager.id: wager for wager in wagers}
            for payout in split.payouts:
                transaction = ledger.credit(
                    session,
                    payout.user_id,
                    payout.payout,
                    kind=kind,
                    battle_id=battle_id,
                    now=now,
                )
                wagers_by_id[payout.wager_id].settlement_transaction_id = transaction.id

            session.add(
                BattleSettlement(
                    battle_id=battle_id,
                    victor=None if victor is None else int(victor),
                    settled_at=now,
                )
            )
            session.flush()
            session.commit()
        except IntegrityError:
            session.rollback()
            marker = _find_marker(session, battle_id)
            if marker is None:
                raise
            result = _recorded_result(session, marker)
            session.rollback()
            logger.info("battle_id=%s was settled concurrently", battle_id)
            return result
        except Exception:
            session.rollback()
            raise

    result = SettlementResult(battle_id=battle_id, victor=victor, payouts=split.payouts)
    logger.info(
        "settled battle_id=%s victor=%s wagers=%s staked=%s refunded=%s",
        battle_id,
        "void" if victor is None else victor.name,
        len(result.payouts),
        result.total_staked,
        split.refunded,
    )
    return result


__all__ = ["settle"]
