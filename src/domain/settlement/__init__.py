"""Wager settlement modules."""

from domain.settlement.engine import settle
from domain.settlement.payouts import (
    ParticipantResult,
    PoolSplit,
    SettlementResult,
    StakeEntry,
    WagerPayout,
    determine_victor,
    split_pool,
)

__all__ = [
    "ParticipantResult",
    "PoolSplit",
    "SettlementResult",
    "StakeEntry",
    "WagerPayout",
    "determine_victor",
    "settle",
    "split_pool",
]
