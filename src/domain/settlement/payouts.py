"""Victor determination and pari-mutuel pool splitting."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from domain.common import Team


@dataclass(frozen=True)
class ParticipantResult:
    team: Team
    finish_time: int | None
    no_contest: bool = False


@dataclass(frozen=True)
class StakeEntry:
    wager_id: int
    user_id: int
    predicted: Team
    stake: int


@dataclass(frozen=True)
class WagerPayout:
    wager_id: int
    user_id: int
    predicted: Team
    stake: int
    payout: int

    @property
    def net(self) -> int:
        """Balance change relative to before the stake was placed."""
        return self.payout - self.stake


@dataclass(frozen=True)
class PoolSplit:
    payouts: tuple[WagerPayout, ...]
    refunded: bool


@dataclass(frozen=True)
class SettlementResult:
    """Resolution of every wager on one battle. ``victor=None`` means the battle was voided."""

    battle_id: int
    victor: Team | None
    payouts: tuple[WagerPayout, ...]
    already_settled: bool = field(default=False, compare=False)

    @property
    def is_void(self) -> bool:
        return self.victor is None

    @property
    def total_staked(self) -> int:
        return sum(payout.stake for payout in self.payouts)

    @property
    def total_paid(self) -> int:
        return sum(payout.payout for payout in self.payouts)


def determine_victor(participants: Sequence[ParticipantResult]) -> Team | None:
    """Team of the fastest finisher among participants who did not no-contest.

    Returns ``None`` (void) when nobody eligible finished or when the fastest
    time is shared across both teams. This is stricter than the rating outcome
    on purpose: a non-finisher facing a no-contest opponent still wins the
    matchup for rating, but there is no finisher to pay out on here.
    """
    finishers = [
        participant
        for participant in participants
        if not participant.no_contest and participant.finish_time is not None
    ]
    if not finishers:
        return None

    best_time = min(participant.finish_time for participant in finishers if participant.finish_time is not None)
    leading_teams = {participant.team for participant in finishers if participant.finish_time == best_time}
    if len(leading_teams) != 1:
        return None
    return leading_teams.pop()


def _refund_all(stakes: Sequence[StakeEntry]) -> PoolSplit:
    return PoolSplit(
        payouts=tuple(
            WagerPayout(
                wager_id=entry.wager_id,
                user_id=entry.user_id,
                predicted=entry.predicted,
                stake=entry.stake,
                payout=entry.stake,
            )
            for entry in stakes
        ),
        refunded=True,
    )


def split_pool(victor: Team | None, stakes: Sequence[StakeEntry]) -> PoolSplit:
    """Distribute the staked currency pari-mutuel style.

    Winners get their stake back plus a share of the losing pool proportional
    to their stake. Integer shares are floored and the leftover units go one
    each to the largest fractional remainders (ties by wager id), so the sum
    of payouts always equals the sum of stakes. Void battles and one-sided
    pools refund every stake.
    """
    for entry in stakes:
        if entry.stake <= 0:
            raise ValueError(f"wager_id={entry.wager_id} has non-positive stake {entry.stake}")

    if victor is None:
        return _refund_all(stakes)

    winning_pool = sum(entry.stake for entry in stakes if entry.predicted == victor)
    losing_pool = sum(entry.stake for entry in stakes if entry.predicted != victor)
    if winning_pool <= 0 or losing_pool <= 0:
        return _refund_all(stakes)

    shares: dict[int, int] = {}
    remainders: list[tuple[int, int]] = []
    for entry in stakes:
        if entry.predicted != victor:
            continue
        share, remainder = divmod(losing_pool * entry.stake, winning_pool)
        shares[entry.wager_id] = share
        remainders.append((remainder, entry.wager_id))

    leftover = losing_pool - sum(shares.values())
    for _, wager_id in sorted(remainders, key=lambda item: (-item[0], item[1]))[:leftover]:
        shares[wager_id] += 1

    payouts = tuple(
        WagerPayout(
            wager_id=entry.wager_id,
            user_id=entry.user_id,
            predicted=entry.predicted,
            stake=entry.stake,
            payout=entry.stake + shares[entry.wager_id] if entry.wager_id in shares else 0,
        )
        for entry in stakes
    )
    return PoolSplit(payouts=payouts, refunded=False)
