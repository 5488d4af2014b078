"""Period-batched Glicko-2 logic.

See https://www.glicko.net/glicko/glicko2.pdf for the step numbering used below.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from math import exp, log, pi, sqrt
from typing import Final

from domain.common import Matchup, RatingTriple
from domain.errors import ConvergenceFailureError, InvariantViolationError

GLICKO2_SCALE: Final[float] = 173.7178
DEFAULT_RATING: Final[float] = 1500.0


@dataclass(frozen=True)
class Glicko2Parameters:
    initial_rating: float = 1500.0
    initial_rd: float = 350.0
    initial_volatility: float = 0.06
    tau: float = 0.5
    rating_period_days: float = 1.0
    min_rd: float = 30.0
    max_rd: float = 350.0
    epsilon: float = 1e-6
    max_iterations: int = 1_000

    @property
    def defaults(self) -> RatingTriple:
        return RatingTriple(
            rating=self.initial_rating,
            deviation=self.initial_rd,
            volatility=self.initial_volatility,
        )

    def clamp_rd(self, rd: float) -> float:
        return max(self.min_rd, min(rd, self.max_rd))


@dataclass(frozen=True)
class Glicko2OpponentResult:
    opponent_rating: float
    opponent_rd: float
    score: float


def _to_mu(rating: float) -> float:
    return (rating - DEFAULT_RATING) / GLICKO2_SCALE


def _to_phi(rd: float) -> float:
    return rd / GLICKO2_SCALE


def _from_mu(mu: float) -> float:
    return (mu * GLICKO2_SCALE) + DEFAULT_RATING


def _from_phi(phi: float) -> float:
    return phi * GLICKO2_SCALE


def _g(phi: float) -> float:
    return 1.0 / sqrt(1.0 + ((3.0 * (phi**2)) / (pi**2)))


def _expected(mu: float, opp_mu: float, opp_phi: float) -> float:
    exponent = -_g(opp_phi) * (mu - opp_mu)
    if exponent >= 0.0:
        exp_term = exp(-exponent)
        return exp_term / (1.0 + exp_term)
    exp_term = exp(exponent)
    return 1.0 / (1.0 + exp_term)


def _pre_period_phi(phi: float, sigma: float, fractional_period: float) -> float:
    return sqrt((phi**2) + (fractional_period * (sigma**2)))


def calculate_expected_score(
    *,
    rating: float,
    rd: float,
    opponent_rating: float,
    opponent_rd: float,
) -> float:
    """Compute expected score for one side under Glicko-2."""
    return _expected(
        _to_mu(rating),
        _to_mu(opponent_rating),
        _to_phi(opponent_rd),
    )


def _solve_volatility(
    *,
    phi: float,
    sigma: float,
    delta: float,
    v: float,
    tau: float,
    epsilon: float,
    max_iterations: int,
) -> float:
    a = log(sigma**2)

    def f(x: float) -> float:
        ex = exp(x)
        numerator = ex * ((delta**2) - (phi**2) - v - ex)
        denominator = 2.0 * ((phi**2) + v + ex) ** 2
        return (numerator / denominator) - ((x - a) / (tau**2))

    a_value = a
    if (delta**2) > ((phi**2) + v):
        b_value = log((delta**2) - (phi**2) - v)
    else:
        k = 1
        b_value = a_value - (k * tau)
        while f(b_value) < 0.0:
            k += 1
            if k > max_iterations:
                raise ConvergenceFailureError("Glicko-2 volatility solve failed to bracket root.")
            b_value = a_value - (k * tau)

    f_a = f(a_value)
    f_b = f(b_value)
    iterations = 0
    while abs(b_value - a_value) > epsilon:
        iterations += 1
        if iterations > max_iterations:
            raise ConvergenceFailureError(
                f"Glicko-2 volatility solve did not converge in {max_iterations} iterations "
                f"(|b - a|={abs(b_value - a_value):.3g})."
            )
        if f_b == f_a:
            c_value = (a_value + b_value) / 2.0
        else:
            c_value = a_value + (((a_value - b_value) * f_a) / (f_b - f_a))
        f_c = f(c_value)
        if f_c * f_b <= 0.0:
            a_value = b_value
            f_a = f_b
        else:
            f_a /= 2.0
        b_value = c_value
        f_b = f_c

    return exp(a_value / 2.0)


def update_glicko2_player(
    *,
    rating: float,
    rd: float,
    volatility: float,
    results: Sequence[Glicko2OpponentResult],
    tau: float = 0.5,
    epsilon: float = 1e-6,
    max_iterations: int = 1_000,
    fractional_period: float = 1.0,
    max_rd: float | None = None,
) -> tuple[float, float, float]:
    """Update one player for one Glicko-2 rating period.

    ``fractional_period`` scales the step 6 deviation growth so that a partly
    elapsed period can be previewed. With no results only that growth applies,
    capped at ``max_rd`` when given.
    """
    if not 0.0 <= fractional_period <= 1.0:
        raise ValueError(f"fractional_period must be within [0, 1], got {fractional_period}")

    mu = _to_mu(rating)
    phi = _to_phi(rd)

    if not results:
        grown_rd = _from_phi(_pre_period_phi(phi, volatility, fractional_period))
        if max_rd is not None:
            grown_rd = min(grown_rd, max(max_rd, rd))
        return rating, grown_rd, volatility

    g_terms: list[float] = []
    e_terms: list[float] = []
    score_minus_e_terms: list[float] = []
    for result in results:
        opp_mu = _to_mu(result.opponent_rating)
        opp_phi = _to_phi(result.opponent_rd)
        g_term = _g(opp_phi)
        expected = _expected(mu, opp_mu, opp_phi)
        g_terms.append(g_term)
        e_terms.append(expected)
        score_minus_e_terms.append(result.score - expected)

    v_inverse = 0.0
    for g_term, expected in zip(g_terms, e_terms):
        v_inverse += (g_term**2) * expected * (1.0 - expected)
    if v_inverse <= 0.0:
        return rating, rd, volatility

    v = 1.0 / v_inverse
    improvement = sum(g_term * score_minus_e for g_term, score_minus_e in zip(g_terms, score_minus_e_terms))
    delta = v * improvement
    sigma_prime = _solve_volatility(
        phi=phi,
        sigma=volatility,
        delta=delta,
        v=v,
        tau=tau,
        epsilon=epsilon,
        max_iterations=max_iterations,
    )

    phi_star = _pre_period_phi(phi, sigma_prime, fractional_period)
    phi_prime = 1.0 / sqrt((1.0 / (phi_star**2)) + (1.0 / v))
    mu_prime = mu + (phi_prime**2) * improvement

    return _from_mu(mu_prime), _from_phi(phi_prime), sigma_prime


def rate_matchups(
    current: RatingTriple,
    matchups: Sequence[Matchup],
    *,
    params: Glicko2Parameters,
    player_id: int | None = None,
    fractional_period: float = 1.0,
) -> RatingTriple:
    """Apply one period of matchups to ``current`` and clamp the new deviation."""
    results: list[Glicko2OpponentResult] = []
    for matchup in matchups:
        if player_id is not None and matchup.opponent_id == player_id:
            raise InvariantViolationError(
                f"battle_id={matchup.battle_id} pairs player_id={player_id} against themself"
            )
        results.append(
            Glicko2OpponentResult(
                opponent_rating=matchup.opponent.rating,
                opponent_rd=matchup.opponent.deviation,
                score=matchup.score,
            )
        )

    rating, rd, volatility = update_glicko2_player(
        rating=current.rating,
        rd=current.deviation,
        volatility=current.volatility,
        results=results,
        tau=params.tau,
        epsilon=params.epsilon,
        max_iterations=params.max_iterations,
        fractional_period=fractional_period,
        max_rd=params.max_rd,
    )
    return RatingTriple(rating=rating, deviation=params.clamp_rd(rd), volatility=volatility)
