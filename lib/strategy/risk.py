"""
Aggregate Risk Metrics

Expected profit, expected loss, variance and derived ratios for a strategy
under the lognormal terminal-price model. Payoff is linear between strikes
and break-evens, so every moment is a sum of partial lognormal moments over
those intervals and needs no sampling.
"""

import math
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from scipy.stats import norm

from .classifier import compute_break_evens
from .legs import NormalizedStrategy, OptionLeg, as_strategy
from .montecarlo import QuantileBand
from .numeric import find_break_evens
from .payoff import PayoffExtremes, payoff_at, payoff_extremes
from .probability import PopResult, log_params, probability_of_profit, resolve_drift, validate_market_inputs

logger = logging.getLogger(__name__)


@dataclass
class RiskSummary:
    """
    Strategy-level expectation metrics (per share).

    Attributes:
        expected_profit: E[max(X, 0)]
        expected_loss: E[max(-X, 0)]
        expected_pnl: E[X]
        stdev: Standard deviation of X
        expected_return: E[X] / capital at risk, None when capital is zero
        approx_sharpe: E[X] / stdev, None when stdev is zero
        probability_of_profit: Analytic PoP (None when unavailable)
        pop: Full PoP result with region and break-evens
        max_profit: None when unlimited
        max_loss: None when unlimited
        reason: Set when inputs were unusable
    """
    expected_profit: Optional[float] = None
    expected_loss: Optional[float] = None
    expected_pnl: Optional[float] = None
    stdev: Optional[float] = None
    expected_return: Optional[float] = None
    approx_sharpe: Optional[float] = None
    probability_of_profit: Optional[float] = None
    pop: Optional[PopResult] = None
    max_profit: Optional[float] = None
    max_loss: Optional[float] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expectedProfit": self.expected_profit,
            "expectedLoss": self.expected_loss,
            "expectedPnl": self.expected_pnl,
            "stdev": self.stdev,
            "expectedReturn": self.expected_return,
            "approxSharpe": self.approx_sharpe,
            "probabilityOfProfit": self.probability_of_profit,
            "pop": self.pop.to_dict() if self.pop else None,
            "maxProfit": "unlimited" if self.max_profit is None and self.reason is None else self.max_profit,
            "maxLoss": "unlimited" if self.max_loss is None and self.reason is None else self.max_loss,
            "reason": self.reason,
        }


@dataclass
class _Moments:
    positive: float = 0.0
    negative: float = 0.0
    second: float = 0.0

    @property
    def mean(self) -> float:
        return self.positive - self.negative


# ============================================================================
# Partial Moments
# ============================================================================

def capital_at_risk(strategy: NormalizedStrategy) -> float:
    """Gross option premium plus stock basis, times qty."""
    total = 0.0
    for leg in strategy.legs:
        if isinstance(leg, OptionLeg):
            total += leg.premium * leg.qty
        else:
            total += leg.basis * leg.qty
    return total


def _segments(edges: List[float]) -> List[Tuple[float, float]]:
    points = [0.0] + edges + [math.inf]
    return list(zip(points[:-1], points[1:]))


def _linear_on(strategy: NormalizedStrategy, lo: float, hi: float) -> Tuple[float, float, float]:
    """(alpha, beta, sample) with payoff = alpha + beta * S on (lo, hi)."""
    if math.isinf(hi):
        x1, x2 = lo + 1.0, lo + 2.0
    else:
        x1, x2 = lo + (hi - lo) / 3.0, lo + 2.0 * (hi - lo) / 3.0
    y1, y2 = payoff_at(x1, strategy), payoff_at(x2, strategy)
    beta = (y2 - y1) / (x2 - x1)
    return y1 - beta * x1, beta, y1


def _interval_moments(lo: float, hi: float, mean: float, sd: float) -> Tuple[float, float, float]:
    """P(lo<S<hi), E[S; lo<S<hi], E[S^2; lo<S<hi] for ln S ~ N(mean, sd^2)."""
    z_lo = -math.inf if lo <= 0 else (math.log(lo) - mean) / sd
    z_hi = math.inf if math.isinf(hi) else (math.log(hi) - mean) / sd
    p0 = norm.cdf(z_hi) - norm.cdf(z_lo)
    p1 = math.exp(mean + 0.5 * sd ** 2) * (norm.cdf(z_hi - sd) - norm.cdf(z_lo - sd))
    p2 = math.exp(2.0 * mean + 2.0 * sd ** 2) * (norm.cdf(z_hi - 2.0 * sd) - norm.cdf(z_lo - 2.0 * sd))
    return float(p0), float(p1), float(p2)


def payoff_moments(
    strategy: NormalizedStrategy,
    spot: float,
    sigma: float,
    t: float,
    drift: float,
) -> _Moments:
    """Exact E[X+], E[X-] and E[X^2] under the lognormal model."""
    mean, sd = log_params(spot, sigma, t, drift)
    if sd == 0:
        x = payoff_at(math.exp(mean), strategy)
        return _Moments(positive=max(x, 0.0), negative=max(-x, 0.0), second=x * x)

    edges = sorted(set(strategy.strikes) | set(find_break_evens(strategy, spot)))
    moments = _Moments()
    for lo, hi in _segments(edges):
        alpha, beta, sample = _linear_on(strategy, lo, hi)
        p0, p1, p2 = _interval_moments(lo, hi, mean, sd)
        first = alpha * p0 + beta * p1
        if sample > 0:
            moments.positive += first
        elif sample < 0:
            moments.negative -= first
        moments.second += alpha * alpha * p0 + 2.0 * alpha * beta * p1 + beta * beta * p2
    moments.positive = max(moments.positive, 0.0)
    moments.negative = max(moments.negative, 0.0)
    return moments


# ============================================================================
# Summary
# ============================================================================

def compute_risk_summary(
    legs_or_strategy: Any,
    spot: float,
    sigma: float,
    t: float,
    drift: Optional[float] = None,
    r: float = 0.0,
    q: float = 0.0,
    break_evens: Optional[Sequence[float]] = None,
    strategy: Any = None,
) -> RiskSummary:
    """
    Expected profit/loss, return and Sharpe-like ratio for a leg set.

    With sigma == 0 or t == 0 the terminal price is deterministic at
    S0 * exp(drift * t). Validation failures and empty leg sets return a
    summary with `reason` set and no metrics.
    """
    normalized = as_strategy(legs_or_strategy)
    mu = resolve_drift(drift, r, q)

    problem = validate_market_inputs(spot, sigma, t, mu)
    if problem is None and normalized.is_empty:
        problem = "no legs"
    if problem:
        return RiskSummary(reason=problem, pop=PopResult(probability=None, reason=problem))

    if break_evens is None:
        break_evens = compute_break_evens(normalized, strategy, spot=spot).break_evens

    moments = payoff_moments(normalized, spot, sigma, t, mu)
    expected = moments.mean
    variance = max(moments.second - expected ** 2, 0.0)
    stdev = math.sqrt(variance)

    capital = capital_at_risk(normalized)
    pop = probability_of_profit(normalized, spot, sigma, t, drift=mu, break_evens=break_evens)
    extremes = payoff_extremes(normalized)

    summary = RiskSummary(
        expected_profit=moments.positive,
        expected_loss=moments.negative,
        expected_pnl=expected,
        stdev=stdev,
        expected_return=expected / capital if capital > 0 else None,
        approx_sharpe=expected / stdev if stdev > 1e-12 else None,
        probability_of_profit=pop.probability,
        pop=pop,
        max_profit=extremes.max_profit,
        max_loss=extremes.max_loss,
    )
    logger.debug(f"Risk summary: E[X]={expected:.4f} sd={stdev:.4f} PoP={pop.probability}")
    return summary


def realistic_extremes(strategy: NormalizedStrategy, band: QuantileBand) -> PayoffExtremes:
    """Max profit / max loss within the simulated 1st-99th percentile range."""
    return payoff_extremes(strategy, band.q01, band.q99)
