"""
Analytic Probability of Profit

Lognormal terminal-price model:

    ln(S_T) ~ Normal(ln(S0) + (mu - sigma^2/2) T, sigma^2 T)

The profitable side of each break-even is found by evaluating the payoff at a
representative point, never from a strategy's directional label, so the
result holds for any leg set.
"""

import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from scipy.stats import norm

from .classifier import compute_break_evens
from .legs import NormalizedStrategy, as_strategy
from .payoff import payoff_at

logger = logging.getLogger(__name__)


class Region(str, Enum):
    """Where the profitable terminal prices lie relative to the break-evens."""
    BELOW = "below"
    ABOVE = "above"
    INSIDE = "inside"
    OUTSIDE = "outside"
    MULTIPLE = "multiple"
    NONE = "none"


@dataclass
class PopResult:
    """Probability of profit with the region and break-evens it came from."""
    probability: Optional[float]
    region: Region = Region.NONE
    break_evens_used: List[float] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.probability is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probability": self.probability,
            "region": self.region.value,
            "breakEvens": list(self.break_evens_used),
            "reason": self.reason,
        }


# ============================================================================
# Lognormal Helpers
# ============================================================================

def resolve_drift(drift: Optional[float] = None, r: float = 0.0, q: float = 0.0) -> float:
    """Explicit drift, or the risk-neutral r - q."""
    return (r - q) if drift is None else drift


def log_params(spot: float, sigma: float, t: float, drift: float) -> Tuple[float, float]:
    """(mean, stdev) of ln(S_T)."""
    return math.log(spot) + (drift - 0.5 * sigma ** 2) * t, sigma * math.sqrt(t)


def lognormal_cdf(x: float, spot: float, sigma: float, t: float, drift: float = 0.0) -> float:
    """P(S_T <= x)."""
    if x <= 0:
        return 0.0
    mean, sd = log_params(spot, sigma, t, drift)
    if sd == 0:
        return 1.0 if math.exp(mean) <= x else 0.0
    return float(norm.cdf((math.log(x) - mean) / sd))


def lognormal_quantile(p: float, spot: float, sigma: float, t: float, drift: float = 0.0) -> float:
    """Price x with P(S_T <= x) = p."""
    mean, sd = log_params(spot, sigma, t, drift)
    return float(math.exp(mean + sd * norm.ppf(p)))


def gbm_interval(
    spot: float,
    sigma: float,
    t: float,
    drift: float = 0.0,
    level: float = 0.95,
) -> Tuple[float, float]:
    """Central confidence interval for S_T."""
    tail = (1.0 - level) / 2.0
    return (
        lognormal_quantile(tail, spot, sigma, t, drift),
        lognormal_quantile(1.0 - tail, spot, sigma, t, drift),
    )


def validate_market_inputs(spot: Any, sigma: Any, t: Any, drift: Any = 0.0) -> Optional[str]:
    """Reason string when the market inputs are unusable, else None."""
    numbers = {}
    for name, value in (("spot", spot), ("sigma", sigma), ("T", t), ("drift", drift)):
        if value is None or isinstance(value, bool):
            return f"{name} is required"
        try:
            numbers[name] = float(value)
        except (TypeError, ValueError):
            return f"{name} must be a number"
        if not math.isfinite(numbers[name]):
            return f"{name} must be finite"
    if numbers["spot"] <= 0:
        return "spot must be positive"
    if numbers["sigma"] < 0:
        return "sigma must be non-negative"
    if numbers["T"] < 0:
        return "T must be non-negative"
    return None


# ============================================================================
# Probability of Profit
# ============================================================================

def _probe_offset(price: float, strategy: NormalizedStrategy, others: Sequence[float]) -> float:
    """Step that stays inside the linear segment around a break-even."""
    step = max(1e-6, abs(price) * 1e-4)
    for other in list(strategy.strikes) + list(others):
        gap = abs(other - price)
        if gap > 0:
            step = min(step, gap / 2.0)
    return step


def probability_of_profit(
    legs_or_strategy: Any,
    spot: float,
    sigma: float,
    t: float,
    drift: Optional[float] = None,
    r: float = 0.0,
    q: float = 0.0,
    break_evens: Optional[Sequence[float]] = None,
    strategy: Any = None,
) -> PopResult:
    """
    Analytic probability that the strategy finishes with P&L >= 0.

    Args:
        legs_or_strategy: Raw legs or a NormalizedStrategy
        spot: Current underlying price
        sigma: Annualized volatility
        t: Years to expiration
        drift: Annual drift; defaults to r - q
        r: Risk-free rate
        q: Continuous dividend yield
        break_evens: Pre-computed break-evens (computed when omitted)
        strategy: Optional strategy key passed to the classifier

    Returns:
        PopResult; probability is None when unavailable (see reason)
    """
    normalized = as_strategy(legs_or_strategy)
    mu = resolve_drift(drift, r, q)

    problem = validate_market_inputs(spot, sigma, t, mu)
    if problem:
        return PopResult(probability=None, reason=problem)
    if normalized.is_empty:
        return PopResult(probability=None, reason="no legs")

    if break_evens is None:
        break_evens = compute_break_evens(normalized, strategy, spot=spot).break_evens
    bes = sorted(float(b) for b in break_evens)

    if sigma == 0 or t == 0:
        profitable = payoff_at(spot, normalized) >= 0
        return PopResult(probability=1.0 if profitable else 0.0, break_evens_used=bes)

    if not bes:
        return PopResult(
            probability=None,
            break_evens_used=bes,
            reason="no break-even threshold",
        )

    def cdf(x: float) -> float:
        return lognormal_cdf(x, spot, sigma, t, mu)

    if len(bes) == 1:
        be = bes[0]
        step = _probe_offset(be, normalized, [])
        if payoff_at(be + step, normalized) >= 0:
            probability, region = 1.0 - cdf(be), Region.ABOVE
        else:
            probability, region = cdf(be), Region.BELOW
    elif len(bes) == 2:
        lower, upper = bes
        inside = cdf(upper) - cdf(lower)
        if payoff_at((lower + upper) / 2.0, normalized) >= 0:
            probability, region = inside, Region.INSIDE
        else:
            probability, region = 1.0 - inside, Region.OUTSIDE
    else:
        edges = [0.0] + bes + [math.inf]
        probability = 0.0
        for lo, hi in zip(edges[:-1], edges[1:]):
            probe = hi / 2.0 if lo == 0.0 else (lo * 2.0 if math.isinf(hi) else (lo + hi) / 2.0)
            if payoff_at(probe, normalized) >= 0:
                probability += (1.0 if math.isinf(hi) else cdf(hi)) - cdf(lo)
        region = Region.MULTIPLE

    probability = min(1.0, max(0.0, probability))
    logger.debug(f"PoP {probability:.4f} ({region.value}) from break-evens {bes}")
    return PopResult(probability=probability, region=region, break_evens_used=bes)
