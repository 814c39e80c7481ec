"""
Payoff Evaluator

Expiration P&L for a NormalizedStrategy. Total P&L is piecewise-linear in the
terminal price with kinks exactly at option strikes.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from .legs import Leg, LegKind, NormalizedStrategy, OptionLeg

logger = logging.getLogger(__name__)


# ============================================================================
# Point Evaluation
# ============================================================================

def leg_payoff_at(st: float, leg: Leg) -> float:
    """Signed P&L of one leg at terminal price st (per share, times qty)."""
    if isinstance(leg, OptionLeg):
        if leg.kind == LegKind.CALL:
            intrinsic = max(st - leg.strike, 0.0)
        else:
            intrinsic = max(leg.strike - st, 0.0)
        if leg.is_long:
            return leg.qty * (intrinsic - leg.premium)
        return leg.qty * (leg.premium - intrinsic)

    return leg.sign * leg.qty * (st - leg.basis)


def payoff_at(st: float, strategy: NormalizedStrategy) -> float:
    """Total strategy P&L at terminal price st."""
    return sum(leg_payoff_at(st, leg) for leg in strategy.legs)


def payoff_many(prices, strategy: NormalizedStrategy) -> np.ndarray:
    """Vectorized payoff_at over an array of terminal prices."""
    st = np.asarray(prices, dtype=float)
    total = np.zeros_like(st)
    for leg in strategy.legs:
        if isinstance(leg, OptionLeg):
            if leg.kind == LegKind.CALL:
                intrinsic = np.maximum(st - leg.strike, 0.0)
            else:
                intrinsic = np.maximum(leg.strike - st, 0.0)
            total += leg.sign * leg.qty * (intrinsic - leg.premium)
        else:
            total += leg.sign * leg.qty * (st - leg.basis)
    return total


def breakpoints(strategy: NormalizedStrategy) -> List[float]:
    """Sorted unique strikes, where the payoff slope can change."""
    return list(strategy.strikes)


# ============================================================================
# Domains, Curves, Extremes
# ============================================================================

def reference_price(strategy: NormalizedStrategy, spot: Optional[float] = None) -> float:
    """Spot if given, else mean strike, else mean stock basis, else 100."""
    if spot is not None and spot > 0:
        return float(spot)
    if strategy.strikes:
        return sum(strategy.strikes) / len(strategy.strikes)
    bases = [leg.basis for leg in strategy.stocks if leg.basis > 0]
    if bases:
        return sum(bases) / len(bases)
    return 100.0


def suggest_bounds(strategy: NormalizedStrategy, spot: Optional[float] = None) -> tuple:
    """Price window covering spot +/- 50% and all strikes with some slack."""
    center = reference_price(strategy, spot)
    lo = max(0.01, center * 0.5)
    hi = center * 1.5
    if strategy.strikes:
        lo = max(0.01, min(lo, strategy.strikes[0] * 0.7))
        hi = max(hi, strategy.strikes[-1] * 1.3)
    return lo, hi


def build_payoff_curve(
    strategy: NormalizedStrategy,
    lo: Optional[float] = None,
    hi: Optional[float] = None,
    num_points: int = 61,
    spot: Optional[float] = None,
) -> List[Dict[str, float]]:
    """
    Sample the expiration payoff for charting.

    Strikes inside [lo, hi] are inserted so kinks render exactly.

    Returns:
        [{"price": ..., "pnl": ...}, ...] sorted by price
    """
    if lo is None or hi is None:
        default_lo, default_hi = suggest_bounds(strategy, spot)
        lo = default_lo if lo is None else lo
        hi = default_hi if hi is None else hi
    if hi <= lo or num_points < 2:
        return []

    grid = np.linspace(lo, hi, num_points)
    kinks = [k for k in strategy.strikes if lo < k < hi]
    prices = np.unique(np.concatenate([grid, np.asarray(kinks, dtype=float)]))
    pnl = payoff_many(prices, strategy)

    return [
        {"price": round(float(p), 4), "pnl": round(float(v), 4)}
        for p, v in zip(prices, pnl)
    ]


@dataclass(frozen=True)
class PayoffExtremes:
    """Max profit / max loss (magnitudes). None means unlimited."""
    max_profit: Optional[float]
    max_loss: Optional[float]


def _upper_tail_slope(strategy: NormalizedStrategy) -> float:
    anchor = (strategy.strikes[-1] if strategy.strikes else reference_price(strategy)) + 1.0
    return payoff_at(anchor + 1.0, strategy) - payoff_at(anchor, strategy)


def payoff_extremes(
    strategy: NormalizedStrategy,
    lo: Optional[float] = None,
    hi: Optional[float] = None,
    slope_tol: float = 1e-12,
) -> PayoffExtremes:
    """
    Extreme P&L over [lo, hi].

    Piecewise-linear payoff attains extremes at breakpoints or domain ends.
    With no upper bound the slope beyond the last strike decides whether
    profit or loss is unlimited. The lower end defaults to a terminal
    price of zero.
    """
    lo = 0.0 if lo is None else max(0.0, lo)
    points: List[float] = [lo]
    if hi is not None:
        points.append(hi)
    points.extend(k for k in strategy.strikes if k > lo and (hi is None or k < hi))

    values = [payoff_at(p, strategy) for p in points]
    best = max(values)
    worst = min(values)

    max_profit: Optional[float] = max(0.0, best)
    max_loss: Optional[float] = max(0.0, -worst)

    if hi is None:
        slope = _upper_tail_slope(strategy)
        if slope > slope_tol:
            max_profit = None
        elif slope < -slope_tol:
            max_loss = None

    return PayoffExtremes(max_profit=max_profit, max_loss=max_loss)

