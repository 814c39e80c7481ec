"""
Numeric Break-Even Finder

Fallback root finder for strategies without a closed form. The payoff is
piecewise-linear with kinks at strikes, so each strike-bounded interval holds
at most one sign change and a bracketing solver always converges.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from scipy.optimize import brentq

from .config import get_engine_config
from .legs import NormalizedStrategy
from .payoff import payoff_at, reference_price

logger = logging.getLogger(__name__)

MIN_PRICE = 1e-9


@dataclass
class NumericRoots:
    roots: List[float] = field(default_factory=list)
    bounds: Tuple[float, float] = (0.0, 0.0)
    intervals_scanned: int = 0


def dedupe_roots(roots, rel_tol: float = 1e-8) -> List[float]:
    """Sort and merge roots closer than rel_tol (relative to max(1, |x|))."""
    merged: List[float] = []
    for root in sorted(roots):
        if merged and abs(root - merged[-1]) <= rel_tol * max(1.0, abs(root)):
            continue
        merged.append(root)
    return merged


def _tail_root(strategy: NormalizedStrategy, anchor: float, step: float) -> Optional[float]:
    """Root of the linear tail that starts at anchor and extends by step's sign."""
    y0 = payoff_at(anchor, strategy)
    y1 = payoff_at(anchor + step, strategy)
    slope = (y1 - y0) / step
    if slope == 0:
        return None
    root = anchor - y0 / slope
    if step > 0 and root > anchor:
        return root
    if step < 0 and 0 < root < anchor:
        return root
    return None


def bracket_points(
    strategy: NormalizedStrategy,
    spot: Optional[float] = None,
    margin: Optional[float] = None,
) -> List[float]:
    """
    Sorted points whose consecutive pairs bound at most one root each.

    Strikes plus a margin beyond the extremes, or a spot-relative span when
    there are no strikes. Outer points are pushed past any tail root.
    """
    if margin is None:
        margin = get_engine_config().numeric.margin

    if strategy.strikes:
        kmin, kmax = strategy.strikes[0], strategy.strikes[-1]
    else:
        kmin = kmax = reference_price(strategy, spot)

    lo = max(MIN_PRICE, kmin * (1.0 - margin))
    hi = kmax * (1.0 + margin)

    lower_tail = _tail_root(strategy, kmin, -min(1.0, kmin / 2.0))
    if lower_tail is not None and lower_tail < lo:
        lo = max(MIN_PRICE, lower_tail * (1.0 - margin))
    upper_tail = _tail_root(strategy, kmax, 1.0)
    if upper_tail is not None and upper_tail > hi:
        hi = upper_tail * (1.0 + margin)

    inner = [k for k in strategy.strikes if lo < k < hi]
    return [lo] + inner + [hi]


def find_roots(
    strategy: NormalizedStrategy,
    spot: Optional[float] = None,
) -> NumericRoots:
    """Scan bracket intervals and solve every sign change."""
    if strategy.is_empty:
        return NumericRoots()

    cfg = get_engine_config().numeric
    points = bracket_points(strategy, spot, cfg.margin)
    values = [payoff_at(p, strategy) for p in points]

    roots: List[float] = []
    for i in range(len(points) - 1):
        a, b = points[i], points[i + 1]
        if values[i] * values[i + 1] < 0:
            root = brentq(
                payoff_at, a, b, args=(strategy,),
                xtol=cfg.xtol, maxiter=cfg.max_iter,
            )
            roots.append(float(root))

    # An exact zero only counts where P&L leaves zero on an adjacent segment
    for i, (point, value) in enumerate(zip(points, values)):
        if value != 0.0:
            continue
        neighbours = values[max(0, i - 1):i] + values[i + 1:i + 2]
        if any(v != 0.0 for v in neighbours):
            roots.append(point)

    result = NumericRoots(
        roots=dedupe_roots(roots, cfg.dedup_rel),
        bounds=(points[0], points[-1]),
        intervals_scanned=len(points) - 1,
    )
    logger.debug(
        f"Numeric scan over [{result.bounds[0]:.4f}, {result.bounds[1]:.4f}] "
        f"found {len(result.roots)} root(s)"
    )
    return result


def find_break_evens(
    strategy: NormalizedStrategy,
    spot: Optional[float] = None,
) -> List[float]:
    """Sorted, de-duplicated break-even prices via bracket-and-solve."""
    return find_roots(strategy, spot).roots
