"""
Closed-Form Break-Even Library

Every recognized topology is a StrategyTag with a formula
`fn(strategy) -> Optional[BreakEvenResult]`. A formula returns None when the
legs do not match its exact pattern; it never raises.

Legs are grouped into positions keyed by (kind, side, strike) so that two
1-lot legs and one 2-lot leg read the same. Offsets are per unit of the
common position quantity:

    D = net_premium / unit   (net debit, positive when paid)
    C = -D                   (net credit)

Exact formulas are checked against the payoff evaluator at every root, so a
pattern whose premiums put the root outside its linear segment degrades to
the numeric finder instead of returning a wrong price.
"""

import math
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from statistics import median_low
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from .legs import LegKind, NormalizedStrategy, Side
from .payoff import payoff_at

logger = logging.getLogger(__name__)


# ============================================================================
# Result Types
# ============================================================================

class StrategyTag(str, Enum):
    """Recognized strategy topologies."""
    LONG_CALL = "long_call"
    SHORT_CALL = "short_call"
    LONG_PUT = "long_put"
    SHORT_PUT = "short_put"
    LEAPS_CALL = "leaps_call"
    LEAPS_PUT = "leaps_put"

    PROTECTIVE_PUT = "protective_put"
    COVERED_CALL = "covered_call"
    COVERED_PUT = "covered_put"
    COLLAR = "collar"

    BULL_CALL_SPREAD = "bull_call_spread"
    BEAR_CALL_SPREAD = "bear_call_spread"
    BULL_PUT_SPREAD = "bull_put_spread"
    BEAR_PUT_SPREAD = "bear_put_spread"

    LONG_STRADDLE = "long_straddle"
    SHORT_STRADDLE = "short_straddle"
    LONG_STRANGLE = "long_strangle"
    SHORT_STRANGLE = "short_strangle"

    IRON_CONDOR = "iron_condor"
    REVERSE_CONDOR = "reverse_condor"
    IRON_BUTTERFLY = "iron_butterfly"
    REVERSE_IRON_BUTTERFLY = "reverse_iron_butterfly"
    CALL_BUTTERFLY = "call_butterfly"
    PUT_BUTTERFLY = "put_butterfly"
    REVERSE_BUTTERFLY = "reverse_butterfly"

    CALL_RATIO_SPREAD = "call_ratio_spread"
    CALL_BACKSPREAD = "call_backspread"
    PUT_RATIO_SPREAD = "put_ratio_spread"
    PUT_BACKSPREAD = "put_backspread"
    STRAP = "strap"
    STRIP = "strip"

    CALL_CALENDAR_SPREAD = "call_calendar_spread"
    PUT_CALENDAR_SPREAD = "put_calendar_spread"
    CALL_DIAGONAL_SPREAD = "call_diagonal_spread"
    PUT_DIAGONAL_SPREAD = "put_diagonal_spread"

    LONG_BOX_SPREAD = "long_box_spread"
    SHORT_BOX_SPREAD = "short_box_spread"
    REVERSAL = "reversal"
    CONVERSION = "conversion"


class Method(str, Enum):
    CLOSED_FORM = "closed_form"
    NUMERIC_FALLBACK = "numeric_fallback"


@dataclass
class BreakEvenResult:
    """
    Break-even prices plus how they were found.

    Attributes:
        break_evens: Sorted prices where P&L is zero
        method: closed_form or numeric_fallback
        strategy: Strategy tag (or "unknown")
        approx: True for calendar/diagonal approximations
        fixed_payoff: True for box/reversal/conversion (no break-even exists)
        diagnostics: Formula inputs for display (camelCase keys)
    """
    break_evens: List[float]
    method: Method
    strategy: str
    approx: bool = False
    fixed_payoff: bool = False
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        """Render as {"be": [...], "meta": {...}}."""
        meta: Dict[str, Any] = {
            "strategy": self.strategy,
            "method": self.method.value,
        }
        if self.approx:
            meta["approx"] = True
        if self.fixed_payoff:
            meta["fixedPayoff"] = True
        meta.update(self.diagnostics)
        return {"be": list(self.break_evens), "meta": meta}


# ============================================================================
# Positions
# ============================================================================

@dataclass(frozen=True)
class Position:
    """Option legs with the same kind, side and strike, quantities summed."""
    kind: LegKind
    side: Side
    strike: float
    qty: float
    expiries: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class StockPosition:
    side: Side
    qty: float
    basis: float


def option_positions(strategy: NormalizedStrategy) -> List[Position]:
    grouped = defaultdict(list)
    for leg in strategy.options:
        if leg.qty > 0:
            grouped[(leg.kind, leg.side, leg.strike)].append(leg)

    positions = [
        Position(
            kind=kind,
            side=side,
            strike=strike,
            qty=sum(leg.qty for leg in legs),
            expiries=frozenset(leg.expiry for leg in legs if leg.expiry),
        )
        for (kind, side, strike), legs in grouped.items()
    ]
    return sorted(positions, key=lambda p: (p.strike, p.kind.value, p.side.value))


def stock_positions(strategy: NormalizedStrategy) -> List[StockPosition]:
    grouped = defaultdict(list)
    for leg in strategy.stocks:
        if leg.qty > 0:
            grouped[leg.side].append(leg)

    result = []
    for side, legs in grouped.items():
        qty = sum(leg.qty for leg in legs)
        basis = sum(leg.basis * leg.qty for leg in legs) / qty
        result.append(StockPosition(side=side, qty=qty, basis=basis))
    return result


_GROUP_KEYS = {
    "lc": (LegKind.CALL, Side.LONG),
    "sc": (LegKind.CALL, Side.SHORT),
    "lp": (LegKind.PUT, Side.LONG),
    "sp": (LegKind.PUT, Side.SHORT),
}


class _Shape:
    """Position counts by (kind, side) for pattern matching."""

    def __init__(self, strategy: NormalizedStrategy):
        self.strategy = strategy
        self.positions = option_positions(strategy)
        self.stocks = stock_positions(strategy)
        self.groups = {
            key: [p for p in self.positions if (p.kind, p.side) == kind_side]
            for key, kind_side in _GROUP_KEYS.items()
        }

    def matches(self, stock: Optional[Side] = None, **counts: int) -> bool:
        """True when the leg set is exactly `counts` positions plus the stock side."""
        if stock is None and self.stocks:
            return False
        if stock is not None and (len(self.stocks) != 1 or self.stocks[0].side != stock):
            return False
        for key in _GROUP_KEYS:
            if len(self.groups[key]) != counts.get(key, 0):
                return False
        return True

    def one(self, key: str) -> Position:
        return self.groups[key][0]

    @property
    def stock(self) -> StockPosition:
        return self.stocks[0]

    @property
    def expiries(self) -> FrozenSet[str]:
        found = set()
        for p in self.positions:
            found |= p.expiries
        return frozenset(found)

    @property
    def single_expiry(self) -> bool:
        return len(self.expiries) <= 1

    def per_unit(self, unit: float) -> float:
        """Net debit per unit."""
        return self.strategy.net_premium / unit


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-12)


def _unit(*quantities: float) -> Optional[float]:
    """Common quantity, or None when they differ."""
    first = quantities[0]
    if first <= 0 or any(not _close(q, first) for q in quantities[1:]):
        return None
    return first


def middle_short_strike(strategy: NormalizedStrategy, kind: LegKind) -> Optional[float]:
    """Middle strike among short legs of one kind (lower middle for even counts)."""
    strikes = sorted(
        leg.strike for leg in strategy.options
        if leg.kind == kind and leg.side == Side.SHORT and leg.qty > 0
    )
    return median_low(strikes) if strikes else None


# ============================================================================
# Result Builders
# ============================================================================

def _verified(strategy: NormalizedStrategy, prices: List[float]) -> bool:
    scale = max([1.0] + list(strategy.strikes) + [leg.basis for leg in strategy.stocks])
    total_qty = max(1.0, sum(leg.qty for leg in strategy.legs))
    tol = 1e-9 * scale * total_qty
    return all(p > 0 and abs(payoff_at(p, strategy)) <= tol for p in prices)


def _exact(
    strategy: NormalizedStrategy,
    tag: StrategyTag,
    prices: List[float],
    **diagnostics: Any,
) -> Optional[BreakEvenResult]:
    prices = sorted(prices)
    if not _verified(strategy, prices):
        logger.debug(f"{tag.value}: closed form {prices} failed payoff check")
        return None
    diagnostics.setdefault("netPremium", strategy.net_premium)
    return BreakEvenResult(
        break_evens=prices,
        method=Method.CLOSED_FORM,
        strategy=tag.value,
        diagnostics=diagnostics,
    )


def _approx(
    strategy: NormalizedStrategy,
    tag: StrategyTag,
    prices: List[float],
    **diagnostics: Any,
) -> Optional[BreakEvenResult]:
    prices = sorted(p for p in prices if p > 0)
    if not prices:
        return None
    diagnostics.setdefault("netPremium", strategy.net_premium)
    return BreakEvenResult(
        break_evens=prices,
        method=Method.CLOSED_FORM,
        strategy=tag.value,
        approx=True,
        diagnostics=diagnostics,
    )


def _fixed(strategy: NormalizedStrategy, tag: StrategyTag, **diagnostics: Any) -> BreakEvenResult:
    diagnostics.setdefault("netPremium", strategy.net_premium)
    reference = strategy.strikes[0] if strategy.strikes else 1.0
    diagnostics.setdefault("fixedPnl", round(payoff_at(reference, strategy), 10))
    return BreakEvenResult(
        break_evens=[],
        method=Method.CLOSED_FORM,
        strategy=tag.value,
        fixed_payoff=True,
        diagnostics=diagnostics,
    )


# ============================================================================
# Single Legs
# ============================================================================

def _single(strategy: NormalizedStrategy, key: str, tag: StrategyTag) -> Optional[BreakEvenResult]:
    shape = _Shape(strategy)
    if not shape.matches(**{key: 1}):
        return None
    pos = shape.one(key)
    d = shape.per_unit(pos.qty)
    if key == "lc":
        return _exact(strategy, tag, [pos.strike + d], strike=pos.strike, debit=d)
    if key == "sc":
        return _exact(strategy, tag, [pos.strike - d], strike=pos.strike, credit=-d)
    if key == "lp":
        return _exact(strategy, tag, [pos.strike - d], strike=pos.strike, debit=d)
    return _exact(strategy, tag, [pos.strike + d], strike=pos.strike, credit=-d)


def long_call(strategy):
    return _single(strategy, "lc", StrategyTag.LONG_CALL)


def short_call(strategy):
    return _single(strategy, "sc", StrategyTag.SHORT_CALL)


def long_put(strategy):
    return _single(strategy, "lp", StrategyTag.LONG_PUT)


def short_put(strategy):
    return _single(strategy, "sp", StrategyTag.SHORT_PUT)


def leaps_call(strategy):
    return _single(strategy, "lc", StrategyTag.LEAPS_CALL)


def leaps_put(strategy):
    return _single(strategy, "lp", StrategyTag.LEAPS_PUT)


# ============================================================================
# Stock Combinations
# ============================================================================

def protective_put(strategy):
    shape = _Shape(strategy)
    if not shape.matches(stock=Side.LONG, lp=1):
        return None
    put = shape.one("lp")
    unit = _unit(put.qty, shape.stock.qty)
    if unit is None:
        return None
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.PROTECTIVE_PUT, [shape.stock.basis + d],
                  basis=shape.stock.basis, strike=put.strike, debit=d)


def covered_call(strategy):
    shape = _Shape(strategy)
    if not shape.matches(stock=Side.LONG, sc=1):
        return None
    call = shape.one("sc")
    unit = _unit(call.qty, shape.stock.qty)
    if unit is None:
        return None
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.COVERED_CALL, [shape.stock.basis - c],
                  basis=shape.stock.basis, strike=call.strike, credit=c)


def covered_put(strategy):
    shape = _Shape(strategy)
    if not shape.matches(stock=Side.SHORT, sp=1):
        return None
    put = shape.one("sp")
    unit = _unit(put.qty, shape.stock.qty)
    if unit is None:
        return None
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.COVERED_PUT, [shape.stock.basis + c],
                  basis=shape.stock.basis, strike=put.strike, credit=c)


def collar(strategy):
    shape = _Shape(strategy)
    if not shape.matches(stock=Side.LONG, lp=1, sc=1):
        return None
    put, call = shape.one("lp"), shape.one("sc")
    unit = _unit(put.qty, call.qty, shape.stock.qty)
    if unit is None or not put.strike < call.strike or not shape.single_expiry:
        return None
    net = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.COLLAR, [shape.stock.basis + net],
                  basis=shape.stock.basis, putStrike=put.strike,
                  callStrike=call.strike, netPerUnit=net)


def reversal(strategy):
    shape = _Shape(strategy)
    if not shape.matches(stock=Side.SHORT, lc=1, sp=1):
        return None
    call, put = shape.one("lc"), shape.one("sp")
    if _unit(call.qty, put.qty, shape.stock.qty) is None or not _close(call.strike, put.strike):
        return None
    return _fixed(strategy, StrategyTag.REVERSAL, strike=call.strike)


def conversion(strategy):
    shape = _Shape(strategy)
    if not shape.matches(stock=Side.LONG, lp=1, sc=1):
        return None
    put, call = shape.one("lp"), shape.one("sc")
    if _unit(call.qty, put.qty, shape.stock.qty) is None or not _close(call.strike, put.strike):
        return None
    return _fixed(strategy, StrategyTag.CONVERSION, strike=call.strike)


# ============================================================================
# Verticals
# ============================================================================

def _vertical(strategy, low_key: str, high_key: str):
    """Two same-kind positions, low strike first; returns (shape, low, high, unit)."""
    shape = _Shape(strategy)
    if not shape.matches(**{low_key: 1, high_key: 1}) or not shape.single_expiry:
        return None
    low, high = shape.one(low_key), shape.one(high_key)
    unit = _unit(low.qty, high.qty)
    if unit is None or not low.strike < high.strike:
        return None
    return shape, low, high, unit


def bull_call_spread(strategy):
    matched = _vertical(strategy, "lc", "sc")
    if matched is None:
        return None
    shape, low, high, unit = matched
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.BULL_CALL_SPREAD, [low.strike + d],
                  longStrike=low.strike, shortStrike=high.strike, debit=d)


def bear_call_spread(strategy):
    matched = _vertical(strategy, "sc", "lc")
    if matched is None:
        return None
    shape, low, high, unit = matched
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.BEAR_CALL_SPREAD, [low.strike + c],
                  shortStrike=low.strike, longStrike=high.strike, credit=c)


def bull_put_spread(strategy):
    matched = _vertical(strategy, "lp", "sp")
    if matched is None:
        return None
    shape, low, high, unit = matched
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.BULL_PUT_SPREAD, [high.strike - c],
                  longStrike=low.strike, shortStrike=high.strike, credit=c)


def bear_put_spread(strategy):
    matched = _vertical(strategy, "sp", "lp")
    if matched is None:
        return None
    shape, low, high, unit = matched
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.BEAR_PUT_SPREAD, [high.strike - d],
                  shortStrike=low.strike, longStrike=high.strike, debit=d)


# ============================================================================
# Straddles & Strangles
# ============================================================================

def _pair(strategy, put_key: str, call_key: str):
    shape = _Shape(strategy)
    if not shape.matches(**{put_key: 1, call_key: 1}) or not shape.single_expiry:
        return None
    put, call = shape.one(put_key), shape.one(call_key)
    unit = _unit(put.qty, call.qty)
    if unit is None:
        return None
    return shape, put, call, unit


def long_straddle(strategy):
    matched = _pair(strategy, "lp", "lc")
    if matched is None:
        return None
    shape, put, call, unit = matched
    if not _close(put.strike, call.strike):
        return None
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.LONG_STRADDLE, [call.strike - d, call.strike + d],
                  strike=call.strike, debit=d)


def short_straddle(strategy):
    matched = _pair(strategy, "sp", "sc")
    if matched is None:
        return None
    shape, put, call, unit = matched
    if not _close(put.strike, call.strike):
        return None
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.SHORT_STRADDLE, [call.strike - c, call.strike + c],
                  strike=call.strike, credit=c)


def long_strangle(strategy):
    matched = _pair(strategy, "lp", "lc")
    if matched is None:
        return None
    shape, put, call, unit = matched
    if not put.strike < call.strike:
        return None
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.LONG_STRANGLE, [put.strike - d, call.strike + d],
                  putStrike=put.strike, callStrike=call.strike, debit=d)


def short_strangle(strategy):
    matched = _pair(strategy, "sp", "sc")
    if matched is None:
        return None
    shape, put, call, unit = matched
    if not put.strike < call.strike:
        return None
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.SHORT_STRANGLE, [put.strike - c, call.strike + c],
                  putStrike=put.strike, callStrike=call.strike, credit=c)


# ============================================================================
# Condors & Butterflies
# ============================================================================

def _four_wing(strategy):
    """LP, SP, SC, LC (or the reverse) with a common unit and single expiry."""
    shape = _Shape(strategy)
    if not shape.matches(lp=1, sp=1, sc=1, lc=1) or not shape.single_expiry:
        return None
    lp, sp, sc, lc = (shape.one(k) for k in ("lp", "sp", "sc", "lc"))
    unit = _unit(lp.qty, sp.qty, sc.qty, lc.qty)
    if unit is None:
        return None
    return shape, lp, sp, sc, lc, unit


def iron_condor(strategy):
    matched = _four_wing(strategy)
    if matched is None:
        return None
    shape, lp, sp, sc, lc, unit = matched
    if not lp.strike < sp.strike < sc.strike < lc.strike:
        return None
    short_put = middle_short_strike(strategy, LegKind.PUT)
    short_call = middle_short_strike(strategy, LegKind.CALL)
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.IRON_CONDOR, [short_put - c, short_call + c],
                  shortPut=short_put, shortCall=short_call, credit=c)


def reverse_condor(strategy):
    matched = _four_wing(strategy)
    if matched is None:
        return None
    shape, lp, sp, sc, lc, unit = matched
    if not sp.strike < lp.strike < lc.strike < sc.strike:
        return None
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.REVERSE_CONDOR, [lp.strike - d, lc.strike + d],
                  longPut=lp.strike, longCall=lc.strike, debit=d)


def iron_butterfly(strategy):
    matched = _four_wing(strategy)
    if matched is None:
        return None
    shape, lp, sp, sc, lc, unit = matched
    if not (lp.strike < sp.strike < lc.strike and _close(sp.strike, sc.strike)):
        return None
    body = middle_short_strike(strategy, LegKind.CALL)
    c = -shape.per_unit(unit)
    return _exact(strategy, StrategyTag.IRON_BUTTERFLY, [body - c, body + c],
                  strike=body, credit=c)


def reverse_iron_butterfly(strategy):
    matched = _four_wing(strategy)
    if matched is None:
        return None
    shape, lp, sp, sc, lc, unit = matched
    if not (sp.strike < lp.strike < sc.strike and _close(lp.strike, lc.strike)):
        return None
    d = shape.per_unit(unit)
    return _exact(strategy, StrategyTag.REVERSE_IRON_BUTTERFLY,
                  [lp.strike - d, lp.strike + d], strike=lp.strike, debit=d)


def _butterfly(strategy, kind: LegKind, wing_side: Side):
    """Wings at K1 < K3 (qty u each), body at the midpoint K2 (qty 2u), one kind only."""
    shape = _Shape(strategy)
    if shape.stocks or len(shape.positions) != 3 or not shape.single_expiry:
        return None
    low, mid, high = shape.positions
    if any(p.kind != kind for p in shape.positions):
        return None
    if low.side != wing_side or high.side != wing_side or mid.side == wing_side:
        return None
    unit = _unit(low.qty, high.qty, mid.qty / 2.0)
    if unit is None or not _close(mid.strike - low.strike, high.strike - mid.strike):
        return None
    return shape, low, mid, high, unit


def _long_butterfly(strategy, kind: LegKind, tag: StrategyTag):
    matched = _butterfly(strategy, kind, Side.LONG)
    if matched is None:
        return None
    shape, low, mid, high, unit = matched
    d = shape.per_unit(unit)
    return _exact(strategy, tag, [low.strike + d, high.strike - d],
                  lowerStrike=low.strike, body=mid.strike, upperStrike=high.strike, debit=d)


def call_butterfly(strategy):
    return _long_butterfly(strategy, LegKind.CALL, StrategyTag.CALL_BUTTERFLY)


def put_butterfly(strategy):
    return _long_butterfly(strategy, LegKind.PUT, StrategyTag.PUT_BUTTERFLY)


def reverse_butterfly(strategy):
    for kind in (LegKind.CALL, LegKind.PUT):
        matched = _butterfly(strategy, kind, Side.SHORT)
        if matched is None:
            continue
        shape, low, mid, high, unit = matched
        c = -shape.per_unit(unit)
        return _exact(strategy, StrategyTag.REVERSE_BUTTERFLY, [low.strike + c, high.strike - c],
                      lowerStrike=low.strike, body=mid.strike, upperStrike=high.strike,
                      credit=c, optionType=kind.value)
    return None


# ============================================================================
# Ratio Spreads, Backspreads, Straps & Strips
# ============================================================================

def _ratio(strategy, single_key: str, double_key: str):
    """One position of qty u and one of qty 2u, same kind; returns (shape, single, double, u)."""
    shape = _Shape(strategy)
    if not shape.matches(**{single_key: 1, double_key: 1}) or not shape.single_expiry:
        return None
    single, double = shape.one(single_key), shape.one(double_key)
    unit = _unit(single.qty, double.qty / 2.0)
    if unit is None:
        return None
    return shape, single, double, unit


def call_ratio_spread(strategy):
    matched = _ratio(strategy, "lc", "sc")
    if matched is None:
        return None
    shape, long_leg, short_leg, unit = matched
    k1 = long_leg.strike
    k2 = middle_short_strike(strategy, LegKind.CALL)
    if not k1 < k2:
        return None
    d = shape.per_unit(unit)
    if d > 0:
        prices = [k1 + d, 2 * k2 - k1 - d]
    else:
        prices = [2 * k2 - k1 - d]
    return _exact(strategy, StrategyTag.CALL_RATIO_SPREAD, prices,
                  longStrike=k1, shortStrike=k2, netPerUnit=d)


def call_backspread(strategy):
    matched = _ratio(strategy, "sc", "lc")
    if matched is None:
        return None
    shape, short_leg, long_leg, unit = matched
    k1, k2 = short_leg.strike, long_leg.strike
    if not k1 < k2:
        return None
    d = shape.per_unit(unit)
    if d < 0:
        prices = [k1 - d, 2 * k2 - k1 + d]
    else:
        prices = [2 * k2 - k1 + d]
    return _exact(strategy, StrategyTag.CALL_BACKSPREAD, prices,
                  shortStrike=k1, longStrike=k2, netPerUnit=d)


def put_ratio_spread(strategy):
    matched = _ratio(strategy, "lp", "sp")
    if matched is None:
        return None
    shape, long_leg, short_leg, unit = matched
    k1 = middle_short_strike(strategy, LegKind.PUT)
    k2 = long_leg.strike
    if not k1 < k2:
        return None
    d = shape.per_unit(unit)
    if d > 0:
        prices = [2 * k1 - k2 + d, k2 - d]
    else:
        prices = [2 * k1 - k2 + d]
    return _exact(strategy, StrategyTag.PUT_RATIO_SPREAD, prices,
                  shortStrike=k1, longStrike=k2, netPerUnit=d)


def put_backspread(strategy):
    matched = _ratio(strategy, "sp", "lp")
    if matched is None:
        return None
    shape, short_leg, long_leg, unit = matched
    k1, k2 = long_leg.strike, short_leg.strike
    if not k1 < k2:
        return None
    d = shape.per_unit(unit)
    if d < 0:
        prices = [2 * k1 - k2 - d, k2 + d]
    else:
        prices = [2 * k1 - k2 - d]
    return _exact(strategy, StrategyTag.PUT_BACKSPREAD, prices,
                  longStrike=k1, shortStrike=k2, netPerUnit=d)


STRAP_STRIKE_TOLERANCE = 0.01


def _strap_like(strategy, tag: StrategyTag, calls_per_put: float):
    shape = _Shape(strategy)
    if shape.stocks or not shape.single_expiry:
        return None
    if shape.groups["sc"] or shape.groups["sp"]:
        return None
    calls, puts = shape.groups["lc"], shape.groups["lp"]
    if not calls or not puts:
        return None

    call_qty = sum(p.qty for p in calls)
    put_qty = sum(p.qty for p in puts)
    if calls_per_put >= 1:
        unit = _unit(put_qty, call_qty / calls_per_put)
    else:
        unit = _unit(call_qty, put_qty * calls_per_put)
    if unit is None:
        return None

    strikes = [p.strike for p in shape.positions]
    k = sum(p.strike * p.qty for p in shape.positions) / (call_qty + put_qty)
    if any(abs(s - k) / k > STRAP_STRIKE_TOLERANCE for s in strikes):
        return None

    d = shape.per_unit(unit)
    if calls_per_put >= 1:
        prices = [k - d, k + d / 2.0]
    else:
        prices = [k - d / 2.0, k + d]

    if len(set(strikes)) == 1:
        return _exact(strategy, tag, prices, strike=k, debit=d)
    return _approx(strategy, tag, prices, strike=k, debit=d)


def strap(strategy):
    return _strap_like(strategy, StrategyTag.STRAP, 2.0)


def strip(strategy):
    return _strap_like(strategy, StrategyTag.STRIP, 0.5)


# ============================================================================
# Calendars & Diagonals
# ============================================================================

def _time_spread(strategy, kind: LegKind):
    """Long and short of one kind at different expiries, equal qty."""
    shape = _Shape(strategy)
    long_key, short_key = ("lc", "sc") if kind == LegKind.CALL else ("lp", "sp")
    if not shape.matches(**{long_key: 1, short_key: 1}):
        return None
    long_leg, short_leg = shape.one(long_key), shape.one(short_key)
    if len(long_leg.expiries) != 1 or len(short_leg.expiries) != 1:
        return None
    if long_leg.expiries == short_leg.expiries:
        return None
    unit = _unit(long_leg.qty, short_leg.qty)
    if unit is None:
        return None
    return shape, long_leg, short_leg, unit


def call_calendar_spread(strategy):
    matched = _time_spread(strategy, LegKind.CALL)
    if matched is None:
        return None
    shape, long_leg, short_leg, unit = matched
    if not _close(long_leg.strike, short_leg.strike):
        return None
    d = shape.per_unit(unit)
    return _approx(strategy, StrategyTag.CALL_CALENDAR_SPREAD, [short_leg.strike + d],
                   strike=short_leg.strike, debit=d)


def put_calendar_spread(strategy):
    matched = _time_spread(strategy, LegKind.PUT)
    if matched is None:
        return None
    shape, long_leg, short_leg, unit = matched
    if not _close(long_leg.strike, short_leg.strike):
        return None
    d = shape.per_unit(unit)
    return _approx(strategy, StrategyTag.PUT_CALENDAR_SPREAD, [short_leg.strike - d],
                   strike=short_leg.strike, debit=d)


def call_diagonal_spread(strategy):
    matched = _time_spread(strategy, LegKind.CALL)
    if matched is None:
        return None
    shape, long_leg, short_leg, unit = matched
    if _close(long_leg.strike, short_leg.strike):
        return None
    k = middle_short_strike(strategy, LegKind.CALL)
    d = shape.per_unit(unit)
    return _approx(strategy, StrategyTag.CALL_DIAGONAL_SPREAD, [k + d],
                   shortStrike=k, longStrike=long_leg.strike, debit=d)


def put_diagonal_spread(strategy):
    matched = _time_spread(strategy, LegKind.PUT)
    if matched is None:
        return None
    shape, long_leg, short_leg, unit = matched
    if _close(long_leg.strike, short_leg.strike):
        return None
    k = middle_short_strike(strategy, LegKind.PUT)
    d = shape.per_unit(unit)
    return _approx(strategy, StrategyTag.PUT_DIAGONAL_SPREAD, [k - d],
                   shortStrike=k, longStrike=long_leg.strike, debit=d)


# ============================================================================
# Boxes
# ============================================================================

def _box(strategy, tag: StrategyTag, long_box: bool):
    matched = _four_wing(strategy)
    if matched is None:
        return None
    shape, lp, sp, sc, lc, unit = matched
    if long_box:
        # bull call K1/K2 + bear put K1/K2
        ok = _close(lc.strike, sp.strike) and _close(sc.strike, lp.strike) and lc.strike < sc.strike
    else:
        ok = _close(sc.strike, lp.strike) and _close(lc.strike, sp.strike) and sc.strike < lc.strike
    if not ok:
        return None
    low, high = sorted((lc.strike, sc.strike))
    return _fixed(strategy, tag, lowerStrike=low, upperStrike=high)


def long_box_spread(strategy):
    return _box(strategy, StrategyTag.LONG_BOX_SPREAD, True)


def short_box_spread(strategy):
    return _box(strategy, StrategyTag.SHORT_BOX_SPREAD, False)


# ============================================================================
# Registry
# ============================================================================

Formula = Callable[[NormalizedStrategy], Optional[BreakEvenResult]]

FORMULAS: Dict[StrategyTag, Formula] = {
    StrategyTag.LONG_CALL: long_call,
    StrategyTag.SHORT_CALL: short_call,
    StrategyTag.LONG_PUT: long_put,
    StrategyTag.SHORT_PUT: short_put,
    StrategyTag.LEAPS_CALL: leaps_call,
    StrategyTag.LEAPS_PUT: leaps_put,
    StrategyTag.PROTECTIVE_PUT: protective_put,
    StrategyTag.COVERED_CALL: covered_call,
    StrategyTag.COVERED_PUT: covered_put,
    StrategyTag.COLLAR: collar,
    StrategyTag.BULL_CALL_SPREAD: bull_call_spread,
    StrategyTag.BEAR_CALL_SPREAD: bear_call_spread,
    StrategyTag.BULL_PUT_SPREAD: bull_put_spread,
    StrategyTag.BEAR_PUT_SPREAD: bear_put_spread,
    StrategyTag.LONG_STRADDLE: long_straddle,
    StrategyTag.SHORT_STRADDLE: short_straddle,
    StrategyTag.LONG_STRANGLE: long_strangle,
    StrategyTag.SHORT_STRANGLE: short_strangle,
    StrategyTag.IRON_CONDOR: iron_condor,
    StrategyTag.REVERSE_CONDOR: reverse_condor,
    StrategyTag.IRON_BUTTERFLY: iron_butterfly,
    StrategyTag.REVERSE_IRON_BUTTERFLY: reverse_iron_butterfly,
    StrategyTag.CALL_BUTTERFLY: call_butterfly,
    StrategyTag.PUT_BUTTERFLY: put_butterfly,
    StrategyTag.REVERSE_BUTTERFLY: reverse_butterfly,
    StrategyTag.CALL_RATIO_SPREAD: call_ratio_spread,
    StrategyTag.CALL_BACKSPREAD: call_backspread,
    StrategyTag.PUT_RATIO_SPREAD: put_ratio_spread,
    StrategyTag.PUT_BACKSPREAD: put_backspread,
    StrategyTag.STRAP: strap,
    StrategyTag.STRIP: strip,
    StrategyTag.CALL_CALENDAR_SPREAD: call_calendar_spread,
    StrategyTag.PUT_CALENDAR_SPREAD: put_calendar_spread,
    StrategyTag.CALL_DIAGONAL_SPREAD: call_diagonal_spread,
    StrategyTag.PUT_DIAGONAL_SPREAD: put_diagonal_spread,
    StrategyTag.LONG_BOX_SPREAD: long_box_spread,
    StrategyTag.SHORT_BOX_SPREAD: short_box_spread,
    StrategyTag.REVERSAL: reversal,
    StrategyTag.CONVERSION: conversion,
}


def try_formula(tag: StrategyTag, strategy: NormalizedStrategy) -> Optional[BreakEvenResult]:
    """Run one formula; None when its pattern does not match."""
    return FORMULAS[tag](strategy)
