"""
Strategy Classifier

Resolves an explicit strategy key (with aliases) or infers the topology from
the legs, runs the matching closed-form formula and falls back to the numeric
finder when nothing matches.

Usage:
    from lib.strategy.classifier import compute_break_evens

    result = compute_break_evens(legs, strategy="bull call spread")
    result.break_evens        # [103.0]
    result.to_response()      # {"be": [103.0], "meta": {...}}
"""

import re
import logging
from typing import Any, Iterable, List, Optional

from .catalog import FORMULAS, BreakEvenResult, Method, StrategyTag, try_formula
from .legs import NormalizedStrategy, as_strategy
from .numeric import find_roots

logger = logging.getLogger(__name__)

UNKNOWN_STRATEGY = "unknown"


# ============================================================================
# Strategy Keys
# ============================================================================

STRATEGY_ALIASES = {
    # single legs
    "buy_call": StrategyTag.LONG_CALL,
    "call": StrategyTag.LONG_CALL,
    "buy_put": StrategyTag.LONG_PUT,
    "put": StrategyTag.LONG_PUT,
    "sell_call": StrategyTag.SHORT_CALL,
    "naked_call": StrategyTag.SHORT_CALL,
    "sell_put": StrategyTag.SHORT_PUT,
    "naked_put": StrategyTag.SHORT_PUT,
    "cash_secured_put": StrategyTag.SHORT_PUT,
    "leaps": StrategyTag.LEAPS_CALL,
    "long_leaps": StrategyTag.LEAPS_CALL,
    "long_leaps_call": StrategyTag.LEAPS_CALL,
    "long_leaps_put": StrategyTag.LEAPS_PUT,

    # verticals
    "call_debit_spread": StrategyTag.BULL_CALL_SPREAD,
    "call_credit_spread": StrategyTag.BEAR_CALL_SPREAD,
    "put_credit_spread": StrategyTag.BULL_PUT_SPREAD,
    "put_debit_spread": StrategyTag.BEAR_PUT_SPREAD,

    # condors & butterflies
    "long_iron_condor": StrategyTag.REVERSE_CONDOR,
    "reverse_iron_condor": StrategyTag.REVERSE_CONDOR,
    "long_iron_butterfly": StrategyTag.REVERSE_IRON_BUTTERFLY,
    "butterfly": StrategyTag.CALL_BUTTERFLY,
    "butterfly_call": StrategyTag.CALL_BUTTERFLY,
    "long_call_butterfly": StrategyTag.CALL_BUTTERFLY,
    "butterfly_put": StrategyTag.PUT_BUTTERFLY,
    "long_put_butterfly": StrategyTag.PUT_BUTTERFLY,
    "short_butterfly": StrategyTag.REVERSE_BUTTERFLY,

    # ratios
    "call_ratio": StrategyTag.CALL_RATIO_SPREAD,
    "ratio_call_spread": StrategyTag.CALL_RATIO_SPREAD,
    "put_ratio": StrategyTag.PUT_RATIO_SPREAD,
    "ratio_put_spread": StrategyTag.PUT_RATIO_SPREAD,
    "backspread_call": StrategyTag.CALL_BACKSPREAD,
    "call_ratio_backspread": StrategyTag.CALL_BACKSPREAD,
    "backspread_put": StrategyTag.PUT_BACKSPREAD,
    "put_ratio_backspread": StrategyTag.PUT_BACKSPREAD,

    # time spreads
    "call_calendar": StrategyTag.CALL_CALENDAR_SPREAD,
    "calendar_call": StrategyTag.CALL_CALENDAR_SPREAD,
    "calendar": StrategyTag.CALL_CALENDAR_SPREAD,
    "put_calendar": StrategyTag.PUT_CALENDAR_SPREAD,
    "calendar_put": StrategyTag.PUT_CALENDAR_SPREAD,
    "call_diagonal": StrategyTag.CALL_DIAGONAL_SPREAD,
    "diagonal_call": StrategyTag.CALL_DIAGONAL_SPREAD,
    "put_diagonal": StrategyTag.PUT_DIAGONAL_SPREAD,
    "diagonal_put": StrategyTag.PUT_DIAGONAL_SPREAD,

    # arbitrage structures
    "long_box": StrategyTag.LONG_BOX_SPREAD,
    "box_spread": StrategyTag.LONG_BOX_SPREAD,
    "short_box": StrategyTag.SHORT_BOX_SPREAD,
    "reverse_conversion": StrategyTag.REVERSAL,

    # stock combos
    "married_put": StrategyTag.PROTECTIVE_PUT,
    "buy_write": StrategyTag.COVERED_CALL,
}

# Keys with underscores removed ("shortstraddle", "ironcondor", ...)
_COMPACT_KEYS = {
    **{tag.value.replace("_", ""): tag for tag in StrategyTag},
    **{alias.replace("_", ""): tag for alias, tag in STRATEGY_ALIASES.items()},
}


def normalize_strategy_key(value: Any) -> Optional[StrategyTag]:
    """
    Map free-form strategy text to a StrategyTag.

    Lowercases, trims and turns spaces/hyphens into underscores, then tries
    the tag values, the alias table and finally the underscore-free form.

    Returns:
        StrategyTag, or None when unrecognized
    """
    if isinstance(value, StrategyTag):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    key = re.sub(r"[\s\-]+", "_", value.strip().lower())
    try:
        return StrategyTag(key)
    except ValueError:
        pass
    if key in STRATEGY_ALIASES:
        return STRATEGY_ALIASES[key]
    return _COMPACT_KEYS.get(key.replace("_", ""))


# ============================================================================
# Inference
# ============================================================================

# First match wins. LEAPS tags are display names only and never inferred.
INFERENCE_ORDER: List[StrategyTag] = [
    StrategyTag.LONG_CALL,
    StrategyTag.SHORT_CALL,
    StrategyTag.LONG_PUT,
    StrategyTag.SHORT_PUT,
    StrategyTag.PROTECTIVE_PUT,
    StrategyTag.COVERED_CALL,
    StrategyTag.COVERED_PUT,
    StrategyTag.COLLAR,
    StrategyTag.BULL_CALL_SPREAD,
    StrategyTag.BEAR_CALL_SPREAD,
    StrategyTag.BULL_PUT_SPREAD,
    StrategyTag.BEAR_PUT_SPREAD,
    StrategyTag.LONG_STRADDLE,
    StrategyTag.SHORT_STRADDLE,
    StrategyTag.LONG_STRANGLE,
    StrategyTag.SHORT_STRANGLE,
    StrategyTag.IRON_CONDOR,
    StrategyTag.IRON_BUTTERFLY,
    StrategyTag.REVERSE_CONDOR,
    StrategyTag.REVERSE_IRON_BUTTERFLY,
    StrategyTag.CALL_BUTTERFLY,
    StrategyTag.PUT_BUTTERFLY,
    StrategyTag.REVERSE_BUTTERFLY,
    StrategyTag.CALL_RATIO_SPREAD,
    StrategyTag.CALL_BACKSPREAD,
    StrategyTag.PUT_RATIO_SPREAD,
    StrategyTag.PUT_BACKSPREAD,
    StrategyTag.STRAP,
    StrategyTag.STRIP,
    StrategyTag.LONG_BOX_SPREAD,
    StrategyTag.SHORT_BOX_SPREAD,
    StrategyTag.REVERSAL,
    StrategyTag.CONVERSION,
    StrategyTag.CALL_CALENDAR_SPREAD,
    StrategyTag.PUT_CALENDAR_SPREAD,
    StrategyTag.CALL_DIAGONAL_SPREAD,
    StrategyTag.PUT_DIAGONAL_SPREAD,
]


def _candidates(requested: Optional[StrategyTag]) -> Iterable[StrategyTag]:
    if requested is not None:
        yield requested
    for tag in INFERENCE_ORDER:
        if tag != requested:
            yield tag


def _first_match(
    strategy: NormalizedStrategy,
    requested: Optional[StrategyTag] = None,
) -> Optional[BreakEvenResult]:
    for tag in _candidates(requested):
        result = try_formula(tag, strategy)
        if result is not None:
            return result
        if tag == requested:
            logger.debug(f"Requested strategy {tag.value} does not match legs, inferring")
    return None


def infer_strategy(legs_or_strategy: Any) -> Optional[StrategyTag]:
    """Topology-inferred strategy tag, or None when no catalog pattern fits."""
    strategy = as_strategy(legs_or_strategy)
    if strategy.is_empty:
        return None
    result = _first_match(strategy)
    return StrategyTag(result.strategy) if result else None


# ============================================================================
# Break-Even Solver
# ============================================================================

def compute_break_evens(
    legs_or_strategy: Any,
    strategy: Any = None,
    spot: Optional[float] = None,
    force_numeric: bool = False,
) -> BreakEvenResult:
    """
    Break-even prices for a leg set.

    Tries the explicit strategy first, then every catalog pattern in
    inference order, then the numeric finder. An empty leg set yields an
    empty numeric result with a reason; nothing here raises for a
    structurally valid leg set.

    Args:
        legs_or_strategy: Raw legs or a NormalizedStrategy
        strategy: Optional strategy key (free-form text or StrategyTag)
        spot: Reference price for the numeric search window when no strikes exist
        force_numeric: Skip closed forms (used to cross-check formulas)

    Returns:
        BreakEvenResult
    """
    normalized = as_strategy(legs_or_strategy)
    requested = normalize_strategy_key(strategy)

    if normalized.is_empty:
        return BreakEvenResult(
            break_evens=[],
            method=Method.NUMERIC_FALLBACK,
            strategy=requested.value if requested else UNKNOWN_STRATEGY,
            diagnostics={"reason": "no legs"},
        )

    if not force_numeric:
        result = _first_match(normalized, requested)
        if result is not None:
            if requested is not None and result.strategy != requested.value:
                result.diagnostics["requested"] = requested.value
            return result

    roots = find_roots(normalized, spot)
    label = requested.value if requested and force_numeric else UNKNOWN_STRATEGY
    if not force_numeric:
        logger.debug(f"No closed form for {len(normalized.legs)} leg(s), using numeric fallback")

    diagnostics = {
        "bounds": [round(roots.bounds[0], 6), round(roots.bounds[1], 6)],
        "netPremium": normalized.net_premium,
    }
    if requested is not None and not force_numeric:
        diagnostics["requested"] = requested.value

    return BreakEvenResult(
        break_evens=roots.roots,
        method=Method.NUMERIC_FALLBACK,
        strategy=label,
        diagnostics=diagnostics,
    )


__all__ = [
    "STRATEGY_ALIASES",
    "INFERENCE_ORDER",
    "normalize_strategy_key",
    "infer_strategy",
    "compute_break_evens",
    "FORMULAS",
]
