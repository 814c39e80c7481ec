"""
Leg Normalizer

Canonicalizes loosely-shaped leg descriptions into typed, immutable records.
Malformed entries are filtered, never raised on.

Usage:
    from lib.strategy.legs import normalize_legs

    strategy = normalize_legs([
        {"type": "call", "side": "long", "strike": 100, "premium": 5},
        {"type": "call", "side": "short", "strike": 110, "premium": 2},
    ])
    strategy.net_premium   # 3.0 (debit)
"""

import math
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from .config import get_engine_config

logger = logging.getLogger(__name__)

DEFAULT_MULTIPLIER = 100.0


# ============================================================================
# Leg Types
# ============================================================================

class LegKind(str, Enum):
    CALL = "call"
    PUT = "put"
    STOCK = "stock"


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"


@dataclass(frozen=True)
class OptionLeg:
    """
    A call or put position.

    Attributes:
        kind: LegKind.CALL or LegKind.PUT
        side: Long or short
        strike: Finite, positive strike
        premium: Per-share premium magnitude (sign comes from side)
        qty: Contract count, >= 0
        multiplier: Contract size, display only
        expiry: Optional expiration label (used to tell calendars from verticals)
        premium_known: False when the premium was missing and must be priced
    """
    kind: LegKind
    side: Side
    strike: float
    premium: float = 0.0
    qty: float = 1.0
    multiplier: float = DEFAULT_MULTIPLIER
    expiry: Optional[str] = None
    premium_known: bool = True

    @property
    def is_long(self) -> bool:
        return self.side == Side.LONG

    @property
    def sign(self) -> int:
        return 1 if self.is_long else -1


@dataclass(frozen=True)
class StockLeg:
    """Underlying shares, per-share units matching one option per unit of qty."""
    side: Side
    basis: float = 0.0
    qty: float = 1.0
    multiplier: float = DEFAULT_MULTIPLIER
    basis_known: bool = True

    kind = LegKind.STOCK

    @property
    def is_long(self) -> bool:
        return self.side == Side.LONG

    @property
    def sign(self) -> int:
        return 1 if self.is_long else -1


Leg = Union[OptionLeg, StockLeg]


def net_option_premium(legs: Iterable[Leg]) -> float:
    """Sum of signed option premiums times qty (debit positive)."""
    return sum(
        leg.sign * leg.premium * leg.qty
        for leg in legs
        if isinstance(leg, OptionLeg)
    )


@dataclass(frozen=True)
class NormalizedStrategy:
    """Canonical leg set plus derived strike list and net premium."""
    legs: Tuple[Leg, ...] = ()
    strikes: Tuple[float, ...] = ()
    net_premium: float = 0.0

    @classmethod
    def from_legs(cls, legs: Iterable[Leg]) -> "NormalizedStrategy":
        legs = tuple(legs)
        strikes = tuple(sorted({leg.strike for leg in legs if isinstance(leg, OptionLeg)}))
        return cls(legs=legs, strikes=strikes, net_premium=net_option_premium(legs))

    @property
    def is_empty(self) -> bool:
        return not self.legs

    @property
    def options(self) -> List[OptionLeg]:
        return [leg for leg in self.legs if isinstance(leg, OptionLeg)]

    @property
    def stocks(self) -> List[StockLeg]:
        return [leg for leg in self.legs if isinstance(leg, StockLeg)]

    @property
    def sign(self) -> str:
        """'debit', 'credit' or 'even', from net option premium only."""
        if self.net_premium > 0:
            return "debit"
        if self.net_premium < 0:
            return "credit"
        return "even"

    @property
    def net_premium_dollars(self) -> float:
        """Net option premium at contract scale (premium x qty x multiplier)."""
        return sum(
            leg.sign * leg.premium * leg.qty * leg.multiplier
            for leg in self.options
        )

    @property
    def has_unknown_premiums(self) -> bool:
        for leg in self.legs:
            if isinstance(leg, OptionLeg) and not leg.premium_known:
                return True
            if isinstance(leg, StockLeg) and not leg.basis_known:
                return True
        return False

    def legs_of(self, kind: LegKind, side: Optional[Side] = None) -> List[Leg]:
        return [
            leg for leg in self.legs
            if leg.kind == kind and (side is None or leg.side == side)
        ]


# ============================================================================
# Coercion Helpers
# ============================================================================

KIND_ALIASES = {
    "call": LegKind.CALL,
    "c": LegKind.CALL,
    "put": LegKind.PUT,
    "p": LegKind.PUT,
    "stock": LegKind.STOCK,
    "shares": LegKind.STOCK,
    "share": LegKind.STOCK,
    "underlying": LegKind.STOCK,
    "equity": LegKind.STOCK,
}

SIDE_ALIASES = {
    "long": Side.LONG,
    "buy": Side.LONG,
    "b": Side.LONG,
    "l": Side.LONG,
    "short": Side.SHORT,
    "sell": Side.SHORT,
    "s": Side.SHORT,
}


def _finite_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first_number(entry: Mapping[str, Any], keys) -> Optional[float]:
    for key in keys:
        number = _finite_or_none(entry.get(key))
        if number is not None:
            return number
    return None


def _coerce_kind(value: Any) -> Optional[LegKind]:
    if isinstance(value, LegKind):
        return value
    if not isinstance(value, str):
        return None
    return KIND_ALIASES.get(value.strip().lower())


def _coerce_side(value: Any) -> Optional[Side]:
    if value is None:
        return Side.LONG
    if isinstance(value, Side):
        return value
    if not isinstance(value, str):
        return None
    return SIDE_ALIASES.get(value.strip().lower())


def _coerce_qty(value: Any) -> float:
    number = _finite_or_none(value)
    if number is None:
        return 1.0
    return max(0.0, number)


def _normalize_entry(entry: Mapping[str, Any]) -> Optional[Leg]:
    kind = _coerce_kind(entry.get("type", entry.get("kind")))
    if kind is None:
        logger.debug(f"Dropping leg with unknown kind: {entry!r}")
        return None

    side = _coerce_side(entry.get("side"))
    if side is None:
        logger.debug(f"Dropping leg with unknown side: {entry!r}")
        return None

    qty = _coerce_qty(entry.get("qty", entry.get("quantity")))
    multiplier = _finite_or_none(entry.get("multiplier"))
    if multiplier is None or multiplier <= 0:
        multiplier = get_engine_config().pricing.contract_multiplier

    if kind == LegKind.STOCK:
        basis = _first_number(entry, ("price", "premium", "basis"))
        return StockLeg(
            side=side,
            basis=abs(basis) if basis is not None else 0.0,
            qty=qty,
            multiplier=multiplier,
            basis_known=basis is not None,
        )

    strike = _finite_or_none(entry.get("strike"))
    if strike is None or strike <= 0:
        logger.debug(f"Dropping option leg without a valid strike: {entry!r}")
        return None

    premium = _finite_or_none(entry.get("premium"))
    expiry = entry.get("expiry", entry.get("expiration"))
    return OptionLeg(
        kind=kind,
        side=side,
        strike=strike,
        premium=abs(premium) if premium is not None else 0.0,
        qty=qty,
        multiplier=multiplier,
        expiry=str(expiry) if expiry is not None else None,
        premium_known=premium is not None,
    )


# ============================================================================
# Public API
# ============================================================================

def normalize_legs(raw_legs: Optional[Iterable[Any]]) -> NormalizedStrategy:
    """
    Build a NormalizedStrategy from raw leg descriptions.

    Accepts mappings shaped {type|kind, side, strike, premium, qty, price,
    expiry, multiplier} and already-typed OptionLeg/StockLeg records.
    Unknown kinds/sides, option legs without a finite positive strike and
    non-mapping entries are dropped. Missing premiums default to 0 and are
    flagged as unknown so the pricer can fill them.

    Args:
        raw_legs: Iterable of leg descriptions (None is treated as empty)

    Returns:
        NormalizedStrategy, possibly empty
    """
    legs: List[Leg] = []
    for entry in raw_legs or ():
        if isinstance(entry, OptionLeg):
            if math.isfinite(entry.strike) and entry.strike > 0:
                legs.append(replace(entry, qty=max(0.0, entry.qty)))
            continue
        if isinstance(entry, StockLeg):
            legs.append(replace(entry, qty=max(0.0, entry.qty)))
            continue
        if not isinstance(entry, Mapping):
            logger.debug(f"Skipping non-mapping leg entry: {entry!r}")
            continue
        leg = _normalize_entry(entry)
        if leg is not None:
            legs.append(leg)

    return NormalizedStrategy.from_legs(legs)


def as_strategy(legs_or_strategy: Any) -> NormalizedStrategy:
    """Pass NormalizedStrategy through, normalize anything else."""
    if isinstance(legs_or_strategy, NormalizedStrategy):
        return legs_or_strategy
    return normalize_legs(legs_or_strategy)
