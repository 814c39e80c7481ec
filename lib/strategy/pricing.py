"""
Option Pricer

Black-Scholes with a continuous dividend yield, closed-form greeks, implied
volatility and premium filling for legs whose premium was not supplied.

Invalid inputs (non-positive spot/strike, negative time or volatility,
non-finite values) return None rather than raising.

Usage:
    from lib.strategy.pricing import black_scholes_price, black_scholes_greeks

    price = black_scholes_price("call", spot=100, strike=105, t=0.5, sigma=0.25, r=0.04)
    greeks = black_scholes_greeks("put", 100, 95, 0.25, 0.3)
    greeks.theta_per_day
"""

import math
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from scipy.optimize import brentq
from scipy.stats import norm

from .config import get_engine_config
from .legs import LegKind, NormalizedStrategy, OptionLeg, StockLeg

logger = logging.getLogger(__name__)


# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class Greeks:
    """
    Black-Scholes sensitivities for one long option (per share).

    Attributes:
        delta: dV/dS
        gamma: d2V/dS2
        theta: dV/dt per year (calendar time passing, usually negative)
        vega: dV/dsigma per 1.00 of volatility
        rho: dV/dr per 1.00 of rate
    """
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float

    @property
    def theta_per_day(self) -> float:
        return self.theta / get_engine_config().pricing.days_per_year

    @property
    def vega_per_point(self) -> float:
        """Vega per one volatility point (1%)."""
        return self.vega / 100.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "delta": self.delta,
            "gamma": self.gamma,
            "theta": self.theta,
            "thetaPerDay": self.theta_per_day,
            "vega": self.vega,
            "rho": self.rho,
        }


def years_from_days(days: float) -> float:
    """Calendar days to year fraction."""
    return days / get_engine_config().pricing.days_per_year


def _coerce_kind(kind: Any) -> Optional[LegKind]:
    if isinstance(kind, LegKind):
        return kind if kind != LegKind.STOCK else None
    if isinstance(kind, str):
        value = kind.strip().lower()
        if value in ("call", "c"):
            return LegKind.CALL
        if value in ("put", "p"):
            return LegKind.PUT
    return None


def _valid_inputs(spot, strike, t, sigma, r, q) -> bool:
    values = (spot, strike, t, sigma, r, q)
    if any(v is None for v in values):
        return False
    if not all(math.isfinite(v) for v in values):
        return False
    return spot > 0 and strike > 0 and t >= 0 and sigma >= 0


def _d1_d2(spot, strike, t, sigma, r, q):
    vol_sqrt_t = sigma * math.sqrt(t)
    d1 = (math.log(spot / strike) + (r - q + 0.5 * sigma ** 2) * t) / vol_sqrt_t
    return d1, d1 - vol_sqrt_t


# ============================================================================
# Pricing
# ============================================================================

def black_scholes_price(
    kind: Any,
    spot: float,
    strike: float,
    t: float,
    sigma: float,
    r: float = 0.0,
    q: float = 0.0,
) -> Optional[float]:
    """
    Black-Scholes premium with continuous yield.

    With sigma == 0 or t == 0 the value is the discounted intrinsic value
    against the forward S*exp((r-q)t), which is continuous as t -> 0.

    Returns:
        Non-negative premium, or None when inputs are not computable
    """
    option = _coerce_kind(kind)
    if option is None or not _valid_inputs(spot, strike, t, sigma, r, q):
        return None

    disc_r = math.exp(-r * t)
    disc_q = math.exp(-q * t)

    if sigma == 0 or t == 0:
        forward = spot * math.exp((r - q) * t)
        if option == LegKind.CALL:
            return disc_r * max(forward - strike, 0.0)
        return disc_r * max(strike - forward, 0.0)

    d1, d2 = _d1_d2(spot, strike, t, sigma, r, q)
    if option == LegKind.CALL:
        price = spot * disc_q * norm.cdf(d1) - strike * disc_r * norm.cdf(d2)
    else:
        price = strike * disc_r * norm.cdf(-d2) - spot * disc_q * norm.cdf(-d1)
    return max(price, 0.0)


def black_scholes_greeks(
    kind: Any,
    spot: float,
    strike: float,
    t: float,
    sigma: float,
    r: float = 0.0,
    q: float = 0.0,
) -> Optional[Greeks]:
    """Closed-form greeks; theta per year. None when inputs are not computable."""
    option = _coerce_kind(kind)
    if option is None or not _valid_inputs(spot, strike, t, sigma, r, q):
        return None

    disc_r = math.exp(-r * t)
    disc_q = math.exp(-q * t)

    if sigma == 0 or t == 0:
        # Derivatives of the discounted forward intrinsic value
        forward = spot * math.exp((r - q) * t)
        itm = forward > strike if option == LegKind.CALL else forward < strike
        if not itm:
            return Greeks(delta=0.0, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)
        if option == LegKind.CALL:
            return Greeks(
                delta=disc_q,
                gamma=0.0,
                theta=q * spot * disc_q - r * strike * disc_r,
                vega=0.0,
                rho=strike * t * disc_r,
            )
        return Greeks(
            delta=-disc_q,
            gamma=0.0,
            theta=r * strike * disc_r - q * spot * disc_q,
            vega=0.0,
            rho=-strike * t * disc_r,
        )

    sqrt_t = math.sqrt(t)
    d1, d2 = _d1_d2(spot, strike, t, sigma, r, q)
    pdf_d1 = norm.pdf(d1)

    gamma = disc_q * pdf_d1 / (spot * sigma * sqrt_t)
    vega = spot * disc_q * pdf_d1 * sqrt_t
    decay = -spot * disc_q * pdf_d1 * sigma / (2 * sqrt_t)

    if option == LegKind.CALL:
        delta = disc_q * norm.cdf(d1)
        theta = decay - r * strike * disc_r * norm.cdf(d2) + q * spot * disc_q * norm.cdf(d1)
        rho = strike * t * disc_r * norm.cdf(d2)
    else:
        delta = -disc_q * norm.cdf(-d1)
        theta = decay + r * strike * disc_r * norm.cdf(-d2) - q * spot * disc_q * norm.cdf(-d1)
        rho = -strike * t * disc_r * norm.cdf(-d2)

    return Greeks(delta=delta, gamma=gamma, theta=theta, vega=vega, rho=rho)


def implied_volatility(
    kind: Any,
    price: float,
    spot: float,
    strike: float,
    t: float,
    r: float = 0.0,
    q: float = 0.0,
) -> Optional[float]:
    """
    Volatility that reproduces `price`.

    Returns None when the price sits outside the no-arbitrage band
    [intrinsic, upper bound] or the inputs are not computable.
    """
    cfg = get_engine_config().pricing
    option = _coerce_kind(kind)
    if option is None or price is None or not math.isfinite(price):
        return None
    if not _valid_inputs(spot, strike, t, 0.0, r, q) or t <= 0:
        return None

    low = black_scholes_price(option, spot, strike, t, cfg.iv_lower, r, q)
    high = black_scholes_price(option, spot, strike, t, cfg.iv_upper, r, q)
    if low is None or high is None or not low <= price <= high:
        logger.debug(f"Price {price} outside [{low}, {high}] for {option.value} K={strike}")
        return None
    if price == low:
        return cfg.iv_lower

    def objective(sigma: float) -> float:
        return black_scholes_price(option, spot, strike, t, sigma, r, q) - price

    return float(brentq(objective, cfg.iv_lower, cfg.iv_upper, xtol=1e-10))


# ============================================================================
# Strategy-Level Helpers
# ============================================================================

def fill_premiums(
    strategy: NormalizedStrategy,
    spot: float,
    sigma: float,
    t: float,
    r: float = 0.0,
    q: float = 0.0,
) -> NormalizedStrategy:
    """
    Price every leg whose premium is unknown.

    Option legs get the Black-Scholes premium; stock legs without a basis
    take the spot. Legs that cannot be priced are kept unchanged.
    """
    legs = []
    for leg in strategy.legs:
        if isinstance(leg, OptionLeg) and not leg.premium_known:
            premium = black_scholes_price(leg.kind, spot, leg.strike, t, sigma, r, q)
            if premium is not None:
                leg = replace(leg, premium=premium, premium_known=True)
        elif isinstance(leg, StockLeg) and not leg.basis_known and spot and spot > 0:
            leg = replace(leg, basis=float(spot), basis_known=True)
        legs.append(leg)
    return NormalizedStrategy.from_legs(legs)


def position_greeks(
    strategy: NormalizedStrategy,
    spot: float,
    sigma: float,
    t: float,
    r: float = 0.0,
    q: float = 0.0,
) -> Optional[Greeks]:
    """Signed, quantity-weighted greeks for the whole strategy (per share)."""
    totals = dict(delta=0.0, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)
    for leg in strategy.legs:
        if isinstance(leg, StockLeg):
            totals["delta"] += leg.sign * leg.qty
            continue
        greeks = black_scholes_greeks(leg.kind, spot, leg.strike, t, sigma, r, q)
        if greeks is None:
            return None
        weight = leg.sign * leg.qty
        for name in totals:
            totals[name] += weight * getattr(greeks, name)
    return Greeks(**totals)
