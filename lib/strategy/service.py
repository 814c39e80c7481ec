"""
Request-shaped entry points for the strategy engine.

Handlers accept plain dict payloads, the shape request handlers receive:

    {
        "legs": [{"type": "call", "side": "long", "strike": 100, "premium": 5}, ...],
        "strategy": "bull_call_spread",   # optional
        "spot": 100, "sigma": 0.25,
        "T": 0.5,                         # or "days": 182
        "riskFree": 0.04, "dividendYield": 0.0,   # or "r" / "q"
        "mu": 0.08                        # optional drift, defaults to r - q
    }

and return JSON-friendly dicts. Malformed payloads produce an error dict,
never an exception.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .classifier import compute_break_evens, infer_strategy
from .legs import normalize_legs
from .montecarlo import monte_carlo_pop, simulate_terminal_prices
from .payoff import build_payoff_curve
from .pricing import fill_premiums, position_greeks, years_from_days
from .probability import PopResult, validate_market_inputs
from .risk import compute_risk_summary, realistic_extremes

logger = logging.getLogger(__name__)


# ============================================================================
# Request Models
# ============================================================================

class MarketInputs(BaseModel):
    """Market scalars shared by every request."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    spot: Optional[float] = None
    sigma: Optional[float] = None
    T: Optional[float] = None
    days: Optional[float] = None
    riskFree: float = Field(default=0.0, validation_alias=AliasChoices("riskFree", "r"))
    dividendYield: float = Field(default=0.0, validation_alias=AliasChoices("dividendYield", "q"))
    mu: Optional[float] = Field(default=None, validation_alias=AliasChoices("mu", "drift"))

    @property
    def years(self) -> Optional[float]:
        if self.T is not None:
            return self.T
        if self.days is not None:
            return years_from_days(self.days)
        return None

    def market_problem(self) -> Optional[str]:
        drift = self.riskFree - self.dividendYield if self.mu is None else self.mu
        return validate_market_inputs(self.spot, self.sigma, self.years, drift)


class StrategyRequest(MarketInputs):
    """Legs are kept raw; the leg normalizer filters malformed entries."""
    legs: List[Any] = Field(default_factory=list)
    strategy: Optional[str] = None
    curvePoints: int = Field(default=0, ge=0, le=2000)


class SimulationRequest(MarketInputs):
    legs: List[Any] = Field(default_factory=list)
    paths: Optional[int] = Field(default=None, ge=1)
    bins: Optional[int] = Field(default=None, ge=1)
    batchSize: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = None
    domain: Optional[List[float]] = Field(default=None, min_length=2, max_length=2)


# ============================================================================
# Response Helpers
# ============================================================================

def build_error_response(
    error_code: str,
    error_message: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Structured error payload."""
    return {
        "success": False,
        "error": {
            "code": str(error_code),
            "message": str(error_message),
            "details": details if details else None,
        },
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
    }


def _parse(model, payload: Any):
    if not isinstance(payload, Mapping):
        return None, build_error_response("INVALID_PAYLOAD", "Payload must be an object")
    try:
        return model.model_validate(dict(payload)), None
    except ValidationError as e:
        logger.debug(f"Rejected {model.__name__}: {e}")
        return None, build_error_response(
            "VALIDATION_ERROR",
            "Invalid request payload",
            [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )


# ============================================================================
# Handlers
# ============================================================================

def solve_break_even(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Break-Even Solver: {"be": [...], "meta": {"strategy", "method", ...}}."""
    request, error = _parse(StrategyRequest, payload)
    if error:
        return error

    strategy = normalize_legs(request.legs)
    priced = 0
    if strategy.has_unknown_premiums and request.market_problem() is None:
        priced = sum(1 for leg in strategy.options if not leg.premium_known)
        priced += sum(1 for leg in strategy.stocks if not leg.basis_known)
        strategy = fill_premiums(
            strategy, request.spot, request.sigma, request.years,
            request.riskFree, request.dividendYield,
        )

    result = compute_break_evens(strategy, request.strategy, spot=request.spot)
    response = {"success": True, **result.to_response()}
    if priced:
        response["meta"]["pricedLegs"] = priced
    return response


def analyze_strategy(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Break-evens, probability of profit, risk metrics and position greeks.

    Premium-less legs are priced with Black-Scholes when market inputs are
    usable. Without usable market inputs the break-evens are still returned
    and PoP/risk carry the reason they are unavailable.
    """
    request, error = _parse(StrategyRequest, payload)
    if error:
        return error

    strategy = normalize_legs(request.legs)
    problem = request.market_problem()
    t = request.years
    r, q = request.riskFree, request.dividendYield

    if strategy.has_unknown_premiums and problem is None:
        strategy = fill_premiums(strategy, request.spot, request.sigma, t, r, q)

    be = compute_break_evens(strategy, request.strategy, spot=request.spot)
    inferred = infer_strategy(strategy)
    response: Dict[str, Any] = {"success": True, **be.to_response()}
    response["meta"]["inferred"] = inferred.value if inferred else None
    response["meta"]["netPremium"] = strategy.net_premium
    response["meta"]["netPremiumDollars"] = strategy.net_premium_dollars
    response["meta"]["sign"] = strategy.sign

    if problem is None:
        risk = compute_risk_summary(
            strategy, request.spot, request.sigma, t,
            drift=request.mu, r=r, q=q, break_evens=be.break_evens,
        )
        greeks = position_greeks(strategy, request.spot, request.sigma, t, r, q)
        response["pop"] = risk.pop.to_dict() if risk.pop else None
        response["risk"] = risk.to_dict()
        response["greeks"] = greeks.to_dict() if greeks else None
    else:
        reason = "no legs" if strategy.is_empty else problem
        response["pop"] = PopResult(probability=None, break_evens_used=be.break_evens, reason=reason).to_dict()
        response["risk"] = None
        response["greeks"] = None

    if request.curvePoints:
        response["payoffCurve"] = build_payoff_curve(
            strategy, num_points=request.curvePoints, spot=request.spot,
        )
    return response


def simulate_distribution(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Monte Carlo terminal-price histogram.

    When legs are supplied the response also carries the simulated PoP /
    expected P&L and the max profit / max loss inside the 1st-99th
    percentile band.
    """
    request, error = _parse(SimulationRequest, payload)
    if error:
        return error

    result = simulate_terminal_prices(
        request.spot, request.sigma, request.years,
        drift=request.mu, r=request.riskFree, q=request.dividendYield,
        paths=request.paths, bins=request.bins,
        domain=tuple(request.domain) if request.domain else None,
        seed=request.seed, batch_size=request.batchSize,
    )
    response: Dict[str, Any] = {"success": True, "simulation": result.to_dict()}

    strategy = normalize_legs(request.legs)
    if not strategy.is_empty and result.reason is None:
        if strategy.has_unknown_premiums:
            strategy = fill_premiums(
                strategy, request.spot, request.sigma, request.years,
                request.riskFree, request.dividendYield,
            )
        mc = monte_carlo_pop(
            strategy, request.spot, request.sigma, request.years,
            drift=request.mu, r=request.riskFree, q=request.dividendYield,
            paths=request.paths, seed=request.seed, batch_size=request.batchSize,
        )
        extremes = realistic_extremes(strategy, result.quantiles)
        response["strategy"] = mc.to_dict()
        response["realistic"] = {
            "maxProfit": extremes.max_profit,
            "maxLoss": extremes.max_loss,
            "range": [result.quantiles.q01, result.quantiles.q99],
        }
    return response
