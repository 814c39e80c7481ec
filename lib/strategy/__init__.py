"""
Option Strategy Engine

Break-even prices, probability of profit, Black-Scholes premiums and greeks,
simulated terminal-price distributions and risk metrics for multi-leg option
strategies.

Example usage:
    from lib.strategy import normalize_legs, compute_break_evens, probability_of_profit

    legs = [
        {"type": "put", "side": "short", "strike": 95, "premium": 3},
        {"type": "call", "side": "short", "strike": 105, "premium": 4},
    ]
    result = compute_break_evens(legs)
    print(result.strategy, result.break_evens)   # short_strangle [88.0, 112.0]

    pop = probability_of_profit(legs, spot=100, sigma=0.25, t=30 / 365)
    print(pop.probability, pop.region)
"""

from .legs import (
    LegKind,
    Side,
    OptionLeg,
    StockLeg,
    NormalizedStrategy,
    normalize_legs,
)
from .payoff import payoff_at, payoff_many, build_payoff_curve, payoff_extremes
from .numeric import find_break_evens
from .catalog import StrategyTag, Method, BreakEvenResult
from .classifier import compute_break_evens, infer_strategy, normalize_strategy_key
from .pricing import (
    Greeks,
    black_scholes_price,
    black_scholes_greeks,
    implied_volatility,
    fill_premiums,
    position_greeks,
    years_from_days,
)
from .probability import Region, PopResult, probability_of_profit, gbm_interval
from .montecarlo import (
    SimulationResult,
    SimulationCancelled,
    simulate_terminal_prices,
    simulate_terminal_prices_async,
    simulate_parallel,
    monte_carlo_pop,
)
from .risk import RiskSummary, compute_risk_summary
from .config import EngineConfig, get_engine_config, load_engine_config

__all__ = [
    'LegKind',
    'Side',
    'OptionLeg',
    'StockLeg',
    'NormalizedStrategy',
    'normalize_legs',
    'payoff_at',
    'payoff_many',
    'build_payoff_curve',
    'payoff_extremes',
    'find_break_evens',
    'StrategyTag',
    'Method',
    'BreakEvenResult',
    'compute_break_evens',
    'infer_strategy',
    'normalize_strategy_key',
    'Greeks',
    'black_scholes_price',
    'black_scholes_greeks',
    'implied_volatility',
    'fill_premiums',
    'position_greeks',
    'years_from_days',
    'Region',
    'PopResult',
    'probability_of_profit',
    'gbm_interval',
    'SimulationResult',
    'SimulationCancelled',
    'simulate_terminal_prices',
    'simulate_terminal_prices_async',
    'simulate_parallel',
    'monte_carlo_pop',
    'RiskSummary',
    'compute_risk_summary',
    'EngineConfig',
    'get_engine_config',
    'load_engine_config',
]
