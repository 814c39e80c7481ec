"""
Monte Carlo Terminal-Price Simulator

Samples GBM terminal prices

    S_T = S0 * exp((mu - sigma^2/2) T + sigma sqrt(T) Z)

with Z drawn by Box-Muller from numpy uniforms, in bounded batches, into a
fixed-width histogram. Histograms merge by addition (commutative and
associative), so batches can run in any order, on threads, or interleaved
with an event loop.

Usage:
    from lib.strategy.montecarlo import simulate_terminal_prices

    result = simulate_terminal_prices(spot=100, sigma=0.2, t=1.0, paths=500_000, seed=7)
    result.quantiles.q05, result.quantiles.q95
"""

import asyncio
import math
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .config import get_engine_config
from .legs import as_strategy
from .payoff import payoff_many
from .probability import log_params, resolve_drift, validate_market_inputs

logger = logging.getLogger(__name__)


class SimulationCancelled(Exception):
    """Raised when a caller abandons a simulation between batches."""


# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class QuantileBand:
    q01: float
    q05: float
    q95: float
    q99: float

    def to_dict(self) -> Dict[str, float]:
        return {"q01": self.q01, "q05": self.q05, "q95": self.q95, "q99": self.q99}


@dataclass
class SimulationResult:
    """
    Histogram summary of simulated terminal prices.

    Attributes:
        bin_centers: Center price of each bin
        normalized_heights: Counts divided by the tallest bin, in [0, 1]
        probability_mass: Counts divided by paths, sums to 1
        quantiles: 1st/5th/95th/99th percentiles from the cumulative histogram
        domain: (lo, hi) price range of the histogram
        paths: Number of simulated paths
        mean: Sample mean of S_T (exact, not binned)
        clipped_fraction: Share of samples outside the domain, folded into edge bins
        reason: Set when inputs were unusable; arrays are then empty
    """
    bin_centers: List[float] = field(default_factory=list)
    normalized_heights: List[float] = field(default_factory=list)
    probability_mass: List[float] = field(default_factory=list)
    quantiles: Optional[QuantileBand] = None
    domain: Tuple[float, float] = (0.0, 0.0)
    paths: int = 0
    mean: Optional[float] = None
    clipped_fraction: float = 0.0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "binCenters": self.bin_centers,
            "normalizedHeights": self.normalized_heights,
            "probabilityMass": self.probability_mass,
            "quantiles": self.quantiles.to_dict() if self.quantiles else None,
            "domain": list(self.domain),
            "paths": self.paths,
            "mean": self.mean,
            "clippedFraction": self.clipped_fraction,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class GbmModel:
    spot: float
    sigma: float
    t: float
    drift: float

    def sample(self, rng: np.random.Generator, n: int) -> np.ndarray:
        mean, sd = log_params(self.spot, self.sigma, self.t, self.drift)
        return np.exp(mean + sd * box_muller(rng, n))

    def default_domain(self, sigmas: float, fallback_band: Tuple[float, float]) -> Tuple[float, float]:
        """Spot-relative window: mean +/- k sd in log space, or a fixed band when sd is 0."""
        mean, sd = log_params(self.spot, self.sigma, self.t, self.drift)
        if sd > 0:
            return math.exp(mean - sigmas * sd), math.exp(mean + sigmas * sd)
        return self.spot * fallback_band[0], self.spot * fallback_band[1]


def box_muller(rng: np.random.Generator, n: int) -> np.ndarray:
    """n standard normals from pairs of uniforms."""
    half = (n + 1) // 2
    u1 = 1.0 - rng.random(half)  # (0, 1], keeps log finite
    u2 = rng.random(half)
    radius = np.sqrt(-2.0 * np.log(u1))
    angle = 2.0 * np.pi * u2
    return np.concatenate([radius * np.cos(angle), radius * np.sin(angle)])[:n]


# ============================================================================
# Histogram
# ============================================================================

class HistogramAccumulator:
    """Fixed-width histogram over [lo, hi]; out-of-range samples land in edge bins."""

    def __init__(self, lo: float, hi: float, bins: int):
        self.lo = float(lo)
        self.hi = float(hi)
        self.bins = int(bins)
        self.step = (self.hi - self.lo) / self.bins
        self.counts = np.zeros(self.bins, dtype=np.int64)
        self.total = 0
        self.value_sum = 0.0
        self.clipped = 0

    def add(self, samples: np.ndarray) -> None:
        idx = np.floor((samples - self.lo) / self.step).astype(np.int64)
        self.clipped += int(np.count_nonzero((idx < 0) | (idx >= self.bins)))
        np.clip(idx, 0, self.bins - 1, out=idx)
        self.counts += np.bincount(idx, minlength=self.bins)
        self.total += int(samples.size)
        self.value_sum += float(samples.sum())

    def merge(self, other: "HistogramAccumulator") -> "HistogramAccumulator":
        if (self.lo, self.hi, self.bins) != (other.lo, other.hi, other.bins):
            raise ValueError("Cannot merge histograms with different domains")
        merged = HistogramAccumulator(self.lo, self.hi, self.bins)
        merged.counts = self.counts + other.counts
        merged.total = self.total + other.total
        merged.value_sum = self.value_sum + other.value_sum
        merged.clipped = self.clipped + other.clipped
        return merged

    __add__ = merge

    def quantile(self, p: float) -> float:
        """Linear interpolation inside the bin where the cumulative count crosses p."""
        target = p * self.total
        cumulative = np.cumsum(self.counts)
        i = int(np.searchsorted(cumulative, target, side="left"))
        i = min(i, self.bins - 1)
        before = cumulative[i - 1] if i > 0 else 0
        in_bin = self.counts[i]
        frac = (target - before) / in_bin if in_bin else 0.0
        return self.lo + (i + frac) * self.step

    def centers(self) -> np.ndarray:
        return self.lo + (np.arange(self.bins) + 0.5) * self.step

    def finalize(self) -> SimulationResult:
        if self.total == 0:
            return SimulationResult(domain=(self.lo, self.hi), reason="no samples")
        peak = self.counts.max()
        return SimulationResult(
            bin_centers=self.centers().tolist(),
            normalized_heights=(self.counts / peak).tolist(),
            probability_mass=(self.counts / self.total).tolist(),
            quantiles=QuantileBand(
                q01=self.quantile(0.01),
                q05=self.quantile(0.05),
                q95=self.quantile(0.95),
                q99=self.quantile(0.99),
            ),
            domain=(self.lo, self.hi),
            paths=self.total,
            mean=self.value_sum / self.total,
            clipped_fraction=self.clipped / self.total,
        )


# ============================================================================
# Setup
# ============================================================================

@dataclass
class _Plan:
    model: GbmModel
    domain: Tuple[float, float]
    paths: int
    bins: int
    batch_size: int


def _plan(
    spot, sigma, t, drift, r, q, paths, bins, domain, batch_size,
) -> Tuple[Optional[_Plan], Optional[str]]:
    cfg = get_engine_config().montecarlo
    mu = resolve_drift(drift, r, q)
    problem = validate_market_inputs(spot, sigma, t, mu)
    if problem:
        return None, problem

    paths = cfg.paths if paths is None else int(paths)
    bins = cfg.bins if bins is None else int(bins)
    batch_size = cfg.batch_size if batch_size is None else int(batch_size)
    if paths < 1:
        return None, "paths must be at least 1"
    if bins < 1:
        return None, "bins must be at least 1"
    if batch_size < 1:
        return None, "batch_size must be at least 1"

    model = GbmModel(spot=float(spot), sigma=float(sigma), t=float(t), drift=mu)
    if domain is None:
        domain = model.default_domain(cfg.domain_sigmas, cfg.fallback_band)
    lo, hi = float(domain[0]), float(domain[1])
    if not (math.isfinite(lo) and math.isfinite(hi)) or lo < 0 or hi <= lo:
        return None, "domain must satisfy 0 <= lo < hi"

    return _Plan(model=model, domain=(lo, hi), paths=paths, bins=bins, batch_size=batch_size), None


def iter_batches(
    model: GbmModel,
    paths: int,
    batch_size: int,
    rng: np.random.Generator,
) -> Iterator[np.ndarray]:
    """Terminal-price samples in batches of at most batch_size."""
    remaining = paths
    while remaining > 0:
        n = min(batch_size, remaining)
        remaining -= n
        yield model.sample(rng, n)


# ============================================================================
# Simulation Entry Points
# ============================================================================

def simulate_terminal_prices(
    spot: float,
    sigma: float,
    t: float,
    drift: Optional[float] = None,
    r: float = 0.0,
    q: float = 0.0,
    paths: Optional[int] = None,
    bins: Optional[int] = None,
    domain: Optional[Tuple[float, float]] = None,
    seed: Optional[int] = None,
    batch_size: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> SimulationResult:
    """
    Simulate terminal prices and summarize them as a histogram.

    Args:
        spot, sigma, t: Market inputs (t in years)
        drift: Annual drift; defaults to r - q
        paths, bins, batch_size: Defaults from engine config
        domain: (lo, hi) histogram range; defaults to a spot-relative window
        seed: Seed for numpy's default_rng; None is not reproducible
        cancel: Event checked between batches

    Raises:
        SimulationCancelled: cancel was set before the run finished
    """
    plan, problem = _plan(spot, sigma, t, drift, r, q, paths, bins, domain, batch_size)
    if problem:
        return SimulationResult(reason=problem)

    rng = np.random.default_rng(seed)
    hist = HistogramAccumulator(plan.domain[0], plan.domain[1], plan.bins)
    for batch in iter_batches(plan.model, plan.paths, plan.batch_size, rng):
        if cancel is not None and cancel.is_set():
            raise SimulationCancelled(f"Cancelled after {hist.total} paths")
        hist.add(batch)

    logger.debug(f"Simulated {hist.total} paths over [{plan.domain[0]:.2f}, {plan.domain[1]:.2f}]")
    return hist.finalize()


async def simulate_terminal_prices_async(
    spot: float,
    sigma: float,
    t: float,
    drift: Optional[float] = None,
    r: float = 0.0,
    q: float = 0.0,
    paths: Optional[int] = None,
    bins: Optional[int] = None,
    domain: Optional[Tuple[float, float]] = None,
    seed: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> SimulationResult:
    """Same as simulate_terminal_prices, yielding to the event loop between batches.

    Cancel the awaiting task to abandon the run.
    """
    plan, problem = _plan(spot, sigma, t, drift, r, q, paths, bins, domain, batch_size)
    if problem:
        return SimulationResult(reason=problem)

    rng = np.random.default_rng(seed)
    hist = HistogramAccumulator(plan.domain[0], plan.domain[1], plan.bins)
    for batch in iter_batches(plan.model, plan.paths, plan.batch_size, rng):
        hist.add(batch)
        await asyncio.sleep(0)
    return hist.finalize()


def simulate_parallel(
    spot: float,
    sigma: float,
    t: float,
    drift: Optional[float] = None,
    r: float = 0.0,
    q: float = 0.0,
    paths: Optional[int] = None,
    bins: Optional[int] = None,
    domain: Optional[Tuple[float, float]] = None,
    seed: Optional[int] = None,
    batch_size: Optional[int] = None,
    workers: int = 4,
    cancel: Optional[threading.Event] = None,
) -> SimulationResult:
    """
    Split paths across worker threads and sum their histograms.

    Each worker draws from its own generator spawned from one SeedSequence,
    so a seeded run is reproducible for a fixed worker count.
    """
    plan, problem = _plan(spot, sigma, t, drift, r, q, paths, bins, domain, batch_size)
    if problem:
        return SimulationResult(reason=problem)

    workers = max(1, min(int(workers), plan.paths))
    shares = [plan.paths // workers + (1 if i < plan.paths % workers else 0) for i in range(workers)]
    seeds = np.random.SeedSequence(seed).spawn(workers)

    def run(share: int, seed_seq: np.random.SeedSequence) -> HistogramAccumulator:
        rng = np.random.default_rng(seed_seq)
        hist = HistogramAccumulator(plan.domain[0], plan.domain[1], plan.bins)
        for batch in iter_batches(plan.model, share, plan.batch_size, rng):
            if cancel is not None and cancel.is_set():
                raise SimulationCancelled(f"Worker cancelled after {hist.total} paths")
            hist.add(batch)
        return hist

    with ThreadPoolExecutor(max_workers=workers) as pool:
        partials = list(pool.map(run, shares, seeds))

    total = partials[0]
    for partial in partials[1:]:
        total = total + partial
    return total.finalize()


# ============================================================================
# Strategy Outcomes
# ============================================================================

@dataclass
class MonteCarloPop:
    """Simulated probability of profit and mean P&L (per share)."""
    probability: Optional[float] = None
    expected_pnl: Optional[float] = None
    paths: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "probability": self.probability,
            "expectedPnl": self.expected_pnl,
            "paths": self.paths,
            "reason": self.reason,
        }


def monte_carlo_pop(
    legs_or_strategy: Any,
    spot: float,
    sigma: float,
    t: float,
    drift: Optional[float] = None,
    r: float = 0.0,
    q: float = 0.0,
    paths: Optional[int] = None,
    seed: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> MonteCarloPop:
    """Share of simulated paths with P&L >= 0, plus the mean P&L."""
    strategy = as_strategy(legs_or_strategy)
    if strategy.is_empty:
        return MonteCarloPop(reason="no legs")

    plan, problem = _plan(spot, sigma, t, drift, r, q, paths, None, None, batch_size)
    if problem:
        return MonteCarloPop(reason=problem)

    rng = np.random.default_rng(seed)
    wins = 0
    pnl_sum = 0.0
    for batch in iter_batches(plan.model, plan.paths, plan.batch_size, rng):
        pnl = payoff_many(batch, strategy)
        wins += int(np.count_nonzero(pnl >= 0))
        pnl_sum += float(pnl.sum())

    return MonteCarloPop(
        probability=wins / plan.paths,
        expected_pnl=pnl_sum / plan.paths,
        paths=plan.paths,
    )
