"""
Tests for the Monte Carlo terminal-price simulator

Coverage targets:
- Convergence of mean and quantiles to the lognormal model
- Histogram invariants (mass, heights, merge)
- Determinism, cancellation, async and threaded runs
- Strategy-level simulated PoP
"""

import asyncio
import math
import threading

import numpy as np
import pytest

from lib.strategy.montecarlo import (
    GbmModel,
    HistogramAccumulator,
    SimulationCancelled,
    box_muller,
    iter_batches,
    monte_carlo_pop,
    simulate_parallel,
    simulate_terminal_prices,
    simulate_terminal_prices_async,
)
from lib.strategy.probability import lognormal_quantile


SPOT, SIGMA, T = 100.0, 0.2, 1.0


@pytest.fixture(scope="module")
def large_run():
    return simulate_terminal_prices(SPOT, SIGMA, T, paths=500_000, seed=42)


class TestConvergence:
    """Large runs match the analytic lognormal distribution."""

    def test_mean_within_two_percent(self, large_run):
        assert large_run.mean == pytest.approx(SPOT, rel=0.02)

    @pytest.mark.parametrize("p,attr", [(0.05, "q05"), (0.95, "q95")])
    def test_quantiles_within_three_percent(self, large_run, p, attr):
        expected = lognormal_quantile(p, SPOT, SIGMA, T)
        assert getattr(large_run.quantiles, attr) == pytest.approx(expected, rel=0.03)

    def test_quantiles_are_ordered(self, large_run):
        q = large_run.quantiles
        assert q.q01 < q.q05 < q.q95 < q.q99

    def test_mean_follows_drift(self):
        result = simulate_terminal_prices(SPOT, SIGMA, T, drift=0.08, paths=300_000, seed=3)
        assert result.mean == pytest.approx(SPOT * math.exp(0.08), rel=0.02)


class TestHistogramShape:
    def test_mass_sums_to_one(self, large_run):
        assert sum(large_run.probability_mass) == pytest.approx(1.0)

    def test_heights_normalized(self, large_run):
        assert max(large_run.normalized_heights) == pytest.approx(1.0)
        assert min(large_run.normalized_heights) >= 0.0

    def test_default_bins_and_domain(self, large_run):
        assert len(large_run.bin_centers) == 140
        assert large_run.paths == 500_000
        lo, hi = large_run.domain
        assert lo < large_run.bin_centers[0] < large_run.bin_centers[-1] < hi
        assert lo < lognormal_quantile(0.001, SPOT, SIGMA, T)
        assert hi > lognormal_quantile(0.999, SPOT, SIGMA, T)

    def test_explicit_domain_and_clipping(self):
        result = simulate_terminal_prices(
            SPOT, SIGMA, T, paths=50_000, bins=20, domain=(90, 110), seed=1,
        )
        assert result.domain == (90.0, 110.0)
        assert len(result.bin_centers) == 20
        assert result.bin_centers[0] == pytest.approx(90.5)
        assert 0.0 < result.clipped_fraction < 1.0
        assert sum(result.probability_mass) == pytest.approx(1.0)

    def test_zero_volatility_is_a_point_mass(self):
        result = simulate_terminal_prices(SPOT, 0.0, T, drift=0.05, paths=1_000, seed=1)
        assert result.mean == pytest.approx(SPOT * math.exp(0.05))
        assert sorted(result.probability_mass)[-1] == pytest.approx(1.0)
        assert result.domain == pytest.approx((60.0, 140.0))

    def test_to_dict_keys(self):
        data = simulate_terminal_prices(SPOT, SIGMA, T, paths=1_000, seed=1).to_dict()
        assert set(data) == {
            "binCenters", "normalizedHeights", "probabilityMass", "quantiles",
            "domain", "paths", "mean", "clippedFraction", "reason",
        }
        assert set(data["quantiles"]) == {"q01", "q05", "q95", "q99"}


class TestAccumulator:
    """HistogramAccumulator merge is commutative and exact."""

    def _filled(self, seed, n=5_000):
        rng = np.random.default_rng(seed)
        hist = HistogramAccumulator(50, 150, 40)
        hist.add(GbmModel(SPOT, SIGMA, T, 0.0).sample(rng, n))
        return hist

    def test_merge_is_commutative(self):
        a, b = self._filled(1), self._filled(2)
        ab, ba = a + b, b + a
        assert np.array_equal(ab.counts, ba.counts)
        assert ab.total == ba.total == 10_000
        assert ab.value_sum == pytest.approx(ba.value_sum)

    def test_merge_is_associative(self):
        a, b, c = self._filled(1), self._filled(2), self._filled(3)
        assert np.array_equal(((a + b) + c).counts, (a + (b + c)).counts)

    def test_merge_rejects_other_domain(self):
        with pytest.raises(ValueError):
            HistogramAccumulator(0, 1, 10).merge(HistogramAccumulator(0, 2, 10))

    def test_quantile_of_uniform_counts(self):
        hist = HistogramAccumulator(0, 10, 10)
        hist.add(np.arange(10) + 0.5)
        assert hist.quantile(0.5) == pytest.approx(5.0)
        assert hist.quantile(0.05) == pytest.approx(0.5)

    def test_empty_accumulator_has_reason(self):
        assert HistogramAccumulator(0, 1, 5).finalize().reason == "no samples"


class TestSampling:
    def test_box_muller_is_standard_normal(self):
        z = box_muller(np.random.default_rng(0), 200_001)
        assert z.size == 200_001
        assert abs(z.mean()) < 0.01
        assert z.std() == pytest.approx(1.0, abs=0.01)

    def test_batches_cover_all_paths(self):
        model = GbmModel(SPOT, SIGMA, T, 0.0)
        sizes = [b.size for b in iter_batches(model, 25, 10, np.random.default_rng(0))]
        assert sizes == [10, 10, 5]

    def test_seed_is_deterministic(self):
        a = simulate_terminal_prices(SPOT, SIGMA, T, paths=20_000, seed=9)
        b = simulate_terminal_prices(SPOT, SIGMA, T, paths=20_000, seed=9)
        assert a.probability_mass == b.probability_mass
        assert a.mean == b.mean

    def test_batch_size_does_not_change_sample_count(self):
        result = simulate_terminal_prices(SPOT, SIGMA, T, paths=12_345, batch_size=1_000, seed=2)
        assert result.paths == 12_345


class TestRunModes:
    def test_cancel_before_first_batch(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SimulationCancelled):
            simulate_terminal_prices(SPOT, SIGMA, T, paths=10_000, seed=1, cancel=cancel)

    def test_cancel_parallel(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SimulationCancelled):
            simulate_parallel(SPOT, SIGMA, T, paths=10_000, seed=1, workers=2, cancel=cancel)

    def test_async_matches_sync(self):
        sync = simulate_terminal_prices(SPOT, SIGMA, T, paths=30_000, batch_size=5_000, seed=4)
        result = asyncio.run(
            simulate_terminal_prices_async(SPOT, SIGMA, T, paths=30_000, batch_size=5_000, seed=4)
        )
        assert result.probability_mass == sync.probability_mass

    def test_parallel_converges(self):
        result = simulate_parallel(SPOT, SIGMA, T, paths=400_000, seed=5, workers=4)
        assert result.paths == 400_000
        assert result.mean == pytest.approx(SPOT, rel=0.02)
        q95 = lognormal_quantile(0.95, SPOT, SIGMA, T)
        assert result.quantiles.q95 == pytest.approx(q95, rel=0.03)

    def test_parallel_is_reproducible(self):
        a = simulate_parallel(SPOT, SIGMA, T, paths=40_000, seed=8, workers=3)
        b = simulate_parallel(SPOT, SIGMA, T, paths=40_000, seed=8, workers=3)
        assert a.probability_mass == b.probability_mass

    @pytest.mark.parametrize("kwargs,reason", [
        ({"spot": -1}, "spot must be positive"),
        ({"sigma": -0.2}, "sigma must be non-negative"),
        ({"paths": 0}, "paths must be at least 1"),
        ({"bins": 0}, "bins must be at least 1"),
        ({"domain": (10, 5)}, "domain must satisfy 0 <= lo < hi"),
    ])
    def test_invalid_inputs_return_reason(self, kwargs, reason):
        params = dict(spot=SPOT, sigma=SIGMA, t=T, paths=1_000, seed=1)
        params.update(kwargs)
        result = simulate_terminal_prices(**params)
        assert result.reason == reason
        assert result.bin_centers == []


class TestMonteCarloPop:
    def test_long_call_expected_pnl(self):
        legs = [{"type": "call", "side": "long", "strike": 100, "premium": 5}]
        result = monte_carlo_pop(legs, SPOT, SIGMA, T, paths=300_000, seed=21)
        # Undiscounted Black-Scholes value with r = 0 is 7.9656
        assert result.expected_pnl == pytest.approx(7.9656 - 5, abs=0.1)
        assert 0.0 < result.probability < 1.0
        assert result.paths == 300_000

    def test_empty_legs(self):
        assert monte_carlo_pop([], SPOT, SIGMA, T).reason == "no legs"

    def test_invalid_inputs(self):
        legs = [{"type": "call", "side": "long", "strike": 100, "premium": 5}]
        assert monte_carlo_pop(legs, SPOT, SIGMA, None).reason == "T is required"
