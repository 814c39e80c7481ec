"""
Tests for the Option Pricer

Coverage targets:
- black_scholes_price: reference values, put-call parity, degenerate inputs
- black_scholes_greeks: agreement with finite differences
- implied_volatility: round trip and out-of-band prices
- fill_premiums / position_greeks
"""

import math

import pytest

from lib.strategy.legs import LegKind, normalize_legs
from lib.strategy.pricing import (
    black_scholes_greeks,
    black_scholes_price,
    fill_premiums,
    implied_volatility,
    position_greeks,
    years_from_days,
)


class TestBlackScholesPrice:
    """Tests for black_scholes_price."""

    def test_reference_values(self):
        call = black_scholes_price("call", 100, 100, 1.0, 0.2, r=0.05)
        put = black_scholes_price("put", 100, 100, 1.0, 0.2, r=0.05)
        assert call == pytest.approx(10.4506, abs=1e-4)
        assert put == pytest.approx(5.5735, abs=1e-4)

    @pytest.mark.parametrize("strike", [80, 100, 105, 130])
    def test_put_call_parity(self, strike):
        spot, t, sigma, r, q = 100.0, 0.5, 0.25, 0.04, 0.01
        call = black_scholes_price("call", spot, strike, t, sigma, r, q)
        put = black_scholes_price("put", spot, strike, t, sigma, r, q)
        parity = spot * math.exp(-q * t) - strike * math.exp(-r * t)
        assert call - put == pytest.approx(parity, abs=1e-9)

    def test_accepts_leg_kind_and_short_names(self):
        a = black_scholes_price(LegKind.CALL, 100, 95, 0.25, 0.3)
        b = black_scholes_price("C", 100, 95, 0.25, 0.3)
        assert a == pytest.approx(b)

    def test_expiry_is_intrinsic(self):
        assert black_scholes_price("call", 110, 100, 0.0, 0.3) == pytest.approx(10.0)
        assert black_scholes_price("put", 110, 100, 0.0, 0.3) == pytest.approx(0.0)

    def test_zero_volatility_uses_discounted_forward(self):
        price = black_scholes_price("call", 100, 100, 1.0, 0.0, r=0.05)
        assert price == pytest.approx(100 - 100 * math.exp(-0.05))

    def test_continuous_as_time_vanishes(self):
        near = black_scholes_price("put", 95, 100, 1e-10, 0.2)
        assert near == pytest.approx(5.0, abs=1e-6)

    @pytest.mark.parametrize("args", [
        ("call", 0, 100, 1.0, 0.2),
        ("call", 100, -1, 1.0, 0.2),
        ("call", 100, 100, -0.1, 0.2),
        ("call", 100, 100, 1.0, -0.2),
        ("call", float("nan"), 100, 1.0, 0.2),
        ("call", 100, 100, float("inf"), 0.2),
        ("stock", 100, 100, 1.0, 0.2),
        ("straddle", 100, 100, 1.0, 0.2),
    ])
    def test_invalid_inputs_return_none(self, args):
        assert black_scholes_price(*args) is None

    def test_never_negative(self):
        assert black_scholes_price("call", 10, 1000, 0.01, 0.01) >= 0.0


class TestGreeks:
    """Closed-form greeks against central finite differences."""

    SPOT, STRIKE, T, SIGMA, R, Q = 100.0, 105.0, 0.5, 0.25, 0.03, 0.01

    def _price(self, kind, spot=None, t=None, sigma=None, r=None):
        return black_scholes_price(
            kind,
            self.SPOT if spot is None else spot,
            self.STRIKE,
            self.T if t is None else t,
            self.SIGMA if sigma is None else sigma,
            self.R if r is None else r,
            self.Q,
        )

    @pytest.mark.parametrize("kind", ["call", "put"])
    def test_against_finite_differences(self, kind):
        g = black_scholes_greeks(kind, self.SPOT, self.STRIKE, self.T, self.SIGMA, self.R, self.Q)
        h = 1e-3

        delta = (self._price(kind, spot=self.SPOT + h) - self._price(kind, spot=self.SPOT - h)) / (2 * h)
        gamma = (
            self._price(kind, spot=self.SPOT + h)
            - 2 * self._price(kind)
            + self._price(kind, spot=self.SPOT - h)
        ) / (h * h)
        vega = (self._price(kind, sigma=self.SIGMA + h) - self._price(kind, sigma=self.SIGMA - h)) / (2 * h)
        theta = -(self._price(kind, t=self.T + h) - self._price(kind, t=self.T - h)) / (2 * h)
        rho = (self._price(kind, r=self.R + h) - self._price(kind, r=self.R - h)) / (2 * h)

        assert g.delta == pytest.approx(delta, abs=1e-5)
        assert g.gamma == pytest.approx(gamma, abs=1e-4)
        assert g.vega == pytest.approx(vega, abs=1e-4)
        assert g.theta == pytest.approx(theta, abs=1e-4)
        assert g.rho == pytest.approx(rho, abs=1e-4)

    def test_theta_per_day_and_vega_per_point(self):
        g = black_scholes_greeks("call", 100, 100, 0.25, 0.3)
        assert g.theta_per_day == pytest.approx(g.theta / 365)
        assert g.vega_per_point == pytest.approx(g.vega / 100)
        assert set(g.to_dict()) == {"delta", "gamma", "theta", "thetaPerDay", "vega", "rho"}

    def test_call_delta_bounds(self):
        g = black_scholes_greeks("call", 100, 100, 1.0, 0.2)
        assert 0.0 < g.delta < 1.0
        assert g.gamma > 0
        assert g.vega > 0

    def test_degenerate_in_the_money(self):
        g = black_scholes_greeks("call", 110, 100, 0.0, 0.2)
        assert g.delta == pytest.approx(1.0)
        assert g.gamma == 0.0
        assert g.vega == 0.0

    def test_degenerate_out_of_the_money(self):
        g = black_scholes_greeks("put", 110, 100, 0.0, 0.2)
        assert (g.delta, g.gamma, g.theta, g.vega, g.rho) == (0.0, 0.0, 0.0, 0.0, 0.0)

    def test_invalid_inputs(self):
        assert black_scholes_greeks("call", -1, 100, 1.0, 0.2) is None


class TestImpliedVolatility:
    @pytest.mark.parametrize("kind,strike,sigma", [
        ("call", 100, 0.3),
        ("put", 90, 0.45),
        ("call", 120, 0.15),
    ])
    def test_round_trip(self, kind, strike, sigma):
        price = black_scholes_price(kind, 100, strike, 0.5, sigma, r=0.02)
        iv = implied_volatility(kind, price, 100, strike, 0.5, r=0.02)
        assert iv == pytest.approx(sigma, abs=1e-6)

    def test_below_intrinsic_is_none(self):
        assert implied_volatility("call", 5.0, 120, 100, 0.5) is None

    def test_expired_is_none(self):
        assert implied_volatility("call", 5.0, 100, 100, 0.0) is None

    def test_bad_price_is_none(self):
        assert implied_volatility("call", float("nan"), 100, 100, 0.5) is None
        assert implied_volatility("call", None, 100, 100, 0.5) is None

    def test_missing_inputs_are_none(self):
        assert implied_volatility("call", 5.0, 100, 100, None) is None
        assert implied_volatility("put", 5.0, None, 100, 0.5) is None
        assert implied_volatility("call", 5.0, 100, 100, 0.5, r=None) is None


class TestStrategyHelpers:
    def test_years_from_days(self):
        assert years_from_days(365) == pytest.approx(1.0)
        assert years_from_days(73) == pytest.approx(0.2)

    def test_fill_premiums_prices_only_unknown_legs(self):
        strategy = normalize_legs([
            {"type": "call", "side": "long", "strike": 100},
            {"type": "call", "side": "short", "strike": 110, "premium": 1.5},
            {"type": "stock", "side": "long"},
        ])
        filled = fill_premiums(strategy, spot=100, sigma=0.25, t=0.5)
        expected = black_scholes_price("call", 100, 100, 0.5, 0.25)
        assert filled.legs[0].premium == pytest.approx(expected)
        assert filled.legs[0].premium_known is True
        assert filled.legs[1].premium == 1.5
        assert filled.legs[2].basis == 100.0
        assert filled.has_unknown_premiums is False
        assert filled.net_premium == pytest.approx(expected - 1.5)

    def test_fill_premiums_leaves_unpriceable_legs(self):
        strategy = normalize_legs([{"type": "put", "side": "long", "strike": 100}])
        filled = fill_premiums(strategy, spot=100, sigma=-1.0, t=0.5)
        assert filled.legs[0].premium_known is False

    def test_position_greeks_straddle_and_stock(self):
        straddle = normalize_legs([
            {"type": "call", "side": "long", "strike": 100, "premium": 4},
            {"type": "put", "side": "long", "strike": 100, "premium": 4},
        ])
        g = position_greeks(straddle, spot=100, sigma=0.2, t=0.25)
        call = black_scholes_greeks("call", 100, 100, 0.25, 0.2)
        put = black_scholes_greeks("put", 100, 100, 0.25, 0.2)
        assert g.delta == pytest.approx(call.delta + put.delta)
        assert g.gamma == pytest.approx(2 * call.gamma)

        covered = normalize_legs([
            {"type": "stock", "side": "long", "price": 100},
            {"type": "call", "side": "short", "strike": 105, "premium": 2},
        ])
        g = position_greeks(covered, spot=100, sigma=0.2, t=0.25)
        short_call = black_scholes_greeks("call", 100, 105, 0.25, 0.2)
        assert g.delta == pytest.approx(1.0 - short_call.delta)
