"""
Tests for the request handlers

Coverage targets:
- solve_break_even: response shape, premium filling, error payloads
- analyze_strategy: PoP / risk / greeks with and without market inputs
- simulate_distribution: histogram plus strategy outcome
"""

import pytest

from lib.strategy.service import (
    MarketInputs,
    analyze_strategy,
    build_error_response,
    simulate_distribution,
    solve_break_even,
)


BULL_CALL = [
    {"type": "call", "side": "long", "strike": 100, "premium": 5},
    {"type": "call", "side": "short", "strike": 110, "premium": 2},
]

SHORT_STRANGLE = [
    {"type": "put", "side": "short", "strike": 95, "premium": 3},
    {"type": "call", "side": "short", "strike": 105, "premium": 4},
]


class TestBuildErrorResponse:
    def test_shape(self):
        response = build_error_response("BAD", "Something failed", {"field": "spot"})
        assert response["success"] is False
        assert response["error"] == {
            "code": "BAD",
            "message": "Something failed",
            "details": {"field": "spot"},
        }
        assert response["timestamp"].endswith("Z")

    def test_empty_details_become_none(self):
        assert build_error_response("X", "y", [])["error"]["details"] is None


class TestMarketInputs:
    def test_aliases_and_days(self):
        inputs = MarketInputs.model_validate({"spot": 100, "sigma": 0.2, "days": 73, "r": 0.05, "q": 0.01})
        assert inputs.riskFree == 0.05
        assert inputs.dividendYield == 0.01
        assert inputs.years == pytest.approx(0.2)
        assert inputs.market_problem() is None

    def test_explicit_years_win_over_days(self):
        inputs = MarketInputs.model_validate({"T": 0.5, "days": 30})
        assert inputs.years == 0.5

    def test_missing_inputs_reported(self):
        assert MarketInputs.model_validate({"sigma": 0.2, "T": 1}).market_problem() == "spot is required"


class TestSolveBreakEven:
    """Tests for solve_break_even."""

    def test_bull_call_spread(self):
        response = solve_break_even({"legs": BULL_CALL})
        assert response["success"] is True
        assert response["be"] == pytest.approx([103.0])
        assert response["meta"]["strategy"] == "bull_call_spread"
        assert response["meta"]["method"] == "closed_form"

    def test_strategy_alias(self):
        response = solve_break_even({"legs": SHORT_STRANGLE, "strategy": "Short Strangle"})
        assert response["be"] == pytest.approx([88.0, 112.0])

    def test_missing_premiums_priced_from_market(self):
        legs = [
            {"type": "call", "side": "long", "strike": 100},
            {"type": "call", "side": "short", "strike": 110},
        ]
        response = solve_break_even({"legs": legs, "spot": 100, "sigma": 0.25, "T": 0.5})
        assert response["meta"]["pricedLegs"] == 2
        assert response["meta"]["strategy"] == "bull_call_spread"
        assert 100.0 < response["be"][0] < 110.0

    def test_missing_premiums_without_market_stay_zero(self):
        legs = [{"type": "call", "side": "long", "strike": 100}]
        response = solve_break_even({"legs": legs})
        assert response["be"] == pytest.approx([100.0])
        assert "pricedLegs" not in response["meta"]

    def test_empty_legs(self):
        response = solve_break_even({"legs": []})
        assert response["success"] is True
        assert response["be"] == []
        assert response["meta"]["reason"] == "no legs"

    def test_non_mapping_payload(self):
        response = solve_break_even(["not", "an", "object"])
        assert response["success"] is False
        assert response["error"]["code"] == "INVALID_PAYLOAD"

    def test_validation_error(self):
        response = solve_break_even({"legs": BULL_CALL, "spot": "abc"})
        assert response["success"] is False
        assert response["error"]["code"] == "VALIDATION_ERROR"
        assert response["error"]["details"][0]["loc"] == ["spot"]


class TestAnalyzeStrategy:
    def test_full_analysis(self):
        response = analyze_strategy({
            "legs": SHORT_STRANGLE, "spot": 100, "sigma": 0.25, "days": 30,
            "curvePoints": 11,
        })
        assert response["success"] is True
        assert response["be"] == pytest.approx([88.0, 112.0])
        assert response["meta"]["inferred"] == "short_strangle"
        assert response["meta"]["sign"] == "credit"
        assert response["meta"]["netPremium"] == pytest.approx(-7.0)
        assert response["meta"]["netPremiumDollars"] == pytest.approx(-700.0)

        pop = response["pop"]
        assert pop["region"] == "inside"
        assert 0.5 < pop["probability"] < 1.0

        risk = response["risk"]
        assert risk["maxProfit"] == pytest.approx(7.0)
        assert risk["maxLoss"] == "unlimited"

        assert response["greeks"]["gamma"] < 0
        assert len(response["payoffCurve"]) >= 11

    def test_without_market_inputs(self):
        response = analyze_strategy({"legs": BULL_CALL})
        assert response["be"] == pytest.approx([103.0])
        assert response["pop"]["probability"] is None
        assert response["pop"]["reason"] == "spot is required"
        assert response["risk"] is None
        assert response["greeks"] is None
        assert "payoffCurve" not in response

    def test_empty_legs(self):
        response = analyze_strategy({"legs": [], "spot": 100, "sigma": 0.2, "T": 1})
        assert response["be"] == []
        assert response["pop"]["probability"] is None
        assert response["pop"]["reason"] == "no legs"

    def test_curve_points_bounded(self):
        response = analyze_strategy({"legs": BULL_CALL, "curvePoints": 5000})
        assert response["error"]["code"] == "VALIDATION_ERROR"


class TestSimulateDistribution:
    def test_histogram_only(self):
        response = simulate_distribution({
            "spot": 100, "sigma": 0.2, "T": 1, "paths": 20_000, "seed": 3,
        })
        sim = response["simulation"]
        assert response["success"] is True
        assert sim["paths"] == 20_000
        assert len(sim["binCenters"]) == 140
        assert "strategy" not in response

    def test_with_legs(self):
        response = simulate_distribution({
            "legs": BULL_CALL, "spot": 100, "sigma": 0.2, "T": 1,
            "paths": 50_000, "bins": 60, "seed": 3,
        })
        assert 0.0 < response["strategy"]["probability"] < 1.0
        realistic = response["realistic"]
        assert realistic["maxProfit"] == pytest.approx(7.0)
        assert realistic["maxLoss"] == pytest.approx(3.0)
        assert realistic["range"][0] < realistic["range"][1]

    def test_invalid_market_inputs(self):
        response = simulate_distribution({"legs": BULL_CALL, "sigma": 0.2, "T": 1})
        assert response["success"] is True
        assert response["simulation"]["reason"] == "spot is required"
        assert "strategy" not in response

    def test_bad_domain_length(self):
        response = simulate_distribution({"spot": 100, "sigma": 0.2, "T": 1, "domain": [1, 2, 3]})
        assert response["error"]["code"] == "VALIDATION_ERROR"
