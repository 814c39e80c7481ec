"""
Tests for the strategy engine command line
"""

import io
import json

import pytest

from lib.strategy.cli import apply_overrides, build_parser, format_summary, load_payload, main


BULL_CALL = [
    {"type": "call", "side": "long", "strike": 100, "premium": 5},
    {"type": "call", "side": "short", "strike": 110, "premium": 2},
]


@pytest.fixture
def payload_file(tmp_path):
    path = tmp_path / "legs.json"
    path.write_text(json.dumps({"legs": BULL_CALL}))
    return path


class TestLoadPayload:
    def test_object_payload(self, payload_file):
        assert load_payload(str(payload_file)) == {"legs": BULL_CALL}

    def test_bare_list_is_legs(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text(json.dumps(BULL_CALL))
        assert load_payload(str(path)) == {"legs": BULL_CALL}

    def test_stdin(self, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(BULL_CALL)))
        assert load_payload("-") == {"legs": BULL_CALL}


class TestOverrides:
    def test_flags_override_payload(self):
        args = build_parser().parse_args(
            ["analyze", "x.json", "--spot", "101", "--days", "30", "--rate", "0.04", "-s", "bull call spread"]
        )
        merged = apply_overrides({"spot": 90, "legs": []}, args)
        assert merged["spot"] == 101
        assert merged["days"] == 30
        assert merged["riskFree"] == 0.04
        assert merged["strategy"] == "bull call spread"
        assert "sigma" not in merged


class TestMain:
    """End-to-end runs through main()."""

    def test_commands(self):
        parser = build_parser()
        choices = next(a.choices for a in parser._actions if a.dest == "command")
        assert sorted(choices) == ["analyze", "breakeven", "simulate"]
        with pytest.raises(SystemExit):
            parser.parse_args(["pop", "x.json"])

    def test_breakeven_json(self, payload_file, capsys):
        code = main(["breakeven", str(payload_file), "--json", "--quiet"])
        out = json.loads(capsys.readouterr().out)
        assert code == 0
        assert out["be"] == pytest.approx([103.0])
        assert out["meta"]["strategy"] == "bull_call_spread"

    def test_analyze_summary(self, payload_file, capsys):
        code = main(["analyze", str(payload_file), "--spot", "100", "--sigma", "0.25", "--days", "45", "-q"])
        out = capsys.readouterr().out
        assert code == 0
        assert "bull_call_spread" in out
        assert "Break-evens: 103.0000" in out
        assert "PoP:" in out
        assert "Net premium: 3.0000 debit ($300.00 at contract size)" in out

    def test_simulate_summary(self, payload_file, capsys):
        code = main([
            "simulate", str(payload_file), "--spot", "100", "--sigma", "0.2",
            "--years", "1", "--paths", "20000", "--seed", "7", "-q",
        ])
        out = capsys.readouterr().out
        assert code == 0
        assert "Monte Carlo (20,000 paths)" in out
        assert "Simulated PoP" in out

    def test_missing_file(self, tmp_path):
        assert main(["breakeven", str(tmp_path / "missing.json"), "-q"]) == 2

    def test_failed_request_exit_code(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"legs": BULL_CALL, "spot": "abc"}))
        code = main(["breakeven", str(path), "-q"])
        assert code == 1
        assert "VALIDATION_ERROR" in capsys.readouterr().out


class TestFormatSummary:
    def test_error_result(self):
        result = {"success": False, "error": {"code": "X", "message": "boom"}}
        assert format_summary("breakeven", result) == "Error [X]: boom"

    def test_fixed_payoff_note(self):
        result = {
            "success": True,
            "be": [],
            "meta": {"strategy": "long_box_spread", "method": "closed_form", "fixedPayoff": True},
        }
        text = format_summary("breakeven", result)
        assert "Break-evens: none" in text
        assert "fixed payoff" in text
