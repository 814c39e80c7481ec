"""
Strategy engine command line.

Usage:
    python -m lib.strategy.cli breakeven payload.json
    python -m lib.strategy.cli analyze payload.json --spot 100 --sigma 0.25 --days 30
    cat payload.json | python -m lib.strategy.cli simulate - --paths 500000 --seed 7
"""

import sys
import json
import logging
import argparse
from typing import Any, Dict, List, Optional

from .service import analyze_strategy, simulate_distribution, solve_break_even

logger = logging.getLogger("lib.strategy")


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging to stderr with the specified level."""
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
    logger.addHandler(handler)
    logger.setLevel(level)


HANDLERS = {
    "breakeven": solve_break_even,
    "analyze": analyze_strategy,
    "simulate": simulate_distribution,
}


def load_payload(source: str) -> Dict[str, Any]:
    """Read a JSON payload from a file path or '-' for stdin.

    A bare JSON array is treated as the leg list.
    """
    if source == "-":
        data = json.load(sys.stdin)
    else:
        with open(source, "r") as f:
            data = json.load(f)
    if isinstance(data, dict):
        return data
    return {"legs": data}


def apply_overrides(payload: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    overrides = {
        "strategy": args.strategy,
        "spot": args.spot,
        "sigma": args.sigma,
        "T": args.years,
        "days": args.days,
        "riskFree": args.rate,
        "dividendYield": args.dividend_yield,
        "mu": args.mu,
        "paths": args.paths,
        "bins": args.bins,
        "seed": args.seed,
    }
    merged = dict(payload)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def format_summary(command: str, result: Dict[str, Any]) -> str:
    """Human-readable summary of a handler result."""
    if not result.get("success"):
        error = result.get("error", {})
        return f"Error [{error.get('code')}]: {error.get('message')}"

    lines: List[str] = []
    if command in ("breakeven", "analyze"):
        meta = result["meta"]
        be = ", ".join(f"{p:.4f}" for p in result["be"]) or "none"
        lines.append(f"=== {meta['strategy']} ({meta['method']}) ===")
        lines.append(f"Break-evens: {be}")
        if meta.get("approx"):
            lines.append("  (approximate: legs expire on different dates)")
        if meta.get("fixedPayoff"):
            lines.append("  (fixed payoff: no break-even exists)")

    if command == "analyze":
        lines.append(
            f"Net premium: {meta['netPremium']:.4f} {meta['sign']} "
            f"(${meta['netPremiumDollars']:,.2f} at contract size)"
        )
        pop = result.get("pop") or {}
        if pop.get("probability") is None:
            lines.append(f"PoP: unavailable ({pop.get('reason')})")
        else:
            lines.append(f"PoP: {pop['probability']:.2%} ({pop['region']})")
        risk = result.get("risk")
        if risk:
            lines.append(f"E[P&L]: {risk['expectedPnl']:.4f}  sd: {risk['stdev']:.4f}")
            lines.append(f"Max profit: {risk['maxProfit']}  Max loss: {risk['maxLoss']}")

    if command == "simulate":
        sim = result["simulation"]
        if sim.get("reason"):
            return f"Simulation unavailable: {sim['reason']}"
        qs = sim["quantiles"]
        lines.append(f"=== Monte Carlo ({sim['paths']:,} paths) ===")
        lines.append(f"Mean S_T: {sim['mean']:.4f}")
        lines.append(
            f"q01 {qs['q01']:.2f}  q05 {qs['q05']:.2f}  q95 {qs['q95']:.2f}  q99 {qs['q99']:.2f}"
        )
        if "strategy" in result:
            lines.append(f"Simulated PoP: {result['strategy']['probability']:.2%}")

    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strategy-engine",
        description="Break-evens, probability of profit and Monte Carlo for option strategies.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  strategy-engine breakeven legs.json                       # Break-evens only
  strategy-engine breakeven legs.json --strategy "iron condor"
  strategy-engine analyze legs.json --spot 100 --sigma 0.25 --days 45
  strategy-engine simulate - --spot 100 --sigma 0.2 --years 1 --paths 500000 --seed 7
  strategy-engine analyze legs.json --spot 100 --sigma 0.3 --days 30 --json --pretty
"""
    )
    parser.add_argument("command", choices=sorted(HANDLERS), help="Operation to run")
    parser.add_argument("payload", help="JSON payload file, or - for stdin")
    parser.add_argument("--strategy", "-s", help="Strategy name (e.g. bull_call_spread)")
    parser.add_argument("--spot", type=float, help="Underlying price")
    parser.add_argument("--sigma", type=float, help="Annualized volatility (0.25 = 25%%)")
    parser.add_argument("--years", type=float, help="Time to expiration in years")
    parser.add_argument("--days", type=float, help="Days to expiration")
    parser.add_argument("--rate", type=float, help="Risk-free rate")
    parser.add_argument("--dividend-yield", type=float, help="Continuous dividend yield")
    parser.add_argument("--mu", type=float, help="Drift (defaults to rate - dividend yield)")
    parser.add_argument("--paths", type=int, help="Monte Carlo paths")
    parser.add_argument("--bins", type=int, help="Histogram bins")
    parser.add_argument("--seed", type=int, help="Random seed")
    parser.add_argument("--json", "-j", action="store_true", help="Output raw JSON")
    parser.add_argument("--pretty", action="store_true", help="Indent JSON output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress log output")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.debug:
        setup_logging(logging.DEBUG)
    elif not args.quiet:
        setup_logging(logging.INFO)
    else:
        setup_logging(logging.WARNING)

    try:
        payload = load_payload(args.payload)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Could not read payload: {e}")
        return 2

    payload = apply_overrides(payload, args)
    logger.info(f"Running {args.command}")
    result = HANDLERS[args.command](payload)

    if args.json:
        print(json.dumps(result, indent=2 if args.pretty else None, default=str))
    else:
        print(format_summary(args.command, result))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
