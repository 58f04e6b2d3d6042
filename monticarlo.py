"""Command-line front end: run a batch or the goal-seeking optimizer.

Parameters come from the saved configuration (``config.json`` by default)
and may be overridden on the command line with human-friendly values such
as ``--withdrawal-rate 4%`` or ``--taxable '$250,000'``.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace

from core import (
    CONFIG_FILE,
    ConfigurationError,
    SimulationParams,
    load_config,
    parse_dollars,
    parse_percent,
    save_config,
)
from optimizer import optimize
from simulation import run_batch


logger = logging.getLogger(__name__)

PERCENT_OPTIONS = {
    "return_rate": "--return-rate",
    "inflation_rate": "--inflation-rate",
    "withdrawal_rate": "--withdrawal-rate",
    "state_tax_rate": "--state-tax-rate",
}
DOLLAR_OPTIONS = {
    "taxable_balance": "--taxable",
    "pretax_balance": "--pretax",
    "roth_balance": "--roth",
    "emergency_fund": "--emergency-fund",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Monte Carlo retirement planner")
    parser.add_argument("command", choices=("run", "optimize"), nargs="?", default="run")
    parser.add_argument("--config", default=CONFIG_FILE, help="Configuration file to load")
    parser.add_argument("--save", action="store_true", help="Write the effective parameters back")
    parser.add_argument("--seed", type=int, default=None, help="Base seed (default: saved or 12345)")
    parser.add_argument("--paths", "-n", type=int, default=None, help="Number of paths (default: saved or 2000)")
    parser.add_argument("--mode", choices=("fixed", "bootstrap", "historical"))
    parser.add_argument("--start-year", type=int, help="First year of historical playback")
    parser.add_argument("--retirement-age", type=int)
    for option in PERCENT_OPTIONS.values():
        parser.add_argument(option, help="Percentage such as 4%%")
    for option in DOLLAR_OPTIONS.values():
        parser.add_argument(option, help="Dollar amount such as $250,000")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def _load_inputs(args: argparse.Namespace, saved: dict) -> SimulationParams:
    """Merge saved parameters with command-line overrides."""

    params = SimulationParams.from_dict(saved.get("params", {}))
    overrides = {}
    for field_name, option in PERCENT_OPTIONS.items():
        val = getattr(args, option[2:].replace("-", "_"))
        if val is not None:
            overrides[field_name] = parse_percent(val) * 100
    for field_name, option in DOLLAR_OPTIONS.items():
        val = getattr(args, option[2:].replace("-", "_"))
        if val is not None:
            overrides[field_name] = parse_dollars(val)
    if args.mode is not None:
        overrides["return_mode"] = args.mode
    if args.start_year is not None:
        overrides["historical_start_year"] = args.start_year
    if args.retirement_age is not None:
        overrides["retirement_age"] = args.retirement_age
    return replace(params, **overrides)


def _summarize_run(result) -> list:
    lines = [f"Success rate: {result.success_rate * 100:.1f}%"]
    for p, value in sorted(result.eol_real.items()):
        lines.append(f"End-of-life balance (today's dollars), p{p}: ${value:,.0f}")
    median_income = result.y1_after_tax_real.get(50)
    if median_income is not None:
        lines.append(f"First-year after-tax income, median: ${median_income:,.0f}")
    return lines


def _summarize_optimization(result) -> list:
    return [
        f"Contribution surplus: ${result.surplus_annual:,.0f}/yr (${result.surplus_monthly:,.0f}/mo)",
        f"Largest one-time expense: ${result.max_splurge:,.0f}",
        f"Earliest retirement age: {result.earliest_retirement_age} "
        f"({result.years_earlier} years earlier)",
    ]


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    saved = load_config(args.config)
    try:
        params = _load_inputs(args, saved)
    except ValueError as exc:
        print(f"Input error: {exc}", file=sys.stderr)
        return 2

    seed = args.seed if args.seed is not None else saved.get("base_seed", 12345)
    n_paths = args.paths if args.paths is not None else saved.get("n_paths", 2000)
    try:
        if args.command == "optimize":
            result = optimize(params, seed)
            lines = _summarize_optimization(result)
        else:
            result = run_batch(params, seed, n_paths)
            lines = _summarize_run(result)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print("\n".join(lines))
    if args.save:
        save_config(params, args.config, base_seed=seed, n_paths=n_paths)
    return 0


if __name__ == "__main__":
    sys.exit(main())
