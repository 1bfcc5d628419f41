"""Powerlend CLI — command-line access to the pricing and decay engine.

Usage:
    python -m powerlend.cli status
    python -m powerlend.cli half-life --value 1000 --t0 0 --half-life 86400 --t 86400
    python -m powerlend.cli estimate-fee --reserve 1000000 --used 0 --amount 500000 \\
        --duration 86400 --price 3 --price-tokens 100 --price-period 86400
    python -m powerlend.cli stream --fee 30 --halving-period 604800 --elapsed 604800
    python -m powerlend.cli check-invariants

Amounts are whole tokens (decimal strings); times are integer seconds.
The config directory is taken from --config, else POWERLEND_CONFIG_DIR
(a .env file at the repository root is honoured), else config/.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from powerlend.errors import PowerlendError
from powerlend.math.decay import accrued, half_life
from powerlend.math.fixed_point import from_base_units, to_base_units
from powerlend.policy.resolver import PolicyResolver
from powerlend.pricing.curves import LogarithmicCurve, PoleSlopeCurve, base_rate

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
CONFIG_ENV_VAR = "POWERLEND_CONFIG_DIR"


def resolve_config_dir(explicit: Optional[Path]) -> Path:
    """--config wins, then the environment (.env included), then config/."""
    if explicit is not None:
        return explicit
    load_dotenv(ROOT / ".env")
    from_env = os.getenv(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    return DEFAULT_CONFIG


def cmd_status(args: argparse.Namespace) -> int:
    resolver = PolicyResolver.from_config_dir(resolve_config_dir(args.config))
    status = resolver.raw()
    status["curve"] = resolver.pricing_curve().name
    print(json.dumps(status, indent=2))
    return 0


def cmd_half_life(args: argparse.Namespace) -> int:
    value = to_base_units(args.value, args.decimals)
    remaining = half_life(args.t0, value, args.half_life, args.t)
    print(json.dumps({
        "remaining": str(from_base_units(remaining, args.decimals)),
        "remaining_base_units": remaining,
    }, indent=2))
    return 0


def cmd_estimate_fee(args: argparse.Namespace) -> int:
    if args.curve == PoleSlopeCurve.name:
        curve = PoleSlopeCurve()
    elif args.curve == LogarithmicCurve.name:
        curve = LogarithmicCurve()
    else:
        curve = PolicyResolver.from_config_dir(resolve_config_dir(args.config)).pricing_curve()
    decimals = args.decimals
    rate = base_rate(
        to_base_units(args.price_tokens, decimals),
        args.price_period,
        to_base_units(args.price, decimals),
    )
    fee = curve.quote(
        rate,
        to_base_units(args.reserve, decimals),
        to_base_units(args.used, decimals),
        to_base_units(args.amount, decimals),
        args.duration,
    )
    print(json.dumps({
        "curve": curve.name,
        "fee": str(from_base_units(fee, decimals)),
        "fee_base_units": fee,
    }, indent=2))
    return 0


def cmd_stream(args: argparse.Namespace) -> int:
    fee = to_base_units(args.fee, args.decimals)
    released = accrued(fee, 0, args.halving_period, args.elapsed)
    print(json.dumps({
        "released": str(from_base_units(released, args.decimals)),
        "remaining": str(from_base_units(fee - released, args.decimals)),
    }, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run configuration invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(resolve_config_dir(args.config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powerlend",
        description="Powerlend — rental reserve engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to config directory (default: ${CONFIG_ENV_VAR} or config/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show resolved configuration")

    # half-life
    p_hl = sub.add_parser("half-life", help="Decay a value over time")
    p_hl.add_argument("--value", required=True, help="Initial value in whole tokens")
    p_hl.add_argument("--t0", type=int, default=0, help="Reference time (default: 0)")
    p_hl.add_argument("--half-life", dest="half_life", type=int, required=True,
                      help="Half-life in seconds")
    p_hl.add_argument("--t", type=int, required=True, help="Observation time")
    p_hl.add_argument("--decimals", type=int, default=18, help="Token decimals (default: 18)")

    # estimate-fee
    p_fee = sub.add_parser("estimate-fee", help="Quote a rental pool fee")
    p_fee.add_argument("--reserve", required=True, help="Total reserve (tokens)")
    p_fee.add_argument("--used", default="0", help="Used reserve (tokens)")
    p_fee.add_argument("--amount", required=True, help="Rental amount (tokens)")
    p_fee.add_argument("--duration", type=int, required=True, help="Rental duration (seconds)")
    p_fee.add_argument("--price", required=True, help="Price per price-tokens per price-period")
    p_fee.add_argument("--price-tokens", dest="price_tokens", default="1",
                       help="Token quantity the price refers to (default: 1)")
    p_fee.add_argument("--price-period", dest="price_period", type=int, default=86400,
                       help="Period the price refers to (default: 86400)")
    p_fee.add_argument("--curve", choices=[PoleSlopeCurve.name, LogarithmicCurve.name],
                       help="Curve variant with default constants (default: from config)")
    p_fee.add_argument("--decimals", type=int, default=18, help="Token decimals (default: 18)")

    # stream
    p_stream = sub.add_parser("stream", help="Show how much of a fee has streamed in")
    p_stream.add_argument("--fee", required=True, help="Pool fee (tokens)")
    p_stream.add_argument("--halving-period", dest="halving_period", type=int, required=True,
                          help="Streaming halving period (seconds)")
    p_stream.add_argument("--elapsed", type=int, required=True, help="Seconds since payment")
    p_stream.add_argument("--decimals", type=int, default=18, help="Token decimals (default: 18)")

    # check-invariants
    sub.add_parser("check-invariants", help="Run configuration invariant checks")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "half-life": cmd_half_life,
        "estimate-fee": cmd_estimate_fee,
        "stream": cmd_stream,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except PowerlendError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
