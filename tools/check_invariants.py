#!/usr/bin/env python3
"""Powerlend invariant checks against the enterprise parameter file."""

import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
PARAMS_FILE = "enterprise_params.json"
PERCENT_BASE = 10_000


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def as_decimal(value: object, label: str, errors: list) -> Optional[Decimal]:
    """Parse a decimal string; floats are rejected outright."""
    if isinstance(value, float):
        errors.append(f"{label} must be a decimal string, not a float")
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        errors.append(f"{label} is not a decimal: {value!r}")
        return None


def check_percent(section: dict, key: str, label: str, errors: list) -> None:
    value = section.get(key)
    if not isinstance(value, int) or not (0 <= value <= PERCENT_BASE):
        errors.append(f"{label}.{key} must be an integer in [0, {PERCENT_BASE}], got {value!r}")


def check_positive(section: dict, key: str, label: str, errors: list) -> None:
    value = section.get(key)
    if not isinstance(value, int) or value <= 0:
        errors.append(f"{label}.{key} must be a positive integer, got {value!r}")


def check(config_dir: Optional[Path] = None) -> int:
    config_dir = Path(config_dir) if config_dir is not None else ROOT / "config"
    path = config_dir / PARAMS_FILE
    errors: list = []
    try:
        params = load_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        print("Invariant check failed:")
        print(f"- cannot read {path}: {exc}")
        return 1

    for section in ("pricing", "enterprise", "service_defaults"):
        if section not in params:
            errors.append(f"Missing config section: {section}")
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    # --- Pricing curve invariants ---
    pricing = params["pricing"]
    curve = pricing.get("curve")
    if curve not in ("pole_slope", "logarithmic"):
        errors.append(f"pricing.curve must be pole_slope or logarithmic, got {curve!r}")
    pole = as_decimal(pricing.get("pole", "0.05"), "pricing.pole", errors)
    if pole is not None and not (Decimal("0") < pole < Decimal("1")):
        errors.append(f"pricing.pole must be in (0, 1), got {pole}")
    slope = as_decimal(pricing.get("slope", "0.3"), "pricing.slope", errors)
    if slope is not None and not (Decimal("0") <= slope <= Decimal("1")):
        errors.append(f"pricing.slope must be in [0, 1], got {slope}")
    lam = as_decimal(pricing.get("lambda", "1.0"), "pricing.lambda", errors)
    if lam is not None and lam < Decimal("0"):
        errors.append(f"pricing.lambda must be >= 0, got {lam}")

    # --- Enterprise invariants ---
    enterprise = params["enterprise"]
    check_percent(enterprise, "gc_fee_percent", "enterprise", errors)
    check_percent(enterprise, "streaming_immediate_percent", "enterprise", errors)
    check_positive(enterprise, "streaming_reserve_halving_period", "enterprise", errors)
    for key in ("renter_only_return_period", "enterprise_only_collection_period"):
        value = enterprise.get(key)
        if not isinstance(value, int) or value < 0:
            errors.append(f"enterprise.{key} must be a non-negative integer, got {value!r}")

    # --- Service default invariants ---
    service = params["service_defaults"]
    check_percent(service, "service_fee_percent", "service_defaults", errors)
    check_positive(service, "gap_halving_period", "service_defaults", errors)
    min_period = service.get("min_rental_period")
    max_period = service.get("max_rental_period")
    if not isinstance(min_period, int) or min_period < 0:
        errors.append(f"service_defaults.min_rental_period must be >= 0, got {min_period!r}")
    elif not isinstance(max_period, int) or max_period < min_period:
        errors.append("service_defaults.max_rental_period must be >= min_rental_period")
    min_gc_fee = service.get("min_gc_fee")
    if not isinstance(min_gc_fee, int) or min_gc_fee < 0:
        errors.append(f"service_defaults.min_gc_fee must be >= 0, got {min_gc_fee!r}")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else None))
