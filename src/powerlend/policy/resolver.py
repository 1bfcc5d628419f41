"""Policy resolver — loads enterprise parameters from the config directory.

Configuration is data, not code: every tunable of the engine (pricing
curve constants, return windows, streaming and energy half-lives, fee
percentages) lives in config/enterprise_params.json. Fractional values
are JSON strings and are parsed as Decimal, never float.
"""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict

from powerlend.errors import ConfigurationError
from powerlend.models.config import EnterpriseConfig
from powerlend.models.ledger import Asset
from powerlend.pricing.curves import PricingCurve, curve_from_config

PARAMS_FILE = "enterprise_params.json"

_ENTERPRISE_KEYS = (
    "gc_fee_percent",
    "renter_only_return_period",
    "enterprise_only_collection_period",
    "streaming_reserve_halving_period",
    "streaming_immediate_percent",
)

_SERVICE_KEYS = (
    "gap_halving_period",
    "service_fee_percent",
    "min_rental_period",
    "max_rental_period",
    "min_gc_fee",
)


class PolicyResolver:
    """Typed access to the enterprise parameter file.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        curve = resolver.pricing_curve()
        config = resolver.enterprise_config("Acme", Asset("ACME"))
    """

    def __init__(self, params: Dict[str, Any]) -> None:
        for section in ("pricing", "enterprise", "service_defaults"):
            if section not in params:
                raise ConfigurationError(f"Missing config section: {section}")
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILE
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            try:
                params = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Malformed config {path}: {exc}") from exc
        return cls(params)

    @property
    def version(self) -> str:
        return str(self._params.get("version", "unknown"))

    def raw(self) -> Dict[str, Any]:
        """Copy of the parsed parameter file."""
        return json.loads(json.dumps(self._params))

    def pricing_params(self) -> Dict[str, Any]:
        pricing = dict(self._params["pricing"])
        for key in ("pole", "slope", "lambda"):
            if key in pricing:
                pricing[key] = _decimal(pricing[key], f"pricing.{key}")
        return pricing

    def pricing_curve(self) -> PricingCurve:
        return curve_from_config(self.pricing_params())

    def enterprise_params(self) -> Dict[str, int]:
        return _int_section(self._params["enterprise"], _ENTERPRISE_KEYS, "enterprise")

    def service_defaults(self) -> Dict[str, int]:
        return _int_section(
            self._params["service_defaults"], _SERVICE_KEYS, "service_defaults"
        )

    def enterprise_config(self, name: str, enterprise_asset: Asset) -> EnterpriseConfig:
        config = EnterpriseConfig(
            name=name, enterprise_asset=enterprise_asset, **self.enterprise_params()
        )
        config.validate()
        return config


def _decimal(value: Any, label: str) -> Decimal:
    if isinstance(value, float):
        raise ConfigurationError(f"{label} must be a decimal string, not a float")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(f"{label} is not a decimal: {value!r}") from exc


def _int_section(section: Dict[str, Any], keys: Any, label: str) -> Dict[str, int]:
    result: Dict[str, int] = {}
    for key in keys:
        if key not in section:
            raise ConfigurationError(f"Missing config key: {label}.{key}")
        value = section[key]
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigurationError(f"{label}.{key} must be an integer, got {value!r}")
        result[key] = value
    return result
