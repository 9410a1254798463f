"""
billing_config -- agency calculation settings.

Responsibility:
    Turns the agency's stored calculation-settings record into a frozen
    ``CalcConfig`` snapshot and validates it.  YAML loading is fixture and
    local tooling; at runtime callers hand the stored record to
    ``load_calc_config``.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and the engine value
    types, below ``billing_services``.  Engines never import this package
    at runtime.

Failure modes:
    - ``InvalidAdjustmentConfigError`` -- malformed adjustment rule.
    - ``InvalidCalcConfigError`` -- negative or non-numeric transfer fee.
    - ``FileNotFoundError`` / ``yaml.YAMLError`` from file loading.
"""

from __future__ import annotations

from typing import Any

from billing_config.loader import (
    compute_config_checksum,
    load_calc_config_file,
    parse_adjustment,
    parse_calc_config,
)
from billing_config.schema import CalcConfig
from billing_config.validator import ConfigValidationResult, validate_calc_config


def load_calc_config(record: dict[str, Any] | None) -> CalcConfig:
    """Parse a stored settings record into a CalcConfig snapshot."""
    return parse_calc_config(record)


__all__ = [
    "CalcConfig",
    "ConfigValidationResult",
    "compute_config_checksum",
    "load_calc_config",
    "load_calc_config_file",
    "parse_adjustment",
    "parse_calc_config",
    "validate_calc_config",
]
