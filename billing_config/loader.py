"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Parses the agency's calculation-settings record (JSON-shaped, as stored
alongside the agency) into a frozen ``CalcConfig``, and loads such records
from YAML files for fixtures and local tooling.

Architecture position
---------------------
**Config layer**.  Depends on billing_kernel and on the engine value types
(``AdjustmentConfig``, ``BreakdownMode``).  Engines never import the loader.

Invariants enforced
-------------------
* Legacy and missing fields take defaults: mode ``auto``, transfer fee
  0.024, no adjustments, per-service sale totals.
* Any mode other than ``"manual"`` maps to ``auto``.
* Invalid adjustment rules and negative fees fail fast; they are never
  coerced to zero.
* ``compute_config_checksum`` produces a deterministic SHA-256 hash for
  change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad adjustment rule  -> ``InvalidAdjustmentConfigError``.
* Negative or non-numeric transfer fee  -> ``InvalidCalcConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from billing_kernel.domain.amounts import ZERO, to_decimal
from billing_kernel.domain.currency import (
    DEFAULT_FALLBACK_CURRENCY,
    normalize_currency_code,
)
from billing_kernel.exceptions import (
    InvalidAdjustmentConfigError,
    InvalidAmountError,
    InvalidCalcConfigError,
)
from billing_kernel.logging_config import get_logger
from billing_config.schema import CalcConfig
from billing_engines.adjustments import AdjustmentConfig
from billing_engines.breakdown import DEFAULT_TRANSFER_FEE_PCT, BreakdownMode

logger = get_logger("config.loader")

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    JSON documents are valid YAML, so stored agency records can be loaded
    as they are.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return default


def parse_mode(value: Any) -> BreakdownMode:
    """Only an explicit ``"manual"`` selects manual mode."""
    if isinstance(value, BreakdownMode):
        return value
    if isinstance(value, str) and value.strip().lower() == BreakdownMode.MANUAL.value:
        return BreakdownMode.MANUAL
    return BreakdownMode.AUTO


def parse_transfer_fee_pct(value: Any) -> Decimal:
    """
    Parse the agency transfer fee as a proportion.

    Accepts proportions (0.024) and percent points (2.4), the latter being
    any value above 1.  A comma decimal separator is accepted in strings.

    Raises:
        InvalidCalcConfigError: negative or non-numeric value.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_TRANSFER_FEE_PCT
    raw = value.replace(",", ".") if isinstance(value, str) else value
    try:
        pct = to_decimal(raw, "transfer_fee_pct")
    except InvalidAmountError as exc:
        raise InvalidCalcConfigError("transfer_fee_pct", value, "not a number") from exc
    if pct < ZERO:
        raise InvalidCalcConfigError("transfer_fee_pct", value, "must be non-negative")
    if pct > Decimal("1"):
        pct = pct / Decimal("100")
    return pct


def parse_adjustment(data: dict[str, Any]) -> AdjustmentConfig:
    """
    Parse one adjustment record ``{id, label, kind, basis, valueType,
    value, active}``.

    Raises:
        InvalidAdjustmentConfigError: record is not a mapping, lacks an
            id, or carries an unknown tag or a negative value.
    """
    if not isinstance(data, dict):
        raise InvalidAdjustmentConfigError("?", "record", data, "not a mapping")
    adjustment_id = str(data.get("id") or "").strip()
    if not adjustment_id:
        raise InvalidAdjustmentConfigError("?", "id", data.get("id"), "missing id")

    return AdjustmentConfig(
        id=adjustment_id,
        label=str(data.get("label") or adjustment_id),
        kind=data.get("kind"),
        basis=data.get("basis"),
        value_type=data.get("valueType", data.get("value_type")),
        value=data.get("value"),
        active=parse_bool(data.get("active"), default=True),
    )


def parse_calc_config(record: dict[str, Any] | None) -> CalcConfig:
    """
    Parse an agency calculation-settings record into a CalcConfig.

    Record shape::

        {
            "billing_breakdown_mode": "auto" | "manual",
            "transfer_fee_pct": 0.024,
            "billing_adjustments": [ {adjustment record}, ... ],
            "use_booking_sale_total": false,
        }
    """
    record = record or {}

    raw_adjustments = record.get("billing_adjustments")
    if not isinstance(raw_adjustments, list):
        if raw_adjustments is not None:
            logger.warning("calc_config_adjustments_ignored", extra={
                "value_type": type(raw_adjustments).__name__,
            })
        raw_adjustments = []

    try:
        adjustments = tuple(parse_adjustment(item) for item in raw_adjustments)
        transfer_fee_pct = parse_transfer_fee_pct(record.get("transfer_fee_pct"))
    except (InvalidAdjustmentConfigError, InvalidCalcConfigError) as exc:
        logger.error("calc_config_rejected", extra={
            "error_code": exc.code,
            "detail": str(exc),
        })
        raise

    config = CalcConfig(
        mode=parse_mode(record.get("billing_breakdown_mode")),
        transfer_fee_pct=transfer_fee_pct,
        adjustments=adjustments,
        use_booking_sale_total=parse_bool(record.get("use_booking_sale_total")),
        fallback_currency=normalize_currency_code(
            record.get("fallback_currency"), DEFAULT_FALLBACK_CURRENCY
        ),
    )

    logger.debug("calc_config_parsed", extra={
        "mode": config.mode.value,
        "transfer_fee_pct": str(config.transfer_fee_pct),
        "adjustment_count": len(config.adjustments),
        "use_booking_sale_total": config.use_booking_sale_total,
    })
    return config


def load_calc_config_file(path: Path | str) -> CalcConfig:
    """Load and parse a calculation-settings record from a YAML/JSON file."""
    path = Path(path)
    data = load_yaml_file(path)
    config = parse_calc_config(data)
    logger.info("calc_config_loaded", extra={
        "path": str(path),
        "checksum": compute_config_checksum(config.to_record()),
    })
    return config


def compute_config_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
