"""
Calculation-settings validator (``billing_config.validator``).

Checks a parsed ``CalcConfig`` for problems the parser cannot reject on
its own.  Errors block saving the settings; warnings are shown to the
agency for review.

Contract
--------
* Duplicate adjustment ids are errors.
* A percent adjustment above 1 (100%) is a warning; it is usually a
  percent-point value entered where a proportion was expected.
* A transfer fee above 10% is a warning.
* Booking-level sale totals combined with per-service automatic mode is a
  warning, since the automatic breakdown is not used in that mode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from billing_kernel.logging_config import get_logger
from billing_config.schema import CalcConfig
from billing_engines.adjustments import AdjustmentValueType
from billing_engines.breakdown import BreakdownMode

logger = get_logger("config.validator")

MAX_PERCENT_VALUE = Decimal("1")
TRANSFER_FEE_WARNING_PCT = Decimal("0.10")


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_calc_config(config: CalcConfig) -> ConfigValidationResult:
    """Validate calculation settings and return errors and warnings."""
    result = ConfigValidationResult()

    _validate_adjustment_ids(config, result)
    _validate_adjustment_values(config, result)
    _validate_transfer_fee(config, result)
    _validate_mode(config, result)

    if not result.is_valid:
        logger.warning("calc_config_invalid", extra={
            "error_count": len(result.errors),
            "warning_count": len(result.warnings),
        })
    return result


def _validate_adjustment_ids(config: CalcConfig, result: ConfigValidationResult) -> None:
    seen: set[str] = set()
    for adjustment in config.adjustments:
        if adjustment.id in seen:
            result.add_error(
                f"Duplicate adjustment id: '{adjustment.id}' appears more than once"
            )
        seen.add(adjustment.id)


def _validate_adjustment_values(config: CalcConfig, result: ConfigValidationResult) -> None:
    for adjustment in config.adjustments:
        if (
            adjustment.value_type == AdjustmentValueType.PERCENT
            and adjustment.value > MAX_PERCENT_VALUE
        ):
            result.add_warning(
                f"Adjustment '{adjustment.id}' percent value {adjustment.value} "
                f"exceeds 1; percent values are proportions (0.035 = 3.5%)"
            )


def _validate_transfer_fee(config: CalcConfig, result: ConfigValidationResult) -> None:
    if config.transfer_fee_pct > TRANSFER_FEE_WARNING_PCT:
        result.add_warning(
            f"Transfer fee {config.transfer_fee_pct} is above "
            f"{TRANSFER_FEE_WARNING_PCT}"
        )


def _validate_mode(config: CalcConfig, result: ConfigValidationResult) -> None:
    if config.use_booking_sale_total and config.mode == BreakdownMode.AUTO:
        result.add_warning(
            "Booking-level sale totals use the manual breakdown; "
            "the automatic mode setting is ignored"
        )
