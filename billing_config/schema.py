"""
CalcConfig schema.

Agency-level calculation settings: how service taxes are entered, the
default bank-transfer fee, the ordered adjustment rules and whether the
sale basis is set per booking instead of per service.

Key distinction:
  config record = JSON/YAML-shaped dict as stored by the agency
  CalcConfig    = parsed, validated, frozen snapshot used by the engines
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from billing_kernel.domain.currency import DEFAULT_FALLBACK_CURRENCY
from billing_engines.adjustments import AdjustmentConfig
from billing_engines.breakdown import DEFAULT_TRANSFER_FEE_PCT, BreakdownMode


@dataclass(frozen=True)
class CalcConfig:
    """Immutable snapshot of an agency's calculation settings."""

    mode: BreakdownMode = BreakdownMode.AUTO
    transfer_fee_pct: Decimal = DEFAULT_TRANSFER_FEE_PCT
    adjustments: tuple[AdjustmentConfig, ...] = field(default_factory=tuple)
    use_booking_sale_total: bool = False
    fallback_currency: str = DEFAULT_FALLBACK_CURRENCY

    @property
    def active_adjustments(self) -> tuple[AdjustmentConfig, ...]:
        return tuple(adj for adj in self.adjustments if adj.active)

    @property
    def effective_mode(self) -> BreakdownMode:
        """Booking-level sale totals force the manual breakdown."""
        if self.use_booking_sale_total:
            return BreakdownMode.MANUAL
        return self.mode

    def with_adjustments(self, adjustments: tuple[AdjustmentConfig, ...]) -> CalcConfig:
        return replace(self, adjustments=tuple(adjustments))

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted agency record shape."""
        return {
            "billing_breakdown_mode": self.mode.value,
            "transfer_fee_pct": float(self.transfer_fee_pct),
            "billing_adjustments": [adj.to_record() for adj in self.adjustments],
            "use_booking_sale_total": self.use_booking_sale_total,
        }
