"""
billing_engines.adjustments -- Configurable extra cost / tax adjustments.

Responsibility:
    Evaluate the agency's ordered list of adjustment rules against one
    service's sale and cost figures.  Each active rule yields an amount;
    cost-kind amounts and tax-kind amounts are accumulated into separate
    running totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the net commission resolver, the cross-service aggregator
    and billing_services.

Invariants enforced:
    - Determinism: identical configs (same order) and amounts always give
      identical items (same order) and identical totals.
    - Inactive rules are skipped entirely; their configuration is untouched.
    - Non-negativity: a non-negative value over a non-negative basis never
      yields a negative amount; the margin basis is floored at zero.
    - The configuration list is never mutated.

Failure modes:
    - InvalidAdjustmentConfigError when a rule carries a negative value or
      a kind/basis/value type outside the closed tag sets.

Usage:
    from decimal import Decimal
    from billing_engines.adjustments import (
        AdjustmentBasis, AdjustmentConfig, AdjustmentKind,
        AdjustmentValueType, evaluate_adjustments,
    )

    rule = AdjustmentConfig(
        id="gross-income",
        label="Ingresos brutos",
        kind=AdjustmentKind.TAX,
        basis=AdjustmentBasis.SALE,
        value_type=AdjustmentValueType.PERCENT,
        value=Decimal("0.035"),
    )
    totals = evaluate_adjustments([rule], sale=Decimal("100000"), cost=Decimal("60000"))
    print(totals.total_taxes)  # 3500.000
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Sequence

from billing_kernel.domain.amounts import ZERO, non_negative, to_decimal
from billing_kernel.exceptions import InvalidAdjustmentConfigError, InvalidAmountError
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.adjustments")


class AdjustmentKind(str, Enum):
    """Which running total an adjustment feeds."""

    COST = "cost"
    TAX = "tax"


class AdjustmentBasis(str, Enum):
    """Quantity an adjustment is applied against."""

    SALE = "sale"
    COST = "cost"
    MARGIN = "margin"  # sale - cost, floored at zero


class AdjustmentValueType(str, Enum):
    """How the configured value is read."""

    PERCENT = "percent"  # proportion, 0.035 = 3.5%
    FIXED = "fixed"  # absolute amount in the service's currency


def _parse_tag(enum_cls: type[Enum], raw: Any, adjustment_id: str, field_name: str) -> Any:
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError as exc:
        logger.error("adjustment_unknown_tag", extra={
            "adjustment_id": adjustment_id,
            "field": field_name,
            "value": str(raw),
        })
        raise InvalidAdjustmentConfigError(
            adjustment_id, field_name, raw, "unknown tag"
        ) from exc


@dataclass(frozen=True)
class AdjustmentConfig:
    """
    One agency-level adjustment rule.

    Immutable: editing a rule means replacing it in the agency's list.
    Tags are coerced from their string form, so records read from JSON can
    be passed straight through.
    """

    id: str
    label: str
    kind: AdjustmentKind
    basis: AdjustmentBasis
    value_type: AdjustmentValueType
    value: Decimal
    active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "kind", _parse_tag(AdjustmentKind, self.kind, self.id, "kind")
        )
        object.__setattr__(
            self, "basis", _parse_tag(AdjustmentBasis, self.basis, self.id, "basis")
        )
        object.__setattr__(
            self,
            "value_type",
            _parse_tag(AdjustmentValueType, self.value_type, self.id, "valueType"),
        )
        try:
            value = to_decimal(self.value, "value")
        except InvalidAmountError as exc:
            raise InvalidAdjustmentConfigError(
                self.id, "value", self.value, "not a number"
            ) from exc
        if value < ZERO:
            logger.error("adjustment_negative_value", extra={
                "adjustment_id": self.id,
                "value": str(value),
            })
            raise InvalidAdjustmentConfigError(
                self.id, "value", self.value, "must be non-negative"
            )
        object.__setattr__(self, "value", value)

    @property
    def value_percent(self) -> Decimal:
        """Percent value for display (0.035 -> 3.5)."""
        return self.value * Decimal("100")

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape."""
        return {
            "id": self.id,
            "label": self.label,
            "kind": self.kind.value,
            "basis": self.basis.value,
            "valueType": self.value_type.value,
            "value": float(self.value),
            "active": self.active,
        }


@dataclass(frozen=True)
class AdjustmentComputed:
    """An active adjustment rule evaluated for one service."""

    config: AdjustmentConfig
    basis_amount: Decimal
    amount: Decimal

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def label(self) -> str:
        return self.config.label

    @property
    def kind(self) -> AdjustmentKind:
        return self.config.kind

    @property
    def basis(self) -> AdjustmentBasis:
        return self.config.basis

    @property
    def value_type(self) -> AdjustmentValueType:
        return self.config.value_type

    @property
    def value(self) -> Decimal:
        return self.config.value

    def to_record(self) -> dict[str, Any]:
        record = self.config.to_record()
        record["amount"] = float(self.amount)
        return record


@dataclass(frozen=True)
class AdjustmentTotals:
    """All evaluated adjustments of one service plus their running totals."""

    items: tuple[AdjustmentComputed, ...] = field(default_factory=tuple)
    total_costs: Decimal = ZERO
    total_taxes: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.total_costs + self.total_taxes

    @property
    def count(self) -> int:
        return len(self.items)

    @classmethod
    def empty(cls) -> AdjustmentTotals:
        return cls()

    def by_kind(self, kind: AdjustmentKind) -> tuple[AdjustmentComputed, ...]:
        return tuple(item for item in self.items if item.kind == kind)


def _basis_amount(config: AdjustmentConfig, sale: Decimal, cost: Decimal) -> Decimal:
    match config.basis:
        case AdjustmentBasis.SALE:
            return sale
        case AdjustmentBasis.COST:
            return cost
        case AdjustmentBasis.MARGIN:
            return non_negative(sale - cost)
        case _:
            raise InvalidAdjustmentConfigError(
                config.id, "basis", config.basis, "unknown tag"
            )


def _adjustment_amount(config: AdjustmentConfig, basis_amount: Decimal) -> Decimal:
    match config.value_type:
        case AdjustmentValueType.PERCENT:
            return basis_amount * config.value
        case AdjustmentValueType.FIXED:
            return config.value
        case _:
            raise InvalidAdjustmentConfigError(
                config.id, "valueType", config.value_type, "unknown tag"
            )


@traced_engine("adjustments", "1.0", fingerprint_fields=("configs", "sale", "cost"))
def evaluate_adjustments(
    configs: Sequence[AdjustmentConfig],
    sale: Decimal,
    cost: Decimal,
) -> AdjustmentTotals:
    """
    Evaluate the active adjustment rules against one service.

    Args:
        configs: Agency adjustment rules, in configuration order.
        sale: Service sale price.
        cost: Service cost price.

    Returns:
        AdjustmentTotals with one item per active rule, in list order.

    Raises:
        InvalidAdjustmentConfigError: a rule has an unknown tag.
    """
    t0 = time.monotonic()
    items: list[AdjustmentComputed] = []
    total_costs = ZERO
    total_taxes = ZERO

    for config in configs:
        if not config.active:
            continue
        basis_amount = _basis_amount(config, sale, cost)
        amount = _adjustment_amount(config, basis_amount)
        items.append(
            AdjustmentComputed(config=config, basis_amount=basis_amount, amount=amount)
        )
        match config.kind:
            case AdjustmentKind.COST:
                total_costs += amount
            case AdjustmentKind.TAX:
                total_taxes += amount
            case _:
                raise InvalidAdjustmentConfigError(
                    config.id, "kind", config.kind, "unknown tag"
                )

    result = AdjustmentTotals(
        items=tuple(items),
        total_costs=total_costs,
        total_taxes=total_taxes,
    )

    logger.debug("adjustments_evaluated", extra={
        "configured_count": len(configs),
        "active_count": len(items),
        "sale": str(sale),
        "cost": str(cost),
        "total_costs": str(total_costs),
        "total_taxes": str(total_taxes),
        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
    })
    return result
