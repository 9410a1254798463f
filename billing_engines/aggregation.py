"""
billing_engines.aggregation -- Multi-service, multi-currency booking totals.

Responsibility:
    Fold the per-service inputs, breakdowns and adjustment totals of one
    booking into one aggregate per currency code.  In booking-sale-total
    mode, replace the per-service sale figures with the booking-level sale
    total of each currency and derive the commission base from it.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Upstream: breakdown, adjustments, net_commission.
    Downstream: billing_services.booking_billing (summary for display and
    for the persisted payload).

Invariants enforced:
    - Currency isolation: amounts in different currencies are never added.
      CurrencyAggregate.__add__ raises CurrencyMismatchError otherwise.
    - Deterministic ordering: the returned mapping follows the order in
      which currencies first appear among the services.
    - Missing booking-level sale totals are reported for every currency at
      once and never treated as zero.

Failure modes:
    - MissingBookingSaleTotalError in booking-sale-total mode.
    - CurrencyMismatchError when aggregates of different currencies meet.

Usage:
    from billing_engines.aggregation import ServiceLine, aggregate_by_currency

    totals = aggregate_by_currency([
        ServiceLine(service_input, breakdown, adjustments),
        ...
    ])
    totals["USD"].net_commission
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import TYPE_CHECKING

from billing_kernel.domain.amounts import ZERO, non_negative
from billing_kernel.domain.currency import (
    DEFAULT_FALLBACK_CURRENCY,
    normalize_currency_code,
)
from billing_kernel.exceptions import (
    CurrencyMismatchError,
    MissingBookingSaleTotalError,
)
from billing_kernel.logging_config import get_logger
from billing_engines.adjustments import (
    AdjustmentConfig,
    AdjustmentTotals,
    evaluate_adjustments,
)
from billing_engines.breakdown import ServiceBreakdownResult, ServiceFinancialInput
from billing_engines.net_commission import net_commission_amount
from billing_engines.tracer import traced_engine

if TYPE_CHECKING:
    from billing_config.schema import CalcConfig

logger = get_logger("engines.aggregation")


@dataclass(frozen=True)
class ServiceLine:
    """One service of a booking with everything computed for it."""

    service_input: ServiceFinancialInput
    breakdown: ServiceBreakdownResult
    adjustments: AdjustmentTotals = field(default_factory=AdjustmentTotals.empty)

    @property
    def currency(self) -> str:
        return self.service_input.currency


@dataclass(frozen=True)
class CurrencyAggregate:
    """Sum of every numeric service figure for one currency."""

    currency: str
    service_count: int = 0

    # Raw inputs
    sale_price: Decimal = ZERO
    cost_price: Decimal = ZERO
    tax_21: Decimal = ZERO
    tax_10_5: Decimal = ZERO
    exempt: Decimal = ZERO
    other_taxes: Decimal = ZERO

    # Breakdown
    taxable_card_interest: Decimal = ZERO
    vat_on_card_interest: Decimal = ZERO
    non_computable_amount: Decimal = ZERO
    taxable_base_21: Decimal = ZERO
    taxable_base_10_5: Decimal = ZERO
    exempt_base: Decimal = ZERO
    commission_exempt: Decimal = ZERO
    commission_21: Decimal = ZERO
    commission_10_5: Decimal = ZERO
    vat_on_commission_21: Decimal = ZERO
    vat_on_commission_10_5: Decimal = ZERO
    total_commission_without_vat: Decimal = ZERO
    total_vat_impact: Decimal = ZERO

    # Card interest of services that carry no split
    card_interest_raw: Decimal = ZERO
    transfer_fees_amount: Decimal = ZERO
    extra_costs_amount: Decimal = ZERO
    extra_taxes_amount: Decimal = ZERO

    @property
    def margin(self) -> Decimal:
        return self.sale_price - self.cost_price

    @property
    def extra_total(self) -> Decimal:
        return self.extra_costs_amount + self.extra_taxes_amount

    @property
    def card_interest_total(self) -> Decimal:
        """Card split when present, else the raw card interest."""
        split = self.taxable_card_interest + self.vat_on_card_interest
        return split if split > ZERO else self.card_interest_raw

    @property
    def net_commission(self) -> Decimal:
        return non_negative(
            self.total_commission_without_vat
            - self.transfer_fees_amount
            - self.extra_total
        )

    def __add__(self, other: CurrencyAggregate) -> CurrencyAggregate:
        if not isinstance(other, CurrencyAggregate):
            return NotImplemented
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        summed = {
            name: getattr(self, name) + getattr(other, name)
            for name in _SUMMED_FIELDS
        }
        return replace(self, **summed)

    @classmethod
    def from_line(cls, currency: str, line: ServiceLine) -> CurrencyAggregate:
        """Aggregate of a single service."""
        service_input = line.service_input
        breakdown = line.breakdown

        raw_card = ZERO
        split = breakdown.taxable_card_interest + breakdown.vat_on_card_interest
        if split <= ZERO and service_input.card_interest > ZERO:
            raw_card = service_input.card_interest

        return cls(
            currency=currency,
            service_count=1,
            sale_price=service_input.sale_price,
            cost_price=service_input.cost_price,
            tax_21=service_input.tax_21,
            tax_10_5=service_input.tax_10_5,
            exempt=service_input.exempt,
            other_taxes=service_input.other_taxes,
            taxable_card_interest=breakdown.taxable_card_interest,
            vat_on_card_interest=breakdown.vat_on_card_interest,
            non_computable_amount=breakdown.non_computable_amount,
            taxable_base_21=breakdown.taxable_base_21,
            taxable_base_10_5=breakdown.taxable_base_10_5,
            exempt_base=breakdown.exempt_base,
            commission_exempt=breakdown.commission_exempt,
            commission_21=breakdown.commission_21,
            commission_10_5=breakdown.commission_10_5,
            vat_on_commission_21=breakdown.vat_on_commission_21,
            vat_on_commission_10_5=breakdown.vat_on_commission_10_5,
            total_commission_without_vat=breakdown.total_commission_without_vat,
            total_vat_impact=breakdown.total_vat_impact,
            card_interest_raw=raw_card,
            transfer_fees_amount=breakdown.transfer_fee_amount,
            extra_costs_amount=line.adjustments.total_costs,
            extra_taxes_amount=line.adjustments.total_taxes,
        )


_SUMMED_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(CurrencyAggregate) if f.name != "currency"
)


@dataclass(frozen=True)
class BookingCommissionBase:
    """Commission base of one currency computed from the booking sale total."""

    currency: str
    sale_total: Decimal
    cost_total: Decimal
    tax_total: Decimal
    commission_before_fee: Decimal
    transfer_fee_pct: Decimal
    transfer_fee: Decimal
    adjustments: AdjustmentTotals
    commission_base: Decimal


@dataclass(frozen=True)
class BookingSummary:
    """Per-currency view of a whole booking."""

    totals: dict[str, CurrencyAggregate]
    use_booking_sale_total: bool = False
    booking_bases: dict[str, BookingCommissionBase] = field(default_factory=dict)

    @property
    def currencies(self) -> list[str]:
        return list(self.totals)

    def net_commission(self, currency: str) -> Decimal:
        """Net commission of one currency, honoring the booking base."""
        base = self.booking_bases.get(currency)
        if base is not None:
            return base.commission_base
        return self.totals[currency].net_commission


def _group_key(line: ServiceLine, fallback_currency: str) -> str:
    code = normalize_currency_code(line.currency, fallback_currency)
    if code == fallback_currency and not (line.currency or "").strip():
        logger.debug("aggregation_currency_defaulted", extra={
            "service_id": line.service_input.service_id,
            "fallback_currency": fallback_currency,
        })
    return code


@traced_engine("aggregation", "1.0", fingerprint_fields=("lines", "fallback_currency"))
def aggregate_by_currency(
    lines: Sequence[ServiceLine],
    fallback_currency: str = DEFAULT_FALLBACK_CURRENCY,
) -> dict[str, CurrencyAggregate]:
    """
    Sum every numeric service figure per currency.

    Args:
        lines: Services of one booking.
        fallback_currency: Code used for services with a blank currency.

    Returns:
        Mapping of currency code to CurrencyAggregate, in order of first
        appearance.
    """
    t0 = time.monotonic()
    fallback_currency = normalize_currency_code(fallback_currency)
    totals: dict[str, CurrencyAggregate] = {}

    for line in lines:
        code = _group_key(line, fallback_currency)
        single = CurrencyAggregate.from_line(code, line)
        existing = totals.get(code)
        totals[code] = single if existing is None else existing + single

    logger.debug("aggregation_completed", extra={
        "service_count": len(lines),
        "currencies": list(totals),
        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
    })
    return totals


def validate_booking_sale_totals(
    currencies: Sequence[str],
    booking_sale_totals: Mapping[str, Decimal] | None,
) -> list[str]:
    """Return the sorted currency codes lacking a positive booking sale total."""
    provided = {
        normalize_currency_code(code): amount
        for code, amount in (booking_sale_totals or {}).items()
    }
    missing = set()
    for code in currencies:
        amount = provided.get(normalize_currency_code(code))
        if amount is None or amount <= ZERO:
            missing.add(normalize_currency_code(code))
    return sorted(missing)


@traced_engine(
    "booking_commission_base",
    "1.0",
    fingerprint_fields=(
        "currency", "sale_total", "cost_total", "tax_total",
        "transfer_fee_pct", "adjustments",
    ),
)
def compute_booking_commission_base(
    currency: str,
    sale_total: Decimal,
    cost_total: Decimal,
    tax_total: Decimal,
    transfer_fee_pct: Decimal,
    adjustments: Sequence[AdjustmentConfig] = (),
) -> BookingCommissionBase:
    """
    Commission base of one currency when the sale is set at booking level.

    commission_before_fee = max(sale - cost - taxes, 0)
    transfer_fee          = sale * transfer_fee_pct
    commission_base       = max(before_fee - fee - adjustments.total, 0)
    """
    commission_before_fee = non_negative(sale_total - cost_total - tax_total)
    transfer_fee = sale_total * transfer_fee_pct
    evaluated = evaluate_adjustments(adjustments, sale_total, cost_total)
    net = net_commission_amount(commission_before_fee, transfer_fee, evaluated.total)

    return BookingCommissionBase(
        currency=currency,
        sale_total=sale_total,
        cost_total=cost_total,
        tax_total=tax_total,
        commission_before_fee=commission_before_fee,
        transfer_fee_pct=transfer_fee_pct,
        transfer_fee=transfer_fee,
        adjustments=evaluated,
        commission_base=net if net is not None else ZERO,
    )


def _apply_booking_base(
    aggregate: CurrencyAggregate,
    base: BookingCommissionBase,
) -> CurrencyAggregate:
    return replace(
        aggregate,
        sale_price=base.sale_total,
        total_commission_without_vat=base.commission_before_fee,
        commission_exempt=base.commission_before_fee,
        transfer_fees_amount=base.transfer_fee,
        extra_costs_amount=base.adjustments.total_costs,
        extra_taxes_amount=base.adjustments.total_taxes,
    )


def aggregate_booking(
    lines: Sequence[ServiceLine],
    config: CalcConfig,
    booking_sale_totals: Mapping[str, Decimal] | None = None,
) -> BookingSummary:
    """
    Aggregate a booking under the agency's calculation settings.

    With ``config.use_booking_sale_total`` false this is the plain
    per-currency aggregation.  Otherwise every observed currency must have
    a positive booking-level sale total, which becomes the sale basis of
    that currency.

    Raises:
        MissingBookingSaleTotalError: booking-sale-total mode and at least
            one currency without a positive total.
    """
    totals = aggregate_by_currency(lines, config.fallback_currency)

    if not config.use_booking_sale_total:
        return BookingSummary(totals=totals)

    missing = validate_booking_sale_totals(list(totals), booking_sale_totals)
    if missing:
        logger.error("booking_sale_total_rejected", extra={
            "missing_currencies": missing,
        })
        raise MissingBookingSaleTotalError(missing)

    provided = {
        normalize_currency_code(code): amount
        for code, amount in (booking_sale_totals or {}).items()
    }
    bases: dict[str, BookingCommissionBase] = {}
    adjusted: dict[str, CurrencyAggregate] = {}
    for code, aggregate in totals.items():
        base = compute_booking_commission_base(
            code,
            provided[code],
            aggregate.cost_price,
            aggregate.other_taxes,
            config.transfer_fee_pct,
            config.adjustments,
        )
        bases[code] = base
        adjusted[code] = _apply_booking_base(aggregate, base)

    logger.info("booking_sale_total_applied", extra={
        "currencies": list(bases),
    })
    return BookingSummary(
        totals=adjusted,
        use_booking_sale_total=True,
        booking_bases=bases,
    )
