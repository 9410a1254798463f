"""
billing_engines.breakdown -- Per-service tax and commission breakdown.

Responsibility:
    Decompose one service's sale price into VAT-bracket taxable bases and
    derive the agency's commission per bracket (VAT-exclusive), the VAT
    owed on that commission, the card-interest split and the bank-transfer
    fee.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Feeds the net commission resolver and the cross-service aggregator.

Invariants enforced:
    - Reconciliation (automatic mode): taxable_base_21 + taxable_base_10_5
      + exempt_base + non_computable_amount == sale_price whenever the
      itemized slices do not exceed the sale price.
    - Non-negativity: every base, commission and VAT figure is >= 0 for
      non-negative inputs; inconsistent inputs never yield negative bases.
    - Wholesale recomputation: a result is always built complete and
      frozen.  There is no API to patch one field of an existing result,
      so a stale VAT figure can never sit next to a fresh base.

Failure modes:
    - InvalidCalcConfigError for a negative transfer fee percentage.

Formula (automatic mode):
    bases        = tax_21, tax_10_5, exempt            (sale slices)
    non_comp     = sale - bases                          (floored at 0)
    margin       = max(sale - cost - other_taxes, 0)
    with VAT slices:
        taxed    = margin * (cost - exempt) / cost
        gross_21 = taxed * tax_21 / (tax_21 + tax_10_5), gross_10_5 the rest
        exempt commission = margin - taxed
    without VAT slices (cost - exempt > 0):
        net_21 = margin / (1.21 + exempt / (cost - exempt)), gross_21 = 1.21 net_21
        exempt commission = margin - gross_21
    otherwise the whole margin is exempt commission
    commission_x = gross_x / (1 + rate_x),  vat_x = gross_x - commission_x

Usage:
    from decimal import Decimal
    from billing_engines.breakdown import (
        BreakdownMode, ServiceFinancialInput, compute_breakdown,
    )

    result = compute_breakdown(
        ServiceFinancialInput(
            sale_price=Decimal("100000"),
            cost_price=Decimal("80000"),
            tax_21=Decimal("60000"),
            exempt=Decimal("40000"),
            currency="ARS",
        ),
        BreakdownMode.AUTO,
    )
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Any

from billing_kernel.domain.amounts import (
    ZERO,
    non_negative,
    to_decimal,
    to_optional_decimal,
)
from billing_kernel.domain.currency import (
    DEFAULT_FALLBACK_CURRENCY,
    normalize_currency_code,
)
from billing_kernel.exceptions import InvalidCalcConfigError
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.breakdown")


VAT_RATE_21 = Decimal("0.21")
VAT_RATE_10_5 = Decimal("0.105")
DEFAULT_TRANSFER_FEE_PCT = Decimal("0.024")

RECONCILIATION_TOLERANCE = Decimal("0.000001")


class BreakdownMode(str, Enum):
    """How a service's taxes are entered."""

    AUTO = "auto"  # itemized VAT slices and card interest
    MANUAL = "manual"  # a single aggregate other_taxes figure


@dataclass(frozen=True)
class ServiceFinancialInput:
    """
    Raw monetary facts of one service.

    All amounts are in the service's own currency.  ``transfer_fee_pct``
    left as None means "use the agency default"; ``transfer_fee_amount``
    left as None means no explicit fee was supplied.
    """

    sale_price: Decimal
    cost_price: Decimal
    tax_21: Decimal = ZERO
    tax_10_5: Decimal = ZERO
    exempt: Decimal = ZERO
    other_taxes: Decimal = ZERO
    card_interest: Decimal = ZERO
    card_interest_vat: Decimal = ZERO
    currency: str = "ARS"
    transfer_fee_pct: Decimal | None = None
    transfer_fee_amount: Decimal | None = None
    service_id: str | None = None

    def __post_init__(self) -> None:
        # JSON-shaped payloads carry floats, strings or None.
        for name in _INPUT_AMOUNT_FIELDS:
            object.__setattr__(
                self, name, to_decimal(getattr(self, name), name, default=ZERO)
            )
        for name in ("transfer_fee_pct", "transfer_fee_amount"):
            object.__setattr__(self, name, to_optional_decimal(getattr(self, name), name))
        if self.service_id is not None:
            object.__setattr__(self, "service_id", str(self.service_id))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> ServiceFinancialInput:
        """
        Build an input from a stored service record.

        Uses the record's own keys (``tax_105``, ``card_interest_21``,
        ``id_service``); absent amounts count as zero.
        """
        return cls(
            sale_price=record.get("sale_price"),
            cost_price=record.get("cost_price"),
            tax_21=record.get("tax_21"),
            tax_10_5=record.get("tax_105"),
            exempt=record.get("exempt"),
            other_taxes=record.get("other_taxes"),
            card_interest=record.get("card_interest"),
            card_interest_vat=record.get("card_interest_21"),
            currency=record.get("currency") or DEFAULT_FALLBACK_CURRENCY,
            transfer_fee_pct=record.get("transfer_fee_pct"),
            transfer_fee_amount=record.get("transfer_fee_amount"),
            service_id=record.get("id_service"),
        )

    @property
    def itemized_total(self) -> Decimal:
        return self.tax_21 + self.tax_10_5 + self.exempt + self.other_taxes

    @property
    def is_itemization_consistent(self) -> bool:
        """True when the itemized slices fit inside the sale price."""
        return self.itemized_total <= self.sale_price

    def with_sale_price(self, sale_price: Decimal) -> ServiceFinancialInput:
        return replace(self, sale_price=sale_price)


_INPUT_AMOUNT_FIELDS = (
    "sale_price",
    "cost_price",
    "tax_21",
    "tax_10_5",
    "exempt",
    "other_taxes",
    "card_interest",
    "card_interest_vat",
)


@dataclass(frozen=True)
class ServiceBreakdownResult:
    """Derived tax/commission breakdown of one service.  Always complete."""

    taxable_card_interest: Decimal
    vat_on_card_interest: Decimal
    non_computable_amount: Decimal
    taxable_base_21: Decimal
    taxable_base_10_5: Decimal
    exempt_base: Decimal
    commission_exempt: Decimal
    commission_21: Decimal
    commission_10_5: Decimal
    vat_on_commission_21: Decimal
    vat_on_commission_10_5: Decimal
    total_commission_without_vat: Decimal
    total_vat_impact: Decimal
    transfer_fee_amount: Decimal
    transfer_fee_pct: Decimal
    mode: BreakdownMode = BreakdownMode.AUTO

    @classmethod
    def zero(
        cls,
        mode: BreakdownMode = BreakdownMode.AUTO,
        transfer_fee_pct: Decimal = DEFAULT_TRANSFER_FEE_PCT,
    ) -> ServiceBreakdownResult:
        return cls(
            **{name: ZERO for name in AMOUNT_FIELDS},
            transfer_fee_pct=transfer_fee_pct,
            mode=mode,
        )

    @property
    def reconciliation_total(self) -> Decimal:
        return (
            self.taxable_base_21
            + self.taxable_base_10_5
            + self.exempt_base
            + self.non_computable_amount
        )

    def reconciles_with(
        self,
        sale_price: Decimal,
        tolerance: Decimal = RECONCILIATION_TOLERANCE,
    ) -> bool:
        """Check the bases add back up to the sale price."""
        return abs(self.reconciliation_total - sale_price) <= tolerance

    @property
    def total_vat_on_commission(self) -> Decimal:
        return self.vat_on_commission_21 + self.vat_on_commission_10_5

    def amounts(self) -> dict[str, Decimal]:
        """All monetary fields by name, in declaration order."""
        return {name: getattr(self, name) for name in AMOUNT_FIELDS}


AMOUNT_FIELDS: tuple[str, ...] = tuple(
    f.name
    for f in fields(ServiceBreakdownResult)
    if f.name not in ("transfer_fee_pct", "mode")
)


def resolve_transfer_fee(
    sale_price: Decimal,
    transfer_fee_pct: Decimal,
    explicit_amount: Decimal | None = None,
) -> Decimal:
    """Bank-transfer fee: the explicit amount wins, else sale * pct."""
    if explicit_amount is not None:
        return explicit_amount
    return sale_price * transfer_fee_pct


def _effective_fee_pct(
    service_input: ServiceFinancialInput,
    default_transfer_fee_pct: Decimal,
) -> Decimal:
    pct = (
        service_input.transfer_fee_pct
        if service_input.transfer_fee_pct is not None
        else default_transfer_fee_pct
    )
    if pct < ZERO:
        logger.error("breakdown_negative_transfer_fee_pct", extra={
            "service_id": service_input.service_id,
            "transfer_fee_pct": str(pct),
        })
        raise InvalidCalcConfigError("transfer_fee_pct", pct, "must be non-negative")
    return pct


def _split_gross(gross: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """Split a VAT-inclusive amount into (net, vat)."""
    if gross <= ZERO:
        return ZERO, ZERO
    net = gross / (Decimal("1") + rate)
    return net, gross - net


def _split_margin(
    service_input: ServiceFinancialInput,
    margin: Decimal,
) -> tuple[Decimal, Decimal, Decimal]:
    """Divide the margin into (gross_21, gross_10_5, exempt) commission."""
    tax_21 = non_negative(service_input.tax_21)
    tax_10_5 = non_negative(service_input.tax_10_5)
    cost = non_negative(service_input.cost_price)
    exempt = min(non_negative(service_input.exempt), cost)
    taxable_cost = cost - exempt

    if tax_21 + tax_10_5 > ZERO:
        # Taxed share of the margin follows the taxed share of the cost;
        # within it, 21% and 10.5% follow their itemized slices.
        taxable_margin = margin * taxable_cost / cost if cost > ZERO else ZERO
        gross_21 = taxable_margin * tax_21 / (tax_21 + tax_10_5)
        gross_10_5 = taxable_margin * tax_10_5 / (tax_21 + tax_10_5)
        return gross_21, gross_10_5, non_negative(margin - taxable_margin)

    if taxable_cost > ZERO:
        # No VAT itemized: pick the net 21% commission X and exempt Y with
        # X / Y = taxable_cost / exempt and 1.21 X + Y = margin.
        net_21 = margin / (Decimal("1") + VAT_RATE_21 + exempt / taxable_cost)
        gross_21 = net_21 * (Decimal("1") + VAT_RATE_21)
        return gross_21, ZERO, non_negative(margin - gross_21)

    return ZERO, ZERO, margin


def _compute_auto(
    service_input: ServiceFinancialInput,
    fee_pct: Decimal,
) -> ServiceBreakdownResult:
    sale = service_input.sale_price

    base_21 = non_negative(service_input.tax_21)
    base_10_5 = non_negative(service_input.tax_10_5)
    exempt_base = non_negative(service_input.exempt)
    non_computable = non_negative(sale - base_21 - base_10_5 - exempt_base)

    margin = non_negative(
        sale - service_input.cost_price - non_negative(service_input.other_taxes)
    )
    gross_21, gross_10_5, commission_exempt = _split_margin(service_input, margin)

    commission_21, vat_21 = _split_gross(gross_21, VAT_RATE_21)
    commission_10_5, vat_10_5 = _split_gross(gross_10_5, VAT_RATE_10_5)

    card_interest = non_negative(service_input.card_interest)
    vat_on_card_interest = min(non_negative(service_input.card_interest_vat), card_interest)
    taxable_card_interest = card_interest - vat_on_card_interest

    return ServiceBreakdownResult(
        taxable_card_interest=taxable_card_interest,
        vat_on_card_interest=vat_on_card_interest,
        non_computable_amount=non_computable,
        taxable_base_21=base_21,
        taxable_base_10_5=base_10_5,
        exempt_base=exempt_base,
        commission_exempt=commission_exempt,
        commission_21=commission_21,
        commission_10_5=commission_10_5,
        vat_on_commission_21=vat_21,
        vat_on_commission_10_5=vat_10_5,
        total_commission_without_vat=commission_exempt + commission_21 + commission_10_5,
        total_vat_impact=vat_21 + vat_10_5 + vat_on_card_interest,
        transfer_fee_amount=resolve_transfer_fee(
            sale, fee_pct, service_input.transfer_fee_amount
        ),
        transfer_fee_pct=fee_pct,
        mode=BreakdownMode.AUTO,
    )


def _compute_manual(
    service_input: ServiceFinancialInput,
    fee_pct: Decimal,
) -> ServiceBreakdownResult:
    sale = service_input.sale_price
    commission = non_negative(
        sale - service_input.cost_price - non_negative(service_input.other_taxes)
    )
    return replace(
        ServiceBreakdownResult.zero(BreakdownMode.MANUAL, fee_pct),
        non_computable_amount=non_negative(sale),
        commission_exempt=commission,
        total_commission_without_vat=commission,
        transfer_fee_amount=resolve_transfer_fee(
            sale, fee_pct, service_input.transfer_fee_amount
        ),
    )


@traced_engine(
    "breakdown",
    "1.0",
    fingerprint_fields=("service_input", "mode", "default_transfer_fee_pct"),
)
def compute_breakdown(
    service_input: ServiceFinancialInput,
    mode: BreakdownMode = BreakdownMode.AUTO,
    default_transfer_fee_pct: Decimal = DEFAULT_TRANSFER_FEE_PCT,
) -> ServiceBreakdownResult:
    """
    Compute the full breakdown of one service.

    Args:
        service_input: Raw monetary facts of the service.
        mode: AUTO for itemized VAT slices, MANUAL for a single tax figure.
        default_transfer_fee_pct: Agency fee used when the service carries
            no fee percentage of its own.

    Returns:
        A complete, freshly built ServiceBreakdownResult.

    Raises:
        InvalidCalcConfigError: the effective fee percentage is negative.
    """
    t0 = time.monotonic()
    try:
        mode = BreakdownMode(mode)
    except ValueError as exc:
        raise InvalidCalcConfigError(
            "billing_breakdown_mode", mode, "unknown mode"
        ) from exc
    fee_pct = _effective_fee_pct(service_input, default_transfer_fee_pct)

    match mode:
        case BreakdownMode.AUTO:
            result = _compute_auto(service_input, fee_pct)
        case BreakdownMode.MANUAL:
            result = _compute_manual(service_input, fee_pct)
        case _:
            raise InvalidCalcConfigError("billing_breakdown_mode", mode, "unknown mode")

    if mode is BreakdownMode.AUTO and not service_input.is_itemization_consistent:
        logger.warning("breakdown_itemization_exceeds_sale", extra={
            "service_id": service_input.service_id,
            "sale_price": str(service_input.sale_price),
            "itemized_total": str(service_input.itemized_total),
        })

    logger.debug("breakdown_computed", extra={
        "service_id": service_input.service_id,
        "currency": normalize_currency_code(service_input.currency),
        "mode": mode.value,
        "total_commission_without_vat": str(result.total_commission_without_vat),
        "total_vat_impact": str(result.total_vat_impact),
        "transfer_fee_amount": str(result.transfer_fee_amount),
        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
    })
    return result


def recompute_breakdown(
    previous: ServiceBreakdownResult | None,
    service_input: ServiceFinancialInput,
    mode: BreakdownMode = BreakdownMode.AUTO,
    default_transfer_fee_pct: Decimal = DEFAULT_TRANSFER_FEE_PCT,
) -> ServiceBreakdownResult:
    """
    Replace a previous breakdown after an input change.

    The previous result is discarded whole; nothing from it survives into
    the new one.  It is accepted only so callers have one call for the
    "input changed" event.
    """
    if previous is not None:
        logger.debug("breakdown_invalidated", extra={
            "service_id": service_input.service_id,
            "previous_mode": previous.mode.value,
        })
    return compute_breakdown(service_input, mode, default_transfer_fee_pct)
