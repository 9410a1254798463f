"""
billing_services.booking_billing -- Booking-level billing orchestration.

Responsibility:
    Compose the pure engines into the flow a booking screen needs: for each
    service compute the breakdown, evaluate the agency adjustments and
    resolve the net commission; for the booking fold everything into a
    per-currency summary, a balance and a commission distribution; and
    build the JSON payload persisted alongside each service.

Architecture position:
    Services -- orchestration over engines + kernel.  Holds one immutable
    CalcConfig snapshot; never persists and never reads the clock.

Invariants enforced:
    - Each ServiceCalculation is built whole from one config snapshot.
    - Booking-sale-total mode forces the manual breakdown and leaves
      per-service adjustments empty; adjustments are then evaluated once per
      currency against the booking sale total.
    - Payload amounts are rounded to the currency's precision only at the
      payload boundary; engine results keep full Decimal precision.

Failure modes:
    - MissingBookingSaleTotalError from summarize() and balance() in
      booking-sale-total mode.
    - InvalidCalcConfigError for a negative per-service transfer fee.

Usage:
    from billing_config import load_calc_config
    from billing_services.booking_billing import BookingBillingService

    service = BookingBillingService(load_calc_config(agency_record))
    calc = service.calculate_service(service_input)
    calc.payload["totalCommissionWithoutVAT"]

    summary = service.summarize(inputs)
    summary.totals["ARS"].net_commission
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from billing_config.schema import CalcConfig
from billing_engines.adjustments import AdjustmentTotals, evaluate_adjustments
from billing_engines.aggregation import (
    BookingSummary,
    ServiceLine,
    aggregate_booking,
    validate_booking_sale_totals,
)
from billing_engines.balance import CurrencyBalance, Receipt, compute_booking_balance
from billing_engines.breakdown import (
    ServiceBreakdownResult,
    ServiceFinancialInput,
    compute_breakdown,
)
from billing_engines.commission_split import (
    CommissionRuleSet,
    CommissionSplit,
    resolve_commission_rule,
    split_commission,
)
from billing_engines.net_commission import resolve_net_commission
from billing_kernel.domain.currency import CurrencyRegistry, normalize_currency_code
from billing_kernel.exceptions import MissingBookingSaleTotalError
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.booking_billing")


# Legacy payload key -> ServiceBreakdownResult attribute.
PAYLOAD_FIELD_MAP: tuple[tuple[str, str], ...] = (
    ("taxableCardInterest", "taxable_card_interest"),
    ("vatOnCardInterest", "vat_on_card_interest"),
    ("nonComputable", "non_computable_amount"),
    ("taxableBase21", "taxable_base_21"),
    ("taxableBase10_5", "taxable_base_10_5"),
    ("commissionExempt", "commission_exempt"),
    ("commission21", "commission_21"),
    ("commission10_5", "commission_10_5"),
    ("vatOnCommission21", "vat_on_commission_21"),
    ("vatOnCommission10_5", "vat_on_commission_10_5"),
    ("totalCommissionWithoutVAT", "total_commission_without_vat"),
    ("impIVA", "total_vat_impact"),
)


@dataclass(frozen=True)
class ServiceCalculation:
    """Everything computed for one service under one config snapshot."""

    service_input: ServiceFinancialInput
    breakdown: ServiceBreakdownResult
    adjustments: AdjustmentTotals
    net_commission: Decimal | None
    config: CalcConfig

    @property
    def currency(self) -> str:
        return normalize_currency_code(
            self.service_input.currency, self.config.fallback_currency
        )

    @property
    def line(self) -> ServiceLine:
        return ServiceLine(self.service_input, self.breakdown, self.adjustments)

    @property
    def payload(self) -> dict[str, Any]:
        return build_service_payload(self)


def build_service_payload(calculation: ServiceCalculation) -> dict[str, Any]:
    """
    Build the JSON-ready payload persisted alongside a service.

    Amounts are rounded to the currency's decimal places and emitted as
    floats under the legacy field names.
    """
    currency = calculation.currency
    breakdown = calculation.breakdown

    def money(amount: Decimal) -> float:
        return float(CurrencyRegistry.round(amount, currency))

    payload: dict[str, Any] = {
        key: money(getattr(breakdown, attr)) for key, attr in PAYLOAD_FIELD_MAP
    }
    payload["transfer_fee_pct"] = float(breakdown.transfer_fee_pct)
    payload["transfer_fee_amount"] = money(breakdown.transfer_fee_amount)
    payload["extra_costs_amount"] = money(calculation.adjustments.total_costs)
    payload["extra_taxes_amount"] = money(calculation.adjustments.total_taxes)

    extra_adjustments = []
    for item in calculation.adjustments.items:
        record = item.to_record()
        record["amount"] = money(item.amount)
        extra_adjustments.append(record)
    payload["extra_adjustments"] = extra_adjustments
    return payload


class BookingBillingService:
    """
    Billing calculations for the services of one booking.

    Contract:
        Receives a CalcConfig snapshot via constructor injection.
    Guarantees:
        - ``calculate_service`` returns a complete ServiceCalculation.
        - ``summarize`` returns a per-currency BookingSummary and never
          adds amounts of different currencies.
    Non-goals:
        - Does not decide when to recompute; see RecalculationCoordinator.
        - Does not persist payloads.
    """

    def __init__(self, config: CalcConfig | None = None):
        self._config = config if config is not None else CalcConfig()

    @property
    def config(self) -> CalcConfig:
        return self._config

    def calculate_service(self, service_input: ServiceFinancialInput) -> ServiceCalculation:
        """Breakdown, adjustments and net commission of one service."""
        config = self._config
        with LogContext.bind(service_id=service_input.service_id):
            t0 = time.monotonic()
            breakdown = compute_breakdown(
                service_input, config.effective_mode, config.transfer_fee_pct
            )
            if config.use_booking_sale_total:
                adjustments = AdjustmentTotals.empty()
            else:
                adjustments = evaluate_adjustments(
                    config.adjustments,
                    service_input.sale_price,
                    service_input.cost_price,
                )
            net = resolve_net_commission(breakdown, adjustments)

            logger.info("service_calculated", extra={
                "currency": normalize_currency_code(
                    service_input.currency, config.fallback_currency
                ),
                "mode": breakdown.mode.value,
                "net_commission": str(net) if net is not None else None,
                "adjustment_count": adjustments.count,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            })

        return ServiceCalculation(
            service_input=service_input,
            breakdown=breakdown,
            adjustments=adjustments,
            net_commission=net,
            config=config,
        )

    def calculate_all(
        self, inputs: Sequence[ServiceFinancialInput]
    ) -> list[ServiceCalculation]:
        return [self.calculate_service(service_input) for service_input in inputs]

    def missing_booking_sale_totals(
        self,
        inputs: Sequence[ServiceFinancialInput],
        booking_sale_totals: Mapping[str, Decimal] | None,
    ) -> list[str]:
        """Currencies that still need a booking sale total (empty if not required)."""
        if not self._config.use_booking_sale_total:
            return []
        currencies = {
            normalize_currency_code(item.currency, self._config.fallback_currency)
            for item in inputs
        }
        return validate_booking_sale_totals(sorted(currencies), booking_sale_totals)

    def summarize(
        self,
        inputs: Sequence[ServiceFinancialInput],
        booking_sale_totals: Mapping[str, Decimal] | None = None,
    ) -> BookingSummary:
        """
        Per-currency summary of a booking.

        Raises:
            MissingBookingSaleTotalError: booking-sale-total mode and a
                currency without a positive booking sale total.
        """
        lines = [calc.line for calc in self.calculate_all(inputs)]
        summary = aggregate_booking(lines, self._config, booking_sale_totals)
        logger.info("booking_summarized", extra={
            "service_count": len(lines),
            "currencies": summary.currencies,
            "use_booking_sale_total": summary.use_booking_sale_total,
        })
        return summary

    def balance(
        self,
        inputs: Sequence[ServiceFinancialInput],
        receipts: Sequence[Receipt],
        booking_sale_totals: Mapping[str, Decimal] | None = None,
    ) -> dict[str, CurrencyBalance]:
        """
        Per-currency sales, payments and debt.

        In booking-sale-total mode the debt is measured against
        ``booking_sale_totals``; outside it they are ignored.

        Raises:
            MissingBookingSaleTotalError: booking-sale-total mode and a
                service currency without a positive booking sale total.
        """
        lines = [calc.line for calc in self.calculate_all(inputs)]
        if not self._config.use_booking_sale_total:
            return compute_booking_balance(lines, receipts, self._config.fallback_currency)

        missing = self.missing_booking_sale_totals(inputs, booking_sale_totals)
        if missing:
            logger.error("booking_balance_rejected", extra={
                "missing_currencies": missing,
            })
            raise MissingBookingSaleTotalError(missing)
        return compute_booking_balance(
            lines,
            receipts,
            self._config.fallback_currency,
            booking_sale_totals,
        )

    def distribute_commission(
        self,
        summary: BookingSummary,
        rule_sets: Sequence[CommissionRuleSet],
        owner_id: str,
        as_of: date,
    ) -> dict[str, CommissionSplit]:
        """Split each currency's net commission by the seller's rule on ``as_of``."""
        rule = resolve_commission_rule(rule_sets, owner_id, as_of)
        return {
            currency: split_commission(summary.net_commission(currency), rule)
            for currency in summary.currencies
        }
