"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    commission calculation engines.  This is the canonical import surface
    for higher layers (billing_services).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel (and sibling engine modules).
    MUST NOT import billing_services.

Invariants enforced:
    - Purity: engines never read the clock, the environment or any store.
      Dates (e.g. commission rule lookup) are passed in explicitly.
    - Decimal-only arithmetic: all monetary amounts use ``Decimal``.
    - Determinism: identical inputs always produce identical outputs.
    - Currency isolation: amounts in different currencies are never summed.

Failure modes:
    - InvalidAdjustmentConfigError / InvalidCalcConfigError on malformed
      agency settings.
    - MissingBookingSaleTotalError in booking-sale-total mode.
    - CurrencyMismatchError when aggregates of different currencies meet.

Audit relevance:
    Every engine invocation is traced via the ``@traced_engine`` decorator
    (see ``billing_engines.tracer``), emitting BILLING_ENGINE_TRACE log
    records with engine name, version, input fingerprint and duration.

Usage:
    from billing_engines import (
        BreakdownMode, ServiceFinancialInput, ServiceLine,
        aggregate_by_currency, compute_breakdown, evaluate_adjustments,
        resolve_net_commission,
    )
"""

from billing_kernel.logging_config import get_logger

logger = get_logger("engines")

from billing_engines.adjustments import (
    AdjustmentBasis,
    AdjustmentComputed,
    AdjustmentConfig,
    AdjustmentKind,
    AdjustmentTotals,
    AdjustmentValueType,
    evaluate_adjustments,
)
from billing_engines.aggregation import (
    BookingCommissionBase,
    BookingSummary,
    CurrencyAggregate,
    ServiceLine,
    aggregate_booking,
    aggregate_by_currency,
    compute_booking_commission_base,
    validate_booking_sale_totals,
)
from billing_engines.balance import (
    CurrencyBalance,
    Receipt,
    compute_booking_balance,
)
from billing_engines.breakdown import (
    DEFAULT_TRANSFER_FEE_PCT,
    BreakdownMode,
    ServiceBreakdownResult,
    ServiceFinancialInput,
    compute_breakdown,
    recompute_breakdown,
    resolve_transfer_fee,
)
from billing_engines.commission_split import (
    CommissionRuleSet,
    CommissionShare,
    CommissionSplit,
    resolve_commission_rule,
    split_commission,
)
from billing_engines.net_commission import resolve_net_commission
from billing_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    # Adjustments
    "AdjustmentBasis",
    "AdjustmentComputed",
    "AdjustmentConfig",
    "AdjustmentKind",
    "AdjustmentTotals",
    "AdjustmentValueType",
    "evaluate_adjustments",
    # Breakdown
    "DEFAULT_TRANSFER_FEE_PCT",
    "BreakdownMode",
    "ServiceBreakdownResult",
    "ServiceFinancialInput",
    "compute_breakdown",
    "recompute_breakdown",
    "resolve_transfer_fee",
    # Net commission
    "resolve_net_commission",
    # Aggregation
    "BookingCommissionBase",
    "BookingSummary",
    "CurrencyAggregate",
    "ServiceLine",
    "aggregate_booking",
    "aggregate_by_currency",
    "compute_booking_commission_base",
    "validate_booking_sale_totals",
    # Commission split
    "CommissionRuleSet",
    "CommissionShare",
    "CommissionSplit",
    "resolve_commission_rule",
    "split_commission",
    # Balance
    "CurrencyBalance",
    "Receipt",
    "compute_booking_balance",
    # Tracing
    "compute_input_fingerprint",
    "traced_engine",
]
