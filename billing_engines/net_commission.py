"""
billing_engines.net_commission -- Commission retained by the agency.

Net commission is what remains of the VAT-exclusive commission after the
bank-transfer fee and the extra cost/tax adjustments:

    net = max(total_commission_without_vat - transfer_fee - adjustments, 0)

A service with no positive commission has no net commission at all (None),
which callers display differently from a commission that was wiped out by
fees (Decimal zero).
"""

from __future__ import annotations

from decimal import Decimal

from billing_kernel.domain.amounts import ZERO, non_negative
from billing_kernel.logging_config import get_logger
from billing_engines.adjustments import AdjustmentTotals
from billing_engines.breakdown import ServiceBreakdownResult
from billing_engines.tracer import traced_engine

logger = get_logger("engines.net_commission")


def net_commission_amount(
    commission: Decimal,
    transfer_fee: Decimal,
    adjustments_total: Decimal,
) -> Decimal | None:
    """Floor rule shared by per-service and booking-level commission."""
    if commission <= ZERO:
        return None
    return non_negative(commission - transfer_fee - adjustments_total)


@traced_engine("net_commission", "1.0", fingerprint_fields=("breakdown", "adjustments"))
def resolve_net_commission(
    breakdown: ServiceBreakdownResult,
    adjustments: AdjustmentTotals,
) -> Decimal | None:
    """
    Resolve the net commission of one service.

    Returns:
        None when total_commission_without_vat <= 0, otherwise the
        commission minus the transfer fee and adjustment total, floored
        at zero.
    """
    net = net_commission_amount(
        breakdown.total_commission_without_vat,
        breakdown.transfer_fee_amount,
        adjustments.total,
    )

    if net is not None and net == ZERO:
        logger.debug("net_commission_floored", extra={
            "commission": str(breakdown.total_commission_without_vat),
            "transfer_fee_amount": str(breakdown.transfer_fee_amount),
            "adjustments_total": str(adjustments.total),
        })
    return net
