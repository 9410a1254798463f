"""
billing_engines.balance -- What the client still owes, per currency.

Sales are counted with card interest: the card split (taxable interest
plus its VAT) when a service has one, otherwise the raw card interest.
Receipts are counted in their counter currency when one was recorded
(a payment in pesos settling a dollar service counts as dollars).

In booking-sale-total mode the sales of a currency are the booking sale
total the agency entered for it.

A booking becomes commission-eligible once enough of it is paid; the
default threshold is 40% of the sales with interest.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal

from billing_kernel.domain.amounts import ZERO
from billing_kernel.domain.currency import (
    DEFAULT_FALLBACK_CURRENCY,
    normalize_currency_code,
)
from billing_kernel.logging_config import get_logger
from billing_engines.aggregation import ServiceLine
from billing_engines.tracer import traced_engine

logger = get_logger("engines.balance")

DEFAULT_COMMISSION_THRESHOLD = Decimal("0.40")


@dataclass(frozen=True)
class Receipt:
    """
    A client payment, optionally booked against another currency.

    ``payment_fee_amount`` is the card or transfer fee charged on the
    payment, in the receipt's own currency; it is credited with the amount.
    """

    amount: Decimal
    currency: str
    counter_amount: Decimal | None = None
    counter_currency: str | None = None
    payment_fee_amount: Decimal = ZERO

    def settled(self) -> tuple[Decimal, str | None]:
        """Amount and currency this receipt settles, fee included."""
        if self.counter_amount is not None and self.counter_currency:
            # The fee only carries over when it is in the settled currency.
            same_currency = normalize_currency_code(
                self.counter_currency
            ) == normalize_currency_code(self.currency)
            fee = self.payment_fee_amount if same_currency else ZERO
            return self.counter_amount + fee, self.counter_currency
        return self.amount + self.payment_fee_amount, self.currency


@dataclass(frozen=True)
class CurrencyBalance:
    """Sales, payments and debt of one currency."""

    currency: str
    sales_with_interest: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def debt(self) -> Decimal:
        return self.sales_with_interest - self.paid

    @property
    def paid_ratio(self) -> Decimal:
        if self.sales_with_interest <= ZERO:
            return ZERO
        return self.paid / self.sales_with_interest

    def is_commission_eligible(
        self, threshold: Decimal = DEFAULT_COMMISSION_THRESHOLD
    ) -> bool:
        return self.paid_ratio >= threshold


def _sale_with_interest(line: ServiceLine) -> Decimal:
    breakdown = line.breakdown
    split = breakdown.taxable_card_interest + breakdown.vat_on_card_interest
    card = split if split > ZERO else line.service_input.card_interest
    return line.service_input.sale_price + card


@traced_engine(
    "balance",
    "1.1",
    fingerprint_fields=("lines", "receipts", "fallback_currency", "booking_sale_totals"),
)
def compute_booking_balance(
    lines: Sequence[ServiceLine],
    receipts: Sequence[Receipt],
    fallback_currency: str = DEFAULT_FALLBACK_CURRENCY,
    booking_sale_totals: Mapping[str, Decimal] | None = None,
) -> dict[str, CurrencyBalance]:
    """
    Per-currency balance of a booking.

    When ``booking_sale_totals`` is given (the agency sets the sale at
    booking level), each currency's sales are its booking sale total and
    per-service prices and card interest are not counted.

    Currencies appear in the order they are first seen: services, then
    booking sale totals, then receipts.  A currency only paid into (no
    sales) still gets an entry with a negative debt.
    """
    sales: dict[str, Decimal] = {}
    paid: dict[str, Decimal] = {}

    for line in lines:
        code = normalize_currency_code(line.currency, fallback_currency)
        sales[code] = sales.get(code, ZERO) + _sale_with_interest(line)

    if booking_sale_totals is not None:
        for code in sales:
            sales[code] = ZERO
        for raw_code, amount in booking_sale_totals.items():
            code = normalize_currency_code(raw_code, fallback_currency)
            sales[code] = sales.get(code, ZERO) + amount

    for receipt in receipts:
        amount, currency = receipt.settled()
        code = normalize_currency_code(currency, fallback_currency)
        paid[code] = paid.get(code, ZERO) + amount

    balances: dict[str, CurrencyBalance] = {}
    for code in [*sales, *(c for c in paid if c not in sales)]:
        balances[code] = CurrencyBalance(
            currency=code,
            sales_with_interest=sales.get(code, ZERO),
            paid=paid.get(code, ZERO),
        )

    logger.debug("booking_balance_computed", extra={
        "currencies": list(balances),
        "receipt_count": len(receipts),
        "use_booking_sale_total": booking_sale_totals is not None,
    })
    return balances
