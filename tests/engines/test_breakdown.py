"""
Tests for the service breakdown calculator.

Covers automatic-mode bracket decomposition, reconciliation of the bases
with the sale price, card interest split, manual mode, transfer fee
resolution and wholesale recomputation.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from billing_engines.breakdown import (
    DEFAULT_TRANSFER_FEE_PCT,
    BreakdownMode,
    ServiceBreakdownResult,
    ServiceFinancialInput,
    compute_breakdown,
    recompute_breakdown,
    resolve_transfer_fee,
)
from billing_kernel.exceptions import InvalidAmountError, InvalidCalcConfigError

CENT = Decimal("0.01")


def cents(value: Decimal) -> Decimal:
    return value.quantize(CENT)


# ============================================================================
# Automatic mode
# ============================================================================


class TestAutomaticMode:
    """Bracket decomposition from itemized VAT slices."""

    def test_bases_follow_itemized_slices(self, ars_service):
        result = compute_breakdown(ars_service, BreakdownMode.AUTO)

        assert result.taxable_base_21 == Decimal("60000")
        assert result.taxable_base_10_5 == Decimal("0")
        assert result.exempt_base == Decimal("40000")
        assert result.non_computable_amount == Decimal("0")
        assert result.mode is BreakdownMode.AUTO

    def test_reconciles_with_sale_price(self, ars_service):
        result = compute_breakdown(ars_service)
        assert result.reconciles_with(ars_service.sale_price)
        assert result.reconciliation_total == Decimal("100000")

    def test_margin_split_by_taxed_share_of_cost(self, ars_service):
        """20,000 margin; half the cost is exempt, so half the margin is taxed."""
        result = compute_breakdown(ars_service)

        assert result.commission_exempt == Decimal("10000")
        assert result.commission_21 + result.vat_on_commission_21 == Decimal("10000")
        assert cents(result.commission_21) == Decimal("8264.46")
        assert cents(result.vat_on_commission_21) == Decimal("1735.54")
        assert result.commission_10_5 == Decimal("0")
        assert result.vat_on_commission_10_5 == Decimal("0")

    def test_totals(self, ars_service):
        result = compute_breakdown(ars_service)

        assert result.total_commission_without_vat == (
            result.commission_exempt + result.commission_21 + result.commission_10_5
        )
        assert cents(result.total_commission_without_vat) == Decimal("18264.46")
        assert result.total_vat_impact == result.vat_on_commission_21

    def test_reduced_rate_bracket(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("100000"),
            cost_price=Decimal("90000"),
            tax_10_5=Decimal("100000"),
        )
        result = compute_breakdown(service)

        assert result.commission_10_5 + result.vat_on_commission_10_5 == Decimal("10000")
        assert cents(result.commission_10_5) == Decimal("9049.77")
        assert cents(result.vat_on_commission_10_5) == Decimal("950.23")
        assert result.commission_21 == Decimal("0")

    def test_other_taxes_reduce_margin_and_stay_non_computable(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("100000"),
            cost_price=Decimal("80000"),
            tax_21=Decimal("50000"),
            exempt=Decimal("45000"),
            other_taxes=Decimal("5000"),
        )
        result = compute_breakdown(service)

        assert result.non_computable_amount == Decimal("5000")
        assert result.reconciles_with(service.sale_price)
        gross_21 = result.commission_21 + result.vat_on_commission_21
        assert cents(result.commission_exempt + gross_21) == Decimal("15000.00")

    def test_nothing_itemized_is_all_21(self, usd_service):
        """Without itemization the whole margin is a 21% commission."""
        result = compute_breakdown(usd_service)

        assert result.non_computable_amount == Decimal("1500")
        assert result.commission_exempt == Decimal("0")
        assert result.commission_21 + result.vat_on_commission_21 == Decimal("300")
        assert cents(result.commission_21) == Decimal("247.93")
        assert result.reconciles_with(usd_service.sale_price)

    def test_card_interest_split(self, ars_service):
        service = replace(
            ars_service,
            card_interest=Decimal("1210"),
            card_interest_vat=Decimal("210"),
        )
        result = compute_breakdown(service)

        assert result.taxable_card_interest == Decimal("1000")
        assert result.vat_on_card_interest == Decimal("210")
        assert result.total_vat_impact == result.vat_on_commission_21 + Decimal("210")

    def test_card_vat_capped_at_interest(self, ars_service):
        service = replace(
            ars_service,
            card_interest=Decimal("100"),
            card_interest_vat=Decimal("150"),
        )
        result = compute_breakdown(service)
        assert result.vat_on_card_interest == Decimal("100")
        assert result.taxable_card_interest == Decimal("0")

    def test_loss_yields_zero_commission(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("1000"),
            cost_price=Decimal("1200"),
            tax_21=Decimal("1000"),
        )
        result = compute_breakdown(service)

        assert result.total_commission_without_vat == Decimal("0")
        assert result.total_vat_impact == Decimal("0")
        assert result.reconciles_with(service.sale_price)

    def test_over_itemized_input_never_negative(self, captured_logs):
        """Slices above the sale break reconciliation but never go negative."""
        service = ServiceFinancialInput(
            sale_price=Decimal("100000"),
            cost_price=Decimal("50000"),
            tax_21=Decimal("80000"),
            exempt=Decimal("40000"),
            service_id="svc-over",
        )
        result = compute_breakdown(service)

        assert result.non_computable_amount == Decimal("0")
        assert not result.reconciles_with(service.sale_price)
        for name, amount in result.amounts().items():
            assert amount >= 0, name

        warnings = [
            r for r in captured_logs()
            if r["message"] == "breakdown_itemization_exceeds_sale"
        ]
        assert warnings and warnings[0]["service_id"] == "svc-over"


class TestAutomaticModeGolden:
    """Commission split worked by hand from the agency's billing formula."""

    def test_both_brackets(self):
        """Taxed share 60,000 / 80,000 of a 20,000 margin, split 1:1 by slices."""
        service = ServiceFinancialInput(
            sale_price=Decimal("100000"),
            cost_price=Decimal("80000"),
            tax_21=Decimal("30000"),
            tax_10_5=Decimal("30000"),
            exempt=Decimal("20000"),
        )
        result = compute_breakdown(service)

        assert result.commission_exempt == Decimal("5000")
        assert result.commission_21 + result.vat_on_commission_21 == Decimal("7500")
        assert result.commission_10_5 + result.vat_on_commission_10_5 == Decimal("7500")
        assert cents(result.commission_21) == Decimal("6198.35")
        assert cents(result.vat_on_commission_21) == Decimal("1301.65")
        assert cents(result.commission_10_5) == Decimal("6787.33")
        assert cents(result.vat_on_commission_10_5) == Decimal("712.67")
        assert cents(result.total_commission_without_vat) == Decimal("17985.68")
        assert result.reconciles_with(service.sale_price)

    def test_exempt_cost_without_vat_slices(self):
        """Net 21% and exempt commission keep the taxed:exempt cost ratio (2:1)."""
        service = ServiceFinancialInput(
            sale_price=Decimal("1500"),
            cost_price=Decimal("1200"),
            exempt=Decimal("400"),
        )
        result = compute_breakdown(service)

        assert cents(result.commission_21) == Decimal("175.44")
        assert cents(result.vat_on_commission_21) == Decimal("36.84")
        assert cents(result.commission_exempt) == Decimal("87.72")
        assert abs(result.commission_21 - 2 * result.commission_exempt) < Decimal("1e-20")
        assert abs(
            result.commission_21 + result.vat_on_commission_21
            + result.commission_exempt - Decimal("300")
        ) < Decimal("1e-20")
        assert cents(result.total_commission_without_vat) == Decimal("263.16")

    def test_zero_cost_is_all_exempt(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("1000"),
            cost_price=Decimal("0"),
            tax_21=Decimal("1000"),
        )
        result = compute_breakdown(service)

        assert result.commission_exempt == Decimal("1000")
        assert result.commission_21 == Decimal("0")
        assert result.total_vat_impact == Decimal("0")

    def test_all_exempt_cost_without_vat_slices(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("1000"),
            cost_price=Decimal("800"),
            exempt=Decimal("800"),
        )
        result = compute_breakdown(service)

        assert result.commission_exempt == Decimal("200")
        assert result.commission_21 == Decimal("0")

    def test_exempt_above_cost_never_negative(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("1000"),
            cost_price=Decimal("500"),
            tax_21=Decimal("100"),
            exempt=Decimal("700"),
        )
        result = compute_breakdown(service)

        assert result.commission_exempt == Decimal("500")
        for name, amount in result.amounts().items():
            assert amount >= 0, name


class TestJsonShapedInput:
    """Float, string and missing amounts from stored records."""

    def test_float_amounts_coerced(self):
        service = ServiceFinancialInput(sale_price=50000.0, cost_price=30000.0)

        assert service.sale_price == Decimal("50000.0")
        assert isinstance(service.cost_price, Decimal)
        result = compute_breakdown(service)
        assert result.transfer_fee_amount == Decimal("1200")
        assert cents(result.commission_21 + result.vat_on_commission_21) == Decimal("20000.00")

    def test_from_record(self):
        record = {
            "id_service": 42,
            "sale_price": 100000.0,
            "cost_price": "80000",
            "tax_21": 60000,
            "tax_105": None,
            "exempt": 40000.0,
            "card_interest": 1210.0,
            "card_interest_21": 210.0,
            "currency": "usd",
            "transfer_fee_pct": 0.01,
            "transfer_fee_amount": None,
        }
        service = ServiceFinancialInput.from_record(record)

        assert service.service_id == "42"
        assert service.tax_10_5 == Decimal("0")
        assert service.other_taxes == Decimal("0")
        assert service.transfer_fee_pct == Decimal("0.01")
        assert service.transfer_fee_amount is None

        result = compute_breakdown(service)
        assert result.transfer_fee_amount == Decimal("1000.0")
        assert result.vat_on_card_interest == Decimal("210.0")
        assert result.reconciles_with(service.sale_price)

    def test_blank_currency_in_record(self):
        service = ServiceFinancialInput.from_record(
            {"sale_price": 10, "cost_price": 5, "currency": ""}
        )
        assert service.currency == "ARS"

    def test_text_amount_rejected(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            ServiceFinancialInput(sale_price="mucho", cost_price=1)
        assert exc_info.value.field == "sale_price"


# ============================================================================
# Manual mode
# ============================================================================


class TestManualMode:
    """Single aggregate tax figure, no bracket decomposition."""

    def test_commission_is_margin_after_taxes(self):
        service = ServiceFinancialInput(
            sale_price=Decimal("100000"),
            cost_price=Decimal("80000"),
            other_taxes=Decimal("5000"),
        )
        result = compute_breakdown(service, BreakdownMode.MANUAL)

        assert result.mode is BreakdownMode.MANUAL
        assert result.commission_exempt == Decimal("15000")
        assert result.total_commission_without_vat == Decimal("15000")
        assert result.total_vat_impact == Decimal("0")

    def test_brackets_and_card_fields_zeroed(self, ars_service):
        service = replace(ars_service, card_interest=Decimal("500"))
        result = compute_breakdown(service, BreakdownMode.MANUAL)

        assert result.taxable_base_21 == Decimal("0")
        assert result.exempt_base == Decimal("0")
        assert result.commission_21 == Decimal("0")
        assert result.vat_on_commission_21 == Decimal("0")
        assert result.taxable_card_interest == Decimal("0")
        assert result.vat_on_card_interest == Decimal("0")

    def test_whole_sale_is_non_computable(self, ars_service):
        result = compute_breakdown(ars_service, BreakdownMode.MANUAL)
        assert result.non_computable_amount == ars_service.sale_price
        assert result.reconciles_with(ars_service.sale_price)

    def test_mode_accepts_string(self, ars_service):
        result = compute_breakdown(ars_service, "manual")
        assert result.mode is BreakdownMode.MANUAL

    def test_unknown_mode_rejected(self, ars_service):
        with pytest.raises(InvalidCalcConfigError):
            compute_breakdown(ars_service, "semi")


# ============================================================================
# Transfer fee
# ============================================================================


class TestTransferFee:
    """Fee = explicit amount if supplied, else sale * pct."""

    def test_default_pct(self):
        """50,000 at the default 2.4% is 1,200."""
        service = ServiceFinancialInput(
            sale_price=Decimal("50000"), cost_price=Decimal("40000")
        )
        result = compute_breakdown(service)

        assert result.transfer_fee_pct == DEFAULT_TRANSFER_FEE_PCT
        assert result.transfer_fee_amount == Decimal("1200")

    def test_agency_default_used(self, ars_service):
        result = compute_breakdown(ars_service, default_transfer_fee_pct=Decimal("0.01"))
        assert result.transfer_fee_amount == Decimal("1000")

    def test_service_pct_overrides_agency(self, ars_service):
        service = replace(ars_service, transfer_fee_pct=Decimal("0.03"))
        result = compute_breakdown(service, default_transfer_fee_pct=Decimal("0.01"))
        assert result.transfer_fee_pct == Decimal("0.03")
        assert result.transfer_fee_amount == Decimal("3000")

    def test_explicit_amount_wins(self, ars_service):
        service = replace(ars_service, transfer_fee_amount=Decimal("777"))
        result = compute_breakdown(service)
        assert result.transfer_fee_amount == Decimal("777")

    def test_explicit_zero_amount_wins(self, ars_service):
        service = replace(ars_service, transfer_fee_amount=Decimal("0"))
        result = compute_breakdown(service)
        assert result.transfer_fee_amount == Decimal("0")

    def test_manual_mode_fee(self, ars_service):
        result = compute_breakdown(ars_service, BreakdownMode.MANUAL)
        assert result.transfer_fee_amount == Decimal("2400")

    def test_negative_pct_rejected(self, ars_service):
        service = replace(ars_service, transfer_fee_pct=Decimal("-0.01"))
        with pytest.raises(InvalidCalcConfigError) as exc_info:
            compute_breakdown(service)
        assert exc_info.value.field == "transfer_fee_pct"

    def test_resolve_transfer_fee(self):
        assert resolve_transfer_fee(Decimal("50000"), Decimal("0.024")) == Decimal("1200")
        assert resolve_transfer_fee(
            Decimal("50000"), Decimal("0.024"), Decimal("10")
        ) == Decimal("10")


# ============================================================================
# Result object and recomputation
# ============================================================================


class TestBreakdownResult:
    """Immutability, zero result and recomputation."""

    def test_zero_result(self):
        zero = ServiceBreakdownResult.zero()
        assert all(amount == 0 for amount in zero.amounts().values())
        assert zero.transfer_fee_pct == DEFAULT_TRANSFER_FEE_PCT
        assert zero.reconciles_with(Decimal("0"))

    def test_result_is_frozen(self, ars_service):
        result = compute_breakdown(ars_service)
        with pytest.raises(AttributeError):
            result.commission_21 = Decimal("0")

    def test_recompute_discards_previous(self, ars_service):
        previous = compute_breakdown(ars_service)
        changed = ars_service.with_sale_price(Decimal("120000"))

        result = recompute_breakdown(previous, changed)

        assert result == compute_breakdown(changed)
        assert result != previous
        assert result.non_computable_amount == Decimal("20000")

    def test_recompute_without_previous(self, ars_service):
        assert recompute_breakdown(None, ars_service) == compute_breakdown(ars_service)

    def test_deterministic(self, ars_service):
        assert compute_breakdown(ars_service) == compute_breakdown(ars_service)

    def test_logs_breakdown_computed(self, captured_logs, ars_service):
        compute_breakdown(ars_service)
        records = [r for r in captured_logs() if r["message"] == "breakdown_computed"]
        assert records
        assert records[-1]["service_id"] == "svc-ars-1"
        assert records[-1]["mode"] == "auto"
