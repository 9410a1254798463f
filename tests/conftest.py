"""
Pytest fixtures for the billing engine test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- ``captured_logs`` for asserting on emitted JSON log records
- Sample agency adjustment rules, configs and service inputs
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from billing_config.schema import CalcConfig
from billing_engines.adjustments import (
    AdjustmentBasis,
    AdjustmentConfig,
    AdjustmentKind,
    AdjustmentValueType,
)
from billing_engines.breakdown import BreakdownMode, ServiceFinancialInput
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            compute_breakdown(...)
            logs = captured_logs()
            assert any(r["message"] == "breakdown_computed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(logging.DEBUG)
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def gross_income_tax():
    """3.5% tax on the sale price (provincial gross income tax)."""
    return AdjustmentConfig(
        id="iibb",
        label="Ingresos brutos",
        kind=AdjustmentKind.TAX,
        basis=AdjustmentBasis.SALE,
        value_type=AdjustmentValueType.PERCENT,
        value=Decimal("0.035"),
    )


@pytest.fixture
def margin_cost():
    """10% cost over the margin."""
    return AdjustmentConfig(
        id="margin-fee",
        label="Fee sobre margen",
        kind=AdjustmentKind.COST,
        basis=AdjustmentBasis.MARGIN,
        value_type=AdjustmentValueType.PERCENT,
        value=Decimal("0.10"),
    )


@pytest.fixture
def fixed_cost():
    """Flat 500 cost per service."""
    return AdjustmentConfig(
        id="insurance",
        label="Seguro",
        kind=AdjustmentKind.COST,
        basis=AdjustmentBasis.SALE,
        value_type=AdjustmentValueType.FIXED,
        value=Decimal("500"),
    )


@pytest.fixture
def auto_config():
    return CalcConfig()


@pytest.fixture
def manual_config():
    return CalcConfig(mode=BreakdownMode.MANUAL)


@pytest.fixture
def ars_service():
    """ARS service: 60k at 21%, 40k exempt, 20k margin."""
    return ServiceFinancialInput(
        sale_price=Decimal("100000"),
        cost_price=Decimal("80000"),
        tax_21=Decimal("60000"),
        exempt=Decimal("40000"),
        currency="ARS",
        service_id="svc-ars-1",
    )


@pytest.fixture
def usd_service():
    """USD service with nothing itemized."""
    return ServiceFinancialInput(
        sale_price=Decimal("1500"),
        cost_price=Decimal("1200"),
        currency="USD",
        service_id="svc-usd-1",
    )
