"""
Typed Exception Hierarchy for the Billing Kernel.

Every error raised by the commission engines, the configuration loader and
the booking services has:
  1. a TYPED exception class (catch by type, not message)
  2. a CODE class attribute (machine-readable, API-safe)
  3. structured DATA attributes (not just a message string)

Example:
    try:
        summary = service.summarize(inputs, booking_sale_totals=totals)
    except MissingBookingSaleTotalError as e:
        return {"error": e.code, "currencies": e.currencies}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingEngineError (base)
    |
    +-- ConfigurationError
    |   +-- InvalidAdjustmentConfigError
    |   +-- InvalidCalcConfigError
    |
    +-- ValidationError
    |   +-- MissingBookingSaleTotalError
    |   +-- InvalidAmountError
    |   +-- MissingServiceIdError
    |
    +-- CurrencyError
        +-- CurrencyMismatchError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | INVALID_ADJUSTMENT_CONFIG   | Negative value or unknown kind/basis/valueType
                | INVALID_CALC_CONFIG         | Negative transfer fee, malformed record
----------------|-----------------------------|-----------------------------------------
Validation      | MISSING_BOOKING_SALE_TOTAL  | Booking-level sale total absent for a currency
                | INVALID_AMOUNT              | Amount is not a finite number
                | MISSING_SERVICE_ID          | Recalculation submitted without a service id
----------------|-----------------------------|-----------------------------------------
Currency        | CURRENCY_MISMATCH           | Two currency aggregates combined
"""

from __future__ import annotations

from typing import Any, Sequence


class BillingEngineError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute.
    """

    code: str = "BILLING_ENGINE_ERROR"


# Configuration exceptions


class ConfigurationError(BillingEngineError):
    """Base exception for agency configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidAdjustmentConfigError(ConfigurationError):
    """An adjustment rule carries a value the engine cannot evaluate."""

    code: str = "INVALID_ADJUSTMENT_CONFIG"

    def __init__(self, adjustment_id: str, field: str, value: Any, reason: str = ""):
        self.adjustment_id = adjustment_id
        self.field = field
        self.value = value
        self.reason = reason
        message = f"Invalid adjustment '{adjustment_id}': {field}={value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidCalcConfigError(ConfigurationError):
    """Agency calculation settings are malformed."""

    code: str = "INVALID_CALC_CONFIG"

    def __init__(self, field: str, value: Any, reason: str = ""):
        self.field = field
        self.value = value
        self.reason = reason
        message = f"Invalid calculation config: {field}={value!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


# Validation exceptions


class ValidationError(BillingEngineError):
    """Base exception for caller input that blocks a calculation."""

    code: str = "VALIDATION_ERROR"


class MissingBookingSaleTotalError(ValidationError):
    """
    Booking-level sale total is absent for one or more currencies.

    Raised only when the agency uses booking-level sale totals. A missing
    total is never treated as zero, since that would understate revenue.
    """

    code: str = "MISSING_BOOKING_SALE_TOTAL"

    def __init__(self, currencies: Sequence[str]):
        self.currencies = list(currencies)
        super().__init__(
            f"Missing booking sale total for: {', '.join(self.currencies)}"
        )


class InvalidAmountError(ValidationError):
    """An amount could not be read as a finite decimal number."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"Invalid amount for {field}: {value!r}")


class MissingServiceIdError(ValidationError):
    """Recalculation needs a service id to order submissions by."""

    code: str = "MISSING_SERVICE_ID"

    def __init__(self) -> None:
        super().__init__("service_input.service_id is required for recalculation")


# Currency exceptions


class CurrencyError(BillingEngineError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class CurrencyMismatchError(CurrencyError):
    """Attempted to combine amounts held in different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")
