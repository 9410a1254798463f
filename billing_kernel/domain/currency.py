"""Currency -- code normalization and precision lookup for aggregation keys."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar

DEFAULT_FALLBACK_CURRENCY = "ARS"

# Spellings agents and invoicing type in place of the ISO code.
CURRENCY_ALIASES: dict[str, str] = {
    "US$": "USD",
    "U$S": "USD",
    "U$D": "USD",
    "USD$": "USD",
    "DOL": "USD",
    "$": "ARS",
    "AR$": "ARS",
}


def _key(code: object) -> str:
    if not isinstance(code, str):
        return ""
    key = code.strip().upper()
    return CURRENCY_ALIASES.get(key, key)


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """
    Currencies an agency prices services in, with their display precision.

    Codes are only aggregation keys for the engines; nothing is converted
    between them.  Codes missing from the table are still accepted and
    rounded to DEFAULT_DECIMAL_PLACES.
    """

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _TABLE: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            CurrencyInfo("ARS", 2, "Peso Argentino"),
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("BRL", 2, "Real Brasileño"),
            CurrencyInfo("UYU", 2, "Peso Uruguayo"),
            CurrencyInfo("CLP", 0, "Peso Chileno"),
            CurrencyInfo("PYG", 0, "Guaraní Paraguayo"),
            CurrencyInfo("MXN", 2, "Peso Mexicano"),
            CurrencyInfo("COP", 2, "Peso Colombiano"),
            CurrencyInfo("PEN", 2, "Sol Peruano"),
            CurrencyInfo("BOB", 2, "Boliviano"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
        )
    }

    @classmethod
    def is_known(cls, code: str) -> bool:
        return _key(code) in cls._TABLE

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._TABLE.get(_key(code))

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return cls.DEFAULT_DECIMAL_PLACES if info is None else info.decimal_places

    @classmethod
    def round(cls, amount: Decimal, code: str) -> Decimal:
        """Round half-up to the currency's display precision."""
        return amount.quantize(
            Decimal(1).scaleb(-cls.get_decimal_places(code)),
            rounding=ROUND_HALF_UP,
        )

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._TABLE)


def normalize_currency_code(
    code: str | None,
    fallback: str = DEFAULT_FALLBACK_CURRENCY,
) -> str:
    """
    Normalize a currency code into an aggregation key.

    Aliases such as ``US$`` or ``AR$`` map to their ISO code; blank or
    missing codes fall back to ``fallback``.
    """
    return _key(code) or _key(fallback)
