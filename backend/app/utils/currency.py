"""
utils/currency.py — Supported group currencies and amount formatting.

Pure helpers; no Flask, no DB.
"""

from __future__ import annotations

from decimal import Decimal

DEFAULT_CURRENCY = "USD"

# code -> (symbol, display name)
CURRENCIES: dict[str, tuple[str, str]] = {
    "USD": ("$",  "US Dollar"),
    "EUR": ("€",  "Euro"),
    "GBP": ("£",  "British Pound"),
    "CAD": ("C$", "Canadian Dollar"),
    "AUD": ("A$", "Australian Dollar"),
    "JPY": ("¥",  "Japanese Yen"),
}


def get_currency_symbol(currency_code: str) -> str:
    """Returns the symbol for a currency code, or the code itself when unknown."""
    entry = CURRENCIES.get(currency_code)
    return entry[0] if entry else currency_code


def format_amount(amount: Decimal, currency_code: str) -> str:
    """
    Formats an amount for display, e.g. Decimal("-38.5"), "USD" -> "-$38.50".

    Always two decimal places; the sign goes in front of the symbol.
    """
    quantized = Decimal(amount).quantize(Decimal("0.01"))
    sign = "-" if quantized < 0 else ""
    return f"{sign}{get_currency_symbol(currency_code)}{abs(quantized)}"
