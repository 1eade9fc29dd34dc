"""
Formatting utilities for amounts and dates shown to the operator.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from typing import Union, Optional

CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
    'CAD': 'C$',
    'AUD': 'A$',
    'INR': '₹',
    'CNY': '¥',
    'BRL': 'R$',
    'MAD': 'DH',
}

# Currencies whose symbol follows the amount
SUFFIX_CURRENCIES = {'MAD'}


def _to_decimal(value: Union[int, float, Decimal, str, None]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def format_currency(value: Union[int, float, Decimal, str, None], currency: str = 'USD') -> str:
    """
    Format an amount with its currency symbol and two decimals.

    Examples:
        format_currency(1500) -> "$1500.00"
        format_currency(Decimal('9.5'), 'EUR') -> "€9.50"
        format_currency(12, 'MAD') -> "12.00 DH"
        format_currency(-3, 'USD') -> "-$3.00"
        format_currency(None) -> "-"
    """
    num = _to_decimal(value)
    if num is None:
        return "-"

    amount = num.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    code = (currency or 'USD').upper()
    symbol = CURRENCY_SYMBOLS.get(code, code)

    if code in SUFFIX_CURRENCIES:
        return f"{amount} {symbol}"

    sign = '-' if amount < 0 else ''
    return f"{sign}{symbol}{abs(amount)}"


def format_percent(value: Union[int, float, Decimal, str, None], decimals: int = 2) -> str:
    """format_percent(Decimal('12.5')) -> "12.5%"."""
    num = _to_decimal(value)
    if num is None:
        return "-"
    text = f"{num.quantize(Decimal(10) ** -decimals, rounding=ROUND_HALF_UP)}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return f"{text}%"


def date_iso(value: Union[date, datetime, None]) -> Optional[str]:
    """ISO date for JSON payloads (None stays None)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()


def datetime_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()
