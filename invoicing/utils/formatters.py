"""
Formatting utilities for amounts and dates.

Money is printed with a currency symbol, exactly two decimals and either
Indian (1,00,000.00) or western (100,000.00) digit grouping.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from datetime import date, datetime
from typing import Union, Optional

DEFAULT_CURRENCY_SYMBOL = 'Rs.'
DEFAULT_GROUPING = 'indian'

CENTS = Decimal('0.01')

Number = Union[int, float, Decimal, str, None]


def to_decimal(value: Number) -> Optional[Decimal]:
    """
    Coerce a loosely typed numeric value to a finite Decimal.

    Returns None for None, empty strings, booleans, non-numeric text, NaN and
    infinities. Commas are treated as thousands separators.

    Examples:
        to_decimal("1,250.5") -> Decimal('1250.5')
        to_decimal(float('nan')) -> None
        to_decimal("abc") -> None
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, Decimal):
            num = value
        elif isinstance(value, (int, float)):
            num = Decimal(str(value))
        elif isinstance(value, str):
            cleaned = value.strip().replace(',', '')
            if not cleaned:
                return None
            num = Decimal(cleaned)
        else:
            return None
    except (InvalidOperation, ValueError, TypeError):
        return None

    if not num.is_finite():
        return None
    return num


def quantize_money(num: Decimal, places: Decimal = CENTS) -> Decimal:
    """
    Round a finite Decimal to `places` with ROUND_HALF_UP.

    Precision is widened to fit the integer digits, so very large amounts
    round instead of raising InvalidOperation.
    """
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, num.adjusted() - places.as_tuple().exponent + 2)
        return num.quantize(places, rounding=ROUND_HALF_UP)


def _group_digits(integer_part: str, grouping: str) -> str:
    if grouping == 'indian' and len(integer_part) > 3:
        head, tail = integer_part[:-3], integer_part[-3:]
        # Pairs from the right for everything above the thousands
        reversed_head = head[::-1]
        pairs = [reversed_head[i:i+2] for i in range(0, len(reversed_head), 2)]
        return ','.join(pairs)[::-1] + ',' + tail

    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return ','.join(groups)[::-1]


def format_money(value: Number,
                 symbol: str = DEFAULT_CURRENCY_SYMBOL,
                 grouping: str = DEFAULT_GROUPING) -> str:
    """
    Format a monetary amount with exactly 2 decimals.

    Never raises: anything that is not a finite number renders as the zero
    amount.

    Examples:
        format_money(1234567.891) -> "Rs. 12,34,567.89"
        format_money(1234567.891, grouping='western') -> "Rs. 1,234,567.89"
        format_money(-25) -> "-Rs. 25.00"
        format_money(None) -> "Rs. 0.00"
        format_money(float('nan')) -> "Rs. 0.00"
    """
    num = to_decimal(value)
    if num is None:
        num = Decimal('0')

    num = quantize_money(num)
    sign = "-" if num < 0 else ""

    # copy_abs and 'f' formatting are exact; no context rounding
    integer_part, decimal_part = format(num.copy_abs(), 'f').split(".")
    amount = f"{_group_digits(integer_part, grouping)}.{decimal_part}"

    if symbol:
        return f"{sign}{symbol} {amount}"
    return f"{sign}{amount}"


def format_percent(value: Number) -> str:
    """
    Format a percentage without trailing zeros.

    Examples:
        format_percent(10) -> "10"
        format_percent("12.50") -> "12.5"
        format_percent("bad") -> "0"
    """
    num = to_decimal(value)
    if num is None or num == 0:
        return "0"
    text = f"{num:f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


def date_long(value: Union[date, datetime, None]) -> str:
    """
    Format a date as "DD Month YYYY".

    Examples:
        date_long(date(2024, 4, 5)) -> "05 April 2024"
        date_long(None) -> "-"
    """
    if value is None:
        return "-"

    if isinstance(value, datetime):
        value = value.date()

    if not isinstance(value, date):
        return "-"

    return value.strftime("%d %B %Y")
