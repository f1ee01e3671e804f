"""Strict parsing of request values for persisted operations."""
import re
from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from typing import Optional

from invoicing.exceptions import ValidationError
from invoicing.utils.formatters import quantize_money

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_iso_date(value, field: str) -> date:
    """
    Parse an ISO date (YYYY-MM-DD, optionally followed by a time part).

    Raises:
        ValidationError: if the value is missing or not a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if not isinstance(value, str) or not ISO_DATE_PATTERN.match(value.strip()):
        raise ValidationError(f'Invalid {field}: expected YYYY-MM-DD')

    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValidationError(f'Invalid {field}: expected YYYY-MM-DD')


def parse_optional_date(value, field: str):
    """Like parse_iso_date but maps None/'' to None."""
    if value is None or value == '':
        return None
    return parse_iso_date(value, field)


def parse_amount(value, field: str, places: str = '0.01', max_value: Optional[Decimal] = None) -> Decimal:
    """
    Parse a decimal amount and round it half-up to `places`.

    Raises:
        ValidationError: if the value is not a finite number, or its
        magnitude exceeds `max_value`.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f'Invalid {field}: expected a number')

    try:
        num = Decimal(str(value).strip())
        if not num.is_finite():
            raise ValidationError(f'Invalid {field}: expected a number')
        num = quantize_money(num, Decimal(places))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Invalid {field}: expected a number')

    if max_value is not None and abs(num) > max_value:
        raise ValidationError(f'Invalid {field}: must not exceed {max_value}')
    return num
