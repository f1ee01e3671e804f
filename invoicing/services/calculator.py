"""
Invoice totals calculation.

Pure functions used on every edit of a draft: they never raise on bad
numbers. Invalid or negative quantities and rates count as zero. The discount
percentage is not range-checked here; callers clamp it at the form boundary.
Nothing is rounded during accumulation; rounding to two decimals happens only
when amounts are formatted or stored.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

from invoicing.utils.formatters import to_decimal, quantize_money


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal

    def to_dict(self) -> dict:
        return {
            'subtotal': float(self.subtotal),
            'discountAmount': float(self.discount_amount),
            'total': float(self.total),
        }

    def rounded(self) -> 'InvoiceTotals':
        """Subtotal and discount amount rounded half-up to cents; total derived from the rounded values."""
        subtotal = quantize_money(self.subtotal)
        discount_amount = quantize_money(self.discount_amount)
        return InvoiceTotals(subtotal=subtotal, discount_amount=discount_amount, total=subtotal - discount_amount)


def clamp_quantity(value: Any) -> int:
    """Whole, non-negative quantity; anything else becomes 0. Fractions are truncated."""
    num = to_decimal(value)
    if num is None or num < 0:
        return 0
    return int(num)


def clamp_rate(value: Any) -> Decimal:
    """Non-negative rate; anything else becomes 0."""
    num = to_decimal(value)
    if num is None or num < 0:
        return Decimal('0')
    return num


def line_amount(item: Mapping) -> Decimal:
    """quantity * rate for a single line item mapping."""
    if not isinstance(item, Mapping):
        return Decimal('0')
    return clamp_quantity(item.get('quantity')) * clamp_rate(item.get('rate'))


def calculate_totals(items: Iterable[Mapping], discount_percent: Any) -> InvoiceTotals:
    """
    Derive subtotal, discount amount and total from line items.

    Args:
        items: sequence of mappings with `quantity` and `rate` keys
        discount_percent: percentage applied to the subtotal

    Returns:
        InvoiceTotals with subtotal - discount_amount == total

    Examples:
        calculate_totals([{'quantity': 2, 'rate': 100}, {'quantity': 1, 'rate': 50}], 10)
            -> InvoiceTotals(subtotal=250, discount_amount=25, total=225)
    """
    subtotal = Decimal('0')
    if items is not None and not isinstance(items, (str, bytes, Mapping)):
        try:
            for item in items:
                subtotal += line_amount(item)
        except TypeError:
            subtotal = Decimal('0')

    discount = to_decimal(discount_percent)
    if discount is None:
        discount = Decimal('0')

    discount_amount = subtotal * discount / Decimal(100)
    total = subtotal - discount_amount
    return InvoiceTotals(subtotal=subtotal, discount_amount=discount_amount, total=total)
