"""
Unit tests for invoice totals calculation.
"""

from decimal import Decimal

from invoicing.services.calculator import (
    calculate_totals, clamp_quantity, clamp_rate, line_amount, InvoiceTotals
)


class TestCalculateTotals:
    """Subtotal, discount and total derivation."""

    def test_two_items_with_ten_percent_discount(self):
        items = [{'quantity': 2, 'rate': 100}, {'quantity': 1, 'rate': 50}]

        totals = calculate_totals(items, 10)

        assert totals == InvoiceTotals(Decimal('250'), Decimal('25'), Decimal('225'))

    def test_empty_items_give_zero_totals(self):
        totals = calculate_totals([], 0)

        assert totals.subtotal == 0
        assert totals.discount_amount == 0
        assert totals.total == 0

    def test_no_discount_keeps_subtotal(self):
        totals = calculate_totals([{'quantity': 3, 'rate': '19.99'}], 0)

        assert totals.subtotal == Decimal('59.97')
        assert totals.discount_amount == 0
        assert totals.total == totals.subtotal

    def test_full_discount_gives_zero_total(self):
        totals = calculate_totals([{'quantity': 4, 'rate': 25}], 100)

        assert totals.discount_amount == totals.subtotal
        assert totals.total == 0

    def test_total_is_subtotal_minus_discount(self):
        cases = [
            ([{'quantity': 7, 'rate': '13.37'}], '12.5'),
            ([{'quantity': 1, 'rate': '0.01'}, {'quantity': 999, 'rate': '1000'}], '33.33'),
            ([{'quantity': 5, 'rate': '2.5'}], '0'),
        ]
        for items, discount in cases:
            totals = calculate_totals(items, discount)
            assert totals.subtotal - totals.discount_amount == totals.total
            assert totals.discount_amount == totals.subtotal * Decimal(discount) / 100

    def test_item_order_does_not_matter(self):
        items = [
            {'quantity': 3, 'rate': '10.10'},
            {'quantity': 1, 'rate': '99.99'},
            {'quantity': 12, 'rate': '0.5'},
        ]

        assert calculate_totals(items, 7) == calculate_totals(list(reversed(items)), 7)

    def test_amounts_are_not_rounded_during_accumulation(self):
        items = [{'quantity': 1, 'rate': '0.005'}, {'quantity': 1, 'rate': '0.005'}]

        totals = calculate_totals(items, 0)

        assert totals.subtotal == Decimal('0.010')

    def test_discount_out_of_range_is_not_clamped(self):
        totals = calculate_totals([{'quantity': 1, 'rate': 100}], 150)

        assert totals.discount_amount == Decimal('150')
        assert totals.total == Decimal('-50')

    def test_to_dict_uses_camel_case_keys(self):
        totals = calculate_totals([{'quantity': 2, 'rate': 100}, {'quantity': 1, 'rate': 50}], 10)

        assert totals.to_dict() == {'subtotal': 250.0, 'discountAmount': 25.0, 'total': 225.0}


class TestMalformedInput:
    """Bad numbers count as zero; nothing raises."""

    def test_negative_and_invalid_values_count_as_zero(self):
        items = [
            {'quantity': -3, 'rate': 100},
            {'quantity': 2, 'rate': -5},
            {'quantity': 'abc', 'rate': 10},
            {'quantity': 1, 'rate': None},
            {'quantity': 2, 'rate': 50},
        ]

        totals = calculate_totals(items, 0)

        assert totals.subtotal == Decimal('100')

    def test_non_numeric_discount_is_zero(self):
        totals = calculate_totals([{'quantity': 1, 'rate': 80}], 'ten')

        assert totals.discount_amount == 0
        assert totals.total == Decimal('80')

    def test_nan_discount_is_zero(self):
        totals = calculate_totals([{'quantity': 1, 'rate': 80}], float('nan'))

        assert totals.total == Decimal('80')

    def test_items_that_are_not_a_list(self):
        for items in (None, 'items', 42, {'quantity': 1, 'rate': 1}):
            totals = calculate_totals(items, 10)
            assert totals.subtotal == 0
            assert totals.total == 0

    def test_non_mapping_entries_are_skipped(self):
        totals = calculate_totals([None, 'x', 3, {'quantity': 2, 'rate': 5}], 0)

        assert totals.subtotal == Decimal('10')

    def test_fractional_quantity_is_truncated(self):
        assert clamp_quantity(2.9) == 2
        assert clamp_quantity('3.5') == 3
        assert line_amount({'quantity': 1.99, 'rate': 10}) == Decimal('10')


class TestClamps:

    def test_clamp_quantity(self):
        assert clamp_quantity(5) == 5
        assert clamp_quantity(-1) == 0
        assert clamp_quantity(None) == 0
        assert clamp_quantity(True) == 0
        assert clamp_quantity(float('inf')) == 0

    def test_clamp_rate(self):
        assert clamp_rate('12.50') == Decimal('12.50')
        assert clamp_rate('1,250') == Decimal('1250')
        assert clamp_rate(-0.01) == 0
        assert clamp_rate('') == 0
