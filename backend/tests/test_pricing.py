"""
Document total calculations.

Verifies:
- Line total formula and rounding
- Document totals for the single-line 118 scenario
- grand_total == after_discounts + tax_total
- Totals do not depend on line ordering
"""

from decimal import Decimal
from itertools import permutations

import pytest

from crm.services import pricing


def _line(quantity, unit_price, tax_rate="18", discount="0"):
    return {
        "quantity": quantity,
        "unit_price": Decimal(unit_price),
        "tax_rate": Decimal(tax_rate),
        "discount": Decimal(discount),
    }


class TestLineTotal:

    def test_formula(self):
        # 2 * 50 = 100, -10% = 90, +18% = 106.20
        assert pricing.line_total(2, Decimal("50"), Decimal("10"), Decimal("18")) == Decimal("106.20")

    def test_defaults_apply_standard_tax(self):
        assert pricing.line_total(1, Decimal("100")) == Decimal("118.00")

    def test_rounds_half_up(self):
        # 1 * 0.125 * 1.00 = 0.125 -> 0.13
        assert pricing.line_total(1, Decimal("0.125"), Decimal("0"), Decimal("0")) == Decimal("0.13")

    @pytest.mark.parametrize(
        "quantity,unit_price,discount,tax_rate",
        [
            (1, "0", "0", "0"),
            (1, "10", "100", "18"),
            (3, "19.99", "15", "8"),
            (100, "0.01", "0", "100"),
        ],
    )
    def test_never_negative(self, quantity, unit_price, discount, tax_rate):
        total = pricing.line_total(quantity, Decimal(unit_price), Decimal(discount), Decimal(tax_rate))
        assert total >= 0


class TestDocumentTotals:

    def test_single_line_scenario(self):
        totals = pricing.document_totals([_line(1, "100")], Decimal("0"))

        assert totals.subtotal == Decimal("100.00")
        assert totals.tax_total == Decimal("18.00")
        assert totals.grand_total == Decimal("118.00")

    def test_empty_document_is_zero(self):
        totals = pricing.document_totals([], Decimal("10"))
        assert totals.grand_total == Decimal("0")
        assert totals.to_dict()["subtotal"] == 0.0

    def test_item_and_general_discounts(self):
        lines = [_line(2, "100", tax_rate="20", discount="10"), _line(1, "50", tax_rate="0")]
        totals = pricing.document_totals(lines, Decimal("5"))

        # subtotal 250, item discount 20, after items 230, general 5% = 11.50
        assert totals.subtotal == Decimal("250.00")
        assert totals.item_discount_total == Decimal("20.00")
        assert totals.general_discount_total == Decimal("11.50")
        assert totals.discount_total == Decimal("31.50")
        # tax on (200 - 20) * 20% = 36
        assert totals.tax_total == Decimal("36.00")
        assert totals.grand_total == Decimal("254.50")

    def test_grand_total_is_after_discounts_plus_tax(self):
        lines = [
            _line(3, "33.33", tax_rate="18", discount="7"),
            _line(7, "1.99", tax_rate="8", discount="0"),
            _line(1, "999.95", tax_rate="1", discount="12.5"),
        ]
        totals = pricing.document_totals(lines, Decimal("3.3"))
        assert totals.grand_total == totals.after_discounts + totals.tax_total

    def test_independent_of_line_order(self):
        lines = [
            _line(3, "33.33", tax_rate="18", discount="7"),
            _line(7, "1.99", tax_rate="8"),
            _line(1, "999.95", tax_rate="1", discount="12.5"),
        ]
        results = {
            pricing.document_totals(list(order), Decimal("2.5")).grand_total
            for order in permutations(lines)
        }
        assert len(results) == 1

    def test_accepts_model_rows(self):
        class Row:
            quantity = 1
            unit_price = Decimal("100")
            tax_rate = Decimal("18")
            discount = Decimal("0")

        assert pricing.document_totals([Row()]).grand_total == Decimal("118.00")
