# Overview: Line-item and document total calculations for proposals and invoices.

"""
Financial totals for commercial documents.

Line total:
    (quantity * unit_price) * (1 - discount/100) * (1 + tax_rate/100)

Document totals:
    subtotal               = sum(quantity * unit_price)
    item_discount_total    = sum(line_subtotal * discount/100)
    after_item_discounts   = subtotal - item_discount_total
    general_discount_total = after_item_discounts * document_discount/100
    tax_total              = sum((line_subtotal - line_discount) * tax_rate/100)
    grand_total            = after_item_discounts - general_discount_total + tax_total

All arithmetic is Decimal. Reported components are rounded to cents
(ROUND_HALF_UP) and grand_total is assembled from the rounded components,
so grand_total == after_discounts + tax_total exactly and the result does
not depend on line ordering. Totals are recomputed on every call and never
stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")

DEFAULT_TAX_RATE = Decimal("18")
DEFAULT_DISCOUNT = Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _dec(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _field(line: Any, name: str):
    if isinstance(line, Mapping):
        return line.get(name)
    return getattr(line, name, None)


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal

    @property
    def taxable(self) -> Decimal:
        return self.subtotal - self.discount_amount

    @property
    def total(self) -> Decimal:
        return self.taxable + self.tax_amount


def line_amounts(quantity, unit_price, discount=None, tax_rate=None) -> LineAmounts:
    """Unrounded amounts for a single line."""
    qty = _dec(quantity)
    price = _dec(unit_price)
    disc = _dec(discount, DEFAULT_DISCOUNT)
    rate = _dec(tax_rate, DEFAULT_TAX_RATE)

    subtotal = qty * price
    discount_amount = subtotal * disc / HUNDRED
    tax_amount = (subtotal - discount_amount) * rate / HUNDRED
    return LineAmounts(subtotal=subtotal, discount_amount=discount_amount, tax_amount=tax_amount)


def line_total(quantity, unit_price, discount=None, tax_rate=None) -> Decimal:
    """Rounded line total including per-line discount and tax."""
    return quantize_money(line_amounts(quantity, unit_price, discount, tax_rate).total)


def line_amounts_for(line: Any) -> LineAmounts:
    return line_amounts(
        _field(line, "quantity"),
        _field(line, "unit_price"),
        _field(line, "discount"),
        _field(line, "tax_rate"),
    )


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    item_discount_total: Decimal
    general_discount_total: Decimal
    tax_total: Decimal

    @property
    def discount_total(self) -> Decimal:
        return self.item_discount_total + self.general_discount_total

    @property
    def after_discounts(self) -> Decimal:
        return self.subtotal - self.discount_total

    @property
    def grand_total(self) -> Decimal:
        return self.after_discounts + self.tax_total

    def to_dict(self) -> dict:
        return {
            "subtotal": float(self.subtotal),
            "item_discount_total": float(self.item_discount_total),
            "general_discount_total": float(self.general_discount_total),
            "discount_total": float(self.discount_total),
            "tax_total": float(self.tax_total),
            "grand_total": float(self.grand_total),
        }


def document_totals(lines: Iterable[Any], document_discount=None) -> DocumentTotals:
    """
    Aggregate line items (model rows or dicts) into document totals.

    An empty list yields all-zero totals.
    """
    subtotal = ZERO
    item_discounts = ZERO
    tax_total = ZERO
    for line in lines:
        amounts = line_amounts_for(line)
        subtotal += amounts.subtotal
        item_discounts += amounts.discount_amount
        tax_total += amounts.tax_amount

    after_item_discounts = subtotal - item_discounts
    general_discount = after_item_discounts * _dec(document_discount) / HUNDRED

    return DocumentTotals(
        subtotal=quantize_money(subtotal),
        item_discount_total=quantize_money(item_discounts),
        general_discount_total=quantize_money(general_discount),
        tax_total=quantize_money(tax_total),
    )
