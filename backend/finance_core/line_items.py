"""
LINE-ITEM CALCULATOR

LOCKED FORMULAS (Decimal internally, rounded to 2 places per line):
- line_total       = quantity * unit_price
- tax_amount       = line_total * tax_percent / 100
- line_grand_total = line_total + tax_amount

Document aggregates are sums of the ROUNDED line values, so
grand_total = subtotal + total_tax holds exactly and recomputing the same
inputs always yields the same figures.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

from finance_core.errors import ValidationError
from finance_core.financial_precision import (
    ZERO,
    calculate_percentage,
    round_financial,
    safe_multiply,
    validate_non_negative,
    validate_positive,
)

logger = logging.getLogger(__name__)

# Fields copied through from the caller's line; everything else is derived
LINE_REFERENCE_FIELDS = ("product_id", "task_id")
DEFAULT_UNIT = "Units"


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts for one line."""
    quantity: Decimal
    unit_price: Decimal
    tax_percent: Decimal
    line_total: Decimal
    tax_amount: Decimal
    line_grand_total: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    total_tax: Decimal
    grand_total: Decimal

    def as_dict(self) -> Dict[str, Decimal]:
        return {
            "subtotal": self.subtotal,
            "total_tax": self.total_tax,
            "grand_total": self.grand_total,
        }


def calculate_line(
    quantity: Any,
    unit_price: Any,
    tax_percent: Any = None,
    position: Optional[int] = None
) -> LineAmounts:
    """
    Validate and compute one line.

    Raises ValidationError if quantity <= 0, unit_price <= 0 or
    tax_percent < 0. A missing tax_percent counts as 0.
    """
    label = f"lines[{position}]." if position is not None else ""

    if quantity is None:
        raise ValidationError(f"{label}quantity is required", field=f"{label}quantity")
    if unit_price is None:
        raise ValidationError(f"{label}unit_price is required", field=f"{label}unit_price")

    qty = validate_positive(quantity, f"{label}quantity")
    price = validate_positive(unit_price, f"{label}unit_price")
    tax = validate_non_negative(tax_percent if tax_percent is not None else 0, f"{label}tax_percent")

    line_total = round_financial(safe_multiply(qty, price))
    tax_amount = round_financial(calculate_percentage(line_total, tax))

    return LineAmounts(
        quantity=qty,
        unit_price=price,
        tax_percent=tax,
        line_total=line_total,
        tax_amount=tax_amount,
        line_grand_total=line_total + tax_amount,
    )


def aggregate(lines: Iterable[LineAmounts]) -> DocumentTotals:
    """Sum line amounts into document totals."""
    subtotal = ZERO
    total_tax = ZERO
    for line in lines:
        subtotal += line.line_total
        total_tax += line.tax_amount

    subtotal = round_financial(subtotal)
    total_tax = round_financial(total_tax)
    return DocumentTotals(subtotal=subtotal, total_tax=total_tax, grand_total=subtotal + total_tax)


def calculate_lines(raw_lines: Iterable[Mapping[str, Any]]) -> List[LineAmounts]:
    """Compute every line of an ordered sequence, failing on the first invalid one."""
    return [
        calculate_line(
            raw.get("quantity"),
            raw.get("unit_price"),
            raw.get("tax_percent"),
            position=index,
        )
        for index, raw in enumerate(raw_lines)
    ]


def _reference(value: Any) -> Optional[str]:
    """Ids are stored as strings; integer keys are accepted."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def build_line_documents(raw_lines: Any) -> Tuple[List[Dict[str, Any]], DocumentTotals]:
    """
    Normalise caller lines into storable line documents plus totals.

    Derived values supplied by the caller (line_total, tax_amount, ...) are
    ignored and recomputed.
    """
    if not raw_lines:
        raise ValidationError("At least one line item is required", field="lines")
    if not isinstance(raw_lines, (list, tuple)):
        raise ValidationError("lines must be a list", field="lines")

    amounts = calculate_lines(raw_lines)
    documents = []
    for index, (raw, computed) in enumerate(zip(raw_lines, amounts)):
        references = {
            name: _reference(raw.get(name)) for name in LINE_REFERENCE_FIELDS if _reference(raw.get(name))
        }
        if not references:
            raise ValidationError(
                f"lines[{index}] must reference a product_id or task_id",
                field=f"lines[{index}]"
            )

        unit = raw.get("unit") or DEFAULT_UNIT
        documents.append({
            "line_number": index + 1,
            "product_id": references.get("product_id"),
            "task_id": references.get("task_id"),
            "unit": str(unit),
            "quantity": computed.quantity,
            "unit_price": computed.unit_price,
            "tax_percent": computed.tax_percent,
            "line_total": computed.line_total,
            "tax_amount": computed.tax_amount,
            "line_grand_total": computed.line_grand_total,
        })

    totals = aggregate(amounts)
    logger.debug(
        f"[CALCULATOR] {len(documents)} lines: subtotal={totals.subtotal}, "
        f"tax={totals.total_tax}, grand_total={totals.grand_total}"
    )
    return documents, totals


def copy_lines(source_lines: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Input-shaped copies of stored lines (used to spawn bills/invoices from orders)."""
    copied = []
    for line in sorted(source_lines, key=lambda l: l.get("line_number", 0)):
        copied.append({
            "product_id": line.get("product_id"),
            "task_id": line.get("task_id"),
            "unit": line.get("unit"),
            "quantity": line["quantity"],
            "unit_price": line["unit_price"],
            "tax_percent": line.get("tax_percent", 0),
        })
    return copied
