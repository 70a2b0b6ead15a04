"""
HISTORY SNAPSHOTS

Before/after images stored with each history record. Each document family
has its own schema, and the `kind` field discriminates between them so a
stored snapshot always validates back into the right model.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from finance_core.document_types import DocumentKind

SNAPSHOT_SCHEMA_VERSION = 1


class SnapshotBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    id: Optional[str] = None
    document_number: Optional[str] = None
    project_id: Optional[str] = None
    status: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LineSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    line_number: int
    product_id: Optional[str] = None
    task_id: Optional[str] = None
    unit: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    tax_percent: Decimal
    line_total: Decimal
    tax_amount: Decimal
    line_grand_total: Decimal


class ExpenseSnapshot(SnapshotBase):
    kind: Literal["expense"] = "expense"
    submitted_by: Optional[str] = None
    task_id: Optional[str] = None
    expense_date: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    amount_company_currency: Optional[Decimal] = None
    billable: bool = False
    billable_to_customer_id: Optional[str] = None
    receipt_url: Optional[str] = None
    has_receipt: bool = False
    receipt_required: bool = False
    submitted_at: Optional[datetime] = None
    approver_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    reimbursed_by: Optional[str] = None
    reimbursed_at: Optional[datetime] = None


class LineItemSnapshot(SnapshotBase):
    notes: Optional[str] = None
    subtotal: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None
    grand_total: Optional[Decimal] = None
    lines: List[LineSnapshot] = Field(default_factory=list)


class OrderSnapshot(LineItemSnapshot):
    kind: Literal["purchase_order", "sales_order"]
    vendor_id: Optional[str] = None
    customer_id: Optional[str] = None
    order_date: Optional[str] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None


class BillingSnapshot(LineItemSnapshot):
    kind: Literal["invoice", "vendor_bill"]
    vendor_id: Optional[str] = None
    customer_id: Optional[str] = None
    sales_order_id: Optional[str] = None
    purchase_order_id: Optional[str] = None
    invoice_date: Optional[str] = None
    bill_date: Optional[str] = None
    due_date: Optional[str] = None
    posted_by: Optional[str] = None
    posted_at: Optional[datetime] = None
    paid_by: Optional[str] = None
    paid_at: Optional[datetime] = None


DocumentSnapshot = Annotated[
    Union[ExpenseSnapshot, OrderSnapshot, BillingSnapshot],
    Field(discriminator="kind"),
]

_snapshot_adapter = TypeAdapter(DocumentSnapshot)


def take_snapshot(
    kind: DocumentKind,
    document: Dict[str, Any],
    lines: Optional[List[Dict[str, Any]]] = None
) -> Union[ExpenseSnapshot, OrderSnapshot, BillingSnapshot]:
    """Validate a stored document (plus its lines) into its snapshot model."""
    payload = {**document, "kind": DocumentKind(kind).value}
    if lines is not None:
        payload["lines"] = lines
    return _snapshot_adapter.validate_python(payload)


def load_snapshot(data: Optional[Dict[str, Any]]):
    """Rebuild a snapshot model from its stored dict form."""
    if data is None:
        return None
    return _snapshot_adapter.validate_python(data)
