"""
DOCUMENT TYPE REGISTRY

One entry per financial document kind: numbering prefix, storage
collections, owner field and status vocabulary. Lifecycles, the policy
table and the HTTP layer all look document kinds up here.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class DocumentKind(str, Enum):
    EXPENSE = "expense"
    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"
    INVOICE = "invoice"
    VENDOR_BILL = "vendor_bill"


class ExpenseStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"


class OrderStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"


class BillingStatus(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    PAID = "paid"


DRAFT = "draft"


@dataclass(frozen=True)
class DocumentType:
    kind: DocumentKind
    label: str
    prefix: str
    collection: str
    lines_collection: Optional[str]
    owner_field: str
    statuses: Tuple[str, ...]
    counterparty_field: Optional[str] = None
    date_field: Optional[str] = None

    @property
    def has_lines(self) -> bool:
        return self.lines_collection is not None


DOCUMENT_TYPES: Dict[DocumentKind, DocumentType] = {
    DocumentKind.EXPENSE: DocumentType(
        kind=DocumentKind.EXPENSE,
        label="Expense",
        prefix="EXP",
        collection="expenses",
        lines_collection=None,
        owner_field="submitted_by",
        statuses=tuple(s.value for s in ExpenseStatus),
        date_field="expense_date",
    ),
    DocumentKind.PURCHASE_ORDER: DocumentType(
        kind=DocumentKind.PURCHASE_ORDER,
        label="Purchase order",
        prefix="PO",
        collection="purchase_orders",
        lines_collection="purchase_order_lines",
        owner_field="created_by",
        statuses=tuple(s.value for s in OrderStatus),
        counterparty_field="vendor_id",
        date_field="order_date",
    ),
    DocumentKind.SALES_ORDER: DocumentType(
        kind=DocumentKind.SALES_ORDER,
        label="Sales order",
        prefix="SO",
        collection="sales_orders",
        lines_collection="sales_order_lines",
        owner_field="created_by",
        statuses=tuple(s.value for s in OrderStatus),
        counterparty_field="customer_id",
        date_field="order_date",
    ),
    DocumentKind.INVOICE: DocumentType(
        kind=DocumentKind.INVOICE,
        label="Invoice",
        prefix="INV",
        collection="invoices",
        lines_collection="invoice_lines",
        owner_field="created_by",
        statuses=tuple(s.value for s in BillingStatus),
        counterparty_field="customer_id",
        date_field="invoice_date",
    ),
    DocumentKind.VENDOR_BILL: DocumentType(
        kind=DocumentKind.VENDOR_BILL,
        label="Vendor bill",
        prefix="BILL",
        collection="vendor_bills",
        lines_collection="vendor_bill_lines",
        owner_field="created_by",
        statuses=tuple(s.value for s in BillingStatus),
        counterparty_field="vendor_id",
        date_field="bill_date",
    ),
}


def get_document_type(kind) -> DocumentType:
    """Look up a document type by kind (enum or its string value)."""
    return DOCUMENT_TYPES[DocumentKind(kind)]


class ExpenseCategory(str, Enum):
    TRAVEL = "Travel"
    SOFTWARE = "Software"
    HARDWARE = "Hardware"
    MEALS = "Meals"
    OTHER = "Other"
