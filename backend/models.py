from pydantic import BaseModel, Field
from typing import Optional, List, Union
from datetime import date
from decimal import Decimal

from finance_core.document_types import ExpenseCategory

# ============================================
# LINE ITEMS
# ============================================
class LineItemIn(BaseModel):
    product_id: Optional[Union[str, int]] = None
    task_id: Optional[Union[str, int]] = None
    unit: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    tax_percent: Optional[Decimal] = None

# ============================================
# EXPENSES
# ============================================
class ExpenseCreate(BaseModel):
    project_id: str
    task_id: Optional[str] = None
    expense_date: Optional[date] = None
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    billable: bool = False
    billable_to_customer_id: Optional[str] = None
    receipt_url: Optional[str] = None

class ExpenseUpdate(BaseModel):
    task_id: Optional[str] = None
    expense_date: Optional[date] = None
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    billable: Optional[bool] = None
    billable_to_customer_id: Optional[str] = None
    receipt_url: Optional[str] = None

class ReceiptAttach(BaseModel):
    receipt_url: str = Field(..., min_length=1)

# ============================================
# ORDERS
# ============================================
class PurchaseOrderCreate(BaseModel):
    project_id: str
    vendor_id: Optional[str] = None
    order_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[LineItemIn] = []

class PurchaseOrderUpdate(BaseModel):
    vendor_id: Optional[str] = None
    order_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[LineItemIn]] = None

class SalesOrderCreate(BaseModel):
    project_id: str
    customer_id: Optional[str] = None
    order_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[LineItemIn] = []

class SalesOrderUpdate(BaseModel):
    customer_id: Optional[str] = None
    order_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[LineItemIn]] = None

# ============================================
# INVOICES / VENDOR BILLS
# ============================================
class InvoiceCreate(BaseModel):
    project_id: str
    customer_id: Optional[str] = None
    sales_order_id: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[LineItemIn] = []

class InvoiceUpdate(BaseModel):
    customer_id: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[LineItemIn]] = None

class VendorBillCreate(BaseModel):
    project_id: str
    vendor_id: Optional[str] = None
    purchase_order_id: Optional[str] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[LineItemIn] = []

class VendorBillUpdate(BaseModel):
    vendor_id: Optional[str] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[LineItemIn]] = None

# ============================================
# TRANSITIONS
# ============================================
class TransitionRequest(BaseModel):
    target_status: str
    reason: Optional[str] = None

class RejectRequest(BaseModel):
    reason: Optional[str] = None
