"""
FINANCIAL DOCUMENT API ROUTES

One router per document kind under /api:
- POST   /                       create draft
- GET    /                       list visible documents (newest first)
- GET    /{id}                   fetch with lines
- PUT    /{id}                   edit draft
- DELETE /{id}                   administrative delete (draft only)
- GET    /{id}/history           append-only history, newest first
- POST   /{id}/transitions       generic {target_status, reason?}
- POST   /{id}/<action>          per-action shortcuts

Domain errors are mapped to HTTP status codes by the exception handlers
registered in server.py.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel

from auth import get_current_actor
from finance_core.document_types import DocumentKind
from finance_core.lifecycle_wiring import LifecycleRegistry
from finance_core.permissions import Action, Actor
from models import (
    ExpenseCreate, ExpenseUpdate, ReceiptAttach,
    PurchaseOrderCreate, PurchaseOrderUpdate,
    SalesOrderCreate, SalesOrderUpdate,
    InvoiceCreate, InvoiceUpdate,
    VendorBillCreate, VendorBillUpdate,
    TransitionRequest, RejectRequest,
)


def serialize_doc(value: Any) -> Any:
    """Serialize a lifecycle result for JSON (Decimal -> float, datetime -> ISO string)."""
    if isinstance(value, BaseModel):
        return serialize_doc(value.model_dump(mode="python"))
    if isinstance(value, dict):
        return {key: serialize_doc(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_doc(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def get_lifecycles(request: Request) -> LifecycleRegistry:
    return request.app.state.lifecycles


# =============================================================================
# ROUTER FACTORY
# =============================================================================

def _add_action_route(router: APIRouter, kind: DocumentKind, action: Action):
    path_name = action.value.replace("_", "-")

    if action == Action.REJECT:
        @router.post(f"/{{document_id}}/{path_name}", name=f"{kind.value}_{action.value}")
        async def reject_document(
            document_id: str,
            body: RejectRequest,
            actor: Actor = Depends(get_current_actor),
            lifecycles: LifecycleRegistry = Depends(get_lifecycles)
        ):
            result = await lifecycles.get(kind).perform(actor, document_id, action, reason=body.reason)
            return serialize_doc(result)
        return

    @router.post(f"/{{document_id}}/{path_name}", name=f"{kind.value}_{action.value}")
    async def perform_action(
        document_id: str,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        result = await lifecycles.get(kind).perform(actor, document_id, action)
        return serialize_doc(result)


def build_document_router(
    kind: DocumentKind,
    prefix: str,
    create_model: Type[BaseModel],
    update_model: Type[BaseModel],
    actions: List[Action],
    tag: str,
    include_list: bool = True
) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.post("", status_code=status.HTTP_201_CREATED, name=f"{kind.value}_create")
    async def create_document(
        payload: create_model,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        result = await lifecycles.get(kind).create(actor, payload.model_dump(exclude_unset=True))
        return serialize_doc(result)

    if include_list:
        @router.get("", name=f"{kind.value}_list")
        async def list_documents(
            project_id: Optional[str] = None,
            status_filter: Optional[str] = Query(None, alias="status"),
            actor: Actor = Depends(get_current_actor),
            lifecycles: LifecycleRegistry = Depends(get_lifecycles)
        ):
            filters = {"project_id": project_id, "status": status_filter}
            return serialize_doc(await lifecycles.get(kind).list(actor, filters))

    @router.get("/{document_id}", name=f"{kind.value}_get")
    async def get_document(
        document_id: str,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        return serialize_doc(await lifecycles.get(kind).get(actor, document_id))

    @router.put("/{document_id}", name=f"{kind.value}_update")
    async def update_document(
        document_id: str,
        payload: update_model,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        result = await lifecycles.get(kind).update(actor, document_id, payload.model_dump(exclude_unset=True))
        return serialize_doc(result)

    @router.delete("/{document_id}", name=f"{kind.value}_delete")
    async def delete_document(
        document_id: str,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        return serialize_doc(await lifecycles.get(kind).delete(actor, document_id))

    @router.get("/{document_id}/history", name=f"{kind.value}_history")
    async def document_history(
        document_id: str,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        return serialize_doc(await lifecycles.get(kind).history_for(actor, document_id))

    @router.post("/{document_id}/transitions", name=f"{kind.value}_transition")
    async def transition_document(
        document_id: str,
        body: TransitionRequest,
        actor: Actor = Depends(get_current_actor),
        lifecycles: LifecycleRegistry = Depends(get_lifecycles)
    ):
        result = await lifecycles.get(kind).transition(actor, document_id, body.target_status, reason=body.reason)
        return serialize_doc(result)

    for action in actions:
        _add_action_route(router, kind, action)

    return router


# =============================================================================
# EXPENSES
# =============================================================================

expenses_router = build_document_router(
    DocumentKind.EXPENSE, "/expenses", ExpenseCreate, ExpenseUpdate,
    [Action.SUBMIT, Action.APPROVE, Action.REJECT, Action.REIMBURSE],
    tag="Expenses",
    include_list=False
)


@expenses_router.get("", name="expense_list")
async def list_expenses(
    project_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    billable: Optional[bool] = None,
    submitted_by: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    actor: Actor = Depends(get_current_actor),
    lifecycles: LifecycleRegistry = Depends(get_lifecycles)
):
    filters: Dict[str, Any] = {
        "project_id": project_id,
        "status": status_filter,
        "billable": billable,
        "submitted_by": submitted_by,
        "start_date": start_date,
        "end_date": end_date,
    }
    return serialize_doc(await lifecycles.expenses.list(actor, filters))


@expenses_router.post("/{document_id}/receipt", name="expense_attach_receipt")
async def attach_receipt(
    document_id: str,
    body: ReceiptAttach,
    actor: Actor = Depends(get_current_actor),
    lifecycles: LifecycleRegistry = Depends(get_lifecycles)
):
    result = await lifecycles.expenses.attach_receipt(actor, document_id, body.receipt_url)
    return serialize_doc(result)


# =============================================================================
# ORDERS
# =============================================================================

purchase_orders_router = build_document_router(
    DocumentKind.PURCHASE_ORDER, "/purchase-orders", PurchaseOrderCreate, PurchaseOrderUpdate,
    [Action.CONFIRM],
    tag="Purchase Orders"
)

sales_orders_router = build_document_router(
    DocumentKind.SALES_ORDER, "/sales-orders", SalesOrderCreate, SalesOrderUpdate,
    [Action.CONFIRM],
    tag="Sales Orders"
)


# =============================================================================
# INVOICES / VENDOR BILLS
# =============================================================================

invoices_router = build_document_router(
    DocumentKind.INVOICE, "/invoices", InvoiceCreate, InvoiceUpdate,
    [Action.POST, Action.MARK_PAID],
    tag="Invoices"
)


@invoices_router.post(
    "/from-sales-order/{sales_order_id}",
    status_code=status.HTTP_201_CREATED,
    name="invoice_from_sales_order"
)
async def invoice_from_sales_order(
    sales_order_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycles: LifecycleRegistry = Depends(get_lifecycles)
):
    return serialize_doc(await lifecycles.invoices.create_from_sales_order(actor, sales_order_id))


vendor_bills_router = build_document_router(
    DocumentKind.VENDOR_BILL, "/vendor-bills", VendorBillCreate, VendorBillUpdate,
    [Action.POST, Action.MARK_PAID],
    tag="Vendor Bills"
)


@vendor_bills_router.post(
    "/from-purchase-order/{purchase_order_id}",
    status_code=status.HTTP_201_CREATED,
    name="vendor_bill_from_purchase_order"
)
async def vendor_bill_from_purchase_order(
    purchase_order_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycles: LifecycleRegistry = Depends(get_lifecycles)
):
    return serialize_doc(await lifecycles.vendor_bills.create_from_purchase_order(actor, purchase_order_id))


# Router with /api prefix
finance_router = APIRouter(prefix="/api")
for _router in (
    expenses_router,
    purchase_orders_router,
    sales_orders_router,
    invoices_router,
    vendor_bills_router,
):
    finance_router.include_router(_router)
