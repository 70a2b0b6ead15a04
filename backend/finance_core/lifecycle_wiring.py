"""
LIFECYCLE WIRING

Builds one lifecycle per document kind over a shared unit of work,
settings cache, access policy, history logger and ledger engine.

Usage:
    lifecycles = build_lifecycles(MotorUnitOfWork(client, db))
    expense = await lifecycles.expenses.create(actor, payload)
"""

from datetime import datetime
from typing import Callable, Dict, Optional
import logging

from finance_core.audit import HistoryLogger
from finance_core.billing_lifecycle import InvoiceLifecycle, VendorBillLifecycle
from finance_core.document_types import DocumentKind
from finance_core.expense_lifecycle import ExpenseLifecycle
from finance_core.ledger import LedgerEffectEngine
from finance_core.lifecycle import DocumentLifecycle
from finance_core.order_lifecycle import PurchaseOrderLifecycle, SalesOrderLifecycle
from finance_core.permissions import AccessPolicy
from finance_core.settings import CompanySettings

logger = logging.getLogger(__name__)


class LifecycleRegistry:
    """Lifecycles indexed by document kind."""

    def __init__(self, lifecycles: Dict[DocumentKind, DocumentLifecycle]):
        self._lifecycles = lifecycles

    def get(self, kind) -> DocumentLifecycle:
        return self._lifecycles[DocumentKind(kind)]

    def kinds(self):
        return list(self._lifecycles.keys())

    @property
    def expenses(self) -> ExpenseLifecycle:
        return self._lifecycles[DocumentKind.EXPENSE]

    @property
    def purchase_orders(self) -> PurchaseOrderLifecycle:
        return self._lifecycles[DocumentKind.PURCHASE_ORDER]

    @property
    def sales_orders(self) -> SalesOrderLifecycle:
        return self._lifecycles[DocumentKind.SALES_ORDER]

    @property
    def invoices(self) -> InvoiceLifecycle:
        return self._lifecycles[DocumentKind.INVOICE]

    @property
    def vendor_bills(self) -> VendorBillLifecycle:
        return self._lifecycles[DocumentKind.VENDOR_BILL]


def build_lifecycles(
    uow,
    settings: Optional[CompanySettings] = None,
    clock: Callable[[], datetime] = datetime.utcnow
) -> LifecycleRegistry:
    shared = {
        "settings": settings or CompanySettings(),
        "policy": AccessPolicy(),
        "history": HistoryLogger(),
        "ledger": LedgerEffectEngine(),
        "clock": clock,
    }
    lifecycles = {
        DocumentKind.EXPENSE: ExpenseLifecycle(uow, **shared),
        DocumentKind.PURCHASE_ORDER: PurchaseOrderLifecycle(uow, **shared),
        DocumentKind.SALES_ORDER: SalesOrderLifecycle(uow, **shared),
        DocumentKind.INVOICE: InvoiceLifecycle(uow, **shared),
        DocumentKind.VENDOR_BILL: VendorBillLifecycle(uow, **shared),
    }
    for lifecycle in lifecycles.values():
        logger.debug(f"[STATE_MACHINE] Wired {lifecycle.machine!r}")
    return LifecycleRegistry(lifecycles)
