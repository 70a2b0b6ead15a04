"""
BILLING LIFECYCLES (INVOICE, VENDOR BILL)

States: draft -> posted -> paid

- mark_paid on an invoice adds grand_total to project revenue
- mark_paid on a vendor bill adds grand_total to project cost

Both can be generated from a confirmed order: the counterparty, project and
every line's reference, unit, quantity, unit_price and tax_percent are
copied, and the amounts recomputed (identical to the order's).
"""

from datetime import date, timedelta
from typing import Any, Dict, Optional
import logging

from finance_core.audit import HistoryAction
from finance_core.document_types import DOCUMENT_TYPES, BillingStatus, DocumentKind, OrderStatus
from finance_core.errors import InvalidStateTransition, NotFoundError
from finance_core.lifecycle import LineItemLifecycle, iso_date, optional_str
from finance_core.line_items import copy_lines
from finance_core.permissions import Action, Actor
from finance_core.state_machine import StateMachine

logger = logging.getLogger(__name__)

PAYMENT_TERMS_DAYS = 30


class BillingLifecycle(LineItemLifecycle):
    """Invoice / vendor bill lifecycle; subclasses name their source order."""

    source_kind: DocumentKind = None
    source_link_field: str = None
    generate_action: str = None

    def build_state_machine(self) -> StateMachine:
        machine = StateMachine(self.kind.value)
        machine.register(
            BillingStatus.DRAFT.value, BillingStatus.POSTED.value, Action.POST.value,
            self.transition_handler(lambda doc, ctx: {
                "posted_by": ctx["actor"].id,
                "posted_at": ctx["now"],
            }),
            description="Post"
        )
        machine.register(
            BillingStatus.POSTED.value, BillingStatus.PAID.value, Action.MARK_PAID.value,
            self.transition_handler(lambda doc, ctx: {
                "paid_by": ctx["actor"].id,
                "paid_at": ctx["now"],
            }),
            description="Mark paid and book project ledger"
        )
        return machine

    def extra_fields(self, payload, header, current=None):
        """
        Due date defaults to the document date plus the payment terms.
        The source order link is set at create only, like project_id.
        """
        fields = {}
        if current is None:
            fields.update(self.link_fields(optional_str(payload.get(self.source_link_field))))
        current = current or {}
        due = payload.get("due_date") or current.get("due_date")
        if due is None:
            document_date = date.fromisoformat(header[self.doc_type.date_field])
            due = document_date + timedelta(days=PAYMENT_TERMS_DAYS)
        fields["due_date"] = iso_date(due, "due_date")
        return fields

    # =========================================================================
    # GENERATION FROM A CONFIRMED ORDER
    # =========================================================================

    async def generate_from_order(self, actor: Actor, order_id: str) -> Dict[str, Any]:
        """Create a draft document copying a confirmed order's counterparty and lines."""
        source_type = DOCUMENT_TYPES[self.source_kind]

        async def attempt():
            async with self._atomic("generate") as store:
                source = await store.find_document(source_type, order_id)
                if source is None:
                    raise NotFoundError(source_type.label, order_id)
                if source["status"] != OrderStatus.CONFIRMED.value:
                    raise InvalidStateTransition(
                        entity=source_type.kind.value,
                        from_state=source["status"],
                        to_state=f"{self.kind.value} generation",
                        allowed=[OrderStatus.CONFIRMED.value]
                    )

                project = await self._load_project(store, source["project_id"])
                self.policy.require(actor, Action.VIEW, source_type.kind, source, project)
                self.policy.require(actor, Action.CREATE, self.kind, project=project)
                self.policy.require_membership(actor, project)

                source_lines = await store.find_lines(source_type, order_id)
                payload = {
                    "project_id": source["project_id"],
                    self.doc_type.counterparty_field: source[source_type.counterparty_field],
                    "notes": source.get("notes"),
                    "lines": copy_lines(source_lines),
                }
                document, lines = await self._insert_new(
                    store, actor, project, payload, self.generate_action, links=self.link_fields(order_id)
                )
            return self.present(document, lines)

        result = await self._with_number_retry(attempt)
        logger.info(
            f"[STATE_MACHINE] {result['document_number']} generated from "
            f"{source_type.kind.value} {order_id} by {actor.id}"
        )
        return result

    def link_fields(self, source_id: Optional[str]) -> Dict[str, Any]:
        if source_id is None:
            return {}
        return {self.source_link_field: source_id}

    # =========================================================================
    # TRANSITION SHORTCUTS
    # =========================================================================

    async def post(self, actor: Actor, document_id: str) -> Dict[str, Any]:
        return await self.transition(actor, document_id, BillingStatus.POSTED.value)

    async def mark_paid(self, actor: Actor, document_id: str) -> Dict[str, Any]:
        return await self.transition(actor, document_id, BillingStatus.PAID.value)


class InvoiceLifecycle(BillingLifecycle):
    kind = DocumentKind.INVOICE
    source_kind = DocumentKind.SALES_ORDER
    source_link_field = "sales_order_id"
    generate_action = HistoryAction.CREATE_FROM_SALES_ORDER

    async def create_from_sales_order(self, actor: Actor, sales_order_id: str) -> Dict[str, Any]:
        return await self.generate_from_order(actor, sales_order_id)


class VendorBillLifecycle(BillingLifecycle):
    kind = DocumentKind.VENDOR_BILL
    source_kind = DocumentKind.PURCHASE_ORDER
    source_link_field = "purchase_order_id"
    generate_action = HistoryAction.CREATE_FROM_PURCHASE_ORDER

    async def create_from_purchase_order(self, actor: Actor, purchase_order_id: str) -> Dict[str, Any]:
        return await self.generate_from_order(actor, purchase_order_id)
