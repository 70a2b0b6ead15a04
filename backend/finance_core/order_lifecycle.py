"""
ORDER LIFECYCLES (PURCHASE ORDER, SALES ORDER)

States: draft -> confirmed

Confirmation carries no ledger effect. A confirmed purchase order can spawn
a vendor bill and a confirmed sales order an invoice (see billing_lifecycle).
"""

from typing import Any, Dict

from finance_core.document_types import DocumentKind, OrderStatus
from finance_core.lifecycle import LineItemLifecycle
from finance_core.permissions import Action, Actor
from finance_core.state_machine import StateMachine


class OrderLifecycle(LineItemLifecycle):

    def build_state_machine(self) -> StateMachine:
        machine = StateMachine(self.kind.value)
        machine.register(
            OrderStatus.DRAFT.value, OrderStatus.CONFIRMED.value, Action.CONFIRM.value,
            self.transition_handler(lambda doc, ctx: {
                "confirmed_by": ctx["actor"].id,
                "confirmed_at": ctx["now"],
            }),
            description="Confirm order"
        )
        return machine

    async def confirm(self, actor: Actor, order_id: str) -> Dict[str, Any]:
        return await self.transition(actor, order_id, OrderStatus.CONFIRMED.value)


class PurchaseOrderLifecycle(OrderLifecycle):
    kind = DocumentKind.PURCHASE_ORDER


class SalesOrderLifecycle(OrderLifecycle):
    kind = DocumentKind.SALES_ORDER
