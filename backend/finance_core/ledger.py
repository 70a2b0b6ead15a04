"""
CROSS-ENTITY LEDGER EFFECTS

Project aggregates change on exactly three transitions:
- expense      submitted -> approved : project.cost    += amount_company_currency
- vendor_bill  posted    -> paid     : project.cost    += grand_total
- invoice      posted    -> paid     : project.revenue += grand_total

Order confirmation carries no ledger effect. Every effect runs inside the
transaction that writes the status change, so it is applied exactly once
per committed transition. profit = revenue - cost is stored with the same
write.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import logging

from finance_core.document_types import (
    BillingStatus,
    DocumentKind,
    ExpenseStatus,
)
from finance_core.errors import NotFoundError, ValidationError
from finance_core.financial_precision import ZERO, round_financial, safe_add, safe_subtract, to_decimal

logger = logging.getLogger(__name__)

COST = "cost"
REVENUE = "revenue"
PROFIT = "profit"


@dataclass(frozen=True)
class LedgerEffect:
    target_field: str
    amount_field: str


LEDGER_EFFECTS: Dict[Tuple[DocumentKind, str, str], LedgerEffect] = {
    (DocumentKind.EXPENSE, ExpenseStatus.SUBMITTED.value, ExpenseStatus.APPROVED.value):
        LedgerEffect(target_field=COST, amount_field="amount_company_currency"),
    (DocumentKind.VENDOR_BILL, BillingStatus.POSTED.value, BillingStatus.PAID.value):
        LedgerEffect(target_field=COST, amount_field="grand_total"),
    (DocumentKind.INVOICE, BillingStatus.POSTED.value, BillingStatus.PAID.value):
        LedgerEffect(target_field=REVENUE, amount_field="grand_total"),
}


def effect_for(kind: DocumentKind, from_state: str, to_state: str) -> Optional[LedgerEffect]:
    return LEDGER_EFFECTS.get((kind, from_state, to_state))


class LedgerEffectEngine:
    """Applies project cost/revenue changes for ledger-affecting transitions."""

    async def apply(
        self,
        store,
        kind: DocumentKind,
        document: Dict[str, Any],
        from_state: str,
        to_state: str
    ) -> Optional[Dict[str, Any]]:
        """
        Apply the effect for this transition, if any.

        Returns the new project aggregates, or None when the transition has
        no ledger effect.
        """
        effect = effect_for(kind, from_state, to_state)
        if effect is None:
            return None

        amount = document.get(effect.amount_field)
        if amount is None:
            raise ValidationError(
                f"{kind.value} {document.get('id')} has no {effect.amount_field}",
                field=effect.amount_field
            )
        amount = to_decimal(amount, effect.amount_field)

        project_id = document["project_id"]
        project = await store.find_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)

        cost = to_decimal(project.get(COST) or ZERO, COST)
        revenue = to_decimal(project.get(REVENUE) or ZERO, REVENUE)

        if effect.target_field == COST:
            cost = round_financial(safe_add(cost, amount))
        else:
            revenue = round_financial(safe_add(revenue, amount))

        aggregates = {
            COST: cost,
            REVENUE: revenue,
            PROFIT: round_financial(safe_subtract(revenue, cost)),
        }
        await store.update_project(project_id, aggregates)

        logger.info(
            f"[LEDGER] {kind.value} {document.get('document_number')}: "
            f"project {project_id} {effect.target_field} += {amount} "
            f"(cost={cost}, revenue={revenue}, profit={aggregates[PROFIT]})"
        )
        return aggregates
