"""
EXPENSE LIFECYCLE

States: draft -> submitted -> approved -> reimbursed
                 submitted -> rejected

- submit    requires a receipt when receipt_required (amount >= threshold)
- approve   adds amount_company_currency to project cost
- reject    requires a reason; rejected expenses are terminal
- reimburse admin / finance only
"""

from typing import Any, Dict, Optional, Tuple
import logging

from finance_core.audit import HistoryAction
from finance_core.document_types import DRAFT, DocumentKind, ExpenseCategory, ExpenseStatus
from finance_core.errors import DocumentNotEditableError, LostTransitionRaceError, ValidationError
from finance_core.financial_precision import (
    convert_to_company_currency,
    round_financial,
    validate_positive,
)
from finance_core.lifecycle import DocumentLifecycle, iso_date, optional_str, require_field
from finance_core.permissions import Action, Actor
from finance_core.state_machine import StateMachine

logger = logging.getLogger(__name__)

EXPENSE_FIELDS = (
    "task_id",
    "expense_date",
    "category",
    "description",
    "amount",
    "currency",
    "exchange_rate",
    "billable",
    "billable_to_customer_id",
    "receipt_url",
)


# -----------------------------------------------------------------------------
# GUARDS
# -----------------------------------------------------------------------------

async def guard_receipt_present(entity: Dict, context: Dict) -> Tuple[bool, str]:
    """Receipt is mandatory at or above the company threshold."""
    if entity.get("receipt_required") and not entity.get("has_receipt"):
        return (False, "Receipt is required for this expense amount")
    return (True, "")


async def guard_reason_given(entity: Dict, context: Dict) -> Tuple[bool, str]:
    if not context.get("reason"):
        return (False, "Rejection reason is required")
    return (True, "")


class ExpenseLifecycle(DocumentLifecycle):
    kind = DocumentKind.EXPENSE

    def build_state_machine(self) -> StateMachine:
        machine = StateMachine(self.kind.value)

        machine.register(
            ExpenseStatus.DRAFT.value, ExpenseStatus.SUBMITTED.value, Action.SUBMIT.value,
            self.transition_handler(lambda doc, ctx: {"submitted_at": ctx["now"]}),
            guard=guard_receipt_present,
            description="Submit for approval"
        )
        machine.register(
            ExpenseStatus.SUBMITTED.value, ExpenseStatus.APPROVED.value, Action.APPROVE.value,
            self.transition_handler(lambda doc, ctx: {
                "approver_id": ctx["actor"].id,
                "approved_at": ctx["now"],
            }),
            description="Approve and book project cost"
        )
        machine.register(
            ExpenseStatus.SUBMITTED.value, ExpenseStatus.REJECTED.value, Action.REJECT.value,
            self.transition_handler(lambda doc, ctx: {
                "rejected_by": ctx["actor"].id,
                "rejected_at": ctx["now"],
                "rejection_reason": ctx["reason"],
            }),
            guard=guard_reason_given,
            description="Reject with reason"
        )
        machine.register(
            ExpenseStatus.APPROVED.value, ExpenseStatus.REIMBURSED.value, Action.REIMBURSE.value,
            self.transition_handler(lambda doc, ctx: {
                "reimbursed_by": ctx["actor"].id,
                "reimbursed_at": ctx["now"],
            }),
            description="Reimburse the submitter"
        )
        return machine

    # =========================================================================
    # FIELD VALIDATION
    # =========================================================================

    async def _expense_fields(self, store, values: Dict[str, Any]) -> Dict[str, Any]:
        """Validate the editable fields and derive the computed ones."""
        expense_date = iso_date(require_field(values, "expense_date"), "expense_date")

        category = require_field(values, "category")
        try:
            category = ExpenseCategory(category).value
        except ValueError:
            allowed = ", ".join(c.value for c in ExpenseCategory)
            raise ValidationError(f"category must be one of: {allowed}", field="category")

        description = optional_str(require_field(values, "description"))

        amount = round_financial(validate_positive(require_field(values, "amount"), "amount"))
        exchange_rate = validate_positive(
            values["exchange_rate"] if values.get("exchange_rate") is not None else 1,
            "exchange_rate"
        )
        currency = optional_str(values.get("currency"))
        currency = currency.upper() if currency else await self.settings.default_currency(store)

        billable = bool(values.get("billable", False))
        billable_to = optional_str(values.get("billable_to_customer_id"))
        if billable and not billable_to:
            raise ValidationError(
                "billable_to_customer_id is required for billable expenses",
                field="billable_to_customer_id"
            )

        receipt_url = optional_str(values.get("receipt_url"))
        threshold = await self.settings.receipt_required_threshold(store)

        return {
            "task_id": optional_str(values.get("task_id")),
            "expense_date": expense_date,
            "category": category,
            "description": description,
            "amount": amount,
            "currency": currency,
            "exchange_rate": exchange_rate,
            "amount_company_currency": round_financial(convert_to_company_currency(amount, exchange_rate)),
            "billable": billable,
            "billable_to_customer_id": billable_to if billable else None,
            "receipt_url": receipt_url,
            "has_receipt": receipt_url is not None,
            "receipt_required": amount >= threshold,
        }

    async def prepare_new(self, store, actor, payload, now):
        return await self._expense_fields(store, payload), None

    async def prepare_update(self, store, actor, current, payload, now):
        merged = {name: current.get(name) for name in EXPENSE_FIELDS}
        # Keys present with None clear the field; required ones then fail validation
        merged.update({k: v for k, v in payload.items() if k in EXPENSE_FIELDS})
        return await self._expense_fields(store, merged), None

    def list_filters(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        query = super().list_filters(filters)
        if filters.get("billable") is not None:
            query["billable"] = bool(filters["billable"])
        if filters.get("submitted_by"):
            query["submitted_by"] = filters["submitted_by"]

        date_range = {}
        if filters.get("start_date"):
            date_range["$gte"] = iso_date(filters["start_date"], "start_date")
        if filters.get("end_date"):
            date_range["$lte"] = iso_date(filters["end_date"], "end_date")
        if date_range:
            query["expense_date"] = date_range
        return query

    # =========================================================================
    # RECEIPTS
    # =========================================================================

    async def attach_receipt(self, actor: Actor, expense_id: str, receipt_url: str) -> Dict[str, Any]:
        """Record a stored receipt's reference on a draft expense."""
        url = optional_str(receipt_url)
        if url is None:
            raise ValidationError("receipt_url is required", field="receipt_url")

        async with self._atomic("attach_receipt") as store:
            current = await self._load(store, expense_id)
            if current["status"] != DRAFT:
                raise DocumentNotEditableError(self.label, current["status"], "attach a receipt to")

            project = await store.find_project(current["project_id"])
            self.policy.require(actor, Action.EDIT, self.kind, current, project)

            now = self.clock()
            updated = await store.update_document(
                self.doc_type,
                expense_id,
                {"receipt_url": url, "has_receipt": True, "updated_by": actor.id, "updated_at": now},
                expected_status=DRAFT
            )
            if updated is None:
                raise LostTransitionRaceError(self.label, expense_id, DRAFT)

            await self.history.record(
                store,
                self.kind,
                expense_id,
                HistoryAction.ATTACH_RECEIPT,
                actor.id,
                now,
                project_id=current["project_id"],
                old_status=DRAFT,
                new_status=DRAFT,
                before=self.snapshot(current),
                after=self.snapshot(updated),
            )

        logger.info(f"[STATE_MACHINE] Receipt attached to {updated['document_number']} by {actor.id}")
        return self.present(updated)

    # =========================================================================
    # TRANSITION SHORTCUTS
    # =========================================================================

    async def submit(self, actor: Actor, expense_id: str) -> Dict[str, Any]:
        return await self.transition(actor, expense_id, ExpenseStatus.SUBMITTED.value)

    async def approve(self, actor: Actor, expense_id: str) -> Dict[str, Any]:
        return await self.transition(actor, expense_id, ExpenseStatus.APPROVED.value)

    async def reject(self, actor: Actor, expense_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        return await self.transition(actor, expense_id, ExpenseStatus.REJECTED.value, reason=reason)

    async def reimburse(self, actor: Actor, expense_id: str) -> Dict[str, Any]:
        return await self.transition(actor, expense_id, ExpenseStatus.REIMBURSED.value)
