"""
History records and document snapshots
"""
from datetime import datetime
from decimal import Decimal

import pydantic
import pytest

from finance_core.audit import HistoryAction, HistoryLogger, HistoryRecord
from finance_core.document_types import DocumentKind
from finance_core.snapshots import BillingSnapshot, ExpenseSnapshot, OrderSnapshot, load_snapshot, take_snapshot
from tests.fakes import InMemoryUnitOfWork

NOW = datetime(2025, 1, 15, 10, 30)

EXPENSE = {
    "id": "exp-1",
    "document_number": "EXP-202501-001",
    "project_id": "proj-1",
    "status": "draft",
    "submitted_by": "tm-1",
    "amount": Decimal("45.50"),
    "category": "Travel",
    "internal_note": "not part of the snapshot",
}

LINE = {
    "id": "line-1",
    "document_id": "po-1",
    "line_number": 1,
    "product_id": "prod-1",
    "quantity": Decimal("2"),
    "unit_price": Decimal("10"),
    "tax_percent": Decimal("10"),
    "line_total": Decimal("20.00"),
    "tax_amount": Decimal("2.00"),
    "line_grand_total": Decimal("22.00"),
}


class TestSnapshots:

    def test_expense_snapshot(self):
        snapshot = take_snapshot(DocumentKind.EXPENSE, EXPENSE)
        assert isinstance(snapshot, ExpenseSnapshot)
        assert snapshot.amount == Decimal("45.50")
        assert snapshot.schema_version == 1
        assert "internal_note" not in snapshot.model_dump()

    def test_order_snapshot_carries_lines(self):
        snapshot = take_snapshot(
            DocumentKind.PURCHASE_ORDER,
            {"id": "po-1", "status": "draft", "vendor_id": "vendor-1", "grand_total": Decimal("22.00")},
            [LINE],
        )
        assert isinstance(snapshot, OrderSnapshot)
        assert snapshot.kind == "purchase_order"
        assert snapshot.lines[0].line_grand_total == Decimal("22.00")

    def test_billing_snapshot(self):
        snapshot = take_snapshot(DocumentKind.VENDOR_BILL, {"id": "bill-1", "purchase_order_id": "po-1"}, [])
        assert isinstance(snapshot, BillingSnapshot)
        assert snapshot.purchase_order_id == "po-1"

    def test_stored_snapshot_reloads_as_its_kind(self):
        stored = take_snapshot(DocumentKind.INVOICE, {"id": "inv-1", "customer_id": "cust-1"}).model_dump()
        reloaded = load_snapshot(stored)
        assert isinstance(reloaded, BillingSnapshot)
        assert reloaded.kind == "invoice"
        assert load_snapshot(None) is None


class TestHistoryRecord:

    def test_rejects_unknown_document_type(self):
        with pytest.raises(pydantic.ValidationError):
            HistoryRecord(document_type="timesheet", document_id="x", action="CREATE", actor_id="u", timestamp=NOW)

    def test_rejects_lower_case_action(self):
        with pytest.raises(pydantic.ValidationError):
            HistoryRecord(document_type="expense", document_id="x", action="create", actor_id="u", timestamp=NOW)

    def test_records_are_frozen(self):
        record = HistoryRecord(document_type="expense", document_id="x", action="CREATE", actor_id="u", timestamp=NOW)
        with pytest.raises(pydantic.ValidationError):
            record.action = "DELETE"

    def test_transition_action_labels(self):
        assert HistoryAction.for_transition("mark_paid") == "MARK_PAID"
        assert HistoryAction.for_transition("approve") == "APPROVE"


class TestHistoryLogger:

    @pytest.mark.asyncio
    async def test_record_and_list(self):
        uow = InMemoryUnitOfWork()
        logger = HistoryLogger()

        async with uow.transaction() as store:
            await logger.record(
                store, DocumentKind.EXPENSE, "exp-1", HistoryAction.CREATE, "tm-1", NOW,
                project_id="proj-1", new_status="draft", after=take_snapshot(DocumentKind.EXPENSE, EXPENSE),
            )
            await logger.record(
                store, DocumentKind.EXPENSE, "exp-1", "SUBMIT", "tm-1", NOW,
                project_id="proj-1", old_status="draft", new_status="submitted",
            )

        async with uow.reader() as store:
            records = await logger.list_for(store, DocumentKind.EXPENSE, "exp-1")

        assert [r.action for r in records] == ["SUBMIT", "CREATE"]
        assert isinstance(records[1].after, ExpenseSnapshot)
        assert records[1].after.document_number == "EXP-202501-001"

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        uow = InMemoryUnitOfWork()
        uow.fail_history = True

        with pytest.raises(RuntimeError):
            async with uow.transaction() as store:
                await HistoryLogger().record(store, DocumentKind.INVOICE, "inv-1", "POST", "fin-1", NOW)
        assert uow.history == []
        assert uow.rollbacks == 1
