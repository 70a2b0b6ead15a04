"""
Backend API Tests for the financial document endpoints
Testing: Auth, error mapping, and end-to-end document flows over HTTP
"""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import server
from auth import create_access_token
from finance_core.lifecycle_wiring import build_lifecycles
from tests.conftest import FIXED_NOW
from tests.fakes import InMemoryUnitOfWork
from tests.payloads import expense_payload, line, order_payload


def auth_header(user_id, role):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


ADMIN = auth_header("admin-1", "admin")
FINANCE = auth_header("fin-1", "finance_manager")
MANAGER = auth_header("pm-1", "project_manager")
MEMBER = auth_header("tm-1", "team_member")
TEAMMATE = auth_header("tm-2", "team_member")


@pytest.fixture
def client(uow, monkeypatch):
    # Startup hooks (index creation) are skipped without the context manager
    monkeypatch.setattr(server.app.state, "lifecycles", build_lifecycles(uow, clock=lambda: FIXED_NOW))
    return TestClient(server.app)


class TestHealthEndpoints:
    """Health check endpoints"""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "oneflow-finance"}


class TestAuth:
    """Bearer token handling"""

    def test_missing_token(self, client):
        response = client.get("/api/expenses")
        assert response.status_code in (401, 403)

    def test_garbage_token(self, client):
        response = client.get("/api/expenses", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        token = create_access_token("tm-1", "team_member", expires_delta=timedelta(minutes=-5))
        response = client.get("/api/expenses", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert "expired" in response.json()["detail"]


class TestExpenseEndpoints:
    """Expense flow through the HTTP layer"""

    def test_create_returns_201(self, client):
        response = client.post("/api/expenses", json=expense_payload(), headers=MEMBER)
        assert response.status_code == 201, response.text
        data = response.json()
        assert data["document_number"] == "EXP-202501-001"
        assert data["status"] == "draft"
        assert data["amount"] == 45.5
        assert data["created_at"] == "2025-01-15T10:30:00"

    def test_validation_error_is_400_with_field(self, client):
        response = client.post("/api/expenses", json=expense_payload(amount="0"), headers=MEMBER)
        assert response.status_code == 400
        assert response.json()["field"] == "amount"

    def test_malformed_request_is_422(self, client):
        response = client.post("/api/expenses", json=expense_payload(category="Gifts"), headers=MEMBER)
        assert response.status_code == 422

    def test_full_approval_flow(self, client, uow):
        expense = client.post("/api/expenses", json=expense_payload(amount="150"), headers=MEMBER).json()
        expense_id = expense["id"]

        # receipt missing
        response = client.post(f"/api/expenses/{expense_id}/submit", headers=MEMBER)
        assert response.status_code == 400

        response = client.post(
            f"/api/expenses/{expense_id}/receipt", json={"receipt_url": "receipts/1.pdf"}, headers=MEMBER
        )
        assert response.status_code == 200
        assert response.json()["has_receipt"] is True

        assert client.post(f"/api/expenses/{expense_id}/submit", headers=MEMBER).status_code == 200

        # owner cannot approve
        assert client.post(f"/api/expenses/{expense_id}/approve", headers=MEMBER).status_code == 403

        response = client.post(f"/api/expenses/{expense_id}/approve", headers=MANAGER)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert str(uow.project("proj-1")["cost"]) == "150.00"

        # already approved
        assert client.post(f"/api/expenses/{expense_id}/approve", headers=MANAGER).status_code == 400

        response = client.post(f"/api/expenses/{expense_id}/reimburse", headers=FINANCE)
        assert response.json()["status"] == "reimbursed"

        history = client.get(f"/api/expenses/{expense_id}/history", headers=MEMBER).json()
        assert [h["action"] for h in history] == ["REIMBURSE", "APPROVE", "SUBMIT", "ATTACH_RECEIPT", "CREATE"]

    def test_reject_through_generic_transition(self, client):
        expense_id = client.post("/api/expenses", json=expense_payload(), headers=MEMBER).json()["id"]
        client.post(f"/api/expenses/{expense_id}/submit", headers=MEMBER)

        response = client.post(
            f"/api/expenses/{expense_id}/transitions", json={"target_status": "rejected"}, headers=MANAGER
        )
        assert response.status_code == 400

        response = client.post(
            f"/api/expenses/{expense_id}/reject", json={"reason": "Not project related"}, headers=MANAGER
        )
        assert response.status_code == 200
        assert response.json()["rejection_reason"] == "Not project related"

    def test_edit_by_other_member_is_403(self, client):
        expense_id = client.post("/api/expenses", json=expense_payload(), headers=MEMBER).json()["id"]
        response = client.put(f"/api/expenses/{expense_id}", json={"amount": "10"}, headers=TEAMMATE)
        assert response.status_code == 403

    def test_unknown_expense_is_404(self, client):
        assert client.get("/api/expenses/exp-missing", headers=ADMIN).status_code == 404

    def test_list_filters(self, client):
        client.post("/api/expenses", json=expense_payload(), headers=MEMBER)
        client.post("/api/expenses", json=expense_payload(billable=True, billable_to_customer_id="c-1"), headers=MEMBER)

        assert len(client.get("/api/expenses", headers=MEMBER).json()) == 2
        assert len(client.get("/api/expenses", params={"billable": "true"}, headers=FINANCE).json()) == 1
        assert client.get("/api/expenses", headers=TEAMMATE).json() == []

    def test_failed_history_is_500_without_details(self, client, uow):
        expense_id = client.post("/api/expenses", json=expense_payload(), headers=MEMBER).json()["id"]
        uow.fail_history = True

        response = client.post(f"/api/expenses/{expense_id}/submit", headers=MEMBER)
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        assert uow.documents("expenses")[0]["status"] == "draft"


class TestOrderAndBillingEndpoints:
    """Orders, invoices and vendor bills over HTTP"""

    def test_sales_order_to_paid_invoice(self, client, uow):
        response = client.post(
            "/api/sales-orders", json=order_payload("customer_id", "cust-1"), headers=MANAGER
        )
        assert response.status_code == 201, response.text
        order = response.json()
        assert order["grand_total"] == 27.0
        assert len(order["lines"]) == 2

        # not confirmed yet
        response = client.post(f"/api/invoices/from-sales-order/{order['id']}", headers=MANAGER)
        assert response.status_code == 400

        assert client.post(f"/api/sales-orders/{order['id']}/confirm", headers=MANAGER).status_code == 200

        response = client.post(f"/api/invoices/from-sales-order/{order['id']}", headers=MANAGER)
        assert response.status_code == 201
        invoice = response.json()
        assert invoice["sales_order_id"] == order["id"]
        assert invoice["grand_total"] == 27.0

        assert client.post(f"/api/invoices/{invoice['id']}/post", headers=MANAGER).status_code == 200
        response = client.post(f"/api/invoices/{invoice['id']}/mark-paid", headers=FINANCE)
        assert response.status_code == 200
        assert response.json()["status"] == "paid"
        assert str(uow.project("proj-1")["revenue"]) == "27.00"

    def test_team_member_cannot_create_sales_order(self, client):
        response = client.post(
            "/api/sales-orders", json=order_payload("customer_id", "cust-1"), headers=MEMBER
        )
        assert response.status_code == 403

    def test_purchase_order_edit_and_delete(self, client):
        order = client.post("/api/purchase-orders", json=order_payload(), headers=MEMBER).json()

        response = client.put(
            f"/api/purchase-orders/{order['id']}", json={"lines": [line(1, 100, 5)]}, headers=MEMBER
        )
        assert response.status_code == 200
        assert response.json()["grand_total"] == 105.0

        assert client.delete(f"/api/purchase-orders/{order['id']}", headers=MEMBER).status_code == 403
        response = client.delete(f"/api/purchase-orders/{order['id']}", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["deleted"] is True
        assert client.get(f"/api/purchase-orders/{order['id']}", headers=ADMIN).status_code == 404

    def test_vendor_bill_list_by_status(self, client):
        order = client.post("/api/purchase-orders", json=order_payload(), headers=MEMBER).json()
        client.post(f"/api/purchase-orders/{order['id']}/confirm", headers=MANAGER)
        bill = client.post(f"/api/vendor-bills/from-purchase-order/{order['id']}", headers=MEMBER).json()
        client.post(f"/api/vendor-bills/{bill['id']}/post", headers=FINANCE)

        posted = client.get("/api/vendor-bills", params={"status": "posted"}, headers=FINANCE).json()
        assert [b["id"] for b in posted] == [bill["id"]]
        assert client.get("/api/vendor-bills", params={"status": "paid"}, headers=FINANCE).json() == []

    def test_direct_invoice_with_sales_order_link(self, client):
        response = client.post(
            "/api/invoices", json=order_payload("customer_id", "cust-1", sales_order_id="so-xyz"), headers=MANAGER
        )
        assert response.status_code == 201, response.text
        assert response.json()["sales_order_id"] == "so-xyz"

    def test_integer_product_id_is_accepted(self, client):
        response = client.post(
            "/api/purchase-orders", json=order_payload(lines=[line(1, 100, 5, product_id=42)]), headers=MEMBER
        )
        assert response.status_code == 201, response.text
        assert response.json()["lines"][0]["product_id"] == "42"
