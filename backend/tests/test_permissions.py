"""
Access policy table.
"""
import pytest

from finance_core.document_types import DocumentKind
from finance_core.errors import AccessDeniedError
from finance_core.permissions import (
    AccessPolicy,
    Action,
    Actor,
    Role,
    allowed,
    is_project_member,
    visibility_query,
)

PROJECT = {"id": "proj-1", "manager_id": "pm-1", "team_members": ["tm-1", "tm-2"]}
OTHER_PROJECT = {"id": "proj-2", "manager_id": "pm-2", "team_members": ["tm-3"]}

EXPENSE = {"id": "exp-1", "project_id": "proj-1", "submitted_by": "tm-1", "status": "submitted"}
ORDER = {"id": "po-1", "project_id": "proj-1", "created_by": "tm-1", "status": "draft"}

ADMIN = Actor(id="admin-1", role=Role.ADMIN)
FINANCE = Actor(id="fin-1", role=Role.FINANCE_MANAGER)
MANAGER = Actor(id="pm-1", role=Role.PROJECT_MANAGER)
OTHER_MANAGER = Actor(id="pm-2", role=Role.PROJECT_MANAGER)
OWNER = Actor(id="tm-1", role=Role.TEAM_MEMBER)
TEAMMATE = Actor(id="tm-2", role=Role.TEAM_MEMBER)


class TestExpensePolicy:

    @pytest.mark.parametrize("actor,action,expected", [
        (OWNER, Action.VIEW, True),
        (OWNER, Action.EDIT, True),
        (OWNER, Action.SUBMIT, True),
        (OWNER, Action.APPROVE, False),
        (TEAMMATE, Action.VIEW, False),
        (TEAMMATE, Action.EDIT, False),
        (MANAGER, Action.VIEW, True),
        (MANAGER, Action.EDIT, True),
        (MANAGER, Action.APPROVE, True),
        (MANAGER, Action.REJECT, True),
        (MANAGER, Action.REIMBURSE, False),
        (OTHER_MANAGER, Action.APPROVE, False),
        (OTHER_MANAGER, Action.VIEW, False),
        (FINANCE, Action.VIEW, True),
        (FINANCE, Action.APPROVE, True),
        (FINANCE, Action.REIMBURSE, True),
        (FINANCE, Action.EDIT, False),
        (FINANCE, Action.DELETE, False),
        (ADMIN, Action.REIMBURSE, True),
        (ADMIN, Action.DELETE, True),
    ])
    def test_table(self, actor, action, expected):
        assert allowed(actor, action, DocumentKind.EXPENSE, EXPENSE, PROJECT) is expected

    def test_ownership_uses_submitted_by(self):
        not_owned = {**EXPENSE, "submitted_by": "tm-2", "created_by": "tm-1"}
        assert allowed(OWNER, Action.EDIT, DocumentKind.EXPENSE, not_owned, PROJECT) is False


class TestCreatePolicy:

    def test_contributors_create(self):
        assert allowed(OWNER, Action.CREATE, DocumentKind.EXPENSE, project=PROJECT)
        assert allowed(MANAGER, Action.CREATE, DocumentKind.PURCHASE_ORDER, project=PROJECT)
        assert not allowed(FINANCE, Action.CREATE, DocumentKind.EXPENSE, project=PROJECT)

    def test_sales_orders_are_manager_only(self):
        assert not allowed(OWNER, Action.CREATE, DocumentKind.SALES_ORDER, project=PROJECT)
        assert allowed(MANAGER, Action.CREATE, DocumentKind.SALES_ORDER, project=PROJECT)
        assert allowed(ADMIN, Action.CREATE, DocumentKind.SALES_ORDER, project=PROJECT)

    def test_project_membership(self):
        assert is_project_member(OWNER, PROJECT)
        assert is_project_member(MANAGER, PROJECT)
        assert is_project_member(ADMIN, OTHER_PROJECT)
        assert not is_project_member(OWNER, OTHER_PROJECT)
        assert not is_project_member(FINANCE, PROJECT)


class TestBillingPolicy:

    @pytest.mark.parametrize("actor,action,expected", [
        (MANAGER, Action.CONFIRM, True),
        (OTHER_MANAGER, Action.CONFIRM, False),
        (OWNER, Action.CONFIRM, False),
        (FINANCE, Action.CONFIRM, False),
        (MANAGER, Action.POST, True),
        (FINANCE, Action.POST, True),
        (MANAGER, Action.MARK_PAID, False),
        (FINANCE, Action.MARK_PAID, True),
    ])
    def test_table(self, actor, action, expected):
        assert allowed(actor, action, DocumentKind.INVOICE, ORDER, PROJECT) is expected


class TestVisibility:

    def test_admin_and_finance_see_everything(self):
        assert visibility_query(ADMIN, DocumentKind.EXPENSE) == {}
        assert visibility_query(FINANCE, DocumentKind.INVOICE) == {}

    def test_team_member_sees_own(self):
        assert visibility_query(OWNER, DocumentKind.EXPENSE) == {"submitted_by": "tm-1"}
        assert visibility_query(OWNER, DocumentKind.VENDOR_BILL) == {"created_by": "tm-1"}

    def test_manager_sees_own_and_managed(self):
        query = visibility_query(MANAGER, DocumentKind.EXPENSE, ["proj-1"])
        assert query == {"$or": [{"submitted_by": "pm-1"}, {"project_id": {"$in": ["proj-1"]}}]}
        assert visibility_query(MANAGER, DocumentKind.EXPENSE, []) == {"submitted_by": "pm-1"}


class TestAccessPolicy:

    def test_require_raises(self):
        policy = AccessPolicy()
        policy.require(OWNER, Action.EDIT, DocumentKind.EXPENSE, EXPENSE, PROJECT)
        with pytest.raises(AccessDeniedError) as exc_info:
            policy.require(TEAMMATE, Action.EDIT, DocumentKind.EXPENSE, EXPENSE, PROJECT)
        assert exc_info.value.action == "edit"
        assert exc_info.value.actor_id == "tm-2"

    def test_require_membership(self):
        with pytest.raises(AccessDeniedError):
            AccessPolicy().require_membership(OWNER, OTHER_PROJECT)
