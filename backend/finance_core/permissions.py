"""
ACCESS CONTROL POLICY

One declarative table (action -> role sets) shared by every document kind.
A rule grants an action when the actor's role is in:
1. any_roles      - for every document
2. own_roles      - when the actor owns the document
3. managed_roles  - when the actor manages the document's project

`allowed` is a pure predicate. AccessPolicy.require wraps it and raises
AccessDeniedError; lifecycles call it before any write.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional
import logging

from finance_core.document_types import DOCUMENT_TYPES, DocumentKind
from finance_core.errors import AccessDeniedError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    TEAM_MEMBER = "team_member"
    PROJECT_MANAGER = "project_manager"
    FINANCE_MANAGER = "finance_manager"
    ADMIN = "admin"


class Action(str, Enum):
    CREATE = "create"
    VIEW = "view"
    EDIT = "edit"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REIMBURSE = "reimburse"
    CONFIRM = "confirm"
    POST = "post"
    MARK_PAID = "mark_paid"
    DELETE = "delete"


@dataclass(frozen=True)
class Actor:
    """Authenticated principal requesting an operation."""
    id: str
    role: Role
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class PolicyRule:
    any_roles: FrozenSet[Role] = field(default_factory=frozenset)
    own_roles: FrozenSet[Role] = field(default_factory=frozenset)
    managed_roles: FrozenSet[Role] = field(default_factory=frozenset)


def _roles(*roles: Role) -> FrozenSet[Role]:
    return frozenset(roles)


ADMIN_ONLY = _roles(Role.ADMIN)
ADMIN_AND_FINANCE = _roles(Role.ADMIN, Role.FINANCE_MANAGER)
CONTRIBUTORS = _roles(Role.TEAM_MEMBER, Role.PROJECT_MANAGER)
MANAGER = _roles(Role.PROJECT_MANAGER)

POLICY_TABLE: Dict[Action, PolicyRule] = {
    Action.CREATE: PolicyRule(any_roles=ADMIN_ONLY, own_roles=CONTRIBUTORS),
    Action.VIEW: PolicyRule(any_roles=ADMIN_AND_FINANCE, own_roles=CONTRIBUTORS, managed_roles=MANAGER),
    Action.EDIT: PolicyRule(any_roles=ADMIN_ONLY, own_roles=CONTRIBUTORS, managed_roles=MANAGER),
    Action.SUBMIT: PolicyRule(any_roles=ADMIN_ONLY, own_roles=CONTRIBUTORS, managed_roles=MANAGER),
    Action.APPROVE: PolicyRule(any_roles=ADMIN_AND_FINANCE, managed_roles=MANAGER),
    Action.REJECT: PolicyRule(any_roles=ADMIN_AND_FINANCE, managed_roles=MANAGER),
    Action.REIMBURSE: PolicyRule(any_roles=ADMIN_AND_FINANCE),
    Action.CONFIRM: PolicyRule(any_roles=ADMIN_ONLY, managed_roles=MANAGER),
    Action.POST: PolicyRule(any_roles=ADMIN_AND_FINANCE, managed_roles=MANAGER),
    Action.MARK_PAID: PolicyRule(any_roles=ADMIN_AND_FINANCE),
    Action.DELETE: PolicyRule(any_roles=ADMIN_ONLY),
}

# Sales orders are raised by project managers only
KIND_OVERRIDES: Dict[DocumentKind, Dict[Action, PolicyRule]] = {
    DocumentKind.SALES_ORDER: {
        Action.CREATE: PolicyRule(any_roles=ADMIN_ONLY, own_roles=MANAGER),
    },
}


def rule_for(action: Action, kind: Optional[DocumentKind] = None) -> PolicyRule:
    if kind is not None:
        override = KIND_OVERRIDES.get(DocumentKind(kind), {}).get(action)
        if override is not None:
            return override
    return POLICY_TABLE[action]


def is_owner(actor: Actor, kind: DocumentKind, document: Optional[Dict[str, Any]]) -> bool:
    if document is None:
        return False
    owner_field = DOCUMENT_TYPES[DocumentKind(kind)].owner_field
    return document.get(owner_field) == actor.id


def is_manager(actor: Actor, project: Optional[Dict[str, Any]]) -> bool:
    return project is not None and project.get("manager_id") == actor.id


def is_project_member(actor: Actor, project: Dict[str, Any]) -> bool:
    """Admins, the project manager and listed team members belong to a project."""
    if actor.is_admin or is_manager(actor, project):
        return True
    return actor.id in (project.get("team_members") or [])


def allowed(
    actor: Actor,
    action: Action,
    kind: DocumentKind,
    document: Optional[Dict[str, Any]] = None,
    project: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Pure policy predicate.

    For `create` there is no stored document yet; the actor is the
    prospective owner.
    """
    rule = rule_for(Action(action), kind)
    role = Role(actor.role)

    if role in rule.any_roles:
        return True
    if role in rule.own_roles:
        if Action(action) == Action.CREATE or is_owner(actor, kind, document):
            return True
    if role in rule.managed_roles and is_manager(actor, project):
        return True
    return False


def visibility_query(
    actor: Actor,
    kind: DocumentKind,
    managed_project_ids: Iterable[str] = ()
) -> Dict[str, Any]:
    """Mongo-style filter restricting a listing to documents the actor may view."""
    rule = rule_for(Action.VIEW, kind)
    role = Role(actor.role)
    if role in rule.any_roles:
        return {}

    owner_field = DOCUMENT_TYPES[DocumentKind(kind)].owner_field
    clauses = []
    if role in rule.own_roles:
        clauses.append({owner_field: actor.id})
    managed = list(managed_project_ids)
    if role in rule.managed_roles and managed:
        clauses.append({"project_id": {"$in": managed}})

    if not clauses:
        # Matches nothing
        return {"_id": {"$in": []}}
    if len(clauses) == 1:
        return clauses[0]
    return {"$or": clauses}


class AccessPolicy:
    """Raises AccessDeniedError where `allowed` says no."""

    def require(
        self,
        actor: Actor,
        action: Action,
        kind: DocumentKind,
        document: Optional[Dict[str, Any]] = None,
        project: Optional[Dict[str, Any]] = None
    ) -> None:
        if not allowed(actor, action, kind, document, project):
            label = DOCUMENT_TYPES[DocumentKind(kind)].label.lower()
            logger.warning(
                f"[POLICY] Denied {Action(action).value} on {label} "
                f"{(document or {}).get('id', '')} for {actor.id} ({Role(actor.role).value})"
            )
            raise AccessDeniedError(Action(action).value, label, actor.id)

    def require_membership(self, actor: Actor, project: Dict[str, Any]) -> None:
        if not is_project_member(actor, project):
            logger.warning(f"[POLICY] {actor.id} is not a member of project {project.get('id')}")
            raise AccessDeniedError("create documents in", "project", actor.id)
