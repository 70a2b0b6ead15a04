"""
Financial document lifecycle engine: numbering, line-item totals, access
policy, status state machines, ledger effects and append-only history.
"""

from .errors import (
    LifecycleError,
    ValidationError,
    InvalidStateTransition,
    InvalidTransitionError,
    DocumentNotEditableError,
    GuardConditionError,
    AccessDeniedError,
    NotFoundError,
    ConflictError,
    TransientConflictError,
    DuplicateDocumentNumberError,
    LostTransitionRaceError,
    TransactionError,
)

from .document_types import (
    DocumentKind,
    ExpenseStatus,
    OrderStatus,
    BillingStatus,
    ExpenseCategory,
    DOCUMENT_TYPES,
)

from .permissions import Actor, Role, Action

from .lifecycle_wiring import LifecycleRegistry, build_lifecycles
