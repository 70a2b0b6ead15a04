"""
LIFECYCLE ERROR TAXONOMY

Every failure the lifecycle engine raises on purpose derives from
LifecycleError. The HTTP layer maps the branches onto status codes; anything
outside this tree is an infrastructure failure.

- ValidationError           missing/malformed fields, non-positive amounts,
                            missing required receipt
- InvalidStateTransition    current status does not permit the operation
- AccessDeniedError         policy predicate is false
- NotFoundError             unknown document / project id
- ConflictError             duplicate document number, write conflict or lost race
- TransactionError          atomic unit aborted for an infrastructure reason
"""

from typing import List, Optional


class LifecycleError(Exception):
    """Base exception for document lifecycle errors."""
    pass


class ValidationError(LifecycleError):
    """Raised when a payload or document fails validation."""
    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class InvalidStateTransition(LifecycleError):
    """Raised when attempting an invalid state transition."""
    def __init__(self, entity: str, from_state: str, to_state: str, allowed: List[str] = None):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed or []

        allowed_str = f" Allowed transitions from '{from_state}': {self.allowed}" if self.allowed else ""
        message = f"Invalid transition for {entity}: '{from_state}' -> '{to_state}'.{allowed_str}"
        super().__init__(message)


# Older call sites use the state machine's name for the same failure
InvalidTransitionError = InvalidStateTransition


class DocumentNotEditableError(InvalidStateTransition):
    """Raised when a non-draft document is edited or deleted."""
    def __init__(self, entity: str, status: str, operation: str = "edit"):
        self.entity = entity
        self.from_state = status
        self.to_state = status
        self.allowed = []
        self.operation = operation
        LifecycleError.__init__(
            self,
            f"Cannot {operation} {entity} in status '{status}'; only draft documents can be changed"
        )


class GuardConditionError(ValidationError):
    """Raised when a guard condition prevents a transition."""
    def __init__(self, entity: str, from_state: str, to_state: str, reason: str):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(f"Guard blocked {entity}: '{from_state}' -> '{to_state}': {reason}")


class AccessDeniedError(LifecycleError):
    """Raised when the access policy rejects an action."""
    def __init__(self, action: str, entity: str, actor_id: Optional[str] = None):
        self.action = action
        self.entity = entity
        self.actor_id = actor_id
        super().__init__(f"Access denied: cannot {action} {entity}")


class NotFoundError(LifecycleError):
    """Raised when a document or project does not exist."""
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConflictError(LifecycleError):
    """Raised when a concurrent writer won."""
    pass


class DuplicateDocumentNumberError(ConflictError):
    """Raised by a store when a document number is already taken."""
    def __init__(self, document_number: str):
        self.document_number = document_number
        super().__init__(f"Document number already exists: {document_number}")


class TransientConflictError(ConflictError):
    """Raised when the database aborted the transaction on a write conflict; the unit may be retried."""
    pass


class LostTransitionRaceError(ConflictError):
    """Raised when the status changed between read and write."""
    def __init__(self, entity: str, document_id: str, expected_status: str):
        self.entity = entity
        self.document_id = document_id
        self.expected_status = expected_status
        super().__init__(
            f"{entity} {document_id} is no longer '{expected_status}'; another request changed it first"
        )


class TransactionError(LifecycleError):
    """Raised when a transaction fails for a non-domain reason."""
    pass
