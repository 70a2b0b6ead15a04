"""
DOCUMENT STATUS STATE MACHINE

Holds the legal status graph for one document kind. Each edge carries:
- an action label (submit, approve, post, ...) checked by the access policy
- an optional guard that can veto the move with a reason
- a handler that runs inside the caller's unit of work and returns the
  metadata fields to write with the new status

Usage:
    machine = StateMachine("expense")
    machine.register("draft", "submitted", "submit", stamp_submitted, guard=receipt_present)
    machine.register("submitted", "approved", "approve", book_cost)

    edge = machine.validate_transition(doc["status"], "approved")
    result = await machine.transition(doc, "approved", store=store, context={...})
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import logging

from finance_core.errors import (
    GuardConditionError,
    InvalidStateTransition,
    LifecycleError,
    TransactionError,
)

logger = logging.getLogger(__name__)

# async def handler(document, context, store) -> fields to persist with the new status
TransitionHandler = Callable[[Dict[str, Any], Dict[str, Any], Any], Awaitable[Dict[str, Any]]]

# async def guard(document, context) -> (allowed, reason)
GuardCondition = Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Tuple[bool, str]]]


class TransitionHandlerError(TransactionError):
    """A handler failed with something other than a LifecycleError."""
    def __init__(self, entity: str, from_state: str, to_state: str, original_error: Exception):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.original_error = original_error
        super().__init__(f"{entity} handler '{from_state}' -> '{to_state}' raised: {original_error}")


@dataclass(frozen=True)
class Transition:
    from_state: str
    to_state: str
    action: str
    handler: TransitionHandler
    guard: Optional[GuardCondition] = None
    description: str = ""


class StateMachine:
    """
    Status graph for one document kind.

    Every target state has a single predecessor in the graphs used here, so
    an action label names exactly one edge.
    """

    def __init__(self, entity_name: str, status_field: str = "status"):
        self.entity_name = entity_name
        self.status_field = status_field
        # from_state -> {to_state: edge}; terminal states map to {}
        self._edges: Dict[str, Dict[str, Transition]] = {}
        self._by_action: Dict[str, Transition] = {}

    # =========================================================================
    # GRAPH
    # =========================================================================

    def register(
        self,
        from_state: str,
        to_state: str,
        action: str,
        handler: TransitionHandler,
        guard: Optional[GuardCondition] = None,
        description: str = ""
    ) -> "StateMachine":
        edge = Transition(from_state, to_state, action, handler, guard, description)

        outgoing = self._edges.setdefault(from_state, {})
        self._edges.setdefault(to_state, {})
        if to_state in outgoing:
            logger.warning(f"[STATE_MACHINE] {self.entity_name}: replacing edge '{from_state}' -> '{to_state}'")
        outgoing[to_state] = edge
        self._by_action[action] = edge
        return self

    def get_states(self) -> List[str]:
        return list(self._edges)

    def get_graph(self) -> Dict[str, List[str]]:
        return {state: list(targets) for state, targets in self._edges.items()}

    def get_allowed_transitions(self, from_state: str) -> List[str]:
        return list(self._edges.get(from_state, {}))

    def can_transition(self, from_state: str, to_state: str) -> bool:
        """Edge exists; guards are not evaluated."""
        return to_state in self._edges.get(from_state, {})

    def validate_transition(self, from_state: str, to_state: str) -> Transition:
        edge = self._edges.get(from_state, {}).get(to_state)
        if edge is None:
            raise InvalidStateTransition(
                entity=self.entity_name,
                from_state=from_state,
                to_state=to_state,
                allowed=self.get_allowed_transitions(from_state)
            )
        return edge

    def target_for_action(self, action: str) -> str:
        edge = self._by_action.get(action)
        if edge is None:
            raise ValueError(f"{self.entity_name} has no '{action}' transition")
        return edge.to_state

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def check_guard(
        self,
        entity_doc: Dict[str, Any],
        from_state: str,
        to_state: str,
        context: Dict[str, Any]
    ) -> None:
        edge = self.validate_transition(from_state, to_state)
        if edge.guard is None:
            return
        allowed, reason = await edge.guard(entity_doc, context)
        if not allowed:
            logger.info(f"[STATE_MACHINE] {self.entity_name} '{from_state}' -> '{to_state}' blocked: {reason}")
            raise GuardConditionError(self.entity_name, from_state, to_state, reason)

    async def transition(
        self,
        entity_doc: Dict[str, Any],
        to_state: str,
        store: Any = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Validate, guard and run the handler for one move.

        Returns {from_state, to_state, action, handler_result}. Writing the
        status is left to the caller. LifecycleErrors from the handler
        propagate unchanged; anything else becomes TransitionHandlerError.
        """
        context = context or {}
        from_state = entity_doc.get(self.status_field)

        edge = self.validate_transition(from_state, to_state)
        await self.check_guard(entity_doc, from_state, to_state, context)

        try:
            fields = await edge.handler(entity_doc, context, store)
        except LifecycleError:
            raise
        except Exception as e:
            logger.error(f"[STATE_MACHINE] {self.entity_name} handler '{from_state}' -> '{to_state}' failed: {e}")
            raise TransitionHandlerError(self.entity_name, from_state, to_state, e) from e

        return {
            "from_state": from_state,
            "to_state": to_state,
            "action": edge.action,
            "handler_result": fields or {},
        }

    def get_status_update(self, to_state: str, changed_at) -> Dict[str, Any]:
        return {self.status_field: to_state, "updated_at": changed_at}

    def __repr__(self):
        edges = sum(len(targets) for targets in self._edges.values())
        return f"StateMachine({self.entity_name}, states={len(self._edges)}, transitions={edges})"
