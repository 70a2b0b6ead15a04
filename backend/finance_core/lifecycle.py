"""
DOCUMENT LIFECYCLE

Shared engine behind every financial document kind.

ATOMIC UNITS (one UnitOfWork.transaction() each):
- create:     policy -> validate -> number -> insert -> lines -> history
- update:     draft check -> policy -> validate -> write (compare-and-set) -> lines -> history
- transition: (a) graph check -> (b) policy -> guard -> (c) ledger effect
              -> (d) status write (compare-and-set) -> (e) history
- delete:     policy -> draft check -> remove document + lines -> history

Domain errors (LifecycleError) propagate unchanged and abort the unit.
Anything else aborts the unit and surfaces as TransactionError.

Reads (get, list, history) use UnitOfWork.reader() and run outside any
transaction.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
import asyncio
import logging

from finance_core.audit import HistoryAction, HistoryLogger, HistoryRecord
from finance_core.document_numbering import DocumentNumbering, period_for
from finance_core.document_types import DOCUMENT_TYPES, DRAFT, DocumentKind
from finance_core.errors import (
    ConflictError,
    DocumentNotEditableError,
    DuplicateDocumentNumberError,
    LifecycleError,
    LostTransitionRaceError,
    NotFoundError,
    TransactionError,
    TransientConflictError,
    ValidationError,
)
from finance_core.ledger import LedgerEffectEngine
from finance_core.line_items import build_line_documents
from finance_core.permissions import AccessPolicy, Action, Actor, Role, visibility_query
from finance_core.settings import CompanySettings
from finance_core.snapshots import take_snapshot
from finance_core.state_machine import StateMachine

logger = logging.getLogger(__name__)


# =============================================================================
# PAYLOAD HELPERS
# =============================================================================

def require_field(payload: Dict[str, Any], name: str) -> Any:
    value = payload.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required", field=name)
    return value


def iso_date(value: Any, field_name: str) -> str:
    """Normalise a date/datetime/ISO string to YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10]).isoformat()
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD)", field=field_name)


def optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# =============================================================================
# BASE LIFECYCLE
# =============================================================================

class DocumentLifecycle:
    """
    Lifecycle for one document kind.

    Subclasses set `kind`, register their transitions in
    `build_state_machine`, and turn payloads into stored fields in
    `prepare_new` / `prepare_update`.
    """

    kind: DocumentKind = None

    MAX_CREATE_ATTEMPTS = 5
    RETRY_DELAY_MS = 100  # Base delay in milliseconds

    # Header fields a caller may change while the document is a draft
    EDITABLE_FIELDS: Tuple[str, ...] = ()

    def __init__(
        self,
        uow,
        settings: Optional[CompanySettings] = None,
        policy: Optional[AccessPolicy] = None,
        history: Optional[HistoryLogger] = None,
        ledger: Optional[LedgerEffectEngine] = None,
        numbering: Optional[DocumentNumbering] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.uow = uow
        self.doc_type = DOCUMENT_TYPES[self.kind]
        self.settings = settings or CompanySettings()
        self.policy = policy or AccessPolicy()
        self.history = history or HistoryLogger()
        self.ledger = ledger or LedgerEffectEngine()
        self.numbering = numbering or DocumentNumbering()
        self.clock = clock
        self.machine = self.build_state_machine()

    @property
    def label(self) -> str:
        return self.doc_type.label

    # =========================================================================
    # HOOKS
    # =========================================================================

    def build_state_machine(self) -> StateMachine:
        raise NotImplementedError

    async def prepare_new(
        self,
        store,
        actor: Actor,
        payload: Dict[str, Any],
        now: datetime
    ) -> Tuple[Dict[str, Any], Optional[List[Dict[str, Any]]]]:
        """Validated header fields plus line documents (None for kinds without lines)."""
        raise NotImplementedError

    async def prepare_update(
        self,
        store,
        actor: Actor,
        current: Dict[str, Any],
        payload: Dict[str, Any],
        now: datetime
    ) -> Tuple[Dict[str, Any], Optional[List[Dict[str, Any]]]]:
        """Changed header fields plus replacement lines (None to keep the current lines)."""
        raise NotImplementedError

    def list_filters(self, filters: Dict[str, Any]) -> Dict[str, Any]:
        """Mongo-style query for the caller's listing filters."""
        query = {}
        if filters.get("project_id"):
            query["project_id"] = filters["project_id"]
        if filters.get("status"):
            query["status"] = filters["status"]
        return query

    # =========================================================================
    # TRANSACTION SCOPE
    # =========================================================================

    @asynccontextmanager
    async def _atomic(self, operation: str):
        try:
            async with self.uow.transaction() as store:
                yield store
        except LifecycleError:
            raise
        except Exception as e:
            logger.error(f"[TRANSACTION] {self.kind.value} {operation} aborted: {e}")
            raise TransactionError("Transaction failed") from e

    def transition_handler(self, stamp: Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]):
        """
        Build a state machine handler that applies the ledger effect for the
        transition and returns the metadata fields from `stamp`.
        """
        async def handle(document: Dict[str, Any], context: Dict[str, Any], store) -> Dict[str, Any]:
            await self.ledger.apply(store, self.kind, document, document["status"], context["to_state"])
            return stamp(document, context)
        return handle

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _load(self, store, document_id: str) -> Dict[str, Any]:
        document = await store.find_document(self.doc_type, document_id)
        if document is None:
            raise NotFoundError(self.label, document_id)
        return document

    async def _load_project(self, store, project_id: Optional[str]) -> Dict[str, Any]:
        if not project_id:
            raise ValidationError("project_id is required", field="project_id")
        project = await store.find_project(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    async def _lines(self, store, document_id: str) -> Optional[List[Dict[str, Any]]]:
        if not self.doc_type.has_lines:
            return None
        return await store.find_lines(self.doc_type, document_id)

    def snapshot(self, document: Dict[str, Any], lines: Optional[List[Dict[str, Any]]] = None):
        return take_snapshot(self.kind, document, lines)

    def present(self, document: Dict[str, Any], lines: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        result = dict(document)
        if self.doc_type.has_lines:
            result["lines"] = lines or []
        return result

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self, actor: Actor, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a draft document owned by `actor`."""
        async def attempt():
            async with self._atomic("create") as store:
                project = await self._load_project(store, payload.get("project_id"))
                self.policy.require(actor, Action.CREATE, self.kind, project=project)
                self.policy.require_membership(actor, project)
                document, lines = await self._insert_new(store, actor, project, payload, HistoryAction.CREATE)
            return self.present(document, lines)

        return await self._with_number_retry(attempt)

    async def _with_number_retry(self, attempt):
        """
        Re-run a creating unit of work when its document number was taken by
        a concurrent writer, either as a committed duplicate or as a write
        conflict with a transaction that has not committed yet.
        """
        for attempt_no in range(1, self.MAX_CREATE_ATTEMPTS + 1):
            try:
                return await attempt()
            except (DuplicateDocumentNumberError, TransientConflictError) as e:
                collided = getattr(e, "document_number", None) or "write conflict"
                logger.warning(
                    f"[NUMBERING] Collision on {collided}, "
                    f"attempt {attempt_no}/{self.MAX_CREATE_ATTEMPTS}"
                )
                if attempt_no == self.MAX_CREATE_ATTEMPTS:
                    raise ConflictError(
                        f"Failed to generate unique {self.label.lower()} number "
                        f"after {self.MAX_CREATE_ATTEMPTS} attempts"
                    ) from e
                await asyncio.sleep(self.RETRY_DELAY_MS * attempt_no / 1000)

    async def _insert_new(
        self,
        store,
        actor: Actor,
        project: Dict[str, Any],
        payload: Dict[str, Any],
        history_action: str,
        links: Optional[Dict[str, Any]] = None
    ) -> Tuple[Dict[str, Any], Optional[List[Dict[str, Any]]]]:
        now = self.clock()
        fields, line_docs = await self.prepare_new(store, actor, payload, now)

        document_number, sequence = await self.numbering.next_number(store, self.doc_type, period_for(now))
        document = {
            **fields,
            **(links or {}),
            "document_number": document_number,
            "sequence_number": sequence,
            "project_id": project["id"],
            "status": DRAFT,
            self.doc_type.owner_field: actor.id,
            "created_by": actor.id,
            "updated_by": actor.id,
            "created_at": now,
            "updated_at": now,
        }
        document = await store.insert_document(self.doc_type, document)

        lines = None
        if self.doc_type.has_lines:
            lines = await store.replace_lines(self.doc_type, document["id"], line_docs or [])

        await self.history.record(
            store,
            self.kind,
            document["id"],
            history_action,
            actor.id,
            now,
            project_id=document["project_id"],
            new_status=DRAFT,
            after=self.snapshot(document, lines),
        )
        logger.info(f"[STATE_MACHINE] Created {self.kind.value} {document_number} by {actor.id}")
        return document, lines

    # =========================================================================
    # UPDATE (DRAFT ONLY)
    # =========================================================================

    async def update(self, actor: Actor, document_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self._atomic("update") as store:
            current = await self._load(store, document_id)
            if current["status"] != DRAFT:
                raise DocumentNotEditableError(self.label, current["status"], "edit")

            project = await store.find_project(current["project_id"])
            self.policy.require(actor, Action.EDIT, self.kind, current, project)

            lines_before = await self._lines(store, document_id)
            now = self.clock()
            fields, line_docs = await self.prepare_update(store, actor, current, payload, now)
            fields.update({"updated_by": actor.id, "updated_at": now})

            updated = await store.update_document(self.doc_type, document_id, fields, expected_status=DRAFT)
            if updated is None:
                raise LostTransitionRaceError(self.label, document_id, DRAFT)

            lines = lines_before
            if line_docs is not None:
                lines = await store.replace_lines(self.doc_type, document_id, line_docs)

            await self.history.record(
                store,
                self.kind,
                document_id,
                HistoryAction.UPDATE,
                actor.id,
                now,
                project_id=current["project_id"],
                old_status=DRAFT,
                new_status=DRAFT,
                before=self.snapshot(current, lines_before),
                after=self.snapshot(updated, lines),
            )

        logger.info(f"[STATE_MACHINE] Updated {self.kind.value} {updated['document_number']} by {actor.id}")
        return self.present(updated, lines)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self,
        actor: Actor,
        document_id: str,
        target_status: str,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Move a document to `target_status` along its status graph."""
        async with self._atomic("transition") as store:
            current = await self._load(store, document_id)
            from_state = current["status"]

            # (a) graph
            transition = self.machine.validate_transition(from_state, target_status)

            # (b) policy
            project = await store.find_project(current["project_id"])
            self.policy.require(actor, Action(transition.action), self.kind, current, project)

            now = self.clock()
            lines = await self._lines(store, document_id)
            context = {
                "actor": actor,
                "reason": optional_str(reason),
                "now": now,
                "to_state": target_status,
                "lines": lines,
            }

            # guard + (c) ledger effect inside the handler
            result = await self.machine.transition(current, target_status, store=store, context=context)

            # (d) status write
            fields = {
                **self.machine.get_status_update(target_status, now),
                **result["handler_result"],
                "updated_by": actor.id,
            }
            updated = await store.update_document(self.doc_type, document_id, fields, expected_status=from_state)
            if updated is None:
                raise LostTransitionRaceError(self.label, document_id, from_state)

            # (e) history
            await self.history.record(
                store,
                self.kind,
                document_id,
                HistoryAction.for_transition(transition.action),
                actor.id,
                now,
                project_id=current["project_id"],
                old_status=from_state,
                new_status=target_status,
                reason=context["reason"],
                before=self.snapshot(current, lines),
                after=self.snapshot(updated, lines),
            )

        logger.info(
            f"[STATE_MACHINE] {self.kind.value} {updated['document_number']}: "
            f"'{from_state}' -> '{target_status}' by {actor.id}"
        )
        return self.present(updated, lines)

    async def perform(self, actor: Actor, document_id: str, action: Action, reason: Optional[str] = None):
        """Run the transition labelled `action`."""
        target = self.machine.target_for_action(Action(action).value)
        return await self.transition(actor, document_id, target, reason=reason)

    # =========================================================================
    # DELETE (ADMINISTRATIVE OVERRIDE)
    # =========================================================================

    async def delete(self, actor: Actor, document_id: str) -> Dict[str, Any]:
        async with self._atomic("delete") as store:
            current = await self._load(store, document_id)
            project = await store.find_project(current["project_id"])
            self.policy.require(actor, Action.DELETE, self.kind, current, project)
            if current["status"] != DRAFT:
                raise DocumentNotEditableError(self.label, current["status"], "delete")

            lines = await self._lines(store, document_id)
            await store.delete_document(self.doc_type, document_id)
            await self.history.record(
                store,
                self.kind,
                document_id,
                HistoryAction.DELETE,
                actor.id,
                self.clock(),
                project_id=current["project_id"],
                old_status=current["status"],
                before=self.snapshot(current, lines),
            )

        logger.info(f"[STATE_MACHINE] Deleted {self.kind.value} {current['document_number']} by {actor.id}")
        return {"id": document_id, "document_number": current["document_number"], "deleted": True}

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, actor: Actor, document_id: str) -> Dict[str, Any]:
        async with self.uow.reader() as store:
            document = await self._load(store, document_id)
            project = await store.find_project(document["project_id"])
            self.policy.require(actor, Action.VIEW, self.kind, document, project)
            lines = await self._lines(store, document_id)
        return self.present(document, lines)

    async def list(self, actor: Actor, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Documents visible to `actor` matching `filters`, newest first."""
        filters = filters or {}
        async with self.uow.reader() as store:
            managed = []
            if Role(actor.role) == Role.PROJECT_MANAGER:
                managed = await store.find_managed_project_ids(actor.id)

            clauses = [c for c in (visibility_query(actor, self.kind, managed), self.list_filters(filters)) if c]
            if not clauses:
                query = {}
            elif len(clauses) == 1:
                query = clauses[0]
            else:
                query = {"$and": clauses}

            documents = await store.list_documents(self.doc_type, query)
            if not self.doc_type.has_lines:
                return [self.present(doc) for doc in documents]
            return [self.present(doc, await store.find_lines(self.doc_type, doc["id"])) for doc in documents]

    async def history_for(self, actor: Actor, document_id: str) -> List[HistoryRecord]:
        async with self.uow.reader() as store:
            document = await self._load(store, document_id)
            project = await store.find_project(document["project_id"])
            self.policy.require(actor, Action.VIEW, self.kind, document, project)
            return await self.history.list_for(store, self.kind, document_id)


# =============================================================================
# LINE-ITEM DOCUMENTS (ORDERS, INVOICES, VENDOR BILLS)
# =============================================================================

class LineItemLifecycle(DocumentLifecycle):
    """
    Documents whose totals derive from line items.

    Totals are recomputed from the lines on every write; caller-supplied
    subtotal/total_tax/grand_total are never stored.
    """

    def header_fields(
        self,
        payload: Dict[str, Any],
        now: datetime,
        current: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Counterparty, document date and notes, merged over `current` on update."""
        current = current or {}
        counterparty_field = self.doc_type.counterparty_field
        date_field = self.doc_type.date_field

        counterparty = payload.get(counterparty_field)
        if counterparty is None:
            counterparty = current.get(counterparty_field)
        counterparty = optional_str(counterparty)
        if counterparty is None:
            raise ValidationError(f"{counterparty_field} is required", field=counterparty_field)

        document_date = payload.get(date_field) or current.get(date_field) or now.date()

        notes = payload["notes"] if payload.get("notes") is not None else current.get("notes")

        return {
            counterparty_field: counterparty,
            date_field: iso_date(document_date, date_field),
            "notes": optional_str(notes),
        }

    def extra_fields(
        self,
        payload: Dict[str, Any],
        header: Dict[str, Any],
        current: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return {}

    async def prepare_new(self, store, actor, payload, now):
        fields = self.header_fields(payload, now)
        fields.update(self.extra_fields(payload, fields))
        line_docs, totals = build_line_documents(payload.get("lines"))
        fields.update(totals.as_dict())
        return fields, line_docs

    async def prepare_update(self, store, actor, current, payload, now):
        fields = self.header_fields(payload, now, current)
        fields.update(self.extra_fields(payload, fields, current))

        line_docs = None
        if payload.get("lines") is not None:
            line_docs, totals = build_line_documents(payload["lines"])
            fields.update(totals.as_dict())
        return fields, line_docs
