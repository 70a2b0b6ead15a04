"""
In-memory unit of work for tests.

Honours the same contract as MotorUnitOfWork:
- unique document_number per collection (DuplicateDocumentNumberError)
- compare-and-set status updates
- all writes of a transaction undone when the unit aborts

`interleave=True` yields to the event loop after reading a document or the
last document number, so concurrent tasks observe each other's stale reads.
`fail_history=True` makes every history append fail. `transient_aborts = n`
makes the next n inserts fail the way a Mongo write conflict aborts a
transaction.
"""

from contextlib import asynccontextmanager
from copy import deepcopy
from typing import Any, Dict, List, Optional
import asyncio
import itertools

from finance_core.errors import DuplicateDocumentNumberError, TransientConflictError
from finance_core.unit_of_work import DocumentStore, UnitOfWork

PROJECTS = "projects"


def _field_value(document: Dict[str, Any], name: str) -> Any:
    return document.get("id" if name == "_id" else name)


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and any(key.startswith("$") for key in condition):
        for operator, operand in condition.items():
            if operator == "$in":
                if value not in operand:
                    return False
            elif operator == "$gte":
                if value is None or value < operand:
                    return False
            elif operator == "$lte":
                if value is None or value > operand:
                    return False
            elif operator == "$regex":
                if value is None or not str(value).startswith(operand.lstrip("^")):
                    return False
            else:
                raise NotImplementedError(f"operator {operator}")
        return True
    return value == condition


def matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Evaluate the Mongo query subset the lifecycles use."""
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(document, clause) for clause in condition):
                return False
        elif key == "$and":
            if not all(matches(document, clause) for clause in condition):
                return False
        elif not _matches_condition(_field_value(document, key), condition):
            return False
    return True


class InMemoryStore(DocumentStore):

    def __init__(self, database: "InMemoryUnitOfWork", transactional: bool = True):
        self.database = database
        self.transactional = transactional
        self.undo_log: List[tuple] = []

    # -------------------------------------------------------------------------
    # internals
    # -------------------------------------------------------------------------

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.database.collections.setdefault(name, {})

    def _remember(self, collection: str, document_id: str) -> None:
        if self.transactional:
            previous = self._collection(collection).get(document_id)
            self.undo_log.append(("document", collection, document_id, deepcopy(previous)))

    def rollback(self) -> None:
        for entry in reversed(self.undo_log):
            if entry[0] == "history":
                self.database.history.remove(entry[1])
                continue
            _, collection, document_id, previous = entry
            if previous is None:
                self._collection(collection).pop(document_id, None)
            else:
                self._collection(collection)[document_id] = previous
        self.undo_log.clear()

    async def _maybe_yield(self) -> None:
        if self.database.interleave:
            await asyncio.sleep(0)

    # -------------------------------------------------------------------------
    # DocumentStore
    # -------------------------------------------------------------------------

    async def find_document(self, doc_type, document_id):
        document = deepcopy(self._collection(doc_type.collection).get(document_id))
        await self._maybe_yield()
        return document

    async def list_documents(self, doc_type, query):
        found = [deepcopy(d) for d in self._collection(doc_type.collection).values() if matches(d, query)]
        found.sort(key=lambda d: (d.get("created_at"), d.get("sequence_number", 0)), reverse=True)
        return found

    async def find_last_document_number(self, doc_type, prefix):
        numbers = [
            d for d in self._collection(doc_type.collection).values()
            if d.get("document_number", "").startswith(prefix)
        ]
        numbers.sort(key=lambda d: (d.get("sequence_number", 0), d["document_number"]), reverse=True)
        last = numbers[0]["document_number"] if numbers else None
        await self._maybe_yield()
        return last

    async def insert_document(self, doc_type, document):
        collection = self._collection(doc_type.collection)
        if self.database.transient_aborts > 0:
            self.database.transient_aborts -= 1
            raise TransientConflictError("write conflict on insert")
        number = document.get("document_number")
        if any(d.get("document_number") == number for d in collection.values()):
            raise DuplicateDocumentNumberError(number)

        document_id = f"{doc_type.prefix.lower()}-{next(self.database.ids)}"
        self._remember(doc_type.collection, document_id)
        stored = {**deepcopy(document), "id": document_id}
        collection[document_id] = stored
        return deepcopy(stored)

    async def update_document(self, doc_type, document_id, fields, expected_status=None):
        collection = self._collection(doc_type.collection)
        current = collection.get(document_id)
        if current is None:
            return None
        if expected_status is not None and current.get("status") != expected_status:
            return None
        self._remember(doc_type.collection, document_id)
        collection[document_id] = {**current, **deepcopy(fields)}
        return deepcopy(collection[document_id])

    async def delete_document(self, doc_type, document_id):
        collection = self._collection(doc_type.collection)
        if document_id not in collection:
            return False
        self._remember(doc_type.collection, document_id)
        del collection[document_id]
        if doc_type.has_lines:
            lines = self._collection(doc_type.lines_collection)
            for line_id in [k for k, v in lines.items() if v["document_id"] == document_id]:
                self._remember(doc_type.lines_collection, line_id)
                del lines[line_id]
        return True

    async def find_lines(self, doc_type, document_id):
        if not doc_type.has_lines:
            return []
        lines = [deepcopy(l) for l in self._collection(doc_type.lines_collection).values()
                 if l["document_id"] == document_id]
        return sorted(lines, key=lambda l: l["line_number"])

    async def replace_lines(self, doc_type, document_id, lines):
        collection = self._collection(doc_type.lines_collection)
        for line_id in [k for k, v in collection.items() if v["document_id"] == document_id]:
            self._remember(doc_type.lines_collection, line_id)
            del collection[line_id]

        stored = []
        for line in lines:
            line_id = f"line-{next(self.database.ids)}"
            self._remember(doc_type.lines_collection, line_id)
            collection[line_id] = {**deepcopy(line), "document_id": document_id, "id": line_id}
            stored.append(deepcopy(collection[line_id]))
        return stored

    async def find_project(self, project_id):
        return deepcopy(self._collection(PROJECTS).get(project_id))

    async def find_managed_project_ids(self, manager_id):
        return [p["id"] for p in self._collection(PROJECTS).values() if p.get("manager_id") == manager_id]

    async def update_project(self, project_id, fields):
        self._remember(PROJECTS, project_id)
        project = self._collection(PROJECTS)[project_id]
        self._collection(PROJECTS)[project_id] = {**project, **deepcopy(fields)}

    async def append_history(self, record):
        if self.database.fail_history:
            raise RuntimeError("history store unavailable")
        entry = {**deepcopy(record), "id": f"history-{next(self.database.ids)}"}
        self.database.history.append(entry)
        if self.transactional:
            self.undo_log.append(("history", entry))

    async def find_history(self, document_type, document_id):
        records = [
            (index, deepcopy(r)) for index, r in enumerate(self.database.history)
            if r["document_type"] == document_type and r["document_id"] == document_id
        ]
        records.sort(key=lambda item: (item[1]["timestamp"], item[0]), reverse=True)
        return [record for _, record in records]

    async def get_setting(self, key):
        return deepcopy(self.database.settings.get(key))


class InMemoryUnitOfWork(UnitOfWork):

    def __init__(self, interleave: bool = False):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.history: List[Dict[str, Any]] = []
        self.settings: Dict[str, Any] = {}
        self.ids = itertools.count(1)
        self.interleave = interleave
        self.fail_history = False
        self.transient_aborts = 0
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        store = InMemoryStore(self)
        try:
            yield store
        except BaseException:
            store.rollback()
            self.rollbacks += 1
            raise
        self.commits += 1

    @asynccontextmanager
    async def reader(self):
        yield InMemoryStore(self, transactional=False)

    # -------------------------------------------------------------------------
    # seeding / inspection helpers
    # -------------------------------------------------------------------------

    def add_project(
        self,
        project_id: str,
        manager_id: Optional[str] = None,
        team_members: Optional[List[str]] = None,
        **fields
    ) -> Dict[str, Any]:
        project = {
            "id": project_id,
            "name": fields.pop("name", project_id),
            "manager_id": manager_id,
            "team_members": list(team_members or []),
            **fields,
        }
        self.collections.setdefault(PROJECTS, {})[project_id] = project
        return project

    def project(self, project_id: str) -> Dict[str, Any]:
        return deepcopy(self.collections[PROJECTS][project_id])

    def documents(self, collection: str) -> List[Dict[str, Any]]:
        return [deepcopy(d) for d in self.collections.get(collection, {}).values()]

    def history_for(self, document_id: str) -> List[Dict[str, Any]]:
        return [deepcopy(r) for r in self.history if r["document_id"] == document_id]

    def state(self) -> Dict[str, Any]:
        """Deep copy of everything stored, for before/after comparisons."""
        return deepcopy({"collections": self.collections, "history": self.history})
