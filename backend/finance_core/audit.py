"""
DOCUMENT HISTORY (APPEND-ONLY)

Every mutation appends one HistoryRecord through the same store (and so the
same transaction) as the write it documents. A failed append propagates and
aborts the whole unit of work; nothing here catches it.

History records are never updated or deleted. Deleting a draft document
keeps its history, including the DELETE record itself.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, ConfigDict, field_validator

from finance_core.document_types import DocumentKind
from finance_core.snapshots import DocumentSnapshot, load_snapshot

logger = logging.getLogger(__name__)


class HistoryAction:
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ATTACH_RECEIPT = "ATTACH_RECEIPT"
    CREATE_FROM_SALES_ORDER = "CREATE_FROM_SALES_ORDER"
    CREATE_FROM_PURCHASE_ORDER = "CREATE_FROM_PURCHASE_ORDER"

    @staticmethod
    def for_transition(action: str) -> str:
        return action.upper()


class HistoryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_type: str
    document_id: str
    project_id: Optional[str] = None
    action: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    actor_id: str
    reason: Optional[str] = None
    before: Optional[DocumentSnapshot] = None
    after: Optional[DocumentSnapshot] = None
    timestamp: datetime

    @field_validator("document_type")
    @classmethod
    def known_document_type(cls, value: str) -> str:
        return DocumentKind(value).value

    @field_validator("action")
    @classmethod
    def action_label(cls, value: str) -> str:
        if not value or value != value.upper():
            raise ValueError("history action must be an upper-case label")
        return value

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="python")

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "HistoryRecord":
        payload = {k: v for k, v in data.items() if k not in ("id", "_id")}
        payload["before"] = load_snapshot(payload.get("before"))
        payload["after"] = load_snapshot(payload.get("after"))
        return cls(**payload)


class HistoryLogger:
    """Appends history records through the caller's store."""

    async def record(
        self,
        store,
        document_type: DocumentKind,
        document_id: str,
        action: str,
        actor_id: str,
        timestamp: datetime,
        project_id: Optional[str] = None,
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
        reason: Optional[str] = None,
        before=None,
        after=None
    ) -> HistoryRecord:
        """
        Validate and append one record (INSERT ONLY).

        Raises pydantic.ValidationError for a malformed record and whatever
        the store raises on a failed write.
        """
        entry = HistoryRecord(
            document_type=DocumentKind(document_type).value,
            document_id=document_id,
            project_id=project_id,
            action=action,
            old_status=old_status,
            new_status=new_status,
            actor_id=actor_id,
            reason=reason,
            before=before,
            after=after,
            timestamp=timestamp,
        )
        await store.append_history(entry.to_storage())
        logger.info(
            f"[HISTORY] {entry.action} on {entry.document_type}:{document_id} by {actor_id}"
            + (f" ({old_status} -> {new_status})" if old_status != new_status else "")
        )
        return entry

    async def list_for(self, store, document_type: DocumentKind, document_id: str) -> List[HistoryRecord]:
        """History for one document, newest first (READ ONLY)."""
        stored = await store.find_history(DocumentKind(document_type).value, document_id)
        return [HistoryRecord.from_storage(item) for item in stored]
