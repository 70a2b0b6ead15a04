"""
UNIT OF WORK

Every mutating lifecycle operation runs inside one UnitOfWork.transaction():
numbering lookup, document insert/update, line writes, ledger effect and
history append commit together or not at all. Reads use UnitOfWork.reader()
and run outside any transaction.

Money crosses this interface as Decimal; MotorDocumentStore stores it as
Decimal128 and maps Mongo's `_id` to a string `id`.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional
import logging
import re

from bson import Decimal128, ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from finance_core.document_types import DOCUMENT_TYPES, DocumentType
from finance_core.errors import DuplicateDocumentNumberError, TransientConflictError

logger = logging.getLogger(__name__)

PROJECTS_COLLECTION = "projects"
HISTORY_COLLECTION = "document_history"
SETTINGS_COLLECTION = "company_settings"

NEWEST_FIRST = [("created_at", DESCENDING), ("sequence_number", DESCENDING)]


# =============================================================================
# STORAGE CONTRACT
# =============================================================================

class DocumentStore(ABC):
    """Storage operations available inside (or outside) a unit of work."""

    @abstractmethod
    async def find_document(self, doc_type: DocumentType, document_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_documents(self, doc_type: DocumentType, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Documents matching a Mongo-style query, newest first."""
        pass

    @abstractmethod
    async def find_last_document_number(self, doc_type: DocumentType, prefix: str) -> Optional[str]:
        """Highest document number starting with `prefix`, or None."""
        pass

    @abstractmethod
    async def insert_document(self, doc_type: DocumentType, document: Dict[str, Any]) -> Dict[str, Any]:
        """Insert and return the document with its new `id`. Raises DuplicateDocumentNumberError."""
        pass

    @abstractmethod
    async def update_document(
        self,
        doc_type: DocumentType,
        document_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Set `fields` and return the updated document.
        Returns None when the document is gone or its status is no longer
        `expected_status`.
        """
        pass

    @abstractmethod
    async def delete_document(self, doc_type: DocumentType, document_id: str) -> bool:
        pass

    @abstractmethod
    async def find_lines(self, doc_type: DocumentType, document_id: str) -> List[Dict[str, Any]]:
        """Line items ordered by line_number."""
        pass

    @abstractmethod
    async def replace_lines(
        self,
        doc_type: DocumentType,
        document_id: str,
        lines: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find_managed_project_ids(self, manager_id: str) -> List[str]:
        pass

    @abstractmethod
    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def append_history(self, record: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def find_history(self, document_type: str, document_id: str) -> List[Dict[str, Any]]:
        """History records for one document, newest first."""
        pass

    @abstractmethod
    async def get_setting(self, key: str) -> Any:
        """Stored value for a company setting, or None."""
        pass


class UnitOfWork(ABC):
    """Factory for transactional and read-only stores."""

    @abstractmethod
    def transaction(self):
        """Async context manager yielding a DocumentStore bound to one transaction."""
        pass

    @abstractmethod
    def reader(self):
        """Async context manager yielding a non-transactional DocumentStore."""
        pass


# =============================================================================
# BSON CODEC
# =============================================================================

def encode_value(value: Any) -> Any:
    """Decimal -> Decimal128, recursively."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Decimal128 -> Decimal and ObjectId -> str, recursively."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def encode_document(document: Dict[str, Any]) -> Dict[str, Any]:
    encoded = encode_value({k: v for k, v in document.items() if k != "id"})
    return encoded


def decode_document(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if document is None:
        return None
    decoded = decode_value(document)
    if "_id" in decoded:
        decoded["id"] = decoded.pop("_id")
    return decoded


def id_filter(value: str) -> Dict[str, Any]:
    """Filter on `_id` accepting both ObjectId and plain string keys."""
    if ObjectId.is_valid(value):
        return {"_id": {"$in": [ObjectId(value), value]}}
    return {"_id": value}


# =============================================================================
# MOTOR IMPLEMENTATION
# =============================================================================

class MotorDocumentStore(DocumentStore):
    """DocumentStore over a Motor database, optionally bound to a session."""

    def __init__(self, db: AsyncIOMotorDatabase, session=None):
        self.db = db
        self.session = session

    async def find_document(self, doc_type, document_id):
        doc = await self.db[doc_type.collection].find_one(id_filter(document_id), session=self.session)
        return decode_document(doc)

    async def list_documents(self, doc_type, query):
        cursor = self.db[doc_type.collection].find(encode_value(query), session=self.session).sort(NEWEST_FIRST)
        return [decode_document(doc) async for doc in cursor]

    async def find_last_document_number(self, doc_type, prefix):
        cursor = self.db[doc_type.collection].find(
            {"document_number": {"$regex": f"^{re.escape(prefix)}"}},
            {"document_number": 1},
            session=self.session
        ).sort([("sequence_number", DESCENDING), ("document_number", DESCENDING)]).limit(1)
        async for doc in cursor:
            return doc["document_number"]
        return None

    async def insert_document(self, doc_type, document):
        payload = encode_document(document)
        try:
            result = await self.db[doc_type.collection].insert_one(payload, session=self.session)
        except DuplicateKeyError as e:
            raise DuplicateDocumentNumberError(document.get("document_number")) from e
        return {**document, "id": str(result.inserted_id)}

    async def update_document(self, doc_type, document_id, fields, expected_status=None):
        query = id_filter(document_id)
        if expected_status is not None:
            query["status"] = expected_status
        doc = await self.db[doc_type.collection].find_one_and_update(
            query,
            {"$set": encode_document(fields)},
            return_document=ReturnDocument.AFTER,
            session=self.session
        )
        return decode_document(doc)

    async def delete_document(self, doc_type, document_id):
        result = await self.db[doc_type.collection].delete_one(id_filter(document_id), session=self.session)
        if doc_type.has_lines:
            await self.db[doc_type.lines_collection].delete_many(
                {"document_id": document_id}, session=self.session
            )
        return result.deleted_count == 1

    async def find_lines(self, doc_type, document_id):
        if not doc_type.has_lines:
            return []
        cursor = self.db[doc_type.lines_collection].find(
            {"document_id": document_id}, session=self.session
        ).sort("line_number", ASCENDING)
        return [decode_document(doc) async for doc in cursor]

    async def replace_lines(self, doc_type, document_id, lines):
        collection = self.db[doc_type.lines_collection]
        await collection.delete_many({"document_id": document_id}, session=self.session)
        stored = [{**line, "document_id": document_id} for line in lines]
        if stored:
            result = await collection.insert_many([encode_document(l) for l in stored], session=self.session)
            stored = [{**line, "id": str(oid)} for line, oid in zip(stored, result.inserted_ids)]
        return stored

    async def find_project(self, project_id):
        doc = await self.db[PROJECTS_COLLECTION].find_one(id_filter(project_id), session=self.session)
        return decode_document(doc)

    async def find_managed_project_ids(self, manager_id):
        cursor = self.db[PROJECTS_COLLECTION].find({"manager_id": manager_id}, {"_id": 1}, session=self.session)
        return [str(doc["_id"]) async for doc in cursor]

    async def update_project(self, project_id, fields):
        await self.db[PROJECTS_COLLECTION].update_one(
            id_filter(project_id),
            {"$set": encode_document({**fields, "updated_at": datetime.utcnow()})},
            session=self.session
        )

    async def append_history(self, record):
        await self.db[HISTORY_COLLECTION].insert_one(encode_document(record), session=self.session)

    async def find_history(self, document_type, document_id):
        cursor = self.db[HISTORY_COLLECTION].find(
            {"document_type": document_type, "document_id": document_id},
            session=self.session
        ).sort([("timestamp", DESCENDING), ("_id", DESCENDING)])
        return [decode_document(doc) async for doc in cursor]

    async def get_setting(self, key):
        doc = await self.db[SETTINGS_COLLECTION].find_one({"key": key}, session=self.session)
        return decode_value(doc["value"]) if doc else None


class MotorUnitOfWork(UnitOfWork):
    """
    MongoDB unit of work.

    Multi-document transactions need a replica set; the default MONGO_URL
    points at a single-node one.
    """

    def __init__(self, client: AsyncIOMotorClient, db: AsyncIOMotorDatabase):
        self.client = client
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[DocumentStore]:
        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    yield MotorDocumentStore(self.db, session)
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                logger.warning(f"[TRANSACTION] Transient abort: {e}")
                raise TransientConflictError("Concurrent update detected; retry the request") from e
            raise

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[DocumentStore]:
        yield MotorDocumentStore(self.db)

    async def ensure_indexes(self):
        """Create unique document-number and lookup indexes."""
        for doc_type in DOCUMENT_TYPES.values():
            await self.db[doc_type.collection].create_index(
                [("document_number", ASCENDING)],
                unique=True,
                name=f"unique_{doc_type.prefix.lower()}_document_number"
            )
            await self.db[doc_type.collection].create_index(
                [("project_id", ASCENDING), ("status", ASCENDING)],
                name=f"{doc_type.prefix.lower()}_project_status"
            )
            if doc_type.has_lines:
                await self.db[doc_type.lines_collection].create_index(
                    [("document_id", ASCENDING), ("line_number", ASCENDING)],
                    name=f"{doc_type.prefix.lower()}_lines_by_document"
                )

        await self.db[HISTORY_COLLECTION].create_index(
            [("document_type", ASCENDING), ("document_id", ASCENDING), ("timestamp", DESCENDING)],
            name="history_by_document"
        )
        await self.db[SETTINGS_COLLECTION].create_index(
            [("key", ASCENDING)],
            unique=True,
            name="unique_setting_key"
        )
        logger.info("[TRANSACTION] Document indexes ensured")
