"""
Document store access

Collections are used through a narrow capability set (find, find one, insert,
insert-if-absent, update, atomic increment, delete) so the stores above them
do not depend on the backend. ``MongoCollection`` wraps a pymongo collection;
``MemoryCollection`` keeps documents in process and is only used by the tests.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

logger = logging.getLogger(__name__)


@dataclass
class InsertSummary:
    inserted_id: Any

    def to_json(self) -> dict:
        return {"acknowledged": True, "insertedId": str(self.inserted_id)}


@dataclass
class UpdateSummary:
    matched_count: int
    modified_count: int
    upserted_id: Any = None

    def to_json(self) -> dict:
        return {"acknowledged": True, "matchedCount": self.matched_count, "modifiedCount": self.modified_count}


@dataclass
class DeleteSummary:
    deleted_count: int

    def to_json(self) -> dict:
        return {"acknowledged": True, "deletedCount": self.deleted_count}


class DocumentCollection(ABC):
    name: str

    @abstractmethod
    def find(self, query: Optional[Dict[str, Any]] = None) -> List[dict]:
        ...

    @abstractmethod
    def find_one(self, query: Dict[str, Any]) -> Optional[dict]:
        ...

    @abstractmethod
    def insert_one(self, doc: dict) -> InsertSummary:
        ...

    @abstractmethod
    def insert_if_absent(self, query: Dict[str, Any], doc: dict) -> UpdateSummary:
        """Insert ``doc`` unless a document matches ``query``, in one store operation.

        ``upserted_id`` on the result is set only when a document was inserted.
        """

    @abstractmethod
    def update_one(self, query: Dict[str, Any], fields: Dict[str, Any]) -> UpdateSummary:
        ...

    @abstractmethod
    def increment(self, query: Dict[str, Any], field: str, delta: int) -> UpdateSummary:
        ...

    @abstractmethod
    def delete_one(self, query: Dict[str, Any]) -> DeleteSummary:
        ...


class MongoCollection(DocumentCollection):
    def __init__(self, collection: Collection):
        self._collection = collection
        self.name = collection.name

    def find(self, query: Optional[Dict[str, Any]] = None) -> List[dict]:
        return list(self._collection.find(query or {}))

    def find_one(self, query: Dict[str, Any]) -> Optional[dict]:
        return self._collection.find_one(query)

    def insert_one(self, doc: dict) -> InsertSummary:
        res = self._collection.insert_one(doc)
        return InsertSummary(res.inserted_id)

    def insert_if_absent(self, query: Dict[str, Any], doc: dict) -> UpdateSummary:
        res = self._collection.update_one(query, {"$setOnInsert": doc}, upsert=True)
        return UpdateSummary(res.matched_count, res.modified_count, res.upserted_id)

    def update_one(self, query: Dict[str, Any], fields: Dict[str, Any]) -> UpdateSummary:
        res = self._collection.update_one(query, {"$set": fields})
        return UpdateSummary(res.matched_count, res.modified_count)

    def increment(self, query: Dict[str, Any], field: str, delta: int) -> UpdateSummary:
        res = self._collection.update_one(query, {"$inc": {field: delta}})
        return UpdateSummary(res.matched_count, res.modified_count)

    def delete_one(self, query: Dict[str, Any]) -> DeleteSummary:
        res = self._collection.delete_one(query)
        return DeleteSummary(res.deleted_count)


def _resolve(doc: dict, path: str):
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return False, None
        value = value[part]
    return True, value


def _matches(doc: dict, query: Dict[str, Any]) -> bool:
    for key, cond in query.items():
        found, value = _resolve(doc, key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$ne":
                    if found and value == arg:
                        return False
                elif op == "$in":
                    if not found or value not in arg:
                        return False
                elif op == "$gte":
                    if not found or value is None or value < arg:
                        return False
                else:
                    raise ValueError(f"Unsupported query operator {op}")
        elif not found or value != cond:
            return False
    return True


class MemoryCollection(DocumentCollection):
    """In-process collection supporting equality, dotted paths, $ne, $in and $gte.

    Every single-document write runs under one lock, matching the per-document
    atomicity the Mongo backend relies on.
    """

    def __init__(self, name: str):
        self.name = name
        self._docs: Dict[Any, dict] = {}
        self._lock = threading.Lock()

    def find(self, query: Optional[Dict[str, Any]] = None) -> List[dict]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._docs.values() if _matches(d, query or {})]

    def find_one(self, query: Dict[str, Any]) -> Optional[dict]:
        with self._lock:
            doc = self._first(query)
            return copy.deepcopy(doc) if doc is not None else None

    def insert_one(self, doc: dict) -> InsertSummary:
        with self._lock:
            return InsertSummary(self._insert(doc))

    def insert_if_absent(self, query: Dict[str, Any], doc: dict) -> UpdateSummary:
        with self._lock:
            if self._first(query) is not None:
                return UpdateSummary(1, 0)
            return UpdateSummary(0, 0, self._insert(doc))

    def update_one(self, query: Dict[str, Any], fields: Dict[str, Any]) -> UpdateSummary:
        with self._lock:
            doc = self._first(query)
            if doc is None:
                return UpdateSummary(0, 0)
            changed = any(doc.get(k) != v for k, v in fields.items())
            doc.update(copy.deepcopy(fields))
            return UpdateSummary(1, 1 if changed else 0)

    def increment(self, query: Dict[str, Any], field: str, delta: int) -> UpdateSummary:
        with self._lock:
            doc = self._first(query)
            if doc is None:
                return UpdateSummary(0, 0)
            doc[field] = doc.get(field, 0) + delta
            return UpdateSummary(1, 1 if delta else 0)

    def delete_one(self, query: Dict[str, Any]) -> DeleteSummary:
        with self._lock:
            doc = self._first(query)
            if doc is None:
                return DeleteSummary(0)
            del self._docs[doc["_id"]]
            return DeleteSummary(1)

    def _insert(self, doc: dict) -> Any:
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        if stored["_id"] in self._docs:
            raise ValueError(f"Duplicate _id {stored['_id']}")
        self._docs[stored["_id"]] = stored
        return stored["_id"]

    def _first(self, query: Dict[str, Any]) -> Optional[dict]:
        for doc in self._docs.values():
            if _matches(doc, query):
                return doc
        return None


def connect(database_url: str, database_name: str) -> Database:
    client = MongoClient(database_url)
    logger.info("Connected MongoDB client for database %s", database_name)
    return client[database_name]


def ensure_indexes(db: Database) -> None:
    # one user record per email, even when two first logins race
    db["users"].create_index([("email", ASCENDING)], unique=True)
