"""
MongoDB access for the catalog.

``db`` is created from DATABASE_URL / DATABASE_NAME when both are set. Route
handlers receive a ``MongoStore`` through the ``get_store`` dependency so tests
can swap in another database object.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument

import config
from errors import ConcurrentModification, NotFound, StoreUnavailable

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]

M = TypeVar("M", bound=BaseModel)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _object_id(doc_id: str) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    if doc_id and ObjectId.is_valid(doc_id):
        return ObjectId(doc_id)
    return None


def _out(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _in(data: Any) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    data = dict(data)
    data.pop("id", None)
    data.pop("_id", None)
    return data


class MongoStore:
    """Per-document CRUD over a pymongo ``Database``."""

    def __init__(self, database):
        self.database = database

    def find_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(doc_id)
        if oid is None:
            return None
        return _out(self.database[collection].find_one({"_id": oid}))

    def find_many(self, collection: str, doc_ids: Iterable[str]) -> List[Dict[str, Any]]:
        oids = [oid for oid in (_object_id(i) for i in doc_ids) if oid is not None]
        if not oids:
            return []
        return [_out(d) for d in self.database[collection].find({"_id": {"$in": oids}})]

    def find(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[List[tuple]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.database[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [_out(d) for d in cursor]

    def count(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        return self.database[collection].count_documents(filter_dict or {})

    def insert(self, collection: str, data: Any) -> str:
        data_dict = _in(data)
        data_dict["version"] = 0
        data_dict["created_at"] = _now()
        data_dict["updated_at"] = _now()
        result = self.database[collection].insert_one(data_dict)
        return str(result.inserted_id)

    def replace(self, collection: str, doc_id: str, data: Any, expected_version: int) -> bool:
        """Write ``data`` only if the stored version still equals ``expected_version``."""
        oid = _object_id(doc_id)
        if oid is None:
            return False
        data_dict = _in(data)
        data_dict["version"] = expected_version + 1
        data_dict["updated_at"] = _now()
        result = self.database[collection].replace_one(
            {"_id": oid, "version": expected_version}, data_dict
        )
        return result.matched_count == 1

    def increment(self, collection: str, doc_id: str, field: str, amount: int = 1) -> Optional[Dict[str, Any]]:
        """Atomic counter update; bumps ``version`` so stale replaces are rejected."""
        oid = _object_id(doc_id)
        if oid is None:
            return None
        result = self.database[collection].find_one_and_update(
            {"_id": oid},
            {"$inc": {field: amount, "version": 1}, "$set": {"updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return _out(result)

    def ping(self) -> List[str]:
        return self.database.list_collection_names()


def get_store() -> MongoStore:
    if db is None:
        raise StoreUnavailable("Database is not configured")
    return MongoStore(db)


def load_document(store: MongoStore, collection: str, model: Type[M], doc_id: str, label: Optional[str] = None) -> M:
    doc = store.find_by_id(collection, doc_id)
    if doc is None:
        raise NotFound(f"{label or collection.capitalize()} not found")
    return model.model_validate(doc)


def mutate_document(
    store: MongoStore,
    collection: str,
    model: Type[M],
    doc_id: str,
    mutate: Callable[[M], M],
    attempts: Optional[int] = None,
    label: Optional[str] = None,
) -> M:
    """
    Read-modify-write one document under optimistic concurrency.

    ``mutate`` receives the current document and returns the replacement. It
    may run more than once, so it must not have side effects beyond its
    return value. Errors it raises propagate before anything is written.
    """
    attempts = attempts or config.WRITE_RETRIES
    for attempt in range(1, attempts + 1):
        current = load_document(store, collection, model, doc_id, label)
        updated = mutate(current)
        if store.replace(collection, doc_id, updated, current.version):
            return updated.model_copy(update={"version": current.version + 1})
        logger.info("Version conflict on %s/%s (attempt %d/%d)", collection, doc_id, attempt, attempts)
    logger.warning("Giving up on %s/%s after %d conflicting writes", collection, doc_id, attempts)
    raise ConcurrentModification(f"{label or collection.capitalize()} was modified concurrently, retry the request")
