"""
Document store gateway

Thin helpers over a pymongo database, addressed by collection name and
working on plain dict records. Every record comes back with its key under
``id`` (stored as a string ``_id``) and every write is published to the
listener hub so realtime subscriptions see it.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import settings
from errors import DatabaseNotConfigured, DocumentNotFound, PreconditionFailed
from realtime import Subscription, SubscriptionHub

db = None
if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL)
    db = client[settings.DATABASE_NAME]

hub = SubscriptionHub()


class Where(BaseModel):
    field: str
    op: Literal["==", "!=", "<", "<=", ">", ">=", "in", "array-contains"] = "=="
    value: Any = None


class Query(BaseModel):
    where: List[Where] = []
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


_OPERATORS = {"!=": "$ne", "<": "$lt", "<=": "$lte", ">": "$gt", ">=": "$gte", "in": "$in"}


def use_database(database):
    """Point the gateway at another database (tests hand in a mongomock one)."""
    global db
    db = database
    return db


def get_db():
    if db is None:
        raise DatabaseNotConfigured()
    return db


def now() -> datetime:
    """Current UTC time on a whole millisecond, never earlier than the real instant.

    BSON dates keep milliseconds only, so the clock is rounded up instead of
    letting the store truncate it.
    """
    ts = datetime.now(timezone.utc)
    extra = ts.microsecond % 1000
    if extra:
        ts += timedelta(microseconds=1000 - extra)
    return ts


def to_datetime(value: Any) -> Optional[datetime]:
    """Project a stored timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        return to_datetime(datetime.fromisoformat(value))
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    raise TypeError(f"Not a timestamp: {value!r}")


def _dump(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    out = dict(data)
    out.pop("id", None)
    out.pop("_id", None)
    return out


def _record(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def _field(name: str) -> str:
    return "_id" if name == "id" else name


def build_filter(where: List[Where]) -> Dict[str, Any]:
    clauses = []
    for w in where:
        if w.op in ("==", "array-contains"):
            clauses.append({_field(w.field): w.value})
        else:
            clauses.append({_field(w.field): {_OPERATORS[w.op]: w.value}})
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def create_document(collection_name: str, data: Union[BaseModel, dict], doc_id: Optional[str] = None) -> Dict[str, Any]:
    """Insert a record, stamping created_at/updated_at.

    The id is generated unless ``doc_id`` is given; inserting an id that is
    already taken raises pymongo's DuplicateKeyError.
    """
    doc = _dump(data)
    ts = now()
    doc["created_at"] = ts
    doc["updated_at"] = ts
    doc["_id"] = doc_id or str(ObjectId())
    get_db()[collection_name].insert_one(doc)
    hub.publish(collection_name)
    return _record(doc)


def set_document(collection_name: str, doc_id: str, data: Union[BaseModel, dict]) -> Dict[str, Any]:
    """Write a record at a known id, replacing whatever was stored there."""
    doc = _dump(data)
    ts = now()
    doc.setdefault("created_at", ts)
    doc["updated_at"] = ts
    doc["_id"] = doc_id
    get_db()[collection_name].replace_one({"_id": doc_id}, doc, upsert=True)
    hub.publish(collection_name)
    return get_document(collection_name, doc_id)


def get_document(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return _record(get_db()[collection_name].find_one({"_id": doc_id}))


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [_record(d) for d in cursor]


def query_documents(collection_name: str, query: Optional[Query] = None) -> List[Dict[str, Any]]:
    query = query or Query()
    cursor = get_db()[collection_name].find(build_filter(query.where))
    if query.order_by:
        cursor = cursor.sort(_field(query.order_by), DESCENDING if query.descending else ASCENDING)
    if query.limit:
        cursor = cursor.limit(query.limit)
    return [_record(d) for d in cursor]


def update_document(collection_name: str, doc_id: str, partial: dict, expected: Optional[dict] = None) -> Dict[str, Any]:
    """Merge fields into an existing record.

    ``expected`` adds field equality conditions to the write; when the record
    exists but does not match them, PreconditionFailed is raised and nothing
    is written.
    """
    changes = _dump(partial)
    changes["updated_at"] = now()
    match = {"_id": doc_id}
    if expected:
        match.update(expected)
    coll = get_db()[collection_name]
    res = coll.update_one(match, {"$set": changes})
    if res.matched_count == 0:
        if expected and coll.find_one({"_id": doc_id}) is not None:
            raise PreconditionFailed(collection_name, doc_id, expected)
        raise DocumentNotFound(collection_name, doc_id)
    hub.publish(collection_name)
    return get_document(collection_name, doc_id)


def increment_document(collection_name: str, doc_id: str, field: str, amount: int = 1) -> Dict[str, Any]:
    res = get_db()[collection_name].update_one(
        {"_id": doc_id},
        {"$inc": {field: amount}, "$set": {"updated_at": now()}},
    )
    if res.matched_count == 0:
        raise DocumentNotFound(collection_name, doc_id)
    hub.publish(collection_name)
    return get_document(collection_name, doc_id)


def delete_document(collection_name: str, doc_id: str) -> None:
    res = get_db()[collection_name].delete_one({"_id": doc_id})
    if res.deleted_count == 0:
        raise DocumentNotFound(collection_name, doc_id)
    hub.publish(collection_name)


def subscribe(
    collection_name: str,
    callback: Callable[[List[Dict[str, Any]]], None],
    query: Optional[Query] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> Subscription:
    """Push the full result of ``query`` to ``callback`` now and after every change."""
    return hub.subscribe(collection_name, lambda: query_documents(collection_name, query), callback, on_error)


def subscribe_document(
    collection_name: str,
    doc_id: str,
    callback: Callable[[Optional[Dict[str, Any]]], None],
    on_error: Optional[Callable[[Exception], None]] = None,
) -> Subscription:
    """Single record listener; the callback gets None while the record does not exist."""
    return hub.subscribe(collection_name, lambda: get_document(collection_name, doc_id), callback, on_error)
