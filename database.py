"""
MongoDB access helpers.

The client is created lazily from ``DATABASE_URL`` / ``DATABASE_NAME`` and the
database handle is handed to request handlers through the ``get_db``
dependency, so tests can swap in another handle. Every helper takes the
handle explicitly.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.database import Database

from config import settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        logger.info("Connecting to MongoDB database %s", settings.database_name)
        _client = MongoClient(settings.database_url)
    return _client


def get_db() -> Database:
    return get_client()[settings.database_name]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def utcnow() -> datetime:
    # stored naive, the way pymongo hands datetimes back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(value: Any) -> Any:
    """Return a JSON-ready copy of a document (ObjectId and datetime become strings)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def create_document(db: Database, collection_name: str, data: Any) -> str:
    """Insert a document (dict or pydantic model) stamping createdAt/updatedAt."""
    if hasattr(data, "model_dump"):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def find_by_id(db: Database, collection_name: str, doc_id: Any,
               projection: Optional[Dict[str, int]] = None) -> Optional[dict]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid}, projection)


def save_document(db: Database, collection_name: str, doc: dict) -> dict:
    """Write back a whole document previously read from the store."""
    doc["updatedAt"] = utcnow()
    db[collection_name].replace_one({"_id": doc["_id"]}, doc)
    return doc


class Page(NamedTuple):
    items: List[dict]
    total: int
    pages: int
    page: int


def paginate(db: Database, collection_name: str, filter_dict: dict,
             sort: Sequence[Tuple[str, int]] = (), page: int = 1, limit: int = 10,
             projection: Optional[Dict[str, int]] = None) -> Page:
    """Return one page of matching documents plus the total and page counts.

    Pages past the end yield an empty slice.
    """
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    total = db[collection_name].count_documents(filter_dict)
    cursor = db[collection_name].find(filter_dict, projection)
    if sort:
        cursor = cursor.sort(list(sort))
    items = list(cursor.skip((page - 1) * limit).limit(limit))
    return Page(items=items, total=total, pages=math.ceil(total / limit), page=page)
