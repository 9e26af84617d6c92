import logging
from typing import List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import create_document, find_by_id, serialize, to_object_id, utcnow
from errors import NotFound, ValidationFailed
from schemas import Collection

logger = logging.getLogger(__name__)


def _owned_collection(db: Database, owner_id: ObjectId, collection_id: str) -> dict:
    collection = find_by_id(db, "collection", collection_id)
    if not collection or collection.get("owner") != owner_id:
        logger.warning("Collection %s not found or not owned by user %s", collection_id, owner_id)
        raise NotFound("Collection not found or user not authorized")
    return collection


def get_collections(db: Database, owner_id: ObjectId) -> List[dict]:
    collections = list(db["collection"].find({"owner": owner_id}))
    book_ids = {bid for c in collections for bid in c.get("books", [])}
    books = {}
    if book_ids:
        for book in db["book"].find({"_id": {"$in": list(book_ids)}}):
            books[book["_id"]] = book
    for c in collections:
        # references to deleted books are skipped
        c["books"] = [books[bid] for bid in c.get("books", []) if bid in books]
    return serialize(collections)


def add_collection(db: Database, owner_id: ObjectId, name: Optional[str]) -> dict:
    if not name or not name.strip():
        raise ValidationFailed("Collection name is required")
    collection_id = create_document(db, "collection", Collection(name=name.strip(), owner=owner_id))
    logger.info("Collection %s created by user %s", collection_id, owner_id)
    return serialize(find_by_id(db, "collection", collection_id))


def update_collection(db: Database, owner_id: ObjectId, collection_id: str, name: Optional[str]) -> dict:
    collection = _owned_collection(db, owner_id, collection_id)
    if name:
        db["collection"].update_one({"_id": collection["_id"]},
                                    {"$set": {"name": name, "updatedAt": utcnow()}})
    return serialize(find_by_id(db, "collection", collection["_id"]))


def delete_collection(db: Database, owner_id: ObjectId, collection_id: str) -> dict:
    collection = _owned_collection(db, owner_id, collection_id)
    db["collection"].delete_one({"_id": collection["_id"]})
    logger.info("Collection %s removed by user %s", collection_id, owner_id)
    return {"message": "Collection removed"}


def add_book_to_collection(db: Database, owner_id: ObjectId, collection_id: str, book_id: str) -> dict:
    collection = _owned_collection(db, owner_id, collection_id)
    book = find_by_id(db, "book", book_id)
    if not book or book.get("owner") != owner_id:
        raise NotFound("Book not found or user not authorized")
    if book["_id"] in collection.get("books", []):
        logger.warning("Book %s already in collection %s", book_id, collection_id)
        raise ValidationFailed("Book already in collection")

    db["collection"].update_one({"_id": collection["_id"]},
                                {"$push": {"books": book["_id"]}, "$set": {"updatedAt": utcnow()}})
    return serialize(find_by_id(db, "collection", collection["_id"]))


def remove_book_from_collection(db: Database, owner_id: ObjectId, collection_id: str, book_id: str) -> dict:
    collection = _owned_collection(db, owner_id, collection_id)
    oid = to_object_id(book_id)
    remaining = [bid for bid in collection.get("books", []) if bid != oid]
    db["collection"].update_one({"_id": collection["_id"]},
                                {"$set": {"books": remaining, "updatedAt": utcnow()}})
    return serialize(find_by_id(db, "collection", collection["_id"]))
