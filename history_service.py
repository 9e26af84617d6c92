"""
Reading history and the distinct-reader count derived from it.

There is one history row per (user, book); a repeat visit only moves
``lastReadAt``. ``uniqueReadersCount`` on the book is recounted from the
history collection after every reading event.
"""
import logging
from typing import List

from bson import ObjectId
from pymongo.database import Database

from book_service import load_book_snapshot
from database import create_document, find_by_id, serialize, utcnow
from errors import NotFound
from schemas import History

logger = logging.getLogger(__name__)

HISTORY_BOOK_FIELDS = {"title": 1, "author": 1, "coverImageURL": 1, "averageRating": 1,
                       "summary": 1, "filePath": 1}


def count_unique_readers(db: Database, book_id: ObjectId) -> int:
    return len(db["history"].distinct("user", {"book": book_id}))


def record_reading(db: Database, user_id: ObjectId, book_id: str) -> dict:
    book = find_by_id(db, "book", book_id)
    if not book:
        logger.warning("Reading event for unknown book %s", book_id)
        raise NotFound("Book not found")

    now = utcnow()
    existing = db["history"].find_one({"user": user_id, "book": book["_id"]})
    if existing:
        db["history"].update_one({"_id": existing["_id"]}, {"$set": {"lastReadAt": now, "updatedAt": now}})
    else:
        create_document(db, "history", History(user=user_id, book=book["_id"], lastReadAt=now))

    readers = count_unique_readers(db, book["_id"])
    db["book"].update_one({"_id": book["_id"]}, {"$set": {"uniqueReadersCount": readers, "updatedAt": now}})
    logger.info("User %s read book %s; %d unique reader(s)", user_id, book["_id"], readers)

    return load_book_snapshot(db, book["_id"])


def get_history(db: Database, user_id: ObjectId) -> List[dict]:
    """The user's history, newest first, one row per book with the book populated."""
    rows = []
    seen = set()
    for row in db["history"].find({"user": user_id}).sort("lastReadAt", -1):
        if row["book"] in seen:
            continue
        seen.add(row["book"])
        rows.append(row)

    books = {}
    if rows:
        ids = [row["book"] for row in rows]
        for book in db["book"].find({"_id": {"$in": ids}}, HISTORY_BOOK_FIELDS):
            books[book["_id"]] = book
    for row in rows:
        row["book"] = books.get(row["book"])
    return serialize(rows)
