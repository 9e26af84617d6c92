import logging
from typing import List

from pymongo.database import Database

from database import find_by_id, serialize, to_object_id
from errors import NotFound, ValidationFailed

logger = logging.getLogger(__name__)

FAVORITE_FIELDS = {"title": 1, "author": 1, "coverImageURL": 1, "averageRating": 1,
                   "summary": 1, "filePath": 1}


def _favorite_ids(db: Database, user_id) -> list:
    user = find_by_id(db, "user", user_id, {"favorites": 1})
    if not user:
        raise NotFound("User not found")
    return list(user.get("favorites", []))


def get_favorites(db: Database, user_id) -> List[dict]:
    ids = _favorite_ids(db, user_id)
    books = {b["_id"]: b for b in db["book"].find({"_id": {"$in": ids}}, FAVORITE_FIELDS)}
    return serialize([books[bid] for bid in ids if bid in books])


def add_favorite(db: Database, user_id, book_id: str) -> List[str]:
    book = find_by_id(db, "book", book_id, {"_id": 1})
    if not book:
        raise NotFound("Book not found")
    favorites = _favorite_ids(db, user_id)
    if book["_id"] in favorites:
        logger.warning("Book %s already in favorites of user %s", book_id, user_id)
        raise ValidationFailed("Book already in favorites")

    favorites.append(book["_id"])
    db["user"].update_one({"_id": user_id}, {"$set": {"favorites": favorites}})
    return serialize(favorites)


def remove_favorite(db: Database, user_id, book_id: str) -> List[str]:
    oid = to_object_id(book_id)
    favorites = [bid for bid in _favorite_ids(db, user_id) if bid != oid]
    db["user"].update_one({"_id": user_id}, {"$set": {"favorites": favorites}})
    return serialize(favorites)
