"""
Book rating aggregation.

A book keeps one rating entry per identity: the authenticated user id, or for
anonymous visitors the client IP. Re-rating overwrites the identity's entry;
``numberOfRatings`` is always the number of entries and ``averageRating`` their
arithmetic mean, recomputed from the whole list on every submission.
"""
import logging
from typing import Any, List, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database

from book_service import load_book_snapshot
from database import find_by_id, save_document
from errors import NotFound
from schemas import RatingEntry

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def is_valid_rating(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return MIN_RATING <= value <= MAX_RATING


def _find_entry(ratings: List[dict], user_id: Optional[ObjectId], ip: Optional[str]) -> Optional[dict]:
    if user_id is not None:
        for entry in ratings:
            if entry.get("user") is not None and str(entry["user"]) == str(user_id):
                return entry
        return None
    for entry in ratings:
        if not entry.get("user") and entry.get("ratedByIp") == ip:
            return entry
    return None


def apply_rating(ratings: List[dict], rating: float, user_id: Optional[ObjectId] = None,
                 ip: Optional[str] = None) -> List[dict]:
    """Return a new ratings list with the identity's entry updated or appended."""
    entries = [dict(entry) for entry in ratings]
    entry = _find_entry(entries, user_id, ip)
    if entry is not None:
        entry["rating"] = rating
        if user_id is None:
            entry["ratedByIp"] = ip
    elif user_id is not None:
        entries.append(RatingEntry(user=user_id, rating=rating).model_dump(exclude_none=True))
    else:
        entries.append(RatingEntry(ratedByIp=ip, rating=rating).model_dump(exclude_none=True))
    return entries


def summarize_ratings(ratings: List[dict]) -> Tuple[float, int]:
    """(averageRating, numberOfRatings) for a list of rating entries."""
    count = len(ratings)
    if not count:
        return 0, 0
    return sum(entry["rating"] for entry in ratings) / count, count


def rate_book(db: Database, book_id: str, rating: float, user_id: Optional[ObjectId] = None,
              ip: Optional[str] = None) -> dict:
    book = find_by_id(db, "book", book_id)
    if not book:
        logger.warning("Rating submitted for unknown book %s", book_id)
        raise NotFound("Book not found")

    book["ratings"] = apply_rating(book.get("ratings", []), rating, user_id=user_id, ip=ip)
    book["averageRating"], book["numberOfRatings"] = summarize_ratings(book["ratings"])
    save_document(db, "book", book)
    logger.info("Book %s rated %s by %s; average %.2f over %d rating(s)", book["_id"], rating,
                user_id or ip, book["averageRating"], book["numberOfRatings"])

    return load_book_snapshot(db, book["_id"], with_ratings=True)
