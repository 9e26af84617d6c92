"""
Book catalog operations.

Public browsing (paginated listing, search, author peers, trending, genre
list) and owner-scoped management of personal books. Every function takes the
database handle explicitly and returns JSON-ready payloads.
"""
import logging
import re
from datetime import timedelta
from typing import Any, Iterable, List, Optional

from fastapi import UploadFile
from pymongo.database import Database

from config import settings
from database import (
    create_document,
    find_by_id,
    paginate,
    serialize,
    to_object_id,
    utcnow,
)
from errors import NotFound, ValidationFailed
from schemas import Book, BookUpdatePayload, split_genres
from storage import check_upload, store_upload

logger = logging.getLogger(__name__)

LIST_FIELDS = ("title", "author", "owner", "coverImageURL", "averageRating", "numberOfRatings",
               "uniqueReadersCount", "summary", "filePath", "ratings")
SNAPSHOT_FIELDS = ("title", "author", "owner", "coverImageURL", "averageRating", "numberOfRatings",
                   "uniqueReadersCount", "summary", "filePath")
TRENDING_LIMIT = 4
AUTHOR_PEERS_LIMIT = 5


def _projection(fields: Iterable[str]) -> dict:
    return {f: 1 for f in fields}


def populate_owner(db: Database, books: List[dict]) -> List[dict]:
    """Replace each book's owner id with ``{_id, username}`` (``None`` for a deleted owner)."""
    owner_ids = {b["owner"] for b in books if b.get("owner") is not None}
    owners = {}
    if owner_ids:
        for user in db["user"].find({"_id": {"$in": list(owner_ids)}}, {"username": 1}):
            owners[user["_id"]] = {"_id": user["_id"], "username": user.get("username")}
    for book in books:
        if "owner" in book:
            book["owner"] = owners.get(book["owner"])
    return books


def load_book_snapshot(db: Database, book_id: Any, with_ratings: bool = False) -> dict:
    """Reload a book with its owner populated, as sent to clients after a mutation."""
    fields = LIST_FIELDS if with_ratings else SNAPSHOT_FIELDS
    book = find_by_id(db, "book", book_id, _projection(fields))
    if not book:
        raise NotFound("Book not found")
    return serialize(populate_owner(db, [book])[0])


# Public catalog

def get_public_books(db: Database, sort_by: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    sort = []
    if sort_by == "rating":
        sort = [("averageRating", -1)]
    elif sort_by == "createdAt":
        sort = [("createdAt", -1)]

    result = paginate(db, "book", {"isPublic": True}, sort=sort, page=page, limit=limit,
                      projection=_projection(LIST_FIELDS))
    return {
        "books": serialize(populate_owner(db, result.items)),
        "page": result.page,
        "pages": result.pages,
        "totalBooks": result.total,
    }


def _contains(text: str):
    return re.compile(re.escape(text), re.IGNORECASE)


def genre_matcher(genre: str):
    """Match a genre tag either as a list element or inside a comma-delimited string."""
    return re.compile(r"(^|,)\s*" + re.escape(genre.strip()) + r"\s*(,|$)", re.IGNORECASE)


def search_public_books(db: Database, query: Optional[str] = None, genre: Optional[str] = None,
                        author: Optional[str] = None) -> List[dict]:
    filt = {"isPublic": True}
    if query:
        filt["$or"] = [{"title": _contains(query)}, {"summary": _contains(query)}]
    if genre:
        filt["genre"] = genre_matcher(genre)
    if author:
        filt["author"] = _contains(author)

    books = list(db["book"].find(filt, _projection(LIST_FIELDS)))
    return serialize(populate_owner(db, books))


def get_books_by_author(db: Database, author_name: str, exclude_book_id: Optional[str] = None) -> List[dict]:
    filt = {"author": author_name, "isPublic": True}
    exclude = to_object_id(exclude_book_id) if exclude_book_id else None
    if exclude is not None:
        filt["_id"] = {"$ne": exclude}
    books = db["book"].find(filt, {"title": 1, "coverImageURL": 1}).limit(AUTHOR_PEERS_LIMIT)
    return serialize(list(books))


def get_trending_books(db: Database) -> List[dict]:
    fields = [f for f in LIST_FIELDS if f != "owner"]
    books = (
        db["book"]
        .find({"isPublic": True}, _projection(fields))
        .sort([("averageRating", -1), ("numberOfRatings", -1), ("uniqueReadersCount", -1)])
        .limit(TRENDING_LIMIT)
    )
    return serialize(list(books))


def normalize_genres(values: Iterable[Any]) -> List[str]:
    """Flatten string-or-list genre values into a sorted list of distinct, trimmed tags."""
    genres = set()
    for value in values:
        genres.update(split_genres(value))
    return sorted(genres)


def get_unique_genres(db: Database) -> List[str]:
    docs = db["book"].find({"isPublic": True, "genre": {"$exists": True}}, {"genre": 1})
    return normalize_genres(doc.get("genre") for doc in docs)


# Personal books

def _created_since(filter_by: Optional[str]):
    now = utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if filter_by == "today":
        return midnight
    if filter_by == "thisWeek":
        # weeks start on Sunday
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    if filter_by == "thisMonth":
        return midnight.replace(day=1)
    return None


def get_personal_books(db: Database, owner_id, filter_by: Optional[str] = None,
                       sort_by: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    filt = {"owner": owner_id}
    since = _created_since(filter_by)
    if since is not None:
        filt["createdAt"] = {"$gte": since}

    sort = []
    if sort_by == "newest":
        sort = [("createdAt", -1)]
    elif sort_by == "rating":
        sort = [("averageRating", -1)]

    result = paginate(db, "book", filt, sort=sort, page=page, limit=limit)
    return {
        "books": serialize(result.items),
        "pages": result.pages,
        "currentPage": result.page,
        "totalBooks": result.total,
    }


def _is_true(value: Any) -> bool:
    return value is True or (isinstance(value, str) and value.strip().lower() == "true")


def add_personal_book(db: Database, owner_id, title: str, author: str, genre: Optional[str] = None,
                      summary: Optional[str] = None, is_public: Any = False,
                      cover_image: Optional[UploadFile] = None, book_file: Optional[UploadFile] = None) -> dict:
    if not title or not title.strip() or not author or not author.strip():
        raise ValidationFailed("Title and author are required")

    # both files are checked before either is written
    cover = check_upload(cover_image, "coverImage", settings.image_extensions, settings.max_book_upload_bytes)
    document = check_upload(book_file, "bookPdf", settings.book_file_extensions, settings.max_book_upload_bytes)

    book = Book(
        title=title.strip(),
        author=author.strip(),
        genre=split_genres(genre),
        summary=summary,
        owner=owner_id,
        isPublic=_is_true(is_public),
        coverImageURL=store_upload(cover),
        filePath=store_upload(document),
    )
    book_id = create_document(db, "book", book)
    logger.info("Book %s added by user %s", book_id, owner_id)
    return serialize(find_by_id(db, "book", book_id))


def _owned_book(db: Database, owner_id, book_id: str) -> dict:
    book = find_by_id(db, "book", book_id)
    if not book or book.get("owner") != owner_id:
        logger.warning("Book %s not found or not owned by user %s", book_id, owner_id)
        raise NotFound("Book not found or user not authorized")
    return book


def update_personal_book(db: Database, owner_id, book_id: str, payload: BookUpdatePayload) -> dict:
    book = _owned_book(db, owner_id, book_id)

    changes = {}
    for key in ("title", "author", "summary", "coverImageURL"):
        value = getattr(payload, key)
        if value:
            changes[key] = value
    if payload.genre:
        changes["genre"] = split_genres(payload.genre)
    if payload.isPublic is not None:
        changes["isPublic"] = payload.isPublic
    changes["updatedAt"] = utcnow()

    db["book"].update_one({"_id": book["_id"]}, {"$set": changes})
    return serialize(find_by_id(db, "book", book["_id"]))


def delete_personal_book(db: Database, owner_id, book_id: str) -> dict:
    book = _owned_book(db, owner_id, book_id)
    db["book"].delete_one({"_id": book["_id"]})
    logger.info("Book %s removed by user %s", book_id, owner_id)
    return {"message": "Book removed"}


def add_book_from_public(db: Database, owner_id, book_id: str) -> dict:
    """Copy a public book into the caller's private library."""
    source = find_by_id(db, "book", book_id)
    if not source or not source.get("isPublic"):
        raise NotFound("Public book not found")

    copy = Book(
        title=source["title"],
        author=source["author"],
        genre=split_genres(source.get("genre")),
        summary=source.get("summary"),
        owner=owner_id,
        isPublic=False,
        coverImageURL=source.get("coverImageURL") or "",
        filePath=source.get("filePath") or "",
        averageRating=source.get("averageRating", 0),
        numberOfRatings=source.get("numberOfRatings", 0),
        ratings=list(source.get("ratings", [])),
    )
    new_id = create_document(db, "book", copy)
    logger.info("Public book %s copied to user %s as %s", book_id, owner_id, new_id)
    return serialize(find_by_id(db, "book", new_id))
