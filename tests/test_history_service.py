# tests/test_history_service.py
from datetime import datetime

import pytest
from bson import ObjectId

from errors import NotFound
from history_service import count_unique_readers, get_history, record_reading


def test_repeat_visit_updates_single_row(db, make_book, make_user):
    book_id = make_book(isPublic=True)
    reader = make_user("reader")

    record_reading(db, reader, str(book_id))
    db["history"].update_one({"user": reader, "book": book_id},
                             {"$set": {"lastReadAt": datetime(2020, 1, 1)}})
    snapshot = record_reading(db, reader, str(book_id))

    rows = list(db["history"].find({"user": reader, "book": book_id}))
    assert len(rows) == 1
    assert rows[0]["lastReadAt"] > datetime(2020, 1, 1)
    assert snapshot["uniqueReadersCount"] == 1


def test_unique_readers_counts_distinct_users(db, make_book, make_user):
    book_id = make_book(isPublic=True)
    first, second = make_user("first"), make_user("second")

    record_reading(db, first, str(book_id))
    record_reading(db, second, str(book_id))
    snapshot = record_reading(db, first, str(book_id))

    assert snapshot["uniqueReadersCount"] == 2
    assert count_unique_readers(db, book_id) == 2
    assert db["book"].find_one({"_id": book_id})["uniqueReadersCount"] == 2


def test_record_reading_snapshot_has_owner(db, make_book, make_user):
    owner = make_user("writer")
    book_id = make_book(owner=owner, title="Emma")

    snapshot = record_reading(db, make_user("visitor"), str(book_id))

    assert snapshot["title"] == "Emma"
    assert snapshot["owner"]["username"] == "writer"
    assert "ratings" not in snapshot


def test_record_reading_unknown_book(db, make_user):
    with pytest.raises(NotFound):
        record_reading(db, make_user("lost"), str(ObjectId()))
    assert db["history"].count_documents({}) == 0


def test_get_history_newest_first_with_books(db, make_book, make_user):
    reader = make_user("historian")
    older = make_book(title="Older")
    newer = make_book(title="Newer")
    record_reading(db, reader, str(older))
    record_reading(db, reader, str(newer))
    db["history"].update_one({"book": older}, {"$set": {"lastReadAt": datetime(2021, 5, 1)}})

    history = get_history(db, reader)

    assert [row["book"]["title"] for row in history] == ["Newer", "Older"]
    assert history[0]["user"] == str(reader)


def test_get_history_keeps_rows_of_deleted_books(db, make_book, make_user):
    reader = make_user("keeper")
    book_id = make_book(title="Gone")
    record_reading(db, reader, str(book_id))
    db["book"].delete_one({"_id": book_id})

    history = get_history(db, reader)

    assert len(history) == 1
    assert history[0]["book"] is None
