# tests/test_rating_service.py
import pytest
from bson import ObjectId
from pytest import approx

from errors import NotFound
from rating_service import apply_rating, is_valid_rating, rate_book, summarize_ratings


def test_apply_rating_appends_one_entry_per_identity():
    alice, bob = ObjectId(), ObjectId()
    ratings = apply_rating([], 5, user_id=alice)
    ratings = apply_rating(ratings, 3, user_id=bob)
    ratings = apply_rating(ratings, 4, ip="10.0.0.1")

    assert len(ratings) == 3
    assert {"user": alice, "rating": 5} in ratings
    assert {"ratedByIp": "10.0.0.1", "rating": 4} in ratings


def test_apply_rating_overwrites_existing_user_entry():
    alice = ObjectId()
    ratings = apply_rating([], 2, user_id=alice)
    ratings = apply_rating(ratings, 5, user_id=alice)

    assert ratings == [{"user": alice, "rating": 5}]


def test_anonymous_rating_matches_only_entries_without_user():
    alice = ObjectId()
    # alice rated from the same address while logged in
    ratings = [{"user": alice, "ratedByIp": "10.0.0.1", "rating": 5}]
    ratings = apply_rating(ratings, 1, ip="10.0.0.1")

    assert len(ratings) == 2
    assert ratings[0]["rating"] == 5
    assert ratings[1] == {"ratedByIp": "10.0.0.1", "rating": 1}

    ratings = apply_rating(ratings, 3, ip="10.0.0.1")
    assert len(ratings) == 2
    assert ratings[1]["rating"] == 3


def test_apply_rating_does_not_mutate_input():
    original = [{"ratedByIp": "1.2.3.4", "rating": 2}]
    apply_rating(original, 4, ip="1.2.3.4")
    assert original == [{"ratedByIp": "1.2.3.4", "rating": 2}]


def test_summarize_ratings():
    assert summarize_ratings([]) == (0, 0)
    average, count = summarize_ratings([{"rating": 5}, {"rating": 4}, {"rating": 1}])
    assert count == 3
    assert average == approx(10 / 3)


@pytest.mark.parametrize("value,expected", [(1, True), (5, True), (3.5, True), (0, False), (5.5, False), (-2, False), (True, False)])
def test_is_valid_rating(value, expected):
    assert is_valid_rating(value) is expected


def test_rate_book_counts_distinct_identities(db, make_book, make_user):
    book_id = make_book(isPublic=True)
    values = [5, 4, 3, 1]
    for i, value in enumerate(values):
        snapshot = rate_book(db, str(book_id), value, user_id=make_user(f"rater{i}"))

    assert snapshot["numberOfRatings"] == len(values)
    assert snapshot["averageRating"] == approx(sum(values) / len(values))

    stored = db["book"].find_one({"_id": book_id})
    assert len(stored["ratings"]) == len(values)


def test_rate_book_same_identity_keeps_count(db, make_book, make_user):
    book_id = make_book(isPublic=True)
    rater = make_user("repeat")

    rate_book(db, str(book_id), 2, user_id=rater)
    snapshot = rate_book(db, str(book_id), 4, user_id=rater)

    assert snapshot["numberOfRatings"] == 1
    assert snapshot["averageRating"] == approx(4)
    assert len(snapshot["ratings"]) == 1


def test_rate_book_returns_owner_username(db, make_book, make_user):
    owner = make_user("bookowner")
    book_id = make_book(owner=owner, isPublic=True, title="Dune")

    snapshot = rate_book(db, str(book_id), 5, ip="127.0.0.1")

    assert snapshot["_id"] == str(book_id)
    assert snapshot["owner"] == {"_id": str(owner), "username": "bookowner"}
    assert snapshot["ratings"] == [{"ratedByIp": "127.0.0.1", "rating": 5}]


@pytest.mark.parametrize("book_id", [str(ObjectId()), "not-an-id"])
def test_rate_book_unknown_book(db, book_id):
    with pytest.raises(NotFound):
        rate_book(db, book_id, 3, ip="127.0.0.1")
