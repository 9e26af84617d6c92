# tests/conftest.py
import os
import tempfile

# Settings are read at import time, so point uploads at a scratch directory first
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="book-library-uploads-"))
os.environ.setdefault("SECRET_KEY", "test-secret")

import mongomock
from bson import ObjectId
import pytest
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from schemas import Book, User
from security import hash_password


@pytest.fixture
def db():
    """A fresh in-memory Mongo database per test."""
    return mongomock.MongoClient()["book_library_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """Register a user through the API and return (user_id, auth headers)."""
    def _register(username, email=None, password="secret123"):
        response = client.post("/api/auth/register", json={
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
        })
        assert response.status_code == 201, response.text
        body = response.json()
        return body["_id"], {"Authorization": f"Bearer {body['token']}"}
    return _register


@pytest.fixture
def make_user(db):
    def _make_user(username="reader"):
        user_id = create_document(db, "user", User(
            username=username,
            email=f"{username}@example.com",
            password=hash_password("secret123"),
        ))
        return ObjectId(user_id)
    return _make_user


@pytest.fixture
def make_book(db, make_user):
    """Insert a book straight into the store and return its ObjectId.

    ``genre`` is written as given so the legacy comma-delimited form can be
    stored; ``created_at`` backdates the document.
    """
    def _make_book(owner=None, genre=None, created_at=None, **fields):
        if owner is None:
            owner = make_user(f"owner{db['user'].count_documents({})}")
        fields.setdefault("title", "Untitled")
        fields.setdefault("author", "Anonymous")
        book_id = ObjectId(create_document(db, "book", Book(owner=owner, **fields)))
        extra = {}
        if genre is not None:
            extra["genre"] = genre
        if created_at is not None:
            extra["createdAt"] = created_at
        if extra:
            db["book"].update_one({"_id": book_id}, {"$set": extra})
        return book_id
    return _make_book
