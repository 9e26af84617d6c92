import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import book_service
import collection_service
import favorite_service
import history_service
import rating_service
import user_service
from config import settings
from database import close_client, get_db
from errors import LibraryError
from realtime import READERS_COUNT_UPDATED, RATING_UPDATED, ConnectionManager, get_notifier
from schemas import (
    BookRefPayload,
    BookUpdatePayload,
    CollectionPayload,
    LoginPayload,
    PasswordChangePayload,
    ProfileUpdatePayload,
    RatePayload,
    RegisterPayload,
)
from security import get_current_user, get_optional_user
from storage import download_name, ensure_upload_dir, resolve_upload

logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_upload_dir()
    logger.info("Book Library API starting")
    try:
        yield
    finally:
        close_client()


app = FastAPI(title="Book Library API", version="1.0.0", lifespan=lifespan)
app.state.notifier = ConnectionManager()

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def access_log(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        # unhandled errors become a 500 in the outermost middleware
        _log_request(request, 500, started)
        raise
    _log_request(request, response.status_code, started)
    return response


def _log_request(request: Request, status_code: int, started: float) -> None:
    elapsed = (time.perf_counter() - started) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, status_code, elapsed)


# Error mapping

@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# Health
@app.get("/")
def root():
    return {"name": "Book Library API", "status": "ok"}


# Auth
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterPayload, db: Database = Depends(get_db)):
    return user_service.register(db, payload)


@app.post("/api/auth/login")
def login(payload: LoginPayload, db: Database = Depends(get_db)):
    return user_service.login(db, payload)


@app.put("/api/auth/profile")
def update_profile(payload: ProfileUpdatePayload, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return user_service.update_profile(db, current, payload)


@app.post("/api/auth/profile/image")
def upload_profile_image(profileImage: Optional[UploadFile] = File(None), current=Depends(get_current_user),
                         db: Database = Depends(get_db)):
    return user_service.update_profile_image(db, current, profileImage)


@app.put("/api/auth/password")
def change_password(payload: PasswordChangePayload, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return user_service.change_password(db, current, payload)


@app.delete("/api/auth/profile")
def delete_account(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return user_service.delete_account(db, current)


# Personal books
@app.get("/api/personal-books")
def list_personal_books(
    filter_by: Optional[str] = Query(None, alias="filterBy"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return book_service.get_personal_books(db, current["_id"], filter_by=filter_by, sort_by=sort_by,
                                           page=page, limit=limit)


@app.post("/api/personal-books", status_code=201)
def create_personal_book(
    title: str = Form(...),
    author: str = Form(...),
    genre: Optional[str] = Form(None),
    summary: Optional[str] = Form(None),
    isPublic: Optional[str] = Form(None),
    coverImage: Optional[UploadFile] = File(None),
    bookPdf: Optional[UploadFile] = File(None),
    current=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return book_service.add_personal_book(db, current["_id"], title, author, genre=genre, summary=summary,
                                          is_public=isPublic, cover_image=coverImage, book_file=bookPdf)


@app.get("/api/personal-books/trending")
def trending_books(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return book_service.get_trending_books(db)


@app.put("/api/personal-books/{book_id}")
def update_personal_book(book_id: str, payload: BookUpdatePayload, current=Depends(get_current_user),
                         db: Database = Depends(get_db)):
    return book_service.update_personal_book(db, current["_id"], book_id, payload)


@app.delete("/api/personal-books/{book_id}")
def delete_personal_book(book_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return book_service.delete_personal_book(db, current["_id"], book_id)


# Public books
@app.get("/api/public-books")
def list_public_books(
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return book_service.get_public_books(db, sort_by=sort_by, page=page, limit=limit)


@app.get("/api/public-books/search")
def search_public_books(query: Optional[str] = None, genre: Optional[str] = None, author: Optional[str] = None,
                        db: Database = Depends(get_db)):
    return book_service.search_public_books(db, query=query, genre=genre, author=author)


@app.get("/api/public-books/author/{author_name}")
def books_by_author(author_name: str, exclude_book_id: Optional[str] = Query(None, alias="excludeBookId"),
                    db: Database = Depends(get_db)):
    return book_service.get_books_by_author(db, author_name, exclude_book_id)


@app.get("/api/public-books/genres")
def unique_genres(db: Database = Depends(get_db)):
    return book_service.get_unique_genres(db)


@app.post("/api/public-books/{book_id}/rate")
def rate_book(book_id: str, payload: RatePayload, request: Request, background_tasks: BackgroundTasks,
              current=Depends(get_optional_user), db: Database = Depends(get_db),
              notifier: ConnectionManager = Depends(get_notifier)):
    if not rating_service.is_valid_rating(payload.rating):
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")
    ip = request.client.host if request.client else None
    book = rating_service.rate_book(db, book_id, payload.rating,
                                    user_id=current["_id"] if current else None, ip=ip)
    background_tasks.add_task(notifier.broadcast, RATING_UPDATED, book)
    return book


# Collections
@app.get("/api/collections")
def list_collections(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return collection_service.get_collections(db, current["_id"])


@app.post("/api/collections", status_code=201)
def create_collection(payload: CollectionPayload, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return collection_service.add_collection(db, current["_id"], payload.name)


@app.post("/api/collections/add-from-public/{book_id}", status_code=201)
def add_from_public(book_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return book_service.add_book_from_public(db, current["_id"], book_id)


@app.put("/api/collections/{collection_id}")
def rename_collection(collection_id: str, payload: CollectionPayload, current=Depends(get_current_user),
                      db: Database = Depends(get_db)):
    return collection_service.update_collection(db, current["_id"], collection_id, payload.name)


@app.delete("/api/collections/{collection_id}")
def delete_collection(collection_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return collection_service.delete_collection(db, current["_id"], collection_id)


@app.post("/api/collections/{collection_id}/books")
def add_book_to_collection(collection_id: str, payload: BookRefPayload, current=Depends(get_current_user),
                           db: Database = Depends(get_db)):
    return collection_service.add_book_to_collection(db, current["_id"], collection_id, payload.bookId)


@app.delete("/api/collections/{collection_id}/books/{book_id}")
def remove_book_from_collection(collection_id: str, book_id: str, current=Depends(get_current_user),
                                db: Database = Depends(get_db)):
    return collection_service.remove_book_from_collection(db, current["_id"], collection_id, book_id)


# Favorites
@app.get("/api/favorites")
def list_favorites(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return favorite_service.get_favorites(db, current["_id"])


@app.post("/api/favorites")
def add_favorite(payload: BookRefPayload, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return favorite_service.add_favorite(db, current["_id"], payload.bookId)


@app.delete("/api/favorites/{book_id}")
def remove_favorite(book_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    return favorite_service.remove_favorite(db, current["_id"], book_id)


# Reading history
@app.get("/api/history")
def list_history(current=Depends(get_current_user), db: Database = Depends(get_db)):
    return history_service.get_history(db, current["_id"])


@app.post("/api/history")
def add_to_history(payload: BookRefPayload, background_tasks: BackgroundTasks, current=Depends(get_current_user),
                   db: Database = Depends(get_db), notifier: ConnectionManager = Depends(get_notifier)):
    book = history_service.record_reading(db, current["_id"], payload.bookId)
    background_tasks.add_task(notifier.broadcast, READERS_COUNT_UPDATED, book)
    return book


# Files
@app.get("/public/uploads/{filename}")
def download_upload(filename: str, title: Optional[str] = None):
    path = resolve_upload(filename)
    attachment = download_name(filename, title)
    if attachment:
        return FileResponse(path, filename=attachment, media_type="application/pdf")
    return FileResponse(path)


app.mount("/uploads", StaticFiles(directory=ensure_upload_dir()), name="uploads")


# Realtime
@app.websocket("/ws")
async def live_updates(websocket: WebSocket):
    notifier: ConnectionManager = websocket.app.state.notifier
    await notifier.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        notifier.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
