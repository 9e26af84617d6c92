"""
Database Schemas for the Book Library API

Each document model maps to a MongoDB collection. The collection name is the
lowercase of the class name (e.g., Book -> "book"). Field names are camelCase
because they are the JSON contract the web client consumes.

Request payload models live at the bottom of the module.
"""
from datetime import datetime
from typing import List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator


def split_genres(value: Union[str, List[str], None]) -> List[str]:
    """Normalize a comma-delimited string or a list of genres into trimmed, non-empty tags."""
    if value is None:
        return []
    parts = value.split(",") if isinstance(value, str) else value
    return [str(p).strip() for p in parts if p is not None and str(p).strip()]


class User(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    username: str = Field(..., description="Unique display name")
    email: str = Field(..., description="Unique login email")
    password: str = Field(..., description="Peppered SHA-256 password hash")
    city: Optional[str] = None
    country: Optional[str] = None
    profileImage: Optional[str] = Field(None, description="Uploaded profile image path")
    favorites: List[ObjectId] = Field(default_factory=list)


class RatingEntry(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: Optional[ObjectId] = Field(None, description="Authenticated rater")
    ratedByIp: Optional[str] = Field(None, description="Anonymous rater address")
    rating: float = Field(..., ge=1, le=5)


class Book(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: str
    author: str
    genre: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    owner: ObjectId
    isPublic: bool = Field(False, description="Visible to everyone and open to rating")
    coverImageURL: str = ""
    filePath: str = ""
    averageRating: float = 0
    numberOfRatings: int = 0
    uniqueReadersCount: int = 0
    ratings: List[dict] = Field(default_factory=list)


class Collection(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    owner: ObjectId
    books: List[ObjectId] = Field(default_factory=list)


class History(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    book: ObjectId
    lastReadAt: datetime = Field(..., description="Time of the latest visit")


# Request payloads

class RegisterPayload(BaseModel):
    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class LoginPayload(BaseModel):
    email: str
    password: str


class ProfileUpdatePayload(BaseModel):
    username: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class PasswordChangePayload(BaseModel):
    currentPassword: str
    newPassword: str


class BookUpdatePayload(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    genre: Optional[Union[str, List[str]]] = None
    summary: Optional[str] = None
    isPublic: Optional[bool] = None
    coverImageURL: Optional[str] = None


class RatePayload(BaseModel):
    rating: float

    @field_validator("rating", mode="before")
    @classmethod
    def reject_booleans(cls, value):
        # JSON true/false would otherwise coerce to 1.0/0.0
        if isinstance(value, bool):
            raise ValueError("Rating must be a number")
        return value


class CollectionPayload(BaseModel):
    name: Optional[str] = None


class BookRefPayload(BaseModel):
    bookId: str
