"""Account registration, login and profile maintenance."""
import logging
from typing import Optional

from fastapi import UploadFile
from pymongo.database import Database

from config import settings
from database import create_document, find_by_id, utcnow
from errors import AuthenticationFailed, ValidationFailed
from schemas import (
    LoginPayload,
    PasswordChangePayload,
    ProfileUpdatePayload,
    RegisterPayload,
    User,
)
from security import hash_password, make_token, verify_password
from storage import save_upload

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _profile(user: dict) -> dict:
    return {
        "_id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "city": user.get("city"),
        "country": user.get("country"),
        "profileImage": user.get("profileImage"),
        "token": make_token(user),
    }


def register(db: Database, payload: RegisterPayload) -> dict:
    email = payload.email.strip().lower()
    username = payload.username.strip()
    if db["user"].find_one({"$or": [{"email": email}, {"username": username}]}):
        logger.warning("Registration rejected, user exists: %s", username)
        raise ValidationFailed("User already exists")

    user_id = create_document(db, "user", User(
        username=username,
        email=email,
        password=hash_password(payload.password),
    ))
    user = find_by_id(db, "user", user_id)
    logger.info("New user registered: %s", username)
    profile = _profile(user)
    return {k: profile[k] for k in ("_id", "username", "email", "token")}


def login(db: Database, payload: LoginPayload) -> dict:
    user = db["user"].find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise AuthenticationFailed("Invalid email or password")
    logger.info("User logged in: %s", user.get("username"))
    profile = _profile(user)
    return {k: profile[k] for k in ("_id", "username", "email", "token")}


def update_profile(db: Database, user: dict, payload: ProfileUpdatePayload) -> dict:
    changes = {}
    if payload.username and payload.username != user.get("username"):
        if db["user"].find_one({"username": payload.username, "_id": {"$ne": user["_id"]}}):
            raise ValidationFailed("Username already taken")
        changes["username"] = payload.username
    if payload.city:
        changes["city"] = payload.city
    if payload.country:
        changes["country"] = payload.country

    if changes:
        changes["updatedAt"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    return _profile(find_by_id(db, "user", user["_id"]))


def update_profile_image(db: Database, user: dict, upload: Optional[UploadFile]) -> dict:
    if upload is None or not upload.filename:
        raise ValidationFailed("No image file provided")
    path = save_upload(upload, "profileImage", settings.image_extensions, settings.max_profile_image_bytes)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"profileImage": path, "updatedAt": utcnow()}})
    logger.info("Profile image uploaded for user %s: %s", user.get("username"), path)
    return _profile(find_by_id(db, "user", user["_id"]))


def change_password(db: Database, user: dict, payload: PasswordChangePayload) -> dict:
    if not verify_password(payload.currentPassword, user.get("password", "")):
        raise AuthenticationFailed("Current password is incorrect")
    if len(payload.newPassword) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    db["user"].update_one({"_id": user["_id"]},
                          {"$set": {"password": hash_password(payload.newPassword), "updatedAt": utcnow()}})
    logger.info("Password changed for user %s", user.get("username"))
    return {"message": "Password updated"}


def delete_account(db: Database, user: dict) -> dict:
    # books, collections and history rows keep their references
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("Account deleted: %s", user.get("username"))
    return {"message": "User removed"}
