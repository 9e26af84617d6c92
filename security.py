import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

from config import settings
from database import find_by_id, get_db

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(pw: str) -> str:
    return hashlib.sha256((pw + settings.secret_key).encode()).hexdigest()


def verify_password(pw: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_password(pw), hashed or "")


def _sign(payload: str) -> str:
    return hashlib.sha256((payload + settings.secret_key).encode()).hexdigest()


def make_token(user: dict) -> str:
    """Issue a bearer token carrying the user's public profile.

    Format: ``<base64url(json claims)>.<sha256(payload + secret)>``; the claims
    expire after ``TOKEN_EXPIRE_MINUTES``.
    """
    expiry = datetime.now(timezone.utc) + timedelta(minutes=settings.token_expire_minutes)
    claims = {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "profileImage": user.get("profileImage"),
        "city": user.get("city"),
        "country": user.get("country"),
        "exp": int(expiry.timestamp()),
    }
    payload = base64.urlsafe_b64encode(json.dumps(claims, separators=(",", ":")).encode()).decode()
    return f"{payload}.{_sign(payload)}"


def parse_token(token: str) -> Optional[dict]:
    try:
        payload, signature = token.split(".")
        if not hmac.compare_digest(_sign(payload), signature):
            return None
        claims = json.loads(base64.urlsafe_b64decode(payload.encode()))
        if int(claims["exp"]) < int(datetime.now(timezone.utc).timestamp()):
            return None
        return claims
    except (ValueError, KeyError, TypeError):
        return None


def _load_user(db: Database, token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    claims = parse_token(token)
    if not claims:
        return None
    return find_by_id(db, "user", claims["id"])


async def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> dict:
    claims = parse_token(token)
    if not claims:
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    user = find_by_id(db, "user", claims["id"])
    if not user:
        logger.warning("Token presented for missing user %s", claims["id"])
        raise HTTPException(status_code=401, detail="Not authorized, user not found")
    return user


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme),
                            db: Database = Depends(get_db)) -> Optional[dict]:
    """Resolve the caller when a valid token is sent; anonymous callers get ``None``."""
    return _load_user(db, token)
