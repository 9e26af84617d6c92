"""Local file storage for cover images, book files and profile pictures."""
import logging
import os
import time
import uuid
from typing import Iterable, NamedTuple, Optional

from fastapi import UploadFile

from config import settings
from errors import NotFound, ValidationFailed

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"


def ensure_upload_dir() -> str:
    os.makedirs(settings.upload_dir, exist_ok=True)
    return settings.upload_dir


class PendingUpload(NamedTuple):
    field_name: str
    ext: str
    content: bytes


def check_upload(upload: Optional[UploadFile], field_name: str, allowed: Iterable[str],
                 max_bytes: int) -> Optional[PendingUpload]:
    """Read and validate an upload without writing it; ``None`` when nothing was sent."""
    if upload is None or not upload.filename:
        return None
    ext = os.path.splitext(upload.filename)[1].lower()
    if ext not in set(allowed):
        raise ValidationFailed(f"Unsupported file type for {field_name}: {ext or 'none'}")
    content = upload.file.read()
    if len(content) > max_bytes:
        raise ValidationFailed(f"{field_name} exceeds the {max_bytes // (1024 * 1024)}MB limit")
    return PendingUpload(field_name, ext, content)


def store_upload(pending: Optional[PendingUpload]) -> str:
    if pending is None:
        return ""
    name = f"{pending.field_name}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{pending.ext}"
    with open(os.path.join(ensure_upload_dir(), name), "wb") as fh:
        fh.write(pending.content)
    logger.info("Stored upload %s (%d bytes)", name, len(pending.content))
    return PUBLIC_PREFIX + name


def save_upload(upload: Optional[UploadFile], field_name: str, allowed: Iterable[str],
                max_bytes: int) -> str:
    """Store an uploaded file and return its public path, or "" when nothing was sent."""
    return store_upload(check_upload(upload, field_name, allowed, max_bytes))


def resolve_upload(filename: str) -> str:
    if not filename or "/" in filename or "\\" in filename or filename.startswith("."):
        raise NotFound("File not found")
    path = os.path.join(settings.upload_dir, filename)
    if not os.path.isfile(path):
        raise NotFound("File not found")
    return path


def download_name(filename: str, title: Optional[str]) -> Optional[str]:
    """Attachment name for document downloads; ``None`` means serve inline."""
    if not filename.lower().endswith(".pdf"):
        return None
    return f"{title}.pdf" if title else filename
