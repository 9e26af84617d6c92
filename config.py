import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    # Database
    database_url: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "book_library")

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "dev-secret")
    token_expire_minutes: int = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))

    # Uploads
    upload_dir: str = os.getenv("UPLOAD_DIR", os.path.join("public", "uploads"))
    max_book_upload_bytes: int = int(os.getenv("MAX_BOOK_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    max_profile_image_bytes: int = int(os.getenv("MAX_PROFILE_IMAGE_BYTES", str(5 * 1024 * 1024)))
    image_extensions: List[str] = field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp"])
    book_file_extensions: List[str] = field(default_factory=lambda: [".pdf", ".jpg", ".jpeg", ".png", ".webp"])

    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: _csv(os.getenv("CORS_ORIGINS", "*")))
    rate_limit: str = os.getenv("RATE_LIMIT", "1000 per 15 minutes")
    port: int = int(os.getenv("PORT", "5002"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
