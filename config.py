import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "course_platform")

# Tokens
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-key-change-in-prod")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
USER_TOKEN_EXPIRE_MINUTES = int(os.getenv("USER_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))
ADMIN_TOKEN_EXPIRE_MINUTES = int(os.getenv("ADMIN_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

# Main administrator seeded on startup (skipped when either is empty)
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")

# Object storage (BunnyCDN storage API)
BUNNY_STORAGE_HOST = os.getenv("BUNNY_STORAGE_HOST", "storage.bunnycdn.com")
BUNNY_STORAGE_ZONE = os.getenv("BUNNY_STORAGE_ZONE", "")
BUNNY_API_KEY = os.getenv("BUNNY_API_KEY", "")
BUNNY_PULL_ZONE = os.getenv("BUNNY_PULL_ZONE", "")
STORAGE_TIMEOUT_SECONDS = int(os.getenv("STORAGE_TIMEOUT_SECONDS", "300"))

# Upload limits
MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB
MAX_VIDEO_SIZE = 500 * 1024 * 1024  # 500MB
MAX_PROJECT_FILE_SIZE = 50 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
ALLOWED_AVATAR_TYPES = ALLOWED_IMAGE_TYPES | {"image/svg+xml", "image/heic", "image/heif"}
ALLOWED_VIDEO_TYPES = {"video/mp4", "video/webm", "video/ogg", "video/quicktime"}

# Outbound email
EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_USER = os.getenv("EMAIL_USER", "")
EMAIL_PASS = os.getenv("EMAIL_PASS", "")
EMAIL_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "Course Platform")
CONTACT_INBOX = os.getenv("CONTACT_INBOX", EMAIL_USER)

# Verification codes
CODE_EXPIRE_MINUTES = 15

# Business defaults
CURRENCY = os.getenv("CURRENCY", "UZS")
DEFAULT_ACCESS_MONTHS = 12
DEFAULT_COMPANY_SHARE = float(os.getenv("DEFAULT_COMPANY_SHARE", "70"))
DEFAULT_PAYMENT_METHOD = os.getenv("DEFAULT_PAYMENT_METHOD", "Telegram")

# HTTP
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", "5050"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
