import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

# Paths
BASE_DIR = Path(__file__).parent
load_dotenv(BASE_DIR / ".env")

DATA_DIR = BASE_DIR / "data"

# Site metadata
SITE_TITLE = os.getenv("SITE_TITLE", "Devblog")
SITE_DESCRIPTION = os.getenv("SITE_DESCRIPTION", "Notes on building things")

# Storage: a mongodb:// URI or a path to a JSON document file
STORE_URI = os.getenv("STORE_URI", str(DATA_DIR / "blog.json"))

# Uploads
UPLOAD_DIR = os.getenv("UPLOAD_DIR", str(BASE_DIR / "static" / "images"))
UPLOAD_STAGING_DIR = os.getenv("UPLOAD_STAGING_DIR", str(DATA_DIR / "staging"))
ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
MAX_CONTENT_LENGTH = 8 * 1024 * 1024

# Listings
PAGE_SIZE = 10

# Auth / session
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.getenv("SESSION_DAYS", "7")))
SESSION_COOKIE_HTTPONLY = True

# Logging / errors
LOG_DIR = os.getenv("LOG_DIR", str(BASE_DIR / "logs"))
SHOW_ERROR_DETAILS = os.getenv("SHOW_ERROR_DETAILS", "") == "1"

# Any logged-in user may edit or delete any post unless this is set
ENFORCE_POST_OWNERSHIP = os.getenv("ENFORCE_POST_OWNERSHIP", "") == "1"
