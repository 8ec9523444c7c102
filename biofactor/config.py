"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Sessions ─────────────────────────────────────────────────────────
SESSION_STORAGE_KEY = "biofactor_user"
SESSION_FILE = os.getenv("SESSION_FILE")   # unset: API sessions live in process memory

# ── Data gateway ─────────────────────────────────────────────────────
DEFAULT_ORDER_ASCENDING = False
REFRESH_WORKERS = 1
CACHE_MAX_ENTRIES = 256
RLS_ERROR_MARKER = "row-level security"

# ── Import pipeline ──────────────────────────────────────────────────
IMPORT_EXTENSIONS = {"csv", "xlsx", "xls"}
ARRAY_DELIMITER = ","
UPLOAD_BUCKET = "uploads"
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
UPLOAD_BASE_URL = os.getenv("UPLOAD_BASE_URL", "http://localhost:8000/files")

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24
MAX_RESULTS_RETURN = 1000


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
