# customization/config.py

import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.DEBUG),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("customization_engine")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[CONFIG] {name}={raw!r} is not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[CONFIG] {name}={raw!r} is not a number, using {default}")
        return default


# --- LLM ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")
DEFAULT_LLM_MODEL = os.getenv("CUSTOMIZATION_LLM_MODEL", "gemini-2.5-flash-lite")
RESOLVER_TIMEOUT_SECONDS = _env_float("RESOLVER_TIMEOUT_SECONDS", 60.0)
LLM_RETRIES = _env_int("LLM_RETRIES", 3)

# --- Session store ---
SESSION_STORE = os.getenv("SESSION_STORE", "memory").strip().lower()
# 0 disables expiry: sessions then live for the whole process lifetime
SESSION_TTL_SECONDS = _env_int("SESSION_TTL_SECONDS", 24 * 3600)
SWEEP_INTERVAL_SECONDS = _env_float("SWEEP_INTERVAL_SECONDS", 300.0)

# --- Database (only used when SESSION_STORE=sql) ---
DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_HOST = os.environ.get("DB_HOST", "localhost")
DB_PORT = _env_int("DB_PORT", 5432)
DB_NAME = os.environ.get("DB_NAME", "")
DB_USER = os.environ.get("DB_USER", "")
DB_PASSWORD = os.environ.get("DB_PASSWORD")
DB_SECRET_ID = os.environ.get("DB_SECRET_ID")

# --- HTTP surface ---
RATE_LIMIT_PER_MINUTE = _env_int("RATE_LIMIT_PER_MINUTE", 60)
# When set, write endpoints require X-Caller-Role to match this value
WRITE_ROLE = (os.getenv("WRITE_ROLE") or "").strip() or None

# accept | warn | reject
DOCUMENT_SHAPE_POLICY = os.getenv("DOCUMENT_SHAPE_POLICY", "accept").strip().lower()
