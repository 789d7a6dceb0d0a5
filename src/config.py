"""
PoliMusic API - Configuration
All settings loaded from environment variables with sensible defaults.

The service keeps no local state: songs live in MongoDB and the audio files
they point at live wherever ``path`` says.  Nothing here touches the disk.
"""

import os
from typing import Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
_ = load_dotenv()


def _first_env(*names: str, default: str = "") -> str:
    """Return the first non-empty environment variable among *names*."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
APP_NAME = "PoliMusic API"
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
# Azure App Service hands the port over as WEBSITES_PORT
APP_PORT = int(_first_env("PORT", "WEBSITES_PORT", default="3000"))
APP_ENV = _first_env("APP_ENV", "NODE_ENV", default="development")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
IS_PRODUCTION = APP_ENV == "production"
DEBUG = os.getenv("DEBUG", "false" if IS_PRODUCTION else "true").lower() == "true"

# ---------------------------------------------------------------------------
# Logging (stdout only)
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# MongoDB
# ---------------------------------------------------------------------------
# Checked in order; the first non-empty one wins.
MONGO_URI_ENV_VARS = (
    "MONGODB_URI",
    "DATABASE_URL",
    "MONGO_URL",
    "MONGODB_CONNECTION_STRING",
)

DB_NAME = os.getenv("DB_NAME", "polimusic_db")
SONGS_COLLECTION = "songs"

MONGO_SERVER_SELECTION_TIMEOUT_MS = int(
    os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "10000")
)
MONGO_SOCKET_TIMEOUT_MS = int(os.getenv("MONGO_SOCKET_TIMEOUT_MS", "45000"))
MONGO_MAX_POOL_SIZE = int(os.getenv("MONGO_MAX_POOL_SIZE", "10"))

# Seconds to wait before retrying a failed connect attempt
MONGO_RETRY_DELAY = float(os.getenv("MONGO_RETRY_DELAY", "5"))

# ---------------------------------------------------------------------------
# Request limits
# ---------------------------------------------------------------------------
MAX_BODY_MB = 10
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(MAX_BODY_MB * 1024 * 1024)))

POPULAR_DEFAULT_LIMIT = int(os.getenv("POPULAR_DEFAULT_LIMIT", "10"))


def resolve_mongo_uri(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Return the MongoDB connection string from the environment.

    Looks at every name in ``MONGO_URI_ENV_VARS`` in order and returns the
    first non-empty value, or ``None`` when none of them is set.
    """
    env = os.environ if environ is None else environ
    for name in MONGO_URI_ENV_VARS:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


def database_env_names(environ: Optional[Mapping[str, str]] = None) -> list[str]:
    """Names of environment variables that look database related (values never returned)."""
    env = os.environ if environ is None else environ
    hints = ("mongo", "database", "db")
    return sorted(name for name in env if any(h in name.lower() for h in hints))
