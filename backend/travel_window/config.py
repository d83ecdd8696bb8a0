from __future__ import annotations

"""Application configuration.

All values are read from the environment at import time. Flags default to
**True** so that an unset environment keeps the full behaviour; only the
audit mirror can be switched off for environments without write access to
the `audit_logs` collection.
"""

import os


def _env_flag(name: str, default: bool = True) -> bool:
    """Read a boolean-like flag from environment.

    Accepted falsy values: "0", "false", "off", "no" (case-insensitive).
    Anything else (or unset) falls back to `default`.
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"0", "false", "off", "no"}:
        return False
    if value in {"1", "true", "on", "yes"}:
        return True
    return default


# Application constants
API_PREFIX = "/api"
APP_NAME = "Travel Window API"
APP_VERSION = "1.0.0"
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

# Mongo
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "travel_window")
MONGO_SERVER_SELECTION_TIMEOUT_MS = int(os.environ.get("MONGO_SERVER_SELECTION_TIMEOUT_MS", "10000"))
MONGO_MAX_POOL_SIZE = int(os.environ.get("MONGO_MAX_POOL_SIZE", "10"))

# Auth
JWT_SECRET = os.environ.get("JWT_SECRET", "dev_jwt_secret_change_me")
JWT_ALGORITHM = "HS256"

# Legacy supplier name that marks the outsourced (unticketed) channel when a
# supplier document carries no explicit isOutsourcedChannel flag.
OUTSOURCED_SUPPLIER_NAME = "Agent2"

# Listing
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 200
SEARCH_RESULT_LIMIT = 20

# Feature flags
ENABLE_AUDIT_MIRROR: bool = _env_flag("ENABLE_AUDIT_MIRROR", default=True)
