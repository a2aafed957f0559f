"""
Shared configuration for BondLedger core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("bondledger")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_list(env_name: str) -> list[str]:
    value = os.environ.get(env_name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/bondledger.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"
SQLITE_BUSY_TIMEOUT_SECONDS = _get_int("SQLITE_BUSY_TIMEOUT_SECONDS", 15)

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("BONDLEDGER_MAX_RESULT_LIMIT", 100)
MAX_TITLE_LENGTH = _get_int("BONDLEDGER_MAX_TITLE_LENGTH", 100)
MAX_TEXT_LENGTH = _get_int("BONDLEDGER_MAX_TEXT_LENGTH", 1000)
MAX_SHORT_TEXT_LENGTH = _get_int("BONDLEDGER_MAX_SHORT_TEXT_LENGTH", 500)
MAX_COMMENT_LENGTH = _get_int("BONDLEDGER_MAX_COMMENT_LENGTH", 500)
MAX_TAG_LENGTH = _get_int("BONDLEDGER_MAX_TAG_LENGTH", 30)
MAX_LIST_ITEMS = _get_int("BONDLEDGER_MAX_LIST_ITEMS", 50)
MAX_METADATA_BYTES = _get_int("BONDLEDGER_MAX_METADATA_BYTES", 20000)

# Relationship defaults
DEFAULT_TRUST_LEVEL = _get_int("BONDLEDGER_DEFAULT_TRUST_LEVEL", 50)
TRUST_LEVEL_MIN = 0
TRUST_LEVEL_MAX = 100
IMPACT_MIN = -10
IMPACT_MAX = 10

# Notifications are best-effort and dispatched after commit
NOTIFICATIONS_ENABLED = _get_bool("NOTIFICATIONS_ENABLED", True)

# Certificate issuance
CERTIFICATE_ISSUER = os.environ.get("CERTIFICATE_ISSUER", "BondLedger")
CERTIFICATE_NUMBER_MAX_ATTEMPTS = _get_int("CERTIFICATE_NUMBER_MAX_ATTEMPTS", 5)

# HTTP surface
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")
CORS_ALLOWED_ORIGINS = _get_list("CORS_ALLOWED_ORIGINS")
TRUSTED_HOSTS = _get_list("TRUSTED_HOSTS")
ACTOR_HEADER = os.environ.get("BONDLEDGER_ACTOR_HEADER", "X-User-Id")


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []

    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be one of: postgres, sqlite")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if DEFAULT_TRUST_LEVEL < TRUST_LEVEL_MIN or DEFAULT_TRUST_LEVEL > TRUST_LEVEL_MAX:
        errors.append("BONDLEDGER_DEFAULT_TRUST_LEVEL must be between 0 and 100")

    if CERTIFICATE_NUMBER_MAX_ATTEMPTS <= 0:
        errors.append("CERTIFICATE_NUMBER_MAX_ATTEMPTS must be positive")

    if not NOTIFICATIONS_ENABLED:
        logger.warning("NOTIFICATIONS_ENABLED=false; lifecycle notifications will be dropped.")

    DB_BACKEND_EFFECTIVE = DB_BACKEND if DB_BACKEND in {"postgres", "sqlite"} else "postgres"

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
