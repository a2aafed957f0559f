"""
Engine/session state and Alembic schema checks.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import core.config as config


class DB:
    """Process-wide engine and session factory."""

    engine = None
    SessionLocal = None


def build_engine(url: str):
    """Create an engine; sqlite connections get thread sharing and a busy timeout."""
    kwargs = {"pool_pre_ping": True}
    if url.lower().startswith("sqlite"):
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": config.SQLITE_BUSY_TIMEOUT_SECONDS,
        }
    return create_engine(url, **kwargs)


def bind(engine) -> None:
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)


def _alembic_config():
    from alembic.config import Config

    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    cfg = Config(os.path.join(root, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(root, "alembic"))
    cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL or "")
    return cfg


def schema_revisions(engine) -> tuple[Optional[str], Optional[str]]:
    """Return (applied revision, head revision) for the given engine."""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    head = ScriptDirectory.from_config(_alembic_config()).get_current_head()
    with engine.connect() as conn:
        applied = MigrationContext.configure(conn).get_current_revision()
    return applied, head


def _migrate_to_head(engine) -> None:
    from alembic import command

    applied, head = schema_revisions(engine)
    if applied == head:
        return
    if not config.AUTO_MIGRATE_ON_STARTUP:
        raise RuntimeError(
            f"Database schema at {applied}, expected {head}. "
            "Run 'alembic upgrade head' or set AUTO_MIGRATE_ON_STARTUP=true."
        )

    config.logger.info(
        "Migrating schema", extra={"from_revision": applied, "to_revision": head}
    )
    command.upgrade(_alembic_config(), "head")
    applied, _ = schema_revisions(engine)
    if applied != head:
        raise RuntimeError("Database migration did not reach expected revision")


def init_db() -> None:
    """Validate config, connect, and bring the schema to head."""
    config.validate_and_prepare_config()
    config.logger.info("Connecting to database", extra={"backend": config.DB_BACKEND_EFFECTIVE})
    bind(build_engine(config.DATABASE_URL))
    _migrate_to_head(DB.engine)
    config.logger.info("Database initialized")


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.SessionLocal = None
