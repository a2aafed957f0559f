"""
Liveness and schema readiness.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import core.config as config
from core.db import DB, schema_revisions


router = APIRouter(tags=["health"])


def _database_status() -> dict:
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        applied, head = schema_revisions(DB.engine)
    except SQLAlchemyError as exc:
        config.logger.warning("Database health probe failed", extra={"error": str(exc)})
        return {"ok": False, "error": str(exc)}

    current = head is None or applied == head
    return {
        "ok": current,
        "backend": config.DB_BACKEND_EFFECTIVE,
        "schema_revision": applied,
        "schema_head": head,
    }


@router.get("/health")
def health():
    database = _database_status()
    if not database["ok"]:
        raise HTTPException(status_code=503, detail={"database": database})
    return {
        "status": "healthy",
        "service": "BondLedger",
        "version": "0.1.0",
        "notifications_enabled": config.NOTIFICATIONS_ENABLED,
        "database": database,
    }
