"""
Append-only audit trail for relationship lifecycle transitions.

Rows carry identifiers, enum values and counters only. Anything a user typed
(titles, descriptions, comments, signatures) is rejected before it reaches
the table.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import and_, or_

from core.models import AuditEvent, utcnow

ACTOR_TYPES = ("user", "system")
TARGET_TYPES = ("relationship", "term", "milestone", "activity", "certificate")

FORBIDDEN_METADATA_KEYS = (
    "content",
    "description",
    "message",
    "text",
    "comment",
    "title",
    "signature",
    "resolution",
)
MAX_METADATA_STRING_LENGTH = 200


def _is_content_key(key: str) -> bool:
    folded = key.strip().lower().replace("-", "_")
    return any(token in folded for token in FORBIDDEN_METADATA_KEYS)


def _check_metadata(value: Any, where: str = "metadata") -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{where} keys must be strings")
            if _is_content_key(key):
                raise ValueError(f"{where}.{key} may not be recorded in the audit log")
            _check_metadata(item, f"{where}.{key}")
    elif isinstance(value, (list, tuple)):
        for item in value:
            _check_metadata(item, where)
    elif isinstance(value, str) and len(value) > MAX_METADATA_STRING_LENGTH:
        raise ValueError(f"{where} exceeds {MAX_METADATA_STRING_LENGTH} characters")


def _entity_ids(target_ids) -> list[int]:
    if not isinstance(target_ids, (list, tuple)) or not target_ids:
        raise ValueError("target_ids must be a non-empty list")
    for item in target_ids:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ValueError("target_ids must contain integer ids")
    return list(target_ids)


def log_event(
    db,
    *,
    event_type: str,
    target_type: str,
    target_ids: list[int],
    actor_type: str = "user",
    actor_id: Optional[int] = None,
    relationship_id: Optional[int] = None,
    reason: Optional[str] = None,
    request_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditEvent:
    """
    Stage an audit row on the caller's session.

    Nothing is committed here; the row lands or rolls back with the
    transition it describes.
    """
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("event_type must be a non-empty string")
    if actor_type not in ACTOR_TYPES:
        raise ValueError(f"actor_type must be one of: {', '.join(ACTOR_TYPES)}")
    if target_type not in TARGET_TYPES:
        raise ValueError(f"target_type must be one of: {', '.join(TARGET_TYPES)}")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValueError("metadata must be a dict")
    if metadata:
        _check_metadata(metadata)
    if reason is not None:
        _check_metadata(reason, "reason")

    event = AuditEvent(
        created_at=utcnow(),
        event_type=event_type,
        actor_type=actor_type,
        actor_id=None if actor_id is None else str(actor_id),
        relationship_id=relationship_id,
        target_type=target_type,
        target_ids=_entity_ids(target_ids),
        reason=reason,
        request_id=request_id,
        metadata_=metadata,
    )
    db.add(event)
    return event


def serialize_audit_event(row: AuditEvent) -> dict:
    return {
        "event_id": row.event_id,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "event_type": row.event_type,
        "event_version": row.event_version,
        "actor_type": row.actor_type,
        "actor_id": row.actor_id,
        "relationship_id": row.relationship_id,
        "target_type": row.target_type,
        "target_ids": row.target_ids,
        "reason": row.reason,
        "request_id": row.request_id,
        "metadata": row.metadata_,
    }


def list_audit_events(
    db,
    *,
    relationship_id: Optional[int] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
    cursor: Optional[str] = None,
) -> dict:
    """Newest-first audit rows; pass the returned next_cursor to continue."""
    if limit <= 0:
        raise ValueError("limit must be positive")

    query = db.query(AuditEvent)
    if relationship_id is not None:
        query = query.filter(AuditEvent.relationship_id == relationship_id)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)

    anchor = db.get(AuditEvent, cursor) if cursor else None
    if anchor is not None:
        query = query.filter(
            or_(
                AuditEvent.created_at < anchor.created_at,
                and_(
                    AuditEvent.created_at == anchor.created_at,
                    AuditEvent.event_id < anchor.event_id,
                ),
            )
        )

    rows = (
        query.order_by(AuditEvent.created_at.desc(), AuditEvent.event_id.desc())
        .limit(limit)
        .all()
    )
    return {
        "status": "ok",
        "count": len(rows),
        "events": [serialize_audit_event(row) for row in rows],
        "next_cursor": rows[-1].event_id if len(rows) == limit else None,
    }
