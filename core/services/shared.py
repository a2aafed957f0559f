"""
Shared helpers and configuration for BondLedger services.
"""

from __future__ import annotations

import math
from functools import wraps
from datetime import datetime
from typing import Optional, Callable

from sqlalchemy import case

import core.config as config
from core.audit import log_event
from core.context import RequestContext, get_current_request_context
from core.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationIssue,
)
from core.models import Relationship, RelationshipStatus, utcnow
from core.validators import (
    validate_required_text as _validate_required_text,
    validate_optional_text as _validate_optional_text,
    validate_limit as _validate_limit,
    validate_page as _validate_page,
    validate_int_range as _validate_int_range,
    validate_choice as _validate_choice,
    validate_id as _validate_id,
    validate_list as _validate_list,
    validate_string_list as _validate_string_list,
    validate_metadata as _validate_metadata,
    validate_optional_datetime as _validate_optional_datetime,
)

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

MAX_RESULT_LIMIT = config.MAX_RESULT_LIMIT
MAX_TITLE_LENGTH = config.MAX_TITLE_LENGTH
MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_SHORT_TEXT_LENGTH = config.MAX_SHORT_TEXT_LENGTH
MAX_COMMENT_LENGTH = config.MAX_COMMENT_LENGTH
MAX_TAG_LENGTH = config.MAX_TAG_LENGTH
MAX_LIST_ITEMS = config.MAX_LIST_ITEMS

TRUST_LEVEL_MIN = config.TRUST_LEVEL_MIN
TRUST_LEVEL_MAX = config.TRUST_LEVEL_MAX
IMPACT_MIN = config.IMPACT_MIN
IMPACT_MAX = config.IMPACT_MAX

DEFAULT_PAGE_SIZE = 20

# =============================================================================
# Helper Functions
# =============================================================================

def _log_service_error(tool_name: str, exc: Exception, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "error_code": getattr(exc, "error_code", "unknown"),
        "field": getattr(exc, "field", None),
        "detail": str(exc),
    }
    if warn:
        logger.warning("service_error", extra=payload)
    else:
        logger.info("service_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (ServiceError, ValidationIssue) as exc:
            _log_service_error(fn.__name__, exc, warn=False)
            raise
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_service_error(fn.__name__, issue, warn=True)
            raise issue from exc
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _request_id(context: Optional[RequestContext]) -> Optional[str]:
    ctx = context or get_current_request_context()
    return ctx.request_id if ctx else None


def _audit(
    db,
    context: Optional[RequestContext],
    *,
    event_type: str,
    actor_id: int,
    relationship_id: Optional[int],
    target_type: str,
    target_ids: list,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    log_event(
        db,
        event_type=event_type,
        actor_type="user",
        actor_id=actor_id,
        relationship_id=relationship_id,
        target_type=target_type,
        target_ids=target_ids,
        reason=reason,
        request_id=_request_id(context),
        metadata=metadata,
    )


def _paginate(query, page: int, limit: int) -> tuple[list, dict]:
    _validate_page(page)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "current_page": page,
        "total_pages": math.ceil(total / limit) if total else 0,
        "total_items": total,
        "items_per_page": limit,
    }
    return rows, pagination


def _clean_tags(tags: Optional[list]) -> Optional[list]:
    if tags is None:
        return None
    _validate_string_list(tags, "tags", MAX_LIST_ITEMS, MAX_TAG_LENGTH)
    return [tag.strip() for tag in tags if tag.strip()]


def _clamp_impact(value: Optional[int], field: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    return max(IMPACT_MIN, min(IMPACT_MAX, value))


# =============================================================================
# Relationship membership checks shared by every coordinator
# =============================================================================

def _load_relationship(db, relationship_id: int) -> Relationship:
    _validate_id(relationship_id, "relationship_id")
    relationship = db.query(Relationship).filter(Relationship.id == relationship_id).first()
    if not relationship:
        raise NotFoundError("Relationship not found", data={"relationship_id": relationship_id})
    return relationship


def _require_party(relationship: Relationship, actor_id: int) -> None:
    if not relationship.includes_user(actor_id):
        raise ForbiddenError(
            "Not authorized to access this relationship",
            data={"relationship_id": relationship.id},
        )


def _require_active(relationship: Relationship) -> None:
    if relationship.status != RelationshipStatus.active.value:
        raise InvalidStateError(
            "Relationship is not active",
            data={"relationship_id": relationship.id, "status": relationship.status},
        )


def _load_party_relationship(db, relationship_id: int, actor_id: int, *, require_active: bool = False) -> Relationship:
    relationship = _load_relationship(db, relationship_id)
    _require_party(relationship, actor_id)
    if require_active:
        _require_active(relationship)
    return relationship


# =============================================================================
# Aggregate stats (atomic, scoped to one relationship row)
# =============================================================================

def _increment_relationship_counter(db, relationship_id: int, column_name: str, delta: int = 1) -> None:
    column = getattr(Relationship, column_name)
    if delta >= 0:
        new_value = column + delta
    else:
        new_value = case((column + delta < 0, 0), else_=column + delta)
    db.query(Relationship).filter(Relationship.id == relationship_id).update(
        {column: new_value},
        synchronize_session=False,
    )


def _apply_trust_change(db, relationship_id: int, trust_change: int) -> None:
    """Add a clamped impact to trust_level and record the interaction."""
    adjusted = Relationship.trust_level + trust_change
    db.query(Relationship).filter(Relationship.id == relationship_id).update(
        {
            Relationship.trust_level: case(
                (adjusted < TRUST_LEVEL_MIN, TRUST_LEVEL_MIN),
                (adjusted > TRUST_LEVEL_MAX, TRUST_LEVEL_MAX),
                else_=adjusted,
            ),
            Relationship.total_activities: Relationship.total_activities + 1,
            Relationship.last_interaction: utcnow(),
        },
        synchronize_session=False,
    )


__all__ = [
    "logger",
    "service_tool",
    "_validate_required_text",
    "_validate_optional_text",
    "_validate_limit",
    "_validate_int_range",
    "_validate_choice",
    "_validate_id",
    "_validate_list",
    "_validate_string_list",
    "_validate_metadata",
    "_validate_optional_datetime",
]
