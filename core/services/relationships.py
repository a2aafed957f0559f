"""
Relationship lifecycle services.

States: pending -> active -> requested_breakup -> ended, plus archived.
Every transition is a compare-and-set on ``status``; a zero-row update means
another caller won the race and is reported as InvalidStateError.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from core.audit import list_audit_events
from core.audit_constants import (
    EVENT_RELATIONSHIP_ACCEPTED,
    EVENT_RELATIONSHIP_ARCHIVED,
    EVENT_RELATIONSHIP_BREAKUP_CANCELED,
    EVENT_RELATIONSHIP_BREAKUP_CONFIRMED,
    EVENT_RELATIONSHIP_BREAKUP_REQUESTED,
    EVENT_RELATIONSHIP_DECLINED,
    EVENT_RELATIONSHIP_DELETED,
    EVENT_RELATIONSHIP_PROPOSED,
    EVENT_RELATIONSHIP_UPDATED,
)
from core.context import RequestContext, resolve_actor_id
from core.db import DB
from core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    SelfReferenceError,
    ValidationIssue,
)
from core.models import (
    Activity,
    ActivityComment,
    ActivityReaction,
    Milestone,
    NotificationCategory,
    NotificationPriority,
    Privacy,
    Relationship,
    RelationshipStatus,
    RelationshipType,
    Term,
    TermAgreement,
    TermViolation,
    User,
    enum_values,
    utcnow,
)
from core.services.notifications import (
    BREAKUP_CONFIRMED,
    BREAKUP_REQUEST,
    BREAKUP_REQUEST_CANCELED,
    RELATIONSHIP_ACCEPTED,
    RELATIONSHIP_ARCHIVED,
    RELATIONSHIP_DECLINED,
    RELATIONSHIP_INVITE,
    RELATIONSHIP_UPDATED,
    NotificationOutbox,
    action,
)
from core.services.shared import (
    _audit,
    _clean_tags,
    _iso,
    _load_party_relationship,
    _paginate,
    _validate_choice,
    _validate_limit,
    _validate_metadata,
    _validate_optional_text,
    _validate_required_text,
    DEFAULT_PAGE_SIZE,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    service_tool,
    logger,
)
from core.services.users import lookup_user_by_email, serialize_user_summary

UPDATABLE_FIELDS = ("title", "description", "type", "privacy", "tags", "custom_fields")


def _pair_key(user_a: int, user_b: int) -> tuple[int, int]:
    return (min(user_a, user_b), max(user_a, user_b))


def serialize_relationship(row: Relationship) -> dict:
    return {
        "id": row.id,
        "initiator": serialize_user_summary(row.initiator),
        "partner": serialize_user_summary(row.partner),
        "initiator_id": row.initiator_id,
        "partner_id": row.partner_id,
        "type": row.type,
        "status": row.status,
        "breakup_requested_by": row.breakup_requested_by,
        "breakup_requested_at": _iso(row.breakup_requested_at),
        "title": row.title,
        "description": row.description,
        "privacy": row.privacy,
        "tags": row.tags or [],
        "custom_fields": row.custom_fields or {},
        "start_date": _iso(row.start_date),
        "accepted_date": _iso(row.accepted_date),
        "end_date": _iso(row.end_date),
        "duration_days": row.duration_days,
        "stats": {
            "trust_level": row.trust_level,
            "communication_frequency": row.communication_frequency,
            "total_activities": row.total_activities,
            "milestones_achieved": row.milestones_achieved,
            "last_interaction": _iso(row.last_interaction),
        },
        "latest_certificate_id": row.latest_certificate_id,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _compare_and_set(db, relationship_id: int, expected_status: str, values: dict, *, extra_filters=()) -> None:
    query = (
        db.query(Relationship)
        .filter(Relationship.id == relationship_id)
        .filter(Relationship.status == expected_status)
    )
    for clause in extra_filters:
        query = query.filter(clause)
    updated = query.update(values, synchronize_session=False)
    if updated != 1:
        raise InvalidStateError(
            "Relationship changed state concurrently",
            data={"relationship_id": relationship_id, "expected_status": expected_status},
        )


def _expect_status(relationship: Relationship, *statuses: str) -> None:
    if relationship.status not in statuses:
        raise InvalidStateError(
            f"Operation not allowed while relationship is {relationship.status}",
            data={"relationship_id": relationship.id, "status": relationship.status},
        )


def _display_name(db, user_id: int) -> str:
    user = db.get(User, user_id)
    return user.display_name if user else "Someone"


def _delete_dependents(db, relationship_id: int) -> dict:
    """Remove terms, milestones and activities owned by a relationship.

    Certificates are award records and outlive the relationship.
    """
    term_ids = select(Term.id).where(Term.relationship_id == relationship_id)
    activity_ids = select(Activity.id).where(Activity.relationship_id == relationship_id)

    db.query(TermAgreement).filter(TermAgreement.term_id.in_(term_ids)).delete(synchronize_session=False)
    db.query(TermViolation).filter(TermViolation.term_id.in_(term_ids)).delete(synchronize_session=False)
    db.query(ActivityReaction).filter(ActivityReaction.activity_id.in_(activity_ids)).delete(
        synchronize_session=False
    )
    db.query(ActivityComment).filter(ActivityComment.activity_id.in_(activity_ids)).delete(
        synchronize_session=False
    )
    removed = {
        "terms": db.query(Term).filter(Term.relationship_id == relationship_id).delete(synchronize_session=False),
        "activities": db.query(Activity)
        .filter(Activity.relationship_id == relationship_id)
        .delete(synchronize_session=False),
        "milestones": db.query(Milestone)
        .filter(Milestone.relationship_id == relationship_id)
        .delete(synchronize_session=False),
    }
    return removed


# =============================================================================
# Lifecycle transitions
# =============================================================================

@service_tool
def propose_relationship(
    partner_email: str,
    title: str,
    type: str = RelationshipType.acquaintance.value,
    description: Optional[str] = None,
    privacy: str = Privacy.private.value,
    tags: Optional[list] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Propose a relationship to the user registered under partner_email."""
    _validate_required_text(title, "title", MAX_TITLE_LENGTH)
    _validate_optional_text(description, "description", MAX_SHORT_TEXT_LENGTH)
    _validate_choice(type, "type", enum_values(RelationshipType))
    _validate_choice(privacy, "privacy", enum_values(Privacy))
    tags_value = _clean_tags(tags)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        initiator = db.get(User, actor_id)
        if not initiator:
            raise NotFoundError("Acting user not found", data={"user_id": actor_id})
        partner = lookup_user_by_email(db, partner_email)
        if not partner:
            raise NotFoundError("User not found with this email")
        if partner.id == actor_id:
            raise SelfReferenceError("Cannot create relationship with yourself")

        pair_low, pair_high = _pair_key(actor_id, partner.id)
        existing = (
            db.query(Relationship.id)
            .filter(Relationship.pair_low == pair_low)
            .filter(Relationship.pair_high == pair_high)
            .first()
        )
        if existing:
            raise ConflictError(
                "Relationship already exists between these users",
                data={"relationship_id": existing[0]},
            )

        now = utcnow()
        relationship = Relationship(
            initiator_id=actor_id,
            partner_id=partner.id,
            pair_low=pair_low,
            pair_high=pair_high,
            type=type,
            status=RelationshipStatus.pending.value,
            title=title.strip(),
            description=description or "",
            privacy=privacy,
            tags=tags_value or [],
            custom_fields={},
            start_date=now,
            last_interaction=now,
            created_at=now,
            updated_at=now,
        )
        db.add(relationship)
        db.flush()

        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_PROPOSED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="relationship",
            target_ids=[relationship.id],
            metadata={"type": type},
        )
        db.commit()
        db.refresh(relationship)

        outbox.add(
            recipient_id=partner.id,
            sender_id=actor_id,
            type=RELATIONSHIP_INVITE,
            title="New Relationship Request",
            message=f"{initiator.display_name} wants to start a {type.replace('_', ' ')} relationship with you",
            category=NotificationCategory.relationship.value,
            priority=NotificationPriority.high.value,
            action_required=True,
            actions=[
                action("accept", "Accept", f"/relationships/{relationship.id}/accept"),
                action("decline", "Decline", f"/relationships/{relationship.id}/decline"),
            ],
            metadata={"relationship_id": relationship.id},
        )
        logger.info("relationship_proposed", extra={"relationship_id": relationship.id})
        result = {"status": "created", "relationship": serialize_relationship(relationship)}
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Relationship already exists between these users") from exc
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def accept_relationship(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """Partner accepts a pending proposal."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        if relationship.partner_id != actor_id:
            raise ForbiddenError("Only the invited partner can accept this relationship")
        _expect_status(relationship, RelationshipStatus.pending.value)

        now = utcnow()
        _compare_and_set(
            db,
            relationship.id,
            RelationshipStatus.pending.value,
            {
                Relationship.status: RelationshipStatus.active.value,
                Relationship.accepted_date: now,
                Relationship.last_interaction: now,
            },
        )
        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_ACCEPTED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="relationship",
            target_ids=[relationship.id],
        )
        db.commit()
        db.refresh(relationship)

        outbox.add(
            recipient_id=relationship.initiator_id,
            sender_id=actor_id,
            type=RELATIONSHIP_ACCEPTED,
            title="Relationship Accepted",
            message=f"{_display_name(db, actor_id)} accepted your relationship request",
            category=NotificationCategory.relationship.value,
            metadata={"relationship_id": relationship.id},
        )
        result = {"status": "ok", "relationship": serialize_relationship(relationship)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def decline_relationship(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """Partner declines a pending proposal; the record is deleted, not archived."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        if relationship.partner_id != actor_id:
            raise ForbiddenError("Only the invited partner can decline this relationship")
        _expect_status(relationship, RelationshipStatus.pending.value)
        initiator_id = relationship.initiator_id
        decliner_name = _display_name(db, actor_id)

        deleted = (
            db.query(Relationship)
            .filter(Relationship.id == relationship.id)
            .filter(Relationship.status == RelationshipStatus.pending.value)
            .delete(synchronize_session=False)
        )
        if deleted != 1:
            raise InvalidStateError("Relationship changed state concurrently")
        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_DECLINED,
            actor_id=actor_id,
            relationship_id=relationship_id,
            target_type="relationship",
            target_ids=[relationship_id],
        )
        db.commit()

        outbox.add(
            recipient_id=initiator_id,
            sender_id=actor_id,
            type=RELATIONSHIP_DECLINED,
            title="Relationship Declined",
            message=f"{decliner_name} declined your relationship request",
            category=NotificationCategory.relationship.value,
            metadata={"relationship_id": relationship_id},
        )
        result = {"status": "deleted", "relationship_id": relationship_id}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def request_breakup(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """Either party opens a breakup request; the other party must confirm it."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        _expect_status(relationship, RelationshipStatus.active.value)

        _compare_and_set(
            db,
            relationship.id,
            RelationshipStatus.active.value,
            {
                Relationship.status: RelationshipStatus.requested_breakup.value,
                Relationship.breakup_requested_by: actor_id,
                Relationship.breakup_requested_at: utcnow(),
            },
        )
        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_BREAKUP_REQUESTED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="relationship",
            target_ids=[relationship.id],
        )
        db.commit()
        db.refresh(relationship)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=BREAKUP_REQUEST,
            title="Breakup Request",
            message=f"{_display_name(db, actor_id)} has requested to end your relationship",
            category=NotificationCategory.relationship.value,
            priority=NotificationPriority.high.value,
            action_required=True,
            actions=[
                action("confirm", "Confirm Breakup", f"/relationships/{relationship.id}/confirm-breakup"),
                action("cancel", "Cancel Request", f"/relationships/{relationship.id}/cancel-breakup-request"),
            ],
            metadata={"relationship_id": relationship.id},
        )
        result = {"status": "ok", "relationship": serialize_relationship(relationship)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def confirm_breakup(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """The party who did not request the breakup confirms it."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        _expect_status(relationship, RelationshipStatus.requested_breakup.value)
        requester_id = relationship.breakup_requested_by
        if requester_id == actor_id:
            raise ForbiddenError("You cannot confirm your own breakup request")

        _compare_and_set(
            db,
            relationship.id,
            RelationshipStatus.requested_breakup.value,
            {
                Relationship.status: RelationshipStatus.ended.value,
                Relationship.end_date: utcnow(),
                Relationship.breakup_requested_by: None,
                Relationship.breakup_requested_at: None,
            },
            extra_filters=(Relationship.breakup_requested_by == requester_id,),
        )
        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_BREAKUP_CONFIRMED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="relationship",
            target_ids=[relationship.id],
            metadata={"requested_by": requester_id},
        )
        db.commit()
        db.refresh(relationship)

        outbox.add(
            recipient_id=requester_id,
            sender_id=actor_id,
            type=BREAKUP_CONFIRMED,
            title="Breakup Confirmed",
            message=f"{_display_name(db, actor_id)} has confirmed the breakup",
            category=NotificationCategory.relationship.value,
            metadata={"relationship_id": relationship.id},
        )
        result = {"status": "ok", "relationship": serialize_relationship(relationship)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def cancel_breakup_request(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """Only the original requester may retract a breakup request."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        _expect_status(relationship, RelationshipStatus.requested_breakup.value)
        if relationship.breakup_requested_by != actor_id:
            raise ForbiddenError("Only the user who requested the breakup can cancel it")

        _compare_and_set(
            db,
            relationship.id,
            RelationshipStatus.requested_breakup.value,
            {
                Relationship.status: RelationshipStatus.active.value,
                Relationship.breakup_requested_by: None,
                Relationship.breakup_requested_at: None,
            },
            extra_filters=(Relationship.breakup_requested_by == actor_id,),
        )
        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_BREAKUP_CANCELED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="relationship",
            target_ids=[relationship.id],
        )
        db.commit()
        db.refresh(relationship)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=BREAKUP_REQUEST_CANCELED,
            title="Breakup Request Canceled",
            message=f"{_display_name(db, actor_id)} has canceled the breakup request",
            category=NotificationCategory.relationship.value,
            metadata={"relationship_id": relationship.id},
        )
        result = {"status": "ok", "relationship": serialize_relationship(relationship)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def archive_or_delete_relationship(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """Archive an active relationship, or delete one that is pending, ended or archived."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        status = relationship.status

        if status == RelationshipStatus.active.value:
            now = utcnow()
            custom_fields = dict(relationship.custom_fields or {})
            custom_fields["archived_date"] = now.isoformat()
            _compare_and_set(
                db,
                relationship.id,
                RelationshipStatus.active.value,
                {
                    Relationship.status: RelationshipStatus.archived.value,
                    Relationship.end_date: now,
                    Relationship.custom_fields: custom_fields,
                },
            )
            _audit(
                db,
                context,
                event_type=EVENT_RELATIONSHIP_ARCHIVED,
                actor_id=actor_id,
                relationship_id=relationship.id,
                target_type="relationship",
                target_ids=[relationship.id],
            )
            db.commit()
            db.refresh(relationship)
            outbox.add(
                recipient_id=relationship.other_party(actor_id),
                sender_id=actor_id,
                type=RELATIONSHIP_ARCHIVED,
                title="Relationship Archived",
                message=f"{_display_name(db, actor_id)} archived your relationship",
                category=NotificationCategory.relationship.value,
                metadata={"relationship_id": relationship.id},
            )
            result = {"status": "archived", "relationship": serialize_relationship(relationship)}
        else:
            _expect_status(
                relationship,
                RelationshipStatus.pending.value,
                RelationshipStatus.ended.value,
                RelationshipStatus.archived.value,
            )
            removed = _delete_dependents(db, relationship.id)
            deleted = (
                db.query(Relationship)
                .filter(Relationship.id == relationship.id)
                .filter(Relationship.status == status)
                .delete(synchronize_session=False)
            )
            if deleted != 1:
                raise InvalidStateError("Relationship changed state concurrently")
            _audit(
                db,
                context,
                event_type=EVENT_RELATIONSHIP_DELETED,
                actor_id=actor_id,
                relationship_id=relationship_id,
                target_type="relationship",
                target_ids=[relationship_id],
                metadata={"previous_status": status, "removed": removed},
            )
            db.commit()
            logger.info("relationship_deleted", extra={"relationship_id": relationship_id, **removed})
            result = {"status": "deleted", "relationship_id": relationship_id, "removed": removed}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def update_relationship(
    relationship_id: int,
    fields: dict,
    context: Optional[RequestContext] = None,
) -> dict:
    """Merge whitelisted fields into an active relationship."""
    if not isinstance(fields, dict):
        raise ValidationIssue("fields must be an object", field="fields", error_type="invalid_type")
    updates = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
    if not updates:
        raise ValidationIssue(
            f"fields must include at least one of: {', '.join(UPDATABLE_FIELDS)}",
            field="fields",
            error_type="required",
        )
    if "title" in updates:
        _validate_required_text(updates["title"], "title", MAX_TITLE_LENGTH)
        updates["title"] = updates["title"].strip()
    if "description" in updates:
        _validate_optional_text(updates["description"], "description", MAX_SHORT_TEXT_LENGTH)
        updates["description"] = updates["description"] or ""
    if "type" in updates:
        _validate_choice(updates["type"], "type", enum_values(RelationshipType))
    if "privacy" in updates:
        _validate_choice(updates["privacy"], "privacy", enum_values(Privacy))
    if "tags" in updates:
        updates["tags"] = _clean_tags(updates["tags"]) or []
    if "custom_fields" in updates:
        _validate_metadata(updates["custom_fields"], "custom_fields")
        updates["custom_fields"] = dict(updates["custom_fields"] or {})
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        _expect_status(relationship, RelationshipStatus.active.value)

        _compare_and_set(
            db,
            relationship.id,
            RelationshipStatus.active.value,
            {getattr(Relationship, key): value for key, value in updates.items()},
        )
        _audit(
            db,
            context,
            event_type=EVENT_RELATIONSHIP_UPDATED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="relationship",
            target_ids=[relationship.id],
            metadata={"fields": sorted(updates)},
        )
        db.commit()
        db.refresh(relationship)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=RELATIONSHIP_UPDATED,
            title="Relationship Updated",
            message=f"{_display_name(db, actor_id)} updated your relationship details",
            category=NotificationCategory.relationship.value,
            priority=NotificationPriority.low.value,
            metadata={"relationship_id": relationship.id},
        )
        result = {"status": "ok", "relationship": serialize_relationship(relationship)}
    finally:
        db.close()
    outbox.flush()
    return result


# =============================================================================
# Reads
# =============================================================================

@service_tool
def list_relationships(
    status: Optional[str] = None,
    type: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    context: Optional[RequestContext] = None,
) -> dict:
    """List the actor's relationships, newest first."""
    _validate_choice(status, "status", enum_values(RelationshipStatus), required=False)
    _validate_choice(type, "type", enum_values(RelationshipType), required=False)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        query = db.query(Relationship).filter(
            or_(Relationship.initiator_id == actor_id, Relationship.partner_id == actor_id)
        )
        if status:
            query = query.filter(Relationship.status == status)
        if type:
            query = query.filter(Relationship.type == type)
        query = query.order_by(Relationship.created_at.desc(), Relationship.id.desc())
        rows, pagination = _paginate(query, page, limit)
        return {
            "status": "ok",
            "count": len(rows),
            "relationships": [serialize_relationship(row) for row in rows],
            "pagination": pagination,
        }
    finally:
        db.close()


@service_tool
def get_relationship(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        return {"status": "ok", "relationship": serialize_relationship(relationship)}
    finally:
        db.close()


@service_tool
def list_relationship_events(
    relationship_id: int,
    limit: int = 50,
    cursor: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Audit trail of a relationship, readable by its two parties only."""
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        _load_party_relationship(db, relationship_id, actor_id)
        return list_audit_events(db, relationship_id=relationship_id, limit=limit, cursor=cursor)
    finally:
        db.close()
