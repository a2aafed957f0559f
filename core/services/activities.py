"""
Activity coordinator: the relationship's event log.

Creating an activity applies its clamped trust impact to the relationship and
bumps total_activities in one atomic UPDATE; deleting one walks the counter
back down, never below zero.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from core.audit_constants import EVENT_ACTIVITY_CREATED, EVENT_ACTIVITY_DELETED
from core.context import RequestContext, resolve_actor_id
from core.db import DB
from core.errors import ForbiddenError, NotFoundError, ValidationIssue
from core.models import (
    Activity,
    ActivityCategory,
    ActivityComment,
    ActivityPrivacy,
    ActivityReaction,
    ActivityType,
    Milestone,
    Mood,
    NotificationCategory,
    NotificationPriority,
    ReactionType,
    Relationship,
    RelationshipStatus,
    User,
    enum_values,
    utcnow,
)
from core.services.notifications import (
    ACTIVITY_ADDED,
    ACTIVITY_COMMENT,
    ACTIVITY_REACTION,
    NotificationOutbox,
    action,
)
from core.services.shared import (
    _apply_trust_change,
    _audit,
    _clamp_impact,
    _clean_tags,
    _increment_relationship_counter,
    _iso,
    _load_party_relationship,
    _paginate,
    _validate_choice,
    _validate_id,
    _validate_int_range,
    _validate_list,
    _validate_metadata,
    _validate_optional_text,
    _validate_required_text,
    DEFAULT_PAGE_SIZE,
    MAX_COMMENT_LENGTH,
    MAX_LIST_ITEMS,
    MAX_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    service_tool,
    logger,
)

UPDATABLE_FIELDS = (
    "title",
    "description",
    "type",
    "category",
    "mood",
    "privacy",
    "location",
    "duration",
    "participants",
    "media",
    "tags",
    "is_recurring",
    "recurring_pattern",
)


def serialize_activity(row: Activity) -> dict:
    return {
        "id": row.id,
        "relationship_id": row.relationship_id,
        "created_by": row.created_by,
        "title": row.title,
        "description": row.description,
        "type": row.type,
        "category": row.category,
        "mood": row.mood,
        "privacy": row.privacy,
        "location": row.location,
        "duration": row.duration,
        "participants": row.participants or [],
        "media": row.media or [],
        "tags": row.tags or [],
        "related_milestone_id": row.related_milestone_id,
        "impact": {
            "trust_change": row.trust_change,
            "relationship_strength": row.relationship_strength,
        },
        "reactions": [
            {"user_id": reaction.user_id, "type": reaction.type, "created_at": _iso(reaction.created_at)}
            for reaction in row.reactions
        ],
        "comments": [
            {
                "id": comment.id,
                "user_id": comment.user_id,
                "text": comment.text,
                "created_at": _iso(comment.created_at),
            }
            for comment in row.comments
        ],
        "is_recurring": row.is_recurring,
        "recurring_pattern": row.recurring_pattern,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _validate_fields(values: dict) -> None:
    if "title" in values:
        _validate_required_text(values["title"], "title", MAX_TITLE_LENGTH)
    if "description" in values:
        _validate_optional_text(values["description"], "description", MAX_TEXT_LENGTH)
    if "type" in values:
        _validate_choice(values["type"], "type", enum_values(ActivityType))
    if "category" in values:
        _validate_choice(values["category"], "category", enum_values(ActivityCategory))
    if "mood" in values:
        _validate_choice(values["mood"], "mood", enum_values(Mood))
    if "privacy" in values:
        _validate_choice(values["privacy"], "privacy", enum_values(ActivityPrivacy))
    if values.get("location") is not None:
        _validate_metadata(values["location"], "location")
    if "duration" in values:
        _validate_int_range(values["duration"], "duration", 0, 60 * 24 * 365)
    if "is_recurring" in values and not isinstance(values["is_recurring"], bool):
        raise ValidationIssue("is_recurring must be true or false", field="is_recurring", error_type="invalid_type")
    for key in ("participants", "media"):
        if values.get(key) is not None:
            _validate_list(values[key], key, MAX_LIST_ITEMS)
    if values.get("recurring_pattern") is not None:
        _validate_metadata(values["recurring_pattern"], "recurring_pattern")


def _load_activity(db, activity_id: int, actor_id: int) -> tuple[Activity, Relationship]:
    _validate_id(activity_id, "activity_id")
    activity = db.get(Activity, activity_id)
    if not activity:
        raise NotFoundError("Activity not found", data={"activity_id": activity_id})
    relationship = _load_party_relationship(db, activity.relationship_id, actor_id)
    return activity, relationship


def _require_creator(activity: Activity, actor_id: int) -> None:
    if activity.created_by != actor_id:
        raise ForbiddenError("Only the creator can modify this activity", data={"activity_id": activity.id})


def _actor_name(db, actor_id: int) -> str:
    user = db.get(User, actor_id)
    return user.display_name if user else "Someone"


@service_tool
def create_activity(
    relationship_id: int,
    title: str,
    type: str,
    description: Optional[str] = None,
    category: str = ActivityCategory.shared_activities.value,
    mood: str = Mood.neutral.value,
    privacy: str = ActivityPrivacy.relationship.value,
    location: Optional[dict] = None,
    duration: int = 0,
    media: Optional[list] = None,
    tags: Optional[list] = None,
    related_milestone_id: Optional[int] = None,
    trust_change: Optional[int] = None,
    relationship_strength: Optional[int] = None,
    is_recurring: bool = False,
    recurring_pattern: Optional[dict] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Log an activity and fold its trust impact into the relationship stats."""
    _validate_fields(
        {
            "title": title,
            "description": description,
            "type": type,
            "category": category,
            "mood": mood,
            "privacy": privacy,
            "location": location,
            "duration": duration,
            "media": media,
            "is_recurring": is_recurring,
            "recurring_pattern": recurring_pattern,
        }
    )
    trust_value = _clamp_impact(trust_change, "trust_change")
    strength_value = _clamp_impact(relationship_strength, "relationship_strength")
    tags_value = _clean_tags(tags) or []
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id, require_active=True)
        if related_milestone_id is not None:
            _validate_id(related_milestone_id, "related_milestone_id")
            milestone = db.get(Milestone, related_milestone_id)
            if not milestone or milestone.relationship_id != relationship.id:
                raise NotFoundError(
                    "Related milestone not found in this relationship",
                    data={"milestone_id": related_milestone_id},
                )

        now = utcnow()
        activity = Activity(
            relationship_id=relationship.id,
            created_by=actor_id,
            title=title.strip(),
            description=description or "",
            type=type,
            category=category,
            mood=mood,
            privacy=privacy,
            location=location,
            duration=duration or 0,
            participants=[{"user": actor_id, "role": "participant"}],
            media=list(media or []),
            tags=tags_value,
            related_milestone_id=related_milestone_id,
            trust_change=trust_value,
            relationship_strength=strength_value,
            is_recurring=is_recurring,
            recurring_pattern=recurring_pattern,
            created_at=now,
            updated_at=now,
        )
        db.add(activity)
        db.flush()
        _apply_trust_change(db, relationship.id, trust_value)
        _audit(
            db,
            context,
            event_type=EVENT_ACTIVITY_CREATED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="activity",
            target_ids=[activity.id],
            metadata={"type": type, "trust_change": trust_value},
        )
        db.commit()
        db.refresh(activity)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=ACTIVITY_ADDED,
            title="New Activity Added",
            message=f'{_actor_name(db, actor_id)} added a new activity: "{activity.title}"',
            category=NotificationCategory.activity.value,
            actions=[action("view", "View Activity", f"/activities/{activity.id}")],
            metadata={"relationship_id": relationship.id, "activity_id": activity.id},
        )
        result = {"status": "created", "activity": serialize_activity(activity)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def update_activity(activity_id: int, fields: dict, context: Optional[RequestContext] = None) -> dict:
    """Edit an activity the actor created. Trust impact is fixed at creation."""
    if not isinstance(fields, dict):
        raise ValidationIssue("fields must be an object", field="fields", error_type="invalid_type")
    updates = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
    if not updates:
        raise ValidationIssue(
            f"fields must include at least one of: {', '.join(UPDATABLE_FIELDS)}",
            field="fields",
            error_type="required",
        )
    _validate_fields(updates)
    if "title" in updates:
        updates["title"] = updates["title"].strip()
    if "description" in updates:
        updates["description"] = updates["description"] or ""
    if "tags" in updates:
        updates["tags"] = _clean_tags(updates["tags"]) or []
    for key in ("participants", "media"):
        if key in updates and updates[key] is None:
            updates[key] = []
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        activity, _ = _load_activity(db, activity_id, actor_id)
        _require_creator(activity, actor_id)
        for key, value in updates.items():
            setattr(activity, key, value)
        activity.updated_at = utcnow()
        db.commit()
        db.refresh(activity)
        return {"status": "ok", "activity": serialize_activity(activity)}
    finally:
        db.close()


@service_tool
def delete_activity(activity_id: int, context: Optional[RequestContext] = None) -> dict:
    """Delete an activity the actor created and walk total_activities back."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        activity, relationship = _load_activity(db, activity_id, actor_id)
        _require_creator(activity, actor_id)

        db.query(ActivityReaction).filter(ActivityReaction.activity_id == activity.id).delete(
            synchronize_session=False
        )
        db.query(ActivityComment).filter(ActivityComment.activity_id == activity.id).delete(
            synchronize_session=False
        )
        deleted = db.query(Activity).filter(Activity.id == activity.id).delete(synchronize_session=False)
        if deleted != 1:
            raise NotFoundError("Activity not found", data={"activity_id": activity_id})
        _increment_relationship_counter(db, relationship.id, "total_activities", -1)
        _audit(
            db,
            context,
            event_type=EVENT_ACTIVITY_DELETED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="activity",
            target_ids=[activity_id],
        )
        db.commit()
        return {"status": "deleted", "activity_id": activity_id}
    finally:
        db.close()


@service_tool
def add_reaction(
    activity_id: int,
    type: str = ReactionType.like.value,
    context: Optional[RequestContext] = None,
) -> dict:
    """Set the actor's reaction; a later reaction replaces the earlier one."""
    _validate_choice(type, "type", enum_values(ReactionType))
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        activity, relationship = _load_activity(db, activity_id, actor_id)
        now = utcnow()
        replaced = (
            db.query(ActivityReaction)
            .filter(ActivityReaction.activity_id == activity.id)
            .filter(ActivityReaction.user_id == actor_id)
            .update({ActivityReaction.type: type, ActivityReaction.created_at: now}, synchronize_session=False)
        )
        if not replaced:
            try:
                with db.begin_nested():
                    db.add(ActivityReaction(activity_id=activity.id, user_id=actor_id, type=type, created_at=now))
            except IntegrityError:
                # Lost an insert race with ourselves; the row exists now
                db.query(ActivityReaction).filter(ActivityReaction.activity_id == activity.id).filter(
                    ActivityReaction.user_id == actor_id
                ).update({ActivityReaction.type: type, ActivityReaction.created_at: now}, synchronize_session=False)
        db.commit()
        db.refresh(activity)

        if activity.created_by != actor_id:
            outbox.add(
                recipient_id=activity.created_by,
                sender_id=actor_id,
                type=ACTIVITY_REACTION,
                title="New Reaction",
                message=f'{_actor_name(db, actor_id)} reacted to "{activity.title}"',
                category=NotificationCategory.activity.value,
                priority=NotificationPriority.low.value,
                metadata={"relationship_id": relationship.id, "activity_id": activity.id},
            )
        result = {"status": "ok", "replaced": bool(replaced), "activity": serialize_activity(activity)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def add_comment(activity_id: int, text: str, context: Optional[RequestContext] = None) -> dict:
    """Append a comment to an activity."""
    _validate_required_text(text, "text", MAX_COMMENT_LENGTH)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        activity, relationship = _load_activity(db, activity_id, actor_id)
        db.add(ActivityComment(activity_id=activity.id, user_id=actor_id, text=text.strip(), created_at=utcnow()))
        db.commit()
        db.refresh(activity)

        if activity.created_by != actor_id:
            outbox.add(
                recipient_id=activity.created_by,
                sender_id=actor_id,
                type=ACTIVITY_COMMENT,
                title="New Comment",
                message=f'{_actor_name(db, actor_id)} commented on "{activity.title}"',
                category=NotificationCategory.activity.value,
                metadata={"relationship_id": relationship.id, "activity_id": activity.id},
            )
        result = {"status": "created", "activity": serialize_activity(activity)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def list_activities(
    relationship_id: int,
    type: Optional[str] = None,
    category: Optional[str] = None,
    mood: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    context: Optional[RequestContext] = None,
) -> dict:
    _validate_choice(type, "type", enum_values(ActivityType), required=False)
    _validate_choice(category, "category", enum_values(ActivityCategory), required=False)
    _validate_choice(mood, "mood", enum_values(Mood), required=False)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        query = db.query(Activity).filter(Activity.relationship_id == relationship.id)
        if type:
            query = query.filter(Activity.type == type)
        if category:
            query = query.filter(Activity.category == category)
        if mood:
            query = query.filter(Activity.mood == mood)
        query = query.order_by(Activity.created_at.desc(), Activity.id.desc())
        rows, pagination = _paginate(query, page, limit)
        return {
            "status": "ok",
            "count": len(rows),
            "activities": [serialize_activity(row) for row in rows],
            "pagination": pagination,
        }
    finally:
        db.close()


@service_tool
def list_my_activities(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    context: Optional[RequestContext] = None,
) -> dict:
    """Activity feed across every active relationship of the actor."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        relationship_ids = (
            db.query(Relationship.id)
            .filter(Relationship.status == RelationshipStatus.active.value)
            .filter(or_(Relationship.initiator_id == actor_id, Relationship.partner_id == actor_id))
        )
        query = (
            db.query(Activity)
            .filter(Activity.relationship_id.in_(relationship_ids.scalar_subquery()))
            .order_by(Activity.created_at.desc(), Activity.id.desc())
        )
        rows, pagination = _paginate(query, page, limit)
        logger.debug("activity_feed", extra={"user_id": actor_id, "count": len(rows)})
        return {
            "status": "ok",
            "count": len(rows),
            "activities": [serialize_activity(row) for row in rows],
            "pagination": pagination,
        }
    finally:
        db.close()


@service_tool
def get_activity(activity_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        activity, _ = _load_activity(db, activity_id, actor_id)
        return {"status": "ok", "activity": serialize_activity(activity)}
    finally:
        db.close()
