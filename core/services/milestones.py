"""
Milestone coordinator.

Completion is a one-way compare-and-set. The winning caller bumps the
relationship's milestones_achieved counter and, when the milestone carries a
certificate reward, issues the certificate in the same transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from core.audit_constants import (
    EVENT_MILESTONE_COMPLETED,
    EVENT_MILESTONE_CREATED,
    EVENT_MILESTONE_DELETED,
)
from core.context import RequestContext, resolve_actor_id
from core.db import DB
from core.errors import (
    AlreadyCompletedError,
    AlreadyDoneError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationIssue,
)
from core.models import (
    Activity,
    CertificateType,
    Difficulty,
    EvidenceType,
    Milestone,
    MilestoneCategory,
    MilestoneStatus,
    MilestoneType,
    NotificationCategory,
    Relationship,
    User,
    enum_values,
    utcnow,
)
from core.services.certificates import (
    MilestoneRef,
    ResolvedSubject,
    create_certificate,
    level_for_difficulty,
)
from core.services.notifications import (
    MILESTONE_ACHIEVED,
    MILESTONE_CREATED,
    NotificationOutbox,
    action,
)
from core.services.shared import (
    _audit,
    _clean_tags,
    _increment_relationship_counter,
    _iso,
    _load_party_relationship,
    _require_active,
    _validate_choice,
    _validate_id,
    _validate_int_range,
    _validate_list,
    _validate_optional_datetime,
    _validate_optional_text,
    _validate_required_text,
    MAX_LIST_ITEMS,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    service_tool,
    logger,
)

UPDATABLE_FIELDS = (
    "title",
    "description",
    "category",
    "type",
    "status",
    "target_date",
    "criteria",
    "rewards",
    "difficulty",
    "tags",
)
# Completion only happens through complete_milestone
SETTABLE_STATUSES = (
    MilestoneStatus.pending.value,
    MilestoneStatus.in_progress.value,
    MilestoneStatus.failed.value,
    MilestoneStatus.archived.value,
)
COMPLETABLE_STATUSES = (MilestoneStatus.pending.value, MilestoneStatus.in_progress.value)


def _normalize_criteria(criteria: Optional[dict]) -> dict:
    criteria = criteria or {}
    if not isinstance(criteria, dict):
        raise ValidationIssue("criteria must be an object", field="criteria", error_type="invalid_type")
    normalized = {}
    for key in ("time_required", "activities_required", "trust_level_required"):
        value = criteria.get(key)
        if value is not None:
            upper = 100 if key == "trust_level_required" else 1_000_000
            _validate_int_range(value, f"criteria.{key}", 0, upper)
        normalized[key] = value
    custom = criteria.get("custom_criteria") or []
    _validate_list(custom, "criteria.custom_criteria", MAX_LIST_ITEMS)
    items = []
    for item in custom:
        if not isinstance(item, dict):
            raise ValidationIssue(
                "criteria.custom_criteria must contain objects",
                field="criteria.custom_criteria",
                error_type="invalid_type",
            )
        _validate_required_text(item.get("name"), "criteria.custom_criteria.name", MAX_TITLE_LENGTH)
        _validate_optional_text(item.get("description"), "criteria.custom_criteria.description", MAX_SHORT_TEXT_LENGTH)
        items.append(
            {
                "name": item["name"].strip(),
                "description": item.get("description") or "",
                "completed": False,
                "completed_by": None,
                "completed_at": None,
            }
        )
    normalized["custom_criteria"] = items
    return normalized


def _carry_criteria_progress(previous: Optional[dict], criteria: dict) -> dict:
    """Keep completion state on custom criteria whose name survives an edit."""
    done = {
        item.get("name"): item
        for item in (previous or {}).get("custom_criteria") or []
        if item.get("completed")
    }
    for item in criteria["custom_criteria"]:
        earlier = done.get(item["name"])
        if earlier is not None:
            item["completed"] = True
            item["completed_by"] = earlier.get("completed_by")
            item["completed_at"] = earlier.get("completed_at")
    return criteria


def _normalize_rewards(rewards: Optional[dict]) -> dict:
    rewards = rewards or {}
    if not isinstance(rewards, dict):
        raise ValidationIssue("rewards must be an object", field="rewards", error_type="invalid_type")
    points = rewards.get("points", 0) or 0
    _validate_int_range(points, "rewards.points", 0, 1_000_000)
    _validate_optional_text(rewards.get("badge"), "rewards.badge", MAX_TITLE_LENGTH)
    custom_rewards = rewards.get("custom_rewards") or []
    _validate_list(custom_rewards, "rewards.custom_rewards", MAX_LIST_ITEMS)
    return {
        "points": points,
        "badge": rewards.get("badge"),
        "certificate": bool(rewards.get("certificate", False)),
        "custom_rewards": list(custom_rewards),
    }


def serialize_milestone(row: Milestone) -> dict:
    return {
        "id": row.id,
        "relationship_id": row.relationship_id,
        "created_by": row.created_by,
        "title": row.title,
        "description": row.description,
        "category": row.category,
        "type": row.type,
        "status": row.status,
        "target_date": _iso(row.target_date),
        "completed_date": _iso(row.completed_date),
        "completed_by": row.completed_by,
        "criteria": row.criteria or {},
        "rewards": row.rewards or {},
        "participants": row.participants or [],
        "evidence": row.evidence or [],
        "is_template": row.is_template,
        "template_category": row.template_category,
        "difficulty": row.difficulty,
        "tags": row.tags or [],
        "progress_percentage": row.progress_percentage,
        "is_overdue": row.is_overdue,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _load_milestone(db, milestone_id: int, actor_id: int) -> tuple[Milestone, Relationship]:
    _validate_id(milestone_id, "milestone_id")
    milestone = db.get(Milestone, milestone_id)
    if not milestone:
        raise NotFoundError("Milestone not found", data={"milestone_id": milestone_id})
    relationship = _load_party_relationship(db, milestone.relationship_id, actor_id)
    return milestone, relationship


def _require_creator(milestone: Milestone, actor_id: int) -> None:
    if milestone.created_by != actor_id:
        raise ForbiddenError("Only the creator can modify this milestone", data={"milestone_id": milestone.id})


def _lock_open_milestone(db, milestone: Milestone) -> None:
    """Take the row's write lock and reload it, failing once it is completed."""
    touched = (
        db.query(Milestone)
        .filter(Milestone.id == milestone.id)
        .filter(Milestone.status != MilestoneStatus.completed.value)
        .update({Milestone.updated_at: utcnow()}, synchronize_session=False)
    )
    if touched != 1:
        raise InvalidStateError("Milestone is already completed", data={"milestone_id": milestone.id})
    db.refresh(milestone)


def _actor_name(db, actor_id: int) -> str:
    user = db.get(User, actor_id)
    return user.display_name if user else "Someone"


@service_tool
def create_milestone(
    relationship_id: int,
    title: str,
    category: str,
    description: Optional[str] = None,
    type: str = MilestoneType.manual.value,
    target_date: Optional[datetime] = None,
    criteria: Optional[dict] = None,
    rewards: Optional[dict] = None,
    difficulty: str = Difficulty.medium.value,
    tags: Optional[list] = None,
    is_template: bool = False,
    template_category: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Create a pending milestone on an active relationship."""
    _validate_required_text(title, "title", MAX_TITLE_LENGTH)
    _validate_optional_text(description, "description", MAX_SHORT_TEXT_LENGTH)
    _validate_choice(category, "category", enum_values(MilestoneCategory))
    _validate_choice(type, "type", enum_values(MilestoneType))
    _validate_choice(difficulty, "difficulty", enum_values(Difficulty))
    _validate_optional_datetime(target_date, "target_date")
    _validate_optional_text(template_category, "template_category", MAX_TITLE_LENGTH)
    criteria_value = _normalize_criteria(criteria)
    rewards_value = _normalize_rewards(rewards)
    tags_value = _clean_tags(tags) or []
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id, require_active=True)
        now = utcnow()
        milestone = Milestone(
            relationship_id=relationship.id,
            created_by=actor_id,
            title=title.strip(),
            description=description or "",
            category=category,
            type=type,
            status=MilestoneStatus.pending.value,
            target_date=target_date,
            criteria=criteria_value,
            rewards=rewards_value,
            participants=[],
            evidence=[],
            is_template=is_template,
            template_category=template_category,
            difficulty=difficulty,
            tags=tags_value,
            created_at=now,
            updated_at=now,
        )
        db.add(milestone)
        db.flush()
        _audit(
            db,
            context,
            event_type=EVENT_MILESTONE_CREATED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="milestone",
            target_ids=[milestone.id],
            metadata={"category": category, "difficulty": difficulty},
        )
        db.commit()
        db.refresh(milestone)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=MILESTONE_CREATED,
            title="New Milestone",
            message=f'{_actor_name(db, actor_id)} created a new milestone: "{milestone.title}"',
            category=NotificationCategory.milestone.value,
            actions=[action("view", "View Milestone", f"/milestones/{milestone.id}")],
            metadata={"relationship_id": relationship.id, "milestone_id": milestone.id},
        )
        result = {"status": "created", "milestone": serialize_milestone(milestone)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def update_milestone(milestone_id: int, fields: dict, context: Optional[RequestContext] = None) -> dict:
    """Edit a milestone the actor created; completed milestones are frozen."""
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
    if "category" in updates:
        _validate_choice(updates["category"], "category", enum_values(MilestoneCategory))
    if "type" in updates:
        _validate_choice(updates["type"], "type", enum_values(MilestoneType))
    if "status" in updates:
        _validate_choice(updates["status"], "status", SETTABLE_STATUSES)
    if "difficulty" in updates:
        _validate_choice(updates["difficulty"], "difficulty", enum_values(Difficulty))
    if "target_date" in updates:
        _validate_optional_datetime(updates["target_date"], "target_date")
    if "criteria" in updates:
        updates["criteria"] = _normalize_criteria(updates["criteria"])
    if "rewards" in updates:
        updates["rewards"] = _normalize_rewards(updates["rewards"])
    if "tags" in updates:
        updates["tags"] = _clean_tags(updates["tags"]) or []
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        milestone, _ = _load_milestone(db, milestone_id, actor_id)
        _require_creator(milestone, actor_id)
        if milestone.status == MilestoneStatus.completed.value:
            raise InvalidStateError("Cannot update a completed milestone", data={"milestone_id": milestone.id})
        if "criteria" in updates:
            _lock_open_milestone(db, milestone)
            updates["criteria"] = _carry_criteria_progress(milestone.criteria, updates["criteria"])

        values = {getattr(Milestone, key): value for key, value in updates.items()}
        values[Milestone.updated_at] = utcnow()
        updated = (
            db.query(Milestone)
            .filter(Milestone.id == milestone.id)
            .filter(Milestone.status != MilestoneStatus.completed.value)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise InvalidStateError("Cannot update a completed milestone", data={"milestone_id": milestone.id})
        db.commit()
        db.refresh(milestone)
        return {"status": "ok", "milestone": serialize_milestone(milestone)}
    finally:
        db.close()


@service_tool
def add_evidence(
    milestone_id: int,
    type: str,
    url: Optional[str] = None,
    description: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Append a piece of evidence; either party may add it."""
    _validate_choice(type, "type", enum_values(EvidenceType))
    _validate_optional_text(url, "url", 1000)
    _validate_optional_text(description, "description", MAX_SHORT_TEXT_LENGTH)
    if not url and not description:
        raise ValidationIssue("evidence needs a url or a description", field="url", error_type="required")
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        milestone, _ = _load_milestone(db, milestone_id, actor_id)
        db.query(Milestone).filter(Milestone.id == milestone.id).update(
            {Milestone.updated_at: utcnow()},
            synchronize_session=False,
        )
        db.refresh(milestone)
        evidence = list(milestone.evidence or [])
        if len(evidence) >= MAX_LIST_ITEMS:
            raise ValidationIssue(
                f"evidence exceeds max items {MAX_LIST_ITEMS}",
                field="evidence",
                error_type="max_items",
            )
        evidence.append(
            {
                "type": type,
                "url": url,
                "description": description or "",
                "uploaded_by": actor_id,
                "uploaded_at": utcnow().isoformat(),
            }
        )
        milestone.evidence = evidence
        db.commit()
        db.refresh(milestone)
        return {"status": "created", "milestone": serialize_milestone(milestone)}
    finally:
        db.close()


@service_tool
def complete_criterion(
    milestone_id: int,
    criterion_index: int,
    context: Optional[RequestContext] = None,
) -> dict:
    """Mark one custom criterion as done."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        milestone, _ = _load_milestone(db, milestone_id, actor_id)
        _lock_open_milestone(db, milestone)

        criteria = dict(milestone.criteria or {})
        custom = [dict(item) for item in criteria.get("custom_criteria") or []]
        if isinstance(criterion_index, bool) or not isinstance(criterion_index, int) or not (
            0 <= criterion_index < len(custom)
        ):
            raise ValidationIssue(
                "criterion_index is out of range",
                field="criterion_index",
                error_type="out_of_range",
            )
        item = custom[criterion_index]
        if item.get("completed"):
            raise AlreadyDoneError("Criterion is already completed", data={"criterion_index": criterion_index})
        item.update({"completed": True, "completed_by": actor_id, "completed_at": utcnow().isoformat()})
        criteria["custom_criteria"] = custom
        milestone.criteria = criteria
        if milestone.status == MilestoneStatus.pending.value:
            milestone.status = MilestoneStatus.in_progress.value
        db.commit()
        db.refresh(milestone)
        return {"status": "ok", "milestone": serialize_milestone(milestone)}
    finally:
        db.close()


@service_tool
def complete_milestone(milestone_id: int, context: Optional[RequestContext] = None) -> dict:
    """Complete a milestone exactly once, issuing its certificate reward if any."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        milestone, relationship = _load_milestone(db, milestone_id, actor_id)
        _require_active(relationship)
        if milestone.status == MilestoneStatus.completed.value:
            raise AlreadyCompletedError("Milestone is already completed", data={"milestone_id": milestone.id})

        now = utcnow()
        updated = (
            db.query(Milestone)
            .filter(Milestone.id == milestone.id)
            .filter(Milestone.status.in_(COMPLETABLE_STATUSES))
            .update(
                {
                    Milestone.status: MilestoneStatus.completed.value,
                    Milestone.completed_date: now,
                    Milestone.completed_by: actor_id,
                    Milestone.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            db.rollback()
            db.refresh(milestone)
            if milestone.status == MilestoneStatus.completed.value:
                raise AlreadyCompletedError("Milestone is already completed", data={"milestone_id": milestone.id})
            raise InvalidStateError(
                f"Cannot complete a milestone that is {milestone.status}",
                data={"milestone_id": milestone.id, "status": milestone.status},
            )

        db.refresh(milestone)
        participants = list(milestone.participants or [])
        if not any(item.get("user") == actor_id for item in participants):
            participants.append(
                {"user": actor_id, "contribution": "Completed milestone", "completed_at": now.isoformat()}
            )
            milestone.participants = participants
        _increment_relationship_counter(db, relationship.id, "milestones_achieved")

        certificate = None
        if (milestone.rewards or {}).get("certificate"):
            certificate = create_certificate(
                db,
                ResolvedSubject(
                    ref=MilestoneRef(milestone.id),
                    relationship=relationship,
                    recipient_ids=list(relationship.parties),
                ),
                title=f"{milestone.title} Achievement",
                type=CertificateType.milestone.value,
                level=level_for_difficulty(milestone.difficulty),
                actor_id=actor_id,
                description=f"Awarded for completing the milestone: {milestone.title}",
                criteria={"milestone_category": milestone.category, "difficulty": milestone.difficulty},
                context=context,
                outbox=outbox,
                notification_message=f'You earned a certificate for completing "{milestone.title}"',
            )
        _audit(
            db,
            context,
            event_type=EVENT_MILESTONE_COMPLETED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="milestone",
            target_ids=[milestone.id],
            metadata={"certificate_id": certificate.id if certificate else None},
        )
        db.commit()
        db.refresh(milestone)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=MILESTONE_ACHIEVED,
            title="Milestone Completed",
            message=f'{_actor_name(db, actor_id)} completed the milestone: "{milestone.title}"',
            category=NotificationCategory.milestone.value,
            metadata={"relationship_id": relationship.id, "milestone_id": milestone.id},
        )
        logger.info(
            "milestone_completed",
            extra={"milestone_id": milestone.id, "certificate_id": certificate.id if certificate else None},
        )
        result = {
            "status": "ok",
            "milestone": serialize_milestone(milestone),
            "certificate_id": certificate.id if certificate else None,
        }
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Milestone completion could not be recorded") from exc
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def delete_milestone(milestone_id: int, context: Optional[RequestContext] = None) -> dict:
    """Delete a milestone the actor created, unless it is completed."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        milestone, relationship = _load_milestone(db, milestone_id, actor_id)
        _require_creator(milestone, actor_id)
        if milestone.status == MilestoneStatus.completed.value:
            raise InvalidStateError("Cannot delete a completed milestone", data={"milestone_id": milestone.id})

        db.query(Activity).filter(Activity.related_milestone_id == milestone.id).update(
            {Activity.related_milestone_id: None},
            synchronize_session=False,
        )
        deleted = (
            db.query(Milestone)
            .filter(Milestone.id == milestone.id)
            .filter(Milestone.status != MilestoneStatus.completed.value)
            .delete(synchronize_session=False)
        )
        if deleted != 1:
            raise InvalidStateError("Cannot delete a completed milestone", data={"milestone_id": milestone.id})
        _audit(
            db,
            context,
            event_type=EVENT_MILESTONE_DELETED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="milestone",
            target_ids=[milestone_id],
        )
        db.commit()
        return {"status": "deleted", "milestone_id": milestone_id}
    finally:
        db.close()


@service_tool
def list_milestones(
    relationship_id: int,
    status: Optional[str] = None,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    overdue_only: bool = False,
    context: Optional[RequestContext] = None,
) -> dict:
    """Milestones of a relationship, soonest target date first, undated ones leading."""
    _validate_choice(status, "status", enum_values(MilestoneStatus), required=False)
    _validate_choice(category, "category", enum_values(MilestoneCategory), required=False)
    _validate_choice(difficulty, "difficulty", enum_values(Difficulty), required=False)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        query = db.query(Milestone).filter(Milestone.relationship_id == relationship.id)
        if status:
            query = query.filter(Milestone.status == status)
        if category:
            query = query.filter(Milestone.category == category)
        if difficulty:
            query = query.filter(Milestone.difficulty == difficulty)
        rows = query.order_by(
            Milestone.target_date.asc().nullsfirst(),
            Milestone.created_at.desc(),
            Milestone.id.desc(),
        ).all()
        if overdue_only:
            rows = [row for row in rows if row.is_overdue]
        return {
            "status": "ok",
            "count": len(rows),
            "milestones": [serialize_milestone(row) for row in rows],
        }
    finally:
        db.close()


@service_tool
def get_milestone(milestone_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        milestone, _ = _load_milestone(db, milestone_id, actor_id)
        return {"status": "ok", "milestone": serialize_milestone(milestone)}
    finally:
        db.close()
