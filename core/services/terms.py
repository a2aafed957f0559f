"""
Term coordinator: agreements proposed inside an active relationship.

A term flips to ``agreed`` exactly when both parties of its relationship hold
an agreement row. Once agreed it is immutable apart from violation reports.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from core.audit_constants import (
    EVENT_TERM_AGREED,
    EVENT_TERM_DELETED,
    EVENT_TERM_MODIFIED,
    EVENT_TERM_PROPOSED,
    EVENT_TERM_VIOLATION_REPORTED,
)
from core.context import RequestContext, resolve_actor_id
from core.db import DB
from core.errors import (
    AlreadyAgreedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationIssue,
)
from core.models import (
    NotificationCategory,
    NotificationPriority,
    Relationship,
    Term,
    TermAgreement,
    TermCategory,
    TermPriority,
    TermStatus,
    TermViolation,
    User,
    ViolationSeverity,
    enum_values,
    utcnow,
)
from core.services.notifications import (
    TERM_AGREED,
    TERM_MODIFIED,
    TERM_PROPOSED,
    TERM_VIOLATED,
    NotificationOutbox,
    action,
)
from core.services.shared import (
    _audit,
    _iso,
    _load_party_relationship,
    _require_active,
    _validate_choice,
    _validate_id,
    _validate_optional_datetime,
    _validate_optional_text,
    _validate_required_text,
    MAX_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    service_tool,
    logger,
)

UPDATABLE_FIELDS = ("title", "description", "category", "priority", "expires_at")
OPEN_STATUSES = (TermStatus.proposed.value, TermStatus.modified.value)


def serialize_term(row: Term, parties: Optional[tuple[int, int]] = None) -> dict:
    agreed_user_ids = {agreement.user_id for agreement in row.agreements}
    return {
        "id": row.id,
        "relationship_id": row.relationship_id,
        "created_by": row.created_by,
        "title": row.title,
        "description": row.description,
        "category": row.category,
        "priority": row.priority,
        "status": row.status,
        "expires_at": _iso(row.expires_at),
        "agreed_by": [
            {
                "user_id": agreement.user_id,
                "agreed_at": _iso(agreement.agreed_at),
                "signature": agreement.signature,
            }
            for agreement in row.agreements
        ],
        "violations": [
            {
                "id": violation.id,
                "reported_by": violation.reported_by,
                "description": violation.description,
                "severity": violation.severity,
                "reported_at": _iso(violation.reported_at),
                "resolved": violation.resolved,
                "resolution": violation.resolution,
            }
            for violation in row.violations
        ],
        "is_fully_agreed": bool(parties) and agreed_user_ids == set(parties),
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _load_term(db, term_id: int, actor_id: int) -> tuple[Term, Relationship]:
    _validate_id(term_id, "term_id")
    term = db.get(Term, term_id)
    if not term:
        raise NotFoundError("Term not found", data={"term_id": term_id})
    relationship = _load_party_relationship(db, term.relationship_id, actor_id)
    return term, relationship


def _require_creator(term: Term, actor_id: int) -> None:
    if term.created_by != actor_id:
        raise ForbiddenError("Only the creator can modify this term", data={"term_id": term.id})


def _actor_name(db, actor_id: int) -> str:
    user = db.get(User, actor_id)
    return user.display_name if user else "Someone"


@service_tool
def propose_term(
    relationship_id: int,
    title: str,
    description: str,
    category: str,
    priority: str = TermPriority.medium.value,
    expires_at: Optional[datetime] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Propose a new term to the other party."""
    _validate_required_text(title, "title", MAX_TITLE_LENGTH)
    _validate_required_text(description, "description", MAX_TEXT_LENGTH)
    _validate_choice(category, "category", enum_values(TermCategory))
    _validate_choice(priority, "priority", enum_values(TermPriority))
    _validate_optional_datetime(expires_at, "expires_at")
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id, require_active=True)
        now = utcnow()
        term = Term(
            relationship_id=relationship.id,
            created_by=actor_id,
            title=title.strip(),
            description=description.strip(),
            category=category,
            priority=priority,
            status=TermStatus.proposed.value,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        db.add(term)
        db.flush()
        _audit(
            db,
            context,
            event_type=EVENT_TERM_PROPOSED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="term",
            target_ids=[term.id],
            metadata={"category": category, "priority": priority},
        )
        db.commit()
        db.refresh(term)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=TERM_PROPOSED,
            title="New Term Proposed",
            message=f'{_actor_name(db, actor_id)} proposed a new term: "{term.title}"',
            category=NotificationCategory.relationship.value,
            action_required=True,
            actions=[action("view", "Review Term", f"/terms/{term.id}")],
            metadata={"relationship_id": relationship.id, "term_id": term.id},
        )
        result = {"status": "created", "term": serialize_term(term, relationship.parties)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def update_term(term_id: int, fields: dict, context: Optional[RequestContext] = None) -> dict:
    """Edit a term; resets it to ``modified`` and clears every agreement."""
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
        _validate_required_text(updates["description"], "description", MAX_TEXT_LENGTH)
        updates["description"] = updates["description"].strip()
    if "category" in updates:
        _validate_choice(updates["category"], "category", enum_values(TermCategory))
    if "priority" in updates:
        _validate_choice(updates["priority"], "priority", enum_values(TermPriority))
    if "expires_at" in updates:
        _validate_optional_datetime(updates["expires_at"], "expires_at")
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        term, relationship = _load_term(db, term_id, actor_id)
        _require_creator(term, actor_id)
        if term.status == TermStatus.agreed.value:
            raise InvalidStateError("Cannot modify an agreed term", data={"term_id": term.id})

        values = {getattr(Term, key): value for key, value in updates.items()}
        values[Term.status] = TermStatus.modified.value
        values[Term.updated_at] = utcnow()
        updated = (
            db.query(Term)
            .filter(Term.id == term.id)
            .filter(Term.status != TermStatus.agreed.value)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            raise InvalidStateError("Cannot modify an agreed term", data={"term_id": term.id})
        db.query(TermAgreement).filter(TermAgreement.term_id == term.id).delete(synchronize_session=False)
        _audit(
            db,
            context,
            event_type=EVENT_TERM_MODIFIED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="term",
            target_ids=[term.id],
            metadata={"fields": sorted(updates)},
        )
        db.commit()
        db.refresh(term)

        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=TERM_MODIFIED,
            title="Term Modified",
            message=f'{_actor_name(db, actor_id)} modified the term "{term.title}"',
            category=NotificationCategory.relationship.value,
            action_required=True,
            actions=[action("view", "Review Term", f"/terms/{term.id}")],
            metadata={"relationship_id": relationship.id, "term_id": term.id},
        )
        result = {"status": "ok", "term": serialize_term(term, relationship.parties)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def agree_term(
    term_id: int,
    signature: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Record the actor's agreement; the term is agreed once both parties have."""
    _validate_optional_text(signature, "signature", 255)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        term, relationship = _load_term(db, term_id, actor_id)
        _require_active(relationship)

        # Row-level guard: serializes agreers and fails once the term left an open status
        now = utcnow()
        touched = (
            db.query(Term)
            .filter(Term.id == term.id)
            .filter(Term.status.in_(OPEN_STATUSES))
            .update({Term.updated_at: now}, synchronize_session=False)
        )
        if touched != 1:
            db.rollback()
            db.refresh(term)
            already = any(agreement.user_id == actor_id for agreement in term.agreements)
            if term.status == TermStatus.agreed.value or already:
                raise AlreadyAgreedError("You have already agreed to this term", data={"term_id": term.id})
            raise InvalidStateError(
                f"Cannot agree to a term that is {term.status}",
                data={"term_id": term.id, "status": term.status},
            )

        existing = (
            db.query(TermAgreement.id)
            .filter(TermAgreement.term_id == term.id)
            .filter(TermAgreement.user_id == actor_id)
            .first()
        )
        if existing:
            raise AlreadyAgreedError("You have already agreed to this term", data={"term_id": term.id})

        db.add(TermAgreement(term_id=term.id, user_id=actor_id, agreed_at=now, signature=signature))
        db.flush()

        agreers = {
            row[0]
            for row in db.query(TermAgreement.user_id).filter(TermAgreement.term_id == term.id).all()
        }
        fully_agreed = agreers == set(relationship.parties)
        if fully_agreed:
            flipped = (
                db.query(Term)
                .filter(Term.id == term.id)
                .filter(Term.status.in_(OPEN_STATUSES))
                .update({Term.status: TermStatus.agreed.value}, synchronize_session=False)
            )
            if flipped != 1:
                raise InvalidStateError("Term changed state concurrently", data={"term_id": term.id})
        _audit(
            db,
            context,
            event_type=EVENT_TERM_AGREED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="term",
            target_ids=[term.id],
            metadata={"fully_agreed": fully_agreed},
        )
        db.commit()
        db.refresh(term)

        name = _actor_name(db, actor_id)
        message = (
            f'The term "{term.title}" is now agreed by both of you'
            if fully_agreed
            else f'{name} agreed to the term "{term.title}"'
        )
        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=TERM_AGREED,
            title="Term Agreed",
            message=message,
            category=NotificationCategory.relationship.value,
            action_required=not fully_agreed,
            actions=[] if fully_agreed else [action("agree", "Agree", f"/terms/{term.id}/agree")],
            metadata={"relationship_id": relationship.id, "term_id": term.id},
        )
        result = {"status": "ok", "term": serialize_term(term, relationship.parties)}
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyAgreedError("You have already agreed to this term", data={"term_id": term_id}) from exc
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def report_violation(
    term_id: int,
    description: str,
    severity: str = ViolationSeverity.minor.value,
    context: Optional[RequestContext] = None,
) -> dict:
    """Append a violation report; allowed whatever the term status."""
    _validate_required_text(description, "description", MAX_TEXT_LENGTH)
    _validate_choice(severity, "severity", enum_values(ViolationSeverity))
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        term, relationship = _load_term(db, term_id, actor_id)
        violation = TermViolation(
            term_id=term.id,
            reported_by=actor_id,
            description=description.strip(),
            severity=severity,
            reported_at=utcnow(),
        )
        db.add(violation)
        db.flush()
        _audit(
            db,
            context,
            event_type=EVENT_TERM_VIOLATION_REPORTED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="term",
            target_ids=[term.id],
            metadata={"severity": severity, "violation_id": violation.id},
        )
        db.commit()
        db.refresh(term)

        severe = severity in (ViolationSeverity.major.value, ViolationSeverity.severe.value)
        outbox.add(
            recipient_id=relationship.other_party(actor_id),
            sender_id=actor_id,
            type=TERM_VIOLATED,
            title="Term Violation Reported",
            message=f'{_actor_name(db, actor_id)} reported a violation of "{term.title}"',
            category=NotificationCategory.relationship.value,
            priority=NotificationPriority.urgent.value if severe else NotificationPriority.high.value,
            metadata={"relationship_id": relationship.id, "term_id": term.id},
        )
        logger.info("term_violation_reported", extra={"term_id": term.id, "severity": severity})
        result = {"status": "created", "term": serialize_term(term, relationship.parties)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def delete_term(term_id: int, context: Optional[RequestContext] = None) -> dict:
    """Delete a term the actor created, unless it has been agreed."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        term, relationship = _load_term(db, term_id, actor_id)
        _require_creator(term, actor_id)
        if term.status == TermStatus.agreed.value:
            raise InvalidStateError("Cannot delete an agreed term", data={"term_id": term.id})

        db.query(TermAgreement).filter(TermAgreement.term_id == term.id).delete(synchronize_session=False)
        db.query(TermViolation).filter(TermViolation.term_id == term.id).delete(synchronize_session=False)
        deleted = (
            db.query(Term)
            .filter(Term.id == term.id)
            .filter(Term.status != TermStatus.agreed.value)
            .delete(synchronize_session=False)
        )
        if deleted != 1:
            raise InvalidStateError("Cannot delete an agreed term", data={"term_id": term.id})
        _audit(
            db,
            context,
            event_type=EVENT_TERM_DELETED,
            actor_id=actor_id,
            relationship_id=relationship.id,
            target_type="term",
            target_ids=[term_id],
        )
        db.commit()
        return {"status": "deleted", "term_id": term_id}
    finally:
        db.close()


@service_tool
def list_terms(
    relationship_id: int,
    status: Optional[str] = None,
    category: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    _validate_choice(status, "status", enum_values(TermStatus), required=False)
    _validate_choice(category, "category", enum_values(TermCategory), required=False)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        query = db.query(Term).filter(Term.relationship_id == relationship.id)
        if status:
            query = query.filter(Term.status == status)
        if category:
            query = query.filter(Term.category == category)
        rows = query.order_by(Term.created_at.desc(), Term.id.desc()).all()
        return {
            "status": "ok",
            "count": len(rows),
            "terms": [serialize_term(row, relationship.parties) for row in rows],
        }
    finally:
        db.close()


@service_tool
def get_term(term_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        term, relationship = _load_term(db, term_id, actor_id)
        return {"status": "ok", "term": serialize_term(term, relationship.parties)}
    finally:
        db.close()
