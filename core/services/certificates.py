"""
Certificate issuer.

Certificates are immutable award records. After issuance only the revocation
flag and the view/download/share counters change. The certified subject is a
tagged union of typed references resolved explicitly to its owning
relationship and recipients.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.exc import IntegrityError

import core.config as config
from core.audit_constants import EVENT_CERTIFICATE_ISSUED, EVENT_CERTIFICATE_REVOKED
from core.context import RequestContext, resolve_actor_id
from core.db import DB
from core.errors import (
    AlreadyDoneError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationIssue,
)
from core.models import (
    Activity,
    Certificate,
    CertificateLevel,
    CertificateRecipient,
    CertificateSubjectType,
    CertificateTemplate,
    CertificateType,
    Difficulty,
    Milestone,
    NotificationCategory,
    Relationship,
    Term,
    User,
    enum_values,
    utcnow,
)
from core.services.notifications import (
    CERTIFICATE_EARNED,
    CERTIFICATE_REVOKED,
    NotificationOutbox,
    action,
)
from core.services.shared import (
    _audit,
    _iso,
    _load_party_relationship,
    _paginate,
    _validate_choice,
    _validate_id,
    _validate_metadata,
    _validate_optional_datetime,
    _validate_optional_text,
    _validate_required_text,
    DEFAULT_PAGE_SIZE,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    service_tool,
    logger,
)

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

LEVEL_BY_DIFFICULTY = {
    Difficulty.easy.value: CertificateLevel.bronze.value,
    Difficulty.medium.value: CertificateLevel.silver.value,
    Difficulty.hard.value: CertificateLevel.gold.value,
    Difficulty.expert.value: CertificateLevel.platinum.value,
}

DEFAULT_DESIGN = {
    "template": CertificateTemplate.classic.value,
    "colors": {"primary": "#ec4899", "secondary": "#0ea5e9", "accent": "#f59e0b"},
    "icon": None,
    "background_image": None,
}

RELATIONSHIP_SNAPSHOT_DESIGN = {
    "template": CertificateTemplate.romantic.value,
    "colors": {"primary": "#ec4899", "secondary": "#f0abfc", "accent": "#f59e0b"},
    "icon": "heart",
    "background_image": "/images/certificate-background.png",
}


# =============================================================================
# Subject references
# =============================================================================

@dataclass(frozen=True)
class RelationshipRef:
    relationship_id: int
    kind = CertificateSubjectType.relationship.value

    @property
    def id(self) -> int:
        return self.relationship_id


@dataclass(frozen=True)
class MilestoneRef:
    milestone_id: int
    kind = CertificateSubjectType.milestone.value

    @property
    def id(self) -> int:
        return self.milestone_id


@dataclass(frozen=True)
class ActivityRef:
    activity_id: int
    kind = CertificateSubjectType.activity.value

    @property
    def id(self) -> int:
        return self.activity_id


@dataclass(frozen=True)
class TermRef:
    term_id: int
    kind = CertificateSubjectType.term.value

    @property
    def id(self) -> int:
        return self.term_id


@dataclass(frozen=True)
class UserRef:
    user_id: int
    kind = CertificateSubjectType.user.value

    @property
    def id(self) -> int:
        return self.user_id


SubjectRef = Union[RelationshipRef, MilestoneRef, ActivityRef, TermRef, UserRef]

_REF_TYPES = {
    CertificateSubjectType.relationship.value: RelationshipRef,
    CertificateSubjectType.milestone.value: MilestoneRef,
    CertificateSubjectType.activity.value: ActivityRef,
    CertificateSubjectType.term.value: TermRef,
    CertificateSubjectType.user.value: UserRef,
}


def subject_ref(related_to: str, related_id: int) -> SubjectRef:
    """Build a typed subject reference from its wire form."""
    _validate_choice(related_to, "related_to", enum_values(CertificateSubjectType))
    _validate_id(related_id, "related_id")
    return _REF_TYPES[related_to](related_id)


@dataclass
class ResolvedSubject:
    ref: SubjectRef
    relationship: Optional[Relationship]
    recipient_ids: list[int]


def _resolve_owned(db, model, ref: SubjectRef, label: str) -> ResolvedSubject:
    record = db.get(model, ref.id)
    if not record:
        raise NotFoundError(f"{label} not found", data={"related_id": ref.id})
    relationship = db.get(Relationship, record.relationship_id)
    if not relationship:
        raise NotFoundError("Relationship not found", data={"relationship_id": record.relationship_id})
    return ResolvedSubject(ref=ref, relationship=relationship, recipient_ids=list(relationship.parties))


def resolve_subject(db, ref: SubjectRef) -> ResolvedSubject:
    if isinstance(ref, RelationshipRef):
        relationship = db.get(Relationship, ref.relationship_id)
        if not relationship:
            raise NotFoundError("Relationship not found", data={"relationship_id": ref.relationship_id})
        return ResolvedSubject(ref=ref, relationship=relationship, recipient_ids=list(relationship.parties))
    if isinstance(ref, MilestoneRef):
        return _resolve_owned(db, Milestone, ref, "Milestone")
    if isinstance(ref, ActivityRef):
        return _resolve_owned(db, Activity, ref, "Activity")
    if isinstance(ref, TermRef):
        return _resolve_owned(db, Term, ref, "Term")
    if isinstance(ref, UserRef):
        if not db.get(User, ref.user_id):
            raise NotFoundError("User not found", data={"user_id": ref.user_id})
        return ResolvedSubject(ref=ref, relationship=None, recipient_ids=[ref.user_id])
    raise ValidationIssue("Unsupported certificate subject", field="related_to", error_type="invalid_type")


# =============================================================================
# Certificate numbers
# =============================================================================

def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_certificate_number() -> str:
    """CERT-<base36 ms timestamp>-<5 random base36 chars>, uppercase."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(5))
    return f"CERT-{timestamp}-{suffix}".upper()


def _allocate_certificate_number(db) -> str:
    for attempt in range(config.CERTIFICATE_NUMBER_MAX_ATTEMPTS):
        candidate = generate_certificate_number()
        taken = (
            db.query(Certificate.id)
            .filter(Certificate.certificate_number == candidate)
            .first()
        )
        if not taken:
            return candidate
        logger.info("certificate_number_collision", extra={"attempt": attempt + 1})
    raise ConflictError("Could not allocate a unique certificate number")


# =============================================================================
# Issuance
# =============================================================================

def level_for_difficulty(difficulty: Optional[str]) -> str:
    return LEVEL_BY_DIFFICULTY.get(difficulty or "", CertificateLevel.bronze.value)


def _merge_design(design: Optional[dict], base: dict = DEFAULT_DESIGN) -> dict:
    merged = dict(base)
    merged["colors"] = dict(base["colors"])
    if design:
        template = design.get("template")
        if template is not None:
            _validate_choice(template, "design.template", enum_values(CertificateTemplate))
            merged["template"] = template
        if isinstance(design.get("colors"), dict):
            merged["colors"].update(design["colors"])
        for key in ("icon", "background_image"):
            if key in design:
                merged[key] = design[key]
    return merged


def create_certificate(
    db,
    subject: ResolvedSubject,
    *,
    title: str,
    type: str,
    level: str,
    actor_id: int,
    description: Optional[str] = None,
    criteria: Optional[dict] = None,
    design: Optional[dict] = None,
    valid_until: Optional[datetime] = None,
    custom_data: Optional[dict] = None,
    is_public: bool = False,
    context: Optional[RequestContext] = None,
    outbox: Optional[NotificationOutbox] = None,
    notification_message: Optional[str] = None,
) -> Certificate:
    """Insert a certificate inside the caller's transaction (flush, no commit)."""
    now = utcnow()
    certificate = Certificate(
        related_to=subject.ref.kind,
        related_id=subject.ref.id,
        title=title[:MAX_TITLE_LENGTH],
        description=(description or "")[:MAX_SHORT_TEXT_LENGTH],
        type=type,
        level=level,
        criteria=dict(criteria or {}),
        design=design if design is not None else _merge_design(None),
        issued_by=config.CERTIFICATE_ISSUER,
        certificate_number=_allocate_certificate_number(db),
        valid_until=valid_until,
        custom_data=dict(custom_data or {}),
        is_public=is_public,
        shared_on=[],
        created_at=now,
    )
    certificate.recipients = [
        CertificateRecipient(user_id=user_id, awarded_at=now)
        for user_id in dict.fromkeys(subject.recipient_ids)
    ]
    db.add(certificate)
    db.flush()

    relationship_id = subject.relationship.id if subject.relationship else None
    if relationship_id is not None:
        db.query(Relationship).filter(Relationship.id == relationship_id).update(
            {Relationship.latest_certificate_id: certificate.id},
            synchronize_session=False,
        )

    _audit(
        db,
        context,
        event_type=EVENT_CERTIFICATE_ISSUED,
        actor_id=actor_id,
        relationship_id=relationship_id,
        target_type="certificate",
        target_ids=[certificate.id],
        metadata={"related_to": subject.ref.kind, "related_id": subject.ref.id, "level": level},
    )

    if outbox is not None:
        for recipient_id in certificate.recipient_ids:
            outbox.add(
                recipient_id=recipient_id,
                sender_id=actor_id,
                type=CERTIFICATE_EARNED,
                title="Certificate Earned",
                message=notification_message or f'You earned the certificate "{certificate.title}"',
                category=NotificationCategory.achievement.value,
                actions=[action("view", "View Certificate", f"/certificates/{certificate.id}")],
                metadata={
                    "certificate_id": certificate.id,
                    "relationship_id": relationship_id,
                    "related_to": subject.ref.kind,
                    "related_id": subject.ref.id,
                },
            )
    return certificate


def serialize_certificate(row: Certificate) -> dict:
    return {
        "id": row.id,
        "related_to": row.related_to,
        "related_id": row.related_id,
        "title": row.title,
        "description": row.description,
        "type": row.type,
        "level": row.level,
        "recipients": [
            {
                "user_id": recipient.user_id,
                "awarded_at": _iso(recipient.awarded_at),
                "personal_message": recipient.personal_message,
            }
            for recipient in row.recipients
        ],
        "criteria": row.criteria or {},
        "design": row.design or {},
        "metadata": {
            "issued_by": row.issued_by,
            "certificate_number": row.certificate_number,
            "valid_until": _iso(row.valid_until),
            "is_revoked": row.is_revoked,
            "revoked_at": _iso(row.revoked_at),
            "revoked_reason": row.revoked_reason,
            "custom_data": row.custom_data or {},
        },
        "sharing": {
            "is_public": row.is_public,
            "shared_on": row.shared_on or [],
        },
        "stats": {
            "view_count": row.view_count,
            "download_count": row.download_count,
            "share_count": row.share_count,
        },
        "is_valid": row.is_valid(),
        "created_at": _iso(row.created_at),
    }


def _normalize_recipients(recipients: Optional[list]) -> Optional[list[int]]:
    if recipients is None:
        return None
    if not isinstance(recipients, (list, tuple)) or not recipients:
        raise ValidationIssue("recipients must be a non-empty list", field="recipients", error_type="required")
    for user_id in recipients:
        _validate_id(user_id, "recipients")
    return list(dict.fromkeys(recipients))


def _require_subject_access(subject: ResolvedSubject, actor_id: int) -> None:
    if actor_id not in subject.recipient_ids:
        raise ForbiddenError("Not authorized to issue certificates for this subject")


@service_tool
def issue_certificate(
    related_to: str,
    related_id: int,
    title: str,
    type: str = CertificateType.achievement.value,
    level: str = CertificateLevel.bronze.value,
    description: Optional[str] = None,
    criteria: Optional[dict] = None,
    design: Optional[dict] = None,
    valid_until: Optional[datetime] = None,
    custom_data: Optional[dict] = None,
    is_public: bool = False,
    recipients: Optional[list] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Issue a certificate for a subject.

    Recipients default to every party the subject belongs to; a narrower
    list may name only those parties.
    """
    ref = subject_ref(related_to, related_id)
    _validate_required_text(title, "title", MAX_TITLE_LENGTH)
    _validate_optional_text(description, "description", MAX_SHORT_TEXT_LENGTH)
    _validate_choice(type, "type", enum_values(CertificateType))
    _validate_choice(level, "level", enum_values(CertificateLevel))
    _validate_metadata(criteria, "criteria")
    _validate_metadata(design, "design")
    _validate_metadata(custom_data, "custom_data")
    _validate_optional_datetime(valid_until, "valid_until")
    recipient_ids = _normalize_recipients(recipients)
    design_value = _merge_design(design)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        subject = resolve_subject(db, ref)
        _require_subject_access(subject, actor_id)
        if recipient_ids is not None:
            outsiders = [user_id for user_id in recipient_ids if user_id not in subject.recipient_ids]
            if outsiders:
                raise ValidationIssue(
                    "recipients may only name parties of the certificate subject",
                    field="recipients",
                    error_type="invalid_value",
                )
            subject = replace(subject, recipient_ids=recipient_ids)

        certificate = create_certificate(
            db,
            subject,
            title=title.strip(),
            type=type,
            level=level,
            actor_id=actor_id,
            description=description,
            criteria=criteria,
            design=design_value,
            valid_until=valid_until,
            custom_data=custom_data,
            is_public=is_public,
            context=context,
            outbox=outbox,
        )
        db.commit()
        db.refresh(certificate)
        logger.info("certificate_issued", extra={"certificate_id": certificate.id})
        result = {"status": "created", "certificate": serialize_certificate(certificate)}
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Certificate number already in use") from exc
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def generate_relationship_certificate(relationship_id: int, context: Optional[RequestContext] = None) -> dict:
    """Issue a gold snapshot certificate recording the relationship's current status."""
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        relationship = _load_party_relationship(db, relationship_id, actor_id)
        initiator = db.get(User, relationship.initiator_id)
        partner = db.get(User, relationship.partner_id)
        if not initiator or not partner:
            raise NotFoundError("Could not resolve both parties of the relationship")

        subject = ResolvedSubject(
            ref=RelationshipRef(relationship.id),
            relationship=relationship,
            recipient_ids=list(relationship.parties),
        )
        certificate = create_certificate(
            db,
            subject,
            title=f"Certificate of {relationship.title} Relationship",
            type=CertificateType.relationship.value,
            level=CertificateLevel.gold.value,
            actor_id=actor_id,
            description=(
                f"This certifies the {relationship.title} relationship between "
                f"{initiator.display_name} and {partner.display_name}, "
                f"with a current status of '{relationship.status}'."
            ),
            design=_merge_design(None, RELATIONSHIP_SNAPSHOT_DESIGN),
            custom_data={"relationship_status": relationship.status},
            context=context,
        )
        db.commit()
        db.refresh(certificate)
        result = {"status": "created", "certificate": serialize_certificate(certificate)}
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Certificate number already in use") from exc
    finally:
        db.close()
    return result


# =============================================================================
# Post-issuance operations
# =============================================================================

def is_valid(certificate: Certificate, now: Optional[datetime] = None) -> bool:
    return certificate.is_valid(now)


def _load_certificate_for_recipient(db, certificate_id: int, actor_id: int) -> Certificate:
    _validate_id(certificate_id, "certificate_id")
    certificate = db.get(Certificate, certificate_id)
    if not certificate:
        raise NotFoundError("Certificate not found", data={"certificate_id": certificate_id})
    if actor_id not in certificate.recipient_ids:
        raise ForbiddenError("Not a recipient of this certificate")
    return certificate


def _require_valid(certificate: Certificate) -> None:
    if not certificate.is_valid():
        raise InvalidStateError(
            "Certificate is no longer valid",
            data={"certificate_id": certificate.id, "is_revoked": certificate.is_revoked},
        )


def _subject_relationship_id(db, certificate: Certificate) -> Optional[int]:
    # Subjects may be gone; certificates outlive them
    if certificate.related_to == CertificateSubjectType.relationship.value:
        return certificate.related_id
    model = {
        CertificateSubjectType.milestone.value: Milestone,
        CertificateSubjectType.activity.value: Activity,
        CertificateSubjectType.term.value: Term,
    }.get(certificate.related_to)
    if model is None:
        return None
    row = db.query(model.relationship_id).filter(model.id == certificate.related_id).first()
    return row[0] if row else None


def _increment_counter(db, certificate_id: int, column) -> None:
    db.query(Certificate).filter(Certificate.id == certificate_id).update(
        {column: column + 1},
        synchronize_session=False,
    )


@service_tool
def get_certificate(certificate_id: int, context: Optional[RequestContext] = None) -> dict:
    """Fetch a certificate as a recipient; counts as a view."""
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        certificate = _load_certificate_for_recipient(db, certificate_id, actor_id)
        _require_valid(certificate)
        _increment_counter(db, certificate.id, Certificate.view_count)
        db.commit()
        db.refresh(certificate)
        return {"status": "ok", "certificate": serialize_certificate(certificate)}
    finally:
        db.close()


@service_tool
def download_certificate(certificate_id: int, context: Optional[RequestContext] = None) -> dict:
    """Record a download and return the data a renderer needs."""
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        certificate = _load_certificate_for_recipient(db, certificate_id, actor_id)
        _require_valid(certificate)
        _increment_counter(db, certificate.id, Certificate.download_count)
        db.commit()
        db.refresh(certificate)
        recipients = [db.get(User, user_id) for user_id in certificate.recipient_ids]
        return {
            "status": "ok",
            "certificate": serialize_certificate(certificate),
            "recipient_names": [user.display_name for user in recipients if user],
            "filename": f"certificate-{certificate.certificate_number}.pdf",
        }
    finally:
        db.close()


@service_tool
def share_certificate(
    certificate_id: int,
    platform: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Record a share, remembering the platform it went to."""
    _validate_optional_text(platform, "platform", 50)
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        certificate = _load_certificate_for_recipient(db, certificate_id, actor_id)
        _require_valid(certificate)
        values = {Certificate.share_count: Certificate.share_count + 1}
        platform_value = platform.strip().lower() if platform and platform.strip() else None
        shared_on = list(certificate.shared_on or [])
        if platform_value and platform_value not in shared_on:
            values[Certificate.shared_on] = shared_on + [platform_value]
        db.query(Certificate).filter(Certificate.id == certificate.id).update(
            values,
            synchronize_session=False,
        )
        db.commit()
        db.refresh(certificate)
        return {
            "status": "ok",
            "certificate": serialize_certificate(certificate),
            "share_url": f"{config.FRONTEND_URL.rstrip('/')}/certificates/{certificate.id}/public",
        }
    finally:
        db.close()


@service_tool
def revoke_certificate(
    certificate_id: int,
    reason: str,
    context: Optional[RequestContext] = None,
) -> dict:
    """Revoke a certificate; the only content change allowed after issuance."""
    _validate_required_text(reason, "reason", MAX_SHORT_TEXT_LENGTH)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    outbox = NotificationOutbox()
    try:
        certificate = _load_certificate_for_recipient(db, certificate_id, actor_id)
        updated = (
            db.query(Certificate)
            .filter(Certificate.id == certificate.id)
            .filter(Certificate.is_revoked.is_(False))
            .update(
                {
                    Certificate.is_revoked: True,
                    Certificate.revoked_at: utcnow(),
                    Certificate.revoked_reason: reason.strip(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise AlreadyDoneError("Certificate is already revoked", data={"certificate_id": certificate.id})

        relationship_id = _subject_relationship_id(db, certificate)
        _audit(
            db,
            context,
            event_type=EVENT_CERTIFICATE_REVOKED,
            actor_id=actor_id,
            relationship_id=relationship_id,
            target_type="certificate",
            target_ids=[certificate.id],
        )
        db.commit()
        db.refresh(certificate)

        for recipient_id in certificate.recipient_ids:
            if recipient_id == actor_id:
                continue
            outbox.add(
                recipient_id=recipient_id,
                sender_id=actor_id,
                type=CERTIFICATE_REVOKED,
                title="Certificate Revoked",
                message=f'The certificate "{certificate.title}" was revoked',
                category=NotificationCategory.achievement.value,
                metadata={"certificate_id": certificate.id},
            )
        result = {"status": "revoked", "certificate": serialize_certificate(certificate)}
    finally:
        db.close()
    outbox.flush()
    return result


@service_tool
def list_certificates(
    relationship_id: Optional[int] = None,
    type: Optional[str] = None,
    level: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    context: Optional[RequestContext] = None,
) -> dict:
    """List certificates the actor received, newest first."""
    _validate_choice(type, "type", enum_values(CertificateType), required=False)
    _validate_choice(level, "level", enum_values(CertificateLevel), required=False)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        query = (
            db.query(Certificate)
            .join(CertificateRecipient, CertificateRecipient.certificate_id == Certificate.id)
            .filter(CertificateRecipient.user_id == actor_id)
        )
        if relationship_id is not None:
            _load_party_relationship(db, relationship_id, actor_id)
            query = query.filter(Certificate.related_to == CertificateSubjectType.relationship.value)
            query = query.filter(Certificate.related_id == relationship_id)
        if type:
            query = query.filter(Certificate.type == type)
        if level:
            query = query.filter(Certificate.level == level)
        query = query.order_by(Certificate.created_at.desc(), Certificate.id.desc())
        rows, pagination = _paginate(query, page, limit)
        return {
            "status": "ok",
            "count": len(rows),
            "certificates": [serialize_certificate(row) for row in rows],
            "pagination": pagination,
        }
    finally:
        db.close()
