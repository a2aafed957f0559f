"""
BondLedger Database Models
PostgreSQL (production) / SQLite (tests, local) schema
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, Boolean,
    DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _uuid_default() -> str:
    return str(uuid.uuid4())

Base = declarative_base()

# =============================================================================
# Enums
# =============================================================================

class RelationshipType(str, PyEnum):
    acquaintance = "acquaintance"
    friend = "friend"
    close_friend = "close_friend"
    best_friend = "best_friend"
    romantic_interest = "romantic_interest"
    partner = "partner"
    engaged = "engaged"
    married = "married"
    family = "family"
    mentor = "mentor"
    mentee = "mentee"


class RelationshipStatus(str, PyEnum):
    pending = "pending"
    active = "active"
    requested_breakup = "requested_breakup"
    ended = "ended"
    archived = "archived"


class Privacy(str, PyEnum):
    public = "public"
    friends = "friends"
    private = "private"


class TermCategory(str, PyEnum):
    communication = "communication"
    boundaries = "boundaries"
    expectations = "expectations"
    goals = "goals"
    activities = "activities"
    conflict_resolution = "conflict_resolution"
    commitment = "commitment"
    other = "other"


class TermPriority(str, PyEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class TermStatus(str, PyEnum):
    proposed = "proposed"
    agreed = "agreed"
    rejected = "rejected"
    modified = "modified"
    archived = "archived"


class ViolationSeverity(str, PyEnum):
    minor = "minor"
    moderate = "moderate"
    major = "major"
    severe = "severe"


class MilestoneCategory(str, PyEnum):
    time_based = "time_based"
    activity_based = "activity_based"
    trust_based = "trust_based"
    communication = "communication"
    commitment = "commitment"
    achievement = "achievement"
    celebration = "celebration"
    custom = "custom"


class MilestoneType(str, PyEnum):
    automatic = "automatic"
    manual = "manual"
    collaborative = "collaborative"


class MilestoneStatus(str, PyEnum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    archived = "archived"


class Difficulty(str, PyEnum):
    easy = "easy"
    medium = "medium"
    hard = "hard"
    expert = "expert"


class EvidenceType(str, PyEnum):
    photo = "photo"
    video = "video"
    document = "document"
    note = "note"
    link = "link"


class ActivityType(str, PyEnum):
    conversation = "conversation"
    date = "date"
    gift = "gift"
    achievement = "achievement"
    conflict = "conflict"
    resolution = "resolution"
    milestone = "milestone"
    memory = "memory"
    goal = "goal"
    other = "other"


class ActivityCategory(str, PyEnum):
    communication = "communication"
    quality_time = "quality_time"
    physical_touch = "physical_touch"
    acts_of_service = "acts_of_service"
    gifts = "gifts"
    words_of_affirmation = "words_of_affirmation"
    shared_activities = "shared_activities"
    personal_growth = "personal_growth"


class Mood(str, PyEnum):
    very_positive = "very_positive"
    positive = "positive"
    neutral = "neutral"
    negative = "negative"
    very_negative = "very_negative"


class ActivityPrivacy(str, PyEnum):
    public = "public"
    relationship = "relationship"
    private = "private"


class ReactionType(str, PyEnum):
    love = "love"
    like = "like"
    laugh = "laugh"
    wow = "wow"
    sad = "sad"
    angry = "angry"


class CertificateSubjectType(str, PyEnum):
    relationship = "relationship"
    milestone = "milestone"
    user = "user"
    activity = "activity"
    term = "term"


class CertificateType(str, PyEnum):
    milestone = "milestone"
    anniversary = "anniversary"
    achievement = "achievement"
    trust = "trust"
    communication = "communication"
    commitment = "commitment"
    growth = "growth"
    special = "special"
    relationship = "relationship"


class CertificateLevel(str, PyEnum):
    bronze = "bronze"
    silver = "silver"
    gold = "gold"
    platinum = "platinum"
    diamond = "diamond"


class CertificateTemplate(str, PyEnum):
    classic = "classic"
    modern = "modern"
    elegant = "elegant"
    playful = "playful"
    romantic = "romantic"
    friendship = "friendship"


class NotificationStatus(str, PyEnum):
    unread = "unread"
    read = "read"
    archived = "archived"


class NotificationPriority(str, PyEnum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class NotificationCategory(str, PyEnum):
    relationship = "relationship"
    milestone = "milestone"
    activity = "activity"
    system = "system"
    reminder = "reminder"
    achievement = "achievement"


def enum_values(enum_cls) -> tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


# =============================================================================
# Users (identity directory)
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(20), nullable=False)
    email = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    avatar = Column(String(1000), default="")
    bio = Column(String(500), default="")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
        UniqueConstraint("email", name="uq_users_email"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# =============================================================================
# Relationships
# =============================================================================

class Relationship(Base):
    __tablename__ = "relationships"

    id = Column(Integer, primary_key=True)
    initiator_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    partner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # Unordered pair key: min/max of the two party ids
    pair_low = Column(Integer, nullable=False)
    pair_high = Column(Integer, nullable=False)
    type = Column(String(32), nullable=False, default=RelationshipType.acquaintance.value)
    status = Column(String(32), nullable=False, default=RelationshipStatus.pending.value)
    breakup_requested_by = Column(Integer, ForeignKey("users.id"))
    breakup_requested_at = Column(DateTime(timezone=True))
    # Weak reference; certificates are never owned by the relationship
    latest_certificate_id = Column(Integer)
    title = Column(String(100), nullable=False)
    description = Column(String(500), default="")
    privacy = Column(String(16), nullable=False, default=Privacy.private.value)
    tags = Column(JSON_TYPE, default=list)
    custom_fields = Column(JSON_TYPE, default=dict)
    start_date = Column(DateTime(timezone=True), default=utcnow)
    accepted_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))

    # Aggregate stats, only touched through atomic increments
    trust_level = Column(Integer, nullable=False, default=config.DEFAULT_TRUST_LEVEL)
    communication_frequency = Column(String(16), nullable=False, default="occasionally")
    total_activities = Column(Integer, nullable=False, default=0)
    milestones_achieved = Column(Integer, nullable=False, default=0)
    last_interaction = Column(DateTime(timezone=True), default=utcnow)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    initiator = relationship("User", foreign_keys=[initiator_id])
    partner = relationship("User", foreign_keys=[partner_id])

    __table_args__ = (
        UniqueConstraint("pair_low", "pair_high", name="uq_relationships_pair"),
        CheckConstraint("initiator_id <> partner_id", name="check_relationship_distinct_parties"),
        CheckConstraint("trust_level >= 0 AND trust_level <= 100", name="check_trust_level"),
        CheckConstraint(
            "breakup_requested_by IS NULL OR breakup_requested_by = initiator_id "
            "OR breakup_requested_by = partner_id",
            name="check_breakup_requested_by_party",
        ),
        Index("ix_relationships_status", "status"),
        Index("ix_relationships_type", "type"),
        Index("ix_relationships_initiator", "initiator_id"),
        Index("ix_relationships_partner", "partner_id"),
    )

    @property
    def parties(self) -> tuple[int, int]:
        return (self.initiator_id, self.partner_id)

    def includes_user(self, user_id: int) -> bool:
        return user_id in self.parties

    def other_party(self, user_id: int) -> int:
        return self.partner_id if self.initiator_id == user_id else self.initiator_id

    @property
    def duration_days(self) -> int:
        start = as_naive_utc(self.accepted_date or self.start_date) or utcnow()
        end = as_naive_utc(self.end_date) or utcnow()
        return max(0, (end - start).days)


# =============================================================================
# Terms
# =============================================================================

class Term(Base):
    __tablename__ = "terms"

    id = Column(Integer, primary_key=True)
    relationship_id = Column(Integer, ForeignKey("relationships.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(1000), nullable=False)
    category = Column(String(32), nullable=False)
    priority = Column(String(16), nullable=False, default=TermPriority.medium.value)
    status = Column(String(16), nullable=False, default=TermStatus.proposed.value)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    agreements = relationship(
        "TermAgreement",
        back_populates="term",
        cascade="all, delete-orphan",
        order_by="TermAgreement.agreed_at",
    )
    violations = relationship(
        "TermViolation",
        back_populates="term",
        cascade="all, delete-orphan",
        order_by="TermViolation.reported_at",
    )

    __table_args__ = (
        Index("ix_terms_relationship", "relationship_id"),
        Index("ix_terms_status", "status"),
        Index("ix_terms_category", "category"),
    )


class TermAgreement(Base):
    __tablename__ = "term_agreements"

    id = Column(Integer, primary_key=True)
    term_id = Column(Integer, ForeignKey("terms.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    agreed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    signature = Column(String(255))

    term = relationship("Term", back_populates="agreements")

    __table_args__ = (
        UniqueConstraint("term_id", "user_id", name="uq_term_agreements_term_user"),
    )


class TermViolation(Base):
    __tablename__ = "term_violations"

    id = Column(Integer, primary_key=True)
    term_id = Column(Integer, ForeignKey("terms.id"), nullable=False)
    reported_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(String(16), nullable=False, default=ViolationSeverity.minor.value)
    reported_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    resolved = Column(Boolean, default=False, nullable=False)
    resolution = Column(Text)

    term = relationship("Term", back_populates="violations")

    __table_args__ = (
        Index("ix_term_violations_term", "term_id"),
    )


# =============================================================================
# Milestones
# =============================================================================

class Milestone(Base):
    __tablename__ = "milestones"

    id = Column(Integer, primary_key=True)
    relationship_id = Column(Integer, ForeignKey("relationships.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(500), default="")
    category = Column(String(32), nullable=False)
    type = Column(String(16), nullable=False, default=MilestoneType.manual.value)
    status = Column(String(16), nullable=False, default=MilestoneStatus.pending.value)
    target_date = Column(DateTime(timezone=True))
    completed_date = Column(DateTime(timezone=True))
    completed_by = Column(Integer, ForeignKey("users.id"))
    # {time_required, activities_required, trust_level_required, custom_criteria: [...]}
    criteria = Column(JSON_TYPE, default=dict)
    # {points, badge, certificate, custom_rewards}
    rewards = Column(JSON_TYPE, default=dict)
    participants = Column(JSON_TYPE, default=list)
    evidence = Column(JSON_TYPE, default=list)
    is_template = Column(Boolean, default=False, nullable=False)
    template_category = Column(String(100))
    difficulty = Column(String(16), nullable=False, default=Difficulty.medium.value)
    tags = Column(JSON_TYPE, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_milestones_relationship", "relationship_id"),
        Index("ix_milestones_status", "status"),
        Index("ix_milestones_category", "category"),
        Index("ix_milestones_target_date", "target_date"),
    )

    @property
    def custom_criteria(self) -> list:
        return list((self.criteria or {}).get("custom_criteria") or [])

    @property
    def progress_percentage(self) -> int:
        if self.status == MilestoneStatus.completed.value:
            return 100
        if self.status == MilestoneStatus.failed.value:
            return 0
        criteria = self.custom_criteria
        if not criteria:
            return 0
        done = sum(1 for item in criteria if item.get("completed"))
        return round(done * 100 / len(criteria))

    @property
    def is_overdue(self) -> bool:
        target = as_naive_utc(self.target_date)
        return bool(
            target
            and utcnow() > target
            and self.status != MilestoneStatus.completed.value
        )


# =============================================================================
# Activities
# =============================================================================

class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True)
    relationship_id = Column(Integer, ForeignKey("relationships.id"), nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(1000), default="")
    type = Column(String(32), nullable=False)
    category = Column(String(32), nullable=False, default=ActivityCategory.shared_activities.value)
    mood = Column(String(16), nullable=False, default=Mood.neutral.value)
    privacy = Column(String(16), nullable=False, default=ActivityPrivacy.relationship.value)
    location = Column(JSON_TYPE)
    duration = Column(Integer, default=0, nullable=False)
    participants = Column(JSON_TYPE, default=list)
    media = Column(JSON_TYPE, default=list)
    tags = Column(JSON_TYPE, default=list)
    related_milestone_id = Column(Integer, ForeignKey("milestones.id"))
    trust_change = Column(Integer, default=0, nullable=False)
    relationship_strength = Column(Integer, default=0, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurring_pattern = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    reactions = relationship(
        "ActivityReaction",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ActivityReaction.created_at",
    )
    comments = relationship(
        "ActivityComment",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ActivityComment.created_at",
    )

    __table_args__ = (
        CheckConstraint("trust_change >= -10 AND trust_change <= 10", name="check_activity_trust_change"),
        CheckConstraint(
            "relationship_strength >= -10 AND relationship_strength <= 10",
            name="check_activity_relationship_strength",
        ),
        Index("ix_activities_relationship", "relationship_id"),
        Index("ix_activities_created_by", "created_by"),
        Index("ix_activities_type", "type"),
        Index("ix_activities_created_at", "created_at"),
    )


class ActivityReaction(Base):
    __tablename__ = "activity_reactions"

    id = Column(Integer, primary_key=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(16), nullable=False, default=ReactionType.like.value)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    activity = relationship("Activity", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("activity_id", "user_id", name="uq_activity_reactions_activity_user"),
    )


class ActivityComment(Base):
    __tablename__ = "activity_comments"

    id = Column(Integer, primary_key=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    text = Column(String(500), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    activity = relationship("Activity", back_populates="comments")

    __table_args__ = (
        Index("ix_activity_comments_activity", "activity_id"),
    )


# =============================================================================
# Certificates
# =============================================================================

class Certificate(Base):
    __tablename__ = "certificates"

    id = Column(Integer, primary_key=True)
    related_to = Column(String(16), nullable=False)
    related_id = Column(Integer, nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(500), default="")
    type = Column(String(16), nullable=False)
    level = Column(String(16), nullable=False, default=CertificateLevel.bronze.value)
    criteria = Column(JSON_TYPE, default=dict)
    design = Column(JSON_TYPE, default=dict)
    issued_by = Column(String(100))
    certificate_number = Column(String(40), nullable=False)
    valid_until = Column(DateTime(timezone=True))
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime(timezone=True))
    revoked_reason = Column(Text)
    custom_data = Column(JSON_TYPE, default=dict)
    is_public = Column(Boolean, default=False, nullable=False)
    shared_on = Column(JSON_TYPE, default=list)
    view_count = Column(Integer, default=0, nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    share_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    recipients = relationship(
        "CertificateRecipient",
        back_populates="certificate",
        cascade="all, delete-orphan",
        order_by="CertificateRecipient.id",
    )

    __table_args__ = (
        UniqueConstraint("certificate_number", name="uq_certificates_number"),
        Index("ix_certificates_related", "related_to", "related_id"),
        Index("ix_certificates_type", "type"),
        Index("ix_certificates_level", "level"),
    )

    def is_valid(self, now: datetime | None = None) -> bool:
        if self.is_revoked:
            return False
        expiry = as_naive_utc(self.valid_until)
        if expiry is not None and (now or utcnow()) >= expiry:
            return False
        return True

    @property
    def recipient_ids(self) -> list[int]:
        return [recipient.user_id for recipient in self.recipients]


class CertificateRecipient(Base):
    __tablename__ = "certificate_recipients"

    id = Column(Integer, primary_key=True)
    certificate_id = Column(Integer, ForeignKey("certificates.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    awarded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    personal_message = Column(String(500))

    certificate = relationship("Certificate", back_populates="recipients")

    __table_args__ = (
        UniqueConstraint("certificate_id", "user_id", name="uq_certificate_recipients_cert_user"),
        Index("ix_certificate_recipients_user", "user_id"),
    )


# =============================================================================
# Notifications
# =============================================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"))
    type = Column(String(40), nullable=False)
    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    status = Column(String(16), nullable=False, default=NotificationStatus.unread.value)
    priority = Column(String(16), nullable=False, default=NotificationPriority.medium.value)
    category = Column(String(16), nullable=False)
    # Weak references to the entities this notification is about
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    action_required = Column(Boolean, default=False, nullable=False)
    actions = Column(JSON_TYPE, default=list)
    read_at = Column(DateTime(timezone=True))
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_recipient_status", "recipient_id", "status"),
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
        Index("ix_notifications_type", "type"),
    )


# =============================================================================
# Audit Events
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(String(36), primary_key=True, default=_uuid_default)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    relationship_id = Column(Integer)
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON_TYPE, nullable=False)
    reason = Column(Text)
    request_id = Column(String(255))
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
        Index("ix_audit_events_relationship", "relationship_id"),
    )
