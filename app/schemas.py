"""
Request bodies for the HTTP boundary.

Shape checks happen here; business rules stay in core.services.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

import core.config as config
from core.models import (
    ActivityCategory,
    ActivityPrivacy,
    CertificateLevel,
    CertificateType,
    Difficulty,
    MilestoneType,
    Mood,
    Privacy,
    ReactionType,
    RelationshipType,
    TermPriority,
    ViolationSeverity,
    as_naive_utc,
)


class RegisterUserRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=20)
    email: str = Field(..., max_length=255)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar: Optional[str] = None


class ProposeRelationshipRequest(BaseModel):
    partner_email: str = Field(..., max_length=255)
    title: str = Field(..., min_length=1, max_length=config.MAX_TITLE_LENGTH)
    type: RelationshipType = RelationshipType.acquaintance
    description: Optional[str] = None
    privacy: Privacy = Privacy.private
    tags: Optional[list[str]] = None


class UpdateRelationshipRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[RelationshipType] = None
    privacy: Optional[Privacy] = None
    tags: Optional[list[str]] = None
    custom_fields: Optional[dict] = None


class ProposeTermRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=config.MAX_TITLE_LENGTH)
    description: str = Field(..., min_length=1)
    category: str
    priority: TermPriority = TermPriority.medium
    expires_at: Optional[datetime] = None


class UpdateTermRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[TermPriority] = None
    expires_at: Optional[datetime] = None


class AgreeTermRequest(BaseModel):
    signature: Optional[str] = Field(default=None, max_length=255)


class ReportViolationRequest(BaseModel):
    description: str = Field(..., min_length=1)
    severity: ViolationSeverity = ViolationSeverity.minor


class CreateMilestoneRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=config.MAX_TITLE_LENGTH)
    category: str
    description: Optional[str] = None
    type: MilestoneType = MilestoneType.manual
    target_date: Optional[datetime] = None
    criteria: Optional[dict] = None
    rewards: Optional[dict] = None
    difficulty: Difficulty = Difficulty.medium
    tags: Optional[list[str]] = None
    is_template: bool = False
    template_category: Optional[str] = None


class UpdateMilestoneRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    type: Optional[MilestoneType] = None
    status: Optional[str] = None
    target_date: Optional[datetime] = None
    criteria: Optional[dict] = None
    rewards: Optional[dict] = None
    difficulty: Optional[Difficulty] = None
    tags: Optional[list[str]] = None


class AddEvidenceRequest(BaseModel):
    type: str
    url: Optional[str] = None
    description: Optional[str] = None


class CreateActivityRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=config.MAX_TITLE_LENGTH)
    type: str
    description: Optional[str] = None
    category: ActivityCategory = ActivityCategory.shared_activities
    mood: Mood = Mood.neutral
    privacy: ActivityPrivacy = ActivityPrivacy.relationship
    location: Optional[dict] = None
    duration: int = Field(default=0, ge=0)
    media: Optional[list] = None
    tags: Optional[list[str]] = None
    related_milestone_id: Optional[int] = None
    trust_change: Optional[int] = None
    relationship_strength: Optional[int] = None
    is_recurring: bool = False
    recurring_pattern: Optional[dict] = None


class UpdateActivityRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    category: Optional[ActivityCategory] = None
    mood: Optional[Mood] = None
    privacy: Optional[ActivityPrivacy] = None
    location: Optional[dict] = None
    duration: Optional[int] = Field(default=None, ge=0)
    participants: Optional[list] = None
    media: Optional[list] = None
    tags: Optional[list[str]] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[dict] = None


class ReactionRequest(BaseModel):
    type: ReactionType = ReactionType.like


class CommentRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=config.MAX_COMMENT_LENGTH)


class IssueCertificateRequest(BaseModel):
    related_to: str
    related_id: int
    title: str = Field(..., min_length=1, max_length=config.MAX_TITLE_LENGTH)
    type: CertificateType = CertificateType.achievement
    level: CertificateLevel = CertificateLevel.bronze
    description: Optional[str] = None
    criteria: Optional[dict] = None
    design: Optional[dict] = None
    valid_until: Optional[datetime] = None
    custom_data: Optional[dict] = None
    is_public: bool = False
    recipients: Optional[list[int]] = None


class ShareCertificateRequest(BaseModel):
    platform: Optional[str] = None


class RevokeCertificateRequest(BaseModel):
    reason: str = Field(..., min_length=1)


def plain_value(value):
    if isinstance(value, datetime):
        return as_naive_utc(value)
    return value.value if hasattr(value, "value") else value


def changed_fields(body: BaseModel) -> dict:
    """Fields the client actually sent, with enums flattened and datetimes in naive UTC."""
    return {key: plain_value(value) for key, value in body.model_dump(exclude_unset=True).items()}


def body_values(body: BaseModel) -> dict:
    return {key: plain_value(value) for key, value in body.model_dump().items()}
