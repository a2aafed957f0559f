"""
Canonical audit event type strings.
"""

EVENT_RELATIONSHIP_PROPOSED = "relationship.proposed"
EVENT_RELATIONSHIP_ACCEPTED = "relationship.accepted"
EVENT_RELATIONSHIP_DECLINED = "relationship.declined"
EVENT_RELATIONSHIP_UPDATED = "relationship.updated"
EVENT_RELATIONSHIP_BREAKUP_REQUESTED = "relationship.breakup_requested"
EVENT_RELATIONSHIP_BREAKUP_CONFIRMED = "relationship.breakup_confirmed"
EVENT_RELATIONSHIP_BREAKUP_CANCELED = "relationship.breakup_canceled"
EVENT_RELATIONSHIP_ARCHIVED = "relationship.archived"
EVENT_RELATIONSHIP_DELETED = "relationship.deleted"
EVENT_TERM_PROPOSED = "term.proposed"
EVENT_TERM_MODIFIED = "term.modified"
EVENT_TERM_AGREED = "term.agreed"
EVENT_TERM_VIOLATION_REPORTED = "term.violation_reported"
EVENT_TERM_DELETED = "term.deleted"
EVENT_MILESTONE_CREATED = "milestone.created"
EVENT_MILESTONE_COMPLETED = "milestone.completed"
EVENT_MILESTONE_DELETED = "milestone.deleted"
EVENT_ACTIVITY_CREATED = "activity.created"
EVENT_ACTIVITY_DELETED = "activity.deleted"
EVENT_CERTIFICATE_ISSUED = "certificate.issued"
EVENT_CERTIFICATE_REVOKED = "certificate.revoked"

__all__ = [
    "EVENT_RELATIONSHIP_PROPOSED",
    "EVENT_RELATIONSHIP_ACCEPTED",
    "EVENT_RELATIONSHIP_DECLINED",
    "EVENT_RELATIONSHIP_UPDATED",
    "EVENT_RELATIONSHIP_BREAKUP_REQUESTED",
    "EVENT_RELATIONSHIP_BREAKUP_CONFIRMED",
    "EVENT_RELATIONSHIP_BREAKUP_CANCELED",
    "EVENT_RELATIONSHIP_ARCHIVED",
    "EVENT_RELATIONSHIP_DELETED",
    "EVENT_TERM_PROPOSED",
    "EVENT_TERM_MODIFIED",
    "EVENT_TERM_AGREED",
    "EVENT_TERM_VIOLATION_REPORTED",
    "EVENT_TERM_DELETED",
    "EVENT_MILESTONE_CREATED",
    "EVENT_MILESTONE_COMPLETED",
    "EVENT_MILESTONE_DELETED",
    "EVENT_ACTIVITY_CREATED",
    "EVENT_ACTIVITY_DELETED",
    "EVENT_CERTIFICATE_ISSUED",
    "EVENT_CERTIFICATE_REVOKED",
]
