"""
Notification sink: durable per-recipient mailbox plus the post-commit outbox
coordinators use to fan out lifecycle notifications.

Delivery is best effort. Coordinators queue notifications while they work and
flush them only after their own transaction has committed; a failed delivery
is logged and dropped and never touches the triggering transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import core.config as config
from core.context import RequestContext, resolve_actor_id
from core.db import DB
from core.errors import NotFoundError
from core.models import (
    Notification,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
    enum_values,
    utcnow,
)
from core.services.shared import (
    _iso,
    _paginate,
    _validate_choice,
    _validate_id,
    _validate_metadata,
    _validate_required_text,
    DEFAULT_PAGE_SIZE,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    service_tool,
    logger,
)

# Notification type strings
RELATIONSHIP_INVITE = "relationship_invite"
RELATIONSHIP_ACCEPTED = "relationship_accepted"
RELATIONSHIP_DECLINED = "relationship_declined"
RELATIONSHIP_UPDATED = "relationship_updated"
RELATIONSHIP_ARCHIVED = "relationship_archived"
BREAKUP_REQUEST = "breakup_request"
BREAKUP_CONFIRMED = "breakup_confirmed"
BREAKUP_REQUEST_CANCELED = "breakup_request_canceled"
TERM_PROPOSED = "term_proposed"
TERM_MODIFIED = "term_modified"
TERM_AGREED = "term_agreed"
TERM_VIOLATED = "term_violated"
MILESTONE_CREATED = "milestone_created"
MILESTONE_ACHIEVED = "milestone_achieved"
ACTIVITY_ADDED = "activity_added"
ACTIVITY_REACTION = "activity_reaction"
ACTIVITY_COMMENT = "activity_comment"
CERTIFICATE_EARNED = "certificate_earned"
CERTIFICATE_REVOKED = "certificate_revoked"
SYSTEM = "system"


@dataclass
class PendingNotification:
    recipient_id: int
    type: str
    title: str
    message: str
    category: str
    sender_id: Optional[int] = None
    priority: str = NotificationPriority.medium.value
    action_required: bool = False
    actions: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    expires_at: Optional[datetime] = None


def action(action_type: str, label: str, path: str) -> dict:
    """Build a deep link back into the coordinator that can act on it."""
    return {"type": action_type, "label": label, "url": f"{config.FRONTEND_URL.rstrip('/')}{path}"}


def deliver_notification(item: PendingNotification) -> int:
    """Persist one notification in its own session and return its id."""
    db = DB.SessionLocal()
    try:
        notification = Notification(
            recipient_id=item.recipient_id,
            sender_id=item.sender_id,
            type=item.type,
            title=item.title[:MAX_TITLE_LENGTH],
            message=item.message[:MAX_SHORT_TEXT_LENGTH],
            category=item.category,
            priority=item.priority,
            action_required=item.action_required,
            actions=list(item.actions),
            metadata_=dict(item.metadata),
            expires_at=item.expires_at,
            created_at=utcnow(),
        )
        db.add(notification)
        db.commit()
        return notification.id
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class NotificationOutbox:
    """Collects notifications during a unit of work and flushes after commit."""

    def __init__(self):
        self._pending: list[PendingNotification] = []

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, **kwargs) -> None:
        self._pending.append(PendingNotification(**kwargs))

    def clear(self) -> None:
        self._pending.clear()

    def flush(self) -> int:
        pending, self._pending = self._pending, []
        if not config.NOTIFICATIONS_ENABLED:
            if pending:
                logger.info("notification_dispatch_disabled", extra={"dropped": len(pending)})
            return 0
        delivered = 0
        for item in pending:
            try:
                deliver_notification(item)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "notification_dispatch_failed",
                    extra={
                        "recipient_id": item.recipient_id,
                        "notification_type": item.type,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
        return delivered


def serialize_notification(row: Notification) -> dict:
    return {
        "id": row.id,
        "recipient_id": row.recipient_id,
        "sender_id": row.sender_id,
        "type": row.type,
        "title": row.title,
        "message": row.message,
        "status": row.status,
        "priority": row.priority,
        "category": row.category,
        "metadata": row.metadata_ or {},
        "action_required": row.action_required,
        "actions": row.actions or [],
        "read_at": _iso(row.read_at),
        "expires_at": _iso(row.expires_at),
        "created_at": _iso(row.created_at),
    }


def _load_own_notification(db, notification_id: int, actor_id: int) -> Notification:
    _validate_id(notification_id, "notification_id")
    row = (
        db.query(Notification)
        .filter(Notification.id == notification_id)
        .filter(Notification.recipient_id == actor_id)
        .first()
    )
    if not row:
        raise NotFoundError("Notification not found", data={"notification_id": notification_id})
    return row


@service_tool
def create_notification(
    recipient_id: int,
    type: str,
    title: str,
    message: str,
    category: str = NotificationCategory.system.value,
    sender_id: Optional[int] = None,
    priority: str = NotificationPriority.medium.value,
    action_required: bool = False,
    actions: Optional[list] = None,
    metadata: Optional[dict] = None,
) -> dict:
    """Write a notification straight into a recipient's mailbox."""
    _validate_id(recipient_id, "recipient_id")
    _validate_required_text(type, "type", 40)
    _validate_required_text(title, "title", MAX_TITLE_LENGTH)
    _validate_required_text(message, "message", MAX_SHORT_TEXT_LENGTH)
    _validate_choice(category, "category", enum_values(NotificationCategory))
    _validate_choice(priority, "priority", enum_values(NotificationPriority))
    _validate_metadata(metadata, "metadata")

    notification_id = deliver_notification(
        PendingNotification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            type=type,
            title=title,
            message=message,
            category=category,
            priority=priority,
            action_required=action_required,
            actions=list(actions or []),
            metadata=dict(metadata or {}),
        )
    )
    return {"status": "created", "notification_id": notification_id}


@service_tool
def list_notifications(
    status: Optional[str] = None,
    category: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    context: Optional[RequestContext] = None,
) -> dict:
    """List the actor's notifications, newest first."""
    _validate_choice(status, "status", enum_values(NotificationStatus), required=False)
    _validate_choice(category, "category", enum_values(NotificationCategory), required=False)
    actor_id = resolve_actor_id(context)

    db = DB.SessionLocal()
    try:
        query = db.query(Notification).filter(Notification.recipient_id == actor_id)
        if status:
            query = query.filter(Notification.status == status)
        if category:
            query = query.filter(Notification.category == category)
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
        rows, pagination = _paginate(query, page, limit)
        unread = (
            db.query(Notification)
            .filter(Notification.recipient_id == actor_id)
            .filter(Notification.status == NotificationStatus.unread.value)
            .count()
        )
        return {
            "status": "ok",
            "count": len(rows),
            "unread_count": unread,
            "notifications": [serialize_notification(row) for row in rows],
            "pagination": pagination,
        }
    finally:
        db.close()


@service_tool
def get_notification(notification_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        row = _load_own_notification(db, notification_id, actor_id)
        return {"status": "ok", "notification": serialize_notification(row)}
    finally:
        db.close()


@service_tool
def mark_notification_read(notification_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        row = _load_own_notification(db, notification_id, actor_id)
        if row.status == NotificationStatus.unread.value:
            row.status = NotificationStatus.read.value
            row.read_at = utcnow()
            db.commit()
            db.refresh(row)
        return {"status": "ok", "notification": serialize_notification(row)}
    finally:
        db.close()


@service_tool
def mark_all_notifications_read(context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        updated = (
            db.query(Notification)
            .filter(Notification.recipient_id == actor_id)
            .filter(Notification.status == NotificationStatus.unread.value)
            .update(
                {
                    Notification.status: NotificationStatus.read.value,
                    Notification.read_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return {"status": "ok", "updated": updated}
    finally:
        db.close()


@service_tool
def delete_notification(notification_id: int, context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        row = _load_own_notification(db, notification_id, actor_id)
        db.delete(row)
        db.commit()
        return {"status": "deleted", "notification_id": notification_id}
    finally:
        db.close()


@service_tool
def unread_count(context: Optional[RequestContext] = None) -> dict:
    actor_id = resolve_actor_id(context)
    db = DB.SessionLocal()
    try:
        count = (
            db.query(Notification)
            .filter(Notification.recipient_id == actor_id)
            .filter(Notification.status == NotificationStatus.unread.value)
            .count()
        )
        return {"status": "ok", "unread_count": count}
    finally:
        db.close()
