"""
Notification mailbox endpoints for the acting user.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_request_context
from core.context import RequestContext
from core.services import notifications as notification_service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    status: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return notification_service.list_notifications(
        status=status, category=category, page=page, limit=limit, context=ctx
    )


@router.get("/unread-count")
def unread_count(ctx: RequestContext = Depends(get_request_context)):
    return notification_service.unread_count(context=ctx)


@router.put("/read-all")
def mark_all_notifications_read(ctx: RequestContext = Depends(get_request_context)):
    return notification_service.mark_all_notifications_read(context=ctx)


@router.get("/{notification_id}")
def get_notification(notification_id: int, ctx: RequestContext = Depends(get_request_context)):
    return notification_service.get_notification(notification_id, context=ctx)


@router.put("/{notification_id}/read")
def mark_notification_read(notification_id: int, ctx: RequestContext = Depends(get_request_context)):
    return notification_service.mark_notification_read(notification_id, context=ctx)


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, ctx: RequestContext = Depends(get_request_context)):
    return notification_service.delete_notification(notification_id, context=ctx)
