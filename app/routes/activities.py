"""
Activity endpoints and the cross-relationship feed.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_request_context
from app.schemas import (
    CommentRequest,
    CreateActivityRequest,
    ReactionRequest,
    UpdateActivityRequest,
    body_values,
    changed_fields,
    plain_value,
)
from core.context import RequestContext
from core.services import activities as activity_service


router = APIRouter(tags=["activities"])


@router.post("/relationships/{relationship_id}/activities", status_code=201)
def create_activity(
    relationship_id: int,
    body: CreateActivityRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return activity_service.create_activity(relationship_id, **body_values(body), context=ctx)


@router.get("/relationships/{relationship_id}/activities")
def list_activities(
    relationship_id: int,
    type: Optional[str] = None,
    category: Optional[str] = None,
    mood: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return activity_service.list_activities(
        relationship_id,
        type=type,
        category=category,
        mood=mood,
        page=page,
        limit=limit,
        context=ctx,
    )


@router.get("/activities/feed")
def list_my_activities(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return activity_service.list_my_activities(page=page, limit=limit, context=ctx)


@router.get("/activities/{activity_id}")
def get_activity(activity_id: int, ctx: RequestContext = Depends(get_request_context)):
    return activity_service.get_activity(activity_id, context=ctx)


@router.put("/activities/{activity_id}")
def update_activity(
    activity_id: int,
    body: UpdateActivityRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return activity_service.update_activity(activity_id, changed_fields(body), context=ctx)


@router.delete("/activities/{activity_id}")
def delete_activity(activity_id: int, ctx: RequestContext = Depends(get_request_context)):
    return activity_service.delete_activity(activity_id, context=ctx)


@router.post("/activities/{activity_id}/reactions")
def add_reaction(
    activity_id: int,
    body: ReactionRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return activity_service.add_reaction(activity_id, type=plain_value(body.type), context=ctx)


@router.post("/activities/{activity_id}/comments", status_code=201)
def add_comment(
    activity_id: int,
    body: CommentRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return activity_service.add_comment(activity_id, body.text, context=ctx)
