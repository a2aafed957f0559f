"""
Relationship lifecycle endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_request_context
from app.schemas import (
    ProposeRelationshipRequest,
    UpdateRelationshipRequest,
    body_values,
    changed_fields,
)
from core.context import RequestContext
from core.services import certificates as certificate_service
from core.services import relationships as relationship_service


router = APIRouter(prefix="/relationships", tags=["relationships"])


@router.post("", status_code=201)
def propose_relationship(
    body: ProposeRelationshipRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return relationship_service.propose_relationship(**body_values(body), context=ctx)


@router.get("")
def list_relationships(
    status: Optional[str] = None,
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return relationship_service.list_relationships(
        status=status, type=type, page=page, limit=limit, context=ctx
    )


@router.get("/{relationship_id}")
def get_relationship(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.get_relationship(relationship_id, context=ctx)


@router.put("/{relationship_id}")
def update_relationship(
    relationship_id: int,
    body: UpdateRelationshipRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return relationship_service.update_relationship(relationship_id, changed_fields(body), context=ctx)


@router.delete("/{relationship_id}")
def archive_or_delete_relationship(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.archive_or_delete_relationship(relationship_id, context=ctx)


@router.post("/{relationship_id}/accept")
def accept_relationship(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.accept_relationship(relationship_id, context=ctx)


@router.post("/{relationship_id}/decline")
def decline_relationship(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.decline_relationship(relationship_id, context=ctx)


@router.post("/{relationship_id}/breakup")
def request_breakup(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.request_breakup(relationship_id, context=ctx)


@router.post("/{relationship_id}/breakup/confirm")
def confirm_breakup(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.confirm_breakup(relationship_id, context=ctx)


@router.delete("/{relationship_id}/breakup")
def cancel_breakup_request(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return relationship_service.cancel_breakup_request(relationship_id, context=ctx)


@router.get("/{relationship_id}/events")
def list_relationship_events(
    relationship_id: int,
    limit: int = Query(50, ge=1),
    cursor: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return relationship_service.list_relationship_events(
        relationship_id, limit=limit, cursor=cursor, context=ctx
    )


@router.post("/{relationship_id}/certificate", status_code=201)
def generate_relationship_certificate(relationship_id: int, ctx: RequestContext = Depends(get_request_context)):
    return certificate_service.generate_relationship_certificate(relationship_id, context=ctx)
