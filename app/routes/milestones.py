"""
Milestone endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.deps import get_request_context
from app.schemas import (
    AddEvidenceRequest,
    CreateMilestoneRequest,
    UpdateMilestoneRequest,
    body_values,
    changed_fields,
)
from core.context import RequestContext
from core.services import milestones as milestone_service


router = APIRouter(tags=["milestones"])


@router.post("/relationships/{relationship_id}/milestones", status_code=201)
def create_milestone(
    relationship_id: int,
    body: CreateMilestoneRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return milestone_service.create_milestone(relationship_id, **body_values(body), context=ctx)


@router.get("/relationships/{relationship_id}/milestones")
def list_milestones(
    relationship_id: int,
    status: Optional[str] = None,
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    overdue_only: bool = False,
    ctx: RequestContext = Depends(get_request_context),
):
    return milestone_service.list_milestones(
        relationship_id,
        status=status,
        category=category,
        difficulty=difficulty,
        overdue_only=overdue_only,
        context=ctx,
    )


@router.get("/milestones/{milestone_id}")
def get_milestone(milestone_id: int, ctx: RequestContext = Depends(get_request_context)):
    return milestone_service.get_milestone(milestone_id, context=ctx)


@router.put("/milestones/{milestone_id}")
def update_milestone(
    milestone_id: int,
    body: UpdateMilestoneRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return milestone_service.update_milestone(milestone_id, changed_fields(body), context=ctx)


@router.delete("/milestones/{milestone_id}")
def delete_milestone(milestone_id: int, ctx: RequestContext = Depends(get_request_context)):
    return milestone_service.delete_milestone(milestone_id, context=ctx)


@router.post("/milestones/{milestone_id}/evidence", status_code=201)
def add_evidence(
    milestone_id: int,
    body: AddEvidenceRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return milestone_service.add_evidence(milestone_id, **body_values(body), context=ctx)


@router.post("/milestones/{milestone_id}/criteria/{criterion_index}/complete")
def complete_criterion(
    milestone_id: int,
    criterion_index: int,
    ctx: RequestContext = Depends(get_request_context),
):
    return milestone_service.complete_criterion(milestone_id, criterion_index, context=ctx)


@router.post("/milestones/{milestone_id}/complete")
def complete_milestone(milestone_id: int, ctx: RequestContext = Depends(get_request_context)):
    return milestone_service.complete_milestone(milestone_id, context=ctx)
