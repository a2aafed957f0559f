"""
Term endpoints, scoped under their relationship for creation and listing.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.deps import get_request_context
from app.schemas import (
    AgreeTermRequest,
    ProposeTermRequest,
    ReportViolationRequest,
    UpdateTermRequest,
    body_values,
    changed_fields,
)
from core.context import RequestContext
from core.services import terms as term_service


router = APIRouter(tags=["terms"])


@router.post("/relationships/{relationship_id}/terms", status_code=201)
def propose_term(
    relationship_id: int,
    body: ProposeTermRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return term_service.propose_term(relationship_id, **body_values(body), context=ctx)


@router.get("/relationships/{relationship_id}/terms")
def list_terms(
    relationship_id: int,
    status: Optional[str] = None,
    category: Optional[str] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    return term_service.list_terms(relationship_id, status=status, category=category, context=ctx)


@router.get("/terms/{term_id}")
def get_term(term_id: int, ctx: RequestContext = Depends(get_request_context)):
    return term_service.get_term(term_id, context=ctx)


@router.put("/terms/{term_id}")
def update_term(term_id: int, body: UpdateTermRequest, ctx: RequestContext = Depends(get_request_context)):
    return term_service.update_term(term_id, changed_fields(body), context=ctx)


@router.delete("/terms/{term_id}")
def delete_term(term_id: int, ctx: RequestContext = Depends(get_request_context)):
    return term_service.delete_term(term_id, context=ctx)


@router.post("/terms/{term_id}/agree")
def agree_term(
    term_id: int,
    body: Optional[AgreeTermRequest] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    signature = body.signature if body else None
    return term_service.agree_term(term_id, signature=signature, context=ctx)


@router.post("/terms/{term_id}/violations", status_code=201)
def report_violation(
    term_id: int,
    body: ReportViolationRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return term_service.report_violation(term_id, **body_values(body), context=ctx)
