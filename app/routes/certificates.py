"""
Certificate endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_request_context
from app.schemas import (
    IssueCertificateRequest,
    RevokeCertificateRequest,
    ShareCertificateRequest,
    body_values,
)
from core.context import RequestContext
from core.services import certificates as certificate_service


router = APIRouter(prefix="/certificates", tags=["certificates"])


@router.post("", status_code=201)
def issue_certificate(body: IssueCertificateRequest, ctx: RequestContext = Depends(get_request_context)):
    return certificate_service.issue_certificate(**body_values(body), context=ctx)


@router.get("")
def list_certificates(
    relationship_id: Optional[int] = None,
    type: Optional[str] = None,
    level: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    ctx: RequestContext = Depends(get_request_context),
):
    return certificate_service.list_certificates(
        relationship_id=relationship_id,
        type=type,
        level=level,
        page=page,
        limit=limit,
        context=ctx,
    )


@router.get("/{certificate_id}")
def get_certificate(certificate_id: int, ctx: RequestContext = Depends(get_request_context)):
    return certificate_service.get_certificate(certificate_id, context=ctx)


@router.post("/{certificate_id}/download")
def download_certificate(certificate_id: int, ctx: RequestContext = Depends(get_request_context)):
    return certificate_service.download_certificate(certificate_id, context=ctx)


@router.post("/{certificate_id}/share")
def share_certificate(
    certificate_id: int,
    body: Optional[ShareCertificateRequest] = None,
    ctx: RequestContext = Depends(get_request_context),
):
    platform = body.platform if body else None
    return certificate_service.share_certificate(certificate_id, platform=platform, context=ctx)


@router.post("/{certificate_id}/revoke")
def revoke_certificate(
    certificate_id: int,
    body: RevokeCertificateRequest,
    ctx: RequestContext = Depends(get_request_context),
):
    return certificate_service.revoke_certificate(certificate_id, body.reason, context=ctx)
