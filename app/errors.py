"""
Exception handlers mapping service errors onto JSON responses.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import ServiceError, ValidationIssue


def _error_body(exc, error_type: str, field: str | None = None) -> dict:
    body = {
        "status": "error",
        "error_type": error_type,
        "message": str(exc),
        "field": field,
    }
    if getattr(exc, "data", None):
        body["data"] = exc.data
    return body


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc, exc.error_code))


async def validation_issue_handler(request: Request, exc: ValidationIssue) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc, exc.error_type, field=exc.field),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(ValidationIssue, validation_issue_handler)
