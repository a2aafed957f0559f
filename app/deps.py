"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header, Request

import core.config as config
from core.context import AuthContext, RequestContext
from core.errors import ForbiddenError


def get_auth_context(request: Request) -> AuthContext:
    """Read the acting user from the actor header; authentication happens upstream."""
    raw = request.headers.get(config.ACTOR_HEADER)
    if raw is None or not raw.strip():
        return AuthContext(actor="anonymous")
    try:
        user_id = int(raw.strip())
    except ValueError as exc:
        raise ForbiddenError(f"{config.ACTOR_HEADER} must be an integer user id") from exc
    if user_id <= 0:
        raise ForbiddenError(f"{config.ACTOR_HEADER} must be a positive user id")
    return AuthContext(user_id=user_id, actor="user")


def get_request_context(
    auth: AuthContext = Depends(get_auth_context),
    x_request_id: Optional[str] = Header(default=None),
) -> RequestContext:
    return RequestContext(
        auth=auth,
        request_id=x_request_id or str(uuid.uuid4()),
        source="http",
    )
