"""
Request-scoped context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import contextvars

from core.errors import ForbiddenError


@dataclass(frozen=True)
class AuthContext:
    user_id: Optional[int] = None
    actor: Optional[str] = None


@dataclass(frozen=True)
class RequestContext:
    auth: AuthContext
    request_id: Optional[str] = None
    source: Optional[str] = None

    @staticmethod
    def for_user(user_id: int, source: Optional[str] = None) -> "RequestContext":
        return RequestContext(auth=AuthContext(user_id=user_id, actor="user"), source=source)


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "bondledger_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def resolve_actor_id(context: Optional["RequestContext"]) -> int:
    """Return the acting user id, falling back to the ambient request context."""
    ctx = context or get_current_request_context()
    if ctx is None or ctx.auth is None or ctx.auth.user_id is None:
        raise ForbiddenError("An authenticated user is required for this operation")
    return int(ctx.auth.user_id)


__all__ = [
    "AuthContext",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "resolve_actor_id",
]
