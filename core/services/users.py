"""
Identity directory services: user records resolved by email or id.
"""

from __future__ import annotations

import re
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from core.db import DB
from core.errors import ConflictError, NotFoundError, ValidationIssue
from core.models import User, utcnow
from core.services.shared import (
    _iso,
    _validate_id,
    _validate_optional_text,
    _validate_required_text,
    service_tool,
    logger,
)
from core.validators import normalize_email

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,20}$")


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "display_name": user.display_name,
        "avatar": user.avatar,
        "bio": user.bio,
        "is_active": user.is_active,
        "created_at": _iso(user.created_at),
    }


def serialize_user_summary(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "avatar": user.avatar,
    }


def lookup_user_by_email(db, email: str) -> Optional[User]:
    value = normalize_email(email)
    return db.query(User).filter(func.lower(User.email) == value).first()


@service_tool
def register_user(
    username: str,
    email: str,
    first_name: str,
    last_name: str,
    bio: Optional[str] = None,
    avatar: Optional[str] = None,
) -> dict:
    """Add a user to the directory."""
    _validate_required_text(username, "username", 20)
    if not USERNAME_PATTERN.match(username.strip()):
        raise ValidationIssue(
            "username may only contain letters, numbers and underscores (3-20 chars)",
            field="username",
            error_type="invalid_value",
        )
    email_value = normalize_email(email)
    _validate_required_text(first_name, "first_name", 50)
    _validate_required_text(last_name, "last_name", 50)
    _validate_optional_text(bio, "bio", 500)
    _validate_optional_text(avatar, "avatar", 1000)

    db = DB.SessionLocal()
    try:
        existing = (
            db.query(User)
            .filter((User.username == username.strip()) | (func.lower(User.email) == email_value))
            .first()
        )
        if existing:
            raise ConflictError("A user with this username or email already exists")

        user = User(
            username=username.strip(),
            email=email_value,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            bio=bio or "",
            avatar=avatar or "",
            created_at=utcnow(),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("user_registered", extra={"user_id": user.id})
        return {"status": "created", "user": serialize_user(user)}
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("A user with this username or email already exists") from exc
    finally:
        db.close()


@service_tool
def find_user_by_email(email: str) -> dict:
    db = DB.SessionLocal()
    try:
        user = lookup_user_by_email(db, email)
        if not user:
            raise NotFoundError("User not found")
        return {"status": "ok", "user": serialize_user(user)}
    finally:
        db.close()


@service_tool
def find_user_by_id(user_id: int) -> dict:
    _validate_id(user_id, "user_id")
    db = DB.SessionLocal()
    try:
        user = db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found", data={"user_id": user_id})
        return {"status": "ok", "user": serialize_user(user)}
    finally:
        db.close()
