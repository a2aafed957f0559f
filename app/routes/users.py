"""
User directory endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from app.schemas import RegisterUserRequest, body_values
from core.services import users as user_service


router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=201)
def register_user(body: RegisterUserRequest):
    return user_service.register_user(**body_values(body))


@router.get("/lookup")
def find_user_by_email(email: str = Query(..., max_length=255)):
    return user_service.find_user_by_email(email)


@router.get("/{user_id}")
def get_user(user_id: int):
    return user_service.find_user_by_id(user_id)
