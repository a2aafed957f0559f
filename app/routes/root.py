"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "BondLedger",
        "version": "0.1.0",
        "description": "Relationship ledger: agreements, milestones, activities and certificates",
        "actor_header": config.ACTOR_HEADER,
        "endpoints": {
            "health": "/health",
            "users": "/users",
            "relationships": "/relationships",
            "terms": "/terms",
            "milestones": "/milestones",
            "activities": "/activities",
            "certificates": "/certificates",
            "notifications": "/notifications",
        },
    }
