"""Health check endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Liveness probe for the relay service."""

    return {"ok": True, "service": "media-lookup"}
