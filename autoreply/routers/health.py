"""Pipeline health: breaker states, queue depth and worker metrics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/api/health/pipeline")
async def pipeline_health(request: Request) -> dict[str, Any]:
    return await request.app.state.runtime.health()
