"""
Health Routes
=============

FastAPI routes for health check endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from ...models.schemas import HealthStatus
from ..gateway import Gateway, get_gateway

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
async def health_check(gateway: Annotated[Gateway, Depends(get_gateway)]) -> HealthStatus:
    """Basic health check with session counters."""
    stats = gateway.transport.get_statistics()
    return HealthStatus(
        status="healthy",
        version=gateway.settings.app_version,
        total_sessions=stats["totalSessions"],
        active_writers=stats["activeWriters"],
        queued_notifications=stats["queuedNotifications"],
    )
