"""
Health endpoints.
"""

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from nas_agent import __version__
from nas_agent.config import settings
from nas_agent.db.models import User
from nas_agent.deps import get_requester, get_zfs
from nas_agent.errors import GatewayError
from nas_agent.services.zfs import ZFSService

router = APIRouter(prefix="/api/v1", tags=["health"])

# Track startup time
_startup_time = time.time()


class HealthResponse(BaseModel):
    """Health check response."""
    msg: str
    status: str
    uptime_seconds: int
    version: str
    hostname: str
    pool_status: Dict[str, Any]
    error: Optional[str] = None


@router.get("/health", response_model=HealthResponse)
def health_check(zfs: ZFSService = Depends(get_zfs)):
    """
    Health check endpoint.

    Returns agent health status including uptime and the default pool's health.
    """
    uptime = int(time.time() - _startup_time)

    pool_status: Dict[str, Any] = {}
    error = None
    try:
        pools = zfs.list_pools()
    except GatewayError as e:
        pools = []
        error = e.message

    pool = next((p for p in pools if p.name == settings.default_pool), None)
    if pool:
        pool_status = {
            "name": pool.name,
            "health": pool.health,
            "free": pool.free,
            "fragmentation": pool.fragmentation
        }

    status = "healthy"
    if error:
        status = "zfs_unavailable"
    elif not pool:
        status = "no_pool"
    elif pool.health != "ONLINE":
        status = "degraded"

    return HealthResponse(
        msg="i am alive",
        status=status,
        uptime_seconds=uptime,
        version=__version__,
        hostname=settings.hostname,
        pool_status=pool_status,
        error=error
    )


@router.get("/health/secured")
def secured_health_check(requester: User = Depends(get_requester)):
    """Health check that requires a valid token."""
    return {"msg": f"Hi! {requester.name}"}
