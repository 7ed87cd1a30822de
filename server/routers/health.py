"""
Health check endpoints for production deployment.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (can the app handle requests?)
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_game_store = None
_backend = "memory"


def set_health_dependencies(game_store=None, backend: str = "memory"):
    """Set dependencies for health checks."""
    global _game_store, _backend
    _game_store = game_store
    _backend = backend


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can rooms be created and played?

    Pings the game store backend and counts its rooms. Returns 503 if the
    store is missing or unreachable.
    """
    checks = {}
    overall_healthy = True

    if _game_store is not None:
        store_check = {"status": "ok", "backend": _backend}
        try:
            if not await _game_store.ping():
                store_check["status"] = "error"
            else:
                store_check["rooms"] = len(await _game_store.room_ids())
        except Exception as e:
            logger.warning(f"Store health check failed: {e}")
            store_check = {"status": "error", "backend": _backend, "message": str(e)}
        checks["store"] = store_check
        overall_healthy = store_check["status"] == "ok"
    else:
        checks["store"] = {"status": "not_configured"}
        overall_healthy = False

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )
