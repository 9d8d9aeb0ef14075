"""
Health endpoint for the connector.

Exposes an unsigned liveness/readiness check at "/health". Besides a static status and a UTC
timestamp the payload reports whether the provider's background workers are running, which
makes a stopped scheduler visible to orchestrators without reading the logs.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """
    Return a simple health status payload.

    Returns:
        Dict[str, Any]: `status` ("ok"), `timestamp` (ISO-8601, UTC) and `provider_running`.
    """
    provider = getattr(request.app.state, "provider", None)
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "provider_running": bool(provider is not None and provider.running),
    }
