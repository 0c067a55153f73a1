"""Health check endpoint.

Learn: Reports the connection registry counts and the state of each event
relay. The service is "degraded" when a relay is not consuming — clients
stay connected but stop receiving events until the relay reconnects.
"""

from fastapi import APIRouter, Request

from adsync import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health, live connections and relay states."""
    checks = {"server": "ok", "version": __version__}

    registry = request.app.state.registry
    checks["connections"] = registry.snapshot()

    relays = getattr(request.app.state, "relays", None)
    if relays is None:
        checks["relays"] = "disabled"
        healthy = True
    else:
        checks["relays"] = relays.get_stats()
        healthy = relays.healthy

    status = "healthy" if healthy else "degraded"

    return {"status": status, **checks}
