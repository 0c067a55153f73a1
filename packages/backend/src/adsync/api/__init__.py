"""API route aggregation.

All routers registered here get mounted in main.py. The CRUD surface
(accounts, ads, feeds) is served by the accounts service; this process only
exposes health/introspection next to the WebSocket endpoint.
"""

from fastapi import APIRouter

from adsync.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
