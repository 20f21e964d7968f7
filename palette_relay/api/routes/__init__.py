"""API route registration.

Aggregates all API routers into a single router
for inclusion in the main application.
"""

from fastapi import APIRouter

from palette_relay.api.routes.palettes import router as palettes_router
from palette_relay.api.routes.sessions import router as sessions_router
from palette_relay.api.routes.system import router as system_router

# Main API router
api_router = APIRouter()

api_router.include_router(system_router, tags=["System"])
api_router.include_router(palettes_router)
api_router.include_router(sessions_router)

__all__ = ["api_router"]
