"""
API Version 1 Router.

Aggregates all v1 endpoint routers.
"""

from fastapi import APIRouter

from modules.eventcore.api.v1.endpoints import events

router = APIRouter()

# Event monitoring endpoints
router.include_router(events.router, prefix="/events", tags=["events"])
