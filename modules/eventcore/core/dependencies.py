"""
FastAPI Dependencies.

Shared dependencies for request handling.
"""

import uuid
from typing import Annotated

from fastapi import Depends, Header, Request

from modules.eventcore.core.logging import get_logger
from modules.eventcore.services.dead_letter import DeadLetterService
from modules.eventcore.services.factory import EventServices
from modules.eventcore.services.monitoring import EventMonitorService
from modules.eventcore.services.recovery import EventRecoveryService

logger = get_logger(__name__)


async def get_request_id(request: Request, x_request_id: str | None = Header(None)) -> str:
    """
    Request ID for response metadata.

    Prefers the ID bound by RequestContextMiddleware, then the header.
    """
    return getattr(request.state, "request_id", None) or x_request_id or str(uuid.uuid4())


RequestId = Annotated[str, Depends(get_request_id)]


def get_event_services(request: Request) -> EventServices:
    """Event services built during application startup (see main.lifespan)."""
    return request.app.state.event_services


EventServicesDep = Annotated[EventServices, Depends(get_event_services)]


def get_event_monitor(services: EventServicesDep) -> EventMonitorService:
    return services.monitor


def get_dead_letters(services: EventServicesDep) -> DeadLetterService:
    return services.dead_letters


def get_recovery(services: EventServicesDep) -> EventRecoveryService:
    return services.recovery


EventMonitor = Annotated[EventMonitorService, Depends(get_event_monitor)]
DeadLetters = Annotated[DeadLetterService, Depends(get_dead_letters)]
Recovery = Annotated[EventRecoveryService, Depends(get_recovery)]
