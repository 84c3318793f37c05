"""
Built-in Event Handlers.

Informational events that need no downstream action beyond a log line.
Registered on every worker's registry by `register_default_handlers`.
"""

from typing import Any

from modules.eventcore.core.logging import get_logger
from modules.eventcore.events.handlers import HandlerRegistry
from modules.eventcore.events.types import EventType

logger = get_logger(__name__)


async def log_draft_success(event_type: str, payload: Any) -> None:
    logger.info("Campaign draft created", extra={"payload": payload})


async def log_balance_update(event_type: str, payload: Any) -> None:
    logger.info("Campaigner balance updated", extra={"event_type": event_type, "payload": payload})


def register_default_handlers(registry: HandlerRegistry) -> None:
    registry.register(EventType.CAMPAIGN_DRAFT_SUCCESS, log_draft_success)
    registry.register(EventType.CAMPAIGNER_FUNGIBLE_BALANCE_UPDATE, log_balance_update)
    registry.register(EventType.CAMPAIGNER_HABR_BALANCE_UPDATE, log_balance_update)
