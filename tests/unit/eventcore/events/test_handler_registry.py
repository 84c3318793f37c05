"""Unit tests for HandlerRegistry and the default handlers."""

from unittest.mock import AsyncMock

import pytest

from modules.eventcore.core.exceptions import ConfigurationError
from modules.eventcore.events.consumers.defaults import register_default_handlers
from modules.eventcore.events.handlers import HandlerRegistry
from modules.eventcore.events.types import EventType


class TestRegister:
    def test_unknown_type_rejected(self):
        with pytest.raises(ConfigurationError):
            HandlerRegistry().register("NOT_A_TYPE", AsyncMock())

    def test_decorator_registers(self):
        registry = HandlerRegistry()

        @registry.handles(EventType.CAMPAIGN_PUBLISH_ERROR)
        async def on_error(event_type, payload):
            pass

        assert registry.get("CAMPAIGN_PUBLISH_ERROR") is on_error

    def test_later_registration_replaces(self):
        registry = HandlerRegistry()
        first, second = AsyncMock(), AsyncMock()
        registry.register(EventType.CAMPAIGN_PUBLISH_CONTENT, first)
        registry.register("CAMPAIGN_PUBLISH_CONTENT", second)
        assert registry.get(EventType.CAMPAIGN_PUBLISH_CONTENT) is second


class TestValidate:
    def test_exhaustive_requires_every_type(self):
        registry = HandlerRegistry()
        register_default_handlers(registry)

        with pytest.raises(ConfigurationError, match="CAMPAIGN_PUBLISH_CONTENT"):
            registry.validate(require_exhaustive=True)

    def test_non_exhaustive_only_warns(self):
        registry = HandlerRegistry()
        registry.validate(require_exhaustive=False)
        assert len(registry.missing()) == len(EventType)

    def test_fully_registered_passes(self):
        registry = HandlerRegistry()
        for member in EventType:
            registry.register(member, AsyncMock())
        registry.validate(require_exhaustive=True)
        assert registry.missing() == []


class TestDispatch:
    @pytest.mark.asyncio
    async def test_calls_handler(self):
        registry = HandlerRegistry()
        handler = AsyncMock()
        registry.register(EventType.CAMPAIGN_DRAFT_SUCCESS, handler)

        await registry.dispatch("CAMPAIGN_DRAFT_SUCCESS", {"campaign_id": 3})

        handler.assert_awaited_once_with("CAMPAIGN_DRAFT_SUCCESS", {"campaign_id": 3})

    @pytest.mark.asyncio
    async def test_unknown_type_is_skipped(self):
        await HandlerRegistry().dispatch("SOMETHING_ELSE", {})

    @pytest.mark.asyncio
    async def test_handler_error_propagates(self):
        registry = HandlerRegistry()
        registry.register(EventType.CAMPAIGN_PUBLISH_CONTENT, AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await registry.dispatch("CAMPAIGN_PUBLISH_CONTENT", {})

    @pytest.mark.asyncio
    async def test_default_handlers_accept_payload(self):
        registry = HandlerRegistry()
        register_default_handlers(registry)
        await registry.dispatch("CAMPAIGNER_HABR_BALANCE_UPDATE", {"campaigner_id": 1, "balance": "10"})
