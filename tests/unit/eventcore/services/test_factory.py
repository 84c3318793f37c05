"""Unit tests for build_event_services wiring."""

from unittest.mock import MagicMock

from modules.eventcore.events.handlers import HandlerRegistry
from modules.eventcore.services.factory import build_event_services


def _build(events_config, features, **kwargs):
    return build_event_services(
        broker=MagicMock(),
        session_factory=MagicMock(),
        events_config=events_config,
        features=features,
        **kwargs,
    )


def test_services_share_store_and_shutdown(events_config, features):
    services = _build(events_config, features)

    assert services.publisher.store is services.store
    assert services.coordinator.store is services.store
    assert services.retry_scheduler.shutdown is services.shutdown
    assert services.consumer.shutdown_state is services.shutdown
    assert services.coordinator.breakers is services.breakers
    assert services.consumer.grace_seconds == events_config.shutdown.grace_seconds


def test_default_handlers_registered(events_config, features):
    services = _build(events_config, features)
    assert services.registry.get("CAMPAIGN_DRAFT_SUCCESS") is not None


def test_custom_registry_used(events_config, features):
    registry = HandlerRegistry()
    assert _build(events_config, features, registry=registry).registry is registry


def test_publish_flag(events_config, features):
    assert _build(events_config, features).publisher.publish_enabled is True

    features.events_publish_enabled = False
    assert _build(events_config, features).publisher.publish_enabled is False

    features.events_publish_enabled = True
    features.events_enabled = False
    assert _build(events_config, features).publisher.publish_enabled is False


def test_breaker_settings_from_config(events_config, features):
    events_config.circuit_breaker.failure_threshold = 2
    services = _build(events_config, features)
    assert services.breakers.failure_threshold == 2
