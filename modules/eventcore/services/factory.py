"""
Event Services Factory.

Builds the object graph for one process: store, broker client, publisher,
coordinator and the services around them. Each process gets its own
breaker registry and shutdown state; nothing here is module-global.

Usage:
    services = build_event_services()
    await services.publisher.publish(EventType.CAMPAIGN_DRAFT_SUCCESS, {"campaign_id": 1})
"""

from dataclasses import dataclass
from datetime import timedelta

from faststream.redis import RedisBroker
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.eventcore.core.concurrency import ShutdownState
from modules.eventcore.core.config_schema import EventsSchema, FeaturesSchema
from modules.eventcore.core.resilience import CircuitBreakerRegistry, create_circuit_breaker
from modules.eventcore.events.broker import BrokerClient
from modules.eventcore.events.bus import LocalEventBus
from modules.eventcore.events.consumers.defaults import register_default_handlers
from modules.eventcore.events.consumers.worker import EventConsumer
from modules.eventcore.events.handlers import HandlerRegistry
from modules.eventcore.events.publishers import EventPublisher
from modules.eventcore.services.classifier import ErrorClassifier
from modules.eventcore.services.coordinator import ProcessingCoordinator
from modules.eventcore.services.dead_letter import DeadLetterService
from modules.eventcore.services.event_store import EventStore
from modules.eventcore.services.monitoring import EventMonitorService
from modules.eventcore.services.recovery import EventRecoveryService
from modules.eventcore.services.retry_scheduler import RetryScheduler


@dataclass
class EventServices:
    store: EventStore
    broker_client: BrokerClient
    bus: LocalEventBus
    publisher: EventPublisher
    registry: HandlerRegistry
    breakers: CircuitBreakerRegistry
    shutdown: ShutdownState
    retry_scheduler: RetryScheduler
    dead_letters: DeadLetterService
    coordinator: ProcessingCoordinator
    consumer: EventConsumer
    recovery: EventRecoveryService
    monitor: EventMonitorService


def build_event_services(
    broker: RedisBroker | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    events_config: EventsSchema | None = None,
    features: FeaturesSchema | None = None,
    registry: HandlerRegistry | None = None,
) -> EventServices:
    """
    Wire the event services.

    Args:
        broker: FastStream broker; defaults to the shared event broker
        session_factory: SQLAlchemy session factory; defaults to the app database
        events_config: events.yaml settings; defaults to loaded config
        features: Feature flags; defaults to loaded config
        registry: Handler registry; a new one with default handlers if omitted
    """
    if events_config is None or features is None:
        from modules.eventcore.core.config import get_app_config

        app_config = get_app_config()
        events_config = events_config or app_config.events
        features = features or app_config.features

    if broker is None:
        from modules.eventcore.events.broker import get_event_broker

        broker = get_event_broker()

    if session_factory is None:
        from modules.eventcore.core.database import get_session_factory

        session_factory = get_session_factory()

    if registry is None:
        registry = HandlerRegistry()
        register_default_handlers(registry)

    store = EventStore(session_factory)
    broker_client = BrokerClient(
        broker,
        create_circuit_breaker(
            "redis-broker",
            fail_max=events_config.broker_breaker.fail_max,
            timeout_duration=events_config.broker_breaker.timeout_duration,
        ),
    )
    bus = LocalEventBus()
    publisher = EventPublisher(
        store,
        broker_client,
        bus,
        events_config,
        publish_enabled=features.events_enabled and features.events_publish_enabled,
    )

    breaker_config = events_config.circuit_breaker
    breakers = CircuitBreakerRegistry(
        failure_threshold=breaker_config.failure_threshold,
        reset_after=timedelta(seconds=breaker_config.reset_after_seconds),
        signature_length=breaker_config.error_signature_length,
    )
    shutdown = ShutdownState()
    retry_scheduler = RetryScheduler(store, publisher, events_config, shutdown=shutdown)
    dead_letters = DeadLetterService(store, publisher, events_config.dead_letter)
    coordinator = ProcessingCoordinator(
        store,
        ErrorClassifier.from_config(events_config.classification),
        breakers,
        dead_letters,
        retry_scheduler,
        events_config,
    )
    consumer = EventConsumer(
        coordinator,
        registry,
        retry_scheduler,
        shutdown,
        grace_seconds=events_config.shutdown.grace_seconds,
    )

    return EventServices(
        store=store,
        broker_client=broker_client,
        bus=bus,
        publisher=publisher,
        registry=registry,
        breakers=breakers,
        shutdown=shutdown,
        retry_scheduler=retry_scheduler,
        dead_letters=dead_letters,
        coordinator=coordinator,
        consumer=consumer,
        recovery=EventRecoveryService(store, publisher, dead_letters, events_config),
        monitor=EventMonitorService(store, publisher, events_config),
    )
