"""
Configuration Schemas.

Pydantic models defining the expected structure of each YAML config file.
Used by AppConfig to validate configuration at load time. If a YAML file
has missing keys, wrong types, or unknown fields, a clear ValidationError
is raised at startup instead of a cryptic KeyError deep in application code.

Each top-level class corresponds to one file in config/settings/:
    ApplicationSchema    → application.yaml
    DatabaseSchema       → database.yaml
    LoggingSchema        → logging.yaml
    FeaturesSchema       → features.yaml
    ObservabilitySchema  → observability.yaml
    EventsSchema         → events.yaml

The events.yaml schemas carry defaults matching the shipped settings so
services can be constructed in isolation (tests, one-off scripts) with
`EventsSchema()`.
"""

from pydantic import BaseModel, ConfigDict, Field


class _StrictBase(BaseModel):
    """Base with extra='forbid' so unknown YAML keys are caught immediately."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# application.yaml
# =============================================================================


class ServerSchema(_StrictBase):
    host: str
    port: int


class CorsSchema(_StrictBase):
    origins: list[str]


class PaginationSchema(_StrictBase):
    default_limit: int
    max_limit: int


class TimeoutsSchema(_StrictBase):
    database: int
    external_api: int
    background: int


class ApplicationSchema(_StrictBase):
    name: str
    version: str
    description: str
    environment: str
    debug: bool
    api_prefix: str
    docs_enabled: bool
    server: ServerSchema
    cors: CorsSchema
    pagination: PaginationSchema
    timeouts: TimeoutsSchema


# =============================================================================
# database.yaml
# =============================================================================


class BrokerSchema(_StrictBase):
    queue_name: str
    result_expiry_seconds: int


class RedisSchema(_StrictBase):
    host: str
    port: int
    db: int
    broker: BrokerSchema


class DatabaseSchema(_StrictBase):
    host: str
    port: int
    name: str
    user: str
    pool_size: int
    max_overflow: int
    pool_timeout: int
    pool_recycle: int
    echo: bool
    echo_pool: bool
    redis: RedisSchema


# =============================================================================
# logging.yaml
# =============================================================================


class ConsoleHandlerSchema(_StrictBase):
    enabled: bool


class FileHandlerSchema(_StrictBase):
    enabled: bool
    path: str
    max_bytes: int
    backup_count: int


class HandlersSchema(_StrictBase):
    console: ConsoleHandlerSchema
    file: FileHandlerSchema


class LoggingSchema(_StrictBase):
    level: str
    format: str
    handlers: HandlersSchema


# =============================================================================
# features.yaml
# =============================================================================


class FeaturesSchema(_StrictBase):
    api_detailed_errors: bool
    api_request_logging: bool
    events_enabled: bool
    events_publish_enabled: bool
    events_recovery_on_startup: bool
    monitoring_api_enabled: bool


# =============================================================================
# observability.yaml
# =============================================================================


class HealthChecksSchema(_StrictBase):
    ready_timeout_seconds: int


class ObservabilitySchema(_StrictBase):
    health_checks: HealthChecksSchema


# =============================================================================
# events.yaml
# =============================================================================


class EventQueueSchema(_StrictBase):
    name: str = "event-queue"
    default_priority: str = "normal"
    retry_priority: str = "low"


class DeliverySchema(_StrictBase):
    max_retries: int = Field(default=3, ge=0)


class RetrySchema(_StrictBase):
    base_delay_ms: int = Field(default=5000, gt=0)
    max_delay_ms: int = Field(default=300000, gt=0)
    sweep_batch_size: int = Field(default=100, gt=0)
    enqueue_attempts: int = Field(default=3, ge=1)


class SignatureBreakerSchema(_StrictBase):
    failure_threshold: int = Field(default=5, ge=1)
    reset_after_seconds: int = Field(default=1800, gt=0)
    error_signature_length: int = Field(default=100, gt=0)


class BrokerBreakerSchema(_StrictBase):
    fail_max: int = Field(default=5, ge=1)
    timeout_duration: int = Field(default=30, gt=0)


class ClassificationSchema(_StrictBase):
    non_retryable_event_types: list[str] = Field(
        default_factory=lambda: ["CAMPAIGN_CLOSING_COLLECT_ENGAGEMENT_LIKE_AND_RETWEET"],
    )
    non_retryable_error_patterns: list[str] = Field(
        default_factory=lambda: [
            r"rate limit",
            r"too many requests",
            r"\b429\b",
            r"quota",
            r"\b400\b",
            r"bad request",
            r"\b403\b",
            r"forbidden",
        ],
    )


class DeadLetterSchema(_StrictBase):
    type_prefix: str = "DEAD_LETTER_"
    reprocess_max_retries: int = Field(default=1, ge=0)
    default_reprocess_limit: int = Field(default=10, ge=1)


class HandlerRegistrySchema(_StrictBase):
    require_exhaustive: bool = False


class ShutdownSchema(_StrictBase):
    grace_seconds: float = Field(default=5.0, ge=0)


class RecoverySchema(_StrictBase):
    orphan_age_seconds: int = Field(default=300, ge=0)
    recent_update_seconds: int = Field(default=60, ge=0)
    batch_size: int = Field(default=100, gt=0)
    retention_days: int = Field(default=30, gt=0)
    max_recoveries: int = Field(default=3, ge=0)


class MonitoringSchema(_StrictBase):
    stuck_age_minutes: int = Field(default=60, gt=0)
    stuck_threshold: int = Field(default=10, ge=1)
    dead_letter_threshold: int = Field(default=5, ge=1)
    activity_limit: int = Field(default=100, gt=0)


class EventsSchema(_StrictBase):
    queue: EventQueueSchema = Field(default_factory=EventQueueSchema)
    delivery: DeliverySchema = Field(default_factory=DeliverySchema)
    retry: RetrySchema = Field(default_factory=RetrySchema)
    circuit_breaker: SignatureBreakerSchema = Field(default_factory=SignatureBreakerSchema)
    broker_breaker: BrokerBreakerSchema = Field(default_factory=BrokerBreakerSchema)
    classification: ClassificationSchema = Field(default_factory=ClassificationSchema)
    dead_letter: DeadLetterSchema = Field(default_factory=DeadLetterSchema)
    handlers: HandlerRegistrySchema = Field(default_factory=HandlerRegistrySchema)
    shutdown: ShutdownSchema = Field(default_factory=ShutdownSchema)
    recovery: RecoverySchema = Field(default_factory=RecoverySchema)
    monitoring: MonitoringSchema = Field(default_factory=MonitoringSchema)
