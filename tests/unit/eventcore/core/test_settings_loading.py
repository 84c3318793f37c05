"""Unit tests for YAML configuration loading and schema validation.

These read the shipped config/settings/*.yaml, so they run from the
project root (where .project_root lives).
"""

import pytest
from pydantic import ValidationError

from modules.eventcore.core.config import AppConfig, get_redis_url
from modules.eventcore.core.config_schema import EventsSchema, RetrySchema


class TestShippedConfig:
    def test_all_files_validate(self):
        config = AppConfig()
        assert config.application.api_prefix == "/api/v1"
        assert config.database.redis.broker.queue_name

    def test_events_yaml_matches_defaults(self):
        """events.yaml ships the same values as the schema defaults."""
        assert AppConfig().events == EventsSchema()


class TestEventsSchema:
    def test_defaults(self):
        events = EventsSchema()
        assert events.queue.name == "event-queue"
        assert events.delivery.max_retries == 3
        assert events.retry.base_delay_ms == 5000
        assert events.retry.max_delay_ms == 300000
        assert events.circuit_breaker.failure_threshold == 5
        assert events.circuit_breaker.reset_after_seconds == 1800
        assert events.dead_letter.type_prefix == "DEAD_LETTER_"
        assert events.dead_letter.reprocess_max_retries == 1

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            EventsSchema.model_validate({"retry": {"base_delay": 5}})

    def test_non_positive_delay_rejected(self):
        with pytest.raises(ValidationError):
            RetrySchema(base_delay_ms=0)


class TestRedisUrl:
    def test_password_is_optional(self, monkeypatch):
        settings = type("S", (), {"redis_password": ""})()
        monkeypatch.setattr("modules.eventcore.core.config.get_settings", lambda: settings)
        assert get_redis_url() == "redis://localhost:6379/0"

    def test_password_included(self, monkeypatch):
        settings = type("S", (), {"redis_password": "pw"})()
        monkeypatch.setattr("modules.eventcore.core.config.get_settings", lambda: settings)
        assert get_redis_url() == "redis://:pw@localhost:6379/0"
