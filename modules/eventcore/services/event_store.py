"""
Event Record Store.

Durable persistence for outbox records. Every operation runs in its own
session and commits on success, so callers never hold a transaction open
across a handler call or a broker publish.

Payloads are passed in and out as Python values; JSON serialization of the
`payload` column happens here.

Usage:
    from modules.eventcore.core.database import get_session_factory
    from modules.eventcore.services.event_store import EventStore

    store = EventStore(get_session_factory())
    record = await store.create("CAMPAIGN_PUBLISH_CONTENT", {"id": 1}, metadata)
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.eventcore.core.exceptions import PersistenceError
from modules.eventcore.core.logging import get_logger
from modules.eventcore.core.utils import dump_json
from modules.eventcore.models.event_record import EventRecord, EventStatus
from modules.eventcore.repositories.event_record import EventRecordRepository, RecordFilter

logger = get_logger(__name__)

T = TypeVar("T")


class EventStore:
    """Async store for event records backed by the event_outbox table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _run(
        self,
        operation: str,
        work: Callable[[EventRecordRepository], Awaitable[T]],
        **context: Any,
    ) -> T:
        """
        Execute a repository call in a fresh session and commit.

        Raises:
            PersistenceError: For any SQLAlchemy failure
        """
        try:
            async with self._session_factory() as session:
                result = await work(EventRecordRepository(session))
                await session.commit()
                return result
        except SQLAlchemyError as e:
            logger.error(
                "Event store operation failed",
                extra={"operation": operation, "error": str(e), **context},
            )
            raise PersistenceError(f"Event store operation failed: {operation}") from e

    async def create(
        self,
        event_type: str,
        payload: Any,
        metadata: dict[str, Any],
        status: str = EventStatus.PENDING,
    ) -> EventRecord:
        return await self._run(
            "create",
            lambda repo: repo.create(
                event_type=event_type,
                payload=dump_json(payload),
                delivery_metadata=metadata,
                status=str(status),
            ),
            event_type=event_type,
        )

    async def find(self, record_id: int) -> EventRecord | None:
        return await self._run(
            "find",
            lambda repo: repo.get_by_id_or_none(record_id),
            event_id=record_id,
        )

    async def update(self, record_id: int, **fields: Any) -> EventRecord | None:
        """Update columns of one record. Returns None if the record no longer exists."""
        if "payload" in fields:
            fields["payload"] = dump_json(fields["payload"])
        if "status" in fields:
            fields["status"] = str(fields["status"])
        return await self._run(
            "update",
            lambda repo: repo.update_fields(record_id, **fields),
            event_id=record_id,
        )

    async def delete(self, record_id: int) -> bool:
        return await self._run(
            "delete",
            lambda repo: repo.delete_by_id(record_id),
            event_id=record_id,
        )

    async def count(self, record_filter: RecordFilter | None = None) -> int:
        return await self._run("count", lambda repo: repo.count(record_filter))

    async def group_by(
        self,
        fields: list[str],
        record_filter: RecordFilter | None = None,
    ) -> list[dict[str, Any]]:
        return await self._run("group_by", lambda repo: repo.group_by(fields, record_filter))

    async def find_many(
        self,
        record_filter: RecordFilter | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[EventRecord]:
        return await self._run(
            "find_many",
            lambda repo: repo.find_many(record_filter, limit=limit, offset=offset, newest_first=newest_first),
        )

    async def claim_retry(self, record_id: int) -> bool:
        return await self._run(
            "claim_retry",
            lambda repo: repo.claim_retry(record_id),
            event_id=record_id,
        )

    async def release_claim(self, record_id: int, next_retry_at: datetime) -> bool:
        return await self._run(
            "release_claim",
            lambda repo: repo.release_claim(record_id, next_retry_at),
            event_id=record_id,
        )

    async def purge(self, record_filter: RecordFilter) -> int:
        return await self._run("purge", lambda repo: repo.purge(record_filter))
