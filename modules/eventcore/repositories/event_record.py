"""
Event Record Repository.

Queries over the event_outbox table. Mutations are single statements keyed
by id, so concurrent writers to one record are serialized by the database.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.sql.elements import ColumnElement

from modules.eventcore.core.utils import utc_now
from modules.eventcore.models.event_record import DEFAULT_MAX_RETRIES, EventRecord, EventStatus
from modules.eventcore.repositories.base import BaseRepository


# delivery_metadata keys, read in SQL so budget checks apply before LIMIT.
# Missing keys take the DeliveryMetadata defaults.
def _metadata_int(key: str, default: int) -> ColumnElement[int]:
    return func.coalesce(EventRecord.delivery_metadata[key].as_integer(), default)


def recovery_count() -> ColumnElement[int]:
    return _metadata_int("recoveryCount", 0)


def retry_count() -> ColumnElement[int]:
    return _metadata_int("retryCount", 0)


def max_retries() -> ColumnElement[int]:
    return _metadata_int("maxRetries", DEFAULT_MAX_RETRIES)


@dataclass(frozen=True)
class RecordFilter:
    """Conjunction of optional conditions over event records."""

    statuses: tuple[str, ...] | None = None
    event_type: str | None = None
    created_before: datetime | None = None
    created_after: datetime | None = None
    updated_before: datetime | None = None
    updated_after: datetime | None = None
    due_before: datetime | None = None
    recoveries_below: int | None = None
    recoveries_at_least: int | None = None
    retries_exhausted: bool | None = None

    def clauses(self) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        if self.statuses is not None:
            conditions.append(EventRecord.status.in_([str(s) for s in self.statuses]))
        if self.event_type is not None:
            conditions.append(EventRecord.event_type == self.event_type)
        if self.created_before is not None:
            conditions.append(EventRecord.created_at < self.created_before)
        if self.created_after is not None:
            conditions.append(EventRecord.created_at >= self.created_after)
        if self.updated_before is not None:
            conditions.append(EventRecord.updated_at < self.updated_before)
        if self.updated_after is not None:
            conditions.append(EventRecord.updated_at >= self.updated_after)
        if self.due_before is not None:
            conditions.append(EventRecord.next_retry_at.is_not(None))
            conditions.append(EventRecord.next_retry_at <= self.due_before)
        if self.recoveries_below is not None:
            conditions.append(recovery_count() < self.recoveries_below)
        if self.recoveries_at_least is not None:
            conditions.append(recovery_count() >= self.recoveries_at_least)
        if self.retries_exhausted is not None:
            exhausted = retry_count() >= max_retries()
            conditions.append(exhausted if self.retries_exhausted else ~exhausted)
        return conditions


GROUPABLE_FIELDS = {
    "event_type": EventRecord.event_type,
    "status": EventRecord.status,
}


class EventRecordRepository(BaseRepository[EventRecord]):
    model = EventRecord

    def _filtered(self, stmt: Select, record_filter: RecordFilter | None) -> Select:
        if record_filter is None:
            return stmt
        return stmt.where(*record_filter.clauses())

    async def update_fields(self, id: int, **fields: Any) -> EventRecord | None:
        """Update columns of one record. Returns the refreshed record or None if missing."""
        fields.setdefault("updated_at", utc_now())
        result = await self.session.execute(
            update(EventRecord)
            .where(EventRecord.id == id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        refreshed = await self.session.execute(
            select(EventRecord)
            .where(EventRecord.id == id)
            .execution_options(populate_existing=True)
        )
        return refreshed.scalar_one_or_none()

    async def count(self, record_filter: RecordFilter | None = None) -> int:
        stmt = self._filtered(select(func.count()).select_from(EventRecord), record_filter)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def group_by(
        self,
        fields: list[str],
        record_filter: RecordFilter | None = None,
    ) -> list[dict[str, Any]]:
        """
        Count records per distinct combination of `fields`.

        Raises:
            ValueError: If a field is not groupable
        """
        unknown = [name for name in fields if name not in GROUPABLE_FIELDS]
        if unknown:
            raise ValueError(f"Cannot group event records by {unknown}")

        columns = [GROUPABLE_FIELDS[name] for name in fields]
        stmt = self._filtered(
            select(*columns, func.count().label("count")).group_by(*columns).order_by(*columns),
            record_filter,
        )
        result = await self.session.execute(stmt)
        return [
            {**{name: row[i] for i, name in enumerate(fields)}, "count": int(row[-1])}
            for row in result.all()
        ]

    async def find_many(
        self,
        record_filter: RecordFilter | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[EventRecord]:
        if newest_first:
            order = (EventRecord.created_at.desc(), EventRecord.id.desc())
        else:
            order = (EventRecord.created_at.asc(), EventRecord.id.asc())
        stmt = self._filtered(select(EventRecord), record_filter).order_by(*order).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def claim_retry(self, id: int) -> bool:
        """Move a scheduled retry back to pending. Exactly one caller wins."""
        result = await self.session.execute(
            update(EventRecord)
            .where(
                EventRecord.id == id,
                EventRecord.status == EventStatus.RETRY_SCHEDULED.value,
            )
            .values(status=EventStatus.PENDING.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_claim(self, id: int, next_retry_at: datetime) -> bool:
        """Return a claimed retry to retry_scheduled so the sweep picks it up."""
        result = await self.session.execute(
            update(EventRecord)
            .where(
                EventRecord.id == id,
                EventRecord.status == EventStatus.PENDING.value,
            )
            .values(
                status=EventStatus.RETRY_SCHEDULED.value,
                next_retry_at=next_retry_at,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def purge(self, record_filter: RecordFilter) -> int:
        clauses = record_filter.clauses()
        if not clauses:
            raise ValueError("Refusing to purge event records without a filter")
        result = await self.session.execute(
            delete(EventRecord).where(*clauses).execution_options(synchronize_session=False)
        )
        return int(result.rowcount)
