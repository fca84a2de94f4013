"""
Review Queue Storage
====================

Storage backends for the Manual Review Queue, all keyed by content id:
- InMemoryReviewStore: process-local dict (tests, single-process use)
- RedisReviewStore: JSON documents plus a sorted-set index (redis.asyncio)
- SqlReviewStore: relational table via SQLAlchemy, run off the event loop

Every backend offers ``update``, an atomic read-modify-write used for
attempt counting and status changes.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

import redis
import redis.asyncio as aioredis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..core.database import session_scope
from ..core.exceptions import ExternalCallFailure
from ..models.review import ReviewQueueRecord
from .evaluation.types import Verdict
from .review_queue import ReviewQueueItem, ReviewStatus

logger = logging.getLogger(__name__)

# Receives the stored item (or None) and returns the item to store
Mutation = Callable[[ReviewQueueItem | None], ReviewQueueItem]


@runtime_checkable
class ReviewStore(Protocol):
    """Key-value persistence for review queue items."""

    async def get(self, content_id: str) -> ReviewQueueItem | None: ...

    async def save(self, item: ReviewQueueItem) -> None: ...

    async def update(self, content_id: str, mutate: Mutation) -> ReviewQueueItem: ...

    async def delete(self, content_id: str) -> bool: ...

    async def list_by_status(self, status: ReviewStatus) -> list[ReviewQueueItem]: ...


class InMemoryReviewStore:
    """Dict-backed store. ``update`` never yields, so it is atomic on the loop."""

    def __init__(self):
        self._items: dict[str, ReviewQueueItem] = {}

    async def get(self, content_id: str) -> ReviewQueueItem | None:
        return self._items.get(content_id)

    async def save(self, item: ReviewQueueItem) -> None:
        self._items[item.content_id] = item

    async def update(self, content_id: str, mutate: Mutation) -> ReviewQueueItem:
        item = mutate(self._items.get(content_id))
        self._items[content_id] = item
        return item

    async def delete(self, content_id: str) -> bool:
        return self._items.pop(content_id, None) is not None

    async def list_by_status(self, status: ReviewStatus) -> list[ReviewQueueItem]:
        return [item for item in self._items.values() if item.status == status]


class RedisReviewStore:
    """
    Redis-backed store.

    Storage:
    - String key per item holding its JSON document
    - Sorted set of content ids scored by creation time

    ``update`` runs under WATCH/MULTI so concurrent workers never lose an
    attempt; a write that races another is retried.
    """

    ITEM_KEY_PREFIX = "review:item:"
    INDEX_KEY = "review:index"
    MAX_WATCH_RETRIES = 10

    def __init__(self, redis_client):
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisReviewStore":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    def _key(self, content_id: str) -> str:
        return f"{self.ITEM_KEY_PREFIX}{content_id}"

    @staticmethod
    def _decode(data) -> ReviewQueueItem:
        if isinstance(data, bytes):
            data = data.decode()
        return ReviewQueueItem.from_dict(json.loads(data))

    def _queue_write(self, pipe, item: ReviewQueueItem) -> None:
        pipe.set(self._key(item.content_id), json.dumps(item.to_dict()))
        pipe.zadd(self.INDEX_KEY, {item.content_id: item.created_at.timestamp()})

    async def get(self, content_id: str) -> ReviewQueueItem | None:
        try:
            data = await self._redis.get(self._key(content_id))
        except redis.RedisError as e:
            raise ExternalCallFailure(
                f"Redis get failed: {e}", collaborator="review_store", original_error=e
            ) from e
        return self._decode(data) if data else None

    async def save(self, item: ReviewQueueItem) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                self._queue_write(pipe, item)
                await pipe.execute()
        except redis.RedisError as e:
            raise ExternalCallFailure(
                f"Redis store failed: {e}", collaborator="review_store", original_error=e
            ) from e

    async def update(self, content_id: str, mutate: Mutation) -> ReviewQueueItem:
        key = self._key(content_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(self.MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        data = await pipe.get(key)
                        item = mutate(self._decode(data) if data else None)
                        pipe.multi()
                        self._queue_write(pipe, item)
                        await pipe.execute()
                        return item
                    except redis.WatchError:
                        logger.debug(f"Review item {content_id} changed during update, retrying")
        except redis.RedisError as e:
            raise ExternalCallFailure(
                f"Redis update failed: {e}", collaborator="review_store", original_error=e
            ) from e

        raise ExternalCallFailure(
            f"Review item {content_id} kept changing; gave up after "
            f"{self.MAX_WATCH_RETRIES} attempts",
            collaborator="review_store",
        )

    async def delete(self, content_id: str) -> bool:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(content_id))
                pipe.zrem(self.INDEX_KEY, content_id)
                deleted, _ = await pipe.execute()
        except redis.RedisError as e:
            raise ExternalCallFailure(
                f"Redis delete failed: {e}", collaborator="review_store", original_error=e
            ) from e
        return bool(deleted)

    async def list_by_status(self, status: ReviewStatus) -> list[ReviewQueueItem]:
        try:
            ids = await self._redis.zrange(self.INDEX_KEY, 0, -1)
            if not ids:
                return []
            keys = [self._key(i.decode() if isinstance(i, bytes) else i) for i in ids]
            documents = await self._redis.mget(keys)
        except redis.RedisError as e:
            raise ExternalCallFailure(
                f"Redis list failed: {e}", collaborator="review_store", original_error=e
            ) from e

        items = [self._decode(data) for data in documents if data]
        return [item for item in items if item.status == status]


class SqlReviewStore:
    """
    SQLAlchemy-backed store.

    The session API is blocking, so each call runs in a worker thread.
    ``update`` locks the row (SELECT ... FOR UPDATE) for the read-modify-write.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _aware(value: datetime | None) -> datetime:
        if value is None:
            return datetime.now(UTC)
        # SQLite drops tzinfo on round trip
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    def _to_item(self, record: ReviewQueueRecord) -> ReviewQueueItem:
        return ReviewQueueItem(
            content_id=record.content_id,
            verdict=Verdict.from_dict(record.verdict),
            attempts=record.attempts,
            status=ReviewStatus(record.status),
            notes=record.notes,
            created_at=self._aware(record.created_at),
            updated_at=self._aware(record.updated_at),
        )

    @staticmethod
    def _apply(record: ReviewQueueRecord, item: ReviewQueueItem) -> None:
        record.verdict = item.verdict.to_dict()
        record.attempts = item.attempts
        record.status = item.status.value
        record.notes = item.notes
        record.updated_at = item.updated_at

    @staticmethod
    def _failure(action: str, error: SQLAlchemyError) -> ExternalCallFailure:
        return ExternalCallFailure(
            f"Database {action} failed: {error}",
            collaborator="review_store",
            original_error=error,
        )

    # -- blocking bodies ------------------------------------------------------

    def _get(self, content_id: str) -> ReviewQueueItem | None:
        with session_scope(self._session_factory) as session:
            record = session.get(ReviewQueueRecord, content_id)
            return self._to_item(record) if record else None

    def _save(self, item: ReviewQueueItem) -> None:
        with session_scope(self._session_factory) as session:
            record = session.get(ReviewQueueRecord, item.content_id)
            if record is None:
                record = ReviewQueueRecord(content_id=item.content_id, created_at=item.created_at)
                session.add(record)
            self._apply(record, item)

    def _update_once(self, content_id: str, mutate: Mutation) -> ReviewQueueItem:
        with session_scope(self._session_factory) as session:
            record = session.get(ReviewQueueRecord, content_id, with_for_update=True)
            item = mutate(self._to_item(record) if record else None)
            if record is None:
                record = ReviewQueueRecord(content_id=content_id, created_at=item.created_at)
                session.add(record)
            self._apply(record, item)
        return item

    def _update(self, content_id: str, mutate: Mutation) -> ReviewQueueItem:
        try:
            return self._update_once(content_id, mutate)
        except IntegrityError:
            # Lost an insert race; the row now exists and can be locked
            logger.debug(f"Review item {content_id} inserted concurrently, retrying")
            return self._update_once(content_id, mutate)

    def _delete(self, content_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            record = session.get(ReviewQueueRecord, content_id)
            if record is None:
                return False
            session.delete(record)
            return True

    def _list_by_status(self, status: ReviewStatus) -> list[ReviewQueueItem]:
        with session_scope(self._session_factory) as session:
            records = (
                session.query(ReviewQueueRecord)
                .filter(ReviewQueueRecord.status == status.value)
                .order_by(ReviewQueueRecord.created_at.asc())
                .all()
            )
            return [self._to_item(r) for r in records]

    # -- async API ------------------------------------------------------------

    async def get(self, content_id: str) -> ReviewQueueItem | None:
        try:
            return await asyncio.to_thread(self._get, content_id)
        except SQLAlchemyError as e:
            raise self._failure("read", e) from e

    async def save(self, item: ReviewQueueItem) -> None:
        try:
            await asyncio.to_thread(self._save, item)
        except SQLAlchemyError as e:
            raise self._failure("write", e) from e

    async def update(self, content_id: str, mutate: Mutation) -> ReviewQueueItem:
        try:
            return await asyncio.to_thread(self._update, content_id, mutate)
        except SQLAlchemyError as e:
            raise self._failure("update", e) from e

    async def delete(self, content_id: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete, content_id)
        except SQLAlchemyError as e:
            raise self._failure("delete", e) from e

    async def list_by_status(self, status: ReviewStatus) -> list[ReviewQueueItem]:
        try:
            return await asyncio.to_thread(self._list_by_status, status)
        except SQLAlchemyError as e:
            raise self._failure("query", e) from e


def build_review_store(settings) -> ReviewStore:
    """Select a store from settings (memory | redis | sql)."""
    backend = settings.REVIEW_STORE.lower()

    if backend == "redis":
        logger.info("Using Redis review store")
        return RedisReviewStore.from_url(settings.REDIS_URL)

    if backend == "sql":
        from ..core.database import build_engine, build_session_factory

        logger.info("Using SQL review store")
        return SqlReviewStore(build_session_factory(build_engine(settings.DATABASE_URL)))

    return InMemoryReviewStore()
