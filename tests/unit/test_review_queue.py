"""Unit tests for the manual review queue and its storage backends."""

import asyncio
import json
import threading
from dataclasses import replace

import pytest
import redis

from quality_engine.core.exceptions import ExternalCallFailure, ReviewItemNotFoundError
from quality_engine.services.evaluation.types import Decision
from quality_engine.services.review_queue import ManualReviewQueue, ReviewQueueItem, ReviewStatus
from quality_engine.services.review_store import (
    InMemoryReviewStore,
    RedisReviewStore,
    SqlReviewStore,
    build_review_store,
)
from tests.helpers import FakeRedis, make_verdict


@pytest.fixture
def queue(review_store) -> ManualReviewQueue:
    return ManualReviewQueue(review_store)


@pytest.mark.asyncio
async def test_enqueue_creates_pending_item(queue):
    verdict = make_verdict(0.30, Decision.ESCALATE, content_id="c-1")

    item = await queue.enqueue("c-1", verdict)

    assert item.attempts == 1
    assert item.status == ReviewStatus.PENDING
    stored = await queue.get("c-1")
    assert stored.verdict.overall_score == pytest.approx(0.30)
    assert stored.verdict.decision == Decision.ESCALATE


@pytest.mark.asyncio
async def test_enqueue_is_idempotent_per_content_id(queue):
    await queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE))
    item = await queue.enqueue("c-1", make_verdict(0.40, Decision.ESCALATE))

    assert item.attempts == 2
    pending = await queue.list_pending()
    assert [p.content_id for p in pending] == ["c-1"]
    assert pending[0].verdict.overall_score == pytest.approx(0.40)


@pytest.mark.asyncio
async def test_reenqueue_resets_status(queue):
    await queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE))
    await queue.update_status("c-1", ReviewStatus.APPROVED, notes="looks fine")

    item = await queue.enqueue("c-1", make_verdict(0.35, Decision.ESCALATE))

    assert item.status == ReviewStatus.PENDING
    assert item.attempts == 2
    assert item.notes == "looks fine"


@pytest.mark.asyncio
async def test_update_status(queue):
    await queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE))

    item = await queue.update_status("c-1", ReviewStatus.IN_REVIEW, notes="claimed")

    assert item.status == ReviewStatus.IN_REVIEW
    assert (await queue.get("c-1")).notes == "claimed"
    assert await queue.list_pending() == []


@pytest.mark.asyncio
async def test_update_unknown_item(queue):
    with pytest.raises(ReviewItemNotFoundError):
        await queue.update_status("missing", ReviewStatus.APPROVED)


@pytest.mark.asyncio
async def test_list_pending_oldest_first(queue):
    for content_id in ("first", "second", "third"):
        await queue.enqueue(content_id, make_verdict(0.30, Decision.ESCALATE))
        await asyncio.sleep(0.001)

    pending = await queue.list_pending()

    assert [p.content_id for p in pending] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_remove(queue):
    await queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE))

    assert await queue.remove("c-1") is True
    assert await queue.remove("c-1") is False
    assert await queue.get("c-1") is None


@pytest.mark.asyncio
async def test_stats(queue):
    await queue.enqueue("a", make_verdict(0.30, Decision.ESCALATE))
    await queue.enqueue("b", make_verdict(0.30, Decision.ESCALATE))
    await queue.update_status("b", ReviewStatus.REJECTED)

    stats = await queue.get_stats()

    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["rejected"] == 1
    assert stats["approved"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("store_factory", [InMemoryReviewStore, lambda: RedisReviewStore(FakeRedis())])
async def test_concurrent_enqueues_count_every_attempt(store_factory):
    queue = ManualReviewQueue(store_factory())

    await asyncio.gather(
        *[queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE)) for _ in range(5)]
    )

    assert (await queue.get("c-1")).attempts == 5


def test_item_serialization_preserves_verdict():
    item = ReviewQueueItem(content_id="c-1", verdict=make_verdict(0.3, Decision.ESCALATE))

    restored = ReviewQueueItem.from_dict(item.to_dict())

    assert restored.content_id == "c-1"
    assert restored.verdict.decision == Decision.ESCALATE
    assert restored.created_at == item.created_at


def test_build_review_store_defaults_to_memory():
    class _Settings:
        REVIEW_STORE = "memory"

    assert isinstance(build_review_store(_Settings()), InMemoryReviewStore)


# =============================================================================
# STORE ATOMICITY & I/O
# =============================================================================


@pytest.mark.asyncio
async def test_redis_update_retries_after_competing_write():
    fake = FakeRedis()
    store = RedisReviewStore(fake)
    queue = ManualReviewQueue(store)
    await queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE))
    key = store._key("c-1")
    calls = []

    def bump(existing):
        calls.append(existing.attempts)
        if len(calls) == 1:
            # Another worker bumps the item between our read and our write
            competing = replace(existing, attempts=2)
            fake.write_from_another_client(key, json.dumps(competing.to_dict()))
        return replace(existing, attempts=existing.attempts + 1)

    item = await store.update("c-1", bump)

    assert calls == [1, 2]
    assert item.attempts == 3
    assert (await store.get("c-1")).attempts == 3


@pytest.mark.asyncio
async def test_redis_update_gives_up_under_constant_contention():
    fake = FakeRedis()
    store = RedisReviewStore(fake)
    key = store._key("c-1")

    item = ReviewQueueItem(content_id="c-1", verdict=make_verdict(0.3, Decision.ESCALATE))

    def always_contended(existing):
        fake.write_from_another_client(key, json.dumps(item.to_dict()))
        return item

    with pytest.raises(ExternalCallFailure) as exc_info:
        await store.update("c-1", always_contended)

    assert exc_info.value.collaborator == "review_store"


@pytest.mark.asyncio
async def test_redis_errors_become_external_call_failures():
    class _DownRedis(FakeRedis):
        async def get(self, key):
            raise redis.ConnectionError("connection refused")

    queue = ManualReviewQueue(RedisReviewStore(_DownRedis()))

    with pytest.raises(ExternalCallFailure) as exc_info:
        await queue.get("c-1")

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_sql_store_runs_off_the_event_loop(sql_session_factory):
    session_threads = []

    def recording_factory():
        session_threads.append(threading.get_ident())
        return sql_session_factory()

    queue = ManualReviewQueue(SqlReviewStore(recording_factory))
    await queue.enqueue("c-1", make_verdict(0.30, Decision.ESCALATE))
    await queue.list_pending()

    assert session_threads
    assert threading.get_ident() not in session_threads


@pytest.mark.asyncio
async def test_update_status_failure_leaves_store_untouched(review_store):
    queue = ManualReviewQueue(review_store)

    with pytest.raises(ReviewItemNotFoundError):
        await queue.update_status("missing", ReviewStatus.APPROVED)

    assert await review_store.get("missing") is None
