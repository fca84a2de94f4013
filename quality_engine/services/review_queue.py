"""
Manual Review Queue
===================

Durable record of content that needs human attention.

Features:
- Idempotent enqueue per content id (repeat escalations bump the attempt
  counter and reset the item to pending)
- Atomic read-modify-write delegated to the store (no in-process locks)
- Pluggable storage (in-memory, Redis, SQL)
- No automatic expiry; removal is an explicit action
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..core.exceptions import ReviewItemNotFoundError
from .evaluation.types import Verdict

logger = logging.getLogger(__name__)


class ReviewStatus(str, Enum):
    """Status of a queued item."""

    PENDING = "pending"  # Awaiting a reviewer
    IN_REVIEW = "in_review"  # Claimed by a reviewer
    APPROVED = "approved"  # Reviewer approved the content
    REJECTED = "rejected"  # Reviewer rejected the content


@dataclass(frozen=True)
class ReviewQueueItem:
    """A piece of content awaiting (or after) human review."""

    content_id: str
    verdict: Verdict
    attempts: int = 1
    status: ReviewStatus = ReviewStatus.PENDING
    notes: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_id": self.content_id,
            "verdict": self.verdict.to_dict(),
            "attempts": self.attempts,
            "status": self.status.value,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewQueueItem":
        return cls(
            content_id=data["content_id"],
            verdict=Verdict.from_dict(data["verdict"]),
            attempts=data.get("attempts", 1),
            status=ReviewStatus(data.get("status", "pending")),
            notes=data.get("notes"),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else datetime.now(UTC),
            updated_at=datetime.fromisoformat(data["updated_at"])
            if data.get("updated_at")
            else datetime.now(UTC),
        )


class ManualReviewQueue:
    """
    Queue of items requiring human review.

    Storage is injected; every read-modify-write goes through the store's
    atomic ``update`` so attempt counting holds across workers.
    """

    def __init__(self, store):
        self._store = store

    async def enqueue(self, content_id: str, verdict: Verdict) -> ReviewQueueItem:
        """
        Queue content for review.

        Creates an item with attempts=1, or bumps attempts and resets the
        status to pending when the content id is already queued.
        """

        def bump(existing: ReviewQueueItem | None) -> ReviewQueueItem:
            if existing is None:
                return ReviewQueueItem(content_id=content_id, verdict=verdict)
            return replace(
                existing,
                verdict=verdict,
                attempts=existing.attempts + 1,
                status=ReviewStatus.PENDING,
                updated_at=datetime.now(UTC),
            )

        item = await self._store.update(content_id, bump)

        logger.info(
            f"Queued content {content_id} for review: attempts={item.attempts}, "
            f"decision={verdict.decision.value}, score={verdict.overall_score:.3f}"
        )
        return item

    async def update_status(
        self, content_id: str, status: ReviewStatus, notes: str | None = None
    ) -> ReviewQueueItem:
        """Record a reviewer action. Raises ReviewItemNotFoundError if absent."""

        def apply(existing: ReviewQueueItem | None) -> ReviewQueueItem:
            if existing is None:
                raise ReviewItemNotFoundError(content_id)
            return replace(
                existing,
                status=ReviewStatus(status),
                notes=notes if notes is not None else existing.notes,
                updated_at=datetime.now(UTC),
            )

        item = await self._store.update(content_id, apply)

        logger.info(f"Review item {content_id} -> {item.status.value}")
        return item

    async def get(self, content_id: str) -> ReviewQueueItem | None:
        return await self._store.get(content_id)

    async def list_pending(self) -> list[ReviewQueueItem]:
        """Pending items, oldest first."""
        items = await self._store.list_by_status(ReviewStatus.PENDING)
        return sorted(items, key=lambda i: i.created_at)

    async def remove(self, content_id: str) -> bool:
        removed = await self._store.delete(content_id)
        if removed:
            logger.info(f"Removed review item {content_id}")
        return removed

    async def get_stats(self) -> dict[str, Any]:
        """Item counts per status."""
        counts = {}
        for status in ReviewStatus:
            counts[status.value] = len(await self._store.list_by_status(status))
        return {"total": sum(counts.values()), **counts}
