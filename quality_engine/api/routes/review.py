"""
Review Queue API

Endpoints for human reviewers working the manual review queue.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...schemas.review import ReviewItemResponse, ReviewStatusUpdate
from ...services.review_queue import ManualReviewQueue
from ..deps import get_review_queue

router = APIRouter(prefix="/api/v1/review-queue", tags=["review-queue"])


@router.get("/pending", response_model=List[ReviewItemResponse])
async def list_pending(queue: ManualReviewQueue = Depends(get_review_queue)):
    """Pending items, oldest first."""
    items = await queue.list_pending()
    return [item.to_dict() for item in items]


@router.get("/stats")
async def queue_stats(queue: ManualReviewQueue = Depends(get_review_queue)):
    """Item counts per status."""
    return await queue.get_stats()


@router.get("/{content_id}", response_model=ReviewItemResponse)
async def get_item(content_id: str, queue: ManualReviewQueue = Depends(get_review_queue)):
    """Get a queued item by content id."""
    item = await queue.get(content_id)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Review item not found",
        )
    return item.to_dict()


@router.patch("/{content_id}", response_model=ReviewItemResponse)
async def update_item(
    content_id: str,
    update: ReviewStatusUpdate,
    queue: ManualReviewQueue = Depends(get_review_queue),
):
    """Record a reviewer action. Unknown ids return 404."""
    item = await queue.update_status(content_id, update.status, update.notes)
    return item.to_dict()


@router.delete("/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(content_id: str, queue: ManualReviewQueue = Depends(get_review_queue)):
    """Remove an item from the queue."""
    removed = await queue.remove(content_id)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Review item not found",
        )
