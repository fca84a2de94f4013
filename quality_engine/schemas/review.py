"""
Review queue schemas for API request/response validation.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..services.review_queue import ReviewStatus


class ReviewStatusUpdate(BaseModel):
    """Schema for a reviewer action on a queued item."""
    status: ReviewStatus
    notes: Optional[str] = Field(None, max_length=5000)


class ReviewItemResponse(BaseModel):
    """Schema for a review queue item."""
    content_id: str
    verdict: Dict[str, Any]
    attempts: int = Field(..., ge=1)
    status: ReviewStatus
    notes: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = ConfigDict(use_enum_values=True)
