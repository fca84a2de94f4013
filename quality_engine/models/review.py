"""
Review queue models.
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, TIMESTAMP, Column, Index, Integer, String, Text

from ..core.database import Base


def utcnow():
    """Get current UTC time with timezone awareness."""
    return datetime.now(timezone.utc)


class ReviewQueueRecord(Base):
    """Content escalated to human review, keyed by content id."""
    __tablename__ = 'review_queue_items'

    content_id = Column(String(255), primary_key=True)
    verdict = Column(JSON, nullable=False)
    attempts = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default='pending', nullable=False, index=True)
    notes = Column(Text)

    created_at = Column(TIMESTAMP(timezone=True), default=utcnow, index=True)
    updated_at = Column(TIMESTAMP(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('idx_review_queue_status_created', 'status', 'created_at'),
    )
