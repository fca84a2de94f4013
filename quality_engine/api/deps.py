"""Request-scoped accessors for objects stored on the app."""

from fastapi import Request

from ..services.evaluation.engine import QualityEngine
from ..services.review_queue import ManualReviewQueue


def get_engine(request: Request) -> QualityEngine:
    return request.app.state.engine


def get_review_queue(request: Request) -> ManualReviewQueue:
    return request.app.state.engine.review_queue
