"""API routers."""

from .evaluation import router as evaluation_router
from .review import router as review_router

__all__ = ["evaluation_router", "review_router"]
