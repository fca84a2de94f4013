"""
Models package.
"""

from .review import ReviewQueueRecord

__all__ = ["ReviewQueueRecord"]
