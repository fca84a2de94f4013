"""Custom exception classes for the quality engine.

Includes:
- Base exception carrying an HTTP-style status and error code
- Evaluation failures (parse / external call) with retry metadata
- Configuration errors raised once at engine construction
- Bounded async retry decorator
"""

import asyncio
import functools
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

logger = logging.getLogger(__name__)
F = TypeVar("F", bound=Callable[..., Any])


class QualityEngineException(Exception):
    """Base exception for all quality engine errors."""

    def __init__(
        self, detail: str, status_code: int = 500, error_code: str = "INTERNAL_ERROR"
    ):
        self.detail = detail
        self.status_code = status_code
        self.error_code = error_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self):
        """Convert exception to dictionary for API response."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "status_code": self.status_code,
            "timestamp": self.timestamp,
        }


class ConfigurationError(QualityEngineException):
    """Raised when thresholds or rubric weights are invalid."""

    def __init__(self, detail: str):
        super().__init__(
            detail=f"Invalid configuration: {detail}",
            status_code=500,
            error_code="CONFIGURATION_ERROR",
        )


class ReviewItemNotFoundError(QualityEngineException):
    """Raised when a review queue item does not exist."""

    def __init__(self, content_id: str):
        super().__init__(
            detail=f"Review item for content {content_id} not found",
            status_code=404,
            error_code="REVIEW_ITEM_NOT_FOUND",
        )
        self.content_id = content_id


# =============================================================================
# EVALUATION EXCEPTIONS (with retry metadata)
# =============================================================================


class EvaluationError(QualityEngineException):
    """Base exception for failures inside an evaluation pass."""

    def __init__(
        self,
        detail: str,
        stage: str = "unknown",
        original_error: Exception | None = None,
        context: dict[str, Any] | None = None,
        retryable: bool = False,
        status_code: int = 502,
    ):
        super().__init__(
            detail=detail,
            status_code=status_code,
            error_code=f"EVALUATION_{stage.upper()}_ERROR",
        )
        self.stage = stage
        self.original_error = original_error
        self.context = context or {}
        self.retryable = retryable

    def to_dict(self):
        base = super().to_dict()
        base.update(
            {
                "stage": self.stage,
                "retryable": self.retryable,
                "context": self.context,
            }
        )
        return base


class ParseFailure(EvaluationError):
    """External output could not be mapped onto the expected shape."""

    def __init__(
        self,
        detail: str,
        original_error: Exception | None = None,
        source: str = "evaluator",
    ):
        super().__init__(
            detail=detail,
            stage="parse",
            original_error=original_error,
            context={"source": source},
            retryable=False,
        )


class ExternalCallFailure(EvaluationError):
    """Timeout, network or rate-limit failure from an external collaborator."""

    def __init__(
        self,
        detail: str,
        collaborator: str,
        original_error: Exception | None = None,
        timeout_seconds: float | None = None,
    ):
        context: dict[str, Any] = {"collaborator": collaborator}
        if timeout_seconds is not None:
            context["timeout_seconds"] = timeout_seconds
        super().__init__(
            detail=detail,
            stage="external_call",
            original_error=original_error,
            context=context,
            retryable=True,
            status_code=504 if timeout_seconds is not None else 502,
        )
        self.collaborator = collaborator


# =============================================================================
# RETRY CONFIGURATION & DECORATOR
# =============================================================================

# Evaluator calls get at most one retry so latency stays bounded.
MAX_EVALUATOR_RETRIES = 1


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 2
    initial_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.25
    retryable_exceptions: tuple = field(
        default_factory=lambda: (ExternalCallFailure,)
    )

    @classmethod
    def bounded(cls, max_retries: int, **kwargs) -> "RetryConfig":
        """Build a config allowing at most ``MAX_EVALUATOR_RETRIES`` retries."""
        retries = max(0, min(max_retries, MAX_EVALUATOR_RETRIES))
        return cls(max_attempts=retries + 1, **kwargs)


EVALUATOR_RETRY_CONFIG = RetryConfig.bounded(MAX_EVALUATOR_RETRIES)


def with_retry(
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
):
    """
    Async retry decorator with exponential backoff.

    Only exceptions listed in ``config.retryable_exceptions`` are retried;
    everything else propagates immediately.

    Example:
        @with_retry(config=RetryConfig.bounded(1))
        async def score(content: str) -> list[CriterionEvaluation]:
            ...
    """
    config = config or EVALUATOR_RETRY_CONFIG

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(1, config.max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except config.retryable_exceptions as e:
                    if attempt >= config.max_attempts:
                        raise
                    delay = min(
                        config.initial_delay
                        * (config.exponential_base ** (attempt - 1)),
                        config.max_delay,
                    )
                    if config.jitter:
                        delay += delay * config.jitter_factor * random.random()
                    logger.warning(
                        f"[Retry] {func.__name__} attempt {attempt}/{config.max_attempts} "
                        f"failed ({e.detail if hasattr(e, 'detail') else e}). "
                        f"Retrying in {delay:.2f}s..."
                    )
                    if on_retry:
                        on_retry(attempt, e, delay)
                    await asyncio.sleep(delay)

        return async_wrapper

    return decorator
