"""
Self-Refinement Loop
====================

Bounded iterative repair of content whose decision is "fix".

Process:
1. Evaluate the content (iteration 0); accept ends the loop, and
   regenerate/escalate end it without consuming iterations
2. For each iteration up to max_iterations:
   a. Take the top fix recommendations from the current verdict
   b. Request one revision
   c. Re-evaluate the revision through the cascade
   d. Stop on accept, on regenerate/escalate, or when the score did not
      improve (stagnation)
3. Running out of iterations returns the latest verdict

The loop is an explicit state machine. Iteration k+1 never starts before
iteration k's evaluation has completed.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ...core.exceptions import (
    ConfigurationError,
    EvaluationError,
    ExternalCallFailure,
    ParseFailure,
)
from .cascade import CascadingEvaluationController, EvaluationRequest
from .clients import ContentReviser
from .types import Decision, FixRecommendation, Verdict

logger = logging.getLogger(__name__)


class RefinementState(str, Enum):
    """States of the refinement state machine."""

    INITIAL = "initial"
    EVALUATING = "evaluating"
    FIXING = "fixing"
    ACCEPTED = "accepted"
    STOPPED = "stopped"


_TRANSITIONS = {
    RefinementState.INITIAL: {RefinementState.EVALUATING},
    RefinementState.EVALUATING: {
        RefinementState.ACCEPTED,
        RefinementState.FIXING,
        RefinementState.STOPPED,
    },
    RefinementState.FIXING: {RefinementState.EVALUATING, RefinementState.STOPPED},
    RefinementState.ACCEPTED: set(),
    RefinementState.STOPPED: set(),
}


class RefinementOutcome(str, Enum):
    """Why the loop terminated."""

    ACCEPTED = "accepted"
    NOT_FIXABLE = "not_fixable"  # first decision was regenerate/escalate
    DEGRADED = "degraded"  # a revision fell to regenerate/escalate
    STAGNATED = "stagnated"  # a revision did not improve the score
    EXHAUSTED = "exhausted"  # max_iterations used, still "fix"
    FAILED = "failed"  # external or parse failure mid-loop


class InvalidTransitionError(RuntimeError):
    """Raised when the state machine is driven along an undefined edge."""


@dataclass(frozen=True)
class RefinementConfig:
    """Configuration for the refinement loop."""

    max_iterations: int = 2
    top_fixes: int = 3
    revision_timeout_seconds: float = 120.0

    def __post_init__(self):
        if self.max_iterations < 0:
            raise ConfigurationError(
                f"max_iterations must be >= 0, got {self.max_iterations}"
            )
        if self.top_fixes < 1:
            raise ConfigurationError(f"top_fixes must be >= 1, got {self.top_fixes}")


@dataclass(frozen=True)
class IterationRecord:
    """Result of a single refinement iteration."""

    iteration: int
    before_score: float
    after_score: float
    fixes_applied: tuple[str, ...]
    decision: Decision
    time_ms: float

    @property
    def improvement(self) -> float:
        return self.after_score - self.before_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "before_score": round(self.before_score, 4),
            "after_score": round(self.after_score, 4),
            "improvement": round(self.improvement, 4),
            "fixes_applied": list(self.fixes_applied),
            "decision": self.decision.value,
            "time_ms": round(self.time_ms, 2),
        }


@dataclass(frozen=True)
class RefinementResult:
    """Complete refinement loop result."""

    final_content: str
    final_verdict: Verdict
    verdicts: tuple[Verdict, ...]
    iterations_used: int
    history: tuple[IterationRecord, ...]
    outcome: RefinementOutcome
    success: bool
    error: str | None = None
    total_time_ms: float = 0.0

    @property
    def fully_successful(self) -> bool:
        return self.outcome == RefinementOutcome.ACCEPTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "success": self.success,
            "fully_successful": self.fully_successful,
            "iterations_used": self.iterations_used,
            "final_score": round(self.final_verdict.overall_score, 4),
            "final_decision": self.final_verdict.decision.value,
            "error": self.error,
            "total_time_ms": round(self.total_time_ms, 2),
            "history": [r.to_dict() for r in self.history],
        }


@dataclass
class _LoopContext:
    request: EvaluationRequest
    content: str
    verdict: Verdict | None = None
    verdicts: list[Verdict] = field(default_factory=list)
    history: list[IterationRecord] = field(default_factory=list)
    state: RefinementState = RefinementState.INITIAL


class SelfRefinementLoop:
    """
    Drives revision + re-evaluation cycles until acceptance, stagnation or
    exhaustion.
    """

    def __init__(
        self,
        cascade: CascadingEvaluationController,
        reviser: ContentReviser,
        config: RefinementConfig | None = None,
    ):
        self.cascade = cascade
        self.reviser = reviser
        self.config = config or RefinementConfig()

    @staticmethod
    def _transition(ctx: _LoopContext, target: RefinementState) -> None:
        if target not in _TRANSITIONS[ctx.state]:
            raise InvalidTransitionError(
                f"Cannot move from {ctx.state.value} to {target.value}"
            )
        logger.debug(f"[{ctx.request.content_id}] {ctx.state.value} -> {target.value}")
        ctx.state = target

    async def _revise(self, content: str, fixes: Sequence[FixRecommendation], preserve) -> str:
        timeout = self.config.revision_timeout_seconds
        try:
            revised = await asyncio.wait_for(
                self.reviser.revise(content, list(fixes), list(preserve)),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise ExternalCallFailure(
                f"Revision request timed out after {timeout}s",
                collaborator="reviser",
                original_error=e,
                timeout_seconds=timeout,
            ) from e
        except (ParseFailure, ExternalCallFailure):
            raise
        except Exception as e:
            raise ExternalCallFailure(
                f"Revision request failed: {e}", collaborator="reviser", original_error=e
            ) from e

        if not isinstance(revised, str) or not revised.strip():
            raise ParseFailure("Reviser returned empty content", source="reviser")
        return revised

    def _finish(
        self,
        ctx: _LoopContext,
        outcome: RefinementOutcome,
        success: bool,
        started: float,
        error: str | None = None,
    ) -> RefinementResult:
        logger.info(
            f"[{ctx.request.content_id}] refinement finished: outcome={outcome.value}, "
            f"iterations={len(ctx.history)}, score={ctx.verdict.overall_score:.3f}"
        )
        return RefinementResult(
            final_content=ctx.content,
            final_verdict=ctx.verdict,
            verdicts=tuple(ctx.verdicts),
            iterations_used=len(ctx.history),
            history=tuple(ctx.history),
            outcome=outcome,
            success=success,
            error=error,
            total_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def refine(
        self,
        request: EvaluationRequest,
        initial_verdict: Verdict | None = None,
    ) -> RefinementResult:
        """
        Refine content until accepted or a stop condition is met.

        Args:
            request: Content and evaluation context
            initial_verdict: Verdict already obtained for ``request.content``;
                when given, iteration 0 reuses it instead of re-evaluating

        Returns:
            RefinementResult with final content, verdict and history

        Raises:
            ParseFailure / ExternalCallFailure if iteration 0 itself fails,
            since there is no verdict to fall back on.
        """
        started = time.perf_counter()
        ctx = _LoopContext(request=request, content=request.content)

        self._transition(ctx, RefinementState.EVALUATING)
        ctx.verdict = initial_verdict or await self.cascade.evaluate(request)
        ctx.verdicts.append(ctx.verdict)

        if ctx.verdict.decision == Decision.ACCEPT:
            self._transition(ctx, RefinementState.ACCEPTED)
            return self._finish(ctx, RefinementOutcome.ACCEPTED, True, started)

        if ctx.verdict.decision != Decision.FIX:
            self._transition(ctx, RefinementState.STOPPED)
            return self._finish(ctx, RefinementOutcome.NOT_FIXABLE, False, started)

        for iteration in range(1, self.config.max_iterations + 1):
            iter_start = time.perf_counter()
            self._transition(ctx, RefinementState.FIXING)

            fixes = ctx.verdict.fix_recommendations[: self.config.top_fixes]
            before = ctx.verdict.overall_score

            try:
                revised = await self._revise(ctx.content, fixes, request.preserved_context)
                self._transition(ctx, RefinementState.EVALUATING)
                verdict = await self.cascade.evaluate(request.with_content(revised))
            except EvaluationError as e:
                logger.warning(
                    f"[{request.content_id}] iteration {iteration} failed: {e.detail}"
                )
                self._transition(ctx, RefinementState.STOPPED)
                return self._finish(
                    ctx, RefinementOutcome.FAILED, False, started, error=e.detail
                )

            ctx.content = revised
            ctx.verdict = verdict
            ctx.verdicts.append(verdict)
            ctx.history.append(
                IterationRecord(
                    iteration=iteration,
                    before_score=before,
                    after_score=verdict.overall_score,
                    fixes_applied=tuple(f.criterion_id for f in fixes),
                    decision=verdict.decision,
                    time_ms=(time.perf_counter() - iter_start) * 1000,
                )
            )
            logger.info(
                f"[{request.content_id}] iteration {iteration}: "
                f"{before:.3f} -> {verdict.overall_score:.3f} ({verdict.decision.value})"
            )

            if verdict.decision == Decision.ACCEPT:
                self._transition(ctx, RefinementState.ACCEPTED)
                return self._finish(ctx, RefinementOutcome.ACCEPTED, True, started)

            if verdict.decision != Decision.FIX:
                self._transition(ctx, RefinementState.STOPPED)
                return self._finish(ctx, RefinementOutcome.DEGRADED, False, started)

            if verdict.overall_score <= before:
                self._transition(ctx, RefinementState.STOPPED)
                return self._finish(ctx, RefinementOutcome.STAGNATED, False, started)

        self._transition(ctx, RefinementState.STOPPED)
        # Exhausted while still "fix": improved but not accepted
        return self._finish(
            ctx,
            RefinementOutcome.EXHAUSTED,
            ctx.verdict.decision in (Decision.ACCEPT, Decision.FIX),
            started,
        )
