"""
Quality Engine
==============

Wires the evaluation components together and routes each piece of content:

- accept      -> "accepted"
- fix         -> self-refinement loop, then routed on the loop's outcome
- regenerate  -> "regenerate" (returned to the generator)
- escalate    -> "manual_review" (queued for a human)

Refinement that ends without acceptance (stagnated, exhausted, failed) is
queued for manual review; refinement that degrades to regenerate is sent
back for regeneration.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ...core.exceptions import MAX_EVALUATOR_RETRIES, ConfigurationError, RetryConfig
from ...utils.logging import content_logging_context
from .cascade import CascadeConfig, CascadingEvaluationController, EvaluationRequest
from .clients import ContentReviser, EvaluatorClient, FactCheckClient
from .consensus import ConsensusVotingController, VotingConfig
from .decision import DecisionEngine, DecisionThresholds
from .entropy import EntropyRiskEstimator
from .fact_verification import FactCheckConfig, FactVerificationGate
from .gateway import EvaluatorGateway, RetryingEvaluatorGateway
from .recommendations import FixRecommendationGenerator
from .refinement_pipeline import (
    RefinementConfig,
    RefinementOutcome,
    RefinementResult,
    SelfRefinementLoop,
)
from .rubric import DEFAULT_PASSING_THRESHOLD, Rubric, default_rubric
from .types import Decision, Verdict

if TYPE_CHECKING:
    from ..review_queue import ManualReviewQueue, ReviewQueueItem

logger = logging.getLogger(__name__)

ACTION_ACCEPTED = "accepted"
ACTION_REGENERATE = "regenerate"
ACTION_MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class EngineConfig:
    """All tunables for one engine instance; validated at construction."""

    thresholds: DecisionThresholds = field(default_factory=DecisionThresholds)
    voting: VotingConfig = field(default_factory=VotingConfig)
    cascade: CascadeConfig = field(default_factory=CascadeConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)
    fact_check: FactCheckConfig = field(default_factory=FactCheckConfig)
    passing_threshold: float = DEFAULT_PASSING_THRESHOLD
    evaluator_max_retries: int = MAX_EVALUATOR_RETRIES

    def __post_init__(self):
        if not 0 <= self.evaluator_max_retries <= MAX_EVALUATOR_RETRIES:
            raise ConfigurationError(
                f"evaluator retries must be in [0, {MAX_EVALUATOR_RETRIES}], "
                f"got {self.evaluator_max_retries}"
            )
        if not 0.0 < self.passing_threshold <= 1.0:
            raise ConfigurationError(
                f"passing threshold must be in (0, 1], got {self.passing_threshold}"
            )
        if not 0.0 < self.fact_check.pass_threshold <= 1.0:
            raise ConfigurationError(
                f"fact check pass threshold must be in (0, 1], "
                f"got {self.fact_check.pass_threshold}"
            )


@dataclass(frozen=True)
class ProcessingOutcome:
    """Where a piece of content ended up after evaluation (and refinement)."""

    content_id: str
    action: str
    final_content: str
    verdict: Verdict
    refinement: RefinementResult | None = None
    review_item: "ReviewQueueItem | None" = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_id": self.content_id,
            "action": self.action,
            "final_content": self.final_content,
            "verdict": self.verdict.to_dict(),
            "refinement": self.refinement.to_dict() if self.refinement else None,
            "review_item": self.review_item.to_dict() if self.review_item else None,
        }


class QualityEngine:
    """Evaluate, refine and route generated content."""

    def __init__(
        self,
        evaluator_client: EvaluatorClient,
        reviser: ContentReviser,
        review_queue: "ManualReviewQueue",
        rubric: Rubric | None = None,
        config: EngineConfig | None = None,
        fact_checker: FactCheckClient | None = None,
        entropy_estimator: EntropyRiskEstimator | None = None,
    ):
        self.config = config or EngineConfig()
        self.rubric = rubric or default_rubric(self.config.passing_threshold)
        self.review_queue = review_queue

        gateway = EvaluatorGateway(evaluator_client)
        if self.config.evaluator_max_retries > 0:
            gateway = RetryingEvaluatorGateway(
                gateway, RetryConfig.bounded(self.config.evaluator_max_retries)
            )
        self.gateway = gateway

        self.decision_engine = DecisionEngine(self.config.thresholds)
        self.consensus = ConsensusVotingController(gateway, self.rubric, self.config.voting)
        fact_gate = (
            FactVerificationGate(fact_checker, self.config.fact_check)
            if fact_checker is not None
            else None
        )
        self.cascade = CascadingEvaluationController(
            gateway,
            self.consensus,
            self.rubric,
            decision_engine=self.decision_engine,
            recommender=FixRecommendationGenerator(self.rubric),
            config=self.config.cascade,
            entropy_estimator=entropy_estimator or EntropyRiskEstimator(),
            fact_gate=fact_gate,
        )
        self.refinement = SelfRefinementLoop(self.cascade, reviser, self.config.refinement)

        logger.info(
            f"QualityEngine ready: rubric={self.rubric.version}, "
            f"thresholds={self.config.thresholds.boundaries}, "
            f"fact_gate={'on' if fact_gate else 'off'}"
        )

    async def evaluate(self, request: EvaluationRequest) -> Verdict:
        """Single verdict, no refinement or routing."""
        return await self.cascade.evaluate(request)

    async def process(self, request: EvaluationRequest) -> ProcessingOutcome:
        """
        Evaluate content and route it.

        Raises:
            ParseFailure / ExternalCallFailure when the first evaluation fails.
            Failures during refinement are absorbed into the loop result and
            the content is queued for review.
        """
        with content_logging_context(request.content_id):
            return await self._process(request)

    async def _process(self, request: EvaluationRequest) -> ProcessingOutcome:
        verdict = await self.cascade.evaluate(request)

        if verdict.decision == Decision.ACCEPT:
            return ProcessingOutcome(request.content_id, ACTION_ACCEPTED, request.content, verdict)

        if verdict.decision == Decision.REGENERATE:
            return ProcessingOutcome(
                request.content_id, ACTION_REGENERATE, request.content, verdict
            )

        if verdict.decision == Decision.ESCALATE:
            item = await self.review_queue.enqueue(request.content_id, verdict)
            return ProcessingOutcome(
                request.content_id,
                ACTION_MANUAL_REVIEW,
                request.content,
                verdict,
                review_item=item,
            )

        result = await self.refinement.refine(request, initial_verdict=verdict)
        return await self._route_refinement(request, result)

    async def _route_refinement(
        self, request: EvaluationRequest, result: RefinementResult
    ) -> ProcessingOutcome:
        final = result.final_verdict

        if result.outcome == RefinementOutcome.ACCEPTED:
            action = ACTION_ACCEPTED
        elif (
            result.outcome == RefinementOutcome.DEGRADED
            and final.decision == Decision.REGENERATE
        ):
            action = ACTION_REGENERATE
        else:
            action = ACTION_MANUAL_REVIEW

        item = None
        if action == ACTION_MANUAL_REVIEW:
            item = await self.review_queue.enqueue(request.content_id, final)

        logger.info(
            f"[{request.content_id}] routed to {action} after refinement "
            f"({result.outcome.value})"
        )
        return ProcessingOutcome(
            content_id=request.content_id,
            action=action,
            final_content=result.final_content,
            verdict=final,
            refinement=result,
            review_item=item,
        )
