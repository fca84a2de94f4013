"""
Cascading Evaluation Controller
===============================

Single entry point for every evaluation, first pass and refinement alike.

Process:
1. One fast, shorter-context evaluator pass
2. If its score is within the borderline margin of any decision threshold,
   discard it and run full consensus voting
3. Map the chosen score to a decision
4. Attach fix recommendations when the decision is "fix"
5. Annotate with the hallucination check (entropy analysis, plus fact
   verification only when the analysis requires it)
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ...core.exceptions import ConfigurationError
from .consensus import ConsensusVotingController
from .decision import DecisionEngine
from .entropy import EntropyRiskEstimator, TokenDistribution
from .fact_verification import FactVerificationGate
from .gateway import FAST_EVALUATION_CONFIG, EvaluationConfig
from .recommendations import FixRecommendationGenerator
from .rubric import Rubric
from .types import (
    Decision,
    EvaluationMode,
    HallucinationCheck,
    VotingMetadata,
    Verdict,
)

logger = logging.getLogger(__name__)

_EPSILON = 1e-9


@dataclass(frozen=True)
class EvaluationRequest:
    """Content plus the context every evaluation pass needs."""

    content_id: str
    content: str
    references: tuple[str, ...] | None = None
    preserved_context: tuple[str, ...] = ()
    token_distributions: tuple[TokenDistribution, ...] | None = None

    def with_content(self, content: str) -> "EvaluationRequest":
        """Same request for a revised draft.

        Token distributions describe the original draft only, so they are
        dropped and the lexical strategy applies to revisions.
        """
        return EvaluationRequest(
            content_id=self.content_id,
            content=content,
            references=self.references,
            preserved_context=self.preserved_context,
            token_distributions=None,
        )


@dataclass(frozen=True)
class CascadeConfig:
    borderline_margin: float = 0.05
    fast_pass_confidence: float = 0.85
    fast_pass: EvaluationConfig = field(default_factory=lambda: FAST_EVALUATION_CONFIG)
    full_pass: EvaluationConfig = field(default_factory=EvaluationConfig)

    def __post_init__(self):
        if not 0.0 <= self.borderline_margin < 0.5:
            raise ConfigurationError(
                f"borderline margin must be in [0, 0.5), got {self.borderline_margin}"
            )
        if not 0.0 < self.fast_pass_confidence <= 1.0:
            raise ConfigurationError(
                f"fast pass confidence must be in (0, 1], got {self.fast_pass_confidence}"
            )


class CascadingEvaluationController:
    """Fast pass first; consensus only near a decision boundary."""

    def __init__(
        self,
        gateway,
        consensus: ConsensusVotingController,
        rubric: Rubric,
        decision_engine: DecisionEngine | None = None,
        recommender: FixRecommendationGenerator | None = None,
        config: CascadeConfig | None = None,
        entropy_estimator: EntropyRiskEstimator | None = None,
        fact_gate: FactVerificationGate | None = None,
    ):
        self.gateway = gateway
        self.consensus = consensus
        self.rubric = rubric
        self.decision_engine = decision_engine or DecisionEngine()
        self.recommender = recommender or FixRecommendationGenerator(rubric)
        self.config = config or CascadeConfig()
        self.entropy_estimator = entropy_estimator
        self.fact_gate = fact_gate

    def is_borderline(self, score: float) -> bool:
        """True when score lies within the margin of any decision threshold."""
        margin = self.config.borderline_margin + _EPSILON
        return any(
            abs(score - threshold) <= margin
            for threshold in self.decision_engine.thresholds.boundaries
        )

    async def evaluate(self, request: EvaluationRequest) -> Verdict:
        """
        Evaluate one piece of content and assemble a Verdict.

        Raises:
            ParseFailure / ExternalCallFailure from any evaluator or fact-check
            call. No default score is ever substituted.
        """
        fast = await self.gateway.evaluate(
            request.content, self.rubric, self.config.fast_pass
        )
        fast_score = self.rubric.weighted_score({e.criterion_id: e.score for e in fast})

        voting: VotingMetadata | None = None
        if self.is_borderline(fast_score):
            logger.info(
                f"[{request.content_id}] fast score {fast_score:.3f} is borderline; "
                f"escalating to consensus"
            )
            result = await self.consensus.vote(request.content, self.config.full_pass)
            evaluations = result.evaluations
            overall = result.overall_score
            confidence = result.confidence
            voting = result.metadata()
            mode = EvaluationMode.CONSENSUS
        else:
            evaluations = tuple(fast)
            overall = fast_score
            confidence = self.config.fast_pass_confidence
            mode = EvaluationMode.FAST

        explanation = self.decision_engine.explain(overall)

        fixes = ()
        if explanation.decision == Decision.FIX:
            fixes = tuple(
                self.recommender.generate(evaluations, request.preserved_context)
            )

        hallucination = await self._check_hallucination(request)

        reasoning = self._summarize(explanation.justification, evaluations, voting)

        logger.info(
            f"[{request.content_id}] {mode.value} verdict: score={overall:.3f}, "
            f"decision={explanation.decision.value}, confidence={confidence:.2f}"
        )

        return Verdict(
            criterion_evaluations=tuple(evaluations),
            overall_score=overall,
            decision=explanation.decision,
            confidence=confidence,
            reasoning=reasoning,
            rubric_version=self.rubric.version,
            mode=mode,
            content_id=request.content_id,
            voting=voting,
            hallucination_check=hallucination,
            fix_recommendations=fixes,
        )

    async def _check_hallucination(
        self, request: EvaluationRequest
    ) -> HallucinationCheck | None:
        if self.entropy_estimator is None:
            return None

        analysis = self.entropy_estimator.analyze(
            request.content, request.token_distributions
        )
        flagged = tuple(analysis.flagged_passages)

        if not analysis.requires_verification:
            return HallucinationCheck(
                entropy_score=analysis.entropy_score,
                risk_level=analysis.risk_level,
                requires_verification=False,
                flagged_passages=flagged,
            )

        if self.fact_gate is None:
            logger.warning(
                f"[{request.content_id}] verification required "
                f"(risk={analysis.risk_level.value}) but no fact gate is configured"
            )
            return HallucinationCheck(
                entropy_score=analysis.entropy_score,
                risk_level=analysis.risk_level,
                requires_verification=True,
                flagged_passages=flagged,
            )

        result = await self.fact_gate.verify(analysis, request.references)
        return HallucinationCheck(
            entropy_score=result.entropy_score,
            risk_level=analysis.risk_level,
            requires_verification=True,
            rag_verification_passed=result.passed,
            verification_confidence=result.confidence,
            no_context=result.no_context,
            flagged_passages=result.flagged_passages,
            unverified_claims=tuple(result.unverified_claims),
        )

    def _summarize(
        self,
        justification: str,
        evaluations: Sequence,
        voting: VotingMetadata | None,
    ) -> str:
        parts = [justification]
        if evaluations:
            weakest = min(evaluations, key=lambda e: e.score)
            parts.append(f"Weakest criterion: {weakest.criterion_id} ({weakest.score:.2f}).")
        if voting is not None:
            parts.append(
                f"Consensus of {voting.judge_count} judges "
                f"(agreement {voting.agreement_level:.2f}"
                f"{', tiebreaker used' if voting.required_tiebreaker else ''})."
            )
        return " ".join(parts)
