"""
Consensus Voting Controller (CLEV)
==================================

Reduces single-evaluator variance:
1. Two independent passes run concurrently (judge-1, judge-2)
2. If their overall scores differ by more than the tolerance, a third
   pass (judge-3) runs after both complete
3. Per-criterion scores are averaged over every pass that ran; the overall
   score is the rubric-weighted sum of those means
4. Agreement = 1 - min(1, stddev(overall scores) / spread)
5. Confidence = agreement, discounted when a tiebreaker was needed

Any pass failure aborts the whole round. There is no partial quorum.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import numpy as np

from ...core.exceptions import ConfigurationError
from .gateway import EvaluationConfig
from .rubric import Rubric, score_to_level
from .types import CriterionEvaluation, JudgeResult, VotingMetadata

logger = logging.getLogger(__name__)

# Absorbs float noise so a difference of exactly the tolerance counts as agreement
_EPSILON = 1e-9


@dataclass(frozen=True)
class VotingConfig:
    """Consensus voting parameters."""

    tolerance: float = 0.15
    agreement_spread: float = 0.5
    tiebreaker_penalty: float = 0.9
    # Optional per-judge model override, cycled across judge-1..judge-3
    judge_models: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not 0.0 <= self.tolerance <= 1.0:
            raise ConfigurationError(f"voting tolerance must be in [0, 1], got {self.tolerance}")
        if self.agreement_spread <= 0.0:
            raise ConfigurationError(
                f"agreement spread must be positive, got {self.agreement_spread}"
            )
        if not 0.0 < self.tiebreaker_penalty <= 1.0:
            raise ConfigurationError(
                f"tiebreaker penalty must be in (0, 1], got {self.tiebreaker_penalty}"
            )


@dataclass(frozen=True)
class ConsensusResult:
    """Aggregated outcome of a voting round."""

    evaluations: tuple[CriterionEvaluation, ...]
    overall_score: float
    agreement_level: float
    judges: tuple[JudgeResult, ...]
    required_tiebreaker: bool
    confidence: float

    @property
    def criterion_scores(self) -> dict[str, float]:
        return {e.criterion_id: e.score for e in self.evaluations}

    def metadata(self) -> VotingMetadata:
        return VotingMetadata(
            judge_count=len(self.judges),
            agreement_level=self.agreement_level,
            individual_scores=tuple(j.overall_score for j in self.judges),
            required_tiebreaker=self.required_tiebreaker,
            judges=self.judges,
        )


def agreement_level(scores: Sequence[float], spread: float = 0.5) -> float:
    """1 - min(1, population stddev / spread)."""
    stddev = float(np.std(np.asarray(scores, dtype=float)))
    return 1.0 - min(1.0, stddev / spread)


def aggregate_evaluations(
    judges: Sequence[JudgeResult], rubric: Rubric
) -> tuple[CriterionEvaluation, ...]:
    """Per-criterion arithmetic mean across judges, in rubric order."""
    aggregated = []
    for criterion_id in rubric.criterion_ids:
        per_judge = [
            (judge.judge_id, e)
            for judge in judges
            for e in judge.evaluations
            if e.criterion_id == criterion_id
        ]
        mean_score = float(np.mean([e.score for _, e in per_judge]))
        issues = tuple(dict.fromkeys(i for _, e in per_judge for i in e.issues))
        reasoning = " | ".join(
            f"{judge_id}: {e.reasoning}" for judge_id, e in per_judge if e.reasoning
        )
        aggregated.append(
            CriterionEvaluation(
                criterion_id=criterion_id,
                score=mean_score,
                level=score_to_level(mean_score),
                confidence=float(np.mean([e.confidence for _, e in per_judge])),
                reasoning=reasoning,
                issues=issues,
            )
        )
    return tuple(aggregated)


class ConsensusVotingController:
    """Runs 2 evaluators concurrently plus a conditional tiebreaker."""

    def __init__(self, gateway, rubric: Rubric, config: VotingConfig | None = None):
        self.gateway = gateway
        self.rubric = rubric
        self.config = config or VotingConfig()

    def _judge_config(self, index: int, base: EvaluationConfig) -> EvaluationConfig:
        if not self.config.judge_models:
            return base
        model = self.config.judge_models[index % len(self.config.judge_models)]
        return replace(base, model=model)

    async def _run_judge(
        self, index: int, content: str, config: EvaluationConfig
    ) -> JudgeResult:
        evaluations = await self.gateway.evaluate(
            content, self.rubric, self._judge_config(index, config)
        )
        overall = self.rubric.weighted_score({e.criterion_id: e.score for e in evaluations})
        return JudgeResult(
            judge_id=f"judge-{index + 1}",
            overall_score=overall,
            evaluations=tuple(evaluations),
        )

    async def _run_concurrently(self, coros) -> list[JudgeResult]:
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            # Let cancelled passes unwind before the error propagates
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def vote(
        self, content: str, config: EvaluationConfig | None = None
    ) -> ConsensusResult:
        """
        Run a full voting round on content.

        Raises:
            ParseFailure / ExternalCallFailure from any pass; the round is
            aborted and nothing is aggregated.
        """
        config = config or EvaluationConfig()

        judges = await self._run_concurrently(
            [self._run_judge(0, content, config), self._run_judge(1, content, config)]
        )

        difference = abs(judges[0].overall_score - judges[1].overall_score)
        required_tiebreaker = difference > self.config.tolerance + _EPSILON

        if required_tiebreaker:
            logger.info(
                f"Judges disagree ({judges[0].overall_score:.3f} vs "
                f"{judges[1].overall_score:.3f}); running tiebreaker"
            )
            judges.append(await self._run_judge(2, content, config))

        evaluations = aggregate_evaluations(judges, self.rubric)
        overall = self.rubric.weighted_score({e.criterion_id: e.score for e in evaluations})
        agreement = agreement_level(
            [j.overall_score for j in judges], self.config.agreement_spread
        )
        confidence = agreement * (
            self.config.tiebreaker_penalty if required_tiebreaker else 1.0
        )

        logger.info(
            f"Consensus: overall={overall:.3f}, judges={len(judges)}, "
            f"agreement={agreement:.3f}, tiebreaker={required_tiebreaker}"
        )

        return ConsensusResult(
            evaluations=evaluations,
            overall_score=overall,
            agreement_level=agreement,
            judges=tuple(judges),
            required_tiebreaker=required_tiebreaker,
            confidence=confidence,
        )
