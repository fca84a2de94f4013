"""
Evaluation Module
=================

Rubric-based quality evaluation and refinement for generated content.

Components:
- rubric: Weighted criteria with five-level scales
- gateway: Structured evaluator calls and output validation
- consensus: Multi-judge voting with tiebreaker
- cascade: Fast pass with consensus near decision boundaries
- entropy / fact_verification: Hallucination risk and claim checking
- decision / recommendations: Score-to-action mapping and fix guidance
- refinement_pipeline: Bounded revise-and-re-evaluate loop
- engine: Wiring and routing

Usage:
    from quality_engine.services.evaluation import QualityEngine, EvaluationRequest
"""

from .cascade import CascadeConfig, CascadingEvaluationController, EvaluationRequest
from .consensus import ConsensusVotingController, VotingConfig
from .decision import DecisionEngine, DecisionThresholds
from .engine import EngineConfig, ProcessingOutcome, QualityEngine
from .entropy import EntropyAnalysis, EntropyRiskEstimator, TokenDistribution
from .fact_verification import FactCheckConfig, FactCheckResult, FactVerificationGate
from .gateway import EvaluationConfig, EvaluatorGateway, RetryingEvaluatorGateway
from .recommendations import FixRecommendationGenerator
from .refinement_pipeline import (
    RefinementConfig,
    RefinementOutcome,
    RefinementResult,
    SelfRefinementLoop,
)
from .rubric import Criterion, Rubric, WeightClass, default_rubric
from .types import (
    CriterionEvaluation,
    Decision,
    EvaluationMode,
    FixRecommendation,
    HallucinationCheck,
    Priority,
    RiskLevel,
    Verdict,
    VotingMetadata,
)


def get_quality_engine(evaluator_client, reviser, review_queue, **kwargs):
    """Get a quality engine configured from the environment."""
    from ...core.config import get_settings

    return QualityEngine(
        evaluator_client,
        reviser,
        review_queue,
        config=kwargs.pop("config", None) or get_settings().engine_config(),
        **kwargs,
    )


__all__ = [
    "CascadeConfig",
    "CascadingEvaluationController",
    "ConsensusVotingController",
    "Criterion",
    "CriterionEvaluation",
    "Decision",
    "DecisionEngine",
    "DecisionThresholds",
    "EngineConfig",
    "EntropyAnalysis",
    "EntropyRiskEstimator",
    "EvaluationConfig",
    "EvaluationMode",
    "EvaluationRequest",
    "EvaluatorGateway",
    "FactCheckConfig",
    "FactCheckResult",
    "FactVerificationGate",
    "FixRecommendation",
    "FixRecommendationGenerator",
    "HallucinationCheck",
    "Priority",
    "ProcessingOutcome",
    "QualityEngine",
    "RefinementConfig",
    "RefinementOutcome",
    "RefinementResult",
    "RetryingEvaluatorGateway",
    "RiskLevel",
    "Rubric",
    "SelfRefinementLoop",
    "TokenDistribution",
    "Verdict",
    "VotingMetadata",
    "WeightClass",
    "default_rubric",
    "get_quality_engine",
]
