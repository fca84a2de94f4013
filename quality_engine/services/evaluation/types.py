"""
Evaluation value types shared by every stage of the engine.

All of these are immutable once produced. A new Verdict is created for every
evaluation pass, including each refinement iteration.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Decision(str, Enum):
    """Action taken for a piece of content."""

    ACCEPT = "accept"
    FIX = "fix"
    REGENERATE = "regenerate"
    ESCALATE = "escalate"


class RiskLevel(str, Enum):
    """Hallucination risk classification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    """Fix recommendation priority."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class EvaluationMode(str, Enum):
    """Which path of the cascade produced a verdict."""

    FAST = "fast"
    CONSENSUS = "consensus"


@dataclass(frozen=True)
class CriterionEvaluation:
    """One evaluator's verdict for one criterion."""

    criterion_id: str
    score: float  # 0-1
    level: int  # 1-5
    confidence: float  # 0-1
    reasoning: str
    issues: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion_id": self.criterion_id,
            "score": self.score,
            "level": self.level,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "issues": list(self.issues),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CriterionEvaluation":
        return cls(
            criterion_id=data["criterion_id"],
            score=data["score"],
            level=data["level"],
            confidence=data["confidence"],
            reasoning=data.get("reasoning", ""),
            issues=tuple(data.get("issues", ())),
        )


@dataclass(frozen=True)
class JudgeResult:
    """A single evaluator pass taking part in a consensus vote."""

    judge_id: str
    overall_score: float
    evaluations: tuple[CriterionEvaluation, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "judge_id": self.judge_id,
            "overall_score": self.overall_score,
            "evaluations": [e.to_dict() for e in self.evaluations],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JudgeResult":
        return cls(
            judge_id=data["judge_id"],
            overall_score=data["overall_score"],
            evaluations=tuple(
                CriterionEvaluation.from_dict(e) for e in data.get("evaluations", ())
            ),
        )


@dataclass(frozen=True)
class VotingMetadata:
    """Consensus details attached to a verdict."""

    judge_count: int
    agreement_level: float
    individual_scores: tuple[float, ...]
    required_tiebreaker: bool
    judges: tuple[JudgeResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "judge_count": self.judge_count,
            "agreement_level": self.agreement_level,
            "individual_scores": list(self.individual_scores),
            "required_tiebreaker": self.required_tiebreaker,
            "judges": [j.to_dict() for j in self.judges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VotingMetadata":
        return cls(
            judge_count=data["judge_count"],
            agreement_level=data["agreement_level"],
            individual_scores=tuple(data.get("individual_scores", ())),
            required_tiebreaker=data["required_tiebreaker"],
            judges=tuple(JudgeResult.from_dict(j) for j in data.get("judges", ())),
        )


@dataclass(frozen=True)
class HallucinationCheck:
    """Entropy analysis plus (optional) fact-verification outcome."""

    entropy_score: float
    risk_level: RiskLevel
    requires_verification: bool
    rag_verification_passed: bool = True
    verification_confidence: float | None = None
    no_context: bool = False
    flagged_passages: tuple[str, ...] = ()
    unverified_claims: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "entropy_score": self.entropy_score,
            "risk_level": self.risk_level.value,
            "requires_verification": self.requires_verification,
            "rag_verification_passed": self.rag_verification_passed,
            "verification_confidence": self.verification_confidence,
            "no_context": self.no_context,
            "flagged_passages": list(self.flagged_passages),
            "unverified_claims": list(self.unverified_claims),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HallucinationCheck":
        return cls(
            entropy_score=data["entropy_score"],
            risk_level=RiskLevel(data["risk_level"]),
            requires_verification=data["requires_verification"],
            rag_verification_passed=data.get("rag_verification_passed", True),
            verification_confidence=data.get("verification_confidence"),
            no_context=data.get("no_context", False),
            flagged_passages=tuple(data.get("flagged_passages", ())),
            unverified_claims=tuple(data.get("unverified_claims", ())),
        )


@dataclass(frozen=True)
class FixRecommendation:
    """A prioritized repair instruction for one criterion."""

    criterion_id: str
    priority: Priority
    issue: str
    suggested_fix: str
    score: float
    preserve: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion_id": self.criterion_id,
            "priority": self.priority.value,
            "issue": self.issue,
            "suggested_fix": self.suggested_fix,
            "score": self.score,
            "preserve": list(self.preserve),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FixRecommendation":
        return cls(
            criterion_id=data["criterion_id"],
            priority=Priority(data["priority"]),
            issue=data["issue"],
            suggested_fix=data["suggested_fix"],
            score=data["score"],
            preserve=tuple(data.get("preserve", ())),
        )


@dataclass(frozen=True)
class Verdict:
    """Complete output of one evaluation pass."""

    criterion_evaluations: tuple[CriterionEvaluation, ...]
    overall_score: float
    decision: Decision
    confidence: float
    reasoning: str
    rubric_version: str
    mode: EvaluationMode
    content_id: str | None = None
    voting: VotingMetadata | None = None
    hallucination_check: HallucinationCheck | None = None
    fix_recommendations: tuple[FixRecommendation, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def criterion_scores(self) -> dict[str, float]:
        return {e.criterion_id: e.score for e in self.criterion_evaluations}

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_id": self.content_id,
            "rubric_version": self.rubric_version,
            "mode": self.mode.value,
            "overall_score": self.overall_score,
            "decision": self.decision.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "criterion_evaluations": [e.to_dict() for e in self.criterion_evaluations],
            "voting": self.voting.to_dict() if self.voting else None,
            "hallucination_check": self.hallucination_check.to_dict()
            if self.hallucination_check
            else None,
            "fix_recommendations": [r.to_dict() for r in self.fix_recommendations],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Verdict":
        return cls(
            criterion_evaluations=tuple(
                CriterionEvaluation.from_dict(e)
                for e in data.get("criterion_evaluations", ())
            ),
            overall_score=data["overall_score"],
            decision=Decision(data["decision"]),
            confidence=data["confidence"],
            reasoning=data.get("reasoning", ""),
            rubric_version=data["rubric_version"],
            mode=EvaluationMode(data.get("mode", EvaluationMode.FAST.value)),
            content_id=data.get("content_id"),
            voting=VotingMetadata.from_dict(data["voting"])
            if data.get("voting")
            else None,
            hallucination_check=HallucinationCheck.from_dict(
                data["hallucination_check"]
            )
            if data.get("hallucination_check")
            else None,
            fix_recommendations=tuple(
                FixRecommendation.from_dict(r)
                for r in data.get("fix_recommendations", ())
            ),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else datetime.now(UTC),
        )
