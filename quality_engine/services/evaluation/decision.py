"""
Decision Engine
===============

Deterministic score -> action mapping:

    score >= accept                 -> accept
    fix <= score < accept           -> fix
    regenerate <= score < fix       -> regenerate
    score < regenerate              -> escalate

Thresholds must satisfy 0 < regenerate < fix < accept <= 1; this is checked
when the thresholds are built, never per call.
"""

import math
from dataclasses import dataclass

from ...core.exceptions import ConfigurationError
from .types import Decision


@dataclass(frozen=True)
class DecisionThresholds:
    """Ordered decision boundaries."""

    accept: float = 0.85
    fix: float = 0.65
    regenerate: float = 0.50

    def __post_init__(self):
        if not 0.0 < self.regenerate < self.fix < self.accept <= 1.0:
            raise ConfigurationError(
                "decision thresholds must satisfy 0 < regenerate < fix < accept <= 1 "
                f"(got regenerate={self.regenerate}, fix={self.fix}, accept={self.accept})"
            )

    @property
    def boundaries(self) -> tuple[float, float, float]:
        return (self.accept, self.fix, self.regenerate)


@dataclass(frozen=True)
class DecisionExplanation:
    decision: Decision
    score: float
    justification: str
    next_action: str


_NEXT_ACTIONS = {
    Decision.ACCEPT: "Publish the content as-is.",
    Decision.FIX: "Run targeted refinement using the prioritized fix recommendations.",
    Decision.REGENERATE: "Discard this draft and regenerate from the original request.",
    Decision.ESCALATE: "Route the content to the manual review queue.",
}


class DecisionEngine:
    """Pure function of overall score and thresholds."""

    def __init__(self, thresholds: DecisionThresholds | None = None):
        self.thresholds = thresholds or DecisionThresholds()

    def decide(self, score: float) -> Decision:
        if math.isnan(score):
            raise ValueError("score must be a number")

        t = self.thresholds
        if score >= t.accept:
            return Decision.ACCEPT
        if score >= t.fix:
            return Decision.FIX
        if score >= t.regenerate:
            return Decision.REGENERATE
        return Decision.ESCALATE

    def explain(self, score: float) -> DecisionExplanation:
        """Decision plus a human-readable justification for audit logs."""
        decision = self.decide(score)
        t = self.thresholds

        if decision == Decision.ACCEPT:
            justification = f"Score {score:.3f} meets the accept threshold ({t.accept:.2f})."
        elif decision == Decision.FIX:
            justification = (
                f"Score {score:.3f} is below accept ({t.accept:.2f}) but at or above "
                f"the fix threshold ({t.fix:.2f}); targeted repair is likely to succeed."
            )
        elif decision == Decision.REGENERATE:
            justification = (
                f"Score {score:.3f} is below the fix threshold ({t.fix:.2f}) but at or "
                f"above regenerate ({t.regenerate:.2f}); repair is unlikely to be enough."
            )
        else:
            justification = (
                f"Score {score:.3f} is below the regenerate threshold "
                f"({t.regenerate:.2f}); automated handling is not appropriate."
            )

        return DecisionExplanation(
            decision=decision,
            score=score,
            justification=justification,
            next_action=_NEXT_ACTIONS[decision],
        )
