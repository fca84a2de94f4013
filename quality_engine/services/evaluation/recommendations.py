"""
Fix Recommendation Generator
============================

Turns per-criterion deficits into a prioritized repair list.

Priority for a criterion scoring below the rubric passing threshold:
- critical: weight class critical, or gap > 0.3
- high:     weight class high, or gap > 0.2
- medium:   gap > 0.1
- low:      otherwise
"""

from collections.abc import Iterable, Sequence

from .rubric import Criterion, Rubric, WeightClass
from .types import CriterionEvaluation, FixRecommendation, Priority


def _priority(criterion: Criterion, gap: float) -> Priority:
    if criterion.weight_class == WeightClass.CRITICAL or gap > 0.3:
        return Priority.CRITICAL
    if criterion.weight_class == WeightClass.HIGH or gap > 0.2:
        return Priority.HIGH
    if gap > 0.1:
        return Priority.MEDIUM
    return Priority.LOW


class FixRecommendationGenerator:
    """Builds sorted FixRecommendations from criterion evaluations."""

    def __init__(self, rubric: Rubric):
        self.rubric = rubric

    def generate(
        self,
        evaluations: Iterable[CriterionEvaluation],
        preserved_context: Sequence[str] = (),
    ) -> list[FixRecommendation]:
        """
        Recommendations for every criterion below the passing threshold.

        Sorted critical -> low; ties keep rubric order.
        """
        threshold = self.rubric.passing_threshold
        by_id = {e.criterion_id: e for e in evaluations}
        preserve = tuple(preserved_context)

        recommendations = []
        for criterion in self.rubric.criteria:
            evaluation = by_id.get(criterion.id)
            if evaluation is None or evaluation.score >= threshold:
                continue

            # Rounded so 0.75 - 0.45 does not land just above 0.3
            gap = round(threshold - evaluation.score, 9)

            issue = (
                f"{criterion.description} scored {evaluation.score:.2f} "
                f"(passing threshold {threshold:.2f})"
            )
            if evaluation.issues:
                issue += ": " + "; ".join(evaluation.issues)
            elif evaluation.reasoning:
                issue += ": " + evaluation.reasoning

            recommendations.append(
                FixRecommendation(
                    criterion_id=criterion.id,
                    priority=_priority(criterion, gap),
                    issue=issue,
                    suggested_fix=criterion.remedy_text(),
                    score=evaluation.score,
                    preserve=preserve,
                )
            )

        # sorted() is stable, so rubric order survives within a priority
        return sorted(recommendations, key=lambda r: r.priority.rank)
