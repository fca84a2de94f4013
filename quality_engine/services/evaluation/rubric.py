"""
Rubric Model
============

Static, weighted, multi-criterion scoring definition.

Each criterion carries a weight class (critical/high/medium/low), a numeric
weight, a 1-5 level ladder and a remedy template used when the criterion
needs repair. Weights across a rubric sum to 1.0; anything else is a
configuration error raised when the rubric is built.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ...core.exceptions import ConfigurationError

WEIGHT_TOLERANCE = 1e-6
DEFAULT_PASSING_THRESHOLD = 0.75
LEVELS = (1, 2, 3, 4, 5)


class WeightClass(str, Enum):
    """Importance class of a rubric criterion."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def multiplier(self) -> float:
        return _WEIGHT_MULTIPLIERS[self]


_WEIGHT_MULTIPLIERS = {
    WeightClass.CRITICAL: 4.0,
    WeightClass.HIGH: 3.0,
    WeightClass.MEDIUM: 2.0,
    WeightClass.LOW: 1.0,
}


def level_to_score(level: int) -> float:
    """Normalize a 1-5 ordinal level onto [0, 1]."""
    if level not in LEVELS:
        raise ValueError(f"Level must be one of {LEVELS}, got {level}")
    return (level - 1) / 4.0


def score_to_level(score: float) -> int:
    """Nearest 1-5 level for a normalized score."""
    return int(min(5, max(1, round(1 + score * 4))))


@dataclass(frozen=True)
class Criterion:
    """A single rubric criterion."""

    id: str
    description: str
    weight_class: WeightClass
    weight: float
    levels: Mapping[int, str] = field(default_factory=dict)
    remedy: str = ""

    def __post_init__(self):
        if not self.id:
            raise ConfigurationError("criterion id must not be empty")
        if not isinstance(self.weight_class, WeightClass):
            object.__setattr__(self, "weight_class", WeightClass(self.weight_class))
        if not 0.0 < self.weight <= 1.0:
            raise ConfigurationError(
                f"criterion '{self.id}' weight must be in (0, 1], got {self.weight}"
            )
        if self.levels and set(self.levels) != set(LEVELS):
            raise ConfigurationError(
                f"criterion '{self.id}' must describe levels 1-5, got {sorted(self.levels)}"
            )

    def remedy_text(self) -> str:
        return self.remedy or f"Revise the content to improve: {self.description}."

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "weight_class": self.weight_class.value,
            "weight": self.weight,
            "levels": {str(k): v for k, v in self.levels.items()},
            "remedy": self.remedy,
        }


@dataclass(frozen=True)
class Rubric:
    """Ordered, versioned set of weighted criteria."""

    version: str
    criteria: tuple[Criterion, ...]
    passing_threshold: float = DEFAULT_PASSING_THRESHOLD

    def __post_init__(self):
        criteria = tuple(self.criteria)
        object.__setattr__(self, "criteria", criteria)

        if not criteria:
            raise ConfigurationError("rubric must define at least one criterion")

        ids = [c.id for c in criteria]
        duplicates = {i for i in ids if ids.count(i) > 1}
        if duplicates:
            raise ConfigurationError(
                f"duplicate criterion ids: {', '.join(sorted(duplicates))}"
            )

        total = math.fsum(c.weight for c in criteria)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(
                f"rubric '{self.version}' weights sum to {total:.6f}, expected 1.0"
            )

        if not 0.0 < self.passing_threshold <= 1.0:
            raise ConfigurationError(
                f"passing threshold must be in (0, 1], got {self.passing_threshold}"
            )

    @classmethod
    def from_weight_classes(
        cls,
        version: str,
        criteria: Iterable[Mapping[str, Any]],
        passing_threshold: float = DEFAULT_PASSING_THRESHOLD,
    ) -> "Rubric":
        """
        Build a rubric whose weights are derived from weight-class multipliers.

        Each mapping needs ``id``, ``description`` and ``weight_class``;
        ``levels`` and ``remedy`` are optional.
        """
        entries = list(criteria)
        classes = [WeightClass(entry["weight_class"]) for entry in entries]
        total = sum(wc.multiplier for wc in classes)
        built = []
        for entry, weight_class in zip(entries, classes):
            built.append(
                Criterion(
                    id=entry["id"],
                    description=entry["description"],
                    weight_class=weight_class,
                    weight=weight_class.multiplier / total,
                    levels=entry.get("levels", {}),
                    remedy=entry.get("remedy", ""),
                )
            )
        return cls(
            version=version, criteria=tuple(built), passing_threshold=passing_threshold
        )

    @property
    def criterion_ids(self) -> list[str]:
        return [c.id for c in self.criteria]

    @property
    def weights(self) -> dict[str, float]:
        return {c.id: c.weight for c in self.criteria}

    def get(self, criterion_id: str) -> Criterion:
        for criterion in self.criteria:
            if criterion.id == criterion_id:
                return criterion
        raise KeyError(criterion_id)

    def weighted_score(self, scores: Mapping[str, float]) -> float:
        """Weighted sum of normalized per-criterion scores.

        Every rubric criterion must be present in ``scores``.
        """
        missing = [c.id for c in self.criteria if c.id not in scores]
        if missing:
            raise KeyError(f"missing scores for criteria: {', '.join(missing)}")
        return math.fsum(scores[c.id] * c.weight for c in self.criteria)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "passing_threshold": self.passing_threshold,
            "criteria": [c.to_dict() for c in self.criteria],
        }


def default_rubric(passing_threshold: float = DEFAULT_PASSING_THRESHOLD) -> Rubric:
    """Rubric for generated educational content."""
    return Rubric(
        version="edu-content-v1",
        passing_threshold=passing_threshold,
        criteria=(
            Criterion(
                id="factual_accuracy",
                description="Facts, figures and terminology are correct",
                weight_class=WeightClass.CRITICAL,
                weight=0.30,
                levels={
                    1: "Multiple factual errors that would mislead a learner",
                    2: "At least one significant factual error",
                    3: "Minor inaccuracies or imprecise terminology",
                    4: "Accurate with negligible imprecision",
                    5: "Fully accurate and precise",
                },
                remedy="Correct every inaccurate fact, number, date and technical term; "
                "remove claims that cannot be supported.",
            ),
            Criterion(
                id="objective_alignment",
                description="Content addresses the stated learning objectives",
                weight_class=WeightClass.HIGH,
                weight=0.25,
                levels={
                    1: "Objectives are not addressed",
                    2: "Objectives are touched on superficially",
                    3: "Most objectives are addressed",
                    4: "All objectives are addressed",
                    5: "All objectives are addressed with depth and examples",
                },
                remedy="Cover each learning objective explicitly and tie examples back to it.",
            ),
            Criterion(
                id="educational_clarity",
                description="Explanation is clear at the target level",
                weight_class=WeightClass.HIGH,
                weight=0.20,
                levels={
                    1: "Confusing or far above the target level",
                    2: "Frequently unclear",
                    3: "Understandable with effort",
                    4: "Clear with occasional dense passages",
                    5: "Consistently clear and well paced",
                },
                remedy="Use simpler words and shorter sentences. Add examples where helpful.",
            ),
            Criterion(
                id="completeness",
                description="All key concepts are covered",
                weight_class=WeightClass.MEDIUM,
                weight=0.15,
                levels={
                    1: "Most key concepts are missing",
                    2: "Several key concepts are missing",
                    3: "Some key concepts are missing",
                    4: "Minor gaps only",
                    5: "Complete coverage",
                },
                remedy="Include all important points. Don't skip key concepts.",
            ),
            Criterion(
                id="cultural_appropriateness",
                description="Examples and tone suit the intended audience",
                weight_class=WeightClass.LOW,
                weight=0.10,
                levels={
                    1: "Inappropriate for the audience",
                    2: "Several unsuitable examples",
                    3: "Generic, neither suitable nor unsuitable",
                    4: "Mostly relevant examples",
                    5: "Relevant, respectful examples throughout",
                },
                remedy="Use examples and context relevant to the intended learners.",
            ),
        ),
    )
