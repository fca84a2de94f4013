"""
Entropy Risk Estimator
======================

Cheap hallucination-risk proxy computed from the content itself.

Two strategies:
1. Token uncertainty - Shannon entropy over per-token candidate
   distributions, averaged over sliding windows
2. Lexical heuristics - phrases historically correlated with unsupported
   claims (vague attribution, unqualified statistics, appeals to authority)

The token strategy is used whenever per-token distributions are supplied.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .types import RiskLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenDistribution:
    """Candidate probabilities the generator considered for one emitted token."""

    token: str
    probabilities: tuple[float, ...]


@dataclass(frozen=True)
class PassageWindow:
    """A scored span of the content."""

    passage: str
    entropy: float
    flagged: bool


@dataclass(frozen=True)
class EntropyAnalysis:
    """Hallucination-risk estimate for one piece of content."""

    entropy_score: float
    windows: tuple[PassageWindow, ...]
    risk_level: RiskLevel
    requires_verification: bool
    strategy: str

    @property
    def flagged_passages(self) -> list[str]:
        return [w.passage for w in self.windows if w.flagged]


def requires_verification(risk_level: RiskLevel, windows: Sequence[PassageWindow]) -> bool:
    return risk_level != RiskLevel.LOW or any(w.flagged for w in windows)


def token_entropy(probabilities: Sequence[float]) -> float:
    """Shannon entropy in bits after renormalizing the candidate set."""
    p = np.asarray(probabilities, dtype=float)
    p = p[p > 0]
    if p.size == 0:
        return 0.0
    p = p / p.sum()
    return float(-(p * np.log2(p)).sum())


@dataclass
class TokenUncertaintyConfig:
    """Sliding-window settings for the token strategy."""

    window_size: int = 50
    step: int = 25
    flag_threshold: float = 2.5  # bits; windows above this are flagged
    low_threshold: float = 1.5
    medium_threshold: float = 2.5


class TokenUncertaintyStrategy:
    """Windowed Shannon entropy over per-token candidate distributions."""

    name = "token_uncertainty"

    def __init__(self, config: TokenUncertaintyConfig | None = None):
        self.config = config or TokenUncertaintyConfig()

    def _window_bounds(self, count: int) -> list[tuple[int, int]]:
        size, step = self.config.window_size, self.config.step
        if count <= size:
            return [(0, count)]
        bounds = [(start, start + size) for start in range(0, count - size + 1, step)]
        # Partial window over the trailing tokens no full window reached
        if bounds[-1][1] < count:
            bounds.append((bounds[-1][1], count))
        return bounds

    def analyze(self, distributions: Sequence[TokenDistribution]) -> EntropyAnalysis:
        if not distributions:
            return EntropyAnalysis(
                entropy_score=0.0,
                windows=(),
                risk_level=RiskLevel.LOW,
                requires_verification=False,
                strategy=self.name,
            )

        entropies = np.array([token_entropy(d.probabilities) for d in distributions])

        windows = []
        for start, end in self._window_bounds(len(distributions)):
            mean_entropy = float(entropies[start:end].mean())
            passage = "".join(d.token for d in distributions[start:end]).strip()
            windows.append(
                PassageWindow(
                    passage=passage,
                    entropy=mean_entropy,
                    flagged=mean_entropy > self.config.flag_threshold,
                )
            )

        overall = float(np.mean([w.entropy for w in windows]))
        if overall < self.config.low_threshold:
            risk = RiskLevel.LOW
        elif overall < self.config.medium_threshold:
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.HIGH

        return EntropyAnalysis(
            entropy_score=overall,
            windows=tuple(windows),
            risk_level=risk,
            requires_verification=requires_verification(risk, windows),
            strategy=self.name,
        )


@dataclass
class LexicalHeuristicConfig:
    """Pattern set and bands for the lexical fallback."""

    increment: float = 0.5
    low_threshold: float = 1.0
    medium_threshold: float = 2.0
    patterns: tuple[str, ...] = field(
        default_factory=lambda: (
            # Vague attribution
            r"\b(?:studies|research|reports|sources)\s+(?:show|shows|suggest|suggests|indicate|indicates|prove|proves)\b",
            r"\b(?:some|many)\s+(?:people|experts|scientists|researchers)\s+(?:say|believe|think|claim)\b",
            r"\bit\s+is\s+(?:widely|commonly|generally)\s+(?:known|believed|accepted)\b",
            r"\baccording\s+to\s+(?:some|many|experts|sources)\b",
            # Unqualified statistics
            r"\b\d+(?:\.\d+)?\s?%",
            r"\b\d+\s+out\s+of\s+(?:every\s+)?\d+\b",
            r"\b(?:millions|billions|thousands)\s+of\b",
            # Appeal to authority
            r"\b(?:scientists|experts|doctors|historians)\s+(?:agree|confirm|recommend)\b",
            r"\bit\s+(?:has\s+been|is)\s+(?:proven|scientifically\s+proven)\b",
            r"\bevery(?:one|body)\s+knows\b",
        )
    )


class LexicalHeuristicStrategy:
    """Pattern-matching fallback used when no uncertainty signal is available."""

    name = "lexical_heuristic"

    _SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

    def __init__(self, config: LexicalHeuristicConfig | None = None):
        self.config = config or LexicalHeuristicConfig()
        self._compiled = [re.compile(p, re.IGNORECASE) for p in self.config.patterns]

    def _sentence_risk(self, sentence: str) -> float:
        matches = sum(len(pattern.findall(sentence)) for pattern in self._compiled)
        return matches * self.config.increment

    def analyze(self, content: str) -> EntropyAnalysis:
        sentences = [s.strip() for s in self._SENTENCE_SPLIT.split(content) if s.strip()]

        windows = []
        total = 0.0
        for sentence in sentences:
            risk = self._sentence_risk(sentence)
            total += risk
            windows.append(PassageWindow(passage=sentence, entropy=risk, flagged=risk > 0))

        if total < self.config.low_threshold:
            level = RiskLevel.LOW
        elif total < self.config.medium_threshold:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.HIGH

        return EntropyAnalysis(
            entropy_score=total,
            windows=tuple(windows),
            risk_level=level,
            requires_verification=requires_verification(level, windows),
            strategy=self.name,
        )


class EntropyRiskEstimator:
    """Selects a strategy based on the signal available."""

    def __init__(
        self,
        token_strategy: TokenUncertaintyStrategy | None = None,
        lexical_strategy: LexicalHeuristicStrategy | None = None,
    ):
        self.token_strategy = token_strategy or TokenUncertaintyStrategy()
        self.lexical_strategy = lexical_strategy or LexicalHeuristicStrategy()

    def analyze(
        self,
        content: str,
        token_distributions: Sequence[TokenDistribution] | None = None,
    ) -> EntropyAnalysis:
        if token_distributions:
            analysis = self.token_strategy.analyze(token_distributions)
        else:
            analysis = self.lexical_strategy.analyze(content)

        logger.debug(
            f"Entropy analysis ({analysis.strategy}): score={analysis.entropy_score:.2f}, "
            f"risk={analysis.risk_level.value}, flagged={len(analysis.flagged_passages)}"
        )
        return analysis
