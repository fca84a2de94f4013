"""
Fact Verification Gate
======================

Checks claims from high-risk passages against reference material.

Only invoked when entropy analysis says verification is required:
1. Extract verifiable claims from the flagged passages only
2. Without references, every claim is unverified (confidence 0.5)
3. Otherwise verify all claims in one batched call
4. confidence = verified / total; passes at >= 0.75

The gate annotates a verdict; it never touches the content.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from pydantic import ValidationError

from ...core.exceptions import ExternalCallFailure, ParseFailure
from ...schemas.evaluation import ClaimExtractionPayload, ClaimVerificationPayload
from .clients import FactCheckClient
from .entropy import EntropyAnalysis
from .gateway import EVALUATION_TEMPERATURE, decode_structured_output

logger = logging.getLogger(__name__)

NO_CONTEXT_REASON = "No reference context available to verify this claim"


@dataclass(frozen=True)
class FactCheckConfig:
    pass_threshold: float = 0.75
    no_context_confidence: float = 0.5
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ClaimVerdict:
    claim: str
    verified: bool
    excerpt: str | None
    rationale: str


@dataclass(frozen=True)
class FactCheckResult:
    passed: bool
    confidence: float
    entropy_score: float
    flagged_passages: tuple[str, ...]
    claims: tuple[ClaimVerdict, ...]
    no_context: bool = False

    @property
    def unverified_claims(self) -> list[str]:
        return [c.claim for c in self.claims if not c.verified]


class FactVerificationGate:
    """Conditionally verifies flagged claims against references."""

    def __init__(self, client: FactCheckClient, config: FactCheckConfig | None = None):
        self.client = client
        self.config = config or FactCheckConfig()

    async def _call(self, operation: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.config.timeout_seconds)
        except TimeoutError as e:
            raise ExternalCallFailure(
                f"Fact check {operation} timed out after {self.config.timeout_seconds}s",
                collaborator="fact_checker",
                original_error=e,
                timeout_seconds=self.config.timeout_seconds,
            ) from e
        except (ParseFailure, ExternalCallFailure):
            raise
        except Exception as e:
            raise ExternalCallFailure(
                f"Fact check {operation} failed: {e}",
                collaborator="fact_checker",
                original_error=e,
            ) from e

    async def extract_claims(self, passages: Sequence[str]) -> list[str]:
        raw = await self._call(
            "claim extraction",
            self.client.extract_claims(passages, temperature=EVALUATION_TEMPERATURE),
        )
        data = decode_structured_output(raw, source="claim_extractor")
        try:
            payload = ClaimExtractionPayload.model_validate(data)
        except ValidationError as e:
            raise ParseFailure(
                "Claim extraction output failed validation",
                original_error=e,
                source="claim_extractor",
            ) from e
        # Preserve order, drop blanks and duplicates
        return list(dict.fromkeys(c.strip() for c in payload.claims if c.strip()))

    async def verify_claims(
        self, claims: Sequence[str], references: Sequence[str]
    ) -> list[ClaimVerdict]:
        raw = await self._call(
            "claim verification",
            self.client.verify_claims(
                claims, references, temperature=EVALUATION_TEMPERATURE
            ),
        )
        data = decode_structured_output(raw, source="claim_verifier")
        try:
            payload = ClaimVerificationPayload.model_validate(data)
        except ValidationError as e:
            raise ParseFailure(
                "Claim verification output failed validation",
                original_error=e,
                source="claim_verifier",
            ) from e

        by_claim = {entry.claim.strip(): entry for entry in payload.results}
        verdicts = []
        for claim in claims:
            entry = by_claim.get(claim)
            if entry is None:
                raise ParseFailure(
                    f"Verifier returned no result for claim: {claim[:80]}",
                    source="claim_verifier",
                )
            verdicts.append(
                ClaimVerdict(
                    claim=claim,
                    verified=entry.verified,
                    excerpt=entry.excerpt,
                    rationale=entry.rationale,
                )
            )
        return verdicts

    async def verify(
        self,
        analysis: EntropyAnalysis,
        references: Sequence[str] | None = None,
    ) -> FactCheckResult:
        """
        Verify claims from the flagged passages of an entropy analysis.

        Args:
            analysis: Entropy analysis of the content
            references: Ordered reference passages (None or empty when no
                retrieval context exists)

        Returns:
            FactCheckResult with pass/fail and unverified claims
        """
        flagged = tuple(analysis.flagged_passages)

        # Claims come from flagged passages only
        claims = await self.extract_claims(flagged) if flagged else []
        if not claims:
            return FactCheckResult(
                passed=True,
                confidence=1.0,
                entropy_score=analysis.entropy_score,
                flagged_passages=flagged,
                claims=(),
            )

        if not references:
            logger.info(f"No reference context; {len(claims)} claim(s) left unverified")
            verdicts = tuple(
                ClaimVerdict(claim=c, verified=False, excerpt=None, rationale=NO_CONTEXT_REASON)
                for c in claims
            )
            confidence = self.config.no_context_confidence
            return FactCheckResult(
                passed=confidence >= self.config.pass_threshold,
                confidence=confidence,
                entropy_score=analysis.entropy_score,
                flagged_passages=flagged,
                claims=verdicts,
                no_context=True,
            )

        verdicts = tuple(await self.verify_claims(claims, references))
        verified = sum(1 for v in verdicts if v.verified)
        confidence = verified / len(verdicts)

        logger.info(
            f"Fact check: {verified}/{len(verdicts)} claims verified "
            f"(confidence={confidence:.2f})"
        )
        return FactCheckResult(
            passed=confidence >= self.config.pass_threshold,
            confidence=confidence,
            entropy_score=analysis.entropy_score,
            flagged_passages=flagged,
            claims=verdicts,
        )
