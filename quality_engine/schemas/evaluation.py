"""
Schemas for payloads returned by external evaluation collaborators,
plus API request/response validation for the evaluation endpoints.

Untyped model output is converted into these shapes at the gateway
boundary; nothing past that boundary sees raw payloads.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CriterionPayload(BaseModel):
    """One per-criterion entry returned by the evaluator."""

    model_config = ConfigDict(extra="ignore")

    criterion_id: str = Field(..., min_length=1)
    level: int = Field(..., ge=1, le=5)
    score: Optional[float] = Field(None, ge=0.0, le=1.0)
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    reasoning: str = ""
    issues: List[str] = Field(default_factory=list)


class EvaluatorPayload(BaseModel):
    """Structured evaluator output."""

    model_config = ConfigDict(extra="ignore")

    criteria: List[CriterionPayload] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_criteria(self) -> "EvaluatorPayload":
        ids = [c.criterion_id for c in self.criteria]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate criterion entries: {', '.join(duplicates)}")
        return self


class ClaimExtractionPayload(BaseModel):
    """Claims extracted from flagged passages."""

    model_config = ConfigDict(extra="ignore")

    claims: List[str] = Field(default_factory=list)


class ClaimVerificationEntry(BaseModel):
    """Verification outcome for a single claim."""

    model_config = ConfigDict(extra="ignore")

    claim: str = Field(..., min_length=1)
    verified: bool
    excerpt: Optional[str] = None
    rationale: str = ""


class ClaimVerificationPayload(BaseModel):
    """Batched verification outcome."""

    model_config = ConfigDict(extra="ignore")

    results: List[ClaimVerificationEntry] = Field(default_factory=list)


# =============================================================================
# API SCHEMAS
# =============================================================================


class EvaluationRequestSchema(BaseModel):
    """Schema for an evaluation or processing request."""

    content_id: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    references: Optional[List[str]] = None
    preserved_context: List[str] = Field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


class VerdictResponse(BaseModel):
    """Schema for a verdict response."""

    content_id: Optional[str] = None
    rubric_version: str
    mode: str
    overall_score: float
    decision: str
    confidence: float
    reasoning: str
    criterion_evaluations: List[Dict[str, Any]]
    voting: Optional[Dict[str, Any]] = None
    hallucination_check: Optional[Dict[str, Any]] = None
    fix_recommendations: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: str


class ProcessingResponse(BaseModel):
    """Schema for the evaluate-refine-route outcome."""

    content_id: str
    action: str
    final_content: str
    verdict: VerdictResponse
    refinement: Optional[Dict[str, Any]] = None
    review_item: Optional[Dict[str, Any]] = None
