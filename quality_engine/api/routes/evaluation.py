"""
Evaluation API

Endpoints for scoring content and for the full evaluate-refine-route flow.
"""
from fastapi import APIRouter, Depends

from ...schemas.evaluation import (
    EvaluationRequestSchema,
    ProcessingResponse,
    VerdictResponse,
)
from ...services.evaluation.cascade import EvaluationRequest
from ...services.evaluation.engine import QualityEngine
from ..deps import get_engine

router = APIRouter(prefix="/api/v1/evaluations", tags=["evaluations"])


def _to_request(payload: EvaluationRequestSchema) -> EvaluationRequest:
    return EvaluationRequest(
        content_id=payload.content_id,
        content=payload.content,
        references=tuple(payload.references) if payload.references is not None else None,
        preserved_context=tuple(payload.preserved_context),
    )


@router.post("", response_model=VerdictResponse)
async def evaluate_content(
    payload: EvaluationRequestSchema,
    engine: QualityEngine = Depends(get_engine),
):
    """Evaluate content against the rubric and return a verdict."""
    verdict = await engine.evaluate(_to_request(payload))
    return verdict.to_dict()


@router.post("/process", response_model=ProcessingResponse)
async def process_content(
    payload: EvaluationRequestSchema,
    engine: QualityEngine = Depends(get_engine),
):
    """
    Evaluate, refine when fixable, and route the content.

    The response ``action`` is one of ``accepted``, ``regenerate`` or
    ``manual_review``.
    """
    outcome = await engine.process(_to_request(payload))
    return outcome.to_dict()
