"""Unit tests for engine wiring and routing."""

import logging

import pytest

from quality_engine.core.exceptions import ConfigurationError, ParseFailure
from quality_engine.services.evaluation.cascade import EvaluationRequest
from quality_engine.services.evaluation.engine import (
    ACTION_ACCEPTED,
    ACTION_MANUAL_REVIEW,
    ACTION_REGENERATE,
    EngineConfig,
    QualityEngine,
)
from quality_engine.services.evaluation.gateway import RetryingEvaluatorGateway
from quality_engine.services.evaluation.refinement_pipeline import RefinementOutcome
from quality_engine.services.evaluation.types import Decision
from quality_engine.utils.logging import ContentIdLogFilter
from tests.helpers import ScriptedEvaluator, ScriptedReviser, evaluator_payload

CONTENT = "Photosynthesis converts light energy into chemical energy."


def _fix_scores(rubric):
    # 0.30 * 0.6 + 0.70 * 0.82 = 0.754: "fix", clear of every borderline band
    scores = dict.fromkeys(rubric.criterion_ids, 0.82)
    scores["factual_accuracy"] = 0.6
    return scores


@pytest.fixture
def build_engine(review_queue):
    def _build(responses, revisions=(), **config):
        evaluator = ScriptedEvaluator(responses)
        reviser = ScriptedReviser(revisions)
        engine = QualityEngine(
            evaluator,
            reviser,
            review_queue,
            config=EngineConfig(evaluator_max_retries=0, **config),
        )
        return engine, evaluator, reviser

    return _build


@pytest.mark.asyncio
async def test_accept_is_published(build_engine, rubric):
    engine, _, reviser = build_engine([evaluator_payload(rubric, score=0.95)])

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.action == ACTION_ACCEPTED
    assert outcome.final_content == CONTENT
    assert outcome.refinement is None
    assert reviser.calls == []


@pytest.mark.asyncio
async def test_escalation_goes_to_review_without_refinement(build_engine, rubric, review_queue):
    engine, evaluator, reviser = build_engine([evaluator_payload(rubric, score=0.30)])

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.verdict.decision == Decision.ESCALATE
    assert outcome.action == ACTION_MANUAL_REVIEW
    assert outcome.refinement is None
    assert reviser.calls == []
    assert len(evaluator.calls) == 1

    pending = await review_queue.list_pending()
    assert len(pending) == 1
    assert pending[0].content_id == "c-1"
    assert pending[0].attempts == 1


@pytest.mark.asyncio
async def test_repeat_escalation_bumps_attempts(build_engine, rubric, review_queue):
    engine, _, _ = build_engine(
        [evaluator_payload(rubric, score=0.30), evaluator_payload(rubric, score=0.20)]
    )

    await engine.process(EvaluationRequest("c-1", CONTENT))
    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.review_item.attempts == 2
    assert len(await review_queue.list_pending()) == 1


@pytest.mark.asyncio
async def test_regenerate_is_returned(build_engine, rubric, review_queue):
    engine, _, reviser = build_engine([evaluator_payload(rubric, score=0.57)])

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.action == ACTION_REGENERATE
    assert reviser.calls == []
    assert await review_queue.list_pending() == []


@pytest.mark.asyncio
async def test_fix_refined_to_acceptance(build_engine, rubric):
    engine, evaluator, reviser = build_engine(
        [evaluator_payload(rubric, scores=_fix_scores(rubric)), evaluator_payload(rubric, score=0.95)],
        ["Photosynthesis converts light energy into chemical energy stored in glucose."],
    )

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.action == ACTION_ACCEPTED
    assert outcome.refinement.outcome == RefinementOutcome.ACCEPTED
    assert outcome.final_content.endswith("stored in glucose.")
    assert [f.criterion_id for f in reviser.calls[0]["issues"]] == ["factual_accuracy"]
    assert len(evaluator.calls) == 2


@pytest.mark.asyncio
async def test_stagnated_refinement_goes_to_review(build_engine, rubric, review_queue):
    scores = _fix_scores(rubric)
    engine, _, _ = build_engine(
        [evaluator_payload(rubric, scores=scores), evaluator_payload(rubric, scores=scores)],
        ["a rewrite that did not help"],
    )

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.action == ACTION_MANUAL_REVIEW
    assert outcome.refinement.outcome == RefinementOutcome.STAGNATED
    assert outcome.review_item.verdict.decision == Decision.FIX
    assert len(await review_queue.list_pending()) == 1


@pytest.mark.asyncio
async def test_degraded_refinement_is_regenerated(build_engine, rubric, review_queue):
    engine, _, _ = build_engine(
        [evaluator_payload(rubric, scores=_fix_scores(rubric)), evaluator_payload(rubric, score=0.57)],
        ["a worse rewrite"],
    )

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.action == ACTION_REGENERATE
    assert outcome.refinement.outcome == RefinementOutcome.DEGRADED
    assert await review_queue.list_pending() == []


@pytest.mark.asyncio
async def test_failed_refinement_goes_to_review(build_engine, rubric, review_queue):
    engine, _, _ = build_engine(
        [evaluator_payload(rubric, scores=_fix_scores(rubric)), "not json"],
        ["rewrite"],
    )

    outcome = await engine.process(EvaluationRequest("c-1", CONTENT))

    assert outcome.action == ACTION_MANUAL_REVIEW
    assert outcome.refinement.outcome == RefinementOutcome.FAILED
    assert outcome.final_content == CONTENT


@pytest.mark.asyncio
async def test_first_evaluation_failure_propagates(build_engine, review_queue):
    engine, _, _ = build_engine(["garbage"])

    with pytest.raises(ParseFailure):
        await engine.process(EvaluationRequest("c-1", CONTENT))
    assert await review_queue.list_pending() == []


def test_retry_wrapper_enabled_by_default(review_queue):
    engine = QualityEngine(ScriptedEvaluator(), ScriptedReviser(), review_queue)
    assert isinstance(engine.gateway, RetryingEvaluatorGateway)


def test_outcome_serialization_is_json_ready():
    import json

    from tests.helpers import make_verdict
    from quality_engine.services.evaluation.engine import ProcessingOutcome

    outcome = ProcessingOutcome("c-1", ACTION_ACCEPTED, "text", make_verdict(0.9, Decision.ACCEPT))
    assert json.loads(json.dumps(outcome.to_dict()))["action"] == "accepted"


@pytest.mark.parametrize(
    "kwargs", [{"evaluator_max_retries": 3}, {"passing_threshold": 0.0}]
)
def test_invalid_engine_config(kwargs):
    with pytest.raises(ConfigurationError):
        EngineConfig(**kwargs)


def test_get_quality_engine_uses_settings(review_queue):
    from quality_engine.services.evaluation import get_quality_engine

    engine = get_quality_engine(ScriptedEvaluator(), ScriptedReviser(), review_queue)

    assert engine.config.thresholds.boundaries == (0.85, 0.65, 0.50)
    assert engine.rubric.version == "edu-content-v1"


@pytest.mark.asyncio
async def test_processing_logs_carry_the_content_id(build_engine, rubric):
    engine, _, _ = build_engine([evaluator_payload(rubric, score=0.30)])
    records = []

    class _Capture(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = _Capture(level=logging.DEBUG)
    handler.addFilter(ContentIdLogFilter())
    package_logger = logging.getLogger("quality_engine")
    previous_level = package_logger.level
    package_logger.setLevel(logging.DEBUG)
    package_logger.addHandler(handler)
    try:
        await engine.process(EvaluationRequest("c-42", CONTENT))
    finally:
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)

    assert any("Queued content c-42" in r.getMessage() for r in records)
    assert {r.content_id for r in records} == {"c-42"}
