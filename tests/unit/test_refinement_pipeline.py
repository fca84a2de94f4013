"""Unit tests for the self-refinement loop."""

import asyncio

import pytest

from quality_engine.core.exceptions import ConfigurationError, ExternalCallFailure
from quality_engine.services.evaluation.cascade import EvaluationRequest
from quality_engine.services.evaluation.refinement_pipeline import (
    RefinementConfig,
    RefinementOutcome,
    SelfRefinementLoop,
)
from quality_engine.services.evaluation.types import Decision
from tests.helpers import ScriptedCascade, ScriptedReviser, make_fix, make_verdict

REQUEST = EvaluationRequest(
    content_id="content-1", content="draft", preserved_context=("Keep the title",)
)


def _loop(verdicts, revisions, **config):
    cascade = ScriptedCascade(verdicts)
    reviser = ScriptedReviser(revisions)
    loop = SelfRefinementLoop(cascade, reviser, RefinementConfig(**config))
    return loop, cascade, reviser


@pytest.mark.asyncio
async def test_accepted_without_iterations():
    loop, _, reviser = _loop([make_verdict(0.9, Decision.ACCEPT)], [])

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.ACCEPTED
    assert result.success and result.fully_successful
    assert result.iterations_used == 0
    assert result.final_content == "draft"
    assert reviser.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("decision", [Decision.REGENERATE, Decision.ESCALATE])
async def test_not_fixable_stops_immediately(decision):
    loop, _, reviser = _loop([make_verdict(0.4, decision)], [])

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.NOT_FIXABLE
    assert result.success is False
    assert reviser.calls == []


@pytest.mark.asyncio
async def test_fix_then_accept():
    loop, cascade, reviser = _loop(
        [make_verdict(0.70, Decision.FIX, [make_fix()]), make_verdict(0.88, Decision.ACCEPT)],
        ["revised draft"],
    )

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.ACCEPTED
    assert result.iterations_used == 1
    assert result.final_content == "revised draft"
    assert result.history[0].improvement == pytest.approx(0.18)
    assert result.history[0].fixes_applied == ("factual_accuracy",)
    assert reviser.calls[0]["preserve"] == ["Keep the title"]
    assert cascade.requests[1].content == "revised draft"
    assert len(result.verdicts) == 2


@pytest.mark.asyncio
async def test_initial_verdict_is_reused():
    loop, cascade, _ = _loop([make_verdict(0.9, Decision.ACCEPT)], ["revised"])

    result = await loop.refine(
        REQUEST, initial_verdict=make_verdict(0.7, Decision.FIX, [make_fix()])
    )

    assert result.outcome == RefinementOutcome.ACCEPTED
    assert len(cascade.requests) == 1
    assert cascade.requests[0].content == "revised"


@pytest.mark.asyncio
async def test_stagnation_stops_loop():
    loop, _, reviser = _loop(
        [
            make_verdict(0.70, Decision.FIX, [make_fix()]),
            make_verdict(0.70, Decision.FIX, [make_fix()]),
        ],
        ["revision 1", "revision 2"],
        max_iterations=3,
    )

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.STAGNATED
    assert result.success is False
    assert result.iterations_used == 1
    assert len(reviser.calls) == 1


@pytest.mark.asyncio
async def test_iterations_are_bounded():
    loop, _, reviser = _loop(
        [
            make_verdict(0.66, Decision.FIX, [make_fix()]),
            make_verdict(0.70, Decision.FIX, [make_fix()]),
            make_verdict(0.75, Decision.FIX, [make_fix()]),
        ],
        ["revision 1", "revision 2", "revision 3"],
        max_iterations=2,
    )

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.EXHAUSTED
    assert result.iterations_used == 2
    assert len(reviser.calls) == 2
    assert result.success is True
    assert result.fully_successful is False
    assert result.final_content == "revision 2"


@pytest.mark.asyncio
async def test_zero_iterations_returns_initial_verdict():
    loop, _, reviser = _loop([make_verdict(0.7, Decision.FIX, [make_fix()])], [], max_iterations=0)

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.EXHAUSTED
    assert result.iterations_used == 0
    assert reviser.calls == []


@pytest.mark.asyncio
async def test_degraded_revision():
    loop, _, _ = _loop(
        [make_verdict(0.70, Decision.FIX, [make_fix()]), make_verdict(0.55, Decision.REGENERATE)],
        ["worse draft"],
    )

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.DEGRADED
    assert result.success is False
    assert result.final_verdict.decision == Decision.REGENERATE


@pytest.mark.asyncio
async def test_top_fixes_only_are_sent():
    fixes = [make_fix(f"criterion_{i}") for i in range(5)]
    loop, _, reviser = _loop(
        [make_verdict(0.70, Decision.FIX, fixes), make_verdict(0.9, Decision.ACCEPT)],
        ["revised"],
        top_fixes=3,
    )

    await loop.refine(REQUEST)

    assert [f.criterion_id for f in reviser.calls[0]["issues"]] == [
        "criterion_0",
        "criterion_1",
        "criterion_2",
    ]


@pytest.mark.asyncio
async def test_reviser_failure_ends_loop_with_last_verdict():
    initial = make_verdict(0.70, Decision.FIX, [make_fix()])
    loop, _, _ = _loop([initial], [ConnectionError("reviser unreachable")])

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.FAILED
    assert result.final_verdict is initial
    assert result.final_content == "draft"
    assert "reviser unreachable" in result.error


@pytest.mark.asyncio
async def test_empty_revision_fails():
    loop, _, _ = _loop([make_verdict(0.70, Decision.FIX, [make_fix()])], ["   "])

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.FAILED


@pytest.mark.asyncio
async def test_slow_reviser_times_out():
    class SlowReviser:
        async def revise(self, content, issues, preserved_context):
            await asyncio.sleep(1)
            return "too late"

    loop = SelfRefinementLoop(
        ScriptedCascade([make_verdict(0.70, Decision.FIX, [make_fix()])]),
        SlowReviser(),
        RefinementConfig(revision_timeout_seconds=0.01),
    )

    result = await loop.refine(REQUEST)

    assert result.outcome == RefinementOutcome.FAILED
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_first_evaluation_failure_propagates():
    loop, _, _ = _loop(
        [ExternalCallFailure("evaluator down", collaborator="evaluator")], []
    )

    with pytest.raises(ExternalCallFailure):
        await loop.refine(REQUEST)


def test_invalid_config():
    with pytest.raises(ConfigurationError):
        RefinementConfig(max_iterations=-1)
    with pytest.raises(ConfigurationError):
        RefinementConfig(top_fixes=0)


def test_result_serialization():
    from quality_engine.services.evaluation.refinement_pipeline import (
        IterationRecord,
        RefinementResult,
    )

    verdict = make_verdict(0.88, Decision.ACCEPT)
    result = RefinementResult(
        final_content="text",
        final_verdict=verdict,
        verdicts=(verdict,),
        iterations_used=1,
        history=(IterationRecord(1, 0.7, 0.88, ("factual_accuracy",), Decision.ACCEPT, 12.5),),
        outcome=RefinementOutcome.ACCEPTED,
        success=True,
    )

    data = result.to_dict()

    assert data["outcome"] == "accepted"
    assert data["final_decision"] == "accept"
    assert data["history"][0]["improvement"] == pytest.approx(0.18)
