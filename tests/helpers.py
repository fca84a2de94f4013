"""
Builders and scripted collaborator fakes shared across the unit tests.
"""

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import redis

from quality_engine.services.evaluation.rubric import Rubric, default_rubric, score_to_level
from quality_engine.services.evaluation.types import (
    CriterionEvaluation,
    Decision,
    EvaluationMode,
    FixRecommendation,
    Priority,
    Verdict,
)

# =============================================================================
# PAYLOAD & VERDICT BUILDERS
# =============================================================================


def evaluator_payload(
    rubric: Rubric,
    score: float | None = None,
    scores: Mapping[str, float] | None = None,
    issues: Mapping[str, Sequence[str]] | None = None,
) -> dict[str, Any]:
    """Evaluator output giving every criterion ``score`` (or its entry in ``scores``)."""
    entries = []
    for criterion_id in rubric.criterion_ids:
        value = scores[criterion_id] if scores is not None else score
        entries.append(
            {
                "criterion_id": criterion_id,
                "level": score_to_level(value),
                "score": value,
                "confidence": 0.9,
                "reasoning": f"{criterion_id} assessed",
                "issues": list((issues or {}).get(criterion_id, [])),
            }
        )
    return {"criteria": entries}


def make_verdict(
    score: float,
    decision: Decision,
    fixes: Sequence[FixRecommendation] = (),
    content_id: str = "content-1",
) -> Verdict:
    rubric = default_rubric()
    return Verdict(
        criterion_evaluations=tuple(
            CriterionEvaluation(
                criterion_id=cid,
                score=score,
                level=score_to_level(score),
                confidence=0.9,
                reasoning="",
            )
            for cid in rubric.criterion_ids
        ),
        overall_score=score,
        decision=decision,
        confidence=0.85,
        reasoning=f"score {score}",
        rubric_version=rubric.version,
        mode=EvaluationMode.FAST,
        content_id=content_id,
        fix_recommendations=tuple(fixes),
    )


def make_fix(criterion_id: str = "factual_accuracy", priority: Priority = Priority.HIGH):
    return FixRecommendation(
        criterion_id=criterion_id,
        priority=priority,
        issue=f"{criterion_id} below threshold",
        suggested_fix="Improve it.",
        score=0.5,
    )


# =============================================================================
# COLLABORATOR FAKES
# =============================================================================


class ScriptedEvaluator:
    """EvaluatorClient returning (or raising) scripted responses in order."""

    def __init__(self, responses: Sequence[Any] = (), delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def complete(self, prompt: str, *, model: str, temperature: float):
        self.calls.append({"prompt": prompt, "model": model, "temperature": temperature})
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise RuntimeError("no scripted evaluator response left")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class ScriptedReviser:
    """ContentReviser returning scripted revisions in order."""

    def __init__(self, revisions: Sequence[Any] = ()):
        self.revisions = list(revisions)
        self.calls: list[dict[str, Any]] = []

    async def revise(self, content, issues, preserved_context) -> str:
        self.calls.append(
            {"content": content, "issues": list(issues), "preserve": list(preserved_context)}
        )
        revision = self.revisions.pop(0)
        if isinstance(revision, BaseException):
            raise revision
        return revision


class ScriptedCascade:
    """Stand-in for the cascading controller returning scripted verdicts."""

    def __init__(self, verdicts: Sequence[Any]):
        self.verdicts = list(verdicts)
        self.requests = []

    async def evaluate(self, request):
        self.requests.append(request)
        verdict = self.verdicts.pop(0)
        if isinstance(verdict, BaseException):
            raise verdict
        return verdict


class FakeRedis:
    """Dict-backed subset of the redis.asyncio client used by RedisReviewStore.

    Every write bumps a per-key version so WATCH can detect interleaved writes.
    """

    def __init__(self):
        self.strings: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.versions: dict[str, int] = {}

    def _touch(self, key):
        self.versions[key] = self.versions.get(key, 0) + 1

    def write_from_another_client(self, key, value):
        """Simulate a competing worker writing ``key`` outside any pipeline."""
        self.strings[key] = value
        self._touch(key)

    async def get(self, key):
        return self.strings.get(key)

    async def mget(self, keys):
        return [self.strings.get(key) for key in keys]

    async def set(self, key, value):
        self.strings[key] = value
        self._touch(key)
        return True

    async def delete(self, key):
        self._touch(key)
        return 1 if self.strings.pop(key, None) is not None else 0

    async def zadd(self, key, mapping):
        zset = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrem(self, key, member):
        return 1 if self.zsets.get(key, {}).pop(member, None) is not None else 0

    async def zrange(self, key, start, end):
        members = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1])
        names = [m for m, _ in members]
        return names[start:] if end == -1 else names[start : end + 1]

    def pipeline(self, transaction=True):
        return _FakePipeline(self)


class _FakePipeline:
    """Buffers commands; while watching (before MULTI) commands run immediately."""

    def __init__(self, redis_client):
        self._redis = redis_client
        self._ops = []
        self._watched: dict[str, int] = {}
        self._in_multi = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.reset()
        return False

    def reset(self):
        self._ops = []
        self._watched = {}
        self._in_multi = False

    async def watch(self, *keys):
        for key in keys:
            self._watched[key] = self._redis.versions.get(key, 0)
        return True

    def multi(self):
        self._in_multi = True

    def __getattr__(self, name):
        command = getattr(self._redis, name)
        if self._watched and not self._in_multi:
            return command

        def queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self

        return queue

    async def execute(self):
        try:
            for key, version in self._watched.items():
                if self._redis.versions.get(key, 0) != version:
                    raise redis.WatchError(f"Watched variable changed: {key}")
            return [await getattr(self._redis, n)(*a, **kw) for n, a, kw in self._ops]
        finally:
            self.reset()
