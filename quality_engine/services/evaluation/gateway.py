"""
Evaluator Gateway
=================

Runs one scoring pass of content against a rubric and converts the
evaluator's output into CriterionEvaluations.

The gateway is a pure adapter: it renders the rubric prompt, calls the
evaluator under a timeout at temperature 0, and validates the payload.
Malformed output raises ParseFailure; timeouts and client errors raise
ExternalCallFailure. Neither is retried here; RetryingEvaluatorGateway is
the bounded caller-side wrapper.
"""

import asyncio
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ...core.exceptions import (
    EVALUATOR_RETRY_CONFIG,
    ExternalCallFailure,
    ParseFailure,
    RetryConfig,
    with_retry,
)
from ...schemas.evaluation import EvaluatorPayload
from .clients import EvaluatorClient
from .rubric import Rubric, level_to_score
from .types import CriterionEvaluation

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

# Scoring is deterministic; not configurable
EVALUATION_TEMPERATURE = 0.0


@dataclass(frozen=True)
class EvaluationConfig:
    """Settings for one evaluator pass."""

    model: str = "evaluator-large"
    max_content_chars: int = 12000
    timeout_seconds: float = 60.0


FAST_EVALUATION_CONFIG = EvaluationConfig(
    model="evaluator-fast", max_content_chars=4000, timeout_seconds=20.0
)


def decode_structured_output(raw: Any, source: str) -> Mapping[str, Any]:
    """Turn a collaborator response into a mapping.

    Mappings pass through. Text is parsed as JSON; failing that, the first
    ``{...}`` block is tried. Anything else raises ParseFailure.
    """
    if isinstance(raw, Mapping):
        return raw
    if not isinstance(raw, str):
        raise ParseFailure(
            f"Unsupported {source} output type: {type(raw).__name__}", source=source
        )

    text = raw.strip()
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_BLOCK.search(text)
        if not match:
            raise ParseFailure(f"No JSON object in {source} output", source=source)
        try:
            decoded = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ParseFailure(
                f"Malformed JSON in {source} output: {e}",
                original_error=e,
                source=source,
            ) from e

    if not isinstance(decoded, Mapping):
        raise ParseFailure(f"{source} output is not a JSON object", source=source)
    return decoded


class EvaluatorGateway:
    """Invokes a single scoring pass against content."""

    EVALUATION_PROMPT = """You are an expert evaluator of generated educational content.

Score the CONTENT below against each rubric criterion on a 1-5 scale.

RUBRIC ({version}):
{criteria}

CONTENT:
{content}

Respond with JSON only, in this exact shape:
{{"criteria": [{{"criterion_id": "<id>", "level": <1-5>, "confidence": <0-1>,
"reasoning": "<one or two sentences>", "issues": ["<issue>", ...]}}]}}
Include exactly one entry per criterion id listed above."""

    def __init__(self, client: EvaluatorClient):
        self.client = client

    def build_prompt(self, content: str, rubric: Rubric, config: EvaluationConfig) -> str:
        """Render the rubric-derived prompt."""
        lines = []
        for criterion in rubric.criteria:
            lines.append(
                f"- {criterion.id} ({criterion.weight_class.value}, weight "
                f"{criterion.weight:.2f}): {criterion.description}"
            )
            for level, text in sorted(criterion.levels.items()):
                lines.append(f"    {level}: {text}")

        if len(content) > config.max_content_chars:
            logger.warning(
                f"Content truncated for '{config.model}': {len(content)} chars, "
                f"evaluating the first {config.max_content_chars}"
            )

        return self.EVALUATION_PROMPT.format(
            version=rubric.version,
            criteria="\n".join(lines),
            content=content[: config.max_content_chars],
        )

    async def evaluate(
        self,
        content: str,
        rubric: Rubric,
        config: EvaluationConfig | None = None,
    ) -> list[CriterionEvaluation]:
        """
        Score content against every rubric criterion.

        Args:
            content: Text to evaluate
            rubric: Active rubric
            config: Model selection, context size and timeout

        Returns:
            One CriterionEvaluation per rubric criterion, in rubric order
        """
        config = config or EvaluationConfig()
        prompt = self.build_prompt(content, rubric, config)

        try:
            raw = await asyncio.wait_for(
                self.client.complete(
                    prompt, model=config.model, temperature=EVALUATION_TEMPERATURE
                ),
                timeout=config.timeout_seconds,
            )
        except TimeoutError as e:
            raise ExternalCallFailure(
                f"Evaluator '{config.model}' timed out after {config.timeout_seconds}s",
                collaborator="evaluator",
                original_error=e,
                timeout_seconds=config.timeout_seconds,
            ) from e
        except (ParseFailure, ExternalCallFailure):
            raise
        except Exception as e:
            raise ExternalCallFailure(
                f"Evaluator '{config.model}' call failed: {e}",
                collaborator="evaluator",
                original_error=e,
            ) from e

        return self.parse(raw, rubric)

    def parse(self, raw: Any, rubric: Rubric) -> list[CriterionEvaluation]:
        """Validate evaluator output and map it onto the rubric."""
        data = decode_structured_output(raw, source="evaluator")
        try:
            payload = EvaluatorPayload.model_validate(data)
        except ValidationError as e:
            raise ParseFailure(
                f"Evaluator output failed validation: {e.error_count()} error(s)",
                original_error=e,
            ) from e

        by_id = {entry.criterion_id: entry for entry in payload.criteria}

        unknown = sorted(set(by_id) - set(rubric.criterion_ids))
        if unknown:
            raise ParseFailure(f"Unknown criteria in evaluator output: {', '.join(unknown)}")
        missing = [cid for cid in rubric.criterion_ids if cid not in by_id]
        if missing:
            raise ParseFailure(f"Evaluator output missing criteria: {', '.join(missing)}")

        evaluations = []
        for criterion_id in rubric.criterion_ids:
            entry = by_id[criterion_id]
            score = entry.score if entry.score is not None else level_to_score(entry.level)
            evaluations.append(
                CriterionEvaluation(
                    criterion_id=criterion_id,
                    score=score,
                    level=entry.level,
                    confidence=entry.confidence,
                    reasoning=entry.reasoning,
                    issues=tuple(entry.issues),
                )
            )
        return evaluations


class RetryingEvaluatorGateway:
    """Caller-side wrapper retrying external-call failures a bounded number of times.

    ParseFailure is never retried.
    """

    def __init__(self, gateway: EvaluatorGateway, retry_config: RetryConfig | None = None):
        self.gateway = gateway
        self.retry_config = retry_config or EVALUATOR_RETRY_CONFIG
        self._evaluate = with_retry(self.retry_config)(self.gateway.evaluate)

    async def evaluate(
        self,
        content: str,
        rubric: Rubric,
        config: EvaluationConfig | None = None,
    ) -> list[CriterionEvaluation]:
        return await self._evaluate(content, rubric, config)
