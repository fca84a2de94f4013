"""
Interfaces of the external collaborators the engine calls.

Implementations live outside this package (model endpoints, retrieval,
content generation). Tests provide in-process fakes.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from .types import FixRecommendation


@runtime_checkable
class EvaluatorClient(Protocol):
    """Text-evaluation model endpoint.

    Returns structured per-criterion output, either as a mapping or as JSON
    text. Anything that does not conform is turned into ``ParseFailure`` by
    the gateway.
    """

    async def complete(
        self, prompt: str, *, model: str, temperature: float
    ) -> Mapping[str, Any] | str: ...


@runtime_checkable
class FactCheckClient(Protocol):
    """Claim extraction and batched claim verification."""

    async def extract_claims(
        self, passages: Sequence[str], *, temperature: float
    ) -> Mapping[str, Any] | str: ...

    async def verify_claims(
        self,
        claims: Sequence[str],
        references: Sequence[str],
        *,
        temperature: float,
    ) -> Mapping[str, Any] | str: ...


@runtime_checkable
class ContentReviser(Protocol):
    """Upstream generator that produces a revised draft."""

    async def revise(
        self,
        content: str,
        issues: Sequence[FixRecommendation],
        preserved_context: Sequence[str],
    ) -> str: ...
