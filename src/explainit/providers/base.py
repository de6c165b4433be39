"""
Content provider interface.

The orchestrator never generates content itself; every decomposition,
explanation, critique, validation and similarity judgement comes from a
``ContentProvider``. Implementations may raise ``TransientProviderError`` /
``ResponseParseError`` (retried) or ``TerminalProviderError`` (not retried).
"""

from abc import ABC, abstractmethod
from typing import List

from explainit.workflow.models import (
    BuilderOutput,
    Clarification,
    Concept,
    Critique,
    Decomposition,
    DecompositionContext,
    Explanation,
    ExplanationContext,
    SimilarityResult,
    ValidationIssue,
    ValidationResult,
)


class ContentProvider(ABC):
    """Asynchronous source of generated content."""

    name: str = "provider"

    @abstractmethod
    async def decompose(self, topic: str, depth: int, context: DecompositionContext) -> Decomposition:
        """Split ``topic`` into child concepts; ``depth`` is the remaining depth."""

    @abstractmethod
    async def explain(self, concept: Concept, depth: int, context: ExplanationContext) -> Explanation:
        """Generate the explanation of one concept."""

    @abstractmethod
    async def critique(self, explanation: Explanation, persona: str) -> Critique:
        """Review an explanation for the given audience."""

    @abstractmethod
    async def revise(self, explanation: Explanation, critique: Critique) -> Explanation:
        """Apply a critique and return the improved explanation."""

    @abstractmethod
    async def validate(self, topic: str, decomposition: Decomposition) -> ValidationResult:
        """Independent check of a low-confidence decomposition."""

    @abstractmethod
    async def redecompose(self, decomposition: Decomposition, issues: List[ValidationIssue]) -> Decomposition:
        """Produce a corrected decomposition addressing ``issues``."""

    @abstractmethod
    async def check_similarity(self, candidate: str, existing: List[str]) -> SimilarityResult:
        """Is ``candidate`` semantically the same as one of ``existing``?"""

    async def clarify(self, query: str) -> Clarification:
        """Turn a raw user query into a topic. Default: accept it as-is."""
        return Clarification(confirmed_topic=query.strip(), is_clear=True)

    async def build(self, explanations: List[Explanation], depth: int) -> BuilderOutput:
        """
        Turn the finished explanations into a hands-on guide (prerequisites,
        quick start, implementation steps, next steps). ``explanations`` start
        with the root topic; ``depth`` is the total depth of the session.
        Default: no guide.
        """
        return BuilderOutput()
