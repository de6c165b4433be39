"""
Content provider backed by any chat model reachable through LiteLLM.
"""

import json
from typing import Any, Dict, List, Optional, Type, TypeVar

import litellm
from loguru import logger
from pydantic import BaseModel

from explainit.config.config import LLMConfig
from explainit.config.personas import describe_persona
from explainit.exceptions import ProviderError, TerminalProviderError, TransientProviderError
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
from . import prompts
from .base import ContentProvider
from .response_parser import ResponseParser

T = TypeVar("T", bound=BaseModel)

TRANSIENT_ERRORS = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)

TERMINAL_ERRORS = (
    litellm.AuthenticationError,
    litellm.PermissionDeniedError,
    litellm.BadRequestError,
    litellm.NotFoundError,
)


class LiteLLMContentProvider(ContentProvider):
    """
    Implements every provider operation as one chat completion.

    The reply is parsed with ``ResponseParser`` and validated into the
    operation's pydantic model, so malformed output raises
    ``ResponseParseError`` and is retried by the caller's retry handler.
    """

    name = "litellm"

    def __init__(self, config: Optional[LLMConfig] = None, parser: Optional[ResponseParser] = None):
        self.config = config or LLMConfig()
        self.parser = parser or ResponseParser()

    async def _complete(self, operation: str, system_prompt: str, request: Dict[str, Any]) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(request, ensure_ascii=False, indent=2, default=str)},
        ]
        kwargs: Dict[str, Any] = {
            "model": self.config.model_id,
            "messages": messages,
            "temperature": self.config.temperature,
            "timeout": self.config.timeout,
        }
        if self.config.max_tokens:
            kwargs["max_tokens"] = self.config.max_tokens
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base

        logger.debug(f"[{self.name}] {operation} -> {self.config.model_id}")
        try:
            response = await litellm.acompletion(**kwargs)
        except TRANSIENT_ERRORS as e:
            raise TransientProviderError(f"{operation} call failed: {e}", operation=operation, cause=e) from e
        except TERMINAL_ERRORS as e:
            raise TerminalProviderError(f"{operation} call rejected: {e}", operation=operation, cause=e) from e
        except Exception as e:
            raise ProviderError(f"{operation} call failed: {e}", operation=operation, cause=e) from e

        content = response.choices[0].message.content if response.choices else None
        return content or ""

    async def _structured(self, operation: str, system_prompt: str, request: Dict[str, Any],
                          response_model: Type[T]) -> T:
        raw = await self._complete(operation, system_prompt, request)
        return self.parser.parse_model(raw, response_model, operation)

    async def decompose(self, topic: str, depth: int, context: DecompositionContext) -> Decomposition:
        request = {
            "topic": topic,
            "remaining_depth": depth,
            "root_topic": context.root_topic,
            "ancestors": context.ancestors,
            "explanation_summary": context.explanation.summary if context.explanation else "",
            "explored_concepts": context.explored_concepts,
        }
        return await self._structured("decompose", prompts.DECOMPOSE_SYSTEM_MESSAGE, request, Decomposition)

    async def explain(self, concept: Concept, depth: int, context: ExplanationContext) -> Explanation:
        request = {
            "concept": {
                "name": concept.name,
                "one_liner": concept.one_liner,
                "depends_on": list(concept.depends_on),
            },
            "remaining_depth": depth,
            "root_topic": context.root_topic,
            "ancestors": context.ancestors,
            "persona": context.persona,
            "persona_description": context.persona_description,
        }
        return await self._structured("explain", prompts.EXPLAIN_SYSTEM_MESSAGE, request, Explanation)

    async def critique(self, explanation: Explanation, persona: str) -> Critique:
        request = {
            "explanation": explanation.model_dump(mode="json"),
            "persona": persona,
            "persona_description": describe_persona(persona),
        }
        return await self._structured("critique", prompts.CRITIQUE_SYSTEM_MESSAGE, request, Critique)

    async def revise(self, explanation: Explanation, critique: Critique) -> Explanation:
        request = {
            "explanation": explanation.model_dump(mode="json"),
            "critique": critique.model_dump(mode="json"),
        }
        return await self._structured("revise", prompts.REVISE_SYSTEM_MESSAGE, request, Explanation)

    async def validate(self, topic: str, decomposition: Decomposition) -> ValidationResult:
        request = {"topic": topic, "decomposition": decomposition.model_dump(mode="json")}
        return await self._structured("validate", prompts.VALIDATE_SYSTEM_MESSAGE, request, ValidationResult)

    async def redecompose(self, decomposition: Decomposition, issues: List[ValidationIssue]) -> Decomposition:
        request = {
            "decomposition": decomposition.model_dump(mode="json"),
            "issues": [issue.model_dump(mode="json") for issue in issues],
        }
        return await self._structured("redecompose", prompts.REDECOMPOSE_SYSTEM_MESSAGE, request, Decomposition)

    async def check_similarity(self, candidate: str, existing: List[str]) -> SimilarityResult:
        request = {"candidate": candidate, "existing": existing}
        return await self._structured(
            "check_similarity", prompts.SIMILARITY_SYSTEM_MESSAGE, request, SimilarityResult
        )

    async def clarify(self, query: str) -> Clarification:
        return await self._structured("clarify", prompts.CLARIFY_SYSTEM_MESSAGE, {"query": query}, Clarification)

    async def build(self, explanations: List[Explanation], depth: int) -> BuilderOutput:
        request = {
            "root_topic": explanations[0].concept_name if explanations else "",
            "depth": depth,
            "explanations": [
                {
                    "name": e.concept_name,
                    "summary": e.summary,
                    "key_points": e.key_points,
                    "example": e.examples[0] if e.examples else None,
                }
                for e in explanations
            ],
        }
        return await self._structured("build", prompts.BUILD_SYSTEM_MESSAGE, request, BuilderOutput)
