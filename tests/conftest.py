"""
Shared fixtures for explainit tests.

``FakeProvider`` is a scripted ContentProvider: decompositions, critiques and
failures are configured per topic and every call is recorded in ``calls``.
"""
from typing import Callable, Dict, List, Optional, Union

import pytest

from explainit.config.config import ExplainItConfig, PathsConfig, RetryConfig
from explainit.core.session_registry import SessionRegistry
from explainit.error_handler import ErrorHandler
from explainit.providers.base import ContentProvider
from explainit.workflow.models import (
    BuilderOutput,
    Clarification,
    Concept,
    Critique,
    Decomposition,
    Explanation,
    SimilarityResult,
    ValidationResult,
)
from explainit.workflow.orchestrator import Orchestrator


# ============================================================================
# FAKE PROVIDER
# ============================================================================

def make_decomposition(names: List[str], confidence: Optional[float] = 9, **kwargs) -> Decomposition:
    return Decomposition(
        concepts=[Concept(id="", name=name, one_liner=f"{name} in one line") for name in names],
        confidence_score=confidence,
        **kwargs,
    )


class FakeProvider(ContentProvider):
    name = "fake"

    def __init__(self):
        self.calls: List[tuple] = []
        self.decompositions: Dict[str, Decomposition] = {}
        self.redecompositions: Dict[str, Decomposition] = {}
        self.critiques: Dict[str, List[Critique]] = {}
        self.validation: ValidationResult = ValidationResult(verdict="VALID")
        self.similar: Dict[str, str] = {}
        self.explain_failures: Dict[str, Union[Exception, List[Exception]]] = {}
        self.decompose_failures: Dict[str, Exception] = {}
        self.clarification: Optional[Clarification] = None
        self.clarify_failures: List[Exception] = []
        self.builder_output: Optional[BuilderOutput] = None
        self.build_failure: Optional[Exception] = None
        self.built_from: List[str] = []
        self.on_explain: Optional[Callable[[str], None]] = None

    def count(self, operation: str, topic: Optional[str] = None) -> int:
        return sum(1 for op, t in self.calls if op == operation and (topic is None or t == topic))

    async def decompose(self, topic, depth, context):
        self.calls.append(("decompose", topic))
        if topic in self.decompose_failures:
            raise self.decompose_failures[topic]
        return self.decompositions.get(topic, Decomposition())

    async def explain(self, concept, depth, context):
        self.calls.append(("explain", concept.name))
        if self.on_explain is not None:
            self.on_explain(concept.name)
        failure = self.explain_failures.get(concept.name)
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure
        return Explanation(
            concept_name=concept.name,
            summary=f"What {concept.name} is.",
            body=f"{concept.name} explained for a {context.persona} reader.",
            key_points=[f"{concept.name} matters"],
        )

    async def critique(self, explanation, persona):
        self.calls.append(("critique", explanation.concept_name))
        queue = self.critiques.get(explanation.concept_name)
        if queue:
            return queue.pop(0) if len(queue) > 1 else queue[0]
        return Critique(verdict="PASS")

    async def revise(self, explanation, critique):
        self.calls.append(("revise", explanation.concept_name))
        return explanation.model_copy(update={"body": explanation.body + " (revised)"})

    async def validate(self, topic, decomposition):
        self.calls.append(("validate", topic))
        return self.validation

    async def redecompose(self, decomposition, issues):
        names = [c.name for c in decomposition.concepts]
        topic = next((t for t, d in self.decompositions.items() if [c.name for c in d.concepts] == names), None)
        self.calls.append(("redecompose", topic))
        return self.redecompositions.get(topic, decomposition)

    async def check_similarity(self, candidate, existing):
        self.calls.append(("check_similarity", candidate))
        matched = self.similar.get(candidate)
        return SimilarityResult(is_similar=matched is not None, matched_name=matched)

    async def clarify(self, query):
        self.calls.append(("clarify", query))
        if self.clarify_failures:
            raise self.clarify_failures.pop(0)
        return self.clarification or await super().clarify(query)

    async def build(self, explanations, depth):
        self.built_from = [e.concept_name for e in explanations]
        self.calls.append(("build", self.built_from[0] if self.built_from else None))
        if self.build_failure is not None:
            raise self.build_failure
        return self.builder_output or await super().build(explanations, depth)


# ============================================================================
# CONFIG, REGISTRY AND ORCHESTRATOR FIXTURES
# ============================================================================

@pytest.fixture
def config(tmp_path):
    """Zero-delay retries and an output directory inside tmp_path."""
    return ExplainItConfig(
        retry=RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0),
        paths=PathsConfig(output_dir=str(tmp_path / "output")),
    )


@pytest.fixture
def registry(config):
    return SessionRegistry.from_config(config)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def error_handler():
    return ErrorHandler(enable_detailed_logging=False)


@pytest.fixture
def orchestrator(provider, registry, config, error_handler):
    return Orchestrator(provider, registry, config, error_handler=error_handler)

