"""
Workflow data model, state and event plumbing.

The orchestrator is imported from ``explainit.workflow.orchestrator``.
"""
from .types import NodeStatus, SessionStatus, WorkflowPhase, CritiqueVerdict, ValidationVerdict, EventTopic
from .models import (
    Concept,
    ConceptNode,
    Decomposition,
    Explanation,
    Critique,
    CritiqueFix,
    ValidationIssue,
    ValidationResult,
    SimilarityResult,
    Clarification,
    SynthesisResult,
)
from .events import Event, EventBus
from .state import WorkflowState, WorkflowStateStore

__all__ = [
    "NodeStatus",
    "SessionStatus",
    "WorkflowPhase",
    "CritiqueVerdict",
    "ValidationVerdict",
    "EventTopic",
    "Concept",
    "ConceptNode",
    "Decomposition",
    "Explanation",
    "Critique",
    "CritiqueFix",
    "ValidationIssue",
    "ValidationResult",
    "SimilarityResult",
    "Clarification",
    "SynthesisResult",
    "Event",
    "EventBus",
    "WorkflowState",
    "WorkflowStateStore",
]
