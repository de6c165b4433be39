"""
Enum definitions for the explainit workflow.

String-valued enums serialize cleanly into state.json, the session registry
and event payloads.
"""

from enum import Enum


class NodeStatus(str, Enum):
    """Generation status of a concept node."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class SessionStatus(str, Enum):
    """Lifecycle of a session in the registry."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    def __str__(self) -> str:
        return self.value

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.RUNNING, SessionStatus.INTERRUPTED)


class WorkflowPhase(str, Enum):
    """Phase recorded in the workflow state while a session runs."""
    CLARIFY = "clarify"
    SCOUT = "scout"  # root explanation
    DECOMPOSE_ROOT = "decompose_root"
    DECOMPOSE_CHILD = "decompose_child"
    VALIDATE = "validate"
    EXPLAIN = "explain"
    BUILD = "build"  # practical guide over the finished tree
    SYNTHESIZE = "synthesize"
    COMPLETE = "complete"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class CritiqueVerdict(str, Enum):
    """Verdict returned by the critique step."""
    PASS = "PASS"
    REVISE = "REVISE"
    RETHINK = "RETHINK"

    def __str__(self) -> str:
        return self.value


class ValidationVerdict(str, Enum):
    """Verdict returned by decomposition validation."""
    VALID = "VALID"
    NEEDS_REDECOMPOSITION = "NEEDS_REDECOMPOSITION"

    def __str__(self) -> str:
        return self.value


class EventTopic(str, Enum):
    """Channels of the event bus."""
    LOG = "log"
    NODE = "node"
    WORKFLOW = "workflow"
    INPUT = "input"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value
