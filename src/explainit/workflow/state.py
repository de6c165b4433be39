"""
Durable per-session workflow state.

``WorkflowStateStore`` writes ``state.json`` on every mutation before
returning, so a crash at any point leaves the file describing the last fully
completed step. Writes are atomic (temp file + rename).
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from explainit.exceptions import StateError
from explainit.utils import atomic_write_json, utc_now_iso
from .models import BuilderOutput, Concept, Explanation
from .types import WorkflowPhase

STATE_FILE_NAME = "state.json"


class WorkflowState(BaseModel):
    """Everything a resumed run needs to skip work that already happened."""

    topic: str = ""
    persona: Optional[str] = None
    depth: Optional[int] = None
    current_phase: WorkflowPhase = WorkflowPhase.SCOUT

    explanations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    decompositions: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)

    validation_attempts: int = 0
    redecomposition_count: int = 0
    concept_iterations: Dict[str, int] = Field(default_factory=dict)

    explained_concepts: List[str] = Field(default_factory=list)
    failed_concepts: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    # practical guide for the whole tree; cleared whenever an explanation changes
    builder_output: Optional[Dict[str, Any]] = None

    updated_at: Optional[str] = None


class WorkflowStateStore:
    """Owner of one session's ``WorkflowState``; the only writer of its file."""

    def __init__(self, path: Union[str, Path], log=None):
        path = Path(path)
        if path.suffix != ".json":
            path = path / STATE_FILE_NAME
        self.path = path
        self.state = WorkflowState()
        # True once the in-memory state came from disk or was written there
        self.loaded = False
        self.log = log or logger

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> WorkflowState:
        """
        Replace the in-memory state with the persisted one.

        A missing file leaves a fresh state. A corrupted file raises, since
        silently starting over would redo (and re-bill) every provider call.
        """
        if not self.path.exists():
            self.log.debug(f"No persisted state at {self.path}, starting fresh")
            self.state = WorkflowState()
            self.loaded = True
            return self.state

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self.state = WorkflowState.model_validate(data)
            self.loaded = True
        except (OSError, ValueError, ValidationError) as e:
            raise StateError(f"Cannot load workflow state from {self.path}: {e}", cause=e) from e

        self.log.info(
            f"Loaded workflow state: {len(self.state.explanations)} explanation(s), "
            f"phase={self.state.current_phase}"
        )
        return self.state

    def update(self, partial: Optional[Dict[str, Any]] = None, **fields) -> WorkflowState:
        """
        Merge ``partial`` into the state and persist it.

        Refuses to run before an existing file was loaded, since the merge
        would otherwise start from an empty state and overwrite it.
        """
        if not self.loaded and self.path.exists():
            raise StateError(f"Workflow state at {self.path} has not been loaded")
        changes = {**(partial or {}), **fields}
        unknown = set(changes) - set(WorkflowState.model_fields)
        if unknown:
            raise StateError(f"Unknown workflow state field(s): {sorted(unknown)}")

        merged = {**self.state.model_dump(), **changes}
        try:
            new_state = WorkflowState.model_validate(merged)
        except ValidationError as e:
            raise StateError(f"Invalid workflow state update: {e}", cause=e) from e

        self._commit(new_state)
        return self.state

    def set_phase(self, phase: WorkflowPhase):
        if self.state.current_phase != phase:
            self.update(current_phase=phase)

    def add_explanation(self, topic: str, explanation: Union[Explanation, Dict[str, Any]]):
        payload = explanation.model_dump(mode="json") if isinstance(explanation, Explanation) else dict(explanation)
        explanations = {**self.state.explanations, topic: payload}
        explained = list(self.state.explained_concepts)
        if topic not in explained:
            explained.append(topic)
        failed = [t for t in self.state.failed_concepts if t != topic]
        self.update(explanations=explanations, explained_concepts=explained, failed_concepts=failed,
                    builder_output=None)

    def get_explanation(self, topic: str) -> Optional[Explanation]:
        payload = self.state.explanations.get(topic)
        return Explanation.model_validate(payload) if payload is not None else None

    def add_decomposition(self, topic: str, concepts: List[Concept]):
        """Remember the accepted children of ``topic``."""
        decompositions = {
            **self.state.decompositions,
            topic: [c.model_dump(mode="json") for c in concepts],
        }
        self.update(decompositions=decompositions)

    def get_decomposition(self, topic: str) -> Optional[List[Concept]]:
        payload = self.state.decompositions.get(topic)
        if payload is None:
            return None
        return [Concept.model_validate(c) for c in payload]

    def record_iterations(self, topic: str, iterations: int):
        self.update(concept_iterations={**self.state.concept_iterations, topic: iterations})

    def increment(self, counter: str, amount: int = 1):
        if counter not in ("validation_attempts", "redecomposition_count"):
            raise StateError(f"Not a counter: {counter}")
        self.update({counter: getattr(self.state, counter) + amount})

    def mark_failed(self, topic: str, error: Optional[str] = None):
        failed = list(self.state.failed_concepts)
        if topic not in failed:
            failed.append(topic)
        warnings = list(self.state.warnings)
        if error:
            warnings.append(f"{topic}: {error}")
        self.update(failed_concepts=failed, warnings=warnings)

    def clear_failure(self, topic: str):
        """Forget an earlier failure of ``topic`` once it has been processed successfully."""
        if topic in self.state.failed_concepts:
            self.update(failed_concepts=[t for t in self.state.failed_concepts if t != topic])

    def add_warning(self, message: str):
        self.update(warnings=[*self.state.warnings, message])

    def set_builder_output(self, output: BuilderOutput):
        self.update(builder_output=output.model_dump(mode="json"))

    def get_builder_output(self) -> Optional[BuilderOutput]:
        payload = self.state.builder_output
        return BuilderOutput.model_validate(payload) if payload is not None else None

    def explored_topics(self) -> List[str]:
        """Topics this session already covered or planned, for rebuilding the explored set."""
        topics = [self.state.topic] if self.state.topic else []
        topics.extend(self.state.explanations)
        for children in self.state.decompositions.values():
            topics.extend(child["name"] for child in children)
        return list(dict.fromkeys(topics))

    def reset(self, topic: str = "", **fields):
        """Start over with an empty state (persisted immediately)."""
        self._commit(WorkflowState(topic=topic, **fields))

    def _commit(self, new_state: WorkflowState):
        new_state.updated_at = utc_now_iso()
        try:
            atomic_write_json(self.path, new_state.model_dump(mode="json"))
        except OSError as e:
            raise StateError(f"Cannot persist workflow state to {self.path}: {e}", cause=e) from e
        self.state = new_state
        self.loaded = True
