"""
Per-run context objects threaded through the recursive node processing.

Nothing here is stored on the orchestrator itself, so two sessions driven by
the same orchestrator never share an explored set or a state store.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Tuple

from explainit.utils import slugify
from .models import Concept
from .similarity import normalize

if TYPE_CHECKING:
    from explainit.core.session_registry import Session
    from explainit.output.mkdocs_site import MkDocsSite
    from explainit.providers.retry_handler import RetryHandler
    from .events import EventBus
    from .similarity import SimilarityPolicy
    from .state import WorkflowStateStore

ROOT_NODE_ID = "root"
ROOT_PAGE = "index.md"


@dataclass(frozen=True)
class DecomposeTask:
    """A unit of pending work: one topic at one position of the tree."""
    topic: str
    depth: int
    ancestors: Tuple[str, ...]
    root_topic: str
    output_prefix: str
    section_prefix: str
    persona: str
    concept: Optional[Concept] = None
    parent_id: Optional[str] = None

    @classmethod
    def root(cls, topic: str, persona: str) -> "DecomposeTask":
        return cls(
            topic=topic,
            depth=0,
            ancestors=(),
            root_topic=topic,
            output_prefix="",
            section_prefix="",
            persona=persona,
        )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def node_id(self) -> str:
        if self.is_root:
            return ROOT_NODE_ID
        return f"{self.section_prefix}_{slugify(self.topic)}"

    @property
    def page_dir(self) -> str:
        """Directory of this node's page relative to ``docs/``; empty for the root."""
        if self.is_root:
            return ""
        return f"{self.output_prefix}/{self.node_id}" if self.output_prefix else self.node_id

    @property
    def relative_output_path(self) -> str:
        return f"{self.page_dir}/index.md" if self.page_dir else ROOT_PAGE

    def child(self, concept: Concept, index: int) -> "DecomposeTask":
        """Task for the ``index``-th (1-based) accepted child of this node."""
        section = f"{self.section_prefix}_{index}" if self.section_prefix else str(index)
        return DecomposeTask(
            topic=concept.name,
            depth=self.depth + 1,
            ancestors=self.ancestors + (self.topic,),
            root_topic=self.root_topic,
            output_prefix=self.page_dir,
            section_prefix=section,
            persona=self.persona,
            concept=concept,
            parent_id=self.node_id,
        )


class ExploredSet:
    """Concept names already covered in a session, in discovery order."""

    def __init__(self, names: Optional[List[str]] = None):
        self._names: Dict[str, str] = {}
        for name in names or []:
            self.add(name)

    def add(self, name: str):
        key = normalize(name)
        if key and key not in self._names:
            self._names[key] = name

    def __contains__(self, name: str) -> bool:
        return normalize(name) in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names.values()))

    def __len__(self) -> int:
        return len(self._names)

    def names(self) -> List[str]:
        return list(self._names.values())


@dataclass
class RunContext:
    """Session-scoped collaborators of one run."""
    session: "Session"
    state: "WorkflowStateStore"
    events: "EventBus"
    retry: "RetryHandler"
    site: "MkDocsSite"
    similarity: "SimilarityPolicy"
    log: Any
    total_depth: int
    persona: str
    explored: ExploredSet = field(default_factory=ExploredSet)
    interrupted: bool = False
    sink_ids: List[int] = field(default_factory=list)
    unsubscribers: List[Callable[[], None]] = field(default_factory=list)
