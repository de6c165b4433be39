"""
Pydantic data model of the workflow.

Provider payloads (decompositions, explanations, critiques, validations) are
validated into these models as soon as they are parsed, so malformed output
surfaces as a parse failure inside the retry budget instead of deep inside the
orchestrator.
"""

from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from explainit.utils import slugify
from .types import CritiqueVerdict, NodeStatus, ValidationVerdict


class Concept(BaseModel):
    """A named unit of knowledge proposed by decomposition. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    one_liner: str = ""
    is_atomic: bool = False
    depends_on: Tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def fill_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id") and data.get("name"):
            data = {**data, "id": slugify(data["name"])}
        return data

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Concept name cannot be empty")
        return v


class Decomposition(BaseModel):
    """Child concepts of a topic plus ordering and self-reported confidence."""

    model_config = ConfigDict(extra="allow")

    concepts: List[Concept] = Field(default_factory=list)
    learning_sequence: List[str] = Field(default_factory=list)
    confidence_score: Optional[float] = None
    reasoning: str = ""

    def ordered_concepts(self) -> List[Concept]:
        """
        Concepts in learning-sequence order.

        Sequence entries may name a concept by id or by name. Concepts the
        sequence does not mention keep their first-seen order after the
        ones it does.
        """
        if not self.learning_sequence:
            return list(self.concepts)

        rank: Dict[str, int] = {}
        for position, key in enumerate(self.learning_sequence):
            rank.setdefault(key.strip().lower(), position)

        unranked = len(self.learning_sequence)

        def sort_key(item: Tuple[int, Concept]):
            index, concept = item
            position = min(
                rank.get(concept.id.lower(), unranked),
                rank.get(concept.name.lower(), unranked),
            )
            return position, index

        return [concept for _, concept in sorted(enumerate(self.concepts), key=sort_key)]


class Explanation(BaseModel):
    """
    Generated content for one concept.

    Only ``concept_name`` is required; everything else the provider returns
    is kept as-is and rendered when known.
    """

    model_config = ConfigDict(extra="allow")

    concept_name: str
    summary: str = ""
    body: str = ""
    analogy: Optional[str] = None
    key_points: List[str] = Field(default_factory=list)
    examples: List[str] = Field(default_factory=list)
    common_misconceptions: List[str] = Field(default_factory=list)
    check_understanding: List[str] = Field(default_factory=list)


class CritiqueFix(BaseModel):
    location: str = ""
    problem: str
    suggestion: str = ""


class Critique(BaseModel):
    verdict: CritiqueVerdict
    fixes: List[CritiqueFix] = Field(default_factory=list)
    summary: str = ""

    @field_validator("verdict", mode="before")
    @classmethod
    def normalize_verdict(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def needs_revision(self) -> bool:
        return self.verdict != CritiqueVerdict.PASS


class ValidationIssue(BaseModel):
    concept: Optional[str] = None
    problem: str
    suggestion: str = ""


class ValidationResult(BaseModel):
    verdict: ValidationVerdict
    issues: List[ValidationIssue] = Field(default_factory=list)
    recommendation: str = ""

    @field_validator("verdict", mode="before")
    @classmethod
    def normalize_verdict(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def needs_redecomposition(self) -> bool:
        return self.verdict == ValidationVerdict.NEEDS_REDECOMPOSITION


class SimilarityResult(BaseModel):
    is_similar: bool
    matched_name: Optional[str] = None


class Clarification(BaseModel):
    confirmed_topic: str
    suggested_depth: Optional[int] = None
    is_clear: bool = True
    question: Optional[str] = None


class ImplementationStep(BaseModel):
    step: str
    description: str = ""
    expected_output: Optional[str] = None


class BuilderOutput(BaseModel):
    """Hands-on guide built from all explanations of a session."""

    model_config = ConfigDict(extra="allow")

    prerequisites: List[str] = Field(default_factory=list)
    quick_start: List[str] = Field(default_factory=list)
    implementation_steps: List[ImplementationStep] = Field(default_factory=list)
    checkpoints: List[str] = Field(default_factory=list)
    common_issues: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    project_structure: Optional[str] = None

    @field_validator("implementation_steps", mode="before")
    @classmethod
    def accept_plain_steps(cls, v):
        if isinstance(v, list):
            return [{"step": item} if isinstance(item, str) else item for item in v]
        return v

    @property
    def is_empty(self) -> bool:
        return not (self.prerequisites or self.quick_start or self.implementation_steps
                    or self.checkpoints or self.common_issues or self.next_steps or self.project_structure)


class ExplanationContext(BaseModel):
    """What the provider gets to know besides the concept itself."""
    root_topic: str
    ancestors: List[str] = Field(default_factory=list)
    persona: str
    persona_description: str = ""


class DecompositionContext(BaseModel):
    root_topic: str
    ancestors: List[str] = Field(default_factory=list)
    explanation: Optional[Explanation] = None
    explored_concepts: List[str] = Field(default_factory=list)


class ConceptNode(BaseModel):
    """A concept embedded in the output tree."""

    id: str
    name: str
    one_liner: str = ""
    is_atomic: bool = False
    depends_on: List[str] = Field(default_factory=list)

    parent_id: Optional[str] = None
    depth: int = 0
    section: str = ""
    relative_output_path: str = "index.md"

    status: NodeStatus = NodeStatus.PENDING
    explanation: Optional[Explanation] = None
    children: List["ConceptNode"] = Field(default_factory=list)
    error: Optional[str] = None

    timestamp_created: datetime = Field(default_factory=datetime.now)
    timestamp_updated: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_concept(cls, concept: Concept, **kwargs) -> "ConceptNode":
        return cls(
            id=kwargs.pop("id", concept.id),
            name=concept.name,
            one_liner=concept.one_liner,
            is_atomic=concept.is_atomic,
            depends_on=list(concept.depends_on),
            **kwargs,
        )

    def update_status(self, new_status: NodeStatus, error_msg: Optional[str] = None):
        """Move the node to ``new_status``; an error message always means FAILED."""
        if error_msg:
            new_status = NodeStatus.FAILED
            self.error = error_msg

        old_status = self.status
        self.status = new_status
        self.timestamp_updated = datetime.now()
        logger.debug(f"Node {self.id}: {old_status} -> {new_status}")

    def iter_nodes(self) -> Iterator["ConceptNode"]:
        """Depth-first, parent before children."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()


class Page(BaseModel):
    id: str
    title: str
    path: str
    content: str
    depth: int = 0


class TocEntry(BaseModel):
    title: str
    path: str
    depth: int = 0
    status: NodeStatus = NodeStatus.DONE


class SynthesisStats(BaseModel):
    word_count: int = 0
    reading_time: int = 0  # minutes
    page_count: int = 0
    failed_count: int = 0


class SynthesisResult(BaseModel):
    """Merged output of a subtree."""
    node: ConceptNode
    pages: List[Page] = Field(default_factory=list)
    table_of_contents: List[TocEntry] = Field(default_factory=list)
    stats: SynthesisStats = Field(default_factory=SynthesisStats)
    builder_output: Optional[BuilderOutput] = None
    index_content: Optional[str] = None


ConceptNode.model_rebuild()
