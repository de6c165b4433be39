"""
Best-effort detection of concepts that repeat something already explored.

Cheap string heuristics run first; only when none of them matches is the
provider asked for a semantic judgement. A failing semantic check counts as
"not similar".
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional

from loguru import logger

from .models import SimilarityResult

MIN_SUBSTRING_LENGTH = 5

SemanticCheck = Callable[[str, List[str]], Awaitable[SimilarityResult]]


@dataclass
class SimilarityDecision:
    is_duplicate: bool
    matched_name: Optional[str] = None
    reason: Optional[str] = None  # exact | plural | substring | semantic


def normalize(name: str) -> str:
    return " ".join((name or "").lower().split())


def _singular(name: str) -> str:
    return name[:-1] if name.endswith("s") else name


def heuristic_match(candidate: str, explored: Iterable[str]) -> SimilarityDecision:
    """Exact, plural/singular and substring rules, in that order."""
    normalized = normalize(candidate)
    names = [(normalize(e), e) for e in explored]

    for norm, original in names:
        if norm == normalized:
            return SimilarityDecision(True, original, "exact")

    for norm, original in names:
        if _singular(norm) == _singular(normalized):
            return SimilarityDecision(True, original, "plural")

    if len(normalized) > MIN_SUBSTRING_LENGTH:
        for norm, original in names:
            if len(norm) > MIN_SUBSTRING_LENGTH and (normalized in norm or norm in normalized):
                return SimilarityDecision(True, original, "substring")

    return SimilarityDecision(False)


class SimilarityPolicy:
    """
    Decides whether a candidate concept duplicates the explored set.

    Args:
        semantic_check: async callable ``(candidate, explored_names)``; usually
            the provider's similarity check wrapped in the retry handler
    """

    def __init__(self, semantic_check: Optional[SemanticCheck] = None, log=None):
        self.semantic_check = semantic_check
        self.log = log or logger

    async def check(self, candidate: str, explored: Iterable[str]) -> SimilarityDecision:
        explored = [e for e in explored if normalize(e)]

        decision = heuristic_match(candidate, explored)
        if decision.is_duplicate or not explored or self.semantic_check is None:
            return decision

        try:
            result = await self.semantic_check(candidate, sorted(explored))
        except Exception as e:
            self.log.warning(f"Similarity check for '{candidate}' failed, keeping it: {e}")
            return SimilarityDecision(False)

        if result.is_similar:
            return SimilarityDecision(True, result.matched_name, "semantic")
        return SimilarityDecision(False)
