"""
Extraction of structured payloads from free-form provider output.

Strategies, in order:
1. a fenced code block tagged ``json``
2. the first balanced ``{...}`` / ``[...]`` span in the text
3. the trimmed full text

Every candidate is tried with ``json.loads`` before any is handed to ``json_repair``.
Only objects and arrays count as a structured payload.
"""

import json
import re
from typing import Iterator, Optional, Type, TypeVar, Union

from json_repair import repair_json
from loguru import logger
from pydantic import BaseModel, ValidationError

from explainit.exceptions import ResponseParseError

T = TypeVar("T", bound=BaseModel)

Payload = Union[dict, list]

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B-\x1F\x7F]")
FENCED_JSON = re.compile(r"```json[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)

_CLOSERS = {"{": "}", "[": "]"}


class ResponseParser:
    """Pure, stateless parser; one instance can be shared freely."""

    def parse(self, raw_text: Optional[str], operation: Optional[str] = None) -> Payload:
        """
        Extract the structured payload from ``raw_text``.

        Raises:
            ResponseParseError: no strategy produced an object or array
        """
        if raw_text is None or not raw_text.strip():
            raise ResponseParseError("Provider returned empty output", raw_text or "", operation)

        text = strip_control_chars(raw_text)
        candidates = list(self._candidates(text))

        # strict pass over all candidates, then a repair pass
        for repair in (False, True):
            for strategy, candidate in candidates:
                payload = self._try_parse(candidate, repair)
                if payload is not None:
                    logger.trace(f"Parsed provider output via {strategy} (repair={repair})")
                    return payload

        raise ResponseParseError(
            f"No structured payload found in provider output ({len(raw_text)} chars)",
            raw_text,
            operation,
        )

    def parse_model(self, raw_text: Optional[str], response_model: Type[T],
                    operation: Optional[str] = None) -> T:
        """Parse and validate into ``response_model``; schema mismatches are parse errors too."""
        payload = self.parse(raw_text, operation)
        try:
            return response_model.model_validate(payload)
        except ValidationError as e:
            raise ResponseParseError(
                f"Provider output does not match {response_model.__name__}: {e.error_count()} error(s)",
                raw_text or "",
                operation,
            ) from e

    def _candidates(self, text: str) -> Iterator[tuple]:
        for match in FENCED_JSON.finditer(text):
            yield "fenced block", match.group(1).strip()

        for span in iter_balanced_spans(text):
            yield "balanced span", span

        yield "full text", text.strip()

    @staticmethod
    def _try_parse(candidate: str, repair: bool) -> Optional[Payload]:
        """Direct parsing, or json_repair when ``repair`` is set."""
        if not candidate:
            return None
        if not repair:
            try:
                payload = json.loads(candidate)
            except ValueError:
                return None
        else:
            if candidate[0] not in _CLOSERS:
                return None
            try:
                payload = repair_json(candidate, return_objects=True)
            except Exception as e:  # json_repair raises assorted errors on garbage
                logger.trace(f"json_repair gave up: {e}")
                return None
        return payload if isinstance(payload, (dict, list)) else None


def strip_control_chars(text: str) -> str:
    """Remove control characters that break JSON parsing. Tabs and newlines stay."""
    return CONTROL_CHARS.sub("", text)


def iter_balanced_spans(text: str) -> Iterator[str]:
    """
    Yield every top-level ``{...}`` or ``[...]`` span, left to right.

    Brackets inside JSON strings are ignored. An opener that is never closed
    (truncated output) yields the rest of the text so it can still be repaired.
    """
    position = 0
    while True:
        starts = [i for i in (text.find("{", position), text.find("[", position)) if i != -1]
        if not starts:
            return
        start = min(starts)
        end = _find_span_end(text, start)
        if end is None:
            yield text[start:]
            return
        if end < 0:
            # mismatched closer, not a structure
            position = start + 1
            continue
        yield text[start:end + 1]
        position = end + 1


def _find_span_end(text: str, start: int) -> Optional[int]:
    """Index of the matching closer, -1 on a mismatched closer, None when unterminated."""
    stack = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack[-1] != char:
                return -1
            stack.pop()
            if not stack:
                return index
    return None


_default_parser = ResponseParser()


def parse_response(raw_text: Optional[str], operation: Optional[str] = None) -> Payload:
    """Module-level shortcut for ``ResponseParser().parse``."""
    return _default_parser.parse(raw_text, operation)
