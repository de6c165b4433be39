"""
Bounded retries with exponential backoff around single provider calls.

Every failed attempt is appended to a JSONL failure log so malformed or
failing provider output can be inspected after the run.
"""

import asyncio
import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from loguru import logger

from explainit.exceptions import ResponseParseError, RetryExhaustedError
from explainit.utils import utc_now_iso

T = TypeVar("T")


@dataclass
class RetryContext:
    """Identifies the call being retried in logs and failure records."""
    operation: str
    topic: Optional[str] = None
    provider: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FailureRecord:
    timestamp: str
    operation: str
    topic: Optional[str]
    provider: Optional[str]
    attempt: int
    max_attempts: int
    error_type: str
    error_message: str
    raw_preview: Optional[str]
    backoff_seconds: float
    will_retry: bool


class RetryHandler:
    """
    Runs an async operation up to ``max_attempts`` times.

    The delay before attempt ``n + 1`` is ``min(base_delay * 2 ** (n - 1), max_delay)``.
    Errors whose ``retryable`` attribute is False stop the loop at once.
    """

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 failure_log_path: Optional[Union[str, Path]] = None,
                 preview_chars: int = 500,
                 log=None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.failure_log_path = Path(failure_log_path) if failure_log_path else None
        self.preview_chars = preview_chars
        self.log = log or logger

    @classmethod
    def from_config(cls, retry_config, failure_log_path=None, log=None) -> "RetryHandler":
        return cls(
            max_attempts=retry_config.max_attempts,
            base_delay=retry_config.base_delay,
            max_delay=retry_config.max_delay,
            failure_log_path=failure_log_path,
            preview_chars=retry_config.preview_chars,
            log=log,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]], context: RetryContext) -> T:
        """
        Await ``operation()`` until it succeeds or the budget is spent.

        Raises:
            RetryExhaustedError: every attempt failed
            Exception: the original error when it is marked non-retryable
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await operation()
                if attempt > 1:
                    self.log.info(f"{context.operation} succeeded on attempt {attempt}/{self.max_attempts}")
                return result
            except Exception as e:
                last_error = e
                retryable = getattr(e, "retryable", True)
                will_retry = retryable and attempt < self.max_attempts
                delay = self.backoff_delay(attempt) if will_retry else 0.0

                self._record_failure(context, attempt, e, delay, will_retry)

                if not retryable:
                    self.log.error(f"{context.operation} failed with non-retryable error: {e}")
                    raise

                if not will_retry:
                    break

                self.log.warning(
                    f"{context.operation} attempt {attempt}/{self.max_attempts} failed "
                    f"({type(e).__name__}: {e}). Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        self.log.error(f"{context.operation} failed after {self.max_attempts} attempt(s): {last_error}")
        raise RetryExhaustedError(context.operation, self.max_attempts, last_error) from last_error

    def _record_failure(self, context: RetryContext, attempt: int, error: Exception,
                        delay: float, will_retry: bool):
        if self.failure_log_path is None:
            return

        raw_preview = None
        if isinstance(error, ResponseParseError):
            raw_preview = error.raw_text[:self.preview_chars]

        record = FailureRecord(
            timestamp=utc_now_iso(),
            operation=context.operation,
            topic=context.topic,
            provider=context.provider,
            attempt=attempt,
            max_attempts=self.max_attempts,
            error_type=type(error).__name__,
            error_message=str(error),
            raw_preview=raw_preview,
            backoff_seconds=delay,
            will_retry=will_retry,
        )
        entry = asdict(record)
        entry.update(context.extra)

        try:
            self.failure_log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.failure_log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str, ensure_ascii=False) + "\n")
        except OSError as e:
            # never let the failure log mask the provider error
            self.log.warning(f"Could not write failure log {self.failure_log_path}: {e}")
