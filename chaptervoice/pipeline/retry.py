"""Bounded exponential backoff around TTS calls.

Responsibilities:
- Retry transient transport failures a bounded number of times.
- Never retry cancellation, quota or rate-limit rejections, or other provider errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from time import sleep
from typing import Callable, TypeVar

from ..cancellation import CancellationToken, check_cancelled
from ..errors import GenerationCancelledError
from ..tts.openai_client import TTSProviderError

_Result = TypeVar("_Result")

_RETRYABLE_KINDS = frozenset({"transport", "timeout"})
_NEVER_RETRY_KINDS = frozenset({"insufficient_quota", "rate_limited", "invalid_api_key"})


def is_retryable(exc: BaseException) -> bool:
    """Return whether a failed TTS call may be attempted again."""

    if isinstance(exc, GenerationCancelledError):
        return False
    if not isinstance(exc, TTSProviderError):
        return False
    if exc.failure_kind in _NEVER_RETRY_KINDS or exc.status_code == 429:
        return False
    if exc.failure_kind in _RETRYABLE_KINDS:
        return True
    return exc.failure_kind == "http_error" and (exc.status_code or 0) >= 500


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one TTS call.

    Attributes:
        max_attempts: Total attempts including the first call.
        initial_delay_seconds: Delay before the second attempt.
        backoff_factor: Multiplier applied to the delay after each retry.
        max_delay_seconds: Upper bound for any single delay.
        sleeper: Injectable sleep function.
    """

    max_attempts: int = 2
    initial_delay_seconds: float = 0.3
    backoff_factor: float = 2.0
    max_delay_seconds: float = 5.0
    sleeper: Callable[[float], None] = sleep

    def delay_for(self, retry_number: int) -> float:
        """Return the delay before retry `retry_number` (1-based)."""

        delay = self.initial_delay_seconds * (self.backoff_factor ** (retry_number - 1))
        return min(delay, self.max_delay_seconds)

    def call(
        self,
        action: Callable[[], _Result],
        *,
        cancel_token: CancellationToken | None = None,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> _Result:
        """Run `action`, retrying retryable failures within the attempt budget."""

        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            check_cancelled(cancel_token)
            try:
                return action()
            except Exception as exc:
                if attempt >= attempts or not is_retryable(exc):
                    raise
                if on_retry is not None:
                    on_retry(attempt, exc)
                self.sleeper(self.delay_for(attempt))
        raise AssertionError("unreachable")
