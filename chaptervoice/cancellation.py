"""Cooperative cancellation for generation, commit, and assembly flows."""

from __future__ import annotations

import threading

from .errors import GenerationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag observed at every suspension point."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; idempotent."""

        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise `GenerationCancelledError` when cancellation was requested."""

        if self._event.is_set():
            raise GenerationCancelledError()


def check_cancelled(token: CancellationToken | None) -> None:
    """Check an optional token."""

    if token is not None:
        token.check()
