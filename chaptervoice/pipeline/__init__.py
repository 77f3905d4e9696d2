"""Chaptervoice pipeline package.

This package contains the generation loop, chapter commits, the settings lock,
full-book assembly, and the cancellation and retry helpers they share.
"""

from ..cancellation import CancellationToken
from .assembler import BookLeases, FullBookAssembler
from .commit import ChapterCommitService
from .orchestrator import GenerationOrchestrator, plan_chapters
from .retry import RetryPolicy
from .settings_lock import LockState, SettingsLock

__all__ = [
    "BookLeases",
    "CancellationToken",
    "ChapterCommitService",
    "FullBookAssembler",
    "GenerationOrchestrator",
    "LockState",
    "RetryPolicy",
    "SettingsLock",
    "plan_chapters",
]
