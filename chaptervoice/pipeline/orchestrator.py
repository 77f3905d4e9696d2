"""Generation orchestration for chaptervoice.

Responsibilities:
- Map non-empty content units to chapter indices in document order.
- Skip units whose chapter is already committed so reruns resume a partial book.
- Run one TTS call and one commit per unit, sequentially, with bounded retries.
- Report per-chapter outcomes and monotonic text-weighted progress.

Key types:
- `GenerationOrchestrator`: per-book generation loop.
- `PlannedChapter`: one content unit resolved to its chapter index and title.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import uuid

from ..cancellation import CancellationToken, check_cancelled
from ..errors import (
    GenerationCancelledError,
    GenerationFailedError,
    SettingsConflictError,
    TranscodeError,
    ValidationError,
)
from ..models.datatypes import (
    ChapterOutcome,
    ContentUnit,
    GenerationResult,
    GenerationSettings,
)
from ..storage.blobstore import DEFAULT_STORAGE_ROOT, AudiobookScope
from ..telemetry.logger import RunLogger
from ..text.cleaners import TextCleaner
from ..tts.openai_client import TTSProviderError
from ..tts.synthesizer import SpeechSynthesizer
from .commit import ChapterCommitService
from .retry import RetryPolicy
from .telemetry import PipelineTelemetryMixin

ProgressCallback = Callable[[float], None]
ChapterCallback = Callable[[ChapterOutcome], None]

# Provider failures that would repeat for every remaining unit.
_RUN_ABORTING_KINDS = frozenset({"insufficient_quota", "invalid_api_key"})


@dataclass(frozen=True, slots=True)
class PlannedChapter:
    """A non-empty content unit with its resolved chapter index."""

    index: int
    title: str
    text: str


def plan_chapters(
    units: Sequence[ContentUnit],
    cleaner: TextCleaner | None = None,
) -> list[PlannedChapter]:
    """Assign consecutive chapter indices to units with non-empty trimmed text."""

    planned: list[PlannedChapter] = []
    for unit in units:
        text = cleaner.clean(unit.text) if cleaner is not None else unit.text
        text = text.strip()
        if not text:
            continue
        index = len(planned)
        title = (unit.title or "").strip() or f"Chapter {index + 1}"
        planned.append(PlannedChapter(index=index, title=title, text=text))
    return planned


class _ProgressTracker:
    """Accumulate processed text length and report a non-decreasing percentage."""

    def __init__(self, total: int, callback: ProgressCallback | None) -> None:
        self._total = total
        self._processed = 0
        self._last = 0.0
        self._callback = callback

    def advance(self, length: int) -> None:
        self._processed += length
        percent = min(100.0, self._processed / self._total * 100.0) if self._total else 100.0
        self._last = max(self._last, percent)
        if self._callback is not None:
            self._callback(self._last)


class GenerationOrchestrator(PipelineTelemetryMixin):
    """Drive TTS and chapter commits across the content units of one document."""

    def __init__(
        self,
        *,
        commit_service: ChapterCommitService,
        synthesizer: SpeechSynthesizer,
        retry_policy: RetryPolicy | None = None,
        cleaner: TextCleaner | None = None,
        storage_root: str = DEFAULT_STORAGE_ROOT,
        run_logger: RunLogger | None = None,
    ) -> None:
        self._commit_service = commit_service
        self._synthesizer = synthesizer
        self._retry_policy = retry_policy or RetryPolicy()
        self._cleaner = cleaner
        self._storage_root = storage_root
        self._run_logger = run_logger

    def generate(
        self,
        units: Sequence[ContentUnit],
        *,
        settings: GenerationSettings,
        owner_id: str,
        book_id: str | None = None,
        namespace: str | None = None,
        book_title: str | None = None,
        on_progress: ProgressCallback | None = None,
        on_chapter: ChapterCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """Generate every missing chapter of a book and return the run result.

        Raises:
            ValidationError: The document has no text content.
            SettingsConflictError: The book is locked to different settings.
            GenerationCancelledError: Cancelled before any chapter existed.
            GenerationFailedError: The run finished without any stored chapter.
        """

        planned = plan_chapters(units, self._cleaner)
        if not planned:
            raise ValidationError("No text content found")

        scope = AudiobookScope(
            book_id=book_id or str(uuid.uuid4()),
            owner_id=owner_id,
            namespace=namespace,
            root=self._storage_root,
        )
        lock = self._commit_service.settings_lock
        lock.check(lock.resolve(scope), settings)
        existing = self._commit_service.committed_indices(scope)
        self._log_event(
            "generate",
            "start",
            book_id=scope.book_id,
            chapters=len(planned),
            committed=len(existing),
        )

        progress = _ProgressTracker(sum(len(item.text) for item in planned), on_progress)
        outcomes: list[ChapterOutcome] = []
        skipped: list[int] = []
        for chapter in planned:
            if chapter.index in existing:
                skipped.append(chapter.index)
                progress.advance(len(chapter.text))
                continue
            try:
                outcome = self._generate_one(
                    scope,
                    chapter,
                    settings=settings,
                    book_title=book_title,
                    cancel_token=cancel_token,
                )
            except GenerationCancelledError:
                self._log_event("generate", "cancelled", book_id=scope.book_id)
                if existing or any(item.status == "completed" for item in outcomes):
                    return GenerationResult(
                        book_id=scope.book_id,
                        status="cancelled",
                        outcomes=tuple(outcomes),
                        skipped_indices=tuple(skipped),
                    )
                raise
            outcomes.append(outcome)
            progress.advance(len(chapter.text))
            if on_chapter is not None:
                on_chapter(outcome)

        if not existing and not any(item.status == "completed" for item in outcomes):
            raise GenerationFailedError(
                f"No chapters were generated; {len(outcomes)} chapter(s) failed."
            )
        self._log_event("generate", "complete", book_id=scope.book_id)
        return GenerationResult(
            book_id=scope.book_id,
            status="completed",
            outcomes=tuple(outcomes),
            skipped_indices=tuple(skipped),
        )

    def regenerate_chapter(
        self,
        units: Sequence[ContentUnit],
        *,
        chapter_index: int,
        book_id: str,
        owner_id: str,
        settings: GenerationSettings,
        namespace: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChapterOutcome:
        """Re-synthesize and overwrite one chapter of an existing book."""

        planned = plan_chapters(units, self._cleaner)
        chapter = next((item for item in planned if item.index == chapter_index), None)
        if chapter is None:
            raise ValidationError(
                f"Chapter {chapter_index} does not exist in the source document "
                f"({len(planned)} chapter(s) with text)."
            )
        scope = AudiobookScope(
            book_id=book_id,
            owner_id=owner_id,
            namespace=namespace,
            root=self._storage_root,
        )
        return self._generate_one(
            scope,
            chapter,
            settings=settings,
            book_title=None,
            cancel_token=cancel_token,
        )

    def _generate_one(
        self,
        scope: AudiobookScope,
        chapter: PlannedChapter,
        *,
        settings: GenerationSettings,
        book_title: str | None,
        cancel_token: CancellationToken | None,
    ) -> ChapterOutcome:
        """Synthesize and commit one chapter, converting unit-level failures to outcomes."""

        retries = 0

        def _record_retry(attempt: int, exc: BaseException) -> None:
            nonlocal retries
            retries += 1
            self._on_retry(scope, chapter, attempt, exc)

        try:
            audio = self._retry_policy.call(
                lambda: self._synthesizer.synthesize(chapter.text, settings),
                cancel_token=cancel_token,
                on_retry=_record_retry,
            )
            check_cancelled(cancel_token)
            record = self._commit_service.commit(
                scope,
                title=chapter.title,
                raw_audio=audio,
                settings=settings,
                chapter_index=chapter.index,
                requested_format=settings.format,
                book_title=book_title,
                cancel_token=cancel_token,
            )
        except (GenerationCancelledError, SettingsConflictError):
            raise
        except TTSProviderError as exc:
            if exc.failure_kind in _RUN_ABORTING_KINDS:
                raise
            return self._failed_outcome(scope, chapter, settings, exc, retries)
        except (ValidationError, TranscodeError) as exc:
            return self._failed_outcome(scope, chapter, settings, exc, retries)
        return ChapterOutcome(
            index=record.index,
            title=record.title,
            status="completed",
            book_id=scope.book_id,
            format=record.format,
            duration=record.duration,
            retries=retries,
        )

    def _failed_outcome(
        self,
        scope: AudiobookScope,
        chapter: PlannedChapter,
        settings: GenerationSettings,
        exc: Exception,
        retries: int,
    ) -> ChapterOutcome:
        if self._run_logger is not None:
            self._run_logger.log_chapter_failed(
                book_id=scope.book_id,
                index=chapter.index,
                error_type=type(exc).__name__,
            )
        return ChapterOutcome(
            index=chapter.index,
            title=chapter.title,
            status="error",
            book_id=scope.book_id,
            format=settings.format,
            error=str(exc),
            retries=retries,
        )

    def _on_retry(
        self,
        scope: AudiobookScope,
        chapter: PlannedChapter,
        attempt: int,
        exc: BaseException,
    ) -> None:
        self._log_warning(
            "tts",
            "retry",
            book_id=scope.book_id,
            index=chapter.index,
            attempt=attempt,
            failure_kind=getattr(exc, "failure_kind", type(exc).__name__),
        )

