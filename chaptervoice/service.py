"""Driver-facing audiobook service.

Responsibilities:
- Resolve which owner scope a book lives under before any read or write.
- Expose commit, status, chapter download, full download, chapter deletion,
  and reset over the shared blob and row stores.
- Reconcile chapter rows with stored objects when reading status.
"""

from __future__ import annotations

from collections.abc import Sequence

from .audio.transcoder import ChapterTranscoder
from .cancellation import CancellationToken
from .chapters.codec import (
    complete_file_name,
    find_chapter_object,
    list_chapter_objects,
    superseded_file_names,
)
from .errors import BlobNotFoundError, ChaptervoiceError
from .models.datatypes import (
    AUDIO_FORMATS,
    AssembledBook,
    BookStatus,
    ChapterOutcome,
    ChapterRecord,
    ChapterStatus,
    ContentUnit,
    GenerationResult,
    GenerationSettings,
)
from .pipeline.assembler import BookLeases, FullBookAssembler
from .pipeline.commit import ChapterCommitService, invalidate_combined_artifacts
from .pipeline.orchestrator import (
    ChapterCallback,
    GenerationOrchestrator,
    ProgressCallback,
)
from .pipeline.retry import RetryPolicy
from .storage.blobstore import (
    DEFAULT_STORAGE_ROOT,
    AudiobookScope,
    BlobStore,
    list_file_names,
    unclaimed_owner_id,
)
from .storage.rowstore import AudiobookRepository
from .telemetry.logger import RunLogger
from .text.cleaners import TextCleaner
from .tts.synthesizer import SpeechSynthesizer


class AudiobookService:
    """Facade used by the CLI and other drivers."""

    def __init__(
        self,
        *,
        store: BlobStore,
        repository: AudiobookRepository,
        synthesizer: SpeechSynthesizer | None = None,
        transcoder: ChapterTranscoder | None = None,
        retry_policy: RetryPolicy | None = None,
        cleaner: TextCleaner | None = None,
        storage_root: str = DEFAULT_STORAGE_ROOT,
        namespace: str | None = None,
        leases: BookLeases | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._storage_root = storage_root
        self._namespace = namespace
        self._transcoder = transcoder or ChapterTranscoder()
        self._run_logger = run_logger
        self._commit_service = ChapterCommitService(
            store=store,
            repository=repository,
            transcoder=self._transcoder,
            run_logger=run_logger,
        )
        self._assembler = FullBookAssembler(
            store=store,
            repository=repository,
            transcoder=self._transcoder,
            leases=leases,
            run_logger=run_logger,
        )
        self._synthesizer = synthesizer
        self._retry_policy = retry_policy
        self._cleaner = cleaner

    @property
    def commit_service(self) -> ChapterCommitService:
        return self._commit_service

    @property
    def assembler(self) -> FullBookAssembler:
        return self._assembler

    def _scope(self, book_id: str, owner_id: str) -> AudiobookScope:
        return AudiobookScope(
            book_id=book_id,
            owner_id=owner_id,
            namespace=self._namespace,
            root=self._storage_root,
        )

    def _book_present(self, scope: AudiobookScope) -> bool:
        if self._repository.book_exists(scope.book_id, scope.owner_id):
            return True
        return bool(list_file_names(self._store, scope))

    def resolve_scope(self, book_id: str, owner_id: str | None = None) -> AudiobookScope:
        """Return the scope a book lives under.

        A book already stored under the unclaimed placeholder stays there even
        when a concrete owner asks for it; otherwise the preferred owner wins.
        """

        unclaimed = unclaimed_owner_id(self._namespace)
        preferred = owner_id or unclaimed
        if preferred != unclaimed:
            unclaimed_scope = self._scope(book_id, unclaimed)
            if self._book_present(unclaimed_scope):
                return unclaimed_scope
        return self._scope(book_id, preferred)

    def _orchestrator(self) -> GenerationOrchestrator:
        if self._synthesizer is None:
            raise ChaptervoiceError("No speech synthesizer is configured for generation.")
        return GenerationOrchestrator(
            commit_service=self._commit_service,
            synthesizer=self._synthesizer,
            retry_policy=self._retry_policy,
            cleaner=self._cleaner,
            storage_root=self._storage_root,
            run_logger=self._run_logger,
        )

    def generate(
        self,
        units: Sequence[ContentUnit],
        *,
        settings: GenerationSettings,
        book_id: str | None = None,
        owner_id: str | None = None,
        book_title: str | None = None,
        on_progress: ProgressCallback | None = None,
        on_chapter: ChapterCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """Generate (or resume) a book from ordered content units."""

        resolved_owner = (
            self.resolve_scope(book_id, owner_id).owner_id
            if book_id is not None
            else owner_id or unclaimed_owner_id(self._namespace)
        )
        return self._orchestrator().generate(
            units,
            settings=settings,
            owner_id=resolved_owner,
            book_id=book_id,
            namespace=self._namespace,
            book_title=book_title,
            on_progress=on_progress,
            on_chapter=on_chapter,
            cancel_token=cancel_token,
        )

    def regenerate_chapter(
        self,
        units: Sequence[ContentUnit],
        *,
        book_id: str,
        chapter_index: int,
        settings: GenerationSettings,
        owner_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChapterOutcome:
        scope = self.resolve_scope(book_id, owner_id)
        return self._orchestrator().regenerate_chapter(
            units,
            chapter_index=chapter_index,
            book_id=scope.book_id,
            owner_id=scope.owner_id,
            settings=settings,
            namespace=self._namespace,
            cancel_token=cancel_token,
        )

    def commit_chapter(
        self,
        book_id: str,
        *,
        title: str,
        raw_audio: bytes,
        settings: GenerationSettings | None = None,
        chapter_index: int | None = None,
        requested_format: str = "m4b",
        owner_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChapterRecord:
        """Commit externally synthesized audio as one chapter."""

        return self._commit_service.commit(
            self.resolve_scope(book_id, owner_id),
            title=title,
            raw_audio=raw_audio,
            settings=settings,
            chapter_index=chapter_index,
            requested_format=requested_format,
            cancel_token=cancel_token,
        )

    def status(self, book_id: str, owner_id: str | None = None) -> BookStatus:
        """Reconstruct book state from stored objects, pruning orphaned rows."""

        scope = self.resolve_scope(book_id, owner_id)
        file_names = list_file_names(self._store, scope)
        chapters = list_chapter_objects(file_names)
        self._repository.delete_chapters_not_in(
            scope.book_id,
            scope.owner_id,
            (chapter.index for chapter in chapters),
        )
        lock_state = self._commit_service.settings_lock.resolve(scope, file_names)
        has_complete = any(
            complete_file_name(audio_format) in file_names for audio_format in AUDIO_FORMATS
        )

        if not chapters and not has_complete and lock_state.settings is None:
            self._repository.delete_book(scope.book_id, scope.owner_id)
            return BookStatus(book_id=None, exists=False)

        durations = {
            record.index: record.duration
            for record in self._repository.list_chapters(scope.book_id, scope.owner_id)
        }
        return BookStatus(
            book_id=scope.book_id,
            exists=True,
            chapters=tuple(
                ChapterStatus(
                    index=chapter.index,
                    title=chapter.title,
                    format=chapter.format,
                    duration=durations.get(chapter.index),
                )
                for chapter in chapters
            ),
            has_complete=has_complete,
            settings=lock_state.settings,
            settings_unknown=lock_state.settings_unknown,
        )

    def download_chapter(
        self,
        book_id: str,
        chapter_index: int,
        *,
        owner_id: str | None = None,
    ) -> tuple[str, bytes]:
        """Return `(file_name, bytes)` of one stored chapter.

        A chapter whose object has disappeared loses its row before
        `BlobNotFoundError` is raised.
        """

        scope = self.resolve_scope(book_id, owner_id)
        chapter = find_chapter_object(list_file_names(self._store, scope), chapter_index)
        if chapter is None:
            self._repository.delete_chapter(scope.book_id, scope.owner_id, chapter_index)
            raise BlobNotFoundError(scope.key(f"chapter-{chapter_index + 1}"))
        try:
            data = self._store.get(scope.key(chapter.file_name))
        except BlobNotFoundError:
            self._repository.delete_chapter(scope.book_id, scope.owner_id, chapter_index)
            raise
        return chapter.file_name, data

    def download(
        self,
        book_id: str,
        *,
        requested_format: str | None = None,
        owner_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AssembledBook:
        """Return the combined audiobook, rebuilding it when the cache is stale."""

        return self._assembler.assemble(
            self.resolve_scope(book_id, owner_id),
            requested_format=requested_format,
            cancel_token=cancel_token,
        )

    def delete_chapter(
        self,
        book_id: str,
        chapter_index: int,
        *,
        owner_id: str | None = None,
    ) -> int:
        """Delete every stored object and the row of one chapter.

        Returns the number of deleted objects; raises `BlobNotFoundError` when
        neither an object nor a row existed.
        """

        scope = self.resolve_scope(book_id, owner_id)
        file_names = list_file_names(self._store, scope)
        targets = superseded_file_names(file_names, chapter_index)
        row = self._repository.get_chapter(scope.book_id, scope.owner_id, chapter_index)
        if not targets and row is None:
            raise BlobNotFoundError(scope.key(f"chapter-{chapter_index + 1}"))
        for file_name in targets:
            self._store.delete(scope.key(file_name))
        invalidate_combined_artifacts(self._store, scope)
        self._repository.delete_chapter(scope.book_id, scope.owner_id, chapter_index)
        if self._run_logger is not None:
            self._run_logger.log_event(
                "delete",
                "chapter_deleted",
                book_id=scope.book_id,
                index=chapter_index,
            )
        return len(targets)

    def reset(self, book_id: str, *, owner_id: str | None = None) -> int:
        """Delete the book row, chapter rows, and every stored object of a book."""

        scope = self.resolve_scope(book_id, owner_id)
        self._repository.delete_book(scope.book_id, scope.owner_id)
        deleted = self._store.delete_prefix(scope.prefix)
        if self._run_logger is not None:
            self._run_logger.log_event(
                "reset", "book_reset", book_id=scope.book_id, objects=deleted
            )
        return deleted
