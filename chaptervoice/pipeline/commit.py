"""Chapter commit service.

Responsibilities:
- Enforce the settings lock and single-format invariant before any write.
- Transcode synthesized audio into the book's container and validate its duration.
- Persist the canonical chapter object, remove superseded encodings, invalidate the
  combined artifact, and upsert the chapter row, in that order.
"""

from __future__ import annotations

from pathlib import Path
import tempfile
from typing import Iterable

from ..audio.transcoder import ChapterTranscoder
from ..cancellation import CancellationToken, check_cancelled
from ..chapters.codec import (
    complete_file_name,
    complete_manifest_file_name,
    encode_chapter_file_name,
    encode_chapter_title_tag,
    list_chapter_objects,
    superseded_file_names,
)
from ..errors import ValidationError
from ..models.datatypes import (
    AUDIO_FORMATS,
    ChapterObject,
    ChapterRecord,
    GenerationSettings,
    audio_mime_type,
    normalize_audio_format,
)
from ..storage.blobstore import AudiobookScope, BlobStore, list_file_names
from ..storage.rowstore import AudiobookRepository
from ..telemetry.logger import RunLogger
from .settings_lock import SettingsLock
from .telemetry import PipelineTelemetryMixin

DEFAULT_BOOK_TITLE = "Untitled Audiobook"


def next_chapter_index(indices: Iterable[int]) -> int:
    """Return the first gap in the sorted committed indices."""

    expected = 0
    for index in sorted(set(indices)):
        if index == expected:
            expected += 1
        elif index > expected:
            break
    return expected


def resolve_single_format(chapters: list[ChapterObject]) -> str | None:
    """Return the only container format used by `chapters`, rejecting mixtures."""

    formats = {chapter.format for chapter in chapters}
    if len(formats) > 1:
        raise ValidationError(
            "Mixed chapter formats detected; reset the audiobook to continue."
        )
    return next(iter(formats), None)


def invalidate_combined_artifacts(store: BlobStore, scope: AudiobookScope) -> None:
    """Delete every cached combined artifact and its signature."""

    for audio_format in AUDIO_FORMATS:
        store.delete(scope.key(complete_file_name(audio_format)))
        store.delete(scope.key(complete_manifest_file_name(audio_format)))


class ChapterCommitService(PipelineTelemetryMixin):
    """Durably commit one synthesized chapter for one book."""

    def __init__(
        self,
        *,
        store: BlobStore,
        repository: AudiobookRepository,
        transcoder: ChapterTranscoder | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._transcoder = transcoder or ChapterTranscoder()
        self._settings_lock = SettingsLock(store)
        self._run_logger = run_logger

    @property
    def settings_lock(self) -> SettingsLock:
        return self._settings_lock

    def committed_indices(self, scope: AudiobookScope) -> set[int]:
        """Return indices that already have a canonical stored chapter object."""

        return {
            chapter.index
            for chapter in list_chapter_objects(list_file_names(self._store, scope))
        }

    def commit(
        self,
        scope: AudiobookScope,
        *,
        title: str,
        raw_audio: bytes,
        settings: GenerationSettings | None = None,
        chapter_index: int | None = None,
        requested_format: str = "m4b",
        book_title: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChapterRecord:
        """Commit `raw_audio` (intermediate mp3) as one chapter and return its row.

        Raises:
            SettingsConflictError: Settings differ from the locked settings.
            ValidationError: Bad index, mixed formats, or zero-duration output.
            GenerationCancelledError: Cancelled before the chapter object was written.
        """

        if chapter_index is not None and (
            isinstance(chapter_index, bool)
            or not isinstance(chapter_index, int)
            or chapter_index < 0
        ):
            raise ValidationError(f"Invalid chapter index: {chapter_index}")
        if not raw_audio:
            raise ValidationError("Chapter audio is empty.")

        file_names = list_file_names(self._store, scope)
        existing_chapters = list_chapter_objects(file_names)
        lock_state = self._settings_lock.resolve(scope, file_names)
        self._settings_lock.check(lock_state, settings)

        existing_format = resolve_single_format(existing_chapters)
        audio_format = self._target_format(
            existing_format=existing_format,
            locked=lock_state.settings if lock_state.locked else None,
            incoming=settings,
            stored=lock_state.settings,
            requested_format=requested_format,
        )
        post_speed = self._post_speed(settings, lock_state.settings)
        index = (
            chapter_index
            if chapter_index is not None
            else next_chapter_index(chapter.index for chapter in existing_chapters)
        )
        chapter_title = title.strip() or f"Chapter {index + 1}"
        final_name = encode_chapter_file_name(index, chapter_title, audio_format)

        encoded, duration = self._transcode_and_validate(
            raw_audio=raw_audio,
            index=index,
            title=chapter_title,
            audio_format=audio_format,
            post_speed=post_speed,
            cancel_token=cancel_token,
        )

        # Past this point the chapter is written through to the row.
        check_cancelled(cancel_token)
        self._repository.ensure_book(
            scope.book_id,
            scope.owner_id,
            title=book_title or chapter_title or DEFAULT_BOOK_TITLE,
        )
        self._store.put(scope.key(final_name), encoded, audio_mime_type(audio_format))
        for stale_name in superseded_file_names(file_names, index, keep=final_name):
            self._store.delete(scope.key(stale_name))
        invalidate_combined_artifacts(self._store, scope)

        if settings is not None and not lock_state.has_chapters:
            self._settings_lock.persist(scope, settings, replace=lock_state.settings is not None)

        record = ChapterRecord(
            book_id=scope.book_id,
            owner_id=scope.owner_id,
            index=index,
            title=chapter_title,
            duration=duration,
            format=audio_format,
            file_name=final_name,
        )
        self._repository.upsert_chapter(record)
        if self._run_logger is not None:
            self._run_logger.log_chapter_committed(
                book_id=scope.book_id,
                index=index,
                audio_format=audio_format,
                duration=duration,
            )
        return record

    def _transcode_and_validate(
        self,
        *,
        raw_audio: bytes,
        index: int,
        title: str,
        audio_format: str,
        post_speed: float,
        cancel_token: CancellationToken | None,
    ) -> tuple[bytes, float]:
        """Transcode into a scratch directory and return encoded bytes plus duration."""

        with tempfile.TemporaryDirectory(prefix="chaptervoice-commit-") as work_dir:
            input_path = Path(work_dir) / f"{index}-input.mp3"
            output_path = Path(work_dir) / f"{index}-chapter.tmp.{audio_format}"
            input_path.write_bytes(raw_audio)

            self._transcoder.transcode(
                input_path=input_path,
                output_path=output_path,
                audio_format=audio_format,
                post_speed=post_speed,
                title_tag=encode_chapter_title_tag(index, title),
                cancel_token=cancel_token,
            )
            probe = self._transcoder.probe(output_path, cancel_token=cancel_token)
            if probe.duration is None or probe.duration <= 0:
                raise ValidationError(
                    f"Transcoded chapter {index + 1} has no playable duration."
                )
            return output_path.read_bytes(), probe.duration

    @staticmethod
    def _target_format(
        *,
        existing_format: str | None,
        locked: GenerationSettings | None,
        incoming: GenerationSettings | None,
        stored: GenerationSettings | None,
        requested_format: str,
    ) -> str:
        """Pick the container: existing chapters, locked, incoming, stored, then requested."""

        for candidate in (
            existing_format,
            locked.format if locked is not None else None,
            incoming.format if incoming is not None else None,
            stored.format if stored is not None else None,
        ):
            if candidate is not None:
                return candidate
        return normalize_audio_format(requested_format)

    @staticmethod
    def _post_speed(
        incoming: GenerationSettings | None,
        stored: GenerationSettings | None,
    ) -> float:
        if incoming is not None:
            return incoming.post_speed
        if stored is not None:
            return stored.post_speed
        return 1.0
