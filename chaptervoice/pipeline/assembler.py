"""Full-book assembler.

Responsibilities:
- Serve a cached combined artifact when its stored signature is still current.
- Otherwise download chapters, build the chapter-marker timeline, and concatenate
  with stream copy first and a fixed-bitrate re-encode second.
- Persist the new artifact with its signature under a per-book lease.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
from pathlib import Path
import shutil
import tempfile
import threading
from typing import Any, Iterator

from ..audio.markers import build_chapter_markers, render_concat_list, render_ffmetadata
from ..audio.transcoder import ChapterTranscoder, ConcatStrategy
from ..cancellation import CancellationToken, check_cancelled
from ..chapters.codec import complete_file_name, complete_manifest_file_name, list_chapter_objects
from ..errors import (
    AssemblyError,
    BlobNotFoundError,
    ChaptervoiceError,
    GenerationCancelledError,
    NoChaptersError,
    StorageError,
    TranscodeError,
    ValidationError,
)
from ..models.datatypes import (
    AssembledBook,
    ChapterObject,
    SignatureEntry,
    audio_mime_type,
    normalize_audio_format,
)
from ..storage.blobstore import AudiobookScope, BlobStore, list_file_names
from ..storage.rowstore import AudiobookRepository
from ..telemetry.logger import RunLogger
from .commit import resolve_single_format
from .settings_lock import SETTINGS_CONTENT_TYPE
from .telemetry import PipelineTelemetryMixin

_CONCAT_ORDER = (ConcatStrategy.STREAM_COPY, ConcatStrategy.REENCODE)


@dataclass(frozen=True, slots=True)
class ConcatAttempt:
    """Outcome of one concatenation strategy."""

    strategy: ConcatStrategy
    ok: bool
    error: TranscodeError | None = None


@dataclass(slots=True)
class _Lease:
    lock: threading.Lock
    holders: int = 0


class BookLeases:
    """In-process mutex per book prefix, serializing rebuilds of one book.

    Entries are dropped once no caller holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._leases: dict[str, _Lease] = {}

    @contextmanager
    def lease(self, scope: AudiobookScope) -> Iterator[None]:
        with self._guard:
            entry = self._leases.get(scope.prefix)
            if entry is None:
                entry = _Lease(lock=threading.Lock())
                self._leases[scope.prefix] = entry
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._leases[scope.prefix]

    def active_count(self) -> int:
        """Return how many book prefixes currently have a holder or waiter."""

        with self._guard:
            return len(self._leases)


def build_signature(chapters: list[ChapterObject]) -> list[SignatureEntry]:
    """Return the ordered `{index, fileName}` signature of `chapters`."""

    return [
        SignatureEntry(index=chapter.index, file_name=chapter.file_name)
        for chapter in sorted(chapters, key=lambda item: item.index)
    ]


def signature_payload(signature: list[SignatureEntry]) -> list[dict[str, Any]]:
    return [entry.to_payload() for entry in signature]


class FullBookAssembler(PipelineTelemetryMixin):
    """Build or serve the combined audiobook artifact of one book."""

    def __init__(
        self,
        *,
        store: BlobStore,
        repository: AudiobookRepository,
        transcoder: ChapterTranscoder | None = None,
        leases: BookLeases | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._transcoder = transcoder or ChapterTranscoder()
        self._leases = leases or BookLeases()
        self._run_logger = run_logger

    def assemble(
        self,
        scope: AudiobookScope,
        *,
        requested_format: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AssembledBook:
        """Return the combined artifact, rebuilding it when the cache is stale.

        Raises:
            NoChaptersError: The book has no stored chapters.
            ValidationError: Chapters span more than one container format.
            GenerationCancelledError: Cancellation was requested.
            AssemblyError: Any other failure while building or persisting.
        """

        with self._leases.lease(scope):
            file_names = list_file_names(self._store, scope)
            chapters = list_chapter_objects(file_names)
            if not chapters:
                raise NoChaptersError("No chapters found")
            chapter_format = resolve_single_format(chapters)
            audio_format = (
                normalize_audio_format(requested_format)
                if requested_format is not None
                else chapter_format
            )
            if audio_format is None:
                raise NoChaptersError("No chapters found")
            signature = build_signature(chapters)

            cached = self._load_cached(scope, audio_format, signature, file_names)
            if cached is not None:
                self._log_event("assemble", "cache_hit", book_id=scope.book_id, format=audio_format)
                return AssembledBook(
                    data=cached,
                    format=audio_format,
                    chapter_count=len(chapters),
                    cache_hit=True,
                )

            try:
                data = self._run_stage(
                    "assemble",
                    lambda: self._rebuild(scope, chapters, audio_format, signature, cancel_token),
                )
            except (GenerationCancelledError, ValidationError, AssemblyError):
                raise
            except (ChaptervoiceError, OSError) as exc:
                raise AssemblyError(f"Failed to create full audiobook file: {exc}") from exc
            return AssembledBook(
                data=data,
                format=audio_format,
                chapter_count=len(chapters),
                cache_hit=False,
            )

    def _load_cached(
        self,
        scope: AudiobookScope,
        audio_format: str,
        signature: list[SignatureEntry],
        file_names: list[str],
    ) -> bytes | None:
        """Return cached bytes when current; delete stale or unreadable entries."""

        complete_name = complete_file_name(audio_format)
        manifest_name = complete_manifest_file_name(audio_format)
        if complete_name not in file_names or manifest_name not in file_names:
            return None

        try:
            stored = json.loads(self._store.get(scope.key(manifest_name)).decode("utf-8"))
            if stored == signature_payload(signature):
                return self._store.get(scope.key(complete_name))
        except (BlobNotFoundError, StorageError, UnicodeDecodeError, ValueError):
            self._log_warning("assemble", "cache_unreadable", book_id=scope.book_id)

        self._store.delete(scope.key(complete_name))
        self._store.delete(scope.key(manifest_name))
        return None

    def _rebuild(
        self,
        scope: AudiobookScope,
        chapters: list[ChapterObject],
        audio_format: str,
        signature: list[SignatureEntry],
        cancel_token: CancellationToken | None,
    ) -> bytes:
        durations_by_index = {
            record.index: record.duration
            for record in self._repository.list_chapters(scope.book_id, scope.owner_id)
        }
        work_dir = Path(tempfile.mkdtemp(prefix="chaptervoice-combine-"))
        try:
            local_paths: list[Path] = []
            timeline: list[tuple[str, float]] = []
            for chapter in chapters:
                check_cancelled(cancel_token)
                local_path = work_dir / f"{chapter.index + 1:04d}.{chapter.format}"
                local_path.write_bytes(self._store.get(scope.key(chapter.file_name)))
                duration = self._probe_duration(local_path, cancel_token)
                if duration is None:
                    duration = durations_by_index.get(chapter.index, 0.0)
                local_paths.append(local_path)
                timeline.append((chapter.title, duration))

            metadata_path = work_dir / "metadata.txt"
            list_path = work_dir / "list.txt"
            output_path = work_dir / complete_file_name(audio_format)
            metadata_path.write_text(
                render_ffmetadata(build_chapter_markers(timeline)), encoding="utf-8"
            )
            list_path.write_text(render_concat_list(local_paths), encoding="utf-8")

            self._concat_with_fallback(
                scope=scope,
                list_path=list_path,
                metadata_path=metadata_path,
                output_path=output_path,
                audio_format=audio_format,
                cancel_token=cancel_token,
            )
            final_duration = self._probe_duration(output_path, cancel_token)
            if final_duration is None:
                raise AssemblyError(f"Invalid duration for output file: {output_path.name}")

            data = output_path.read_bytes()
            self._store.put(
                scope.key(complete_file_name(audio_format)),
                data,
                audio_mime_type(audio_format),
            )
            self._store.put(
                scope.key(complete_manifest_file_name(audio_format)),
                json.dumps(signature_payload(signature), indent=2).encode("utf-8"),
                SETTINGS_CONTENT_TYPE,
            )
            return data
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def _probe_duration(
        self,
        path: Path,
        cancel_token: CancellationToken | None,
    ) -> float | None:
        """Return a strictly positive probed duration, or `None`."""

        try:
            probe = self._transcoder.probe(path, cancel_token=cancel_token)
        except TranscodeError:
            return None
        if probe.duration is None or probe.duration <= 0:
            return None
        return probe.duration

    def _try_concat(
        self,
        strategy: ConcatStrategy,
        *,
        list_path: Path,
        metadata_path: Path,
        output_path: Path,
        audio_format: str,
        cancel_token: CancellationToken | None,
    ) -> ConcatAttempt:
        try:
            self._transcoder.concat(
                list_path=list_path,
                output_path=output_path,
                audio_format=audio_format,
                strategy=strategy,
                metadata_path=metadata_path,
                cancel_token=cancel_token,
            )
        except TranscodeError as exc:
            return ConcatAttempt(strategy=strategy, ok=False, error=exc)
        return ConcatAttempt(strategy=strategy, ok=True)

    def _concat_with_fallback(
        self,
        *,
        scope: AudiobookScope,
        list_path: Path,
        metadata_path: Path,
        output_path: Path,
        audio_format: str,
        cancel_token: CancellationToken | None,
    ) -> ConcatStrategy:
        """Try each strategy in order and return the one that succeeded."""

        last_attempt: ConcatAttempt | None = None
        for strategy in _CONCAT_ORDER:
            check_cancelled(cancel_token)
            attempt = self._try_concat(
                strategy,
                list_path=list_path,
                metadata_path=metadata_path,
                output_path=output_path,
                audio_format=audio_format,
                cancel_token=cancel_token,
            )
            if attempt.ok:
                return strategy
            self._log_warning(
                "assemble",
                "concat_strategy_failed",
                book_id=scope.book_id,
                strategy=strategy.value,
            )
            last_attempt = attempt
        detail = last_attempt.error if last_attempt is not None else "no strategy ran"
        raise AssemblyError(f"Concatenation failed: {detail}")
