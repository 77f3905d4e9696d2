"""Unit tests for combined audiobook assembly and its cache."""

from __future__ import annotations

import io
import json

import pytest

from chaptervoice.audio.transcoder import ChapterTranscoder
from chaptervoice.cancellation import CancellationToken
from chaptervoice.errors import (
    AssemblyError,
    GenerationCancelledError,
    NoChaptersError,
    ValidationError,
)
from chaptervoice.pipeline import assembler as assembler_module
from chaptervoice.pipeline.assembler import BookLeases, FullBookAssembler
from chaptervoice.pipeline.commit import ChapterCommitService
from chaptervoice.storage.blobstore import AudiobookScope, LocalBlobStore, list_file_names
from chaptervoice.storage.rowstore import AudiobookRepository
from chaptervoice.telemetry.logger import RunLogger
from tests.fakes import FakeFfmpegRunner, split_fake_audio


@pytest.fixture
def commit_service(
    blob_store: LocalBlobStore,
    repository: AudiobookRepository,
    transcoder: ChapterTranscoder,
) -> ChapterCommitService:
    return ChapterCommitService(store=blob_store, repository=repository, transcoder=transcoder)


@pytest.fixture
def log_sink() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def assembler(
    blob_store: LocalBlobStore,
    repository: AudiobookRepository,
    transcoder: ChapterTranscoder,
    log_sink: io.StringIO,
) -> FullBookAssembler:
    return FullBookAssembler(
        store=blob_store,
        repository=repository,
        transcoder=transcoder,
        run_logger=RunLogger(log_sink),
    )


def _commit_two(
    commit_service: ChapterCommitService,
    scope: AudiobookScope,
    audio_format: str = "m4b",
) -> None:
    """Commit a 0.5 s chapter and a 0.25 s chapter."""

    commit_service.commit(
        scope, title="One", raw_audio=b"a" * 50, chapter_index=0, requested_format=audio_format
    )
    commit_service.commit(
        scope, title="Two", raw_audio=b"b" * 25, chapter_index=1, requested_format=audio_format
    )


def test_assemble_builds_ordered_artifact_with_markers(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
) -> None:
    """A rebuild concatenates chapters in index order and stores its signature."""

    _commit_two(commit_service, scope)

    book = assembler.assemble(scope)

    assert book.cache_hit is False
    assert book.format == "m4b"
    assert book.mime_type == "audio/mp4"
    assert book.chapter_count == 2
    assert split_fake_audio(book.data)[2] == b"a" * 50 + b"b" * 25
    assert "copy" in ffmpeg_runner.concat_calls()[0]
    assert ffmpeg_runner.metadata_texts == [
        ";FFMETADATA1\n"
        "[CHAPTER]\nTIMEBASE=1/1000\nSTART=0\nEND=500\ntitle=One\n"
        "[CHAPTER]\nTIMEBASE=1/1000\nSTART=500\nEND=750\ntitle=Two\n"
    ]
    manifest = json.loads(blob_store.get(scope.key("complete.m4b.manifest.json")))
    assert manifest == [
        {"index": 0, "fileName": "0001__One.m4b"},
        {"index": 1, "fileName": "0002__Two.m4b"},
    ]
    assert blob_store.get(scope.key("complete.m4b")) == book.data


def test_assemble_serves_cache_until_a_commit_invalidates_it(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    scope: AudiobookScope,
    log_sink: io.StringIO,
) -> None:
    """A matching signature is a cache hit; committing a chapter forces a rebuild."""

    _commit_two(commit_service, scope)
    first = assembler.assemble(scope)
    concat_runs = len(ffmpeg_runner.concat_calls())

    second = assembler.assemble(scope)

    assert second.cache_hit is True
    assert second.data == first.data
    assert len(ffmpeg_runner.concat_calls()) == concat_runs
    assert "event=cache_hit" in log_sink.getvalue()

    commit_service.commit(scope, title="Two", raw_audio=b"c" * 10, chapter_index=1)
    third = assembler.assemble(scope)

    assert third.cache_hit is False
    assert split_fake_audio(third.data)[2] == b"a" * 50 + b"c" * 10


def test_assemble_rebuilds_when_stored_signature_is_stale(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
) -> None:
    """A signature that does not match the current chapters is never served."""

    _commit_two(commit_service, scope)
    assembler.assemble(scope)
    blob_store.put(
        scope.key("complete.m4b.manifest.json"),
        json.dumps([{"index": 0, "fileName": "0001__Old.m4b"}]).encode("utf-8"),
        "application/json",
    )

    book = assembler.assemble(scope)

    assert book.cache_hit is False
    manifest = json.loads(blob_store.get(scope.key("complete.m4b.manifest.json")))
    assert [entry["fileName"] for entry in manifest] == ["0001__One.m4b", "0002__Two.m4b"]


def test_assemble_rebuilds_when_signature_is_unreadable(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
    log_sink: io.StringIO,
) -> None:
    _commit_two(commit_service, scope)
    blob_store.put(scope.key("complete.m4b"), b"garbage", "audio/mp4")
    blob_store.put(scope.key("complete.m4b.manifest.json"), b"not json", "application/json")

    book = assembler.assemble(scope)

    assert book.cache_hit is False
    assert book.data != b"garbage"
    assert "event=cache_unreadable" in log_sink.getvalue()


def test_assemble_falls_back_to_reencode(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    scope: AudiobookScope,
    log_sink: io.StringIO,
) -> None:
    """A failed stream copy is followed by a fixed-bitrate re-encode."""

    _commit_two(commit_service, scope)
    ffmpeg_runner.fail_stream_copy = True

    book = assembler.assemble(scope)

    concat_calls = ffmpeg_runner.concat_calls()
    assert len(concat_calls) == 2
    assert concat_calls[1][concat_calls[1].index("-c:a") + 1] == "aac"
    assert concat_calls[1][concat_calls[1].index("-b:a") + 1] == "64k"
    assert split_fake_audio(book.data)[2] == b"a" * 50 + b"b" * 25
    assert "event=concat_strategy_failed" in log_sink.getvalue()
    assert "strategy=stream_copy" in log_sink.getvalue()


def test_assemble_raises_when_every_strategy_fails(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
) -> None:
    _commit_two(commit_service, scope)
    ffmpeg_runner.fail_stream_copy = True
    ffmpeg_runner.fail_reencode = True

    with pytest.raises(AssemblyError, match="Concatenation failed"):
        assembler.assemble(scope)

    assert "complete.m4b" not in list_file_names(blob_store, scope)


def test_mp3_assembly_drops_source_metadata(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    scope: AudiobookScope,
) -> None:
    """mp3 artifacts carry no chapter-marker metadata input."""

    _commit_two(commit_service, scope, audio_format="mp3")

    book = assembler.assemble(scope)

    argv = ffmpeg_runner.concat_calls()[0]
    assert book.format == "mp3"
    assert argv[argv.index("-map_metadata") + 1] == "-1"
    assert ffmpeg_runner.metadata_texts == []


def test_assemble_without_chapters_raises(
    assembler: FullBookAssembler,
    scope: AudiobookScope,
) -> None:
    with pytest.raises(NoChaptersError, match="No chapters found"):
        assembler.assemble(scope)


def test_assemble_rejects_mixed_formats(
    assembler: FullBookAssembler,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
) -> None:
    blob_store.put(scope.key("0001__A.mp3"), b"x", "audio/mpeg")
    blob_store.put(scope.key("0002__B.m4b"), b"x", "audio/mp4")

    with pytest.raises(ValidationError):
        assembler.assemble(scope)


def test_assemble_honors_cancellation(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
) -> None:
    _commit_two(commit_service, scope)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(GenerationCancelledError):
        assembler.assemble(scope, cancel_token=token)

    assert "complete.m4b" not in list_file_names(blob_store, scope)


def test_assemble_rejects_zero_duration_output(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    blob_store: LocalBlobStore,
    scope: AudiobookScope,
) -> None:
    """A combined file that probes to zero seconds is never stored."""

    _commit_two(commit_service, scope)
    ffmpeg_runner.silent_concat = True

    with pytest.raises(AssemblyError, match="Invalid duration"):
        assembler.assemble(scope)

    names = list_file_names(blob_store, scope)
    assert not any(name.startswith("complete.") for name in names)


def test_assemble_handles_long_multibyte_chapter_titles(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    ffmpeg_runner: FakeFfmpegRunner,
    scope: AudiobookScope,
) -> None:
    title = "第一章" * 30
    commit_service.commit(scope, title=title, raw_audio=b"a" * 50, chapter_index=0)

    book = assembler.assemble(scope)

    assert book.chapter_count == 1
    assert split_fake_audio(book.data)[2] == b"a" * 50
    assert "title=第一章第一章" in ffmpeg_runner.metadata_texts[-1]


def test_assemble_reports_local_io_failures_as_assembly_errors(
    assembler: FullBookAssembler,
    commit_service: ChapterCommitService,
    monkeypatch: pytest.MonkeyPatch,
    scope: AudiobookScope,
) -> None:
    """Scratch-directory failures surface as `AssemblyError`, not a raw `OSError`."""

    _commit_two(commit_service, scope)

    def _no_space(*_args: object, **_kwargs: object) -> str:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(assembler_module.tempfile, "mkdtemp", _no_space)

    with pytest.raises(AssemblyError, match="No space left on device") as excinfo:
        assembler.assemble(scope)

    assert isinstance(excinfo.value.__cause__, OSError)


def test_book_leases_are_released_after_assembly(
    blob_store: LocalBlobStore,
    repository: AudiobookRepository,
    transcoder: ChapterTranscoder,
    commit_service: ChapterCommitService,
    scope: AudiobookScope,
) -> None:
    leases = BookLeases()
    assembler = FullBookAssembler(
        store=blob_store, repository=repository, transcoder=transcoder, leases=leases
    )
    _commit_two(commit_service, scope)

    assembler.assemble(scope)
    with pytest.raises(NoChaptersError):
        assembler.assemble(AudiobookScope(book_id="empty", owner_id="user-1"))

    assert leases.active_count() == 0
