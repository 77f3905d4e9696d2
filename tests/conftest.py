"""Shared pytest fixtures for the full chaptervoice test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaptervoice.audio.transcoder import ChapterTranscoder
from chaptervoice.models.datatypes import ContentUnit, GenerationSettings
from chaptervoice.pipeline.retry import RetryPolicy
from chaptervoice.service import AudiobookService
from chaptervoice.storage.blobstore import AudiobookScope, LocalBlobStore
from chaptervoice.storage.rowstore import AudiobookRepository
from tests.fakes import FakeFfmpegRunner, FakeSynthesizer


@pytest.fixture
def ffmpeg_runner() -> FakeFfmpegRunner:
    """Provide an ffmpeg stand-in that records every invocation."""

    return FakeFfmpegRunner()


@pytest.fixture
def transcoder(ffmpeg_runner: FakeFfmpegRunner) -> ChapterTranscoder:
    return ChapterTranscoder(ffmpeg_runner)


@pytest.fixture
def blob_store(tmp_path: Path) -> LocalBlobStore:
    """Provide an empty filesystem blob store."""

    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def repository(tmp_path: Path) -> AudiobookRepository:
    """Provide a row store backed by a fresh SQLite file."""

    return AudiobookRepository(tmp_path / "rows" / "chaptervoice.sqlite3")


@pytest.fixture
def scope() -> AudiobookScope:
    return AudiobookScope(book_id="book-1", owner_id="user-1")


@pytest.fixture
def settings() -> GenerationSettings:
    """Provide the default locked settings used by most tests."""

    return GenerationSettings(
        provider="openai",
        model="gpt-4o-mini-tts",
        voice="alloy",
        native_speed=1.0,
        post_speed=1.0,
        format="m4b",
    )


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def no_sleep_retry() -> RetryPolicy:
    """Provide the default retry budget without real backoff sleeps."""

    return RetryPolicy(sleeper=lambda _: None)


@pytest.fixture
def service(
    blob_store: LocalBlobStore,
    repository: AudiobookRepository,
    synthesizer: FakeSynthesizer,
    transcoder: ChapterTranscoder,
    no_sleep_retry: RetryPolicy,
) -> AudiobookService:
    """Provide a fully wired service over local storage and fake collaborators."""

    return AudiobookService(
        store=blob_store,
        repository=repository,
        synthesizer=synthesizer,
        transcoder=transcoder,
        retry_policy=no_sleep_retry,
    )


@pytest.fixture
def three_pages() -> list[ContentUnit]:
    """Provide three non-empty pages as a PDF reader would return them."""

    return [
        ContentUnit(position=0, text="The first page of the book.", title="Page 1"),
        ContentUnit(position=1, text="The second page continues the story.", title="Page 2"),
        ContentUnit(position=2, text="The third page ends it.", title="Page 3"),
    ]
