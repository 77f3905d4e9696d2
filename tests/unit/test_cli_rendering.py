"""Unit tests for CLI output and error rendering helpers."""

from __future__ import annotations

import pytest
import typer

from chaptervoice.cli_rendering import (
    echo_book_status,
    echo_generation_result,
    echo_progress,
    exit_with_command_error,
    stage_error_for,
)
from chaptervoice.errors import (
    AssemblyError,
    BlobNotFoundError,
    GenerationCancelledError,
    NoChaptersError,
    PipelineStageError,
    SettingsConflictError,
)
from chaptervoice.models.datatypes import (
    BookStatus,
    ChapterOutcome,
    ChapterStatus,
    GenerationResult,
    GenerationSettings,
)
from chaptervoice.tts.openai_client import TTSProviderError


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = PipelineStageError(
        stage="extract",
        detail="Input PDF not found: broken.pdf",
        hint="Provide a readable, text-based PDF or EPUB file.",
    )

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("generate", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "generate failed at stage `extract`" in captured.err
    assert "Hint: Provide a readable, text-based PDF or EPUB file." in captured.err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for unmapped failures."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("status", RuntimeError("unexpected failure"))

    assert exc_info.value.exit_code == 1
    assert "status failed: unexpected failure" in capsys.readouterr().err


def test_exit_with_command_error_prints_locked_settings_on_conflict(
    capsys: pytest.CaptureFixture[str],
    settings: GenerationSettings,
) -> None:
    """A settings conflict lists the locked settings and how to change them."""

    with pytest.raises(typer.Exit):
        exit_with_command_error("generate", SettingsConflictError(settings))

    err = capsys.readouterr().err
    assert "generate failed: Audiobook settings mismatch" in err
    assert "voice: alloy" in err
    assert "format: m4b" in err
    assert "chaptervoice reset" in err


def test_exit_with_command_error_reports_cancellation_distinctly(
    capsys: pytest.CaptureFixture[str],
) -> None:
    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("download", GenerationCancelledError())

    assert exc_info.value.exit_code == 1
    assert "download cancelled." in capsys.readouterr().err


def test_stage_error_for_maps_domain_errors() -> None:
    """Domain exceptions should map to stage-scoped diagnostics with hints."""

    no_chapters = stage_error_for(NoChaptersError("No chapters found"))
    missing = stage_error_for(BlobNotFoundError("k"))
    assembly = stage_error_for(AssemblyError("concat failed"))
    quota = stage_error_for(TTSProviderError("quota", failure_kind="insufficient_quota"))

    assert no_chapters is not None and no_chapters.stage == "assemble"
    assert missing is not None and missing.stage == "storage"
    assert assembly is not None and "FFMPEG_BIN" in (assembly.hint or "")
    assert quota is not None and quota.stage == "tts" and quota.hint is not None
    assert stage_error_for(RuntimeError("x")) is None


def test_echo_progress_line(capsys: pytest.CaptureFixture[str]) -> None:
    echo_progress("generate", 42.0)

    assert capsys.readouterr().out == "[progress] command=generate 42.0%\n"


def test_echo_generation_result_lists_failures(capsys: pytest.CaptureFixture[str]) -> None:
    """Failed chapters are reported on stderr with their 1-based number."""

    result = GenerationResult(
        book_id="b1",
        status="completed",
        outcomes=(
            ChapterOutcome(index=0, title="One", status="completed", book_id="b1", format="m4b"),
            ChapterOutcome(
                index=1, title="Two", status="error", book_id="b1", format="m4b", error="boom"
            ),
        ),
        skipped_indices=(2,),
    )

    echo_generation_result(result)

    captured = capsys.readouterr()
    assert "Book id: b1" in captured.out
    assert "Chapters committed: 1" in captured.out
    assert "Chapters already stored: 1" in captured.out
    assert "Chapter 2 failed: boom" in captured.err


def test_echo_book_status_rows(capsys: pytest.CaptureFixture[str]) -> None:
    status = BookStatus(
        book_id="b1",
        exists=True,
        chapters=(ChapterStatus(index=0, title="Intro", format="mp3", duration=1.5),),
        settings_unknown=True,
    )

    echo_book_status(status)
    echo_book_status(BookStatus(book_id=None, exists=False))

    out = capsys.readouterr().out
    assert "State: partial" in out
    assert "0. Intro [mp3, 1.50s]" in out
    assert "Settings: unknown" in out
    assert "Book: not found" in out
