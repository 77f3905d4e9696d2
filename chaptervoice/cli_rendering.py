"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
book status, generation results, and progress lines.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import (
    AssemblyError,
    BlobNotFoundError,
    GenerationCancelledError,
    GenerationFailedError,
    NoChaptersError,
    PipelineStageError,
    SettingsConflictError,
    StorageError,
    ValidationError,
)
from .models.datatypes import BookStatus, GenerationResult, GenerationSettings
from .tts.openai_client import TTSProviderError


def stage_error_for(exc: Exception) -> PipelineStageError | None:
    """Map a domain exception to a stage-scoped diagnostic, when one applies."""

    if isinstance(exc, PipelineStageError):
        return exc
    if isinstance(exc, NoChaptersError):
        return PipelineStageError(
            stage="assemble",
            detail=str(exc),
            hint="Generate at least one chapter before downloading the book.",
        )
    if isinstance(exc, ValidationError):
        return PipelineStageError(stage="validate", detail=str(exc))
    if isinstance(exc, BlobNotFoundError):
        return PipelineStageError(
            stage="storage",
            detail=str(exc),
            hint="Run `chaptervoice status` to reconcile the stored chapters.",
        )
    if isinstance(exc, AssemblyError):
        return PipelineStageError(
            stage="assemble",
            detail=str(exc),
            hint="Check that `ffmpeg` is installed or set `FFMPEG_BIN`.",
        )
    if isinstance(exc, GenerationFailedError):
        return PipelineStageError(
            stage="generate",
            detail=str(exc),
            hint="Inspect the per-chapter errors above and rerun to resume.",
        )
    if isinstance(exc, StorageError):
        return PipelineStageError(stage="storage", detail=str(exc))
    if isinstance(exc, TTSProviderError):
        hint = None
        if exc.failure_kind == "invalid_api_key":
            hint = "Set `CHAPTERVOICE_API_KEY` or run `chaptervoice credentials --set-api-key`."
        elif exc.failure_kind == "insufficient_quota":
            hint = "Check provider billing or quota, then rerun to resume."
        return PipelineStageError(stage="tts", detail=str(exc), hint=hint)
    return None


def echo_settings(settings: GenerationSettings, *, err: bool = False) -> None:
    """Print one settings record as `key: value` rows."""

    for key, value in settings.to_payload().items():
        typer.echo(f"  {key}: {value}", err=err)


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, GenerationCancelledError):
        typer.secho(f"{command_name} cancelled.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=1) from exc
    if isinstance(exc, SettingsConflictError):
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
        typer.echo("Locked settings:", err=True)
        echo_settings(exc.locked_settings, err=True)
        typer.secho(
            "Hint: Rerun with the locked settings, or `chaptervoice reset` the book "
            "to change them.",
            fg=typer.colors.YELLOW,
            err=True,
        )
        raise typer.Exit(code=1) from exc

    stage_error = stage_error_for(exc)
    if stage_error is not None:
        typer.secho(
            f"{command_name} failed at stage `{stage_error.stage}`: {stage_error.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if stage_error.hint:
            typer.secho(f"Hint: {stage_error.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def echo_progress(command_name: str, percent: float) -> None:
    typer.echo(f"[progress] command={command_name} {percent:.1f}%")


def echo_generation_result(result: GenerationResult) -> None:
    """Print the book id, run status, and per-chapter outcomes."""

    typer.echo(f"Book id: {result.book_id}")
    typer.echo(f"Status: {result.status}")
    typer.echo(f"Chapters committed: {len(result.committed_indices)}")
    if result.skipped_indices:
        typer.echo(f"Chapters already stored: {len(result.skipped_indices)}")
    for outcome in result.outcomes:
        if outcome.status == "error":
            typer.secho(
                f"Chapter {outcome.index + 1} failed: {outcome.error}",
                fg=typer.colors.RED,
                err=True,
            )


def echo_book_status(status: BookStatus) -> None:
    """Print compact deterministic book status rows."""

    if not status.exists:
        typer.echo("Book: not found")
        return
    typer.echo(f"Book id: {status.book_id}")
    typer.echo(f"State: {status.state}")
    typer.echo(f"Combined file cached: {'yes' if status.has_complete else 'no'}")
    if status.settings is not None:
        typer.echo("Settings:")
        echo_settings(status.settings)
    elif status.settings_unknown:
        typer.echo("Settings: unknown (chapters were stored without a settings record)")
    for chapter in status.chapters:
        duration = f"{chapter.duration:.2f}s" if chapter.duration is not None else "unknown"
        typer.echo(f"{chapter.index}. {chapter.title} [{chapter.format}, {duration}]")
