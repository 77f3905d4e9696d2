"""Command-line interface for chaptervoice.

Responsibilities:
- Expose user-facing commands for generation, status, download, and cleanup.
- Convert CLI arguments into `ChaptervoiceConfig` and run the audiobook service.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
import signal
from typing import Annotated, Iterator

import typer
import yaml

from .cancellation import CancellationToken
from .cli_rendering import (
    echo_book_status,
    echo_generation_result,
    echo_progress,
    exit_with_command_error,
)
from .cli_runtime import create_service, resolve_provider_runtime_sources
from .config import (
    ChaptervoiceConfig,
    ConfigLoader,
    ProviderRuntimeConfig,
    RuntimeConfigSources,
)
from .credentials import create_credential_store
from .errors import PipelineStageError
from .io.content_units import load_content_units
from .models.datatypes import ContentUnit
from .parsing import normalize_optional_string
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="chaptervoice",
    no_args_is_help=True,
    help="Chaptervoice CLI: resumable chapter-based audiobook generation.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file with command defaults."),
]
BookIdOption = Annotated[str, typer.Option("--book-id", help="Audiobook identifier.")]
OwnerOption = Annotated[
    str | None,
    typer.Option("--owner-id", help="Owner scope (defaults to the unclaimed scope)."),
]
IndexOption = Annotated[int, typer.Option("--index", min=0, help="0-based chapter index.")]


def _load_config(config_path: Path | None) -> ChaptervoiceConfig:
    """Load YAML config when requested, else environment config; map failures to stage errors."""

    if config_path is None:
        try:
            return ConfigLoader.from_env()
        except ValueError as exc:
            raise PipelineStageError(
                stage="config",
                detail=f"Invalid environment configuration: {exc}",
                hint="Fix the `CHAPTERVOICE_*` / `S3_*` variables and rerun.",
            ) from exc

    try:
        loaded = ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except (ValueError, yaml.YAMLError) as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    return loaded


def _apply_overrides(config: ChaptervoiceConfig, **overrides: object) -> ChaptervoiceConfig:
    """Return `config` with non-`None` CLI overrides applied and re-validated."""

    updated = replace(
        config,
        **{key: value for key, value in overrides.items() if value is not None},
    )
    try:
        updated.validate()
    except ValueError as exc:
        raise PipelineStageError(stage="config", detail=str(exc)) from exc
    return updated


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Turn Ctrl-C into a cooperative cancellation request for the duration."""

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: object) -> None:
        typer.echo("Cancellation requested; finishing the current step.", err=True)
        token.cancel()

    signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _resolve_runtime_config(
    config: ChaptervoiceConfig,
    *,
    tts_provider: str | None,
    tts_model: str | None,
    tts_voice: str | None,
    api_key: str | None,
    base_url: str | None,
    prompt_api_key: bool,
    store_api_key: bool,
) -> ProviderRuntimeConfig:
    runtime_cli_values, runtime_secure_values = resolve_provider_runtime_sources(
        provider_hint=normalize_optional_string(
            config.runtime_sources.env.get("CHAPTERVOICE_TTS_PROVIDER")
        )
        or config.tts_provider,
        tts_provider=tts_provider,
        tts_model=tts_model,
        tts_voice=tts_voice,
        api_key=api_key,
        base_url=base_url,
        prompt_api_key=prompt_api_key,
        store_api_key=store_api_key,
        credential_store_factory=create_credential_store,
    )
    sources = RuntimeConfigSources(
        cli=runtime_cli_values,
        secure=runtime_secure_values,
        env=config.runtime_sources.env,
    )
    try:
        return config.resolved_provider_runtime(sources)
    except ValueError as exc:
        raise PipelineStageError(stage="config", detail=str(exc)) from exc


def _load_units(input_path: Path) -> list[ContentUnit]:
    try:
        return load_content_units(input_path)
    except (OSError, RuntimeError) as exc:
        raise PipelineStageError(
            stage="extract",
            detail=str(exc),
            hint="Provide a readable, text-based PDF or EPUB file.",
        ) from exc


@app.command("generate")
def generate_command(
    input_path: Annotated[Path, typer.Argument(help="Path to source PDF or EPUB.")],
    book_id: Annotated[
        str | None,
        typer.Option("--book-id", help="Resume or extend an existing audiobook."),
    ] = None,
    title: Annotated[
        str | None, typer.Option("--title", help="Audiobook title stored with the book.")
    ] = None,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
    output_format: Annotated[
        str | None, typer.Option("--format", help="Chapter format: `m4b` or `mp3`.")
    ] = None,
    native_speed: Annotated[
        float | None, typer.Option("--native-speed", help="Speed sent to the TTS provider.")
    ] = None,
    post_speed: Annotated[
        float | None,
        typer.Option("--post-speed", help="Tempo applied after synthesis (0.5-3.0)."),
    ] = None,
    clean_text: Annotated[
        bool | None,
        typer.Option("--clean-text/--no-clean-text", help="Clean extracted text before TTS."),
    ] = None,
    tts_provider: Annotated[
        str | None,
        typer.Option("--tts-provider", help="TTS provider id: `openai`, `deepinfra`, `custom`."),
    ] = None,
    tts_model: Annotated[str | None, typer.Option("--tts-model", help="TTS model id.")] = None,
    tts_voice: Annotated[str | None, typer.Option("--tts-voice", help="TTS voice id.")] = None,
    base_url: Annotated[
        str | None, typer.Option("--base-url", help="OpenAI-compatible API base URL.")
    ] = None,
    api_key: Annotated[
        str | None,
        typer.Option(
            "--api-key",
            help="Provider API key override. Prefer `--prompt-api-key` to avoid shell history.",
        ),
    ] = None,
    prompt_api_key: Annotated[
        bool,
        typer.Option("--prompt-api-key", help="Prompt for API key with hidden input."),
    ] = False,
    store_api_key: Annotated[
        bool,
        typer.Option(
            "--store-api-key/--no-store-api-key",
            help="Persist CLI-entered API key to secure credential storage.",
        ),
    ] = True,
) -> None:
    """Generate every missing chapter of an audiobook from a document."""

    try:
        config = _apply_overrides(
            _load_config(config_file),
            owner_id=owner_id,
            output_format=output_format,
            native_speed=native_speed,
            post_speed=post_speed,
            clean_text=clean_text,
        )
        runtime = _resolve_runtime_config(
            config,
            tts_provider=tts_provider,
            tts_model=tts_model,
            tts_voice=tts_voice,
            api_key=api_key,
            base_url=base_url,
            prompt_api_key=prompt_api_key,
            store_api_key=store_api_key,
        )
        units = _load_units(input_path)
        service = create_service(config, runtime=runtime, run_logger=RunLogger())
        token = CancellationToken()
        with _cancel_on_interrupt(token):
            result = service.generate(
                units,
                settings=config.generation_settings(runtime),
                book_id=book_id,
                owner_id=config.owner_id,
                book_title=title or input_path.stem,
                on_progress=lambda percent: echo_progress("generate", percent),
                cancel_token=token,
            )
    except Exception as exc:
        exit_with_command_error("generate", exc)

    echo_generation_result(result)


@app.command("regenerate")
def regenerate_command(
    input_path: Annotated[Path, typer.Argument(help="Path to source PDF or EPUB.")],
    book_id: BookIdOption,
    index: IndexOption,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
    tts_provider: Annotated[str | None, typer.Option("--tts-provider")] = None,
    tts_model: Annotated[str | None, typer.Option("--tts-model")] = None,
    tts_voice: Annotated[str | None, typer.Option("--tts-voice")] = None,
    base_url: Annotated[str | None, typer.Option("--base-url")] = None,
    api_key: Annotated[str | None, typer.Option("--api-key")] = None,
) -> None:
    """Re-synthesize one chapter and overwrite its stored audio."""

    try:
        config = _apply_overrides(_load_config(config_file), owner_id=owner_id)
        runtime = _resolve_runtime_config(
            config,
            tts_provider=tts_provider,
            tts_model=tts_model,
            tts_voice=tts_voice,
            api_key=api_key,
            base_url=base_url,
            prompt_api_key=False,
            store_api_key=False,
        )
        units = _load_units(input_path)
        service = create_service(config, runtime=runtime, run_logger=RunLogger())
        token = CancellationToken()
        with _cancel_on_interrupt(token):
            outcome = service.regenerate_chapter(
                units,
                book_id=book_id,
                chapter_index=index,
                settings=config.generation_settings(runtime),
                owner_id=config.owner_id,
                cancel_token=token,
            )
        if outcome.status == "error":
            raise PipelineStageError(
                stage="generate",
                detail=f"Chapter {index + 1} failed: {outcome.error}",
            )
    except Exception as exc:
        exit_with_command_error("regenerate", exc)

    typer.echo(f"Chapter {outcome.index}: {outcome.title} [{outcome.format}]")


@app.command("status")
def status_command(
    book_id: BookIdOption,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
) -> None:
    """Show stored chapters and locked settings of an audiobook."""

    try:
        config = _apply_overrides(_load_config(config_file), owner_id=owner_id)
        status = create_service(config).status(book_id, owner_id=config.owner_id)
    except Exception as exc:
        exit_with_command_error("status", exc)

    echo_book_status(status)


@app.command("download")
def download_command(
    book_id: BookIdOption,
    out: Annotated[
        Path | None, typer.Option("--out", help="Output file (defaults to `<book-id>.<format>`).")
    ] = None,
    output_format: Annotated[
        str | None, typer.Option("--format", help="Combined file format: `m4b` or `mp3`.")
    ] = None,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
) -> None:
    """Assemble (or serve from cache) the full audiobook and write it to disk."""

    try:
        config = _apply_overrides(_load_config(config_file), owner_id=owner_id)
        service = create_service(config, run_logger=RunLogger())
        token = CancellationToken()
        with _cancel_on_interrupt(token):
            book = service.download(
                book_id,
                requested_format=output_format,
                owner_id=config.owner_id,
                cancel_token=token,
            )
        target = out or Path(f"{book_id}.{book.format}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(book.data)
    except Exception as exc:
        exit_with_command_error("download", exc)

    typer.echo(f"Chapters: {book.chapter_count}")
    typer.echo(f"Cache: {'hit' if book.cache_hit else 'rebuilt'}")
    typer.echo(f"Audiobook: {target}")


@app.command("download-chapter")
def download_chapter_command(
    book_id: BookIdOption,
    index: IndexOption,
    out: Annotated[
        Path | None, typer.Option("--out", help="Output file (defaults to the stored name).")
    ] = None,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
) -> None:
    """Write one stored chapter to disk."""

    try:
        config = _apply_overrides(_load_config(config_file), owner_id=owner_id)
        file_name, data = create_service(config).download_chapter(
            book_id, index, owner_id=config.owner_id
        )
        target = out or Path(file_name)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except Exception as exc:
        exit_with_command_error("download-chapter", exc)

    typer.echo(f"Chapter: {target}")


@app.command("delete-chapter")
def delete_chapter_command(
    book_id: BookIdOption,
    index: IndexOption,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
) -> None:
    """Delete one chapter and invalidate the cached combined file."""

    try:
        config = _apply_overrides(_load_config(config_file), owner_id=owner_id)
        deleted = create_service(config, run_logger=RunLogger()).delete_chapter(
            book_id, index, owner_id=config.owner_id
        )
    except Exception as exc:
        exit_with_command_error("delete-chapter", exc)

    typer.echo(f"Deleted chapter {index} ({deleted} stored object(s)).")


@app.command("reset")
def reset_command(
    book_id: BookIdOption,
    yes: Annotated[bool, typer.Option("--yes", help="Skip the confirmation prompt.")] = False,
    config_file: ConfigOption = None,
    owner_id: OwnerOption = None,
) -> None:
    """Delete every chapter, cached file, and settings record of an audiobook."""

    if not yes and not typer.confirm(f"Delete all stored audio for `{book_id}`?"):
        typer.echo("Reset aborted.")
        raise typer.Exit(code=1)
    try:
        config = _apply_overrides(_load_config(config_file), owner_id=owner_id)
        deleted = create_service(config, run_logger=RunLogger()).reset(
            book_id, owner_id=config.owner_id
        )
    except Exception as exc:
        exit_with_command_error("reset", exc)

    typer.echo(f"Reset `{book_id}`: removed {deleted} stored object(s).")


@app.command("credentials")
def credentials_command(
    provider: Annotated[
        str, typer.Option("--provider", help="Provider whose API key is managed.")
    ] = "openai",
    set_api_key: Annotated[
        bool,
        typer.Option("--set-api-key", help="Prompt for and store an API key securely."),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option("--clear-api-key", help="Delete the stored API key."),
    ] = False,
) -> None:
    """Manage the provider API key stored in the OS keyring."""

    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail="`--set-api-key` and `--clear-api-key` cannot be used together.",
                hint="Run one credentials action per command invocation.",
            ),
        )

    credential_store = create_credential_store()
    if set_api_key:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                f"{provider} API key (hidden input)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail="No API key entered.",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(provider, prompted_api_key)
        except Exception as exc:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo("API key stored in secure credential storage.")
        return

    if clear_api_key:
        if credential_store.clear_api_key(provider):
            typer.echo("Stored API key cleared from secure credential storage.")
        else:
            typer.echo("No stored API key found in secure credential storage.")
        return

    status = "present" if credential_store.get_api_key(provider) is not None else "not set"
    typer.echo(f"Stored {provider} API key: {status}")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
