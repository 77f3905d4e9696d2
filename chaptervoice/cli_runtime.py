"""CLI runtime resolution and service wiring.

This module isolates provider value resolution, secure API-key persistence,
and construction of storage backends and the audiobook service from the
command wiring layer.
"""

from __future__ import annotations

from typing import Callable, Protocol

import typer

from .config import ChaptervoiceConfig, ProviderRuntimeConfig
from .credentials import create_credential_store
from .errors import PipelineStageError
from .parsing import normalize_optional_string
from .pipeline.retry import RetryPolicy
from .service import AudiobookService
from .storage.blobstore import BlobStore, LocalBlobStore, S3BlobStore
from .storage.rowstore import AudiobookRepository
from .telemetry.logger import RunLogger
from .text.cleaners import TextCleaner
from .tts.synthesizer import OpenAISpeechSynthesizer


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def get_api_key(self, provider: str) -> str | None:
        """Return currently stored API key, if available."""

    def set_api_key(self, provider: str, api_key: str) -> None:
        """Persist API key value in secure storage."""


def _set_runtime_cli_value(
    runtime_cli_values: dict[str, str],
    key: str,
    value: str | None,
) -> None:
    """Set a normalized runtime CLI value when user input is present."""

    normalized = normalize_optional_string(value)
    if normalized is not None:
        runtime_cli_values[key] = normalized


def resolve_provider_runtime_sources(
    *,
    provider_hint: str,
    tts_provider: str | None,
    tts_model: str | None,
    tts_voice: str | None,
    api_key: str | None,
    base_url: str | None,
    prompt_api_key: bool,
    store_api_key: bool,
    credential_store_factory: Callable[[], CredentialStoreProtocol] = create_credential_store,
) -> tuple[dict[str, str], dict[str, str]]:
    """Resolve CLI and secure runtime source mappings for provider configuration."""

    runtime_cli_values: dict[str, str] = {}
    _set_runtime_cli_value(runtime_cli_values, "tts_provider", tts_provider)
    _set_runtime_cli_value(runtime_cli_values, "tts_model", tts_model)
    _set_runtime_cli_value(runtime_cli_values, "tts_voice", tts_voice)
    _set_runtime_cli_value(runtime_cli_values, "api_key", api_key)
    _set_runtime_cli_value(runtime_cli_values, "base_url", base_url)
    provider = runtime_cli_values.get("tts_provider", provider_hint)

    api_key_entered_in_run = "api_key" in runtime_cli_values
    if prompt_api_key and not api_key_entered_in_run:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                f"{provider} API key (hidden; leave blank to skip)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is not None:
            runtime_cli_values["api_key"] = prompted_api_key
            api_key_entered_in_run = True

    credential_store = credential_store_factory()
    runtime_secure_values: dict[str, str] = {}
    stored_api_key = credential_store.get_api_key(provider)
    if stored_api_key is not None:
        runtime_secure_values["api_key"] = stored_api_key

    if api_key_entered_in_run and store_api_key:
        try:
            credential_store.set_api_key(provider, runtime_cli_values["api_key"])
            typer.echo("Stored API key in secure credential storage.")
        except Exception as exc:
            raise PipelineStageError(
                stage="credentials",
                detail=f"Failed to store API key securely: {exc}",
                hint=(
                    "Install and configure a keyring backend, or rerun with "
                    "`--no-store-api-key` for one-off usage."
                ),
            ) from exc

    return runtime_cli_values, runtime_secure_values


def create_blob_store(config: ChaptervoiceConfig) -> BlobStore:
    """Create the configured blob store backend."""

    if config.storage_backend == "s3":
        return S3BlobStore.create(
            bucket=config.s3_bucket or "",
            region=config.s3_region,
            access_key_id=config.s3_access_key_id,
            secret_access_key=config.s3_secret_access_key,
            endpoint=config.s3_endpoint,
            force_path_style=config.s3_force_path_style,
        )
    return LocalBlobStore(config.storage_dir)


def create_service(
    config: ChaptervoiceConfig,
    *,
    runtime: ProviderRuntimeConfig | None = None,
    run_logger: RunLogger | None = None,
) -> AudiobookService:
    """Wire storage, transcoder, and (when `runtime` is given) the synthesizer."""

    synthesizer = None
    if runtime is not None:
        synthesizer = OpenAISpeechSynthesizer(
            api_key=runtime.api_key,
            base_url=runtime.base_url,
            provider=runtime.provider,
        )
    return AudiobookService(
        store=create_blob_store(config),
        repository=AudiobookRepository(config.db_path),
        synthesizer=synthesizer,
        retry_policy=RetryPolicy(max_attempts=config.tts_max_attempts),
        cleaner=TextCleaner() if config.clean_text else None,
        storage_root=config.storage_prefix,
        namespace=config.namespace,
        run_logger=run_logger,
    )
